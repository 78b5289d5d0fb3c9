"""Message envelope, resource paths and the channel contract.

The agent consumes lifecycle messages from a channel and issues synchronous
queries over the same channel. The transport itself lives outside this
package; ``LocalChannel`` is an in-process implementation used for
standalone runs and tests.

Design Principles:
- Fire-and-forget inbound: nothing is returned to the sender of a lifecycle message
- Bounded sync requests: ``send_sync`` never blocks past its timeout
"""

from __future__ import annotations

import logging
import queue
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from appsd.errors import AppsdError, ErrorKind
from appsd.models import Operation

logger = logging.getLogger(__name__)

RESOURCE_SEP = "/"
RESOURCE_NODE = "node"

MODULE_NAME = "appsd"
GROUP_NAME = "appsd"
METADATA_MODULE = "metaManager"

# namespace/instance
LIFECYCLE_SEGMENTS = 2


class ChannelError(Exception):
    """Transport-level failure"""
    pass


class ChannelTimeout(ChannelError):
    """No response within the allowed time"""
    pass


@dataclass
class Message:
    """Message routed between the control plane and the agent.

    Attributes:
        operation: insert | update | delete | query | response
        resource: ``/``-joined resource path
        content: workload descriptor, raw argv, query result, ...
        parent_id: id of the request a response answers
    """
    operation: str
    resource: str
    content: Any = None
    source: str = MODULE_NAME
    group: str = GROUP_NAME
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    parent_id: str = ""
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def new_response(self, content: Any, source: str = METADATA_MODULE) -> "Message":
        return Message(
            operation=Operation.RESPONSE.value,
            resource=self.resource,
            content=content,
            source=source,
            group=self.group,
            parent_id=self.id,
        )


def build_resource(
    node_id: str = "",
    namespace: str = "",
    resource_type: str = "",
    resource_id: str = "",
    app_name: str = "",
    domain: str = "",
) -> str:
    """Join the present resource components in fixed order.

    Layout: ``[node/<nodeID>/]<namespace>/<type>[/<id>][/<app>][/<domain>]``.
    Absent components are omitted, never left as empty segments.

    Raises:
        AppsdError: namespace or resource type missing
    """
    if not namespace or not resource_type:
        raise AppsdError(
            ErrorKind.INVALID_PARAMETER,
            "required parameter are not set (namespace or resource type)",
        )

    parts = []
    if node_id:
        parts.extend([RESOURCE_NODE, node_id])
    parts.extend([namespace, resource_type])
    parts.extend(p for p in (resource_id, app_name, domain) if p)
    return RESOURCE_SEP.join(parts)


def parse_lifecycle_resource(resource: str) -> Tuple[str, str]:
    """Split a lifecycle resource into ``(namespace, instance)``.

    An optional ``node/<nodeID>/`` prefix is stripped first.

    Raises:
        AppsdError: resource does not have exactly two segments
    """
    segments = (resource or "").split(RESOURCE_SEP)
    if len(segments) > 2 and segments[0] == RESOURCE_NODE:
        segments = segments[2:]
    if len(segments) != LIFECYCLE_SEGMENTS or not all(segments):
        raise AppsdError(
            ErrorKind.INVALID_PARAMETER,
            f"resource {resource!r} must be <namespace>/<instance>",
        )
    return segments[0], segments[1]


class MessageChannel(Protocol):
    """Channel the agent is attached to."""

    def receive(self, timeout: float) -> Optional[Message]:
        """Next inbound message, or None when nothing arrived within *timeout*."""
        ...

    def send_sync(self, target: str, message: Message, timeout: float) -> Message:
        """Send *message* to *target* and wait for its response.

        Raises:
            ChannelTimeout: no response within *timeout*
            ChannelError: transport failure
        """
        ...


Responder = Callable[[Message], Any]


class LocalChannel:
    """In-process channel.

    Inbound messages are queued with ``publish``; synchronous requests are
    answered by responders registered per target module.

    Example:
        channel = LocalChannel()
        channel.register_responder("metaManager", lambda msg: ['{"data": {}}'])
        channel.publish(Message(operation="insert", resource="ns1/pod1", content={...}))
    """

    def __init__(self, max_workers: int = 4):
        self._inbound: "queue.Queue[Message]" = queue.Queue()
        self._responders: Dict[str, Responder] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="appsd-channel")

    def publish(self, message: Message) -> None:
        self._inbound.put(message)

    def receive(self, timeout: float) -> Optional[Message]:
        try:
            return self._inbound.get(timeout=timeout)
        except queue.Empty:
            return None

    def register_responder(self, target: str, responder: Responder) -> None:
        with self._lock:
            self._responders[target] = responder
        logger.info(f"Responder registered for {target}")

    def send_sync(self, target: str, message: Message, timeout: float) -> Message:
        with self._lock:
            responder = self._responders.get(target)
        if responder is None:
            raise ChannelError(f"no route to module {target}")

        future = self._executor.submit(responder, message)
        try:
            content = future.result(timeout=timeout)
        except FutureTimeout as e:
            raise ChannelTimeout(f"timeout after {timeout}s waiting for {target}") from e
        except Exception as e:
            raise ChannelError(f"{target} failed to answer: {e}") from e
        return message.new_response(content, source=target)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
