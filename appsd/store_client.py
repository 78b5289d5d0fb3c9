"""
Config store client

Synchronous queries for configuration and secret objects, answered by the
remote metadata authority over the message channel.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional

from appsd.errors import DecodeFailure, RemoteQueryFailure
from appsd.message import METADATA_MODULE, ChannelError, Message, MessageChannel, build_resource
from appsd.models import CONFIG_TYPE_NATIVE, LABEL_CONFIG_TYPE, Operation

logger = logging.getLogger(__name__)

QUERY_TIMEOUT = 10.0


class ConfigStoreClient:
    """Query remote objects by type, name and domain"""

    def __init__(
        self,
        channel: MessageChannel,
        namespace: str,
        node_id: str = "",
        timeout: float = QUERY_TIMEOUT,
        target: str = METADATA_MODULE,
    ):
        self.channel = channel
        self.namespace = namespace
        self.node_id = node_id
        self.timeout = timeout
        self.target = target

    def query(self, resource_type: str, name: str = "", domain: str = "") -> List[str]:
        """
        Fetch raw objects

        Args:
            resource_type: "configmap" or "secret"
            name: application name (optional when domain is given)
            domain: domain name (optional)

        Returns:
            List of raw JSON documents, empty when nothing matches

        Raises:
            RemoteQueryFailure: timeout or transport error
            DecodeFailure: response content is not a list of documents
        """
        resource = build_resource(
            node_id=self.node_id,
            namespace=self.namespace,
            resource_type=resource_type,
            app_name=name,
            domain=domain,
        )
        request = Message(operation=Operation.QUERY.value, resource=resource)

        try:
            response = self.channel.send_sync(self.target, request, self.timeout)
        except ChannelError as e:
            logger.warning(f"Query {resource} failed: {e}")
            raise RemoteQueryFailure(str(e)) from e

        return decode_objects(response.content)


def decode_objects(content: Any) -> List[str]:
    """Normalise a query response into a list of JSON documents"""
    if content is None:
        return []
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    if isinstance(content, str):
        try:
            content = json.loads(content) if content.strip() else []
        except json.JSONDecodeError as e:
            raise DecodeFailure(f"query response is not JSON: {e}") from e
    if not isinstance(content, list):
        raise DecodeFailure(f"query response must be a list, got {type(content).__name__}")

    objects: List[str] = []
    for item in content:
        if isinstance(item, str):
            objects.append(item)
        elif isinstance(item, dict):
            objects.append(json.dumps(item))
        else:
            raise DecodeFailure(f"unexpected object in query response: {type(item).__name__}")
    return objects


def load_object(raw: str) -> dict:
    """Parse one raw document into a mapping"""
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DecodeFailure(f"object is not JSON: {e}") from e
    if not isinstance(obj, dict):
        raise DecodeFailure("object must be a JSON object")
    return obj


def object_data(obj: dict, key: str = "data") -> dict:
    data = obj.get(key) or {}
    if not isinstance(data, dict):
        raise DecodeFailure(f"object {key} must be a mapping")
    return {str(k): "" if v is None else str(v) for k, v in data.items()}


def object_labels(obj: dict) -> dict:
    return (obj.get("metadata") or {}).get("labels") or {}


def select_native(objects: List[dict]) -> Optional[dict]:
    """Object labelled ``configType=native`` if any, else the first one"""
    if not objects:
        return None
    for obj in objects:
        if object_labels(obj).get(LABEL_CONFIG_TYPE) == CONFIG_TYPE_NATIVE:
            return obj
    return objects[0]
