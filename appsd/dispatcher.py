"""
Message dispatcher

Drains lifecycle messages from the channel and reconciles each one on its
own worker thread, gated by the operation deduplicator.

Flow:
    channel -> parse (resource, content) -> dedup gate -> reconciler/backend

Malformed messages are logged and dropped; nothing is reported back to the
sender. Correctness relies on the control plane re-sending intent.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Set

from pydantic import ValidationError

from appsd.backend.base import ProcessBackend
from appsd.dedup import OperationDeduplicator
from appsd.errors import AppsdError, DecodeFailure, ProcessNotFound
from appsd.message import Message, MessageChannel, parse_lifecycle_resource
from appsd.models import AppCommand, Content, Operation, OperationKey, WorkloadDescriptor, generate_command
from appsd.reconciler import ConfigReconciler

logger = logging.getLogger(__name__)

LIFECYCLE_OPERATIONS = {Operation.INSERT, Operation.UPDATE, Operation.DELETE}


@dataclass
class AppTask:
    """Normalised lifecycle request derived from one message"""
    operation: Operation
    key: OperationKey
    token: Optional[str]
    command: AppCommand


def _decode_content(content: Content) -> Content:
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    if isinstance(content, str):
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise DecodeFailure(f"content is not JSON: {e}") from e
    return content


def parse_message(message: Message) -> AppTask:
    """
    Turn a lifecycle message into an AppTask

    Raises:
        AppsdError: malformed resource, unknown operation or undecodable content
    """
    try:
        operation = Operation((message.operation or "").lower())
    except ValueError as e:
        raise DecodeFailure(f"unsupported operation {message.operation!r}") from e
    if operation not in LIFECYCLE_OPERATIONS:
        raise DecodeFailure(f"unsupported operation {message.operation!r}")

    namespace, instance = parse_lifecycle_resource(message.resource)
    content = _decode_content(message.content)

    if isinstance(content, dict):
        try:
            descriptor = WorkloadDescriptor.model_validate(content)
        except ValidationError as e:
            raise DecodeFailure(f"invalid workload descriptor: {e.error_count()} error(s)") from e
        key = OperationKey(
            namespace=descriptor.namespace or namespace,
            name=descriptor.name or instance,
            app=descriptor.app_name,
        )
        return AppTask(operation, key, descriptor.version_token, descriptor.to_command())

    if isinstance(content, list) and all(isinstance(arg, str) for arg in content):
        command = generate_command(content)
        if command is None:
            raise DecodeFailure("raw command has no absolute executable")
        return AppTask(operation, OperationKey.for_command(namespace, command), None, command)

    raise DecodeFailure(f"unsupported content type {type(content).__name__}")


class MessageDispatcher:
    """Receive loop plus one worker thread per message.

    Example:
        dispatcher = MessageDispatcher(channel, reconciler, backend, OperationDeduplicator())
        stop = threading.Event()
        dispatcher.start(stop)
        ...
        stop.set()
        dispatcher.join()
    """

    def __init__(
        self,
        channel: MessageChannel,
        reconciler: ConfigReconciler,
        backend: ProcessBackend,
        dedup: OperationDeduplicator,
        receive_timeout: float = 1.0,
        drain_timeout: float = 30.0,
    ):
        self.channel = channel
        self.reconciler = reconciler
        self.backend = backend
        self.dedup = dedup
        self.receive_timeout = receive_timeout
        self.drain_timeout = drain_timeout

        self._workers: Set[threading.Thread] = set()
        self._workers_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def start(self, stop: threading.Event) -> None:
        self._thread = threading.Thread(target=self.run, args=(stop,), name="appsd-dispatcher", daemon=True)
        self._thread.start()

    def run(self, stop: threading.Event) -> None:
        """Drain the channel until *stop* is set"""
        logger.info("Starting appsd dispatcher...")
        while not stop.is_set():
            try:
                message = self.channel.receive(self.receive_timeout)
            except Exception as e:
                logger.warning(f"appsd receive msg error: {e}")
                stop.wait(self.receive_timeout)
                continue
            if message is None:
                continue
            logger.debug(f"appsd receive msg {message.id} ({message.operation} {message.resource})")
            self.dispatch(message)
        logger.warning("appsd dispatcher stop")

    def dispatch(self, message: Message) -> threading.Thread:
        """Hand *message* to its own worker thread"""
        worker = threading.Thread(
            target=self._work,
            args=(message,),
            name=f"appsd-worker-{message.id[:8]}",
            daemon=True,
        )
        with self._workers_lock:
            self._workers.add(worker)
        worker.start()
        return worker

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the receive loop, then drain in-flight workers.

        Returns:
            True if every worker finished within the drain timeout
        """
        deadline = time.monotonic() + (self.drain_timeout if timeout is None else timeout)
        if self._thread is not None:
            self._thread.join(timeout=max(0.0, deadline - time.monotonic()))

        with self._workers_lock:
            workers = list(self._workers)
        for worker in workers:
            worker.join(timeout=max(0.0, deadline - time.monotonic()))

        pending = self.in_flight()
        if pending:
            logger.warning(f"Abandoning {pending} in-flight reconciliation task(s) at shutdown")
        return pending == 0

    def in_flight(self) -> int:
        with self._workers_lock:
            return sum(1 for w in self._workers if w.is_alive())

    def _work(self, message: Message) -> None:
        try:
            self.handle(message)
        finally:
            with self._workers_lock:
                self._workers.discard(threading.current_thread())

    def handle(self, message: Message) -> None:
        """Parse and apply one message on the calling thread"""
        try:
            task = parse_message(message)
        except AppsdError as e:
            logger.error(f"Dropping message {message.id} ({message.resource!r}): {e}")
            return

        if task.operation is Operation.DELETE:
            self._delete(task)
            return

        if not self.dedup.should_run(task.key, task.token):
            return

        logger.info(f"Applying {task.operation.value} for {task.key} (token={task.token})")
        try:
            if task.operation is Operation.INSERT:
                result = self.reconciler.reconcile_insert(task.command)
            else:
                result = self.reconciler.reconcile_update(task.command)
        except AppsdError as e:
            logger.error(f"{task.operation.value} {task.key} failed: {e}")
            self.dedup.finish(task.key, task.token, ok=False)
            return
        except Exception as e:
            logger.error(f"Unexpected error applying {task.key}: {e}", exc_info=True)
            self.dedup.finish(task.key, task.token, ok=False)
            return

        self.dedup.finish(task.key, task.token, ok=True)
        logger.info(f"{task.operation.value} {task.key} done (config {result.action.value}, started={result.started})")

    def _delete(self, task: AppTask) -> None:
        self.dedup.clear(task.key)
        try:
            self.backend.stop(task.command)
        except ProcessNotFound:
            logger.info(f"{task.key} is not running, nothing to stop")
            return
        except AppsdError as e:
            logger.error(f"delete {task.key} failed: {e}")
            return
        logger.info(f"delete {task.key} done")
