"""appsd agent: wires the channel, dispatcher and config query server together."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from appsd.backend import ProcessBackend, create_backend
from appsd.config import AppsdConfig
from appsd.dedup import OperationDeduplicator
from appsd.dispatcher import MessageDispatcher
from appsd.message import MessageChannel
from appsd.reconciler import ConfigReconciler
from appsd.server import ConfigQueryServer, create_app
from appsd.store_client import ConfigStoreClient

logger = logging.getLogger(__name__)


class Appsd:
    """
    Native application lifecycle agent

    Example:
        agent = Appsd(cfg, channel)
        agent.start()
        ...
        agent.stop()
    """

    def __init__(
        self,
        cfg: AppsdConfig,
        channel: MessageChannel,
        backend: Optional[ProcessBackend] = None,
        serve_http: bool = True,
    ):
        self.cfg = cfg
        self.channel = channel
        self.backend = backend or create_backend(cfg)
        self.store = ConfigStoreClient(
            channel,
            namespace=cfg.register_node_namespace,
            node_id=cfg.node_id,
            timeout=cfg.query_timeout,
        )
        self.dedup = OperationDeduplicator(cooldown=cfg.dedup_cooldown)
        self.reconciler = ConfigReconciler(self.store, self.backend, cfg.conf_dir)
        self.dispatcher = MessageDispatcher(
            channel,
            self.reconciler,
            self.backend,
            self.dedup,
            drain_timeout=cfg.drain_timeout,
        )
        self.server: Optional[ConfigQueryServer] = None
        if serve_http:
            self.server = ConfigQueryServer(create_app(self.store), cfg)

        self._stop = threading.Event()
        self._started = False

    @property
    def running(self) -> bool:
        return self._started and not self._stop.is_set()

    def start(self) -> bool:
        """Start serving. Returns False when the agent is disabled.

        Raises:
            Exception: backend unusable or listener could not bind
        """
        if not self.cfg.enable:
            logger.info("appsd is disabled, not starting")
            return False

        self.backend.check()
        logger.info(f"Using {self.backend.name} process backend")
        if self.server is not None:
            self.server.start()
        self.dispatcher.start(self._stop)
        self._started = True
        logger.info(f"appsd started (node={self.cfg.node_id or '-'}, namespace={self.cfg.register_node_namespace})")
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._stop.wait(timeout)

    def request_stop(self) -> None:
        self._stop.set()

    def stop(self) -> None:
        if not self._started:
            return
        logger.info("Stopping appsd...")
        self._stop.set()
        if self.server is not None:
            self.server.stop()
        drained = self.dispatcher.join()
        self._started = False
        logger.info(f"appsd stopped (drained={drained})")
