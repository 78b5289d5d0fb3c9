"""Process control backends, selected by configuration."""

from __future__ import annotations

from appsd.backend.base import ProcessBackend, ProcessHandle, ProcessTable, PsutilProcessTable
from appsd.backend.direct import DirectBackend
from appsd.backend.supervisor import SupervisorBackend, connect
from appsd.config import BACKEND_SUPERVISOR, AppsdConfig


def create_backend(cfg: AppsdConfig) -> ProcessBackend:
    """Backend named by ``cfg.backend``"""
    if cfg.backend == BACKEND_SUPERVISOR:
        return SupervisorBackend(connect(cfg.supervisor_url))
    return DirectBackend(
        stop_timeout=cfg.stop_timeout,
        stop_retries=cfg.stop_retries,
        poll_interval=cfg.stop_poll_interval,
    )


__all__ = [
    "ProcessBackend",
    "ProcessHandle",
    "ProcessTable",
    "PsutilProcessTable",
    "DirectBackend",
    "SupervisorBackend",
    "create_backend",
]
