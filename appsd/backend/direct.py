"""
Direct process backend

Spawns native applications with subprocess and stops them with signals.

- start: synchronous run, stdout/stderr captured and logged afterwards
- stop: SIGTERM with polling, retried, then a single SIGKILL
- find: scan the process table for a matching executable path

Applications meant to run as daemons must daemonize themselves; use the
supervisor backend otherwise.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from typing import Callable, Dict, List, Optional

from appsd.backend.base import (
    ProcessBackend,
    ProcessHandle,
    ProcessTable,
    PsutilProcessTable,
    find_by_exe,
    require_absolute,
)
from appsd.errors import ProcessNotFound, SpawnFailure
from appsd.models import AppCommand, is_executable

logger = logging.getLogger(__name__)

PROCESS_SHUTDOWN_TIMEOUT = 15.0
PROCESS_SHUTDOWN_RETRIES = 3


def merge_envs(base: Dict[str, str], envs: List[str]) -> Dict[str, str]:
    """Parent environment plus ``NAME=value`` entries, later entries win"""
    merged = dict(base)
    for entry in envs:
        name, sep, value = entry.partition("=")
        if not name or not sep:
            logger.warning(f"Ignoring malformed environment entry: {entry!r}")
            continue
        merged[name] = value
    return merged


class DirectBackend(ProcessBackend):
    """Spawn/signal strategy"""

    name = "direct"

    def __init__(
        self,
        table: Optional[ProcessTable] = None,
        stop_timeout: float = PROCESS_SHUTDOWN_TIMEOUT,
        stop_retries: int = PROCESS_SHUTDOWN_RETRIES,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        run_timeout: Optional[float] = None,
    ):
        if stop_timeout <= 0 or poll_interval <= 0:
            raise ValueError("stop_timeout and poll_interval must be positive")
        self.table = table or PsutilProcessTable()
        self.stop_timeout = stop_timeout
        self.stop_retries = stop_retries
        self.poll_interval = poll_interval
        self.run_timeout = run_timeout
        self._sleep = sleep
        self._clock = clock

    def start(self, command: AppCommand) -> None:
        if not is_executable(command.path):
            logger.error(f"cannot find command: {command.path}")
            raise SpawnFailure(f"executable not found or not absolute: {command.path!r}")

        env = merge_envs(dict(os.environ), command.envs)
        argv = [command.path, *command.args]

        try:
            result = subprocess.run(
                argv,
                env=env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.run_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise SpawnFailure(f"{command.path} did not finish within {self.run_timeout}s") from e
        except OSError as e:
            raise SpawnFailure(f"failed to execute {command.path}: {e}") from e

        logger.info(
            f"exec command: {command.path} {command.args}\n"
            f"out: {result.stdout}\nerr: {result.stderr}"
        )
        if result.returncode != 0:
            raise SpawnFailure(f"{command.path} exited with code {result.returncode}")

    def stop(self, command: AppCommand) -> None:
        handle = self.find(command)
        if handle is None:
            raise ProcessNotFound(f"no running process for {command.path}")

        running = True
        for attempt in range(1, self.stop_retries + 1):
            running = self.table.is_running(handle)
            if not running:
                break

            self.table.send_signal(handle, signal.SIGTERM)
            logger.info(f"Sent SIGTERM to {command.path} (PID {handle.pid}, attempt {attempt}/{self.stop_retries})")

            running = self._wait_exit(handle)
            if not running:
                break

        if running:
            logger.warning(f"Process {handle.pid} ignored SIGTERM, sending SIGKILL")
            self.table.send_signal(handle, signal.SIGKILL)

        logger.info(f"stop process: {command.path} success")

    def find(self, command: AppCommand) -> Optional[ProcessHandle]:
        require_absolute(command.path)
        return find_by_exe(self.table, command.path)

    def _wait_exit(self, handle: ProcessHandle) -> bool:
        """Poll until ``stop_timeout`` has elapsed; True if the process is still running"""
        deadline = self._clock() + self.stop_timeout
        while True:
            if not self.table.is_running(handle):
                return False
            remaining = deadline - self._clock()
            if remaining <= 0:
                return True
            self._sleep(min(self.poll_interval, remaining))
