"""
Process control backend interface

ProcessBackend: start/stop/find/reload of one native application
ProcessTable: view of the running process table (psutil by default)
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterator, Optional, Protocol

import psutil

from appsd.errors import AppsdError, ErrorKind, SignalFailure
from appsd.models import AppCommand

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessHandle:
    """A running OS process located by executable path (or supervisor name)"""
    pid: int
    exe: str
    name: str = ""


class ProcessTable(Protocol):
    """Read and signal access to the OS process table."""

    def processes(self) -> Iterator[ProcessHandle]:
        ...

    def is_running(self, handle: ProcessHandle) -> bool:
        ...

    def send_signal(self, handle: ProcessHandle, sig: int) -> None:
        ...


class PsutilProcessTable:
    """ProcessTable backed by psutil"""

    def processes(self) -> Iterator[ProcessHandle]:
        for proc in psutil.process_iter(["pid", "exe", "name"]):
            exe = proc.info.get("exe")
            if not exe:
                # Kernel threads and processes we may not inspect
                continue
            yield ProcessHandle(pid=proc.info["pid"], exe=exe, name=proc.info.get("name") or "")

    def is_running(self, handle: ProcessHandle) -> bool:
        try:
            proc = psutil.Process(handle.pid)
            # Zombies have exited and only wait to be reaped
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    def send_signal(self, handle: ProcessHandle, sig: int) -> None:
        try:
            os.kill(handle.pid, sig)
        except ProcessLookupError:
            # Exited between the check and the signal
            logger.debug(f"Process {handle.pid} already gone before signal {sig}")
        except OSError as e:
            raise SignalFailure(f"failed to send signal {sig} to process {handle.pid}: {e}") from e


def find_by_exe(table: ProcessTable, path: str) -> Optional[ProcessHandle]:
    """First process whose executable path equals *path*"""
    for handle in table.processes():
        if handle.exe == path:
            return handle
    return None


def require_absolute(path: str) -> None:
    if not path or not PurePosixPath(path).is_absolute():
        raise AppsdError(ErrorKind.INVALID_PARAMETER, f"executable command must be absolute path: {path!r}")


class ProcessBackend(ABC):
    """
    Start/stop capability the reconciler is written against

    Implementations:
    - DirectBackend: spawn and signal processes directly
    - SupervisorBackend: delegate to a supervisord instance
    """

    name: str = "abstract"

    @abstractmethod
    def start(self, command: AppCommand) -> None:
        """Start the application.

        Raises:
            SpawnFailure: executable missing, unresolvable or failed
        """
        pass

    @abstractmethod
    def stop(self, command: AppCommand) -> None:
        """Stop the application.

        Raises:
            ProcessNotFound: nothing is running for this command
            SignalFailure: the stop request failed at the OS/supervisor level
        """
        pass

    @abstractmethod
    def find(self, command: AppCommand) -> Optional[ProcessHandle]:
        """Handle of the running application, or None"""
        pass

    def check(self) -> None:
        """Verify the backend is usable; raise to abort agent startup"""
        return None

    def reload(self, command: AppCommand) -> None:
        """Pick up a changed configuration file before the next start"""
        return None
