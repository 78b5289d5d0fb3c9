"""
Supervisor backend

Delegates native application lifecycle to a supervisord instance reached
over its XML-RPC interface (``unix://`` control socket or ``http://`` URL).

Processes are addressed by name: the application name is the supervisor
program/group name, and ``<conf_dir>/<app>.conf`` is its program section.
"""

from __future__ import annotations

import logging
import xmlrpc.client
from typing import Any, Optional

from supervisor.xmlrpc import Faults, SupervisorTransport

from appsd.backend.base import ProcessBackend, ProcessHandle
from appsd.errors import AppsdError, ErrorKind, ProcessNotFound, SignalFailure, SpawnFailure
from appsd.models import AppCommand

logger = logging.getLogger(__name__)

RUNNING_STATES = {"RUNNING", "STARTING"}


def connect(server_url: str, username: Optional[str] = None, password: Optional[str] = None) -> Any:
    """XML-RPC proxy for a supervisord control socket or URL"""
    transport = SupervisorTransport(username, password, server_url)
    # The host part is ignored for unix sockets but must be a valid URL
    return xmlrpc.client.ServerProxy("http://127.0.0.1", transport=transport)


class SupervisorBackend(ProcessBackend):
    """External supervisor strategy"""

    name = "supervisor"

    def __init__(self, proxy: Any, wait: bool = True):
        self.proxy = proxy
        self.wait = wait

    @property
    def _rpc(self) -> Any:
        return self.proxy.supervisor

    def check(self) -> None:
        """Fail fast when supervisord is unreachable or not running"""
        try:
            state = self._rpc.getState()
        except (OSError, xmlrpc.client.Error) as e:
            raise AppsdError(ErrorKind.SIGNAL_FAILURE, f"supervisord unreachable: {e}") from e
        if state.get("statename") != "RUNNING":
            raise AppsdError(ErrorKind.SIGNAL_FAILURE, f"supervisord is {state.get('statename')}")
        logger.info("Connected to supervisord")

    def find(self, command: AppCommand) -> Optional[ProcessHandle]:
        name = command.name
        try:
            info = self._rpc.getProcessInfo(name)
        except xmlrpc.client.Fault as e:
            if e.faultCode == Faults.BAD_NAME:
                return None
            raise SignalFailure(f"supervisor status of {name} failed: {e.faultString}") from e
        except OSError as e:
            raise SignalFailure(f"supervisor status of {name} failed: {e}") from e

        if info.get("statename") not in RUNNING_STATES:
            return None
        return ProcessHandle(pid=int(info.get("pid") or 0), exe=command.path, name=name)

    def start(self, command: AppCommand) -> None:
        name = command.name
        try:
            self._rpc.startProcess(name, self.wait)
        except xmlrpc.client.Fault as e:
            if e.faultCode == Faults.ALREADY_STARTED:
                logger.info(f"{name} already started by supervisor")
                return
            if e.faultCode == Faults.BAD_NAME:
                raise SpawnFailure(f"{name} is not known to supervisor") from e
            raise SpawnFailure(f"supervisor failed to start {name}: {e.faultString}") from e
        except OSError as e:
            raise SpawnFailure(f"supervisor failed to start {name}: {e}") from e
        logger.info(f"supervisor started {name}")

    def stop(self, command: AppCommand) -> None:
        name = command.name
        if self.find(command) is None:
            raise ProcessNotFound(f"{name} is not running under supervisor")
        try:
            self._rpc.stopProcess(name, self.wait)
        except xmlrpc.client.Fault as e:
            if e.faultCode == Faults.NOT_RUNNING:
                logger.info(f"{name} stopped before the request arrived")
                return
            raise SignalFailure(f"supervisor failed to stop {name}: {e.faultString}") from e
        except OSError as e:
            raise SignalFailure(f"supervisor failed to stop {name}: {e}") from e
        logger.info(f"supervisor stopped {name}")

    def reload(self, command: AppCommand) -> None:
        """Reread configuration and apply the diff for this application's group.

        Same effect as ``supervisorctl update <app>``.
        """
        group = command.name
        try:
            added, changed, removed = self._rpc.reloadConfig()[0]
            if group in removed or group in changed:
                self._remove_group(group)
            if group in added or group in changed:
                self._rpc.addProcessGroup(group)
        except xmlrpc.client.Fault as e:
            raise SpawnFailure(f"supervisor failed to reload {group}: {e.faultString}") from e
        except OSError as e:
            raise SpawnFailure(f"supervisor failed to reload {group}: {e}") from e
        logger.info(f"supervisor reloaded {group} (added={added}, changed={changed}, removed={removed})")

    def _remove_group(self, group: str) -> None:
        try:
            self._rpc.stopProcessGroup(group)
        except xmlrpc.client.Fault as e:
            if e.faultCode != Faults.BAD_NAME:
                raise
        self._rpc.removeProcessGroup(group)
