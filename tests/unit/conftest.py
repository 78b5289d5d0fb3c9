import json
import signal
from typing import Dict, Iterator, List, Optional, Tuple

import pytest

from appsd.backend.base import ProcessBackend, ProcessHandle
from appsd.errors import AppsdError, ProcessNotFound
from appsd.models import AppCommand


class FakeProcessTable:
    """Process table with scripted SIGTERM behaviour.

    ``exit_after`` is the number of SIGTERMs a process needs before it exits;
    None means it ignores SIGTERM entirely.
    """

    def __init__(self, exit_after: Optional[int] = None):
        self.exit_after = exit_after
        self.handles: List[ProcessHandle] = []
        self.running: Dict[int, bool] = {}
        self.signals: List[Tuple[int, int]] = []
        self._terms: Dict[int, int] = {}

    def spawn(self, exe: str, pid: int = 4242) -> ProcessHandle:
        handle = ProcessHandle(pid=pid, exe=exe, name=exe.rsplit("/", 1)[-1])
        self.handles.append(handle)
        self.running[pid] = True
        return handle

    def processes(self) -> Iterator[ProcessHandle]:
        return iter([h for h in self.handles if self.running.get(h.pid)])

    def is_running(self, handle: ProcessHandle) -> bool:
        return self.running.get(handle.pid, False)

    def send_signal(self, handle: ProcessHandle, sig: int) -> None:
        self.signals.append((handle.pid, sig))
        if sig == signal.SIGKILL:
            self.running[handle.pid] = False
        elif sig == signal.SIGTERM:
            self._terms[handle.pid] = self._terms.get(handle.pid, 0) + 1
            if self.exit_after is not None and self._terms[handle.pid] >= self.exit_after:
                self.running[handle.pid] = False

    def sent(self, sig: int) -> int:
        return sum(1 for _, s in self.signals if s == sig)


class FakeBackend(ProcessBackend):
    """Records lifecycle calls; apps are running once started"""

    name = "fake"

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self.running: Dict[str, bool] = {}
        self.fail_on: Dict[str, AppsdError] = {}

    def _record(self, op: str, command: AppCommand) -> None:
        self.calls.append((op, command.name))
        if op in self.fail_on:
            raise self.fail_on[op]

    def start(self, command: AppCommand) -> None:
        self._record("start", command)
        self.running[command.name] = True

    def stop(self, command: AppCommand) -> None:
        if not self.running.get(command.name):
            raise ProcessNotFound(f"{command.name} is not running")
        self._record("stop", command)
        self.running[command.name] = False

    def find(self, command: AppCommand) -> Optional[ProcessHandle]:
        if self.running.get(command.name):
            return ProcessHandle(pid=1, exe=command.path, name=command.name)
        return None

    def reload(self, command: AppCommand) -> None:
        self._record("reload", command)

    def count(self, op: str) -> int:
        return sum(1 for o, _ in self.calls if o == op)


class FakeStore:
    """ConfigStoreClient stand-in answering from a dict keyed by (type, name or domain)"""

    def __init__(self):
        self.objects: Dict[Tuple[str, str], List[str]] = {}
        self.queries: List[Tuple[str, str, str]] = []
        self.error: Optional[AppsdError] = None

    def put(self, resource_type: str, name: str, obj: dict) -> None:
        self.objects.setdefault((resource_type, name), []).append(json.dumps(obj))

    def query(self, resource_type: str, name: str = "", domain: str = "") -> List[str]:
        self.queries.append((resource_type, name, domain))
        if self.error is not None:
            raise self.error
        return list(self.objects.get((resource_type, name or domain), []))


@pytest.fixture
def process_table():
    return FakeProcessTable


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()
