from __future__ import annotations

import io
import threading
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from runnable.local.role import ProcessRole
from runnable.local.supervisor import Supervisor
from runnable.local.supervisor.process_utils import EXIT, ONLINE, ProcessEvent


class FakeProcessBackend:
    """Stands in for PopenBackend: records every interaction and reports queued events."""

    def __init__(self, first_pid: int = 1000) -> None:
        self.next_pid = first_pid
        self.spawned: List[Tuple[int, int]] = []
        self.alive: set = set()
        self.messages: List[Tuple[int, str]] = []
        self.signals: List[Tuple[int, int]] = []
        self.killed: List[int] = []
        self.exits: List[int] = []
        self.events: List[ProcessEvent] = []
        self.fail_spawns = 0

    def spawn(self, worker_id: int) -> int:
        if self.fail_spawns:
            self.fail_spawns -= 1
            raise OSError("fork failed")
        pid = self.next_pid
        self.next_pid += 1
        self.spawned.append((worker_id, pid))
        self.alive.add(pid)
        return pid

    def send_message(self, pid: int, message_type: str) -> bool:
        self.messages.append((pid, message_type))
        return pid in self.alive

    def send_signal(self, pid: int, signum: int) -> bool:
        self.signals.append((pid, signum))
        return pid in self.alive

    def kill(self, pid: int) -> bool:
        self.killed.append(pid)
        was_alive = pid in self.alive
        self.alive.discard(pid)
        return was_alive

    def poll(self) -> List[ProcessEvent]:
        events, self.events = self.events, []
        return events

    def exit(self, code: int = 0) -> None:
        self.exits.append(code)

    #* --- Helpers for tests ---
    def emit_online(self, pid: int) -> None:
        self.events.append(ProcessEvent(ONLINE, pid))

    def emit_exit(self, pid: int, exit_code: Optional[int] = None, signal: Optional[int] = None) -> None:
        self.alive.discard(pid)
        self.events.append(ProcessEvent(EXIT, pid, exit_code, signal))

    def emit_all_online(self) -> None:
        for pid in sorted(self.alive):
            self.emit_online(pid)


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingInstaller:
    """Replaces `signal.signal`: keeps the handlers so tests can fire them."""

    def __init__(self) -> None:
        self.handlers: Dict[str, Callable[..., None]] = {}
        self.calls = 0

    def __call__(self, name: str, handler: Callable[..., None]) -> None:
        self.calls += 1
        self.handlers[name] = handler

    def fire(self, name: str) -> None:
        self.handlers[name](None, None)


class BlockingStream:
    """A control stream whose readline blocks until a line is fed or it is closed."""

    def __init__(self) -> None:
        self._lines: List[str] = []
        self._cond = threading.Condition()
        self._closed = False

    def feed(self, line: str) -> None:
        with self._cond:
            self._lines.append(line)
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def readline(self) -> str:
        with self._cond:
            while not self._lines and not self._closed:
                self._cond.wait()
            if self._lines:
                return self._lines.pop(0)
            return ""


@pytest.fixture(autouse=True)
def reset_supervisor_singleton():
    Supervisor._instance = None
    yield
    Supervisor._instance = None


@pytest.fixture
def backend():
    return FakeProcessBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def installer():
    return RecordingInstaller()


@pytest.fixture
def control_stream():
    stream = BlockingStream()
    yield stream
    stream.close()


@pytest.fixture
def make_supervisor(backend, clock, installer, control_stream, tmp_path):
    def factory(role: ProcessRole = ProcessRole.MASTER, workers_num: int = 3, **kwargs) -> Supervisor:
        kwargs.setdefault("pid_file_path", tmp_path / "runnable.pid")
        kwargs.setdefault("grace_period", 5.0)
        return Supervisor(
            workers_num=workers_num,
            role=role,
            backend=backend,
            clock=clock,
            signal_installer=installer,
            control_stream=control_stream,
            master_title="",
            worker_title="",
            **kwargs,
        )
    return factory


@pytest.fixture
def empty_stream():
    return io.StringIO("")
