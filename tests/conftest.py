"""
Test configuration and fixtures
"""

import asyncio
import os
import time
from typing import Callable, List, Optional, Tuple

import pytest

from termstream.terminal.base import PtyProcess
from termstream.terminal.events import BusEvent, EventBus
from termstream.terminal.models import ViewerClosedError
from termstream.terminal.registry import SessionRegistry
from termstream.terminal.session import Viewer

# pytest-asyncio runs in auto mode (see pyproject.toml), no custom
# event_loop fixture needed


class FakePtyProcess(PtyProcess):
    """
    Pipe-backed stand-in for a shell.

    ``emit`` plays the role of the shell printing something; with ``echo``
    enabled every write is printed back, like a tty in cooked mode.
    """

    def __init__(self, echo: bool = False, fail_spawn: Optional[Exception] = None):
        self.echo = echo
        self.fail_spawn = fail_spawn
        self.spawn_args: Optional[dict] = None
        self.size: Optional[Tuple[int, int]] = None
        self.written: List[bytes] = []
        self.terminated = False
        self.exit_code = 0
        self._read_fd: Optional[int] = None
        self._write_fd: Optional[int] = None

    def spawn(self, command, args, cwd, env, cols, rows):
        if self.fail_spawn is not None:
            raise self.fail_spawn
        self.spawn_args = {"command": command, "args": args, "cwd": cwd, "env": env}
        self.size = (cols, rows)
        self._read_fd, self._write_fd = os.pipe()

    @property
    def pid(self):
        return 4242 if self._read_fd is not None else None

    def fileno(self):
        return self._read_fd

    def read(self, size):
        return os.read(self._read_fd, size)

    def emit(self, data: bytes) -> None:
        os.write(self._write_fd, data)

    def write(self, data):
        self.written.append(data)
        if self.echo:
            self.emit(data)

    def set_size(self, cols, rows):
        self.size = (cols, rows)

    def is_alive(self):
        return self._write_fd is not None

    def finish(self, exit_code: int = 0) -> None:
        """Simulate the shell exiting: the reader sees EOF."""
        self.exit_code = exit_code
        if self._write_fd is not None:
            os.close(self._write_fd)
            self._write_fd = None

    def terminate(self):
        self.terminated = True
        self.finish(129)

    def wait(self):
        return self.exit_code

    def close(self) -> None:
        for fd in (self._read_fd, self._write_fd):
            if fd is not None:
                try:
                    os.close(fd)
                except OSError:
                    pass
        self._read_fd = self._write_fd = None


class FakeProcessFactory:
    """Process factory for the registry that remembers what it created."""

    def __init__(self):
        self.processes: List[FakePtyProcess] = []
        self.echo = False
        self.fail_spawn: Optional[Exception] = None

    def __call__(self) -> FakePtyProcess:
        process = FakePtyProcess(echo=self.echo, fail_spawn=self.fail_spawn)
        self.processes.append(process)
        return process

    @property
    def last(self) -> FakePtyProcess:
        return self.processes[-1]

    def close_all(self) -> None:
        for process in self.processes:
            process.close()


class ManualScheduler:
    """Scheduler that queues callbacks until the test runs them."""

    def __init__(self):
        self.callbacks: List[Callable[[], None]] = []

    def __call__(self, callback):
        self.callbacks.append(callback)

    def run(self) -> None:
        callbacks, self.callbacks = self.callbacks, []
        for callback in callbacks:
            callback()


class RecordingViewer(Viewer):
    """Viewer that records everything sent to it."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.data: List[bytes] = []
        self.cursors: List[int] = []
        self.closed_with: Optional[Tuple[int, str]] = None

    @property
    def received(self) -> bytes:
        return b"".join(self.data)

    def send_data(self, data):
        if self.fail:
            raise ViewerClosedError("gone")
        self.data.append(data)

    def send_cursor(self, cursor):
        if self.fail:
            raise ViewerClosedError("gone")
        self.cursors.append(cursor)

    def close(self, code, reason):
        self.closed_with = (code, reason)


def plain_env(extra=None):
    return dict(extra or {})


@pytest.fixture
def process_factory():
    factory = FakeProcessFactory()
    yield factory
    factory.close_all()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def viewer_class():
    return RecordingViewer


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def bus_events(bus) -> List[BusEvent]:
    """Every event published on ``bus`` during the test."""
    events: List[BusEvent] = []
    bus.subscribe_all(events.append, "recorder")
    return events


@pytest.fixture
def registry(bus, process_factory):
    registry = SessionRegistry(bus, process_factory=process_factory, env_builder=plain_env)
    yield registry
    registry.kill_all()


@pytest.fixture
def wait_until():
    """Await until ``predicate()`` is true, failing after ``timeout`` seconds."""

    async def _wait(predicate, timeout: float = 2.0, interval: float = 0.01):
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(interval)

    return _wait


@pytest.fixture
def poll_until():
    """Blocking variant of ``wait_until`` for tests driving a TestClient."""

    def _poll(predicate, timeout: float = 2.0, interval: float = 0.01):
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met in time")
            time.sleep(interval)

    return _poll
