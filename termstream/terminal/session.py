"""
PTY session: one shell process, its replay buffer and its viewers.

All state mutation happens on the event loop thread that owns the session:
output ingestion, batching, flushing, viewer attach/detach and teardown.
Nothing here awaits, so a viewer attaching between two callbacks always
sees a complete buffer state.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from .base import PtyProcess
from .events import (
    CommandFinishedEvent,
    CommandStartedEvent,
    CwdChangedEvent,
    EventBus,
    TitleChangedEvent,
)
from .models import PtySessionInfo, ViewerClosedError
from .osc import (
    DEFAULT_OSC_BUFFER_MAX,
    CommandFinished,
    CommandStarted,
    CwdChanged,
    OscEvent,
    OscStateMachine,
    TitleChanged,
)

logger = logging.getLogger(__name__)

BUFFER_MAX = 2 * 1024 * 1024
REPLAY_CHUNK_SIZE = 64 * 1024
READ_SIZE = 64 * 1024

Scheduler = Callable[[Callable[[], None]], object]


class Viewer(ABC):
    """
    A connection attached to a session's output.

    Sends must not block: implementations queue the data and deliver it on
    their own. A viewer whose transport is gone raises ``ViewerClosedError``.
    """

    @abstractmethod
    def send_data(self, data: bytes) -> None:
        """Queue terminal output for delivery."""

    @abstractmethod
    def send_cursor(self, cursor: int) -> None:
        """Queue the "replay complete, now live at cursor" control frame."""

    @abstractmethod
    def close(self, code: int, reason: str) -> None:
        """Close the connection after everything already queued."""


class PtySession:
    """
    Owns one spawned shell process, an append-only bounded output buffer
    addressed by a global byte cursor, and the set of attached viewers.

    Invariant: ``buffer_start + len(buffer) == cursor``.
    """

    def __init__(
        self,
        name: str,
        process: PtyProcess,
        bus: EventBus,
        cols: int,
        rows: int,
        cwd: Optional[str] = None,
        buffer_max: int = BUFFER_MAX,
        replay_chunk_size: int = REPLAY_CHUNK_SIZE,
        osc_buffer_max: int = DEFAULT_OSC_BUFFER_MAX,
        schedule: Optional[Scheduler] = None,
    ):
        self.name = name
        self.process = process
        self.cols = cols
        self.rows = rows

        # Shell integration state, advisory only
        self.cwd = cwd
        self.title: Optional[str] = None
        self.current_command: Optional[str] = None

        self._bus = bus
        self._osc = OscStateMachine(max_buffer=osc_buffer_max)
        self._buffer_max = buffer_max
        self._replay_chunk_size = replay_chunk_size

        self._buffer = bytearray()
        self.buffer_start = 0
        self.cursor = 0

        self._subscribers: Dict[Viewer, None] = {}

        # Output batching
        self._schedule = schedule
        self._pending: List[bytes] = []
        self._flush_scheduled = False

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._on_eof: Optional[Callable[["PtySession"], None]] = None
        self._reading = False
        self.closed = False

    @property
    def buffer(self) -> bytes:
        return bytes(self._buffer)

    @property
    def viewer_count(self) -> int:
        return len(self._subscribers)

    def info(self) -> PtySessionInfo:
        return PtySessionInfo(
            name=self.name,
            cwd=self.cwd,
            title=self.title,
            command=self.current_command,
            cols=self.cols,
            rows=self.rows,
        )

    # ===== Process output =====

    def start(
        self,
        loop: asyncio.AbstractEventLoop,
        on_eof: Callable[["PtySession"], None],
    ) -> None:
        """
        Start watching the process output on ``loop``.

        Args:
            loop: The event loop that owns this session
            on_eof: Called once when the process side of the PTY closes
        """
        self._loop = loop
        self._on_eof = on_eof
        if self._schedule is None:
            self._schedule = loop.call_soon
        loop.add_reader(self.process.fileno(), self._on_readable)
        self._reading = True

    def stop_reading(self) -> None:
        if self._reading and self._loop is not None:
            self._reading = False
            try:
                self._loop.remove_reader(self.process.fileno())
            except (OSError, RuntimeError, ValueError) as e:
                logger.debug(f"Failed to remove reader for session {self.name}: {e}")

    def _on_readable(self) -> None:
        # One read per readiness callback; batching groups the callbacks
        # of one loop iteration.
        try:
            chunk = self.process.read(READ_SIZE)
        except OSError as e:
            logger.warning(f"Read failed for session {self.name}: {e}")
            chunk = b""

        if chunk:
            self.ingest(chunk)
            return

        self.stop_reading()
        self.flush()
        if self._on_eof is not None:
            on_eof, self._on_eof = self._on_eof, None
            on_eof(self)

    def ingest(self, chunk: bytes) -> None:
        """
        Accept one chunk of process output.

        The chunk is scanned for OSC sequences immediately and queued for
        the next flush. The flush is deferred through the scheduler so every
        chunk delivered by the same loop iteration leaves as one message.
        """
        for event in self._osc.feed(chunk):
            self._apply_osc_event(event)

        self._pending.append(chunk)
        if not self._flush_scheduled:
            self._flush_scheduled = True
            if self._schedule is None:
                raise RuntimeError(f"Session {self.name} has no scheduler")
            self._schedule(self.flush)

    def flush(self) -> None:
        """Append pending output to the buffer and fan it out to viewers."""
        self._flush_scheduled = False
        if not self._pending:
            return
        batch = b"".join(self._pending)
        self._pending = []

        self._append_to_buffer(batch)

        for viewer in list(self._subscribers):
            try:
                viewer.send_data(batch)
            except ViewerClosedError:
                logger.warning(f"Dropping viewer of session {self.name}: send failed")
                self._subscribers.pop(viewer, None)

    def _append_to_buffer(self, data: bytes) -> None:
        self._buffer += data
        self.cursor += len(data)

        excess = len(self._buffer) - self._buffer_max
        if excess > 0:
            del self._buffer[:excess]
            self.buffer_start += excess

    def _apply_osc_event(self, event: OscEvent) -> None:
        if isinstance(event, CwdChanged):
            self.cwd = event.cwd
            self._bus.publish(CwdChangedEvent(self.name, cwd=event.cwd))
        elif isinstance(event, TitleChanged):
            self.title = event.title
            self._bus.publish(TitleChangedEvent(self.name, title=event.title))
        elif isinstance(event, CommandStarted):
            self.current_command = event.command
            self._bus.publish(CommandStartedEvent(self.name, command=event.command))
        elif isinstance(event, CommandFinished):
            self.current_command = None
            self._bus.publish(
                CommandFinishedEvent(
                    self.name,
                    command=event.command,
                    exit_code=event.exit_code,
                    duration_ms=event.duration_ms,
                )
            )

    # ===== Viewers =====

    def attach(self, viewer: Viewer, cursor: int, cols: int, rows: int) -> bool:
        """
        Attach a viewer, replaying retained output from ``cursor``.

        Replay starts at ``max(cursor, buffer_start)``; a caller can detect
        evicted output by comparing the requested cursor with
        ``buffer_start``. The cursor control frame always follows the
        replay, after which the viewer receives live output.

        Returns:
            False if the viewer failed during replay and was not attached
        """
        replay_from = max(cursor, self.buffer_start)

        try:
            if replay_from < self.cursor:
                offset = replay_from - self.buffer_start
                step = self._replay_chunk_size
                for i in range(offset, len(self._buffer), step):
                    viewer.send_data(bytes(self._buffer[i : i + step]))
            viewer.send_cursor(self.cursor)
        except ViewerClosedError:
            logger.warning(f"Viewer of session {self.name} closed during replay")
            return False

        self._subscribers[viewer] = None

        if (cols, rows) != (self.cols, self.rows):
            self.resize(cols, rows)

        return True

    def detach(self, viewer: Viewer) -> None:
        self._subscribers.pop(viewer, None)

    def close_viewers(self, code: int, reason: str) -> None:
        viewers = list(self._subscribers)
        self._subscribers.clear()
        for viewer in viewers:
            try:
                viewer.close(code, reason)
            except ViewerClosedError:
                pass

    # ===== Input and control =====

    def write(self, data: bytes) -> None:
        if self.closed:
            return
        try:
            self.process.write(data)
        except RuntimeError as e:
            logger.warning(f"Write to session {self.name} failed: {e}")

    def resize(self, cols: int, rows: int) -> None:
        self.cols = cols
        self.rows = rows
        if self.closed:
            return
        try:
            self.process.set_size(cols, rows)
        except RuntimeError as e:
            logger.warning(f"Resize of session {self.name} failed: {e}")

    def terminate(self) -> None:
        """Stop reading and signal the process, without waiting for exit."""
        self.closed = True
        self.stop_reading()
        self._pending = []
        try:
            self.process.terminate()
        except Exception as e:
            logger.warning(f"Failed to terminate session {self.name}: {e}")
