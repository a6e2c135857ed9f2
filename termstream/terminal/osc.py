"""
Streaming scanner for OSC escape sequences in raw PTY output.

The scanner is a read-only side channel: it never modifies the stream, it
only reports what the shell announced through it.

Recognised sequences (terminated by BEL or ``ESC \\``):

- OSC 7:   ``ESC ]7;file://hostname/path BEL``  -> CwdChanged(path)
- OSC 133: shell integration markers A/B/C/D -> command lifecycle
- OSC 2:   ``ESC ]2;title BEL``                 -> TitleChanged(title)

A BEL outside of any sequence is reported as ``Bell``.
"""

import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Union
from urllib.parse import unquote, urlparse

ESC = 0x1B
BEL = 0x07
OSC_INTRODUCER = 0x5D  # "]"

DEFAULT_OSC_BUFFER_MAX = 4096

_OUTSIDE_STOP = re.compile(rb"[\x07\x1b]")
_INSIDE_STOP = re.compile(rb"[\x07\\]")
_LEADING_INT = re.compile(r"^\s*([-+]?\d+)")


class PromptPhase(Enum):
    """Shell prompt phase driven by OSC 133 markers."""

    IDLE = "idle"
    PROMPT = "prompt"
    INPUT = "input"
    RUNNING = "running"


@dataclass(frozen=True)
class CwdChanged:
    cwd: str


@dataclass(frozen=True)
class TitleChanged:
    title: str


@dataclass(frozen=True)
class CommandStarted:
    command: str


@dataclass(frozen=True)
class CommandFinished:
    command: str
    exit_code: int
    duration_ms: int


@dataclass(frozen=True)
class Bell:
    pass


OscEvent = Union[CwdChanged, TitleChanged, CommandStarted, CommandFinished, Bell]


class OscStateMachine:
    """
    Incremental OSC scanner.

    ``feed`` consumes one chunk of output and returns the events it
    completed. Sequences may be split across any number of chunks; the
    partial-sequence buffer carries them over. A sequence that grows past
    ``max_buffer`` bytes without a terminator is discarded and scanning
    resumes for the next introducer.
    """

    def __init__(
        self,
        max_buffer: int = DEFAULT_OSC_BUFFER_MAX,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._max_buffer = max_buffer
        self._clock = clock or time.monotonic

        self._phase = PromptPhase.IDLE
        self._title = ""
        self._command = ""
        self._command_started_at: Optional[float] = None

        self._osc_buffer = bytearray()
        self._in_osc = False
        self._pending_esc = False

    @property
    def phase(self) -> PromptPhase:
        return self._phase

    @property
    def title(self) -> str:
        return self._title

    @property
    def command(self) -> str:
        return self._command

    def feed(self, data: bytes) -> List[OscEvent]:
        """
        Scan a chunk of PTY output.

        Args:
            data: Raw output bytes

        Returns:
            Events completed by this chunk, in stream order
        """
        events: List[OscEvent] = []
        i = 0
        n = len(data)

        if self._pending_esc and n:
            self._pending_esc = False
            if data[0] == OSC_INTRODUCER:
                self._start_osc()
                i = 1

        while i < n:
            if self._in_osc:
                i = self._scan_inside(data, i, events)
            else:
                i = self._scan_outside(data, i, events)

        return events

    def _start_osc(self) -> None:
        self._in_osc = True
        self._osc_buffer.clear()

    def _reset_osc(self) -> None:
        self._in_osc = False
        self._osc_buffer.clear()

    def _scan_outside(self, data: bytes, i: int, events: List[OscEvent]) -> int:
        match = _OUTSIDE_STOP.search(data, i)
        if match is None:
            return len(data)

        pos = match.start()
        if data[pos] == BEL:
            events.append(Bell())
            return pos + 1

        if pos + 1 >= len(data):
            # ESC is the last byte; the introducer may arrive with the next chunk
            self._pending_esc = True
            return len(data)
        if data[pos + 1] == OSC_INTRODUCER:
            self._start_osc()
            return pos + 2
        return pos + 1

    def _scan_inside(self, data: bytes, i: int, events: List[OscEvent]) -> int:
        match = _INSIDE_STOP.search(data, i)
        end = match.start() if match else len(data)

        room = self._max_buffer - len(self._osc_buffer)
        if end - i > room:
            # unterminated sequence overflowed, drop it
            self._reset_osc()
            return i + room + 1

        self._osc_buffer += data[i:end]
        if match is None:
            return end

        if data[end] == BEL:
            self._finish_osc(bytes(self._osc_buffer), events)
        elif self._osc_buffer.endswith(b"\x1b"):
            self._finish_osc(bytes(self._osc_buffer[:-1]), events)
        else:
            self._osc_buffer.append(data[end])
            if len(self._osc_buffer) > self._max_buffer:
                self._reset_osc()
        return end + 1

    def _finish_osc(self, content: bytes, events: List[OscEvent]) -> None:
        self._reset_osc()
        self._dispatch(content.decode("utf-8", errors="replace"), events)

    def _dispatch(self, content: str, events: List[OscEvent]) -> None:
        code, sep, payload = content.partition(";")
        if not sep:
            return

        if code == "7":
            self._handle_cwd(payload, events)
        elif code == "133":
            self._handle_prompt_marker(payload, events)
        elif code == "2":
            self._title = payload.strip()
            events.append(TitleChanged(self._title))

    def _handle_cwd(self, payload: str, events: List[OscEvent]) -> None:
        url = urlparse(payload)
        if url.scheme == "file":
            events.append(CwdChanged(unquote(url.path) or "/"))
        elif not url.scheme and payload.startswith("/"):
            events.append(CwdChanged(payload))

    def _handle_prompt_marker(self, payload: str, events: List[OscEvent]) -> None:
        marker = payload[:1]

        if marker == "A":
            self._phase = PromptPhase.PROMPT
        elif marker == "B":
            self._phase = PromptPhase.INPUT
        elif marker == "C":
            self._phase = PromptPhase.RUNNING
            self._command = self._title
            self._command_started_at = self._clock()
            if self._command:
                events.append(CommandStarted(self._command))
        elif marker == "D":
            exit_code = _parse_exit_code(payload)
            if self._command_started_at is not None:
                duration_ms = int((self._clock() - self._command_started_at) * 1000)
            else:
                duration_ms = 0
            command = self._command

            self._phase = PromptPhase.IDLE
            if command:
                events.append(CommandFinished(command, exit_code, max(duration_ms, 0)))
            self._command = ""
            self._command_started_at = None


def _parse_exit_code(payload: str) -> int:
    parts = payload.split(";")
    if len(parts) >= 2:
        match = _LEADING_INT.match(parts[1])
        if match:
            return int(match.group(1))
    return 0
