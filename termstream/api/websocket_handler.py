"""
WebSocket binding between one viewer connection and one PTY session.
"""

import asyncio
import codecs
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import WebSocket

from ..terminal.models import ControlFrameError, ViewerClosedError
from ..terminal.registry import SessionRegistry
from ..terminal.session import BUFFER_MAX, PtySession, Viewer
from .auth import WS_POLICY_VIOLATION
from .protocol import CursorSync, ResizeRequest, decode_control, encode_control

logger = logging.getLogger(__name__)

_TEXT = "text"
_BYTES = "bytes"
_CLOSE = "close"

WS_TRY_AGAIN_LATER = 1013


class WebSocketViewer(Viewer):
    """
    Viewer that delivers session output over a WebSocket.

    Sends are queued and written by a dedicated pump task, so a slow socket
    never stalls the session or its other viewers. Output bytes go through
    an incremental UTF-8 decoder, which keeps a multi-byte character split
    across two flushes intact in the text frames.

    At most ``max_pending`` characters may wait in the queue. A viewer that
    falls further behind is closed with 1013 and can reconnect from its
    last cursor.
    """

    def __init__(
        self,
        websocket: WebSocket,
        on_failure: Optional[Callable[["WebSocketViewer"], None]] = None,
        max_pending: int = 2 * BUFFER_MAX,
    ):
        self._websocket = websocket
        self._on_failure = on_failure
        self._outbox: "asyncio.Queue[Tuple[str, Any]]" = asyncio.Queue()
        self._pending = 0
        self._max_pending = max_pending
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._closed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._pump())

    def send_data(self, data: bytes) -> None:
        self._ensure_open()
        text = self._decoder.decode(data)
        if not text:
            return

        if self._pending + len(text) > self._max_pending:
            logger.warning(
                f"WebSocket viewer fell behind by {self._pending + len(text)} characters, closing"
            )
            self._discard_queued()
            self.close(WS_TRY_AGAIN_LATER, "viewer too slow")
            raise ViewerClosedError("viewer fell too far behind")

        self._pending += len(text)
        self._outbox.put_nowait((_TEXT, text))

    def _discard_queued(self) -> None:
        while not self._outbox.empty():
            self._outbox.get_nowait()
        self._pending = 0

    def send_cursor(self, cursor: int) -> None:
        self._ensure_open()
        self._outbox.put_nowait((_BYTES, encode_control(CursorSync(cursor=cursor))))

    def close(self, code: int, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        self._outbox.put_nowait((_CLOSE, (code, reason)))

    def _ensure_open(self) -> None:
        if self._closed:
            raise ViewerClosedError("viewer connection is closed")

    async def _pump(self) -> None:
        try:
            while True:
                kind, payload = await self._outbox.get()
                if kind == _TEXT:
                    await self._websocket.send_text(payload)
                    self._pending = max(0, self._pending - len(payload))
                elif kind == _BYTES:
                    await self._websocket.send_bytes(payload)
                else:
                    code, reason = payload
                    await self._websocket.close(code=code, reason=reason)
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"WebSocket send failed: {e}")
            self._closed = True
            if self._on_failure is not None:
                self._on_failure(self)

    async def stop(self) -> None:
        """Stop delivering; anything still queued is discarded."""
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass


class PtySocketHandler:
    """
    Connection handler for ``/pty/{name}/ws``.

    The endpoint drives the lifecycle: ``on_open`` once, ``on_message`` per
    received frame, ``on_error`` if receiving fails, ``on_close`` always.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        name: str,
        websocket: WebSocket,
        cursor: int,
        cols: int,
        rows: int,
    ):
        self._registry = registry
        self.name = name
        self._websocket = websocket
        self._cursor = cursor
        self._cols = cols
        self._rows = rows
        self.viewer: Optional[WebSocketViewer] = None
        self.session: Optional[PtySession] = None

    async def on_open(self, subprotocol: Optional[str] = None) -> bool:
        """
        Accept the socket and attach it to the session.

        Returns:
            False if the session does not exist; the socket is closed with
            1008 in that case
        """
        await self._websocket.accept(subprotocol=subprotocol or None)

        self.viewer = WebSocketViewer(
            self._websocket,
            on_failure=self._on_viewer_failure,
            max_pending=2 * self._registry.buffer_max,
        )
        self.viewer.start()

        self.session = self._registry.connect(
            self.name, self.viewer, self._cursor, self._cols, self._rows
        )
        if self.session is None:
            logger.info(f"[WebSocket] session {self.name} not found")
            await self.viewer.stop()
            await self._websocket.close(code=WS_POLICY_VIOLATION, reason="session not found")
            return False
        return True

    def on_message(self, message: Dict[str, Any]) -> None:
        data = message.get("bytes")
        if data is not None:
            self._handle_control(data)
            return

        text = message.get("text")
        if text is not None:
            self._registry.write(self.name, text.encode("utf-8"))

    def _handle_control(self, data: bytes) -> None:
        try:
            frame = decode_control(data)
        except ControlFrameError as e:
            logger.warning(f"[WebSocket] malformed control frame for {self.name}: {e}")
            return

        if isinstance(frame, ResizeRequest):
            self._registry.resize(self.name, frame.cols, frame.rows)
        else:
            logger.warning(
                f"[WebSocket] unexpected {type(frame).__name__} from client of {self.name}"
            )

    def on_error(self, error: Exception) -> None:
        logger.warning(f"[WebSocket] error on session {self.name}: {error}")

    async def on_close(self) -> None:
        if self.viewer is None:
            return
        self._registry.disconnect(self.name, self.viewer)
        await self.viewer.stop()

    def _on_viewer_failure(self, viewer: WebSocketViewer) -> None:
        self._registry.disconnect(self.name, viewer)
