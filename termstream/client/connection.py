"""
Client-side PTY connections.

A PtyConnection owns the WebSocket of one session and outlives whatever
UI widget happens to display it: widgets subscribe and unsubscribe for
output but never open or close the socket themselves. The
PtyConnectionManager keeps at most one connection per session name.
"""

import asyncio
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Set, Union
from urllib.parse import quote, urlencode

import httpx
import websockets

from ..api.protocol import TAG_CURSOR_SYNC, ResizeRequest, decode_control, encode_control
from ..terminal.models import ControlFrameError
from ..terminal.osc import Bell, OscStateMachine, TitleChanged
from .api_client import TermstreamApiClient

logger = logging.getLogger(__name__)

FRAME_INTERVAL = 1 / 60
CLOSE_ABNORMAL = 1006

Unsubscribe = Callable[[], None]


class PtySubscriber:
    """Receiver of a connection's output. Override what you need."""

    def on_data(self, data: str) -> None:
        pass

    def on_bell(self) -> None:
        pass

    def on_title(self, title: str) -> None:
        pass

    def on_replay_end(self) -> None:
        pass

    def on_close(self, code: int, reason: str) -> None:
        pass


class PtyConnection:
    """
    One WebSocket to one PTY session.

    After (re)connecting the connection is *replaying*: text frames are
    held back until the server's cursor-sync frame arrives, then delivered
    to subscribers as a single batch. From then on text frames are
    coalesced and flushed at most once per ``frame_interval``.
    """

    def __init__(
        self,
        name: str,
        server_url: str,
        token: str,
        frame_interval: float = FRAME_INTERVAL,
        connector: Optional[Callable[..., Any]] = None,
        api_client: Optional[TermstreamApiClient] = None,
    ):
        self.name = name
        self.server_url = server_url.rstrip("/")
        self.token = token
        self.cursor = 0

        self._frame_interval = frame_interval
        self._connector = connector or websockets.connect
        self._api = api_client or TermstreamApiClient(self.server_url, token)

        self._subscribers: List[PtySubscriber] = []
        self._task: Optional[asyncio.Task] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._open = False

        self._replaying = True
        self._replay_chunks: List[str] = []
        self._replay_title: Optional[str] = None

        self._write_pending: List[str] = []
        self._write_handle: Optional[asyncio.TimerHandle] = None

        self._osc = OscStateMachine()
        self._background: Set[asyncio.Task] = set()

    def ws_url(self, cols: int, rows: int) -> str:
        base = re.sub(r"^http", "ws", self.server_url)
        query = urlencode(
            {"cursor": self.cursor, "cols": cols, "rows": rows, "token": self.token}
        )
        return f"{base}/pty/{quote(self.name)}/ws?{query}"

    def connect(self, cols: int, rows: int) -> asyncio.Task:
        """
        Open the socket in the background, resuming from ``self.cursor``.

        Must be called from a running event loop. Does nothing if a socket
        is already open or opening.
        """
        if self._task is not None and not self._task.done():
            return self._task

        self._replaying = True
        self._replay_chunks = []
        self._replay_title = None
        self._task = asyncio.get_running_loop().create_task(
            self._run(self.ws_url(cols, rows))
        )
        return self._task

    async def _run(self, url: str) -> None:
        code, reason = CLOSE_ABNORMAL, ""
        try:
            async with self._connector(url, max_size=None) as ws:
                self._outbox = asyncio.Queue()
                self._open = True
                writer = asyncio.create_task(self._write_loop(ws, self._outbox))
                try:
                    async for message in ws:
                        self.on_message(message)
                except websockets.ConnectionClosed as e:
                    logger.debug(f"[{self.name}] connection lost: {e}")
                finally:
                    self._open = False
                    writer.cancel()
            code = ws.close_code or CLOSE_ABNORMAL
            reason = ws.close_reason or ""
        except (OSError, asyncio.TimeoutError, websockets.InvalidHandshake) as e:
            logger.warning(f"[{self.name}] could not connect: {e}")
            reason = str(e)

        self._open = False
        self._outbox = None
        self.on_close(code, reason)

    async def _write_loop(self, ws: Any, outbox: asyncio.Queue) -> None:
        while True:
            payload = await outbox.get()
            try:
                await ws.send(payload)
            except websockets.ConnectionClosed:
                return

    def on_message(self, message: Union[str, bytes]) -> None:
        """Handle one frame received from the server."""
        if isinstance(message, (bytes, bytearray)):
            self._handle_control(bytes(message))
        elif self._replaying:
            self._scan(message, live=False)
            self._replay_chunks.append(message)
        else:
            # Text frames are decoded output, so their length says nothing
            # about the server's byte cursor; only cursor frames move it.
            self._scan(message, live=True)
            self._schedule_write(message)

    def on_close(self, code: int, reason: str) -> None:
        self._flush_writes()
        self._notify("on_close", code, reason)

    def _handle_control(self, data: bytes) -> None:
        if not data or data[0] != TAG_CURSOR_SYNC:
            logger.debug(f"[{self.name}] ignoring control frame {data[:1].hex()}")
            return

        try:
            self.cursor = decode_control(data).cursor
        except ControlFrameError as e:
            logger.warning(f"[{self.name}] malformed cursor frame: {e}")
        self._flush_replay()

    def _scan(self, text: str, live: bool) -> None:
        for event in self._osc.feed(text.encode("utf-8")):
            if isinstance(event, TitleChanged):
                if live:
                    self._notify("on_title", event.title)
                else:
                    self._replay_title = event.title
            elif isinstance(event, Bell) and live:
                self._notify("on_bell")

    def _flush_replay(self) -> None:
        if not self._replaying:
            return
        self._replaying = False

        if self._replay_chunks:
            batch = "".join(self._replay_chunks)
            self._replay_chunks = []
            self._emit(batch)

        if self._replay_title is not None:
            title, self._replay_title = self._replay_title, None
            self._notify("on_title", title)

        self._notify("on_replay_end")

    def _schedule_write(self, data: str) -> None:
        self._write_pending.append(data)
        if self._write_handle is None:
            self._write_handle = asyncio.get_running_loop().call_later(
                self._frame_interval, self._flush_writes
            )

    def _flush_writes(self) -> None:
        if self._write_handle is not None:
            self._write_handle.cancel()
            self._write_handle = None
        if not self._write_pending:
            return
        batch = "".join(self._write_pending)
        self._write_pending = []
        self._emit(batch)

    def _emit(self, data: str) -> None:
        self._notify("on_data", data)

    def _notify(self, method: str, *args: Any) -> None:
        for subscriber in list(self._subscribers):
            try:
                getattr(subscriber, method)(*args)
            except Exception:
                logger.exception(f"[{self.name}] subscriber {method} failed")

    def subscribe(self, subscriber: PtySubscriber) -> Unsubscribe:
        """Register for output. Does not affect the connection's lifetime."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def send(self, data: str) -> None:
        """Forward keystrokes. Dropped when the socket is not open."""
        if self._open and self._outbox is not None:
            self._outbox.put_nowait(data)

    def resize(self, cols: int, rows: int) -> None:
        if self._open and self._outbox is not None:
            self._outbox.put_nowait(encode_control(ResizeRequest(cols=cols, rows=rows)))

    def is_connected(self) -> bool:
        return self._open

    def destroy(self) -> None:
        """
        Close the socket, drop subscribers and pending output, and ask the
        server to kill the session. Subscribers get no close callback.
        """
        if self._write_handle is not None:
            self._write_handle.cancel()
            self._write_handle = None
        self._write_pending = []
        self._replay_chunks = []
        self._subscribers.clear()

        self._open = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"[{self.name}] no running event loop, skipping remote kill")
            return
        task = loop.create_task(self._kill_remote())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _kill_remote(self) -> None:
        try:
            await self._api.kill_session(self.name)
        except (httpx.HTTPError, OSError) as e:
            logger.debug(f"[{self.name}] kill request failed: {e}")


ConnectionFactory = Callable[[str, str, str], PtyConnection]


class PtyConnectionManager:
    """Owns every PtyConnection of a client, keyed by session name."""

    def __init__(self, connection_factory: Optional[ConnectionFactory] = None):
        self._connections: Dict[str, PtyConnection] = {}
        self._server_url: Optional[str] = None
        self._token: Optional[str] = None
        self._connection_factory = connection_factory or PtyConnection

    def set_server_info(self, url: str, token: str) -> None:
        self._server_url = url
        self._token = token

    def create(self, name: str, cols: int, rows: int) -> PtyConnection:
        """
        Get the connection for ``name``, opening it if there is none yet.

        Raises:
            RuntimeError: If the server info has not been set
        """
        existing = self._connections.get(name)
        if existing is not None:
            return existing

        if not self._server_url or not self._token:
            raise RuntimeError("PtyConnectionManager: server info not set")

        connection = self._connection_factory(name, self._server_url, self._token)
        self._connections[name] = connection
        connection.connect(cols, rows)
        return connection

    def get(self, name: str) -> Optional[PtyConnection]:
        return self._connections.get(name)

    def destroy(self, name: str) -> None:
        connection = self._connections.pop(name, None)
        if connection is not None:
            connection.destroy()

    def destroy_all(self) -> None:
        for name in list(self._connections):
            self.destroy(name)
