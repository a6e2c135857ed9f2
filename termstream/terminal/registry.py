"""
Session Registry

Creates, looks up, enumerates and destroys PTY sessions. The registry is
the sole owner of process lifetime: sessions leave it through an explicit
kill, through their process exiting, or through ``kill_all`` at shutdown.
"""

import asyncio
import logging
import os
import threading
import time
from typing import Callable, Dict, List, Mapping, Optional, Set

from .events import EventBus, PtyCreatedEvent, PtyExitedEvent
from .factory import ProcessFactory, PtyProcessFactory
from .models import (
    CreatePtyRequest,
    PtySessionInfo,
    SessionNotFoundError,
    SpawnError,
)
from .osc import DEFAULT_OSC_BUFFER_MAX
from .session import BUFFER_MAX, REPLAY_CHUNK_SIZE, PtySession, Viewer
from .shell_env import build_shell_env, get_default_shell

logger = logging.getLogger(__name__)

DEFAULT_SHELL_ARGS = ["--login"]

# WebSocket close codes used when a session goes away
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001

EnvBuilder = Callable[[Optional[Mapping[str, str]]], Dict[str, str]]


class SessionRegistry:
    """PTY session registry

    One instance per server. Dependencies (event bus, process factory,
    environment builder) are injected so tests can substitute them.
    """

    def __init__(
        self,
        bus: EventBus,
        process_factory: Optional[ProcessFactory] = None,
        env_builder: Optional[EnvBuilder] = None,
        buffer_max: int = BUFFER_MAX,
        replay_chunk_size: int = REPLAY_CHUNK_SIZE,
        osc_buffer_max: int = DEFAULT_OSC_BUFFER_MAX,
        name_prefix: str = "term",
    ):
        self._bus = bus
        self._process_factory = process_factory or PtyProcessFactory.create_process
        self._env_builder = env_builder or build_shell_env
        self._buffer_max = buffer_max
        self._replay_chunk_size = replay_chunk_size
        self._osc_buffer_max = osc_buffer_max
        self._name_prefix = name_prefix

        self._sessions: Dict[str, PtySession] = {}
        self._lock = threading.RLock()
        self._counter = 0
        self._exit_tasks: Set[asyncio.Task] = set()

        logger.info("SessionRegistry initialized")

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def buffer_max(self) -> int:
        return self._buffer_max

    def _generate_name(self) -> str:
        with self._lock:
            self._counter += 1
            return f"{self._name_prefix}-{int(time.time() * 1000)}-{self._counter}"

    async def create(self, request: CreatePtyRequest) -> PtySession:
        """
        Spawn a shell and register a new session for it.

        Args:
            request: Validated create request

        Returns:
            The new session, already streaming output

        Raises:
            SpawnError: When the process could not be created; nothing is
                registered and the spawn is not retried
        """
        loop = asyncio.get_running_loop()

        shell = request.shell or get_default_shell()
        args = request.shell_args if request.shell_args is not None else DEFAULT_SHELL_ARGS
        cwd = request.cwd or os.environ.get("HOME") or "/"
        name = self._generate_name()

        try:
            process = self._process_factory()
            # Resolving the login PATH and fork/exec may block briefly
            env = await loop.run_in_executor(None, self._env_builder, request.env)
            await loop.run_in_executor(
                None,
                process.spawn,
                shell,
                list(args),
                cwd,
                env,
                request.cols,
                request.rows,
            )
        except Exception as e:
            logger.error(f"Failed to create session {name} ({shell}): {e}")
            raise SpawnError(str(e), name) from e

        session = PtySession(
            name=name,
            process=process,
            bus=self._bus,
            cols=request.cols,
            rows=request.rows,
            cwd=cwd,
            buffer_max=self._buffer_max,
            replay_chunk_size=self._replay_chunk_size,
            osc_buffer_max=self._osc_buffer_max,
        )

        with self._lock:
            self._sessions[name] = session
        session.start(loop, self._on_session_eof)

        logger.info(f"Session {name} created (cwd={cwd}, pid={process.pid})")
        self._bus.publish(PtyCreatedEvent(name, cwd=cwd))
        return session

    def get(self, name: str) -> Optional[PtySession]:
        with self._lock:
            return self._sessions.get(name)

    def require(self, name: str) -> PtySession:
        """
        Raises:
            SessionNotFoundError: When no session has this name
        """
        session = self.get(name)
        if session is None:
            raise SessionNotFoundError(name)
        return session

    def list(self) -> List[PtySessionInfo]:
        with self._lock:
            sessions = list(self._sessions.values())
        return [session.info() for session in sessions]

    def connect(
        self, name: str, viewer: Viewer, cursor: int, cols: int, rows: int
    ) -> Optional[PtySession]:
        """
        Attach a viewer to a session, replaying output from ``cursor``.

        Returns:
            The session, or None if it does not exist or the viewer failed
            during replay
        """
        session = self.get(name)
        if session is None:
            return None
        if not session.attach(viewer, cursor, cols, rows):
            return None

        logger.info(
            f"Viewer attached to session {name} "
            f"(cursor={cursor}, replay_from={max(cursor, session.buffer_start)}, "
            f"viewers={session.viewer_count})"
        )
        return session

    def disconnect(self, name: str, viewer: Viewer) -> None:
        session = self.get(name)
        if session is not None:
            session.detach(viewer)
            logger.info(
                f"Viewer detached from session {name} (viewers={session.viewer_count})"
            )

    def write(self, name: str, data: bytes) -> None:
        session = self.get(name)
        if session is not None:
            session.write(data)

    def resize(self, name: str, cols: int, rows: int) -> None:
        session = self.get(name)
        if session is not None:
            session.resize(cols, rows)

    def kill(self, name: str) -> None:
        """
        Close every viewer, terminate the process and forget the session.
        Does not wait for the process to exit.
        """
        with self._lock:
            session = self._sessions.pop(name, None)
        if session is None:
            return

        session.close_viewers(CLOSE_NORMAL, "session killed")
        session.terminate()

        logger.info(f"Session {name} killed")
        self._bus.publish(PtyExitedEvent(name, exit_code=-1))

    def kill_all(self) -> None:
        """Best-effort teardown of every session for process shutdown."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        for session in sessions:
            session.terminate()
            session.close_viewers(CLOSE_GOING_AWAY, "server shutting down")

        if sessions:
            logger.info(f"Killed {len(sessions)} session(s) on shutdown")

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def subscriber_count(self) -> int:
        with self._lock:
            return sum(session.viewer_count for session in self._sessions.values())

    # ===== Process exit =====

    def _on_session_eof(self, session: PtySession) -> None:
        task = asyncio.get_running_loop().create_task(self._reap(session))
        self._exit_tasks.add(task)
        task.add_done_callback(self._exit_tasks.discard)

    async def _reap(self, session: PtySession) -> None:
        loop = asyncio.get_running_loop()
        try:
            exit_code = await loop.run_in_executor(None, session.process.wait)
        except Exception as e:
            logger.warning(f"Failed to collect exit status of session {session.name}: {e}")
            exit_code = -1
        self.handle_exit(session, exit_code)

    def handle_exit(self, session: PtySession, exit_code: int) -> None:
        """
        Tear down a session whose process exited on its own.
        A session already killed is left alone.
        """
        if session.closed:
            return
        session.closed = True

        with self._lock:
            if self._sessions.get(session.name) is session:
                del self._sessions[session.name]

        logger.info(f"Session {session.name} exited (code {exit_code})")
        session.close_viewers(CLOSE_NORMAL, f"exited {exit_code}")
        self._bus.publish(PtyExitedEvent(session.name, exit_code=exit_code))
