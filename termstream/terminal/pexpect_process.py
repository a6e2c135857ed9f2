"""
Pexpect-based PTY process implementation for Unix-like systems.
"""

import errno
import logging
import os
import signal
import threading
from typing import Dict, List, Optional

import pexpect

from .base import PtyProcess

logger = logging.getLogger(__name__)


class PexpectPtyProcess(PtyProcess):
    """
    PTY process backed by ``pexpect.spawn``.

    pexpect is used in bytes mode (no ``encoding``) so the session sees the
    exact byte stream the shell produced.
    """

    def __init__(self):
        self._process: Optional[pexpect.spawn] = None
        self._reaper: Optional[threading.Thread] = None

    def spawn(
        self,
        command: str,
        args: List[str],
        cwd: Optional[str],
        env: Dict[str, str],
        cols: int,
        rows: int,
    ) -> None:
        """
        Spawn a new terminal process using pexpect.

        Raises:
            RuntimeError: If the process could not be started
        """
        try:
            self._process = pexpect.spawn(
                command,
                args=list(args),
                cwd=cwd,
                env=env,
                echo=True,
                timeout=None,
                dimensions=(rows, cols),
            )
        except Exception as e:
            raise RuntimeError(f"Failed to spawn process with pexpect: {e}") from e

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def fileno(self) -> int:
        if not self._process:
            raise RuntimeError("No process is currently running")
        return self._process.child_fd

    def read(self, size: int) -> bytes:
        try:
            return os.read(self.fileno(), size)
        except OSError as e:
            # Linux reports EIO on the master once the slave side is gone
            if e.errno == errno.EIO:
                return b""
            raise

    def write(self, data: bytes) -> None:
        if not self._process:
            raise RuntimeError("No process is currently running")

        try:
            self._process.send(data)
        except OSError as e:
            raise RuntimeError(f"Failed to write to terminal: {e}") from e

    def set_size(self, cols: int, rows: int) -> None:
        if not self._process:
            raise RuntimeError("No process is currently running")

        try:
            self._process.setwinsize(rows, cols)
        except Exception as e:
            raise RuntimeError(f"Failed to set terminal size: {e}") from e

    def is_alive(self) -> bool:
        if not self._process:
            return False

        try:
            return self._process.isalive()
        except Exception:
            return False

    def terminate(self) -> None:
        """
        Send SIGHUP and reap the child on a background thread.
        """
        process = self._process
        if not process or self._reaper is not None:
            return

        try:
            os.kill(process.pid, signal.SIGHUP)
        except ProcessLookupError:
            pass

        self._reaper = threading.Thread(
            target=self._reap, args=(process,), name="PTYReaper", daemon=True
        )
        self._reaper.start()

    def _reap(self, process: pexpect.spawn) -> None:
        try:
            process.close(force=True)
        except Exception as e:
            logger.warning(f"Failed to reap pid {process.pid}: {e}")

    def wait(self) -> int:
        if not self._process:
            return -1

        process = self._process
        try:
            process.wait()
        except pexpect.ExceptionPexpect:
            # already reaped by isalive()
            pass
        try:
            process.close()
        except Exception as e:
            logger.debug(f"Failed to close pty for pid {process.pid}: {e}")

        if process.exitstatus is not None:
            return process.exitstatus
        if process.signalstatus is not None:
            return 128 + process.signalstatus
        return -1
