"""
Abstract base class for PTY processes.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional


class PtyProcess(ABC):
    """
    Abstract interface for a shell process attached to a pseudo-terminal.

    The session reads output by watching ``fileno()`` on its event loop and
    calling ``read``; everything else is a plain synchronous call. Only the
    owning session may use an instance.
    """

    @abstractmethod
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
        Spawn the process on a fresh pseudo-terminal.

        Args:
            command: The executable to run
            args: Arguments for the command
            cwd: Working directory
            env: Complete environment for the child
            cols: Initial number of columns
            rows: Initial number of rows
        """

    @property
    @abstractmethod
    def pid(self) -> Optional[int]:
        """OS process id, None before spawn."""

    @abstractmethod
    def fileno(self) -> int:
        """File descriptor of the PTY master, readable when output is pending."""

    @abstractmethod
    def read(self, size: int) -> bytes:
        """
        Read up to ``size`` bytes of pending output.

        Returns:
            The bytes read; ``b""`` once the process side is closed
        """

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Write input bytes to the process."""

    @abstractmethod
    def set_size(self, cols: int, rows: int) -> None:
        """Propagate new terminal dimensions to the process."""

    @abstractmethod
    def is_alive(self) -> bool:
        """Check if the process is still running."""

    @abstractmethod
    def terminate(self) -> None:
        """
        Signal the process to exit without waiting for it.
        """

    @abstractmethod
    def wait(self) -> int:
        """
        Block until the process exits and release its resources.

        Returns:
            Exit code of the process
        """
