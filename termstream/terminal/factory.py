"""
Factory for creating platform-specific PTY process instances.
"""

import platform
from typing import Callable

from .base import PtyProcess

ProcessFactory = Callable[[], PtyProcess]


class PtyProcessFactory:
    """
    Factory class for creating the PTY process implementation of the
    current platform.
    """

    @staticmethod
    def create_process() -> PtyProcess:
        """
        Create and return the PTY process for the current platform.

        Raises:
            ImportError: If required dependencies are not available
            RuntimeError: If platform is not supported
        """
        if platform.system() == "Windows":
            raise RuntimeError("PTY sessions require a Unix-like platform")

        try:
            from .pexpect_process import PexpectPtyProcess
        except ImportError as e:
            raise ImportError(
                "pexpect is required for Unix-like terminal support. "
                "Install it with: pip install pexpect"
            ) from e
        return PexpectPtyProcess()

    @staticmethod
    def is_platform_supported() -> bool:
        try:
            PtyProcessFactory.create_process()
            return True
        except (ImportError, RuntimeError):
            return False
