"""
Environment construction for spawned shells.
"""

import logging
import os
import shutil
import subprocess
import threading
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

PRODUCT_NAME = "termstream"
PRODUCT_VERSION = "0.1.0"

DEFAULT_PATH = "/usr/local/bin:/usr/bin:/bin:/usr/sbin:/sbin"

# Host variables forwarded to the shell
INHERITED_VARIABLES = (
    "HOME",
    "USER",
    "LOGNAME",
    "SHELL",
    "TERM",
    "LANG",
    "LC_ALL",
    "LC_CTYPE",
    "LC_COLLATE",
    "LC_MESSAGES",
    "COLORTERM",
    "TERM_PROGRAM",
    "DISPLAY",
    "SSH_AUTH_SOCK",
    "TMPDIR",
    "XDG_RUNTIME_DIR",
    "XDG_CONFIG_HOME",
    "XDG_DATA_HOME",
    "XDG_CACHE_HOME",
)

# Variables that make programs speak protocols the client cannot render
# (kitty keyboard protocol, graphics protocol)
STRIPPED_VARIABLES = (
    "KITTY_WINDOW_ID",
    "KITTY_PID",
    "KITTY_PUBLIC_KEY",
    "KITTY_INSTALLATION_DIR",
)

# Process-wide login PATH cache
_login_path: Optional[str] = None
_login_path_lock = threading.Lock()


def get_default_shell() -> str:
    """$SHELL, else the first of zsh/bash/sh found on PATH."""
    shell = os.environ.get("SHELL")
    if shell:
        return shell

    for candidate in ("zsh", "bash", "sh"):
        found = shutil.which(candidate)
        if found:
            return found
    return "/bin/sh"


def resolve_login_path() -> str:
    """
    Resolve the user's login-shell PATH once and cache it for the process
    lifetime.

    Returns:
        The PATH reported by ``$SHELL -l -c 'echo $PATH'``, or a fixed
        fallback when the login shell cannot be run
    """
    global _login_path
    if _login_path is not None:
        return _login_path

    with _login_path_lock:
        if _login_path is None:
            shell = get_default_shell()
            try:
                result = subprocess.run(
                    [shell, "-l", "-c", "echo $PATH"],
                    capture_output=True,
                    text=True,
                    timeout=5,
                    check=True,
                )
                _login_path = result.stdout.strip() or DEFAULT_PATH
            except (OSError, subprocess.SubprocessError) as e:
                logger.warning(f"Failed to resolve login PATH via {shell}: {e}")
                _login_path = DEFAULT_PATH
    return _login_path


def build_shell_env(
    extra: Optional[Mapping[str, str]] = None,
    host_env: Optional[Mapping[str, str]] = None,
    login_path: Optional[str] = None,
) -> Dict[str, str]:
    """
    Build the curated environment for a new shell.

    Args:
        extra: Caller-supplied variables, applied last
        host_env: Source environment, defaults to ``os.environ``
        login_path: PATH to use, defaults to the cached login PATH

    Returns:
        The complete environment mapping
    """
    source = os.environ if host_env is None else host_env

    env = {key: source[key] for key in INHERITED_VARIABLES if source.get(key)}

    env["PATH"] = login_path if login_path is not None else resolve_login_path()
    env["SHLVL"] = "0"
    env["COLORTERM"] = "truecolor"
    env["TERM"] = "xterm-256color"
    env["TERM_PROGRAM"] = PRODUCT_NAME
    env["TERM_PROGRAM_VERSION"] = PRODUCT_VERSION

    for key in STRIPPED_VARIABLES:
        env.pop(key, None)

    if extra:
        env.update(extra)

    return env
