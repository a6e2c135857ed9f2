"""
Integration test against a real /bin/sh through pexpect.
"""

import os
import sys

import pytest

pytest.importorskip("pexpect")

from termstream.terminal.events import BusEventType
from termstream.terminal.factory import PtyProcessFactory
from termstream.terminal.models import CreatePtyRequest
from termstream.terminal.pexpect_process import PexpectPtyProcess
from termstream.terminal.registry import SessionRegistry
from termstream.terminal.shell_env import DEFAULT_PATH, build_shell_env

pytestmark = pytest.mark.skipif(
    sys.platform == "win32" or not os.path.exists("/bin/sh"),
    reason="needs a POSIX shell",
)


def fixed_path_env(extra=None):
    return build_shell_env(extra, login_path=DEFAULT_PATH)


@pytest.fixture
def shell_registry(bus):
    registry = SessionRegistry(bus, env_builder=fixed_path_env)
    yield registry
    registry.kill_all()


class TestRealShell:
    async def test_echo_and_exit(self, shell_registry, bus_events, viewer_class, wait_until):
        session = await shell_registry.create(
            CreatePtyRequest(shell="/bin/sh", shell_args=[], cwd="/")
        )
        assert session.process.is_alive()

        viewer = viewer_class()
        shell_registry.connect(session.name, viewer, 0, 80, 24)

        shell_registry.write(session.name, b"echo termstream-$((20 + 22))\n")
        await wait_until(lambda: b"termstream-42" in viewer.received, timeout=10)

        shell_registry.write(session.name, b"exit 3\n")
        await wait_until(lambda: viewer.closed_with is not None, timeout=10)

        assert viewer.closed_with == (1000, "exited 3")
        assert shell_registry.get(session.name) is None
        exited = [e for e in bus_events if e.event_type == BusEventType.PTY_EXITED]
        assert exited[-1].exit_code == 3

    async def test_kill_does_not_wait(self, shell_registry, wait_until):
        session = await shell_registry.create(
            CreatePtyRequest(shell="/bin/sh", shell_args=[], cwd="/")
        )

        shell_registry.kill(session.name)

        assert shell_registry.session_count() == 0
        await wait_until(lambda: not session.process.is_alive(), timeout=10)

    def test_platform_is_supported(self):
        assert PtyProcessFactory.is_platform_supported()
        assert isinstance(PtyProcessFactory.create_process(), PexpectPtyProcess)
