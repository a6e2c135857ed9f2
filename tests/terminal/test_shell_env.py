"""
Tests for shell environment construction.
"""

import subprocess

import pytest

from termstream.terminal import shell_env
from termstream.terminal.shell_env import (
    DEFAULT_PATH,
    build_shell_env,
    get_default_shell,
    resolve_login_path,
)

HOST = {
    "HOME": "/home/ada",
    "USER": "ada",
    "LANG": "en_US.UTF-8",
    "TERM": "xterm-kitty",
    "AWS_SECRET_ACCESS_KEY": "hunter2",
    "KITTY_WINDOW_ID": "3",
    "PATH": "/host/bin",
}


class TestBuildShellEnv:
    def test_allow_listed_variables_are_inherited(self):
        env = build_shell_env(host_env=HOST, login_path="/login/bin")

        assert env["HOME"] == "/home/ada"
        assert env["USER"] == "ada"
        assert env["LANG"] == "en_US.UTF-8"
        assert "AWS_SECRET_ACCESS_KEY" not in env

    def test_terminal_identity_is_overridden(self):
        env = build_shell_env(host_env=HOST, login_path="/login/bin")

        assert env["PATH"] == "/login/bin"
        assert env["TERM"] == "xterm-256color"
        assert env["COLORTERM"] == "truecolor"
        assert env["SHLVL"] == "0"
        assert env["TERM_PROGRAM"] == "termstream"
        assert env["TERM_PROGRAM_VERSION"]

    def test_kitty_variables_are_removed(self):
        env = build_shell_env(
            extra=None, host_env=dict(HOST, KITTY_PID="99"), login_path="/bin"
        )
        assert not any(key.startswith("KITTY_") for key in env)

    def test_caller_env_applies_last(self):
        env = build_shell_env(
            extra={"TERM": "dumb", "EDITOR": "vi"}, host_env=HOST, login_path="/bin"
        )
        assert env["TERM"] == "dumb"
        assert env["EDITOR"] == "vi"


class TestLoginPath:
    @pytest.fixture(autouse=True)
    def reset_cache(self, monkeypatch):
        monkeypatch.setattr(shell_env, "_login_path", None)
        monkeypatch.setenv("SHELL", "/bin/zsh")

    def test_resolved_once_and_cached(self, monkeypatch):
        calls = []

        def fake_run(args, **kwargs):
            calls.append(args)
            return subprocess.CompletedProcess(args, 0, stdout="/opt/bin:/usr/bin\n")

        monkeypatch.setattr(shell_env.subprocess, "run", fake_run)

        assert resolve_login_path() == "/opt/bin:/usr/bin"
        assert resolve_login_path() == "/opt/bin:/usr/bin"
        assert calls == [["/bin/zsh", "-l", "-c", "echo $PATH"]]

    def test_falls_back_when_shell_fails(self, monkeypatch):
        def fake_run(args, **kwargs):
            raise subprocess.TimeoutExpired(args, 5)

        monkeypatch.setattr(shell_env.subprocess, "run", fake_run)
        assert resolve_login_path() == DEFAULT_PATH


class TestDefaultShell:
    def test_uses_shell_variable(self, monkeypatch):
        monkeypatch.setenv("SHELL", "/usr/bin/fish")
        assert get_default_shell() == "/usr/bin/fish"

    def test_falls_back_to_path_lookup(self, monkeypatch):
        monkeypatch.delenv("SHELL", raising=False)
        monkeypatch.setattr(
            shell_env.shutil, "which", lambda name: "/bin/bash" if name == "bash" else None
        )
        assert get_default_shell() == "/bin/bash"
