"""Tests for tmux session management."""

from __future__ import annotations

import subprocess
from typing import Any

import pytest

from sshm.lib.config import Server
from sshm.lib.errors import TmuxError
from sshm.lib.tmux import Launch, TmuxManager, build_ssh_command, normalize_session_name
from tests.conftest import FakeTmux


def _manager(runner: Any, **kwargs: Any) -> TmuxManager:
    kwargs.setdefault("session_wait_seconds", 0)
    return TmuxManager(runner=runner, **kwargs)


class TestCommandBuilding:
    """Tests for ssh command lines and session names."""

    def test_key_auth_default_port(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HOME", "/home/me")
        server = Server(
            name="web1", hostname="web1.example.com", username="deploy",
            key_path="~/.ssh/id_ed25519",
        )
        assert build_ssh_command(server) == (
            "ssh -t -i /home/me/.ssh/id_ed25519 "
            "-o ServerAliveInterval=60 -o ServerAliveCountMax=3 deploy@web1.example.com"
        )

    def test_password_auth_custom_port(self) -> None:
        server = Server(
            name="db1", hostname="10.0.0.5", username="admin", port=2222,
            auth_type="password",
        )
        command = build_ssh_command(server)
        assert command.startswith("ssh -t -p 2222 -o")
        assert "-i" not in command.split()
        assert command.endswith("admin@10.0.0.5")

    def test_normalize_session_name(self) -> None:
        assert normalize_session_name("web1.example.com") == "web1_example_com"
        assert normalize_session_name("plain") == "plain"


class TestSessions:
    """Tests for session listing and naming."""

    def test_no_server_running_means_no_sessions(self, fake_tmux: FakeTmux) -> None:
        assert _manager(fake_tmux).list_sessions() == []

    def test_lists_sessions(self) -> None:
        assert _manager(FakeTmux(["a", "b"])).list_sessions() == ["a", "b"]

    def test_other_list_failure_raises(self) -> None:
        def runner(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="permission denied")

        with pytest.raises(TmuxError, match="failed to list"):
            _manager(runner).list_sessions()

    def test_unique_session_name(self) -> None:
        manager = _manager(FakeTmux(["web1", "web1-1"]))
        assert manager.generate_unique_session_name("web1") == "web1-2"
        assert manager.generate_unique_session_name("db1") == "db1"

    def test_is_available(self) -> None:
        assert _manager(FakeTmux()).is_available() is True
        assert _manager(FakeTmux(available=False)).is_available() is False

    def test_kill_session(self) -> None:
        fake = FakeTmux(["web1"])
        _manager(fake).kill_session("web1")
        assert fake.sessions == []

    def test_failed_command_carries_stderr(self) -> None:
        with pytest.raises(TmuxError) as exc_info:
            _manager(FakeTmux()).kill_session("ghost")
        assert exc_info.value.stderr == "can't find session"
        assert exc_info.value.details["command"] == "tmux kill-session -t ghost"


class TestConnect:
    """Tests for connect_to_server and connect_to_profile."""

    def test_new_server_session(self, fake_tmux: FakeTmux) -> None:
        session, existed = _manager(fake_tmux).connect_to_server("web1.example", "ssh x@y")

        assert (session, existed) == ("web1_example", False)
        assert fake_tmux.commands("new-session") == [
            ["tmux", "new-session", "-d", "-s", "web1_example"]
        ]
        assert fake_tmux.commands("send-keys") == [
            ["tmux", "send-keys", "-t", "web1_example", "ssh x@y", "Enter"]
        ]

    def test_existing_server_session_is_reused(self) -> None:
        fake = FakeTmux(["web1"])

        session, existed = _manager(fake).connect_to_server("web1", "ssh x@y")

        assert (session, existed) == ("web1", True)
        assert fake.commands("new-session") == []
        assert fake.commands("send-keys") == []

    def test_profile_session_gets_one_window_per_server(
        self, fake_tmux: FakeTmux
    ) -> None:
        servers = [
            Server(name="web1", hostname="w", username="u", auth_type="password"),
            Server(name="web2", hostname="w2", username="u", auth_type="password"),
        ]

        session, existed = _manager(fake_tmux).connect_to_profile("production", servers)

        assert (session, existed) == ("production", False)
        assert fake_tmux.commands("rename-window") == [
            ["tmux", "rename-window", "-t", "production:0", "web1"]
        ]
        assert fake_tmux.commands("new-window") == [
            ["tmux", "new-window", "-t", "production", "-n", "web2", "-a"]
        ]
        targets = [c[3] for c in fake_tmux.commands("send-keys")]
        assert targets == ["production:0", "production:1"]

    def test_server_environment_is_scoped_to_first_window(
        self, fake_tmux: FakeTmux
    ) -> None:
        _manager(fake_tmux).connect_to_server(
            "db1", "sshpass -e ssh admin@db", environment={"SSHPASS": "pw"}
        )

        assert fake_tmux.commands("new-session") == [
            ["tmux", "new-session", "-d", "-s", "db1", "-e", "SSHPASS=pw"]
        ]
        assert fake_tmux.commands("set-environment") == [
            ["tmux", "set-environment", "-t", "db1", "-u", "SSHPASS"]
        ]

    def test_profile_launcher_sets_window_environment(self, fake_tmux: FakeTmux) -> None:
        servers = [
            Server(name="web1", hostname="w", username="u", auth_type="password"),
            Server(name="web2", hostname="w2", username="u", auth_type="password"),
        ]

        def launcher(server: Server) -> Launch:
            return Launch(f"connect {server.name}", {"SSHPASS": f"pw-{server.name}"})

        _manager(fake_tmux).connect_to_profile("production", servers, launcher)

        assert fake_tmux.commands("new-session")[0][-2:] == ["-e", "SSHPASS=pw-web1"]
        assert fake_tmux.commands("new-window") == [
            ["tmux", "new-window", "-t", "production", "-n", "web2", "-a"]
            + ["-e", "SSHPASS=pw-web2"]
        ]
        keys = [c[4] for c in fake_tmux.commands("send-keys")]
        assert keys == ["connect web1", "connect web2"]

    def test_profile_without_servers(self, fake_tmux: FakeTmux) -> None:
        with pytest.raises(TmuxError, match="no servers"):
            _manager(fake_tmux).connect_to_profile("empty", [])
        assert fake_tmux.calls == []

    def test_tmux_missing(self) -> None:
        with pytest.raises(TmuxError, match="not available") as exc_info:
            _manager(FakeTmux(available=False)).connect_to_server("web1", "ssh x@y")
        assert "Install tmux" in exc_info.value.suggestion

    def test_session_that_never_appears(self) -> None:
        class LosingTmux(FakeTmux):
            def __call__(self, cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
                if cmd[1] == "new-session":
                    self.calls.append(list(cmd))
                    return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")
                return super().__call__(cmd, **kwargs)

        fake = LosingTmux()
        manager = _manager(fake, session_wait_attempts=2)

        with pytest.raises(TmuxError, match="did not come up"):
            manager.connect_to_server("web1", "ssh x@y")
        assert len(fake.commands("list-sessions")) >= 3
        assert fake.commands("send-keys") == []

    def test_attach_session(self, fake_tmux: FakeTmux) -> None:
        _manager(fake_tmux).attach_session("web1")
        assert fake_tmux.commands("attach-session") == [
            ["tmux", "attach-session", "-t", "web1"]
        ]
