"""Pytest configuration and fixtures."""

from __future__ import annotations

import logging
import subprocess
import sys
from pathlib import Path
from typing import Any, Generator

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sshm.lib.config import CONFIG_DIR_ENV, Config, Profile, Server  # noqa: E402
from sshm.lib.credentials import SERVICE_NAME, password_key  # noqa: E402


@pytest.fixture(autouse=True)
def _restore_root_logger() -> Generator[None, None, None]:
    """setup_logging() replaces root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class MemoryKeyring(KeyringBackend):
    """In-process keyring so tests never touch the real one."""

    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.entries: dict[tuple[str, str], str] = {}
        self.broken = False

    def _check(self) -> None:
        if self.broken:
            raise KeyringError("keyring is locked")

    def get_password(self, service: str, username: str) -> str | None:
        self._check()
        return self.entries.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self._check()
        self.entries[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        self._check()
        if (service, username) not in self.entries:
            raise PasswordDeleteError("no such password")
        del self.entries[(service, username)]


@pytest.fixture(autouse=True)
def memory_keyring() -> Generator[MemoryKeyring, None, None]:
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture
def config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point SSHM_CONFIG_DIR at an empty temporary directory."""
    directory = tmp_path / "sshm"
    monkeypatch.setenv(CONFIG_DIR_ENV, str(directory))
    return directory


@pytest.fixture
def config_path(config_dir: Path) -> Path:
    return config_dir / "config.yaml"


@pytest.fixture
def sample_config(config_path: Path, memory_keyring: MemoryKeyring) -> Config:
    """A saved catalog with two servers and one profile.

    db1 uses password authentication with its password in the keyring.
    """
    config = Config(
        servers=[
            Server(
                name="web1",
                hostname="web1.example.com",
                username="deploy",
                auth_type="key",
                key_path="~/.ssh/id_ed25519",
            ),
            Server(
                name="db1",
                hostname="10.0.0.5",
                username="admin",
                port=2222,
                auth_type="password",
                use_keyring=True,
            ),
        ],
        profiles=[
            Profile(name="production", description="Production tier", servers=["web1"]),
        ],
        path=config_path,
    )
    memory_keyring.set_password(SERVICE_NAME, password_key("db1"), "s3cret")
    config.save()
    return config


class FakeTmux:
    """Stand-in for ``subprocess.run`` that emulates a tmux server."""

    def __init__(self, sessions: list[str] | None = None, available: bool = True) -> None:
        self.sessions: list[str] = list(sessions or [])
        self.available = available
        self.calls: list[list[str]] = []

    def __call__(self, cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
        self.calls.append(list(cmd))
        if not self.available:
            raise FileNotFoundError("tmux")

        args = cmd[1:]
        action = args[0]
        if action == "list-sessions":
            if not self.sessions:
                return subprocess.CompletedProcess(
                    cmd, 1, stdout="", stderr="no server running on /tmp/tmux-1000/default"
                )
            return subprocess.CompletedProcess(cmd, 0, stdout="\n".join(self.sessions) + "\n", stderr="")
        if action == "new-session":
            self.sessions.append(args[args.index("-s") + 1])
        elif action == "kill-session":
            target = args[args.index("-t") + 1]
            if target not in self.sessions:
                return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="can't find session")
            self.sessions.remove(target)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    def commands(self, action: str) -> list[list[str]]:
        """Recorded invocations of one tmux subcommand."""
        return [c for c in self.calls if len(c) > 1 and c[1] == action]


@pytest.fixture
def fake_tmux() -> FakeTmux:
    return FakeTmux()
