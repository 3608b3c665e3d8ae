"""tmux session management.

Every connection runs inside a detached tmux session named after the
server (or profile), so closing the terminal never drops the SSH link and
re-connecting simply re-attaches.

All tmux calls go through an injectable ``runner`` with the signature of
``subprocess.run`` so tests can fake the tmux binary.
"""

from __future__ import annotations

import logging
import subprocess
from typing import Any, Callable, Mapping, NamedTuple, Optional, Sequence

import tenacity

from sshm.lib.config import DEFAULT_PORT, Server, expand_path
from sshm.lib.errors import TmuxError

logger = logging.getLogger(__name__)

__all__ = [
    "Launch",
    "TmuxManager",
    "build_ssh_command",
    "normalize_session_name",
]

Runner = Callable[..., "subprocess.CompletedProcess[str]"]

KEEPALIVE_OPTIONS = ("-o", "ServerAliveInterval=60", "-o", "ServerAliveCountMax=3")


def normalize_session_name(name: str) -> str:
    """Mirror tmux's own rewriting of session names (dots become underscores)."""
    return name.replace(".", "_")


def build_ssh_command(server: Server) -> str:
    """Build the ssh command line typed into the tmux pane."""
    parts = ["ssh", "-t"]
    if server.port and server.port != DEFAULT_PORT:
        parts.extend(["-p", str(server.port)])
    if server.auth_type == "key" and server.key_path:
        parts.extend(["-i", expand_path(server.key_path)])
    parts.extend(KEEPALIVE_OPTIONS)
    parts.append(f"{server.username}@{server.hostname}")
    return " ".join(parts)


class Launch(NamedTuple):
    """What to type into a pane, plus environment for the pane's shell."""

    command: str
    environment: Optional[Mapping[str, str]] = None


def default_launch(server: Server) -> Launch:
    return Launch(build_ssh_command(server))


def _environment_args(environment: Optional[Mapping[str, str]]) -> list[str]:
    args: list[str] = []
    for key, value in (environment or {}).items():
        args.extend(["-e", f"{key}={value}"])
    return args


class TmuxManager:
    """Thin wrapper around the tmux command line.

    Args:
        runner: ``subprocess.run`` compatible callable
        session_wait_attempts: How often to poll for a freshly created session
        session_wait_seconds: Delay between polls
    """

    def __init__(
        self,
        runner: Runner | None = None,
        session_wait_attempts: int = 5,
        session_wait_seconds: float = 0.1,
    ) -> None:
        self._runner = runner or subprocess.run
        self.session_wait_attempts = session_wait_attempts
        self.session_wait_seconds = session_wait_seconds

    def _tmux(self, *args: str, check: bool = True) -> "subprocess.CompletedProcess[str]":
        command = ["tmux", *args]
        logger.debug("Running %s", " ".join(command))
        try:
            result = self._runner(command, capture_output=True, text=True, check=False)
        except FileNotFoundError as e:
            raise TmuxError("tmux is not available on this system") from e
        if check and result.returncode != 0:
            raise TmuxError(
                f"tmux {args[0]} failed",
                command=command,
                stderr=result.stderr or "",
            )
        return result

    def is_available(self) -> bool:
        try:
            return self._tmux("-V", check=False).returncode == 0
        except TmuxError:
            return False

    def list_sessions(self) -> list[str]:
        """Names of running sessions; no tmux server means no sessions."""
        result = self._tmux("list-sessions", "-F", "#{session_name}", check=False)
        if result.returncode != 0:
            stderr = result.stderr or ""
            if "no server running" in stderr or "error connecting to" in stderr:
                return []
            raise TmuxError(
                "failed to list tmux sessions",
                command=["tmux", "list-sessions"],
                stderr=stderr,
            )
        return [line for line in (result.stdout or "").splitlines() if line.strip()]

    def session_exists(self, session_name: str) -> bool:
        try:
            return session_name in self.list_sessions()
        except TmuxError:
            return False

    def generate_unique_session_name(self, base_name: str) -> str:
        """Return ``base_name`` (normalized), or the first free ``base_name-N``."""
        normalized = normalize_session_name(base_name)
        try:
            sessions = set(self.list_sessions())
        except TmuxError:
            return normalized

        if normalized not in sessions:
            return normalized

        counter = 1
        while f"{normalized}-{counter}" in sessions:
            counter += 1
        return f"{normalized}-{counter}"

    def create_session(
        self, session_name: str, environment: Optional[Mapping[str, str]] = None
    ) -> None:
        """Start a detached session.

        ``environment`` is given to the first window's shell only; it is
        removed from the session environment once the session is up.
        """
        self._tmux("new-session", "-d", "-s", session_name, *_environment_args(environment))
        self._wait_for_session(session_name)
        for key in environment or {}:
            self._tmux("set-environment", "-t", session_name, "-u", key, check=False)
        logger.info("Created tmux session %s", session_name)

    def _wait_for_session(self, session_name: str) -> None:
        """Poll until the tmux server reports the new session."""
        retrying = tenacity.Retrying(
            stop=tenacity.stop_after_attempt(self.session_wait_attempts),
            wait=tenacity.wait_fixed(self.session_wait_seconds),
            retry=tenacity.retry_if_result(lambda exists: not exists),
        )
        try:
            retrying(self.session_exists, session_name)
        except tenacity.RetryError as e:
            raise TmuxError(
                f"tmux session '{session_name}' did not come up",
                command=["tmux", "new-session", "-d", "-s", session_name],
            ) from e

    def send_keys(self, target: str, command: str) -> None:
        self._tmux("send-keys", "-t", target, command, "Enter")

    def create_window(
        self,
        session_name: str,
        window_name: str,
        environment: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._tmux(
            "new-window",
            "-t",
            session_name,
            "-n",
            window_name,
            "-a",
            *_environment_args(environment),
        )

    def rename_window(self, session_name: str, window_index: str, window_name: str) -> None:
        self._tmux("rename-window", "-t", f"{session_name}:{window_index}", window_name)

    def kill_session(self, session_name: str) -> None:
        self._tmux("kill-session", "-t", session_name)
        logger.info("Killed tmux session %s", session_name)

    def attach_session(self, session_name: str) -> None:
        """Attach the current terminal; blocks until the user detaches."""
        command = ["tmux", "attach-session", "-t", session_name]
        try:
            result: Any = self._runner(command, check=False)
        except FileNotFoundError as e:
            raise TmuxError("tmux is not available on this system") from e
        if result.returncode != 0:
            raise TmuxError(f"failed to attach to session '{session_name}'", command=command)

    def _require_tmux(self) -> None:
        if not self.is_available():
            raise TmuxError("tmux is not available on this system")

    def connect_to_server(
        self,
        server_name: str,
        ssh_command: str,
        environment: Optional[Mapping[str, str]] = None,
    ) -> tuple[str, bool]:
        """Create (or find) the session for one server.

        Returns:
            ``(session_name, existed)``; when ``existed`` is True the caller
            should just re-attach.
        """
        self._require_tmux()

        normalized = normalize_session_name(server_name)
        if self.session_exists(normalized):
            logger.info("Re-using tmux session %s", normalized)
            return normalized, True

        session_name = self.generate_unique_session_name(server_name)
        self.create_session(session_name, environment)
        self.send_keys(session_name, ssh_command)
        return session_name, False

    def connect_to_profile(
        self,
        profile_name: str,
        servers: Sequence[Server],
        launcher: Callable[[Server], Launch] = default_launch,
    ) -> tuple[str, bool]:
        """Create (or find) a session with one window per server in the profile.

        ``launcher`` decides the command and environment of each window.
        """
        if not servers:
            raise TmuxError(f"profile '{profile_name}' has no servers to connect to")
        self._require_tmux()

        normalized = normalize_session_name(profile_name)
        if self.session_exists(normalized):
            logger.info("Re-using tmux session %s", normalized)
            return normalized, True

        launches = [launcher(server) for server in servers]
        session_name = self.generate_unique_session_name(profile_name)
        self.create_session(session_name, launches[0].environment)

        for index, (server, launch) in enumerate(zip(servers, launches)):
            if index == 0:
                self.rename_window(session_name, "0", server.name)
            else:
                self.create_window(session_name, server.name, launch.environment)
            self.send_keys(f"{session_name}:{index}", launch.command)

        return session_name, False
