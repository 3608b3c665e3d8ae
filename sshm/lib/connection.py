"""Connect servers and profiles through tmux and record each attempt.

``Connector`` is what the CLI and the TUI call to open a connection. It
builds the ssh command for every server, hands it to ``TmuxManager`` and
writes the outcome to the connection history.

Password servers get their password from the keyring. When ``sshpass`` is
installed the password is passed to it through the ``SSHPASS`` variable of
the pane's shell, never on a command line; otherwise ssh prompts for it in
the pane as usual.

History is best effort: a history database that cannot be written is
logged and never stops a connection.
"""

from __future__ import annotations

import logging
import shutil
from typing import Optional, Sequence

from sshm.lib.config import Server
from sshm.lib.credentials import PasswordStore
from sshm.lib.errors import CredentialError, HistoryError, SshmError
from sshm.lib.history import HistoryStore
from sshm.lib.tmux import Launch, TmuxManager, build_ssh_command

logger = logging.getLogger(__name__)

__all__ = ["Connector"]


class Connector:
    """Opens tmux sessions for catalog entries.

    Args:
        tmux: Session manager
        history: Where attempts are recorded; None disables history
        passwords: Keyring store for password servers
        sshpass: Path of the sshpass binary. Looked up on PATH when None;
            an empty string disables it.
    """

    def __init__(
        self,
        tmux: TmuxManager,
        history: Optional[HistoryStore] = None,
        passwords: Optional[PasswordStore] = None,
        sshpass: Optional[str] = None,
    ) -> None:
        self.tmux = tmux
        self.history = history
        self.passwords = passwords
        if sshpass is None:
            sshpass = shutil.which("sshpass") or ""
        self.sshpass = sshpass

    def launch(self, server: Server) -> Launch:
        """Command and environment for one server's pane."""
        command = build_ssh_command(server)
        if server.auth_type != "password" or not self.sshpass:
            return Launch(command)

        password = self._password_for(server)
        if not password:
            return Launch(command)
        return Launch(f"{self.sshpass} -e {command}", {"SSHPASS": password})

    def _password_for(self, server: Server) -> Optional[str]:
        if server.use_keyring and self.passwords is not None:
            try:
                return self.passwords.retrieve(server.name)
            except CredentialError as e:
                logger.warning(
                    "Could not read password for %s, ssh will prompt: %s",
                    server.name,
                    e.message,
                )
                return None
        return server.password or None

    def connect_server(self, server: Server) -> tuple[str, bool]:
        """Open (or find) the session for one server.

        Raises:
            TmuxError: If tmux is missing or a tmux command fails
        """
        entry = self._record_start(server)
        try:
            launch = self.launch(server)
            session, existed = self.tmux.connect_to_server(
                server.name, launch.command, launch.environment
            )
        except SshmError as e:
            self._record_end(entry, "failed", error=e.message)
            raise
        self._record_end(entry, "success", session_id=session)
        return session, existed

    def connect_profile(self, profile: str, servers: Sequence[Server]) -> tuple[str, bool]:
        """Open (or find) one session with a window per server.

        One ``group`` entry is recorded for the profile and one entry per
        server.

        Raises:
            TmuxError: If the profile is empty or a tmux command fails
        """
        group = self._record_group_start(profile)
        entries = [self._record_start(server, profile=profile) for server in servers]
        try:
            session, existed = self.tmux.connect_to_profile(profile, servers, self.launch)
        except SshmError as e:
            for entry in [group, *entries]:
                self._record_end(entry, "failed", error=e.message)
            raise
        for entry in [group, *entries]:
            self._record_end(entry, "success", session_id=session)
        return session, existed

    def _record_start(self, server: Server, profile: Optional[str] = None) -> Optional[int]:
        if self.history is None:
            return None
        try:
            return self.history.record_start(server, profile=profile)
        except HistoryError as e:
            logger.warning("Could not record connection to %s: %s", server.name, e.message)
            return None

    def _record_group_start(self, profile: str) -> Optional[int]:
        if self.history is None:
            return None
        try:
            return self.history.record_group_start(profile)
        except HistoryError as e:
            logger.warning("Could not record connection to profile %s: %s", profile, e.message)
            return None

    def _record_end(
        self,
        entry: Optional[int],
        status: str,
        *,
        error: str = "",
        session_id: str = "",
    ) -> None:
        if self.history is None or entry is None:
            return
        try:
            self.history.record_end(entry, status, error=error, session_id=session_id)
        except HistoryError as e:
            logger.warning("Could not record outcome of connection %d: %s", entry, e.message)
