"""Password storage in the system keyring.

Passwords for password-authenticated servers are kept out of config.yaml.
Each one is stored with the ``keyring`` library under the service name
``sshm`` and the key ``password-<server name>``; the catalog only records
``use_keyring: true`` for the server.

Catalogs written before keyring support may still carry a plaintext
``password`` value. ``migrate_plaintext`` moves those into the keyring.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import keyring
from keyring.backends import fail
from keyring.errors import KeyringError, PasswordDeleteError

from sshm.lib.config import Config, Server
from sshm.lib.errors import CredentialError

logger = logging.getLogger(__name__)

__all__ = [
    "SERVICE_NAME",
    "MigrationResult",
    "PasswordStore",
    "migrate_plaintext",
    "needs_migration",
    "password_key",
]

SERVICE_NAME = "sshm"


def password_key(server_name: str) -> str:
    """Keyring username under which a server's password is stored."""
    return f"password-{server_name}"


class PasswordStore:
    """Thin wrapper over the active keyring backend.

    Every failure of the backend is raised as ``CredentialError`` except a
    delete of an entry that does not exist, which is not an error.
    """

    def __init__(self, service: str = SERVICE_NAME) -> None:
        self.service = service

    def backend_name(self) -> str:
        try:
            return type(keyring.get_keyring()).__name__
        except KeyringError:
            return "unavailable"

    def is_available(self) -> bool:
        """False when keyring fell back to its "no backend" implementation."""
        try:
            return not isinstance(keyring.get_keyring(), fail.Keyring)
        except KeyringError:
            return False

    def store(self, server_name: str, password: str) -> None:
        try:
            keyring.set_password(self.service, password_key(server_name), password)
        except KeyringError as e:
            raise CredentialError(
                "failed to store password in keyring",
                server=server_name,
                backend=self.backend_name(),
                cause=e,
                field="password",
            ) from e
        logger.debug(
            "Stored password for %s via keyring backend %s", server_name, self.backend_name()
        )

    def retrieve(self, server_name: str) -> Optional[str]:
        """Return the stored password, or None when there is none."""
        try:
            return keyring.get_password(self.service, password_key(server_name))
        except KeyringError as e:
            raise CredentialError(
                "failed to read password from keyring",
                server=server_name,
                backend=self.backend_name(),
                cause=e,
                field="password",
            ) from e

    def has(self, server_name: str) -> bool:
        return self.retrieve(server_name) is not None

    def delete(self, server_name: str) -> bool:
        """Remove a stored password.

        Returns:
            True if an entry was removed, False if there was none
        """
        try:
            keyring.delete_password(self.service, password_key(server_name))
        except PasswordDeleteError:
            return False
        except KeyringError as e:
            raise CredentialError(
                "failed to delete password from keyring",
                server=server_name,
                backend=self.backend_name(),
                cause=e,
                field="password",
            ) from e
        logger.debug("Deleted keyring password for %s", server_name)
        return True


def needs_migration(server: Server) -> bool:
    """Whether a server still carries a plaintext password in the catalog."""
    return server.auth_type == "password" and bool(server.password)


@dataclass
class MigrationResult:
    """Outcome of moving one server's password into the keyring."""

    server: str
    migrated: bool
    error: str = ""


def migrate_plaintext(
    config: Config,
    store: PasswordStore,
    server_name: Optional[str] = None,
) -> list[MigrationResult]:
    """Move plaintext passwords into the keyring.

    Servers are updated in memory only; the caller saves the catalog when
    at least one server was migrated. A server whose password cannot be
    stored keeps its plaintext value.

    Args:
        config: Catalog to migrate
        store: Keyring store to write to
        server_name: Migrate only this server

    Raises:
        NotFoundError: If ``server_name`` is not in the catalog
    """
    if server_name:
        candidates = [config.get_server(server_name)]
    else:
        candidates = list(config.servers)

    results: list[MigrationResult] = []
    for server in candidates:
        if not needs_migration(server):
            continue
        try:
            store.store(server.name, server.password)
        except CredentialError as e:
            logger.warning("Could not migrate password for %s: %s", server.name, e.message)
            results.append(MigrationResult(server.name, False, e.message))
            continue
        server.use_keyring = True
        server.password = ""
        logger.info("Migrated password for %s to keyring", server.name)
        results.append(MigrationResult(server.name, True))
    return results
