"""Parser for OpenSSH client configuration files (``~/.ssh/config``).

Only the keywords needed to build a catalog entry are read: ``Host``,
``HostName``, ``User``, ``Port`` and ``IdentityFile``. Wildcard host
patterns are skipped, as are hosts missing a hostname or user.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sshm.lib.config import DEFAULT_PORT, Server
from sshm.lib.errors import ImportExportError

logger = logging.getLogger(__name__)

__all__ = ["parse_ssh_config", "default_ssh_config_path"]


def default_ssh_config_path() -> Path:
    return Path.home() / ".ssh" / "config"


def _is_complete(server: Server) -> bool:
    return bool(server.name and server.hostname and server.username)


def parse_ssh_config(path: Path | str) -> list[Server]:
    """Read host entries from an ssh_config file.

    Hosts with an ``IdentityFile`` use key authentication, all others
    password authentication.

    Args:
        path: File to read

    Returns:
        Complete host entries in file order

    Raises:
        ImportExportError: If the file cannot be read
    """
    config_path = Path(path)
    try:
        lines = config_path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        raise ImportExportError(
            "failed to open SSH config file",
            path=str(config_path),
            file_format="ssh",
            cause=e,
        ) from e

    servers: list[Server] = []
    current: Server | None = None

    def flush() -> None:
        if current is not None and _is_complete(current):
            servers.append(current)

    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        parts = line.split()
        if len(parts) < 2:
            continue

        keyword = parts[0].lower()
        value = " ".join(parts[1:])

        if keyword == "host":
            flush()
            if "*" in value or "?" in value:
                current = None
                continue
            current = Server(name=value, hostname="", username="", port=DEFAULT_PORT, auth_type="")
        elif current is None:
            continue
        elif keyword == "hostname":
            current.hostname = value
        elif keyword == "user":
            current.username = value
        elif keyword == "port":
            if value.isdigit():
                current.port = int(value)
            else:
                logger.warning("Ignoring invalid port %r for host %s", value, current.name)
        elif keyword == "identityfile":
            current.key_path = value
            current.auth_type = "key"

    flush()

    for server in servers:
        if not server.auth_type:
            server.auth_type = "password"

    logger.debug("Parsed %d hosts from %s", len(servers), config_path)
    return servers
