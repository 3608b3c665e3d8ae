"""Host catalog model and YAML persistence.

The catalog lives in ``~/.sshm/config.yaml`` (or ``$SSHM_CONFIG_DIR/config.yaml``)
and holds two lists: servers and profiles. A profile is a named group of
server names; a server may belong to any number of profiles.

Example config.yaml:
    servers:
      - name: web1
        hostname: web1.example.com
        port: 22
        username: deploy
        auth_type: key
        key_path: ~/.ssh/id_ed25519
    profiles:
      - name: production
        description: Production web tier
        servers: [web1]
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from sshm.lib.errors import ConfigurationError, DuplicateNameError, NotFoundError

logger = logging.getLogger(__name__)

__all__ = [
    "AUTH_TYPES",
    "CONFIG_DIR_ENV",
    "DEFAULT_PORT",
    "Config",
    "Profile",
    "Server",
    "default_config_dir",
    "default_config_path",
    "expand_path",
]

CONFIG_DIR_ENV = "SSHM_CONFIG_DIR"
CONFIG_FILENAME = "config.yaml"
DEFAULT_PORT = 22
AUTH_TYPES = ("key", "password")


def default_config_dir() -> Path:
    """Directory holding config.yaml, honouring ``SSHM_CONFIG_DIR``."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override)
    return Path.home() / ".sshm"


def default_config_path() -> Path:
    return default_config_dir() / CONFIG_FILENAME


def expand_path(path: str) -> str:
    """Expand a leading ``~`` to the user's home directory."""
    if not path.startswith("~"):
        return path
    return os.path.expanduser(path)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


@dataclass
class Server:
    """A single SSH host entry.

    Attributes:
        name: Unique catalog name (also the tmux session name)
        hostname: Host name or IP address
        username: Remote login user
        port: SSH port
        auth_type: "key" or "password"
        key_path: Private key used for key authentication
        passphrase_protected: Whether the key needs a passphrase
        use_keyring: The password lives in the system keyring under this name
        password: Legacy plaintext password awaiting migration to the keyring
            (never exported)
    """

    name: str
    hostname: str
    username: str
    port: int = DEFAULT_PORT
    auth_type: str = "key"
    key_path: str = ""
    passphrase_protected: bool = False
    use_keyring: bool = False
    password: str = field(default="", repr=False)

    def validate(self) -> None:
        """Check the entry is usable.

        Raises:
            ConfigurationError: If a required value is missing or out of range
        """
        if not self.name.strip():
            raise ConfigurationError("server name is required", field="name")
        if not self.hostname.strip():
            raise ConfigurationError("hostname is required", field="hostname")
        if not self.username.strip():
            raise ConfigurationError("username is required", field="username")
        if not 0 < self.port <= 65535:
            raise ConfigurationError("port must be between 1 and 65535", field="port")
        if self.auth_type not in AUTH_TYPES:
            raise ConfigurationError(
                "auth_type must be 'key' or 'password'", field="auth_type"
            )
        if self.auth_type == "key" and not self.key_path.strip():
            raise ConfigurationError(
                "key_path is required when auth_type is 'key'", field="key_path"
            )

    def to_dict(self, include_secrets: bool = True) -> dict[str, Any]:
        """Convert to a plain dict, omitting empty optional values."""
        data: dict[str, Any] = {
            "name": self.name,
            "hostname": self.hostname,
            "port": self.port,
            "username": self.username,
            "auth_type": self.auth_type,
        }
        if self.key_path:
            data["key_path"] = self.key_path
        if self.passphrase_protected:
            data["passphrase_protected"] = True
        if include_secrets and self.use_keyring:
            data["use_keyring"] = True
        if include_secrets and self.password:
            data["password"] = self.password
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Server":
        """Create from a dict loaded from YAML or JSON."""
        try:
            port = int(data.get("port") or DEFAULT_PORT)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"invalid port for server '{data.get('name', '')}'",
                field="port",
                cause=e,
            ) from e
        return cls(
            name=str(data.get("name") or ""),
            hostname=str(data.get("hostname") or ""),
            username=str(data.get("username") or ""),
            port=port,
            auth_type=str(data.get("auth_type") or ""),
            key_path=str(data.get("key_path") or ""),
            passphrase_protected=_to_bool(data.get("passphrase_protected", False)),
            use_keyring=_to_bool(data.get("use_keyring", False)),
            password=str(data.get("password") or ""),
        )


@dataclass
class Profile:
    """A named group of servers."""

    name: str
    description: str = ""
    servers: list[str] = field(default_factory=list)

    def validate(self) -> None:
        if not self.name.strip():
            raise ConfigurationError("profile name is required", field="name")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "servers": list(self.servers),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Profile":
        return cls(
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            servers=[str(s) for s in data.get("servers") or []],
        )


@dataclass
class Config:
    """The whole host catalog.

    Mutating methods only change the in-memory catalog; call ``save()`` to
    persist.
    """

    servers: list[Server] = field(default_factory=list)
    profiles: list[Profile] = field(default_factory=list)
    path: Path | None = field(default=None, repr=False, compare=False)

    # -- persistence --------------------------------------------------------

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load the catalog, returning an empty one if the file is missing.

        Args:
            path: Config file path. Defaults to ``default_config_path()``.

        Raises:
            ConfigurationError: If the file exists but cannot be parsed
        """
        config_path = Path(path) if path else default_config_path()

        if not config_path.exists():
            logger.debug("No config at %s, starting empty", config_path)
            return cls(path=config_path)

        try:
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                "failed to read config file", path=str(config_path), cause=e
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                "config file must contain a mapping", path=str(config_path)
            )

        config = cls.from_dict(data)
        config.path = config_path
        logger.debug(
            "Loaded %d servers and %d profiles from %s",
            len(config.servers),
            len(config.profiles),
            config_path,
        )
        return config

    def save(self, path: Path | str | None = None) -> Path:
        """Write the catalog atomically with owner-only permissions.

        Returns:
            The path written
        """
        config_path = Path(path) if path else (self.path or default_config_path())
        content = yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)

        try:
            config_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".config-", suffix=".yaml", dir=config_path.parent
            )
        except OSError as e:
            raise ConfigurationError(
                "failed to write config file", path=str(config_path), cause=e
            ) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, config_path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise ConfigurationError(
                "failed to write config file", path=str(config_path), cause=e
            ) from e

        self.path = config_path
        logger.info("Saved configuration to %s", config_path)
        return config_path

    def reload(self) -> None:
        """Re-read the file this catalog was loaded from, in place."""
        fresh = Config.load(self.path)
        self.servers = fresh.servers
        self.profiles = fresh.profiles

    def replace_with(self, other: "Config") -> None:
        """Adopt the contents of another catalog (e.g. a merged working copy)."""
        self.servers = other.servers
        self.profiles = other.profiles

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Build from a parsed document; ``profiles`` may be absent."""
        servers = [Server.from_dict(s) for s in data.get("servers") or []]
        profiles = [Profile.from_dict(p) for p in data.get("profiles") or []]
        return cls(servers=servers, profiles=profiles)

    def to_dict(self, include_secrets: bool = True) -> dict[str, Any]:
        return {
            "servers": [s.to_dict(include_secrets=include_secrets) for s in self.servers],
            "profiles": [p.to_dict() for p in self.profiles],
        }

    # -- servers ------------------------------------------------------------

    def server_names(self) -> list[str]:
        return [s.name for s in self.servers]

    def get_server(self, name: str) -> Server:
        for server in self.servers:
            if server.name == name:
                return server
        raise NotFoundError("server", name, available=self.server_names())

    def has_server(self, name: str) -> bool:
        return any(s.name == name for s in self.servers)

    def add_server(self, server: Server) -> None:
        """Validate and append a server.

        Raises:
            ConfigurationError: If the server is invalid
            DuplicateNameError: If the name is taken
        """
        if not server.port:
            server.port = DEFAULT_PORT
        server.validate()
        if self.has_server(server.name):
            raise DuplicateNameError("server", server.name)
        self.servers.append(server)

    def update_server(self, original_name: str, server: Server) -> None:
        """Replace a server in place, renaming it inside profiles if needed."""
        server.validate()
        index = self.servers.index(self.get_server(original_name))
        if server.name != original_name and self.has_server(server.name):
            raise DuplicateNameError("server", server.name)

        self.servers[index] = server
        if server.name != original_name:
            for profile in self.profiles:
                profile.servers = [
                    server.name if s == original_name else s for s in profile.servers
                ]

    def remove_server(self, name: str) -> None:
        """Remove a server and drop it from every profile."""
        server = self.get_server(name)
        self.servers.remove(server)
        for profile in self.profiles:
            if name in profile.servers:
                profile.servers.remove(name)

    # -- profiles -----------------------------------------------------------

    def profile_names(self) -> list[str]:
        return [p.name for p in self.profiles]

    def get_profile(self, name: str) -> Profile:
        for profile in self.profiles:
            if profile.name == name:
                return profile
        raise NotFoundError("profile", name, available=self.profile_names())

    def has_profile(self, name: str) -> bool:
        return any(p.name == name for p in self.profiles)

    def add_profile(self, profile: Profile) -> None:
        profile.validate()
        if self.has_profile(profile.name):
            raise DuplicateNameError("profile", profile.name)
        self.profiles.append(profile)

    def update_profile(self, original_name: str, profile: Profile) -> None:
        """Replace name and description of an existing profile, keeping members."""
        profile.validate()
        existing = self.get_profile(original_name)
        if profile.name != original_name and self.has_profile(profile.name):
            raise DuplicateNameError("profile", profile.name)
        existing.name = profile.name
        existing.description = profile.description

    def remove_profile(self, name: str) -> None:
        """Remove a profile. Its servers stay in the catalog."""
        self.profiles.remove(self.get_profile(name))

    def servers_by_profile(self, name: str) -> list[Server]:
        """Servers assigned to a profile, in profile order.

        Dangling names (servers removed behind the profile's back) are skipped.
        """
        profile = self.get_profile(name)
        by_name = {s.name: s for s in self.servers}
        return [by_name[n] for n in profile.servers if n in by_name]

    def profiles_for_server(self, name: str) -> list[Profile]:
        return [p for p in self.profiles if name in p.servers]

    def assign_server_to_profile(self, server_name: str, profile_name: str) -> None:
        self.get_server(server_name)
        profile = self.get_profile(profile_name)
        if server_name in profile.servers:
            raise ConfigurationError(
                f"server '{server_name}' is already assigned to profile '{profile_name}'",
                field="server",
            )
        profile.servers.append(server_name)

    def unassign_server_from_profile(self, server_name: str, profile_name: str) -> None:
        profile = self.get_profile(profile_name)
        if server_name not in profile.servers:
            raise ConfigurationError(
                f"server '{server_name}' is not assigned to profile '{profile_name}'",
                field="server",
            )
        profile.servers.remove(server_name)
