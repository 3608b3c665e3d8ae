"""Import and export of the host catalog.

Supported formats:
    yaml  - same layout as config.yaml
    json  - same layout as config.yaml, serialized as JSON
    ssh   - OpenSSH client config (import only)

Both operations accept an optional ``progress(step, total, message)``
callback so callers running them in the background can show where they are.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import yaml

from sshm.lib.config import Config, Profile, Server
from sshm.lib.errors import ConfigurationError, ImportExportError
from sshm.lib.ssh_config import parse_ssh_config

logger = logging.getLogger(__name__)

__all__ = [
    "EXPORT_FORMATS",
    "IMPORT_FORMATS",
    "ExportResult",
    "ImportResult",
    "ProgressCallback",
    "detect_export_format",
    "detect_import_format",
    "export_servers",
    "import_servers",
    "read_config_file",
]

IMPORT_FORMATS = ("yaml", "json", "ssh")
EXPORT_FORMATS = ("yaml", "json")

IMPORT_STEPS = 4
EXPORT_STEPS = 3

ProgressCallback = Callable[[int, int, str], None]


def detect_import_format(path: Path | str) -> str:
    """Guess the import format from the file name."""
    p = Path(path)
    ext = p.suffix.lower()
    base = p.name.lower()

    if ext in (".yaml", ".yml"):
        return "yaml"
    if ext == ".json":
        return "json"
    if base in ("config", "ssh_config") or "ssh" in base:
        return "ssh"
    return "yaml"


def detect_export_format(path: Path | str) -> str:
    return "json" if Path(path).suffix.lower() == ".json" else "yaml"


def _report(progress: Optional[ProgressCallback], step: int, total: int, message: str) -> None:
    logger.debug("[%d/%d] %s", step, total, message)
    if progress is not None:
        progress(step, total, message)


def read_config_file(path: Path | str, fmt: str) -> tuple[list[Server], list[Profile]]:
    """Parse a catalog file, skipping invalid server entries.

    Raises:
        ImportExportError: If the file cannot be read or parsed
    """
    file_path = Path(path)
    if fmt == "ssh":
        return parse_ssh_config(file_path), []

    try:
        text = file_path.read_text(encoding="utf-8")
        data = json.loads(text) if fmt == "json" else yaml.safe_load(text)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ImportExportError(
            f"failed to parse {fmt.upper()} config",
            path=str(file_path),
            file_format=fmt,
            cause=e,
        ) from e

    if not isinstance(data, dict):
        data = {}

    try:
        parsed = Config.from_dict(data)
    except ConfigurationError as e:
        raise ImportExportError(
            e.message, path=str(file_path), file_format=fmt, cause=e
        ) from e

    valid: list[Server] = []
    for server in parsed.servers:
        try:
            server.validate()
        except ConfigurationError as e:
            logger.warning("Skipping invalid server %s: %s", server.name or "<unnamed>", e.message)
            continue
        valid.append(server)

    return valid, parsed.profiles


@dataclass
class ImportResult:
    """Outcome of an import."""

    path: Path
    file_format: str
    imported: int = 0
    updated: int = 0
    profiles: int = 0
    created_profile: str | None = None
    skipped: list[str] = field(default_factory=list)
    dropped_passwords: list[str] = field(default_factory=list)

    def summary(self) -> str:
        parts = [f"{self.imported} servers imported"]
        if self.updated:
            parts.append(f"{self.updated} updated")
        if self.profiles:
            parts.append(f"{self.profiles} profiles imported")
        if self.created_profile:
            parts.append(f"profile '{self.created_profile}' created")
        if self.dropped_passwords:
            parts.append(f"{len(self.dropped_passwords)} passwords not imported")
        return ", ".join(parts)


def _strip_password(config: Config, server: Server, result: ImportResult) -> None:
    if server.password:
        logger.warning(
            "Ignoring plaintext password for %s; store it with: sshm keyring set %s",
            server.name,
            server.name,
        )
        result.dropped_passwords.append(server.name)
    server.password = ""
    server.use_keyring = False
    if server.auth_type == "password" and config.has_server(server.name):
        server.use_keyring = config.get_server(server.name).use_keyring


def import_servers(
    config: Config,
    path: Path | str,
    *,
    fmt: str | None = None,
    profile: str | None = None,
    progress: Optional[ProgressCallback] = None,
    save: bool = True,
) -> ImportResult:
    """Merge servers (and profiles) from a file into the catalog.

    Existing servers with the same name are replaced in place, existing
    profiles with the same name are replaced. When ``profile`` is given, all
    imported servers are also grouped into that profile.

    Passwords are never taken from the file: plaintext values are dropped
    with a warning (store them with ``sshm keyring set``). A replaced password
    server keeps its keyring entry.

    Args:
        config: Catalog to merge into
        path: File to import
        fmt: Format override; detected from the file name when omitted
        profile: Optional profile to collect the imported servers in
        progress: Optional progress callback
        save: Persist the catalog afterwards

    Raises:
        ImportExportError: If the file is missing, unsupported or empty
    """
    file_path = Path(path)
    _report(progress, 1, IMPORT_STEPS, f"Reading {file_path.name}")
    if not file_path.exists():
        raise ImportExportError(f"file does not exist: {file_path}", path=str(file_path))

    file_format = fmt or detect_import_format(file_path)
    if file_format not in IMPORT_FORMATS:
        raise ImportExportError(
            f"unsupported file type: {file_format} (supported: ssh, yaml, json)",
            path=str(file_path),
        )

    _report(progress, 2, IMPORT_STEPS, f"Parsing {file_format} file")
    servers, profiles = read_config_file(file_path, file_format)
    if not servers:
        raise ImportExportError(
            "no valid server configurations found in file",
            path=str(file_path),
            file_format=file_format,
        )

    _report(progress, 3, IMPORT_STEPS, f"Merging {len(servers)} servers")
    result = ImportResult(path=file_path, file_format=file_format)

    for server in servers:
        _strip_password(config, server, result)
        if config.has_server(server.name):
            config.update_server(server.name, server)
            result.updated += 1
        else:
            config.add_server(server)
            result.imported += 1

    for imported_profile in profiles:
        try:
            if config.has_profile(imported_profile.name):
                config.remove_profile(imported_profile.name)
            config.add_profile(imported_profile)
        except ConfigurationError as e:
            logger.warning("Skipping profile %s: %s", imported_profile.name, e.message)
            result.skipped.append(imported_profile.name)
            continue
        result.profiles += 1

    if profile:
        if config.has_profile(profile):
            config.remove_profile(profile)
        config.add_profile(
            Profile(
                name=profile,
                description=f"Servers imported from {file_path.name}",
                servers=[s.name for s in servers],
            )
        )
        result.created_profile = profile

    _report(progress, 4, IMPORT_STEPS, "Saving configuration")
    if save:
        config.save()

    logger.info("Import from %s complete: %s", file_path, result.summary())
    return result


@dataclass
class ExportResult:
    """Outcome of an export."""

    path: Path
    file_format: str
    servers: int
    profiles: int

    def summary(self) -> str:
        return (
            f"Exported {self.servers} servers and {self.profiles} profiles "
            f"to {self.path} ({self.file_format})"
        )


def export_servers(
    config: Config,
    path: Path | str,
    *,
    fmt: str | None = None,
    profile: str | None = None,
    progress: Optional[ProgressCallback] = None,
) -> ExportResult:
    """Write the catalog, or one profile and its servers, to a file.

    Stored passwords are left out of the export.

    Raises:
        ImportExportError: If the format is unsupported or the file cannot be written
        NotFoundError: If ``profile`` does not exist
    """
    output = Path(path)
    file_format = fmt or detect_export_format(output)
    if file_format not in EXPORT_FORMATS:
        raise ImportExportError(
            f"unsupported export format: {file_format} (supported: yaml, json)",
            path=str(output),
        )

    _report(progress, 1, EXPORT_STEPS, "Collecting servers")
    if profile:
        selected = Config(
            servers=config.servers_by_profile(profile),
            profiles=[config.get_profile(profile)],
        )
    else:
        selected = Config(servers=list(config.servers), profiles=list(config.profiles))

    _report(progress, 2, EXPORT_STEPS, f"Serializing as {file_format}")
    document: dict[str, Any] = selected.to_dict(include_secrets=False)
    if file_format == "json":
        content = json.dumps(document, indent=2) + "\n"
    else:
        content = yaml.safe_dump(document, sort_keys=False, default_flow_style=False)

    _report(progress, 3, EXPORT_STEPS, f"Writing {output.name}")
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ImportExportError(
            "failed to write export file", path=str(output), file_format=file_format, cause=e
        ) from e

    result = ExportResult(
        path=output,
        file_format=file_format,
        servers=len(selected.servers),
        profiles=len(selected.profiles),
    )
    logger.info(result.summary())
    return result
