"""Shared constants for TUI modules.

Centralizes field names, option lists and labels used by the dialog
builders, the application and the CLI.
"""

from __future__ import annotations

# Host dialog fields in navigation order
SERVER_FIELD_ORDER: tuple[str, ...] = (
    "name",
    "hostname",
    "port",
    "username",
    "auth_type",
    "password",
    "key_path",
    "passphrase_protected",
)

AUTH_TYPE_OPTIONS: list[str] = ["key", "password"]
BOOL_OPTIONS: list[str] = ["false", "true"]

PROFILE_FIELD_ORDER: tuple[str, ...] = ("name", "description")

# Import/export dialog choices mapped to transfer formats (None = detect)
IMPORT_FORMAT_OPTIONS: dict[str, str | None] = {
    "Auto-detect": None,
    "YAML": "yaml",
    "JSON": "json",
    "SSH Config": "ssh",
}
EXPORT_FORMAT_OPTIONS: dict[str, str] = {
    "YAML": "yaml",
    "JSON": "json",
}
ALL_PROFILES_OPTION = "All"

# Action element names; the application maps them to buttons
ACTION_SUBMIT = "submit"
ACTION_CANCEL = "cancel"
ACTION_BROWSE = "browse"

ACTION_LABELS: dict[str, str] = {
    ACTION_SUBMIT: "Save",
    ACTION_CANCEL: "Cancel",
    ACTION_BROWSE: "Browse...",
}

DELETE_PROFILE_MESSAGE = (
    "Delete profile '{name}'?\n\n"
    "Description: {description}\n"
    "Assigned servers: {count}\n\n"
    "This action cannot be undone.\n"
    "Servers will not be deleted, only removed from this profile."
)

DELETE_SERVER_MESSAGE = (
    "Delete server '{name}' ({username}@{hostname})?\n\n"
    "It will also be removed from {count} profile(s).\n"
    "This action cannot be undone."
)
