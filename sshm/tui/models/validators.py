"""Validators for the host and profile dialogs.

Each validator takes the raw string from the input and returns an error
message, or ``None`` when the value is acceptable. Factories build
validators that need extra context (existing names, allowed choices).
"""

from __future__ import annotations

import re
from typing import Iterable, Mapping

from sshm.tui.models.field import CrossFieldCheck, Validator

__all__ = [
    "key_path_for_auth",
    "profile_name_validator",
    "server_choice_validator",
    "validate_auth_type",
    "validate_hostname",
    "validate_key_path",
    "validate_passphrase_protected",
    "validate_password",
    "validate_port",
    "validate_profile_description",
    "validate_server_name",
    "validate_username",
]

_SERVER_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_PROFILE_NAME_RE = re.compile(r"^[A-Za-z0-9_ -]+$")


def validate_server_name(value: str) -> str | None:
    value = value.strip()
    if not value:
        return "Server name is required"
    if len(value) < 2:
        return "Server name must be at least 2 characters"
    if len(value) > 50:
        return "Server name must be 50 characters or less"
    if not _SERVER_NAME_RE.match(value):
        return "Server name can only contain letters, numbers, hyphens, and underscores"
    return None


def validate_hostname(value: str) -> str | None:
    value = value.strip()
    if not value:
        return "Hostname is required"
    if len(value) > 253:
        return "Hostname is too long (max 253 characters)"
    return None


def validate_port(value: str) -> str | None:
    value = value.strip()
    if not value:
        return "Port is required"
    if not value.isdigit():
        return "Port must be a number"
    if not 1 <= int(value) <= 65535:
        return "Port must be between 1 and 65535"
    return None


def validate_username(value: str) -> str | None:
    value = value.strip()
    if not value:
        return "Username is required"
    if len(value) > 32:
        return "Username is too long (max 32 characters)"
    return None


def validate_auth_type(value: str) -> str | None:
    if value not in ("key", "password"):
        return "Auth type must be 'key' or 'password'"
    return None


def validate_key_path(value: str) -> str | None:
    if len(value.strip()) > 500:
        return "Key path is too long (max 500 characters)"
    return None


def validate_passphrase_protected(value: str) -> str | None:
    if value.strip().lower() not in ("", "true", "false"):
        return "Passphrase protected must be 'true' or 'false'"
    return None


def validate_password(value: str) -> str | None:
    if len(value) > 128:
        return "Password is too long (max 128 characters)"
    if value and len(value) < 3:
        return "Password must be at least 3 characters"
    return None


def key_path_for_auth(auth_field: str = "auth_type") -> CrossFieldCheck:
    """Cross-field check: a key path is needed when key auth is selected."""

    def check(value: str, values: Mapping[str, str]) -> str | None:
        if values.get(auth_field) == "key" and not value.strip():
            return "Key path is required for key authentication"
        return None

    return check


def profile_name_validator(
    existing: Iterable[str], current: str | None = None
) -> Validator:
    """Profile names: 2-50 chars, unique except for the profile being edited."""
    taken = {name for name in existing if name != current}

    def validate(value: str) -> str | None:
        value = value.strip()
        if not value:
            return "Profile name is required"
        if len(value) < 2:
            return "Profile name must be at least 2 characters"
        if len(value) > 50:
            return "Profile name must be 50 characters or less"
        if not _PROFILE_NAME_RE.match(value):
            return "Profile name can only contain letters, numbers, spaces, hyphens, and underscores"
        if value in taken:
            return f"Profile '{value}' already exists"
        return None

    return validate


def validate_profile_description(value: str) -> str | None:
    if len(value) >= 200:
        return "Description must be less than 200 characters"
    return None


def server_choice_validator(choices: Iterable[str], action: str = "assign") -> Validator:
    """Selected server must be one of ``choices`` (available or assigned)."""
    allowed = list(choices)
    where = "available" if action == "assign" else "assigned to this profile"

    def validate(value: str) -> str | None:
        if not value.strip():
            return "Please select a server"
        if value not in allowed:
            return f"Server '{value}' is not {where}"
        return None

    return validate
