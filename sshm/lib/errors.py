"""Structured exception hierarchy for sshm.

Provides specific exception types for the failure modes of the host
catalog, import/export and tmux layers, with enough context to print a
useful one-line error or log a structured record.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

__all__ = [
    "SshmError",
    "ConfigurationError",
    "DuplicateNameError",
    "NotFoundError",
    "ImportExportError",
    "TmuxError",
    "CredentialError",
    "HistoryError",
]


class SshmError(Exception):
    """Base exception for all sshm errors.

    ``message`` is the short, user-facing text. ``str()`` of the exception
    additionally carries details and a suggestion when they are given.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.field = field
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if details:
            detail_lines = [f"  {k}: {v}" for k, v in details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "field": self.field,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigurationError(SshmError):
    """Invalid server or profile configuration.

    Raised when a host entry or profile fails validation, or when the
    configuration file cannot be read or written.
    """

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.path = path
        self.cause = cause

        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class DuplicateNameError(ConfigurationError):
    """A server or profile with the same name already exists."""

    def __init__(self, kind: str, name: str, **kwargs: Any) -> None:
        self.kind = kind
        self.name = name
        kwargs.setdefault("field", "name")
        super().__init__(f"{kind} with name '{name}' already exists", **kwargs)


class NotFoundError(SshmError):
    """A named server or profile does not exist."""

    def __init__(
        self,
        kind: str,
        name: str,
        *,
        available: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.kind = kind
        self.name = name

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion and available:
            suggestion = f"Known {kind}s: {', '.join(sorted(available))}"

        super().__init__(f"{kind} '{name}' not found", suggestion=suggestion, **kwargs)


class ImportExportError(SshmError):
    """Import or export of a host catalog failed."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        file_format: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.path = path
        self.file_format = file_format
        self.cause = cause

        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        if file_format:
            details["format"] = file_format
        if cause:
            details["cause"] = str(cause)

        super().__init__(message, details=details, **kwargs)


class TmuxError(SshmError):
    """A tmux command failed or tmux is not installed."""

    def __init__(
        self,
        message: str,
        *,
        command: Optional[List[str]] = None,
        stderr: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.command = command
        self.stderr = stderr

        details = kwargs.pop("details", {})
        if command:
            details["command"] = " ".join(command)
        if stderr:
            details["stderr"] = stderr.strip()

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion and command is None:
            suggestion = "Install tmux and make sure it is on your PATH."

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class CredentialError(SshmError):
    """The system keyring refused to store, read or delete a password."""

    def __init__(
        self,
        message: str,
        *,
        server: Optional[str] = None,
        backend: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.server = server
        self.backend = backend
        self.cause = cause

        details = kwargs.pop("details", {})
        if server:
            details["server"] = server
        if backend:
            details["backend"] = backend
        if cause:
            details["cause"] = str(cause)

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = "Check that a keyring backend is installed and unlocked."

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class HistoryError(SshmError):
    """The connection history database could not be read or written."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.path = path
        self.cause = cause

        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)
