"""Field-scoped errors raised and reported by the form engine.

Every error carries the name of the field it belongs to and a message
suitable for showing next to that field. Form-level errors (a failed
commit that cannot be pinned to a field) use an empty field name.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "FORM_LEVEL",
    "CommitFailedError",
    "CustomValidationError",
    "FormClosedError",
    "FormError",
    "InvalidOptionError",
    "RequiredFieldEmptyError",
    "UnknownFieldError",
]

FORM_LEVEL = ""


class FormError(Exception):
    """Base class for errors attached to a form field."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}" if field else message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "field": self.field,
            "message": self.message,
        }


class UnknownFieldError(FormError, LookupError):
    """A field name that was never registered.

    This is a wiring defect, so it is always raised, never collected.
    """

    def __init__(self, field: str) -> None:
        super().__init__(field, f"unknown field '{field}'")


class InvalidOptionError(FormError):
    """A value outside an enumeration field's declared options."""

    def __init__(self, field: str, value: str, options: list[str]) -> None:
        self.value = value
        self.options = list(options)
        super().__init__(
            field, f"'{value}' is not one of: {', '.join(options)}"
        )


class RequiredFieldEmptyError(FormError):
    """A required field has no value."""


class CustomValidationError(FormError):
    """A field's own validator rejected the value."""


class CommitFailedError(FormError):
    """The commit callback failed; shown verbatim on the form."""

    def __init__(self, field: str, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(field, message)


class FormClosedError(RuntimeError):
    """A closed form was mutated or submitted again."""
