"""UI-agnostic form engine for the TUI.

This package provides the field registry, validation pipeline, visibility
resolver, focus sequencer and form controller. None of it imports
prompt_toolkit, so everything here can be tested on its own.
"""

from sshm.tui.models.errors import (
    CommitFailedError,
    CustomValidationError,
    FormClosedError,
    FormError,
    InvalidOptionError,
    RequiredFieldEmptyError,
    UnknownFieldError,
)
from sshm.tui.models.field import Field, FieldKind
from sshm.tui.models.focus import FocusSequencer, NavElement
from sshm.tui.models.form_state import FormState, FormStatus, ValidationMode
from sshm.tui.models.visibility import VisibilityRule, resolve_visibility, visible_when_equals

__all__ = [
    "CommitFailedError",
    "CustomValidationError",
    "Field",
    "FieldKind",
    "FocusSequencer",
    "FormClosedError",
    "FormError",
    "FormState",
    "FormStatus",
    "InvalidOptionError",
    "NavElement",
    "RequiredFieldEmptyError",
    "UnknownFieldError",
    "ValidationMode",
    "VisibilityRule",
    "resolve_visibility",
    "visible_when_equals",
]
