"""A single named unit of user input inside a dialog."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from sshm.tui.models.visibility import VisibilityRule

if TYPE_CHECKING:
    from sshm.tui.models.form_state import FormState

__all__ = ["CrossFieldCheck", "Field", "FieldKind", "Validator"]

# value -> error message, or None when valid
Validator = Callable[[str], Optional[str]]
# (value, all current values) -> error message, or None when valid
CrossFieldCheck = Callable[[str, Mapping[str, str]], Optional[str]]
ChangeCallback = Callable[["FormState", str], None]


class FieldKind(str, Enum):
    """How a field is edited and displayed."""

    TEXT = "text"
    SECRET = "secret"  # Masked single-line text
    ENUM = "enum"  # Single choice from a fixed option list


@dataclass
class Field:
    """Represents one input of a form.

    A field's value is always a string. For ENUM fields it is always one
    of ``options``; the engine refuses anything else.

    Attributes:
        name: Identifier, unique within a form
        label: Text shown next to the input (derived from name if empty)
        kind: TEXT, SECRET or ENUM
        value: Current value
        required: An empty value is an error regardless of the validator
        options: ENUM choices in display order (the index is the position)
        validator: Checks the value on its own
        check: Checks the value against sibling values
        depends_on: Sibling fields ``check`` reads; a change to any of them
            re-runs this field's validation in immediate mode
        visible_when: Rule deciding whether the field is shown
        on_change: Called with the form and new value after each change
        help_text: One line of guidance shown while focused
        validation_error: Message currently displayed for this field
    """

    name: str
    label: str = ""
    kind: FieldKind = FieldKind.TEXT
    value: str = ""
    required: bool = False
    options: list[str] = field(default_factory=list)
    validator: Validator | None = field(default=None, repr=False)
    check: CrossFieldCheck | None = field(default=None, repr=False)
    depends_on: tuple[str, ...] = ()
    visible_when: VisibilityRule | None = field(default=None, repr=False)
    on_change: ChangeCallback | None = field(default=None, repr=False)
    help_text: str = ""
    validation_error: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("field name must not be empty")
        if not self.label:
            self.label = self.name.replace("_", " ").title()
        if self.value is None:
            self.value = ""

        if self.kind == FieldKind.ENUM:
            if not self.options:
                raise ValueError(f"enum field '{self.name}' needs at least one option")
            if len(set(self.options)) != len(self.options):
                raise ValueError(f"enum field '{self.name}' has duplicate options")
            if not self.value:
                self.value = self.options[0]
            elif self.value not in self.options:
                raise ValueError(
                    f"initial value {self.value!r} of '{self.name}' is not an option"
                )
        elif self.options:
            raise ValueError(f"only enum fields take options ('{self.name}')")

    @property
    def is_enum(self) -> bool:
        return self.kind == FieldKind.ENUM

    @property
    def is_secret(self) -> bool:
        return self.kind == FieldKind.SECRET

    @property
    def selected_index(self) -> int:
        """Position of the current option (ENUM only, -1 otherwise)."""
        if not self.is_enum:
            return -1
        return self.options.index(self.value)

    def cycle(self, step: int = 1) -> str:
        """Return the option ``step`` places away, wrapping around.

        Does not change the field; pass the result to ``FormState.set_value``
        so visibility and validation run.
        """
        if not self.is_enum:
            raise TypeError(f"field '{self.name}' is not an enum")
        return self.options[(self.selected_index + step) % len(self.options)]

    def display_value(self) -> str:
        if self.is_secret:
            return "*" * len(self.value)
        return self.value

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for debugging and logs (secrets masked)."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "value": self.display_value(),
            "required": self.required,
            "options": list(self.options),
            "validation_error": self.validation_error,
        }

    def __str__(self) -> str:
        return f"{self.name}={self.display_value()!r}"
