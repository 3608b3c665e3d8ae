"""Cyclic focus navigation over the visible fields and action buttons."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal

__all__ = ["FocusSequencer", "NavElement"]


@dataclass(frozen=True)
class NavElement:
    """Handle for one navigable element: a field or an action button."""

    kind: Literal["field", "action"]
    name: str

    @classmethod
    def field(cls, name: str) -> "NavElement":
        return cls("field", name)

    @classmethod
    def action(cls, name: str) -> "NavElement":
        return cls("action", name)

    @property
    def is_field(self) -> bool:
        return self.kind == "field"

    @property
    def is_action(self) -> bool:
        return self.kind == "action"


class FocusSequencer:
    """Ordered navigation sequence plus the index of the focused element.

    The index always stays within ``[0, len(sequence))`` while the sequence
    is non-empty. Tab and Shift+Tab map to ``next()`` and ``previous()``,
    both of which wrap around.
    """

    def __init__(self, sequence: Iterable[NavElement] = ()) -> None:
        self._sequence: list[NavElement] = list(sequence)
        self._index = 0

    @property
    def sequence(self) -> tuple[NavElement, ...]:
        return tuple(self._sequence)

    @property
    def index(self) -> int:
        return self._index

    def __len__(self) -> int:
        return len(self._sequence)

    def __contains__(self, element: object) -> bool:
        return element in self._sequence

    def current(self) -> NavElement | None:
        """The focused element, or None for an empty sequence."""
        if not self._sequence:
            return None
        return self._sequence[self._index]

    def next(self) -> NavElement | None:
        if len(self._sequence) > 1:
            self._index = (self._index + 1) % len(self._sequence)
        return self.current()

    def previous(self) -> NavElement | None:
        if len(self._sequence) > 1:
            self._index = (self._index - 1 + len(self._sequence)) % len(self._sequence)
        return self.current()

    def focus(self, element: NavElement) -> bool:
        """Jump to ``element`` (e.g. after a mouse click).

        Returns:
            False, leaving focus alone, if the element is not navigable
        """
        if element not in self._sequence:
            return False
        self._index = self._sequence.index(element)
        return True

    def recompute(self, sequence: Iterable[NavElement]) -> NavElement | None:
        """Replace the sequence, keeping focus on the same element if possible.

        If the focused element disappeared (e.g. its field was just hidden)
        focus goes back to the first element.
        """
        focused = self.current()
        self._sequence = list(sequence)
        if focused is not None and focused in self._sequence:
            self._index = self._sequence.index(focused)
        else:
            self._index = 0
        return self.current()

    def __repr__(self) -> str:
        return f"FocusSequencer(index={self._index}, sequence={self._sequence!r})"
