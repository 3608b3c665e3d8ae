"""Explicit ownership of the dialogs shown on top of the main screen.

The application keeps open dialogs on a ``ModalStack``. Only the top one
receives input. At most one open dialog may own a ``FormState``: a second
form dialog while one is open is a wiring error. Hiding a dialog, or
clearing the whole stack on shutdown, tears down the form it owns so any
background work it started is abandoned.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from sshm.tui.models.form_state import FormState

logger = logging.getLogger(__name__)

__all__ = ["Modal", "ModalStack"]


class Modal(Protocol):
    """Anything the application can show as a dialog."""

    title: str

    @property
    def form(self) -> FormState | None: ...


class ModalStack:
    """Stack of open dialogs, topmost last."""

    def __init__(self) -> None:
        self._stack: list[Any] = []

    def show(self, modal: Modal) -> None:
        if modal.form is not None and self.form is not None:
            raise RuntimeError(
                f"cannot open '{modal.title}' while '{self.form.title}' is still open"
            )
        self._stack.append(modal)
        logger.debug("Showing dialog %s (depth %d)", modal.title, len(self._stack))

    def hide(self) -> Modal | None:
        """Close the topmost dialog and tear down its form."""
        if not self._stack:
            return None
        modal = self._stack.pop()
        if modal.form is not None:
            modal.form.teardown()
        logger.debug("Hid dialog %s", modal.title)
        return modal

    def remove(self, modal: Modal) -> None:
        """Close a specific dialog, wherever it sits on the stack."""
        if modal in self._stack:
            self._stack.remove(modal)
            if modal.form is not None:
                modal.form.teardown()

    @property
    def current(self) -> Modal | None:
        return self._stack[-1] if self._stack else None

    @property
    def is_active(self) -> bool:
        return bool(self._stack)

    @property
    def form(self) -> FormState | None:
        """The one live form, if any dialog owns one."""
        for modal in self._stack:
            if modal.form is not None and modal.form.is_open:
                return modal.form
        return None

    def clear_all(self) -> None:
        while self._stack:
            self.hide()

    def __len__(self) -> int:
        return len(self._stack)
