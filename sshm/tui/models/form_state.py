"""UI-agnostic form controller shared by every dialog.

``FormState`` owns a closed registry of fields, the focus sequencer and the
submit/cancel protocol. It knows nothing about prompt_toolkit: the
presentation layer reads values and errors from it and forwards user input
to ``set_value``, ``focus.next()``, ``submit()`` and ``cancel()``.

Lifecycle::

    EDITING --submit--> SUBMITTING --ok--> CLOSED
       ^                    |
       +----errors----------+
    EDITING --cancel--> CLOSED

Submission is transactional: the commit callback only sees a complete,
valid snapshot, and the dialog only closes once the callback succeeded.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from sshm.tui.background import LivenessToken
from sshm.tui.models.errors import (
    FORM_LEVEL,
    CommitFailedError,
    CustomValidationError,
    FormClosedError,
    FormError,
    InvalidOptionError,
    RequiredFieldEmptyError,
    UnknownFieldError,
)
from sshm.tui.models.field import Field
from sshm.tui.models.focus import FocusSequencer, NavElement
from sshm.tui.models.visibility import resolve_visibility

logger = logging.getLogger(__name__)

__all__ = ["FormState", "FormStatus", "ValidationMode", "MAX_ACTIONS"]

MAX_ACTIONS = 3

# The commit callback may finish synchronously (return None) or hand back
# a Future for work running on another thread.
SubmitCallback = Callable[[dict[str, str]], "Future[Any] | None"]
CancelCallback = Callable[[], None]
Dispatch = Callable[[Callable[[], None]], None]


class ValidationMode(str, Enum):
    """When field validators run."""

    ON_SUBMIT = "submit"  # Only when the user submits
    IMMEDIATE = "immediate"  # Also after every value change


class FormStatus(str, Enum):
    EDITING = "editing"
    SUBMITTING = "submitting"
    CLOSED = "closed"


def _call_directly(callback: Callable[[], None]) -> None:
    callback()


class FormState:
    """Field registry, validation pipeline and submit/cancel protocol.

    Args:
        fields: Fields of the dialog; names must be unique
        field_order: Default navigation order (defaults to declaration order)
        actions: Trailing action elements, at most three
        on_submit: Commit callback, receives the collected values
        on_cancel: Called when the dialog is cancelled
        on_committed: Called on the UI thread with the commit result (the
            future's result for background commits) right before closing
        validation_mode: ON_SUBMIT or IMMEDIATE
        dispatch: Runs a callable on the UI thread; used to deliver the
            result of a background commit
        title: Dialog title
    """

    def __init__(
        self,
        fields: Iterable[Field],
        *,
        field_order: Sequence[str] | None = None,
        actions: Sequence[str] = ("submit", "cancel"),
        on_submit: SubmitCallback | None = None,
        on_cancel: CancelCallback | None = None,
        on_committed: Callable[[Any], None] | None = None,
        validation_mode: ValidationMode = ValidationMode.ON_SUBMIT,
        dispatch: Dispatch | None = None,
        title: str = "",
    ) -> None:
        self._fields: dict[str, Field] = {}
        for f in fields:
            if f.name in self._fields:
                raise ValueError(f"duplicate field name '{f.name}'")
            self._fields[f.name] = f

        order = list(field_order) if field_order is not None else list(self._fields)
        if sorted(order) != sorted(self._fields):
            raise ValueError("field_order must list every registered field exactly once")
        if len(actions) > MAX_ACTIONS:
            raise ValueError(f"a form supports at most {MAX_ACTIONS} actions")

        for f in self._fields.values():
            for dep in f.depends_on + (f.visible_when.depends_on if f.visible_when else ()):
                if dep not in self._fields:
                    raise UnknownFieldError(dep)

        self.field_order: tuple[str, ...] = tuple(order)
        self.actions: tuple[str, ...] = tuple(actions)
        self.on_submit = on_submit
        self.on_cancel = on_cancel
        self.on_committed = on_committed
        self.validation_mode = validation_mode
        self.title = title
        self._dispatch = dispatch or _call_directly

        self.status = FormStatus.EDITING
        self.errors: dict[str, FormError] = {}
        self.token = LivenessToken()
        self.busy_message: str | None = None
        self.on_busy: Callable[[str | None], None] | None = None
        self.on_close: Callable[[], None] | None = None

        self._visible = resolve_visibility(self._fields.values(), self.values())
        self.focus = FocusSequencer(self.navigation_sequence())

    # -- registry -----------------------------------------------------------

    @property
    def fields(self) -> dict[str, Field]:
        return dict(self._fields)

    def field(self, name: str) -> Field:
        try:
            return self._fields[name]
        except KeyError:
            raise UnknownFieldError(name) from None

    def values(self) -> dict[str, str]:
        """Snapshot of every value, hidden fields included."""
        return {name: self._fields[name].value for name in self.field_order}

    def is_visible(self, name: str) -> bool:
        self.field(name)
        return self._visible[name]

    def visible_fields(self) -> list[Field]:
        return [self._fields[n] for n in self.field_order if self._visible[n]]

    def navigation_sequence(self) -> list[NavElement]:
        """Visible fields in order, followed by the action elements."""
        return [NavElement.field(f.name) for f in self.visible_fields()] + [
            NavElement.action(a) for a in self.actions
        ]

    @property
    def is_open(self) -> bool:
        return self.status != FormStatus.CLOSED

    @property
    def busy(self) -> bool:
        return self.busy_message is not None

    # -- values -------------------------------------------------------------

    def get_value(self, name: str) -> str:
        return self.field(name).value

    def set_value(self, name: str, value: str) -> None:
        """Store a new value and run the change pipeline.

        Order: visibility, then (immediate mode) validation of this field
        and of every field whose check depends on it, then the field's
        change callback.

        Raises:
            UnknownFieldError: If ``name`` is not registered
            InvalidOptionError: If an enum value is not a declared option;
                the stored value is left unchanged
            FormClosedError: If the form is already closed
        """
        field = self.field(name)
        if not self.is_open:
            raise FormClosedError(f"form '{self.title}' is closed")
        if value is None:
            value = ""
        if field.is_enum and value not in field.options:
            raise InvalidOptionError(name, value, field.options)

        field.value = value

        self._refresh_visibility()

        if self.validation_mode == ValidationMode.IMMEDIATE:
            self._validate_affected(name)
        else:
            self._clear_error(name)

        if field.on_change is not None:
            field.on_change(self, value)

    def _refresh_visibility(self) -> None:
        visible = resolve_visibility(self._fields.values(), self.values())
        if visible == self._visible:
            return
        self._visible = visible
        for name, shown in visible.items():
            if not shown:
                self._clear_error(name)
        self.focus.recompute(self.navigation_sequence())
        logger.debug("Visibility changed in %s: %s", self.title or "form", visible)

    def _validate_affected(self, name: str) -> None:
        affected = [name] + [
            n for n in self.field_order if n != name and name in self._fields[n].depends_on
        ]
        for target in affected:
            if not self._visible[target]:
                continue
            error = self.validate_field(target)
            if error is None:
                self._clear_error(target)
            else:
                self._set_error(error)

    def _set_error(self, error: FormError) -> None:
        self.errors[error.field] = error
        if error.field in self._fields:
            self._fields[error.field].validation_error = error.message

    def _clear_error(self, name: str) -> None:
        self.errors.pop(name, None)
        if name in self._fields:
            self._fields[name].validation_error = None

    # -- validation ---------------------------------------------------------

    def validate_field(self, name: str, candidate: str | None = None) -> FormError | None:
        """Check a candidate value (the stored one by default) without storing it.

        Runs the required check, enum membership, the field's validator and
        finally its cross-field check.
        """
        field = self.field(name)
        value = field.value if candidate is None else candidate

        if field.required and not value.strip():
            return RequiredFieldEmptyError(name, f"{field.label} is required")
        if field.is_enum and value not in field.options:
            return InvalidOptionError(name, value, field.options)
        if field.validator is not None:
            message = field.validator(value)
            if message:
                return CustomValidationError(name, message)
        if field.check is not None:
            values = self.values()
            values[name] = value
            message = field.check(value, values)
            if message:
                return CustomValidationError(name, message)
        return None

    def collect_errors(self) -> list[FormError]:
        """Validate every visible field, in field order, collecting all errors."""
        errors = []
        for f in self.visible_fields():
            error = self.validate_field(f.name)
            if error is not None:
                errors.append(error)
        return errors

    def validate_all(self) -> FormError | None:
        """First error among the visible fields (in field order), or None.

        Hidden fields are skipped, even when their stored value is invalid.
        """
        errors = self.collect_errors()
        return errors[0] if errors else None

    def collect(self) -> dict[str, str]:
        """Validate, then return every value (hidden fields included).

        Raises:
            FormError: The first validation error
        """
        error = self.validate_all()
        if error is not None:
            raise error
        return self.values()

    # -- operation in progress ---------------------------------------------

    def set_busy(self, message: str | None) -> None:
        """Show (message) or clear (None) the blocking progress indicator."""
        self.busy_message = message
        if self.on_busy is not None:
            self.on_busy(message)

    # -- submit / cancel ----------------------------------------------------

    def submit(self) -> bool:
        """Validate and commit.

        Returns:
            True once the form is closed. False when it stays open: there
            were errors, a background commit is still running, or an earlier
            one has not finished yet.
        """
        if not self.is_open:
            raise FormClosedError(f"form '{self.title}' is closed")
        if self.busy or self.status == FormStatus.SUBMITTING:
            logger.debug("Ignoring submit while an operation is in progress")
            return False

        self.status = FormStatus.SUBMITTING
        errors = self.collect_errors()
        if errors:
            self._fail(errors)
            return False

        values = self.values()
        self.errors.clear()
        for f in self._fields.values():
            f.validation_error = None

        try:
            pending = self.on_submit(values) if self.on_submit is not None else None
        except Exception as e:
            self._fail([self._commit_error(e)])
            return False

        if isinstance(pending, Future):
            self._await_commit(pending)
            # An already finished future may have closed the form by now
            return not self.is_open

        self._complete(pending)
        return True

    def _complete(self, result: Any) -> None:
        """Notify the committed listener and close, even if the listener fails."""
        try:
            if self.on_committed is not None:
                self.on_committed(result)
        except Exception:
            logger.exception("Committed listener of %s failed", self.title or "form")
        finally:
            self._close()

    def _commit_error(self, exc: BaseException) -> CommitFailedError:
        field = getattr(exc, "field", None) or FORM_LEVEL
        if field not in self._fields or not self._visible.get(field, False):
            field = FORM_LEVEL
        message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
        logger.warning("Commit of %s failed: %s", self.title or "form", message)
        return CommitFailedError(field, message, cause=exc)

    def _fail(self, errors: list[FormError]) -> None:
        self.errors.clear()
        for f in self._fields.values():
            f.validation_error = None
        for error in errors:
            self.errors.setdefault(error.field, error)
            if error.field in self._fields:
                self._fields[error.field].validation_error = error.message
        self.status = FormStatus.EDITING
        primary = errors[0]
        if primary.field in self._fields and self._visible[primary.field]:
            self.focus.focus(NavElement.field(primary.field))
        logger.debug("Submit of %s rejected: %s", self.title or "form", primary)

    def _await_commit(self, pending: "Future[Any]") -> None:
        token = self.token
        self.set_busy(self.busy_message or "Working...")

        def on_done(future: "Future[Any]") -> None:
            # Runs on the worker thread; hop back to the UI thread first
            if not token.alive:
                return
            self._dispatch(lambda: self._finish_commit(future))

        pending.add_done_callback(on_done)

    def _finish_commit(self, future: "Future[Any]") -> None:
        if not self.token.alive or not self.is_open:
            logger.debug("Dropping commit result for torn-down form %s", self.title)
            return
        self.set_busy(None)
        exc = future.exception() if not future.cancelled() else None
        if future.cancelled():
            self._fail([CommitFailedError(FORM_LEVEL, "operation was cancelled")])
        elif exc is not None:
            self._fail([self._commit_error(exc)])
        else:
            self._complete(future.result())

    def cancel(self) -> None:
        """Close without validating. Only the first call has any effect."""
        if not self.is_open:
            return
        self._close()
        if self.on_cancel is not None:
            self.on_cancel()

    def teardown(self) -> None:
        """Close because the owner went away; no callbacks run."""
        if self.is_open:
            logger.debug("Tearing down form %s", self.title or "form")
        self.status = FormStatus.CLOSED
        self.busy_message = None
        self.token.revoke()

    def _close(self) -> None:
        self.status = FormStatus.CLOSED
        self.busy_message = None
        self.token.revoke()
        logger.debug("Form %s closed", self.title or "form")
        if self.on_close is not None:
            self.on_close()

    def __repr__(self) -> str:
        return (
            f"FormState(title={self.title!r}, status={self.status.value}, "
            f"fields={list(self.field_order)})"
        )
