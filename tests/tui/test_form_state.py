"""Tests for the FormState controller.

These tests verify the form engine without requiring prompt_toolkit.
"""

from __future__ import annotations

from concurrent.futures import Future
from typing import Any, Callable

import pytest

from sshm.lib.errors import ConfigurationError
from sshm.tui.models import (
    CommitFailedError,
    CustomValidationError,
    Field,
    FieldKind,
    FormClosedError,
    FormState,
    FormStatus,
    InvalidOptionError,
    NavElement,
    RequiredFieldEmptyError,
    UnknownFieldError,
    ValidationMode,
    visible_when_equals,
)
from sshm.tui.models.errors import FORM_LEVEL


def _host_fields() -> list[Field]:
    return [
        Field("name", required=True),
        Field("kind", kind=FieldKind.ENUM, options=["key", "password"], value="key"),
        Field("secret", visible_when=visible_when_equals("kind", "password")),
    ]


def _min_length(n: int) -> Callable[[str], str | None]:
    def check(value: str) -> str | None:
        return f"must be at least {n} characters" if len(value) < n else None

    return check


class TestConstruction:
    """Tests for building a form."""

    def test_duplicate_field_names(self) -> None:
        with pytest.raises(ValueError, match="duplicate field name"):
            FormState([Field("name"), Field("name")])

    def test_field_order_must_cover_every_field(self) -> None:
        with pytest.raises(ValueError, match="field_order"):
            FormState([Field("a"), Field("b")], field_order=["a"])

    def test_at_most_three_actions(self) -> None:
        with pytest.raises(ValueError, match="at most 3"):
            FormState([Field("a")], actions=("a", "b", "c", "d"))

    def test_unknown_dependency(self) -> None:
        with pytest.raises(UnknownFieldError):
            FormState([Field("secret", visible_when=visible_when_equals("kind", "x"))])

    def test_initial_focus_is_first_visible_field(self) -> None:
        form = FormState(
            [Field("hidden", visible_when=visible_when_equals("b", "x")), Field("b")]
        )
        assert form.focus.current() == NavElement.field("b")

    def test_no_visible_fields_focuses_first_action(self) -> None:
        form = FormState([Field("a", visible_when=visible_when_equals("a", "x"))])
        assert form.focus.current() == NavElement.action("submit")

    def test_navigation_sequence(self, auth_fields: list[Field]) -> None:
        form = FormState(auth_fields)
        assert form.navigation_sequence() == [
            NavElement.field("name"),
            NavElement.field("auth_type"),
            NavElement.field("key_path"),
            NavElement.action("submit"),
            NavElement.action("cancel"),
        ]


class TestScenarios:
    """End-to-end behaviour of a small host dialog."""

    def test_required_then_conditional_field(self) -> None:
        form = FormState(_host_fields())

        with pytest.raises(RequiredFieldEmptyError) as exc_info:
            form.collect()
        assert exc_info.value.field == "name"

        form.set_value("name", "host1")
        form.set_value("kind", "password")

        assert form.is_visible("secret")
        assert form.collect() == {"name": "host1", "kind": "password", "secret": ""}

    def test_focus_wraps_both_ways(self) -> None:
        form = FormState(_host_fields())
        form.set_value("kind", "password")
        assert len(form.focus) == 5

        form.focus.focus(NavElement.action("cancel"))
        assert form.focus.next() == NavElement.field("name")
        assert form.focus.previous() == NavElement.action("cancel")

    def test_invalid_option_leaves_value(self) -> None:
        form = FormState(_host_fields())

        with pytest.raises(InvalidOptionError) as exc_info:
            form.set_value("kind", "kerberos")

        assert exc_info.value.field == "kind"
        assert exc_info.value.options == ["key", "password"]
        assert form.get_value("kind") == "key"


class TestValues:
    """Tests for set_value and the change pipeline."""

    def test_unknown_field(self) -> None:
        form = FormState(_host_fields())
        with pytest.raises(UnknownFieldError):
            form.set_value("nope", "x")
        with pytest.raises(UnknownFieldError):
            form.get_value("nope")
        with pytest.raises(UnknownFieldError):
            form.is_visible("nope")

    def test_none_becomes_empty_string(self) -> None:
        form = FormState(_host_fields())
        form.set_value("name", None)  # type: ignore[arg-type]
        assert form.get_value("name") == ""

    def test_values_include_hidden_fields(self) -> None:
        form = FormState(_host_fields())
        form.set_value("kind", "password")
        form.set_value("secret", "s3")
        form.set_value("kind", "key")

        assert form.values()["secret"] == "s3"

    def test_hiding_focused_field_moves_focus_to_first(self) -> None:
        form = FormState(_host_fields())
        form.set_value("kind", "password")
        form.focus.focus(NavElement.field("secret"))

        form.set_value("kind", "key")

        assert form.focus.current() == NavElement.field("name")

    def test_showing_field_keeps_focus(self) -> None:
        form = FormState(_host_fields())
        form.focus.focus(NavElement.action("submit"))

        form.set_value("kind", "password")

        assert form.focus.current() == NavElement.action("submit")
        assert NavElement.field("secret") in form.focus

    def test_change_callback_sees_updated_visibility(self) -> None:
        seen: list[tuple[str, bool]] = []
        fields = _host_fields()
        fields[1].on_change = lambda form, value: seen.append((value, form.is_visible("secret")))
        form = FormState(fields)

        form.set_value("kind", "password")

        assert seen == [("password", True)]

    def test_on_submit_mode_clears_error_on_edit(self) -> None:
        form = FormState(_host_fields())
        form.submit()
        assert "name" in form.errors

        form.set_value("name", "")

        assert "name" not in form.errors
        assert form.field("name").validation_error is None

    def test_immediate_mode_validates_on_change(self) -> None:
        fields = [Field("name", validator=_min_length(3))]
        form = FormState(fields, validation_mode=ValidationMode.IMMEDIATE)

        form.set_value("name", "ab")
        assert isinstance(form.errors["name"], CustomValidationError)
        assert form.field("name").validation_error == "must be at least 3 characters"

        form.set_value("name", "abc")
        assert form.errors == {}

    def test_immediate_mode_revalidates_dependents(self) -> None:
        def needs_path(value: str, values: Any) -> str | None:
            if values["kind"] == "key" and not value:
                return "path required"
            return None

        fields = [
            Field("kind", kind=FieldKind.ENUM, options=["password", "key"]),
            Field("path", check=needs_path, depends_on=("kind",)),
        ]
        form = FormState(fields, validation_mode=ValidationMode.IMMEDIATE)

        form.set_value("kind", "key")
        assert form.errors["path"].message == "path required"

        form.set_value("kind", "password")
        assert "path" not in form.errors

    def test_hiding_field_clears_its_error(self) -> None:
        fields = _host_fields()
        fields[2].required = True
        form = FormState(fields)
        form.set_value("name", "x")
        form.set_value("kind", "password")
        form.submit()
        assert "secret" in form.errors

        form.set_value("kind", "key")

        assert "secret" not in form.errors


class TestValidation:
    """Tests for validate_field, validate_all and collect."""

    def test_validate_candidate_does_not_store(self) -> None:
        form = FormState([Field("name", validator=_min_length(3))])

        error = form.validate_field("name", "ab")

        assert isinstance(error, CustomValidationError)
        assert form.get_value("name") == ""

    def test_required_checked_before_validator(self) -> None:
        form = FormState([Field("name", required=True, validator=_min_length(3))])
        assert isinstance(form.validate_field("name"), RequiredFieldEmptyError)

    def test_whitespace_only_is_empty(self) -> None:
        form = FormState([Field("name", required=True)])
        form.set_value("name", "   ")
        assert isinstance(form.validate_all(), RequiredFieldEmptyError)

    def test_hidden_fields_are_skipped(self) -> None:
        fields = _host_fields()
        fields[2].validator = lambda value: "always wrong"
        form = FormState(fields)
        form.set_value("name", "x")

        assert form.validate_all() is None

    def test_full_sweep_first_error_in_field_order(self) -> None:
        form = FormState(
            [Field("b", required=True), Field("a", required=True)],
            field_order=["a", "b"],
        )

        errors = form.collect_errors()

        assert [e.field for e in errors] == ["a", "b"]
        assert form.validate_all().field == "a"

    @pytest.mark.parametrize("name", ["", "x"])
    def test_collect_raises_iff_validate_all_errors(self, name: str) -> None:
        form = FormState(_host_fields())
        form.set_value("name", name)

        expected = form.validate_all()
        if expected is None:
            assert form.collect()["name"] == name
        else:
            with pytest.raises(type(expected)):
                form.collect()


class TestSubmit:
    """Tests for synchronous submit and cancel."""

    def test_errors_keep_form_open_and_focus_first_error(self) -> None:
        form = FormState(
            [Field("a", required=True), Field("b", required=True)],
            on_submit=lambda values: pytest.fail("commit must not run"),
        )
        form.focus.focus(NavElement.action("submit"))

        assert form.submit() is False

        assert form.status == FormStatus.EDITING
        assert set(form.errors) == {"a", "b"}
        assert form.focus.current() == NavElement.field("a")

    def test_success_closes_and_delivers_result(self) -> None:
        received: list[Any] = []
        closed: list[bool] = []
        form = FormState(
            _host_fields(),
            on_submit=lambda values: values["name"].upper(),
            on_committed=received.append,
        )
        form.on_close = lambda: closed.append(True)
        form.set_value("name", "web1")

        assert form.submit() is True

        assert received == ["WEB1"]
        assert closed == [True]
        assert form.status == FormStatus.CLOSED
        assert form.token.alive is False

    def test_commit_receives_hidden_values(self) -> None:
        seen: list[dict] = []
        form = FormState(_host_fields(), on_submit=seen.append)
        form.set_value("name", "x")
        form.set_value("kind", "password")
        form.set_value("secret", "s")
        form.set_value("kind", "key")

        form.submit()

        assert seen == [{"name": "x", "kind": "key", "secret": "s"}]

    def test_commit_error_lands_on_field(self) -> None:
        def commit(values: dict) -> None:
            raise ConfigurationError("server with name 'x' already exists", field="name")

        form = FormState(_host_fields(), on_submit=commit)
        form.set_value("name", "x")

        assert form.submit() is False

        error = form.errors["name"]
        assert isinstance(error, CommitFailedError)
        assert error.message == "server with name 'x' already exists"
        assert form.is_open

    def test_commit_error_without_visible_field_is_form_level(self) -> None:
        def commit(values: dict) -> None:
            raise OSError("disk full")

        form = FormState(_host_fields(), on_submit=commit)
        form.set_value("name", "x")
        form.submit()

        assert form.errors[FORM_LEVEL].message == "disk full"

    def test_failing_committed_listener_still_closes(self) -> None:
        commits: list[dict] = []

        def broken_listener(result: Any) -> None:
            raise RuntimeError("refresh failed")

        form = FormState(
            [Field("name", value="x")],
            on_submit=commits.append,
            on_committed=broken_listener,
        )

        assert form.submit() is True

        assert commits == [{"name": "x"}]
        assert form.status == FormStatus.CLOSED
        assert form.token.alive is False

    def test_cancel_runs_callback_once(self) -> None:
        calls: list[int] = []
        form = FormState(_host_fields(), on_cancel=lambda: calls.append(1))

        form.cancel()
        form.cancel()

        assert calls == [1]
        assert form.status == FormStatus.CLOSED

    def test_closed_form_rejects_changes(self) -> None:
        form = FormState(_host_fields())
        form.cancel()

        with pytest.raises(FormClosedError):
            form.set_value("name", "x")
        with pytest.raises(FormClosedError):
            form.submit()


class TestBackgroundCommit:
    """Tests for commits that return a Future."""

    def _form(
        self, future: Future, queue: list, **kwargs: Any
    ) -> FormState:
        form = FormState(
            _host_fields(),
            on_submit=lambda values: future,
            dispatch=queue.append,
            **kwargs,
        )
        form.set_value("name", "web1")
        return form

    def _run_queue(self, queue: list) -> None:
        while queue:
            queue.pop(0)()

    def test_busy_until_result_arrives(self) -> None:
        future: Future = Future()
        queue: list = []
        received: list[Any] = []
        busy: list[str | None] = []
        form = self._form(future, queue, on_committed=received.append)
        form.on_busy = busy.append

        assert form.submit() is False
        assert form.busy
        assert form.is_open

        future.set_result("done")
        assert form.is_open
        self._run_queue(queue)

        assert received == ["done"]
        assert form.status == FormStatus.CLOSED
        assert busy == ["Working...", None]

    def test_already_finished_future_closes_immediately(self) -> None:
        future: Future = Future()
        future.set_result("done")
        received: list[Any] = []
        form = FormState(
            _host_fields(), on_submit=lambda values: future, on_committed=received.append
        )
        form.set_value("name", "web1")

        assert form.submit() is True

        assert received == ["done"]
        assert form.is_open is False
        assert not form.busy

    def test_failing_committed_listener_after_background_commit(self) -> None:
        future: Future = Future()
        queue: list = []

        def broken_listener(result: Any) -> None:
            raise RuntimeError("refresh failed")

        form = self._form(future, queue, on_committed=broken_listener)
        form.submit()

        future.set_result("done")
        self._run_queue(queue)

        assert form.status == FormStatus.CLOSED
        assert not form.busy

    def test_submit_ignored_while_busy(self) -> None:
        future: Future = Future()
        calls: list[dict] = []

        def commit(values: dict) -> Future:
            calls.append(values)
            return future

        form = FormState(_host_fields(), on_submit=commit, dispatch=lambda cb: None)
        form.set_value("name", "web1")

        form.submit()
        assert form.submit() is False

        assert len(calls) == 1

    def test_failure_reopens_for_editing(self) -> None:
        future: Future = Future()
        queue: list = []
        form = self._form(future, queue)
        form.submit()

        future.set_exception(ConfigurationError("name taken", field="name"))
        self._run_queue(queue)

        assert form.is_open
        assert not form.busy
        assert form.errors["name"].message == "name taken"
        assert form.status == FormStatus.EDITING

    def test_cancelled_future(self) -> None:
        future: Future = Future()
        queue: list = []
        form = self._form(future, queue)
        form.submit()

        future.cancel()
        self._run_queue(queue)

        assert form.errors[FORM_LEVEL].message == "operation was cancelled"

    def test_teardown_drops_late_result(self) -> None:
        future: Future = Future()
        queue: list = []
        received: list[Any] = []
        form = self._form(future, queue, on_committed=received.append)
        form.submit()

        form.teardown()
        future.set_result("late")
        self._run_queue(queue)

        assert received == []
        assert queue == []
        assert form.status == FormStatus.CLOSED

    def test_result_queued_before_teardown_is_dropped(self) -> None:
        future: Future = Future()
        queue: list = []
        received: list[Any] = []
        form = self._form(future, queue, on_committed=received.append)
        form.submit()

        future.set_result("late")
        assert len(queue) == 1
        form.teardown()
        self._run_queue(queue)

        assert received == []

    def test_cancel_while_busy(self) -> None:
        future: Future = Future()
        queue: list = []
        cancelled: list[int] = []
        received: list[Any] = []
        form = self._form(
            future, queue, on_cancel=lambda: cancelled.append(1), on_committed=received.append
        )
        form.submit()

        form.cancel()
        future.set_result("late")
        self._run_queue(queue)

        assert cancelled == [1]
        assert received == []
