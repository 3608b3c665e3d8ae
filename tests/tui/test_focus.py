"""Tests for the focus sequencer."""

from __future__ import annotations

from sshm.tui.models.focus import FocusSequencer, NavElement

F = NavElement.field
A = NavElement.action


def _five() -> FocusSequencer:
    return FocusSequencer([F("name"), F("kind"), F("secret"), A("submit"), A("cancel")])


class TestFocusSequencer:
    """Tests for FocusSequencer navigation."""

    def test_starts_on_first_element(self) -> None:
        assert _five().current() == F("name")

    def test_next_wraps_from_last_to_first(self) -> None:
        focus = _five()
        focus.focus(A("cancel"))

        assert focus.next() == F("name")
        assert focus.index == 0

    def test_previous_wraps_from_first_to_last(self) -> None:
        focus = _five()

        assert focus.previous() == A("cancel")
        assert focus.index == 4

    def test_full_cycle_returns_home(self) -> None:
        focus = _five()
        for _ in range(len(focus)):
            focus.next()
        assert focus.current() == F("name")

    def test_empty_sequence(self) -> None:
        focus = FocusSequencer()
        assert focus.current() is None
        assert focus.next() is None
        assert focus.previous() is None

    def test_single_element(self) -> None:
        focus = FocusSequencer([A("ok")])
        assert focus.next() == A("ok")
        assert focus.previous() == A("ok")

    def test_focus_unknown_element(self) -> None:
        focus = _five()
        focus.next()

        assert focus.focus(F("ghost")) is False
        assert focus.current() == F("kind")

    def test_recompute_keeps_focused_element(self) -> None:
        focus = _five()
        focus.focus(A("submit"))

        focus.recompute([F("name"), F("kind"), A("submit"), A("cancel")])

        assert focus.current() == A("submit")
        assert focus.index == 2

    def test_recompute_resets_when_focused_element_disappears(self) -> None:
        focus = _five()
        focus.focus(F("secret"))

        focus.recompute([F("name"), F("kind"), A("submit"), A("cancel")])

        assert focus.current() == F("name")

    def test_nav_element_kinds(self) -> None:
        assert F("name").is_field and not F("name").is_action
        assert A("submit").is_action
        assert F("submit") != A("submit")
