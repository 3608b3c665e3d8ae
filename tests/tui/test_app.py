"""Tests for the prompt_toolkit application layer.

These tests verify the TUI application logic without requiring
interactive terminal input: no Application is ever run.
"""

from __future__ import annotations

from concurrent.futures import Future
from pathlib import Path
from typing import Any, Generator

import pytest
from prompt_toolkit.layout import Layout

from sshm.lib.config import Config
from sshm.lib.credentials import SERVICE_NAME
from sshm.lib.errors import ConfigurationError, TmuxError
from sshm.lib.history import HistoryStore
from sshm.lib.tmux import TmuxManager
from sshm.tui.app import (
    PROFILES_PANE,
    SERVERS_PANE,
    ConfirmDialog,
    ConfirmModal,
    FormDialog,
    SshmApp,
)
from sshm.tui.dialogs import server_form
from sshm.tui.models import NavElement
from sshm.tui.settings import TUISettings
from tests.conftest import FakeTmux, MemoryKeyring


def _text(formatted: Any) -> str:
    return "".join(fragment[1] for fragment in formatted)


@pytest.fixture
def app(sample_config: Config, tmp_path: Path) -> Generator[SshmApp, None, None]:
    tui = SshmApp(
        sample_config,
        tmux=TmuxManager(runner=FakeTmux(), session_wait_seconds=0),
        settings=TUISettings(),
        history=HistoryStore(tmp_path / "history.db"),
    )
    yield tui
    tui.runner.shutdown(wait=True)


class TestFormDialog:
    """Tests for FormDialog buffer syncing."""

    def _dialog(self, config: Config, **kwargs: Any) -> tuple[FormDialog, list[bool]]:
        changes: list[bool] = []
        form = server_form(config, **kwargs)
        dialog = FormDialog(form, lambda d, action: None, changes.append)
        return dialog, changes

    def test_buffers_for_text_fields_only(self, sample_config: Config) -> None:
        dialog, _ = self._dialog(sample_config, server=sample_config.get_server("web1"))

        assert "auth_type" not in dialog.buffers
        assert "passphrase_protected" not in dialog.buffers
        assert dialog.buffers["hostname"].text == "web1.example.com"
        assert dialog.title == "Edit Server: web1"

    def test_typing_updates_form(self, sample_config: Config) -> None:
        dialog, changes = self._dialog(sample_config)

        dialog.buffers["hostname"].text = "10.0.0.7"

        assert dialog.form.get_value("hostname") == "10.0.0.7"
        assert changes == [False]

    def test_cycle_syncs_cleared_password_back(self, sample_config: Config) -> None:
        dialog, changes = self._dialog(sample_config, server=sample_config.get_server("db1"))
        assert dialog.buffers["password"].text == ""
        dialog.buffers["password"].text = "typed"

        dialog.cycle(dialog.form.field("auth_type"), 1)

        assert dialog.form.get_value("auth_type") == "key"
        assert dialog.buffers["password"].text == ""
        assert dialog.form.get_value("password") == ""
        assert dialog.is_focused(NavElement.field("auth_type"))
        assert changes[-1] is True

    def test_cycle_ignored_while_busy(self, sample_config: Config) -> None:
        dialog, _ = self._dialog(sample_config)
        dialog.form.set_busy("Saving...")

        dialog.cycle(dialog.form.field("auth_type"), 1)

        assert dialog.form.get_value("auth_type") == "key"

    def test_container_builds(self, sample_config: Config) -> None:
        dialog, _ = self._dialog(sample_config)
        dialog.container()
        assert dialog.focus_target() is not None


class TestConfirmDialog:
    """Tests for ConfirmDialog."""

    def test_defaults_to_no(self) -> None:
        dialog = ConfirmDialog("Delete?\nReally?", lambda: None, lambda: None)
        assert dialog.selected == 1
        assert dialog.button_row == 3

    def test_content_has_buttons_row(self) -> None:
        dialog = ConfirmDialog("Delete?", lambda: None, lambda: None)
        content = dialog.create_content(40, 10)

        assert content.line_count == dialog.button_row + 1
        assert " No " in _text(content.get_line(dialog.button_row))


class TestSshmApp:
    """Tests for SshmApp state handling without a running Application."""

    def test_initial_status(self, app: SshmApp) -> None:
        assert app.status_message == "2 servers, 1 profiles"
        assert app.pane == SERVERS_PANE

    def test_layout_builds(self, app: SshmApp) -> None:
        assert isinstance(app._create_layout(), Layout)

    def test_server_details(self, app: SshmApp) -> None:
        details = _text(app._get_details())
        assert "deploy@web1.example.com:22" in details
        assert "production" in details

    def test_selection_wraps(self, app: SshmApp) -> None:
        app._move_selection(1)
        assert app._selected_server() == "db1"
        app._move_selection(1)
        assert app._selected_server() == "web1"

    def test_password_source_in_details(self, app: SshmApp) -> None:
        app._select_server("db1")
        assert "system keyring" in _text(app._get_details())

    def test_profile_details(self, app: SshmApp) -> None:
        app.pane = PROFILES_PANE
        details = _text(app._get_details())
        assert "Production tier" in details
        assert "web1" in details

    def test_open_form_and_cancel(self, app: SshmApp) -> None:
        app._open_server_form()
        dialog = app.modals.current
        assert isinstance(dialog, FormDialog)
        assert app.modals.form.title == "Add Server"

        app._on_form_action(dialog, "cancel")

        assert app.modals.current is None

    def test_save_from_form_selects_new_server(self, app: SshmApp) -> None:
        app._open_server_form()
        dialog = app.modals.current
        form = dialog.form
        for name, value in [("name", "cache1"), ("hostname", "h"), ("username", "u")]:
            form.set_value(name, value)
        form.set_value("auth_type", "password")

        app._on_form_action(dialog, "submit")

        assert app.modals.current is None
        assert app._selected_server() == "cache1"
        assert app.status_message == "Saved server cache1"

    def test_failed_submit_keeps_dialog(self, app: SshmApp) -> None:
        app._open_profile_form()
        dialog = app.modals.current

        app._on_form_action(dialog, "submit")

        assert app.modals.current is dialog
        assert "name" in dialog.form.errors

    def test_membership_needs_profiles_pane(self, app: SshmApp) -> None:
        app._open_membership_form(assign=True)
        assert app.modals.current is None
        assert "Select a profile first" in app.status_message

    def test_membership_builder_error_goes_to_status(
        self, app: SshmApp, sample_config: Config
    ) -> None:
        sample_config.assign_server_to_profile("db1", "production")
        app.pane = PROFILES_PANE

        app._open_membership_form(assign=True)

        assert app.modals.current is None
        assert "no servers available" in app.status_message

    def test_delete_with_confirmation(self, app: SshmApp, sample_config: Config) -> None:
        app._delete_selected()
        modal = app.modals.current
        assert isinstance(modal, ConfirmModal)
        assert "Delete server 'web1'" in modal.dialog.message

        modal.dialog.on_confirm()

        assert app.modals.current is None
        assert not Config.load(sample_config.path).has_server("web1")
        assert app.status_message == "Deleted web1"

    def test_delete_cancelled(self, app: SshmApp, sample_config: Config) -> None:
        app._delete_selected()
        app.modals.current.dialog.on_cancel()

        assert sample_config.has_server("web1")
        assert app.status_message == "Cancelled"

    def test_delete_without_confirmation(self, app: SshmApp, sample_config: Config) -> None:
        app.settings.confirm_delete = False
        app.pane = PROFILES_PANE

        app._delete_selected()

        assert sample_config.profiles == []
        assert sample_config.has_server("web1")

    def test_failed_delete_restores_catalog(
        self, app: SshmApp, sample_config: Config, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def unwritable(*args: Any, **kwargs: Any) -> None:
            raise ConfigurationError("failed to write config file")

        monkeypatch.setattr(sample_config, "save", unwritable)
        monkeypatch.setattr(sample_config, "reload", unwritable)
        app.settings.confirm_delete = False

        app._delete_selected()

        assert sample_config.has_server("web1")
        assert sample_config.get_profile("production").servers == ["web1"]
        assert app.status_message == "Delete failed: failed to write config file"

    def test_delete_removes_stored_password(
        self, app: SshmApp, memory_keyring: MemoryKeyring
    ) -> None:
        app.settings.confirm_delete = False
        app._select_server("db1")

        app._delete_selected()

        assert app.status_message == "Deleted db1"
        assert memory_keyring.entries == {}

    def test_failed_delete_keeps_stored_password(
        self,
        app: SshmApp,
        sample_config: Config,
        memory_keyring: MemoryKeyring,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def unwritable(*args: Any, **kwargs: Any) -> None:
            raise ConfigurationError("failed to write config file")

        monkeypatch.setattr(sample_config, "save", unwritable)
        app.settings.confirm_delete = False
        app._select_server("db1")

        app._delete_selected()

        assert sample_config.has_server("db1")
        assert (SERVICE_NAME, "password-db1") in memory_keyring.entries

    def test_connect_is_recorded_in_history(self, app: SshmApp) -> None:
        app._connect_selected()
        app.runner.shutdown(wait=True)

        records = app.history.list_connections(server="web1")
        assert [r.status for r in records] == ["success"]
        assert records[0].session_id == "web1"

    def test_profile_connect_is_recorded_in_history(self, app: SshmApp) -> None:
        app.pane = PROFILES_PANE

        app._connect_selected()
        app.runner.shutdown(wait=True)

        records = app.history.list_connections(profile="production")
        assert sorted(r.connection_type for r in records) == ["group", "single"]
        assert {r.status for r in records} == {"success"}

    def test_history_toggle(self, app: SshmApp) -> None:
        app._connect_selected()
        app.runner.shutdown(wait=True)

        app.show_history = True
        history = _text(app._get_history())

        assert "History of web1" in history
        assert "1 connections, 100% successful" in history
        assert "success" in history
        assert "h:Details" in _text(app._get_help_text())

    def test_history_without_entries(self, app: SshmApp) -> None:
        app.show_history = True
        app.pane = PROFILES_PANE

        assert "No connections recorded" in _text(app._get_details())

    def test_unreadable_history_is_shown(self, app: SshmApp, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        app.history = HistoryStore(blocker / "history.db")
        app.show_history = True

        assert "History unavailable" in _text(app._get_details())

    def test_connected_failure_goes_to_status(self, app: SshmApp) -> None:
        future: Future = Future()
        future.set_exception(TmuxError("tmux is not available on this system"))
        app._connecting = True

        app._on_connected(future)

        assert app._connecting is False
        assert app.status_message == "Connection failed: tmux is not available on this system"

    def test_quit_tears_down_open_form(self, app: SshmApp) -> None:
        app._open_server_form()
        form = app.modals.form

        app._quit_app()

        assert form.token.alive is False
        assert app.modals.current is None
        assert app.token.alive is False

    def test_reload(self, app: SshmApp, sample_config: Config) -> None:
        other = Config.load(sample_config.path)
        other.remove_server("db1")
        other.save()

        app._reload_config()

        assert app.config.server_names() == ["web1"]
        assert app.status_message == "Reloaded: 1 servers, 1 profiles"
