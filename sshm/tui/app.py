"""Full-screen prompt_toolkit application for managing SSH hosts.

The main screen lists servers and profiles side by side. Dialogs (add/edit
server, profiles, assignment, import/export, delete confirmation) open on
top of it through a ``ModalStack``. Every form dialog renders a
``FormState`` and forwards keystrokes and clicks to it; the application
never validates anything itself.

Keys on the main screen:
    Tab switch pane, Up/Down select, Enter connect, a add server,
    p new profile, e edit, d delete, s/u assign/unassign (profiles pane),
    h toggle connection history, i import, x export, r reload, q quit
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

from prompt_toolkit import Application
from prompt_toolkit.buffer import Buffer
from prompt_toolkit.document import Document
from prompt_toolkit.filters import Condition
from prompt_toolkit.formatted_text import HTML, FormattedText
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout import (
    BufferControl,
    FormattedTextControl,
    HSplit,
    Layout,
    VSplit,
    Window,
)
from prompt_toolkit.layout.controls import UIContent, UIControl
from prompt_toolkit.layout.dimension import Dimension as D
from prompt_toolkit.layout.processors import PasswordProcessor
from prompt_toolkit.mouse_events import MouseEvent, MouseEventType
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Frame

from sshm.lib.config import CONFIG_FILENAME, Config, Server, default_config_dir
from sshm.lib.connection import Connector
from sshm.lib.credentials import PasswordStore, needs_migration
from sshm.lib.errors import CredentialError, HistoryError, SshmError
from sshm.lib.history import HISTORY_FILENAME, HistoryStore
from sshm.lib.logging import setup_logging
from sshm.lib.tmux import TmuxManager, build_ssh_command
from sshm.lib.transfer import ExportResult, ImportResult
from sshm.tui.background import BackgroundRunner, LivenessToken
from sshm.tui.constants import ACTION_BROWSE, ACTION_CANCEL, ACTION_LABELS, ACTION_SUBMIT
from sshm.tui.dialogs import (
    assign_server_form,
    catalog_transaction,
    delete_profile_message,
    delete_server_message,
    export_form,
    import_form,
    profile_form,
    server_form,
    unassign_server_form,
)
from sshm.tui.modals import ModalStack
from sshm.tui.models.errors import FORM_LEVEL
from sshm.tui.models.field import Field
from sshm.tui.models.focus import NavElement
from sshm.tui.models.form_state import FormState
from sshm.tui.settings import TUISettings, get_settings

logger = logging.getLogger(__name__)

SERVERS_PANE = "servers"
PROFILES_PANE = "profiles"
HISTORY_ROWS = 10


def _password_source(server: Server) -> str:
    if server.use_keyring:
        return "system keyring"
    if needs_migration(server):
        return "plaintext (run: sshm keyring migrate)"
    return "prompted by ssh"


# Application style
STYLE = Style.from_dict({
    "title": "bold bg:#005f87 #ffffff",
    "pane": "bg:#1c1c1c",
    "pane-header": "bold #00af00",
    "pane-header.active": "bold underline #00d7ff",
    "item": "#d0d0d0",
    "item.selected": "bg:#303030 #ffffff",
    "item.selected-active": "bg:#005f87 #ffffff bold",
    "item.hover": "bg:#303030 #ffffff",
    "details": "bg:#1c1c1c #a0a0a0",
    "details.key": "#d7d700",
    "field-label": "#d7d700",
    "field-label.required": "#d7d700 bold",
    "field-input": "bg:#1e1e1e #ffffff",
    "field-input.focused": "bg:#2a2a2a #ffffff",
    "field-input.invalid": "bg:#3a1515 #ff6666",
    "field-input.invalid-focused": "bg:#4a2020 #ff6666",
    "field-help.inline": "#6a9955 italic",
    "error": "bold #ff0000",
    "busy": "bold #ffcc00",
    "help": "#808080 italic",
    "status-bar": "bg:#005f87 #ffffff",
    "button": "bg:#404040 #ffffff",
    "button.focused": "bg:#0087af #ffffff bold",
    "button.hover": "bg:#005f87 #ffffff bold",
    "dialog.body": "bg:#262626",
    "option": "#d0d0d0",
    "option.focused": "bold #00ff00",
    "file-browser": "bg:#262626",
    "file-browser.header": "bold #00d7ff",
    "file-browser.divider": "#404040",
    "file-browser.dir": "#87afff",
    "file-browser.file": "#d0d0d0",
    "file-browser.selected": "bg:#005f87 #ffffff bold",
    "file-browser.hover": "bg:#303030 #ffffff",
})


class FileBrowserControl(UIControl):
    """Interactive file picker used by the import dialog's Browse action."""

    HEADER_ICON = "📂"
    FILE_ICON = "📄"
    HEADER_LINES = 2

    def __init__(
        self,
        on_select: Callable[[Path], None],
        on_cancel: Callable[[], None],
        initial_path: Path | None = None,
    ):
        self.on_select = on_select
        self.on_cancel = on_cancel
        self.current_path = initial_path or Path.cwd()
        self.items: list[Path] = []
        self.selected_idx = 0
        self._hover_idx: int | None = None
        self._refresh_items()

    def _refresh_items(self) -> None:
        self.items = []
        try:
            if self.current_path.parent != self.current_path:
                self.items.append(self.current_path.parent)

            # Directories first; dotfiles are shown since ~/.ssh/config is one
            dirs = []
            files = []
            for item in sorted(self.current_path.iterdir()):
                if item.is_dir():
                    dirs.append(item)
                elif item.is_file():
                    files.append(item)
            self.items.extend(dirs)
            self.items.extend(files)
        except PermissionError:
            logger.debug("Cannot list %s", self.current_path)
        self.selected_idx = 0

    def create_content(self, width: int, height: int) -> UIContent:
        header = f"  {self.HEADER_ICON} {self.current_path}"

        def get_line(i: int) -> list[tuple[str, str]]:
            if i == 0:
                return [("class:file-browser.header", header[:width])]
            if i == 1:
                return [("class:file-browser.divider", "─" * max(width - 2, 0))]

            item_idx = i - self.HEADER_LINES
            if item_idx >= len(self.items):
                return []

            item = self.items[item_idx]
            if item == self.current_path.parent:
                display = "📁 .."
            elif item.is_dir():
                display = f"📁 {item.name}/"
            else:
                display = f"{self.FILE_ICON} {item.name}"
            display = display[: max(width - 4, 0)]

            if item_idx == self.selected_idx:
                return [("class:file-browser.selected", f" ▸ {display}")]
            if item_idx == self._hover_idx:
                return [("class:file-browser.hover", f"   {display}")]
            if item.is_dir():
                return [("class:file-browser.dir", f"   {display}")]
            return [("class:file-browser.file", f"   {display}")]

        return UIContent(get_line=get_line, line_count=len(self.items) + self.HEADER_LINES)

    def mouse_handler(self, mouse_event: MouseEvent) -> None:
        item_idx = mouse_event.position.y - self.HEADER_LINES
        if 0 <= item_idx < len(self.items):
            if mouse_event.event_type == MouseEventType.MOUSE_UP:
                self.selected_idx = item_idx
                self._activate_selected()
            elif mouse_event.event_type == MouseEventType.MOUSE_MOVE:
                self._hover_idx = item_idx
        else:
            self._hover_idx = None

    def _activate_selected(self) -> None:
        if 0 <= self.selected_idx < len(self.items):
            item = self.items[self.selected_idx]
            if item.is_dir():
                self.current_path = item
                self._refresh_items()
            else:
                self.on_select(item)

    def is_focusable(self) -> bool:
        return True

    def get_key_bindings(self) -> KeyBindings:
        kb = KeyBindings()

        @kb.add("up")
        def move_up(event: Any) -> None:
            if self.items:
                self.selected_idx = (self.selected_idx - 1) % len(self.items)

        @kb.add("down")
        def move_down(event: Any) -> None:
            if self.items:
                self.selected_idx = (self.selected_idx + 1) % len(self.items)

        @kb.add("enter")
        def select(event: Any) -> None:
            self._activate_selected()

        @kb.add("escape")
        def cancel(event: Any) -> None:
            self.on_cancel()

        @kb.add("backspace")
        def go_up(event: Any) -> None:
            if self.current_path.parent != self.current_path:
                self.current_path = self.current_path.parent
                self._refresh_items()

        return kb


class ClickableBufferControl(BufferControl):
    """BufferControl that moves form focus to its field when clicked."""

    def __init__(
        self,
        buffer: Buffer,
        element: NavElement,
        on_focus: Callable[[NavElement], None],
        **kwargs: Any,
    ):
        super().__init__(buffer=buffer, focusable=True, **kwargs)
        self.element = element
        self.on_focus = on_focus

    def mouse_handler(self, mouse_event: MouseEvent) -> Any:
        if mouse_event.event_type == MouseEventType.MOUSE_UP:
            self.on_focus(self.element)
        # Let the buffer handle cursor positioning
        return super().mouse_handler(mouse_event)


class ClickableButton(UIControl):
    """A clickable button control."""

    def __init__(
        self,
        text: str,
        handler: Callable[[], None],
        style: str = "class:button",
        is_focused: Callable[[], bool] | None = None,
    ):
        self.text = text
        self.handler = handler
        self.style = style
        self.is_focused = is_focused
        self._hover = False

    def create_content(self, width: int, height: int) -> UIContent:
        if self.is_focused is not None and self.is_focused():
            style = "class:button.focused"
        elif self._hover:
            style = "class:button.hover"
        else:
            style = self.style

        def get_line(i: int) -> list[tuple[str, str]]:
            if i == 0:
                return [(style, f" {self.text} ")]
            return []

        return UIContent(get_line=get_line, line_count=1)

    def mouse_handler(self, mouse_event: MouseEvent) -> None:
        if mouse_event.event_type == MouseEventType.MOUSE_UP:
            self.handler()
        elif mouse_event.event_type == MouseEventType.MOUSE_MOVE:
            self._hover = True
        else:
            self._hover = False

    def is_focusable(self) -> bool:
        return True


class OptionSelector(UIControl):
    """Single-line selector for an enumeration field.

    Shows ``◀ value ▶``. Clicking the left half selects the previous option,
    the right half the next one; Up/Down/Left/Right are bound by the app.
    """

    def __init__(
        self,
        field: Field,
        on_cycle: Callable[[Field, int], None],
        is_focused: Callable[[], bool],
    ):
        self.field = field
        self.on_cycle = on_cycle
        self.is_focused = is_focused
        self._width = 0

    def get_min_width(self) -> int:
        return max(len(option) for option in self.field.options) + 4

    def create_content(self, width: int, height: int) -> UIContent:
        self._width = width
        style = "class:option.focused" if self.is_focused() else "class:option"
        text = f"◀ {self.field.value.ljust(self.get_min_width() - 4)} ▶"

        def get_line(i: int) -> list[tuple[str, str]]:
            if i == 0:
                return [(style, text)]
            return []

        return UIContent(get_line=get_line, line_count=1)

    def mouse_handler(self, mouse_event: MouseEvent) -> None:
        if mouse_event.event_type == MouseEventType.MOUSE_UP:
            step = -1 if mouse_event.position.x < self.get_min_width() // 2 else 1
            self.on_cycle(self.field, step)

    def is_focusable(self) -> bool:
        return True


class SelectionList(UIControl):
    """Clickable list of names with one selected entry."""

    def __init__(
        self,
        items: Callable[[], list[str]],
        get_selected: Callable[[], int],
        on_click: Callable[[int], None],
        is_active: Callable[[], bool],
        empty_text: str = "(none)",
    ):
        self.items = items
        self.get_selected = get_selected
        self.on_click = on_click
        self.is_active = is_active
        self.empty_text = empty_text

    def create_content(self, width: int, height: int) -> UIContent:
        items = self.items()
        selected = self.get_selected()
        active = self.is_active()

        def get_line(i: int) -> list[tuple[str, str]]:
            if not items:
                return [("class:help", f"  {self.empty_text}")] if i == 0 else []
            if i >= len(items):
                return []
            name = items[i][: max(width - 4, 0)]
            if i == selected:
                style = "class:item.selected-active" if active else "class:item.selected"
                return [(style, f" ▸ {name}".ljust(width))]
            return [("class:item", f"   {name}")]

        return UIContent(get_line=get_line, line_count=max(len(items), 1))

    def mouse_handler(self, mouse_event: MouseEvent) -> None:
        if mouse_event.event_type == MouseEventType.MOUSE_UP:
            if mouse_event.position.y < len(self.items()):
                self.on_click(mouse_event.position.y)

    def is_focusable(self) -> bool:
        return False


class ConfirmDialog(UIControl):
    """A confirmation dialog with Yes/No options."""

    def __init__(
        self,
        message: str,
        on_confirm: Callable[[], None],
        on_cancel: Callable[[], None],
    ):
        self.message = message
        self.on_confirm = on_confirm
        self.on_cancel = on_cancel
        self.selected = 1  # 0 = Yes, 1 = No; deleting defaults to No
        self.lines = message.splitlines()

    @property
    def button_row(self) -> int:
        return len(self.lines) + 1

    def create_content(self, width: int, height: int) -> UIContent:
        def get_line(i: int) -> list[tuple[str, str]]:
            if i < len(self.lines):
                return [("class:dialog.body", "  " + self.lines[i])]
            if i == self.button_row:
                yes_style = "class:button.focused" if self.selected == 0 else "class:button"
                no_style = "class:button.focused" if self.selected == 1 else "class:button"
                return [
                    ("", "  "),
                    (yes_style, " Yes "),
                    ("", "    "),
                    (no_style, " No "),
                ]
            return []

        return UIContent(get_line=get_line, line_count=self.button_row + 1)

    def mouse_handler(self, mouse_event: MouseEvent) -> None:
        if mouse_event.event_type == MouseEventType.MOUSE_UP:
            if mouse_event.position.y == self.button_row:
                if mouse_event.position.x < 10:
                    self.on_confirm()
                else:
                    self.on_cancel()

    def is_focusable(self) -> bool:
        return True

    def get_key_bindings(self) -> KeyBindings:
        kb = KeyBindings()

        @kb.add("left")
        @kb.add("right")
        @kb.add("tab")
        def toggle(event: Any) -> None:
            self.selected = 1 - self.selected

        @kb.add("enter")
        def select(event: Any) -> None:
            if self.selected == 0:
                self.on_confirm()
            else:
                self.on_cancel()

        @kb.add("escape")
        @kb.add("n")
        def cancel(event: Any) -> None:
            self.on_cancel()

        @kb.add("y")
        def confirm(event: Any) -> None:
            self.on_confirm()

        return kb


# =============================================================================
# Modals
# =============================================================================


class ConfirmModal:
    """Yes/No question shown over the main screen."""

    form: FormState | None = None

    def __init__(self, title: str, dialog: ConfirmDialog):
        self.title = title
        self.dialog = dialog
        self._window: Window | None = None

    def container(self) -> Any:
        self._window = Window(content=self.dialog, style="class:dialog.body")
        return Frame(
            body=self._window,
            title=f"⚠ {self.title}",
            width=D(min=50, max=70),
        )

    def focus_target(self) -> Window | None:
        return self._window


class BrowserModal:
    """File picker stacked on top of the import dialog."""

    form: FormState | None = None

    def __init__(self, title: str, browser: FileBrowserControl, on_back: Callable[[], None]):
        self.title = title
        self.browser = browser
        self.on_back = on_back
        self._window: Window | None = None

    def container(self) -> Any:
        self._window = Window(
            content=self.browser,
            style="class:file-browser",
            height=D(min=12, max=22),
        )
        back_button = Window(
            content=ClickableButton("← Back", self.on_back),
            height=1,
        )
        return Frame(
            body=HSplit([self._window, Window(height=1), back_button]),
            title=f"📂 {self.title}  (Esc to cancel)",
            width=D(min=50, max=80),
            height=D(min=18, max=28),
        )

    def focus_target(self) -> Window | None:
        return self._window


class FormDialog:
    """Renders one ``FormState`` and keeps its text buffers in sync.

    Text and secret fields are edited in prompt_toolkit buffers; every
    change is pushed into the form with ``set_value``. Values the form
    changes on its own (e.g. the password cleared when switching to key
    authentication) are pushed back with ``sync_from_form``.
    """

    def __init__(
        self,
        form: FormState,
        on_action: Callable[["FormDialog", str], None],
        on_changed: Callable[[bool], None],
    ):
        self.form = form
        self.title = form.title
        self.on_action = on_action
        self.on_changed = on_changed
        self._syncing = False
        self._windows: dict[NavElement, Window] = {}
        self.buffers: dict[str, Buffer] = {}

        read_only = Condition(lambda: self.form.busy or not self.form.is_open)
        for f in form.fields.values():
            if f.is_enum:
                continue
            buffer = Buffer(
                name=f.name,
                multiline=False,
                read_only=read_only,
                document=Document(f.value, len(f.value)),
            )
            buffer.on_text_changed += self._text_handler(f.name)
            self.buffers[f.name] = buffer

    def _text_handler(self, name: str) -> Callable[[Buffer], None]:
        def handler(buffer: Buffer) -> None:
            if self._syncing or not self.form.is_open:
                return
            before = self.form.navigation_sequence()
            self.form.set_value(name, buffer.text)
            self.sync_from_form()
            self.on_changed(before != self.form.navigation_sequence())

        return handler

    def sync_from_form(self) -> None:
        """Copy form values into the buffers without re-entering the form."""
        self._syncing = True
        try:
            for name, buffer in self.buffers.items():
                value = self.form.get_value(name)
                if buffer.text != value:
                    buffer.set_document(Document(value, len(value)), bypass_readonly=True)
        finally:
            self._syncing = False

    def is_focused(self, element: NavElement) -> bool:
        return self.form.focus.current() == element

    def focus_element(self, element: NavElement) -> None:
        if self.form.focus.focus(element):
            self.on_changed(True)

    def cycle(self, field: Field, step: int) -> None:
        if not self.form.is_open or self.form.busy:
            return
        before = self.form.navigation_sequence()
        self.focus_element(NavElement.field(field.name))
        self.form.set_value(field.name, field.cycle(step))
        self.sync_from_form()
        self.on_changed(before != self.form.navigation_sequence())

    # -- rendering -----------------------------------------------------------

    def container(self) -> Any:
        self._windows = {}
        rows: list[Any] = []
        for f in self.form.visible_fields():
            rows.extend(self._field_rows(f))

        buttons = []
        for action in self.form.actions:
            element = NavElement.action(action)
            window = Window(
                content=ClickableButton(
                    ACTION_LABELS.get(action, action.title()),
                    self._action_handler(action),
                    is_focused=lambda e=element: self.is_focused(e),
                ),
                height=1,
                dont_extend_width=True,
            )
            self._windows[element] = window
            buttons.append(window)

        rows.append(Window(height=1))
        rows.append(VSplit(buttons, padding=2))
        rows.append(
            Window(
                content=FormattedTextControl(self._footer),
                height=D(min=1, max=3),
                wrap_lines=True,
            )
        )
        return Frame(body=HSplit(rows), title=self.title, width=D(min=56, max=80))

    def _action_handler(self, action: str) -> Callable[[], None]:
        def handler() -> None:
            self.focus_element(NavElement.action(action))
            self.on_action(self, action)

        return handler

    def _field_rows(self, f: Field) -> list[Any]:
        element = NavElement.field(f.name)

        def label_parts() -> FormattedText:
            if f.required:
                parts = [("class:field-label.required", f"{f.label}* ")]
            else:
                parts = [("class:field-label", f"{f.label} ")]
            if f.validation_error:
                parts.append(("class:error", "[!] "))
            return FormattedText(parts)

        def value_style() -> str:
            focused = self.is_focused(element)
            if f.validation_error:
                return "class:field-input.invalid-focused" if focused else "class:field-input.invalid"
            return "class:field-input.focused" if focused else "class:field-input"

        label = Window(
            content=FormattedTextControl(label_parts),
            width=D(min=18, max=22),
            height=1,
        )

        if f.is_enum:
            selector = OptionSelector(f, self.cycle, lambda: self.is_focused(element))
            value = Window(content=selector, style=value_style, height=1)
        else:
            processors = [PasswordProcessor()] if f.is_secret else []
            control = ClickableBufferControl(
                buffer=self.buffers[f.name],
                element=element,
                on_focus=self.focus_element,
                input_processors=processors,
            )
            value = Window(content=control, style=value_style, height=1)
        self._windows[element] = value

        def hint() -> FormattedText:
            if f.validation_error:
                return FormattedText([("class:error", f"  ⚠ {f.validation_error}")])
            if self.is_focused(element) and f.help_text:
                return FormattedText([("class:field-help.inline", f"  {f.help_text}")])
            return FormattedText([])

        return [
            VSplit([label, value], padding=1),
            Window(content=FormattedTextControl(hint), height=1),
        ]

    def _footer(self) -> FormattedText:
        if self.form.busy:
            return FormattedText([("class:busy", f"  ⏳ {self.form.busy_message}")])
        error = self.form.errors.get(FORM_LEVEL)
        if error is not None:
            return FormattedText([("class:error", f"  ✗ {error.message}")])
        return FormattedText([
            ("class:help", "  Tab/Shift+Tab: move  Up/Down: change option  Enter: save  Esc: cancel")
        ])

    def focus_target(self) -> Window | None:
        element = self.form.focus.current()
        if element is None:
            return None
        return self._windows.get(element)


# =============================================================================
# Application
# =============================================================================


class SshmApp:
    """Full-screen host manager.

    ``run()`` returns the tmux session to attach to once the screen is
    gone, or None when the user just quit.

    Connections are recorded in ``history`` when one is given.
    """

    def __init__(
        self,
        config: Config,
        tmux: TmuxManager | None = None,
        settings: TUISettings | None = None,
        history: HistoryStore | None = None,
        passwords: PasswordStore | None = None,
    ) -> None:
        self.config = config
        self.tmux = tmux or TmuxManager()
        self.settings = settings or get_settings()
        self.history = history
        self.passwords = passwords or PasswordStore()
        self.connector = Connector(self.tmux, history, self.passwords)
        self.show_history = False
        self.modals = ModalStack()
        self.token = LivenessToken()
        self.runner = BackgroundRunner(dispatch=self._dispatch)
        self.app: Application | None = None
        self.pane = SERVERS_PANE
        self.server_idx = 0
        self.profile_idx = 0
        self.status_message = f"{len(config.servers)} servers, {len(config.profiles)} profiles"
        self._connecting = False

    def run(self) -> str | None:
        """Run the full-screen application."""
        self.app = Application(
            layout=self._create_layout(),
            key_bindings=self._create_bindings(),
            style=STYLE,
            full_screen=True,
            mouse_support=self.settings.mouse_support,
        )
        try:
            return self.app.run()
        finally:
            self.token.revoke()
            self.modals.clear_all()
            self.runner.shutdown()

    # -- threading -----------------------------------------------------------

    def _dispatch(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on the event loop thread, then redraw."""
        app = self.app
        if app is None or app.loop is None or not self.token.alive:
            logger.debug("Dropping UI callback: application is not running")
            return

        def run_on_loop() -> None:
            if not self.token.alive:
                return
            callback()
            self._refresh_layout()

        app.loop.call_soon_threadsafe(run_on_loop)

    # -- selection -----------------------------------------------------------

    def _selected_server(self) -> str | None:
        names = self.config.server_names()
        if not names:
            return None
        self.server_idx = min(self.server_idx, len(names) - 1)
        return names[self.server_idx]

    def _selected_profile(self) -> str | None:
        names = self.config.profile_names()
        if not names:
            return None
        self.profile_idx = min(self.profile_idx, len(names) - 1)
        return names[self.profile_idx]

    def _move_selection(self, step: int) -> None:
        if self.pane == SERVERS_PANE:
            count = len(self.config.servers)
            if count:
                self.server_idx = (self.server_idx + step) % count
        else:
            count = len(self.config.profiles)
            if count:
                self.profile_idx = (self.profile_idx + step) % count

    def _select_server(self, name: str) -> None:
        names = self.config.server_names()
        if name in names:
            self.server_idx = names.index(name)

    def _select_profile(self, name: str) -> None:
        names = self.config.profile_names()
        if name in names:
            self.profile_idx = names.index(name)

    # -- layout --------------------------------------------------------------

    def _create_layout(self) -> Layout:
        title_bar = Window(
            content=FormattedTextControl(HTML("<b>sshm</b>  SSH connection manager")),
            style="class:title",
            height=1,
        )
        status_bar = Window(
            content=FormattedTextControl(self._get_status_bar),
            style="class:status-bar",
            height=1,
        )

        modal = self.modals.current
        if modal is not None:
            centered = VSplit([
                Window(width=D(weight=1)),
                modal.container(),
                Window(width=D(weight=1)),
            ])
            return Layout(
                HSplit([
                    title_bar,
                    Window(height=D(weight=1)),
                    centered,
                    Window(height=D(weight=1)),
                    status_bar,
                ])
            )

        def pane(title: str, name: str, control: SelectionList) -> Frame:
            header_style = "class:pane-header.active" if self.pane == name else "class:pane-header"
            return Frame(
                body=HSplit([
                    Window(
                        content=FormattedTextControl([(header_style, f" {title}")]),
                        height=1,
                    ),
                    Window(content=control, style="class:pane"),
                ]),
                width=D(weight=1),
            )

        servers = SelectionList(
            self.config.server_names,
            lambda: self.server_idx,
            lambda idx: self._on_list_click(SERVERS_PANE, idx),
            lambda: self.pane == SERVERS_PANE,
            empty_text="(no servers; press a to add one)",
        )
        profiles = SelectionList(
            self.config.profile_names,
            lambda: self.profile_idx,
            lambda idx: self._on_list_click(PROFILES_PANE, idx),
            lambda: self.pane == PROFILES_PANE,
            empty_text="(no profiles; press p to create one)",
        )
        details = Frame(
            body=Window(
                content=FormattedTextControl(self._get_details),
                style="class:details",
                wrap_lines=True,
            ),
            title="Details",
            width=D(weight=2),
        )
        help_line = Window(
            content=FormattedTextControl(self._get_help_text),
            height=1,
        )
        return Layout(
            HSplit([
                title_bar,
                VSplit([
                    pane("Servers", SERVERS_PANE, servers),
                    pane("Profiles", PROFILES_PANE, profiles),
                    details,
                ]),
                help_line,
                status_bar,
            ])
        )

    def _refresh_layout(self) -> None:
        """Rebuild the layout for the current screen and restore focus."""
        if self.app:
            self.app.layout = self._create_layout()
            self._focus_current()
            self.app.invalidate()

    def _focus_current(self) -> None:
        modal = self.modals.current
        if modal is None or self.app is None:
            return
        target = modal.focus_target()
        if target is not None:
            try:
                self.app.layout.focus(target)
            except ValueError:
                # Not part of the current layout
                logger.debug("Focus target of %s not in layout", modal.title)

    def _get_status_bar(self) -> FormattedText:
        return FormattedText([("class:status-bar", f"  {self.status_message}  ")])

    def _get_help_text(self) -> FormattedText:
        if self.pane == SERVERS_PANE:
            keys = "Enter:Connect  a:Add  e:Edit  d:Delete"
        else:
            keys = "Enter:Connect all  p:New  e:Edit  d:Delete  s:Assign  u:Unassign"
        history = "h:Details" if self.show_history else "h:History"
        return FormattedText([
            (
                "class:help",
                f"  Tab:Switch pane  {keys}  {history}  i:Import  x:Export  r:Reload  q:Quit",
            )
        ])

    def _get_details(self) -> FormattedText:
        if self.show_history:
            return self._get_history()
        lines: list[tuple[str, str]] = []

        def row(key: str, value: Any) -> None:
            lines.append(("class:details.key", f" {key:<14}"))
            lines.append(("", f"{value}\n"))

        if self.pane == SERVERS_PANE:
            name = self._selected_server()
            if name is None:
                return FormattedText([("class:help", " No servers configured")])
            server = self.config.get_server(name)
            row("Name", server.name)
            row("Host", f"{server.username}@{server.hostname}:{server.port}")
            row("Auth", server.auth_type)
            if server.auth_type == "key":
                row("Key", server.key_path or "-")
                row("Passphrase", "yes" if server.passphrase_protected else "no")
            if server.auth_type == "password":
                row("Password", _password_source(server))
            profiles = [p.name for p in self.config.profiles_for_server(name)]
            row("Profiles", ", ".join(profiles) or "-")
            row("Command", build_ssh_command(server))
        else:
            name = self._selected_profile()
            if name is None:
                return FormattedText([("class:help", " No profiles configured")])
            profile = self.config.get_profile(name)
            row("Name", profile.name)
            row("Description", profile.description or "-")
            row("Servers", len(profile.servers))
            for server_name in profile.servers:
                lines.append(("", f"   • {server_name}\n"))
        return FormattedText(lines)

    def _get_history(self) -> FormattedText:
        if self.history is None:
            return FormattedText([("class:help", " Connection history is disabled")])
        if self.pane == SERVERS_PANE:
            name = self._selected_server()
            filters = {"server": name}
        else:
            name = self._selected_profile()
            filters = {"profile": name}
        if name is None:
            return FormattedText([("class:help", " Nothing selected")])

        try:
            records = self.history.list_connections(limit=HISTORY_ROWS, **filters)
            stats = self.history.stats(name) if self.pane == SERVERS_PANE else None
        except HistoryError as e:
            return FormattedText([("class:error", f" History unavailable: {e.message}")])

        lines: list[tuple[str, str]] = [("class:details.key", f" History of {name}\n")]
        if stats is not None and stats.total:
            lines.append((
                "",
                f" {stats.total} connections, {stats.success_rate * 100:.0f}% successful\n",
            ))
        if not records:
            lines.append(("class:help", " No connections recorded\n"))
        for record in records:
            started = record.start_time.astimezone().strftime("%Y-%m-%d %H:%M")
            style = "class:error" if record.status == "failed" else ""
            lines.append((style, f" {started}  {record.status:<10} {record.server_name}\n"))
        return FormattedText(lines)

    def _on_list_click(self, pane: str, idx: int) -> None:
        self.pane = pane
        if pane == SERVERS_PANE:
            self.server_idx = idx
        else:
            self.profile_idx = idx
        self._refresh_layout()

    # -- bindings ------------------------------------------------------------

    def _create_bindings(self) -> KeyBindings:
        kb = KeyBindings()

        main_screen = Condition(lambda: not self.modals.is_active)
        form_active = Condition(lambda: isinstance(self.modals.current, FormDialog))

        def focused_field() -> Field | None:
            modal = self.modals.current
            if not isinstance(modal, FormDialog):
                return None
            element = modal.form.focus.current()
            if element is None or not element.is_field:
                return None
            return modal.form.field(element.name)

        @Condition
        def enum_focused() -> bool:
            field = focused_field()
            return field is not None and field.is_enum

        @kb.add("c-q")
        def quit_(event):
            """Quit immediately, abandoning any open dialog."""
            self._quit_app()

        # Main screen

        @kb.add("q", filter=main_screen)
        def quit_main_(event):
            self._quit_app()

        @kb.add("tab", filter=main_screen)
        @kb.add("s-tab", filter=main_screen)
        def switch_pane_(event):
            self.pane = PROFILES_PANE if self.pane == SERVERS_PANE else SERVERS_PANE
            self._refresh_layout()

        @kb.add("up", filter=main_screen)
        def up_(event):
            self._move_selection(-1)

        @kb.add("down", filter=main_screen)
        def down_(event):
            self._move_selection(1)

        @kb.add("enter", filter=main_screen)
        def connect_(event):
            self._connect_selected()

        @kb.add("a", filter=main_screen)
        def add_server_(event):
            self._open_server_form()

        @kb.add("p", filter=main_screen)
        def add_profile_(event):
            self._open_profile_form()

        @kb.add("e", filter=main_screen)
        def edit_(event):
            self._edit_selected()

        @kb.add("d", filter=main_screen)
        def delete_(event):
            self._delete_selected()

        @kb.add("s", filter=main_screen)
        def assign_(event):
            self._open_membership_form(assign=True)

        @kb.add("u", filter=main_screen)
        def unassign_(event):
            self._open_membership_form(assign=False)

        @kb.add("i", filter=main_screen)
        def import_(event):
            self._open_import_form()

        @kb.add("x", filter=main_screen)
        def export_(event):
            self._open_export_form()

        @kb.add("h", filter=main_screen)
        def history_(event):
            self.show_history = not self.show_history
            self._refresh_layout()

        @kb.add("r", filter=main_screen)
        def reload_(event):
            self._reload_config()

        # Form dialogs

        @kb.add("tab", filter=form_active)
        def next_field_(event):
            self.modals.current.form.focus.next()
            self._refresh_layout()

        @kb.add("s-tab", filter=form_active)
        def prev_field_(event):
            self.modals.current.form.focus.previous()
            self._refresh_layout()

        @kb.add("up", filter=form_active & enum_focused)
        @kb.add("left", filter=form_active & enum_focused)
        def prev_option_(event):
            self.modals.current.cycle(focused_field(), -1)

        @kb.add("down", filter=form_active & enum_focused)
        @kb.add("right", filter=form_active & enum_focused)
        def next_option_(event):
            self.modals.current.cycle(focused_field(), 1)

        @kb.add("up", filter=form_active & ~enum_focused)
        def up_field_(event):
            self.modals.current.form.focus.previous()
            self._refresh_layout()

        @kb.add("down", filter=form_active & ~enum_focused)
        def down_field_(event):
            self.modals.current.form.focus.next()
            self._refresh_layout()

        @kb.add("enter", filter=form_active)
        def enter_(event):
            """Trigger the focused button, or submit from a field."""
            dialog = self.modals.current
            element = dialog.form.focus.current()
            if element is not None and element.is_action:
                self._on_form_action(dialog, element.name)
            else:
                self._on_form_action(dialog, ACTION_SUBMIT)

        @kb.add("escape", filter=form_active)
        def cancel_(event):
            self._on_form_action(self.modals.current, ACTION_CANCEL)

        return kb

    # -- dialogs -------------------------------------------------------------

    def _open_form(self, form: FormState) -> None:
        dialog = FormDialog(form, self._on_form_action, self._on_form_changed)
        form.on_close = lambda: self._on_form_closed(dialog)
        form.on_busy = lambda message: self._invalidate()
        self.modals.show(dialog)
        self._refresh_layout()

    def _on_form_changed(self, relayout: bool) -> None:
        if relayout:
            self._refresh_layout()
        else:
            self._invalidate()

    def _on_form_closed(self, dialog: FormDialog) -> None:
        self.modals.remove(dialog)
        self._refresh_layout()

    def _on_form_action(self, dialog: FormDialog, action: str) -> None:
        form = dialog.form
        if not form.is_open:
            return
        if action == ACTION_CANCEL:
            form.cancel()
        elif action == ACTION_BROWSE:
            if not form.busy:
                self._show_browser(dialog)
        elif action == ACTION_SUBMIT:
            if not form.submit() and form.is_open:
                dialog.sync_from_form()
                self._refresh_layout()

    def _invalidate(self) -> None:
        if self.app:
            self.app.invalidate()

    def _show_browser(self, dialog: FormDialog) -> None:
        current = Path(dialog.form.get_value("file_path")).expanduser()
        start = current.parent if current.parent.is_dir() else Path.home()

        def selected(path: Path) -> None:
            self.modals.remove(browser_modal)
            if dialog.form.is_open:
                dialog.form.set_value("file_path", str(path))
                dialog.sync_from_form()
            self._refresh_layout()

        def back() -> None:
            self.modals.remove(browser_modal)
            self._refresh_layout()

        browser_modal = BrowserModal(
            "Select file to import",
            FileBrowserControl(selected, back, initial_path=start),
            back,
        )
        self.modals.show(browser_modal)
        self._refresh_layout()

    def _open_server_form(self, name: str | None = None) -> None:
        server = self.config.get_server(name) if name else None

        def saved(result: Any) -> None:
            self._select_server(result.name)
            self.status_message = f"Saved server {result.name}"

        self._open_form(
            server_form(
                self.config,
                server=server,
                on_saved=saved,
                validation_mode=self.settings.validation_mode,
                passwords=self.passwords,
            )
        )

    def _open_profile_form(self, name: str | None = None) -> None:
        profile = self.config.get_profile(name) if name else None

        def saved(result: Any) -> None:
            self.pane = PROFILES_PANE
            self._select_profile(result.name)
            self.status_message = f"Saved profile {result.name}"

        self._open_form(
            profile_form(
                self.config,
                profile=profile,
                on_saved=saved,
                validation_mode=self.settings.validation_mode,
            )
        )

    def _open_membership_form(self, assign: bool) -> None:
        if self.pane != PROFILES_PANE:
            self.status_message = "Select a profile first (Tab switches pane)"
            return
        profile_name = self._selected_profile()
        if profile_name is None:
            self.status_message = "No profile selected"
            return

        def saved(server_name: str) -> None:
            verb = "Assigned" if assign else "Unassigned"
            self.status_message = f"{verb} {server_name} ({profile_name})"

        builder = assign_server_form if assign else unassign_server_form
        try:
            form = builder(self.config, profile_name, on_saved=saved)
        except SshmError as e:
            self.status_message = e.message
            return
        self._open_form(form)

    def _open_import_form(self) -> None:
        def imported(result: ImportResult) -> None:
            self.status_message = f"Import complete: {result.summary()}"

        self._open_form(import_form(self.config, self.runner, on_imported=imported))

    def _open_export_form(self) -> None:
        def exported(result: ExportResult) -> None:
            self.status_message = result.summary()

        self._open_form(export_form(self.config, self.runner, on_exported=exported))

    def _edit_selected(self) -> None:
        if self.pane == SERVERS_PANE:
            name = self._selected_server()
            if name is not None:
                self._open_server_form(name)
        else:
            name = self._selected_profile()
            if name is not None:
                self._open_profile_form(name)

    # -- delete --------------------------------------------------------------

    def _delete_selected(self) -> None:
        if self.pane == SERVERS_PANE:
            name = self._selected_server()
            if name is None:
                return
            server = self.config.get_server(name)
            message = delete_server_message(self.config, server)
            title = "Delete Server"
            stored_password = server.use_keyring

            def action() -> None:
                self.config.remove_server(name)
        else:
            name = self._selected_profile()
            if name is None:
                return
            message = delete_profile_message(self.config.get_profile(name))
            title = "Delete Profile"
            stored_password = False

            def action() -> None:
                self.config.remove_profile(name)

        def delete() -> None:
            try:
                with catalog_transaction(self.config):
                    action()
                    self.config.save()
            except SshmError as e:
                self.status_message = f"Delete failed: {e.message}"
            else:
                self.status_message = f"Deleted {name}"
                if stored_password:
                    self._discard_password(name)

        if not self.settings.confirm_delete:
            delete()
            self._refresh_layout()
            return
        self._show_confirm(title, message, delete)

    def _discard_password(self, name: str) -> None:
        try:
            self.passwords.delete(name)
        except CredentialError as e:
            logger.warning("Could not remove keyring password for %s: %s", name, e.message)

    def _show_confirm(self, title: str, message: str, on_confirm: Callable[[], None]) -> None:
        def confirmed() -> None:
            self.modals.remove(modal)
            on_confirm()
            self._refresh_layout()

        def cancelled() -> None:
            self.modals.remove(modal)
            self.status_message = "Cancelled"
            self._refresh_layout()

        modal = ConfirmModal(title, ConfirmDialog(message, confirmed, cancelled))
        self.modals.show(modal)
        self._refresh_layout()

    # -- connect / quit ------------------------------------------------------

    def _connect_selected(self) -> None:
        if self._connecting:
            return
        if self.pane == SERVERS_PANE:
            name = self._selected_server()
            if name is None:
                return
            server = self.config.get_server(name)

            def work() -> tuple[str, bool]:
                return self.connector.connect_server(server)
        else:
            name = self._selected_profile()
            if name is None:
                return
            servers = self.config.servers_by_profile(name)

            def work() -> tuple[str, bool]:
                return self.connector.connect_profile(name, servers)

        self._connecting = True
        self.status_message = f"Connecting to {name}..."
        self.runner.run(work, self._on_connected, self.token)

    def _on_connected(self, future: Any) -> None:
        self._connecting = False
        try:
            session, existed = future.result()
        except SshmError as e:
            self.status_message = f"Connection failed: {e.message}"
            return
        logger.info("%s tmux session %s", "Attaching to" if existed else "Created", session)
        if self.app:
            self.app.exit(result=session)

    def _reload_config(self) -> None:
        try:
            self.config.reload()
        except SshmError as e:
            self.status_message = f"Reload failed: {e.message}"
            return
        self.status_message = (
            f"Reloaded: {len(self.config.servers)} servers, "
            f"{len(self.config.profiles)} profiles"
        )
        self._refresh_layout()

    def _quit_app(self) -> None:
        self.token.revoke()
        self.modals.clear_all()
        if self.app:
            self.app.exit()


def run_tui(
    config_dir: Path | None = None,
    tmux: TmuxManager | None = None,
    *,
    verbose: bool = False,
    log_file: str | None = None,
) -> int:
    """Run the TUI, then attach to the tmux session the user connected to.

    Returns:
        Process exit code
    """
    root = config_dir or default_config_dir()
    settings = TUISettings.load(root)
    # The screen belongs to the UI, so logs only go to a file
    setup_logging(verbose=verbose, log_file=log_file or settings.log_file, console=False)

    config = Config.load(root / CONFIG_FILENAME)
    tmux = tmux or TmuxManager()
    history = HistoryStore(root / HISTORY_FILENAME)
    session = SshmApp(config, tmux=tmux, settings=settings, history=history).run()
    if session:
        tmux.attach_session(session)
    return 0


def main() -> None:
    """Main entry point for the TUI application."""
    import argparse
    import sys

    parser = argparse.ArgumentParser(
        description="sshm: interactive SSH connection manager",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        help="Directory holding config.yaml (default: ~/.sshm)",
    )
    args = parser.parse_args()

    try:
        sys.exit(run_tui(args.config_dir))
    except SshmError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
