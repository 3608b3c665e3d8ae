"""Dialog builders.

Each builder declares the fields of one dialog, wires the commit callback
to the host catalog and returns a ready ``FormState``. The application
only renders what it gets back; the CLI drives the same forms without a
screen.

Commits are transactional: the catalog is snapshotted before the change
and restored if validation inside ``Config`` or the save fails, so a
dialog that stays open has left nothing behind.
"""

from __future__ import annotations

import copy
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from sshm.lib.config import Config, Profile, Server, expand_path
from sshm.lib.credentials import PasswordStore
from sshm.lib.errors import ConfigurationError, CredentialError, SshmError
from sshm.lib.transfer import ExportResult, ImportResult, export_servers, import_servers
from sshm.tui.background import BackgroundRunner
from sshm.tui.constants import (
    ACTION_BROWSE,
    ACTION_CANCEL,
    ACTION_SUBMIT,
    ALL_PROFILES_OPTION,
    AUTH_TYPE_OPTIONS,
    BOOL_OPTIONS,
    DELETE_PROFILE_MESSAGE,
    DELETE_SERVER_MESSAGE,
    EXPORT_FORMAT_OPTIONS,
    IMPORT_FORMAT_OPTIONS,
    PROFILE_FIELD_ORDER,
    SERVER_FIELD_ORDER,
)
from sshm.tui.models.field import Field, FieldKind
from sshm.tui.models.form_state import FormState, ValidationMode
from sshm.tui.models.validators import (
    key_path_for_auth,
    profile_name_validator,
    server_choice_validator,
    validate_auth_type,
    validate_hostname,
    validate_key_path,
    validate_passphrase_protected,
    validate_password,
    validate_port,
    validate_profile_description,
    validate_server_name,
    validate_username,
)
from sshm.tui.models.visibility import visible_when_equals

logger = logging.getLogger(__name__)

__all__ = [
    "assign_server_form",
    "delete_profile_message",
    "delete_server_message",
    "export_form",
    "import_form",
    "profile_form",
    "server_form",
    "server_from_values",
    "unassign_server_form",
]


@contextmanager
def catalog_transaction(config: Config) -> Iterator[Config]:
    """Undo in-memory catalog changes if the block raises."""
    servers = copy.deepcopy(config.servers)
    profiles = copy.deepcopy(config.profiles)
    try:
        yield config
    except Exception:
        config.servers = servers
        config.profiles = profiles
        raise


# =============================================================================
# Host dialog
# =============================================================================


def _clear_password_for_key_auth(form: FormState, value: str) -> None:
    if value == "key" and form.get_value("password"):
        form.set_value("password", "")


def server_from_values(values: dict[str, str]) -> Server:
    """Turn collected host-dialog values into a ``Server``.

    The password is not part of the entry; ``server_form`` puts it in the
    keyring.
    """
    auth_type = values["auth_type"]
    is_key = auth_type == "key"
    return Server(
        name=values["name"].strip(),
        hostname=values["hostname"].strip(),
        username=values["username"].strip(),
        port=int(values["port"].strip()),
        auth_type=auth_type,
        key_path=values["key_path"].strip() if is_key else "",
        passphrase_protected=is_key and values["passphrase_protected"] == "true",
    )


def _stage_password(passwords: PasswordStore, name: str, password: str) -> Callable[[], None]:
    """Store a password and return a callable that puts the old entry back."""
    previous = passwords.retrieve(name)
    passwords.store(name, password)

    def undo() -> None:
        if previous is None:
            passwords.delete(name)
        else:
            passwords.store(name, previous)

    return undo


def _discard_password(passwords: PasswordStore, name: str) -> None:
    try:
        passwords.delete(name)
    except CredentialError as e:
        logger.warning("Could not remove stored password for %s: %s", name, e.message)


def server_form(
    config: Config,
    *,
    server: Server | None = None,
    on_saved: Callable[[Server], None] | None = None,
    on_cancel: Callable[[], None] | None = None,
    validation_mode: ValidationMode = ValidationMode.ON_SUBMIT,
    save: bool = True,
    passwords: PasswordStore | None = None,
) -> FormState:
    """Add-host dialog, or edit-host when ``server`` is given.

    A password typed into the dialog goes to the keyring, never into the
    catalog. When editing, an empty password keeps the stored one; a
    plaintext password left over in the catalog is moved to the keyring.
    """
    editing = server is not None
    original = server or Server(name="", hostname="", username="")
    store = passwords or PasswordStore()
    has_stored_password = editing and (original.use_keyring or bool(original.password))

    fields = [
        Field(
            "name", "Server Name",
            value=original.name,
            required=True,
            validator=validate_server_name,
            help_text="Unique name, also used for the tmux session",
        ),
        Field(
            "hostname", "Hostname",
            value=original.hostname,
            required=True,
            validator=validate_hostname,
            help_text="Host name or IP address",
        ),
        Field(
            "port", "Port",
            value=str(original.port),
            required=True,
            validator=validate_port,
        ),
        Field(
            "username", "Username",
            value=original.username,
            required=True,
            validator=validate_username,
        ),
        Field(
            "auth_type", "Auth Type",
            kind=FieldKind.ENUM,
            options=list(AUTH_TYPE_OPTIONS),
            value=original.auth_type if original.auth_type in AUTH_TYPE_OPTIONS else "key",
            validator=validate_auth_type,
            on_change=_clear_password_for_key_auth,
            help_text="Use Up/Down to switch between key and password",
        ),
        Field(
            "password", "Password",
            kind=FieldKind.SECRET,
            validator=validate_password,
            visible_when=visible_when_equals("auth_type", "password"),
            help_text=(
                "Leave empty to keep the stored password"
                if has_stored_password
                else "Optional; stored in the system keyring, ssh prompts when empty"
            ),
        ),
        Field(
            "key_path", "Key Path",
            value=original.key_path,
            validator=validate_key_path,
            check=key_path_for_auth(),
            depends_on=("auth_type",),
            visible_when=visible_when_equals("auth_type", "key"),
            help_text="e.g. ~/.ssh/id_ed25519",
        ),
        Field(
            "passphrase_protected", "Passphrase",
            kind=FieldKind.ENUM,
            options=list(BOOL_OPTIONS),
            value="true" if original.passphrase_protected else "false",
            validator=validate_passphrase_protected,
            visible_when=visible_when_equals("auth_type", "key"),
        ),
    ]

    def commit(values: dict[str, str]) -> Server:
        new_server = server_from_values(values)
        password = values["password"] if new_server.auth_type == "password" else ""
        if not password and new_server.auth_type == "password" and editing:
            if original.password:
                password = original.password
            elif original.use_keyring and original.name != new_server.name:
                password = store.retrieve(original.name) or ""
            elif original.use_keyring:
                new_server.use_keyring = True

        undo: Callable[[], None] | None = None
        try:
            with catalog_transaction(config):
                if editing:
                    config.update_server(original.name, new_server)
                else:
                    config.add_server(new_server)
                if password:
                    undo = _stage_password(store, new_server.name, password)
                    new_server.use_keyring = True
                if save:
                    config.save()
        except SshmError:
            if undo is not None:
                try:
                    undo()
                except CredentialError as e:
                    logger.warning("Could not restore keyring entry: %s", e.message)
            raise

        if editing and original.use_keyring:
            if not new_server.use_keyring or original.name != new_server.name:
                _discard_password(store, original.name)
        logger.info("%s server %s", "Updated" if editing else "Added", new_server.name)
        return new_server

    return FormState(
        fields,
        field_order=SERVER_FIELD_ORDER,
        on_submit=commit,
        on_cancel=on_cancel,
        on_committed=on_saved,
        validation_mode=validation_mode,
        title=f"Edit Server: {original.name}" if editing else "Add Server",
    )


# =============================================================================
# Profile dialogs
# =============================================================================


def profile_form(
    config: Config,
    *,
    profile: Profile | None = None,
    on_saved: Callable[[Profile], None] | None = None,
    on_cancel: Callable[[], None] | None = None,
    validation_mode: ValidationMode = ValidationMode.ON_SUBMIT,
    save: bool = True,
) -> FormState:
    """Create-profile dialog, or edit-profile when ``profile`` is given."""
    editing = profile is not None
    current_name = profile.name if profile else None

    fields = [
        Field(
            "name", "Profile Name",
            value=profile.name if profile else "",
            required=True,
            validator=profile_name_validator(config.profile_names(), current_name),
        ),
        Field(
            "description", "Description",
            value=profile.description if profile else "",
            validator=validate_profile_description,
        ),
    ]

    def commit(values: dict[str, str]) -> Profile:
        new_profile = Profile(
            name=values["name"].strip(),
            description=values["description"].strip(),
        )
        with catalog_transaction(config):
            if editing:
                config.update_profile(current_name, new_profile)
            else:
                config.add_profile(new_profile)
            if save:
                config.save()
        return config.get_profile(new_profile.name)

    return FormState(
        fields,
        field_order=PROFILE_FIELD_ORDER,
        on_submit=commit,
        on_cancel=on_cancel,
        on_committed=on_saved,
        validation_mode=validation_mode,
        title=f"Edit Profile: {current_name}" if editing else "Create Profile",
    )


def _membership_form(
    config: Config,
    profile_name: str,
    choices: list[str],
    *,
    action: str,
    on_saved: Callable[[str], None] | None,
    on_cancel: Callable[[], None] | None,
    save: bool,
) -> FormState:
    fields = [
        Field(
            "server", "Server",
            kind=FieldKind.ENUM,
            options=choices,
            required=True,
            validator=server_choice_validator(choices, action=action),
        ),
    ]

    def commit(values: dict[str, str]) -> str:
        with catalog_transaction(config):
            if action == "assign":
                config.assign_server_to_profile(values["server"], profile_name)
            else:
                config.unassign_server_from_profile(values["server"], profile_name)
            if save:
                config.save()
        return values["server"]

    verb = "Assign Server to" if action == "assign" else "Unassign Server from"
    return FormState(
        fields,
        actions=(ACTION_SUBMIT, ACTION_CANCEL),
        on_submit=commit,
        on_cancel=on_cancel,
        on_committed=on_saved,
        title=f"{verb} {profile_name}",
    )


def assign_server_form(
    config: Config,
    profile_name: str,
    *,
    on_saved: Callable[[str], None] | None = None,
    on_cancel: Callable[[], None] | None = None,
    save: bool = True,
) -> FormState:
    """Pick a server not yet in the profile.

    Raises:
        ConfigurationError: If every server is already assigned
    """
    assigned = set(config.get_profile(profile_name).servers)
    available = [name for name in config.server_names() if name not in assigned]
    if not available:
        raise ConfigurationError(
            f"no servers available to assign to profile '{profile_name}'"
        )
    return _membership_form(
        config, profile_name, available,
        action="assign", on_saved=on_saved, on_cancel=on_cancel, save=save,
    )


def unassign_server_form(
    config: Config,
    profile_name: str,
    *,
    on_saved: Callable[[str], None] | None = None,
    on_cancel: Callable[[], None] | None = None,
    save: bool = True,
) -> FormState:
    """Pick a server to drop from the profile.

    Raises:
        ConfigurationError: If the profile has no servers
    """
    assigned = list(config.get_profile(profile_name).servers)
    if not assigned:
        raise ConfigurationError(f"profile '{profile_name}' has no assigned servers")
    return _membership_form(
        config, profile_name, assigned,
        action="unassign", on_saved=on_saved, on_cancel=on_cancel, save=save,
    )


# =============================================================================
# Import / export dialogs
# =============================================================================


def _existing_file(value: str) -> str | None:
    path = Path(expand_path(value.strip()))
    if not path.exists():
        return f"File does not exist: {value.strip()}"
    if not path.is_file():
        return f"Not a file: {value.strip()}"
    return None


def _optional_profile_name(value: str) -> str | None:
    if not value.strip():
        return None
    return profile_name_validator(())(value)


def _writable_target(value: str) -> str | None:
    if Path(expand_path(value.strip())).is_dir():
        return "Export path is a directory"
    return None


def _progress_reporter(
    form_ref: list[FormState], runner: BackgroundRunner
) -> Callable[[int, int, str], None]:
    """Progress callback for worker threads that updates the form's busy hook."""

    def report(step: int, total: int, message: str) -> None:
        form = form_ref[0]
        if not form.token.alive:
            return

        def update() -> None:
            if form.is_open:
                form.set_busy(f"[{step}/{total}] {message}")

        runner.dispatch(update)

    return report


def import_form(
    config: Config,
    runner: BackgroundRunner,
    *,
    on_imported: Callable[[ImportResult], None] | None = None,
    on_cancel: Callable[[], None] | None = None,
    default_path: str = "~/.ssh/config",
) -> FormState:
    """Import servers from a YAML, JSON or ssh_config file in the background.

    The merge runs on a copy of the catalog; the live catalog only adopts it
    once the worker finished and saved successfully.
    """
    fields = [
        Field(
            "file_path", "File",
            value=default_path,
            required=True,
            validator=_existing_file,
            help_text="Path to the file to import (Browse to pick one)",
        ),
        Field(
            "format", "Format",
            kind=FieldKind.ENUM,
            options=list(IMPORT_FORMAT_OPTIONS),
        ),
        Field(
            "profile", "Into Profile",
            validator=_optional_profile_name,
            help_text="Optional: group the imported servers in this profile",
        ),
    ]
    form_ref: list[FormState] = []

    def commit(values: dict[str, str]) -> Any:
        path = Path(expand_path(values["file_path"].strip()))
        fmt = IMPORT_FORMAT_OPTIONS[values["format"]]
        profile = values["profile"].strip() or None
        working = copy.deepcopy(config)
        token = form_ref[0].token
        progress = _progress_reporter(form_ref, runner)

        def work() -> tuple[Config, ImportResult]:
            result = import_servers(
                working, path, fmt=fmt, profile=profile, progress=progress, save=False
            )
            # Nothing reaches the file once the dialog is gone
            if token.alive:
                working.save()
            return working, result

        form_ref[0].set_busy(f"Importing {path.name}...")
        return runner.submit(work)

    def committed(outcome: tuple[Config, ImportResult]) -> None:
        working, result = outcome
        config.replace_with(working)
        if on_imported is not None:
            on_imported(result)

    form = FormState(
        fields,
        actions=(ACTION_BROWSE, ACTION_SUBMIT, ACTION_CANCEL),
        on_submit=commit,
        on_cancel=on_cancel,
        on_committed=committed,
        dispatch=runner.dispatch,
        title="Import Servers",
    )
    form_ref.append(form)
    return form


def export_form(
    config: Config,
    runner: BackgroundRunner,
    *,
    on_exported: Callable[[ExportResult], None] | None = None,
    on_cancel: Callable[[], None] | None = None,
    default_path: str = "sshm_export.yaml",
) -> FormState:
    """Export all servers, or one profile, in the background."""
    fields = [
        Field(
            "file_path", "File",
            value=default_path,
            required=True,
            validator=_writable_target,
        ),
        Field(
            "format", "Format",
            kind=FieldKind.ENUM,
            options=list(EXPORT_FORMAT_OPTIONS),
        ),
        Field(
            "profile", "Profile",
            kind=FieldKind.ENUM,
            options=[ALL_PROFILES_OPTION] + config.profile_names(),
        ),
    ]
    form_ref: list[FormState] = []

    def commit(values: dict[str, str]) -> Any:
        path = Path(expand_path(values["file_path"].strip()))
        fmt = EXPORT_FORMAT_OPTIONS[values["format"]]
        profile = None if values["profile"] == ALL_PROFILES_OPTION else values["profile"]
        snapshot = copy.deepcopy(config)
        progress = _progress_reporter(form_ref, runner)

        form_ref[0].set_busy(f"Exporting to {path.name}...")
        return runner.submit(
            export_servers, snapshot, path, fmt=fmt, profile=profile, progress=progress
        )

    form = FormState(
        fields,
        on_submit=commit,
        on_cancel=on_cancel,
        on_committed=on_exported,
        dispatch=runner.dispatch,
        title="Export Servers",
    )
    form_ref.append(form)
    return form


# =============================================================================
# Confirmation texts
# =============================================================================


def delete_profile_message(profile: Profile) -> str:
    return DELETE_PROFILE_MESSAGE.format(
        name=profile.name,
        description=profile.description or "(none)",
        count=len(profile.servers),
    )


def delete_server_message(config: Config, server: Server) -> str:
    return DELETE_SERVER_MESSAGE.format(
        name=server.name,
        username=server.username,
        hostname=server.hostname,
        count=len(config.profiles_for_server(server.name)),
    )
