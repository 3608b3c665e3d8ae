"""CLI entry point for sshm.

Usage:
    sshm                                   # Launch the interactive TUI
    sshm list [--profile NAME]
    sshm add web1 --hostname web1.example.com --username deploy --key-path ~/.ssh/id_ed25519
    sshm remove web1
    sshm connect web1
    sshm batch --profile production
    sshm sessions
    sshm history list --server web1
    sshm history stats web1
    sshm keyring status
    sshm keyring migrate
    sshm profile create production --description "Production web tier"
    sshm profile assign production web1
    sshm import ~/.ssh/config --profile imported
    sshm export backup.yaml --profile production

Every command exits with 0 on success and 1 with a one-line
``Error: ...`` message on failure.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from sshm import __version__
from sshm.lib.config import AUTH_TYPES, CONFIG_FILENAME, Config, Server, default_config_dir
from sshm.lib.connection import Connector
from sshm.lib.credentials import PasswordStore, migrate_plaintext, needs_migration
from sshm.lib.errors import ConfigurationError, CredentialError, SshmError
from sshm.lib.history import HISTORY_FILENAME, STATUSES, ConnectionRecord, HistoryStore
from sshm.lib.logging import setup_logging
from sshm.lib.tmux import TmuxManager
from sshm.lib.transfer import EXPORT_FORMATS, IMPORT_FORMATS, export_servers, import_servers
from sshm.tui.dialogs import profile_form, server_form
from sshm.tui.models.errors import FORM_LEVEL, FormError
from sshm.tui.models.form_state import FormState

logger = logging.getLogger(__name__)


def _config_dir(args: argparse.Namespace) -> Path:
    return args.config_dir or default_config_dir()


def load_config(args: argparse.Namespace) -> Config:
    return Config.load(_config_dir(args) / CONFIG_FILENAME)


def history_store(args: argparse.Namespace) -> HistoryStore:
    return HistoryStore(_config_dir(args) / HISTORY_FILENAME)


def connector(args: argparse.Namespace) -> Connector:
    return Connector(TmuxManager(), history_store(args), PasswordStore())


def submit_form(form: FormState, values: Dict[str, str]) -> None:
    """Fill a dialog without a screen and submit it.

    Values are applied in the dialog's field order so that fields which
    reveal or clear others (auth type) are set first.

    Raises:
        FormError: The primary error when the form refused to close
    """
    for name in form.field_order:
        if name in values:
            form.set_value(name, values[name])
    if form.submit():
        return

    if FORM_LEVEL in form.errors:
        raise form.errors[FORM_LEVEL]
    for name in form.field_order:
        if name in form.errors:
            raise form.errors[name]
    raise FormError(FORM_LEVEL, f"{form.title} was not saved")


# =============================================================================
# Servers
# =============================================================================


def cmd_list(args: argparse.Namespace) -> int:
    config = load_config(args)
    servers = config.servers_by_profile(args.profile) if args.profile else config.servers

    if not servers:
        print("No servers configured.")
        print()
        print("Add one with: sshm add NAME --hostname HOST --username USER --key-path KEY")
        return 0

    max_name = max(max(len(s.name) for s in servers), 10)
    print(f"  {'Name':<{max_name}}  {'Target':<40}  Auth")
    print(f"  {'-' * max_name}  {'-' * 40}  {'-' * 8}")
    for server in servers:
        target = f"{server.username}@{server.hostname}:{server.port}"
        print(f"  {server.name:<{max_name}}  {target:<40}  {server.auth_type}")
    return 0


def cmd_add(args: argparse.Namespace) -> int:
    config = load_config(args)
    saved: List[Server] = []
    form = server_form(config, on_saved=saved.append)
    password = ""
    if args.ask_password and args.auth_type == "password":
        password = getpass.getpass(f"Password for {args.username}@{args.hostname}: ")
    values = {
        "name": args.name,
        "hostname": args.hostname,
        "port": str(args.port),
        "username": args.username,
        "auth_type": args.auth_type,
        "password": password,
        "key_path": args.key_path or "",
        "passphrase_protected": "true" if args.passphrase_protected else "false",
    }
    submit_form(form, values)
    print(f"Added server '{saved[0].name}' ({saved[0].username}@{saved[0].hostname})")
    if saved[0].use_keyring:
        print("Password stored in the system keyring")
    return 0


def cmd_remove(args: argparse.Namespace) -> int:
    config = load_config(args)
    server = config.get_server(args.name)
    config.remove_server(args.name)
    config.save()
    print(f"Removed server '{args.name}'")
    if server.use_keyring:
        try:
            PasswordStore().delete(server.name)
        except CredentialError as e:
            logger.warning("Stored password for %s was not removed: %s", server.name, e.message)
    return 0


def cmd_connect(args: argparse.Namespace) -> int:
    config = load_config(args)
    server = config.get_server(args.name)
    connect = connector(args)
    session, existed = connect.connect_server(server)
    if existed:
        print(f"Attaching to existing session '{session}'")
    connect.tmux.attach_session(session)
    return 0


def cmd_batch(args: argparse.Namespace) -> int:
    config = load_config(args)
    servers = config.servers_by_profile(args.profile)
    connect = connector(args)
    session, existed = connect.connect_profile(args.profile, servers)
    if not existed:
        print(f"Opened {len(servers)} windows in session '{session}'")
    connect.tmux.attach_session(session)
    return 0


def cmd_sessions(args: argparse.Namespace) -> int:
    sessions = TmuxManager().list_sessions()
    if not sessions:
        print("No tmux sessions running.")
        return 0
    for name in sessions:
        print(f"  {name}")
    return 0


# =============================================================================
# Profiles
# =============================================================================


def cmd_profile_create(args: argparse.Namespace) -> int:
    config = load_config(args)
    form = profile_form(config)
    submit_form(form, {"name": args.name, "description": args.description or ""})
    print(f"Created profile '{args.name.strip()}'")
    return 0


def cmd_profile_list(args: argparse.Namespace) -> int:
    config = load_config(args)
    if not config.profiles:
        print("No profiles configured.")
        return 0
    for profile in config.profiles:
        print(f"  {profile.name} ({len(profile.servers)} servers)")
        if profile.description:
            print(f"      {profile.description}")
        for name in profile.servers:
            print(f"      - {name}")
    return 0


def cmd_profile_delete(args: argparse.Namespace) -> int:
    config = load_config(args)
    config.remove_profile(args.name)
    config.save()
    print(f"Deleted profile '{args.name}'")
    return 0


def cmd_profile_assign(args: argparse.Namespace) -> int:
    config = load_config(args)
    config.assign_server_to_profile(args.server, args.profile)
    config.save()
    print(f"Assigned '{args.server}' to profile '{args.profile}'")
    return 0


def cmd_profile_unassign(args: argparse.Namespace) -> int:
    config = load_config(args)
    config.unassign_server_from_profile(args.server, args.profile)
    config.save()
    print(f"Unassigned '{args.server}' from profile '{args.profile}'")
    return 0


# =============================================================================
# Connection history
# =============================================================================


def _local(moment: Optional[datetime]) -> str:
    if moment is None:
        return "-"
    return moment.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_record(record: ConnectionRecord) -> None:
    name = record.server_name
    if record.connection_type == "single" and record.profile_name:
        name = f"{name} ({record.profile_name})"
    duration = f"{record.duration_seconds:.1f}s" if record.duration_seconds is not None else ""
    print(
        f"  {_local(record.start_time)}  {record.status:<10}  {name:<24}  "
        f"{record.target:<32}  {duration}"
    )
    if record.error_message:
        print(f"      Error: {record.error_message}")
    if record.session_id:
        print(f"      Session: {record.session_id}")


def cmd_history_list(args: argparse.Namespace) -> int:
    since = None
    if args.days:
        since = datetime.now(timezone.utc) - timedelta(days=args.days)
    records = history_store(args).list_connections(
        server=args.server,
        profile=args.profile,
        status=args.status,
        since=since,
        limit=args.limit,
    )
    if not records:
        print("No connection history found.")
        return 0

    print("Connection history:")
    for record in records:
        _print_record(record)
    print()
    print(f"Showing {len(records)} entries")
    return 0


def cmd_history_stats(args: argparse.Namespace) -> int:
    store = history_store(args)
    if not args.server:
        activity = store.recent_activity(24)
        if not activity:
            print("No connection activity in the last 24 hours.")
            return 0
        print("Recent activity (last 24 hours):")
        for status in sorted(activity):
            print(f"  {status:<10}  {activity[status]}")
        print(f"  {'total':<10}  {sum(activity.values())}")
        return 0

    stats = store.stats(args.server, args.profile)
    print(f"Statistics for {stats.server_name}")
    if stats.profile_name:
        print(f"  Profile:            {stats.profile_name}")
    if not stats.total:
        print("  No connection history for this server.")
        return 0
    print(f"  Total connections:  {stats.total}")
    print(f"  Successful:         {stats.successful}")
    print(f"  Failed:             {stats.failed}")
    print(f"  Success rate:       {stats.success_rate * 100:.1f}%")
    if stats.average_duration is not None:
        print(f"  Average setup time: {stats.average_duration:.1f}s")
    print(f"  First connection:   {_local(stats.first_connection)}")
    print(f"  Last connection:    {_local(stats.last_connection)}")
    return 0


def cmd_history_cleanup(args: argparse.Namespace) -> int:
    deleted = history_store(args).cleanup(args.days)
    if deleted:
        print(f"Removed {deleted} history entries older than {args.days} days")
    else:
        print("No old history entries to remove.")
    return 0


# =============================================================================
# Keyring
# =============================================================================


def _password_state(server: Server, store: PasswordStore) -> str:
    if needs_migration(server):
        return "plaintext in config (run: sshm keyring migrate)"
    if server.use_keyring:
        return "keyring" if store.has(server.name) else "missing from keyring"
    return "not stored (ssh prompts)"


def cmd_keyring_status(args: argparse.Namespace) -> int:
    config = load_config(args)
    store = PasswordStore()
    available = store.is_available()
    print(f"Keyring backend: {store.backend_name()}{'' if available else ' (unavailable)'}")

    servers = [s for s in config.servers if s.auth_type == "password"]
    if not servers:
        print("No password-authenticated servers.")
        return 0

    for server in servers:
        state = _password_state(server, store) if available else "unknown"
        print(f"  {server.name:<20}  {state}")

    pending = [s.name for s in servers if needs_migration(s)]
    if pending:
        print()
        print(f"{len(pending)} servers need migration: {', '.join(pending)}")
    return 0


def cmd_keyring_migrate(args: argparse.Namespace) -> int:
    config = load_config(args)
    results = migrate_plaintext(config, PasswordStore(), args.server)
    if not results:
        print("No plaintext passwords to migrate.")
        return 0

    migrated = [r for r in results if r.migrated]
    if migrated:
        config.save()
    for result in results:
        if result.migrated:
            print(f"Migrated password for '{result.server}'")
        else:
            print(f"Failed to migrate '{result.server}': {result.error}", file=sys.stderr)
    return 0 if len(migrated) == len(results) else 1


def _password_server(config: Config, name: str) -> Server:
    server = config.get_server(name)
    if server.auth_type != "password":
        raise ConfigurationError(
            f"server '{name}' uses key authentication",
            field="auth_type",
            suggestion="Only password-authenticated servers have stored passwords.",
        )
    return server


def cmd_keyring_set(args: argparse.Namespace) -> int:
    config = load_config(args)
    server = _password_server(config, args.name)
    password = getpass.getpass(f"Password for {server.username}@{server.hostname}: ")
    if not password:
        raise CredentialError("password must not be empty", server=server.name)

    PasswordStore().store(server.name, password)
    server.use_keyring = True
    server.password = ""
    config.save()
    print(f"Stored password for '{server.name}' in the system keyring")
    return 0


def cmd_keyring_delete(args: argparse.Namespace) -> int:
    config = load_config(args)
    server = _password_server(config, args.name)
    removed = PasswordStore().delete(server.name)
    if server.use_keyring:
        server.use_keyring = False
        config.save()
    if removed:
        print(f"Removed stored password for '{server.name}'")
    else:
        print(f"No stored password for '{server.name}'")
    return 0


# =============================================================================
# Import / export / TUI
# =============================================================================


def cmd_import(args: argparse.Namespace) -> int:
    config = load_config(args)

    def progress(step: int, total: int, message: str) -> None:
        logger.info("[%d/%d] %s", step, total, message)

    result = import_servers(
        config,
        Path(args.file).expanduser(),
        fmt=args.type,
        profile=args.profile,
        progress=progress,
    )
    print(f"Import complete: {result.summary()}")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    config = load_config(args)
    result = export_servers(
        config,
        Path(args.file).expanduser(),
        fmt=args.format,
        profile=args.profile,
    )
    print(result.summary())
    return 0


def cmd_tui(args: argparse.Namespace) -> int:
    from sshm.tui.app import run_tui

    return run_tui(args.config_dir, verbose=args.verbose, log_file=args.log_file)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sshm",
        description="Manage SSH host profiles and open them in tmux",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Launch the interactive manager
    sshm

    # Add a server using key authentication
    sshm add web1 --hostname web1.example.com --username deploy --key-path ~/.ssh/id_ed25519

    # Group servers and open them all at once
    sshm profile create production
    sshm profile assign production web1
    sshm batch --profile production

    # Import hosts from the OpenSSH client config
    sshm import ~/.ssh/config --profile imported

    # Review recent connections and move old plaintext passwords to the keyring
    sshm history list --days 7
    sshm keyring migrate
        """,
    )
    parser.add_argument("--version", action="version", version=f"sshm {__version__}")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs in JSON format",
    )
    parser.add_argument(
        "--log-file",
        help="Also write logs to this file",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        help="Directory holding config.yaml (default: $SSHM_CONFIG_DIR or ~/.sshm)",
    )

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("list", help="List servers")
    p.add_argument("--profile", help="Only servers in this profile")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("add", help="Add a server")
    p.add_argument("name", help="Unique server name")
    p.add_argument("--hostname", required=True, help="Host name or IP address")
    p.add_argument("--port", type=int, default=22, help="SSH port (default: 22)")
    p.add_argument("--username", required=True, help="Remote user")
    p.add_argument("--auth-type", choices=AUTH_TYPES, default="key", help="Authentication type")
    p.add_argument("--key-path", help="Private key for key authentication")
    p.add_argument(
        "--passphrase-protected",
        action="store_true",
        help="The key needs a passphrase",
    )
    p.add_argument(
        "--ask-password",
        action="store_true",
        help="Prompt for a password and store it in the system keyring",
    )
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("remove", help="Remove a server")
    p.add_argument("name")
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser("connect", help="Connect to a server in tmux")
    p.add_argument("name")
    p.set_defaults(func=cmd_connect)

    p = sub.add_parser("batch", help="Connect to every server in a profile")
    p.add_argument("--profile", required=True)
    p.set_defaults(func=cmd_batch)

    p = sub.add_parser("sessions", help="List running tmux sessions")
    p.set_defaults(func=cmd_sessions)

    history = sub.add_parser("history", help="View and clean up connection history")
    history_sub = history.add_subparsers(dest="history_command", metavar="ACTION")
    history_sub.required = True

    p = history_sub.add_parser("list", help="List recent connections")
    p.add_argument("-s", "--server", help="Only this server")
    p.add_argument("-p", "--profile", help="Only connections launched from this profile")
    p.add_argument("--status", choices=STATUSES, help="Only this outcome")
    p.add_argument("-d", "--days", type=int, default=0, help="Only the last N days (0 = all)")
    p.add_argument("-l", "--limit", type=int, default=20, help="Maximum entries (default: 20)")
    p.set_defaults(func=cmd_history_list)

    p = history_sub.add_parser("stats", help="Connection statistics")
    p.add_argument("server", nargs="?", help="Server to report on (recent activity if omitted)")
    p.add_argument("-p", "--profile", help="Only connections launched from this profile")
    p.set_defaults(func=cmd_history_stats)

    p = history_sub.add_parser("cleanup", help="Delete old history entries")
    p.add_argument("-d", "--days", type=int, default=30, help="Retention in days (default: 30)")
    p.set_defaults(func=cmd_history_cleanup)

    keyring_parser = sub.add_parser("keyring", help="Manage passwords in the system keyring")
    keyring_sub = keyring_parser.add_subparsers(dest="keyring_command", metavar="ACTION")
    keyring_sub.required = True

    p = keyring_sub.add_parser("status", help="Show where each server's password is kept")
    p.set_defaults(func=cmd_keyring_status)

    p = keyring_sub.add_parser("migrate", help="Move plaintext passwords into the keyring")
    p.add_argument("--server", help="Only migrate this server")
    p.set_defaults(func=cmd_keyring_migrate)

    p = keyring_sub.add_parser("set", help="Store a server's password (prompts)")
    p.add_argument("name")
    p.set_defaults(func=cmd_keyring_set)

    p = keyring_sub.add_parser("delete", help="Remove a server's stored password")
    p.add_argument("name")
    p.set_defaults(func=cmd_keyring_delete)

    profile = sub.add_parser("profile", help="Manage profiles")
    profile_sub = profile.add_subparsers(dest="profile_command", metavar="ACTION")
    profile_sub.required = True

    p = profile_sub.add_parser("create", help="Create a profile")
    p.add_argument("name")
    p.add_argument("--description", default="")
    p.set_defaults(func=cmd_profile_create)

    p = profile_sub.add_parser("list", help="List profiles")
    p.set_defaults(func=cmd_profile_list)

    p = profile_sub.add_parser("delete", help="Delete a profile (servers are kept)")
    p.add_argument("name")
    p.set_defaults(func=cmd_profile_delete)

    p = profile_sub.add_parser("assign", help="Add a server to a profile")
    p.add_argument("profile")
    p.add_argument("server")
    p.set_defaults(func=cmd_profile_assign)

    p = profile_sub.add_parser("unassign", help="Remove a server from a profile")
    p.add_argument("profile")
    p.add_argument("server")
    p.set_defaults(func=cmd_profile_unassign)

    p = sub.add_parser("import", help="Import servers from YAML, JSON or ssh_config")
    p.add_argument("file")
    p.add_argument("--type", choices=IMPORT_FORMATS, help="File format (detected if omitted)")
    p.add_argument("--profile", help="Collect the imported servers in this profile")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("export", help="Export servers to YAML or JSON")
    p.add_argument("file")
    p.add_argument("--format", choices=EXPORT_FORMATS, help="Output format (from extension if omitted)")
    p.add_argument("--profile", help="Only export this profile")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("tui", help="Launch the interactive manager (default)")
    p.set_defaults(func=cmd_tui)

    return parser


def run(argv: Optional[List[str]] = None) -> int:
    """Parse ``argv`` and run the selected command.

    Returns:
        Process exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Callable[[argparse.Namespace], int] = getattr(args, "func", cmd_tui)

    if func is not cmd_tui:
        setup_logging(
            verbose=args.verbose,
            json_format=args.json_logs,
            log_file=args.log_file,
        )

    try:
        return func(args)
    except (SshmError, FormError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130


def main() -> None:
    """Main entry point for the CLI."""
    sys.exit(run())


if __name__ == "__main__":
    main()
