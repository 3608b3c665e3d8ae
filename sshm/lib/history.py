"""Connection history kept in a SQLite database next to the catalog.

Every connect attempt made through sshm is recorded with its target, the
profile it was launched from, its outcome and how long it took to set up.
The database lives in ``<config dir>/history.db``.

A connection is recorded in two steps: ``record_start`` inserts a row with
status ``attempting`` and ``record_end`` fills in the outcome. Connecting a
profile writes one ``group`` row for the profile plus one ``single`` row
per server.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional

from sshm.lib.config import Server, default_config_dir
from sshm.lib.errors import HistoryError

logger = logging.getLogger(__name__)

__all__ = [
    "CONNECTION_TYPES",
    "HISTORY_FILENAME",
    "STATUSES",
    "ConnectionRecord",
    "ConnectionStats",
    "HistoryStore",
    "default_history_path",
]

HISTORY_FILENAME = "history.db"
STATUSES = ("attempting", "success", "failed", "timeout", "cancelled")
CONNECTION_TYPES = ("single", "group")
DEFAULT_LIMIT = 20
DEFAULT_RETENTION_DAYS = 30

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS connection_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    server_name TEXT NOT NULL,
    profile_name TEXT,
    host TEXT NOT NULL DEFAULT '',
    user TEXT NOT NULL DEFAULT '',
    port INTEGER NOT NULL DEFAULT 22,
    connection_type TEXT NOT NULL DEFAULT 'single',  -- 'single' or 'group'
    status TEXT NOT NULL,
    start_time TEXT NOT NULL,  -- ISO 8601, UTC
    end_time TEXT,
    duration_seconds REAL,
    error_message TEXT NOT NULL DEFAULT '',
    session_id TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_history_server ON connection_history(server_name);
CREATE INDEX IF NOT EXISTS idx_history_profile ON connection_history(profile_name);
CREATE INDEX IF NOT EXISTS idx_history_start ON connection_history(start_time);
CREATE INDEX IF NOT EXISTS idx_history_status ON connection_history(status);
"""

_COLUMNS = (
    "id, server_name, profile_name, host, user, port, connection_type, status, "
    "start_time, end_time, duration_seconds, error_message, session_id"
)


def default_history_path() -> Path:
    return default_config_dir() / HISTORY_FILENAME


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_text(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds")


def _from_text(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass
class ConnectionRecord:
    """One row of the connection history."""

    id: int
    server_name: str
    profile_name: Optional[str]
    host: str
    user: str
    port: int
    connection_type: str
    status: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    error_message: str = ""
    session_id: str = ""

    @property
    def target(self) -> str:
        if self.connection_type == "group":
            return f"profile {self.profile_name}"
        return f"{self.user}@{self.host}:{self.port}"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ConnectionRecord":
        return cls(
            id=row["id"],
            server_name=row["server_name"],
            profile_name=row["profile_name"],
            host=row["host"],
            user=row["user"],
            port=row["port"],
            connection_type=row["connection_type"],
            status=row["status"],
            start_time=_from_text(row["start_time"]),
            end_time=_from_text(row["end_time"]),
            duration_seconds=row["duration_seconds"],
            error_message=row["error_message"],
            session_id=row["session_id"],
        )


@dataclass
class ConnectionStats:
    """Aggregate figures for one server."""

    server_name: str
    profile_name: Optional[str] = None
    total: int = 0
    successful: int = 0
    average_duration: Optional[float] = None
    first_connection: Optional[datetime] = None
    last_connection: Optional[datetime] = None

    @property
    def failed(self) -> int:
        return self.total - self.successful

    @property
    def success_rate(self) -> float:
        return self.successful / self.total if self.total else 0.0


class HistoryStore:
    """SQLite-backed connection history.

    A fresh connection is opened for each operation, so one store can be
    shared between the UI thread and background workers.
    """

    def __init__(
        self,
        path: Path | str | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.path = Path(path) if path else default_history_path()
        self.clock = clock
        self._initialized = False

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path))
        except (OSError, sqlite3.Error) as e:
            raise HistoryError(
                "failed to open history database", path=str(self.path), cause=e
            ) from e

        conn.row_factory = sqlite3.Row
        try:
            if not self._initialized:
                conn.executescript(SCHEMA_SQL)
                self._initialized = True
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise HistoryError(
                "history database operation failed", path=str(self.path), cause=e
            ) from e
        finally:
            conn.close()

    def _insert(
        self,
        server_name: str,
        profile: Optional[str],
        host: str,
        user: str,
        port: int,
        connection_type: str,
    ) -> int:
        now = _to_text(self.clock())
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO connection_history (
                    server_name, profile_name, host, user, port, connection_type,
                    status, start_time, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, 'attempting', ?, ?, ?)
                """,
                (server_name, profile, host, user, port, connection_type, now, now, now),
            )
            entry_id = cursor.lastrowid
        logger.debug(
            "Recorded %s connection attempt %d to %s", connection_type, entry_id, server_name
        )
        return entry_id

    def record_start(self, server: Server, *, profile: Optional[str] = None) -> int:
        """Insert an ``attempting`` row for one server and return its id."""
        return self._insert(
            server.name, profile, server.hostname, server.username, server.port, "single"
        )

    def record_group_start(self, profile: str) -> int:
        """Insert the ``group`` row for a profile connect and return its id."""
        return self._insert(profile, profile, "", "", 0, "group")

    def record_end(
        self,
        entry_id: int,
        status: str,
        error: str = "",
        session_id: str = "",
    ) -> None:
        """Store the outcome and duration of an attempt.

        Raises:
            HistoryError: If the status is unknown or the entry does not exist
        """
        if status not in STATUSES:
            raise HistoryError(f"unknown connection status: {status}", path=str(self.path))

        end = self.clock()
        with self._connect() as conn:
            row = conn.execute(
                "SELECT start_time FROM connection_history WHERE id = ?", (entry_id,)
            ).fetchone()
            if row is None:
                raise HistoryError(
                    f"history entry {entry_id} not found", path=str(self.path)
                )
            started = _from_text(row["start_time"])
            duration = max((end - started).total_seconds(), 0.0)
            conn.execute(
                """
                UPDATE connection_history
                SET end_time = ?, duration_seconds = ?, status = ?, error_message = ?,
                    session_id = ?, updated_at = ?
                WHERE id = ?
                """,
                (_to_text(end), duration, status, error, session_id, _to_text(end), entry_id),
            )

    def list_connections(
        self,
        *,
        server: Optional[str] = None,
        profile: Optional[str] = None,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = DEFAULT_LIMIT,
    ) -> list[ConnectionRecord]:
        """Most recent entries first, optionally filtered."""
        query = f"SELECT {_COLUMNS} FROM connection_history WHERE 1=1"
        params: list[object] = []
        if server:
            query += " AND server_name = ?"
            params.append(server)
        if profile:
            query += " AND profile_name = ?"
            params.append(profile)
        if status:
            query += " AND status = ?"
            params.append(status)
        if since is not None:
            query += " AND start_time >= ?"
            params.append(_to_text(since))
        query += " ORDER BY start_time DESC, id DESC"
        if limit > 0:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [ConnectionRecord.from_row(row) for row in rows]

    def stats(self, server: str, profile: Optional[str] = None) -> ConnectionStats:
        """Totals for one server's single connections, all profiles unless given."""
        query = """
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS successful,
                AVG(duration_seconds) AS average_duration,
                MIN(start_time) AS first_connection,
                MAX(start_time) AS last_connection
            FROM connection_history
            WHERE server_name = ? AND connection_type = 'single'
        """
        params: list[object] = [server]
        if profile:
            query += " AND profile_name = ?"
            params.append(profile)

        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()

        return ConnectionStats(
            server_name=server,
            profile_name=profile,
            total=row["total"] or 0,
            successful=row["successful"] or 0,
            average_duration=row["average_duration"],
            first_connection=_from_text(row["first_connection"]),
            last_connection=_from_text(row["last_connection"]),
        )

    def recent_activity(self, hours: int = 24) -> dict[str, int]:
        """Count of entries per status started within the last ``hours``."""
        since = _to_text(self.clock() - timedelta(hours=hours))
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT status, COUNT(*) AS count FROM connection_history
                WHERE start_time >= ?
                GROUP BY status
                """,
                (since,),
            ).fetchall()
        return {row["status"]: row["count"] for row in rows}

    def cleanup(self, days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Delete entries started more than ``days`` ago.

        Returns:
            Number of deleted entries

        Raises:
            HistoryError: If ``days`` is not positive
        """
        if days <= 0:
            raise HistoryError("days must be greater than 0", path=str(self.path))

        cutoff = _to_text(self.clock() - timedelta(days=days))
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM connection_history WHERE start_time < ?", (cutoff,)
            )
            deleted = cursor.rowcount
        logger.info("Removed %d history entries older than %d days", deleted, days)
        return deleted
