"""SQLite session store for codetime.

The working copy lives in an in-memory SQLite database. Mutations schedule a
debounced snapshot that serializes the whole database over the durable file,
so a burst of activity costs roughly one disk write per quiet period.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Callable

from pydantic import BaseModel

from codetime.config import SAVE_DELAY_MS
from codetime.timers import DebounceTimer


class Session(BaseModel):
    """A recorded (or still open) interval of attention on one file."""

    id: int
    file_path: str
    project_path: str | None = None
    start_time: int
    end_time: int | None = None
    duration_ms: int | None = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None


class FileStats(BaseModel):
    """Running total for one file, built from its closed sessions."""

    file_path: str
    project_path: str | None = None
    total_time_ms: int = 0
    last_active: int | None = None


class ProjectStats(BaseModel):
    """File totals grouped by project. Derived on read, never stored."""

    project_path: str
    total_time_ms: int
    file_count: int
    last_active: int | None = None


class TodayStats(BaseModel):
    total_time_ms: int = 0
    file_count: int = 0


class StoreError(Exception):
    """Base exception for store errors."""

    pass


class StoreInitializationError(StoreError):
    """Raised when the database cannot be loaded or its schema created."""

    pass


class StoreWriteError(StoreError):
    """Raised when the durable snapshot cannot be written."""

    pass


class StoreClosedError(StoreError):
    """Raised when the store is used after close()."""

    def __init__(self) -> None:
        super().__init__("Session store is closed")


SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_path TEXT NOT NULL,
    project_path TEXT,
    start_time INTEGER NOT NULL,
    end_time INTEGER,
    duration_ms INTEGER
);

CREATE TABLE IF NOT EXISTS file_stats (
    file_path TEXT PRIMARY KEY,
    project_path TEXT,
    total_time_ms INTEGER NOT NULL DEFAULT 0,
    last_active INTEGER
);

CREATE INDEX IF NOT EXISTS idx_sessions_file ON sessions(file_path);
CREATE INDEX IF NOT EXISTS idx_sessions_project ON sessions(project_path);
CREATE INDEX IF NOT EXISTS idx_sessions_start ON sessions(start_time);
CREATE INDEX IF NOT EXISTS idx_file_stats_project ON file_stats(project_path);
"""

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _local_midnight_ms(timestamp_ms: int) -> int:
    """Epoch milliseconds of local midnight on the day containing timestamp_ms."""
    # Naive local time, so timestamp() applies midnight's own UTC offset
    midnight = datetime.fromtimestamp(timestamp_ms / 1000).replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


class SessionStore:
    """SQLite-backed store for sessions and per-file totals.

    All access is serialized by an internal lock, since the debounced
    snapshot and the tracker heartbeat run on their own threads.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        path: Path | None = None,
        save_delay_ms: int = SAVE_DELAY_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._conn: sqlite3.Connection | None = conn
        self._path = path
        self._clock = clock
        self._lock = threading.RLock()
        self._save_timer = DebounceTimer(save_delay_ms / 1000, self._save_debounced, name="codetime-save")
        self._init_schema()

    def __enter__(self) -> SessionStore:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def _init_schema(self) -> None:
        """Initialize database schema. Safe to run on every start."""
        conn = self._require_conn()
        conn.executescript(SCHEMA)
        conn.commit()

    @classmethod
    def open(
        cls,
        path: Path,
        *,
        save_delay_ms: int = SAVE_DELAY_MS,
        clock: Callable[[], int] = now_ms,
    ) -> SessionStore:
        """Load the snapshot at path (or start empty) and ensure the schema.

        Raises:
            StoreInitializationError: If the file cannot be read or is not a
                usable SQLite database.
        """
        path = Path(path)
        conn = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(":memory:", check_same_thread=False)
            conn.row_factory = sqlite3.Row
            data = path.read_bytes() if path.exists() else b""
            if data:
                conn.deserialize(data)
            store = cls(conn, path=path, save_delay_ms=save_delay_ms, clock=clock)
        except (OSError, sqlite3.Error) as e:
            if conn is not None:
                conn.close()
            raise StoreInitializationError(f"Failed to open session store at {path}: {e}") from e
        logger.info("Opened session store at %s", path)
        return store

    @classmethod
    def open_snapshot(cls, path: Path, *, clock: Callable[[], int] = now_ms) -> SessionStore:
        """Load the durable file into a detached copy that is never written back.

        Used by report commands so they cannot disturb a live tracker's file.
        """
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            conn.deserialize(Path(path).read_bytes())
            return cls(conn, clock=clock)
        except (OSError, sqlite3.Error) as e:
            conn.close()
            raise StoreInitializationError(f"Failed to read session store at {path}: {e}") from e

    @classmethod
    def open_in_memory(cls, *, clock: Callable[[], int] = now_ms) -> SessionStore:
        """Create a store with no durable file, for testing."""
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return cls(conn, clock=clock)

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def closed(self) -> bool:
        return self._conn is None

    @property
    def save_pending(self) -> bool:
        return self._save_timer.pending

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreClosedError()
        return self._conn

    # Persistence

    def _schedule_save(self) -> None:
        if self._path is not None:
            self._save_timer.trigger()

    def _save_debounced(self) -> None:
        try:
            self.flush()
        except StoreWriteError as e:
            # The next mutation schedules another attempt
            logger.error("%s", e)

    def flush(self) -> None:
        """Write the full database over the durable file now.

        Raises:
            StoreWriteError: If serialization or the file write fails.
        """
        with self._lock:
            if self._conn is None or self._path is None:
                return
            try:
                data = self._conn.serialize()
                tmp_path = self._path.with_name(self._path.name + ".tmp")
                tmp_path.write_bytes(data)
                os.replace(tmp_path, self._path)
            except (OSError, sqlite3.Error) as e:
                raise StoreWriteError(f"Failed to save session store to {self._path}: {e}") from e
        logger.debug("Saved session store snapshot to %s (%d bytes)", self._path, len(data))

    def close(self) -> None:
        """End open sessions, write a final snapshot and release the database.

        Calling close() again is a no-op.

        Raises:
            StoreWriteError: If the final snapshot fails. The connection is
                released regardless.
        """
        with self._lock:
            if self._conn is None:
                return
            for session in self.get_ongoing_sessions():
                self.end_session(session.id)
            self._save_timer.cancel()
            try:
                self.flush()
            finally:
                self._conn.close()
                self._conn = None
                logger.info("Closed session store")

    # Mutations

    def start_session(
        self,
        file_path: str,
        project_path: str | None,
        *,
        start_time: int | None = None,
    ) -> int:
        """Insert an open session and return its ID.

        File totals are untouched until the session ends.
        """
        if start_time is None:
            start_time = self._clock()
        with self._lock:
            conn = self._require_conn()
            cursor = conn.execute(
                "INSERT INTO sessions (file_path, project_path, start_time) VALUES (?, ?, ?)",
                (file_path, project_path, start_time),
            )
            conn.commit()
            session_id = cursor.lastrowid
            self._schedule_save()
        logger.debug("Started session %s for %s", session_id, file_path)
        return session_id

    def end_session(self, session_id: int, *, end_time: int | None = None) -> None:
        """Close a session and add its duration to the file's total.

        Unknown or already-closed IDs are ignored, since shutdown paths may
        end the same session more than once.

        A session with no project does not clear the project already recorded
        for the file, so `project_path` in file_stats is the last non-null one.
        """
        if end_time is None:
            end_time = self._clock()
        with self._lock:
            conn = self._require_conn()
            row = conn.execute(
                "SELECT file_path, project_path, start_time FROM sessions WHERE id = ? AND end_time IS NULL",
                (session_id,),
            ).fetchone()
            if row is None:
                return

            # Clock skew must not make totals go backwards
            end_time = max(end_time, row["start_time"])
            duration_ms = end_time - row["start_time"]

            with conn:
                conn.execute(
                    "UPDATE sessions SET end_time = ?, duration_ms = ? WHERE id = ?",
                    (end_time, duration_ms, session_id),
                )
                conn.execute(
                    """
                    INSERT INTO file_stats (file_path, project_path, total_time_ms, last_active)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(file_path) DO UPDATE SET
                        total_time_ms = file_stats.total_time_ms + excluded.total_time_ms,
                        last_active = excluded.last_active,
                        project_path = COALESCE(excluded.project_path, file_stats.project_path)
                    """,
                    (row["file_path"], row["project_path"], duration_ms, end_time),
                )
            self._schedule_save()
        logger.debug("Ended session %s for %s after %d ms", session_id, row["file_path"], duration_ms)

    # Queries

    def get_session(self, session_id: int) -> Session | None:
        with self._lock:
            row = self._require_conn().execute(
                "SELECT * FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return Session.model_validate(dict(row)) if row else None

    def get_sessions(self, *, file_path: str | None = None) -> list[Session]:
        """Get sessions ordered by start time, optionally for one file."""
        query = "SELECT * FROM sessions"
        params: list[str] = []
        if file_path is not None:
            query += " WHERE file_path = ?"
            params.append(file_path)
        query += " ORDER BY start_time ASC, id ASC"
        with self._lock:
            rows = self._require_conn().execute(query, params).fetchall()
        return [Session.model_validate(dict(row)) for row in rows]

    def get_ongoing_sessions(self) -> list[Session]:
        """Get sessions that were started but never ended."""
        with self._lock:
            rows = self._require_conn().execute(
                "SELECT * FROM sessions WHERE end_time IS NULL ORDER BY start_time ASC, id ASC"
            ).fetchall()
        return [Session.model_validate(dict(row)) for row in rows]

    def get_file_stats(self, file_path: str) -> FileStats | None:
        with self._lock:
            row = self._require_conn().execute(
                "SELECT * FROM file_stats WHERE file_path = ?", (file_path,)
            ).fetchone()
        return FileStats.model_validate(dict(row)) if row else None

    def get_all_file_stats(self) -> list[FileStats]:
        """Get totals for every tracked file, largest first."""
        with self._lock:
            rows = self._require_conn().execute(
                "SELECT * FROM file_stats ORDER BY total_time_ms DESC, file_path ASC"
            ).fetchall()
        return [FileStats.model_validate(dict(row)) for row in rows]

    def get_file_stats_by_project(self, project_path: str) -> list[FileStats]:
        with self._lock:
            rows = self._require_conn().execute(
                """
                SELECT * FROM file_stats
                WHERE project_path = ?
                ORDER BY total_time_ms DESC, file_path ASC
                """,
                (project_path,),
            ).fetchall()
        return [FileStats.model_validate(dict(row)) for row in rows]

    def get_project_stats(self) -> list[ProjectStats]:
        """Group file totals by project, largest first.

        Files without a project are left out.
        """
        with self._lock:
            rows = self._require_conn().execute("""
                SELECT
                    project_path,
                    SUM(total_time_ms) AS total_time_ms,
                    COUNT(*) AS file_count,
                    MAX(last_active) AS last_active
                FROM file_stats
                WHERE project_path IS NOT NULL
                GROUP BY project_path
                ORDER BY total_time_ms DESC, project_path ASC
            """).fetchall()
        return [ProjectStats.model_validate(dict(row)) for row in rows]

    def get_today_stats(self) -> TodayStats:
        """Sum closed session time for sessions started since local midnight.

        The file count includes a file whose only session today is still open.
        """
        midnight = _local_midnight_ms(self._clock())
        with self._lock:
            row = self._require_conn().execute(
                """
                SELECT
                    COALESCE(SUM(duration_ms), 0) AS total_time_ms,
                    COUNT(DISTINCT file_path) AS file_count
                FROM sessions
                WHERE start_time >= ?
                """,
                (midnight,),
            ).fetchone()
        return TodayStats.model_validate(dict(row))
