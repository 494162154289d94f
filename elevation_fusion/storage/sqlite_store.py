"""SQLite-backed session store.

One table, ``measurements``, holds the stored session layout: an
auto-assigned id, the wall-clock save time in milliseconds and the
flattened sample string. The connection is opened explicitly and
owned by whoever constructs the store.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional, Protocol, Union

from ..core.errors import PersistenceFailure
from ..core.types import SessionRecord

logger = logging.getLogger(__name__)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS measurements (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp INTEGER NOT NULL,
        data_points_csv TEXT NOT NULL
    )
"""


class SessionStore(Protocol):
    """Persistence collaborator used by the session controller."""

    def insert(self, record: SessionRecord) -> SessionRecord: ...

    def list_all(self) -> List[SessionRecord]: ...

    def get(self, record_id: int) -> Optional[SessionRecord]: ...


class SqliteSessionStore:
    """Session store on a single SQLite connection.

    Safe to call from worker threads; access is serialized by a lock.
    """

    def __init__(self, path: Union[str, Path] = "measurements.db"):
        """Initialize store.

        Args:
            path: Database file, or ``":memory:"``.
        """
        self._path = str(path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        """Check if the connection is open."""
        return self._conn is not None

    def open(self) -> None:
        """Open the database and create the table if needed.

        Raises:
            PersistenceFailure: If the database cannot be opened.
        """
        if self._conn is not None:
            return
        try:
            conn = sqlite3.connect(self._path, check_same_thread=False)
            conn.execute(SCHEMA)
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Cannot open session store {self._path}: {e}") from e
        self._conn = conn
        logger.info("Session store opened: %s", self._path)

    def close(self) -> None:
        """Close the database."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
        logger.info("Session store closed")

    def insert(self, record: SessionRecord) -> SessionRecord:
        """Store a session.

        Args:
            record: Record to insert; its id is ignored.

        Returns:
            The record with the id assigned by the database.

        Raises:
            PersistenceFailure: If the insert fails.
        """
        with self._lock:
            conn = self._require_open()
            try:
                cursor = conn.execute(
                    "INSERT INTO measurements (timestamp, data_points_csv) VALUES (?, ?)",
                    (record.timestamp, record.data_points_csv),
                )
                conn.commit()
            except sqlite3.Error as e:
                raise PersistenceFailure(f"Failed to save session: {e}") from e

        stored = SessionRecord(
            id=cursor.lastrowid,
            timestamp=record.timestamp,
            data_points_csv=record.data_points_csv,
        )
        logger.info("Session %d stored", stored.id)
        return stored

    def list_all(self) -> List[SessionRecord]:
        """All stored sessions, newest first.

        Raises:
            PersistenceFailure: If the query fails.
        """
        with self._lock:
            conn = self._require_open()
            try:
                rows = conn.execute(
                    "SELECT id, timestamp, data_points_csv FROM measurements "
                    "ORDER BY timestamp DESC, id DESC"
                ).fetchall()
            except sqlite3.Error as e:
                raise PersistenceFailure(f"Failed to list sessions: {e}") from e
        return [SessionRecord(id=r[0], timestamp=r[1], data_points_csv=r[2]) for r in rows]

    def get(self, record_id: int) -> Optional[SessionRecord]:
        """One stored session, or None if absent.

        Raises:
            PersistenceFailure: If the query fails.
        """
        with self._lock:
            conn = self._require_open()
            try:
                row = conn.execute(
                    "SELECT id, timestamp, data_points_csv FROM measurements WHERE id = ?",
                    (record_id,),
                ).fetchone()
            except sqlite3.Error as e:
                raise PersistenceFailure(f"Failed to load session {record_id}: {e}") from e
        if row is None:
            return None
        return SessionRecord(id=row[0], timestamp=row[1], data_points_csv=row[2])

    def _require_open(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceFailure("Session store is not open")
        return self._conn

    def __enter__(self) -> "SqliteSessionStore":
        """Context manager entry."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
