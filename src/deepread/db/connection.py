"""SQLite connection layer."""

from __future__ import annotations

import sqlite3
from pathlib import Path

# Seconds a writer waits on a locked database (job runner and CLI share the file).
_BUSY_TIMEOUT = 30.0


class Database:
    """Per-project SQLite database.

    Each thread or job must open its own connection via ``connect()``;
    connections are never shared across threads.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection with foreign keys and WAL enabled, and return it."""
        conn = sqlite3.connect(self.db_path, timeout=_BUSY_TIMEOUT)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None
