"""Database schema initialization."""

from __future__ import annotations

import sqlite3

from deepread.db.migrations import MIGRATIONS, run_migrations

CURRENT_VERSION = MIGRATIONS[-1][0]


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    run_migrations(conn)


def schema_version(conn: sqlite3.Connection) -> int:
    """Return the applied schema version (0 for an uninitialized database)."""
    exists = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
    ).fetchone()
    if not exists:
        return 0
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] or 0
