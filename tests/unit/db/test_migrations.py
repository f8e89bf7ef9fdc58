"""Tests for the forward-only migration runner."""

from __future__ import annotations

import deepread.db.migrations as migrations_module
from deepread.db.connection import Database
from deepread.db.migrations import MIGRATIONS, run_migrations
from deepread.db.schema import initialize


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    return Database(tmp_path / "test.db").connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone() is not None


# --- Bootstrap ---

def test_run_migrations_creates_schema_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "schema_version")
    conn.close()


def test_run_migrations_records_latest_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]
    conn.close()


def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


# --- Tables created ---

def test_run_migrations_creates_all_tables(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    for table in ("sources", "research_queries", "analysis_jobs"):
        assert _table_exists(conn, table), table
    conn.close()


# --- Incremental application ---

def test_run_migrations_applies_only_pending(tmp_path, monkeypatch):
    """A database at version 1 only receives the later migrations."""
    conn = _fresh_conn(tmp_path)
    conn.execute(
        "CREATE TABLE schema_version (version INTEGER NOT NULL, "
        "applied_at DATETIME NOT NULL DEFAULT (datetime('now')))"
    )
    conn.execute("INSERT INTO schema_version (version) VALUES (1)")
    conn.commit()

    monkeypatch.setattr(
        migrations_module,
        "MIGRATIONS",
        [
            (1, "CREATE TABLE v1_marker (x INTEGER);"),
            (2, "CREATE TABLE v2_marker (x INTEGER);"),
        ],
    )
    run_migrations(conn)

    assert not _table_exists(conn, "v1_marker")
    assert _table_exists(conn, "v2_marker")
    versions = [r[0] for r in conn.execute("SELECT version FROM schema_version ORDER BY version")]
    assert versions == [1, 2]
    conn.close()


def test_v1_database_upgrades_to_jobs_table(tmp_path, monkeypatch):
    conn = _fresh_conn(tmp_path)
    monkeypatch.setattr(migrations_module, "MIGRATIONS", MIGRATIONS[:1])
    run_migrations(conn)
    assert not _table_exists(conn, "analysis_jobs")

    monkeypatch.setattr(migrations_module, "MIGRATIONS", MIGRATIONS)
    run_migrations(conn)
    assert _table_exists(conn, "analysis_jobs")
    conn.close()


def test_initialize_delegates_to_run_migrations(tmp_path):
    conn = _fresh_conn(tmp_path)
    initialize(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]
    conn.close()
