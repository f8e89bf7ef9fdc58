"""Forward-only migration runner for deepread's database schema."""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

# Timestamps are ISO-8601 UTC strings written by the application
# (see deepread.db.models.utcnow), so they compare correctly as text.
_V1_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id              TEXT PRIMARY KEY,
    project_id      TEXT NOT NULL,
    user_id         TEXT NOT NULL,
    title           TEXT NOT NULL,
    mime_type       TEXT NOT NULL DEFAULT 'text/plain',
    content_key     TEXT,
    word_count      INTEGER NOT NULL DEFAULT 0,
    status          TEXT NOT NULL DEFAULT 'active'
                    CHECK (status IN ('active', 'archived')),
    cached_at       TEXT,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sources_project
    ON sources (project_id, user_id, status);

CREATE TABLE IF NOT EXISTS research_queries (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    project_id      TEXT NOT NULL,
    query           TEXT NOT NULL,
    source_count    INTEGER NOT NULL DEFAULT 0,
    result_count    INTEGER NOT NULL DEFAULT 0,
    model           TEXT NOT NULL DEFAULT '',
    input_tokens    INTEGER NOT NULL DEFAULT 0,
    output_tokens   INTEGER NOT NULL DEFAULT 0,
    latency_ms      INTEGER NOT NULL DEFAULT 0,
    status          TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'completed', 'error')),
    error_message   TEXT,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_research_queries_project
    ON research_queries (project_id, user_id, created_at);
"""

_V2_SQL = """
CREATE TABLE IF NOT EXISTS analysis_jobs (
    id                  TEXT PRIMARY KEY,
    project_id          TEXT NOT NULL,
    user_id             TEXT NOT NULL,
    instruction         TEXT NOT NULL,
    source_ids          TEXT NOT NULL,
    status              TEXT NOT NULL DEFAULT 'pending'
                        CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
    total_batches       INTEGER NOT NULL DEFAULT 0,
    completed_batches   INTEGER NOT NULL DEFAULT 0,
    result_text         TEXT,
    error_message       TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    completed_at        TEXT,
    expires_at          TEXT NOT NULL,
    CHECK (completed_batches <= total_batches)
);

CREATE INDEX IF NOT EXISTS idx_analysis_jobs_project
    ON analysis_jobs (project_id, user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_analysis_jobs_expires
    ON analysis_jobs (expires_at);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
