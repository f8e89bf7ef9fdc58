"""Repository pattern for all deepread database operations.

Single interface for: sources, research query records, and analysis jobs.
Job rows are only ever mutated through the conditional ``*_job`` methods,
each of which returns whether the guarded transition actually happened.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Sequence

from deepread.db.models import AnalysisJob, ResearchQueryRecord, Source, now_ts

_SOURCE_COLUMNS = (
    "id, project_id, user_id, title, mime_type, content_key, word_count, "
    "status, cached_at, created_at"
)


class Repository:
    """Data access layer for all deepread database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see deepread.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, source: Source) -> None:
        """Insert a new source record (``created_at`` defaults to now)."""
        source.created_at = source.created_at or now_ts()
        self._conn.execute(
            f"INSERT INTO sources ({_SOURCE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                source.id,
                source.project_id,
                source.user_id,
                source.title,
                source.mime_type,
                source.content_key,
                source.word_count,
                source.status,
                source.cached_at,
                source.created_at,
            ),
        )
        self._conn.commit()

    def get_source(self, source_id: str) -> Source | None:
        """Return a source by ID, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(
        self,
        user_id: str,
        project_id: str,
        source_ids: Sequence[str] | None = None,
        *,
        cached_only: bool = False,
    ) -> list[Source]:
        """Return the project's active sources, oldest first.

        Args:
            source_ids: Restrict to these ids (unknown ids are simply absent).
                None means every source in the project.
            cached_only: Only sources with cached content (``cached_at`` set).
        """
        sql = (
            f"SELECT {_SOURCE_COLUMNS} FROM sources "
            "WHERE project_id = ? AND user_id = ? AND status = 'active'"
        )
        params: list[object] = [project_id, user_id]
        if cached_only:
            sql += " AND cached_at IS NOT NULL"
        if source_ids is not None:
            if not source_ids:
                return []
            sql += f" AND id IN ({','.join('?' * len(source_ids))})"
            params.extend(source_ids)
        sql += " ORDER BY created_at, id"
        return [_row_to_source(r) for r in self._conn.execute(sql, params).fetchall()]

    def resolve_sources(
        self, user_id: str, project_id: str, source_ids: Sequence[str]
    ) -> list[Source]:
        """Return the active sources among *source_ids*, in the given order."""
        by_id = {s.id: s for s in self.list_sources(user_id, project_id, source_ids)}
        seen: set[str] = set()
        ordered: list[Source] = []
        for sid in source_ids:
            if sid in by_id and sid not in seen:
                seen.add(sid)
                ordered.append(by_id[sid])
        return ordered

    def mark_source_cached(self, source_id: str, content_key: str, word_count: int) -> None:
        """Record that *source_id* has cached content under *content_key*."""
        self._conn.execute(
            "UPDATE sources SET content_key = ?, word_count = ?, cached_at = ? WHERE id = ?",
            (content_key, word_count, now_ts(), source_id),
        )
        self._conn.commit()

    def archive_source(self, source_id: str) -> None:
        self._conn.execute("UPDATE sources SET status = 'archived' WHERE id = ?", (source_id,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Research query records
    # ------------------------------------------------------------------

    def add_research_query(self, record: ResearchQueryRecord) -> None:
        record.created_at = record.created_at or now_ts()
        self._conn.execute(
            """
            INSERT INTO research_queries (id, user_id, project_id, query, model, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.user_id,
                record.project_id,
                record.query,
                record.model,
                record.status,
                record.created_at,
            ),
        )
        self._conn.commit()

    def update_research_query(
        self,
        query_id: str,
        *,
        status: str,
        source_count: int | None = None,
        result_count: int | None = None,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
        latency_ms: int | None = None,
        error_message: str | None = None,
    ) -> None:
        """Set *status* and any given counters; omitted counters keep their value."""
        self._conn.execute(
            """
            UPDATE research_queries
            SET status = ?,
                source_count = COALESCE(?, source_count),
                result_count = COALESCE(?, result_count),
                input_tokens = COALESCE(?, input_tokens),
                output_tokens = COALESCE(?, output_tokens),
                latency_ms = COALESCE(?, latency_ms),
                error_message = ?
            WHERE id = ?
            """,
            (
                status,
                source_count,
                result_count,
                input_tokens,
                output_tokens,
                latency_ms,
                error_message,
                query_id,
            ),
        )
        self._conn.commit()

    def get_research_query(self, query_id: str) -> ResearchQueryRecord | None:
        row = self._conn.execute(
            "SELECT * FROM research_queries WHERE id = ?", (query_id,)
        ).fetchone()
        return _row_to_query(row) if row else None

    def list_research_queries(
        self, user_id: str, project_id: str, limit: int | None = None
    ) -> list[ResearchQueryRecord]:
        """Return query records for a project, newest first."""
        sql = (
            "SELECT * FROM research_queries WHERE user_id = ? AND project_id = ? "
            "ORDER BY created_at DESC, rowid DESC"
        )
        params: list[object] = [user_id, project_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_query(r) for r in self._conn.execute(sql, params).fetchall()]

    # ------------------------------------------------------------------
    # Analysis jobs
    # ------------------------------------------------------------------

    def add_job(self, job: AnalysisJob) -> None:
        """Insert a new job record in its initial state."""
        self._conn.execute(
            """
            INSERT INTO analysis_jobs (
                id, project_id, user_id, instruction, source_ids, status,
                total_batches, completed_batches, created_at, updated_at, expires_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.id,
                job.project_id,
                job.user_id,
                job.instruction,
                job.source_ids_json,
                job.status,
                job.total_batches,
                job.completed_batches,
                job.created_at,
                job.updated_at,
                job.expires_at,
            ),
        )
        self._conn.commit()

    def get_job(self, job_id: str) -> AnalysisJob | None:
        """Return a job by ID regardless of owner (job engine use only)."""
        row = self._conn.execute(
            "SELECT * FROM analysis_jobs WHERE id = ?", (job_id,)
        ).fetchone()
        return _row_to_job(row) if row else None

    def get_job_for(self, user_id: str, project_id: str, job_id: str) -> AnalysisJob | None:
        """Return a job by ID if it belongs to *user_id* and *project_id*."""
        row = self._conn.execute(
            "SELECT * FROM analysis_jobs WHERE id = ? AND user_id = ? AND project_id = ?",
            (job_id, user_id, project_id),
        ).fetchone()
        return _row_to_job(row) if row else None

    def get_latest_job(self, user_id: str, project_id: str, now: str) -> AnalysisJob | None:
        """Return the most recently created unexpired job for a project."""
        row = self._conn.execute(
            """
            SELECT * FROM analysis_jobs
            WHERE project_id = ? AND user_id = ? AND expires_at > ?
            ORDER BY created_at DESC, rowid DESC LIMIT 1
            """,
            (project_id, user_id, now),
        ).fetchone()
        return _row_to_job(row) if row else None

    def delete_expired_jobs(self, now: str) -> int:
        """Delete jobs whose ``expires_at`` has passed. Returns the number deleted."""
        cur = self._conn.execute("DELETE FROM analysis_jobs WHERE expires_at < ?", (now,))
        self._conn.commit()
        return cur.rowcount

    def start_job(self, job_id: str, total_batches: int, now: str) -> bool:
        """Move a job ``pending → processing``. False if it was not pending."""
        cur = self._conn.execute(
            """
            UPDATE analysis_jobs
            SET status = 'processing', total_batches = ?, completed_batches = 0, updated_at = ?
            WHERE id = ? AND status = 'pending'
            """,
            (total_batches, now, job_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def update_job_progress(self, job_id: str, completed_batches: int, now: str) -> bool:
        """Advance ``completed_batches`` while processing; never decreases it."""
        cur = self._conn.execute(
            """
            UPDATE analysis_jobs
            SET completed_batches = ?, updated_at = ?
            WHERE id = ? AND status = 'processing'
              AND completed_batches <= ? AND ? <= total_batches
            """,
            (completed_batches, now, job_id, completed_batches, completed_batches),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def complete_job(self, job_id: str, result_text: str, now: str) -> bool:
        """Move a job ``processing → completed`` with its result."""
        cur = self._conn.execute(
            """
            UPDATE analysis_jobs
            SET status = 'completed', result_text = ?, error_message = NULL,
                completed_batches = total_batches, completed_at = ?, updated_at = ?
            WHERE id = ? AND status = 'processing'
            """,
            (result_text, now, now, job_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def fail_job(
        self,
        job_id: str,
        error_message: str,
        now: str,
        from_status: str = "processing",
    ) -> bool:
        """Move a job ``from_status → failed`` with *error_message*."""
        cur = self._conn.execute(
            """
            UPDATE analysis_jobs
            SET status = 'failed', error_message = ?, result_text = NULL,
                completed_at = ?, updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (error_message, now, now, job_id, from_status),
        )
        self._conn.commit()
        return cur.rowcount == 1


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        project_id=row["project_id"],
        user_id=row["user_id"],
        title=row["title"],
        mime_type=row["mime_type"],
        content_key=row["content_key"],
        word_count=row["word_count"],
        status=row["status"],
        cached_at=row["cached_at"],
        created_at=row["created_at"],
    )


def _row_to_query(row: sqlite3.Row) -> ResearchQueryRecord:
    return ResearchQueryRecord(
        id=row["id"],
        user_id=row["user_id"],
        project_id=row["project_id"],
        query=row["query"],
        source_count=row["source_count"],
        result_count=row["result_count"],
        model=row["model"],
        input_tokens=row["input_tokens"],
        output_tokens=row["output_tokens"],
        latency_ms=row["latency_ms"],
        status=row["status"],
        error_message=row["error_message"],
        created_at=row["created_at"],
    )


def _row_to_job(row: sqlite3.Row) -> AnalysisJob:
    return AnalysisJob(
        id=row["id"],
        project_id=row["project_id"],
        user_id=row["user_id"],
        instruction=row["instruction"],
        source_ids=json.loads(row["source_ids"]),
        status=row["status"],
        total_batches=row["total_batches"],
        completed_batches=row["completed_batches"],
        result_text=row["result_text"],
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
        expires_at=row["expires_at"],
    )
