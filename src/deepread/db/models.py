"""Domain models for the deepread database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

JOB_STATUSES = ("pending", "processing", "completed", "failed")
TERMINAL_JOB_STATUSES = ("completed", "failed")

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(moment: datetime) -> str:
    """Render *moment* as a fixed-width UTC timestamp that sorts as text."""
    return moment.astimezone(timezone.utc).strftime(_TS_FORMAT)


def now_ts(offset: timedelta | None = None) -> str:
    moment = utcnow()
    if offset is not None:
        moment += offset
    return format_ts(moment)


@dataclass
class Source:
    id: str
    project_id: str
    user_id: str
    title: str
    mime_type: str = "text/plain"
    content_key: str | None = None
    word_count: int = 0  # 0 = unknown size
    status: str = "active"  # active | archived
    cached_at: str | None = None  # None = no cached content
    created_at: str | None = None

    @property
    def has_cached_content(self) -> bool:
        return self.cached_at is not None


@dataclass
class AnalysisJob:
    id: str
    project_id: str
    user_id: str
    instruction: str
    source_ids: list[str] = field(default_factory=list)
    status: str = "pending"
    total_batches: int = 0
    completed_batches: int = 0
    result_text: str | None = None
    error_message: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    completed_at: str | None = None
    expires_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    @property
    def source_ids_json(self) -> str:
        return json.dumps(self.source_ids)

    def to_status_dict(self) -> dict:
        """Polling payload: the job's externally visible state."""
        return {
            "jobId": self.id,
            "status": self.status,
            "totalBatches": self.total_batches,
            "completedBatches": self.completed_batches,
            "resultText": self.result_text,
            "errorMessage": self.error_message,
            "createdAt": self.created_at,
            "completedAt": self.completed_at,
        }


@dataclass
class ResearchQueryRecord:
    id: str
    user_id: str
    project_id: str
    query: str
    source_count: int = 0
    result_count: int = 0
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    status: str = "pending"  # pending | completed | error
    error_message: str | None = None
    created_at: str | None = None
