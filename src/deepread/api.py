"""Route layer: request payloads in, ``ApiResponse`` (status code + JSON body) out.

  analyze          200 {snippets, summary, noResults}       inline path
                   201 {jobId, totalBatches, estimatedTokens} deep analysis job
  query            200 {snippets, summary, noResults, queryId, processingTimeMs}
  get_job          200 job status | 404
  get_latest_job   200 job status | 200 null

Errors map to a JSON body ``{error, code}``:
  ValidationError → 400 VALIDATION_ERROR, NoSourcesError → 422 NO_SOURCES,
  AIUnavailableError → 502 AI_UNAVAILABLE, QueryFailedError → 500 QUERY_FAILED.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from deepread.config import DeepreadConfig
from deepread.db.content_store import ContentStore
from deepread.db.repository import Repository
from deepread.errors import (
    AIUnavailableError,
    DeepreadError,
    NoSourcesError,
    QueryFailedError,
    ValidationError,
)
from deepread.jobs.engine import DeepAnalysisService
from deepread.jobs.partition import SourceTokenInfo, partition_sources
from deepread.jobs.runner import JobRunner
from deepread.rag.analysis import validate_instruction
from deepread.rag.llm_client import CompletionProvider
from deepread.rag.query import (
    QueryInput,
    ResearchQueryService,
    validate_query_input,
    validate_source_ids,
)
from deepread.rag.tokens import TokenEstimator

logger = logging.getLogger(__name__)

_ERROR_STATUS: list[tuple[type[DeepreadError], int, str]] = [
    (ValidationError, 400, "VALIDATION_ERROR"),
    (NoSourcesError, 422, "NO_SOURCES"),
    (AIUnavailableError, 502, "AI_UNAVAILABLE"),
    (QueryFailedError, 500, "QUERY_FAILED"),
]


@dataclass
class ApiResponse:
    status_code: int
    body: Any


def error_response(exc: DeepreadError) -> ApiResponse:
    for cls, status, code in _ERROR_STATUS:
        if isinstance(exc, cls):
            return ApiResponse(status, {"error": str(exc), "code": code})
    return ApiResponse(500, {"error": str(exc), "code": "INTERNAL_ERROR"})


def _source_ids_from(payload: dict[str, Any]) -> list[str]:
    """Accept ``sourceIds`` (list) or a single ``sourceId``."""
    raw = payload.get("sourceIds")
    if raw is None and payload.get("sourceId"):
        raw = [payload["sourceId"]]
    if raw is None:
        return []
    if not isinstance(raw, list) or not all(isinstance(s, str) for s in raw):
        raise ValidationError("sourceIds must be a list of strings")
    return raw


class Api:
    """Request handlers for research queries and deep analysis jobs.

    Args:
        repo: Repository on the request's connection.
        content_store: Cached source content.
        config: Loaded configuration.
        provider_factory: Creates the completion provider (may raise
            EnvironmentError when the API key is missing).
        deep: Deep analysis service.
        runner: Background runner for new jobs. When None, created jobs stay
            ``pending`` until something processes them.
        estimator: Token estimator for the query budget (default: word ratio).
    """

    def __init__(
        self,
        repo: Repository,
        content_store: ContentStore,
        config: DeepreadConfig,
        provider_factory: Callable[[], CompletionProvider],
        deep: DeepAnalysisService,
        runner: JobRunner | None = None,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self.repo = repo
        self.content_store = content_store
        self.config = config
        self.provider_factory = provider_factory
        self.deep = deep
        self.runner = runner
        self.estimator = estimator

    def _query_service(self) -> ResearchQueryService:
        try:
            provider = self.provider_factory()
        except EnvironmentError as exc:
            raise AIUnavailableError(str(exc)) from exc
        return ResearchQueryService(
            self.repo, self.content_store, provider, self.config, estimator=self.estimator
        )

    async def query(self, user_id: str, project_id: str, payload: dict[str, Any]) -> ApiResponse:
        """POST research query."""
        try:
            data = QueryInput(query=payload.get("query") or "", source_ids=payload.get("sourceIds"))
            validate_query_input(self.repo, self.config, user_id, project_id, data)
            service = self._query_service()
            outcome = await service.execute_query(user_id, project_id, data)
        except DeepreadError as exc:
            return error_response(exc)
        body = outcome.result.to_dict()
        body["queryId"] = outcome.query_id
        body["processingTimeMs"] = outcome.latency_ms
        return ApiResponse(200, body)

    async def analyze(self, user_id: str, project_id: str, payload: dict[str, Any]) -> ApiResponse:
        """POST analyze: inline query below the token threshold, else a deep analysis job."""
        try:
            instruction = payload.get("instruction") or ""
            validate_instruction(instruction)
            source_ids = _source_ids_from(payload)
            if not source_ids:
                raise ValidationError("At least one source id is required")
            validate_source_ids(self.repo, user_id, project_id, source_ids)

            estimate = self.deep.estimate_source_tokens(self.repo, user_id, project_id, source_ids)
            threshold = self.config.jobs.token_threshold
            if self.deep.should_use_deep_analysis(estimate.total, estimate.has_unknown, threshold):
                return self._start_job(user_id, project_id, source_ids, instruction, estimate.total)

            service = self._query_service()
            outcome = await service.execute_query(
                user_id, project_id, QueryInput(query=instruction, source_ids=source_ids)
            )
        except DeepreadError as exc:
            return error_response(exc)
        return ApiResponse(200, outcome.result.to_dict())

    def _start_job(
        self,
        user_id: str,
        project_id: str,
        source_ids: list[str],
        instruction: str,
        estimated_tokens: int,
    ) -> ApiResponse:
        job_id = self.deep.create_job(self.repo, user_id, project_id, source_ids, instruction)
        sources = self.repo.resolve_sources(user_id, project_id, source_ids)
        total_batches = len(
            partition_sources(
                [SourceTokenInfo(s.id, s.word_count) for s in sources],
                self.config.jobs.batch_token_budget,
            )
        )
        if self.runner is not None:
            self.runner.submit(job_id)
        else:
            logger.info("Job %s created without a runner; left pending", job_id)
        return ApiResponse(
            201,
            {"jobId": job_id, "totalBatches": total_batches, "estimatedTokens": estimated_tokens},
        )

    def get_job(self, user_id: str, project_id: str, job_id: str) -> ApiResponse:
        job = self.deep.get_job_status(self.repo, user_id, project_id, job_id)
        if job is None:
            return ApiResponse(404, {"error": "Job not found", "code": "NOT_FOUND"})
        return ApiResponse(200, job.to_status_dict())

    def get_latest_job(self, user_id: str, project_id: str) -> ApiResponse:
        job = self.deep.get_latest_job(self.repo, user_id, project_id)
        return ApiResponse(200, job.to_status_dict() if job is not None else None)
