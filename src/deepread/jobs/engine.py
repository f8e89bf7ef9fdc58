"""Deep analysis: asynchronous map-reduce over a large source corpus.

Flow:
  1. Estimate total tokens from stored word counts (no content reads).
  2. Over the threshold (or any source of unknown size): create a job record
     in ``pending`` and hand its id to the background runner.
  3. Partition the job's sources into token-bounded batches and move the job
     ``pending → processing``. That transition succeeds only once, so a
     duplicate invocation for the same job is a no-op.
  4. Map: run batches in groups of ``max_concurrent_batches``; each batch is
     retried with a linearly increasing delay, except a batch with no cached
     content, which fails at once. Progress is persisted after each whole group.
     Any batch exhausting its retries fails the job.
  5. Reduce: one synthesis call over all intermediate summaries (not retried).
  6. Persist ``completed`` with the result, or ``failed`` with the last error.

Job rows are only changed through the repository's conditional updates, so a
terminal job never regresses. Expired jobs are deleted lazily on status reads.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import timedelta

from deepread.config import DeepreadConfig
from deepread.db.connection import Database
from deepread.db.content_store import ContentStore
from deepread.db.models import AnalysisJob, Source, now_ts
from deepread.db.repository import Repository
from deepread.errors import AIUnavailableError, NoSourcesError
from deepread.ingest import chunk as chunk_source
from deepread.jobs.partition import SourceTokenInfo, partition_sources
from deepread.rag.llm_client import CompletionProvider
from deepread.rag.prompts import (
    MAP_SYSTEM_PROMPT,
    REDUCE_SYSTEM_PROMPT,
    build_map_user_message,
    build_reduce_user_message,
)
from deepread.rag.query import load_source_content
from deepread.rag.tokens import TokenEstimator, estimate_tokens_for_words

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenEstimate:
    total: int
    has_unknown: bool


class DeepAnalysisService:
    """Creates, runs and reports on map-reduce analysis jobs.

    Args:
        db: Database handle; ``process_job`` opens its own connection.
        content_store: Cached source content.
        provider_factory: Returns the completion provider for one job run.
        config: Loaded configuration (``jobs`` and ``llm`` sections).
        estimator: Token estimator for chunk headers (default: word ratio).
        sleep: Awaitable delay between batch retries.
    """

    def __init__(
        self,
        db: Database,
        content_store: ContentStore,
        provider_factory: Callable[[], CompletionProvider],
        config: DeepreadConfig,
        estimator: TokenEstimator | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.db = db
        self.content_store = content_store
        self.provider_factory = provider_factory
        self.config = config
        self.estimator = estimator
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    @staticmethod
    def estimate_source_tokens(
        repo: Repository, user_id: str, project_id: str, source_ids: Sequence[str]
    ) -> TokenEstimate:
        """Sum estimated tokens of the active sources among *source_ids*.

        A stored word count of 0 means the size is unknown.
        """
        total = 0
        has_unknown = False
        for source in repo.resolve_sources(user_id, project_id, source_ids):
            if source.word_count == 0:
                has_unknown = True
            total += estimate_tokens_for_words(source.word_count)
        return TokenEstimate(total=total, has_unknown=has_unknown)

    @staticmethod
    def should_use_deep_analysis(total_tokens: int, has_unknown: bool, threshold: int) -> bool:
        if has_unknown:
            return True
        return total_tokens >= threshold

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    def create_job(
        self,
        repo: Repository,
        user_id: str,
        project_id: str,
        source_ids: Sequence[str],
        instruction: str,
    ) -> str:
        """Insert a ``pending`` job and return its id."""
        now = now_ts()
        job = AnalysisJob(
            id=str(uuid.uuid4()),
            project_id=project_id,
            user_id=user_id,
            instruction=instruction,
            source_ids=list(source_ids),
            created_at=now,
            updated_at=now,
            expires_at=now_ts(timedelta(hours=self.config.jobs.job_ttl_hours)),
        )
        repo.add_job(job)
        logger.info("Created analysis job %s (%d sources)", job.id, len(job.source_ids))
        return job.id

    async def process_job(self, job_id: str) -> None:
        """Run job *job_id* to a terminal state. Never raises for job failures."""
        conn = self.db.connect()
        try:
            await self._run(Repository(conn), job_id)
        finally:
            conn.close()

    async def _run(self, repo: Repository, job_id: str) -> None:
        job = repo.get_job(job_id)
        if job is None:
            logger.error("Analysis job %s not found", job_id)
            return
        if job.status != "pending":
            logger.info("Analysis job %s is already %s; skipping", job_id, job.status)
            return

        jobs_cfg = self.config.jobs
        started = False
        try:
            sources = repo.resolve_sources(job.user_id, job.project_id, job.source_ids)
            if not sources:
                raise NoSourcesError("None of the job's sources are available")
            batches = partition_sources(
                [SourceTokenInfo(s.id, s.word_count) for s in sources],
                jobs_cfg.batch_token_budget,
            )
            provider = self.provider_factory()

            if not repo.start_job(job_id, len(batches), now_ts()):
                logger.info("Analysis job %s was claimed by another run; skipping", job_id)
                return
            started = True
            logger.info("Analysis job %s: %d batches", job_id, len(batches))

            by_id = {s.id: s for s in sources}
            intermediates: list[str] = []
            completed = 0
            group_size = jobs_cfg.max_concurrent_batches
            for start in range(0, len(batches), group_size):
                group = batches[start:start + group_size]
                results = await asyncio.gather(
                    *(
                        self._process_map_batch(provider, [by_id[sid] for sid in batch], job.instruction)
                        for batch in group
                    ),
                    return_exceptions=True,
                )
                for result in results:
                    if isinstance(result, BaseException):
                        raise result
                intermediates.extend(results)
                completed += len(group)
                repo.update_job_progress(job_id, completed, now_ts())

            final = await self._process_reduce(provider, intermediates, job.instruction)
            if repo.complete_job(job_id, final, now_ts()):
                logger.info("Analysis job %s completed", job_id)
            else:
                logger.warning("Analysis job %s left processing before completion", job_id)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error("Analysis job %s failed: %s", job_id, message)
            repo.fail_job(
                job_id, message, now_ts(), from_status="processing" if started else "pending"
            )

    async def _process_map_batch(
        self,
        provider: CompletionProvider,
        sources: Sequence[Source],
        instruction: str,
    ) -> str:
        """Summarize one batch, retrying with a linearly increasing delay."""
        max_attempts = self.config.jobs.batch_max_retries
        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                return await self._map_once(provider, sources, instruction)
            except NoSourcesError:
                raise
            except Exception as exc:
                last_error = exc
                logger.warning("Map batch attempt %d/%d failed: %s", attempt, max_attempts, exc)
                if attempt < max_attempts:
                    await self._sleep(self.config.jobs.retry_base_delay * attempt)
        raise last_error or RuntimeError("Map batch processing failed")

    async def _map_once(
        self,
        provider: CompletionProvider,
        sources: Sequence[Source],
        instruction: str,
    ) -> str:
        parts = []
        for source in sources:
            text = await load_source_content(self.content_store, source)
            if text is None:
                continue
            chunks = chunk_source(
                source.id,
                source.title,
                text,
                source.mime_type,
                max_chars=self.config.chunking.max_chars,
                estimator=self.estimator,
            )
            parts.append((source.title, chunks))
        if not parts:
            raise NoSourcesError("No cached content for the sources in this batch")

        completion = await provider.complete(
            MAP_SYSTEM_PROMPT,
            build_map_user_message(parts, instruction),
            max_tokens=self.config.llm.max_tokens,
        )
        if not completion.text.strip():
            raise AIUnavailableError("Empty response from AI provider")
        return completion.text

    async def _process_reduce(
        self,
        provider: CompletionProvider,
        intermediates: Sequence[str],
        instruction: str,
    ) -> str:
        completion = await provider.complete(
            REDUCE_SYSTEM_PROMPT,
            build_reduce_user_message(intermediates, instruction),
            max_tokens=self.config.llm.reduce_max_tokens,
        )
        if not completion.text.strip():
            raise AIUnavailableError("Empty response from AI provider")
        return completion.text

    # ------------------------------------------------------------------
    # Status reads
    # ------------------------------------------------------------------

    @staticmethod
    def get_job_status(
        repo: Repository, user_id: str, project_id: str, job_id: str
    ) -> AnalysisJob | None:
        """Return the caller's job, after deleting expired jobs."""
        repo.delete_expired_jobs(now_ts())
        return repo.get_job_for(user_id, project_id, job_id)

    @staticmethod
    def get_latest_job(repo: Repository, user_id: str, project_id: str) -> AnalysisJob | None:
        """Return the project's most recent unexpired job, after deleting expired jobs."""
        now = now_ts()
        repo.delete_expired_jobs(now)
        return repo.get_latest_job(user_id, project_id, now)
