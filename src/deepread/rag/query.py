"""Synchronous research query: one completion call over budgeted source chunks.

Flow:
  1. Validate the input (before anything is recorded).
  2. Record the query (status ``pending``).
  3. Load cached content for the in-scope sources. None → ``NoSourcesError``.
  4. Chunk each source, rank its chunks against the query, round-robin a
     fixed chunk quota across sources, and fit the result to the token budget.
  5. One JSON-mode completion with the verbatim-extraction prompt.
  6. Parse the response into snippets and record counts, tokens and latency.

Every failure after step 2 updates the query record to ``error`` before the
exception propagates. Query content itself is never stored.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass

from deepread.config import DeepreadConfig
from deepread.db.content_store import ContentStore, default_content_key
from deepread.db.models import ResearchQueryRecord, Source
from deepread.db.repository import Repository
from deepread.errors import AIUnavailableError, NoSourcesError, QueryFailedError, ValidationError
from deepread.ingest import chunk as chunk_source
from deepread.ingest.models import Chunk
from deepread.rag.budget import BudgetResult, TokenBudget, select
from deepread.rag.distributor import distribute
from deepread.rag.llm_client import CompletionProvider
from deepread.rag.prompts import RESEARCH_SYSTEM_PROMPT, build_research_user_message
from deepread.rag.relevance import rank_by_query
from deepread.rag.snippets import QueryResult, parse_snippet_response
from deepread.rag.tokens import TokenEstimator

logger = logging.getLogger(__name__)


@dataclass
class QueryInput:
    query: str
    source_ids: list[str] | None = None


@dataclass
class QueryOutcome:
    result: QueryResult
    query_id: str
    latency_ms: int


@dataclass
class SourceContent:
    source: Source
    text: str


# ------------------------------------------------------------------
# Shared helpers (also used by the deep analysis path)
# ------------------------------------------------------------------


async def load_source_content(store: ContentStore, source: Source) -> str | None:
    """Return *source*'s cached text, or None when absent or blank."""
    if not source.has_cached_content:
        return None
    key = source.content_key or default_content_key(source.id)
    text = await asyncio.to_thread(store.get_text, key)
    if text is None or not text.strip():
        return None
    return text


def validate_source_ids(
    repo: Repository, user_id: str, project_id: str, source_ids: object
) -> None:
    """Raise ValidationError unless *source_ids* lists known active sources of the project."""
    if not isinstance(source_ids, list) or not all(isinstance(s, str) for s in source_ids):
        raise ValidationError("sourceIds must be a list of strings")
    known = {s.id for s in repo.list_sources(user_id, project_id, source_ids)}
    unknown = [s for s in source_ids if s not in known]
    if unknown:
        raise ValidationError(f"Unknown source ids: {', '.join(unknown)}")


def validate_query_input(
    repo: Repository,
    config: DeepreadConfig,
    user_id: str,
    project_id: str,
    data: QueryInput,
) -> None:
    """Raise ValidationError for a blank or overlong query or bad source ids."""
    max_len = config.query.max_query_length
    if not isinstance(data.query, str) or not data.query.strip():
        raise ValidationError("Query is required")
    if len(data.query) > max_len:
        raise ValidationError(f"Query must be at most {max_len} characters")
    if data.source_ids is not None:
        validate_source_ids(repo, user_id, project_id, data.source_ids)


def budget_from_config(config: DeepreadConfig) -> TokenBudget:
    return TokenBudget(
        max_total_tokens=config.budget.max_total_tokens,
        system_prompt_reserve=config.budget.system_prompt_reserve,
        response_reserve=config.budget.response_reserve,
    )


def select_context(
    query: str,
    chunks_by_source: dict[str, list[Chunk]],
    quota: int,
    budget: TokenBudget,
) -> BudgetResult:
    """Rank each source's chunks, distribute *quota* across sources, fit to *budget*."""
    ranked = {sid: rank_by_query(chunks, query) for sid, chunks in chunks_by_source.items()}
    return select(distribute(ranked, quota), budget)


# ------------------------------------------------------------------
# Service
# ------------------------------------------------------------------


class ResearchQueryService:
    """Answers natural-language queries against a project's cached sources.

    Stateless between calls: every query is a pure function of the query
    text and the current corpus.
    """

    def __init__(
        self,
        repo: Repository,
        content_store: ContentStore,
        provider: CompletionProvider,
        config: DeepreadConfig,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self.repo = repo
        self.content_store = content_store
        self.provider = provider
        self.config = config
        self.estimator = estimator

    def validate_input(self, user_id: str, project_id: str, data: QueryInput) -> None:
        validate_query_input(self.repo, self.config, user_id, project_id, data)

    async def collect_source_content(
        self,
        user_id: str,
        project_id: str,
        source_ids: Sequence[str] | None = None,
    ) -> list[SourceContent]:
        """Return in-scope sources that have non-blank cached content."""
        sources = self.repo.list_sources(
            user_id, project_id, source_ids or None, cached_only=True
        )
        contents: list[SourceContent] = []
        for source in sources:
            text = await load_source_content(self.content_store, source)
            if text is not None:
                contents.append(SourceContent(source=source, text=text))
        return contents

    def chunk_contents(self, contents: Sequence[SourceContent]) -> dict[str, list[Chunk]]:
        return {
            c.source.id: chunk_source(
                c.source.id,
                c.source.title,
                c.text,
                c.source.mime_type,
                max_chars=self.config.chunking.max_chars,
                estimator=self.estimator,
            )
            for c in contents
        }

    async def execute_query(self, user_id: str, project_id: str, data: QueryInput) -> QueryOutcome:
        """Run one research query end to end.

        Raises:
            ValidationError: Bad input; nothing is recorded.
            NoSourcesError: No in-scope source has cached content.
            AIUnavailableError: The provider failed or returned nothing.
            QueryFailedError: The response could not be interpreted, or any
                other failure.
        """
        self.validate_input(user_id, project_id, data)

        query_id = str(uuid.uuid4())
        started = time.monotonic()
        self.repo.add_research_query(
            ResearchQueryRecord(
                id=query_id,
                user_id=user_id,
                project_id=project_id,
                query=data.query[: self.config.query.max_query_length],
                model=self.provider.model,
            )
        )

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        def record_error(message: str) -> None:
            self.repo.update_research_query(
                query_id, status="error", error_message=message, latency_ms=elapsed_ms()
            )

        try:
            contents = await self.collect_source_content(user_id, project_id, data.source_ids)
            if not contents:
                record_error("No sources with cached content")
                raise NoSourcesError()

            selection = select_context(
                data.query,
                self.chunk_contents(contents),
                self.config.query.max_chunks_per_query,
                budget_from_config(self.config),
            )
            logger.debug(
                "Query %s: %d chunks selected (%d tokens, %d excluded)",
                query_id,
                len(selection.selected_chunks),
                selection.total_tokens,
                selection.excluded_count,
            )
            user_message = build_research_user_message(data.query, selection.selected_chunks)

            try:
                completion = await self.provider.complete(
                    RESEARCH_SYSTEM_PROMPT,
                    user_message,
                    max_tokens=self.config.llm.max_tokens,
                    json_mode=True,
                )
            except Exception as exc:
                logger.warning("Completion provider error for query %s: %s", query_id, exc)
                record_error(f"AI provider error: {exc}")
                raise AIUnavailableError() from exc

            if not completion.text.strip():
                record_error("Empty response from AI provider")
                raise AIUnavailableError()

            outcome = parse_snippet_response(completion.text, self.config.query.max_snippets)
            if outcome.ok and outcome.result is not None:
                result = outcome.result
            elif outcome.partial is not None:
                logger.warning("Partial research result for query %s: %s", query_id, outcome.error)
                result = outcome.partial
            else:
                logger.warning(
                    "Unparseable research response for query %s: %s (%r)",
                    query_id,
                    outcome.error,
                    outcome.raw_excerpt,
                )
                record_error("Failed to parse AI response")
                raise QueryFailedError("Failed to parse AI response")

            latency_ms = elapsed_ms()
            self.repo.update_research_query(
                query_id,
                status="completed",
                source_count=len(contents),
                result_count=len(result.snippets),
                input_tokens=completion.input_tokens,
                output_tokens=completion.output_tokens,
                latency_ms=latency_ms,
            )
            return QueryOutcome(result=result, query_id=query_id, latency_ms=latency_ms)

        except (NoSourcesError, AIUnavailableError, QueryFailedError):
            raise
        except Exception as exc:
            logger.exception("Research query %s failed", query_id)
            record_error(str(exc) or "Unknown error")
            raise QueryFailedError(str(exc) or "Query processing failed") from exc
