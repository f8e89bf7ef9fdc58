"""Streaming analysis of a single source against an author instruction."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator

from deepread.config import DeepreadConfig
from deepread.db.content_store import ContentStore
from deepread.db.models import ResearchQueryRecord
from deepread.db.repository import Repository
from deepread.errors import NoSourcesError, ValidationError
from deepread.rag.llm_client import CompletionProvider, StreamEvent
from deepread.rag.prompts import ANALYSIS_SYSTEM_PROMPT, build_analysis_user_message
from deepread.rag.query import load_source_content

logger = logging.getLogger(__name__)

MIN_INSTRUCTION_LENGTH = 5
MAX_INSTRUCTION_LENGTH = 1_000


def validate_instruction(instruction: str) -> None:
    if not isinstance(instruction, str) or len(instruction.strip()) < MIN_INSTRUCTION_LENGTH:
        raise ValidationError(f"Instruction must be at least {MIN_INSTRUCTION_LENGTH} characters.")
    if len(instruction) > MAX_INSTRUCTION_LENGTH:
        raise ValidationError(f"Instruction must be at most {MAX_INSTRUCTION_LENGTH} characters.")


class SourceAnalysisService:
    """Stream a model's analysis of one cached source.

    The interaction is recorded in ``research_queries``: ``pending`` when the
    stream starts, ``completed`` once the provider signals ``done``, and
    ``error`` on a provider error or a stream abandoned before completion.
    """

    def __init__(
        self,
        repo: Repository,
        content_store: ContentStore,
        provider: CompletionProvider,
        config: DeepreadConfig,
    ) -> None:
        self.repo = repo
        self.content_store = content_store
        self.provider = provider
        self.config = config

    async def stream_analysis(
        self,
        user_id: str,
        project_id: str,
        source_id: str,
        instruction: str,
    ) -> AsyncIterator[StreamEvent]:
        """Yield the provider's stream events for the analysis of *source_id*.

        Raises:
            ValidationError: Bad instruction or unknown source (before any event).
            NoSourcesError: The source has no cached content.
        """
        validate_instruction(instruction)
        sources = self.repo.list_sources(user_id, project_id, [source_id])
        if not sources:
            raise ValidationError(f"Unknown source id: {source_id}")
        document = await load_source_content(self.content_store, sources[0])
        if document is None:
            raise NoSourcesError(f"Source '{sources[0].title}' has no cached content")

        interaction_id = str(uuid.uuid4())
        started = time.monotonic()
        self.repo.add_research_query(
            ResearchQueryRecord(
                id=interaction_id,
                user_id=user_id,
                project_id=project_id,
                query=instruction,
                model=self.provider.model,
            )
        )

        output_chars = 0
        done = False
        error: str | None = None
        try:
            async for event in self.provider.stream_complete(
                ANALYSIS_SYSTEM_PROMPT,
                build_analysis_user_message(instruction, document),
                max_tokens=self.config.llm.max_tokens,
            ):
                if event.type == "token":
                    output_chars += len(event.text)
                elif event.type == "done":
                    done = True
                elif event.type == "error":
                    error = event.message or "AI service unavailable"
                yield event
        finally:
            latency_ms = int((time.monotonic() - started) * 1000)
            if error is None and not done:
                error = "Stream ended before completion"
            if error is None:
                self.repo.update_research_query(
                    interaction_id,
                    status="completed",
                    source_count=1,
                    result_count=1 if output_chars else 0,
                    latency_ms=latency_ms,
                )
            else:
                logger.warning("Analysis %s failed: %s", interaction_id, error)
                self.repo.update_research_query(
                    interaction_id,
                    status="error",
                    source_count=1,
                    latency_ms=latency_ms,
                    error_message=error,
                )
