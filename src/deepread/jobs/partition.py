"""Greedy, order-preserving partition of sources into token-bounded batches."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from deepread.rag.tokens import estimate_tokens_for_words

DEFAULT_BATCH_TOKEN_BUDGET = 80_000


@dataclass(frozen=True)
class SourceTokenInfo:
    id: str
    word_count: int

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens_for_words(self.word_count)


def partition_sources(
    sources: Sequence[SourceTokenInfo],
    batch_token_budget: int = DEFAULT_BATCH_TOKEN_BUDGET,
) -> list[list[str]]:
    """Pack *sources* into batches of source ids, in input order.

    A batch is closed when the next source would push it past
    *batch_token_budget*. A source larger than the budget on its own still
    gets a batch of its own; sources are never split.
    """
    if batch_token_budget < 1:
        raise ValueError("batch_token_budget must be >= 1")

    batches: list[list[str]] = []
    current: list[str] = []
    current_tokens = 0
    for source in sources:
        tokens = source.estimated_tokens
        if current and current_tokens + tokens > batch_token_budget:
            batches.append(current)
            current = []
            current_tokens = 0
        current.append(source.id)
        current_tokens += tokens
    if current:
        batches.append(current)
    return batches
