"""Context budget selector: dedupe, greedy token fill, document-order restore.

Pipeline:
  1. Drop repeated candidates. Identity is (source_id, chunk_index) or the
     sha256 of the chunk text; the first occurrence wins.
  2. Walk candidates in relevance order, running-summing estimated tokens.
     Include a chunk only while the sum stays within the budget. At the first
     candidate that does not fit, stop including; it and everything after it
     count as excluded.
  3. Sort the selection by (source_id, chunk_index) so passages from one
     source read in document order.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from dataclasses import dataclass, field

from deepread.ingest.models import Chunk

DEFAULT_MAX_TOTAL_TOKENS = 8_192


@dataclass(frozen=True)
class TokenBudget:
    """Immutable token allowance for one assembled prompt."""

    max_total_tokens: int = DEFAULT_MAX_TOTAL_TOKENS
    system_prompt_reserve: int = 0
    response_reserve: int = 0
    max_chunks: int | None = None

    def __post_init__(self) -> None:
        if self.max_total_tokens < 0:
            raise ValueError("max_total_tokens must be >= 0")
        if self.system_prompt_reserve < 0 or self.response_reserve < 0:
            raise ValueError("token reserves must be >= 0")
        if self.max_chunks is not None and self.max_chunks < 0:
            raise ValueError("max_chunks must be >= 0")

    @property
    def available(self) -> int:
        """Tokens left for chunk content after reserves (never negative)."""
        return max(0, self.max_total_tokens - self.system_prompt_reserve - self.response_reserve)


@dataclass
class BudgetResult:
    selected_chunks: list[Chunk] = field(default_factory=list)
    total_tokens: int = 0
    truncated: bool = False
    excluded_count: int = 0


def _content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def deduplicate(candidates: Iterable[Chunk]) -> list[Chunk]:
    """Drop chunks already seen by position or by identical text; keep order."""
    seen_keys: set[tuple[str, int]] = set()
    seen_hashes: set[str] = set()
    unique: list[Chunk] = []
    for chunk in candidates:
        key = (chunk.source_id, chunk.chunk_index)
        digest = _content_hash(chunk.text)
        if key in seen_keys or digest in seen_hashes:
            continue
        seen_keys.add(key)
        seen_hashes.add(digest)
        unique.append(chunk)
    return unique


def select(candidates: Iterable[Chunk], budget: TokenBudget | None = None) -> BudgetResult:
    """Select the highest-relevance chunks that fit *budget*.

    Args:
        candidates: Chunks ordered by relevance, best first.
        budget: Token allowance. Defaults to ``TokenBudget()``.

    Returns:
        BudgetResult with the selection in document order. Its total never
        exceeds ``budget.available``.
    """
    budget = budget or TokenBudget()
    unique = deduplicate(candidates)

    selected: list[Chunk] = []
    total = 0
    for i, chunk in enumerate(unique):
        over_count = budget.max_chunks is not None and len(selected) >= budget.max_chunks
        if over_count or total + chunk.estimated_tokens > budget.available:
            excluded = len(unique) - i
            break
        selected.append(chunk)
        total += chunk.estimated_tokens
    else:
        excluded = 0

    selected.sort(key=lambda c: (c.source_id, c.chunk_index))
    return BudgetResult(
        selected_chunks=selected,
        total_tokens=total,
        truncated=excluded > 0,
        excluded_count=excluded,
    )
