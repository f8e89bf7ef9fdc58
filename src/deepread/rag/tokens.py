"""Token estimation for prompt budgeting.

The default estimator uses a fixed word-to-token ratio (1 word ≈ 1.33 tokens,
i.e. ~0.75 words per token for English prose). It is an approximation, not a
tokenizer count: budget code treats it as an upper-bound estimate.

A provider-aware estimator backed by ``litellm.token_counter()`` is selected
with ``llm.token_estimator: litellm``; budget contracts do not
change.
"""

from __future__ import annotations

import math
import re
from typing import Protocol

import litellm

TOKENS_PER_WORD = 1.33

_WORD_RE = re.compile(r"\S+")


def count_words(text: str) -> int:
    """Return the number of whitespace-separated words in *text*."""
    return len(_WORD_RE.findall(text))


def estimate_tokens(text: str) -> int:
    """Estimate the token cost of *text* as ``ceil(words * 1.33)``; 0 for blank text."""
    words = count_words(text)
    if words == 0:
        return 0
    return math.ceil(words * TOKENS_PER_WORD)


def estimate_tokens_for_words(word_count: int) -> int:
    """Estimate tokens from a stored word count (no content read)."""
    return math.ceil(max(0, word_count) * TOKENS_PER_WORD)


def format_chunk_header(source_title: str, source_id: str, heading_chain: list[str]) -> str:
    """Return the attribution header that precedes a chunk in every prompt."""
    section = " > ".join(heading_chain) if heading_chain else "Full document"
    return f'[Source: "{source_title}" (id: {source_id}), Section: "{section}"]'


CHUNK_SEPARATOR = "\n\n---\n\n"


class TokenEstimator(Protocol):
    """Anything that maps a string to an (upper-bound) token estimate."""

    def __call__(self, text: str) -> int: ...


class WordRatioEstimator:
    """Default estimator: fixed word-to-token ratio."""

    def __call__(self, text: str) -> int:
        return estimate_tokens(text)


class LiteLLMTokenEstimator:
    """Estimator backed by the provider tokenizer for *model*.

    Falls back to the word ratio when litellm cannot count tokens for the
    model (unknown model, missing tokenizer).
    """

    def __init__(self, model: str) -> None:
        self.model = model

    def __call__(self, text: str) -> int:
        if not text.strip():
            return 0
        try:
            return litellm.token_counter(model=self.model, text=text)
        except Exception:
            return estimate_tokens(text)


def estimate_chunk_tokens(
    header: str,
    text: str,
    estimator: TokenEstimator | None = None,
) -> int:
    """Estimate a chunk's prompt cost, including its attribution header and separator."""
    est = estimator or estimate_tokens
    return est(header) + est(text) + est(CHUNK_SEPARATOR)


TOKEN_ESTIMATORS = ("word_ratio", "litellm")


def get_estimator(kind: str, model: str) -> TokenEstimator:
    """Return the estimator named by ``llm.token_estimator``.

    Raises:
        ValueError: *kind* is not one of ``TOKEN_ESTIMATORS``.
    """
    if kind == "word_ratio":
        return WordRatioEstimator()
    if kind == "litellm":
        return LiteLLMTokenEstimator(model)
    raise ValueError(f"Unknown token estimator: {kind!r}")
