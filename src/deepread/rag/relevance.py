"""Lexical relevance ordering of one source's chunks against a query."""

from __future__ import annotations

import re
from collections.abc import Sequence

from deepread.ingest.models import Chunk

_TERM_RE = re.compile(r"[a-z0-9]+")

# Too common to say anything about relevance.
_STOPWORDS = frozenset(
    "a an and are as at be by do does for from has have how i in is it of on or "
    "that the this to was what when where which who why with".split()
)


def query_terms(query: str) -> set[str]:
    return {t for t in _TERM_RE.findall(query.lower()) if t not in _STOPWORDS}


def score_chunk(chunk: Chunk, terms: set[str]) -> int:
    """Number of occurrences of *terms* in the chunk's text and heading chain."""
    if not terms:
        return 0
    haystack = _TERM_RE.findall(f"{' '.join(chunk.heading_chain)} {chunk.text}".lower())
    return sum(1 for word in haystack if word in terms)


def rank_by_query(chunks: Sequence[Chunk], query: str) -> list[Chunk]:
    """Order *chunks* by descending term overlap with *query*.

    The sort is stable: ties, and every chunk when the query has no usable
    terms, keep document order.
    """
    terms = query_terms(query)
    if not terms:
        return list(chunks)
    return sorted(chunks, key=lambda c: -score_chunk(c, terms))
