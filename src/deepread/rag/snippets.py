"""Parse a research-query model response into snippets.

Handles JSON wrapped in code fences, snake_case keys, a bare snippet object
returned without the ``snippets`` wrapper, and items missing required fields.
Only a payload that is not a JSON object at all is a hard failure; an object
with no recognizable structure yields a failure carrying the partial result
that could be salvaged (at most a summary, with ``no_results`` set).
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from deepread.rag.prompts import MAX_SNIPPETS

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 10_000
_MAX_RAW_LOG = 500

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)


@dataclass
class Snippet:
    content: str
    source_id: str
    source_title: str = ""
    source_location: str = ""
    relevance: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "content": self.content,
            "sourceId": self.source_id,
            "sourceTitle": self.source_title,
            "sourceLocation": self.source_location,
            "relevance": self.relevance,
        }


@dataclass
class QueryResult:
    snippets: list[Snippet] = field(default_factory=list)
    summary: str = ""
    no_results: bool = True

    def __post_init__(self) -> None:
        if not self.snippets:
            self.no_results = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "snippets": [s.to_dict() for s in self.snippets],
            "summary": self.summary,
            "noResults": self.no_results,
        }


@dataclass
class ParseOutcome:
    """Result of a parse attempt.

    ``ok`` with ``result`` set on success. On failure ``error`` describes the
    problem and ``partial`` holds salvaged data, if any.
    """

    ok: bool
    result: QueryResult | None = None
    error: str | None = None
    partial: QueryResult | None = None
    raw_excerpt: str | None = None


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    match = _FENCE_RE.match(cleaned)
    if match:
        cleaned = match.group(1).strip()
    return cleaned


def _first_str(obj: dict, *keys: str) -> str | None:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str):
            return value
    return None


def parse_snippet(obj: dict) -> Snippet | None:
    """Build a Snippet from one response item, or None without content/sourceId."""
    content = _first_str(obj, "content")
    if not content or not content.strip():
        return None
    source_id = _first_str(obj, "sourceId", "source_id")
    if not source_id or not source_id.strip():
        return None
    return Snippet(
        content=content[:MAX_CONTENT_LENGTH],
        source_id=source_id,
        source_title=_first_str(obj, "sourceTitle", "source_title") or "",
        source_location=_first_str(obj, "sourceLocation", "source_location", "location_in_source") or "",
        relevance=_first_str(obj, "relevance") or "",
    )


def parse_snippet_response(raw: str, max_snippets: int = MAX_SNIPPETS) -> ParseOutcome:
    """Parse the raw model output of a research query, keeping at most *max_snippets*."""
    if not raw or not raw.strip():
        return ParseOutcome(ok=False, error="Empty response from LLM")

    try:
        parsed = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError:
        return ParseOutcome(
            ok=False, error="LLM response is not valid JSON", raw_excerpt=raw[:_MAX_RAW_LOG]
        )
    if not isinstance(parsed, dict):
        return ParseOutcome(
            ok=False, error="LLM response is not a JSON object", raw_excerpt=raw[:_MAX_RAW_LOG]
        )
    return _extract(parsed, raw, max_snippets)


def _extract(obj: dict, raw: str, max_snippets: int) -> ParseOutcome:
    warnings: list[str] = []
    snippets: list[Snippet] = []
    has_snippets_field = False

    items = obj.get("snippets")
    if isinstance(items, list):
        has_snippets_field = True
        for item in items[:max_snippets]:
            if not isinstance(item, dict):
                warnings.append("Skipped non-object item in snippets array")
                continue
            snippet = parse_snippet(item)
            if snippet is None:
                warnings.append("Skipped snippet with missing required fields (content or sourceId)")
            else:
                snippets.append(snippet)
        if len(items) > max_snippets:
            warnings.append(f"Truncated snippets from {len(items)} to {max_snippets}")
    else:
        single = parse_snippet(obj) if isinstance(obj.get("content"), str) else None
        if single is not None:
            snippets = [single]
            has_snippets_field = True
            warnings.append("Response was a single snippet object instead of wrapped in snippets array")
        else:
            warnings.append("Missing or invalid snippets array")

    summary = obj.get("summary") if isinstance(obj.get("summary"), str) else ""
    flag = obj.get("noResults", obj.get("no_results"))
    has_no_results_field = isinstance(flag, bool)
    no_results = flag if has_no_results_field else not snippets
    result = QueryResult(snippets=snippets, summary=summary, no_results=no_results)

    if warnings:
        logger.debug("Snippet response warnings: %s", "; ".join(warnings))
    if not warnings or snippets or has_snippets_field or has_no_results_field:
        return ParseOutcome(ok=True, result=result)

    return ParseOutcome(
        ok=False,
        error=f"Schema validation failed: {'; '.join(warnings)}",
        partial=result,
        raw_excerpt=raw[:_MAX_RAW_LOG],
    )
