"""Chunker dispatch by MIME type.

  text/html and HTML-cached exports (DOCX, Google Docs) → HtmlChunker (structured)
  application/pdf (flat HTML extracted from PDF)         → HtmlChunker(structured=False)
  text/markdown                                          → MarkdownChunker
  anything else                                          → PlainTextChunker
"""

from __future__ import annotations

import logging

from deepread.ingest.base import DEFAULT_MAX_CHARS, BaseChunker
from deepread.ingest.html import HtmlChunker
from deepread.ingest.markdown import MarkdownChunker
from deepread.ingest.models import Chunk
from deepread.ingest.plaintext import PlainTextChunker
from deepread.rag.tokens import TokenEstimator

logger = logging.getLogger(__name__)

_STRUCTURED_HTML_TYPES = {
    "text/html",
    "application/xhtml+xml",
    "application/vnd.google-apps.document",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
_FLAT_HTML_TYPES = {"application/pdf"}
_MARKDOWN_TYPES = {"text/markdown", "text/x-markdown"}


def _base_type(content_type: str) -> str:
    return content_type.split(";")[0].strip().lower()


def get_chunker(
    content_type: str,
    max_chars: int = DEFAULT_MAX_CHARS,
    estimator: TokenEstimator | None = None,
) -> BaseChunker:
    """Return the chunker for *content_type* (parameters such as charset are ignored)."""
    ct = _base_type(content_type)
    if ct in _STRUCTURED_HTML_TYPES:
        return HtmlChunker(max_chars=max_chars, estimator=estimator)
    if ct in _FLAT_HTML_TYPES:
        return HtmlChunker(max_chars=max_chars, estimator=estimator, structured=False)
    if ct in _MARKDOWN_TYPES:
        return MarkdownChunker(max_chars=max_chars, estimator=estimator)
    if ct != "text/plain":
        logger.debug("No specific chunker for %r, using plain text", content_type)
    return PlainTextChunker(max_chars=max_chars, estimator=estimator)


def chunk(
    source_id: str,
    source_title: str,
    raw_text: str,
    content_type: str,
    max_chars: int = DEFAULT_MAX_CHARS,
    estimator: TokenEstimator | None = None,
) -> list[Chunk]:
    """Split one source's cached text into ordered, heading-annotated chunks."""
    return get_chunker(content_type, max_chars, estimator).chunk(source_id, source_title, raw_text)
