"""Base chunker interface and the shared paragraph accumulator.

Every chunker reduces its input to an ordered stream of ``Block`` objects
(paragraphs and headings). ``BaseChunker`` then packs paragraphs greedily
into chunks of at most ``max_chars`` characters:

- Paragraphs are joined with a blank line; the buffer is flushed when the
  next paragraph would push it past ``max_chars``.
- A paragraph longer than ``max_chars`` is split at sentence boundaries
  (``.``, ``!`` or ``?`` followed by whitespace) and its sentences are packed
  the same way, joined with a single space. A single sentence longer than
  ``max_chars`` becomes its own chunk.
- A heading flushes the buffer and updates the heading stack; each chunk's
  heading chain is the stack at flush time, or ``["Section N of document"]``
  when the document has no heading above that point.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from deepread.ingest.models import Chunk
from deepread.rag.tokens import TokenEstimator, estimate_chunk_tokens, format_chunk_header

DEFAULT_MAX_CHARS = 3_000

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class Block:
    """One normalized unit of a document: a paragraph, or a heading if ``level`` > 0."""

    text: str
    level: int = 0

    @property
    def is_heading(self) -> bool:
        return self.level > 0


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run to a single space and strip the ends."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def split_sentences(paragraph: str) -> list[str]:
    """Split *paragraph* into sentences ending in ``.``, ``!`` or ``?``.

    Trailing text without terminal punctuation is kept as the last sentence.
    """
    return [s for s in _SENTENCE_SPLIT_RE.split(paragraph.strip()) if s]


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Subclasses implement ``_blocks()``; accumulation, heading chains and
    token estimates are shared.
    """

    def __init__(
        self,
        max_chars: int = DEFAULT_MAX_CHARS,
        estimator: TokenEstimator | None = None,
    ) -> None:
        if max_chars < 1:
            raise ValueError("max_chars must be >= 1")
        self.max_chars = max_chars
        self.estimator = estimator

    def chunk(self, source_id: str, source_title: str, content: str) -> list[Chunk]:
        """Split *content* into ordered Chunk objects for *source_id*.

        Returns an empty list for empty or whitespace-only content.
        """
        if not content.strip():
            return []
        pieces = self._accumulate(self._blocks(content))
        return self._make_chunks(source_id, source_title, pieces)

    @abstractmethod
    def _blocks(self, content: str) -> list[Block]:
        """Normalize *content* into paragraphs and headings, in document order."""

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def _accumulate(self, blocks: list[Block]) -> list[tuple[str, list[str]]]:
        """Pack paragraph blocks into (text, heading_chain) pieces."""
        pieces: list[tuple[str, list[str]]] = []
        stack: list[tuple[int, str]] = []
        buffer = ""

        def flush() -> None:
            nonlocal buffer
            if buffer:
                pieces.append((buffer, [heading for _, heading in stack]))
                buffer = ""

        for block in blocks:
            if block.is_heading:
                flush()
                while stack and stack[-1][0] >= block.level:
                    stack.pop()
                stack.append((block.level, block.text))
                continue

            paragraph = block.text
            if len(paragraph) > self.max_chars:
                flush()
                for sentence in split_sentences(paragraph):
                    if buffer and len(buffer) + 1 + len(sentence) > self.max_chars:
                        flush()
                    buffer = f"{buffer} {sentence}" if buffer else sentence
                continue

            if buffer and len(buffer) + 2 + len(paragraph) > self.max_chars:
                flush()
            buffer = f"{buffer}\n\n{paragraph}" if buffer else paragraph

        flush()
        return pieces

    def _make_chunks(
        self,
        source_id: str,
        source_title: str,
        pieces: list[tuple[str, list[str]]],
    ) -> list[Chunk]:
        """Convert accumulated pieces into sequentially indexed Chunks."""
        chunks: list[Chunk] = []
        for i, (text, chain) in enumerate(pieces):
            heading_chain = chain or [f"Section {i + 1} of document"]
            header = format_chunk_header(source_title, source_id, heading_chain)
            chunks.append(
                Chunk(
                    source_id=source_id,
                    source_title=source_title,
                    heading_chain=heading_chain,
                    text=text,
                    chunk_index=i,
                    estimated_tokens=estimate_chunk_tokens(header, text, self.estimator),
                )
            )
        return chunks
