"""Plain text chunker: blank-line paragraphs, no heading structure."""

from __future__ import annotations

import re

from deepread.ingest.base import BaseChunker, Block, normalize_whitespace

_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")


class PlainTextChunker(BaseChunker):
    """Split plain text on blank lines; every chunk gets a positional label."""

    def _blocks(self, content: str) -> list[Block]:
        paragraphs = (normalize_whitespace(p) for p in _PARAGRAPH_BREAK_RE.split(content))
        return [Block(p) for p in paragraphs if p]
