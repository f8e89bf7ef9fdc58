"""Transient chunk model produced by the chunkers.

Chunks are rebuilt from cached source content on every request and are
never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Chunk:
    source_id: str
    source_title: str
    text: str
    chunk_index: int  # document position; contiguous from 0 within a source
    heading_chain: list[str] = field(default_factory=list)
    estimated_tokens: int = 0

    @property
    def id(self) -> str:
        return f"{self.source_id}:{self.chunk_index}"

    @property
    def section(self) -> str:
        """Heading chain joined for display, e.g. ``Chapter 3 > Methodology``."""
        return " > ".join(self.heading_chain) if self.heading_chain else "Full document"
