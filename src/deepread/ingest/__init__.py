"""deepread ingest: source chunkers."""

from deepread.ingest.base import BaseChunker
from deepread.ingest.factory import chunk, get_chunker
from deepread.ingest.html import HtmlChunker
from deepread.ingest.markdown import MarkdownChunker
from deepread.ingest.models import Chunk
from deepread.ingest.plaintext import PlainTextChunker

__all__ = [
    "BaseChunker",
    "Chunk",
    "HtmlChunker",
    "MarkdownChunker",
    "PlainTextChunker",
    "chunk",
    "get_chunker",
]
