"""HTML chunker: block-level elements become paragraphs, h1–h6 build the heading chain.

Cached source content is HTML. Two shapes are handled:

  structured  (DOCX / Markdown / Google Docs exports): real <h1>..<h6> headings
  flat        (PDF extraction: everything is <p>): tags carry no structure, so
              headings are guessed from the text. A paragraph of fewer than
              10 words is a heading when it is ALL CAPS, or when it has no
              terminal punctuation and the next paragraph is longer. Text
              before the first guessed heading is labelled by position.

Markup is normalized with BeautifulSoup: script/style/head are dropped,
whitespace inside text nodes is collapsed, and a paragraph break is inserted
around every block-level element and <br>. All remaining markup is stripped.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, Comment

from deepread.ingest.base import BaseChunker, Block, normalize_whitespace
from deepread.rag.tokens import TokenEstimator

_BLOCK_TAGS = [
    "p", "div", "section", "article", "header", "footer", "main", "aside",
    "li", "ul", "ol", "dl", "dt", "dd", "blockquote", "pre", "table", "tr",
    "td", "th", "caption", "figure", "figcaption", "hr",
]
_HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
_DROP_TAGS = ["script", "style", "head", "noscript", "template"]

_BREAK = "\n\n"
# Heading marker: \x00<level>\x00<text>. Never present in collapsed text.
_HEADING_MARK = "\x00"
_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")

# Flat HTML heading guess
_MAX_HEADING_WORDS = 10
_TERMINAL_PUNCT_RE = re.compile(r"[.!?]$")


class HtmlChunker(BaseChunker):
    """Chunk HTML source content.

    Args:
        structured: Use <h1>..<h6> as the heading stack. When False (flat
            PDF-derived HTML) every element is read as a paragraph and
            headings are detected with ``detect_flat_headings``.
    """

    def __init__(
        self,
        max_chars: int = 3_000,
        estimator: TokenEstimator | None = None,
        structured: bool = True,
    ) -> None:
        super().__init__(max_chars=max_chars, estimator=estimator)
        self.structured = structured

    def _blocks(self, content: str) -> list[Block]:
        soup = BeautifulSoup(content, "html.parser")

        for tag in soup.find_all(_DROP_TAGS):
            tag.decompose()
        for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
            comment.extract()

        for text_node in soup.find_all(string=True):
            collapsed = re.sub(r"\s+", " ", str(text_node))
            if collapsed != text_node:
                text_node.replace_with(collapsed)

        for br in soup.find_all("br"):
            br.replace_with(_BREAK)

        for heading in soup.find_all(_HEADING_TAGS):
            text = normalize_whitespace(heading.get_text())
            if self.structured and text:
                level = int(heading.name[1])
                heading.replace_with(f"{_BREAK}{_HEADING_MARK}{level}{_HEADING_MARK}{text}{_BREAK}")
            else:
                heading.replace_with(f"{_BREAK}{text}{_BREAK}")

        for tag in soup.find_all(_BLOCK_TAGS):
            tag.insert_before(_BREAK)
            tag.insert_after(_BREAK)

        blocks: list[Block] = []
        for raw in _PARAGRAPH_BREAK_RE.split(soup.get_text()):
            if raw.strip().startswith(_HEADING_MARK):
                _, level, text = raw.strip().split(_HEADING_MARK, 2)
                blocks.append(Block(normalize_whitespace(text), level=int(level)))
                continue
            text = normalize_whitespace(raw)
            if text:
                blocks.append(Block(text))
        return blocks if self.structured else detect_flat_headings(blocks)


def _looks_like_heading(text: str, next_text: str | None) -> bool:
    words = len(text.split())
    if words >= _MAX_HEADING_WORDS:
        return False
    if text == text.upper() and re.search(r"[A-Z]", text):
        return True
    next_is_longer = next_text is not None and len(next_text.split()) > words
    return next_is_longer and not _TERMINAL_PUNCT_RE.search(text)


def detect_flat_headings(blocks: list[Block]) -> list[Block]:
    """Promote heading-like paragraphs of flat HTML to level-1 headings."""
    result: list[Block] = []
    for i, block in enumerate(blocks):
        next_text = blocks[i + 1].text if i + 1 < len(blocks) else None
        if _looks_like_heading(block.text, next_text):
            result.append(Block(block.text, level=1))
        else:
            result.append(block)
    return result
