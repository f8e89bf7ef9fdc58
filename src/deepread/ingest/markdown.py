"""Markdown chunker: ATX and setext headings drive the heading chain."""

from __future__ import annotations

import re

from deepread.ingest.base import BaseChunker, Block, normalize_whitespace

# ATX headings, H1..H6, optional closing hashes.
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
# Setext underline: "===" marks H1, "---" marks H2 when it follows paragraph text.
_SETEXT_RE = re.compile(r"^ {0,3}(=+|-+)\s*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")

# Inline markup stripped from paragraph text.
_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\([^)]*\)")
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]*\)")
_EMPHASIS_RE = re.compile(r"(\*\*|__|\*|_|~~)(?=\S)(.+?)(?<=\S)\1")
_INLINE_CODE_RE = re.compile(r"`([^`]*)`")
_LINE_PREFIX_RE = re.compile(r"^\s*(?:>\s?|[-*+]\s+|\d+[.)]\s+)")


def _strip_inline(line: str) -> str:
    line = _LINE_PREFIX_RE.sub("", line)
    line = _IMAGE_RE.sub(r"\1", line)
    line = _LINK_RE.sub(r"\1", line)
    line = _INLINE_CODE_RE.sub(r"\1", line)
    return _EMPHASIS_RE.sub(r"\2", line)


class MarkdownChunker(BaseChunker):
    """Split Markdown into paragraphs under an H1–H6 heading stack.

    Setext underlines (``===`` and ``---``) turn the paragraph above them
    into an H1 or H2. Content before the first heading has no heading chain
    and is labelled positionally. Fenced code blocks are kept verbatim as one
    paragraph.
    """

    def _blocks(self, content: str) -> list[Block]:
        blocks: list[Block] = []
        current: list[str] = []
        in_fence = False

        def end_paragraph() -> None:
            text = normalize_whitespace(" ".join(current))
            if text:
                blocks.append(Block(text))
            current.clear()

        for line in content.splitlines():
            if _FENCE_RE.match(line):
                if in_fence:
                    code = "\n".join(current).strip()
                    if code:
                        blocks.append(Block(code))
                    current.clear()
                else:
                    end_paragraph()
                in_fence = not in_fence
                continue
            if in_fence:
                current.append(line)
                continue

            heading = _HEADING_RE.match(line)
            if heading:
                end_paragraph()
                title = normalize_whitespace(_strip_inline(heading.group(2)))
                if title:
                    blocks.append(Block(title, level=len(heading.group(1))))
                continue

            setext = _SETEXT_RE.match(line)
            if setext:
                if current:
                    title = normalize_whitespace(" ".join(current))
                    current.clear()
                    if title:
                        blocks.append(Block(title, level=1 if setext.group(1)[0] == "=" else 2))
                    continue
                if setext.group(1)[0] == "-":
                    # Thematic break
                    continue

            if not line.strip():
                end_paragraph()
            else:
                current.append(_strip_inline(line))

        if in_fence:
            # Unterminated fence: keep whatever was collected
            text = "\n".join(current).strip()
            if text:
                blocks.append(Block(text))
        else:
            end_paragraph()
        return blocks
