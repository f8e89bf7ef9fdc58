"""Prompt templates and message builders for research, analysis and map-reduce."""

from __future__ import annotations

from collections.abc import Sequence

from deepread.ingest.models import Chunk
from deepread.rag.tokens import CHUNK_SEPARATOR, format_chunk_header

MAX_SNIPPETS = 8

# ------------------------------------------------------------------
# Research query (verbatim extraction, JSON output)
# ------------------------------------------------------------------

RESEARCH_SYSTEM_PROMPT = f"""\
You are a research extraction assistant for a nonfiction book writing tool. \
Your job is to find and extract relevant passages from the author's source \
materials that answer their research query.

## Your Task

Given a user's research query and a set of source material chunks, you must:

1. Identify which chunks contain information relevant to the query
2. Extract verbatim passages from relevant chunks. NEVER paraphrase or reword
3. Attribute each extracted passage to its source with the exact sourceId and sourceTitle from the chunk metadata
4. Synthesize a brief summary across all extracted passages

## Extraction Rules

- VERBATIM ONLY: Every snippet's `content` field must contain text that appears EXACTLY in the source chunk. Do not rephrase, summarize, or combine text from different chunks into a single snippet.
- One snippet per relevant passage: If a chunk contains multiple relevant passages, extract each as a separate snippet.
- Source attribution must match metadata: The `sourceId` and `sourceTitle` in each snippet must exactly match the values from the source chunk header.
- sourceLocation: Use the heading/section information from the chunk header (e.g., "Chapter 3 > Methodology"). If the chunk header shows "Section N of document", use that.
- relevance: One sentence explaining why this specific passage answers the query.
- summary: 2-4 sentences synthesizing the key findings across all extracted snippets.
- Maximum snippets: Extract at most {MAX_SNIPPETS} snippets. Prioritize the most relevant and information-dense passages.

## No Results

If NONE of the provided source chunks contain information relevant to the query:
- Set `noResults` to `true`
- Return an empty `snippets` array
- Set `summary` to a brief explanation that the source materials do not contain relevant information

## Response Format

Respond with a JSON object matching this schema:

{{
  "snippets": [
    {{
      "content": "Exact verbatim text from the source chunk",
      "sourceId": "source-id-from-metadata",
      "sourceTitle": "Source Title from Metadata",
      "sourceLocation": "Heading Chain from chunk header",
      "relevance": "Why this passage answers the query"
    }}
  ],
  "summary": "Brief synthesis across all snippets",
  "noResults": false
}}

Respond ONLY with valid JSON. No markdown fences, no explanation, no preamble."""


def format_chunks(chunks: Sequence[Chunk]) -> str:
    """Render chunks with attribution headers, separated by ``---`` rules."""
    return CHUNK_SEPARATOR.join(
        f"{format_chunk_header(c.source_title, c.source_id, c.heading_chain)}\n{c.text}"
        for c in chunks
    )


def build_research_user_message(query: str, chunks: Sequence[Chunk]) -> str:
    return (
        f"## Research Query\n\n{query}\n\n"
        "## Source Materials\n\n"
        "The following are chunks from the author's source materials. "
        "Extract verbatim passages that answer the research query above.\n\n"
        f"{format_chunks(chunks)}"
    )


# ------------------------------------------------------------------
# Single-source analysis (streaming)
# ------------------------------------------------------------------

ANALYSIS_SYSTEM_PROMPT = "\n".join(
    [
        "You are an expert research analyst helping an author analyze source material for their book.",
        "Follow the author's instruction carefully.",
        "Provide clear, well-structured analysis.",
        "Use markdown formatting for headings and lists when appropriate.",
        "Focus on actionable insights the author can use in their writing.",
    ]
)


def build_analysis_user_message(instruction: str, document: str) -> str:
    return (
        f"<instruction>\n{instruction}\n</instruction>\n\n"
        f"<document>\n{document}\n</document>\n\n"
        "Analyze the document according to the instruction above."
    )


# ------------------------------------------------------------------
# Map-reduce deep analysis
# ------------------------------------------------------------------

MAP_SYSTEM_PROMPT = (
    "You are an analysis assistant for a nonfiction book author. Analyze the provided "
    "source material according to the author's instruction. Produce a thorough "
    "intermediate summary capturing all key findings, relevant passages with citations, "
    "and structured insights. This summary will be synthesized with summaries from other "
    "document batches. Note which source each finding comes from."
)

REDUCE_SYSTEM_PROMPT = (
    "You are an analysis assistant for a nonfiction book author. Synthesize the following "
    "intermediate summaries into a single coherent analysis responding to the author's "
    "original instruction. Merge overlapping findings, maintain source attribution, "
    "organize by theme not by batch, and use markdown formatting."
)


def build_map_user_message(sources: Sequence[tuple[str, Sequence[Chunk]]], instruction: str) -> str:
    """Build one batch's prompt from ``(title, chunks)`` pairs and the instruction."""
    parts: list[str] = []
    for title, chunks in sources:
        parts.append(f'## Source: "{title}"\n')
        for chunk in chunks:
            parts.append(f"### {' > '.join(chunk.heading_chain)}\n")
            parts.append(chunk.text)
            parts.append("")
    return "\n".join(parts) + f"\n\n## Instruction\n\n{instruction}"


def build_reduce_user_message(intermediates: Sequence[str], instruction: str) -> str:
    summaries = CHUNK_SEPARATOR.join(
        f"### Batch {i + 1} Summary\n\n{text}" for i, text in enumerate(intermediates)
    )
    return f"## Original Instruction\n\n{instruction}\n\n## Intermediate Summaries\n\n{summaries}"
