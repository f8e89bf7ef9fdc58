"""Tests for MarkdownChunker: heading chains, setext headings, inline markup, fences."""

from __future__ import annotations

from deepread.ingest.markdown import MarkdownChunker

_DOC = """\
# Title

Intro para.

## Methods

Method text.

### Detail

Detail text.

## Results

Result text.
"""


def test_heading_chain_follows_heading_levels():
    chunks = MarkdownChunker().chunk("s1", "Book", _DOC)

    assert [(c.text, c.heading_chain) for c in chunks] == [
        ("Intro para.", ["Title"]),
        ("Method text.", ["Title", "Methods"]),
        ("Detail text.", ["Title", "Methods", "Detail"]),
        ("Result text.", ["Title", "Results"]),
    ]


def test_heading_text_not_in_chunk_text():
    chunks = MarkdownChunker().chunk("s1", "Book", _DOC)
    assert all("#" not in c.text for c in chunks)
    assert all("Methods" not in c.text for c in chunks)


def test_section_property_joins_chain():
    chunks = MarkdownChunker().chunk("s1", "Book", _DOC)
    assert chunks[2].section == "Title > Methods > Detail"


def test_content_before_first_heading_is_positional():
    chunks = MarkdownChunker().chunk("s1", "Book", "Preamble.\n\n# Heading\n\nBody.")

    assert chunks[0].heading_chain == ["Section 1 of document"]
    assert chunks[1].heading_chain == ["Heading"]


def test_document_without_headings():
    chunks = MarkdownChunker(max_chars=10).chunk("s1", "Book", "Alpha one.\n\nBeta two.")
    assert [c.heading_chain for c in chunks] == [
        ["Section 1 of document"],
        ["Section 2 of document"],
    ]


def test_closing_hashes_stripped_from_heading():
    chunks = MarkdownChunker().chunk("s1", "Book", "## Setup ##\n\nText.")
    assert chunks[0].heading_chain == ["Setup"]


def test_inline_markup_stripped():
    text = "Some **bold**, _italic_ and [a link](http://example.com) with `code`."
    chunks = MarkdownChunker().chunk("s1", "Book", text)
    assert chunks[0].text == "Some bold, italic and a link with code."


def test_list_items_join_into_paragraph():
    chunks = MarkdownChunker().chunk("s1", "Book", "- item one\n- item two")
    assert chunks[0].text == "item one item two"


def test_fenced_code_kept_and_not_parsed_as_heading():
    text = "# Real\n\n```\n# not a heading\nx = 1\n```\n"
    chunks = MarkdownChunker().chunk("s1", "Book", text)

    assert len(chunks) == 1
    assert chunks[0].heading_chain == ["Real"]
    assert chunks[0].text == "# not a heading\nx = 1"


def test_unterminated_fence_keeps_content():
    chunks = MarkdownChunker().chunk("s1", "Book", "```\nprint('hi')\n")
    assert chunks[0].text == "print('hi')"


def test_heading_only_document_has_no_chunks():
    assert MarkdownChunker().chunk("s1", "Book", "# Just a title\n\n## And another") == []


def test_setext_headings():
    text = "Title\n=====\n\nIntro.\n\nSub\n---\n\nBody.\n"
    chunks = MarkdownChunker().chunk("s1", "Book", text)

    assert [(c.text, c.heading_chain) for c in chunks] == [
        ("Intro.", ["Title"]),
        ("Body.", ["Title", "Sub"]),
    ]


def test_dash_rule_after_blank_line_is_not_a_heading():
    chunks = MarkdownChunker().chunk("s1", "Book", "Para one.\n\n---\n\nPara two.")

    assert [(c.text, c.heading_chain) for c in chunks] == [
        ("Para one.\n\nPara two.", ["Section 1 of document"]),
    ]
