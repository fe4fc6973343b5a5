"""Tests for the semantic, sliding-window and single-chunk strategies."""
import math

import pytest

from docatom.config import ChunkingConfig, DocatomSettings, SlidingWindowConfig
from docatom.errors import ConfigurationError
from docatom.knowledge_base.chunker import (
    DocumentChunker,
    DraftChunk,
    SemanticSectionChunker,
    SlidingWindowChunker,
    chunk_document,
    enforce_chunk_cap,
    estimate_page_range,
    expected_window_count,
    merge_small_drafts,
    token_windows,
)
from docatom.knowledge_base.models import Document
from docatom.knowledge_base.tokens import tokenize
from fakes import words


def _draft(tokens: int, label: str = "x") -> DraftChunk:
    return DraftChunk(content=" ".join([label] * tokens), tokens=tokens)


# ============ Semantic section chunker ============

def test_markdown_sections_are_split_and_tagged(markdown_document, small_settings):
    """Three ~180 token sections with a 100 token ceiling produce several chunks."""
    chunks = chunk_document(markdown_document, small_settings)

    assert len(chunks) > 1
    for chunk in chunks:
        assert "chunked" in chunk.tags
        assert "chunk-strategy-markdown-semantic" in chunk.tags
        assert chunk.metadata.chunk_count == len(chunks)


def test_markdown_chunks_carry_their_heading(markdown_document, small_settings):
    chunks = chunk_document(markdown_document, small_settings)

    headings = [c.metadata.heading for c in chunks]
    assert headings[0] == "Install"
    assert headings[-1] == "Operate"
    assert set(headings) == {"Install", "Configure", "Operate"}
    assert chunks[0].title == "Guide - Install"


def test_markdown_chunks_cover_all_text(markdown_document, small_settings):
    chunks = chunk_document(markdown_document, small_settings)

    rebuilt = "\n\n".join(c.content for c in chunks)
    assert tokenize(rebuilt) == tokenize(markdown_document.content)


def test_indexes_are_contiguous(markdown_document, small_settings):
    chunks = chunk_document(markdown_document, small_settings)

    assert [c.index for c in chunks] == list(range(len(chunks)))
    assert [c.metadata.chunk_index for c in chunks] == list(range(len(chunks)))
    assert all(c.parent_document_id == markdown_document.id for c in chunks)


def test_chunk_cap_is_enforced(markdown_document):
    settings = DocatomSettings(chunking=ChunkingConfig(
        min_tokens_per_chunk=10, max_tokens_per_chunk=100, max_chunks_per_document=4,
    ))

    chunks = chunk_document(markdown_document, settings)

    assert len(chunks) <= 4
    rebuilt = "\n\n".join(c.content for c in chunks)
    assert tokenize(rebuilt) == tokenize(markdown_document.content)


def test_small_section_merges_into_following():
    content = "# Intro\n\nshort note\n\n# Details\n\n" + words(50)
    doc = Document(id="d1", title="T", content=content, format="markdown")
    settings = DocatomSettings(chunking=ChunkingConfig(min_tokens_per_chunk=20, max_tokens_per_chunk=100))

    chunks = chunk_document(doc, settings)

    assert len(chunks) == 1
    assert chunks[0].metadata.heading == "Intro"
    assert "short note" in chunks[0].content
    assert "chunked" not in chunks[0].tags


def test_document_without_headings_is_single_chunk(settings):
    doc = Document(id="d2", title="Notes", content="Just a few words of plain prose.", format="markdown")

    chunks = chunk_document(doc, settings)

    assert len(chunks) == 1
    assert chunks[0].tags == {"chunk-strategy-markdown-semantic"}
    assert chunks[0].metadata.chunk_count == 1


def test_headings_inside_code_fences_do_not_split():
    content = "# Real\n\n" + words(30) + "\n\n```\n# not a heading\n```\n\n" + words(30, "tail")
    chunker = SemanticSectionChunker(ChunkingConfig(min_tokens_per_chunk=0, max_tokens_per_chunk=400))

    drafts = chunker.split(content)

    assert len(drafts) == 1
    assert drafts[0].heading == "Real"
    assert "# not a heading" in drafts[0].content


def test_heading_text_keeps_trailing_hash_characters():
    content = "# C#\n\n" + words(10) + "\n\n## Setup ##\n\n" + words(10, "s")
    chunker = SemanticSectionChunker(ChunkingConfig(min_tokens_per_chunk=0, max_tokens_per_chunk=400))

    drafts = chunker.split(content)

    assert [d.heading for d in drafts] == ["C#", "Setup"]


def test_oversized_paragraph_is_split_by_words():
    chunker = SemanticSectionChunker(ChunkingConfig(min_tokens_per_chunk=0, max_tokens_per_chunk=50))

    drafts = chunker.split(words(120))

    assert [d.tokens for d in drafts] == [50, 50, 20]


@pytest.mark.parametrize("content", ["", "   \n\n\t  "])
def test_empty_document_yields_no_chunks(settings, content):
    doc = Document(id="empty", title="Empty", content=content, format="markdown")

    assert chunk_document(doc, settings) == []


def test_html_is_preprocessed_before_chunking():
    html = (
        "<html><head><title>x</title><script>var secret = 1;</script></head><body>"
        "<h1>Overview</h1><p>" + words(30) + "</p>"
        "<h2>Usage</h2><ul><li>first step</li><li>second step</li></ul>"
        "</body></html>"
    )
    doc = Document(id="h1", title="Page", content=html, format="html")
    settings = DocatomSettings(chunking=ChunkingConfig(min_tokens_per_chunk=0, max_tokens_per_chunk=400))

    chunks = chunk_document(doc, settings)

    assert [c.metadata.heading for c in chunks] == ["Overview", "Usage"]
    assert "- first step" in chunks[1].content
    assert all("secret" not in c.content for c in chunks)
    assert all("chunk-strategy-markdown-semantic" in c.tags for c in chunks)


def test_images_become_tags_and_keywords(settings):
    content = "# Architecture\n\n![System diagram overview](arch.png)\n\nThe services talk over HTTP."
    doc = Document(id="img", title="Arch", content=content, format="markdown")

    chunk = chunk_document(doc, settings)[0]

    assert {"has-image", "image"} <= chunk.tags
    assert chunk.metadata.image_count == 1
    assert "system" in chunk.keywords
    assert "diagram" in chunk.keywords


def test_html_images_survive_preprocessing(settings):
    html = '<h1>Pics</h1><p>A chart <img src="chart.png" alt="sales chart"> here</p>'
    doc = Document(id="pics", title="Pics", content=html, format="html")

    chunk = chunk_document(doc, settings)[0]

    assert "![sales chart](chart.png)" in chunk.content
    assert "has-image" in chunk.tags
    assert chunk.metadata.image_count == 1
    assert "sales" in chunk.keywords


def test_large_document_tag():
    content = "\n\n".join(f"# Part {i}\n\n" + words(20, f"p{i}w") for i in range(15))
    doc = Document(id="big", title="Big", content=content, format="markdown")
    settings = DocatomSettings(chunking=ChunkingConfig(min_tokens_per_chunk=5, max_tokens_per_chunk=100))

    chunks = chunk_document(doc, settings)

    assert len(chunks) == 15
    assert all("large-document" in c.tags for c in chunks)


def test_chunking_is_deterministic(markdown_document, small_settings):
    first = chunk_document(markdown_document, small_settings)
    second = chunk_document(markdown_document, small_settings)

    assert [c.id for c in first] == [c.id for c in second]
    assert [c.content for c in first] == [c.content for c in second]
    assert len({c.id for c in first}) == len(first)


def test_strategy_failure_falls_back_to_single_chunk(monkeypatch, markdown_document, small_settings):
    def boom(self, text, document=None):
        raise RuntimeError("parser exploded")

    monkeypatch.setattr(SemanticSectionChunker, "split", boom)

    chunks = chunk_document(markdown_document, small_settings)

    assert len(chunks) == 1
    assert "chunk-strategy-single-chunk" in chunks[0].tags
    assert chunks[0].content == markdown_document.content.strip()


def test_malformed_markdown_does_not_raise(settings):
    content = "```python\n# unterminated fence\n\n## heading?\n\x00\r\nmore\r\n###"
    doc = Document(id="bad", title="Bad", content=content, format="markdown")

    chunks = chunk_document(doc, settings)

    assert len(chunks) == 1


# ============ Guardrails ============

def test_merge_small_prefers_following_chunk():
    merged = merge_small_drafts([_draft(1), _draft(10), _draft(10)], min_tokens=5)
    assert [d.tokens for d in merged] == [11, 10]


def test_merge_small_last_chunk_merges_backwards():
    merged = merge_small_drafts([_draft(10), _draft(10), _draft(1)], min_tokens=5)
    assert [d.tokens for d in merged] == [10, 11]


def test_merge_small_keeps_single_small_chunk():
    merged = merge_small_drafts([_draft(2)], min_tokens=5)
    assert [d.tokens for d in merged] == [2]


def test_cap_merges_smallest_adjacent_pair():
    capped = enforce_chunk_cap([_draft(5), _draft(1), _draft(1), _draft(5)], max_chunks=3)
    assert [d.tokens for d in capped] == [5, 2, 5]


def test_cap_prefers_leftmost_pair_on_ties():
    capped = enforce_chunk_cap([_draft(2, "a"), _draft(2, "b"), _draft(2, "c")], max_chunks=2)
    assert [d.tokens for d in capped] == [4, 2]
    assert capped[0].content == "a a\n\nb b"


# ============ Sliding-window chunker ============

def test_pdf_sliding_windows(pdf_document, small_settings):
    """1200 tokens, 300 token windows overlapping by 30, 12 pages."""
    chunks = chunk_document(pdf_document, small_settings)

    assert len(chunks) == math.ceil((1200 - 30) / (300 - 30))
    first = chunks[0]
    assert first.metadata.token_start == 0
    for chunk in chunks:
        assert 1 <= chunk.metadata.page_start <= 12
        assert chunk.metadata.page_start <= chunk.metadata.page_end <= 12
        assert "chunk-strategy-pdf-sliding-window" in chunk.tags
        assert "chunked" in chunk.tags
    assert chunks[-1].metadata.token_end == 1199
    assert chunks[-1].metadata.page_end == 12


def test_consecutive_windows_overlap(pdf_document, small_settings):
    chunks = chunk_document(pdf_document, small_settings)

    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.metadata.token_start == prev.metadata.token_end + 1 - 30


def test_pdf_context_label(pdf_document, small_settings):
    chunk = chunk_document(pdf_document, small_settings)[0]

    assert chunk.context == "From document: Manual (chunk 1/5 • pp. 1-3)"
    assert chunk.title == "Manual - pp. 1-3"


def test_short_pdf_stays_whole(small_settings):
    doc = Document(id="p", title="Short", content=words(100), format="pdf", metadata={"numpages": 2})

    chunks = chunk_document(doc, small_settings)

    assert len(chunks) == 1
    assert chunks[0].tags == {"chunk-strategy-pdf-sliding-window"}
    assert chunks[0].metadata.page_start == 1
    assert chunks[0].metadata.page_end == 2


def test_pdf_without_page_count_has_no_pages(small_settings):
    doc = Document(id="p", title="NoPages", content=words(1000), format="pdf")

    chunks = chunk_document(doc, small_settings)

    assert len(chunks) > 1
    assert all(c.metadata.page_start is None and c.metadata.page_end is None for c in chunks)


def test_sliding_window_cap_keeps_full_coverage():
    doc = Document(id="p", title="Long", content=words(1200), format="pdf", metadata={"numpages": 10})
    settings = DocatomSettings(
        chunking=ChunkingConfig(max_chunks_per_document=5),
        sliding_window=SlidingWindowConfig(window_tokens=100, overlap_tokens=0, min_tokens_to_chunk=0),
    )

    chunks = chunk_document(doc, settings)

    assert len(chunks) == 5
    assert chunks[0].metadata.token_start == 0
    assert chunks[-1].metadata.token_end == 1199
    rebuilt = " ".join(c.content for c in chunks)
    assert tokenize(rebuilt) == tokenize(doc.content)


def test_overlap_not_below_window_is_rejected():
    with pytest.raises(ValueError):
        SlidingWindowConfig(window_tokens=100, overlap_tokens=100)

    config = SlidingWindowConfig.model_construct(window_tokens=100, overlap_tokens=100, min_tokens_to_chunk=0)
    with pytest.raises(ConfigurationError):
        SlidingWindowChunker(config)


def test_token_windows_clip_last_window():
    assert token_windows(10, 4, 1) == [(0, 4), (3, 7), (6, 10)]
    assert expected_window_count(10, 4, 1) == 3


@pytest.mark.parametrize(
    "start,end,total,numpages,expected",
    [
        (0, 299, 1200, 12, (1, 3)),
        (1080, 1199, 1200, 12, (11, 12)),
        (0, 9, 10, 1, (1, 1)),
        (0, 9, 10, None, (None, None)),
    ],
)
def test_estimate_page_range(start, end, total, numpages, expected):
    assert estimate_page_range(start, end, total, numpages) == expected


# ============ Strategy selection ============

def test_strategy_selection_by_format(settings):
    chunker = DocumentChunker(settings)

    def doc(fmt):
        return Document(id=fmt, title=fmt, content="text", format=fmt)

    assert chunker.select_strategy(doc("pdf")).strategy_id == "pdf-sliding-window"
    assert chunker.select_strategy(doc("markdown")).strategy_id == "markdown-semantic"
    assert chunker.select_strategy(doc("txt")).strategy_id == "markdown-semantic"
    assert chunker.select_strategy(doc("html")).strategy_id == "markdown-semantic"
