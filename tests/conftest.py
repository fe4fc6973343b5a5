"""Shared pytest fixtures for all tests."""
import pytest

from docatom.config import ChunkingConfig, DocatomSettings, SlidingWindowConfig
from docatom.knowledge_base.models import Document
from fakes import words


@pytest.fixture
def settings():
    """Default settings, independent of the process environment."""
    return DocatomSettings()


@pytest.fixture
def small_settings():
    """Settings with small thresholds so short fixtures get chunked."""
    return DocatomSettings(
        chunking=ChunkingConfig(min_tokens_per_chunk=10, max_tokens_per_chunk=100),
        sliding_window=SlidingWindowConfig(window_tokens=300, overlap_tokens=30, min_tokens_to_chunk=400),
    )


@pytest.fixture
def markdown_document():
    """Three sections of 180 tokens each, in 60-token paragraphs."""
    sections = []
    for name in ("Install", "Configure", "Operate"):
        paragraphs = [words(60, f"{name.lower()}{p}x") for p in range(3)]
        sections.append(f"# {name}\n\n" + "\n\n".join(paragraphs))
    return Document(
        id="doc-md",
        title="Guide",
        content="\n\n".join(sections),
        format="markdown",
        metadata={"sourceId": "docs"},
    )


@pytest.fixture
def pdf_document():
    """1200 tokens of extracted text from a 12 page PDF."""
    return Document(
        id="doc-pdf",
        title="Manual",
        content=words(1200),
        format="pdf",
        metadata={"numpages": 12},
    )
