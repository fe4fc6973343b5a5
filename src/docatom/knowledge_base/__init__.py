"""
Knowledge base module: documents, chunking and feature detection.

This module provides:
- HTML to Markdown-like preprocessing
- Heading-aware semantic chunking and sliding-window chunking
- Image and feature tag detection
- Chunking metrics
"""

from .chunker import (
    DocumentChunker,
    SemanticSectionChunker,
    SingleChunkStrategy,
    SlidingWindowChunker,
    chunk_document,
)
from .models import (
    Chunk,
    ChunkMetadata,
    ChunkStrategy,
    DocFormat,
    Document,
    ParentDocument,
    SearchFilter,
    SearchWeights,
)

__all__ = [
    "Chunk",
    "ChunkMetadata",
    "ChunkStrategy",
    "DocFormat",
    "Document",
    "DocumentChunker",
    "ParentDocument",
    "SearchFilter",
    "SearchWeights",
    "SemanticSectionChunker",
    "SingleChunkStrategy",
    "SlidingWindowChunker",
    "chunk_document",
]
