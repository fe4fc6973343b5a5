"""Interfaces the hybrid search engine consumes.

Implementations live in `docatom.retrieval.postgres`, `docatom.db.store`
and `docatom.embeddings.provider`; tests use in-memory fakes.
"""
from __future__ import annotations
from typing import Iterable, Protocol, runtime_checkable

from docatom.knowledge_base.models import Chunk, ParentDocument, SearchFilter


@runtime_checkable
class LexicalProvider(Protocol):
    """Full-text search over units."""

    async def search_text(self, query: str, limit: int) -> list[Chunk]:
        """Units matching `query`, most relevant first."""
        ...


@runtime_checkable
class SemanticProvider(Protocol):
    """Query embedding and vector similarity search."""

    async def embed(self, text: str) -> list[float]:
        ...

    async def search_by_embedding(
        self,
        vector: list[float],
        limit: int,
        filters: SearchFilter | None = None,
    ) -> list[tuple[Chunk, float]]:
        """(unit, similarity) pairs, most similar first."""
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Batched parent-document lookup."""

    async def get_documents(self, ids: Iterable[str]) -> dict[str, ParentDocument]:
        """Documents keyed by id; unknown ids are absent from the result."""
        ...
