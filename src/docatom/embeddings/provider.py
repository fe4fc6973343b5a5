"""Semantic provider backed by an OpenAI-compatible embedding API and pgvector."""
from __future__ import annotations
import logging
from typing import Protocol

from docatom.config import EmbeddingsConfig
from docatom.embeddings.cache import EmbeddingCache
from docatom.embeddings.embedder import BatchEmbedder
from docatom.embeddings.openai_compat import openai_embed
from docatom.embeddings.rate_limiter import TokenBucketRateLimiter
from docatom.knowledge_base.models import Chunk, SearchFilter

logger = logging.getLogger(__name__)


class VectorSearcher(Protocol):
    async def search_by_vector(
        self,
        vector: list[float],
        limit: int,
        filters: SearchFilter | None = None,
    ) -> list[tuple[Chunk, float]]:
        ...


class EmbeddingProvider:
    """Implements SemanticProvider: cached query embedding plus vector search."""

    def __init__(
        self,
        config: EmbeddingsConfig,
        vector_searcher: VectorSearcher | None = None,
        cache: EmbeddingCache | None = None,
    ):
        self.config = config
        self.vector_searcher = vector_searcher
        self.cache = cache if cache is not None else EmbeddingCache(config.cache_size)

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts (no caching)."""
        return await openai_embed(
            texts,
            model=self.config.model,
            base_url=self.config.base_url,
            api_key=self.config.api_key,
            batch_size=self.config.batch_size,
            timeout=self.config.timeout_seconds,
        )

    async def embed(self, text: str) -> list[float]:
        cached = self.cache.get(self.config.model, text)
        if cached is not None:
            return cached

        vectors = await self.embed_texts([text[:self.config.max_chunk_chars]])
        vector = vectors[0]
        if len(vector) != self.config.dimension:
            logger.warning(
                f"Embedding dimension {len(vector)} differs from configured {self.config.dimension}"
            )
        self.cache.put(self.config.model, text, vector)
        return vector

    async def search_by_embedding(
        self,
        vector: list[float],
        limit: int,
        filters: SearchFilter | None = None,
    ) -> list[tuple[Chunk, float]]:
        if self.vector_searcher is None:
            return []
        return await self.vector_searcher.search_by_vector(vector, limit, filters)

    def batch_embedder(self) -> BatchEmbedder:
        """A BatchEmbedder paced at the configured batches per second."""
        return BatchEmbedder(
            self.embed_texts,
            batch_size=self.config.batch_size,
            rate_limiter=TokenBucketRateLimiter(self.config.batches_per_second),
            max_chunk_chars=self.config.max_chunk_chars,
        )
