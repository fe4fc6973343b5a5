"""Main embeddings pipeline.

Coordinates batched embedding generation and storage. A bulk call either
embeds every input or fails as a whole: vectors are only returned (and
stored) once all batches have succeeded.
"""
from __future__ import annotations
import logging
from typing import Awaitable, Callable

import asyncpg

from docatom.db.schema_manager import schema_context
from docatom.embeddings.rate_limiter import TokenBucketRateLimiter
from docatom.errors import EmbeddingBatchError, ProviderError
from docatom.knowledge_base.models import Chunk
from docatom.retrieval.postgres import vector_literal

logger = logging.getLogger(__name__)

EmbedFunc = Callable[[list[str]], Awaitable[list[list[float]]]]


class BatchEmbedder:
    """Embeds texts in fixed-size batches paced by a rate limiter."""

    def __init__(
        self,
        embed_func: EmbedFunc,
        batch_size: int = 100,
        rate_limiter: TokenBucketRateLimiter | None = None,
        max_chunk_chars: int | None = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.embed_func = embed_func
        self.batch_size = batch_size
        self.rate_limiter = rate_limiter
        self.max_chunk_chars = max_chunk_chars

    def _prepare(self, text: str) -> str:
        if self.max_chunk_chars and len(text) > self.max_chunk_chars:
            logger.warning(f"Truncating text from {len(text)} to {self.max_chunk_chars} chars")
            return text[:self.max_chunk_chars]
        return text

    async def embed_all(self, texts: list[str]) -> list[list[float]]:
        """Embed all texts in order.

        Raises:
            EmbeddingBatchError: A batch failed; `start`/`end` give its
                half-open index range. No vectors are returned.
        """
        if not texts:
            return []

        prepared = [self._prepare(t) for t in texts]
        vectors: list[list[float]] = []
        total = len(prepared)

        for batch_start in range(0, total, self.batch_size):
            batch_end = min(batch_start + self.batch_size, total)
            batch = prepared[batch_start:batch_end]

            if self.rate_limiter is not None:
                await self.rate_limiter.acquire()

            try:
                batch_vectors = await self.embed_func(batch)
            except Exception as e:
                logger.error(f"Embedding batch {batch_start}-{batch_end} failed: {e}")
                raise EmbeddingBatchError(batch_start, batch_end, e) from e

            if len(batch_vectors) != len(batch):
                raise EmbeddingBatchError(
                    batch_start,
                    batch_end,
                    ProviderError(f"expected {len(batch)} vectors, got {len(batch_vectors)}"),
                )

            vectors.extend(batch_vectors)
            logger.debug(f"Batch {batch_start // self.batch_size + 1}: embedded {len(vectors)}/{total}")

        return vectors


async def embed_document_chunks(
    chunks: list[Chunk],
    embedder: BatchEmbedder,
    database_url: str,
    schema_name: str = "docatom",
    model: str | None = None,
) -> dict[str, int]:
    """Embed units and upsert their vectors.

    Args:
        chunks: Units to embed
        embedder: Batch embedder
        database_url: Database connection string
        schema_name: Schema holding the chunk_embedding table
        model: Model name recorded with each vector

    Returns:
        Statistics dict with counts

    Raises:
        EmbeddingBatchError: If any batch fails; nothing is written
    """
    if not chunks:
        return {"embedded": 0}

    vectors = await embedder.embed_all([chunk.content for chunk in chunks])

    conn = await asyncpg.connect(dsn=database_url)
    try:
        async with schema_context(conn, schema_name):
            async with conn.transaction():
                await conn.executemany(
                    """
                    INSERT INTO chunk_embedding (chunk_id, embedding, model)
                    VALUES ($1, $2::vector, $3)
                    ON CONFLICT (chunk_id)
                    DO UPDATE SET embedding = EXCLUDED.embedding, model = EXCLUDED.model
                    """,
                    [(chunk.id, vector_literal(vector), model) for chunk, vector in zip(chunks, vectors)],
                )
    finally:
        await conn.close()

    logger.info(f"Embedded {len(vectors)} units")
    return {"embedded": len(vectors)}
