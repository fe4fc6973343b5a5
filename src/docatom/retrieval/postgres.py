"""PostgreSQL retrieval providers.

- Full-text search over units using websearch_to_tsquery and ts_rank_cd
- Vector similarity search over unit embeddings using pgvector cosine distance
"""
from __future__ import annotations
import logging

import asyncpg

from docatom.db.schema_manager import schema_context
from docatom.db.store import CHUNK_COLUMNS, row_to_chunk
from docatom.errors import ProviderError
from docatom.knowledge_base.models import Chunk, SearchFilter

logger = logging.getLogger(__name__)


def vector_literal(vector: list[float]) -> str:
    """pgvector text format."""
    return "[" + ",".join(str(x) for x in vector) + "]"


class _PostgresProvider:
    def __init__(self, database_url: str, schema_name: str = "docatom"):
        self.database_url = database_url
        self.schema_name = schema_name

    async def _fetch(self, sql: str, *params) -> list[asyncpg.Record]:
        try:
            conn = await asyncpg.connect(dsn=self.database_url)
        except (OSError, asyncpg.PostgresError) as e:
            raise ProviderError(f"Could not connect to database: {e}") from e
        try:
            async with schema_context(conn, self.schema_name):
                return await conn.fetch(sql, *params)
        except asyncpg.PostgresError as e:
            raise ProviderError(f"{type(self).__name__} query failed: {e}") from e
        finally:
            await conn.close()


class PostgresLexicalProvider(_PostgresProvider):
    """Full-text search over units."""

    async def search_text(self, query: str, limit: int) -> list[Chunk]:
        """Units matching `query`, highest ts_rank_cd first."""
        rows = await self._fetch(
            f"""
            SELECT {CHUNK_COLUMNS},
                   ts_rank_cd(c.fts, websearch_to_tsquery('english', $1)) AS rank
            FROM chunk c
            WHERE c.fts @@ websearch_to_tsquery('english', $1)
            ORDER BY rank DESC, c.id
            LIMIT $2
            """,
            query,
            limit,
        )
        logger.debug(f"FTS returned {len(rows)} units for {query!r}")
        return [row_to_chunk(row) for row in rows]

    async def search_by_tag(self, tag: str, limit: int = 50) -> list[Chunk]:
        """Units carrying `tag`, newest first."""
        rows = await self._fetch(
            f"""
            SELECT {CHUNK_COLUMNS}
            FROM chunk c
            WHERE $1 = ANY(c.tags)
            ORDER BY c.created_at DESC, c.document_id, c.chunk_index
            LIMIT $2
            """,
            tag,
            limit,
        )
        return [row_to_chunk(row) for row in rows]


class PostgresVectorProvider(_PostgresProvider):
    """Cosine similarity search over unit embeddings."""

    async def search_by_vector(
        self,
        vector: list[float],
        limit: int,
        filters: SearchFilter | None = None,
    ) -> list[tuple[Chunk, float]]:
        """(unit, similarity) pairs, most similar first.

        Format and date filters are pushed down; source filtering happens in
        the fusion filter stage against parent documents.
        """
        conditions = []
        params: list = [vector_literal(vector), limit]

        if filters is not None:
            if filters.format:
                params.append(filters.format)
                conditions.append(f"c.format = ${len(params)}")
            if filters.date_from is not None:
                params.append(filters.date_from)
                conditions.append(f"c.created_at >= ${len(params)}")
            if filters.date_to is not None:
                params.append(filters.date_to)
                conditions.append(f"c.created_at <= ${len(params)}")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = await self._fetch(
            f"""
            SELECT {CHUNK_COLUMNS},
                   1 - (ce.embedding <=> $1::vector) AS similarity
            FROM chunk_embedding ce
            JOIN chunk c ON c.id = ce.chunk_id
            {where}
            ORDER BY ce.embedding <=> $1::vector, c.id
            LIMIT $2
            """,
            *params,
        )
        return [(row_to_chunk(row), float(row["similarity"])) for row in rows]
