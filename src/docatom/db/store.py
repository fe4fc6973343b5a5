"""PostgreSQL persistence for documents and their units."""
from __future__ import annotations
import json
import logging
from typing import Any, Iterable

import asyncpg

from docatom.db.schema_manager import schema_context
from docatom.errors import ProviderError
from docatom.knowledge_base.models import Chunk, ChunkMetadata, DocFormat, Document, ParentDocument

logger = logging.getLogger(__name__)

CHUNK_COLUMNS = """
    c.id, c.document_id, c.conversation_id, c.chunk_index, c.content, c.title,
    c.context, c.tags, c.keywords, c.format, c.metadata, c.created_at
"""


def _json(value: Any) -> dict:
    """asyncpg returns JSONB as text unless a codec is registered."""
    if value is None:
        return {}
    if isinstance(value, (bytes, str)):
        return json.loads(value)
    return dict(value)


def row_to_chunk(row: asyncpg.Record | dict) -> Chunk:
    """Build a Chunk from a row selected with CHUNK_COLUMNS."""
    return Chunk(
        id=row["id"],
        parent_document_id=row["document_id"],
        conversation_id=row["conversation_id"],
        index=row["chunk_index"],
        content=row["content"],
        title=row["title"] or "",
        context=row["context"] or "",
        tags=set(row["tags"] or []),
        keywords=list(row["keywords"] or []),
        format=DocFormat(row["format"]) if row["format"] else None,
        metadata=ChunkMetadata.model_validate(_json(row["metadata"])),
        timestamp=row["created_at"],
    )


class PostgresDocumentStore:
    """Documents and units in PostgreSQL.

    Implements the DocumentStore protocol used by the search engine's filter
    stage, plus the writes the ingester needs.
    """

    def __init__(self, database_url: str, schema_name: str = "docatom"):
        self.database_url = database_url
        self.schema_name = schema_name

    async def _connect(self) -> asyncpg.Connection:
        try:
            return await asyncpg.connect(dsn=self.database_url)
        except (OSError, asyncpg.PostgresError) as e:
            raise ProviderError(f"Could not connect to database: {e}") from e

    async def get_documents(self, ids: Iterable[str]) -> dict[str, ParentDocument]:
        """Resolve parent documents in one query."""
        id_list = list(dict.fromkeys(ids))
        if not id_list:
            return {}

        conn = await self._connect()
        try:
            async with schema_context(conn, self.schema_name):
                rows = await conn.fetch(
                    "SELECT id, format, metadata FROM document WHERE id = ANY($1::text[])",
                    id_list,
                )
        finally:
            await conn.close()

        return {
            row["id"]: ParentDocument(id=row["id"], format=row["format"], metadata=_json(row["metadata"]))
            for row in rows
        }

    async def get_content_hash(self, document_id: str) -> str | None:
        conn = await self._connect()
        try:
            async with schema_context(conn, self.schema_name):
                return await conn.fetchval("SELECT content_hash FROM document WHERE id = $1", document_id)
        finally:
            await conn.close()

    async def save_document(self, document: Document, chunks: list[Chunk], content_hash: str | None) -> None:
        """Upsert a document and atomically replace its unit set.

        Old units (and, by cascade, their embeddings) are deleted in the same
        transaction that inserts the new ones. A NULL content hash marks the
        document as not yet fully indexed.
        """
        conn = await self._connect()
        try:
            async with schema_context(conn, self.schema_name):
                async with conn.transaction():
                    await conn.execute(
                        """
                        INSERT INTO document (id, title, format, metadata, content_hash, created_at, updated_at)
                        VALUES ($1, $2, $3, $4::jsonb, $5, $6, now())
                        ON CONFLICT (id) DO UPDATE SET
                            title = EXCLUDED.title,
                            format = EXCLUDED.format,
                            metadata = EXCLUDED.metadata,
                            content_hash = EXCLUDED.content_hash,
                            updated_at = now()
                        """,
                        document.id,
                        document.title,
                        document.format.value,
                        json.dumps(document.metadata.model_dump(mode="json", by_alias=True, exclude_none=True)),
                        content_hash,
                        document.created,
                    )

                    await conn.execute("DELETE FROM chunk WHERE document_id = $1", document.id)

                    await conn.executemany(
                        """
                        INSERT INTO chunk (id, document_id, conversation_id, chunk_index, content, title,
                                           context, tags, keywords, format, metadata, created_at)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11::jsonb, $12)
                        """,
                        [
                            (
                                chunk.id,
                                chunk.parent_document_id,
                                chunk.conversation_id,
                                chunk.index,
                                chunk.content,
                                chunk.title,
                                chunk.context,
                                sorted(chunk.tags),
                                chunk.keywords,
                                chunk.format.value if chunk.format else None,
                                json.dumps(chunk.metadata.model_dump(mode="json")),
                                chunk.timestamp,
                            )
                            for chunk in chunks
                        ],
                    )
        finally:
            await conn.close()

        logger.info(f"Stored document {document.id} with {len(chunks)} units")

    async def set_content_hash(self, document_id: str, content_hash: str) -> None:
        conn = await self._connect()
        try:
            async with schema_context(conn, self.schema_name):
                await conn.execute(
                    "UPDATE document SET content_hash = $2, updated_at = now() WHERE id = $1",
                    document_id,
                    content_hash,
                )
        finally:
            await conn.close()

    async def list_chunks(self, document_id: str | None = None) -> list[Chunk]:
        """All units, or the units of one document, in index order."""
        conn = await self._connect()
        try:
            async with schema_context(conn, self.schema_name):
                if document_id:
                    rows = await conn.fetch(
                        f"SELECT {CHUNK_COLUMNS} FROM chunk c WHERE c.document_id = $1 ORDER BY c.chunk_index",
                        document_id,
                    )
                else:
                    rows = await conn.fetch(
                        f"SELECT {CHUNK_COLUMNS} FROM chunk c ORDER BY c.document_id, c.chunk_index"
                    )
        finally:
            await conn.close()

        return [row_to_chunk(row) for row in rows]

    async def list_documents(self) -> dict[str, ParentDocument]:
        conn = await self._connect()
        try:
            async with schema_context(conn, self.schema_name):
                rows = await conn.fetch("SELECT id, format, metadata FROM document")
        finally:
            await conn.close()

        return {
            row["id"]: ParentDocument(id=row["id"], format=row["format"], metadata=_json(row["metadata"]))
            for row in rows
        }
