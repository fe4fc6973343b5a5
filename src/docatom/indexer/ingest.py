"""Document ingestion: chunk, store and embed.

Re-ingesting a document whose content hash is unchanged is a no-op.
"""
from __future__ import annotations
import hashlib
import logging
from dataclasses import dataclass
from typing import Protocol

from docatom.config import DocatomSettings
from docatom.embeddings.embedder import BatchEmbedder, embed_document_chunks
from docatom.knowledge_base.chunker import DocumentChunker
from docatom.knowledge_base.models import Chunk, Document

logger = logging.getLogger(__name__)


class ChunkStore(Protocol):
    async def get_content_hash(self, document_id: str) -> str | None:
        ...

    async def save_document(self, document: Document, chunks: list[Chunk], content_hash: str | None) -> None:
        ...

    async def set_content_hash(self, document_id: str, content_hash: str) -> None:
        ...


@dataclass
class IngestResult:
    document_id: str
    chunks: int
    embedded: int = 0
    skipped: bool = False
    strategy: str | None = None


def content_hash(document: Document) -> str:
    """Hash over everything that affects chunking."""
    payload = f"{document.format.value}\x00{document.title}\x00{document.content}"
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


async def ingest_document(
    document: Document,
    store: ChunkStore,
    settings: DocatomSettings,
    embedder: BatchEmbedder | None = None,
    force: bool = False,
) -> IngestResult:
    """Chunk a document, replace its stored unit set and embed the new units.

    Args:
        document: Document to ingest
        store: Persistence for documents and units
        settings: Chunking, embedding and database settings
        embedder: Batch embedder; embedding is skipped when None
        force: Re-ingest even if the content hash is unchanged

    Returns:
        IngestResult

    Raises:
        EmbeddingBatchError: If embedding fails. Units stay stored without
            vectors and the document is not marked as indexed, so the next
            run retries it.
    """
    digest = content_hash(document)

    if not force:
        existing = await store.get_content_hash(document.id)
        if existing == digest:
            logger.info(f"Document {document.id} unchanged, skipping")
            return IngestResult(document_id=document.id, chunks=0, skipped=True)

    chunker = DocumentChunker(settings)
    chunks = chunker.chunk_document(document)
    will_embed = embedder is not None and bool(chunks) and settings.embeddings.enabled

    # NULL hash until vectors are stored
    await store.save_document(document, chunks, None if will_embed else digest)

    embedded = 0
    if will_embed:
        stats = await embed_document_chunks(
            chunks,
            embedder,
            database_url=settings.database.dsn,
            schema_name=settings.database.schema_name,
            model=settings.embeddings.model,
        )
        embedded = stats["embedded"]
        await store.set_content_hash(document.id, digest)

    return IngestResult(
        document_id=document.id,
        chunks=len(chunks),
        embedded=embedded,
        strategy=chunks[0].metadata.strategy if chunks else None,
    )
