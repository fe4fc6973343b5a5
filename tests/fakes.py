"""In-memory implementations of the retrieval protocols for tests."""
import asyncio
from datetime import datetime, timezone

from docatom.knowledge_base.models import Chunk, ChunkMetadata, ParentDocument


def make_unit(
    unit_id: str,
    parent: str | None = None,
    tags: tuple[str, ...] = (),
    conversation_id: str | None = None,
    timestamp: datetime | None = None,
    content: str = "",
) -> Chunk:
    return Chunk(
        id=unit_id,
        parent_document_id=parent,
        conversation_id=conversation_id,
        index=0,
        content=content or f"content of {unit_id}",
        tags=set(tags),
        metadata=ChunkMetadata(strategy="markdown-semantic", chunk_index=0, chunk_count=1),
        timestamp=timestamp or datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class FakeLexicalProvider:
    def __init__(self, results=None, error=None, delay=0.0):
        self.results = list(results or [])
        self.error = error
        self.delay = delay
        self.calls = []

    async def search_text(self, query, limit):
        self.calls.append((query, limit))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.results[:limit]


class FakeSemanticProvider:
    def __init__(self, results=None, embed_error=None, search_error=None, delay=0.0):
        self.results = list(results or [])
        self.embed_error = embed_error
        self.search_error = search_error
        self.delay = delay
        self.embed_calls = []
        self.search_calls = []

    async def embed(self, text):
        self.embed_calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.embed_error is not None:
            raise self.embed_error
        return [0.1, 0.2, 0.3]

    async def search_by_embedding(self, vector, limit, filters=None):
        self.search_calls.append((vector, limit, filters))
        if self.search_error is not None:
            raise self.search_error
        return [(unit, 1.0 - i * 0.01) for i, unit in enumerate(self.results[:limit])]


class FakeDocumentStore:
    def __init__(self, documents=None):
        self.documents = {
            doc_id: ParentDocument(id=doc_id, format=fmt, metadata=meta)
            for doc_id, (fmt, meta) in (documents or {}).items()
        }
        self.calls = []

    async def get_documents(self, ids):
        ids = list(ids)
        self.calls.append(ids)
        return {i: self.documents[i] for i in ids if i in self.documents}


def words(count: int, prefix: str = "word") -> str:
    return " ".join(f"{prefix}{i}" for i in range(count))
