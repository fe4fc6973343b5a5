"""Tests for file loading and document ingestion."""
import pytest
from unittest.mock import AsyncMock, patch

from docatom.config import DocatomSettings
from docatom.errors import EmbeddingBatchError
from docatom.indexer.ingest import content_hash, ingest_document
from docatom.indexer.loaders import load_document
from docatom.knowledge_base.models import DocFormat


class FakeChunkStore:
    def __init__(self):
        self.hashes = {}
        self.saved = []

    async def get_content_hash(self, document_id):
        return self.hashes.get(document_id)

    async def save_document(self, document, chunks, content_hash):
        self.hashes[document.id] = content_hash
        self.saved.append((document.id, chunks))

    async def set_content_hash(self, document_id, content_hash):
        self.hashes[document_id] = content_hash


@pytest.mark.asyncio
async def test_ingest_stores_chunks(markdown_document, small_settings):
    store = FakeChunkStore()

    result = await ingest_document(markdown_document, store, small_settings)

    assert not result.skipped
    assert result.strategy == "markdown-semantic"
    assert result.chunks == len(store.saved[0][1])
    assert store.hashes[markdown_document.id] == content_hash(markdown_document)


@pytest.mark.asyncio
async def test_unchanged_document_is_skipped(markdown_document, small_settings):
    store = FakeChunkStore()
    await ingest_document(markdown_document, store, small_settings)

    result = await ingest_document(markdown_document, store, small_settings)

    assert result.skipped
    assert len(store.saved) == 1

    forced = await ingest_document(markdown_document, store, small_settings, force=True)
    assert not forced.skipped
    assert len(store.saved) == 2


@pytest.mark.asyncio
async def test_ingest_embeds_new_chunks(markdown_document, small_settings):
    store = FakeChunkStore()
    embed = AsyncMock(return_value={"embedded": 9})

    with patch("docatom.indexer.ingest.embed_document_chunks", embed):
        result = await ingest_document(markdown_document, store, small_settings, embedder=object())

    assert result.embedded == 9
    chunks = embed.await_args.args[0]
    assert len(chunks) == result.chunks
    assert embed.await_args.kwargs["schema_name"] == small_settings.database.schema_name


@pytest.mark.asyncio
async def test_failed_embedding_is_retried_on_next_run(markdown_document, small_settings):
    store = FakeChunkStore()
    embed = AsyncMock(side_effect=[EmbeddingBatchError(0, 3, RuntimeError("provider down")), {"embedded": 3}])

    with patch("docatom.indexer.ingest.embed_document_chunks", embed):
        with pytest.raises(EmbeddingBatchError):
            await ingest_document(markdown_document, store, small_settings, embedder=object())

        assert store.hashes[markdown_document.id] is None

        retry = await ingest_document(markdown_document, store, small_settings, embedder=object())

    assert not retry.skipped
    assert retry.embedded == 3
    assert embed.await_count == 2
    assert store.hashes[markdown_document.id] == content_hash(markdown_document)

    again = await ingest_document(markdown_document, store, small_settings, embedder=object())
    assert again.skipped


@pytest.mark.asyncio
async def test_embedding_disabled_in_settings(markdown_document):
    settings = DocatomSettings.model_validate({"embeddings": {"enabled": False}})
    embed = AsyncMock()

    with patch("docatom.indexer.ingest.embed_document_chunks", embed):
        result = await ingest_document(markdown_document, FakeChunkStore(), settings, embedder=object())

    assert result.embedded == 0
    embed.assert_not_awaited()


def test_load_markdown_file(tmp_path):
    path = tmp_path / "guide.md"
    path.write_text("# Guide\n\nHello")

    document = load_document(path, source_id="local")

    assert document.format == DocFormat.MARKDOWN
    assert document.title == "guide"
    assert document.content == "# Guide\n\nHello"
    assert document.metadata.source_id == "local"
    assert load_document(path).id == document.id


def test_load_html_and_text(tmp_path):
    html = tmp_path / "page.html"
    html.write_text("<h1>x</h1>")
    txt = tmp_path / "notes.txt"
    txt.write_text("plain\x00text")

    assert load_document(html).format == DocFormat.HTML
    assert load_document(txt).content == "plaintext"


def test_load_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_document(tmp_path / "missing.md")

    other = tmp_path / "data.csv"
    other.write_text("a,b")
    with pytest.raises(ValueError):
        load_document(other)
