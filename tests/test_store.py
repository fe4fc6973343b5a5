"""Tests for row mapping and schema helpers that do not need a database."""
import json
from datetime import datetime, timezone

import pytest

from docatom.db.schema_manager import load_ddl, validate_schema_name
from docatom.db.store import row_to_chunk
from docatom.knowledge_base.models import DocFormat
from docatom.retrieval.postgres import vector_literal


def test_row_to_chunk_decodes_json_metadata():
    row = {
        "id": "u1",
        "document_id": "d1",
        "conversation_id": None,
        "chunk_index": 2,
        "content": "text",
        "title": "Doc - Intro",
        "context": "From document: Doc",
        "tags": ["chunked", "chunk-strategy-markdown-semantic"],
        "keywords": ["text"],
        "format": "markdown",
        "metadata": json.dumps({"strategy": "markdown-semantic", "chunk_index": 2, "chunk_count": 3}),
        "created_at": datetime(2024, 5, 1, tzinfo=timezone.utc),
    }

    chunk = row_to_chunk(row)

    assert chunk.index == 2
    assert chunk.tags == {"chunked", "chunk-strategy-markdown-semantic"}
    assert chunk.format == DocFormat.MARKDOWN
    assert chunk.metadata.chunk_count == 3
    assert chunk.timestamp.year == 2024


def test_vector_literal():
    assert vector_literal([0.5, 1.0, -2.0]) == "[0.5,1.0,-2.0]"


def test_ddl_dimension_is_configurable():
    ddl = load_ddl(768)

    assert "vector(768)" in ddl
    assert "vector(1536)" not in ddl
    assert "CREATE TABLE IF NOT EXISTS chunk" in ddl


def test_schema_name_validation():
    assert validate_schema_name("docatom_test") == "docatom_test"
    with pytest.raises(ValueError):
        validate_schema_name('bad"; DROP SCHEMA public; --')
