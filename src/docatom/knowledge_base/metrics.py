"""
Chunking metrics.

Summarizes how documents were cut into units: per-document counts, strategy
and format breakdowns, image coverage. Used by `docatom metrics` and written
out as a JSON snapshot on request.
"""

import json
import logging
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from .models import Chunk, ParentDocument, utcnow

logger = logging.getLogger(__name__)

STRATEGY_TAG_PREFIX = "chunk-strategy-"


class DocumentChunkCount(BaseModel):
    """Units produced for one document."""
    document_id: str
    units: int


class ChunkingMetrics(BaseModel):
    """Aggregate chunking statistics."""
    total_units: int = 0
    chunked_units: int = Field(0, description="Units tagged 'chunked'")
    documents_chunked: int = Field(0, description="Distinct parent documents")
    avg_units_per_document: float = 0.0
    max_units_per_document: int = 0
    units_with_strategy_tag: int = 0
    units_with_images: int = 0
    large_document_units: int = 0
    by_format: dict[str, int] = Field(default_factory=dict)
    by_strategy: dict[str, int] = Field(default_factory=dict)
    by_source: dict[str, int] = Field(default_factory=dict)
    top_documents: list[DocumentChunkCount] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utcnow)


def compute_chunking_metrics(
    chunks: Iterable[Chunk],
    parents: Optional[dict[str, ParentDocument]] = None,
    top_n: int = 10,
) -> ChunkingMetrics:
    """Compute metrics over a set of units.

    Args:
        chunks: Units to summarize
        parents: Optional parent lookup used for the per-source breakdown
        top_n: Number of most-chunked documents to list

    Returns:
        ChunkingMetrics
    """
    parents = parents or {}
    per_document: Counter = Counter()
    by_format: Counter = Counter()
    by_strategy: Counter = Counter()
    by_source: Counter = Counter()
    metrics = ChunkingMetrics()

    for chunk in chunks:
        metrics.total_units += 1
        if "chunked" in chunk.tags:
            metrics.chunked_units += 1
        if "has-image" in chunk.tags:
            metrics.units_with_images += 1
        if "large-document" in chunk.tags:
            metrics.large_document_units += 1

        strategies = [t[len(STRATEGY_TAG_PREFIX):] for t in chunk.tags if t.startswith(STRATEGY_TAG_PREFIX)]
        if strategies:
            metrics.units_with_strategy_tag += 1
            for strategy in strategies:
                by_strategy[strategy] += 1

        if chunk.format is not None:
            by_format[chunk.format.value] += 1

        if chunk.parent_document_id:
            per_document[chunk.parent_document_id] += 1
            parent = parents.get(chunk.parent_document_id)
            if parent is not None:
                by_source[parent.source_id or "unknown"] += 1

    if per_document:
        metrics.documents_chunked = len(per_document)
        metrics.avg_units_per_document = round(sum(per_document.values()) / len(per_document), 2)
        metrics.max_units_per_document = max(per_document.values())
        metrics.top_documents = [
            DocumentChunkCount(document_id=doc_id, units=count)
            for doc_id, count in per_document.most_common(top_n)
        ]

    metrics.by_format = dict(by_format)
    metrics.by_strategy = dict(by_strategy)
    metrics.by_source = dict(by_source)
    return metrics


def write_snapshot(metrics: ChunkingMetrics, path: str | Path) -> Path:
    """Write metrics as pretty-printed JSON, creating parent directories."""
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(metrics.model_dump(mode="json"), indent=2))
    logger.info(f"Wrote chunking metrics snapshot to {output}")
    return output


def format_report(metrics: ChunkingMetrics) -> str:
    """Human-readable summary for the CLI."""
    lines = [
        "Chunking metrics",
        f"  Documents chunked:      {metrics.documents_chunked}",
        f"  Total units:            {metrics.total_units}",
        f"  Chunked units:          {metrics.chunked_units}",
        f"  Avg units per document: {metrics.avg_units_per_document}",
        f"  Max units per document: {metrics.max_units_per_document}",
        f"  Units with strategy:    {metrics.units_with_strategy_tag}",
        f"  Units with images:      {metrics.units_with_images}",
    ]
    for title, breakdown in (
        ("By format", metrics.by_format),
        ("By strategy", metrics.by_strategy),
        ("By source", metrics.by_source),
    ):
        if breakdown:
            lines.append(f"  {title}:")
            for key, count in sorted(breakdown.items(), key=lambda kv: (-kv[1], kv[0])):
                lines.append(f"    {key}: {count}")
    if metrics.top_documents:
        lines.append("  Top documents:")
        for entry in metrics.top_documents:
            lines.append(f"    {entry.document_id}: {entry.units}")
    return "\n".join(lines)
