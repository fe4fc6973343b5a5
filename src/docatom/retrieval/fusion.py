"""Reciprocal Rank Fusion and the post-fusion filter stage.

Each ranked list contributes `weight / (k + rank + 1)` per unit (rank is
zero-based); contributions from both lists sum. The filter stage then drops
units whose parent document fails the source/format filter, adds small
boosts for structured and image-bearing units, applies the date range, and
sorts.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from docatom.knowledge_base.models import Chunk, ParentDocument, SearchFilter, SearchWeights

logger = logging.getLogger(__name__)

DEFAULT_RRF_K = 60
STRATEGY_TAG_PREFIX = "chunk-strategy-"
# Unsplit fallback units carry a strategy tag but earn no structure boost
UNSTRUCTURED_STRATEGY_TAGS = {"chunk-strategy-single-chunk"}


@dataclass
class FusionCandidate:
    """A unit with its per-list contributions."""
    unit: Chunk
    lexical_score: float = 0.0
    semantic_score: float = 0.0
    boost: float = 0.0

    # Explainability fields
    lexical_rank: int | None = None  # 0-indexed, None if not in lexical results
    semantic_rank: int | None = None  # 0-indexed, None if not in semantic results
    similarity: float | None = None  # raw vector similarity

    @property
    def combined_score(self) -> float:
        return self.lexical_score + self.semantic_score + self.boost


def rrf_contribution(rank: int, weight: float, k: int = DEFAULT_RRF_K) -> float:
    """Score contributed by a zero-based rank in a list with the given weight."""
    return weight / (k + rank + 1)


def reciprocal_rank_fusion(
    lexical: list[Chunk],
    semantic: list[tuple[Chunk, float]] | list[Chunk],
    weights: SearchWeights | None = None,
    k: int = DEFAULT_RRF_K,
) -> list[FusionCandidate]:
    """Fuse two ranked lists.

    Args:
        lexical: Units in lexical relevance order
        semantic: Units (or (unit, similarity) pairs) in similarity order
        weights: List weights (0.6 lexical / 0.4 semantic by default)
        k: Smoothing constant

    Returns:
        Candidates in first-seen order (lexical list first); a unit repeated
        within one list only counts at its best rank.
    """
    weights = weights or SearchWeights()
    candidates: dict[str, FusionCandidate] = {}

    for rank, unit in enumerate(lexical):
        candidate = candidates.get(unit.id)
        if candidate is None:
            candidate = candidates[unit.id] = FusionCandidate(unit=unit)
        if candidate.lexical_rank is None:
            candidate.lexical_rank = rank
            candidate.lexical_score = rrf_contribution(rank, weights.lexical, k)

    for rank, item in enumerate(semantic):
        unit, similarity = item if isinstance(item, tuple) else (item, None)
        candidate = candidates.get(unit.id)
        if candidate is None:
            candidate = candidates[unit.id] = FusionCandidate(unit=unit)
        if candidate.semantic_rank is None:
            candidate.semantic_rank = rank
            candidate.semantic_score = rrf_contribution(rank, weights.semantic, k)
            candidate.similarity = similarity

    return list(candidates.values())


def parent_ids(candidates: Iterable[FusionCandidate]) -> list[str]:
    """Distinct parent document ids in candidate order."""
    seen: dict[str, None] = {}
    for candidate in candidates:
        if candidate.unit.parent_document_id:
            seen.setdefault(candidate.unit.parent_document_id, None)
    return list(seen)


def _parent_matches(parent: ParentDocument, filters: SearchFilter) -> bool:
    if filters.format and parent.format != filters.format:
        return False
    if filters.source and parent.source_id != filters.source:
        return False
    return True


def apply_parent_filters(
    candidates: list[FusionCandidate],
    filters: SearchFilter | None,
    parents: dict[str, ParentDocument],
    conversation_source: str = "claude",
) -> list[FusionCandidate]:
    """Keep units whose parent document satisfies the source/format filter.

    Units without a parent are dropped, except that a `source` filter equal to
    `conversation_source` keeps units carrying a conversation reference.
    """
    if filters is None or not filters.needs_parent:
        return candidates

    keep_conversations = filters.source is not None and filters.source == conversation_source

    if not parent_ids(candidates):
        if keep_conversations:
            return [c for c in candidates if c.unit.conversation_id]
        return []

    kept = []
    for candidate in candidates:
        parent_id = candidate.unit.parent_document_id
        if not parent_id:
            if keep_conversations and candidate.unit.conversation_id:
                kept.append(candidate)
            continue
        parent = parents.get(parent_id)
        if parent is not None and _parent_matches(parent, filters):
            kept.append(candidate)

    logger.debug(f"Parent filter kept {len(kept)}/{len(candidates)} candidates")
    return kept


def apply_boosts(
    candidates: list[FusionCandidate],
    strategy_boost: float = 0.05,
    image_boost: float = 0.02,
) -> list[FusionCandidate]:
    """Set each candidate's boost from its tags. Applying twice changes nothing."""
    for candidate in candidates:
        tags = candidate.unit.tags
        boost = 0.0
        if any(tag.startswith(STRATEGY_TAG_PREFIX) and tag not in UNSTRUCTURED_STRATEGY_TAGS for tag in tags):
            boost += strategy_boost
        if "has-image" in tags:
            boost += image_boost
        candidate.boost = boost
    return candidates


def _as_utc(value: datetime) -> datetime:
    # naive timestamps are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def apply_date_filter(
    candidates: list[FusionCandidate],
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> list[FusionCandidate]:
    """Keep units whose timestamp lies in [date_from, date_to]."""
    if date_from is None and date_to is None:
        return candidates

    lower = _as_utc(date_from) if date_from is not None else None
    upper = _as_utc(date_to) if date_to is not None else None

    kept = []
    for candidate in candidates:
        timestamp = _as_utc(candidate.unit.timestamp)
        if lower is not None and timestamp < lower:
            continue
        if upper is not None and timestamp > upper:
            continue
        kept.append(candidate)
    return kept


def rank_candidates(candidates: list[FusionCandidate], limit: int) -> list[FusionCandidate]:
    """Sort by final score, descending; equal scores keep their fusion order."""
    return sorted(candidates, key=lambda c: c.combined_score, reverse=True)[:limit]
