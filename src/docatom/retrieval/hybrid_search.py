"""Hybrid search over units combining full-text and vector retrieval.

The lexical query runs concurrently with query embedding; the vector query
follows once the embedding is ready. Both ranked lists are fused with
weighted Reciprocal Rank Fusion, then filtered, boosted and sorted.

A failing semantic path degrades the response to lexical-only results; a
failing lexical path is an error.
"""
from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, TypeVar

from docatom.config import SearchConfig
from docatom.errors import ProviderError, QueryValidationError, SearchTimeoutError
from docatom.knowledge_base.models import Chunk, SearchFilter, SearchWeights
from docatom.retrieval.fusion import (
    apply_boosts,
    apply_date_filter,
    apply_parent_filters,
    parent_ids,
    rank_candidates,
    reciprocal_rank_fusion,
)
from docatom.retrieval.protocols import DocumentStore, LexicalProvider, SemanticProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

# fallback_reason values
SEMANTIC_UNAVAILABLE = "semantic_unavailable"
EMBEDDING_FAILED = "embedding_failed"
SEMANTIC_SEARCH_FAILED = "semantic_search_failed"
SEMANTIC_NO_RESULTS = "semantic_no_results"


@dataclass
class HybridSearchResult:
    """A fused search result with explainability."""
    unit: Chunk
    lexical_score: float
    semantic_score: float
    combined_score: float

    # Explainability fields
    boost: float = 0.0
    lexical_rank: int | None = None
    semantic_rank: int | None = None
    similarity: float | None = None


@dataclass
class HybridSearchResponse:
    """Ranked results plus degraded-mode state."""
    query: str
    results: list[HybridSearchResult]
    degraded: bool = False
    fallback_reason: str | None = None
    execution_time_ms: float = 0.0


class HybridSearchEngine:
    """Fuses lexical and semantic retrieval into one ranking."""

    def __init__(
        self,
        lexical: LexicalProvider,
        semantic: SemanticProvider | None = None,
        store: DocumentStore | None = None,
        config: SearchConfig | None = None,
    ):
        self.lexical = lexical
        self.semantic = semantic
        self.store = store
        self.config = config or SearchConfig()

    async def search(
        self,
        query: str,
        limit: int | None = None,
        weights: SearchWeights | None = None,
        filters: SearchFilter | None = None,
        timeout: float | None = None,
    ) -> HybridSearchResponse:
        """Run a hybrid search.

        Args:
            query: Search text; must contain non-whitespace characters
            limit: Maximum results (default from config)
            weights: RRF list weights (default from config)
            filters: Optional date/source/format filters
            timeout: Overall time bound in seconds (default from config)

        Returns:
            HybridSearchResponse with at most `limit` results

        Raises:
            QueryValidationError: Empty query, non-positive limit or inverted date range
            ProviderError: Lexical search or parent lookup failed
            SearchTimeoutError: A stage did not finish within the time bound
        """
        self._validate(query, limit, filters)
        start_time = time.time()

        limit = limit or self.config.default_limit
        weights = weights or SearchWeights(
            lexical=self.config.lexical_weight,
            semantic=self.config.semantic_weight,
        )
        timeout = timeout if timeout is not None else self.config.timeout_seconds
        deadline = time.monotonic() + timeout if timeout is not None else None
        fetch_limit = limit * self.config.overfetch_factor

        degraded = False
        fallback_reason: str | None = None
        semantic_results: list[tuple[Chunk, float]] = []

        # 1. Lexical search concurrently with query embedding
        lexical_outcome, embedding_outcome = await asyncio.gather(
            self._bounded("lexical search", self.lexical.search_text(query, fetch_limit), deadline),
            self._embed(query, deadline),
            return_exceptions=True,
        )

        if isinstance(lexical_outcome, BaseException):
            if isinstance(lexical_outcome, ProviderError):
                raise lexical_outcome
            raise ProviderError(f"Lexical search failed: {lexical_outcome}") from lexical_outcome
        lexical_results: list[Chunk] = lexical_outcome

        # 2. Vector search once the embedding is ready
        if self.semantic is None:
            degraded, fallback_reason = True, SEMANTIC_UNAVAILABLE
        elif isinstance(embedding_outcome, SearchTimeoutError):
            raise embedding_outcome
        elif isinstance(embedding_outcome, BaseException):
            logger.warning(f"Query embedding failed, falling back to lexical search: {embedding_outcome}")
            degraded, fallback_reason = True, EMBEDDING_FAILED
        else:
            try:
                semantic_results = await self._bounded(
                    "semantic search",
                    self.semantic.search_by_embedding(embedding_outcome, fetch_limit, filters),
                    deadline,
                )
            except SearchTimeoutError:
                raise
            except Exception as e:
                logger.warning(f"Semantic search failed, falling back to lexical search: {e}")
                degraded, fallback_reason = True, SEMANTIC_SEARCH_FAILED
                semantic_results = []
            else:
                if not semantic_results:
                    fallback_reason = SEMANTIC_NO_RESULTS

        # 3. Fuse
        candidates = reciprocal_rank_fusion(lexical_results, semantic_results, weights, self.config.rrf_k)

        # 4. Source/format filter against parent documents
        if filters is not None and filters.needs_parent:
            ids = parent_ids(candidates)
            parents = {}
            if ids and self.store is not None:
                parents = await self._get_parents(ids, deadline)
            elif ids:
                logger.warning("Source/format filter requested without a document store; parent units excluded")
            candidates = apply_parent_filters(candidates, filters, parents, self.config.conversation_source)

        # 5. Boosts
        candidates = apply_boosts(candidates, self.config.chunk_strategy_boost, self.config.image_boost)

        # 6. Date range
        if filters is not None and filters.has_date_range:
            candidates = apply_date_filter(candidates, filters.date_from, filters.date_to)

        # 7. Sort and truncate
        ranked = rank_candidates(candidates, limit)

        execution_time_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Hybrid search returned {len(ranked)} results "
            f"(lexical={len(lexical_results)}, semantic={len(semantic_results)}, "
            f"degraded={degraded}) in {execution_time_ms:.1f}ms"
        )

        return HybridSearchResponse(
            query=query,
            results=[
                HybridSearchResult(
                    unit=c.unit,
                    lexical_score=c.lexical_score,
                    semantic_score=c.semantic_score,
                    combined_score=c.combined_score,
                    boost=c.boost,
                    lexical_rank=c.lexical_rank,
                    semantic_rank=c.semantic_rank,
                    similarity=c.similarity,
                )
                for c in ranked
            ],
            degraded=degraded,
            fallback_reason=fallback_reason,
            execution_time_ms=execution_time_ms,
        )

    def _validate(self, query: str, limit: int | None, filters: SearchFilter | None) -> None:
        if not query or not query.strip():
            raise QueryValidationError("Query must not be empty")
        if limit is not None and limit < 1:
            raise QueryValidationError(f"limit must be positive, got {limit}")
        if (
            filters is not None
            and filters.date_from is not None
            and filters.date_to is not None
            and filters.date_from > filters.date_to
        ):
            raise QueryValidationError("date_from must not be after date_to")

    async def _embed(self, query: str, deadline: float | None) -> list[float]:
        if self.semantic is None:
            return []
        return await self._bounded("query embedding", self.semantic.embed(query), deadline)

    async def _get_parents(self, ids: list[str], deadline: float | None):
        try:
            return await self._bounded("parent lookup", self.store.get_documents(ids), deadline)
        except (SearchTimeoutError, ProviderError):
            raise
        except Exception as e:
            raise ProviderError(f"Parent document lookup failed: {e}") from e

    async def _bounded(self, stage: str, awaitable: Awaitable[T], deadline: float | None) -> T:
        """Await before the search deadline, naming the stage on timeout."""
        if deadline is None:
            return await awaitable
        remaining = deadline - time.monotonic()
        try:
            return await asyncio.wait_for(awaitable, timeout=max(remaining, 0.0))
        except asyncio.TimeoutError as e:
            raise SearchTimeoutError(stage, max(remaining, 0.0)) from e
