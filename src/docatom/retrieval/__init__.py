"""Hybrid retrieval: lexical and semantic search fused with RRF."""

from .hybrid_search import HybridSearchEngine, HybridSearchResponse, HybridSearchResult
from .protocols import DocumentStore, LexicalProvider, SemanticProvider

__all__ = [
    "DocumentStore",
    "HybridSearchEngine",
    "HybridSearchResponse",
    "HybridSearchResult",
    "LexicalProvider",
    "SemanticProvider",
]
