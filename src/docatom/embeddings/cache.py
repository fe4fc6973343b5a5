"""Bounded LRU cache for query embeddings.

Owned by whoever constructs it and passed explicitly to the embedding
provider; `clear()` resets it.
"""
from __future__ import annotations
import logging
from collections import OrderedDict
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0


class EmbeddingCache:
    """Least-recently-used map of (model, text) -> vector.

    A `max_size` of 0 disables caching.
    """

    def __init__(self, max_size: int = 1024):
        if max_size < 0:
            raise ValueError("max_size must be >= 0")
        self.max_size = max_size
        self._entries: OrderedDict[tuple[str, str], list[float]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, model: str, text: str) -> list[float] | None:
        key = (model, text)
        vector = self._entries.get(key)
        if vector is None:
            self._misses += 1
            return None
        self._entries.move_to_end(key)
        self._hits += 1
        return vector

    def put(self, model: str, text: str, vector: list[float]) -> None:
        if self.max_size == 0:
            return
        key = (model, text)
        self._entries[key] = vector
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self._evictions += 1

    def clear(self) -> None:
        """Drop all entries and reset counters."""
        self._entries.clear()
        self._hits = self._misses = self._evictions = 0
        logger.debug("Embedding cache cleared")

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            size=len(self._entries),
            max_size=self.max_size,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._entries
