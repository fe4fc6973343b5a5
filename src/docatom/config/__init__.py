"""Configuration management for docatom."""
from .settings import (
    ChunkingConfig,
    DatabaseConfig,
    DocatomSettings,
    EmbeddingsConfig,
    SearchConfig,
    SlidingWindowConfig,
    load_settings,
)

__all__ = [
    "ChunkingConfig",
    "DatabaseConfig",
    "DocatomSettings",
    "EmbeddingsConfig",
    "SearchConfig",
    "SlidingWindowConfig",
    "load_settings",
]
