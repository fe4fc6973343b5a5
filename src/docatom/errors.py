"""Exception hierarchy for docatom.

Chunking never raises on malformed input; the errors below cover
configuration, caller input and upstream provider failures.
"""
from __future__ import annotations


class DocatomError(Exception):
    """Base class for all docatom errors."""


class ConfigurationError(DocatomError, ValueError):
    """A configuration value violates an invariant (e.g. overlap >= window)."""


class QueryValidationError(DocatomError, ValueError):
    """Caller supplied an invalid query or filter."""


class ProviderError(DocatomError, RuntimeError):
    """An upstream provider (lexical, semantic, store) failed."""


class EmbeddingBatchError(ProviderError):
    """A bulk embedding batch failed; nothing from this call was persisted."""

    def __init__(self, start: int, end: int, cause: BaseException | None = None):
        self.start = start
        self.end = end
        self.cause = cause
        message = f"Embedding batch {start}-{end} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class SearchTimeoutError(ProviderError):
    """A provider call exceeded the caller's timeout."""

    def __init__(self, stage: str, timeout: float):
        self.stage = stage
        self.timeout = timeout
        super().__init__(f"Search timed out after {timeout:.2f}s during {stage}")
