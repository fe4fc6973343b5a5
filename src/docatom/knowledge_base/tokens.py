"""Approximate tokenization shared by both chunkers.

A token is a whitespace-delimited word. This keeps chunk sizing cheap and
deterministic without pulling in a model-specific tokenizer.
"""

import re

_WHITESPACE = re.compile(r"\s+")


def tokenize(text: str) -> list[str]:
    """Split text into approximate tokens."""
    if not text:
        return []
    return [t for t in _WHITESPACE.split(text) if t]


def estimate_tokens(text: str) -> int:
    """Estimate token count for text."""
    return len(tokenize(text))
