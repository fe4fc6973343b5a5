"""Embedding generation, caching and rate limiting."""
