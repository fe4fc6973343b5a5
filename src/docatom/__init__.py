"""docatom: document chunking and hybrid retrieval."""

__version__ = "0.1.0"
