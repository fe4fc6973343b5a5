"""File loading and document ingestion."""
