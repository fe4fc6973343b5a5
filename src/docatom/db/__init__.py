"""PostgreSQL schema and document store."""
