"""Schema management.

All docatom tables live in one PostgreSQL schema (default `docatom`).
"""
from __future__ import annotations
import logging
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import asyncpg

logger = logging.getLogger(__name__)

DDL_PATH = Path(__file__).parent / "schema.sql"
DEFAULT_DIMENSION = 1536

_SCHEMA_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_schema_name(schema_name: str) -> str:
    """Reject names that cannot be safely interpolated as an identifier."""
    if not _SCHEMA_NAME.match(schema_name):
        raise ValueError(f"Invalid schema name: {schema_name!r}")
    return schema_name


def load_ddl(dimension: int = DEFAULT_DIMENSION) -> str:
    """Read the DDL, sizing the embedding column."""
    with open(DDL_PATH, 'r') as f:
        ddl_sql = f.read()
    return ddl_sql.replace(f"vector({DEFAULT_DIMENSION})", f"vector({dimension})")


async def create_schema(conn: asyncpg.Connection, schema_name: str) -> None:
    """Create a schema if it doesn't exist."""
    await conn.execute(f'CREATE SCHEMA IF NOT EXISTS "{validate_schema_name(schema_name)}"')


async def init_schema_tables(
    conn: asyncpg.Connection,
    schema_name: str,
    dimension: int = DEFAULT_DIMENSION,
) -> None:
    """Create the docatom tables in a schema.

    Args:
        conn: Database connection
        schema_name: Name of the schema to initialize
        dimension: Embedding vector dimension
    """
    ddl_sql = load_ddl(dimension)

    # Extensions are database-wide; create them before switching search_path
    await conn.execute('CREATE EXTENSION IF NOT EXISTS vector')

    await create_schema(conn, schema_name)
    async with schema_context(conn, schema_name):
        filtered_ddl = '\n'.join(
            line for line in ddl_sql.split('\n')
            if not line.strip().upper().startswith('CREATE EXTENSION')
        )
        await conn.execute(filtered_ddl)

    logger.info(f"Initialized schema {schema_name} (embedding dimension {dimension})")


@asynccontextmanager
async def schema_context(conn: asyncpg.Connection, schema_name: str) -> AsyncIterator[asyncpg.Connection]:
    """Set search_path to `schema_name` (with public for extension types) for the block.

    Example:
        async with schema_context(conn, "docatom"):
            await conn.fetch("SELECT * FROM chunk")
    """
    old_path = await conn.fetchval("SHOW search_path")
    try:
        await conn.execute(f'SET search_path TO "{validate_schema_name(schema_name)}", public')
        yield conn
    finally:
        await conn.execute(f'SET search_path TO {old_path}')
