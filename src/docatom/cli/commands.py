from __future__ import annotations
import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime

import asyncpg
from dotenv import load_dotenv

from docatom.config import DocatomSettings, load_settings
from docatom.db.schema_manager import init_schema_tables
from docatom.db.store import PostgresDocumentStore
from docatom.embeddings.provider import EmbeddingProvider
from docatom.indexer.ingest import ingest_document
from docatom.indexer.loaders import load_document
from docatom.knowledge_base.chunker import DocumentChunker
from docatom.knowledge_base.metrics import compute_chunking_metrics, format_report, write_snapshot
from docatom.knowledge_base.models import SearchFilter, SearchWeights
from docatom.retrieval.hybrid_search import HybridSearchEngine
from docatom.retrieval.postgres import PostgresLexicalProvider, PostgresVectorProvider


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docatom",
        description="docatom - document chunking and hybrid retrieval"
    )
    parser.add_argument("--config", help="Path to a YAML configuration file")
    sub = parser.add_subparsers(dest="cmd", required=True)

    # Database commands
    db = sub.add_parser("db", help="Database management commands")
    dbsub = db.add_subparsers(dest="dbcmd", required=True)
    dbsub.add_parser("init", help="Initialize database schema")
    dbsub.add_parser("ping", help="Test database connection")

    # Chunk a file without storing it
    chunk = sub.add_parser("chunk", help="Chunk a file and print the units")
    chunk.add_argument("file", help="Path to a .md, .html, .txt or .pdf file")
    chunk.add_argument("--json", action="store_true", help="Print units as JSON")

    # Indexing
    idx = sub.add_parser("index", help="Chunk, store and embed a file")
    idx.add_argument("file", help="Path to a .md, .html, .txt or .pdf file")
    idx.add_argument("--source", help="Source id recorded in document metadata")
    idx.add_argument("--force", action="store_true", help="Re-ingest even if unchanged")
    idx.add_argument("--no-embed", action="store_true", help="Skip embedding generation")

    # Search
    search = sub.add_parser("search", help="Hybrid search over indexed units")
    search.add_argument("query", help="Search text")
    search.add_argument("--limit", type=int, default=None, help="Maximum results")
    search.add_argument("--format", choices=["markdown", "html", "pdf", "txt"], help="Parent document format")
    search.add_argument("--source", help="Parent document source id")
    search.add_argument("--from", dest="date_from", type=datetime.fromisoformat, help="Earliest timestamp (ISO 8601)")
    search.add_argument("--to", dest="date_to", type=datetime.fromisoformat, help="Latest timestamp (ISO 8601)")
    search.add_argument("--lexical-weight", type=float, default=None, help="Weight of the full-text ranking")
    search.add_argument("--semantic-weight", type=float, default=None, help="Weight of the vector ranking")
    search.add_argument("--timeout", type=float, default=None, help="Overall timeout in seconds")
    search.add_argument("--json", action="store_true", help="Print results as JSON")

    # Tag lookup
    tag = sub.add_parser("tag", help="List indexed units carrying a tag")
    tag.add_argument("tag", help="Tag to look up, e.g. has-image or chunk-strategy-pdf-sliding-window")
    tag.add_argument("--limit", type=int, default=50, help="Maximum units")
    tag.add_argument("--json", action="store_true", help="Print units as JSON")

    # Metrics
    metrics = sub.add_parser("metrics", help="Report chunking metrics for indexed documents")
    metrics.add_argument("--snapshot", help="Also write the metrics as JSON to this path")
    metrics.add_argument("--top", type=int, default=10, help="Number of most-chunked documents to list")

    return parser


def run(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    # Load environment variables first
    load_dotenv()

    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
        logging.basicConfig(
            level=getattr(logging, settings.log_level),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        if args.cmd == "db":
            if args.dbcmd == "init":
                asyncio.run(db_init(settings))
            elif args.dbcmd == "ping":
                asyncio.run(db_ping(settings.database.dsn))
        elif args.cmd == "chunk":
            chunk_file(args.file, settings, as_json=args.json)
        elif args.cmd == "index":
            asyncio.run(index_file(args.file, settings, source_id=args.source,
                                   force=args.force, embed=not args.no_embed))
        elif args.cmd == "search":
            asyncio.run(search_units(args, settings))
        elif args.cmd == "tag":
            asyncio.run(tagged_units(args.tag, settings, limit=args.limit, as_json=args.json))
        elif args.cmd == "metrics":
            asyncio.run(show_metrics(settings, snapshot=args.snapshot, top_n=args.top))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


async def _connect(database_url: str) -> asyncpg.Connection:
    try:
        return await asyncpg.connect(dsn=database_url)
    except asyncpg.InvalidCatalogNameError:
        raise RuntimeError(
            "Database does not exist. Please create it first:\n"
            "  createdb docatom\n"
            "Or check your DATABASE_URL in .env"
        )
    except (OSError, asyncpg.PostgresError) as e:
        raise RuntimeError(f"Failed to connect to database: {e}\nCheck your DATABASE_URL in .env")


async def db_init(settings: DocatomSettings) -> None:
    """Create the docatom schema and tables."""
    conn = await _connect(settings.database.dsn)
    try:
        await init_schema_tables(conn, settings.database.schema_name, settings.embeddings.dimension)
        print(f"✓ Schema '{settings.database.schema_name}' initialized successfully")
    except asyncpg.PostgresError as e:
        raise RuntimeError(f"Failed to execute DDL: {e}")
    finally:
        await conn.close()


async def db_ping(database_url: str) -> None:
    """Test database connection and check the pgvector extension."""
    conn = await _connect(database_url)
    try:
        version = await conn.fetchval("SELECT version()")
        ext = await conn.fetchval("SELECT extversion FROM pg_extension WHERE extname='vector'")

        print("✓ Database connection successful")
        print(f"  Postgres: {version}")
        if ext:
            print(f"  pgvector: {ext}")
        else:
            print("  pgvector: ⚠️  NOT INSTALLED")
            print("  Run 'docatom db init' to install the pgvector extension")
    finally:
        await conn.close()


def chunk_file(path: str, settings: DocatomSettings, as_json: bool = False) -> None:
    """Chunk a file and print the resulting units."""
    document = load_document(path)
    chunks = DocumentChunker(settings).chunk_document(document)

    if as_json:
        print(json.dumps([c.model_dump(mode="json") for c in chunks], indent=2))
        return

    print(f"{document.title} ({document.format.value}): {len(chunks)} units")
    for c in chunks:
        tags = ", ".join(sorted(c.tags))
        print(f"\n[{c.index}] {c.title}")
        print(f"    {c.context}")
        print(f"    tokens {c.metadata.token_start}-{c.metadata.token_end}  tags: {tags}")
        preview = c.content[:160].replace("\n", " ")
        print(f"    {preview}{'...' if len(c.content) > 160 else ''}")


def _provider(settings: DocatomSettings) -> EmbeddingProvider:
    return EmbeddingProvider(
        settings.embeddings,
        vector_searcher=PostgresVectorProvider(settings.database.dsn, settings.database.schema_name),
    )


async def index_file(
    path: str,
    settings: DocatomSettings,
    source_id: str | None = None,
    force: bool = False,
    embed: bool = True,
) -> None:
    """Load, chunk, store and embed one file."""
    document = load_document(path, source_id=source_id)
    store = PostgresDocumentStore(settings.database.dsn, settings.database.schema_name)

    embedder = None
    if embed and settings.embeddings.enabled:
        embedder = _provider(settings).batch_embedder()

    result = await ingest_document(document, store, settings, embedder=embedder, force=force)

    if result.skipped:
        print(f"✓ {path} unchanged, skipped")
    else:
        print(f"✓ Indexed {path}: {result.chunks} units ({result.strategy}), {result.embedded} embedded")


async def search_units(args: argparse.Namespace, settings: DocatomSettings) -> None:
    """Run a hybrid search and print results."""
    dsn, schema = settings.database.dsn, settings.database.schema_name
    engine = HybridSearchEngine(
        lexical=PostgresLexicalProvider(dsn, schema),
        semantic=_provider(settings) if settings.embeddings.enabled else None,
        store=PostgresDocumentStore(dsn, schema),
        config=settings.search,
    )

    weights = None
    if args.lexical_weight is not None or args.semantic_weight is not None:
        weights = SearchWeights(
            lexical=args.lexical_weight if args.lexical_weight is not None else settings.search.lexical_weight,
            semantic=args.semantic_weight if args.semantic_weight is not None else settings.search.semantic_weight,
        )

    filters = SearchFilter(
        date_from=args.date_from,
        date_to=args.date_to,
        source=args.source,
        format=args.format,
    )

    response = await engine.search(args.query, limit=args.limit, weights=weights,
                                   filters=filters, timeout=args.timeout)

    if args.json:
        print(json.dumps({
            "query": response.query,
            "degraded": response.degraded,
            "fallback_reason": response.fallback_reason,
            "results": [
                {
                    "unit": r.unit.model_dump(mode="json"),
                    "lexical_score": r.lexical_score,
                    "semantic_score": r.semantic_score,
                    "combined_score": r.combined_score,
                }
                for r in response.results
            ],
        }, indent=2))
        return

    if response.degraded:
        print(f"⚠️  Degraded search ({response.fallback_reason}): lexical results only")
    print(f"{len(response.results)} results in {response.execution_time_ms:.1f}ms\n")
    for i, r in enumerate(response.results, start=1):
        print(f"{i}. {r.unit.title}  [{r.combined_score:.5f}]")
        print(f"   {r.unit.context}")
        print(f"   lexical={r.lexical_score:.5f} semantic={r.semantic_score:.5f} boost={r.boost:.2f}")


async def tagged_units(tag: str, settings: DocatomSettings, limit: int = 50, as_json: bool = False) -> None:
    """Print the newest units carrying `tag`."""
    if limit < 1:
        raise ValueError(f"limit must be at least 1, got {limit}")

    lexical = PostgresLexicalProvider(settings.database.dsn, settings.database.schema_name)
    chunks = await lexical.search_by_tag(tag, limit=limit)

    if as_json:
        print(json.dumps([c.model_dump(mode="json") for c in chunks], indent=2))
        return

    print(f"{len(chunks)} units tagged '{tag}'")
    for c in chunks:
        print(f"\n{c.title}")
        print(f"    {c.context}")


async def show_metrics(settings: DocatomSettings, snapshot: str | None = None, top_n: int = 10) -> None:
    """Print chunking metrics for everything in the store."""
    store = PostgresDocumentStore(settings.database.dsn, settings.database.schema_name)
    chunks = await store.list_chunks()
    parents = await store.list_documents()

    metrics = compute_chunking_metrics(chunks, parents, top_n=top_n)
    print(format_report(metrics))

    if snapshot:
        path = write_snapshot(metrics, snapshot)
        print(f"\n✓ Snapshot written to {path}")
