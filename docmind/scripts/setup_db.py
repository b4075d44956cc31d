"""
DocMind - Database Setup & Ingestion Script
============================================
CLI entry point that orchestrates:
    1. Build the embedding service (Gemini, or the hash fallback when
       ``GOOGLE_API_KEY`` is unset).
    2. Open the document chunk table (optionally drop it first).
    3. Run the ``IngestionPipeline`` over ``DATA_RAW_DIR`` and rebuild
       the full-text index.
    4. Print a structured execution summary with timing breakdown.

Flags:
    --drop       Drop the chunk table before ingesting (cache preserved).
    --purge      Drop table AND clear the hash cache (full re-ingestion).
    --drop-only  Drop the table and exit immediately (no ingestion).

Usage:
    python -m docmind.scripts.setup_db              # Normal ingestion
    python -m docmind.scripts.setup_db --drop       # Drop table, re-ingest (skip cached)
    python -m docmind.scripts.setup_db --purge      # Drop table + cache, full re-ingest
    python -m docmind.scripts.setup_db --drop-only  # Drop table and exit
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))


# ── CLI Argument Parsing ───────────────────────────────────────────────

def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="setup_db", description="DocMind — Initialise the document index and run ingestion.")
    parser.add_argument("--drop", action="store_true", default=False, help="Drop the chunk table before ingesting (hash cache preserved).")
    parser.add_argument("--purge", action="store_true", default=False, help="Drop the chunk table AND clear the hash cache (full clean re-ingestion).")
    parser.add_argument("--drop-only", action="store_true", default=False, help="Drop the chunk table and exit (no ingestion).")
    return parser.parse_args(argv)


# ── Main Orchestration ─────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    t_start = time.perf_counter()

    # ── 0. Load settings + .env (timed) ────────────────────────────────
    t_settings = time.perf_counter()
    try:
        from docmind.config.settings import settings
    except Exception as exc:
        print("\n[FATAL] Configuration error — check your .env file:\n")
        print(f"  {exc}")
        print()
        sys.exit(1)
    settings_ms = (time.perf_counter() - t_settings) * 1000

    from docmind.src.utils.logger import get_logger
    logger = get_logger(__name__)

    logger.info("Settings loaded in %.1fms", settings_ms)
    _print_header(settings)

    # ── 1. Embedding service (timed) ───────────────────────────────────
    from docmind.src.core.bootstrap import build_embedding_service, build_ingestion_pipeline
    from docmind.src.core.exceptions import ConfigurationError

    t_embedder = time.perf_counter()
    try:
        embedder = build_embedding_service()
    except ConfigurationError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except Exception:
        logger.exception("Failed to initialise embedding model.")
        sys.exit(1)
    embedder_ms = (time.perf_counter() - t_embedder) * 1000
    logger.info("Embedder initialised in %.1fms (%r)", embedder_ms, embedder)

    # ── 2. Document table (timed) ──────────────────────────────────────
    from docmind.src.database.vector_store import DocumentVectorStore

    t_lancedb = time.perf_counter()
    logger.info("Connecting to LanceDB at: %s", settings.LANCEDB_PATH)
    store = DocumentVectorStore(dimension=embedder.dimension)
    lancedb_ms = (time.perf_counter() - t_lancedb) * 1000
    logger.info("LanceDB connection established in %.1fms", lancedb_ms)

    if args.drop or args.purge or args.drop_only:
        logger.warning("Dropping table '%s' as requested.", store.table_name)
        store.drop_table()

        if args.drop_only:
            logger.info("--drop-only: Table dropped. Exiting.")
            startup_ms = settings_ms + embedder_ms + lancedb_ms
            _print_footer({"total_files": 0, "files_processed": 0, "files_skipped": 0, "files_failed": 0, "total_chunks": 0}, time.perf_counter() - t_start, settings_ms, embedder_ms, lancedb_ms, startup_ms)
            return

        # Re-open so a fresh table is created
        store = DocumentVectorStore(dimension=embedder.dimension)

    logger.info("Document table ready — '%s' (%d existing rows).", store.table_name, store.count())

    startup_ms = settings_ms + embedder_ms + lancedb_ms
    logger.info("Total startup time: %.1fms (settings: %.1fms, embedder: %.1fms, lancedb: %.1fms)", startup_ms, settings_ms, embedder_ms, lancedb_ms)

    # ── 3. Run IngestionPipeline ───────────────────────────────────────
    pipeline = build_ingestion_pipeline(embedder, store)
    if args.purge:
        pipeline.clear_hash_cache()
    summary = asyncio.run(pipeline.run())

    # ── 4. Print execution summary ─────────────────────────────────────
    elapsed = time.perf_counter() - t_start
    _print_footer(summary, elapsed, settings_ms, embedder_ms, lancedb_ms, startup_ms)
    if embedder.degraded_count:
        logger.warning("[EMBED] %d text(s) were embedded with the hash fallback.", embedder.degraded_count)


# ── Pretty-print helpers ──────────────────────────────────────────────

def _mask_key(settings: object) -> str:
    secret = settings.GOOGLE_API_KEY  # type: ignore[attr-defined]
    if secret is None:
        return "(not set — hash fallback)"
    value = secret.get_secret_value()
    return f"****{value[-4:]}" if len(value) > 4 else "****"


def _mask_mongo(settings: object) -> str:
    secret = settings.MONGO_URI  # type: ignore[attr-defined]
    if secret is None:
        return "(not set — in-process memory)"
    value = secret.get_secret_value()
    host = value.split("@")[-1] if "@" in value else value
    return f"{host} (db: {settings.MONGO_DB_NAME})"  # type: ignore[attr-defined]


def _print_header(settings: object) -> None:
    print()
    print("=" * 60)
    print("  DOCMIND — Document Index Setup & Ingestion")
    print("=" * 60)
    print(f"  Environment  : {settings.ENV}")                   # type: ignore[attr-defined]
    print(f"  Embedding    : {settings.EMBEDDING_MODEL} (dim={settings.EMBEDDING_DIMENSION})")  # type: ignore[attr-defined]
    print(f"  LanceDB path : {settings.LANCEDB_PATH}")          # type: ignore[attr-defined]
    print(f"  FTS tokenizer: {settings.FTS_BASE_TOKENIZER}")    # type: ignore[attr-defined]
    print(f"  MongoDB      : {_mask_mongo(settings)}")
    print(f"  Source dir   : {settings.DATA_RAW_DIR}")           # type: ignore[attr-defined]
    print(f"  Chunk window : {settings.CHUNK_MIN_SIZE}–{settings.CHUNK_MAX_SIZE} chars, overlap {settings.CHUNK_OVERLAP}")  # type: ignore[attr-defined]
    print(f"  Workers      : {settings.MAX_WORKERS}")           # type: ignore[attr-defined]
    print(f"  API Key      : {_mask_key(settings)}")
    print("=" * 60)
    print()


def _print_footer(summary: dict, elapsed: float, settings_ms: float, embedder_ms: float, lancedb_ms: float, startup_ms: float) -> None:
    processing_s = elapsed - (startup_ms / 1000)

    print()
    print("=" * 60)
    print("  EXECUTION SUMMARY")
    print("-" * 60)
    print(f"  Total files scanned  : {summary['total_files']}")
    print(f"  Files ingested       : {summary['files_processed']}")
    print(f"  Files skipped (cache): {summary['files_skipped']}")
    print(f"  Files failed         : {summary['files_failed']}")
    print(f"  Total chunks stored  : {summary['total_chunks']}")
    print("-" * 60)
    print("  TIMING BREAKDOWN")
    print("-" * 60)
    print(f"  Settings + .env load : {settings_ms:>8.1f}ms")
    print(f"  Embedder init        : {embedder_ms:>8.1f}ms")
    print(f"  LanceDB connection   : {lancedb_ms:>8.1f}ms")
    print(f"  Startup time (total) : {startup_ms:>8.1f}ms")
    print(f"  Processing time      : {processing_s:>8.2f}s")
    print(f"  Total elapsed        : {elapsed:>8.2f}s")
    print("=" * 60)
    print()


# ── Entry point ────────────────────────────────────────────────────────

if __name__ == "__main__":
    main()
