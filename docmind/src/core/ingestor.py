"""
DocMind - IngestionPipeline
============================
Indexes documents into both retrieval branches:
clean → chunk → embed → vector table → full-text index.

Key design decisions:
    • **Dependency Injection** – stores, embedder and chunker are injected.
    • **Idempotent re-ingestion** – ingesting a document id first removes
      its previous chunks, so chunk ids never collide.
    • **Cascade delete** – ``delete_document`` removes the chunks from the
      vector table and rebuilds the full-text index, so neither branch
      can return a deleted document.
    • **No degraded vectors at rest** – when a configured embedding
      provider fails, the document is rejected instead of being stored
      with hash vectors that would never match a real query.
    • **Concurrency** – ``run()`` ingests a directory with at most
      ``MAX_WORKERS`` documents in flight.
    • **Caching** – MD5 file hashes skip unchanged files between runs.

Usage:
    pipeline = IngestionPipeline(vector_store, keyword_store, embedder)
    await pipeline.ingest_document("42", raw_text, title="退款政策")
    summary = await pipeline.run()
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from pathlib import Path
from typing import Any

from docmind.config.settings import settings
from docmind.src.core.chunker import Chunker
from docmind.src.core.embedder import EmbeddingService
from docmind.src.core.exceptions import BackendUnavailable
from docmind.src.database.keyword_store import LanceKeywordStore
from docmind.src.database.vector_store import DocumentVectorStore
from docmind.src.utils.logger import get_logger
from docmind.src.utils.text_utils import clean_text

logger = get_logger(__name__)

# File extensions the directory runner knows how to read
_SUPPORTED_EXTENSIONS = {".txt", ".md"}

_EMBED_BATCH_SIZE = 64


class IngestionPipeline:
    """
    Parameters
    ----------
    vector_store
        Document chunk table.
    keyword_store
        Full-text index over the same table.
    embedder
        Shared ``EmbeddingService``.
    chunker
        Defaults to a settings-configured ``Chunker``.
    source_dir
        Directory scanned by ``run()``.  Defaults to ``settings.DATA_RAW_DIR``.
    max_workers
        Documents ingested concurrently by ``run()``.
    """

    def __init__(self, vector_store: DocumentVectorStore, keyword_store: LanceKeywordStore, embedder: EmbeddingService, chunker: Chunker | None = None, source_dir: Path | None = None, max_workers: int | None = None) -> None:
        self._store = vector_store
        self._keywords = keyword_store
        self._embedder = embedder
        self._chunker = chunker or Chunker()
        self._source_dir = source_dir or settings.DATA_RAW_DIR
        self._max_workers = max_workers or settings.MAX_WORKERS

        self._hash_cache_path: Path = settings.DATA_PROCESSED_DIR / "ingestion_hashes.json"
        self._hash_cache: dict[str, str] = self._load_hash_cache()

    # ══════════════════════════════════════════════════════════════════
    #  SINGLE DOCUMENT
    # ══════════════════════════════════════════════════════════════════

    async def ingest_document(self, document_id: str, text: str, title: str = "", refresh_index: bool = True) -> int:
        """
        Replace the indexed content of *document_id* with *text*.

        Returns
        -------
        int
            Number of chunks stored (0 when the cleaned text yields none).

        Raises
        ------
        BackendUnavailable
            The embedding provider failed for at least one chunk.
        """
        document_id = str(document_id)
        t_doc = time.perf_counter()

        cleaned = clean_text(text)
        chunks = self._chunker.chunk(document_id, cleaned)

        if not chunks:
            logger.warning("Document '%s' produced no chunks (%d chars after cleaning).", document_id, len(cleaned))
            await asyncio.to_thread(self._store.delete_document, document_id)
            if refresh_index:
                await asyncio.to_thread(self._keywords.refresh_index)
            return 0

        # ── Batched embedding ──────────────────────────────────────────
        # Old rows stay in place until every vector is ready.
        t_embed = time.perf_counter()
        vectors: list[list[float]] = []
        for i in range(0, len(chunks), _EMBED_BATCH_SIZE):
            batch = chunks[i : i + _EMBED_BATCH_SIZE]
            embeddings = await self._embedder.embed_batch_with_status([c.content for c in batch])
            if self._embedder.has_provider and any(e.degraded for e in embeddings):
                raise BackendUnavailable("embedding", f"provider failed while embedding chunks {i}–{i + len(batch) - 1} of document '{document_id}'")
            vectors.extend(e.vector for e in embeddings)
        embed_ms = (time.perf_counter() - t_embed) * 1000

        await asyncio.to_thread(self._store.delete_document, document_id)
        added = await asyncio.to_thread(self._store.add_chunks, chunks, vectors, title)
        if refresh_index:
            await asyncio.to_thread(self._keywords.refresh_index)

        total_ms = (time.perf_counter() - t_doc) * 1000
        logger.info("Document '%s' → %d chunk(s) — embed: %.1fms, total: %.1fms.", document_id, added, embed_ms, total_ms)
        return added


    async def delete_document(self, document_id: str) -> int:
        """Remove *document_id* from both retrieval branches."""
        removed = await asyncio.to_thread(self._store.delete_document, str(document_id))
        await asyncio.to_thread(self._keywords.refresh_index)
        return removed

    # ══════════════════════════════════════════════════════════════════
    #  DIRECTORY RUN
    # ══════════════════════════════════════════════════════════════════

    async def run(self) -> dict[str, Any]:
        """
        Ingest every supported file of the source directory.

        The file stem is the document id.

        Returns
        -------
        dict
            ``total_files``, ``files_processed``, ``files_skipped``,
            ``files_failed``, ``total_chunks``, ``elapsed_seconds``.
        """
        t_start = time.perf_counter()
        source = Path(self._source_dir)

        if not source.exists():
            logger.warning("Source directory does not exist: %s", source)
            return self._summary(0, 0, 0, 0, 0, time.perf_counter() - t_start)

        files = sorted(f for f in source.iterdir() if f.suffix.lower() in _SUPPORTED_EXTENSIONS)
        if not files:
            logger.warning("No supported files found in %s", source)
            return self._summary(0, 0, 0, 0, 0, time.perf_counter() - t_start)

        logger.info("Starting ingestion — %d file(s) found in %s", len(files), source)
        semaphore = asyncio.Semaphore(self._max_workers)

        async def ingest(path: Path) -> int:
            async with semaphore:
                return await self._ingest_file(path)

        results = await asyncio.gather(*(ingest(fp) for fp in files), return_exceptions=True)

        total_chunks = files_processed = files_skipped = files_failed = 0
        for path, result in zip(files, results):
            if isinstance(result, BaseException):
                files_failed += 1
                logger.error("Failed to ingest file %s: %s", path.name, result)
            elif result == -1:
                files_skipped += 1
            else:
                files_processed += 1
                total_chunks += result

        await asyncio.to_thread(self._keywords.refresh_index)
        self._save_hash_cache()

        elapsed = time.perf_counter() - t_start
        logger.info("Ingestion complete — %d file(s) processed, %d skipped, %d failed, %d chunk(s) stored in %.2fs.", files_processed, files_skipped, files_failed, total_chunks, elapsed)
        return self._summary(len(files), files_processed, files_skipped, files_failed, total_chunks, elapsed)


    async def _ingest_file(self, filepath: Path) -> int:
        """Chunks added, or ``-1`` when the file is unchanged since the last run."""
        file_hash = self._compute_file_hash(filepath)
        if self._hash_cache.get(filepath.name) == file_hash:
            logger.info("CACHE_HIT — Skipping unchanged file: %s", filepath.name)
            return -1

        raw_text = self._read_file(filepath)
        added = await self.ingest_document(filepath.stem, raw_text, title=filepath.stem, refresh_index=False)
        self._hash_cache[filepath.name] = file_hash
        return added


    @staticmethod
    def _read_file(filepath: Path) -> str:
        """UTF-8 first, GB18030 for legacy Chinese exports."""
        try:
            return filepath.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return filepath.read_text(encoding="gb18030")

    # ══════════════════════════════════════════════════════════════════
    #  MD5 CACHING
    # ══════════════════════════════════════════════════════════════════

    @staticmethod
    def _compute_file_hash(filepath: Path) -> str:
        hasher = hashlib.md5()
        with open(filepath, "rb") as f:
            for block in iter(lambda: f.read(8192), b""):
                hasher.update(block)
        return hasher.hexdigest()


    def _load_hash_cache(self) -> dict[str, str]:
        if self._hash_cache_path.exists():
            try:
                return json.loads(self._hash_cache_path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError):
                logger.warning("Corrupt hash cache — starting fresh.")
        return {}


    def _save_hash_cache(self) -> None:
        self._hash_cache_path.parent.mkdir(parents=True, exist_ok=True)
        self._hash_cache_path.write_text(json.dumps(self._hash_cache, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.debug("Hash cache saved to %s", self._hash_cache_path)


    def clear_hash_cache(self) -> None:
        self._hash_cache.clear()
        if self._hash_cache_path.exists():
            self._hash_cache_path.unlink()
            logger.warning("Hash cache deleted: %s", self._hash_cache_path)

    # ── Summary helper ─────────────────────────────────────────────────

    @staticmethod
    def _summary(total: int, processed: int, skipped: int, failed: int, chunks: int, elapsed: float) -> dict[str, Any]:
        return {
            "total_files": total,
            "files_processed": processed,
            "files_skipped": skipped,
            "files_failed": failed,
            "total_chunks": chunks,
            "elapsed_seconds": round(elapsed, 2),
        }
