"""
DocMind - LanceDB Vector Stores
================================
Thin OOP wrappers around LanceDB tables:

``DocumentVectorStore``
    Document chunks with their embeddings.  Serves the vector branch of
    the hybrid search and hosts the full-text index used by
    ``LanceKeywordStore``.

``ConversationVectorStore``
    Archived question/answer turns for long-term memory.  Lives in its
    own table so conversation history can never surface as a document
    passage (and vice versa).

Design decisions:
  • **Singleton DB connection** — ``_get_connection()`` caches the
    ``lancedb.DBConnection`` per path to avoid file-lock issues.
  • **Vectors in, vectors out** — the stores never embed; callers pass
    vectors produced by ``EmbeddingService``.  This keeps every store
    call synchronous and cheap to run in a worker thread.
  • **Fixed-size vectors** — the schema pins ``EMBEDDING_DIMENSION`` so
    a wrong-sized vector fails at write time instead of poisoning search.

Usage:
    from docmind.src.database.vector_store import DocumentVectorStore
    store = DocumentVectorStore()
    store.add_chunks(chunks, vectors, title="退款政策")
    hits = store.search(query_vector, top_k=10, document_id="42")
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import lancedb
import pyarrow as pa

from docmind.config.settings import settings
from docmind.src.utils.logger import get_logger

if TYPE_CHECKING:
    from docmind.src.core.chunker import Chunk

logger = get_logger(__name__)

# ── Type Aliases ──────────────────────────────────────────────────────
ChunkRecord = dict[str, str | int | list[float]]
SearchHit = dict[str, str | int | float]

# ── Constants ──────────────────────────────────────────────────────────
_DB_LOCK = threading.Lock()
_db_connection_cache: dict[str, lancedb.DBConnection] = {}


def _get_connection(db_path: str) -> lancedb.DBConnection:
    """
    Return a **singleton** ``lancedb.DBConnection`` for *db_path*.

    Thread-safe via ``_DB_LOCK``; every store sharing a directory shares
    one connection.
    """
    if db_path not in _db_connection_cache:
        with _DB_LOCK:
            if db_path not in _db_connection_cache:
                logger.info("Opening new LanceDB connection: %s", db_path)
                _db_connection_cache[db_path] = lancedb.connect(db_path)
    return _db_connection_cache[db_path]


def sql_literal(value: str) -> str:
    """Quote *value* as a SQL string literal for LanceDB ``where`` clauses."""
    return "'" + str(value).replace("'", "''") + "'"


def document_schema(dimension: int) -> pa.Schema:
    return pa.schema([
        pa.field("vector", pa.list_(pa.float32(), dimension)),
        pa.field("chunk_id", pa.utf8()),
        pa.field("document_id", pa.utf8()),
        pa.field("chunk_index", pa.int32()),
        pa.field("title", pa.utf8()),
        pa.field("content", pa.utf8()),
    ])


def conversation_schema(dimension: int) -> pa.Schema:
    return pa.schema([
        pa.field("vector", pa.list_(pa.float32(), dimension)),
        pa.field("memory_id", pa.utf8()),
        pa.field("user_id", pa.utf8()),
        pa.field("scope", pa.utf8()),
        pa.field("content", pa.utf8()),
        pa.field("created_at", pa.int64()),
    ])


class _LanceTable:
    """Shared open/create/drop plumbing for one LanceDB table."""

    __slots__ = ("_db_path", "_table_name", "_dimension", "db", "table")

    def __init__(self, table_name: str, schema: pa.Schema, dimension: int, db_path: str | None = None) -> None:
        self._db_path: str = str(db_path or settings.LANCEDB_PATH)
        self._table_name: str = table_name
        self._dimension: int = dimension
        self.db: lancedb.DBConnection | None = None
        self.table: lancedb.table.Table | None = None
        self._connect(schema)


    def _connect(self, schema: pa.Schema) -> None:
        try:
            self.db = _get_connection(self._db_path)
            # exist_ok opens the table when it is already there.
            self.table = self.db.create_table(self._table_name, schema=schema, exist_ok=True)
            logger.info("Table '%s' ready (%d rows).", self._table_name, self.table.count_rows())
        except OSError as exc:
            logger.error("LanceDB filesystem error at %s: %s", self._db_path, exc)
            raise
        except Exception:
            logger.exception("Unexpected error connecting to LanceDB.")
            raise


    @property
    def table_name(self) -> str:
        return self._table_name


    def _require_table(self) -> lancedb.table.Table:
        if self.table is None:
            raise RuntimeError(f"Table '{self._table_name}' is not initialised.")
        return self.table


    def _check_vector(self, vector: list[float]) -> None:
        if len(vector) != self._dimension:
            raise ValueError(f"vector dimension {len(vector)} does not match table dimension {self._dimension}")


    def count(self) -> int:
        if self.table is None:
            return 0
        return self.table.count_rows()


    def drop_table(self) -> None:
        """Drop the table (re-ingestion, tests)."""
        if self.db is None:
            logger.warning("No database connection; nothing to drop.")
            return
        try:
            self.db.drop_table(self._table_name)
            self.table = None
            logger.info("Dropped table '%s'.", self._table_name)
        except (ValueError, FileNotFoundError):
            logger.warning("Table '%s' does not exist — nothing to drop.", self._table_name)


    def __repr__(self) -> str:
        return f"{type(self).__name__}(db='{self._db_path}', table='{self._table_name}', rows={self.count()})"


# ══════════════════════════════════════════════════════════════════════
#  DOCUMENT CHUNKS
# ══════════════════════════════════════════════════════════════════════


class DocumentVectorStore(_LanceTable):
    """
    Parameters
    ----------
    db_path
        Override the database directory.  Defaults to ``settings.LANCEDB_PATH``.
    table_name
        Override the table name.  Defaults to ``settings.LANCEDB_TABLE_NAME``.
    dimension
        Vector size.  Defaults to ``settings.EMBEDDING_DIMENSION``.
    """

    __slots__ = ()

    def __init__(self, db_path: str | None = None, table_name: str | None = None, dimension: int | None = None) -> None:
        dimension = dimension or settings.EMBEDDING_DIMENSION
        super().__init__(table_name or settings.LANCEDB_TABLE_NAME, document_schema(dimension), dimension, db_path)


    def add_chunks(self, chunks: list[Chunk], vectors: list[list[float]], title: str = "") -> int:
        """
        Persist *chunks* with their parallel *vectors*.

        Raises
        ------
        ValueError
            Mismatched lengths or a wrong-sized vector.
        """
        if len(chunks) != len(vectors):
            raise ValueError(f"Length mismatch: {len(chunks)} chunks vs {len(vectors)} vectors.")
        table = self._require_table()
        if not chunks:
            return 0
        for vector in vectors:
            self._check_vector(vector)

        records: list[ChunkRecord] = [
            {"vector": vector, "chunk_id": chunk.chunk_id, "document_id": chunk.document_id, "chunk_index": chunk.index, "title": title, "content": chunk.content}
            for chunk, vector in zip(chunks, vectors)
        ]

        try:
            table.add(records)
        except OSError as exc:
            logger.error("Failed to write records to LanceDB: %s", exc)
            raise

        logger.info("Added %d chunk(s) of document '%s'. Table '%s' now has %d rows.", len(records), chunks[0].document_id, self._table_name, table.count_rows())
        return len(records)


    def search(self, vector: list[float], top_k: int, document_id: str | None = None) -> list[SearchHit]:
        """Nearest chunks to *vector* (L2), optionally restricted to one document."""
        table = self._require_table()
        query = table.search(vector).limit(top_k)
        if document_id is not None:
            query = query.where(f"document_id = {sql_literal(document_id)}", prefilter=True)

        rows = query.to_list()
        return [
            {"document_id": row["document_id"], "chunk_id": row["chunk_id"], "content": row["content"], "distance": float(row["_distance"])}
            for row in rows
        ]


    def delete_document(self, document_id: str) -> int:
        """Remove every chunk of *document_id*.  Returns the number of rows removed."""
        table = self._require_table()
        predicate = f"document_id = {sql_literal(document_id)}"
        before = table.count_rows(predicate)
        table.delete(predicate)
        logger.info("Deleted %d chunk(s) of document '%s'.", before, document_id)
        return before


    def count_document(self, document_id: str) -> int:
        return self._require_table().count_rows(f"document_id = {sql_literal(document_id)}")


# ══════════════════════════════════════════════════════════════════════
#  CONVERSATION HISTORY
# ══════════════════════════════════════════════════════════════════════


class ConversationVectorStore(_LanceTable):
    """Archived turns, searchable per ``(user_id, scope)``."""

    __slots__ = ()

    def __init__(self, db_path: str | None = None, table_name: str | None = None, dimension: int | None = None) -> None:
        dimension = dimension or settings.EMBEDDING_DIMENSION
        super().__init__(table_name or settings.LANCEDB_HISTORY_TABLE_NAME, conversation_schema(dimension), dimension, db_path)


    def add(self, memory_id: str, user_id: str, scope: str, content: str, vector: list[float], created_at: int) -> None:
        self._check_vector(vector)
        self._require_table().add([{"vector": vector, "memory_id": memory_id, "user_id": user_id, "scope": scope, "content": content, "created_at": created_at}])


    def search(self, vector: list[float], user_id: str, scope: str, top_k: int) -> list[SearchHit]:
        table = self._require_table()
        where = f"user_id = {sql_literal(user_id)} AND scope = {sql_literal(scope)}"
        rows = table.search(vector).where(where, prefilter=True).limit(top_k).to_list()
        return [
            {"memory_id": row["memory_id"], "content": row["content"], "created_at": int(row["created_at"]), "distance": float(row["_distance"])}
            for row in rows
        ]


    def delete(self, user_id: str, scope: str | None = None) -> None:
        predicate = f"user_id = {sql_literal(user_id)}"
        if scope is not None:
            predicate += f" AND scope = {sql_literal(scope)}"
        self._require_table().delete(predicate)
