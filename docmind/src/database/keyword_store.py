"""
DocMind - LanceDB Keyword Store
================================
Full-text (BM25) search over the ``content`` column of the document
chunk table, using LanceDB's native FTS index.

The index is built over the *same* table as ``DocumentVectorStore`` so a
chunk has one identity (``chunk_id``) across both retrieval branches.
It is not updated incrementally: call ``refresh_index()`` after every
ingestion or deletion batch (``IngestionPipeline`` does).

The default ``ngram`` tokenizer matches sub-word character runs, which
is what CJK text needs; whitespace tokenizers would treat a whole
Chinese sentence as one token.
"""

from __future__ import annotations

from docmind.config.settings import settings
from docmind.src.database.vector_store import DocumentVectorStore, SearchHit, sql_literal
from docmind.src.utils.logger import get_logger

logger = get_logger(__name__)

_FTS_COLUMN = "content"
_NGRAM_MIN = 2
_NGRAM_MAX = 3


class LanceKeywordStore:
    """
    Parameters
    ----------
    document_store
        The ``DocumentVectorStore`` whose table is indexed.
    base_tokenizer
        LanceDB FTS tokenizer.  Defaults to ``settings.FTS_BASE_TOKENIZER``.
    """

    __slots__ = ("_documents", "_tokenizer")

    def __init__(self, document_store: DocumentVectorStore, base_tokenizer: str | None = None) -> None:
        self._documents = document_store
        self._tokenizer = base_tokenizer or settings.FTS_BASE_TOKENIZER


    def refresh_index(self) -> None:
        """(Re)build the FTS index.  A no-op on an empty table."""
        table = self._documents.table
        if table is None or table.count_rows() == 0:
            logger.debug("[FTS] Table empty — index not built.")
            return

        options: dict[str, object] = {"base_tokenizer": self._tokenizer, "replace": True}
        if self._tokenizer == "ngram":
            options.update(ngram_min_length=_NGRAM_MIN, ngram_max_length=_NGRAM_MAX)
        table.create_fts_index(_FTS_COLUMN, **options)
        logger.info("[FTS] Index rebuilt on '%s.%s' (%s tokenizer).", self._documents.table_name, _FTS_COLUMN, self._tokenizer)


    def search(self, query: str, top_k: int, document_id: str | None = None) -> list[SearchHit]:
        """BM25-ranked chunks containing *query* terms; ``score`` is the raw BM25 score."""
        table = self._documents.table
        if table is None:
            return []

        builder = table.search(query, query_type="fts").limit(top_k)
        if document_id is not None:
            builder = builder.where(f"document_id = {sql_literal(document_id)}", prefilter=True)

        rows = builder.to_list()
        return [
            {"document_id": row["document_id"], "chunk_id": row["chunk_id"], "content": row["content"], "score": float(row["_score"])}
            for row in rows
        ]
