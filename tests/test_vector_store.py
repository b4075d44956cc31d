"""Tests for the LanceDB-backed document chunk table (on a temporary directory)."""

import pytest

from docmind.src.core.chunker import Chunk
from docmind.src.database.keyword_store import LanceKeywordStore
from docmind.src.database.vector_store import DocumentVectorStore, sql_literal

DIM = 4


def unit(i):
    vector = [0.0] * DIM
    vector[i % DIM] = 1.0
    return vector


@pytest.fixture
def store(tmp_path):
    return DocumentVectorStore(db_path=str(tmp_path / "lancedb"), table_name="chunks", dimension=DIM)


def chunks_of(document_id, n):
    return [Chunk(document_id=document_id, index=i, content=f"{document_id} 第{i}段内容") for i in range(1, n + 1)]


class TestDocumentVectorStore:

    def test_add_and_search_nearest_first(self, store):
        store.add_chunks(chunks_of("42", 3), [unit(0), unit(1), unit(2)], title="退款政策")

        hits = store.search(unit(1), top_k=2)

        assert hits[0]["chunk_id"] == "42_2"
        assert hits[0]["distance"] == pytest.approx(0.0)
        assert len(hits) == 2
        assert set(hits[0]) == {"document_id", "chunk_id", "content", "distance"}

    def test_document_filter(self, store):
        store.add_chunks(chunks_of("42", 2), [unit(0), unit(1)])
        store.add_chunks(chunks_of("7", 2), [unit(0), unit(1)])

        hits = store.search(unit(0), top_k=10, document_id="7")

        assert {h["document_id"] for h in hits} == {"7"}
        assert len(hits) == 2

    def test_delete_document(self, store):
        store.add_chunks(chunks_of("42", 2), [unit(0), unit(1)])
        store.add_chunks(chunks_of("7", 1), [unit(2)])

        assert store.delete_document("42") == 2
        assert store.count_document("42") == 0
        assert store.count() == 1

    def test_length_mismatch(self, store):
        with pytest.raises(ValueError):
            store.add_chunks(chunks_of("42", 2), [unit(0)])

    def test_wrong_dimension(self, store):
        with pytest.raises(ValueError):
            store.add_chunks(chunks_of("42", 1), [[1.0, 0.0]])

    def test_reopen_sees_existing_rows(self, store, tmp_path):
        store.add_chunks(chunks_of("42", 2), [unit(0), unit(1)])
        reopened = DocumentVectorStore(db_path=str(tmp_path / "lancedb"), table_name="chunks", dimension=DIM)
        assert reopened.count() == 2

    def test_drop_table(self, store):
        store.add_chunks(chunks_of("42", 1), [unit(0)])
        store.drop_table()
        assert store.count() == 0


class TestHelpers:

    def test_sql_literal_escapes_quotes(self):
        assert sql_literal("o'brien") == "'o''brien'"
        assert sql_literal(42) == "'42'"

    def test_keyword_index_refresh_on_empty_table_is_noop(self, store):
        LanceKeywordStore(store).refresh_index()
        assert store.count() == 0
