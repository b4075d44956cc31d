"""Tests for IngestionPipeline: single documents, cascade delete and directory runs."""

import pytest

from conftest import FakeEmbeddingProvider, FakeKeywordIndex
from docmind.config.settings import settings
from docmind.src.core.chunker import Chunker
from docmind.src.core.embedder import EmbeddingService
from docmind.src.core.exceptions import BackendUnavailable
from docmind.src.core.ingestor import IngestionPipeline
from docmind.src.database.vector_store import DocumentVectorStore

POLICY = "\n\n".join([
    "退款申请需要在收到商品后七天内提交。",
    "审核通过后款项将原路退回到支付账户。",
    "如有疑问请联系在线客服人员进行咨询。",
])


@pytest.fixture(autouse=True)
def processed_dir(tmp_path, monkeypatch):
    path = tmp_path / "processed"
    monkeypatch.setattr(settings, "DATA_PROCESSED_DIR", path)
    return path


@pytest.fixture
def raw_dir(tmp_path):
    path = tmp_path / "raw"
    path.mkdir()
    return path


@pytest.fixture
def store(tmp_path):
    return DocumentVectorStore(db_path=str(tmp_path / "lancedb"), table_name="chunks", dimension=8)


@pytest.fixture
def keyword_index():
    return FakeKeywordIndex()


def make_pipeline(store, keyword_index, embedder, source_dir=None):
    return IngestionPipeline(store, keyword_index, embedder, chunker=Chunker(min_size=10, max_size=40, overlap=0), source_dir=source_dir, max_workers=1)


class TestIngestDocument:

    @pytest.mark.asyncio
    async def test_chunks_are_stored_and_indexed(self, store, keyword_index, hash_embedder):
        added = await make_pipeline(store, keyword_index, hash_embedder).ingest_document("42", POLICY, title="退款政策")

        assert added == 2
        assert store.count_document("42") == 2
        assert keyword_index.refreshes == 1
        hits = store.search([0.0] * 8, top_k=5)
        assert {h["chunk_id"] for h in hits} == {"42_1", "42_2"}

    @pytest.mark.asyncio
    async def test_reingest_replaces_previous_chunks(self, store, keyword_index, hash_embedder):
        pipeline = make_pipeline(store, keyword_index, hash_embedder)
        await pipeline.ingest_document("42", POLICY)
        added = await pipeline.ingest_document("42", "只剩下一段足够长的新内容文字。")

        assert added == 1
        assert store.count_document("42") == 1

    @pytest.mark.asyncio
    async def test_text_too_short_stores_nothing(self, store, keyword_index, hash_embedder):
        assert await make_pipeline(store, keyword_index, hash_embedder).ingest_document("42", "太短") == 0
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_provider_failure_rejects_document(self, store, keyword_index):
        embedder = EmbeddingService(FakeEmbeddingProvider(dimension=8, fail=True), dimension=8, fallback_enabled=True)

        with pytest.raises(BackendUnavailable):
            await make_pipeline(store, keyword_index, embedder).ingest_document("42", POLICY)
        assert store.count_document("42") == 0

    @pytest.mark.asyncio
    async def test_failed_reingest_keeps_previous_chunks(self, store, keyword_index, hash_embedder):
        await make_pipeline(store, keyword_index, hash_embedder).ingest_document("42", POLICY)
        failing = EmbeddingService(FakeEmbeddingProvider(dimension=8, fail=True), dimension=8, fallback_enabled=True)

        with pytest.raises(BackendUnavailable):
            await make_pipeline(store, keyword_index, failing).ingest_document("42", POLICY + "\n\n新增的一段足够长的补充说明文字。")

        assert store.count_document("42") == 2
        assert keyword_index.refreshes == 1

    @pytest.mark.asyncio
    async def test_delete_cascades(self, store, keyword_index, hash_embedder):
        pipeline = make_pipeline(store, keyword_index, hash_embedder)
        await pipeline.ingest_document("42", POLICY)
        await pipeline.ingest_document("7", POLICY)

        removed = await pipeline.delete_document("42")

        assert removed == 2
        assert store.count_document("42") == 0
        assert store.count_document("7") == 2
        assert keyword_index.refreshes == 3


class TestRun:

    @pytest.mark.asyncio
    async def test_ingests_supported_files_and_caches_hashes(self, store, keyword_index, hash_embedder, raw_dir, processed_dir):
        (raw_dir / "refund.txt").write_text(POLICY, encoding="utf-8")
        (raw_dir / "faq.md").write_text(POLICY, encoding="utf-8")
        (raw_dir / "image.png").write_bytes(b"\x89PNG")

        summary = await make_pipeline(store, keyword_index, hash_embedder, raw_dir).run()

        assert summary["total_files"] == 2
        assert summary["files_processed"] == 2
        assert summary["files_failed"] == 0
        assert summary["total_chunks"] == 4
        assert store.count_document("refund") == 2
        assert store.count_document("faq") == 2
        assert keyword_index.refreshes == 1
        assert (processed_dir / "ingestion_hashes.json").exists()

    @pytest.mark.asyncio
    async def test_unchanged_files_are_skipped(self, store, keyword_index, hash_embedder, raw_dir):
        (raw_dir / "refund.txt").write_text(POLICY, encoding="utf-8")
        await make_pipeline(store, keyword_index, hash_embedder, raw_dir).run()

        summary = await make_pipeline(store, keyword_index, hash_embedder, raw_dir).run()

        assert summary["files_skipped"] == 1
        assert summary["files_processed"] == 0
        assert store.count_document("refund") == 2

    @pytest.mark.asyncio
    async def test_gb18030_files_are_read(self, store, keyword_index, hash_embedder, raw_dir):
        (raw_dir / "legacy.txt").write_bytes(POLICY.encode("gb18030"))
        summary = await make_pipeline(store, keyword_index, hash_embedder, raw_dir).run()
        assert summary["files_processed"] == 1
        assert store.count_document("legacy") == 2

    @pytest.mark.asyncio
    async def test_failed_file_is_counted(self, store, keyword_index, raw_dir):
        (raw_dir / "refund.txt").write_text(POLICY, encoding="utf-8")
        embedder = EmbeddingService(FakeEmbeddingProvider(dimension=8, fail=True), dimension=8, fallback_enabled=True)

        summary = await make_pipeline(store, keyword_index, embedder, raw_dir).run()

        assert summary["files_failed"] == 1
        assert summary["total_chunks"] == 0

    @pytest.mark.asyncio
    async def test_missing_source_directory(self, store, keyword_index, hash_embedder, tmp_path):
        summary = await make_pipeline(store, keyword_index, hash_embedder, tmp_path / "absent").run()
        assert summary["total_files"] == 0
