"""End-to-end tests for HybridRetriever over fake search stores.

Covers branch failures and timeouts, document scoping, pooling and the
pipeline's input validation.
"""

import time

import pytest

from conftest import FakeEmbeddingProvider, FakeSearchStore, keyword_hit, vector_hit
from docmind.src.core.embedder import EmbeddingService
from docmind.src.core.exceptions import InvalidInput
from docmind.src.core.reranker import LexicalReranker, NoOpReranker
from docmind.src.core.retrieval import Deduplicator, HybridRetriever, RetrievalFanout


def make_retriever(keyword_store, vector_store, embedder, timeout=0.2, reranker=None):
    fanout = RetrievalFanout(vector_store, keyword_store, embedder, timeout=timeout)
    return HybridRetriever(fanout, reranker or NoOpReranker(), Deduplicator(0.8))


@pytest.fixture
def keyword_store():
    return FakeSearchStore([keyword_hit("42_1", 80, "refund takes seven days"), keyword_hit("42_2", 20, "invoices are issued monthly")])


@pytest.fixture
def vector_store():
    return FakeSearchStore([vector_hit("42_1", 0.5, "refund takes seven days"), vector_hit("42_3", 1.0, "membership points expire yearly")])


class TestHybridSearch:

    @pytest.mark.asyncio
    async def test_fuses_both_branches(self, keyword_store, vector_store, hash_embedder):
        results = await make_retriever(keyword_store, vector_store, hash_embedder).hybrid_search("refund", document_id="42", top_k=5)

        assert [c.chunk_id for c in results] == ["42_1", "42_3", "42_2"]
        assert results[0].combined_score == pytest.approx(0.4 + 0.5 / 1.5)
        assert keyword_store.calls[0]["top_k"] == 10

    @pytest.mark.asyncio
    async def test_top_k_caps_results(self, keyword_store, vector_store, hash_embedder):
        results = await make_retriever(keyword_store, vector_store, hash_embedder).hybrid_search("refund", top_k=1)
        assert [c.chunk_id for c in results] == ["42_1"]

    @pytest.mark.asyncio
    async def test_document_filter_is_forwarded(self, hash_embedder):
        keyword = FakeSearchStore([keyword_hit("42_1", 50), keyword_hit("7_1", 90, document_id="7")])
        vector = FakeSearchStore([vector_hit("7_2", 0.1, document_id="7")])

        results = await make_retriever(keyword, vector, hash_embedder).hybrid_search("refund", document_id="42")

        assert {c.document_id for c in results} == {"42"}
        assert all(call["document_id"] == "42" for call in keyword.calls + vector.calls)

    @pytest.mark.asyncio
    async def test_failing_keyword_branch_is_absorbed(self, vector_store, hash_embedder):
        results = await make_retriever(FakeSearchStore(fail=True), vector_store, hash_embedder).hybrid_search("refund")
        assert [c.chunk_id for c in results] == ["42_1", "42_3"]

    @pytest.mark.asyncio
    async def test_slow_vector_branch_times_out(self, keyword_store, hash_embedder):
        slow = FakeSearchStore([vector_hit("42_9", 0.0)], delay=1.0)

        results = await make_retriever(keyword_store, slow, hash_embedder, timeout=0.05).hybrid_search("refund")

        assert [c.chunk_id for c in results] == ["42_1", "42_2"]
        assert all(c.vector_distance is None for c in results)

    @pytest.mark.asyncio
    async def test_all_branches_failing_yields_empty(self, hash_embedder):
        retriever = make_retriever(FakeSearchStore(fail=True), FakeSearchStore(fail=True), hash_embedder)
        assert await retriever.hybrid_search("refund") == []

    @pytest.mark.asyncio
    async def test_degraded_query_embedding_skips_vector_branch(self, keyword_store, vector_store):
        embedder = EmbeddingService(FakeEmbeddingProvider(dimension=8, fail=True), dimension=8, fallback_enabled=True)

        results = await make_retriever(keyword_store, vector_store, embedder).hybrid_search("refund")

        assert vector_store.calls == []
        assert [c.chunk_id for c in results] == ["42_1", "42_2"]

    @pytest.mark.asyncio
    async def test_each_expanded_query_fans_out(self, keyword_store, vector_store, hash_embedder):
        await make_retriever(keyword_store, vector_store, hash_embedder).hybrid_search("refund policy")
        assert sorted(call["query"] for call in keyword_store.calls) == ["policy", "refund", "refund policy"]
        assert len(vector_store.calls) == 3

    @pytest.mark.asyncio
    async def test_near_duplicates_are_collapsed(self, hash_embedder):
        keyword = FakeSearchStore([keyword_hit("42_1", 90, "Refund takes seven days."), keyword_hit("42_2", 80, "refund takes seven days")])
        results = await make_retriever(keyword, FakeSearchStore(), hash_embedder).hybrid_search("refund")
        assert [c.chunk_id for c in results] == ["42_1"]

    @pytest.mark.asyncio
    async def test_reranker_order_wins(self, hash_embedder):
        keyword = FakeSearchStore([keyword_hit("42_1", 90, "shipping address change"), keyword_hit("42_2", 60, "refund requests are processed within seven working days")])
        results = await make_retriever(keyword, FakeSearchStore(), hash_embedder, reranker=LexicalReranker()).hybrid_search("refund")
        assert results[0].chunk_id == "42_2"
        assert results[0].rerank_score is not None


class TestValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   "])
    async def test_blank_query(self, keyword_store, vector_store, hash_embedder, query):
        with pytest.raises(InvalidInput):
            await make_retriever(keyword_store, vector_store, hash_embedder).hybrid_search(query)

    @pytest.mark.asyncio
    async def test_non_positive_top_k(self, keyword_store, vector_store, hash_embedder):
        with pytest.raises(InvalidInput):
            await make_retriever(keyword_store, vector_store, hash_embedder).hybrid_search("refund", top_k=0)


class TestGateThroughRetriever:

    @pytest.mark.asyncio
    async def test_is_relevant_uses_top_result(self, keyword_store, vector_store, hash_embedder):
        retriever = make_retriever(keyword_store, vector_store, hash_embedder)
        results = await retriever.hybrid_search("refund")
        assert retriever.is_relevant("refund", results) is True
        assert retriever.is_relevant("refund", []) is False


class TestFanoutConcurrency:

    @pytest.mark.asyncio
    async def test_keyword_branch_does_not_wait_for_embedding(self, keyword_store, vector_store):
        embedder = EmbeddingService(FakeEmbeddingProvider(dimension=8, delay=0.3), dimension=8, timeout=2.0, fallback_enabled=True)
        fanout = RetrievalFanout(vector_store, keyword_store, embedder, timeout=2.0)

        started = time.perf_counter()
        result = await fanout.fan_out(["refund"], top_k=5)

        assert keyword_store.calls[0]["started_at"] - started < 0.15
        assert vector_store.calls[0]["started_at"] - started >= 0.25
        assert result.keyword_hits and result.vector_hits
        assert result.failed_branches == 0

    @pytest.mark.asyncio
    async def test_one_timeout_covers_embedding_and_search(self, keyword_store, vector_store):
        embedder = EmbeddingService(FakeEmbeddingProvider(dimension=8, delay=0.3), dimension=8, timeout=2.0, fallback_enabled=True)
        fanout = RetrievalFanout(vector_store, keyword_store, embedder, timeout=0.1)

        result = await fanout.fan_out(["refund"], top_k=5)

        assert vector_store.calls == []
        assert result.vector_hits == []
        assert len(result.keyword_hits) == 2
        assert result.failed_branches == 1
