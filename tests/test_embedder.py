"""Tests for EmbeddingService: provider path, hash fallback and degradation."""

import pytest

from conftest import FakeEmbeddingProvider
from docmind.src.core.embedder import EmbeddingService, fallback_embedding
from docmind.src.core.exceptions import BackendUnavailable, ConfigurationError, InvalidInput


class TestFallbackEmbedding:

    def test_deterministic_and_sized(self):
        first = fallback_embedding("退款政策", 16)
        assert first == fallback_embedding("退款政策", 16)
        assert len(first) == 16
        assert all(0.0 <= v < 1.0 for v in first)

    def test_consecutive_components_step_by_one_thousandth(self):
        vector = fallback_embedding("hello", 4)
        seed = round(vector[0] * 1000)
        assert vector == [((seed + i) % 1000) / 1000 for i in range(4)]


class TestEmbeddingService:

    @pytest.mark.asyncio
    async def test_provider_vector_is_not_degraded(self):
        provider = FakeEmbeddingProvider(dimension=8)
        service = EmbeddingService(provider, dimension=8)

        result = await service.embed_with_status("退款")

        assert result.degraded is False
        assert result.vector == provider.vector_for("退款")
        assert service.degraded_count == 0

    @pytest.mark.asyncio
    async def test_without_provider_uses_fallback(self, hash_embedder):
        result = await hash_embedder.embed_with_status("退款")

        assert result.degraded is True
        assert result.vector == fallback_embedding("退款", 8)
        assert hash_embedder.has_provider is False
        assert hash_embedder.degraded_count == 1

    @pytest.mark.asyncio
    async def test_provider_failure_degrades(self):
        service = EmbeddingService(FakeEmbeddingProvider(dimension=8, fail=True), dimension=8, fallback_enabled=True)

        result = await service.embed_with_status("退款")

        assert result.degraded is True
        assert result.vector == fallback_embedding("退款", 8)

    @pytest.mark.asyncio
    async def test_provider_failure_raises_when_fallback_disabled(self):
        service = EmbeddingService(FakeEmbeddingProvider(dimension=8, fail=True), dimension=8, fallback_enabled=False)

        with pytest.raises(BackendUnavailable) as exc_info:
            await service.embed("退款")
        assert exc_info.value.backend == "embedding"

    @pytest.mark.asyncio
    async def test_wrong_dimension_counts_as_failure(self):
        service = EmbeddingService(FakeEmbeddingProvider(dimension=8, wrong_dimension=True), dimension=8, fallback_enabled=True)
        result = await service.embed_with_status("退款")
        assert result.degraded is True
        assert len(result.vector) == 8

    @pytest.mark.asyncio
    async def test_slow_provider_times_out_to_fallback(self):
        service = EmbeddingService(FakeEmbeddingProvider(dimension=8, delay=0.5), dimension=8, timeout=0.05, fallback_enabled=True)
        result = await service.embed_with_status("退款")
        assert result.degraded is True

    def test_no_provider_and_no_fallback_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            EmbeddingService(None, dimension=8, fallback_enabled=False)

    @pytest.mark.asyncio
    async def test_blank_text_is_invalid(self, hash_embedder):
        with pytest.raises(InvalidInput):
            await hash_embedder.embed("   ")
        with pytest.raises(InvalidInput):
            await hash_embedder.embed_batch(["ok", ""])


class TestBatch:

    @pytest.mark.asyncio
    async def test_batch_preserves_order_in_one_call(self):
        provider = FakeEmbeddingProvider(dimension=8)
        service = EmbeddingService(provider, dimension=8)
        texts = ["a", "bbb", "cc"]

        vectors = await service.embed_batch(texts)

        assert vectors == [provider.vector_for(t) for t in texts]
        assert provider.document_calls == [texts]

    @pytest.mark.asyncio
    async def test_count_mismatch_degrades_whole_batch(self):
        service = EmbeddingService(FakeEmbeddingProvider(dimension=8, drop_last=True), dimension=8, fallback_enabled=True)

        results = await service.embed_batch_with_status(["a", "b", "c"])

        assert [r.degraded for r in results] == [True, True, True]
        assert service.degraded_count == 3

    @pytest.mark.asyncio
    async def test_empty_batch(self, hash_embedder):
        assert await hash_embedder.embed_batch([]) == []
