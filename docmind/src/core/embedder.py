"""
DocMind - Embedding Service
============================
Async facade over a LangChain-compatible embedding model with a
deterministic, clearly-flagged fallback.

Behaviour
---------
- Provider calls run in a worker thread under
  ``EMBEDDING_TIMEOUT_SECONDS``.
- Any provider failure, timeout, or wrong-dimension vector falls back to
  a hash pseudo-embedding.  The fallback is deterministic (same text →
  same vector) but carries **no semantic meaning**, so every fallback is
  logged as ``DEGRADED``, counted, and reported through
  ``Embedding.degraded``.
- Blank text raises ``InvalidInput`` before any provider call.
- Batch calls preserve input order.

Usage:
    from docmind.src.core.embedder import EmbeddingService, build_embedding_provider
    service = EmbeddingService(build_embedding_provider())
    vector = await service.embed("退款流程是什么")
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from docmind.config.settings import settings
from docmind.src.core.exceptions import BackendUnavailable, ConfigurationError, InvalidInput
from docmind.src.utils.logger import get_logger

logger = get_logger(__name__)

_FALLBACK_MODULUS = 1000


# ── Provider Protocol ─────────────────────────────────────────────────

@runtime_checkable
class EmbeddingProvider(Protocol):
    """Structural type for any LangChain-compatible embedding model."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]: ...

    def embed_query(self, text: str) -> list[float]: ...


@dataclass(frozen=True, slots=True)
class Embedding:
    vector: list[float]
    degraded: bool


def fallback_embedding(text: str, dimension: int) -> list[float]:
    """
    Deterministic pseudo-embedding: ``((seed + i) mod 1000) / 1000``.

    *seed* comes from an MD5 digest rather than ``hash()`` so vectors
    are stable across processes (``PYTHONHASHSEED``).
    """
    seed = int.from_bytes(hashlib.md5(text.encode("utf-8")).digest()[:8], "big")
    return [((seed + i) % _FALLBACK_MODULUS) / _FALLBACK_MODULUS for i in range(dimension)]


def build_embedding_provider() -> EmbeddingProvider | None:
    """Return the Gemini embedding model, or ``None`` when no API key is configured."""
    if settings.GOOGLE_API_KEY is None:
        logger.warning("[EMBED] GOOGLE_API_KEY not set — no embedding provider configured.")
        return None

    from langchain_google_genai import GoogleGenerativeAIEmbeddings

    provider = GoogleGenerativeAIEmbeddings(model=settings.EMBEDDING_MODEL, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())
    logger.info("[EMBED] Provider initialised: %s (dim=%d)", settings.EMBEDDING_MODEL, settings.EMBEDDING_DIMENSION)
    return provider


class EmbeddingService:
    """
    Parameters
    ----------
    provider
        A LangChain ``Embeddings`` instance, or ``None`` to run purely
        on the fallback (only allowed while the fallback is enabled).
    dimension, timeout, fallback_enabled
        Overrides for the corresponding settings.

    Raises
    ------
    ConfigurationError
        No provider and the fallback is disabled.
    """

    __slots__ = ("_provider", "_dimension", "_timeout", "_fallback_enabled", "_degraded_count")

    def __init__(self, provider: EmbeddingProvider | None, dimension: int | None = None, timeout: float | None = None, fallback_enabled: bool | None = None) -> None:
        self._provider = provider
        self._dimension = dimension or settings.EMBEDDING_DIMENSION
        self._timeout = timeout or settings.EMBEDDING_TIMEOUT_SECONDS
        self._fallback_enabled = settings.EMBEDDING_FALLBACK_ENABLED if fallback_enabled is None else fallback_enabled
        self._degraded_count = 0

        if provider is None and not self._fallback_enabled:
            raise ConfigurationError("No embedding provider configured and the hash fallback is disabled.")
        if provider is None:
            logger.warning("[EMBED] DEGRADED — running on hash pseudo-embeddings only; vector search has no semantic signal.")


    @property
    def dimension(self) -> int:
        return self._dimension


    @property
    def has_provider(self) -> bool:
        return self._provider is not None


    @property
    def degraded_count(self) -> int:
        """Number of texts embedded with the fallback since construction."""
        return self._degraded_count

    # ── Single text ────────────────────────────────────────────────────

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_with_status(text)).vector


    async def embed_with_status(self, text: str) -> Embedding:
        self._require_text(text)
        if self._provider is not None:
            try:
                vector = await self._call(self._provider.embed_query, text)
                self._check_dimension(vector)
                return Embedding(vector=list(vector), degraded=False)
            except Exception as exc:
                self._on_provider_failure(exc, 1)
        return self._fallback(text)

    # ── Batch ──────────────────────────────────────────────────────────

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [e.vector for e in await self.embed_batch_with_status(texts)]


    async def embed_batch_with_status(self, texts: list[str]) -> list[Embedding]:
        """Embed *texts* in one provider call; output order matches input order."""
        for text in texts:
            self._require_text(text)
        if not texts:
            return []

        if self._provider is not None:
            try:
                vectors = await self._call(self._provider.embed_documents, list(texts))
                if len(vectors) != len(texts):
                    raise BackendUnavailable("embedding", f"expected {len(texts)} vectors, got {len(vectors)}")
                for vector in vectors:
                    self._check_dimension(vector)
                return [Embedding(vector=list(v), degraded=False) for v in vectors]
            except Exception as exc:
                self._on_provider_failure(exc, len(texts))

        return [self._fallback(text) for text in texts]

    # ── Internals ──────────────────────────────────────────────────────

    async def _call(self, fn, payload):
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, payload), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise BackendUnavailable("embedding", f"timed out after {self._timeout:.1f}s") from exc


    def _check_dimension(self, vector: list[float]) -> None:
        if len(vector) != self._dimension:
            raise BackendUnavailable("embedding", f"dimension mismatch: expected {self._dimension}, got {len(vector)}")


    def _on_provider_failure(self, exc: Exception, count: int) -> None:
        if not self._fallback_enabled:
            if isinstance(exc, BackendUnavailable):
                raise exc
            raise BackendUnavailable("embedding", str(exc)) from exc
        logger.warning("[EMBED] DEGRADED — provider failed for %d text(s), using hash fallback: %s", count, exc)


    def _fallback(self, text: str) -> Embedding:
        self._degraded_count += 1
        return Embedding(vector=fallback_embedding(text, self._dimension), degraded=True)


    @staticmethod
    def _require_text(text: str) -> None:
        if not text or not text.strip():
            raise InvalidInput("text to embed must not be blank")


    def __repr__(self) -> str:
        provider = type(self._provider).__name__ if self._provider is not None else "None"
        return f"EmbeddingService(provider={provider}, dim={self._dimension}, degraded={self._degraded_count})"
