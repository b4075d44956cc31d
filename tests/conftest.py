"""Shared fakes and fixtures for the DocMind test-suite.

The fakes mirror the collaborator protocols (search stores, embedding
provider, generator) closely enough that the real orchestration code
runs unchanged on top of them.
"""

import asyncio
import time

import pytest

from docmind.src.core.embedder import EmbeddingService
from docmind.src.core.retrieval import RetrievalCandidate
from docmind.src.database.memory_store import InMemoryMemoryStore


# =============================================================================
# Embedding provider
# =============================================================================


class FakeEmbeddingProvider:
    """Sync LangChain-style provider; vectors derive from text length."""

    def __init__(self, dimension=8, fail=False, delay=0.0, wrong_dimension=False, drop_last=False):
        self.dimension = dimension
        self.fail = fail
        self.delay = delay
        self.wrong_dimension = wrong_dimension
        self.drop_last = drop_last
        self.query_calls = []
        self.document_calls = []

    def vector_for(self, text):
        size = self.dimension + 1 if self.wrong_dimension else self.dimension
        return [float((len(text) + i) % 5) / 5 for i in range(size)]

    def embed_query(self, text):
        self.query_calls.append(text)
        self._maybe_fail()
        return self.vector_for(text)

    def embed_documents(self, texts):
        self.document_calls.append(list(texts))
        self._maybe_fail()
        vectors = [self.vector_for(t) for t in texts]
        return vectors[:-1] if self.drop_last else vectors

    def _maybe_fail(self):
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise RuntimeError("provider down")


# =============================================================================
# Search stores
# =============================================================================


class FakeSearchStore:
    """Async search store returning canned hits, optionally failing or slow."""

    def __init__(self, hits=None, fail=False, delay=0.0):
        self.hits = list(hits or [])
        self.fail = fail
        self.delay = delay
        self.calls = []

    async def search(self, query_or_vector, top_k, document_id=None):
        self.calls.append({"query": query_or_vector, "top_k": top_k, "document_id": document_id, "started_at": time.perf_counter()})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("store offline")
        hits = [h for h in self.hits if document_id is None or h["document_id"] == document_id]
        return [dict(h) for h in hits[:top_k]]


class FakeKeywordIndex:
    """Stands in for ``LanceKeywordStore`` in ingestion tests."""

    def __init__(self):
        self.refreshes = 0

    def refresh_index(self):
        self.refreshes += 1


# =============================================================================
# Generation
# =============================================================================


class FakeGenerator:
    def __init__(self, reply="好的。", fail=False):
        self.reply = reply
        self.fail = fail
        self.calls = []

    async def generate(self, system_prompt, messages):
        self.calls.append({"system_prompt": system_prompt, "messages": messages})
        if self.fail:
            raise RuntimeError("llm quota exceeded")
        return self.reply


class FakeClock:
    """Manually advanced wall clock in seconds."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


# =============================================================================
# Helpers & fixtures
# =============================================================================


def keyword_hit(chunk_id, score, content=None, document_id="42"):
    return {"document_id": document_id, "chunk_id": chunk_id, "content": content or f"content of {chunk_id}", "score": score}


def vector_hit(chunk_id, distance, content=None, document_id="42"):
    return {"document_id": document_id, "chunk_id": chunk_id, "content": content or f"content of {chunk_id}", "distance": distance}


def candidate(chunk_id, combined=0.0, content=None, **kwargs):
    return RetrievalCandidate(document_id=kwargs.pop("document_id", "42"), chunk_id=chunk_id, content=content or f"content of {chunk_id}", combined_score=combined, **kwargs)


@pytest.fixture
def hash_embedder():
    """Embedding service running purely on the deterministic fallback."""
    return EmbeddingService(None, dimension=8, fallback_enabled=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    return InMemoryMemoryStore(clock=clock)
