"""
DocMind - Hybrid Retrieval
===========================
Turns a raw question into a ranked, de-duplicated list of passages drawn
from a keyword index and a vector index.

Architecture
------------
``RetrievalFanout``
    One keyword search and one vector search per expanded query, all
    running concurrently, each bounded by
    ``RETRIEVAL_CALL_TIMEOUT_SECONDS``.  The vector branch embeds its
    query inside that bound.  A failed or slow branch
    contributes nothing; it never fails the request.

``ScoreFusion``
    Normalises both score families into [0, 1] and sums the weighted
    contributions per chunk::

        keyword  →  min(1, score / 100)     × keyword_weight
        vector   →  1 / (1 + distance)      × vector_weight

    The sum is taken with ``math.fsum``, so the result does not depend
    on the order in which branch results arrive.

``Deduplicator``
    Drops a candidate whose normalised content has a character-set
    Jaccard similarity > 0.8 with an already-accepted, higher-ranked one.

``RelevanceGate``
    Decides whether the best passage is good enough to ground an answer.

``HybridRetriever``
    analyze → expand → fan out → fuse → pool (top_k × 4) → dedup →
    rerank → top_k.

Usage:
    retriever = HybridRetriever(RetrievalFanout(vector_store, keyword_store, embedder), NoOpReranker())
    passages = await retriever.hybrid_search("退款流程是什么", document_id="42")
    grounded = retriever.is_relevant("退款流程是什么", passages)
"""

from __future__ import annotations

import asyncio
import inspect
import math
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from docmind.config.settings import settings
from docmind.src.core.embedder import EmbeddingService
from docmind.src.core.exceptions import InvalidInput
from docmind.src.core.query_analysis import QueryAnalyzer, QueryExpander, QueryProfile
from docmind.src.utils.logger import get_logger
from docmind.src.utils.text_utils import char_jaccard, has_lexical_overlap, normalize_content

logger = get_logger(__name__)

# ── Type Aliases ──────────────────────────────────────────────────────
# Keyword hits carry ``score``; vector hits carry ``distance``.
SearchHit = dict[str, str | int | float]

_KEYWORD_SCORE_SCALE = 100.0


# ══════════════════════════════════════════════════════════════════════
#  CANDIDATE
# ══════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class RetrievalCandidate:
    """
    One passage under consideration for the current request.

    ``combined_score`` is always populated by fusion.  ``rerank_score``
    is set only when a reranker actually scored the passage.
    ``vector_distance`` is the best raw distance any vector branch
    reported (``None`` for keyword-only hits).
    """

    document_id: str
    chunk_id: str
    content: str
    combined_score: float = 0.0
    keyword_score: float | None = None
    vector_score: float | None = None
    vector_distance: float | None = None
    rerank_score: float | None = None
    contributions: list[float] = field(default_factory=list, repr=False)


    def add_contribution(self, value: float) -> None:
        self.contributions.append(value)
        self.combined_score = math.fsum(self.contributions)


    @property
    def relevance(self) -> float:
        return self.rerank_score if self.rerank_score is not None else self.combined_score


# ══════════════════════════════════════════════════════════════════════
#  COLLABORATOR PROTOCOLS
# ══════════════════════════════════════════════════════════════════════


class VectorSearch(Protocol):
    """Hits: ``{document_id, chunk_id, content, distance}`` (smaller is closer)."""

    def search(self, vector: list[float], top_k: int, document_id: str | None = None) -> list[SearchHit]: ...


class KeywordSearch(Protocol):
    """Hits: ``{document_id, chunk_id, content, score}`` (larger is better)."""

    def search(self, query: str, top_k: int, document_id: str | None = None) -> list[SearchHit]: ...


class Reranker(Protocol):
    """Reorders candidates; must return exactly the candidates it was given."""

    async def rerank(self, query: str, candidates: list[RetrievalCandidate]) -> list[RetrievalCandidate]: ...


def sort_by_combined(candidates: list[RetrievalCandidate]) -> list[RetrievalCandidate]:
    return sorted(candidates, key=lambda c: c.combined_score, reverse=True)


# ══════════════════════════════════════════════════════════════════════
#  FAN-OUT
# ══════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class FanoutResult:
    keyword_hits: list[SearchHit] = field(default_factory=list)
    vector_hits: list[SearchHit] = field(default_factory=list)
    failed_branches: int = 0


class RetrievalFanout:
    """
    Concurrent keyword + vector retrieval over every expanded query.

    Store methods may be plain functions (run in a worker thread, as the
    LanceDB client is blocking) or coroutines (awaited directly).

    Parameters
    ----------
    vector_store, keyword_store
        Search collaborators.
    embedder
        Produces the query vectors.  Each distinct query text is
        embedded once per request.
    timeout
        Per-call bound in seconds.  Defaults to
        ``settings.RETRIEVAL_CALL_TIMEOUT_SECONDS``.
    """

    __slots__ = ("_vector_store", "_keyword_store", "_embedder", "_timeout")

    def __init__(self, vector_store: VectorSearch, keyword_store: KeywordSearch, embedder: EmbeddingService, timeout: float | None = None) -> None:
        self._vector_store = vector_store
        self._keyword_store = keyword_store
        self._embedder = embedder
        self._timeout = timeout or settings.RETRIEVAL_CALL_TIMEOUT_SECONDS


    async def fan_out(self, queries: Sequence[str], top_k: int, document_id: str | None = None) -> FanoutResult:
        """Run every branch concurrently; failures and timeouts yield empty lists."""
        per_call = top_k * 2
        queries = list(dict.fromkeys(queries))

        keyword_calls = [self._guarded("keyword", q, lambda q=q: self._invoke(self._keyword_store.search, q, per_call, document_id)) for q in queries]
        # Embedding runs inside the vector branch, so one timeout bounds embed + search.
        vector_calls = [self._guarded("vector", q, lambda q=q: self._vector_branch(q, per_call, document_id)) for q in queries]

        results = await asyncio.gather(*keyword_calls, *vector_calls)
        keyword_results, vector_results = results[: len(queries)], results[len(queries) :]

        result = FanoutResult()
        for hits in keyword_results:
            if hits is None:
                result.failed_branches += 1
            else:
                result.keyword_hits.extend(hits)
        for hits in vector_results:
            if hits is None:
                result.failed_branches += 1
            else:
                result.vector_hits.extend(hits)

        logger.debug("[FANOUT] %d quer(ies) → %d keyword hit(s), %d vector hit(s), %d failed branch(es).", len(queries), len(result.keyword_hits), len(result.vector_hits), result.failed_branches)
        return result


    async def _vector_branch(self, query: str, top_k: int, document_id: str | None) -> list[SearchHit]:
        embedding = await self._embedder.embed_with_status(query)
        if embedding.degraded and self._embedder.has_provider:
            logger.warning("[FANOUT] vector branch skipped for '%.40s': DEGRADED query embedding.", query)
            return []
        return await self._invoke(self._vector_store.search, embedding.vector, top_k, document_id)


    async def _guarded(self, branch: str, query: str, call: Callable[[], Awaitable[list[SearchHit]]]) -> list[SearchHit] | None:
        """Run one branch under the per-call timeout; ``None`` marks a failure."""
        try:
            return list(await asyncio.wait_for(call(), timeout=self._timeout))
        except asyncio.TimeoutError:
            logger.warning("[FANOUT] %s branch timed out after %.1fs for '%.40s'.", branch, self._timeout, query)
        except Exception as exc:
            logger.warning("[FANOUT] %s branch failed for '%.40s': %s", branch, query, exc)
        return None


    @staticmethod
    async def _invoke(fn: Callable[..., object], *args: object) -> list[SearchHit]:
        if inspect.iscoroutinefunction(fn):
            return await fn(*args)
        return await asyncio.to_thread(fn, *args)


# ══════════════════════════════════════════════════════════════════════
#  FUSION & DEDUPLICATION
# ══════════════════════════════════════════════════════════════════════


class ScoreFusion:
    """Merge keyword and vector hits into one candidate per chunk."""

    @staticmethod
    def normalize_keyword(score: float) -> float:
        return min(1.0, max(0.0, score / _KEYWORD_SCORE_SCALE))


    @staticmethod
    def normalize_distance(distance: float) -> float:
        return 1.0 / (1.0 + max(0.0, distance))


    def fuse(self, keyword_hits: Sequence[SearchHit], vector_hits: Sequence[SearchHit], profile: QueryProfile) -> dict[str, RetrievalCandidate]:
        candidates: dict[str, RetrievalCandidate] = {}

        for hit in keyword_hits:
            raw = float(hit["score"])
            candidate = self._candidate_for(candidates, hit)
            candidate.add_contribution(self.normalize_keyword(raw) * profile.keyword_weight)
            candidate.keyword_score = raw if candidate.keyword_score is None else max(candidate.keyword_score, raw)

        for hit in vector_hits:
            distance = float(hit["distance"])
            normalized = self.normalize_distance(distance)
            candidate = self._candidate_for(candidates, hit)
            candidate.add_contribution(normalized * profile.vector_weight)
            candidate.vector_score = normalized if candidate.vector_score is None else max(candidate.vector_score, normalized)
            candidate.vector_distance = distance if candidate.vector_distance is None else min(candidate.vector_distance, distance)

        logger.debug("[FUSION] %d keyword + %d vector hit(s) → %d candidate(s) (weights kw=%.1f vec=%.1f).", len(keyword_hits), len(vector_hits), len(candidates), profile.keyword_weight, profile.vector_weight)
        return candidates


    @staticmethod
    def _candidate_for(candidates: dict[str, RetrievalCandidate], hit: SearchHit) -> RetrievalCandidate:
        chunk_id = str(hit["chunk_id"])
        candidate = candidates.get(chunk_id)
        if candidate is None:
            candidate = RetrievalCandidate(document_id=str(hit.get("document_id", "")), chunk_id=chunk_id, content=str(hit.get("content", "")))
            candidates[chunk_id] = candidate
        return candidate


class Deduplicator:
    """First-wins near-duplicate removal over an already-ranked list."""

    __slots__ = ("_threshold",)

    def __init__(self, threshold: float | None = None) -> None:
        self._threshold = settings.DEDUP_SIMILARITY_THRESHOLD if threshold is None else threshold


    def deduplicate(self, candidates: Sequence[RetrievalCandidate]) -> list[RetrievalCandidate]:
        accepted: list[RetrievalCandidate] = []
        accepted_norms: list[str] = []

        for candidate in candidates:
            norm = normalize_content(candidate.content)
            if any(char_jaccard(norm, seen) > self._threshold for seen in accepted_norms):
                logger.debug("[DEDUP] Dropped near-duplicate chunk %s.", candidate.chunk_id)
                continue
            accepted.append(candidate)
            accepted_norms.append(norm)

        return accepted


# ══════════════════════════════════════════════════════════════════════
#  RELEVANCE GATE
# ══════════════════════════════════════════════════════════════════════


class RelevanceGate:
    """
    A result set is relevant when its best candidate either

    - scores above ``score_threshold`` (rerank score if present, else
      combined score), or
    - shares a term with the query *and* is backed by a rerank score or
      a vector distance below ``distance_threshold``.

    Keyword-only hits without a rerank score cannot pass the second
    clause: a missing distance counts as "too far".
    """

    __slots__ = ("_score_threshold", "_distance_threshold")

    def __init__(self, score_threshold: float | None = None, distance_threshold: float | None = None) -> None:
        self._score_threshold = settings.RELEVANCE_SCORE_THRESHOLD if score_threshold is None else score_threshold
        self._distance_threshold = settings.RELEVANCE_DISTANCE_THRESHOLD if distance_threshold is None else distance_threshold


    def is_relevant(self, query: str, candidates: Sequence[RetrievalCandidate]) -> bool:
        if not candidates:
            return False

        top = candidates[0]
        if top.relevance > self._score_threshold:
            return True

        if not has_lexical_overlap(query, top.content):
            return False
        if top.rerank_score is not None:
            return True
        return top.vector_distance is not None and top.vector_distance < self._distance_threshold


# ══════════════════════════════════════════════════════════════════════
#  HYBRID RETRIEVER
# ══════════════════════════════════════════════════════════════════════


class HybridRetriever:
    """
    Parameters
    ----------
    fanout
        A configured ``RetrievalFanout``.
    reranker
        Any ``Reranker``; ``NoOpReranker`` when reranking is disabled.
    deduplicator, gate
        Overrides for the default-configured components.
    pool_factor
        Candidates kept after fusion, as a multiple of *top_k*.
    """

    __slots__ = ("_fanout", "_reranker", "_fusion", "_dedup", "_gate", "_pool_factor")

    def __init__(self, fanout: RetrievalFanout, reranker: Reranker, deduplicator: Deduplicator | None = None, gate: RelevanceGate | None = None, pool_factor: int | None = None) -> None:
        self._fanout = fanout
        self._reranker = reranker
        self._fusion = ScoreFusion()
        self._dedup = deduplicator or Deduplicator()
        self._gate = gate or RelevanceGate()
        self._pool_factor = pool_factor or settings.CANDIDATE_POOL_FACTOR


    async def hybrid_search(self, query: str, document_id: str | None = None, top_k: int | None = None) -> list[RetrievalCandidate]:
        """
        Return at most *top_k* passages, best first.

        An empty list means no branch produced anything; callers route
        to the general-knowledge answer.

        Raises
        ------
        InvalidInput
            Blank *query* or non-positive *top_k*.
        """
        if not query or not query.strip():
            raise InvalidInput("query must not be blank")
        top_k = settings.SEARCH_TOP_K if top_k is None else top_k
        if top_k < 1:
            raise InvalidInput(f"top_k must be ≥ 1, got {top_k}")
        document_id = str(document_id) if document_id is not None else None

        t_start = time.perf_counter()

        # ── 1. Analyse + expand ───────────────────────────────────────
        profile = QueryAnalyzer.analyze(query)
        queries = QueryExpander.expand(query)

        # ── 2. Fan out ────────────────────────────────────────────────
        t_fanout = time.perf_counter()
        fanout = await self._fanout.fan_out(queries, top_k, document_id)
        fanout_ms = (time.perf_counter() - t_fanout) * 1000

        # ── 3. Fuse + pool ────────────────────────────────────────────
        fused = self._fusion.fuse(fanout.keyword_hits, fanout.vector_hits, profile)
        if not fused:
            logger.info("[RAG] No candidates for '%.40s' (%d failed branch(es)).", query, fanout.failed_branches)
            return []
        pool = sort_by_combined(list(fused.values()))[: top_k * self._pool_factor]

        # ── 4. Dedup ──────────────────────────────────────────────────
        unique = self._dedup.deduplicate(pool)

        # ── 5. Rerank ─────────────────────────────────────────────────
        t_rerank = time.perf_counter()
        ranked = await self._reranker.rerank(query, unique)
        rerank_ms = (time.perf_counter() - t_rerank) * 1000

        results = ranked[:top_k]
        total_ms = (time.perf_counter() - t_start) * 1000
        logger.info("[RAG] Hybrid search: %d quer(ies), %d fused → %d pooled → %d unique → %d returned in %.1fms (fanout=%.1f, rerank=%.1f)", len(queries), len(fused), len(pool), len(unique), len(results), total_ms, fanout_ms, rerank_ms)
        return results


    def is_relevant(self, query: str, candidates: Sequence[RetrievalCandidate]) -> bool:
        return self._gate.is_relevant(query, candidates)
