"""
DocMind - Rerankers
====================
Precision pass over the fused, de-duplicated candidate pool.

Every implementation honours the same contract: the returned list holds
exactly the candidates it was given, only reordered.  A reranker may
set ``rerank_score``; when it cannot (disabled, failure, timeout), the
pool is ordered by ``combined_score`` and nothing else changes.

``NoOpReranker``
    Orders by ``combined_score``.  Selected when reranking is disabled.

``HttpReranker``
    Cross-encoder service (e.g. BGE-Reranker) over HTTP::

        POST {url}  {"query": ..., "documents": [{"id": chunk_id, "text": content}, ...]}
        200         {"scores": [float, ...]}          # positional

    Candidates beyond the returned score list keep ``rerank_score=None``
    and are ordered by their ``combined_score``.

``LexicalReranker``
    Local heuristic for deployments without a reranking service::

        0.7 × query-term hit ratio + 0.3 × length score + 0.2 × combined_score

    where the length score is 1.0 for 200–500 characters and falls off
    linearly on both sides.

``FeatureReranker``
    Local blend of vector similarity, term hits, chunk position, length
    and an exact-phrase bonus.
"""

from __future__ import annotations

from collections.abc import Sequence

import httpx

from docmind.config.settings import settings
from docmind.src.core.exceptions import BackendUnavailable
from docmind.src.core.retrieval import RetrievalCandidate, sort_by_combined
from docmind.src.utils.logger import get_logger
from docmind.src.utils.text_utils import split_terms

logger = get_logger(__name__)

_IDEAL_LENGTH_MIN = 200
_IDEAL_LENGTH_MAX = 500


def sort_by_relevance(candidates: Sequence[RetrievalCandidate]) -> list[RetrievalCandidate]:
    """Rerank score when present, combined score otherwise."""
    return sorted(candidates, key=lambda c: c.relevance, reverse=True)


def length_score(length: int) -> float:
    """1.0 inside the ideal 200-500 character band, linear fall-off outside it."""
    if _IDEAL_LENGTH_MIN <= length <= _IDEAL_LENGTH_MAX:
        return 1.0
    if length < _IDEAL_LENGTH_MIN:
        return length / _IDEAL_LENGTH_MIN
    return max(0.0, 1.0 - (length - _IDEAL_LENGTH_MAX) / _IDEAL_LENGTH_MAX)


def chunk_index(chunk_id: str) -> int | None:
    """Trailing index of a ``{document_id}_{index}`` id, ``None`` when absent."""
    _, sep, tail = chunk_id.rpartition("_")
    return int(tail) if sep and tail.isdigit() else None


class NoOpReranker:

    async def rerank(self, query: str, candidates: list[RetrievalCandidate]) -> list[RetrievalCandidate]:
        return sort_by_combined(candidates)


class HttpReranker:
    """
    Parameters
    ----------
    url
        Reranking endpoint.  Defaults to ``settings.RERANKER_URL``.
    timeout
        Whole-request bound in seconds.
    client
        Optional shared ``httpx.AsyncClient`` (tests inject a
        ``MockTransport``-backed client).
    """

    __slots__ = ("_url", "_timeout", "_client")

    def __init__(self, url: str | None = None, timeout: float | None = None, client: httpx.AsyncClient | None = None) -> None:
        self._url = url or settings.RERANKER_URL
        self._timeout = timeout or settings.RERANKER_TIMEOUT_SECONDS
        self._client = client
        if not self._url:
            logger.warning("[RERANK] HttpReranker has no URL — every call falls back to combined score.")


    async def rerank(self, query: str, candidates: list[RetrievalCandidate]) -> list[RetrievalCandidate]:
        if not candidates:
            return []
        if not self._url:
            return sort_by_combined(candidates)

        try:
            scores = await self._fetch_scores(query, candidates)
        except Exception as exc:
            logger.warning("[RERANK] Reranker unavailable, ordering by combined score: %s", exc)
            return sort_by_combined(candidates)

        for candidate, score in zip(candidates, scores):
            candidate.rerank_score = score
        logger.info("[RERANK] %d/%d candidate(s) scored.", min(len(scores), len(candidates)), len(candidates))
        return sort_by_relevance(candidates)


    async def _fetch_scores(self, query: str, candidates: list[RetrievalCandidate]) -> list[float]:
        payload = {"query": query, "documents": [{"id": c.chunk_id, "text": c.content} for c in candidates]}

        if self._client is not None:
            response = await self._client.post(self._url, json=payload, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload)

        if response.status_code != 200:
            raise BackendUnavailable("reranker", f"HTTP {response.status_code}: {response.text[:200]}")

        raw_scores = response.json().get("scores")
        if not isinstance(raw_scores, list):
            raise BackendUnavailable("reranker", "response has no 'scores' list")
        try:
            return [float(s) for s in raw_scores]
        except (TypeError, ValueError) as exc:
            raise BackendUnavailable("reranker", f"non-numeric score in response: {exc}") from exc


class LexicalReranker:

    async def rerank(self, query: str, candidates: list[RetrievalCandidate]) -> list[RetrievalCandidate]:
        terms = set(split_terms(query.lower(), min_length=1))
        for candidate in candidates:
            candidate.rerank_score = self.score(terms, candidate)
        return sort_by_relevance(candidates)


    @staticmethod
    def score(terms: set[str], candidate: RetrievalCandidate) -> float:
        content = candidate.content.lower()
        hits = sum(1 for term in terms if len(term) >= 2 and term in content)
        hit_ratio = hits / len(terms) if terms else 0.0

        return hit_ratio * 0.7 + length_score(len(content)) * 0.3 + candidate.combined_score * 0.2


class FeatureReranker:
    """
    Weighted blend of per-passage features, for deployments that want
    position and phrase signals without a reranking service::

        0.4 × vector similarity   1 / (1 + distance), 0 for keyword-only hits
        0.3 × query-term hit ratio
        0.1 × position            1 / (1 + 0.1 × chunk index)
        0.1 × length score
        0.1 × exact phrase        the whole query appears verbatim
    """

    async def rerank(self, query: str, candidates: list[RetrievalCandidate]) -> list[RetrievalCandidate]:
        phrase = query.strip().lower()
        terms = {t for t in split_terms(phrase) if len(t) >= 2}
        for candidate in candidates:
            candidate.rerank_score = self.score(phrase, terms, candidate)
        return sort_by_relevance(candidates)


    @staticmethod
    def score(phrase: str, terms: set[str], candidate: RetrievalCandidate) -> float:
        content = candidate.content.lower()

        vector_score = 0.0 if candidate.vector_distance is None else 1.0 / (1.0 + candidate.vector_distance)
        hit_ratio = sum(1 for term in terms if term in content) / len(terms) if terms else 0.0
        index = chunk_index(candidate.chunk_id)
        position_score = 0.0 if index is None else 1.0 / (1.0 + index * 0.1)
        exact = 1.0 if phrase and phrase in content else 0.0

        return vector_score * 0.4 + hit_ratio * 0.3 + position_score * 0.1 + length_score(len(content)) * 0.1 + exact * 0.1


def build_reranker() -> NoOpReranker | HttpReranker | LexicalReranker | FeatureReranker:
    """Select the reranker named by ``settings.RERANKER_MODE``."""
    if settings.RERANKER_MODE == "http":
        if not settings.RERANKER_URL:
            logger.warning("[RERANK] RERANKER_MODE=http without RERANKER_URL — reranking disabled.")
            return NoOpReranker()
        return HttpReranker()
    if settings.RERANKER_MODE == "lexical":
        return LexicalReranker()
    if settings.RERANKER_MODE == "feature":
        return FeatureReranker()
    return NoOpReranker()
