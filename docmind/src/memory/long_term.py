"""
DocMind - Long-Term Memory
===========================
Archived question/answer turns, recalled by semantic similarity to the
current question.

Storage
-------
Each turn is stored as one text blob ``"问题：{q}\\n回答：{a}"`` with its
embedding in the dedicated ``chat_history`` LanceDB table, under the id
``chat_{user}_{document|general}_{epoch_ms}``.  Recall is filtered to
the same user *and* the same conversation scope.

``NullLongTermMemory`` stands in when the tier is disabled.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timezone

from docmind.config.prompt_templates import LONG_TERM_ANSWER_PREFIX, LONG_TERM_QUESTION_PREFIX
from docmind.config.settings import settings
from docmind.src.core.embedder import EmbeddingService
from docmind.src.database.vector_store import ConversationVectorStore
from docmind.src.memory.models import LongTermMatch, require_user_id, scope_of
from docmind.src.utils.logger import get_logger

logger = get_logger(__name__)

_ANSWER_SEPARATOR = "\n" + LONG_TERM_ANSWER_PREFIX


def format_blob(question: str, answer: str) -> str:
    return f"{LONG_TERM_QUESTION_PREFIX}{question}{_ANSWER_SEPARATOR}{answer}"


def parse_blob(blob: str) -> tuple[str, str]:
    """Inverse of ``format_blob``; a blob without an answer part is all question."""
    question, _, answer = blob.partition(_ANSWER_SEPARATOR)
    return question.removeprefix(LONG_TERM_QUESTION_PREFIX), answer


def parse_memory_timestamp(memory_id: str) -> datetime | None:
    """Creation time from the trailing ``_{epoch_ms}`` of a memory id."""
    _, _, tail = memory_id.rpartition("_")
    try:
        return datetime.fromtimestamp(int(tail) / 1000, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


class LongTermMemory:
    """
    Parameters
    ----------
    store
        The conversation history table.
    embedder
        Shared ``EmbeddingService``.
    top_k
        Matches returned by ``search``.  Defaults to ``settings.LONG_TERM_TOP_K``.
    clock
        Milliseconds since the epoch; injectable for tests.
    """

    __slots__ = ("_store", "_embedder", "_top_k", "_clock")

    def __init__(self, store: ConversationVectorStore, embedder: EmbeddingService, top_k: int | None = None, clock: Callable[[], int] | None = None) -> None:
        self._store = store
        self._embedder = embedder
        self._top_k = top_k or settings.LONG_TERM_TOP_K
        self._clock = clock or (lambda: int(time.time() * 1000))


    async def save(self, user_id: str, document_id: str | None, question: str, answer: str) -> str | None:
        """Archive one turn.  Returns its memory id, or ``None`` when skipped."""
        user_id = require_user_id(user_id)
        blob = format_blob(question, answer)
        embedding = await self._embedder.embed_with_status(blob)
        if embedding.degraded and self._embedder.has_provider:
            logger.warning("[MEMORY] Long-term archive skipped for user '%s': DEGRADED embedding.", user_id)
            return None

        scope = scope_of(document_id)
        created_at = self._clock()
        memory_id = f"chat_{user_id}_{scope}_{created_at}"
        await asyncio.to_thread(self._store.add, memory_id, user_id, scope, blob, embedding.vector, created_at)
        logger.debug("[MEMORY] Long-term turn archived: %s", memory_id)
        return memory_id


    async def search(self, user_id: str, document_id: str | None, query: str, top_k: int | None = None) -> list[LongTermMatch]:
        """Most similar archived turns of this conversation, best first."""
        user_id = require_user_id(user_id)
        if not query or not query.strip():
            return []

        embedding = await self._embedder.embed_with_status(query)
        if embedding.degraded and self._embedder.has_provider:
            logger.warning("[MEMORY] Long-term recall skipped for user '%s': DEGRADED embedding.", user_id)
            return []

        rows = await asyncio.to_thread(self._store.search, embedding.vector, user_id, scope_of(document_id), top_k or self._top_k)
        matches: list[LongTermMatch] = []
        for row in rows:
            question, answer = parse_blob(str(row["content"]))
            matches.append(LongTermMatch(question=question, answer=answer, score=1.0 / (1.0 + float(row["distance"])), timestamp=parse_memory_timestamp(str(row["memory_id"]))))
        return matches


    async def clear(self, user_id: str, document_id: str | None) -> None:
        """Forget the archive of one conversation."""
        user_id = require_user_id(user_id)
        await asyncio.to_thread(self._store.delete, user_id, scope_of(document_id))


class NullLongTermMemory:

    async def save(self, user_id: str, document_id: str | None, question: str, answer: str) -> str | None:
        return None

    async def search(self, user_id: str, document_id: str | None, query: str, top_k: int | None = None) -> list[LongTermMatch]:
        return []

    async def clear(self, user_id: str, document_id: str | None) -> None:
        return None
