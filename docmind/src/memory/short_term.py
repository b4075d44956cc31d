"""
DocMind - Short-Term Memory
============================
Sliding window over the most recent turns of one conversation.

Each turn appends two messages (user, then assistant).  The stored list
is trimmed atomically to ``2 × window_size`` messages, and every append
pushes the expiry ``SHORT_TERM_TTL_HOURS`` into the future.
"""

from __future__ import annotations

from datetime import timedelta

from docmind.config.settings import settings
from docmind.src.database.memory_store import MemoryStore
from docmind.src.memory.models import ChatTurn, memory_key
from docmind.src.utils.logger import get_logger

logger = get_logger(__name__)

_TIER = "short_term"


class ShortTermMemory:

    __slots__ = ("_store", "_window_size", "_ttl")

    def __init__(self, store: MemoryStore, window_size: int | None = None, ttl: timedelta | None = None) -> None:
        self._store = store
        self._window_size = window_size or settings.SHORT_TERM_WINDOW_SIZE
        self._ttl = ttl or timedelta(hours=settings.SHORT_TERM_TTL_HOURS)


    @property
    def window_size(self) -> int:
        return self._window_size


    async def append_turn(self, user_id: str, document_id: str | None, question: str, answer: str) -> None:
        key = memory_key(_TIER, user_id, document_id)
        items = [ChatTurn("user", question).to_dict(), ChatTurn("assistant", answer).to_dict()]
        await self._store.append_list(key, items, max_len=self._window_size * 2, ttl=self._ttl)
        logger.debug("[MEMORY] Short-term turn appended to %s.", key)


    async def get(self, user_id: str, document_id: str | None, window_size: int | None = None) -> list[ChatTurn]:
        """The last ``2 × window_size`` messages, oldest first."""
        window = window_size or self._window_size
        items = await self._store.get_list(memory_key(_TIER, user_id, document_id), limit=window * 2)
        return [ChatTurn.from_dict(item) for item in items]


    async def clear(self, user_id: str, document_id: str | None) -> None:
        await self._store.delete(memory_key(_TIER, user_id, document_id))
