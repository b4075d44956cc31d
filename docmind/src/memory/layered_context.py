"""
DocMind - Layered Context Manager
==================================
Composes the three memory tiers of one ``(user, document)``
conversation into the message sequence handed to the generator.

Tiers
-----
1. **Short-term** — the last N turns, verbatim.
2. **Long-term** — older turns recalled by similarity to the question.
3. **Key info** — structured facts extracted from earlier turns.

Reads of the three tiers run concurrently; a tier whose backend fails
contributes nothing and the request carries on.  Disabled tiers are
wired as null implementations by ``bootstrap``, so nothing here checks
feature flags.

Message order (``to_messages``)
-------------------------------
1. system — key info (when any)
2. system — long-term reference turns (when any)
3. short-term turns, oldest first
4. user — the current question
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Protocol, TypeVar

from docmind.config.prompt_templates import KEY_INFO_CONTEXT_FOOTER, KEY_INFO_CONTEXT_HEADER, LONG_TERM_CONTEXT_HEADER, LONG_TERM_ENTRY_TEMPLATE
from docmind.src.memory.models import LayeredContext, LongTermMatch, require_user_id
from docmind.src.memory.short_term import ShortTermMemory
from docmind.src.utils.logger import get_logger

logger = get_logger(__name__)

ChatMessage = dict[str, str]
T = TypeVar("T")


class LongTermTier(Protocol):
    async def save(self, user_id: str, document_id: str | None, question: str, answer: str) -> str | None: ...
    async def search(self, user_id: str, document_id: str | None, query: str, top_k: int | None = None) -> list[LongTermMatch]: ...
    async def clear(self, user_id: str, document_id: str | None) -> None: ...


class KeyInfoTier(Protocol):
    async def extract_key_info(self, user_id: str, document_id: str | None, question: str, answer: str) -> dict[str, str]: ...
    async def get_key_info(self, user_id: str, document_id: str | None) -> dict[str, str]: ...
    async def clear(self, user_id: str, document_id: str | None) -> None: ...


def format_key_info(key_info: dict[str, str]) -> str:
    return "\n".join(f"- {name}: {value}" for name, value in key_info.items())


class LayeredContextManager:

    __slots__ = ("_short_term", "_long_term", "_key_info")

    def __init__(self, short_term: ShortTermMemory, long_term: LongTermTier, key_info: KeyInfoTier) -> None:
        self._short_term = short_term
        self._long_term = long_term
        self._key_info = key_info


    async def build_context(self, user_id: str, document_id: str | None, question: str) -> LayeredContext:
        """Snapshot of all tiers for this request.  Never raises on backend failure."""
        require_user_id(user_id)
        short_term, long_term, key_info = await asyncio.gather(
            self._degrade("short-term", self._short_term.get(user_id, document_id), []),
            self._degrade("long-term", self._long_term.search(user_id, document_id, question), []),
            self._degrade("key-info", self._key_info.get_key_info(user_id, document_id), {}),
        )
        logger.debug("[MEMORY] Context for user '%s': %d short-term msg(s), %d long-term match(es), %d key field(s).", user_id, len(short_term), len(long_term), len(key_info))
        return LayeredContext(short_term=short_term, long_term=long_term, key_info=key_info)


    async def save_conversation(self, user_id: str, document_id: str | None, question: str, answer: str) -> None:
        """Record a finished turn in every tier."""
        require_user_id(user_id)
        await asyncio.gather(
            self._degrade("short-term", self._short_term.append_turn(user_id, document_id, question, answer), None),
            self._degrade("long-term", self._long_term.save(user_id, document_id, question, answer), None),
            self._degrade("key-info", self._key_info.extract_key_info(user_id, document_id, question, answer), None),
        )


    async def clear(self, user_id: str, document_id: str | None) -> None:
        """Forget the conversation in every tier."""
        require_user_id(user_id)
        await asyncio.gather(self._short_term.clear(user_id, document_id), self._long_term.clear(user_id, document_id), self._key_info.clear(user_id, document_id))


    @staticmethod
    def to_messages(context: LayeredContext, question: str) -> list[ChatMessage]:
        messages: list[ChatMessage] = []

        if context.key_info:
            content = f"{KEY_INFO_CONTEXT_HEADER}{format_key_info(context.key_info)}\n{KEY_INFO_CONTEXT_FOOTER}"
            messages.append({"role": "system", "content": content})

        if context.long_term:
            entries = "".join(LONG_TERM_ENTRY_TEMPLATE.format(index=i, question=m.question, answer=m.answer) for i, m in enumerate(context.long_term, 1))
            messages.append({"role": "system", "content": LONG_TERM_CONTEXT_HEADER + entries})

        messages.extend(turn.to_dict() for turn in context.short_term)
        messages.append({"role": "user", "content": question})
        return messages


    @staticmethod
    async def _degrade(tier: str, call: Awaitable[T], empty: T) -> T:
        try:
            return await call
        except Exception as exc:
            logger.warning("[MEMORY] %s tier unavailable, continuing without it: %s", tier, exc)
            return empty
