"""
DocMind - Key-Info Extraction
==============================
Pulls structured facts (order number, phone, e-mail, status, …) out of
each question/answer pair and keeps them per conversation, so later
turns stay consistent with what the user already said.

Extraction
----------
Each pattern runs once (first match wins) over ``question + "\\n" +
answer``; every pattern is case-insensitive.  The question's intent is
classified by keyword priority and is always present:

    how_to > what > why > when > where > who > query > problem > general

Persistence
-----------
The stored record only grows: new values overwrite the same field,
unseen fields are added, nothing is removed except by ``clear``.  The
merge is a single atomic store operation, so two concurrent turns of one
conversation cannot drop each other's fields.  Retention is
``KEY_INFO_TTL_DAYS`` (30 days), refreshed on every merge.
"""

from __future__ import annotations

import re
from datetime import timedelta

from docmind.config.settings import settings
from docmind.src.database.memory_store import MemoryStore
from docmind.src.memory.models import memory_key
from docmind.src.utils.logger import get_logger

logger = get_logger(__name__)

_TIER = "key_info"

# ── Field patterns (ordered) ──────────────────────────────────────────
KEY_INFO_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("order_id", re.compile(r"(?:订单(?:号|ID)|order[\s_-]?id)[:：]?\s*([A-Z0-9]{6,20})", re.IGNORECASE)),
    ("phone", re.compile(r"(?:手机(?:号码|号)|电话|phone)[:：]?\s*(1[3-9]\d{9})", re.IGNORECASE)),
    ("email", re.compile(r"(?:邮箱|email)[:：]?\s*([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})", re.IGNORECASE)),
    ("category", re.compile(r"(?:问题(?:类型|分类)|category)[:：]?\s*([^，。\n]{2,20})", re.IGNORECASE)),
    ("status", re.compile(r"(?:状态|status)[:：]?\s*(已解决|未解决|处理中|待处理|已完成|进行中)", re.IGNORECASE)),
    ("amount", re.compile(r"(?:金额|价格|费用|amount)[:：]?\s*(\d+(?:\.\d+)?)", re.IGNORECASE)),
    ("date", re.compile(r"(?:日期|时间|date)[:：]?\s*(\d{4}[-/]\d{1,2}[-/]\d{1,2})", re.IGNORECASE)),
]

# ── Intent rules (first match wins) ───────────────────────────────────
INTENT_RULES: list[tuple[str, tuple[str, ...]]] = [
    ("how_to", ("如何", "怎么", "怎样")),
    ("what", ("什么", "哪些", "是什么")),
    ("why", ("为什么", "为何")),
    ("when", ("什么时候", "何时")),
    ("where", ("哪里", "在哪")),
    ("who", ("谁", "哪个")),
    ("query", ("查询", "查看", "搜索")),
    ("problem", ("问题", "错误", "异常")),
]
DEFAULT_INTENT = "general"


def detect_intent(question: str) -> str:
    lowered = question.lower()
    for intent, markers in INTENT_RULES:
        if any(marker in lowered for marker in markers):
            return intent
    return DEFAULT_INTENT


def extract_fields(question: str, answer: str) -> dict[str, str]:
    """Pattern fields from the turn plus the question's ``intent``."""
    text = f"{question}\n{answer}"
    fields: dict[str, str] = {}
    for name, pattern in KEY_INFO_PATTERNS:
        match = pattern.search(text)
        if match:
            fields[name] = match.group(1).strip()
    fields["intent"] = detect_intent(question)
    return fields


class KeyInfoExtractor:

    __slots__ = ("_store", "_ttl")

    def __init__(self, store: MemoryStore, ttl: timedelta | None = None) -> None:
        self._store = store
        self._ttl = ttl or timedelta(days=settings.KEY_INFO_TTL_DAYS)


    async def extract_key_info(self, user_id: str, document_id: str | None, question: str, answer: str) -> dict[str, str]:
        """
        Extract this turn's fields and merge them into the stored record.

        Returns the fields extracted from *this* turn; use
        ``get_key_info`` for the accumulated record.
        """
        key = memory_key(_TIER, user_id, document_id)
        fields = extract_fields(question, answer)
        merged = await self._store.merge_mapping(key, fields, self._ttl)
        logger.debug("[MEMORY] Key info for %s: +%s → %d field(s).", key, sorted(fields), len(merged))
        return fields


    async def get_key_info(self, user_id: str, document_id: str | None) -> dict[str, str]:
        return await self._store.get_mapping(memory_key(_TIER, user_id, document_id))


    async def clear(self, user_id: str, document_id: str | None) -> None:
        await self._store.delete(memory_key(_TIER, user_id, document_id))


class NullKeyInfoExtractor:

    async def extract_key_info(self, user_id: str, document_id: str | None, question: str, answer: str) -> dict[str, str]:
        return {}

    async def get_key_info(self, user_id: str, document_id: str | None) -> dict[str, str]:
        return {}

    async def clear(self, user_id: str, document_id: str | None) -> None:
        return None
