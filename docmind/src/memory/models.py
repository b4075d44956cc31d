"""
DocMind - Conversation Memory Types
====================================
Value types shared by the memory tiers, plus the key scheme every tier
uses to scope state to one ``(user, document)`` conversation.

A conversation without a document is scoped to ``"general"``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from docmind.src.core.exceptions import InvalidInput

Role = Literal["user", "assistant"]

GENERAL_SCOPE = "general"


def scope_of(document_id: str | int | None) -> str:
    return GENERAL_SCOPE if document_id is None else str(document_id)


def require_user_id(user_id: str) -> str:
    user_id = str(user_id)
    if not user_id.strip():
        raise InvalidInput("user_id must not be blank")
    return user_id


def memory_key(tier: str, user_id: str, document_id: str | int | None) -> str:
    """``chat:{tier}:{user}:{document|general}``"""
    require_user_id(user_id)
    return f"chat:{tier}:{user_id}:{scope_of(document_id)}"


@dataclass(frozen=True, slots=True)
class ChatTurn:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> ChatTurn:
        return cls(role=data["role"], content=data["content"])  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class LongTermMatch:
    question: str
    answer: str
    score: float
    timestamp: datetime | None = None


@dataclass(slots=True)
class LayeredContext:
    """Per-request snapshot of the three tiers.  Never persisted."""

    short_term: list[ChatTurn] = field(default_factory=list)
    long_term: list[LongTermMatch] = field(default_factory=list)
    key_info: dict[str, str] = field(default_factory=dict)
