"""
DocMind - Answer Generation
============================
``Generate(system_prompt, messages) -> text`` over a LangChain chat
model (Gemini by default).

Gemini accepts a single leading system instruction, so the base system
prompt and every ``system`` message of the layered context are folded,
in order, into one ``SystemMessage``; ``user`` / ``assistant`` messages
map to ``HumanMessage`` / ``AIMessage``.
"""

from __future__ import annotations

from typing import Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from docmind.config.settings import settings
from docmind.src.utils.logger import get_logger

logger = get_logger(__name__)

ChatMessage = dict[str, str]


class Generator(Protocol):
    async def generate(self, system_prompt: str, messages: list[ChatMessage]) -> str: ...


def to_langchain_messages(system_prompt: str, messages: list[ChatMessage]) -> list[BaseMessage]:
    system_parts = [system_prompt] if system_prompt else []
    dialogue: list[BaseMessage] = []
    for message in messages:
        role, content = message["role"], message["content"]
        if role == "system":
            system_parts.append(content)
        elif role == "assistant":
            dialogue.append(AIMessage(content=content))
        else:
            dialogue.append(HumanMessage(content=content))

    if system_parts:
        return [SystemMessage(content="\n\n".join(system_parts)), *dialogue]
    return dialogue


class ChatModelGenerator:
    """Wraps any LangChain chat model exposing ``ainvoke``."""

    __slots__ = ("_llm",)

    def __init__(self, llm: object) -> None:
        self._llm = llm


    async def generate(self, system_prompt: str, messages: list[ChatMessage]) -> str:
        response = await self._llm.ainvoke(to_langchain_messages(system_prompt, messages))  # type: ignore[attr-defined]
        return response.content if hasattr(response, "content") else str(response)


def build_generator() -> ChatModelGenerator | None:
    """Gemini via LangChain, or ``None`` when no API key is configured."""
    if settings.GOOGLE_API_KEY is None:
        logger.warning("GOOGLE_API_KEY not set — no answer generator configured.")
        return None

    from langchain_google_genai import ChatGoogleGenerativeAI

    llm = ChatGoogleGenerativeAI(model=settings.LLM_MODEL, temperature=settings.LLM_TEMPERATURE, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())
    logger.info("LLM initialised: %s (temperature=%.1f)", settings.LLM_MODEL, settings.LLM_TEMPERATURE)
    return ChatModelGenerator(llm)
