"""
DocMind - RAG Engine
=====================
Orchestrates one question end to end: memory → retrieval → relevance
gate → generation → memory.

Flow
----
1. Build the layered context (short-term, long-term, key info).
2. With a document: hybrid search scoped to it, then the relevance gate.
3. Relevant passages → document-grounded prompt with numbered passages;
   otherwise (no document, nothing found, gate says no) → general
   knowledge prompt.
4. Generate.  A generator failure yields a fixed apology, never an
   exception.
5. Save the turn to every memory tier.

``RAGManager`` holds no request-scoped state and is safe to share
between concurrent requests.

Usage:
    from docmind.src.core.bootstrap import build_rag_manager
    rag = build_rag_manager()
    reply = await rag.answer("u1", "订单号ABC12345的退款状态是什么？", document_id="42")
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from docmind.config.prompt_templates import DOC_QA_CONTEXT_HEADER, DOC_QA_PASSAGE_TEMPLATE, DOC_QA_QUESTION_TEMPLATE, DOC_QA_SYSTEM_PROMPT, GENERAL_SYSTEM_PROMPT, LLM_ERROR_RESPONSE, NO_GENERATOR_RESPONSE
from docmind.config.settings import settings
from docmind.src.core.exceptions import InvalidInput
from docmind.src.core.generator import Generator
from docmind.src.core.retrieval import HybridRetriever, RetrievalCandidate
from docmind.src.memory.layered_context import LayeredContextManager
from docmind.src.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class ChatAnswer:
    answer: str
    sources: list[str] = field(default_factory=list)
    is_general_answer: bool = True


class RAGManager:
    """
    Parameters
    ----------
    retriever
        Configured ``HybridRetriever``.
    context_manager
        Configured ``LayeredContextManager``.
    generator
        Any ``Generator``; ``None`` answers with a fixed notice.
    top_k
        Passages retrieved per question.  Defaults to ``settings.SEARCH_TOP_K``.
    """

    __slots__ = ("_retriever", "_context", "_generator", "_top_k")

    def __init__(self, retriever: HybridRetriever, context_manager: LayeredContextManager, generator: Generator | None, top_k: int | None = None) -> None:
        self._retriever = retriever
        self._context = context_manager
        self._generator = generator
        self._top_k = top_k or settings.SEARCH_TOP_K


    async def answer(self, user_id: str, question: str, document_id: str | None = None) -> ChatAnswer:
        if not question or not question.strip():
            raise InvalidInput("question must not be blank")
        t_start = time.perf_counter()

        # ── 1. Layered context ────────────────────────────────────────
        context = await self._context.build_context(user_id, document_id, question)

        # ── 2. Retrieval + relevance gate ─────────────────────────────
        passages: list[RetrievalCandidate] = []
        grounded = False
        search_ms = 0.0
        if document_id is not None:
            t_search = time.perf_counter()
            passages = await self._retriever.hybrid_search(question, document_id=document_id, top_k=self._top_k)
            grounded = self._retriever.is_relevant(question, passages)
            search_ms = (time.perf_counter() - t_search) * 1000
            logger.info("[RAG] %d passage(s) for document '%s', relevant=%s (%.1fms)", len(passages), document_id, grounded, search_ms)

        # ── 3. Prompt ─────────────────────────────────────────────────
        if grounded:
            system_prompt = DOC_QA_SYSTEM_PROMPT
            user_content = self._format_passages(passages, question)
        else:
            system_prompt = GENERAL_SYSTEM_PROMPT
            user_content = question
        messages = self._context.to_messages(context, user_content)

        # ── 4. Generate ───────────────────────────────────────────────
        t_llm = time.perf_counter()
        answer = await self._generate(system_prompt, messages)
        llm_ms = (time.perf_counter() - t_llm) * 1000

        # ── 5. Save ───────────────────────────────────────────────────
        await self._context.save_conversation(user_id, document_id, question, answer)

        total_ms = (time.perf_counter() - t_start) * 1000
        logger.info("[RAG] Pipeline total: %.1fms (search=%.1f, llm=%.1f), grounded=%s", total_ms, search_ms, llm_ms, grounded)
        return ChatAnswer(answer=answer, sources=[p.chunk_id for p in passages] if grounded else [], is_general_answer=not grounded)


    async def _generate(self, system_prompt: str, messages: list[dict[str, str]]) -> str:
        if self._generator is None:
            return NO_GENERATOR_RESPONSE
        try:
            return await self._generator.generate(system_prompt, messages)
        except Exception:
            logger.exception("[RAG] LLM call failed.")
            return LLM_ERROR_RESPONSE


    @staticmethod
    def _format_passages(passages: list[RetrievalCandidate], question: str) -> str:
        blocks = "".join(DOC_QA_PASSAGE_TEMPLATE.format(index=i, content=p.content) for i, p in enumerate(passages, 1))
        return DOC_QA_CONTEXT_HEADER + blocks + DOC_QA_QUESTION_TEMPLATE.format(question=question)
