"""
DocMind - Chunker
==================
Splits a cleaned document into overlapping, size-bounded chunks.

Algorithm
---------
1. Split on blank lines into paragraphs.
2. Greedily pack paragraphs into a buffer joined by ``"\\n"``.
3. When ``len(buffer) + len(paragraph)`` would exceed ``max_size``:
     - buffer ≥ ``min_size`` → emit it, and seed the next buffer with
       its last ``overlap`` characters + ``"\\n"`` + the paragraph;
     - buffer < ``min_size`` → keep absorbing, even past ``max_size``.
4. Whenever the buffer exceeds ``1.5 × max_size`` (one giant
   paragraph), split it at sentence terminators and pack the sentences
   with the same min/max/overlap policy.  Whatever is left after the
   sentence pass stays the running buffer, so nothing is lost.
5. The trailing buffer is emitted when it reaches ``min_size``;
   shorter tails follow ``tail_policy`` (``"drop"`` or ``"keep"``).

Every chunk therefore has at least ``min_size`` characters except
possibly the last, and consecutive chunks share at most ``overlap``
characters.  Lengths are counted in code points.

Usage:
    from docmind.src.core.chunker import Chunker
    chunks = Chunker().chunk("doc42", cleaned_text)
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from docmind.config.settings import settings
from docmind.src.utils.logger import get_logger

logger = get_logger(__name__)

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
# Zero-width split after each terminator keeps it attached to its sentence.
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[。！？!?])")

_OVERSIZE_FACTOR = 1.5

TailPolicy = Literal["drop", "keep"]


@dataclass(frozen=True, slots=True)
class Chunk:
    """A contiguous slice of a document.  ``index`` starts at 1."""

    document_id: str
    index: int
    content: str

    @property
    def chunk_id(self) -> str:
        return f"{self.document_id}_{self.index}"


class Chunker:
    """
    Paragraph-first, sentence-fallback chunker.

    Parameters
    ----------
    min_size, max_size, overlap
        Size policy in characters.  Defaults come from settings
        (200 / 500 / 50).
    tail_policy
        ``"drop"`` discards a trailing remainder shorter than
        ``min_size``; ``"keep"`` emits it as a final short chunk.
    """

    __slots__ = ("_min", "_max", "_overlap", "_tail_policy")

    def __init__(self, min_size: int | None = None, max_size: int | None = None, overlap: int | None = None, tail_policy: TailPolicy | None = None) -> None:
        self._min = settings.CHUNK_MIN_SIZE if min_size is None else min_size
        self._max = settings.CHUNK_MAX_SIZE if max_size is None else max_size
        self._overlap = settings.CHUNK_OVERLAP if overlap is None else overlap
        self._tail_policy: TailPolicy = tail_policy or settings.CHUNK_TAIL_POLICY

        if not 0 < self._min <= self._max:
            raise ValueError(f"invalid chunk bounds: min={self._min}, max={self._max}")
        if not 0 <= self._overlap < self._max:
            raise ValueError(f"overlap must be in [0, {self._max}), got {self._overlap}")


    def chunk(self, document_id: str, text: str) -> list[Chunk]:
        """Split *text* into ordered chunks of *document_id*."""
        document_id = str(document_id)
        contents: list[str] = []
        emit = contents.append

        paragraphs = [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(text) if p.strip()]
        buffer = ""

        for paragraph in paragraphs:
            # The "\n" joiner is not counted against max_size.
            if buffer and len(buffer) + len(paragraph) > self._max and len(buffer) >= self._min:
                emit(buffer)
                buffer = self._seed(buffer, paragraph, "\n")
            else:
                buffer = f"{buffer}\n{paragraph}" if buffer else paragraph

            if len(buffer) > self._max * _OVERSIZE_FACTOR:
                buffer = self._split_sentences(buffer, emit)

        if buffer:
            if len(buffer) >= self._min or self._tail_policy == "keep":
                emit(buffer)
            else:
                logger.debug("[CHUNK] Dropped %d-char tail of document '%s'.", len(buffer), document_id)

        chunks = [Chunk(document_id=document_id, index=i, content=content) for i, content in enumerate(contents, 1)]
        logger.debug("[CHUNK] Document '%s': %d chars → %d chunk(s).", document_id, len(text), len(chunks))
        return chunks

    # ── Internals ──────────────────────────────────────────────────────

    def _seed(self, previous: str, addition: str, joiner: str) -> str:
        """Start a new buffer with the overlap tail of *previous*."""
        tail = previous[-self._overlap:] if self._overlap else ""
        return f"{tail}{joiner}{addition}" if tail else addition


    def _split_sentences(self, buffer: str, emit: Callable[[str], None]) -> str:
        """
        Pack the sentences of an oversized *buffer*, emitting full
        pieces.  Returns the unfinished remainder.
        """
        sentences: list[str] = []
        for sentence in _SENTENCE_SPLIT_RE.split(buffer):
            if not sentence:
                continue
            if len(sentence) > self._max:
                sentences.extend(self._hard_split(sentence, self._max))
            else:
                sentences.append(sentence)

        piece = ""
        for sentence in sentences:
            candidate = piece + sentence
            if len(candidate) > self._max and len(piece) >= self._min:
                emit(piece)
                piece = self._seed(piece, sentence, "")
            else:
                piece = candidate

        logger.debug("[CHUNK] Sentence split of %d-char buffer → %d-char remainder.", len(buffer), len(piece))
        return piece


    @staticmethod
    def _hard_split(text: str, size: int) -> list[str]:
        """Fixed-width split for a run with no sentence terminator."""
        return [text[i : i + size] for i in range(0, len(text), size)]
