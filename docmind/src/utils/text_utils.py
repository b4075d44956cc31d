"""
DocMind - Text Utilities
=========================
Helper functions for text cleaning, tokenisation, and lexical
similarity.

Consumed by the ``Chunker`` (cleaning), the ``QueryExpander`` and the
relevance gate (tokenisation), and the ``Deduplicator`` (normalisation +
character-set Jaccard).  Everything here is stateless and
side-effect-free.
"""

from __future__ import annotations

import re
import unicodedata


# ── Non-printable character pattern ────────────────────────────────────
# Control characters (C0/C1) except \n, \r, \t, plus BOM, zero-width
# characters, soft hyphens and directional marks.
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufeff\u200b\u200c\u200d\u200e\u200f\u00ad\u2060\ufffe]")

# ── Extraction artefacts ──────────────────────────────────────────────
# Page markers left behind by PDF/DOC extraction: "第 3 页", "共12页".
_PAGE_MARKER_RE = re.compile(r"第\s*\d+\s*页|共\s*\d+\s*页")
# Decorative separator runs: "#####", "=====", "*****", "-----", "_____".
_DECORATION_RE = re.compile(r"[#=*]{3,}|-{3,}|_{3,}")

_HORIZONTAL_WS_RE = re.compile(r"[^\S\n]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_WHITESPACE_RE = re.compile(r"\s+")

# Term boundaries: whitespace plus CJK and ASCII sentence punctuation.
_TERM_SPLIT_RE = re.compile(r"[\s，。、；：！？,.;:!?]+")


# ── Cleaning ───────────────────────────────────────────────────────────

def clean_text(text: str) -> str:
    """
    Sanitise raw document text for chunking and embedding.

    Steps:
        1. Unicode NFC normalisation.
        2. Strip non-printable / zero-width characters.
        3. Drop page markers (``第N页`` / ``共N页``) and decoration runs.
        4. Collapse runs of horizontal whitespace into a single space,
           *preserving* newlines, and strip every line.
        5. Collapse 3+ consecutive newlines to one blank line, so
           paragraph boundaries survive for the chunker.

    Args:
        text: Raw text extracted from a source document.

    Returns:
        Cleaned text ready for chunking.
    """
    text = unicodedata.normalize("NFC", text)
    text = _NON_PRINTABLE_RE.sub("", text)
    text = _PAGE_MARKER_RE.sub("", text)
    text = _DECORATION_RE.sub("", text)
    text = _HORIZONTAL_WS_RE.sub(" ", text)
    lines = [line.strip() for line in text.splitlines()]
    text = "\n".join(lines)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def normalize_content(text: str) -> str:
    """Lowercase, collapse all whitespace runs to one space, trim."""
    return _WHITESPACE_RE.sub(" ", text.lower()).strip()


# ── Tokenisation ───────────────────────────────────────────────────────

def split_terms(text: str, min_length: int = 2) -> list[str]:
    """
    Split *text* on whitespace and punctuation, keeping tokens of at
    least *min_length* characters (in order, duplicates preserved).
    """
    return [token for token in (part.strip() for part in _TERM_SPLIT_RE.split(text)) if len(token) >= min_length]


def has_lexical_overlap(query: str, content: str) -> bool:
    """True when any query term (≥ 2 chars) occurs in *content*, case-insensitively."""
    haystack = content.lower()
    return any(term in haystack for term in split_terms(query.lower()))


# ── Similarity ─────────────────────────────────────────────────────────

def char_jaccard(a: str, b: str) -> float:
    """
    Jaccard similarity of the *character sets* of two strings.

    Returns ``0.0`` when either string is empty.  Character sets make
    the measure language-agnostic (no word segmentation for CJK text),
    at the price of being coarse on long passages.
    """
    if not a or not b:
        return 0.0
    set_a = set(a)
    set_b = set(b)
    union = len(set_a | set_b)
    return len(set_a & set_b) / union if union else 0.0
