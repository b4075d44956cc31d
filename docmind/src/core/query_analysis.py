"""
DocMind - Query Analysis & Expansion
=====================================

``QueryAnalyzer``
    Pure heuristic that chooses keyword-vs-vector fusion weights from
    the shape of the question:

    ==============================================  ===========  ==========
    Rule (first match wins)                         keyword      vector
    ==============================================  ===========  ==========
    interrogative marker present and length > 10    0.3          0.7
    2–4 ideograph run present and length < 15       0.7          0.3
    otherwise                                       0.5          0.5
    ==============================================  ===========  ==========

    Long natural-language questions lean on semantics; short,
    term-like lookups ("退款流程") lean on exact matching.

``QueryExpander``
    Lexical expansion: the query's own terms (≥ 2 characters) plus the
    full original query, duplicates removed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from docmind.src.utils.text_utils import split_terms

# Any one of these characters marks the query as a natural-language question.
_INTERROGATIVE_RE = re.compile(r"[如何什么为怎样]")
# A run of 2–4 CJK ideographs: a probable domain term.
_SPECIFIC_TERM_RE = re.compile(r"[\u4e00-\u9fa5]{2,4}")

_LONG_QUESTION_LENGTH = 10
_SHORT_LOOKUP_LENGTH = 15


@dataclass(frozen=True, slots=True)
class QueryProfile:
    keyword_weight: float
    vector_weight: float


SEMANTIC_PROFILE = QueryProfile(keyword_weight=0.3, vector_weight=0.7)
LEXICAL_PROFILE = QueryProfile(keyword_weight=0.7, vector_weight=0.3)
BALANCED_PROFILE = QueryProfile(keyword_weight=0.5, vector_weight=0.5)


class QueryAnalyzer:

    @staticmethod
    def analyze(query: str) -> QueryProfile:
        length = len(query)
        if _INTERROGATIVE_RE.search(query) and length > _LONG_QUESTION_LENGTH:
            return SEMANTIC_PROFILE
        if _SPECIFIC_TERM_RE.search(query) and length < _SHORT_LOOKUP_LENGTH:
            return LEXICAL_PROFILE
        return BALANCED_PROFILE


class QueryExpander:

    @staticmethod
    def expand(query: str) -> list[str]:
        """Distinct query variants; the full original query is always included."""
        variants = split_terms(query)
        variants.append(query)
        return list(dict.fromkeys(variants))
