"""
DocMind - Exception Taxonomy
=============================

``InvalidInput``
    Caller error (blank text, blank query).  Raised immediately and
    never retried.

``BackendUnavailable``
    A collaborator (vector store, keyword store, embedding provider,
    reranker, memory store) failed or timed out.  Absorbed at the
    fan-out / memory-tier boundary and turned into an empty
    contribution, a fallback score or a skipped tier.

``ConfigurationError``
    A required capability has no implementation and no fallback.
    Raised once, at construction.
"""

from __future__ import annotations


class DocMindError(Exception):
    """Base class for every error raised by DocMind."""


class InvalidInput(DocMindError, ValueError):
    """Blank or malformed caller input."""


class BackendUnavailable(DocMindError):
    """A backing service failed, timed out, or returned garbage."""

    def __init__(self, backend: str, message: str) -> None:
        super().__init__(f"{backend}: {message}")
        self.backend = backend


class ConfigurationError(DocMindError):
    """A capability is entirely unconfigured."""
