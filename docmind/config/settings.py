"""
DocMind - Centralized Configuration
====================================
Uses ``pydantic-settings`` (``BaseSettings``) to load *all* configuration
from environment variables and the project-level ``.env`` file.

Security
--------
- ``GOOGLE_API_KEY`` and ``MONGO_URI`` are typed as ``SecretStr`` so the
  raw values never show up in repr, logs, or tracebacks.
- Both are optional.  Without a Google key the embedder runs on its
  deterministic fallback and no generator is available; without a Mongo
  URI the memory tiers live in process memory.  ``bootstrap`` decides
  which implementations to wire and raises ``ConfigurationError`` when a
  capability has no fallback at all.

Retrieval tuning
----------------
Every threshold of the hybrid retriever (fan-out timeouts, relevance
gate, dedup similarity) lives here with its production default, so a
deployment can tune it without code changes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings.

    Every field is loaded from environment variables (or ``.env``).

    Attributes
    ----------
    GOOGLE_API_KEY : SecretStr | None
        API key for Google AI Studio (Gemini embeddings + chat model).
    MONGO_URI : SecretStr | None
        MongoDB connection string for the conversation memory tiers.
    ENV : Literal["dev", "prod"]
        Environment mode controlling logging verbosity.
    CHUNK_MIN_SIZE / CHUNK_MAX_SIZE / CHUNK_OVERLAP : int
        Chunker bounds, in characters (code points).
    CHUNK_TAIL_POLICY : Literal["drop", "keep"]
        What to do with a trailing remainder shorter than ``CHUNK_MIN_SIZE``.
    EMBEDDING_DIMENSION : int
        Fixed vector size shared by the provider, the fallback and LanceDB.
    SEARCH_TOP_K : int
        Default number of passages returned by the hybrid search.
    RERANKER_MODE : Literal["none", "http", "lexical", "feature"]
        Which reranker ``bootstrap`` wires in.
    """

    # ── Resolved Absolute Paths ────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    DATA_RAW_DIR: Path = BASE_DIR / "data" / "raw"
    DATA_PROCESSED_DIR: Path = BASE_DIR / "data" / "processed"
    LANCEDB_PATH: Path = BASE_DIR / "data" / "lancedb"

    # ── Environment Mode ───────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"

    # ── Credentials (optional — fallbacks selected at startup) ─────────
    GOOGLE_API_KEY: SecretStr | None = None
    MONGO_URI: SecretStr | None = None
    MONGO_DB_NAME: str = "docmind"
    MONGO_MEMORY_COLLECTION: str = "conversation_memory"

    # ── Chunking ───────────────────────────────────────────────────────
    CHUNK_MIN_SIZE: int = 200
    CHUNK_MAX_SIZE: int = 500
    CHUNK_OVERLAP: int = 50
    CHUNK_TAIL_POLICY: Literal["drop", "keep"] = "drop"

    # ── Embedding ──────────────────────────────────────────────────────
    EMBEDDING_MODEL: str = "models/text-embedding-004"
    EMBEDDING_DIMENSION: int = 768
    EMBEDDING_TIMEOUT_SECONDS: float = 10.0
    EMBEDDING_FALLBACK_ENABLED: bool = True

    # ── Generation ─────────────────────────────────────────────────────
    LLM_MODEL: str = "gemini-2.0-flash"
    LLM_TEMPERATURE: float = 0.3

    # ── LanceDB ────────────────────────────────────────────────────────
    LANCEDB_TABLE_NAME: str = "document_chunks"
    LANCEDB_HISTORY_TABLE_NAME: str = "chat_history"
    FTS_BASE_TOKENIZER: Literal["simple", "whitespace", "raw", "ngram"] = "ngram"

    # ── Hybrid Retrieval ───────────────────────────────────────────────
    SEARCH_TOP_K: int = 5
    RETRIEVAL_CALL_TIMEOUT_SECONDS: float = 3.0
    CANDIDATE_POOL_FACTOR: int = 4
    DEDUP_SIMILARITY_THRESHOLD: float = 0.8
    RELEVANCE_SCORE_THRESHOLD: float = 0.3
    RELEVANCE_DISTANCE_THRESHOLD: float = 2.0

    # ── Reranker ───────────────────────────────────────────────────────
    RERANKER_MODE: Literal["none", "http", "lexical", "feature"] = "none"
    RERANKER_URL: str | None = None
    RERANKER_TIMEOUT_SECONDS: float = 5.0

    # ── Conversation Memory ────────────────────────────────────────────
    SHORT_TERM_WINDOW_SIZE: int = 5
    SHORT_TERM_TTL_HOURS: int = 24
    LONG_TERM_ENABLED: bool = True
    LONG_TERM_TOP_K: int = 3
    KEY_INFO_ENABLED: bool = True
    KEY_INFO_TTL_DAYS: int = 30

    # ── Concurrency ────────────────────────────────────────────────────
    MAX_WORKERS: int = 4

    # ── Validators ─────────────────────────────────────────────────────

    @field_validator("CHUNK_MIN_SIZE", "CHUNK_MAX_SIZE")
    @classmethod
    def _chunk_bounds_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"chunk bounds must be ≥ 1, got {v}")
        return v


    @field_validator("CHUNK_OVERLAP")
    @classmethod
    def _overlap_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"CHUNK_OVERLAP must be ≥ 0, got {v}")
        return v


    @field_validator("RETRIEVAL_CALL_TIMEOUT_SECONDS", "EMBEDDING_TIMEOUT_SECONDS", "RERANKER_TIMEOUT_SECONDS")
    @classmethod
    def _timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeouts must be > 0, got {v}")
        return v


    @field_validator("DEDUP_SIMILARITY_THRESHOLD")
    @classmethod
    def _similarity_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"DEDUP_SIMILARITY_THRESHOLD must be 0–1, got {v}")
        return v


    @field_validator("MAX_WORKERS")
    @classmethod
    def _workers_range(cls, v: int) -> int:
        if not 1 <= v <= 16:
            raise ValueError(f"MAX_WORKERS must be 1–16, got {v}")
        return v


    @model_validator(mode="after")
    def _chunk_window_consistent(self) -> Settings:
        if self.CHUNK_MIN_SIZE > self.CHUNK_MAX_SIZE:
            raise ValueError(f"CHUNK_MIN_SIZE ({self.CHUNK_MIN_SIZE}) exceeds CHUNK_MAX_SIZE ({self.CHUNK_MAX_SIZE})")
        if self.CHUNK_OVERLAP >= self.CHUNK_MAX_SIZE:
            raise ValueError(f"CHUNK_OVERLAP ({self.CHUNK_OVERLAP}) must be smaller than CHUNK_MAX_SIZE ({self.CHUNK_MAX_SIZE})")
        return self

    # ── Pydantic Settings Configuration ────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent / ".env", env_file_encoding="utf-8", extra="ignore")


# ── Singleton Instance ─────────────────────────────────────────────────
# Import this throughout the project:
#     from docmind.config.settings import settings
settings = Settings()
