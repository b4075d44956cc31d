"""
DocMind - Logging
==================
Pre-configured logger factory for consistent, readable log output
across all DocMind modules.

Logging verbosity is driven by ``settings.ENV``:
  • ``"dev"``  → DEBUG level  (per-stage timings, fan-out detail)
  • ``"prod"`` → WARNING level (degradations, failures)

Stage tags (``[FANOUT]``, ``[FUSION]``, ``[RERANK]``, ``[EMBED]``,
``[MEMORY]`` …) at the start of a message are lifted into their own
fixed-width column, so one request can be followed through the
pipeline with a plain ``grep``::

    2025-01-01 12:00:00 | WARNING  | FANOUT   | docmind.src.core.retrieval | vector branch timed out after 3.0s for '退款'
    2025-01-01 12:00:00 | INFO     | -        | docmind.src.core.ingestor | Starting ingestion — 3 file(s) found

Usage:
    from docmind.src.utils.logger import get_logger
    logger = get_logger(__name__)
    logger.info("[FANOUT] %d branch(es) scheduled", n)
"""

import logging
import re
import sys

from docmind.config.settings import settings

# ── Resolve default level from environment mode ───────────────────────
_ENV_LEVEL_MAP = {
    "dev": logging.DEBUG,
    "prod": logging.WARNING,
}
_DEFAULT_LEVEL = _ENV_LEVEL_MAP.get(settings.ENV, logging.INFO)

_FORMAT = "%(asctime)s | %(levelname)-8s | %(stage)-8s | %(name)s | %(text)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_NO_STAGE = "-"

_STAGE_TAG_RE = re.compile(r"^\[([A-Z_]+)\]\s*")


class StageFormatter(logging.Formatter):
    """Moves a leading ``[TAG]`` out of the message into ``%(stage)s``."""

    def __init__(self, fmt: str = _FORMAT, datefmt: str = _DATE_FORMAT) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)


    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        match = _STAGE_TAG_RE.match(message)
        record.stage = match.group(1) if match else _NO_STAGE
        record.text = message[match.end():] if match else message
        return super().format(record)


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """
    Create and return a named logger with the stage-aware formatter.

    Args:
        name:  Typically ``__name__`` of the calling module.
        level: Explicit logging level override.
               If *None*, the level is derived from ``settings.ENV``.

    Returns:
        A configured ``logging.Logger`` instance.
    """
    resolved_level = level if level is not None else _DEFAULT_LEVEL
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(resolved_level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(resolved_level)
        console_handler.setFormatter(StageFormatter())
        logger.addHandler(console_handler)

        logger.propagate = False

    return logger
