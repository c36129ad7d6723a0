"""Centralised logging configuration.

Applies per-category log levels from :class:`~rag_chat.config.Settings`
so noisy third-party loggers (HTTP clients, Chroma) can be silenced
without touching the application's own loggers.

Usage::

    from rag_chat.logging_config import setup_logging
    setup_logging(settings)   # once, at startup
"""

from __future__ import annotations

import logging
import sys

from rag_chat.config import Settings

# Settings field → logger names governed by it.
_CATEGORY_MAP: dict[str, list[str]] = {
    "log_level_http": ["httpx", "httpcore", "openai"],
    "log_level_chroma": ["chromadb"],
    "log_level_uvicorn": ["uvicorn", "uvicorn.access", "uvicorn.error"],
}


def setup_logging(settings: Settings) -> None:
    """Configure root and per-category log levels."""
    root = logging.getLogger()
    root.setLevel(_parse_level(settings.log_level))

    # uvicorn installs its own handlers; scripts and tests may not.
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s"))
        root.addHandler(handler)

    for field, logger_names in _CATEGORY_MAP.items():
        level = _parse_level(getattr(settings, field, "INFO"))
        for name in logger_names:
            logging.getLogger(name).setLevel(level)

    logging.getLogger(__name__).debug(
        "Logging configured: root=%s http=%s chroma=%s uvicorn=%s",
        settings.log_level,
        settings.log_level_http,
        settings.log_level_chroma,
        settings.log_level_uvicorn,
    )


def _parse_level(raw: str) -> int:
    """Convert a level name to a logging constant, defaulting to INFO."""
    numeric = getattr(logging, raw.upper(), None)
    if isinstance(numeric, int):
        return numeric
    return logging.INFO
