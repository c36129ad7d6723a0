"""Chat-model initialisation — single place to swap providers.

Supports two modes:

1. **OpenAI cloud** (default) — set ``OPENAI_API_KEY``.
2. **OpenAI-compatible endpoint** — set ``OPENAI_BASE_URL`` to a vLLM or
   other server exposing ``/v1/chat/completions``; ``ChatOpenAI`` works
   unchanged.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from langchain_openai import ChatOpenAI

if TYPE_CHECKING:
    from rag_chat.config import Settings

logger = logging.getLogger(__name__)


def get_llm(settings: Settings, temperature: float | None = None) -> ChatOpenAI:
    """Return the configured streaming chat model.

    When ``settings.openai_base_url`` is set the client is pointed at that
    endpoint instead of the OpenAI cloud API; a dummy key (``"EMPTY"``) is
    used when none is configured because such servers rarely check it.
    """
    kwargs: dict = {
        "model": settings.llm_model_name,
        "temperature": settings.llm_temperature if temperature is None else temperature,
        "streaming": True,
        "timeout": settings.upstream_timeout_seconds,
    }

    if settings.openai_base_url:
        logger.info("Using OpenAI-compatible endpoint: %s", settings.openai_base_url)
        kwargs["base_url"] = settings.openai_base_url
        kwargs["api_key"] = settings.openai_api_key or "EMPTY"
    elif settings.openai_api_key:
        kwargs["api_key"] = settings.openai_api_key

    return ChatOpenAI(**kwargs)
