"""
Chat — grounded answers on top of the retrieval core.

Public API
----------
- :class:`ChatService` — retrieve once, then stream the model's reply.
- :class:`ChatMessage` — one conversation turn.
- :func:`get_llm` — the configured chat model.
"""

from rag_chat.chat.llm import get_llm
from rag_chat.chat.prompts import ChatMessage
from rag_chat.chat.service import ChatService

__all__ = ["ChatMessage", "ChatService", "get_llm"]
