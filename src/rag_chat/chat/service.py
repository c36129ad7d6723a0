"""Chat service — one retrieval step, then a streamed, grounded answer.

The service is a *caller* of the retrieval core: it embeds the latest
user message, assembles context from the relevant chunks, and streams
the model's reply.  There is no multi-step tool loop.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from rag_chat.chat.prompts import ChatMessage, build_answer_prompt
from rag_chat.exceptions import EmptyInputError
from rag_chat.retrieval.context import build_context

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel
    from langchain_core.messages import BaseMessage

    from rag_chat.config import Settings
    from rag_chat.retrieval.context import TokenEncoding
    from rag_chat.retrieval.retriever import Retriever

logger = logging.getLogger(__name__)


class ChatService:
    """Answer chat turns from retrieved context.

    Parameters
    ----------
    retriever:
        Source of relevant chunks.
    llm:
        Any LangChain chat model; must support ``astream``.
    max_tokens_title / max_tokens_content:
        Per-chunk token budgets for context assembly.
    encoding:
        Tokenizer override for context truncation.
    """

    def __init__(
        self,
        retriever: Retriever,
        llm: BaseChatModel,
        *,
        max_tokens_title: int = 32,
        max_tokens_content: int = 512,
        encoding: TokenEncoding | None = None,
    ) -> None:
        self._retriever = retriever
        self._llm = llm
        self.max_tokens_title = max_tokens_title
        self.max_tokens_content = max_tokens_content
        self._encoding = encoding

    @classmethod
    def from_settings(cls, settings: Settings, retriever: Retriever, llm: BaseChatModel) -> ChatService:
        return cls(
            retriever,
            llm,
            max_tokens_title=settings.context_max_tokens_title,
            max_tokens_content=settings.context_max_tokens_content,
        )

    async def prepare_prompt(self, messages: list[ChatMessage]) -> list[BaseMessage]:
        """Retrieve context for the latest user turn and build the prompt.

        Runs before any output is streamed so that validation and upstream
        errors surface as regular error responses.
        """
        query = next((m.content for m in reversed(messages) if m.role == "user"), "")
        if not query.strip():
            raise EmptyInputError("user message")

        chunks = await self._retriever.find_relevant(query)
        if not chunks:
            logger.info("No relevant context found; answering without context")
        else:
            logger.info("Context sources: %s", " ".join(c.short_ref() for c in chunks))
        context = build_context(
            chunks, self.max_tokens_title, self.max_tokens_content, encoding=self._encoding
        )
        return build_answer_prompt(messages, context)

    async def stream(self, prompt: list[BaseMessage]) -> AsyncIterator[str]:
        """Yield the model's reply as text fragments."""
        async for part in self._llm.astream(prompt):
            if isinstance(part.content, str) and part.content:
                yield part.content

    async def answer(self, messages: list[ChatMessage]) -> str:
        """Non-streaming convenience wrapper around :meth:`stream`."""
        prompt = await self.prepare_prompt(messages)
        return "".join([fragment async for fragment in self.stream(prompt)])
