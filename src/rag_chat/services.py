"""Service container — the process-wide handles, built once and injected.

The HTTP entry point constructs one :class:`ServiceContainer` at startup
and hands its members to request handlers; nothing in the package keeps
a hidden global client.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rag_chat.chat.service import ChatService
from rag_chat.ingestion.embedder import EmbeddingClient
from rag_chat.ingestion.pipeline import IngestionPipeline
from rag_chat.retrieval.retriever import Retriever

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings
    from langchain_core.language_models import BaseChatModel

    from rag_chat.config import Settings
    from rag_chat.retrieval.base import ChunkStoreBase

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    embedder: EmbeddingClient
    store: ChunkStoreBase
    ingestion: IngestionPipeline
    retriever: Retriever
    chat: ChatService

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        store: ChunkStoreBase | None = None,
        embeddings: Embeddings | None = None,
        llm: BaseChatModel | None = None,
    ) -> ServiceContainer:
        """Wire every service from *settings*.

        Any of *store*, *embeddings* and *llm* may be supplied to replace
        the production backends (Chroma over HTTP, OpenAI embeddings,
        ``ChatOpenAI``).
        """
        if store is None:
            from rag_chat.retrieval.chroma_store import ChromaChunkStore

            store = ChromaChunkStore.from_settings(settings)
        if llm is None:
            from rag_chat.chat.llm import get_llm

            llm = get_llm(settings)

        embedder = EmbeddingClient.from_settings(settings, embeddings)
        retriever = Retriever.from_settings(settings, store, embedder)
        logger.info(
            "Services ready: store=%s collection=%s embedding_model=%s dims=%d",
            type(store).__name__,
            store.collection_name,
            embedder.model_name,
            embedder.dimensions,
        )
        return cls(
            settings=settings,
            embedder=embedder,
            store=store,
            ingestion=IngestionPipeline.from_settings(settings, store, embedder),
            retriever=retriever,
            chat=ChatService.from_settings(settings, retriever, llm),
        )
