"""
Retrieval — chunk storage, similarity search, and context assembly.

This module wraps the vector store behind a clean interface so that the
ingestion and chat layers never need to know which DB backs retrieval.

Public surface
--------------
- :class:`Retriever` — main entry point (``find_relevant``).
- :class:`ChunkStoreBase` — abstract backend (subclass for pgvector, etc.).
- :class:`ChromaChunkStore` — default Chroma backend.
- :class:`ChunkRecord`, :class:`ResourceRecord`, :class:`RelevantChunk`,
  :class:`MetadataFilter` — data models.
- :func:`build_context` — format results for the language model.
"""

from rag_chat.retrieval.base import ChunkStoreBase
from rag_chat.retrieval.context import build_context
from rag_chat.retrieval.models import ChunkRecord, MetadataFilter, RelevantChunk, ResourceRecord
from rag_chat.retrieval.retriever import Retriever, rank_chunks

__all__ = [
    "ChromaChunkStore",
    "ChunkRecord",
    "ChunkStoreBase",
    "MetadataFilter",
    "RelevantChunk",
    "ResourceRecord",
    "Retriever",
    "build_context",
    "rank_chunks",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaChunkStore to avoid pulling in chromadb at import time."""
    if name == "ChromaChunkStore":
        from rag_chat.retrieval.chroma_store import ChromaChunkStore

        return ChromaChunkStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
