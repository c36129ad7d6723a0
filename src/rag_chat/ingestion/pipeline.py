"""Ingestion pipeline — chunk, embed, and persist one resource's text.

Ordering is preserved end to end: chunk *i* of the text gets embedding
*i* of the batch and is stored with ``order = start + i``.  Calls that
target the same resource are serialised in-process; calls for different
resources run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from rag_chat.ingestion.chunker import chunk_text, validate_window
from rag_chat.retrieval.models import ChunkRecord, ResourceRecord, new_id, utcnow

if TYPE_CHECKING:
    from datetime import datetime

    from rag_chat.config import Settings
    from rag_chat.ingestion.embedder import EmbeddingClient
    from rag_chat.retrieval.base import ChunkStoreBase

logger = logging.getLogger(__name__)


class IngestRequest(BaseModel):
    """Text to ingest plus its provenance.

    Attributes
    ----------
    text:
        Raw resource text.
    resource_id:
        Existing or caller-chosen resource id; generated when omitted.
    title / source_url:
        Provenance copied onto every chunk.
    order:
        ``order`` of the first new chunk.  Defaults to the resource's
        current chunk count, i.e. new chunks are appended.
    """

    text: str
    resource_id: str | None = None
    title: str | None = None
    source_url: str | None = None
    order: int | None = Field(default=None, ge=0)


class IngestResult(BaseModel):
    resource_id: str
    chunks_inserted: int


class ResourceLocks:
    """Per-resource :class:`asyncio.Lock` registry.

    Locks are held weakly and disappear once no coroutine holds or waits
    on them.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def lock_for(self, resource_id: str) -> asyncio.Lock:
        lock = self._locks.get(resource_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[resource_id] = lock
        return lock


class IngestionPipeline:
    """Turn raw text into stored, embedded chunks.

    Parameters
    ----------
    store:
        Chunk store that performs the all-or-nothing write.
    embedder:
        Client used for batch embeddings (with retry).
    chunk_size / chunk_overlap:
        Fixed-window chunking parameters, validated at construction.
    locks:
        Shared lock registry; a private one is created when omitted.
    """

    def __init__(
        self,
        store: ChunkStoreBase,
        embedder: EmbeddingClient,
        *,
        chunk_size: int = 512,
        chunk_overlap: int = 64,
        locks: ResourceLocks | None = None,
    ) -> None:
        validate_window(chunk_size, chunk_overlap)
        self._store = store
        self._embedder = embedder
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._locks = locks or ResourceLocks()

    @classmethod
    def from_settings(cls, settings: Settings, store: ChunkStoreBase, embedder: EmbeddingClient) -> IngestionPipeline:
        return cls(store, embedder, chunk_size=settings.chunk_size, chunk_overlap=settings.chunk_overlap)

    async def ingest(self, request: IngestRequest) -> IngestResult:
        """Chunk, embed and store ``request.text``.

        Raises
        ------
        ChunkParameterError, EmptyInputError, DimensionMismatchError
            Validation failures; nothing is written.
        EmbeddingRetryExhaustedError, UpstreamTimeoutError
            The embedding service kept failing; nothing is written.
        StorageError
            The write failed and partial rows were rolled back.
        """
        started = time.monotonic()
        documents = chunk_text(request.text, self.chunk_size, self.chunk_overlap)
        resource_id = request.resource_id or new_id()

        async with self._locks.lock_for(resource_id):
            existing = await self._store.get_resource(resource_id)
            if request.order is not None:
                start = request.order
            else:
                start = existing.chunk_count if existing else 0

            vectors = await self._embedder.embed_batch([d.page_content for d in documents])

            now = utcnow()
            chunks = [
                ChunkRecord(
                    resource_id=resource_id,
                    content=doc.page_content,
                    embedding=vector,
                    order=start + i,
                    title=request.title,
                    source_url=request.source_url,
                    embedding_model=self._embedder.model_name or None,
                    created_at=now,
                    updated_at=now,
                )
                for i, (doc, vector) in enumerate(zip(documents, vectors, strict=True))
            ]
            resource = _next_resource(existing, resource_id, request, len(chunks), now)
            inserted = await self._store.add_chunks(resource, chunks)

        logger.info(
            "Ingested resource %s: %d chunk(s) in %dms",
            resource_id,
            inserted,
            int((time.monotonic() - started) * 1000),
        )
        return IngestResult(resource_id=resource_id, chunks_inserted=inserted)

    async def delete_resource(self, resource_id: str) -> int:
        """Delete a resource and its chunks; waits for in-flight ingestion."""
        async with self._locks.lock_for(resource_id):
            return await self._store.delete_resource(resource_id)


def _next_resource(
    existing: ResourceRecord | None,
    resource_id: str,
    request: IngestRequest,
    new_chunks: int,
    now: datetime,
) -> ResourceRecord:
    if existing is None:
        return ResourceRecord(
            id=resource_id,
            content=request.text,
            title=request.title,
            source_url=request.source_url,
            chunk_count=new_chunks,
            created_at=now,
            updated_at=now,
        )
    return existing.model_copy(
        update={
            "content": existing.content + request.text,
            "title": existing.title or request.title,
            "source_url": existing.source_url or request.source_url,
            "chunk_count": existing.chunk_count + new_chunks,
            "updated_at": now,
        }
    )
