"""Chroma implementation of the chunk-store abstraction.

Chunks and resources live in two collections (``<name>`` and
``<name>_resources``), both using cosine space so that
``similarity = 1 - distance``.  Chroma has no multi-row transactions;
:meth:`ChromaChunkStore.add_chunks` compensates by deleting every chunk
id it attempted when any step of a write fails.  A write that overruns
its time budget is allowed to finish before the rollback runs, so it
cannot land afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import chromadb
import numpy as np

from rag_chat.exceptions import RagError, ResourceNotFoundError, StorageError, UpstreamTimeoutError
from rag_chat.retrieval.base import ChunkStoreBase
from rag_chat.retrieval.models import ChunkRecord, MetadataFilter, ResourceRecord, ScoredChunk

if TYPE_CHECKING:
    from chromadb.api import ClientAPI

    from rag_chat.config import Settings

logger = logging.getLogger(__name__)

_COLLECTION_METADATA = {"hnsw:space": "cosine"}


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    _OP_MAP = {
        "eq": "$eq",
        "ne": "$ne",
        "gt": "$gt",
        "gte": "$gte",
        "lt": "$lt",
        "lte": "$lte",
        "in": "$in",
        "nin": "$nin",
    }

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _flat(meta: dict[str, Any]) -> dict[str, Any]:
    """Chroma metadata values must be non-null str/int/float/bool."""
    return {k: v for k, v in meta.items() if v is not None}


def _chunk_metadata(chunk: ChunkRecord) -> dict[str, Any]:
    return _flat(
        {
            "resource_id": chunk.resource_id,
            "order": chunk.order,
            "title": chunk.title,
            "source_url": chunk.source_url,
            "embedding_model": chunk.embedding_model,
            "created_at": chunk.created_at.isoformat(),
            "updated_at": chunk.updated_at.isoformat(),
        }
    )


def _resource_metadata(resource: ResourceRecord) -> dict[str, Any]:
    return _flat(
        {
            "title": resource.title,
            "source_url": resource.source_url,
            "chunk_count": resource.chunk_count,
            "created_at": resource.created_at.isoformat(),
            "updated_at": resource.updated_at.isoformat(),
        }
    )


def _chunk_from_row(chunk_id: str, content: str | None, meta: dict[str, Any] | None) -> ChunkRecord:
    meta = meta or {}
    fields = ("order", "title", "source_url", "embedding_model", "created_at", "updated_at")
    return ChunkRecord(
        id=chunk_id,
        resource_id=meta.get("resource_id", ""),
        content=content or "",
        **_flat({f: meta.get(f) for f in fields}),
    )


def _resource_from_row(resource_id: str, content: str | None, meta: dict[str, Any] | None) -> ResourceRecord:
    meta = meta or {}
    fields = ("title", "source_url", "chunk_count", "created_at", "updated_at")
    return ResourceRecord(id=resource_id, content=content or "", **_flat({f: meta.get(f) for f in fields}))


def _chunk_sort_key(chunk: ChunkRecord) -> tuple:
    return (chunk.order is None, chunk.order or 0, chunk.created_at, chunk.id)


def _mean_vector(
    vectors: list[list[float]], previous: list[float] | None = None, previous_count: int = 0
) -> list[float]:
    """Running mean of chunk vectors, used as the resource's own vector."""
    total = np.sum(np.asarray(vectors, dtype=float), axis=0)
    count = len(vectors)
    if previous is not None and previous_count > 0:
        total = total + np.asarray(previous, dtype=float) * previous_count
        count += previous_count
    return (total / count).tolist()


class ChromaChunkStore(ChunkStoreBase):
    """Chroma-backed chunk store.

    Parameters
    ----------
    client:
        A Chroma client (``HttpClient`` in production, ``EphemeralClient``
        in tests).
    collection_name:
        Name of the chunk collection; resources go to ``<name>_resources``.
    dimensions:
        Required vector length.
    write_batch_size:
        Maximum chunks per ``add`` call.
    timeout:
        Time budget for each Chroma call, in seconds.
    """

    def __init__(
        self,
        client: ClientAPI,
        collection_name: str,
        *,
        dimensions: int,
        write_batch_size: int = 100,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(collection_name, dimensions)
        self._client = client
        self._write_batch_size = write_batch_size
        self._timeout = timeout
        self._chunks = client.get_or_create_collection(
            collection_name, metadata=_COLLECTION_METADATA, embedding_function=None
        )
        self._resources = client.get_or_create_collection(
            f"{collection_name}_resources", metadata=_COLLECTION_METADATA, embedding_function=None
        )

    @classmethod
    def from_settings(cls, settings: Settings, client: ClientAPI | None = None) -> ChromaChunkStore:
        if client is None:
            client = chromadb.HttpClient(host=settings.chroma_host, port=settings.chroma_port)
        return cls(
            client,
            settings.chroma_collection,
            dimensions=settings.embedding_dimensions,
            write_batch_size=settings.chroma_write_batch_size,
            timeout=settings.upstream_timeout_seconds,
        )

    # -- ChunkStoreBase overrides ---------------------------------------------

    async def add_chunks(self, resource: ResourceRecord, chunks: list[ChunkRecord]) -> int:
        if not chunks:
            return 0
        self.validate_dimensions(chunks)

        previous_vector, previous_count = await self._resource_vector(resource.id)
        resource_vector = _mean_vector([c.embedding for c in chunks], previous_vector, previous_count)

        attempted: list[str] = []
        try:
            for start in range(0, len(chunks), self._write_batch_size):
                batch = chunks[start : start + self._write_batch_size]
                attempted.extend(c.id for c in batch)
                await self._write(
                    "add chunks",
                    self._chunks.add,
                    ids=[c.id for c in batch],
                    embeddings=[c.embedding for c in batch],
                    documents=[c.content for c in batch],
                    metadatas=[_chunk_metadata(c) for c in batch],
                )
            await self._write(
                "upsert resource",
                self._resources.upsert,
                ids=[resource.id],
                embeddings=[resource_vector],
                documents=[resource.content],
                metadatas=[_resource_metadata(resource)],
            )
        except Exception as exc:
            rolled_back = await self._rollback(attempted)
            if isinstance(exc, RagError) and rolled_back:
                raise
            suffix = "" if rolled_back else " (rollback incomplete)"
            raise StorageError(
                f"failed to write {len(chunks)} chunk(s) for resource {resource.id!r}: {exc}{suffix}"
            ) from exc

        logger.info("Stored %d chunks for resource %s", len(chunks), resource.id)
        return len(chunks)

    async def get_resource(self, resource_id: str) -> ResourceRecord | None:
        result = await self._call(
            "get resource", self._resources.get, ids=[resource_id], include=["documents", "metadatas"]
        )
        ids = result.get("ids") or []
        if not ids:
            return None
        return _resource_from_row(ids[0], _first(result, "documents"), _first(result, "metadatas"))

    async def list_resources(self, *, limit: int = 50, offset: int = 0) -> list[ResourceRecord]:
        """Page through resources in Chroma's insertion order."""
        result = await self._call(
            "list resources",
            self._resources.get,
            limit=limit,
            offset=offset,
            include=["documents", "metadatas"],
        )
        ids = result.get("ids") or []
        docs = result.get("documents") or [None] * len(ids)
        metas = result.get("metadatas") or [None] * len(ids)
        return [_resource_from_row(i, d, m) for i, d, m in zip(ids, docs, metas)]

    async def get_chunks(self, resource_id: str) -> list[ChunkRecord]:
        result = await self._call(
            "get chunks",
            self._chunks.get,
            where={"resource_id": resource_id},
            include=["documents", "metadatas"],
        )
        ids = result.get("ids") or []
        docs = result.get("documents") or [None] * len(ids)
        metas = result.get("metadatas") or [None] * len(ids)
        chunks = [_chunk_from_row(i, d, m) for i, d, m in zip(ids, docs, metas)]
        return sorted(chunks, key=_chunk_sort_key)

    async def delete_resource(self, resource_id: str) -> int:
        if await self.get_resource(resource_id) is None:
            raise ResourceNotFoundError(resource_id)

        existing = await self._call(
            "get chunks", self._chunks.get, where={"resource_id": resource_id}, include=["metadatas"]
        )
        chunk_ids = existing.get("ids") or []
        # Chunks first: a failure here leaves the resource in place, so no
        # chunk can outlive its parent.
        if chunk_ids:
            await self._write("delete chunks", self._chunks.delete, ids=chunk_ids)
        await self._write("delete resource", self._resources.delete, ids=[resource_id])

        logger.info("Deleted resource %s and %d chunk(s)", resource_id, len(chunk_ids))
        return len(chunk_ids)

    async def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[ScoredChunk]:
        where = _build_chroma_where(filters) if filters else None

        total = await self._call("count chunks", self._chunks.count)
        if total == 0:
            return []

        results = await self._call(
            "similarity query",
            self._chunks.query,
            query_embeddings=[query_embedding],
            n_results=min(k, total),
            where=where,
            include=["documents", "metadatas", "distances"],
        )

        hits: list[ScoredChunk] = []
        ids = results.get("ids", [[]])[0]
        docs = results.get("documents", [[]])[0]
        metas = results.get("metadatas", [[]])[0]
        distances = results.get("distances", [[]])[0]

        for chunk_id, content, meta, dist in zip(ids, docs, metas, distances):
            # Cosine space: distance = 1 - cosine similarity.
            hits.append(ScoredChunk(chunk=_chunk_from_row(chunk_id, content, meta), similarity=1.0 - float(dist)))
        return hits

    async def health_check(self) -> bool:
        try:
            await self._call("heartbeat", self._client.heartbeat)
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    # -- internals ------------------------------------------------------------

    async def _call(self, operation: str, fn: Callable[..., Any], /, **kwargs: Any) -> Any:
        """Run a blocking Chroma read in a worker thread under the time budget."""
        return await self._run(operation, fn, kwargs, settle=False)

    async def _write(self, operation: str, fn: Callable[..., Any], /, **kwargs: Any) -> Any:
        """Like :meth:`_call`, but a timed-out write has finished by the time it raises."""
        return await self._run(operation, fn, kwargs, settle=True)

    async def _run(
        self, operation: str, fn: Callable[..., Any], kwargs: dict[str, Any], *, settle: bool
    ) -> Any:
        task = asyncio.ensure_future(asyncio.to_thread(fn, **kwargs))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            if settle:
                logger.warning("chroma %s overran %gs; waiting for it to settle", operation, self._timeout)
                try:
                    await task
                except Exception:
                    logger.warning("chroma %s failed after its timeout", operation, exc_info=True)
            else:
                task.add_done_callback(_discard_result)
            raise UpstreamTimeoutError(f"chroma {operation}", self._timeout) from exc
        except RagError:
            raise
        except Exception as exc:
            raise StorageError(f"chroma {operation} failed: {exc}") from exc

    async def _resource_vector(self, resource_id: str) -> tuple[list[float] | None, int]:
        result = await self._call(
            "get resource", self._resources.get, ids=[resource_id], include=["embeddings", "metadatas"]
        )
        if not result.get("ids"):
            return None, 0
        embeddings = result.get("embeddings")
        if embeddings is None or len(embeddings) == 0:
            return None, 0
        meta = _first(result, "metadatas") or {}
        return [float(x) for x in embeddings[0]], int(meta.get("chunk_count", 0))

    async def _rollback(self, chunk_ids: list[str]) -> bool:
        """Delete partially written chunks; return ``False`` if that failed too."""
        if not chunk_ids:
            return True
        try:
            await self._write("rollback chunks", self._chunks.delete, ids=chunk_ids)
        except Exception:
            logger.exception("Rollback failed; %d chunk id(s) may be orphaned: %s", len(chunk_ids), chunk_ids)
            return False
        logger.warning("Rolled back %d chunk(s) after failed write", len(chunk_ids))
        return True


def _discard_result(task: asyncio.Future) -> None:
    # Abandoned reads: retrieve the outcome so asyncio does not report it.
    if not task.cancelled():
        task.exception()


def _first(result: dict[str, Any], key: str) -> Any:
    values = result.get(key)
    if values is None or len(values) == 0:
        return None
    return values[0]
