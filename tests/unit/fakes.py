"""In-memory test doubles shared by the unit tests."""

from __future__ import annotations

from typing import Any

import numpy as np

from rag_chat.exceptions import ResourceNotFoundError, StorageError
from rag_chat.retrieval.base import ChunkStoreBase
from rag_chat.retrieval.models import ChunkRecord, MetadataFilter, ResourceRecord, ScoredChunk

DIMS = 8


# ── In-memory chunk store ───────────────────────────────────────────────


class InMemoryChunkStore(ChunkStoreBase):
    """Dict-backed store computing exact cosine similarity with numpy."""

    def __init__(self, dimensions: int = DIMS, *, fail_on_add: bool = False) -> None:
        super().__init__("in-memory", dimensions)
        self.chunks: dict[str, ChunkRecord] = {}
        self.resources: dict[str, ResourceRecord] = {}
        self.fail_on_add = fail_on_add
        self.add_calls = 0

    async def add_chunks(self, resource: ResourceRecord, chunks: list[ChunkRecord]) -> int:
        self.add_calls += 1
        if not chunks:
            return 0
        self.validate_dimensions(chunks)
        if self.fail_on_add:
            raise StorageError("simulated write failure")
        for chunk in chunks:
            self.chunks[chunk.id] = chunk
        self.resources[resource.id] = resource
        return len(chunks)

    async def get_resource(self, resource_id: str) -> ResourceRecord | None:
        return self.resources.get(resource_id)

    async def list_resources(self, *, limit: int = 50, offset: int = 0) -> list[ResourceRecord]:
        ordered = sorted(self.resources.values(), key=lambda r: (r.created_at, r.id))
        return ordered[offset : offset + limit]

    async def get_chunks(self, resource_id: str) -> list[ChunkRecord]:
        found = [c for c in self.chunks.values() if c.resource_id == resource_id]
        return sorted(found, key=lambda c: c.order or 0)

    async def delete_resource(self, resource_id: str) -> int:
        if resource_id not in self.resources:
            raise ResourceNotFoundError(resource_id)
        doomed = [cid for cid, c in self.chunks.items() if c.resource_id == resource_id]
        for cid in doomed:
            del self.chunks[cid]
        del self.resources[resource_id]
        return len(doomed)

    async def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[ScoredChunk]:
        query = np.asarray(query_embedding, dtype=float)
        hits: list[ScoredChunk] = []
        for chunk in self.chunks.values():
            if not _matches(chunk, filters or []):
                continue
            vector = np.asarray(chunk.embedding, dtype=float)
            similarity = float(query @ vector / (np.linalg.norm(query) * np.linalg.norm(vector)))
            hits.append(ScoredChunk(chunk=chunk, similarity=similarity))
        hits.sort(key=lambda h: -h.similarity)
        return hits[:k]

    async def health_check(self) -> bool:
        return True


def _matches(chunk: ChunkRecord, filters: list[MetadataFilter]) -> bool:
    for f in filters:
        value = getattr(chunk, f.field)
        if f.operator == "eq" and value != f.value:
            return False
        if f.operator == "in" and value not in f.value:
            return False
    return True



# ── Chroma collection proxies ───────────────────────────────────────────


class BrokenGetCollection:
    """Proxy whose ``get`` always fails as if the server were unreachable."""

    def __init__(self, inner: Any) -> None:
        self._inner = inner

    def get(self, **kwargs: Any) -> Any:
        raise ConnectionError("chroma unreachable")

    def __getattr__(self, name: str) -> Any:
        return getattr(self._inner, name)
