"""Abstract base class for chunk-store backends.

Adding a new backend (pgvector, Qdrant …) only requires subclassing
:class:`ChunkStoreBase` and implementing the abstract methods.  The
ingestion and retrieval pipelines are backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from rag_chat.exceptions import DimensionMismatchError
from rag_chat.retrieval.models import ChunkRecord, MetadataFilter, ResourceRecord, ScoredChunk


class ChunkStoreBase(ABC):
    """Backend-agnostic store for resources and their embedded chunks.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / table.
    dimensions:
        Required vector length; writes with any other length are rejected.
    """

    def __init__(self, collection_name: str, dimensions: int) -> None:
        self.collection_name = collection_name
        self.dimensions = dimensions

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def add_chunks(self, resource: ResourceRecord, chunks: list[ChunkRecord]) -> int:
        """Persist *chunks* and the (new or updated) *resource* atomically.

        Either every chunk and the resource record become visible, or
        none of them do.  Returns the number of chunks written.

        Raises
        ------
        DimensionMismatchError
            Before any write, if a chunk vector has the wrong length.
        StorageError
            If the write failed; partial writes have been rolled back.
        """
        ...

    @abstractmethod
    async def get_resource(self, resource_id: str) -> ResourceRecord | None:
        """Return the resource record, or ``None`` when it does not exist."""
        ...

    @abstractmethod
    async def list_resources(self, *, limit: int = 50, offset: int = 0) -> list[ResourceRecord]:
        ...

    @abstractmethod
    async def get_chunks(self, resource_id: str) -> list[ChunkRecord]:
        """Return a resource's chunks sorted by ``order``."""
        ...

    @abstractmethod
    async def delete_resource(self, resource_id: str) -> int:
        """Delete a resource and, first, all of its chunks.

        Returns the number of chunks deleted; raises
        :class:`~rag_chat.exceptions.ResourceNotFoundError` if missing.
        """
        ...

    @abstractmethod
    async def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[ScoredChunk]:
        """Return up to *k* chunks ranked by descending cosine similarity."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- shared helpers -------------------------------------------------------

    def validate_dimensions(self, chunks: list[ChunkRecord]) -> None:
        """Reject any chunk whose vector length is not :attr:`dimensions`."""
        for i, chunk in enumerate(chunks):
            if len(chunk.embedding) != self.dimensions:
                raise DimensionMismatchError(self.dimensions, len(chunk.embedding), index=i)
