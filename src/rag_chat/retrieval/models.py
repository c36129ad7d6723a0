"""Domain models for stored chunks, resources, and retrieval results."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


def new_id() -> str:
    """Return a fresh record identifier."""
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"resource_id"``).
    operator:
        Comparison operator — one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)


class ChunkRecord(BaseModel):
    """One persisted, independently retrievable slice of a resource.

    Attributes
    ----------
    id:
        Unique identifier, generated at creation.
    resource_id:
        Parent resource; a lookup key, not an in-memory reference.
    content:
        The text slice that was embedded.
    embedding:
        Vector of the configured dimensionality.  Left empty on records
        read back for search results.
    order:
        Position of the chunk within its resource.
    title / source_url:
        Provenance metadata; never used for similarity.
    embedding_model:
        Model that produced ``embedding``.
    """

    id: str = Field(default_factory=new_id)
    resource_id: str
    content: str
    embedding: list[float] = Field(default_factory=list)
    order: int | None = None
    title: str | None = None
    source_url: str | None = None
    embedding_model: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ResourceRecord(BaseModel):
    """The logical parent document of a set of chunks."""

    id: str = Field(default_factory=new_id)
    content: str
    title: str | None = None
    source_url: str | None = None
    chunk_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ScoredChunk(BaseModel):
    """A chunk returned by the store together with its cosine similarity."""

    chunk: ChunkRecord
    similarity: float


class RelevantChunk(BaseModel):
    """A retrieval result handed to context assembly and API callers."""

    content: str
    similarity: float
    chunk_id: str
    resource_id: str
    order: int | None = None
    title: str | None = None
    source_url: str | None = None

    @classmethod
    def from_scored(cls, hit: ScoredChunk) -> RelevantChunk:
        c = hit.chunk
        return cls(
            content=c.content,
            similarity=hit.similarity,
            chunk_id=c.id,
            resource_id=c.resource_id,
            order=c.order,
            title=c.title,
            source_url=c.source_url,
        )

    def short_ref(self) -> str:
        """Return a compact ``[resource§order]`` reference string."""
        order = self.order if self.order is not None else "?"
        return f"[{self.resource_id}§{order}]"
