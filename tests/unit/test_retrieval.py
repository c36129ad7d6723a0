"""Unit tests for the retrieval layer — models, ranking, and Retriever."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from rag_chat.exceptions import EmptyInputError, InvalidInputError
from rag_chat.ingestion.embedder import EmbeddingClient
from rag_chat.retrieval.base import ChunkStoreBase
from rag_chat.retrieval.models import (
    ChunkRecord,
    MetadataFilter,
    RelevantChunk,
    ResourceRecord,
    ScoredChunk,
)
from rag_chat.retrieval.retriever import Retriever, rank_chunks

# ── Fake chunk store returning canned hits ──────────────────────────────


class FakeChunkStore(ChunkStoreBase):
    """Returns the configured hits regardless of the query vector."""

    def __init__(self, hits: list[ScoredChunk] | None = None) -> None:
        super().__init__("test-collection", dimensions=8)
        self._hits: list[ScoredChunk] = hits or []
        self.last_filters: list[MetadataFilter] | None = None
        self.last_k: int | None = None

    async def add_chunks(self, resource: ResourceRecord, chunks: list[ChunkRecord]) -> int:
        raise NotImplementedError

    async def get_resource(self, resource_id: str) -> ResourceRecord | None:
        return None

    async def list_resources(self, *, limit: int = 50, offset: int = 0) -> list[ResourceRecord]:
        return []

    async def get_chunks(self, resource_id: str) -> list[ChunkRecord]:
        return []

    async def delete_resource(self, resource_id: str) -> int:
        return 0

    async def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[ScoredChunk]:
        self.last_filters = filters
        self.last_k = k
        return self._hits[:k]

    async def health_check(self) -> bool:
        return True


# ── Fixtures ────────────────────────────────────────────────────────────

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def hit(
    chunk_id: str,
    similarity: float,
    *,
    resource_id: str = "res-1",
    order: int = 0,
    created_at: datetime = T0,
) -> ScoredChunk:
    chunk = ChunkRecord(
        id=chunk_id,
        resource_id=resource_id,
        content=f"content of {chunk_id}",
        order=order,
        title=f"title {chunk_id}",
        created_at=created_at,
        updated_at=created_at,
    )
    return ScoredChunk(chunk=chunk, similarity=similarity)


SAMPLE_HITS = [
    hit("C", 0.2, resource_id="res-3"),
    hit("A", 0.9, resource_id="res-1"),
    hit("B", 0.5, resource_id="res-2"),
]


@pytest.fixture()
def fake_store() -> FakeChunkStore:
    return FakeChunkStore(hits=SAMPLE_HITS)


@pytest.fixture()
def retriever(fake_store: FakeChunkStore, embedder: EmbeddingClient) -> Retriever:
    return Retriever(fake_store, embedder, default_top_k=4, min_similarity=0.3)


# ── Model tests ─────────────────────────────────────────────────────────


class TestRelevantChunk:
    def test_from_scored_copies_provenance(self) -> None:
        relevant = RelevantChunk.from_scored(hit("A", 0.9, order=3))
        assert relevant.chunk_id == "A"
        assert relevant.resource_id == "res-1"
        assert relevant.similarity == 0.9
        assert relevant.title == "title A"

    def test_short_ref(self) -> None:
        assert RelevantChunk.from_scored(hit("A", 0.9, order=3)).short_ref() == "[res-1§3]"

    def test_short_ref_without_order(self) -> None:
        relevant = RelevantChunk(content="x", similarity=0.1, chunk_id="c", resource_id="r")
        assert relevant.short_ref() == "[r§?]"


class TestMetadataFilter:
    def test_equals_factory(self) -> None:
        f = MetadataFilter.equals("resource_id", "r1")
        assert (f.field, f.operator, f.value) == ("resource_id", "eq", "r1")

    def test_one_of_factory(self) -> None:
        f = MetadataFilter.one_of("resource_id", ["a", "b"])
        assert f.operator == "in"
        assert f.value == ["a", "b"]


class TestChunkRecord:
    def test_ids_are_generated(self) -> None:
        first = ChunkRecord(resource_id="r", content="x")
        second = ChunkRecord(resource_id="r", content="x")
        assert first.id != second.id
        assert first.created_at.tzinfo is not None


# ── rank_chunks ─────────────────────────────────────────────────────────


class TestRankChunks:
    def test_threshold_then_top_k(self) -> None:
        ranked = rank_chunks(SAMPLE_HITS, top_k=2, min_similarity=0.3)
        assert [h.chunk.id for h in ranked] == ["A", "B"]

    def test_threshold_is_exclusive(self) -> None:
        ranked = rank_chunks(SAMPLE_HITS, top_k=5, min_similarity=0.5)
        assert [h.chunk.id for h in ranked] == ["A"]

    def test_tie_goes_to_earlier_chunk(self) -> None:
        later = hit("D", 0.9, resource_id="res-0", created_at=T0 + timedelta(seconds=1))
        ranked = rank_chunks([later, *SAMPLE_HITS], top_k=3, min_similarity=0.3)
        assert [h.chunk.id for h in ranked] == ["A", "D", "B"]

    def test_tie_within_resource_follows_order(self) -> None:
        hits = [hit("second", 0.8, order=1), hit("first", 0.8, order=0)]
        ranked = rank_chunks(hits, top_k=2, min_similarity=0.0)
        assert [h.chunk.id for h in ranked] == ["first", "second"]

    def test_ranking_is_stable_across_input_orders(self) -> None:
        hits = [*SAMPLE_HITS, hit("D", 0.9, resource_id="res-0")]
        forward = rank_chunks(hits, top_k=4, min_similarity=0.0)
        backward = rank_chunks(list(reversed(hits)), top_k=4, min_similarity=0.0)
        assert [h.chunk.id for h in forward] == [h.chunk.id for h in backward]

    def test_deduplicate_keeps_best_per_resource(self) -> None:
        hits = [
            hit("A1", 0.95, resource_id="res-1", order=0),
            hit("A2", 0.90, resource_id="res-1", order=1),
            hit("B1", 0.80, resource_id="res-2"),
        ]
        ranked = rank_chunks(hits, top_k=2, min_similarity=0.3, deduplicate=True)
        assert [h.chunk.id for h in ranked] == ["A1", "B1"]

    def test_without_dedupe_one_resource_can_dominate(self) -> None:
        hits = [
            hit("A1", 0.95, resource_id="res-1", order=0),
            hit("A2", 0.90, resource_id="res-1", order=1),
            hit("B1", 0.80, resource_id="res-2"),
        ]
        ranked = rank_chunks(hits, top_k=2, min_similarity=0.3)
        assert [h.chunk.id for h in ranked] == ["A1", "A2"]

    def test_empty(self) -> None:
        assert rank_chunks([], top_k=3, min_similarity=0.0) == []


# ── Retriever ───────────────────────────────────────────────────────────


class TestRetriever:
    @pytest.mark.asyncio
    async def test_find_relevant_orders_and_filters(self, retriever: Retriever) -> None:
        results = await retriever.find_relevant("what is A?", top_k=2, min_similarity=0.3)
        assert [r.chunk_id for r in results] == ["A", "B"]
        assert all(isinstance(r, RelevantChunk) for r in results)
        assert results[0].similarity >= results[1].similarity

    @pytest.mark.asyncio
    async def test_defaults_are_applied(self, retriever: Retriever, fake_store: FakeChunkStore) -> None:
        results = await retriever.find_relevant("anything")
        assert [r.chunk_id for r in results] == ["A", "B"]
        assert fake_store.last_k == 4 * retriever.candidate_multiplier

    @pytest.mark.asyncio
    async def test_repeat_queries_are_identical(self, retriever: Retriever) -> None:
        first = await retriever.find_relevant("same question")
        second = await retriever.find_relevant("same question")
        assert first == second

    @pytest.mark.asyncio
    async def test_nothing_above_threshold_is_empty_not_error(self, retriever: Retriever) -> None:
        assert await retriever.find_relevant("anything", min_similarity=0.95) == []

    @pytest.mark.asyncio
    async def test_resource_filter_forwarded(self, retriever: Retriever, fake_store: FakeChunkStore) -> None:
        await retriever.find_relevant("q", resource_ids=["res-1", "res-2"])
        assert fake_store.last_filters is not None
        assert fake_store.last_filters[0].field == "resource_id"
        assert fake_store.last_filters[0].value == ["res-1", "res-2"]

    @pytest.mark.asyncio
    async def test_no_filter_without_resource_ids(self, retriever: Retriever, fake_store: FakeChunkStore) -> None:
        await retriever.find_relevant("q")
        assert fake_store.last_filters is None

    @pytest.mark.asyncio
    async def test_empty_store_returns_empty(self, embedder: EmbeddingClient) -> None:
        retriever = Retriever(FakeChunkStore(), embedder)
        assert await retriever.find_relevant("anything") == []

    @pytest.mark.asyncio
    async def test_blank_query_rejected(self, retriever: Retriever) -> None:
        with pytest.raises(EmptyInputError, match="empty query"):
            await retriever.find_relevant("   ")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("top_k", "min_similarity"), [(0, 0.5), (-1, 0.5), (3, 1.5), (3, -2.0)])
    async def test_invalid_parameters_rejected(
        self, retriever: Retriever, top_k: int, min_similarity: float
    ) -> None:
        with pytest.raises(InvalidInputError):
            await retriever.find_relevant("q", top_k=top_k, min_similarity=min_similarity)

    @pytest.mark.asyncio
    async def test_find_by_embedding_skips_query_embedding(self, retriever: Retriever) -> None:
        results = await retriever.find_relevant_by_embedding([0.0] * 8, top_k=1)
        assert [r.chunk_id for r in results] == ["A"]
