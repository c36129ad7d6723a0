"""Retriever — embed a query, rank stored chunks, apply threshold and top-K.

This module is the **primary public interface** for retrieval.  Callers
(the chat service, HTTP handlers, tests) go through :class:`Retriever`
and never talk to the store directly.

Usage::

    retriever = Retriever(store, embedder, default_top_k=4, min_similarity=0.5)
    for chunk in await retriever.find_relevant("How are chunks stored?"):
        print(chunk.short_ref(), f"{chunk.similarity:.3f}", chunk.content[:80])
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rag_chat.exceptions import EmptyInputError, InvalidInputError
from rag_chat.retrieval.models import MetadataFilter, RelevantChunk, ScoredChunk

if TYPE_CHECKING:
    from rag_chat.config import Settings
    from rag_chat.ingestion.embedder import EmbeddingClient
    from rag_chat.retrieval.base import ChunkStoreBase

logger = logging.getLogger(__name__)


def _rank_key(hit: ScoredChunk) -> tuple:
    c = hit.chunk
    return (-hit.similarity, c.created_at, c.resource_id, c.order if c.order is not None else -1, c.id)


def rank_chunks(
    hits: list[ScoredChunk],
    *,
    top_k: int,
    min_similarity: float,
    deduplicate: bool = False,
) -> list[ScoredChunk]:
    """Order, filter, and truncate raw store hits.

    Hits are sorted by descending similarity; ties go to the chunk
    written first (then resource id, ``order`` and chunk id, so the
    result never depends on backend ordering).  Hits with
    ``similarity <= min_similarity`` are dropped.  With *deduplicate*
    only the best hit of each resource survives.  At most *top_k* hits
    are returned.
    """
    ranked: list[ScoredChunk] = []
    seen_resources: set[str] = set()
    for hit in sorted(hits, key=_rank_key):
        if hit.similarity <= min_similarity:
            # Sorted descending: nothing after this passes either.
            break
        if deduplicate:
            if hit.chunk.resource_id in seen_resources:
                continue
            seen_resources.add(hit.chunk.resource_id)
        ranked.append(hit)
        if len(ranked) == top_k:
            break
    return ranked


class Retriever:
    """High-level retriever over any :class:`ChunkStoreBase`.

    Parameters
    ----------
    store:
        A concrete chunk-store backend.
    embedder:
        Client used to embed queries.
    default_top_k:
        Number of results when :meth:`find_relevant` gets no ``top_k``.
    min_similarity:
        Default exclusive similarity threshold.
    candidate_multiplier:
        The store is asked for ``top_k * candidate_multiplier`` candidates
        so threshold, tie-break and de-duplication work on a wider pool.
    deduplicate:
        Default for keeping only the best chunk per resource.
    """

    def __init__(
        self,
        store: ChunkStoreBase,
        embedder: EmbeddingClient,
        *,
        default_top_k: int = 4,
        min_similarity: float = 0.5,
        candidate_multiplier: int = 3,
        deduplicate: bool = False,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.default_top_k = default_top_k
        self.min_similarity = min_similarity
        self.candidate_multiplier = candidate_multiplier
        self.deduplicate = deduplicate

    @classmethod
    def from_settings(cls, settings: Settings, store: ChunkStoreBase, embedder: EmbeddingClient) -> Retriever:
        return cls(
            store,
            embedder,
            default_top_k=settings.retrieval_top_k,
            min_similarity=settings.similarity_threshold,
            candidate_multiplier=settings.retrieval_candidate_multiplier,
            deduplicate=settings.retrieval_dedupe_by_resource,
        )

    # -- public API -----------------------------------------------------------

    async def find_relevant(
        self,
        query: str,
        top_k: int | None = None,
        min_similarity: float | None = None,
        *,
        resource_ids: list[str] | None = None,
        deduplicate: bool | None = None,
    ) -> list[RelevantChunk]:
        """Return the chunks most similar to *query*, best first.

        Parameters
        ----------
        query:
            Natural-language query; must not be blank.
        top_k:
            Maximum number of results (defaults to ``self.default_top_k``).
        min_similarity:
            Exclusive lower bound on cosine similarity (defaults to
            ``self.min_similarity``).
        resource_ids:
            Restrict the search to these resources.
        deduplicate:
            Keep only the best chunk per resource.

        Returns
        -------
        list[RelevantChunk]
            Possibly empty; finding nothing above the threshold is not an error.
        """
        if not query or not query.strip():
            raise EmptyInputError("query")
        top_k, min_similarity = self._resolve(top_k, min_similarity)
        embedding = await self._embedder.embed_single(query)
        return await self.find_relevant_by_embedding(
            embedding,
            top_k=top_k,
            min_similarity=min_similarity,
            resource_ids=resource_ids,
            deduplicate=deduplicate,
        )

    async def find_relevant_by_embedding(
        self,
        embedding: list[float],
        *,
        top_k: int | None = None,
        min_similarity: float | None = None,
        resource_ids: list[str] | None = None,
        deduplicate: bool | None = None,
    ) -> list[RelevantChunk]:
        """Same as :meth:`find_relevant` but accepts a pre-computed embedding."""
        top_k, min_similarity = self._resolve(top_k, min_similarity)
        dedupe = self.deduplicate if deduplicate is None else deduplicate

        filters = [MetadataFilter.one_of("resource_id", resource_ids)] if resource_ids else None
        hits = await self._store.similarity_search(
            embedding, k=top_k * self.candidate_multiplier, filters=filters
        )
        ranked = rank_chunks(hits, top_k=top_k, min_similarity=min_similarity, deduplicate=dedupe)
        logger.info(
            "Retrieved %d/%d chunk(s) above similarity %.2f (top_k=%d)",
            len(ranked),
            len(hits),
            min_similarity,
            top_k,
        )
        return [RelevantChunk.from_scored(hit) for hit in ranked]

    # -- internals ------------------------------------------------------------

    def _resolve(self, top_k: int | None, min_similarity: float | None) -> tuple[int, float]:
        top_k = self.default_top_k if top_k is None else top_k
        min_similarity = self.min_similarity if min_similarity is None else min_similarity
        if top_k < 1:
            raise InvalidInputError(f"top_k must be >= 1, got {top_k}")
        if not -1.0 <= min_similarity <= 1.0:
            raise InvalidInputError(f"min_similarity must be within [-1, 1], got {min_similarity}")
        return top_k, min_similarity
