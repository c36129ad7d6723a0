"""Shared fixtures for the unit tests."""

from __future__ import annotations

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding

from rag_chat.ingestion.embedder import EmbeddingClient
from tests.unit.fakes import DIMS, InMemoryChunkStore


@pytest.fixture()
def fake_embeddings() -> DeterministicFakeEmbedding:
    return DeterministicFakeEmbedding(size=DIMS)


@pytest.fixture()
def embedder(fake_embeddings: DeterministicFakeEmbedding) -> EmbeddingClient:
    return EmbeddingClient(fake_embeddings, dimensions=DIMS, model_name="fake-embedding", base_delay=0.0)


@pytest.fixture()
def memory_store() -> InMemoryChunkStore:
    return InMemoryChunkStore()
