"""Embedding client — single-query and batched document embeddings.

The client wraps any LangChain :class:`~langchain_core.embeddings.Embeddings`
implementation.  Production wiring uses ``OpenAIEmbeddings`` (see
:func:`get_embedding_model`); tests inject deterministic fakes.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from typing import TYPE_CHECKING

import openai
from langchain_openai import OpenAIEmbeddings

from rag_chat.exceptions import (
    DimensionMismatchError,
    EmbeddingError,
    EmbeddingRetryExhaustedError,
    EmptyInputError,
    RagError,
    UpstreamTimeoutError,
)

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

    from rag_chat.config import Settings

logger = logging.getLogger(__name__)

# Provider failures worth another attempt.  Anything else is a rejected
# request and fails immediately.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

_NEWLINES = re.compile(r"\r\n|\r|\n")


def normalize_whitespace(text: str) -> str:
    """Replace every newline with a single space."""
    return _NEWLINES.sub(" ", text)


def get_embedding_model(settings: Settings) -> OpenAIEmbeddings:
    """Return the configured OpenAI embedding model.

    Provider-side retries are disabled; :class:`EmbeddingClient` owns the
    retry policy.
    """
    kwargs: dict = {
        "model": settings.embedding_model,
        "chunk_size": settings.embedding_batch_size,
        "max_retries": 0,
    }
    # Only the text-embedding-3 family accepts a dimensions override.
    if settings.embedding_model.startswith("text-embedding-3"):
        kwargs["dimensions"] = settings.embedding_dimensions
    if settings.openai_base_url:
        kwargs["base_url"] = settings.openai_base_url
    if settings.openai_api_key:
        kwargs["api_key"] = settings.openai_api_key
    return OpenAIEmbeddings(**kwargs)


class EmbeddingClient:
    """Embed queries and chunk batches with dimension checks and retries.

    Parameters
    ----------
    embeddings:
        LangChain embedding model used for the actual requests.
    dimensions:
        Required length of every returned vector.
    model_name:
        Identifier recorded next to stored vectors.
    batch_size:
        Maximum texts per provider request in :meth:`embed_batch`.
    max_attempts:
        Attempts per batch request before giving up.
    base_delay:
        Backoff before the second attempt, in seconds; doubles each retry.
    timeout:
        Per-request time budget, in seconds.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        *,
        dimensions: int,
        model_name: str = "",
        batch_size: int = 64,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        timeout: float = 30.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._embeddings = embeddings
        self.dimensions = dimensions
        self.model_name = model_name
        self._batch_size = batch_size
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, embeddings: Embeddings | None = None) -> EmbeddingClient:
        return cls(
            embeddings if embeddings is not None else get_embedding_model(settings),
            dimensions=settings.embedding_dimensions,
            model_name=settings.embedding_model,
            batch_size=settings.embedding_batch_size,
            max_attempts=settings.embedding_max_attempts,
            base_delay=settings.embedding_retry_base_delay,
            timeout=settings.upstream_timeout_seconds,
        )

    # -- public API -----------------------------------------------------------

    async def embed_single(self, text: str) -> list[float]:
        """Embed one text (typically a user query).

        Not retried: a failed query embedding surfaces immediately so the
        request can fail fast.
        """
        normalized = normalize_whitespace(text)
        if not normalized.strip():
            raise EmptyInputError("query")

        try:
            vector = await asyncio.wait_for(
                self._embeddings.aembed_query(normalized), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeoutError("embedding request", self._timeout) from exc
        except RagError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"embedding request failed: {exc}") from exc

        self._check_dimensions([vector])
        return [float(x) for x in vector]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*, returning one vector per text in input order."""
        if not texts:
            return []

        normalized = [normalize_whitespace(t) for t in texts]
        vectors: list[list[float]] = []
        for start in range(0, len(normalized), self._batch_size):
            batch = normalized[start : start + self._batch_size]
            batch_vectors = await self._embed_with_retry(batch)
            self._check_dimensions(batch_vectors, offset=start)
            vectors.extend([float(x) for x in v] for v in batch_vectors)
            logger.debug("Embedded %d / %d texts", len(vectors), len(normalized))

        logger.info(
            "Generated %d embeddings (model=%s, dims=%d)",
            len(vectors),
            self.model_name or "unknown",
            self.dimensions,
        )
        return vectors

    def backoff_delay(self, attempt: int) -> float:
        """Delay to wait after failed *attempt* (1-based)."""
        return self._base_delay * (2 ** (attempt - 1))

    # -- internals ------------------------------------------------------------

    async def _embed_with_retry(self, batch: list[str]) -> list[list[float]]:
        last_exc: BaseException | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                vectors = await asyncio.wait_for(
                    self._embeddings.aembed_documents(batch), timeout=self._timeout
                )
                break
            except TRANSIENT_ERRORS as exc:
                last_exc = exc
            except RagError:
                raise
            except Exception as exc:
                raise EmbeddingError(f"embedding batch rejected: {exc}") from exc

            if attempt < self._max_attempts:
                wait = self.backoff_delay(attempt)
                logger.warning(
                    "Embedding attempt %d/%d failed (retry in %.2fs): %r",
                    attempt,
                    self._max_attempts,
                    wait,
                    last_exc,
                )
                await asyncio.sleep(wait)
        else:
            logger.error("Embedding batch of %d texts failed after %d attempts", len(batch), self._max_attempts)
            raise EmbeddingRetryExhaustedError(self._max_attempts) from last_exc

        if len(vectors) != len(batch):
            raise EmbeddingError(f"provider returned {len(vectors)} embeddings for {len(batch)} texts")
        return vectors

    def _check_dimensions(self, vectors: Sequence[Sequence[float]], offset: int = 0) -> None:
        for i, vector in enumerate(vectors):
            if len(vector) != self.dimensions:
                raise DimensionMismatchError(self.dimensions, len(vector), index=offset + i)
