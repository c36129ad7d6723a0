"""Error taxonomy shared by the ingestion and retrieval pipelines.

Validation errors derive from :class:`ValueError` so that callers which
only care about "bad input" can catch the builtin.  Nothing in this
package retries a validation error.
"""

from __future__ import annotations


class RagError(Exception):
    """Base class for every error raised by ``rag_chat``."""


# ── Validation ────────────────────────────────────────────────────────


class InvalidInputError(RagError, ValueError):
    """Raised when caller-supplied input is rejected outright."""


class ChunkParameterError(InvalidInputError):
    """Raised when chunk size / overlap would never advance the window."""

    def __init__(self, chunk_size: int, chunk_overlap: int, reason: str) -> None:
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        super().__init__(
            f"invalid chunk parameters (chunk_size={chunk_size}, "
            f"chunk_overlap={chunk_overlap}): {reason}"
        )


class EmptyInputError(InvalidInputError):
    """Raised when there is nothing to chunk, embed, or search for."""

    def __init__(self, what: str = "input") -> None:
        super().__init__(f"empty {what}")


class DimensionMismatchError(InvalidInputError):
    """Raised when a vector does not have the configured dimensionality."""

    def __init__(self, expected: int, actual: int, index: int | None = None) -> None:
        self.expected = expected
        self.actual = actual
        self.index = index
        where = f" at position {index}" if index is not None else ""
        super().__init__(f"embedding dimension mismatch{where}: expected {expected}, got {actual}")


# ── Upstream ──────────────────────────────────────────────────────────


class EmbeddingError(RagError):
    """Raised when the embedding provider fails."""


class EmbeddingRetryExhaustedError(EmbeddingError):
    """Raised once the batch retry policy has run out of attempts."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"embedding generation failed after {attempts} attempts")


class UpstreamTimeoutError(RagError, TimeoutError):
    """Raised when an embedding or storage call exceeds its time budget."""

    def __init__(self, operation: str, timeout: float) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:g}s")


# ── Storage ───────────────────────────────────────────────────────────


class StorageError(RagError):
    """Raised when the chunk store rejects or loses a write."""


class ResourceNotFoundError(RagError, LookupError):
    """Raised when a resource id does not exist."""

    def __init__(self, resource_id: str) -> None:
        self.resource_id = resource_id
        super().__init__(f"resource {resource_id!r} not found")
