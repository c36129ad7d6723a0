"""Fixed-window text chunking.

Windows are sliced on raw character offsets rather than on separators:
window *i* starts at ``i * (chunk_size - chunk_overlap)`` and neighbours
share exactly ``chunk_overlap`` characters, so the chunks of a text can
be stitched back together with :func:`merge_chunks`.
"""

from __future__ import annotations

from collections.abc import Iterator

from langchain_core.documents import Document
from langchain_text_splitters import TextSplitter

from rag_chat.exceptions import ChunkParameterError, EmptyInputError


def validate_window(chunk_size: int, chunk_overlap: int) -> None:
    """Reject parameters that would never advance the window."""
    if chunk_size <= 0:
        raise ChunkParameterError(chunk_size, chunk_overlap, "chunk_size must be positive")
    if chunk_overlap < 0:
        raise ChunkParameterError(chunk_size, chunk_overlap, "chunk_overlap must not be negative")
    if chunk_overlap >= chunk_size:
        raise ChunkParameterError(chunk_size, chunk_overlap, "chunk_overlap must be < chunk_size")


class FixedWindowTextSplitter(TextSplitter):
    """Split text into overlapping windows of ``chunk_size`` characters.

    Unlike the recursive splitters, no separator is honoured and no
    whitespace is stripped from kept windows; only windows that are
    entirely whitespace are dropped.
    """

    def __init__(self, chunk_size: int = 512, chunk_overlap: int = 64) -> None:
        validate_window(chunk_size, chunk_overlap)
        super().__init__(chunk_size=chunk_size, chunk_overlap=chunk_overlap, length_function=len)

    @property
    def step(self) -> int:
        return self._chunk_size - self._chunk_overlap

    def windows(self, text: str) -> Iterator[tuple[int, str]]:
        """Yield ``(start_offset, window)`` pairs, skipping blank windows."""
        for start in range(0, len(text), self.step):
            window = text[start : start + self._chunk_size]
            if window.strip():
                yield start, window

    def split_text(self, text: str) -> list[str]:
        return [window for _, window in self.windows(text)]


def chunk_text(text: str, chunk_size: int = 512, chunk_overlap: int = 64) -> list[Document]:
    """Split *text* into overlapping fixed-size chunks.

    Parameters
    ----------
    text:
        Raw text of one resource.
    chunk_size:
        Number of characters per chunk (the last chunk may be shorter).
    chunk_overlap:
        Number of characters each chunk shares with its predecessor.

    Returns
    -------
    list[Document]
        Chunks in text order, each with ``chunk_index`` and
        ``start_index`` metadata.

    Raises
    ------
    ChunkParameterError
        If ``chunk_overlap >= chunk_size`` (checked before splitting).
    EmptyInputError
        If the text yields no non-blank window.
    """
    splitter = FixedWindowTextSplitter(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    chunks = [
        Document(page_content=window, metadata={"chunk_index": idx, "start_index": start})
        for idx, (start, window) in enumerate(splitter.windows(text))
    ]
    if not chunks:
        raise EmptyInputError("input")
    return chunks


def merge_chunks(texts: list[str], chunk_size: int, chunk_overlap: int) -> str:
    """Rebuild the source text from consecutive fixed windows.

    Every window except the last keeps only its first
    ``chunk_size - chunk_overlap`` characters; the rest is repeated at
    the head of the next window.  Exact only when no blank window was
    dropped during chunking.
    """
    validate_window(chunk_size, chunk_overlap)
    if not texts:
        return ""
    step = chunk_size - chunk_overlap
    return "".join(t[:step] for t in texts[:-1]) + texts[-1]
