"""Context assembly — format retrieved chunks for the language model.

Titles and contents are truncated to separate token budgets.  Cuts are
made on token boundaries of the model's tokenizer (``tiktoken``), never
in the middle of a token.
"""

from __future__ import annotations

from collections.abc import Sequence
from functools import lru_cache
from typing import Any, Protocol

import tiktoken

_FALLBACK_ENCODING = "cl100k_base"


class TokenEncoding(Protocol):
    """The subset of :class:`tiktoken.Encoding` used here."""

    def encode(self, text: str, **kwargs: Any) -> list[int]: ...

    def decode(self, tokens: list[int]) -> str: ...


class _ContextChunk(Protocol):
    title: str | None
    content: str


@lru_cache(maxsize=8)
def get_encoding(model_name: str | None = None) -> tiktoken.Encoding:
    """Return the tokenizer for *model_name*, falling back to ``cl100k_base``."""
    if model_name:
        try:
            return tiktoken.encoding_for_model(model_name)
        except KeyError:
            pass
    return tiktoken.get_encoding(_FALLBACK_ENCODING)


def truncate_tokens(text: str, max_tokens: int, encoding: TokenEncoding) -> str:
    """Return the longest token-aligned prefix of *text* within *max_tokens*."""
    if max_tokens <= 0 or not text:
        return ""
    tokens = encoding.encode(text, disallowed_special=())
    if len(tokens) <= max_tokens:
        return text
    # A byte-level token prefix can end inside a multi-byte character.
    return encoding.decode(tokens[:max_tokens]).rstrip("\ufffd")


def build_context(
    chunks: Sequence[_ContextChunk],
    max_tokens_title: int,
    max_tokens_content: int,
    *,
    encoding: TokenEncoding | None = None,
) -> str:
    """Concatenate chunk titles and contents into one context string.

    Each chunk becomes a block of its truncated title (when present) on
    one line followed by its truncated content; blocks keep the order
    received from retrieval and are separated by blank lines.
    """
    enc = encoding if encoding is not None else get_encoding()
    blocks: list[str] = []
    for chunk in chunks:
        title = truncate_tokens(chunk.title or "", max_tokens_title, enc)
        content = truncate_tokens(chunk.content, max_tokens_content, enc)
        block = f"{title}\n{content}" if title else content
        if block.strip():
            blocks.append(block)
    return "\n\n".join(blocks)
