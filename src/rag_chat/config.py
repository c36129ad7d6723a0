"""Shared configuration loaded from environment / ``.env``."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # LLM
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_base_url: str = Field(
        default="",
        description="Alternative OpenAI-compatible base URL. Leave empty for OpenAI cloud.",
    )
    llm_model_name: str = Field(default="gpt-4o-mini", description="Chat model identifier")
    llm_temperature: float = Field(default=0.0, ge=0.0, le=2.0)

    # Embedding
    embedding_model: str = Field(
        default="text-embedding-ada-002",
        description=(
            "Embedding model identifier. ``similarity_threshold`` is tuned for this "
            "model; changing the model invalidates both stored vectors and the threshold."
        ),
    )
    embedding_dimensions: int = Field(default=1536, gt=0)
    embedding_batch_size: int = Field(default=64, gt=0)
    embedding_max_attempts: int = Field(default=3, ge=1)
    embedding_retry_base_delay: float = Field(default=1.0, ge=0.0)

    # Chunking
    chunk_size: int = Field(default=512, gt=0, description="Characters per chunk")
    chunk_overlap: int = Field(default=64, ge=0, description="Characters shared by neighbours")

    # Retrieval
    similarity_threshold: float = Field(
        default=0.5,
        ge=-1.0,
        le=1.0,
        description="Minimum cosine similarity (exclusive). Tuned for text-embedding-ada-002.",
    )
    retrieval_top_k: int = Field(default=4, ge=1)
    retrieval_candidate_multiplier: int = Field(default=3, ge=1)
    retrieval_dedupe_by_resource: bool = False

    # Context assembly
    context_max_tokens_title: int = Field(default=32, ge=0)
    context_max_tokens_content: int = Field(default=512, ge=0)

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "rag_chat_chunks"
    chroma_write_batch_size: int = Field(default=100, gt=0)

    # Timeouts
    upstream_timeout_seconds: float = Field(default=30.0, gt=0.0)

    # Serving
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Logging
    log_level: str = "INFO"
    log_level_http: str = "WARNING"
    log_level_chroma: str = "WARNING"
    log_level_uvicorn: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @model_validator(mode="after")
    def _check_chunk_window(self) -> Settings:
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be < chunk_size ({self.chunk_size})"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance; only entry points should call this."""
    return Settings()
