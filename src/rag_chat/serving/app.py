"""FastAPI application exposing ingestion, retrieval, and chat over HTTP."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from rag_chat.chat.prompts import ChatMessage
from rag_chat.config import get_settings
from rag_chat.exceptions import (
    EmbeddingError,
    InvalidInputError,
    RagError,
    ResourceNotFoundError,
    StorageError,
    UpstreamTimeoutError,
)
from rag_chat.ingestion.pipeline import IngestRequest
from rag_chat.logging_config import setup_logging
from rag_chat.services import ServiceContainer

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


# ── Request / Response schemas ────────────────────────────────────────
class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IngestBody(ApiModel):
    text: str
    resource_id: str | None = None
    title: str | None = None
    order: int | None = Field(default=None, ge=0)
    source_url: str | None = None


class IngestResponse(ApiModel):
    success: bool = True
    resource_id: str
    chunks_inserted: int


class RetrieveBody(ApiModel):
    query: str
    top_k: int | None = None
    min_similarity: float | None = None
    resource_ids: list[str] | None = None
    deduplicate: bool | None = None


class RetrievedChunk(ApiModel):
    content: str
    similarity: float
    resource_id: str
    chunk_id: str
    order: int | None = None
    title: str | None = None
    source_url: str | None = None


class ResourceOut(ApiModel):
    id: str
    content: str
    title: str | None = None
    source_url: str | None = None
    chunk_count: int
    created_at: datetime
    updated_at: datetime


class ChunkOut(ApiModel):
    id: str
    resource_id: str
    content: str
    order: int | None = None
    title: str | None = None
    source_url: str | None = None
    created_at: datetime


class DeleteResponse(ApiModel):
    success: bool = True
    resource_id: str
    chunks_deleted: int


class ChatBody(ApiModel):
    messages: list[ChatMessage]


# ── Errors ────────────────────────────────────────────────────────────
# Most specific first.
_ERROR_STATUS: list[tuple[type[RagError], int]] = [
    (InvalidInputError, 422),
    (ResourceNotFoundError, 404),
    (UpstreamTimeoutError, 504),
    (EmbeddingError, 503),
    (StorageError, 500),
]


def _error_body(error_type: str, message: str) -> dict:
    return {"success": False, "error": {"type": error_type, "message": message}}


async def _handle_rag_error(request: Request, exc: RagError) -> JSONResponse:
    status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=_error_body(type(exc).__name__, str(exc)))


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
    )
    return JSONResponse(status_code=422, content=_error_body("RequestValidationError", message))


# ── Application ───────────────────────────────────────────────────────
def get_services(request: Request) -> ServiceContainer:
    services = request.app.state.services
    if services is None:
        raise RuntimeError("services are not initialised; is the application lifespan running?")
    return services


def create_app(services: ServiceContainer | None = None) -> FastAPI:
    """Build the API.

    When *services* is ``None`` the lifespan builds them from
    :func:`~rag_chat.config.get_settings` at startup and releases them at
    shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.services is None
        if owned:
            settings = get_settings()
            setup_logging(settings)
            app.state.services = ServiceContainer.build(settings)
        try:
            yield
        finally:
            if owned:
                app.state.services = None
                logger.info("Services released")

    app = FastAPI(
        title="RAG Chat API",
        version="0.1.0",
        description="Ingestion, similarity retrieval, and grounded chat over a chunk store.",
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_exception_handler(RagError, _handle_rag_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)

    # ── Routes ────────────────────────────────────────────────────────
    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness check."""
        return {"status": "ok"}

    @app.get("/ready")
    async def ready(services: ServiceContainer = Depends(get_services)) -> JSONResponse:
        """Readiness check against the chunk store."""
        if await services.store.health_check():
            return JSONResponse({"status": "ready"})
        return JSONResponse(status_code=503, content={"status": "unavailable"})

    @app.post("/ingest", response_model=IngestResponse)
    async def ingest(body: IngestBody, services: ServiceContainer = Depends(get_services)) -> IngestResponse:
        """Chunk, embed and store a resource's text."""
        result = await services.ingestion.ingest(IngestRequest(**body.model_dump()))
        return IngestResponse(resource_id=result.resource_id, chunks_inserted=result.chunks_inserted)

    @app.post("/retrieve", response_model=list[RetrievedChunk])
    async def retrieve(body: RetrieveBody, services: ServiceContainer = Depends(get_services)) -> list[RetrievedChunk]:
        """Return the stored chunks most similar to the query."""
        chunks = await services.retriever.find_relevant(
            body.query,
            body.top_k,
            body.min_similarity,
            resource_ids=body.resource_ids,
            deduplicate=body.deduplicate,
        )
        return [RetrievedChunk(**c.model_dump()) for c in chunks]

    @app.get("/resources", response_model=list[ResourceOut])
    async def list_resources(
        limit: int = Query(default=50, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        services: ServiceContainer = Depends(get_services),
    ) -> list[ResourceOut]:
        resources = await services.store.list_resources(limit=limit, offset=offset)
        return [ResourceOut(**r.model_dump()) for r in resources]

    @app.get("/resources/{resource_id}", response_model=ResourceOut)
    async def get_resource(resource_id: str, services: ServiceContainer = Depends(get_services)) -> ResourceOut:
        resource = await services.store.get_resource(resource_id)
        if resource is None:
            raise ResourceNotFoundError(resource_id)
        return ResourceOut(**resource.model_dump())

    @app.get("/resources/{resource_id}/chunks", response_model=list[ChunkOut])
    async def get_chunks(resource_id: str, services: ServiceContainer = Depends(get_services)) -> list[ChunkOut]:
        if await services.store.get_resource(resource_id) is None:
            raise ResourceNotFoundError(resource_id)
        chunks = await services.store.get_chunks(resource_id)
        return [ChunkOut(**c.model_dump(exclude={"embedding"})) for c in chunks]

    @app.delete("/resources/{resource_id}", response_model=DeleteResponse)
    async def delete_resource(resource_id: str, services: ServiceContainer = Depends(get_services)) -> DeleteResponse:
        """Delete a resource together with all of its chunks."""
        deleted = await services.ingestion.delete_resource(resource_id)
        return DeleteResponse(resource_id=resource_id, chunks_deleted=deleted)

    @app.post("/chat")
    async def chat(body: ChatBody, services: ServiceContainer = Depends(get_services)) -> StreamingResponse:
        """Answer the latest user message from retrieved context, streamed as plain text."""
        prompt = await services.chat.prepare_prompt(body.messages)
        return StreamingResponse(services.chat.stream(prompt), media_type="text/plain; charset=utf-8")

    return app


app = create_app()


def main() -> None:
    """Run the API with uvicorn using the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("rag_chat.serving.app:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
