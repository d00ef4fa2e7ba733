"""
FastAPI server for the bolted vector store.

Exposes document insert/get/delete, text search, flush and stats over JSON.
"""

import asyncio
import logging
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import StoreConfig
from .errors import (
    BoltedStoreError,
    DimensionMismatch,
    EntityNotFound,
    ExternalGenerationFailure,
    UnsupportedBackend,
)
from .generation import GeminiTextGenerator
from .index import MetadataFilterParseError
from .search import SearchEmphasis
from .store import BoltedVectorStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Bolted Store", description="Chunked vector store over bolted embeddings")

_store: BoltedVectorStore | None = None


def get_store() -> BoltedVectorStore:
    """Return the process-wide store, building it from the environment on first use."""
    global _store
    if _store is None:
        config = StoreConfig.from_env()
        _store = BoltedVectorStore(
            config, text_generator=GeminiTextGenerator(model=config.generation_model)
        )
    return _store


def set_store(store: BoltedVectorStore | None) -> None:
    """Replace the process-wide store (used by tests and embedding applications)."""
    global _store
    _store = store


class DocumentRequest(BaseModel):
    """Request model for document insertion."""

    identifier: str
    content: str
    content_type: str = "text"
    metadata: dict[str, str] = Field(default_factory=dict)
    partition_key: str | None = None


class SearchRequest(BaseModel):
    """Request model for text search."""

    query: str
    emphasis: str = "balanced"
    filters: str | None = None
    max_results: int | None = Field(default=None, ge=1)
    similarity_threshold: float | None = None
    partitions: list[str] | None = None
    timeout: float | None = Field(default=None, gt=0.0)


def _error_response(exc: Exception) -> JSONResponse:
    if isinstance(exc, EntityNotFound):
        status = 404
    elif isinstance(exc, ExternalGenerationFailure):
        status = 502
    elif isinstance(exc, (DimensionMismatch, MetadataFilterParseError, UnsupportedBackend, ValueError)):
        status = 400
    else:
        status = 500
        logger.exception("Request failed")
    return JSONResponse({"error": str(exc)}, status_code=status)


@app.post("/api/documents")
async def insert_document(request: DocumentRequest):
    """Embed and store a document."""
    try:
        store = get_store()
        embedding = await store.insert_document_embedding(
            request.identifier,
            request.content,
            request.content_type,
            metadata=request.metadata,
            partition_key=request.partition_key,
        )
    except Exception as exc:
        return _error_response(exc)
    return {
        "identifier": embedding.identifier,
        "content_type": embedding.content_type,
        "content_hash": embedding.content_hash,
        "dimension": embedding.dimension,
        "metadata": embedding.metadata,
    }


@app.post("/api/search")
async def search_documents(request: SearchRequest):
    """Search stored documents with a text query and return ranked hits."""
    try:
        emphasis = SearchEmphasis.parse(request.emphasis)
        store = get_store()
        response = await store.search_text(
            request.query,
            emphasis,
            filters=request.filters,
            max_results=request.max_results,
            similarity_threshold=request.similarity_threshold,
            partitions=request.partitions,
            timeout=request.timeout,
        )
    except Exception as exc:
        return _error_response(exc)
    return {
        "query": request.query,
        "emphasis": emphasis.kind,
        "results": [hit.to_dict() for hit in response.results],
        "chunks_searched": response.chunks_searched,
        "chunks_skipped": response.chunks_skipped,
        "partial": response.partial,
    }


@app.get("/api/documents/{identifier}")
async def get_document(identifier: str, partition_key: str | None = None):
    """Return the stored metadata and provenance of a document."""
    try:
        embedding = await asyncio.to_thread(get_store().get, identifier, partition_key)
    except Exception as exc:
        return _error_response(exc)
    return {
        "identifier": embedding.identifier,
        "content_type": embedding.content_type,
        "content_hash": embedding.content_hash,
        "dimension": embedding.dimension,
        "metadata": embedding.metadata,
    }


@app.delete("/api/documents/{identifier}")
async def delete_document(identifier: str, partition_key: str | None = None):
    """Remove a document from its chunk."""
    try:
        await asyncio.to_thread(get_store().remove, identifier, partition_key)
    except Exception as exc:
        return _error_response(exc)
    return {"identifier": identifier, "removed": True}


@app.post("/api/flush")
async def flush_chunks():
    """Write every dirty resident chunk to disk."""
    try:
        written = await asyncio.to_thread(get_store().flush_all)
    except BoltedStoreError as exc:
        return _error_response(exc)
    return {"flushed": written}


@app.get("/api/stats")
async def store_stats() -> dict[str, Any]:
    """Chunk residency and memory figures."""
    return await asyncio.to_thread(get_store().stats)


def run_server(host: str = "127.0.0.1", port: int = 8000):
    """Run the FastAPI server."""
    import uvicorn

    try:
        uvicorn.run(app, host=host, port=port)
    finally:
        if _store is not None:
            _store.close()


if __name__ == "__main__":
    run_server()
