"""
BoltedVectorStore: the public facade tying generation, chunks and search together.

Example usage:
    >>> store = BoltedVectorStore(StoreConfig(dimension=64), text_generator=generator)
    >>> await store.insert_document_embedding("doc-1", "# Title\\nBody", "markdown")
    >>> hits = await store.search_text("title", max_results=5)
    >>> store.close()
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Iterable, Sequence

import numpy as np

from .config import StoreConfig
from .embeddings import BoltedEmbeddingGenerator
from .errors import EntityNotFound
from .generation import TextGenerator
from .index import MetadataFilter
from .models import BoltedEmbedding, SearchResponse, SearchResult, content_digest
from .search import SearchCoordinator, SearchEmphasis
from .storage import ChunkManager

logger = logging.getLogger(__name__)


class BoltedVectorStore:
    """
    Chunked vector store over bolted (structural + semantic) embeddings.

    The core is synchronous and thread-safe. Coroutine methods await the text
    generator first and then run the blocking chunk work in a worker thread,
    so no lock is ever held across a generation call.
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        *,
        text_generator: TextGenerator | None = None,
        chunk_root: str | Path | None = None,
    ) -> None:
        self.config = config or StoreConfig.from_env()
        self.manager = ChunkManager(self.config, chunk_root=chunk_root)
        self.generator = BoltedEmbeddingGenerator.from_config(self.config, text_generator)
        self.coordinator = SearchCoordinator(self.manager)

    def __enter__(self) -> "BoltedVectorStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def text_generator(self) -> TextGenerator | None:
        return self.generator.text_generator

    async def insert_document_embedding(
        self,
        identifier: str,
        content: str,
        content_type: str = "text",
        metadata: dict[str, Any] | None = None,
        partition_key: str | None = None,
    ) -> BoltedEmbedding:
        """
        Embed *content* and store it under *identifier*.

        Re-inserting unchanged content with unchanged metadata returns the stored
        embedding without calling the text generator.
        """
        meta = {str(k): str(v) for k, v in (metadata or {}).items()}
        digest = content_digest(content)
        existing = await asyncio.to_thread(self._find, identifier, partition_key)
        if (
            existing is not None
            and existing.content_hash == digest
            and existing.content_type == content_type
            and existing.metadata == meta
        ):
            logger.debug("Skipping unchanged document %s", identifier)
            return existing

        embedding = await self.generator.generate(
            content,
            content_type,
            identifier=identifier,
            metadata=meta,
        )
        chunk_id = await asyncio.to_thread(self.manager.insert, embedding, None, partition_key)
        logger.info("Stored %s in chunk %s", identifier, chunk_id)
        return embedding

    def insert_embedding(
        self,
        embedding: BoltedEmbedding,
        metadata: dict[str, Any] | None = None,
        partition_key: str | None = None,
    ) -> str:
        """Store a pre-computed embedding. Returns the owning chunk id."""
        return self.manager.insert(embedding, metadata, partition_key)

    def insert_vector(
        self,
        identifier: str,
        vector: np.ndarray | Iterable[float],
        metadata: dict[str, Any] | None = None,
        partition_key: str | None = None,
    ) -> str:
        """Store a raw vector; both components carry the same normalized values."""
        embedding = BoltedEmbedding.from_vector(identifier, vector, metadata=metadata)
        return self.manager.insert(embedding, None, partition_key)

    def search_detailed(
        self,
        query: BoltedEmbedding | np.ndarray | Iterable[float],
        emphasis: SearchEmphasis | None = None,
        *,
        max_results: int | None = None,
        similarity_threshold: float | None = None,
        filters: str | Sequence[MetadataFilter] | None = None,
        partitions: Sequence[str] | None = None,
        ef_search: int | None = None,
        timeout: float | None = None,
    ) -> SearchResponse:
        return self.coordinator.search(
            query,
            emphasis,
            max_results=max_results,
            similarity_threshold=similarity_threshold,
            filters=filters,
            partitions=partitions,
            ef_search=ef_search,
            timeout=timeout,
        )

    def search(
        self,
        query: BoltedEmbedding | np.ndarray | Iterable[float],
        emphasis: SearchEmphasis | None = None,
        **options: Any,
    ) -> list[SearchResult]:
        """Ranked results for *query*; see ``search_detailed`` for options."""
        return self.search_detailed(query, emphasis, **options).results

    async def search_text(
        self,
        text: str,
        emphasis: SearchEmphasis | None = None,
        *,
        content_type: str = "text",
        **options: Any,
    ) -> SearchResponse:
        """Embed *text* as a query and search with it."""
        query = await self.generator.generate(text, content_type, identifier="query")
        return await asyncio.to_thread(self.search_detailed, query, emphasis, **options)

    def get(self, identifier: str, partition_key: str | None = None) -> BoltedEmbedding:
        return self.manager.get(identifier, partition_key)

    def remove(self, identifier: str, partition_key: str | None = None) -> BoltedEmbedding:
        return self.manager.remove(identifier, partition_key)

    def flush_all(self) -> int:
        return self.manager.flush_all()

    def stats(self) -> dict[str, Any]:
        return self.manager.stats()

    def close(self) -> None:
        self.manager.close()

    def _find(self, identifier: str, partition_key: str | None) -> BoltedEmbedding | None:
        try:
            return self.manager.get(identifier, partition_key)
        except EntityNotFound:
            return None
