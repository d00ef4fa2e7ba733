"""
Bolted Store - chunked zero-shot vector store over bolted embeddings.

Every stored item carries a structural vector derived from the shape of its
content and a semantic vector derived from a generated description. Both are
fused into one normalized vector and kept side by side so queries can
emphasize either view. Embeddings live in bounded chunks that are paged to
disk under an LRU policy.

Example usage:
    >>> from bolted_store import BoltedVectorStore, StoreConfig, SearchEmphasis
    >>> store = BoltedVectorStore(StoreConfig(dimension=128), text_generator=generator)
    >>> await store.insert_document_embedding("report", text, "markdown")
    >>> response = await store.search_text("quarterly revenue", SearchEmphasis.semantic())
"""

from .config import StoreConfig, resolve_chunk_root
from .embeddings import BoltedEmbeddingGenerator
from .errors import (
    BoltedStoreError,
    ChunkLoadError,
    ChunkPersistenceError,
    DimensionMismatch,
    EntityNotFound,
    ExternalGenerationFailure,
    UnsupportedBackend,
)
from .generation import GeminiTextGenerator, TextGenerator
from .index import MetadataFilter, SearchParams, parse_metadata_filters
from .models import BoltedEmbedding, Embedding, SearchResponse, SearchResult
from .search import SearchCoordinator, SearchEmphasis
from .storage import ChunkManager, IndexChunk
from .store import BoltedVectorStore

__all__ = [
    # Facade
    "BoltedVectorStore",
    "StoreConfig",
    "resolve_chunk_root",
    # Embeddings
    "BoltedEmbeddingGenerator",
    "GeminiTextGenerator",
    "TextGenerator",
    "BoltedEmbedding",
    "Embedding",
    # Search
    "SearchCoordinator",
    "SearchEmphasis",
    "SearchParams",
    "SearchResponse",
    "SearchResult",
    "MetadataFilter",
    "parse_metadata_filters",
    # Storage
    "ChunkManager",
    "IndexChunk",
    # Errors
    "BoltedStoreError",
    "ChunkLoadError",
    "ChunkPersistenceError",
    "DimensionMismatch",
    "EntityNotFound",
    "ExternalGenerationFailure",
    "UnsupportedBackend",
]
