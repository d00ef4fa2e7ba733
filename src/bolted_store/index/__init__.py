"""In-chunk index backends and metadata filters."""

from .base import INDEX_TYPES, IndexBackend, IndexType, SearchParams
from .factory import create_backend
from .filters import (
    MetadataFilter,
    MetadataFilterParseError,
    coerce_filters,
    parse_metadata_filters,
    supported_filter_syntax,
)
from .flat import FlatIndex
from .hnsw import HnswIndex
from .hybrid import HybridIndex

__all__ = [
    "INDEX_TYPES",
    "IndexBackend",
    "IndexType",
    "SearchParams",
    "create_backend",
    "MetadataFilter",
    "MetadataFilterParseError",
    "coerce_filters",
    "parse_metadata_filters",
    "supported_filter_syntax",
    "FlatIndex",
    "HnswIndex",
    "HybridIndex",
]
