"""
Backend selection.
"""

from __future__ import annotations

from ..errors import UnsupportedBackend
from ..vectors import Metric
from .base import IndexBackend
from .flat import FlatIndex
from .hnsw import HnswIndex
from .hybrid import HybridIndex


def create_backend(
    index_type: str,
    dimension: int,
    *,
    metric: Metric = "cosine",
    m: int = 16,
    ef_construction: int = 200,
    ef_search: int = 64,
) -> IndexBackend:
    """Return an empty backend for *index_type* (``flat``, ``hnsw`` or ``hybrid``)."""
    if index_type == "flat":
        return FlatIndex(dimension, metric=metric)
    if index_type == "hnsw":
        return HnswIndex(
            dimension, metric=metric, m=m, ef_construction=ef_construction, ef_search=ef_search
        )
    if index_type == "hybrid":
        return HybridIndex(
            dimension, metric=metric, m=m, ef_construction=ef_construction, ef_search=ef_search
        )
    raise UnsupportedBackend(f"Unsupported index type: {index_type!r}")
