"""
Shared contract for the in-chunk index backends.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Mapping, Protocol, TypeAlias

import numpy as np

from ..models import SearchResult
from .filters import MetadataFilter

IndexType: TypeAlias = Literal["flat", "hnsw", "hybrid"]
INDEX_TYPES: tuple[str, ...] = ("flat", "hnsw", "hybrid")


@dataclass(frozen=True)
class SearchParams:
    """Per-query knobs passed down to a backend."""

    ef_search: int | None = None
    filters: tuple[MetadataFilter, ...] = ()


class IndexBackend(Protocol):
    """Protocol implemented by the flat, HNSW and hybrid backends."""

    index_type: IndexType

    def insert(self, identifier: str, vector: np.ndarray, metadata: Mapping[str, str]) -> None:
        """Add or replace *identifier*."""

    def remove(self, identifier: str) -> None:
        """Drop *identifier*; raises EntityNotFound if absent."""

    def search(
        self, query: np.ndarray, k: int, params: SearchParams | None = None
    ) -> list[SearchResult]:
        """Return up to *k* results, most similar first."""

    def build(self) -> None:
        """Finish any deferred index construction."""

    def estimated_bytes(self) -> int:
        """Advisory size of the backend's in-memory structures."""

    def __len__(self) -> int: ...

    def __contains__(self, identifier: object) -> bool: ...
