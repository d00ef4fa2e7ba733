"""
Exact linear-scan index.

O(n) per query; used for small chunks and as ground truth for the
approximate backends.
"""

from __future__ import annotations

from typing import Mapping

import numpy as np

from ..errors import EntityNotFound
from ..models import SearchResult
from ..vectors import Metric, as_vector, batch_distances, distance_to_similarity
from .base import IndexType, SearchParams
from .filters import matches_all


class FlatIndex:
    """Brute-force scan over every stored vector."""

    index_type: IndexType = "flat"

    def __init__(self, dimension: int, *, metric: Metric = "cosine") -> None:
        self.dimension = dimension
        self.metric = metric
        self._ids: list[str] = []
        self._vectors: list[np.ndarray] = []
        self._metadata: list[dict[str, str]] = []
        self._positions: dict[str, int] = {}
        self._matrix: np.ndarray | None = None

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._positions

    def insert(self, identifier: str, vector: np.ndarray, metadata: Mapping[str, str]) -> None:
        vec = as_vector(vector, self.dimension)
        position = self._positions.get(identifier)
        if position is None:
            self._positions[identifier] = len(self._ids)
            self._ids.append(identifier)
            self._vectors.append(vec)
            self._metadata.append(dict(metadata))
        else:
            # Replacement keeps the original insertion slot for tie-breaking.
            self._vectors[position] = vec
            self._metadata[position] = dict(metadata)
        self._matrix = None

    def remove(self, identifier: str) -> None:
        position = self._positions.pop(identifier, None)
        if position is None:
            raise EntityNotFound(identifier)
        del self._ids[position]
        del self._vectors[position]
        del self._metadata[position]
        self._positions = {ident: idx for idx, ident in enumerate(self._ids)}
        self._matrix = None

    def build(self) -> None:
        self._ensure_matrix()

    def search(
        self, query: np.ndarray, k: int, params: SearchParams | None = None
    ) -> list[SearchResult]:
        if k <= 0 or not self._ids:
            return []
        q = as_vector(query, self.dimension)
        filters = params.filters if params is not None else ()
        distances = batch_distances(self._ensure_matrix(), q, self.metric)
        # Stable sort keeps insertion order among equal distances.
        order = np.argsort(distances, kind="stable")
        results: list[SearchResult] = []
        for position in order:
            idx = int(position)
            if filters and not matches_all(filters, self._metadata[idx]):
                continue
            results.append(
                SearchResult(
                    identifier=self._ids[idx],
                    similarity=distance_to_similarity(float(distances[idx]), self.metric),
                    metadata=dict(self._metadata[idx]),
                )
            )
            if len(results) >= k:
                break
        return results

    def estimated_bytes(self) -> int:
        return len(self._ids) * (self.dimension * 4 + 64)

    def _ensure_matrix(self) -> np.ndarray:
        if self._matrix is None:
            if self._vectors:
                self._matrix = np.vstack(self._vectors).astype(np.float32)
            else:
                self._matrix = np.zeros((0, self.dimension), dtype=np.float32)
        return self._matrix
