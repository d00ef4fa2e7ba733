"""
Hybrid index: approximate vector search combined with metadata predicates.

Selective filters are applied first (pre-filter, exact scan over the matches).
Broad filters are applied after an HNSW search; when too many candidates are
filtered out the fan-out and ``ef_search`` are doubled and the query re-run,
until ``k`` matches are found or the fan-out covers the whole index, where an
exact scan over the matching entries finishes the job. The result therefore
never holds fewer than ``min(k, number of matching entries)`` items.
"""

from __future__ import annotations

import logging
from typing import Mapping

import numpy as np

from ..models import SearchResult
from ..vectors import Metric
from .base import IndexType, SearchParams
from .filters import matches_all
from .hnsw import HnswIndex

logger = logging.getLogger(__name__)


class HybridIndex:
    """Metadata-aware wrapper around an HNSW graph."""

    index_type: IndexType = "hybrid"

    def __init__(
        self,
        dimension: int,
        *,
        metric: Metric = "cosine",
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 64,
    ) -> None:
        self.dimension = dimension
        self.ef_search = ef_search
        self._graph = HnswIndex(
            dimension,
            metric=metric,
            m=m,
            ef_construction=ef_construction,
            ef_search=ef_search,
        )

    def __len__(self) -> int:
        return len(self._graph)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._graph

    def insert(self, identifier: str, vector: np.ndarray, metadata: Mapping[str, str]) -> None:
        self._graph.insert(identifier, vector, metadata)

    def remove(self, identifier: str) -> None:
        self._graph.remove(identifier)

    def build(self) -> None:
        self._graph.build()

    def estimated_bytes(self) -> int:
        return self._graph.estimated_bytes()

    def search(
        self, query: np.ndarray, k: int, params: SearchParams | None = None
    ) -> list[SearchResult]:
        params = params or SearchParams()
        ef = params.ef_search or self.ef_search
        if not params.filters:
            return self._graph.search(query, k, SearchParams(ef_search=ef))
        if k <= 0 or len(self._graph) == 0:
            return []

        total = len(self._graph)
        matching = self._graph.count_matching(params.filters)
        if matching == 0:
            return []
        if matching <= max(k, ef):
            return self._graph.scan(query, k, params.filters)

        fanout = min(max(k * 2, ef), total)
        while True:
            candidates = self._graph.search(query, fanout, SearchParams(ef_search=max(ef, fanout)))
            kept = [hit for hit in candidates if matches_all(params.filters, hit.metadata)]
            if len(kept) >= k:
                return kept[:k]
            if fanout >= total:
                break
            logger.debug(
                "Hybrid search kept %d/%d after filtering; widening fan-out from %d",
                len(kept),
                k,
                fanout,
            )
            fanout = min(fanout * 2, total)
            ef = max(ef, fanout)

        # The approximate graph could not surface enough matches; finish exactly.
        return self._graph.scan(query, k, params.filters)
