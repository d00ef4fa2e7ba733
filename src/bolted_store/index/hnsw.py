"""
Hierarchical navigable small-world (HNSW) proximity graph.

The graph is built incrementally on insert. Each node lives on layers
``0..level`` where ``level`` is drawn from an exponential distribution seeded
by a hash of the identifier, so the graph shape depends only on the inserted
identifiers and their order.

Recall is approximate. Equal distances are broken by insertion ordinal: the
node inserted first ranks first.
"""

from __future__ import annotations

import hashlib
import heapq
import logging
import math
from typing import Mapping, Sequence

import numpy as np

from ..errors import EntityNotFound, UnsupportedBackend
from ..models import SearchResult
from ..vectors import Metric, as_vector, batch_distances, distance_to_similarity, normalize
from .base import IndexType, SearchParams
from .filters import MetadataFilter, matches_all

logger = logging.getLogger(__name__)

_MAX_LEVEL = 16


def level_for(identifier: str, level_mult: float) -> int:
    """Deterministic exponential level assignment from the identifier hash."""
    digest = hashlib.blake2b(identifier.encode("utf-8"), digest_size=8).digest()
    uniform = (int.from_bytes(digest, "big") + 1) / float(2**64 + 1)
    return min(int(-math.log(uniform) * level_mult), _MAX_LEVEL)


class HnswIndex:
    """Approximate nearest-neighbour search over a multi-layer graph."""

    index_type: IndexType = "hnsw"

    def __init__(
        self,
        dimension: int,
        *,
        metric: Metric = "cosine",
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 64,
    ) -> None:
        if m < 2:
            raise ValueError("m must be >= 2")
        self.dimension = dimension
        self.metric = metric
        self.m = m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self._level_mult = 1.0 / math.log(m)

        self._ids: list[str] = []
        self._points: list[np.ndarray] = []
        self._metadata: list[dict[str, str]] = []
        self._levels: list[int] = []
        self._links: list[list[list[int]]] = []
        self._positions: dict[str, int] = {}
        self._entry: int | None = None
        self._max_level = -1
        self._stale = False

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._positions

    @property
    def stale(self) -> bool:
        return self._stale

    def insert(self, identifier: str, vector: np.ndarray, metadata: Mapping[str, str]) -> None:
        point = self._prepare(as_vector(vector, self.dimension))
        position = self._positions.get(identifier)
        if position is not None:
            # Existing links were chosen for the old vector; relink on next build.
            self._points[position] = point
            self._metadata[position] = dict(metadata)
            self._stale = True
            return

        node = len(self._ids)
        self._positions[identifier] = node
        self._ids.append(identifier)
        self._points.append(point)
        self._metadata.append(dict(metadata))
        self._levels.append(level_for(identifier, self._level_mult))
        self._links.append([])
        if not self._stale:
            self._link(node)

    def remove(self, identifier: str) -> None:
        position = self._positions.pop(identifier, None)
        if position is None:
            raise EntityNotFound(identifier)
        del self._ids[position]
        del self._points[position]
        del self._metadata[position]
        del self._levels[position]
        del self._links[position]
        self._positions = {ident: idx for idx, ident in enumerate(self._ids)}
        self._stale = True

    def build(self) -> None:
        """Rebuild the graph from scratch if removals or updates invalidated it."""
        if not self._stale:
            return
        logger.debug("Rebuilding HNSW graph over %d nodes", len(self._ids))
        self._entry = None
        self._max_level = -1
        self._links = [[] for _ in self._ids]
        for node in range(len(self._ids)):
            self._link(node)
        self._stale = False

    def search(
        self, query: np.ndarray, k: int, params: SearchParams | None = None
    ) -> list[SearchResult]:
        if params is not None and params.filters:
            raise UnsupportedBackend(
                "The hnsw index does not evaluate metadata filters; use the hybrid index."
            )
        if k <= 0 or not self._ids:
            return []
        self.build()
        ef = self.ef_search
        if params is not None and params.ef_search is not None:
            ef = params.ef_search
        q = self._prepare(as_vector(query, self.dimension))
        found = self._knn(q, max(ef, k))[:k]
        return [self._result(dist, node) for dist, node in found]

    def scan(
        self,
        query: np.ndarray,
        k: int,
        filters: Sequence[MetadataFilter] = (),
    ) -> list[SearchResult]:
        """Exact scan over stored points, optionally restricted by *filters*."""
        if k <= 0 or not self._ids:
            return []
        q = self._prepare(as_vector(query, self.dimension))
        candidates = [
            node
            for node in range(len(self._ids))
            if not filters or matches_all(filters, self._metadata[node])
        ]
        if not candidates:
            return []
        matrix = np.vstack([self._points[node] for node in candidates])
        distances = batch_distances(matrix, q, self.metric)
        order = np.argsort(distances, kind="stable")[:k]
        return [self._result(float(distances[int(i)]), candidates[int(i)]) for i in order]

    def count_matching(self, filters: Sequence[MetadataFilter]) -> int:
        return sum(1 for meta in self._metadata if matches_all(filters, meta))

    def estimated_bytes(self) -> int:
        # Budget the full layer-0 neighbour list per node.
        return len(self._ids) * (self.dimension * 4 + 96 + 2 * self.m * 8)

    # -- graph internals ---------------------------------------------------

    def _prepare(self, vector: np.ndarray) -> np.ndarray:
        if self.metric == "cosine":
            return normalize(vector)
        return vector

    def _distance(self, query: np.ndarray, node: int) -> float:
        point = self._points[node]
        if self.metric == "cosine":
            return 1.0 - float(np.dot(point, query))
        return float(np.linalg.norm(point - query))

    def _result(self, dist: float, node: int) -> SearchResult:
        return SearchResult(
            identifier=self._ids[node],
            similarity=distance_to_similarity(dist, self.metric),
            metadata=dict(self._metadata[node]),
        )

    def _max_neighbors(self, level: int) -> int:
        return self.m * 2 if level == 0 else self.m

    def _knn(self, query: np.ndarray, ef: int) -> list[tuple[float, int]]:
        if self._entry is None:
            return []
        entry = [self._entry]
        for level in range(self._max_level, 0, -1):
            entry = [self._search_layer(query, entry, 1, level)[0][1]]
        return self._search_layer(query, entry, ef, 0)

    def _search_layer(
        self, query: np.ndarray, entry_points: list[int], ef: int, level: int
    ) -> list[tuple[float, int]]:
        """Best-first search on one layer; returns (distance, node) ascending."""
        visited = set(entry_points)
        candidates: list[tuple[float, int]] = []
        best: list[tuple[float, int]] = []  # max-heap via negation
        for node in entry_points:
            dist = self._distance(query, node)
            heapq.heappush(candidates, (dist, node))
            heapq.heappush(best, (-dist, -node))

        while candidates:
            dist, node = heapq.heappop(candidates)
            worst = (-best[0][0], -best[0][1])
            if (dist, node) > worst and len(best) >= ef:
                break
            links = self._links[node]
            if level >= len(links):
                continue
            for neighbour in links[level]:
                if neighbour in visited:
                    continue
                visited.add(neighbour)
                n_dist = self._distance(query, neighbour)
                worst = (-best[0][0], -best[0][1])
                if len(best) < ef or (n_dist, neighbour) < worst:
                    heapq.heappush(candidates, (n_dist, neighbour))
                    heapq.heappush(best, (-n_dist, -neighbour))
                    if len(best) > ef:
                        heapq.heappop(best)

        return sorted((-neg_dist, -neg_node) for neg_dist, neg_node in best)

    def _link(self, node: int) -> None:
        level = self._levels[node]
        self._links[node] = [[] for _ in range(level + 1)]
        if self._entry is None:
            self._entry = node
            self._max_level = level
            return

        query = self._points[node]
        entry = [self._entry]
        for layer in range(self._max_level, level, -1):
            entry = [self._search_layer(query, entry, 1, layer)[0][1]]

        for layer in range(min(level, self._max_level), -1, -1):
            found = self._search_layer(query, entry, self.ef_construction, layer)
            neighbours = [other for _, other in found[: self.m]]
            self._links[node][layer] = neighbours
            cap = self._max_neighbors(layer)
            for other in neighbours:
                other_links = self._links[other][layer]
                other_links.append(node)
                if len(other_links) > cap:
                    self._shrink(other, layer, cap)
            entry = [other for _, other in found]

        if level > self._max_level:
            self._max_level = level
            self._entry = node

    def _shrink(self, node: int, level: int, cap: int) -> None:
        point = self._points[node]
        ranked = sorted(
            (self._distance(point, other), other) for other in self._links[node][level]
        )
        self._links[node][level] = [other for _, other in ranked[:cap]]
