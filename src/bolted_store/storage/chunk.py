"""
IndexChunk: a bounded, independently loadable partition of the index.
"""

from __future__ import annotations

import threading
from typing import Iterable

import numpy as np

from ..errors import DimensionMismatch, EntityNotFound
from ..index import SearchParams, create_backend
from ..index.filters import matches_all
from ..models import BoltedEmbedding, SearchResult
from ..vectors import Metric, as_vector, batch_distances, distance_to_similarity, weighted_sum
from .chunk_file import encode_chunk

_ENTRY_OVERHEAD = 200


class IndexChunk:
    """
    Owns a subset of embeddings plus the backend index built over them.

    ``lock`` serializes every read or write of the chunk's state. ``pins`` is
    maintained by the chunk manager under its registry lock and counts
    operations in flight; a pinned chunk is never evicted.
    """

    def __init__(
        self,
        chunk_id: str,
        *,
        dimension: int,
        backend_type: str,
        max_capacity: int,
        metric: Metric = "cosine",
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 64,
    ) -> None:
        self.chunk_id = chunk_id
        self.dimension = dimension
        self.backend_type = backend_type
        self.max_capacity = max_capacity
        self.metric = metric
        self.dirty = False
        self.pins = 0
        self.lock = threading.RLock()
        self._entries: dict[str, BoltedEmbedding] = {}
        self._backend = create_backend(
            backend_type,
            dimension,
            metric=metric,
            m=m,
            ef_construction=ef_construction,
            ef_search=ef_search,
        )
        self._entry_bytes = 0
        self._estimated_bytes = self._backend.estimated_bytes()

    @classmethod
    def from_entries(
        cls,
        chunk_id: str,
        entries: Iterable[BoltedEmbedding],
        **kwargs,
    ) -> "IndexChunk":
        """Rebuild a clean chunk from persisted entries."""
        chunk = cls(chunk_id, **kwargs)
        for entry in entries:
            chunk._put(entry)
        chunk._backend.build()
        chunk.dirty = False
        return chunk

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._entries

    @property
    def is_full(self) -> bool:
        return len(self._entries) >= self.max_capacity

    def entries(self) -> list[BoltedEmbedding]:
        return list(self._entries.values())

    def get(self, identifier: str) -> BoltedEmbedding:
        try:
            return self._entries[identifier]
        except KeyError:
            raise EntityNotFound(identifier) from None

    def upsert(self, embedding: BoltedEmbedding) -> bool:
        """
        Insert or replace *embedding*. Returns False when nothing changed.

        A re-insert with the same non-empty content hash and metadata is a
        no-op so repeated ingestion of unchanged content stays clean.
        """
        if embedding.dimension != self.dimension:
            raise DimensionMismatch(self.dimension, embedding.dimension)
        existing = self._entries.get(embedding.identifier)
        if (
            existing is not None
            and embedding.content_hash
            and existing.content_hash == embedding.content_hash
            and existing.metadata == embedding.metadata
        ):
            return False
        self._put(embedding)
        self.dirty = True
        return True

    def remove(self, identifier: str) -> BoltedEmbedding:
        embedding = self.get(identifier)
        self._backend.remove(identifier)
        del self._entries[identifier]
        self._entry_bytes -= self._entry_size(embedding)
        self._refresh_estimate()
        self.dirty = True
        return embedding

    def search(
        self,
        query: np.ndarray,
        k: int,
        params: SearchParams | None = None,
        emphasis_weights: tuple[float, float] | None = None,
    ) -> list[SearchResult]:
        """
        Search this chunk.

        With ``emphasis_weights`` of ``None`` the combined vectors are searched
        through the backend. Otherwise every entry is rescored exactly on
        ``normalize(w_s * structural + w_m * semantic)``.
        """
        if emphasis_weights is None:
            return self._backend.search(query, k, params)
        return self._rescore(query, k, params or SearchParams(), emphasis_weights)

    def to_bytes(self) -> bytes:
        return encode_chunk(self.backend_type, self.dimension, self._entries.values())

    def estimated_bytes(self) -> int:
        """
        Advisory size of the chunk in bytes.

        The figure is maintained on every mutation, which already runs under
        ``lock``, so reading it never walks the entries.
        """
        return self._estimated_bytes

    def _entry_size(self, entry: BoltedEmbedding) -> int:
        size = 3 * self.dimension * 4 + _ENTRY_OVERHEAD + len(entry.identifier)
        return size + sum(len(k) + len(v) for k, v in entry.metadata.items())

    def _refresh_estimate(self) -> None:
        self._estimated_bytes = self._backend.estimated_bytes() + self._entry_bytes

    def _put(self, embedding: BoltedEmbedding) -> None:
        previous = self._entries.get(embedding.identifier)
        self._backend.insert(embedding.identifier, embedding.vector, embedding.metadata)
        self._entries[embedding.identifier] = embedding
        if previous is not None:
            self._entry_bytes -= self._entry_size(previous)
        self._entry_bytes += self._entry_size(embedding)
        self._refresh_estimate()

    def _rescore(
        self,
        query: np.ndarray,
        k: int,
        params: SearchParams,
        weights: tuple[float, float],
    ) -> list[SearchResult]:
        if k <= 0:
            return []
        q = as_vector(query, self.dimension)
        candidates = [
            entry
            for entry in self._entries.values()
            if not params.filters or matches_all(params.filters, entry.metadata)
        ]
        if not candidates:
            return []
        w_s, w_m = weights
        matrix = np.vstack(
            [
                weighted_sum(
                    entry.structural_component.vector,
                    entry.semantic_component.vector,
                    w_s,
                    w_m,
                )
                for entry in candidates
            ]
        )
        distances = batch_distances(matrix, q, self.metric)
        order = np.argsort(distances, kind="stable")[:k]
        return [
            SearchResult(
                identifier=candidates[int(i)].identifier,
                similarity=distance_to_similarity(float(distances[int(i)]), self.metric),
                metadata=dict(candidates[int(i)].metadata),
            )
            for i in order
        ]
