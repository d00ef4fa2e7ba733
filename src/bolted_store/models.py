"""
Data models for embeddings and search results.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from typing import Any, Iterable

import numpy as np

from .errors import DimensionMismatch
from .vectors import as_vector, normalize


def content_digest(content: str) -> str:
    """SHA-256 hex digest of source text, used for idempotent re-inserts."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _frozen_vector(values: Iterable[float] | np.ndarray) -> np.ndarray:
    vector = np.array(as_vector(values), dtype=np.float32, copy=True)
    vector.flags.writeable = False
    return vector


@dataclass(frozen=True, eq=False)
class Embedding:
    """A single fixed-dimension vector with provenance."""

    identifier: str
    vector: np.ndarray
    content_type: str = "text"
    content_hash: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "vector", _frozen_vector(self.vector))
        object.__setattr__(self, "metadata", {str(k): str(v) for k, v in self.metadata.items()})

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Embedding):
            return NotImplemented
        return (
            self.identifier == other.identifier
            and self.content_type == other.content_type
            and self.content_hash == other.content_hash
            and self.metadata == other.metadata
            and np.array_equal(self.vector, other.vector)
        )

    __hash__ = object.__hash__


@dataclass(frozen=True, eq=False)
class BoltedEmbedding:
    """
    Fusion of a structural and a semantic embedding.

    ``vector`` is always ``normalize(w_s * structural + w_m * semantic)``; both
    components are retained so queries can re-weight them without re-embedding.
    """

    identifier: str
    vector: np.ndarray
    structural_component: Embedding
    semantic_component: Embedding
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "vector", _frozen_vector(self.vector))
        object.__setattr__(self, "metadata", {str(k): str(v) for k, v in self.metadata.items()})
        dimension = self.dimension
        if self.structural_component.dimension != dimension:
            raise DimensionMismatch(
                dimension,
                self.structural_component.dimension,
                context="structural component",
            )
        if self.semantic_component.dimension != dimension:
            raise DimensionMismatch(
                dimension,
                self.semantic_component.dimension,
                context="semantic component",
            )

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])

    @property
    def content_type(self) -> str:
        return self.structural_component.content_type

    @property
    def content_hash(self) -> str:
        return self.structural_component.content_hash

    @classmethod
    def from_vector(
        cls,
        identifier: str,
        vector: Iterable[float] | np.ndarray,
        *,
        content_type: str = "vector",
        content_hash: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> "BoltedEmbedding":
        """Wrap a pre-computed vector; both components carry the same values."""
        raw = as_vector(vector)
        unit = normalize(raw)
        meta = {str(k): str(v) for k, v in (metadata or {}).items()}
        component = Embedding(
            identifier=identifier,
            vector=unit,
            content_type=content_type,
            content_hash=content_hash,
        )
        return cls(
            identifier=identifier,
            vector=unit,
            structural_component=component,
            semantic_component=component,
            metadata=meta,
        )

    def with_metadata(self, metadata: dict[str, Any]) -> "BoltedEmbedding":
        merged = dict(self.metadata)
        merged.update({str(k): str(v) for k, v in metadata.items()})
        return replace(self, metadata=merged)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BoltedEmbedding):
            return NotImplemented
        return (
            self.identifier == other.identifier
            and self.metadata == other.metadata
            and np.array_equal(self.vector, other.vector)
            and self.structural_component == other.structural_component
            and self.semantic_component == other.semantic_component
        )

    __hash__ = object.__hash__


@dataclass(frozen=True)
class SearchResult:
    """A ranked match. ``metadata`` is a snapshot, not a live view."""

    identifier: str
    similarity: float
    metadata: dict[str, str] = field(default_factory=dict)
    chunk_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "similarity": self.similarity,
            "metadata": dict(self.metadata),
            "chunk_id": self.chunk_id,
        }


@dataclass(frozen=True)
class SearchResponse:
    """Ranked results plus which chunks were covered before any deadline."""

    results: list[SearchResult]
    chunks_searched: list[str] = field(default_factory=list)
    chunks_skipped: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.chunks_skipped)
