"""
Search coordinator: applies a search emphasis and fans the query out to chunks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Literal, Sequence, TypeAlias

import numpy as np

from ..embeddings import validate_weights
from ..index import MetadataFilter, SearchParams, coerce_filters
from ..models import BoltedEmbedding, SearchResponse
from ..vectors import as_vector, weighted_sum

if TYPE_CHECKING:
    from ..storage.manager import ChunkManager

logger = logging.getLogger(__name__)

EmphasisKind: TypeAlias = Literal["balanced", "structural", "semantic", "custom"]
EMPHASIS_KINDS: tuple[str, ...] = ("balanced", "structural", "semantic", "custom")


@dataclass(frozen=True)
class SearchEmphasis:
    """Which component(s) of a bolted embedding a query should compare."""

    kind: EmphasisKind = "balanced"
    structural_weight: float = 0.0
    semantic_weight: float = 0.0

    @classmethod
    def balanced(cls) -> "SearchEmphasis":
        return cls("balanced")

    @classmethod
    def structural(cls) -> "SearchEmphasis":
        return cls("structural", 1.0, 0.0)

    @classmethod
    def semantic(cls) -> "SearchEmphasis":
        return cls("semantic", 0.0, 1.0)

    @classmethod
    def custom(cls, structural_weight: float, semantic_weight: float) -> "SearchEmphasis":
        validate_weights(structural_weight, semantic_weight)
        return cls("custom", float(structural_weight), float(semantic_weight))

    @classmethod
    def parse(cls, value: str) -> "SearchEmphasis":
        """Build an emphasis from ``balanced``, ``structural``, ``semantic`` or ``custom:W_S,W_M``."""
        text = value.strip().lower()
        if text == "balanced":
            return cls.balanced()
        if text == "structural":
            return cls.structural()
        if text == "semantic":
            return cls.semantic()
        if text.startswith("custom:"):
            raw_weights = text[len("custom:") :].split(",")
            if len(raw_weights) != 2:
                raise ValueError(f"Custom emphasis needs two weights: {value!r}")
            try:
                w_s, w_m = (float(part) for part in raw_weights)
            except ValueError as exc:
                raise ValueError(f"Invalid custom emphasis weights: {value!r}") from exc
            return cls.custom(w_s, w_m)
        raise ValueError(
            f"Unknown search emphasis {value!r}; expected one of {', '.join(EMPHASIS_KINDS)}"
        )

    def weights(self) -> tuple[float, float] | None:
        """Rescoring weights for stored entries, or None to use the combined vector."""
        if self.kind == "balanced":
            return None
        return (self.structural_weight, self.semantic_weight)

    def query_vector(self, query: BoltedEmbedding) -> np.ndarray:
        """Select or recompute the query side of the comparison."""
        if self.kind == "balanced":
            return query.vector
        if self.kind == "structural":
            return query.structural_component.vector
        if self.kind == "semantic":
            return query.semantic_component.vector
        return weighted_sum(
            query.structural_component.vector,
            query.semantic_component.vector,
            self.structural_weight,
            self.semantic_weight,
        )


class SearchCoordinator:
    """Top-level search entry point over a ChunkManager."""

    def __init__(self, manager: ChunkManager) -> None:
        self.manager = manager

    def search(
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
        """
        Run *query* against every candidate chunk.

        A raw vector is used as-is for every emphasis; the stored side is
        still scored on the emphasized component(s).
        """
        emphasis = emphasis or SearchEmphasis.balanced()
        config = self.manager.config
        if isinstance(query, BoltedEmbedding):
            vector = emphasis.query_vector(query)
        else:
            vector = as_vector(query, config.dimension)

        params = SearchParams(ef_search=ef_search, filters=coerce_filters(filters))
        response = self.manager.search(
            vector,
            max_results=max_results,
            similarity_threshold=similarity_threshold,
            params=params,
            emphasis_weights=emphasis.weights(),
            partitions=partitions,
            timeout=config.search_timeout if timeout is None else timeout,
        )
        logger.debug(
            "Search (%s) returned %d results from %d chunks",
            emphasis.kind,
            len(response.results),
            len(response.chunks_searched),
        )
        return response
