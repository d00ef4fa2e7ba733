"""
Ranking helpers for merging per-chunk result sets.
"""

from __future__ import annotations

from typing import Iterable

from ..models import SearchResult


def rank_results(results: Iterable[SearchResult]) -> list[SearchResult]:
    """Sort by similarity descending; equal scores are ordered by identifier."""
    return sorted(results, key=lambda hit: (-hit.similarity, hit.identifier))


def merge_results(
    result_sets: Iterable[Iterable[SearchResult]],
    *,
    limit: int,
    threshold: float = float("-inf"),
) -> list[SearchResult]:
    """
    Merge chunk result sets into one ranked list.

    An identifier seen in more than one set keeps its best score. Results
    below ``threshold`` are dropped before the list is cut to ``limit``.
    """
    best: dict[str, SearchResult] = {}
    for results in result_sets:
        for hit in results:
            current = best.get(hit.identifier)
            if current is None or hit.similarity > current.similarity:
                best[hit.identifier] = hit
    ranked = [hit for hit in rank_results(best.values()) if hit.similarity >= threshold]
    return ranked[: max(limit, 0)]
