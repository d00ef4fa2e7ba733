"""
Vector primitives: fixed-dimension float32 arrays, normalization and metrics.

Similarity mapping per metric (both monotonic, higher is more similar):

- ``cosine``: similarity is the raw cosine, in ``[-1, 1]``.
- ``euclidean``: similarity is ``1 / (1 + distance)``, in ``(0, 1]``.
"""

from __future__ import annotations

from typing import Iterable, Literal, TypeAlias

import numpy as np

from .errors import DimensionMismatch

Metric: TypeAlias = Literal["cosine", "euclidean"]

NORM_TOLERANCE = 1e-3


def as_vector(values: Iterable[float] | np.ndarray, dimension: int | None = None) -> np.ndarray:
    """Return *values* as a contiguous 1-D float32 array, checking the dimension."""
    vector = np.ascontiguousarray(values, dtype=np.float32)
    if vector.ndim != 1:
        raise ValueError(f"Expected a 1-D vector, got shape {vector.shape}")
    if dimension is not None and vector.shape[0] != dimension:
        raise DimensionMismatch(dimension, int(vector.shape[0]))
    return vector


def l2_norm(vector: np.ndarray) -> float:
    return float(np.linalg.norm(vector.astype(np.float64)))


def normalize(vector: np.ndarray) -> np.ndarray:
    """Scale *vector* to unit length. Zero vectors are returned unchanged."""
    norm = l2_norm(vector)
    if norm == 0.0:
        return vector.astype(np.float32, copy=True)
    return (vector.astype(np.float64) / norm).astype(np.float32)


def is_normalized(vector: np.ndarray, tolerance: float = NORM_TOLERANCE) -> bool:
    return abs(l2_norm(vector) - 1.0) <= tolerance


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    if a.shape != b.shape:
        raise DimensionMismatch(int(a.shape[0]), int(b.shape[0]))
    norm_a = l2_norm(a)
    norm_b = l2_norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(a.astype(np.float64), b.astype(np.float64)) / (norm_a * norm_b))


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    if a.shape != b.shape:
        raise DimensionMismatch(int(a.shape[0]), int(b.shape[0]))
    return float(np.linalg.norm(a.astype(np.float64) - b.astype(np.float64)))


def distance(a: np.ndarray, b: np.ndarray, metric: Metric) -> float:
    """Distance used by the index structures (lower is closer)."""
    if metric == "cosine":
        return 1.0 - cosine_similarity(a, b)
    return euclidean_distance(a, b)


def batch_distances(matrix: np.ndarray, query: np.ndarray, metric: Metric) -> np.ndarray:
    """Distances from *query* to every row of *matrix* as float64."""
    if matrix.shape[0] == 0:
        return np.zeros(0, dtype=np.float64)
    rows = matrix.astype(np.float64)
    q = query.astype(np.float64)
    if metric == "cosine":
        norms = np.linalg.norm(rows, axis=1) * np.linalg.norm(q)
        dots = rows @ q
        with np.errstate(divide="ignore", invalid="ignore"):
            cosines = np.where(norms > 0.0, dots / norms, 0.0)
        return 1.0 - cosines
    return np.linalg.norm(rows - q, axis=1)


def distance_to_similarity(value: float, metric: Metric) -> float:
    if metric == "cosine":
        return 1.0 - value
    return 1.0 / (1.0 + value)


def weighted_sum(
    structural: np.ndarray,
    semantic: np.ndarray,
    structural_weight: float,
    semantic_weight: float,
) -> np.ndarray:
    """Return ``normalize(structural*w_s + semantic*w_m)``."""
    if structural.shape[0] != semantic.shape[0]:
        raise DimensionMismatch(
            int(structural.shape[0]),
            int(semantic.shape[0]),
            context="semantic component",
        )
    combined = structural.astype(np.float64) * structural_weight + semantic.astype(
        np.float64
    ) * semantic_weight
    if float(np.linalg.norm(combined)) == 0.0:
        # Opposing components cancelled out; fall back to the structural view.
        return normalize(structural)
    return normalize(combined.astype(np.float32))
