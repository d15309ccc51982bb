"""Distance kernels for the exact-scan engine.

Conventions match hnswlib so that both engines report comparable distances:
    - L2: Euclidean distance
    - Cosine: 1 - cosine similarity
    - Dot: 1 - inner product
    - L1: Manhattan distance
"""

from __future__ import annotations

from typing import Callable, Dict

import numpy as np

from ..config import DistanceMetric

DistanceFn = Callable[[np.ndarray, np.ndarray], np.ndarray]


def normalize_rows(vectors: np.ndarray) -> np.ndarray:
    """L2-normalize each row, leaving zero rows untouched."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms = np.where(norms == 0, 1, norms)
    return vectors / norms


def l2_distance_batch(query: np.ndarray, vectors: np.ndarray) -> np.ndarray:
    """Euclidean distance from query (d,) to each row of vectors (n, d)."""
    diff = vectors - query
    return np.sqrt(np.einsum("ij,ij->i", diff, diff))


def cosine_distance_batch(query: np.ndarray, vectors: np.ndarray) -> np.ndarray:
    """Cosine distance (1 - similarity) from query to each row."""
    query_norm = np.linalg.norm(query)
    query_unit = query / query_norm if query_norm > 0 else query
    return 1.0 - normalize_rows(vectors) @ query_unit


def dot_distance_batch(query: np.ndarray, vectors: np.ndarray) -> np.ndarray:
    """Inner-product distance (1 - dot) from query to each row."""
    return 1.0 - vectors @ query


def l1_distance_batch(query: np.ndarray, vectors: np.ndarray) -> np.ndarray:
    """Manhattan distance from query to each row."""
    return np.abs(vectors - query).sum(axis=1)


DISTANCE_FUNCTIONS: Dict[DistanceMetric, DistanceFn] = {
    DistanceMetric.L2: l2_distance_batch,
    DistanceMetric.COSINE: cosine_distance_batch,
    DistanceMetric.DOT: dot_distance_batch,
    DistanceMetric.L1: l1_distance_batch,
}


def distance_function(metric: DistanceMetric) -> DistanceFn:
    """Return the batch distance kernel for a metric."""
    return DISTANCE_FUNCTIONS[metric]
