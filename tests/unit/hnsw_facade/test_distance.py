"""Tests for exact distance kernels."""

import numpy as np
import pytest
from hnsw_facade.config import DistanceMetric
from hnsw_facade.engines.distance import (
    cosine_distance_batch,
    distance_function,
    dot_distance_batch,
    l1_distance_batch,
    l2_distance_batch,
    normalize_rows,
)

VECTORS = np.array([[1.0, 0.0], [0.0, 2.0], [3.0, 4.0]], dtype=np.float32)
QUERY = np.array([1.0, 0.0], dtype=np.float32)


class TestDistanceKernels:
    """Tests for batch distance functions."""

    def test_l2_is_euclidean(self):
        """L2 distance is the square root of the summed squared differences."""
        np.testing.assert_allclose(
            l2_distance_batch(QUERY, VECTORS), [0.0, np.sqrt(5.0), np.sqrt(20.0)], rtol=1e-6
        )

    def test_l1_is_manhattan(self):
        """L1 distance is the summed absolute difference."""
        np.testing.assert_allclose(l1_distance_batch(QUERY, VECTORS), [0.0, 3.0, 6.0])

    def test_cosine_ignores_magnitude(self):
        """Cosine distance is one minus the cosine of the angle."""
        np.testing.assert_allclose(
            cosine_distance_batch(QUERY, VECTORS), [0.0, 1.0, 0.4], atol=1e-6
        )

    def test_dot_is_one_minus_inner_product(self):
        """Dot distance is one minus the raw inner product."""
        np.testing.assert_allclose(dot_distance_batch(QUERY, VECTORS), [0.0, 1.0, -2.0])

    def test_normalize_rows_keeps_zero_rows(self):
        """Zero rows stay zero instead of becoming NaN."""
        rows = normalize_rows(np.array([[0.0, 0.0], [3.0, 4.0]]))
        np.testing.assert_allclose(rows, [[0.0, 0.0], [0.6, 0.8]])

    @pytest.mark.parametrize("metric", list(DistanceMetric))
    def test_every_metric_has_a_kernel(self, metric):
        """Each metric resolves to a callable kernel."""
        assert callable(distance_function(metric))
