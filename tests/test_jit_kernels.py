"""
Tests for JIT-compiled kernels.

Tests the Numba kernels behind correspondence search, annealing bounds and
transform application against plain NumPy computations.
"""

import numpy as np
import pytest

from point_alignment.acceleration import (
    apply_transform_jit,
    compute_distances_jit,
    max_sq_distance_jit,
    nearest_neighbor_jit,
)


class TestNearestNeighborJIT:
    def test_matches_brute_force(self):
        rng = np.random.default_rng(0)
        queries = rng.normal(size=(200, 3))
        reference = rng.normal(size=(150, 3))

        idx, d2 = nearest_neighbor_jit(queries, reference)

        full = np.sum((queries[:, None, :] - reference[None, :, :]) ** 2, axis=2)
        np.testing.assert_array_equal(idx, np.argmin(full, axis=1))
        np.testing.assert_allclose(d2, full.min(axis=1), rtol=1e-12)

    def test_ties_pick_first_reference_point(self):
        queries = np.array([[0.0, 0.0, 0.0]])
        reference = np.array([
            [2.0, 0.0, 0.0],
            [1.0, 0.0, 0.0],
            [-1.0, 0.0, 0.0],
            [0.0, 1.0, 0.0],
        ])

        idx, d2 = nearest_neighbor_jit(queries, reference)

        assert idx[0] == 1
        assert d2[0] == 1.0

    def test_empty_queries(self):
        idx, d2 = nearest_neighbor_jit(np.empty((0, 3)), np.ones((4, 3)))
        assert idx.shape == (0,)
        assert d2.shape == (0,)


class TestMaxSqDistanceJIT:
    def test_matches_numpy(self):
        rng = np.random.default_rng(1)
        a = rng.normal(size=(50, 3))
        b = rng.normal(size=(70, 3)) * 3.0

        full = np.sum((a[:, None, :] - b[None, :, :]) ** 2, axis=2)

        assert max_sq_distance_jit(a, b) == pytest.approx(full.max(), rel=1e-12)

    def test_coincident_points(self):
        pts = np.ones((5, 3))
        assert max_sq_distance_jit(pts, pts) == 0.0


class TestApplyTransformJIT:
    """Test apply_transform_jit function."""

    def test_transform_translation(self):
        """Test transformation with translation only."""
        points = np.array([
            [1.0, 2.0, 3.0],
            [4.0, 5.0, 6.0],
        ])

        matrix = np.eye(4)
        matrix[:3, 3] = [10.0, 20.0, 30.0]

        result = apply_transform_jit(points, matrix)

        np.testing.assert_allclose(result, points + np.array([10.0, 20.0, 30.0]), rtol=1e-10)

    def test_transform_matches_matrix_multiplication(self):
        """Test JIT result matches homogeneous matrix multiplication."""
        rng = np.random.default_rng(2)
        points = rng.normal(size=(100, 3))
        matrix = np.eye(4)
        matrix[:3, :] = rng.normal(size=(3, 4))

        result = apply_transform_jit(points, matrix)

        homogeneous = np.hstack([points, np.ones((len(points), 1))])
        expected = (homogeneous @ matrix.T)[:, :3]
        np.testing.assert_allclose(result, expected, rtol=1e-10, atol=1e-12)

    def test_transform_empty_points(self):
        result = apply_transform_jit(np.empty((0, 3)), np.eye(4))
        assert result.shape == (0, 3)


class TestComputeDistancesJIT:
    """Test compute_distances_jit function."""

    def test_distances_known_values(self):
        points1 = np.array([[0.0, 0.0, 0.0], [1.0, 1.0, 1.0]])
        points2 = np.array([[3.0, 4.0, 0.0], [1.0, 1.0, 1.0]])

        result = compute_distances_jit(points1, points2)

        np.testing.assert_allclose(result, [5.0, 0.0])

    def test_distances_matches_numpy(self):
        rng = np.random.default_rng(3)
        points1 = rng.normal(size=(500, 3))
        points2 = rng.normal(size=(500, 3))

        result = compute_distances_jit(points1, points2)

        np.testing.assert_allclose(result, np.linalg.norm(points1 - points2, axis=1), rtol=1e-12)
