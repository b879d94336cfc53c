"""
Tests for coarse registration methods (centroid, PCA).
"""

import logging

import numpy as np
import pytest

from point_alignment.alignment.coarse_registration import (
    CentroidAligner,
    PCAAligner,
    principal_components,
)
from point_alignment.alignment.point_set import centroid
from point_alignment.exceptions import PreconditionError


def _nn_rmse(A: np.ndarray, B: np.ndarray) -> float:
    from sklearn.neighbors import NearestNeighbors  # type: ignore

    nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(B)
    d, _ = nbrs.kneighbors(A)
    return float(np.sqrt(np.mean(d ** 2)))


def _rotation_z(deg: float) -> np.ndarray:
    th = np.deg2rad(deg)
    return np.array([[np.cos(th), -np.sin(th), 0], [np.sin(th), np.cos(th), 0], [0, 0, 1]])


def _skewed_cloud(n: int = 200, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    # Skewed along every axis so third-order moments fix all signs
    return rng.exponential(size=(n, 3)) * np.array([10.0, 4.0, 1.0])


def test_centroid_recovers_cube_translation():
    cube = np.array(
        [[x, y, z] for x in (0.0, 1.0) for y in (0.0, 1.0) for z in (0.0, 1.0)]
    )
    moved = cube + np.array([1.0, 2.0, 3.0])

    T = CentroidAligner().align(cube, moved)

    np.testing.assert_allclose(T.translation, [1.0, 2.0, 3.0], atol=1e-9)
    np.testing.assert_array_equal(T.linear, np.eye(3))


def test_centroid_exactness_on_random_clouds():
    rng = np.random.default_rng(0)
    for n, m in [(1, 1), (5, 17), (300, 40)]:
        A = rng.normal(size=(n, 3)) * 100.0
        B = rng.normal(size=(m, 3)) * 3.0 + rng.normal(size=3) * 1e3

        A2 = CentroidAligner().align(A, B).apply(A)

        np.testing.assert_allclose(centroid(A2), centroid(B), rtol=1e-9, atol=1e-9)


def test_centroid_rejects_empty_cloud():
    with pytest.raises(PreconditionError):
        CentroidAligner().align(np.empty((0, 3)), np.zeros((3, 3)))


def test_pca_recovers_rotation_and_translation():
    A = _skewed_cloud()
    R = _rotation_z(90.0)
    t = np.array([5.0, 0.0, 0.0])
    B = A @ R.T + t

    T = PCAAligner().align(A, B)

    np.testing.assert_allclose(T.linear, R, atol=1e-3)
    np.testing.assert_allclose(T.translation, t, atol=1e-3)
    assert np.linalg.det(T.linear) == pytest.approx(1.0, abs=1e-9)


def test_pca_coarse_alignment_reduces_error():
    rng = np.random.default_rng(1)
    # Anisotropic cloud to avoid PCA degeneracy
    A = rng.normal(size=(4000, 3)) * np.array([20.0, 5.0, 1.0]) + np.array([100.0, -50.0, 10.0])
    Rz = _rotation_z(15.0)
    t = np.array([5.0, -3.0, 0.7])
    B = (A @ Rz.T) + t

    before = _nn_rmse(A, B)
    A2 = PCAAligner().align(A, B).apply(A)
    after = _nn_rmse(A2, B)

    assert after < before * 0.5


def test_pca_maps_moving_centroid_onto_stationary_centroid():
    A = _skewed_cloud(seed=3)
    B = _skewed_cloud(seed=4) + 50.0

    A2 = PCAAligner().align(A, B).apply(A)

    np.testing.assert_allclose(centroid(A2), centroid(B), atol=1e-9)


def test_pca_planar_cloud_uses_cross_product_for_normal():
    rng = np.random.default_rng(2)
    A = np.zeros((200, 3))
    A[:, :2] = rng.exponential(size=(200, 2)) * np.array([6.0, 2.0])

    pc = principal_components(A)

    assert np.all(np.isfinite(pc.axes))
    assert np.linalg.det(pc.axes) == pytest.approx(1.0, abs=1e-9)
    # Smallest eigenvalue belongs to the plane normal
    assert not pc.resolved[0]
    assert abs(pc.axes[2, 0]) == pytest.approx(1.0, abs=1e-9)
    np.testing.assert_allclose(pc.axes[:, 0], np.cross(pc.axes[:, 1], pc.axes[:, 2]), atol=1e-12)


def test_pca_planar_cloud_alignment():
    rng = np.random.default_rng(5)
    A = np.zeros((200, 3))
    A[:, :2] = rng.exponential(size=(200, 2)) * np.array([6.0, 2.0])
    R = _rotation_z(90.0)
    B = A @ R.T + np.array([5.0, 0.0, 0.0])

    T = PCAAligner().align(A, B)

    assert np.all(np.isfinite(T.matrix))
    np.testing.assert_allclose(T.linear, R, atol=1e-6)


def test_pca_colinear_cloud_warns(caplog):
    rng = np.random.default_rng(6)
    A = np.zeros((50, 3))
    A[:, 0] = rng.exponential(size=50)

    with caplog.at_level(logging.WARNING):
        pc = principal_components(A)

    assert np.all(np.isfinite(pc.axes))
    assert int(np.count_nonzero(~pc.resolved)) == 2
    assert "ambiguous" in caplog.text


def test_pca_requires_three_points():
    with pytest.raises(PreconditionError):
        PCAAligner().align(np.zeros((2, 3)), np.zeros((5, 3)))
