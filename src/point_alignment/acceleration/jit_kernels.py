"""JIT-compiled kernels for performance-critical operations.

These kernels implement the exhaustive (brute force) point-to-point scans used
by the aligners. They are compiled with ``nogil=True`` so that the
ParallelExecutor's worker threads can run them concurrently on disjoint blocks.
"""

from __future__ import annotations

import numba
import numpy as np


def _jit(nopython: bool = True, nogil: bool = True):
    """Small helper so every kernel is compiled with the same options."""
    return numba.jit(nopython=nopython, nogil=nogil)


@_jit()
def nearest_neighbor_jit(queries: np.ndarray, reference: np.ndarray):
    """Exhaustive nearest neighbour search (JIT-compiled).

    Ties are broken in favour of the first reference point reaching the
    minimum, because only a strictly smaller distance replaces the current best.

    Args:
        queries: (N, 3) array of XYZ coordinates.
        reference: (M, 3) array of XYZ coordinates.

    Returns:
        Tuple of (indices, squared_distances), both of length N.
    """
    n = queries.shape[0]
    m = reference.shape[0]
    indices = np.full(n, -1, dtype=np.int64)
    sq_dists = np.full(n, np.inf, dtype=np.float64)

    for i in range(n):
        qx = queries[i, 0]
        qy = queries[i, 1]
        qz = queries[i, 2]
        best = np.inf
        best_j = -1
        for j in range(m):
            dx = reference[j, 0] - qx
            dy = reference[j, 1] - qy
            dz = reference[j, 2] - qz
            d = dx * dx + dy * dy + dz * dz
            if d < best:
                best = d
                best_j = j
        indices[i] = best_j
        sq_dists[i] = best

    return indices, sq_dists


@_jit()
def max_sq_distance_jit(queries: np.ndarray, reference: np.ndarray) -> float:
    """Largest squared distance between any query point and any reference point (JIT-compiled)."""
    best = 0.0
    for i in range(queries.shape[0]):
        qx = queries[i, 0]
        qy = queries[i, 1]
        qz = queries[i, 2]
        for j in range(reference.shape[0]):
            dx = reference[j, 0] - qx
            dy = reference[j, 1] - qy
            dz = reference[j, 2] - qz
            d = dx * dx + dy * dy + dz * dz
            if d > best:
                best = d
    return best


@_jit()
def apply_transform_jit(points: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Apply 4x4 transformation matrix to points (JIT-compiled).

    Args:
        points: (N, 3) array of XYZ coordinates.
        matrix: (4, 4) transformation matrix.

    Returns:
        Transformed points (N, 3).
    """
    n = points.shape[0]
    result = np.empty_like(points)

    for i in range(n):
        x = points[i, 0]
        y = points[i, 1]
        z = points[i, 2]
        result[i, 0] = matrix[0, 0] * x + matrix[0, 1] * y + matrix[0, 2] * z + matrix[0, 3]
        result[i, 1] = matrix[1, 0] * x + matrix[1, 1] * y + matrix[1, 2] * z + matrix[1, 3]
        result[i, 2] = matrix[2, 0] * x + matrix[2, 1] * y + matrix[2, 2] * z + matrix[2, 3]

    return result


@_jit()
def compute_distances_jit(points1: np.ndarray, points2: np.ndarray) -> np.ndarray:
    """Compute Euclidean distances between corresponding points (JIT-compiled).

    Args:
        points1: (N, 3) array of XYZ coordinates.
        points2: (N, 3) array of XYZ coordinates.

    Returns:
        1D array of distances of length N.
    """
    n = points1.shape[0]
    distances = np.empty(n, dtype=np.float64)

    for i in range(n):
        dx = points1[i, 0] - points2[i, 0]
        dy = points1[i, 1] - points2[i, 1]
        dz = points1[i, 2] - points2[i, 2]
        distances[i] = np.sqrt(dx * dx + dy * dy + dz * dz)

    return distances
