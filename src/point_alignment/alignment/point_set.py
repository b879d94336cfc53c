"""
Point set helpers.

A point set is an ``(N, 3)`` float64 NumPy array. Row order only matters for
index bookkeeping (correspondences); centroid and covariance ignore it.
"""

from __future__ import annotations

import numpy as np

from ..exceptions import InvalidArgumentError, PreconditionError


def validate_point_set(points, *, name: str = "points", min_points: int = 1) -> np.ndarray:
    """
    Check a point set and return it as a float64 array.

    The input is returned unchanged (no copy) when it already is a C-contiguous
    float64 array, so in-place updates by the caller remain visible.

    Args:
        points: Array-like of shape (N, 3)
        name: Label used in error messages
        min_points: Minimum number of points required by the caller

    Returns:
        (N, 3) float64 array

    Raises:
        InvalidArgumentError: If the array is not (N, 3) or holds non-finite values
        PreconditionError: If fewer than ``min_points`` points are present
    """
    arr = np.ascontiguousarray(points, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 3:
        if arr.size == 0:
            raise PreconditionError(f"The {name} point cloud is empty")
        raise InvalidArgumentError(f"Expected an Nx3 array for {name}, got shape {arr.shape}")

    n = arr.shape[0]
    if n == 0:
        raise PreconditionError(f"The {name} point cloud is empty")
    if n < min_points:
        raise PreconditionError(
            f"The {name} point cloud has {n} points; at least {min_points} are required"
        )
    if not np.all(np.isfinite(arr)):
        raise InvalidArgumentError(f"The {name} point cloud contains non-finite coordinates")
    return arr


def centroid(points: np.ndarray) -> np.ndarray:
    """Arithmetic mean position of a point set."""
    return np.mean(points, axis=0)
