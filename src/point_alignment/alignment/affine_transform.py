"""
Affine transform type.

The transform is stored as a conventional 4x4 homogeneous matrix

    [ L00 L01 L02 | b0 ]
    [ L10 L11 L12 | b1 ]
    [ L20 L21 L22 | b2 ]
    [  0   0   0  |  1 ]

so a point p maps to ``L @ p + b``. The bottom row is fixed; the only ways to
build a transform are the constructor (linear block + translation) and
``from_matrix``, which refuses matrices whose bottom row deviates from
(0, 0, 0, 1) by more than AFFINE_TOLERANCE.
"""

from __future__ import annotations

import numpy as np

from ..acceleration.jit_kernels import apply_transform_jit
from ..exceptions import InvalidArgumentError, NonAffineTransformError, TransformValidationError
from .point_set import validate_point_set

AFFINE_TOLERANCE = float(np.sqrt(np.finfo(np.float64).eps))
_PROJECTIVE_ROW = np.array([0.0, 0.0, 0.0, 1.0])


class AffineTransform:
    """
    Immutable affine transform (linear 3x3 block plus translation).

    Example:
        >>> t = AffineTransform(translation=[1.0, 2.0, 3.0])
        >>> t.apply_to_point([0.0, 0.0, 0.0])
        array([1., 2., 3.])
    """

    __slots__ = ("_matrix",)

    def __init__(self, linear=None, translation=None):
        """
        Args:
            linear: 3x3 linear block (rotation, optionally scaled/reflected). Identity if None.
            translation: Length-3 translation vector. Zero if None.
        """
        matrix = np.eye(4)
        if linear is not None:
            lin = np.asarray(linear, dtype=np.float64)
            if lin.shape != (3, 3):
                raise InvalidArgumentError(f"Linear block must be 3x3, got shape {lin.shape}")
            matrix[:3, :3] = lin
        if translation is not None:
            vec = np.asarray(translation, dtype=np.float64).reshape(-1)
            if vec.shape != (3,):
                raise InvalidArgumentError(f"Translation must have 3 components, got shape {vec.shape}")
            matrix[:3, 3] = vec
        matrix.setflags(write=False)
        self._matrix = matrix

    @classmethod
    def identity(cls) -> "AffineTransform":
        return cls()

    @classmethod
    def from_matrix(cls, matrix, *, atol: float = AFFINE_TOLERANCE) -> "AffineTransform":
        """
        Build a transform from a full 4x4 matrix.

        A bottom row within ``atol`` of (0, 0, 0, 1) is accepted and stored as the
        exact fixed row; anything further away is rejected rather than corrected.

        Raises:
            TransformValidationError: If the matrix is not 4x4, holds non-finite
                coefficients or is not affine.
        """
        arr = np.asarray(matrix, dtype=np.float64)
        if arr.shape != (4, 4):
            raise TransformValidationError(f"Expected a 4x4 matrix, got shape {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise TransformValidationError("Transform contains non-finite coefficients")
        if not np.all(np.abs(arr[3] - _PROJECTIVE_ROW) <= atol):
            raise TransformValidationError(
                f"Transform is not affine: bottom row {arr[3].tolist()} differs from (0, 0, 0, 1)"
            )
        return cls(linear=arr[:3, :3], translation=arr[:3, 3])

    # ------------------------ Accessors ------------------------
    @property
    def matrix(self) -> np.ndarray:
        """Copy of the full 4x4 matrix."""
        return self._matrix.copy()

    @property
    def linear(self) -> np.ndarray:
        return self._matrix[:3, :3].copy()

    @property
    def translation(self) -> np.ndarray:
        return self._matrix[:3, 3].copy()

    # ------------------------ Application ------------------------
    def apply_to_point(self, point) -> np.ndarray:
        """
        Apply the full homogeneous transform to a single point.

        Raises:
            NonAffineTransformError: If the projective coordinate is not exactly 1.
        """
        p = np.asarray(point, dtype=np.float64).reshape(3)
        out = self._matrix @ np.append(p, 1.0)
        if out[3] != 1.0:
            raise NonAffineTransformError("Transformation is not affine. Refusing to continue.")
        return out[:3]

    def apply(self, points) -> np.ndarray:
        """Return a transformed copy of an (N, 3) point set."""
        pts = validate_point_set(points, name="input")
        self._check_projective_row()
        return apply_transform_jit(pts, self._matrix)

    def apply_to(self, points: np.ndarray) -> np.ndarray:
        """
        Transform an (N, 3) float64 array in place and return it.

        Raises:
            InvalidArgumentError: If ``points`` is not a writeable float64 (N, 3) array.
        """
        if not isinstance(points, np.ndarray) or points.dtype != np.float64 or not points.flags.writeable:
            raise InvalidArgumentError("In-place application requires a writeable float64 NumPy array")
        points[...] = self.apply(points)
        return points

    def _check_projective_row(self) -> None:
        if not np.array_equal(self._matrix[3], _PROJECTIVE_ROW):
            raise NonAffineTransformError("Transformation is not affine. Refusing to continue.")

    # ------------------------ Comparison ------------------------
    def allclose(self, other: "AffineTransform", atol: float = 1e-9, rtol: float = 0.0) -> bool:
        return bool(np.allclose(self._matrix, other._matrix, atol=atol, rtol=rtol))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AffineTransform):
            return NotImplemented
        return bool(np.array_equal(self._matrix, other._matrix))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        rows = "; ".join(" ".join(f"{v:.6g}" for v in row) for row in self._matrix)
        return f"AffineTransform([{rows}])"


def transform_from_linear(linear: np.ndarray, source_centroid: np.ndarray,
                          target_centroid: np.ndarray) -> AffineTransform:
    """
    Complete a linear map into the affine transform that sends ``source_centroid``
    onto ``target_centroid``: ``b = target_centroid - L @ source_centroid``.
    """
    translation = target_centroid - linear @ source_centroid
    return AffineTransform(linear=linear, translation=translation)
