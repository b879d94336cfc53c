"""
Coarse Registration Methods

Closed-form alignment strategies, used on their own or to seed ICP.

Methods implemented:
- centroid: translation-only alignment by centroids
- pca: rigid alignment of principal axes whose signs are fixed by third-order
  moments, then centroid translation

Both aligners are stateless: every call works on locally allocated buffers and
returns a new AffineTransform.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..utils.logging import setup_logger
from .affine_transform import AffineTransform, transform_from_linear
from .point_set import centroid, validate_point_set

logger = setup_logger(__name__)

# Relative size below which a third-order moment is treated as zero
MOMENT_TOLERANCE = float(np.sqrt(np.finfo(np.float64).eps))


@dataclass
class CentroidAligner:
    """Rotation-less shift so the point cloud centres of mass coincide."""

    def align(self, moving: np.ndarray, stationary: np.ndarray) -> AffineTransform:
        """
        Compute a translation aligning moving -> stationary.

        Args:
            moving: Nx3 array
            stationary: Mx3 array

        Returns:
            AffineTransform with identity linear block
        """
        mov = validate_point_set(moving, name="moving")
        sta = validate_point_set(stationary, name="stationary")
        return AffineTransform(translation=centroid(sta) - centroid(mov))


@dataclass(frozen=True)
class PrincipalComponents:
    """
    Principal axes of a point cloud after sign disambiguation.

    Attributes:
        centroid: Mean position of the cloud
        axes: 3x3 matrix whose columns are the oriented unit principal components,
            in ascending eigenvalue order
        eigenvalues: Eigenvalues of the (unnormalized) scatter matrix, ascending
        moments: Third-order moments of the projections on the raw eigenvectors
        resolved: Per axis, True if the moment fixed its sign
    """

    centroid: np.ndarray
    axes: np.ndarray
    eigenvalues: np.ndarray
    moments: np.ndarray
    resolved: np.ndarray


def principal_components(points: np.ndarray) -> PrincipalComponents:
    """
    Principal components of a point cloud, oriented by their third-order moments.

    The first-order moment vanishes after centring and the second-order moment
    cannot tell +v from -v, so each eigenvector is flipped to agree with the sign
    of the summed cubed projections. Axes whose moment is numerically zero are
    handled explicitly:

    - one unresolved axis (e.g. the normal of a planar cloud): rebuilt as the
      cross product of the two resolved axes, keeping the frame right-handed;
    - two or three unresolved axes (e.g. the cross-section of a colinear cloud):
      left as the raw eigenvectors, since moments cannot recover them.

    Args:
        points: Nx3 array with at least 3 points

    Returns:
        PrincipalComponents
    """
    pts = validate_point_set(points, name="input", min_points=3)
    c = centroid(pts)
    centered = pts - c

    scatter = centered.T @ centered
    eigenvalues, eigenvectors = np.linalg.eigh(scatter)

    proj = centered @ eigenvectors
    moments = np.sum(proj ** 3, axis=0)
    # Scale of the largest possible moment magnitude for this cloud
    scale = float(np.sum(np.linalg.norm(centered, axis=1) ** 3))
    resolved = np.abs(moments) > MOMENT_TOLERANCE * scale

    axes = eigenvectors.copy()
    for k in range(3):
        if resolved[k]:
            axes[:, k] *= np.sign(moments[k])

    n_unresolved = int(np.count_nonzero(~resolved))
    if n_unresolved == 1:
        k = int(np.flatnonzero(~resolved)[0])
        a = axes[:, (k + 1) % 3]
        b = axes[:, (k + 2) % 3]
        normal = np.cross(a, b)
        axes[:, k] = normal / np.linalg.norm(normal)
        logger.debug("Principal axis %d orientation recovered from the other two (planar degeneracy).", k)
    elif n_unresolved > 1:
        logger.warning(
            "%d principal axes have vanishing third-order moments; their orientation is ambiguous "
            "and the raw eigenvectors are used.",
            n_unresolved,
        )

    return PrincipalComponents(
        centroid=c,
        axes=axes,
        eigenvalues=eigenvalues,
        moments=moments,
        resolved=resolved,
    )


@dataclass
class PCAAligner:
    """Align the oriented principal axes of the moving cloud onto those of the stationary cloud."""

    def align(self, moving: np.ndarray, stationary: np.ndarray) -> AffineTransform:
        """
        Compute a PCA-based transform aligning moving -> stationary.

        If S and M hold the oriented components of the stationary and moving
        clouds as columns, ``S = A M`` and M is orthonormal, so ``A = S M^T``.
        The translation ``b = c_S - A c_M`` sends the moving centroid exactly onto
        the stationary centroid.

        Args:
            moving: Nx3 array (N >= 3)
            stationary: Mx3 array (M >= 3)

        Returns:
            AffineTransform

        Raises:
            PreconditionError: If either cloud has fewer than 3 points
        """
        mov = validate_point_set(moving, name="moving", min_points=3)
        sta = validate_point_set(stationary, name="stationary", min_points=3)

        pc_s = principal_components(sta)
        pc_m = principal_components(mov)

        for label, pc in (("Stationary", pc_s), ("Moving", pc_m)):
            logger.debug("%s point cloud: centroid %s", label, np.array2string(pc.centroid, precision=6))
            for k in range(3):
                logger.debug(
                    "    pc%d: %s (eigenvalue %.6g, moment %.6g, resolved %s)",
                    k + 1,
                    np.array2string(pc.axes[:, k], precision=6),
                    pc.eigenvalues[k],
                    pc.moments[k],
                    bool(pc.resolved[k]),
                )

        A = pc_s.axes @ pc_m.axes.T
        return transform_from_linear(A, pc_m.centroid, pc_s.centroid)
