"""
ICP Registration Implementation

This module implements exhaustive Iterative Closest Point (ICP) alignment.
Each iteration uses the current transform *only* to establish point-to-point
correspondence; a least-squares optimal rigid transform is then estimated
afresh from the original moving points (Kabsch algorithm), rather than being
composed onto the previous one.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import math
import time

import numpy as np

from ..acceleration.jit_kernels import compute_distances_jit, nearest_neighbor_jit
from ..acceleration.parallel_executor import ParallelExecutor
from ..exceptions import InvalidArgumentError
from ..utils.logging import setup_logger
from .affine_transform import AffineTransform, transform_from_linear
from .coarse_registration import CentroidAligner, PCAAligner
from .point_set import centroid, validate_point_set

logger = setup_logger(__name__)


def find_correspondences(
    source: np.ndarray,
    target: np.ndarray,
    executor: Optional[ParallelExecutor] = None,
    block_size: Optional[int] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Find the closest target point for every source point by exhaustive search.

    The search fans out over contiguous blocks of source indices; each block
    writes into its own slice of the pre-allocated output buffers.

    Args:
        source: Source point cloud (N x 3).
        target: Target point cloud (M x 3).
        executor: Parallel executor (a default one is created if None).
        block_size: Source points per task.

    Returns:
        Tuple of (correspondence_indices, squared_distances).
    """
    executor = executor or ParallelExecutor()
    n = len(source)
    indices = np.empty(n, dtype=np.int64)
    sq_dists = np.empty(n, dtype=np.float64)

    def search_block(start: int, stop: int) -> None:
        idx, d = nearest_neighbor_jit(source[start:stop], target)
        indices[start:stop] = idx
        sq_dists[start:stop] = d

    executor.map_blocks(search_block, n, block_size)
    return indices, sq_dists


def estimate_rigid_transform(
    source_points: np.ndarray,
    target_points: np.ndarray,
) -> AffineTransform:
    """
    Estimate the optimal proper rigid transformation between corresponding point sets.

    With the cross-covariance ``H = (source - c_s)^T (target - c_t) = U S V^T``,
    the rotation is ``A = V diag(1, 1, det(V U^T)) U^T``. The determinant term
    turns the reflection an unconstrained solution could produce into a proper
    rotation (det = +1).

    Args:
        source_points: Source point cloud points (N x 3).
        target_points: Corresponding target point cloud points (N x 3).

    Returns:
        AffineTransform mapping source onto target.
    """
    source_centroid = centroid(source_points)
    target_centroid = centroid(target_points)

    H = (source_points - source_centroid).T @ (target_points - target_centroid)
    U, _, Vt = np.linalg.svd(H)
    V = Vt.T

    D = np.diag([1.0, 1.0, np.linalg.det(V @ U.T)])
    A = V @ D @ U.T

    return transform_from_linear(A, source_centroid, target_centroid)


def registration_cost(aligned: np.ndarray, matched: np.ndarray) -> float:
    """Sum of Euclidean distances between aligned points and their correspondences."""
    return float(np.sum(compute_distances_jit(aligned, matched)))


@dataclass
class ICPResult:
    """Outcome of an ICP run."""

    transform: AffineTransform
    cost: float
    seed_transform: AffineTransform
    seed_cost: float
    n_iterations: int
    converged: bool
    costs: List[float] = field(default_factory=list)


class ICPAligner:
    """
    Exhaustive ICP alignment.

    The algorithm, starting from a PCA (or centroid) seed, iteratively:
    1. Applies the current transform to a copy of the moving points
    2. Finds each working point's closest stationary point (exhaustive, parallel)
    3. Estimates the optimal rigid transform from the original moving points
       to those correspondences
    4. Scores it by the summed point-to-correspondence distance
    5. Keeps the lowest-cost iteration result; the seed is scored for reporting only

    The cost is not monotonic across iterations because correspondence is
    re-estimated every time; the returned transform is the best observed, not
    necessarily the last one.
    """

    def __init__(
        self,
        max_iterations: int = 100,
        relative_tolerance: Optional[float] = None,
        seed_method: str = "pca",
        executor: Optional[ParallelExecutor] = None,
    ):
        """
        Initialize ICP parameters.

        Args:
            max_iterations: Maximum number of ICP iterations (positive).
            relative_tolerance: Stop once ``|f_prev - f| / f_prev`` drops below
                this value. None, non-finite or negative disables the check.
            seed_method: 'pca' (default) or 'centroid'.
            executor: Parallel executor for the correspondence search.
        """
        if int(max_iterations) < 1:
            raise InvalidArgumentError(f"max_iterations must be positive, got {max_iterations}")
        if seed_method not in ("pca", "centroid"):
            raise InvalidArgumentError(f"Unknown ICP seed method '{seed_method}'")

        self.max_iterations = int(max_iterations)
        self.relative_tolerance = relative_tolerance
        self.seed_method = seed_method
        self.executor = executor

    @property
    def tolerance_enabled(self) -> bool:
        tol = self.relative_tolerance
        return tol is not None and math.isfinite(tol) and tol >= 0.0

    def align(self, moving: np.ndarray, stationary: np.ndarray) -> AffineTransform:
        """Return the best transform found by ``run``."""
        return self.run(moving, stationary).transform

    def run(self, moving: np.ndarray, stationary: np.ndarray) -> ICPResult:
        """
        Align moving onto stationary using ICP.

        Args:
            moving: Moving point cloud (N x 3, N >= 3).
            stationary: Stationary point cloud (M x 3, M >= 3).

        Returns:
            ICPResult

        Raises:
            PreconditionError: If either cloud has fewer than 3 points.
        """
        mov = validate_point_set(moving, name="moving", min_points=3)
        sta = validate_point_set(stationary, name="stationary", min_points=3)
        executor = self.executor or ParallelExecutor()

        logger.info(
            "Starting ICP alignment with %d moving points and %d stationary points (seed: %s).",
            len(mov),
            len(sta),
            self.seed_method,
        )
        icp_start = time.time()

        seed_aligner = PCAAligner() if self.seed_method == "pca" else CentroidAligner()
        seed = seed_aligner.align(mov, sta)

        transform = seed
        best_transform: Optional[AffineTransform] = None
        best_cost = math.inf
        seed_cost = math.inf
        previous_cost = math.nan
        costs: List[float] = []
        converged = False
        n_iterations = 0

        for iteration in range(self.max_iterations):
            working = transform.apply(mov)

            correspondences, _ = find_correspondences(working, sta, executor)
            matched = sta[correspondences]

            if iteration == 0:
                seed_cost = registration_cost(working, matched)
                logger.debug("Seed transform cost: %.6f", seed_cost)

            transform = estimate_rigid_transform(mov, matched)
            current_cost = registration_cost(transform.apply(mov), matched)
            costs.append(current_cost)
            n_iterations = iteration + 1

            logger.debug(
                "Iteration %d: global distance using the current correspondence is %.6f",
                n_iterations,
                current_cost,
            )

            if best_transform is None or current_cost < best_cost:
                best_cost = current_cost
                best_transform = transform

            if self.tolerance_enabled and math.isfinite(current_cost) and math.isfinite(previous_cost):
                relative_change = _relative_change(previous_cost, current_cost)
                logger.debug("Relative change in global distance: %.6e", relative_change)
                if relative_change < self.relative_tolerance:
                    converged = True
                    logger.info(
                        "ICP converged after %d iterations (relative change %.3e < %.3e).",
                        n_iterations,
                        relative_change,
                        self.relative_tolerance,
                    )
                    break
            previous_cost = current_cost
        else:
            logger.info("ICP stopped after the maximum of %d iterations.", self.max_iterations)

        logger.info(
            "ICP finished in %.4f s (%d iterations). Best cost: %.6f (seed cost: %.6f)",
            time.time() - icp_start,
            n_iterations,
            best_cost,
            seed_cost,
        )

        return ICPResult(
            transform=best_transform,
            cost=best_cost,
            seed_transform=seed,
            seed_cost=seed_cost,
            n_iterations=n_iterations,
            converged=converged,
            costs=costs,
        )


def _relative_change(previous: float, current: float) -> float:
    if previous == 0.0:
        return 0.0 if current == 0.0 else math.inf
    return abs((previous - current) / previous)
