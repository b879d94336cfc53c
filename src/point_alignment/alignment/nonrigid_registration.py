"""
TPS-RPM Non-rigid Registration

Thin-plate-spline robust point matching: deterministic annealing of a soft
correspondence matrix, alternated with a smoothing spline fit of the moving
points onto their correspondence-weighted targets.

The annealing machinery follows the classic formulation:
- start temperature: largest squared pairwise distance over both clouds
- end temperature: mean squared nearest-neighbour distance within the moving cloud
- geometric cooling by ``temperature_step`` per step
- an (N+1) x (M+1) correspondence matrix whose extra row and column hold the
  outlier entries, evaluated at the start temperature
- alternating column/row normalization towards a doubly stochastic matrix

Annealing stops at a temperature comparable to the point spacing, where the
soft targets are still local averages. A final sharpening stage replaces them
with the zero-temperature limit of the normalized matrix, a one-to-one
assignment, and refits the spline until the assignment no longer changes.

The deformation is a regularized thin-plate spline: the non-affine part is
penalized by its bending energy (weight ``lambda_start * T``) and the affine part
is pulled towards the identity (weight ``lambda_affine * T``).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import scipy.linalg
from scipy.optimize import linear_sum_assignment
from scipy.spatial.distance import cdist
from scipy.special import xlogy
from sklearn.neighbors import NearestNeighbors

from ..acceleration.jit_kernels import max_sq_distance_jit
from ..acceleration.parallel_executor import ParallelExecutor
from ..exceptions import InvalidArgumentError, PreconditionError
from ..utils.config import TPSRPMConfig
from ..utils.logging import setup_logger
from .affine_transform import AffineTransform
from .point_set import centroid, validate_point_set

logger = setup_logger(__name__)

# Row sums below this are treated as "no correspondence" when forming targets
_MIN_ROW_MASS = 1e-300


def annealing_bounds(
    moving: np.ndarray,
    stationary: np.ndarray,
    executor: Optional[ParallelExecutor] = None,
    min_temperature_ratio: float = 1e-6,
) -> Tuple[float, float]:
    """
    Compute the start and end temperatures of the annealing schedule.

    Args:
        moving: Nx3 array
        stationary: Mx3 array
        executor: Parallel executor used for the all-pairs maximum
        min_temperature_ratio: End temperature floor relative to the start
            temperature, applied when the moving cloud has duplicate points

    Returns:
        (t_start, t_end)

    Raises:
        PreconditionError: If every point of both clouds coincides
    """
    executor = executor or ParallelExecutor()
    union = np.ascontiguousarray(np.vstack([moving, stationary]))

    t_start = float(
        executor.reduce_blocks(
            lambda start, stop: max_sq_distance_jit(union[start:stop], union),
            len(union),
            combine=max,
            initial=0.0,
        )
    )
    if t_start <= 0.0:
        raise PreconditionError("All points coincide; the annealing temperature range is empty")

    nn = NearestNeighbors(n_neighbors=2, algorithm="brute").fit(moving)
    distances, _ = nn.kneighbors(moving)
    t_end = float(np.mean(distances[:, 1] ** 2))

    if t_end <= 0.0:
        t_end = t_start * min_temperature_ratio
        logger.warning(
            "Moving cloud has no distinct nearest neighbours; end temperature clamped to %.6g",
            t_end,
        )
    return t_start, t_end


def annealing_schedule(t_start: float, t_end: float, step: float = 0.93) -> np.ndarray:
    """
    Geometric cooling schedule ``t_start, t_start*step, ...`` down to ``t_end``.

    Every returned temperature is ``>= t_end``; the schedule holds at least
    ``t_start`` when ``t_start >= t_end``.
    """
    if not 0.0 < step < 1.0:
        raise InvalidArgumentError(f"Temperature step must lie in (0, 1), got {step}")
    if not t_end > 0.0:
        raise InvalidArgumentError(f"End temperature must be positive, got {t_end}")

    temperatures = []
    t = float(t_start)
    while t >= t_end:
        temperatures.append(t)
        t *= step
    return np.asarray(temperatures, dtype=np.float64)


def _gaussian_affinity(sq_dist: np.ndarray, temperature: float) -> np.ndarray:
    return np.exp(-sq_dist / (2.0 * temperature)) / temperature


def correspondence_matrix(
    transformed: np.ndarray,
    stationary: np.ndarray,
    temperature: float,
    start_temperature: float,
    moving_centroid: np.ndarray,
    stationary_centroid: np.ndarray,
    executor: Optional[ParallelExecutor] = None,
) -> np.ndarray:
    """
    Build the (N+1) x (M+1) soft correspondence matrix.

    Entry (i, j) for i < N, j < M is the Gaussian affinity
    ``exp(-|y_i - v_j|^2 / 2T) / T`` of transformed moving point y_i and
    stationary point v_j at the current temperature. Row N compares the moving
    centroid with each stationary point and column M compares each transformed
    point with the stationary centroid, both at the start temperature. The
    corner entry is zero.

    Args:
        transformed: Current positions of the moving points (N x 3)
        stationary: Stationary points (M x 3)
        temperature: Current annealing temperature
        start_temperature: First temperature of the schedule (outlier entries)
        moving_centroid: Centroid of the untransformed moving cloud
        stationary_centroid: Centroid of the stationary cloud
        executor: Parallel executor; rows are filled block-wise

    Returns:
        Correspondence matrix
    """
    executor = executor or ParallelExecutor()
    n, m = len(transformed), len(stationary)
    matrix = np.zeros((n + 1, m + 1), dtype=np.float64)

    def fill_rows(start: int, stop: int) -> None:
        diff = transformed[start:stop, None, :] - stationary[None, :, :]
        matrix[start:stop, :m] = _gaussian_affinity(np.einsum("ijk,ijk->ij", diff, diff), temperature)

    executor.map_blocks(fill_rows, n)

    outlier_row = np.sum((stationary - moving_centroid) ** 2, axis=1)
    matrix[n, :m] = _gaussian_affinity(outlier_row, start_temperature)
    outlier_col = np.sum((transformed - stationary_centroid) ** 2, axis=1)
    matrix[:n, m] = _gaussian_affinity(outlier_col, start_temperature)
    return matrix


def normalize_correspondence(matrix: np.ndarray, iterations: int = 10) -> np.ndarray:
    """
    Alternating column/row normalization of a correspondence matrix.

    Each pass rescales the M regular columns to unit sum (outlier row included
    in the sums), then the N regular rows to unit sum (outlier column included).
    The outlier row and column themselves are never normalized, so they absorb
    unmatched mass. Since every pass ends with the row step, the regular rows
    sum to one on return.

    Args:
        matrix: (N+1) x (M+1) non-negative matrix; not modified
        iterations: Number of column+row passes

    Returns:
        Normalized copy
    """
    result = np.array(matrix, dtype=np.float64, copy=True)
    n, m = result.shape[0] - 1, result.shape[1] - 1

    for _ in range(int(iterations)):
        col_sums = result[:, :m].sum(axis=0)
        np.divide(result[:, :m], col_sums, out=result[:, :m], where=col_sums > 0.0)

        row_sums = result[:n, :].sum(axis=1, keepdims=True)
        np.divide(result[:n, :], row_sums, out=result[:n, :], where=row_sums > 0.0)

    logger.debug(
        "Normalized correspondence: mean row sum %.6f, mean column sum %.6f",
        float(np.mean(result[:n, :].sum(axis=1))),
        float(np.mean(result[:, :m].sum(axis=0))),
    )
    return result


def weighted_targets(matrix: np.ndarray, stationary: np.ndarray, current: np.ndarray) -> np.ndarray:
    """
    Correspondence-weighted target position for every moving point.

    ``target_i = sum_j m_ij v_j / sum_j m_ij`` over the regular columns. Points
    whose row carries no regular mass keep their current position.
    """
    n, m = matrix.shape[0] - 1, matrix.shape[1] - 1
    regular = matrix[:n, :m]
    mass = regular.sum(axis=1)

    targets = np.array(current, dtype=np.float64, copy=True)
    matched = mass > _MIN_ROW_MASS
    targets[matched] = (regular[matched] @ stationary) / mass[matched, None]
    return targets


def hard_assignment(transformed: np.ndarray, stationary: np.ndarray) -> np.ndarray:
    """
    One-to-one assignment minimizing the summed squared distance.

    Returns, for every transformed moving point, the index of its assigned
    stationary point, or -1 when the moving cloud is the larger one and the
    point is left unmatched.
    """
    cost = cdist(transformed, stationary, "sqeuclidean")
    rows, cols = linear_sum_assignment(cost)
    assignment = np.full(len(transformed), -1, dtype=np.int64)
    assignment[rows] = cols
    return assignment


def assigned_targets(assignment: np.ndarray, stationary: np.ndarray, current: np.ndarray) -> np.ndarray:
    """Assigned stationary point per moving point; unmatched points keep their current position."""
    targets = np.array(current, dtype=np.float64, copy=True)
    matched = assignment >= 0
    targets[matched] = stationary[assignment[matched]]
    return targets


def fit_affine(source: np.ndarray, target: np.ndarray) -> AffineTransform:
    """Least-squares affine transform mapping source points onto target points."""
    design = np.hstack([source, np.ones((len(source), 1))])
    solution, *_ = np.linalg.lstsq(design, target, rcond=None)
    return AffineTransform(linear=solution[:3].T, translation=solution[3])


# Radial kernels, signed so they are conditionally positive definite with a linear tail
_KERNELS = {
    "thin_plate_spline": lambda r: xlogy(r ** 2, r),
    "linear": lambda r: -r,
    "cubic": lambda r: r ** 3,
}

# Homogeneous affine coefficients of the identity map (rows: 1, x, y, z)
_IDENTITY_AFFINE = np.vstack([np.zeros(3), np.eye(3)])
_AFFINE_PENALTY = np.diag([0.0, 1.0, 1.0, 1.0])


class ThinPlateSpline:
    """
    Regularized thin-plate spline ``f(x) = [1, x] @ affine + phi(|x - c_k|) @ weights``.

    The control points ``c_k`` are fixed at construction, so the kernel matrix
    and the QR split of the affine basis are computed once and reused by every
    ``fit``. The weights are constrained to be orthogonal to the affine basis.

    Fitting minimizes
    ``|Y - f(C)|^2 + bending * tr(W^T K W) + affine * |A - I|^2``
    where A is the linear block of the affine part (the translation is free).
    The bending and affine problems are solved one after the other as in the
    usual TPS-RPM decomposition.
    """

    def __init__(self, control_points: np.ndarray, kernel: str = "thin_plate_spline"):
        if kernel not in _KERNELS:
            raise InvalidArgumentError(f"Unknown spline kernel '{kernel}'")
        self.control_points = validate_point_set(control_points, name="control")
        self.kernel = kernel
        self._phi = _KERNELS[kernel]

        n = len(self.control_points)
        self._basis = np.hstack([np.ones((n, 1)), self.control_points])
        self._gram = self._phi(cdist(self.control_points, self.control_points))

        q, _ = scipy.linalg.qr(self._basis)
        # Columns beyond the affine basis span its orthogonal complement (empty for n <= 4)
        self._complement = q[:, min(n, 4):]
        self._bending = self._complement.T @ self._gram @ self._complement

        self.affine = _IDENTITY_AFFINE.copy()
        self.weights = np.zeros((n, 3))

    def fit(self, targets: np.ndarray, bending_weight: float, affine_weight: float) -> "ThinPlateSpline":
        """
        Fit the spline so that it maps the control points onto ``targets``.

        Raises:
            PreconditionError: If the regularized system is singular (e.g. coplanar
                control points with ``affine_weight == 0``)
        """
        try:
            if self._complement.shape[1] > 0:
                system = self._bending + bending_weight * np.eye(self._bending.shape[0])
                gamma = scipy.linalg.solve(system, self._complement.T @ targets, assume_a="sym")
                self.weights = self._complement @ gamma
            else:
                self.weights = np.zeros_like(targets)

            residual = targets - self._gram @ self.weights
            normal = self._basis.T @ self._basis + affine_weight * _AFFINE_PENALTY
            rhs = self._basis.T @ residual + affine_weight * _IDENTITY_AFFINE
            self.affine = scipy.linalg.solve(normal, rhs, assume_a="sym")
        except np.linalg.LinAlgError as e:
            raise PreconditionError(
                f"Spline fit is singular; the moving points may be coplanar: {e}"
            ) from e
        return self

    def __call__(self, points: np.ndarray) -> np.ndarray:
        pts = validate_point_set(points, name="input")
        basis = np.hstack([np.ones((len(pts), 1)), pts])
        return basis @ self.affine + self._phi(cdist(pts, self.control_points)) @ self.weights


@dataclass
class TPSRPMResult:
    """Outcome of a TPS-RPM run."""

    spline: ThinPlateSpline
    correspondence: np.ndarray
    temperatures: np.ndarray
    transformed: np.ndarray
    transform: AffineTransform
    assignment: Optional[np.ndarray] = None

    def __call__(self, points: np.ndarray) -> np.ndarray:
        """Evaluate the fitted deformation at arbitrary points."""
        return self.spline(points)


class TPSRPMAligner:
    """
    Non-rigid alignment by thin-plate-spline robust point matching.

    ``run`` returns the fitted deformation; ``align`` returns its best affine
    approximation so that it fits the transform-file workflow.
    """

    def __init__(self, config: Optional[TPSRPMConfig] = None, executor: Optional[ParallelExecutor] = None):
        self.config = config or TPSRPMConfig()
        self.executor = executor

    def align(self, moving: np.ndarray, stationary: np.ndarray) -> AffineTransform:
        return self.run(moving, stationary).transform

    def run(self, moving: np.ndarray, stationary: np.ndarray) -> TPSRPMResult:
        """
        Anneal the soft correspondence and fit the spline deformation.

        Args:
            moving: Nx3 array (N >= 3)
            stationary: Mx3 array (M >= 3)

        Returns:
            TPSRPMResult

        Raises:
            PreconditionError: If a cloud is too small, all points coincide or
                the spline fit is singular
        """
        cfg = self.config
        mov = validate_point_set(moving, name="moving", min_points=3)
        sta = validate_point_set(stationary, name="stationary", min_points=3)
        executor = self.executor or ParallelExecutor()

        start_time = time.time()
        t_start, t_end = annealing_bounds(mov, sta, executor, cfg.min_temperature_ratio)
        temperatures = annealing_schedule(t_start, t_end, cfg.temperature_step)
        logger.info(
            "Starting TPS-RPM with %d moving and %d stationary points: %d temperatures from %.6g to %.6g",
            len(mov),
            len(sta),
            len(temperatures),
            t_start,
            t_end,
        )

        moving_centroid = centroid(mov)
        stationary_centroid = centroid(sta)
        spline = ThinPlateSpline(mov, kernel=cfg.kernel)
        transformed = mov.copy()
        corr = None

        for temperature in temperatures:
            logger.debug("Annealing temperature %.6g", temperature)
            for _ in range(cfg.iterations_per_temperature):
                corr = correspondence_matrix(
                    transformed,
                    sta,
                    temperature,
                    t_start,
                    moving_centroid,
                    stationary_centroid,
                    executor,
                )
                corr = normalize_correspondence(corr, cfg.normalization_iterations)
                targets = weighted_targets(corr, sta, transformed)

                spline.fit(
                    targets,
                    bending_weight=temperature * cfg.lambda_start,
                    affine_weight=temperature * cfg.lambda_affine,
                )
                transformed = spline(mov)

        assignment = None
        final_temperature = float(temperatures[-1])
        for sharpening_pass in range(cfg.sharpening_iterations):
            current = hard_assignment(transformed, sta)
            if assignment is not None and np.array_equal(current, assignment):
                logger.debug("Assignment stable after %d sharpening passes", sharpening_pass)
                break
            assignment = current
            spline.fit(
                assigned_targets(assignment, sta, transformed),
                bending_weight=final_temperature * cfg.lambda_start,
                affine_weight=final_temperature * cfg.lambda_affine,
            )
            transformed = spline(mov)

        transform = fit_affine(mov, transformed)
        logger.info("TPS-RPM finished in %.4f s", time.time() - start_time)

        return TPSRPMResult(
            spline=spline,
            correspondence=corr,
            temperatures=temperatures,
            transformed=transformed,
            transform=transform,
            assignment=assignment,
        )
