"""
Point alignment operation

Aligns one or more moving point clouds against a single reference cloud, applies
each transform to its moving cloud in place and persists it to a transform file.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np

from ..acceleration.parallel_executor import ParallelExecutor
from ..exceptions import InvalidArgumentError
from ..utils.config import AlignmentConfig
from ..utils.logging import setup_logger
from .affine_transform import AffineTransform
from .methods import AlignmentMethod, create_aligner
from .point_set import validate_point_set
from .transform_io import save_transform_matrix, save_unique_transform_matrix

logger = setup_logger(__name__)


@dataclass
class AlignmentOutcome:
    """Transform applied to one moving cloud and the file it was written to."""

    transform: AffineTransform
    path: Path


def _output_paths(output_path: Optional[Union[str, Path]], n_moving: int) -> List[Optional[Path]]:
    if output_path is None:
        # Auto-generated names are claimed when each file is created
        return [None] * n_moving
    base = Path(output_path)
    if n_moving == 1:
        return [base]
    return [base.with_name(f"{base.stem}_{i}{base.suffix}") for i in range(n_moving)]


def align_points(
    moving_clouds: Sequence[np.ndarray],
    reference_clouds: Sequence[np.ndarray],
    config: Optional[AlignmentConfig] = None,
    output_path: Optional[Union[str, Path]] = None,
    executor: Optional[ParallelExecutor] = None,
) -> List[AlignmentOutcome]:
    """
    Align every moving cloud to the reference cloud.

    Each moving cloud is aligned independently, transformed in place, and then
    its transform is saved. A failed save raises TransformIOError but leaves the
    already transformed cloud as it is.

    Args:
        moving_clouds: Writeable float64 (N, 3) arrays, mutated in place
        reference_clouds: Reference selection; must hold exactly one cloud
        config: Alignment configuration (method, iterations, tolerance, output path)
        output_path: Transform file name, overriding ``config.output_path``. With
            several moving clouds, ``<stem>_<index><suffix>`` is written per cloud.
            An auto-generated unique name is used when neither is given.
        executor: Parallel executor shared by the aligners

    Returns:
        One AlignmentOutcome per moving cloud, in input order

    Raises:
        InvalidArgumentError: If the reference selection is not exactly one cloud,
            no moving cloud is given, or a moving cloud cannot be updated in place
    """
    config = config or AlignmentConfig()
    method = AlignmentMethod.parse(config.method)

    if isinstance(reference_clouds, np.ndarray) and reference_clouds.ndim == 2:
        reference_clouds = [reference_clouds]
    references = list(reference_clouds)
    if len(references) != 1:
        raise InvalidArgumentError(
            f"Exactly one reference point cloud is required, got {len(references)}"
        )
    reference = validate_point_set(references[0], name="reference")

    if isinstance(moving_clouds, np.ndarray) and moving_clouds.ndim == 2:
        moving_clouds = [moving_clouds]
    moving_list = list(moving_clouds)
    if not moving_list:
        raise InvalidArgumentError("At least one moving point cloud is required")
    for i, cloud in enumerate(moving_list):
        if not isinstance(cloud, np.ndarray) or cloud.dtype != np.float64 or not cloud.flags.writeable:
            raise InvalidArgumentError(
                f"Moving point cloud {i} must be a writeable float64 NumPy array to be aligned in place"
            )
        validate_point_set(cloud, name=f"moving #{i}")

    aligner = create_aligner(method, config, executor or ParallelExecutor())
    paths = _output_paths(output_path if output_path is not None else config.output_path, len(moving_list))

    outcomes = []
    for i, (cloud, path) in enumerate(zip(moving_list, paths)):
        logger.info(
            "Aligning moving cloud %d/%d (%d points) to reference (%d points) with method '%s'",
            i + 1,
            len(moving_list),
            len(cloud),
            len(reference),
            method.value,
        )
        start = time.time()
        transform = aligner.align(cloud, reference)
        transform.apply_to(cloud)
        logger.info("Alignment %d done in %.4f s: %r", i + 1, time.time() - start, transform)

        if path is None:
            written = save_unique_transform_matrix(transform)
        else:
            written = save_transform_matrix(transform, path)
        outcomes.append(AlignmentOutcome(transform=transform, path=written))

    return outcomes
