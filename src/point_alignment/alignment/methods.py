"""
Alignment method selection.

The method is parsed once at the boundary into an AlignmentMethod and turned
into an aligner object; every aligner exposes ``align(moving, stationary)``
returning an AffineTransform.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from ..acceleration.parallel_executor import ParallelExecutor
from ..exceptions import InvalidArgumentError
from ..utils.config import AlignmentConfig
from .coarse_registration import CentroidAligner, PCAAligner
from .fine_registration import ICPAligner
from .nonrigid_registration import TPSRPMAligner


class AlignmentMethod(str, Enum):
    CENTROID = "centroid"
    PCA = "pca"
    EXHAUSTIVE_ICP = "exhaustive_icp"
    TPS_RPM = "tps_rpm"

    @classmethod
    def parse(cls, value: Union[str, "AlignmentMethod"]) -> "AlignmentMethod":
        """
        Resolve a method name, case-insensitively.

        Accepted spellings: ``c``/``cent``/``centroid``, ``p``/``pca``,
        ``e``/``exhaustive-icp``/``exhaustive_icp``/``exhaustiveicp``,
        ``t``/``tps``/``tps_rpm``/``tps-rpm``.

        Raises:
            InvalidArgumentError: If the name matches no method
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        try:
            return _ALIASES[key]
        except KeyError:
            raise InvalidArgumentError(
                f"Unknown alignment method '{value}'. Expected one of: "
                + ", ".join(m.value for m in cls)
            ) from None


_ALIASES = {
    "c": AlignmentMethod.CENTROID,
    "cent": AlignmentMethod.CENTROID,
    "centroid": AlignmentMethod.CENTROID,
    "p": AlignmentMethod.PCA,
    "pca": AlignmentMethod.PCA,
    "e": AlignmentMethod.EXHAUSTIVE_ICP,
    "exhaustive-icp": AlignmentMethod.EXHAUSTIVE_ICP,
    "exhaustive_icp": AlignmentMethod.EXHAUSTIVE_ICP,
    "exhaustiveicp": AlignmentMethod.EXHAUSTIVE_ICP,
    "t": AlignmentMethod.TPS_RPM,
    "tps": AlignmentMethod.TPS_RPM,
    "tps_rpm": AlignmentMethod.TPS_RPM,
    "tps-rpm": AlignmentMethod.TPS_RPM,
}


def create_aligner(
    method: Union[str, AlignmentMethod],
    config: Optional[AlignmentConfig] = None,
    executor: Optional[ParallelExecutor] = None,
):
    """
    Build the aligner for a method.

    Iteration count and tolerance only reach ICP; the other methods ignore them.
    """
    config = config or AlignmentConfig()
    method = AlignmentMethod.parse(method)

    if method is AlignmentMethod.CENTROID:
        return CentroidAligner()
    if method is AlignmentMethod.PCA:
        return PCAAligner()
    if method is AlignmentMethod.EXHAUSTIVE_ICP:
        return ICPAligner(
            max_iterations=config.max_iterations,
            relative_tolerance=config.relative_tolerance,
            seed_method=config.icp.seed_method,
            executor=executor,
        )
    return TPSRPMAligner(config=config.tps_rpm, executor=executor)
