"""
Spatial Alignment Module

This module provides tools for aligning 3D point clouds with rigid and
non-rigid methods:
- centroid and PCA coarse alignment (coarse_registration.py)
- exhaustive ICP (fine_registration.py)
- TPS-RPM deterministic annealing (nonrigid_registration.py)
- transform file persistence (transform_io.py)
"""

from .affine_transform import AffineTransform
from .coarse_registration import CentroidAligner, PCAAligner, PrincipalComponents, principal_components
from .fine_registration import ICPAligner, ICPResult
from .nonrigid_registration import TPSRPMAligner, TPSRPMResult
from .methods import AlignmentMethod, create_aligner
from .align_points import AlignmentOutcome, align_points
from .transform_io import (
    save_transform_matrix,
    load_transform_matrix,
    read_transform,
    write_transform,
    save_unique_transform_matrix,
)

__all__ = [
    "AffineTransform",
    "CentroidAligner",
    "PCAAligner",
    "PrincipalComponents",
    "principal_components",
    "ICPAligner",
    "ICPResult",
    "TPSRPMAligner",
    "TPSRPMResult",
    "AlignmentMethod",
    "create_aligner",
    "AlignmentOutcome",
    "align_points",
    "save_transform_matrix",
    "load_transform_matrix",
    "read_transform",
    "write_transform",
    "save_unique_transform_matrix",
]
