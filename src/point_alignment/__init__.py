"""
Point Alignment Package

A Python package for aligning 3D point clouds. It provides closed-form coarse
alignment (centroid, PCA), an exhaustive ICP implemented from scratch for
fine-grained control of rigid alignment, and a TPS-RPM scheme for non-rigid
alignment. Transforms are persisted as plain-text 4x4 affine matrices.
"""

__version__ = "0.1.0"

from .alignment import *
from .exceptions import *
from .utils import *

__all__ = [
    "alignment",
    "acceleration",
    "exceptions",
    "utils",
]
