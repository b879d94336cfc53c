"""
Acceleration Module

This module provides the performance infrastructure used by the aligners:
- Block-wise parallel map over point indices (parallel_executor.py)
- JIT-compiled exhaustive search kernels (jit_kernels.py)
"""

from .parallel_executor import ParallelExecutor
from .jit_kernels import (
    nearest_neighbor_jit,
    max_sq_distance_jit,
    apply_transform_jit,
    compute_distances_jit,
)

__all__ = [
    # Parallel processing
    "ParallelExecutor",
    # JIT kernels
    "nearest_neighbor_jit",
    "max_sq_distance_jit",
    "apply_transform_jit",
    "compute_distances_jit",
]
