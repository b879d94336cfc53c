"""
Utility Functions Module

This module provides common utility functions used across the point alignment project.
- Logging setup
- Typed configuration loading
"""

from .logging import setup_logger, set_package_level
from .config import (
    AppConfig,
    AlignmentConfig,
    ICPConfig,
    TPSRPMConfig,
    ParallelConfig,
    LoggingConfig,
    load_config,
)

__all__ = [
    "setup_logger",
    "set_package_level",
    "AppConfig",
    "AlignmentConfig",
    "ICPConfig",
    "TPSRPMConfig",
    "ParallelConfig",
    "LoggingConfig",
    "load_config",
]
