"""
Configuration management for point-alignment.

Provides a typed pydantic model and YAML loader with sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, Any, Dict

from pydantic import BaseModel, Field, ValidationError
import yaml


# -----------------------
# Typed config structures
# -----------------------


class ICPConfig(BaseModel):
    seed_method: Literal["pca", "centroid"] = Field(
        default="pca",
        description="Coarse aligner used to seed the first correspondence search",
    )


class TPSRPMConfig(BaseModel):
    temperature_step: float = Field(
        default=0.93,
        gt=0.0,
        lt=1.0,
        description="Geometric decay factor applied to the annealing temperature (usually 0.90-0.99)",
    )
    iterations_per_temperature: int = Field(default=5, ge=1)
    normalization_iterations: int = Field(
        default=10,
        ge=1,
        description="Alternating row/column normalization passes per correspondence update",
    )
    lambda_start: float = Field(
        default=1.0,
        ge=0.0,
        description="Spline bending weight per unit temperature",
    )
    lambda_affine: float = Field(
        default=0.01,
        ge=0.0,
        description="Weight per unit temperature pulling the affine part of the spline towards the identity",
    )
    kernel: Literal["thin_plate_spline", "linear", "cubic"] = Field(default="thin_plate_spline")
    min_temperature_ratio: float = Field(
        default=1e-6,
        gt=0.0,
        lt=1.0,
        description="Floor for the end temperature relative to the start temperature",
    )
    sharpening_iterations: int = Field(
        default=10,
        ge=0,
        description="Maximum hard-assignment refits after annealing (0 disables the sharpening stage)",
    )


class AlignmentConfig(BaseModel):
    method: str = Field(
        default="centroid",
        description="centroid | pca | exhaustive_icp | tps_rpm (short aliases such as 'c' or 'e' accepted)",
    )
    max_iterations: int = Field(default=100, gt=0, description="Ignored by non-iterative methods")
    relative_tolerance: Optional[float] = Field(
        default=None,
        description="Relative cost change stopping ICP early; None, NaN or negative disables it",
    )
    output_path: Optional[str] = Field(
        default=None,
        description="Transform file name (auto-generated unique name if None)",
    )
    icp: ICPConfig = Field(default_factory=ICPConfig)
    tps_rpm: TPSRPMConfig = Field(default_factory=TPSRPMConfig)


class ParallelConfig(BaseModel):
    n_workers: Optional[int] = Field(default=None, description="Worker threads (None = auto-detect: cpu_count)")
    block_size: int = Field(default=256, ge=1, description="Points per correspondence-search task")


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class AppConfig(BaseModel):
    alignment: AlignmentConfig = Field(default_factory=AlignmentConfig)
    parallel: ParallelConfig = Field(default_factory=ParallelConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/point_alignment/utils/config.py
    parents sequence:
      0 -> .../src/point_alignment/utils
      1 -> .../src/point_alignment
      2 -> .../src
      3 -> repo_root
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        # Re-raise with context to help users fix the YAML
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}")
