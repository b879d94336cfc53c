"""
Command line point cloud alignment

Aligns one or more moving point clouds to a reference cloud and writes one
transform file per moving cloud.

Example:
    python scripts/run_alignment.py --moving scan_b.xyz --reference scan_a.xyz \
        --method exhaustive_icp --max-iterations 50 --output b_to_a.trans
"""

import sys
import argparse
import logging
import time
import numpy as np
from pathlib import Path

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from point_alignment.acceleration import ParallelExecutor
from point_alignment.alignment import AlignmentMethod, align_points
from point_alignment.exceptions import AlignmentError
from point_alignment.utils.config import load_config, AppConfig
from point_alignment.utils.logging import setup_logger, set_package_level


def load_points(path: Path) -> np.ndarray:
    """Load an (N, 3) cloud from a .npy array or whitespace-delimited XYZ text (extra columns ignored)."""
    if path.suffix.lower() == ".npy":
        data = np.load(path)
    else:
        data = np.loadtxt(path, dtype=np.float64, comments="#", ndmin=2)
    return np.ascontiguousarray(data[:, :3], dtype=np.float64)


def save_points(points: np.ndarray, path: Path) -> None:
    np.savetxt(path, points, fmt="%.17g", delimiter=" ")


def main():
    """
    Main function to run the alignment.
    """
    parser = argparse.ArgumentParser(description="Point Cloud Alignment")
    parser.add_argument(
        "--moving",
        type=str,
        nargs="+",
        required=True,
        help="Moving point cloud file(s) (.npy or XYZ text). Each is aligned independently.",
    )
    parser.add_argument(
        "--reference",
        type=str,
        action="append",
        required=True,
        help="Reference (stationary) point cloud file. Exactly one must be given.",
    )
    parser.add_argument(
        "--method",
        type=str,
        default=None,
        help="centroid | pca | exhaustive_icp | tps_rpm (overrides alignment.method)",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Maximum ICP iterations (overrides alignment.max_iterations)",
    )
    parser.add_argument(
        "--relative-tolerance",
        type=float,
        default=None,
        help="Relative cost change stopping ICP early (overrides alignment.relative_tolerance)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Transform file to write. With several moving clouds an index is appended to the name.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file (defaults to config/default.yaml)",
    )
    parser.add_argument(
        "--save-aligned",
        action="store_true",
        help="Also write each aligned cloud next to its input as <stem>_aligned.xyz",
    )
    args = parser.parse_args()

    # Load configuration
    cfg: AppConfig = load_config(args.config)
    if args.method is not None:
        cfg.alignment.method = args.method
    if args.max_iterations is not None:
        cfg.alignment.max_iterations = args.max_iterations
    if args.relative_tolerance is not None:
        cfg.alignment.relative_tolerance = args.relative_tolerance
    if args.output is not None:
        cfg.alignment.output_path = args.output

    # Setup logging from config
    log_level = getattr(logging, cfg.logging.level.upper(), logging.INFO)
    logger = setup_logger(__name__, level=log_level, log_file=cfg.logging.file)
    set_package_level(log_level)

    logger.info("Point Cloud Alignment")
    logger.info("=====================")

    try:
        method = AlignmentMethod.parse(cfg.alignment.method)
        logger.info(f"Method: {method.value}")

        reference_paths = [Path(p) for p in args.reference]
        moving_paths = [Path(p) for p in args.moving]

        references = [load_points(p) for p in reference_paths]
        moving_clouds = []
        for path in moving_paths:
            cloud = load_points(path)
            logger.info(f"Loaded {len(cloud)} points from {path}")
            moving_clouds.append(cloud)

        executor = ParallelExecutor(
            n_workers=cfg.parallel.n_workers,
            block_size=cfg.parallel.block_size,
        )

        start = time.time()
        outcomes = align_points(moving_clouds, references, cfg.alignment, executor=executor)
        logger.info(f"Aligned {len(outcomes)} point cloud(s) in {time.time() - start:.2f}s")

        for path, cloud, outcome in zip(moving_paths, moving_clouds, outcomes):
            logger.info(f"{path.name}: transform written to {outcome.path}")
            if args.save_aligned:
                aligned_path = path.with_name(f"{path.stem}_aligned.xyz")
                save_points(cloud, aligned_path)
                logger.info(f"{path.name}: aligned points written to {aligned_path}")
    except (AlignmentError, OSError, ValueError) as e:
        logger.error(f"Alignment failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
