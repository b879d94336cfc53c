"""
Transform file I/O

Reads and writes AffineTransform objects as plain text: four lines, each
holding one row of the 4x4 matrix as four whitespace-separated values. The
fourth line must be ``0 0 0 1`` (within AFFINE_TOLERANCE) or the file is rejected.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import IO, Optional, Union

import numpy as np

from ..exceptions import TransformIOError, TransformValidationError
from ..utils.logging import setup_logger
from .affine_transform import AFFINE_TOLERANCE, AffineTransform

logger = setup_logger(__name__)

# 17 significant digits (digits10 + 2 for float64) round-trip every double exactly
TRANSFORM_FORMAT = "%.17g"


def write_transform(transform: AffineTransform, stream: IO[str]) -> None:
    """Write a transform to an open text stream.

    Args:
        transform: Transform to serialize
        stream: Writable text stream

    Raises:
        TransformIOError: If the stream cannot be written
    """
    try:
        np.savetxt(stream, transform.matrix, fmt=TRANSFORM_FORMAT, delimiter=" ")
        stream.flush()
    except (OSError, ValueError) as e:
        raise TransformIOError(f"Unable to write transformation: {e}") from e


def read_transform(stream: IO[str]) -> AffineTransform:
    """Read and validate a transform from an open text stream.

    Lines starting with ``#`` are ignored.

    Returns:
        AffineTransform

    Raises:
        TransformValidationError: If the content is not a 4x4 numeric affine matrix
        TransformIOError: If the stream cannot be read
    """
    try:
        matrix = np.loadtxt(stream, dtype=np.float64, ndmin=2)
    except OSError as e:
        raise TransformIOError(f"Unable to read transformation: {e}") from e
    except ValueError as e:
        logger.warning("Unable to read transformation; malformed content (%s)", e)
        raise TransformValidationError(f"Malformed transformation: {e}") from e

    try:
        return AffineTransform.from_matrix(matrix, atol=AFFINE_TOLERANCE)
    except TransformValidationError as e:
        logger.warning("Unable to read transformation; not affine (%s)", e)
        raise


def _write_file(transform: AffineTransform, path: Path, mode: str) -> None:
    with path.open(mode, encoding="utf-8") as f:
        write_transform(transform, f)


def save_transform_matrix(transform: AffineTransform, output_file: Union[str, Path]) -> Path:
    """Save a transformation to a text file, overwriting any existing file.

    Args:
        transform: Transform to save
        output_file: Path to output file

    Returns:
        Path that was written

    Raises:
        TransformIOError: If the file cannot be opened or written
    """
    path = Path(output_file)
    try:
        _write_file(transform, path, "w")
    except OSError as e:
        if isinstance(e, TransformIOError):
            raise
        raise TransformIOError(f"Unable to write transformation to {path}: {e}") from e
    logger.info("Saved transformation matrix to %s", path)
    return path


def load_transform_matrix(input_file: Union[str, Path]) -> AffineTransform:
    """Load a transformation from a text file.

    Args:
        input_file: Path to input file

    Returns:
        AffineTransform

    Raises:
        TransformIOError: If the file cannot be opened
        TransformValidationError: If the file does not hold a valid affine matrix
    """
    path = Path(input_file)
    try:
        with path.open("r", encoding="utf-8") as f:
            transform = read_transform(f)
    except OSError as e:
        if isinstance(e, TransformIOError):
            raise
        raise TransformIOError(f"Unable to read transformation from {path}: {e}") from e
    logger.info("Loaded transformation matrix from %s", path)
    return transform


def save_unique_transform_matrix(
    transform: AffineTransform,
    prefix: str = "point_alignment_",
    digits: int = 6,
    suffix: str = ".trans",
    directory: Optional[Union[str, Path]] = None,
) -> Path:
    """Save a transformation under the first free sequentially numbered name.

    Names look like ``<directory>/<prefix>000000<suffix>``; the system temporary
    directory is used when ``directory`` is None. Each candidate is created
    exclusively, so concurrent callers never write to the same file.

    Returns:
        Path that was written

    Raises:
        TransformIOError: If a file cannot be created or written
    """
    base = Path(directory) if directory is not None else Path(tempfile.gettempdir())
    counter = 0
    while True:
        path = base / f"{prefix}{counter:0{digits}d}{suffix}"
        try:
            _write_file(transform, path, "x")
        except FileExistsError:
            counter += 1
            continue
        except OSError as e:
            if isinstance(e, TransformIOError):
                raise
            raise TransformIOError(f"Unable to write transformation to {path}: {e}") from e
        logger.info("Saved transformation matrix to %s", path)
        return path
