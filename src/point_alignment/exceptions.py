"""
Exception hierarchy for point cloud alignment.

Every error raised on purpose by this package derives from AlignmentError and
from the closest builtin, so callers catching ValueError/OSError keep working.
"""


class AlignmentError(Exception):
    """Base class for alignment failures."""


class InvalidArgumentError(AlignmentError, ValueError):
    """Unrecognized method, bad parameter value or ambiguous reference selection."""


class PreconditionError(AlignmentError, ValueError):
    """Input point clouds cannot support the requested computation."""


class TransformValidationError(AlignmentError, ValueError):
    """A deserialized transform is not a valid affine 4x4 matrix."""


class TransformIOError(AlignmentError, OSError):
    """A transform could not be written to or read from its stream."""


class NonAffineTransformError(AlignmentError, RuntimeError):
    """The projective coordinate was not exactly 1 after applying a transform."""
