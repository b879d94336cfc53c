"""
Tests for the align_points operation.

Covers reference selection, in-place application of the transform and the
transform files written per moving cloud.
"""

import tempfile

import numpy as np
import pytest

from point_alignment.alignment import align_points, load_transform_matrix
from point_alignment.alignment.point_set import centroid
from point_alignment.exceptions import InvalidArgumentError, TransformIOError
from point_alignment.utils.config import AlignmentConfig


def _make_cloud(n: int = 100, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.exponential(size=(n, 3)) * np.array([10.0, 4.0, 1.0])


def test_moving_cloud_is_aligned_in_place(tmp_path):
    reference = _make_cloud()
    moving = reference - np.array([1.0, 2.0, 3.0])
    original = moving.copy()

    outcomes = align_points([moving], [reference], AlignmentConfig(method="centroid"), tmp_path / "out.trans")

    assert len(outcomes) == 1
    np.testing.assert_allclose(centroid(moving), centroid(reference), atol=1e-9)
    np.testing.assert_allclose(outcomes[0].transform.apply(original), moving, atol=1e-12)


def test_transform_file_is_written(tmp_path):
    reference = _make_cloud(seed=1)
    moving = reference + 5.0

    outcomes = align_points([moving], [reference], AlignmentConfig(method="pca"), tmp_path / "scan.trans")

    assert outcomes[0].path == tmp_path / "scan.trans"
    assert load_transform_matrix(outcomes[0].path).allclose(outcomes[0].transform, atol=1e-9)


def test_output_path_from_config(tmp_path):
    reference = _make_cloud(seed=2)
    cfg = AlignmentConfig(method="c", output_path=str(tmp_path / "from_config.trans"))

    outcomes = align_points([reference + 1.0], [reference], cfg)

    assert outcomes[0].path == tmp_path / "from_config.trans"
    assert outcomes[0].path.exists()


def test_several_moving_clouds_get_indexed_files(tmp_path):
    reference = _make_cloud(seed=3)
    moving = [reference + 1.0, reference - 2.0, reference * 1.0]

    outcomes = align_points(moving, [reference], AlignmentConfig(method="centroid"), tmp_path / "batch.trans")

    assert [o.path.name for o in outcomes] == ["batch_0.trans", "batch_1.trans", "batch_2.trans"]
    for cloud in moving:
        np.testing.assert_allclose(centroid(cloud), centroid(reference), atol=1e-9)
    np.testing.assert_allclose(outcomes[1].transform.translation, [2.0, 2.0, 2.0], atol=1e-9)


def test_auto_generated_names_are_unique(monkeypatch, tmp_path):
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    reference = _make_cloud(seed=4)

    outcomes = align_points([reference + 1.0, reference + 2.0], [reference])

    names = sorted(o.path.name for o in outcomes)
    assert names == ["point_alignment_000000.trans", "point_alignment_000001.trans"]
    assert all(o.path.parent == tmp_path for o in outcomes)


def test_icp_method(tmp_path):
    reference = _make_cloud(seed=5)
    th = np.deg2rad(90.0)
    R = np.array([[np.cos(th), -np.sin(th), 0.0], [np.sin(th), np.cos(th), 0.0], [0.0, 0.0, 1.0]])
    moving = (reference - np.array([5.0, 0.0, 0.0])) @ R

    cfg = AlignmentConfig(method="exhaustive_icp", max_iterations=20)
    align_points([moving], [reference], cfg, tmp_path / "icp.trans")

    np.testing.assert_allclose(moving, reference, atol=1e-6)


@pytest.mark.parametrize("n_references", [0, 2])
def test_reference_must_be_unique(tmp_path, n_references):
    references = [_make_cloud(seed=i) for i in range(n_references)]
    with pytest.raises(InvalidArgumentError):
        align_points([_make_cloud()], references, output_path=tmp_path / "x.trans")


def test_single_array_reference_is_accepted(tmp_path):
    reference = _make_cloud(seed=6)
    moving = reference + 1.0

    align_points(moving, reference, output_path=tmp_path / "x.trans")

    np.testing.assert_allclose(moving, reference, atol=1e-9)


def test_moving_cloud_must_be_writeable_float64(tmp_path):
    reference = _make_cloud(seed=7)
    readonly = reference.copy()
    readonly.setflags(write=False)

    with pytest.raises(InvalidArgumentError):
        align_points([readonly], [reference], output_path=tmp_path / "x.trans")
    with pytest.raises(InvalidArgumentError):
        align_points([reference.astype(np.float32)], [reference], output_path=tmp_path / "x.trans")


def test_unknown_method_rejected(tmp_path):
    reference = _make_cloud(seed=8)
    with pytest.raises(InvalidArgumentError):
        align_points([reference.copy()], [reference], AlignmentConfig(method="affine"), tmp_path / "x.trans")


def test_write_failure_keeps_applied_transform(tmp_path):
    reference = _make_cloud(seed=9)
    moving = reference + 3.0

    with pytest.raises(TransformIOError):
        align_points([moving], [reference], output_path=tmp_path / "missing_dir" / "x.trans")

    # The cloud stays aligned even though the save failed
    np.testing.assert_allclose(centroid(moving), centroid(reference), atol=1e-9)
