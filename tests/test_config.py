"""Tests for configuration loading and validation."""

import pytest

from point_alignment.utils.config import AppConfig, TPSRPMConfig, load_config


def test_default_config_matches_model_defaults():
    """The shipped default.yaml should agree with the model defaults."""
    cfg = load_config(None)  # Load default.yaml

    assert cfg == AppConfig()


def test_alignment_defaults():
    cfg = AppConfig()

    assert cfg.alignment.method == "centroid"
    assert cfg.alignment.max_iterations == 100
    # Relative tolerance stop is disabled unless configured
    assert cfg.alignment.relative_tolerance is None
    assert cfg.alignment.output_path is None
    assert cfg.alignment.icp.seed_method == "pca"


def test_tps_rpm_defaults():
    tps = TPSRPMConfig()

    assert tps.temperature_step == 0.93
    assert tps.iterations_per_temperature == 5
    assert tps.normalization_iterations == 10
    assert tps.lambda_start == 1.0
    assert tps.lambda_affine == 0.01
    assert tps.kernel == "thin_plate_spline"
    assert tps.sharpening_iterations == 10


def test_load_partial_yaml(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text(
        "alignment:\n"
        "  method: exhaustive_icp\n"
        "  max_iterations: 25\n"
        "  relative_tolerance: 1.0e-6\n"
        "  icp:\n"
        "    seed_method: centroid\n"
        "parallel:\n"
        "  n_workers: 2\n"
        "logging:\n"
        "  level: DEBUG\n"
    )

    cfg = load_config(path)

    assert cfg.alignment.method == "exhaustive_icp"
    assert cfg.alignment.max_iterations == 25
    assert cfg.alignment.relative_tolerance == 1e-6
    assert cfg.alignment.icp.seed_method == "centroid"
    assert cfg.parallel.n_workers == 2
    assert cfg.parallel.block_size == 256
    assert cfg.logging.level == "DEBUG"
    # Untouched sections keep their defaults
    assert cfg.alignment.tps_rpm == TPSRPMConfig()


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")

    assert load_config(path) == AppConfig()


@pytest.mark.parametrize(
    "content",
    [
        "alignment:\n  max_iterations: 0\n",
        "alignment:\n  tps_rpm:\n    temperature_step: 1.5\n",
        "alignment:\n  icp:\n    seed_method: random\n",
        "logging:\n  level: VERBOSE\n",
    ],
)
def test_invalid_values_raise_value_error(tmp_path, content):
    path = tmp_path / "bad.yaml"
    path.write_text(content)

    with pytest.raises(ValueError) as excinfo:
        load_config(path)
    assert str(path) in str(excinfo.value)


def test_missing_file(tmp_path):
    missing = tmp_path / "nope.yaml"

    assert load_config(missing) == AppConfig()
    with pytest.raises(FileNotFoundError):
        load_config(missing, allow_missing=False)
