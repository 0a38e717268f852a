from __future__ import annotations

import json
from datetime import datetime

import numpy as np
import pandas as pd
import pytest
import yaml

from precip_kriging.config import DEFAULT_CONFIG, load_config, save_config
from precip_kriging.errors import InsufficientDataError, InvalidParameterError
from precip_kriging.reporting import create_run_dir, write_manifest
from precip_kriging.run import main
from precip_kriging.samples import PredictionGrid, SampleSet, deduplicate_samples
from precip_kriging.steps import lag_parameters, run_pipeline
from precip_kriging.trending import coordinate_covariates, fit_trend, trend_residuals
from precip_kriging.validation import compute_cv_metrics, kriging_cross_validation
from precip_kriging.variography import VariogramModel


def _precip_frame(n: int = 40, seed: int = 5) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    x = rng.uniform(0.0, 100.0, size=n)
    y = rng.uniform(0.0, 100.0, size=n)
    pp = 50.0 + 0.1 * x + 0.05 * y + 5.0 * np.sin(x / 30.0) + rng.normal(scale=0.5, size=n)
    return pd.DataFrame({"este": x, "norte": y, "pp": pp})


def _write_config(tmp_path, **overrides) -> str:
    data_path = tmp_path / "precip.csv"
    _precip_frame().to_csv(data_path, sep=";", index=False)
    cfg = {
        "data": {"path": str(data_path), "x_col": "este", "y_col": "norte", "value_col": "pp"},
        "grid": {"dx": 20.0, "dy": 20.0},
        "validation": {"cv": "kfold", "kfold_splits": 3},
        "outputs": {"base_dir": str(tmp_path / "outputs")},
    }
    for section, values in overrides.items():
        cfg.setdefault(section, {}).update(values)
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    return str(path)


def test_sample_set_validation_and_read_only():
    samples = SampleSet([[0.0, 0.0], [1.0, 1.0]], [1.0, 2.0])
    with pytest.raises(ValueError):
        samples.values[0] = 5.0
    with pytest.raises(InvalidParameterError):
        SampleSet([[0.0, 0.0]], [1.0, 2.0])
    with pytest.raises(InvalidParameterError):
        SampleSet([[0.0, np.nan]], [1.0])
    with pytest.raises(InvalidParameterError):
        SampleSet([0.0, 1.0, 2.0], [1.0, 2.0, 3.0])


def test_prediction_grid_rejects_non_finite_targets():
    with pytest.raises(InvalidParameterError):
        PredictionGrid([[0.0, 0.0], [np.nan, 1.0]])
    with pytest.raises(InvalidParameterError):
        PredictionGrid([[0.0, 0.0], [1.0, 1.0]], covariates=[[0.0, 0.0], [np.inf, 1.0]])
    grid = PredictionGrid([[0.0, 0.0], [1.0, 1.0]], covariates=[0.5, 1.5])
    assert grid.covariates.shape == (2, 1)


def test_deduplicate_mean_and_first():
    samples = SampleSet([[0.0, 0.0], [5.0, 5.0], [0.0, 0.0]], [10.0, 7.0, 20.0])

    averaged = deduplicate_samples(samples, strategy="mean")
    assert len(averaged) == 2
    assert averaged.n_distinct_positions() == 2
    assert sorted(averaged.values.tolist()) == [7.0, 15.0]

    first = deduplicate_samples(samples, strategy="first")
    np.testing.assert_allclose(first.values, [10.0, 7.0])

    with pytest.raises(InvalidParameterError):
        deduplicate_samples(samples, strategy="median")


def test_trend_fit_and_residuals():
    df = _precip_frame()
    samples = SampleSet.from_frame(df, "este", "norte", "pp")
    cov = coordinate_covariates(samples.coords)

    model, r2 = fit_trend(samples, cov)
    assert model.n_terms == 3
    assert 0.0 <= r2 <= 1.0

    residuals, _, _ = trend_residuals(samples, cov)
    assert abs(float(residuals.values.mean())) < 1e-8
    np.testing.assert_allclose(model.predict(cov) + residuals.values, samples.values)

    with pytest.raises(InsufficientDataError):
        fit_trend(samples.subset(slice(0, 2)), cov[:2])


def test_lag_parameter_defaults():
    samples = SampleSet([[0.0, 0.0], [30.0, 40.0]], [1.0, 2.0])
    cutoff, width = lag_parameters(samples, {"cutoff": None, "bin_width": None, "n_lags": 10})
    assert cutoff == pytest.approx(50.0 / 3.0)
    assert width == pytest.approx(cutoff / 10)
    assert lag_parameters(samples, {"cutoff": 20.0, "bin_width": 4.0}) == (20.0, 4.0)


def test_cv_metrics_hand_computed():
    df = pd.DataFrame({"value": [1.0, 2.0, 4.0], "estimate": [1.0, 2.0, 3.0], "variance": [1.0, 1.0, 0.5]})
    metrics = compute_cv_metrics(df, vcol="value")
    assert metrics["ME"] == pytest.approx(-1.0 / 3.0)
    assert metrics["MSE"] == pytest.approx(1.0 / 3.0)
    assert metrics["RMSE"] == pytest.approx(np.sqrt(1.0 / 3.0))
    assert metrics["MSDR"] == pytest.approx(2.0 / 3.0)
    assert metrics["slope"] == pytest.approx(1.5)


@pytest.mark.parametrize("method", ["loo", "kfold"])
def test_kriging_cross_validation(method):
    samples = SampleSet.from_frame(_precip_frame(), "este", "norte", "pp")
    model = VariogramModel("spherical", nugget=0.2, psill=10.0, range=60.0)

    result = kriging_cross_validation(samples, model, method=method, n_splits=4)

    assert len(result.data) == len(samples)
    assert list(result.data.index) == list(range(len(samples)))
    assert {"estimate", "variance", "fold", "error"} <= set(result.data.columns)
    assert np.all(result.data["variance"] >= 0)
    assert np.isfinite(result.metrics["RMSE"])
    if method == "loo":
        assert result.metrics["RMSE"] < float(np.std(samples.values))
    else:
        assert result.data["fold"].nunique() == 4


def test_cross_validation_rejects_unknown_method():
    samples = SampleSet.from_frame(_precip_frame(), "este", "norte", "pp")
    with pytest.raises(InvalidParameterError):
        kriging_cross_validation(samples, VariogramModel(), method="holdout")


def test_config_defaults_and_round_trip(tmp_path):
    path = tmp_path / "cfg.yml"
    path.write_text("variography:\n  family: exponential\n", encoding="utf-8")
    cfg = load_config(path)
    assert cfg["variography"]["family"] == "exponential"
    assert cfg["kriging"] == DEFAULT_CONFIG["kriging"]

    out = tmp_path / "nested" / "saved.yml"
    save_config(cfg, out)
    assert load_config(out) == cfg


@pytest.mark.parametrize(
    "text,error",
    [
        ("kriging:\n  condition_max: high\n", TypeError),
        ("validation:\n  kfold_splits: true\n", TypeError),
        ("variography: 3\n", TypeError),
        ("variography:\n  family: cubic\n", ValueError),
        ("variography:\n  cutoff: -1\n", ValueError),
        ("kriging:\n  trend: quadratic\n", ValueError),
        ("grid:\n  auto_from_data: false\n", ValueError),
        ("- a\n- b\n", TypeError),
    ],
)
def test_config_schema_errors(tmp_path, text, error):
    path = tmp_path / "bad.yml"
    path.write_text(text, encoding="utf-8")
    with pytest.raises(error):
        load_config(path)


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yml")


def test_pipeline_end_to_end(tmp_path):
    run_paths = run_pipeline(_write_config(tmp_path))

    for name in (
        "trend_summary.csv",
        "empirical_variogram.csv",
        "kriging_estimates.csv",
        "validation_predictions.csv",
        "validation_metrics.csv",
    ):
        assert run_paths.table_path(name).exists(), name
    assert run_paths.figure_path("variogram.png").exists()
    assert (run_paths.base / "manifest.yaml").exists()

    model = json.loads(run_paths.model_path("variogram_model.json").read_text(encoding="utf-8"))
    assert model["family"] == "spherical"
    assert model["range"] > 0

    estimates = pd.read_csv(run_paths.table_path("kriging_estimates.csv"))
    assert list(estimates.columns) == ["x", "y", "estimate", "variance"]
    assert (estimates["variance"] >= 0).all()

    manifest = json.loads((run_paths.base / "manifest.json").read_text(encoding="utf-8"))
    grid_spec = manifest["grid"]
    assert len(estimates) == grid_spec["nx"] * grid_spec["ny"]
    assert manifest["variogram_model"]["family"] == "spherical"
    assert manifest["variogram_model"]["range"] == pytest.approx(model["range"])
    assert "RMSE" in manifest["metrics"]["validation"]["metrics"]
    assert manifest["input"]["samples"] == 40
    assert manifest["config"]["data"]["value_col"] == "pp"
    assert "numpy" in manifest["environment"]["libraries"]


def test_run_dirs_do_not_collide(tmp_path):
    stamp = datetime(2024, 3, 1, 9, 30)
    first = create_run_dir(tmp_path, prefix="lluvia", timestamp=stamp)
    second = create_run_dir(tmp_path, prefix="lluvia", timestamp=stamp)
    assert first.base.name == "lluvia_20240301_0930"
    assert second.base.name == "lluvia_20240301_0930_01"
    assert all(path.is_dir() for path in (second.figures, second.tables, second.models, second.logs))


def test_manifest_sections(tmp_path):
    run_paths = create_run_dir(tmp_path)
    json_path, yaml_path = write_manifest(
        run_paths,
        {"kriging": {"trend": "none"}},
        variogram=VariogramModel("exponential", 0.5, 2.0, 40.0).to_dict(),
        metrics={"validation": {"metrics": {"RMSE": np.float64(1.25), "MSDR": float("nan")}}},
        libraries=("numpy",),
    )
    manifest = json.loads(json_path.read_text(encoding="utf-8"))
    assert manifest["variogram_model"]["family"] == "exponential"
    assert manifest["grid"] is None
    assert manifest["metrics"]["validation"]["metrics"]["RMSE"] == 1.25
    assert yaml.safe_load(yaml_path.read_text(encoding="utf-8"))["variogram_model"]["range"] == 40.0


def test_pipeline_variography_stage_only(tmp_path):
    run_paths = run_pipeline(_write_config(tmp_path, kriging={"trend": "none"}), stage="variography")
    assert run_paths.table_path("empirical_variogram.csv").exists()
    assert not run_paths.table_path("kriging_estimates.csv").exists()
    assert not (run_paths.base / "manifest.json").exists()


def test_cli_dry_run(tmp_path, capsys):
    main(["--config", _write_config(tmp_path), "--dry-run"])
    assert "Config validation OK." in capsys.readouterr().out
