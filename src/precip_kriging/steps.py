from __future__ import annotations

import logging
from typing import Dict, Tuple

import numpy as np
import pandas as pd

from .config import load_config
from .errors import NonConvergenceError
from .grid import grid_from_extents, make_prediction_grid
from .io import load_samples
from .kriging import krige
from .reporting import RunPaths, create_run_dir, save_model, save_table, write_manifest
from .samples import SampleSet
from .trending import trend_covariates_for, trend_residuals
from .validation import kriging_cross_validation
from .variography import (
    EmpiricalVariogram,
    VariogramModel,
    estimate_empirical_variogram,
    fit_variogram_model,
    initial_guess_from_empirical,
    plot_variogram,
)

logger = logging.getLogger(__name__)

STAGES = ("variography", "kriging", "validation", "report")


def _setup_logging(run_paths: RunPaths) -> str:
    log_path = run_paths.log_path("pipeline.log")
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=[logging.FileHandler(log_path, encoding="utf-8"), logging.StreamHandler()],
    )
    return str(log_path)


def lag_parameters(samples: SampleSet, var_cfg: Dict[str, object]) -> Tuple[float, float]:
    """Cutoff and bin width, defaulting to a third of the bounding-box diagonal split in ``n_lags``."""
    cutoff = var_cfg.get("cutoff")
    if cutoff is None:
        span = np.ptp(samples.coords, axis=0) if len(samples) else np.zeros(2)
        cutoff = float(np.hypot(span[0], span[1])) / 3.0
    bin_width = var_cfg.get("bin_width")
    if bin_width is None:
        bin_width = float(cutoff) / int(var_cfg.get("n_lags", 15))
    return float(cutoff), float(bin_width)


def initial_model(empirical: EmpiricalVariogram, var_cfg: Dict[str, object]) -> VariogramModel:
    guess = initial_guess_from_empirical(empirical, family=str(var_cfg["family"]))
    params = guess.params()
    for key, value in var_cfg.get("initial", {}).items():
        if value is not None:
            params[key] = float(value)
    return VariogramModel(family=guess.family, **params)


def _variogram_samples(samples: SampleSet, config: Dict[str, object]) -> Tuple[SampleSet, Dict[str, object]]:
    trend = config["kriging"]["trend"]
    covariates = trend_covariates_for(samples.coords, trend)
    if covariates is None:
        return samples, {"trend": trend}
    residuals, trend_model, r2 = trend_residuals(samples, covariates)
    info = {"trend": trend, "r2": r2, **{f"coef_{i}": float(c) for i, c in enumerate(trend_model.coef)}}
    logger.info("Tendencia %s: R2=%.3f", trend, r2)
    return residuals, info


def run_variography(
    samples: SampleSet,
    config: Dict[str, object],
    run_paths: RunPaths,
) -> Tuple[VariogramModel, Dict[str, object]]:
    var_cfg = config["variography"]
    vario_samples, trend_info = _variogram_samples(samples, config)
    save_table(pd.DataFrame([trend_info]), run_paths, "trend_summary.csv", index=False)

    cutoff, bin_width = lag_parameters(vario_samples, var_cfg)
    empirical = estimate_empirical_variogram(vario_samples, cutoff=cutoff, bin_width=bin_width)
    guess = initial_model(empirical, var_cfg)
    try:
        model = fit_variogram_model(
            empirical,
            guess,
            free_mask=var_cfg["fit"],
            max_iter=int(var_cfg["max_iter"]),
            tolerance=float(var_cfg["tolerance"]),
            max_relative_residual=var_cfg["max_relative_residual"],
        )
        fitted = True
    except NonConvergenceError as err:
        logger.warning("Ajuste de variograma sin convergencia (%s); se usa el modelo inicial.", err)
        model = guess
        fitted = False

    save_table(empirical.to_frame(model), run_paths, "empirical_variogram.csv", index=False)
    save_model({**model.to_dict(), "fitted": fitted, "cutoff": cutoff, "bin_width": bin_width}, run_paths, "variogram_model.json")
    plot_variogram(empirical, model, str(run_paths.figure_path("variogram.png")))
    return model, {
        "model": model.to_dict(),
        "fitted": fitted,
        "bins": len(empirical),
        "pairs": empirical.total_pairs,
        "trend": trend_info,
    }


def _grid_spec(samples: SampleSet, config: Dict[str, object]) -> Dict[str, float]:
    grid_cfg = config["grid"]
    if grid_cfg["auto_from_data"]:
        return grid_from_extents(samples, float(grid_cfg["dx"]), float(grid_cfg["dy"]), pad=float(grid_cfg["pad"]))
    return {
        "xmin": float(grid_cfg["xmin"]),
        "ymin": float(grid_cfg["ymin"]),
        "nx": int(grid_cfg["nx"]),
        "ny": int(grid_cfg["ny"]),
        "dx": float(grid_cfg["dx"]),
        "dy": float(grid_cfg["dy"]),
    }


def run_kriging(
    samples: SampleSet,
    model: VariogramModel,
    config: Dict[str, object],
    run_paths: RunPaths,
) -> Dict[str, object]:
    krig_cfg = config["kriging"]
    trend = krig_cfg["trend"]
    spec = _grid_spec(samples, config)
    grid = make_prediction_grid(spec, trend=trend)
    result = krige(
        samples,
        trend_covariates_for(samples.coords, trend),
        grid,
        model,
        condition_max=float(krig_cfg["condition_max"]),
        chunk_size=int(krig_cfg["chunk_size"]),
    )
    out = result.to_frame(grid)
    save_table(out, run_paths, "kriging_estimates.csv", index=False)
    return {
        "grid_spec": spec,
        "rows": int(len(out)),
        "condition": result.condition,
        "estimate_mean": float(np.mean(result.estimate)) if len(result) else float("nan"),
    }


def run_validation(
    samples: SampleSet,
    model: VariogramModel,
    config: Dict[str, object],
    run_paths: RunPaths,
) -> Dict[str, object]:
    cv_cfg = config["validation"]
    if not cv_cfg["enabled"]:
        return {"status": "disabled"}
    cv_result = kriging_cross_validation(
        samples,
        model,
        method=cv_cfg["cv"],
        trend=config["kriging"]["trend"],
        n_splits=int(cv_cfg["kfold_splits"]),
        condition_max=float(config["kriging"]["condition_max"]),
    )
    save_table(cv_result.data, run_paths, "validation_predictions.csv", index=False)
    save_table(pd.DataFrame([cv_result.metrics]), run_paths, "validation_metrics.csv", index=False)
    return {"metrics": cv_result.metrics}


def run_reporting(
    config: Dict[str, object],
    run_paths: RunPaths,
    metadata: Dict[str, object],
    metrics: Dict[str, object],
) -> Dict[str, object]:
    variography = metrics.get("variography", {})
    variogram = None
    if "model" in variography:
        variogram = {**variography["model"], "fitted": variography.get("fitted")}
    manifest_path, _ = write_manifest(
        run_paths,
        config,
        inputs=metadata,
        variogram=variogram,
        grid=metrics.get("kriging", {}).get("grid_spec"),
        metrics=metrics,
    )
    return {"manifest": str(manifest_path)}


def run_pipeline(config_path: str, stage: str = "all") -> RunPaths:
    config = load_config(config_path)
    run_name = config["outputs"]["run_name"]
    run_paths = create_run_dir(config["outputs"]["base_dir"], prefix="run" if run_name == "auto" else run_name)
    log_path = _setup_logging(run_paths)
    logger.info("Log path: %s", log_path)
    logger.info("Run directory: %s", run_paths.base)

    samples, metadata = load_samples(config)
    metrics: Dict[str, object] = {}

    model, metrics["variography"] = run_variography(samples, config, run_paths)

    if stage in {"all", "kriging"}:
        metrics["kriging"] = run_kriging(samples, model, config, run_paths)

    if stage in {"all", "validation"}:
        metrics["validation"] = run_validation(samples, model, config, run_paths)

    if stage in {"all", "report"}:
        run_reporting(config, run_paths, metadata, metrics)

    logger.info("Pipeline completed")
    return run_paths
