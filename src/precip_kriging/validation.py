from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List

import numpy as np
import pandas as pd
from sklearn.cluster import KMeans

from .errors import InvalidParameterError
from .kriging import krige
from .samples import PredictionGrid, SampleSet
from .trending import trend_covariates_for
from .variography import VariogramModel

logger = logging.getLogger(__name__)


@dataclass
class CVResult:
    data: pd.DataFrame
    metrics: Dict[str, float]


def spatial_kfold_indices(
    samples: SampleSet,
    n_splits: int = 5,
    random_state: int = 13,
) -> np.ndarray:
    """Assign spatial folds using KMeans clustering on coordinates."""
    n_splits = max(2, min(n_splits, len(samples)))
    return KMeans(n_clusters=n_splits, random_state=random_state, n_init=10).fit_predict(samples.coords)


def _predict_fold(
    samples: SampleSet,
    train_mask: np.ndarray,
    model: VariogramModel,
    trend: str,
    condition_max: float,
) -> pd.DataFrame:
    train = samples.subset(train_mask)
    test = samples.subset(~train_mask)
    grid = PredictionGrid(test.coords, trend_covariates_for(test.coords, trend))
    result = krige(
        train,
        trend_covariates_for(train.coords, trend),
        grid,
        model,
        condition_max=condition_max,
    )
    out = test.to_frame()
    out.index = np.flatnonzero(~train_mask)
    out["estimate"] = result.estimate
    out["variance"] = result.variance
    return out


def kriging_cross_validation(
    samples: SampleSet,
    model: VariogramModel,
    method: str = "loo",
    trend: str = "coordinates",
    n_splits: int = 5,
    random_state: int = 13,
    condition_max: float = 1.0e12,
) -> CVResult:
    """Cross-validation of the kriging predictor (LOO or spatial K-fold)."""
    method = method.lower()
    if method not in {"loo", "kfold"}:
        raise InvalidParameterError("method", method, "must be 'loo' or 'kfold'")

    n = len(samples)
    results: List[pd.DataFrame] = []
    if method == "loo":
        for idx in range(n):
            train_mask = np.ones(n, dtype=bool)
            train_mask[idx] = False
            out = _predict_fold(samples, train_mask, model, trend, condition_max)
            out["fold"] = idx
            results.append(out)
    else:
        labels = spatial_kfold_indices(samples, n_splits=n_splits, random_state=random_state)
        for fold_id in range(labels.max() + 1):
            train_mask = labels != fold_id
            out = _predict_fold(samples, train_mask, model, trend, condition_max)
            out["fold"] = int(fold_id)
            results.append(out)

    cv_df = pd.concat(results, axis=0).sort_index()
    cv_df["error"] = cv_df["estimate"] - cv_df["value"]
    metrics = compute_cv_metrics(cv_df, vcol="value")
    logger.info("Validación cruzada (%s): RMSE=%.4g ME=%.4g", method, metrics["RMSE"], metrics["ME"])
    return CVResult(data=cv_df, metrics=metrics)


def compute_cv_metrics(
    df: pd.DataFrame,
    vcol: str,
    pred_col: str = "estimate",
    var_col: str = "variance",
) -> Dict[str, float]:
    """Compute validation metrics (ME, RMSE, MSE, slope/intercept, MSDR)."""
    errors = df[pred_col] - df[vcol]
    mse = float(np.mean(errors**2))
    metrics = {
        "ME": float(np.mean(errors)),
        "MSE": mse,
        "RMSE": float(np.sqrt(mse)),
    }

    if len(df) >= 2 and float(np.ptp(df[pred_col].to_numpy())) > 0:
        slope, intercept = np.polyfit(df[pred_col], df[vcol], 1)
    else:
        slope, intercept = float("nan"), float("nan")
    metrics["slope"] = float(slope)
    metrics["intercept"] = float(intercept)

    if var_col in df.columns:
        variance = df[var_col].to_numpy()
        mask = np.isfinite(variance) & (variance > 0)
        if np.any(mask):
            metrics["MSDR"] = float(np.mean((errors.to_numpy()[mask] ** 2) / variance[mask]))
    return metrics
