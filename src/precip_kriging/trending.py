from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .errors import InsufficientDataError, InvalidParameterError
from .samples import SampleSet


@dataclass(frozen=True)
class TrendModel:
    coef: np.ndarray

    @property
    def n_terms(self) -> int:
        return int(self.coef.shape[0])

    def predict(self, covariates: np.ndarray | None, n_rows: int | None = None) -> np.ndarray:
        design = build_design_matrix(covariates, n_rows=n_rows)
        if design.shape[1] != self.n_terms:
            raise InvalidParameterError("covariates", design.shape, f"trend has {self.n_terms} terms")
        return design @ self.coef


def coordinate_covariates(coords: np.ndarray) -> np.ndarray:
    """Use the x, y coordinates themselves as linear trend regressors."""
    coords = np.asarray(coords, dtype=float)
    if coords.ndim != 2 or coords.shape[1] != 2:
        raise InvalidParameterError("coords", coords.shape, "expected an (n, 2) array")
    return coords.copy()


def as_covariate_matrix(covariates: np.ndarray | None, n_rows: int, name: str = "covariates") -> np.ndarray:
    if covariates is None:
        return np.empty((n_rows, 0))
    cov = np.asarray(covariates, dtype=float)
    if cov.ndim == 1:
        cov = cov[:, None]
    if cov.ndim != 2 or cov.shape[0] != n_rows:
        raise InvalidParameterError(name, cov.shape, f"expected ({n_rows}, k)")
    if not np.all(np.isfinite(cov)):
        raise InvalidParameterError(name, "non-finite", "covariates must be finite")
    return cov


def build_design_matrix(covariates: np.ndarray | None, n_rows: int | None = None) -> np.ndarray:
    """Design matrix ``[1, covariates]``; only the intercept when ``covariates`` is None."""
    if covariates is None:
        if n_rows is None:
            raise InvalidParameterError("n_rows", n_rows, "required when covariates is None")
        return np.ones((n_rows, 1))
    cov = as_covariate_matrix(covariates, np.asarray(covariates).shape[0])
    return np.column_stack([np.ones(cov.shape[0]), cov])


def fit_trend(samples: SampleSet, covariates: np.ndarray | None) -> Tuple[TrendModel, float]:
    """Ordinary least-squares trend and its R²."""
    design = build_design_matrix(
        as_covariate_matrix(covariates, len(samples)) if covariates is not None else None,
        n_rows=len(samples),
    )
    if len(samples) < design.shape[1]:
        raise InsufficientDataError(
            f"Need at least {design.shape[1]} samples to fit the trend, got {len(samples)}",
            n_samples=len(samples),
        )
    values = samples.values
    coef, *_ = np.linalg.lstsq(design, values, rcond=None)
    pred = design @ coef
    ss_res = float(np.sum((values - pred) ** 2))
    ss_tot = float(np.sum((values - values.mean()) ** 2))
    r2 = 0.0 if ss_tot == 0 else 1.0 - ss_res / ss_tot
    return TrendModel(coef=coef), r2


def trend_residuals(samples: SampleSet, covariates: np.ndarray | None) -> Tuple[SampleSet, TrendModel, float]:
    model, r2 = fit_trend(samples, covariates)
    design = build_design_matrix(covariates, n_rows=len(samples))
    return samples.with_values(samples.values - design @ model.coef), model, r2


TREND_KINDS = ("coordinates", "none")


def trend_covariates_for(coords: np.ndarray, trend: str) -> np.ndarray | None:
    """Covariates for a named trend: ``"coordinates"`` (linear drift in x, y) or ``"none"``."""
    if trend == "coordinates":
        return coordinate_covariates(coords)
    if trend == "none":
        return None
    raise InvalidParameterError("trend", trend, f"must be one of {TREND_KINDS}")
