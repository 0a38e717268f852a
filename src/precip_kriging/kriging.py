from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd
from scipy.linalg import lu_factor, lu_solve
from scipy.spatial.distance import cdist, pdist, squareform

from .errors import InsufficientDataError, InvalidParameterError, SingularSystemError
from .samples import PredictionGrid, SampleSet
from .trending import as_covariate_matrix, build_design_matrix
from .variography import VariogramModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KrigingResult:
    estimate: np.ndarray
    variance: np.ndarray
    condition: float
    n_samples: int
    n_trend_terms: int

    def __len__(self) -> int:
        return int(self.estimate.shape[0])

    def to_frame(self, grid: PredictionGrid | None = None) -> pd.DataFrame:
        out = grid.to_frame() if grid is not None else pd.DataFrame(index=range(len(self)))
        out["estimate"] = self.estimate
        out["variance"] = self.variance
        return out


def _standardize_covariates(sample_cov: np.ndarray, target_cov: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Centra y escala con estadísticos de las muestras (mismo espacio de tendencia)."""
    mean = sample_cov.mean(axis=0)
    scale = sample_cov.std(axis=0)
    scale[scale == 0] = 1.0
    return (sample_cov - mean) / scale, (target_cov - mean) / scale


def _trend_matrices(
    samples: SampleSet,
    trend_covariates: np.ndarray | None,
    grid: PredictionGrid,
) -> Tuple[np.ndarray, np.ndarray]:
    if trend_covariates is None:
        return build_design_matrix(None, len(samples)), build_design_matrix(None, len(grid))

    sample_cov = as_covariate_matrix(trend_covariates, len(samples), "trend_covariates")
    if grid.covariates is None:
        raise InvalidParameterError("grid.covariates", None, "required when trend_covariates are given")
    target_cov = as_covariate_matrix(grid.covariates, len(grid), "grid.covariates")
    if target_cov.shape[1] != sample_cov.shape[1]:
        raise InvalidParameterError(
            "grid.covariates",
            target_cov.shape,
            f"expected {sample_cov.shape[1]} columns to match trend_covariates",
        )
    sample_cov, target_cov = _standardize_covariates(sample_cov, target_cov)
    return build_design_matrix(sample_cov), build_design_matrix(target_cov)


def variogram_scale(model: VariogramModel, gamma: np.ndarray) -> float:
    """Escala de semivarianza: sill del modelo, o max|gamma| si no es acotado."""
    scale = model.sill if model.bounded else float(np.max(np.abs(gamma), initial=0.0))
    return scale if scale > 0 else 1.0


def kriging_matrix(gamma: np.ndarray, design: np.ndarray, scale: float = 1.0) -> np.ndarray:
    """Sistema aumentado [[Gamma / scale, X], [X^T, 0]] de kriging universal.

    Dividing the Gamma block by ``scale`` leaves the weights unchanged and
    multiplies the Lagrange multipliers by ``1 / scale``.
    """
    n = gamma.shape[0]
    p = design.shape[1]
    matrix = np.zeros((n + p, n + p))
    matrix[:n, :n] = gamma / scale
    matrix[:n, n:] = design
    matrix[n:, :n] = design.T
    return matrix


def krige(
    samples: SampleSet,
    trend_covariates: np.ndarray | None,
    grid: PredictionGrid,
    model: VariogramModel,
    *,
    condition_max: float = 1.0e12,
    chunk_size: int = 2048,
) -> KrigingResult:
    """Kriging universal con tendencia externa lineal.

    ``trend_covariates`` is an (n, k) array of per-sample regressors (for a
    linear drift in the coordinates, ``coordinate_covariates(samples.coords)``);
    ``grid.covariates`` must then hold the same k regressors per target.
    With ``trend_covariates=None`` only the constant term is kept, which is
    Ordinary Kriging.

    The Gamma block is divided by the variogram scale (the sill, or the
    largest semivariance for unbounded models) so the condition number
    does not depend on the units of the values. The augmented matrix is
    assembled and factorized once; targets are solved in chunks of
    ``chunk_size``. The variance is ``lambda . gamma0 + mu . x0``, clipped
    at zero for round-off.

    Raises:
        InsufficientDataError: fewer samples than trend terms.
        InvalidParameterError: inconsistent covariates or bad options.
        SingularSystemError: the augmented matrix is singular or its
            condition number exceeds ``condition_max`` (coincident or
            collinear samples). Nothing is regularized or averaged.
    """
    if not isinstance(model, VariogramModel):
        raise InvalidParameterError("model", type(model).__name__, "expected a VariogramModel")
    if not np.isfinite(condition_max) or condition_max <= 0:
        raise InvalidParameterError("condition_max", condition_max, "must be positive")
    if int(chunk_size) <= 0:
        raise InvalidParameterError("chunk_size", chunk_size, "must be positive")

    design, target_design = _trend_matrices(samples, trend_covariates, grid)
    n = len(samples)
    p = design.shape[1]
    if n == 0 or n < p:
        raise InsufficientDataError(
            f"Kriging with {p} trend terms needs at least {p} samples, got {n}",
            n_samples=n,
        )

    gamma = model(squareform(pdist(samples.coords)))
    scale = variogram_scale(model, gamma)
    matrix = kriging_matrix(gamma, design, scale=scale)
    try:
        condition = float(np.linalg.cond(matrix))
    except np.linalg.LinAlgError as err:
        raise SingularSystemError("Kriging matrix condition could not be computed") from err
    if not np.isfinite(condition) or condition > condition_max:
        raise SingularSystemError(
            "Kriging matrix is singular or ill-conditioned; deduplicate coincident samples",
            condition=condition,
        )
    lu_piv = lu_factor(matrix, check_finite=False)

    m = len(grid)
    estimate = np.empty(m)
    variance = np.empty(m)
    for start in range(0, m, int(chunk_size)):
        stop = min(start + int(chunk_size), m)
        gamma0 = model(cdist(samples.coords, grid.coords[start:stop])) / scale
        rhs = np.vstack([gamma0, target_design[start:stop].T])
        solution = lu_solve(lu_piv, rhs, check_finite=False)
        estimate[start:stop] = solution[:n].T @ samples.values
        variance[start:stop] = scale * np.sum(solution * rhs, axis=0)

    negative = variance < 0
    if np.any(negative):
        logger.debug("Recortando %d varianzas negativas (min=%.3e)", int(negative.sum()), float(variance.min()))
        variance[negative] = 0.0

    logger.info(
        "Kriging: %d muestras, %d objetivos, %d términos de tendencia, cond=%.3e",
        n,
        m,
        p,
        condition,
    )
    return KrigingResult(
        estimate=estimate,
        variance=variance,
        condition=condition,
        n_samples=n,
        n_trend_terms=p,
    )
