"""Variografía y kriging universal de precipitación sobre muestras puntuales."""

from .errors import (
    GeostatsError,
    InsufficientDataError,
    InvalidParameterError,
    NonConvergenceError,
    SingularSystemError,
)
from .kriging import KrigingResult, krige
from .samples import PredictionGrid, SampleSet, deduplicate_samples
from .trending import coordinate_covariates, fit_trend
from .variography import (
    EmpiricalVariogram,
    FreeMask,
    VariogramModel,
    estimate_empirical_variogram,
    fit_variogram_model,
    initial_guess_from_empirical,
)

__all__ = [
    "GeostatsError",
    "InsufficientDataError",
    "InvalidParameterError",
    "NonConvergenceError",
    "SingularSystemError",
    "KrigingResult",
    "krige",
    "PredictionGrid",
    "SampleSet",
    "deduplicate_samples",
    "coordinate_covariates",
    "fit_trend",
    "EmpiricalVariogram",
    "FreeMask",
    "VariogramModel",
    "estimate_empirical_variogram",
    "fit_variogram_model",
    "initial_guess_from_empirical",
]
