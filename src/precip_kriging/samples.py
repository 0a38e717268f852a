from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import numpy as np
import pandas as pd

from .errors import InvalidParameterError

logger = logging.getLogger(__name__)


def _frozen(array: np.ndarray) -> np.ndarray:
    out = np.array(array, dtype=float, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class SampleSet:
    """Observaciones puntuales (x, y, valor) en coordenadas proyectadas."""

    coords: np.ndarray
    values: np.ndarray

    def __post_init__(self) -> None:
        coords = np.asarray(self.coords, dtype=float)
        values = np.asarray(self.values, dtype=float).ravel()
        if coords.ndim != 2 or coords.shape[1] != 2:
            raise InvalidParameterError("coords", coords.shape, "expected an (n, 2) array")
        if coords.shape[0] != values.shape[0]:
            raise InvalidParameterError(
                "values", values.shape, f"length must match coords ({coords.shape[0]})"
            )
        if not (np.all(np.isfinite(coords)) and np.all(np.isfinite(values))):
            raise InvalidParameterError("samples", "non-finite", "coords and values must be finite")
        object.__setattr__(self, "coords", _frozen(coords))
        object.__setattr__(self, "values", _frozen(values))

    def __len__(self) -> int:
        return int(self.values.shape[0])

    @property
    def x(self) -> np.ndarray:
        return self.coords[:, 0]

    @property
    def y(self) -> np.ndarray:
        return self.coords[:, 1]

    def with_values(self, values: np.ndarray) -> "SampleSet":
        return SampleSet(self.coords, np.asarray(values, dtype=float))

    def subset(self, index: np.ndarray) -> "SampleSet":
        return SampleSet(self.coords[index], self.values[index])

    def n_distinct_positions(self) -> int:
        return int(np.unique(self.coords, axis=0).shape[0]) if len(self) else 0

    @classmethod
    def from_frame(cls, df: pd.DataFrame, xcol: str = "x", ycol: str = "y", vcol: str = "value") -> "SampleSet":
        coords = df[[xcol, ycol]].apply(pd.to_numeric, errors="coerce").to_numpy(dtype=float)
        values = pd.to_numeric(df[vcol], errors="coerce").to_numpy(dtype=float)
        valid = np.all(np.isfinite(coords), axis=1) & np.isfinite(values)
        dropped = int((~valid).sum())
        if dropped:
            logger.warning("Descartando %d filas con coordenadas o valores no finitos.", dropped)
        return cls(coords[valid], values[valid])

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"x": self.x, "y": self.y, "value": self.values})


@dataclass(frozen=True)
class PredictionGrid:
    """Target locations, with optional trend covariates aligned by row."""

    coords: np.ndarray
    covariates: np.ndarray | None = None

    def __post_init__(self) -> None:
        coords = np.asarray(self.coords, dtype=float)
        if coords.ndim != 2 or coords.shape[1] != 2:
            raise InvalidParameterError("grid.coords", coords.shape, "expected an (m, 2) array")
        if not np.all(np.isfinite(coords)):
            raise InvalidParameterError("grid.coords", "non-finite", "target coordinates must be finite")
        object.__setattr__(self, "coords", _frozen(coords))
        if self.covariates is not None:
            cov = np.asarray(self.covariates, dtype=float)
            if cov.ndim == 1:
                cov = cov[:, None]
            if cov.shape[0] != coords.shape[0]:
                raise InvalidParameterError(
                    "grid.covariates", cov.shape, f"expected {coords.shape[0]} rows"
                )
            if not np.all(np.isfinite(cov)):
                raise InvalidParameterError("grid.covariates", "non-finite", "covariates must be finite")
            object.__setattr__(self, "covariates", _frozen(cov))

    def __len__(self) -> int:
        return int(self.coords.shape[0])

    @classmethod
    def from_frame(cls, df: pd.DataFrame, xcol: str = "x", ycol: str = "y", covariate_cols: Iterable[str] | None = None) -> "PredictionGrid":
        coords = df[[xcol, ycol]].to_numpy(dtype=float)
        covariates = None
        if covariate_cols:
            covariates = df[list(covariate_cols)].to_numpy(dtype=float)
        return cls(coords, covariates)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"x": self.coords[:, 0], "y": self.coords[:, 1]})


def deduplicate_samples(samples: SampleSet, strategy: str = "mean") -> SampleSet:
    """Collapse samples that share a position.

    ``strategy="mean"`` averages the values at a shared position,
    ``"first"`` keeps the first occurrence. Kriging itself never does this.
    """
    if strategy not in {"mean", "first"}:
        raise InvalidParameterError("strategy", strategy, "must be 'mean' or 'first'")
    if len(samples) == 0:
        return samples

    unique, first_idx, inverse = np.unique(samples.coords, axis=0, return_index=True, return_inverse=True)
    inverse = inverse.ravel()
    if unique.shape[0] == len(samples):
        return samples

    logger.warning(
        "Colapsando %d muestras duplicadas (strategy=%s).",
        len(samples) - unique.shape[0],
        strategy,
    )
    if strategy == "first":
        order = np.sort(first_idx)
        return samples.subset(order)

    sums = np.bincount(inverse, weights=samples.values, minlength=unique.shape[0])
    counts = np.bincount(inverse, minlength=unique.shape[0])
    return SampleSet(unique, sums / counts)
