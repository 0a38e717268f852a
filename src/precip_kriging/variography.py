from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, Mapping, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from scipy.optimize import least_squares
from scipy.spatial.distance import pdist

from .errors import InsufficientDataError, InvalidParameterError, NonConvergenceError
from .samples import SampleSet

logger = logging.getLogger(__name__)

PARAMETER_NAMES: Tuple[str, str, str] = ("nugget", "psill", "range")


def _spherical(r: np.ndarray) -> np.ndarray:
    r = np.minimum(r, 1.0)
    return 1.5 * r - 0.5 * r**3


def _exponential(r: np.ndarray) -> np.ndarray:
    return 1.0 - np.exp(-3.0 * r)


def _gaussian(r: np.ndarray) -> np.ndarray:
    return 1.0 - np.exp(-3.0 * r**2)


def _circular(r: np.ndarray) -> np.ndarray:
    r = np.minimum(r, 1.0)
    return 1.0 - (2.0 / np.pi) * (np.arccos(r) - r * np.sqrt(1.0 - r**2))


def _linear(r: np.ndarray) -> np.ndarray:
    return r


# exponential y gaussian usan rango práctico (95% del sill en h = range)
FAMILIES: Dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "spherical": _spherical,
    "exponential": _exponential,
    "gaussian": _gaussian,
    "circular": _circular,
    "linear": _linear,
}
UNBOUNDED_FAMILIES = frozenset({"linear"})


def _semivariance(family: str, nugget: float, psill: float, rng: float, h: np.ndarray) -> np.ndarray:
    h = np.asarray(h, dtype=float)
    shape = FAMILIES[family](np.abs(h) / rng)
    return np.where(h > 0, nugget + psill * shape, 0.0)


def _check_positive(name: str, value: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError) as err:
        raise InvalidParameterError(name, value, "must be a number") from err
    if not np.isfinite(value) or value <= 0:
        raise InvalidParameterError(name, value, "must be a positive finite number")
    return value


@dataclass(frozen=True)
class VariogramModel:
    """Modelo paramétrico gamma(h) = nugget + psill * shape(h / range), gamma(0) = 0."""

    family: str = "spherical"
    nugget: float = 0.0
    psill: float = 1.0
    range: float = 1.0

    def __post_init__(self) -> None:
        family = str(self.family).lower()
        if family not in FAMILIES:
            raise InvalidParameterError("family", self.family, f"must be one of {sorted(FAMILIES)}")
        object.__setattr__(self, "family", family)
        for name in ("nugget", "psill"):
            value = float(getattr(self, name))
            if not np.isfinite(value) or value < 0:
                raise InvalidParameterError(name, value, "must be non-negative")
            object.__setattr__(self, name, value)
        object.__setattr__(self, "range", _check_positive("range", self.range))

    def __call__(self, h: np.ndarray | float) -> np.ndarray:
        return _semivariance(self.family, self.nugget, self.psill, self.range, h)

    @property
    def bounded(self) -> bool:
        return self.family not in UNBOUNDED_FAMILIES

    @property
    def sill(self) -> float:
        if not self.bounded:
            return float("inf")
        return self.nugget + self.psill

    def params(self) -> Dict[str, float]:
        return {name: float(getattr(self, name)) for name in PARAMETER_NAMES}

    def to_dict(self) -> Dict[str, object]:
        return {"family": self.family, **self.params()}

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "VariogramModel":
        return cls(
            family=str(data.get("family", "spherical")),
            nugget=float(data.get("nugget", 0.0)),
            psill=float(data.get("psill", 1.0)),
            range=float(data.get("range", 1.0)),
        )


@dataclass(frozen=True)
class FreeMask:
    """Which model parameters the fit may move; the rest stay at the initial guess."""

    nugget: bool = True
    psill: bool = True
    range: bool = True

    def as_tuple(self) -> Tuple[bool, bool, bool]:
        return (bool(self.nugget), bool(self.psill), bool(self.range))

    def free_names(self) -> Tuple[str, ...]:
        return tuple(name for name, flag in zip(PARAMETER_NAMES, self.as_tuple()) if flag)

    @classmethod
    def coerce(cls, value: "FreeMask | Mapping[str, bool] | Sequence[bool] | None") -> "FreeMask":
        if value is None:
            return cls()
        if isinstance(value, FreeMask):
            return value
        if isinstance(value, Mapping):
            unknown = set(value) - set(PARAMETER_NAMES)
            if unknown:
                raise InvalidParameterError("free_mask", sorted(unknown), f"keys must be in {PARAMETER_NAMES}")
            return cls(**{name: bool(value.get(name, True)) for name in PARAMETER_NAMES})
        flags = tuple(value)
        if len(flags) != 3:
            raise InvalidParameterError("free_mask", flags, "expected three flags (nugget, psill, range)")
        return cls(*(bool(flag) for flag in flags))


@dataclass(frozen=True)
class EmpiricalVariogram:
    lags: np.ndarray
    gamma: np.ndarray
    pairs: np.ndarray
    cutoff: float
    bin_width: float

    def __len__(self) -> int:
        return int(self.lags.shape[0])

    @property
    def total_pairs(self) -> int:
        return int(np.sum(self.pairs))

    def to_frame(self, model: VariogramModel | None = None) -> pd.DataFrame:
        df = pd.DataFrame({"lag": self.lags, "semivariance": self.gamma, "pairs": self.pairs})
        if model is not None:
            df["model_semivariance"] = model(self.lags)
        return df


def estimate_empirical_variogram(samples: SampleSet, cutoff: float, bin_width: float) -> EmpiricalVariogram:
    """Semivariograma experimental isotrópico.

    Every unordered pair with distance ``h <= cutoff`` goes to lag bin
    ``floor(h / bin_width)``; each non-empty bin reports the mean pair
    distance, half the mean squared value difference and the pair count.
    Empty bins are left out of the result.

    Raises:
        InvalidParameterError: non-positive ``cutoff`` or ``bin_width``.
        InsufficientDataError: fewer than two distinct positions, or no
            pair within ``cutoff``.
    """
    cutoff = _check_positive("cutoff", cutoff)
    bin_width = _check_positive("bin_width", bin_width)
    if len(samples) < 2 or samples.n_distinct_positions() < 2:
        raise InsufficientDataError(
            f"Need at least 2 samples at distinct positions, got {len(samples)}",
            n_samples=len(samples),
        )

    dists = pdist(samples.coords)
    sqdiff = pdist(samples.values[:, None], metric="sqeuclidean")
    keep = dists <= cutoff
    dists = dists[keep]
    sqdiff = sqdiff[keep]
    if dists.size == 0:
        raise InsufficientDataError(
            f"No sample pairs within cutoff={cutoff} (all lag bins empty)",
            n_samples=len(samples),
        )

    bins = np.floor(dists / bin_width).astype(np.int64)
    n_bins = int(bins.max()) + 1
    counts = np.bincount(bins, minlength=n_bins)
    sum_h = np.bincount(bins, weights=dists, minlength=n_bins)
    sum_sq = np.bincount(bins, weights=sqdiff, minlength=n_bins)

    nonempty = counts > 0
    counts = counts[nonempty]
    lags = sum_h[nonempty] / counts
    gamma = sum_sq[nonempty] / (2.0 * counts)
    logger.debug(
        "Variograma experimental: %d bins no vacíos, %d pares (cutoff=%.3f, width=%.3f)",
        counts.size,
        int(counts.sum()),
        cutoff,
        bin_width,
    )
    return EmpiricalVariogram(lags=lags, gamma=gamma, pairs=counts.astype(int), cutoff=cutoff, bin_width=bin_width)


def initial_guess_from_empirical(empirical: EmpiricalVariogram, family: str = "spherical") -> VariogramModel:
    """Starting parameters read off the empirical variogram.

    nugget 0, psill the largest semivariance, range the first lag reaching
    95% of it (0.7 x the largest lag when none does).
    """
    if len(empirical) == 0:
        raise InsufficientDataError("Empirical variogram has no bins")
    gamma_max = float(np.max(empirical.gamma))
    max_lag = float(np.max(empirical.lags))
    reached = np.where(empirical.gamma >= 0.95 * gamma_max)[0]
    rng = float(empirical.lags[reached[0]]) if reached.size else 0.7 * max_lag
    if rng <= 0:
        rng = 0.7 * max_lag if max_lag > 0 else empirical.bin_width
    psill = gamma_max if gamma_max > 0 else 1.0
    return VariogramModel(family=family, nugget=0.0, psill=psill, range=rng)


def fit_variogram_model(
    empirical: EmpiricalVariogram,
    initial_guess: VariogramModel,
    free_mask: FreeMask | Mapping[str, bool] | Sequence[bool] | None = None,
    family: str | None = None,
    *,
    max_iter: int = 200,
    tolerance: float = 1e-8,
    max_relative_residual: float | None = None,
) -> VariogramModel:
    """Ajuste por mínimos cuadrados ponderados por número de pares.

    Only the parameters flagged in ``free_mask`` move; the others stay at
    ``initial_guess``. Minimises ``sum(pairs * (model(lag) - gamma)**2)``
    with nugget, psill >= 0 and range > 0.

    Raises:
        InsufficientDataError: empty empirical variogram.
        NonConvergenceError: the optimizer ran out of evaluations or failed,
            or the relative residual stays above ``max_relative_residual``.
    """
    if len(empirical) == 0:
        raise InsufficientDataError("Empirical variogram has no bins")
    if int(max_iter) <= 0:
        raise InvalidParameterError("max_iter", max_iter, "must be positive")
    tolerance = _check_positive("tolerance", tolerance)

    start = replace(initial_guess, family=family) if family else initial_guess
    mask = FreeMask.coerce(free_mask)
    free = mask.free_names()
    if not free:
        logger.info("Sin parámetros libres; se usa el modelo inicial %s", start.to_dict())
        return start

    lags = np.asarray(empirical.lags, dtype=float)
    gamma = np.asarray(empirical.gamma, dtype=float)
    pairs = np.asarray(empirical.pairs, dtype=float)
    weights = np.sqrt(pairs)

    range_floor = max(1e-9 * float(np.max(lags)), 1e-12)
    lower = {"nugget": 0.0, "psill": 0.0, "range": range_floor}
    base = start.params()
    x0 = np.array([max(base[name], lower[name]) for name in free])
    lb = np.array([lower[name] for name in free])
    ub = np.full(len(free), np.inf)

    def _params(x: np.ndarray) -> Dict[str, float]:
        params = dict(base)
        params.update(zip(free, (float(v) for v in x)))
        return params

    def residuals(x: np.ndarray) -> np.ndarray:
        p = _params(x)
        return weights * (_semivariance(start.family, p["nugget"], p["psill"], p["range"], lags) - gamma)

    result = least_squares(
        residuals,
        x0,
        bounds=(lb, ub),
        method="trf",
        x_scale="jac",
        ftol=tolerance,
        xtol=tolerance,
        gtol=tolerance,
        max_nfev=int(max_iter),
    )
    params = _params(result.x)
    if not result.success:
        raise NonConvergenceError(
            f"Variogram fit did not converge in {max_iter} evaluations: {result.message}",
            params=params,
            cost=float(result.cost),
        )

    rms = float(np.sqrt(np.sum(result.fun**2) / np.sum(pairs)))
    level = float(np.sum(pairs * gamma) / np.sum(pairs))
    relative = rms / level if level > 0 else rms
    if max_relative_residual is not None and relative > float(max_relative_residual):
        raise NonConvergenceError(
            f"Variogram fit residual {relative:.4f} above tolerance {max_relative_residual}",
            params=params,
            cost=float(result.cost),
        )

    model = VariogramModel(family=start.family, **params)
    logger.info(
        "Modelo %s ajustado (libres=%s): nugget=%.4g psill=%.4g range=%.4g, residuo relativo=%.4f",
        model.family,
        ",".join(free),
        model.nugget,
        model.psill,
        model.range,
        relative,
    )
    return model


def plot_variogram(empirical: EmpiricalVariogram, model: VariogramModel | None, path: str) -> None:
    fig, ax = plt.subplots(figsize=(6, 4))
    ax.plot(empirical.lags, empirical.gamma, "o", label="experimental")
    for lag, gam, npairs in zip(empirical.lags, empirical.gamma, empirical.pairs):
        ax.annotate(str(int(npairs)), (lag, gam), textcoords="offset points", xytext=(0, 5), fontsize=7, ha="center")
    if model is not None and len(empirical):
        h = np.linspace(0, max(float(empirical.lags.max()), empirical.cutoff), 200)
        ax.plot(h, model(h), "-", label=f"{model.family} model")
    ax.set_xlabel("lag")
    ax.set_ylabel("semivariance")
    ax.legend()
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)
