"""Errores del núcleo de variografía y kriging."""

from __future__ import annotations

from typing import Any, Dict

import numpy as np


class GeostatsError(Exception):
    """Base de todos los errores del paquete."""


class InsufficientDataError(GeostatsError, ValueError):
    """Too few usable samples, or no pairs inside the lag cutoff."""

    def __init__(self, message: str, n_samples: int | None = None) -> None:
        super().__init__(message)
        self.n_samples = n_samples


class InvalidParameterError(GeostatsError, ValueError):
    def __init__(self, name: str, value: Any, reason: str) -> None:
        super().__init__(f"Invalid {name}={value!r}: {reason}")
        self.name = name
        self.value = value


class NonConvergenceError(GeostatsError, RuntimeError):
    """Variogram fit stopped without meeting the tolerance."""

    def __init__(self, message: str, params: Dict[str, float] | None = None, cost: float = float("nan")) -> None:
        super().__init__(message)
        self.params = dict(params or {})
        self.cost = cost


class SingularSystemError(GeostatsError, np.linalg.LinAlgError):
    """Kriging matrix cannot be solved (duplicate or collinear locations)."""

    def __init__(self, message: str, condition: float = float("inf")) -> None:
        super().__init__(f"{message} (condition={condition:.3e})")
        self.condition = condition
