from __future__ import annotations

from typing import Dict

import numpy as np

from .errors import InvalidParameterError
from .samples import PredictionGrid, SampleSet
from .trending import trend_covariates_for


def grid_from_extents(
    samples: SampleSet,
    dx: float,
    dy: float,
    pad: float = 0.0,
) -> Dict[str, float]:
    """Create a 2D grid spec covering the sample extents."""
    if dx <= 0 or dy <= 0:
        raise InvalidParameterError("dx/dy", (dx, dy), "must be positive")
    if len(samples) == 0:
        raise InvalidParameterError("samples", 0, "cannot build a grid from an empty sample set")
    xmin, xmax = float(samples.x.min()) - pad, float(samples.x.max()) + pad
    ymin, ymax = float(samples.y.min()) - pad, float(samples.y.max()) + pad

    nx = int(np.ceil((xmax - xmin) / dx))
    ny = int(np.ceil((ymax - ymin) / dy))

    return {
        "nx": max(nx, 1),
        "ny": max(ny, 1),
        "xmin": xmin,
        "ymin": ymin,
        "dx": float(dx),
        "dy": float(dy),
    }


def grid_coordinates(grid_spec: Dict[str, float]) -> np.ndarray:
    """Cell centres, x varying fastest."""
    nx = int(grid_spec["nx"])
    ny = int(grid_spec["ny"])
    if nx <= 0 or ny <= 0:
        raise InvalidParameterError("nx/ny", (nx, ny), "must be positive")
    xs = float(grid_spec["xmin"]) + float(grid_spec["dx"]) * (np.arange(nx) + 0.5)
    ys = float(grid_spec["ymin"]) + float(grid_spec["dy"]) * (np.arange(ny) + 0.5)
    gx, gy = np.meshgrid(xs, ys, indexing="xy")
    return np.column_stack([gx.ravel(), gy.ravel()])


def make_prediction_grid(grid_spec: Dict[str, float], trend: str = "coordinates") -> PredictionGrid:
    coords = grid_coordinates(grid_spec)
    return PredictionGrid(coords, trend_covariates_for(coords, trend))
