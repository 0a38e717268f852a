from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from .trending import TREND_KINDS
from .variography import FAMILIES

Number = (int, float)

DEFAULT_CONFIG: Dict[str, Any] = {
    "data": {
        "path": "data/precipitation.csv",
        "x_col": "x",
        "y_col": "y",
        "value_col": "precip",
        "duplicate_strategy": "mean",
    },
    "variography": {
        "cutoff": None,
        "bin_width": None,
        "n_lags": 15,
        "family": "spherical",
        "initial": {"nugget": None, "psill": None, "range": None},
        "fit": {"nugget": True, "psill": True, "range": True},
        "max_iter": 200,
        "tolerance": 1.0e-8,
        "max_relative_residual": None,
    },
    "kriging": {
        "trend": "coordinates",
        "condition_max": 1.0e12,
        "chunk_size": 2048,
    },
    "grid": {
        "auto_from_data": True,
        "dx": 1000.0,
        "dy": 1000.0,
        "pad": 0.0,
        "xmin": None,
        "ymin": None,
        "nx": None,
        "ny": None,
    },
    "validation": {"enabled": True, "cv": "loo", "kfold_splits": 5},
    "outputs": {"base_dir": "outputs", "run_name": "auto"},
}

SCHEMA: Dict[str, Any] = {
    "data": {
        "path": (str,),
        "x_col": (str,),
        "y_col": (str,),
        "value_col": (str,),
        "duplicate_strategy": (str,),
    },
    "variography": {
        "cutoff": Number + (type(None),),
        "bin_width": Number + (type(None),),
        "n_lags": (int,),
        "family": (str,),
        "initial": {
            "nugget": Number + (type(None),),
            "psill": Number + (type(None),),
            "range": Number + (type(None),),
        },
        "fit": {"nugget": (bool,), "psill": (bool,), "range": (bool,)},
        "max_iter": (int,),
        "tolerance": Number,
        "max_relative_residual": Number + (type(None),),
    },
    "kriging": {"trend": (str,), "condition_max": Number, "chunk_size": (int,)},
    "grid": {
        "auto_from_data": (bool,),
        "dx": Number,
        "dy": Number,
        "pad": Number,
        "xmin": Number + (type(None),),
        "ymin": Number + (type(None),),
        "nx": (int, type(None)),
        "ny": (int, type(None)),
    },
    "validation": {"enabled": (bool,), "cv": (str,), "kfold_splits": (int,)},
    "outputs": {"base_dir": (str,), "run_name": (str,)},
}


def _deep_merge(defaults: Mapping[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = deepcopy(dict(defaults))
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _validate_schema(cfg: Mapping[str, Any], schema: Mapping[str, Any], prefix: str = "") -> None:
    for key, expected in schema.items():
        if key not in cfg:
            continue
        value = cfg[key]
        path = f"{prefix}{key}"
        if isinstance(expected, Mapping):
            if not isinstance(value, Mapping):
                raise TypeError(f"Config key '{path}' must be a mapping, got {type(value).__name__}")
            _validate_schema(value, expected, prefix=f"{path}.")
            continue

        # bool es subclase de int; no se acepta como número
        if isinstance(value, bool) and bool not in expected:
            raise TypeError(f"Config key '{path}' must be {expected}, got bool")
        if not isinstance(value, expected):
            raise TypeError(f"Config key '{path}' must be {expected}, got {type(value).__name__}")


def _validate_values(cfg: Mapping[str, Any]) -> None:
    var_cfg = cfg["variography"]
    if var_cfg["family"] not in FAMILIES:
        raise ValueError(f"variography.family must be one of {sorted(FAMILIES)}")
    for key in ("cutoff", "bin_width"):
        if var_cfg[key] is not None and var_cfg[key] <= 0:
            raise ValueError(f"variography.{key} must be positive")
    if var_cfg["n_lags"] <= 0:
        raise ValueError("variography.n_lags must be positive")
    if cfg["kriging"]["trend"] not in TREND_KINDS:
        raise ValueError(f"kriging.trend must be one of {TREND_KINDS}")
    if cfg["data"]["duplicate_strategy"] not in {"mean", "first", "error"}:
        raise ValueError("data.duplicate_strategy must be 'mean', 'first' or 'error'")
    if cfg["validation"]["cv"] not in {"loo", "kfold"}:
        raise ValueError("validation.cv must be 'loo' or 'kfold'")
    grid_cfg = cfg["grid"]
    if not grid_cfg["auto_from_data"]:
        missing = [key for key in ("xmin", "ymin", "nx", "ny") if grid_cfg[key] is None]
        if missing:
            raise ValueError(f"grid.{', grid.'.join(missing)} required when grid.auto_from_data is false")


def load_config(path: str | Path) -> Dict[str, Any]:
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    data = yaml.safe_load(cfg_path.read_text(encoding="utf-8"))
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise TypeError("Config file must be a YAML mapping (dictionary).")

    cfg = _deep_merge(DEFAULT_CONFIG, data)
    _validate_schema(cfg, SCHEMA)
    _validate_values(cfg)
    return cfg


def save_config(config: Mapping[str, Any], path: str | Path) -> None:
    cfg_path = Path(path)
    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    cfg_path.write_text(yaml.safe_dump(dict(config), sort_keys=False, allow_unicode=True), encoding="utf-8")
