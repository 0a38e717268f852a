from __future__ import annotations

import itertools
import json
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import yaml

DEFAULT_LIBRARIES = (
    "numpy",
    "pandas",
    "scipy",
    "matplotlib",
    "scikit-learn",
    "pyyaml",
)

RUN_SUBDIRS = ("figures", "tables", "models", "logs")


@dataclass(frozen=True)
class RunPaths:
    """Carpetas de una corrida: figuras, tablas, modelos ajustados y logs."""

    base: Path
    figures: Path
    tables: Path
    models: Path
    logs: Path

    def figure_path(self, filename: str) -> Path:
        return self.figures / filename

    def table_path(self, filename: str) -> Path:
        return self.tables / filename

    def model_path(self, filename: str) -> Path:
        return self.models / filename

    def log_path(self, filename: str) -> Path:
        return self.logs / filename


def save_table(df, run_paths: RunPaths, filename: str, **kwargs) -> Path:
    path = run_paths.table_path(filename)
    df.to_csv(path, **kwargs)
    return path


def save_model(model: Mapping[str, object], run_paths: RunPaths, filename: str) -> Path:
    """Write a variogram model (or any flat mapping) as JSON under ``models/``."""
    path = run_paths.model_path(filename)
    path.write_text(json.dumps(dict(model), indent=2), encoding="utf-8")
    return path


def _free_run_dir(base_dir: Path, run_name: str) -> Path:
    candidate = base_dir / run_name
    counter = itertools.count(1)
    while candidate.exists():
        candidate = base_dir / f"{run_name}_{next(counter):02d}"
    return candidate


def create_run_dir(
    base_dir: str | Path = "outputs",
    prefix: str = "run",
    timestamp: Optional[datetime] = None,
) -> RunPaths:
    """Create ``<base_dir>/<prefix>_<YYYYmmdd_HHMM>[_NN]`` with its subfolders."""
    stamp = (timestamp or datetime.now()).strftime("%Y%m%d_%H%M")
    run_dir = _free_run_dir(Path(base_dir), f"{prefix}_{stamp}")
    subdirs = {name: run_dir / name for name in RUN_SUBDIRS}
    for path in subdirs.values():
        path.mkdir(parents=True, exist_ok=True)
    return RunPaths(base=run_dir, **subdirs)


def _git_commit(repo_dir: Path) -> Optional[str]:
    try:
        out = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=repo_dir,
            check=True,
            capture_output=True,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return out.stdout.strip() or None


def _library_versions(libraries: Iterable[str]) -> Dict[str, Optional[str]]:
    versions: Dict[str, Optional[str]] = {}
    for lib in libraries:
        try:
            versions[lib] = metadata.version(lib)
        except metadata.PackageNotFoundError:
            versions[lib] = None
    return versions


def _plain(obj: Any) -> Any:
    # numpy scalars, Paths, etc. pasan a tipos JSON/YAML simples
    return json.loads(json.dumps(obj, default=str))


def write_manifest(
    run_paths: RunPaths,
    config: Mapping[str, object],
    *,
    inputs: Optional[Mapping[str, object]] = None,
    variogram: Optional[Mapping[str, object]] = None,
    grid: Optional[Mapping[str, object]] = None,
    metrics: Optional[Mapping[str, object]] = None,
    libraries: Iterable[str] = DEFAULT_LIBRARIES,
) -> Tuple[Path, Path]:
    """Record what a run used and produced, as ``manifest.json`` and ``manifest.yaml``.

    The fitted variogram and the prediction grid get their own sections so
    a run can be re-kriged from the manifest alone; ``metrics`` holds the
    per-stage summaries.
    """
    now = datetime.now(timezone.utc)
    manifest = _plain(
        {
            "run_dir": str(run_paths.base),
            "created_at": now.isoformat(),
            "input": dict(inputs or {}),
            "variogram_model": dict(variogram) if variogram is not None else None,
            "grid": dict(grid) if grid is not None else None,
            "metrics": dict(metrics or {}),
            "config": dict(config),
            "environment": {
                "git_commit": _git_commit(Path(__file__).resolve().parents[2]),
                "libraries": _library_versions(libraries),
            },
        }
    )

    json_path = run_paths.base / "manifest.json"
    json_path.write_text(json.dumps(manifest, indent=2, ensure_ascii=False), encoding="utf-8")
    yaml_path = run_paths.base / "manifest.yaml"
    yaml_path.write_text(yaml.safe_dump(manifest, sort_keys=False, allow_unicode=True), encoding="utf-8")
    return json_path, yaml_path
