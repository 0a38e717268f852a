from __future__ import annotations

import csv
import hashlib
import logging
from pathlib import Path
from typing import Dict, Iterable, Tuple

import pandas as pd

from .errors import InvalidParameterError
from .samples import SampleSet, deduplicate_samples

logger = logging.getLogger(__name__)


def _sniff_dialect(sample: str) -> Tuple[str, str]:
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=[",", ";", "\t", "|"])
        return dialect.delimiter, dialect.quotechar
    except csv.Error:
        return ",", '"'


def read_csv_robust(path: str | Path) -> pd.DataFrame:
    """Read CSV with delimiter/encoding detection."""
    path = Path(path)
    encodings = ["utf-8-sig", "utf-8", "latin-1"]
    last_err: Exception | None = None
    for enc in encodings:
        try:
            sample = path.read_text(encoding=enc)[:4096]
            sep, quote = _sniff_dialect(sample)
            return pd.read_csv(path, encoding=enc, sep=sep, quotechar=quote, engine="python")
        except (UnicodeDecodeError, pd.errors.ParserError) as err:
            last_err = err
    raise RuntimeError(f"Failed to read CSV: {path}") from last_err


def file_hash(path: Path) -> str:
    hasher = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(8192), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def validate_columns(df: pd.DataFrame, required: Iterable[str]) -> None:
    missing = [col for col in required if col not in df.columns]
    if missing:
        available = ", ".join(sorted(map(str, df.columns)))
        raise KeyError(
            "Missing required columns: "
            f"{missing}. Available columns: [{available}]. "
            "Revise config mapping."
        )


def load_samples(config: Dict[str, object]) -> Tuple[SampleSet, Dict[str, object]]:
    data_cfg = config["data"]
    path = Path(data_cfg["path"])
    if not path.exists():
        raise FileNotFoundError(f"Input data file not found: {path}")

    df = read_csv_robust(path)
    validate_columns(df, [data_cfg["x_col"], data_cfg["y_col"], data_cfg["value_col"]])
    samples = SampleSet.from_frame(df, data_cfg["x_col"], data_cfg["y_col"], data_cfg["value_col"])

    strategy = data_cfg.get("duplicate_strategy", "mean")
    if strategy == "error":
        n_shared = len(samples) - samples.n_distinct_positions()
        if n_shared:
            raise InvalidParameterError(
                "data.duplicate_strategy",
                strategy,
                f"{n_shared} samples in {path} share a position with another sample; "
                "use 'mean' or 'first' to collapse them",
            )
    else:
        samples = deduplicate_samples(samples, strategy=strategy)

    metadata = {
        "input_path": str(path),
        "input_hash": file_hash(path),
        "input_shape": [int(df.shape[0]), int(df.shape[1])],
        "samples": len(samples),
    }
    logger.info("Cargadas %d muestras desde %s", len(samples), path)
    return samples, metadata
