from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

import pandas as pd

logger = logging.getLogger(__name__)

STATE_FILE = "state.json"


def load_model(model_path: str | Path):
    """
    Load a metabolic model with cobra, picking the reader from the extension.

    Supported: .json, .xml/.sbml, .mat, .yml/.yaml

    Returns
    -------
    cobra.Model
    """
    from cobra.io import load_json_model, load_matlab_model, load_yaml_model, read_sbml_model

    p = Path(model_path)
    if not p.exists():
        raise FileNotFoundError(f"Model file not found: {p}")

    suffix = p.suffix.lower()
    readers = {
        ".json": load_json_model,
        ".xml": read_sbml_model,
        ".sbml": read_sbml_model,
        ".mat": load_matlab_model,
        ".yml": load_yaml_model,
        ".yaml": load_yaml_model,
    }
    if suffix not in readers:
        raise ValueError(f"Unsupported model extension: {p.suffix} (expected one of {', '.join(readers)})")
    logger.info("Loading model: %s", p)
    return readers[suffix](str(p))


def save_model(model, out_path: str | Path) -> Path:
    """Write a cobra model as JSON (keeps bracketed reaction IDs such as ``EX_ac[fe]`` intact)."""
    from cobra.io import save_json_model

    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    save_json_model(model, str(p))
    logger.info("Saved model: %s", p)
    return p


def load_sample_list(path: str | Path) -> list[str]:
    """
    Load sample IDs in study order.

    Either a CSV with a ``sample_id`` column, or plain text with one ID per
    line (blank lines and lines starting with ``#`` are ignored).
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Sample list not found: {p}")

    if p.suffix.lower() == ".csv":
        df = pd.read_csv(p)
        if "sample_id" not in df.columns:
            raise ValueError(f"Sample CSV must have a 'sample_id' column: {p}")
        ids = df["sample_id"].astype(str).str.strip().tolist()
    else:
        lines = p.read_text(encoding="utf-8").splitlines()
        ids = [s.strip() for s in lines if s.strip() and not s.strip().startswith("#")]

    if not ids:
        raise ValueError(f"Sample list is empty: {p}")
    dups = sorted({s for s in ids if ids.count(s) > 1})
    if dups:
        raise ValueError(f"Duplicate sample IDs: {', '.join(dups)}")
    return ids


def save_table(
    df: pd.DataFrame,
    out_path: str | Path,
    *,
    fmt: Literal["parquet", "csv"] | None = None,
    index: bool = False,
) -> Path:
    """
    Save a table to parquet or CSV, inferred by extension unless fmt is provided.
    """
    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if fmt is None:
        suffix = p.suffix.lower()
        if suffix == ".parquet":
            fmt = "parquet"
        elif suffix == ".csv":
            fmt = "csv"
        else:
            raise ValueError(f"Cannot infer format from extension: {p.suffix} (use .parquet or .csv)")

    if fmt == "parquet":
        df.to_parquet(p, index=index)
    elif fmt == "csv":
        df.to_csv(p, index=index)
    else:
        raise ValueError(f"Unsupported fmt: {fmt}")

    logger.info("Saved table: %s (rows=%d, cols=%d)", p, len(df), len(df.columns))
    return p


def save_bundle(bundle_dir: str | Path, tables: dict[str, pd.DataFrame], state: dict[str, Any]) -> Path:
    """
    Persist a result bundle: one parquet per table plus ``state.json``.

    Each file is written to a temporary name and moved into place; the state
    file goes last, so a reader never sees a state newer than its tables.
    """
    d = Path(bundle_dir)
    d.mkdir(parents=True, exist_ok=True)

    for name, df in tables.items():
        final = d / f"{name}.parquet"
        tmp = d / f".{name}.parquet.tmp"
        df.to_parquet(tmp, index=False)
        os.replace(tmp, final)

    final_state = d / STATE_FILE
    tmp_state = d / f".{STATE_FILE}.tmp"
    tmp_state.write_text(json.dumps(state, indent=2), encoding="utf-8")
    os.replace(tmp_state, final_state)

    logger.debug("Saved bundle: %s (tables=%s)", d, ", ".join(tables))
    return d


def bundle_exists(bundle_dir: str | Path) -> bool:
    return (Path(bundle_dir) / STATE_FILE).exists()


def load_bundle(bundle_dir: str | Path, table_names: list[str]) -> tuple[dict[str, pd.DataFrame], dict[str, Any]]:
    d = Path(bundle_dir)
    state_path = d / STATE_FILE
    if not state_path.exists():
        raise FileNotFoundError(f"Bundle state not found: {state_path}")

    state = json.loads(state_path.read_text(encoding="utf-8"))
    tables: dict[str, pd.DataFrame] = {}
    for name in table_names:
        p = d / f"{name}.parquet"
        if not p.exists():
            raise FileNotFoundError(f"Bundle table not found: {p}")
        tables[name] = pd.read_parquet(p)
    logger.info("Loaded bundle: %s", d)
    return tables, state
