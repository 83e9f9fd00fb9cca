from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable

import pandas as pd

logger = logging.getLogger(__name__)

DIET_PREFIX = "Diet_EX_"

# Host-derived metabolites reaching the gut lumen: primary bile acids and
# amines (-10), mucins and host glycans (-1). Values are lower bounds.
HUMAN_METABOLITES: dict[str, float] = {
    "gchola": -10.0,
    "tdchola": -10.0,
    "tchola": -10.0,
    "dgchol": -10.0,
    "34dhphe": -10.0,
    "5htrp": -10.0,
    "Lkynr": -10.0,
    "f1a": -1.0,
    "gncore1": -1.0,
    "gncore2": -1.0,
    "dsT_antigen": -1.0,
    "sTn_antigen": -1.0,
    "core8": -1.0,
    "core7": -1.0,
    "core5": -1.0,
    "core4": -1.0,
    "ha": -1.0,
    "cspg_a": -1.0,
    "cspg_b": -1.0,
    "cspg_c": -1.0,
    "cspg_d": -1.0,
    "cspg_e": -1.0,
    "hspg": -1.0,
}

_COMPARTMENT_RE = re.compile(r"(\(e\)|\[e\]|\[u\])$")


class DietError(ValueError):
    """Raised when a diet table is malformed."""


def diet_to_model_ids(ids: Iterable[str]) -> list[str]:
    """
    Map diet-file exchange IDs onto community diet exchanges.

    ``EX_glc_D(e)`` / ``EX_glc_D[e]`` / ``EX_glc_D[u]`` -> ``Diet_EX_glc_D[d]``.
    IDs already in ``Diet_EX_..[d]`` form are returned unchanged.
    """
    out: list[str] = []
    for raw in ids:
        rid = str(raw).strip()
        if not rid.startswith(DIET_PREFIX) and rid.startswith("EX_"):
            rid = "Diet_" + rid
        rid = _COMPARTMENT_RE.sub("[d]", rid)
        out.append(rid)
    return out


def _coerce_diet_frame(df: pd.DataFrame, source: str) -> pd.DataFrame:
    if df.shape[1] < 2:
        raise DietError(f"Diet table needs 2 columns (exchange, flux), got {df.shape[1]}: {source}")
    out = df.iloc[:, :2].copy()
    out.columns = ["reaction_id", "flux"]
    out["reaction_id"] = out["reaction_id"].astype(str).str.strip()
    flux = pd.to_numeric(out["flux"], errors="coerce")
    bad = out.loc[flux.isna(), "reaction_id"].tolist()
    if bad:
        raise DietError(f"Non-numeric diet flux for: {', '.join(bad[:10])} ({source})")
    out["flux"] = flux.astype(float)
    if out["reaction_id"].duplicated().any():
        dups = sorted(set(out.loc[out["reaction_id"].duplicated(), "reaction_id"]))
        raise DietError(f"Duplicate diet exchanges: {', '.join(dups[:10])} ({source})")
    return out.reset_index(drop=True)


def load_diet_table(path: str | Path) -> pd.DataFrame:
    """
    Load a tab-delimited diet (header row, then exchange ID and uptake flux).

    Returns
    -------
    DataFrame with columns: reaction_id, flux (uptake, positive = available)
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Diet file not found: {p}")
    df = pd.read_csv(p, sep="\t")
    diet = _coerce_diet_frame(df, str(p))
    logger.info("Loaded diet %s: %d exchanges", p, len(diet))
    return diet


def _set_lower_bound(rxn, lb: float, changes: list) -> None:
    old_lb, old_ub = rxn.lower_bound, rxn.upper_bound
    new_lb = float(lb)
    new_ub = max(old_ub, new_lb)
    if new_lb == old_lb and new_ub == old_ub:
        return
    rxn.bounds = (new_lb, new_ub)
    changes.append((rxn.id, old_lb, old_ub, new_lb, new_ub))


def apply_diet(model, diet: pd.DataFrame) -> list[tuple[str, float, float, float, float]]:
    """
    Constrain the model's diet exchanges to a diet (in place).

    All ``Diet_EX_`` reactions are closed for uptake first (lower bound 0);
    each diet exchange present in the model then gets lower bound ``-flux``.
    Exchanges missing from the model are skipped with a warning.
    """
    changes: list[tuple[str, float, float, float, float]] = []
    for rxn in model.reactions:
        if rxn.id.startswith(DIET_PREFIX):
            _set_lower_bound(rxn, 0.0, changes)

    model_ids = diet_to_model_ids(diet["reaction_id"].tolist())
    missing: list[str] = []
    for rid, flux in zip(model_ids, diet["flux"].tolist()):
        if rid not in model.reactions:
            missing.append(rid)
            continue
        _set_lower_bound(model.reactions.get_by_id(rid), -float(flux), changes)

    if missing:
        logger.warning("Diet exchanges not found in model %s (skipped): %d", model.id, len(missing))
        logger.debug("Missing diet exchanges: %s", ", ".join(missing))
    return changes


def apply_human_metabolites(model, metabolites: dict[str, float] | None = None) -> list[tuple[str, float, float, float, float]]:
    """Provide host-derived metabolites through their ``Diet_EX_<met>[d]`` exchanges."""
    metabolites = HUMAN_METABOLITES if metabolites is None else metabolites
    changes: list[tuple[str, float, float, float, float]] = []
    for met, lb in metabolites.items():
        rid = f"{DIET_PREFIX}{met}[d]"
        if rid not in model.reactions:
            continue
        _set_lower_bound(model.reactions.get_by_id(rid), lb, changes)
    return changes


def load_personalized_diets(path: str | Path) -> pd.DataFrame:
    """
    Load per-individual diets: first column exchange IDs, one flux column per sample.

    Comma- or tab-delimited (inferred from extension: .csv vs anything else).
    The exchange column becomes the index (model IDs, see diet_to_model_ids).
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Personalized diet file not found: {p}")
    sep = "," if p.suffix.lower() == ".csv" else "\t"
    df = pd.read_csv(p, sep=sep)
    if df.shape[1] < 2:
        raise DietError(f"Personalized diet table needs an exchange column and sample columns: {p}")
    df = df.set_index(df.columns[0])
    df.index = diet_to_model_ids(df.index.astype(str))
    df.columns = [str(c).strip() for c in df.columns]
    for c in df.columns:
        df[c] = pd.to_numeric(df[c], errors="coerce")
    logger.info("Loaded personalized diets %s: exchanges=%d, samples=%d", p, len(df), len(df.columns))
    return df


def personalized_diet_for(table: pd.DataFrame, sample_id: str) -> pd.DataFrame:
    """Return one individual's diet as a (reaction_id, flux) table; NaN fluxes are dropped."""
    sid = str(sample_id)
    if sid not in table.columns:
        raise DietError(f"No personalized diet for sample: {sid}")
    col = table[sid].dropna()
    return pd.DataFrame({"reaction_id": col.index.astype(str), "flux": col.astype(float).to_numpy()})
