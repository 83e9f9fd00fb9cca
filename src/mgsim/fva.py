from __future__ import annotations

import logging
from typing import Iterable

import numpy as np
import pandas as pd

from mgsim.community import fecal_id_for_diet

logger = logging.getLogger(__name__)

FVA_COLUMNS: tuple[str, ...] = ("reaction_id", "uptake_min", "secretion_max", "uptake_max", "secretion_min")


class FVAError(RuntimeError):
    """Raised when FVA cannot be computed."""


def run_targeted_fva(
    model,
    targets: Iterable[str],
    fraction_of_optimum: float = 0.9999,
    processes: int | None = None,
) -> pd.DataFrame:
    """
    Run Flux Variability Analysis (FVA) for a set of reaction IDs.

    Returns
    -------
    DataFrame indexed by reaction ID with columns: fva_min, fva_max
    """
    from cobra.flux_analysis import flux_variability_analysis

    target_list = list(dict.fromkeys([str(t) for t in targets]))
    if not (0.0 < float(fraction_of_optimum) <= 1.0):
        raise ValueError("fraction_of_optimum must be in (0, 1].")
    if not target_list:
        return pd.DataFrame(columns=["fva_min", "fva_max"], dtype=float)

    logger.debug("Running FVA: n_targets=%d, fraction_of_optimum=%.4f", len(target_list), fraction_of_optimum)
    try:
        fva_df = flux_variability_analysis(
            model,
            reaction_list=target_list,
            fraction_of_optimum=float(fraction_of_optimum),
            loopless=False,
            processes=processes,
        )
    except Exception as e:  # noqa: BLE001
        raise FVAError(f"FVA failed: {e}") from e

    out = fva_df.rename(columns={"minimum": "fva_min", "maximum": "fva_max"})
    out.index = out.index.astype(str)
    return out[["fva_min", "fva_max"]]


def run_exchange_fva(
    model,
    fecal: list[str],
    diet: list[str],
    *,
    fraction_of_optimum: float = 0.9999,
    processes: int | None = None,
) -> pd.DataFrame:
    """
    FVA on fecal and diet exchanges, paired per metabolite.

    Output columns (one row per fecal exchange ID, e.g. ``EX_ac[fe]``)
    ------------------------------------------------------------------
    - uptake_min: minimal flux of ``Diet_EX_..[d]`` (maximal uptake, negative)
    - secretion_max: maximal flux of ``EX_..[fe]``
    - uptake_max: maximal flux of the diet exchange
    - secretion_min: minimal flux of the fecal exchange
    """
    if not fecal:
        return pd.DataFrame(columns=list(FVA_COLUMNS))

    fva = run_targeted_fva(model, [*fecal, *diet], fraction_of_optimum=fraction_of_optimum, processes=processes)
    diet_by_fecal = {fecal_id_for_diet(d): d for d in diet}

    rows: list[dict] = []
    for rid in fecal:
        partner = diet_by_fecal.get(rid)
        if partner is not None and partner in fva.index:
            d_min, d_max = float(fva.at[partner, "fva_min"]), float(fva.at[partner, "fva_max"])
        else:
            d_min = d_max = np.nan
        rows.append(
            {
                "reaction_id": rid,
                "uptake_min": d_min,
                "secretion_max": float(fva.at[rid, "fva_max"]),
                "uptake_max": d_max,
                "secretion_min": float(fva.at[rid, "fva_min"]),
            }
        )
    return pd.DataFrame(rows, columns=list(FVA_COLUMNS))
