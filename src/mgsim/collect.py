from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

logger = logging.getLogger(__name__)


class CollectError(RuntimeError):
    """Raised when result collection fails."""


def net_exchange_table(fva: pd.DataFrame) -> pd.DataFrame:
    """
    Add per-(sample, stage, reaction) net exchange capacities to the long FVA table:
    - net_production = secretion_max + uptake_min
    - net_uptake = abs(uptake_min + secretion_min)
    """
    required = {"sample_id", "stage", "reaction_id", "uptake_min", "secretion_max", "secretion_min"}
    missing = required - set(fva.columns)
    if missing:
        raise CollectError(f"Missing required columns in FVA table: {sorted(missing)}")

    df = fva.copy()
    df["net_production"] = df["secretion_max"] + df["uptake_min"]
    df["net_uptake"] = (df["uptake_min"] + df["secretion_min"]).abs()
    return df


def wide_by_sample(long_df: pd.DataFrame, stage: str, value: str) -> pd.DataFrame:
    """
    Pivot one stage of the long table: 1 row per reaction_id, 1 column per sample_id.
    """
    needed = {"sample_id", "stage", "reaction_id", value}
    missing = needed - set(long_df.columns)
    if missing:
        raise CollectError(f"Missing columns to build wide table: {sorted(missing)}")

    df = long_df.loc[long_df["stage"] == stage, ["sample_id", "reaction_id", value]]
    if df.duplicated(subset=["sample_id", "reaction_id"]).any():
        raise CollectError(f"Duplicate rows found for (sample_id, reaction_id) in stage {stage}.")

    samples = list(dict.fromkeys(df["sample_id"].tolist()))
    reactions = list(dict.fromkeys(df["reaction_id"].tolist()))
    wide = df.pivot(index="reaction_id", columns="sample_id", values=value)
    return wide.reindex(index=reactions, columns=samples)


def collect_bundle(outdir: str | Path) -> dict[str, pd.DataFrame]:
    """
    Load the final bundle under ``outdir`` and build wide tables.

    Returns
    -------
    Mapping "<stage>_net_production" / "<stage>_net_uptake" -> wide table,
    plus "objectives" (stage x sample) and "infeasible".
    """
    from mgsim.simulate import FINAL_BUNDLE, STAGES, SimulationResults

    bundle_dir = Path(outdir) / FINAL_BUNDLE
    if not bundle_dir.exists():
        raise FileNotFoundError(f"Final result bundle not found: {bundle_dir}")
    results = SimulationResults.load(bundle_dir)

    out: dict[str, pd.DataFrame] = {}
    net = net_exchange_table(results.fva)
    for stage in STAGES:
        if not (net["stage"] == stage).any():
            continue
        out[f"{stage}_net_production"] = wide_by_sample(net, stage, "net_production")
        out[f"{stage}_net_uptake"] = wide_by_sample(net, stage, "net_uptake")

    obj = results.objectives
    out["objectives"] = obj.pivot(index="stage", columns="sample_id", values="objective_value").reindex(
        columns=results.completed
    )
    out["infeasible"] = results.infeasible
    logger.info("Collected %d tables from %s", len(out), bundle_dir)
    return out
