from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd

from mgsim.community import adapt_community_model, diet_reactions, exchange_ids, fecal_reactions
from mgsim.config import SimulationSettings
from mgsim.diet import apply_diet, apply_human_metabolites, personalized_diet_for
from mgsim.fva import FVA_COLUMNS, FVAError, run_exchange_fva
from mgsim.io import bundle_exists, load_bundle, load_model, save_bundle, save_model
from mgsim.solver import SolverSession, is_feasible

logger = logging.getLogger(__name__)

STAGES: tuple[str, ...] = ("rich", "standard", "personalized")
FINAL_BUNDLE = "simRes"
INTERMEDIATE_BUNDLE = "intRes"

FVA_TABLE_COLUMNS: list[str] = ["sample_id", "stage", *FVA_COLUMNS]
OBJECTIVE_COLUMNS: list[str] = ["sample_id", "stage", "objective_value", "status"]
INFEASIBLE_COLUMNS: list[str] = ["sample_id", "stage", "model_id", "status"]
TABLES: list[str] = ["fva", "objectives", "infeasible"]
FVA_FAILED = "fva_failed"


class CheckpointError(RuntimeError):
    """Raised when a checkpoint does not match the requested sample list."""


class SampleState(str, Enum):
    LOADED = "loaded"
    BOUNDS_ADJUSTED = "bounds_adjusted"
    RICH_DIET_SOLVED = "rich_diet_solved"
    STANDARD_DIET_SOLVED = "standard_diet_solved"
    PERSONALIZED_DIET_SOLVED = "personalized_diet_solved"
    RECORDED_INFEASIBLE = "recorded_infeasible"
    PERSISTED = "persisted"


_SOLVED_STATE = {
    "rich": SampleState.RICH_DIET_SOLVED,
    "standard": SampleState.STANDARD_DIET_SOLVED,
    "personalized": SampleState.PERSONALIZED_DIET_SOLVED,
}


def _empty(columns: list[str]) -> pd.DataFrame:
    return pd.DataFrame(columns=columns)


def _normalize(df: pd.DataFrame, columns: list[str], numeric: Sequence[str]) -> pd.DataFrame:
    out = df.reindex(columns=columns).reset_index(drop=True)
    for c in columns:
        if c in numeric:
            out[c] = pd.to_numeric(out[c], errors="coerce").astype(float)
        else:
            out[c] = out[c].astype(str)
    return out


def _append(df: pd.DataFrame, new: pd.DataFrame, columns: list[str], numeric: Sequence[str]) -> pd.DataFrame:
    frames = [f for f in (df, new) if not f.empty]
    if not frames:
        return _normalize(_empty(columns), columns, numeric)
    return _normalize(pd.concat(frames, ignore_index=True), columns, numeric)


_FVA_NUMERIC = FVA_COLUMNS[1:]
_OBJ_NUMERIC = ("objective_value",)


@dataclass
class SampleOutcome:
    sample_id: str
    exchanges: list[str]
    fva: pd.DataFrame
    objectives: pd.DataFrame
    infeasible: pd.DataFrame
    states: list[SampleState] = field(default_factory=list)


@dataclass
class SimulationResults:
    """
    Accumulated results of a simulation run.

    Tables
    ------
    - fva: sample_id, stage, reaction_id, uptake_min, secretion_max, uptake_max, secretion_min
    - objectives: sample_id, stage, objective_value (NaN if infeasible), status
    - infeasible: sample_id, stage, model_id, status
    """

    fva: pd.DataFrame = field(default_factory=lambda: _normalize(_empty(FVA_TABLE_COLUMNS), FVA_TABLE_COLUMNS, _FVA_NUMERIC))
    objectives: pd.DataFrame = field(default_factory=lambda: _normalize(_empty(OBJECTIVE_COLUMNS), OBJECTIVE_COLUMNS, _OBJ_NUMERIC))
    infeasible: pd.DataFrame = field(default_factory=lambda: _normalize(_empty(INFEASIBLE_COLUMNS), INFEASIBLE_COLUMNS, ()))
    exchanges: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)

    def add(self, outcome: SampleOutcome) -> None:
        self.fva = _append(self.fva, outcome.fva, FVA_TABLE_COLUMNS, _FVA_NUMERIC)
        self.objectives = _append(self.objectives, outcome.objectives, OBJECTIVE_COLUMNS, _OBJ_NUMERIC)
        self.infeasible = _append(self.infeasible, outcome.infeasible, INFEASIBLE_COLUMNS, ())
        self.exchanges = list(dict.fromkeys([*self.exchanges, *outcome.exchanges]))
        self.completed.append(outcome.sample_id)

    def save(self, bundle_dir: str | Path) -> Path:
        return save_bundle(
            bundle_dir,
            {"fva": self.fva, "objectives": self.objectives, "infeasible": self.infeasible},
            {"exchanges": self.exchanges, "completed": self.completed},
        )

    @classmethod
    def load(cls, bundle_dir: str | Path) -> "SimulationResults":
        tables, state = load_bundle(bundle_dir, TABLES)
        try:
            completed = [str(s) for s in state["completed"]]
            exchanges = [str(s) for s in state["exchanges"]]
        except (KeyError, TypeError) as e:
            raise CheckpointError(f"Malformed bundle state in {bundle_dir}: {e}") from e

        # rows of a sample written after the last state update are dropped
        def _keep(df: pd.DataFrame) -> pd.DataFrame:
            return df.loc[df["sample_id"].astype(str).isin(completed)]

        return cls(
            fva=_normalize(_keep(tables["fva"]), FVA_TABLE_COLUMNS, _FVA_NUMERIC),
            objectives=_normalize(_keep(tables["objectives"]), OBJECTIVE_COLUMNS, _OBJ_NUMERIC),
            infeasible=_normalize(_keep(tables["infeasible"]), INFEASIBLE_COLUMNS, ()),
            exchanges=exchanges,
            completed=completed,
        )


def _resume_index(completed: list[str], samples: Sequence[str]) -> int:
    k = len(completed)
    if k > len(samples) or list(samples[:k]) != completed:
        raise CheckpointError(
            "Checkpoint does not match the sample list: "
            f"checkpoint has {k} completed samples ({', '.join(completed[:5])}...)"
        )
    return k


def _run_stage(
    *,
    model,
    sample_id: str,
    stage: str,
    fecal: list[str],
    diet: list[str],
    run_fva: bool,
    settings: SimulationSettings,
    session: SolverSession,
    outdir: Path,
    outcome: SampleOutcome,
    fva_frames: list[pd.DataFrame],
    objective_rows: list[dict],
    infeasible_rows: list[dict],
) -> None:
    sol = session.solve(model)
    status = str(sol.status)
    if not is_feasible(sol):
        logger.warning("Infeasible %s diet for sample %s (status=%s); recorded and continuing", stage, sample_id, status)
        objective_rows.append({"sample_id": sample_id, "stage": stage, "objective_value": np.nan, "status": status})
        infeasible_rows.append({"sample_id": sample_id, "stage": stage, "model_id": str(model.id), "status": status})
        outcome.states.append(SampleState.RECORDED_INFEASIBLE)
        return

    objective_value = float(sol.objective_value)
    objective_rows.append({"sample_id": sample_id, "stage": stage, "objective_value": objective_value, "status": status})
    logger.info("Sample %s, %s diet: objective=%.6g", sample_id, stage, objective_value)

    if settings.export_models:
        out_path = outdir / stage.capitalize() / f"microbiota_model_{stage}_{sample_id}.json"
        save_model(model, out_path)
    elif run_fva:
        try:
            fva = run_exchange_fva(
                model,
                fecal,
                diet,
                fraction_of_optimum=settings.fraction_of_optimum,
                processes=settings.fva_processes,
            )
        except FVAError as e:
            logger.warning("FVA failed for %s diet of sample %s (%s); recorded and continuing", stage, sample_id, e)
            infeasible_rows.append({"sample_id": sample_id, "stage": stage, "model_id": str(model.id), "status": FVA_FAILED})
            outcome.states.append(SampleState.RECORDED_INFEASIBLE)
            return
        fva.insert(0, "sample_id", sample_id)
        fva.insert(1, "stage", stage)
        fva_frames.append(fva)
    outcome.states.append(_SOLVED_STATE[stage])


def simulate_sample(
    model,
    sample_id: str,
    *,
    diet: pd.DataFrame,
    settings: SimulationSettings,
    session: SolverSession,
    outdir: str | Path,
    personalized_diets: pd.DataFrame | None = None,
) -> SampleOutcome:
    """
    Run the rich, standard and (optionally) personalized diet stages for one sample.

    Diet edits are made inside ``with model:`` blocks, so every stage starts
    from the adapted base model regardless of the previous stage's outcome.
    """
    sample_id = str(sample_id)
    outdir = Path(outdir)
    outcome = SampleOutcome(
        sample_id=sample_id,
        exchanges=exchange_ids(model),
        fva=_empty(FVA_TABLE_COLUMNS),
        objectives=_empty(OBJECTIVE_COLUMNS),
        infeasible=_empty(INFEASIBLE_COLUMNS),
        states=[SampleState.LOADED],
    )

    adapt_community_model(
        model,
        lower_biomass_bound=settings.lower_biomass_bound,
        upper_biomass_bound=settings.upper_biomass_bound,
    )
    session.configure(model)
    outcome.states.append(SampleState.BOUNDS_ADJUSTED)

    fecal = fecal_reactions(model)
    diet_rxns = diet_reactions(model)
    fva_frames: list[pd.DataFrame] = []
    objective_rows: list[dict] = []
    infeasible_rows: list[dict] = []
    common = dict(
        model=model,
        sample_id=sample_id,
        fecal=fecal,
        diet=diet_rxns,
        settings=settings,
        session=session,
        outdir=outdir,
        outcome=outcome,
        fva_frames=fva_frames,
        objective_rows=objective_rows,
        infeasible_rows=infeasible_rows,
    )

    with model:
        _run_stage(stage="rich", run_fva=settings.rich_diet, **common)

    with model:
        apply_diet(model, diet)
        if settings.include_human_mets:
            apply_human_metabolites(model)
        _run_stage(stage="standard", run_fva=True, **common)

    if settings.personalized_diet:
        if personalized_diets is None:
            raise ValueError("personalized_diet is enabled but no personalized diet table was given")
        with model:
            apply_diet(model, personalized_diet_for(personalized_diets, sample_id))
            if settings.include_human_mets:
                apply_human_metabolites(model)
            _run_stage(stage="personalized", run_fva=True, **common)

    if fva_frames:
        outcome.fva = pd.concat(fva_frames, ignore_index=True)
    outcome.objectives = pd.DataFrame(objective_rows, columns=OBJECTIVE_COLUMNS)
    outcome.infeasible = pd.DataFrame(infeasible_rows, columns=INFEASIBLE_COLUMNS)
    return outcome


def model_path_for(models_dir: str | Path, sample_id: str, settings: SimulationSettings) -> Path:
    return Path(models_dir) / f"{settings.model_prefix}{sample_id}{settings.model_suffix}"


def run_simulations(
    samples: Sequence[str],
    *,
    models_dir: str | Path,
    diet: pd.DataFrame,
    outdir: str | Path,
    settings: SimulationSettings | None = None,
    session: SolverSession | None = None,
    personalized_diets: pd.DataFrame | None = None,
) -> SimulationResults:
    """
    Simulate every sample under the configured diets, checkpointing after each one.

    Output layout under ``outdir``
    ------------------------------
    - intRes/: intermediate bundle, rewritten after every sample
    - simRes/: final bundle, written once all samples are done
    - Rich/, Standard/, Personalized/: constrained models (export_models only)

    A finished ``simRes`` is loaded and returned as is, and an existing
    ``intRes`` resumes after its last completed sample, unless
    ``settings.repeat_sim`` is set.
    """
    settings = settings or SimulationSettings()
    session = session or SolverSession(solver=settings.solver)
    samples = [str(s) for s in samples]
    outdir = Path(outdir)
    final_dir = outdir / FINAL_BUNDLE
    int_dir = outdir / INTERMEDIATE_BUNDLE

    if settings.personalized_diet and personalized_diets is None:
        raise ValueError("personalized_diet is enabled but no personalized diet table was given")

    if not settings.repeat_sim and bundle_exists(final_dir):
        logger.info("Simulations already done, loading results from %s", final_dir)
        return SimulationResults.load(final_dir)

    results = SimulationResults()
    start = 0
    if not settings.repeat_sim and bundle_exists(int_dir):
        results = SimulationResults.load(int_dir)
        start = _resume_index(results.completed, samples)
        logger.info("Checkpoint found: resuming at sample %d/%d", start + 1, len(samples))

    for sid in samples[start:]:
        model = load_model(model_path_for(models_dir, sid, settings))
        outcome = simulate_sample(
            model,
            sid,
            diet=diet,
            settings=settings,
            session=session,
            outdir=outdir,
            personalized_diets=personalized_diets,
        )
        results.add(outcome)
        results.save(int_dir)
        outcome.states.append(SampleState.PERSISTED)
        logger.debug("Sample %s states: %s", sid, " -> ".join(s.value for s in outcome.states))

    results.save(final_dir)
    n_inf = len(results.infeasible)
    if n_inf:
        logger.warning("%d infeasible solves recorded; see the infeasible table", n_inf)
    logger.info("Simulations complete: samples=%d, fva_rows=%d", len(results.completed), len(results.fva))
    return results
