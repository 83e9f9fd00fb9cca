from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

import pandas as pd
from joblib import Parallel, delayed

from mgsim.solver import SolverSession, is_feasible

logger = logging.getLogger(__name__)

SHADOW_PRICE_TOL = 1e-8
SLACK_PREFIX = "slack_"


class ShadowPriceSign(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NONZERO = "nonzero"

    @classmethod
    def parse(cls, value: "str | ShadowPriceSign") -> "ShadowPriceSign":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            allowed = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown shadow price sign: {value!r} (allowed: {allowed})") from e


def _sign_matches(dual: float, sign: ShadowPriceSign) -> bool:
    if abs(dual) <= SHADOW_PRICE_TOL:
        return False
    if sign is ShadowPriceSign.POSITIVE:
        return dual > 0
    if sign is ShadowPriceSign.NEGATIVE:
        return dual < 0
    return True


def extract_shadow_prices(model, solution, sign: str | ShadowPriceSign = "nonzero") -> list[tuple[str, float]]:
    """
    Return ``(metabolite_id, dual)`` for metabolites relevant to the optimized objective.

    Parameters
    ----------
    model:
        cobra.Model the solution was computed on.
    solution:
        Feasible cobra.Solution carrying ``shadow_prices``.
    sign:
        "positive", "negative" or "nonzero".

    Slack metabolites (IDs starting with ``slack_``) are ignored, as are duals
    with magnitude at or below 1e-8. Output follows model metabolite order.
    """
    sign = ShadowPriceSign.parse(sign)
    duals = solution.shadow_prices

    out: list[tuple[str, float]] = []
    for met in model.metabolites:
        mid = str(met.id)
        if mid.startswith(SLACK_PREFIX) or mid not in duals.index:
            continue
        dual = float(duals[mid])
        if _sign_matches(dual, sign):
            out.append((mid, dual))
    return out


@dataclass
class ObjectiveScan:
    """Shadow prices per (model_index, objective); infeasible or missing pairs have no entry."""

    n_models: int
    entries: dict[tuple[int, str], list[tuple[str, float]]] = field(default_factory=dict)

    def get(self, model_index: int, objective: str) -> list[tuple[str, float]] | None:
        return self.entries.get((model_index, objective))


def _scan_one_model(
    model,
    objectives: Sequence[str],
    sign: ShadowPriceSign,
    session: SolverSession,
    copy_model: bool,
) -> dict[str, list[tuple[str, float]]]:
    if copy_model or session.alters(model):
        model = model.copy()
    session.configure(model)
    present = set(r.id for r in model.reactions)

    found: dict[str, list[tuple[str, float]]] = {}
    for obj in objectives:
        if obj not in present:
            logger.debug("Objective %s not in model %s (skipped)", obj, model.id)
            continue
        with model:
            model.objective = obj
            sol = session.solve(model)
            if not is_feasible(sol):
                logger.debug("Objective %s in model %s not solved: status=%s", obj, model.id, sol.status)
                continue
            found[obj] = extract_shadow_prices(model, sol, sign)
    return found


def scan_objectives(
    models: Sequence,
    objectives: Sequence[str],
    *,
    sign: str | ShadowPriceSign = "nonzero",
    session: SolverSession | None = None,
    n_jobs: int = 1,
    backend: str = "loky",
) -> ObjectiveScan:
    """
    Optimize every objective in every model and keep shadow prices of feasible solutions.

    With ``n_jobs > 1`` each model is solved in its own joblib task on a private
    copy; results are merged by model index once all tasks finished.
    """
    sign = ShadowPriceSign.parse(sign)
    session = session or SolverSession()
    objectives = list(dict.fromkeys(str(o) for o in objectives))

    logger.info(
        "Scanning objectives: n_models=%d, n_objectives=%d, sign=%s, sense=%s, n_jobs=%d",
        len(models),
        len(objectives),
        sign.value,
        session.sense,
        n_jobs,
    )
    if int(n_jobs) > 1:
        results = Parallel(n_jobs=int(n_jobs), backend=backend)(
            delayed(_scan_one_model)(m, objectives, sign, session, backend == "threading") for m in models
        )
    else:
        results = [_scan_one_model(m, objectives, sign, session, False) for m in models]

    scan = ObjectiveScan(n_models=len(models))
    for i, found in enumerate(results):
        for obj, prices in found.items():
            scan.entries[(i, obj)] = prices
    return scan


def build_shadow_price_table(
    scan: ObjectiveScan,
    model_ids: Sequence[str],
    objectives: Sequence[str],
) -> pd.DataFrame:
    """
    Build the (Metabolite, Objective) x model table.

    Rows appear in order of first occurrence (model-major, then objective, then
    metabolite). Every model gets a column, even if it contributed nothing.
    """
    if len(model_ids) != scan.n_models:
        raise ValueError(f"Expected {scan.n_models} model IDs, got {len(model_ids)}")

    rows: dict[tuple[str, str], dict[str, float]] = {}
    for i, mid in enumerate(model_ids):
        for obj in dict.fromkeys(str(o) for o in objectives):
            prices = scan.get(i, obj)
            if not prices:
                continue
            for met, dual in prices:
                rows.setdefault((met, obj), {})[str(mid)] = dual

    records = [{"Metabolite": met, "Objective": obj, **vals} for (met, obj), vals in rows.items()]
    columns = ["Metabolite", "Objective", *[str(m) for m in model_ids]]
    return pd.DataFrame(records, columns=columns)


def analyse_objective_shadow_prices(
    models: Sequence,
    objectives: Sequence[str],
    *,
    model_ids: Sequence[str] | None = None,
    sense: str = "max",
    sign: str | ShadowPriceSign = "nonzero",
    n_jobs: int = 1,
    session: SolverSession | None = None,
) -> pd.DataFrame:
    """
    Shadow prices of metabolites relevant for each objective in each model.

    Parameters
    ----------
    models:
        cobra.Model instances.
    objectives:
        Reaction IDs to optimize one at a time (e.g. fecal exchanges such as
        ``EX_co2[fe]``). Objectives a model lacks are skipped for that model.
    model_ids:
        Column labels; defaults to ``model_1 .. model_n``.
    sense:
        "max" or "min". Overrides the sense of a passed ``session``.
    sign:
        Which shadow prices to collect: "positive", "negative" or "nonzero".
    n_jobs:
        joblib workers; 1 runs sequentially.

    Returns
    -------
    DataFrame with columns Metabolite, Objective, <model_id>...
    """
    if model_ids is None:
        model_ids = [f"model_{i}" for i in range(1, len(models) + 1)]
    elif len(model_ids) != len(models):
        raise ValueError(f"model_ids has {len(model_ids)} entries for {len(models)} models")

    if session is None:
        session = SolverSession(sense=sense)
    elif session.sense != sense:
        session = SolverSession(solver=session.solver, tolerance=session.tolerance, sense=sense)

    scan = scan_objectives(models, objectives, sign=sign, session=session, n_jobs=n_jobs)
    table = build_shadow_price_table(scan, model_ids, objectives)
    logger.info("Shadow price table: rows=%d, models=%d", len(table), len(model_ids))
    return table
