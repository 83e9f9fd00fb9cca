from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

ALLOWED_SENSES: tuple[str, ...] = ("max", "min")


@dataclass(frozen=True)
class SolverSession:
    """
    Solver configuration handed explicitly to every solve.

    Parameters
    ----------
    solver:
        optlang interface name (e.g. "glpk", "gurobi", "cplex"). ``None`` keeps
        whatever the model already uses.
    tolerance:
        Feasibility tolerance; ``None`` keeps the solver default.
    sense:
        Objective direction, "max" or "min".

    The session holds no solver objects itself, so it can be pickled into
    joblib workers.
    """

    solver: str | None = None
    tolerance: float | None = None
    sense: str = "max"

    def __post_init__(self) -> None:
        if self.sense not in ALLOWED_SENSES:
            raise ValueError(f"sense must be one of {ALLOWED_SENSES}, got: {self.sense!r}")

    def alters(self, model) -> bool:
        """True if configure() would change the solver or tolerance of ``model``."""
        if self.tolerance is not None and float(self.tolerance) != float(model.tolerance):
            return True
        return self.solver is not None and _interface_name(model) != self.solver

    def configure(self, model) -> None:
        if self.solver is not None and _interface_name(model) != self.solver:
            logger.debug("Switching model %s to solver %s", model.id, self.solver)
            model.solver = self.solver
        if self.tolerance is not None:
            model.tolerance = float(self.tolerance)

    def solve(self, model):
        """
        Solve the LP of ``model`` and return the cobra Solution.

        Infeasible and failed solves are returned (status != "optimal"), never raised.
        """
        self.configure(model)
        model.objective_direction = self.sense
        return model.optimize(raise_error=False)


def is_feasible(solution) -> bool:
    return solution is not None and str(solution.status) == "optimal"


def _interface_name(model) -> str:
    from cobra.util.solver import interface_to_str

    return interface_to_str(model.problem)
