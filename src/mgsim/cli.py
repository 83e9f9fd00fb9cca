from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import typer
from rich.logging import RichHandler

from mgsim import __version__

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="mgsim: microbial community FBA simulations")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_time=False, show_path=False)],
    )


def _read_objectives(objective: list[str], objectives_file: Path | None) -> list[str]:
    out = list(objective or [])
    if objectives_file is not None:
        lines = objectives_file.read_text(encoding="utf-8").splitlines()
        out.extend(s.strip() for s in lines if s.strip() and not s.strip().startswith("#"))
    return list(dict.fromkeys(out))


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
) -> None:
    """Entry point."""
    _setup_logging(verbose=verbose)


@app.command()
def version() -> None:
    """Print package version."""
    typer.echo(__version__)


@app.command("shadow-prices")
def shadow_prices(
    models: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Model files (.json/.xml/.mat)."),
    objective: List[str] = typer.Option([], "--objective", "-o", help="Objective reaction ID. Repeatable."),
    objectives_file: Optional[Path] = typer.Option(
        None, "--objectives-file", exists=True, dir_okay=False, help="Text file with one objective per line."
    ),
    sense: str = typer.Option("max", help="Objective sense: max or min."),
    sign: str = typer.Option("nonzero", help="Shadow prices to keep: positive, negative or nonzero."),
    n_jobs: int = typer.Option(1, "--n-jobs", help="Parallel workers (joblib). Use 1 to disable."),
    solver: Optional[str] = typer.Option(None, help="LP solver interface (e.g. glpk, gurobi, cplex)."),
    out: Path = typer.Option(Path("results/shadow_prices.csv"), help="Output table (.csv or .parquet)."),
) -> None:
    """Shadow prices of metabolites relevant for each objective in each model."""
    from mgsim.io import load_model, save_table
    from mgsim.shadow import ShadowPriceSign, analyse_objective_shadow_prices
    from mgsim.solver import SolverSession

    objectives = _read_objectives(objective, objectives_file)
    if not objectives:
        raise typer.BadParameter("Give at least one --objective or an --objectives-file.")

    try:
        session = SolverSession(solver=solver, sense=sense)
        parsed_sign = ShadowPriceSign.parse(sign)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e

    loaded = [load_model(p) for p in models]
    model_ids = [p.stem for p in models]
    table = analyse_objective_shadow_prices(
        loaded,
        objectives,
        model_ids=model_ids,
        sense=sense,
        sign=parsed_sign,
        n_jobs=n_jobs,
        session=session,
    )
    save_table(table, out)
    typer.echo(f"[OK] Shadow prices: rows={len(table)}, models={len(model_ids)} -> {out}")


@app.command()
def simulate(
    models_dir: Path = typer.Option(..., "--models-dir", exists=True, file_okay=False, help="Per-sample models."),
    samples: Path = typer.Option(..., exists=True, dir_okay=False, help="Sample IDs (.txt or .csv with sample_id)."),
    diet: Path = typer.Option(..., exists=True, dir_okay=False, help="Tab-delimited diet (exchange, flux)."),
    personalized_diet: Optional[Path] = typer.Option(
        None, "--personalized-diet", exists=True, dir_okay=False, help="Per-sample diets (exchanges x samples)."
    ),
    config: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="Simulation YAML/JSON config."),
    outdir: Optional[Path] = typer.Option(None, help="Results directory (default: results/simulations)."),
) -> None:
    """Simulate every sample under rich, standard and personalized diets with checkpointing."""
    from mgsim.config import Paths, SimulationSettings, load_config
    from mgsim.diet import load_diet_table, load_personalized_diets
    from mgsim.io import load_sample_list
    from mgsim.simulate import run_simulations

    settings = SimulationSettings.from_mapping(load_config(config) if config else None)
    if personalized_diet is not None and not settings.personalized_diet:
        logger.info("Personalized diet given: enabling the personalized stage")
        settings = replace(settings, personalized_diet=True)
    if outdir is None:
        outdir = Paths(Path.cwd()).results_dir / "simulations"

    sample_ids = load_sample_list(samples)
    diet_df = load_diet_table(diet)
    pers = load_personalized_diets(personalized_diet) if personalized_diet else None

    results = run_simulations(
        sample_ids,
        models_dir=models_dir,
        diet=diet_df,
        outdir=outdir,
        settings=settings,
        personalized_diets=pers,
    )
    typer.echo(
        f"[OK] Completed samples={len(results.completed)}; infeasible solves={len(results.infeasible)}"
    )
    typer.echo(f"[OK] Outputs in: {outdir}")


@app.command()
def collect(
    outdir: Path = typer.Argument(..., exists=True, file_okay=False, help="Simulation results directory."),
    dest: Optional[Path] = typer.Option(None, help="Where to write CSV tables (default: <outdir>/tables)."),
) -> None:
    """Write per-stage net production/uptake tables (reactions x samples) as CSV."""
    from mgsim.collect import collect_bundle
    from mgsim.io import save_table

    dest = dest or outdir / "tables"
    tables = collect_bundle(outdir)
    for name, df in tables.items():
        save_table(df, dest / f"{name}.csv", index=name != "infeasible")
    typer.echo(f"[OK] Wrote {len(tables)} tables -> {dest}")


if __name__ == "__main__":
    app()
