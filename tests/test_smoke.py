from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest
from typer.testing import CliRunner

from conftest import build_linear_model
from mgsim import __version__
from mgsim.cli import app
from mgsim.config import ConfigError, SimulationSettings, load_config
from mgsim.io import load_model, load_sample_list, save_model, save_table


def test_cli_help_runs() -> None:
    runner = CliRunner()
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "mgsim" in result.stdout


def test_cli_version() -> None:
    result = CliRunner().invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_default_config_loads() -> None:
    cfg = load_config("configs/simulation_default.yaml")
    settings = SimulationSettings.from_mapping(cfg)
    assert settings == SimulationSettings()


def test_settings_reject_unknown_and_bad_values() -> None:
    with pytest.raises(ConfigError):
        SimulationSettings.from_mapping({"simulation": {"rich_diet": True, "typo_key": 1}})
    with pytest.raises(ConfigError):
        SimulationSettings.from_mapping({"rich_diet": "yes"})
    with pytest.raises(ConfigError):
        SimulationSettings.from_mapping({"fraction_of_optimum": 1.5})
    with pytest.raises(ConfigError):
        SimulationSettings.from_mapping({"fva_processes": 0})


@pytest.mark.parametrize("key", ["lower_biomass_bound", "fraction_of_optimum", "rich_diet", "model_prefix"])
def test_settings_reject_null_for_required_values(key: str) -> None:
    with pytest.raises(ConfigError):
        SimulationSettings.from_mapping({"simulation": {key: None}})


def test_settings_accept_null_for_optional_values() -> None:
    settings = SimulationSettings.from_mapping({"simulation": {"solver": None, "fva_processes": None}})
    assert settings.solver is None
    assert settings.fva_processes is None


def test_load_config_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yaml")
    bad = tmp_path / "cfg.toml"
    bad.write_text("x = 1\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(bad)
    listy = tmp_path / "cfg.yaml"
    listy.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(listy)


def test_sample_list_formats(tmp_path: Path) -> None:
    txt = tmp_path / "samples.txt"
    txt.write_text("# study\nS1\n\nS2\n", encoding="utf-8")
    assert load_sample_list(txt) == ["S1", "S2"]

    csv = tmp_path / "samples.csv"
    pd.DataFrame({"sample_id": ["S2", "S1"], "age": [30, 40]}).to_csv(csv, index=False)
    assert load_sample_list(csv) == ["S2", "S1"]

    dup = tmp_path / "dup.txt"
    dup.write_text("S1\nS1\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_sample_list(dup)


def test_model_roundtrip_keeps_bracket_ids(community_model, tmp_path: Path) -> None:
    p = save_model(community_model, tmp_path / "m.json")
    loaded = load_model(p)
    assert "EX_microbeBiomass[fe]" in loaded.reactions

    bad = tmp_path / "m.txt"
    bad.write_text("", encoding="utf-8")
    with pytest.raises(ValueError):
        load_model(bad)


def test_save_table_infers_format(tmp_path: Path) -> None:
    df = pd.DataFrame({"a": [1, 2]})
    save_table(df, tmp_path / "t.parquet")
    assert pd.read_parquet(tmp_path / "t.parquet")["a"].tolist() == [1, 2]
    with pytest.raises(ValueError):
        save_table(df, tmp_path / "t.xlsx")


def test_cli_shadow_prices(tmp_path: Path) -> None:
    from cobra.io import save_json_model

    m1, m2 = tmp_path / "donor_a.json", tmp_path / "donor_b.json"
    save_json_model(build_linear_model("a", objective_rxn="EX_b"), str(m1))
    save_json_model(build_linear_model("b", objective_rxn="EX_c"), str(m2))
    out = tmp_path / "sp.csv"

    result = CliRunner().invoke(
        app, ["shadow-prices", str(m1), str(m2), "--objective", "EX_b", "--sign", "nonzero", "--out", str(out)]
    )
    assert result.exit_code == 0, result.output
    table = pd.read_csv(out)
    assert list(table.columns) == ["Metabolite", "Objective", "donor_a", "donor_b"]
    assert set(table["Metabolite"]) == {"a", "b"}


def test_cli_simulate_and_collect(models_dir: Path, tmp_path: Path) -> None:
    samples = tmp_path / "samples.txt"
    samples.write_text("S1\nS2\n", encoding="utf-8")
    diet = tmp_path / "diet.txt"
    diet.write_text("reaction\tflux\nEX_glc(e)\t10\n", encoding="utf-8")
    cfg = tmp_path / "sim.yaml"
    cfg.write_text("simulation:\n  fva_processes: 1\n", encoding="utf-8")
    outdir = tmp_path / "out"

    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "simulate",
            "--models-dir",
            str(models_dir),
            "--samples",
            str(samples),
            "--diet",
            str(diet),
            "--config",
            str(cfg),
            "--outdir",
            str(outdir),
        ],
    )
    assert result.exit_code == 0, result.output
    assert "infeasible solves=2" in result.stdout

    result = runner.invoke(app, ["collect", str(outdir)])
    assert result.exit_code == 0, result.output
    net = pd.read_csv(outdir / "tables" / "standard_net_production.csv", index_col=0)
    assert list(net.columns) == ["S1"]


def test_cli_shadow_prices_rejects_bad_sign(tmp_path: Path) -> None:
    from cobra.io import save_json_model

    m1 = tmp_path / "donor_a.json"
    save_json_model(build_linear_model("a"), str(m1))

    result = CliRunner().invoke(app, ["shadow-prices", str(m1), "--objective", "EX_b", "--sign", "sideways"])
    assert result.exit_code == 2
    assert isinstance(result.exception, SystemExit)
