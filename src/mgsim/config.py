from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml


class ConfigError(ValueError):
    """Raised when a config file cannot be loaded or has invalid structure."""


def load_config(path: str | Path) -> dict[str, Any]:
    """
    Load a YAML or JSON config file into a dict.

    Parameters
    ----------
    path:
        Path to a .yaml/.yml or .json file.
    """
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {p}")

    suffix = p.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    elif suffix == ".json":
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
    else:
        raise ConfigError(f"Unsupported config extension: {suffix} (expected .yaml/.yml/.json)")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a mapping/dict, got: {type(data).__name__}")
    return data


@dataclass(frozen=True)
class SimulationSettings:
    """
    Options for the per-sample diet simulations.

    Notes
    -----
    ``lower_biomass_bound`` is the minimal community biomass (mmol/person/day)
    enforced on ``communityBiomass``.
    """

    rich_diet: bool = True
    personalized_diet: bool = False
    export_models: bool = False
    include_human_mets: bool = True
    lower_biomass_bound: float = 0.4
    upper_biomass_bound: float = 1.0
    repeat_sim: bool = False
    fraction_of_optimum: float = 0.9999
    solver: str | None = None
    fva_processes: int | None = None
    model_prefix: str = "microbiota_model_samp_"
    model_suffix: str = ".json"

    @classmethod
    def from_mapping(cls, cfg: dict[str, Any] | None) -> "SimulationSettings":
        """Build settings from a loaded config; the ``simulation`` section is used if present."""
        if cfg is None:
            return cls()
        if not isinstance(cfg, dict):
            raise ConfigError(f"Simulation config must be a mapping, got: {type(cfg).__name__}")
        section = cfg.get("simulation", cfg)
        if not isinstance(section, dict):
            raise ConfigError("'simulation' section must be a mapping.")

        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(section) - set(known))
        if unknown:
            raise ConfigError(f"Unknown simulation settings: {', '.join(unknown)}")

        kwargs: dict[str, Any] = {}
        for key, value in section.items():
            default = getattr(cls, key)
            if value is None:
                if default is not None:
                    raise ConfigError(f"Setting '{key}' must not be null.")
                kwargs[key] = None
            elif isinstance(default, bool):
                if not isinstance(value, bool):
                    raise ConfigError(f"Setting '{key}' must be a boolean, got: {value!r}")
                kwargs[key] = value
            elif isinstance(default, float):
                try:
                    kwargs[key] = float(value)
                except (TypeError, ValueError) as e:
                    raise ConfigError(f"Setting '{key}' must be numeric, got: {value!r}") from e
            elif key == "fva_processes":
                if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                    raise ConfigError(f"Setting 'fva_processes' must be a positive integer, got: {value!r}")
                kwargs[key] = value
            else:
                kwargs[key] = str(value)

        settings = cls(**kwargs)
        if not (0.0 < settings.fraction_of_optimum <= 1.0):
            raise ConfigError("fraction_of_optimum must be in (0, 1].")
        if settings.lower_biomass_bound > settings.upper_biomass_bound:
            raise ConfigError("lower_biomass_bound must not exceed upper_biomass_bound.")
        return settings


@dataclass(frozen=True)
class Paths:
    """Convenience container for project paths."""

    project_root: Path

    @property
    def configs_dir(self) -> Path:
        return self.project_root / "configs"

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @property
    def results_dir(self) -> Path:
        return self.project_root / "results"
