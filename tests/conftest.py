from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest
from cobra import Metabolite, Model, Reaction


def _rxn(model: Model, rid: str, stoich: dict[str, float], lb: float, ub: float) -> Reaction:
    rxn = Reaction(rid)
    rxn.add_metabolites({model.metabolites.get_by_id(m): c for m, c in stoich.items()})
    rxn.bounds = (lb, ub)
    return rxn


def build_community_model(model_id: str = "toy_community", member_uptake_cap: float = 1000.0) -> Model:
    """
    Two-member community (A, B) on glucose; B secretes acetate.

    Diet -> lumen -> fecal transport for glc and ac, member exchange with the
    lumen, member biomass pooled by communityBiomass into microbeBiomass.
    ``member_uptake_cap`` limits glucose import into each member.
    """
    m = Model(model_id)
    mets = [
        ("glc[d]", "d"),
        ("glc[u]", "u"),
        ("glc[fe]", "fe"),
        ("ac[d]", "d"),
        ("ac[u]", "u"),
        ("ac[fe]", "fe"),
        ("A_glc[c]", "c"),
        ("A_x[c]", "c"),
        ("A_biomass[c]", "c"),
        ("B_glc[c]", "c"),
        ("B_ac[c]", "c"),
        ("B_biomass[c]", "c"),
        ("microbeBiomass[u]", "u"),
        ("microbeBiomass[fe]", "fe"),
    ]
    m.add_metabolites([Metabolite(mid, compartment=comp) for mid, comp in mets])

    m.add_reactions(
        [
            _rxn(m, "EX_glc[d]", {"glc[d]": -1}, -1000.0, 1000.0),
            _rxn(m, "EX_ac[d]", {"ac[d]": -1}, -1000.0, 1000.0),
            _rxn(m, "DUt_glc", {"glc[d]": -1, "glc[u]": 1}, 0.0, 1000.0),
            _rxn(m, "DUt_ac", {"ac[d]": -1, "ac[u]": 1}, 0.0, 1000.0),
            _rxn(m, "UFEt_glc", {"glc[u]": -1, "glc[fe]": 1}, 0.0, 1000.0),
            _rxn(m, "UFEt_ac", {"ac[u]": -1, "ac[fe]": 1}, 0.0, 1000.0),
            _rxn(m, "EX_glc[fe]", {"glc[fe]": -1}, 0.0, 1000.0),
            _rxn(m, "EX_ac[fe]", {"ac[fe]": -1}, 0.0, 1000.0),
            _rxn(m, "A_IEX_glc[u]tr", {"glc[u]": -1, "A_glc[c]": 1}, 0.0, member_uptake_cap),
            _rxn(m, "B_IEX_glc[u]tr", {"glc[u]": -1, "B_glc[c]": 1}, 0.0, member_uptake_cap),
            _rxn(m, "B_IEX_ac[u]tr", {"B_ac[c]": -1, "ac[u]": 1}, 0.0, 1000.0),
            _rxn(m, "A_biomass", {"A_glc[c]": -1, "A_biomass[c]": 1}, 0.0, 1000.0),
            _rxn(m, "B_biomass", {"B_glc[c]": -1, "B_biomass[c]": 1, "B_ac[c]": 1}, 0.0, 1000.0),
            _rxn(m, "A_DM_glc", {"A_glc[c]": -1}, 0.5, 1000.0),
            _rxn(m, "A_sink_x", {"A_x[c]": -1}, -1000.0, 1000.0),
            _rxn(
                m,
                "communityBiomass",
                {"A_biomass[c]": -0.5, "B_biomass[c]": -0.5, "microbeBiomass[u]": 1},
                0.0,
                1000.0,
            ),
            _rxn(m, "UFEt_microbeBiomass", {"microbeBiomass[u]": -1, "microbeBiomass[fe]": 1}, 0.0, 1000.0),
            _rxn(m, "EX_microbeBiomass[fe]", {"microbeBiomass[fe]": -1}, 0.0, 1000.0),
        ]
    )
    m.objective = "EX_microbeBiomass[fe]"
    return m


def build_linear_model(model_id: str = "linear", objective_rxn: str = "EX_b", in_lb: float = 0.0, out_ub: float = 1000.0) -> Model:
    """in -> a -> b -> out, uptake capped at 10; carries an unused slack metabolite."""
    m = Model(model_id)
    m.add_metabolites([Metabolite("a", compartment="c"), Metabolite("b", compartment="c"), Metabolite("slack_1", compartment="c")])
    m.add_reactions(
        [
            _rxn(m, "R_in", {"a": 1}, in_lb, 10.0),
            _rxn(m, "R1", {"a": -1, "b": 1}, 0.0, 1000.0),
            _rxn(m, objective_rxn, {"b": -1}, 0.0, out_ub),
        ]
    )
    m.objective = objective_rxn
    return m


@pytest.fixture
def community_model() -> Model:
    return build_community_model()


@pytest.fixture
def standard_diet() -> pd.DataFrame:
    return pd.DataFrame({"reaction_id": ["EX_glc(e)"], "flux": [10.0]})


@pytest.fixture
def models_dir(tmp_path: Path) -> Path:
    """S1 and S3 are feasible; S2's members can barely import glucose."""
    from cobra.io import save_json_model

    d = tmp_path / "models"
    d.mkdir()
    for sid, cap in (("S1", 1000.0), ("S2", 0.1), ("S3", 1000.0)):
        save_json_model(build_community_model(f"community_{sid}", cap), str(d / f"microbiota_model_samp_{sid}.json"))
    return d
