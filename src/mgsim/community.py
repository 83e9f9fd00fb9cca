from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

COMMUNITY_BIOMASS = "communityBiomass"
COMMUNITY_OBJECTIVE = "EX_microbeBiomass[fe]"
BIOMASS_EXCHANGE = "EX_biomass[fe]"
MEMBER_BIOMASS_SUFFIX = "_biomass[c]"
DIET_TAG = "[d]"
FECAL_TAG = "[fe]"
OPEN_UPPER_BOUND = 1_000_000.0
OPEN_UPPER_PREFIXES: tuple[str, ...] = ("UFEt_", "DUt_", "EX_")


class CommunityModelError(ValueError):
    """Raised when a model lacks the structure of a community model."""


@dataclass(frozen=True)
class AdaptResult:
    """What adapt_community_model changed, for logs and tests."""

    members: list[str]
    renamed: dict[str, str]
    changed_bounds: list[tuple[str, float, float, float, float]]
    # (rxn_id, old_lb, old_ub, new_lb, new_ub)


def _set_bounds(rxn, *, lb: float | None, ub: float | None, changes: list) -> None:
    old_lb, old_ub = rxn.lower_bound, rxn.upper_bound
    new_lb = old_lb if lb is None else float(lb)
    new_ub = old_ub if ub is None else float(ub)
    if new_lb == old_lb and new_ub == old_ub:
        return
    # bounds setter checks lb <= ub on both values at once
    rxn.bounds = (new_lb, new_ub)
    changes.append((rxn.id, old_lb, old_ub, new_lb, new_ub))


def community_members(model) -> list[str]:
    """
    Member IDs of a community model, taken from the ``<member>_biomass[c]``
    metabolites consumed by ``communityBiomass``.
    """
    try:
        rxn = model.reactions.get_by_id(COMMUNITY_BIOMASS)
    except KeyError as e:
        raise CommunityModelError(f"Reaction not found in model {model.id}: {COMMUNITY_BIOMASS}") from e

    members: list[str] = []
    for met in rxn.metabolites:
        mid = str(met.id)
        if mid.endswith(MEMBER_BIOMASS_SUFFIX):
            members.append(mid[: -len(MEMBER_BIOMASS_SUFFIX)])
    return sorted(dict.fromkeys(members))


def adapt_community_model(
    model,
    lower_biomass_bound: float = 0.4,
    upper_biomass_bound: float = 1.0,
) -> AdaptResult:
    """
    Prepare a community model for diet simulations (in place).

    Steps, in order:

    1. lower bound 0 on all reactions with "biomass" in their ID
    2. per member: ``<member>_DM_*`` lower bound 0, ``<member>_sink_*`` lower bound -1
    3. objective ``EX_microbeBiomass[fe]``
    4. diet compartment exchanges renamed ``EX_..[d]`` -> ``Diet_EX_..[d]``
    5. ``communityBiomass`` bounded to [lower_biomass_bound, upper_biomass_bound]
    6. ``UFEt_``, ``DUt_`` and ``EX_`` reactions opened to 1e6 upper bound
    """
    if lower_biomass_bound > upper_biomass_bound:
        raise ValueError("lower_biomass_bound must not exceed upper_biomass_bound")
    if COMMUNITY_OBJECTIVE not in model.reactions:
        raise CommunityModelError(f"Reaction not found in model {model.id}: {COMMUNITY_OBJECTIVE}")

    changes: list[tuple[str, float, float, float, float]] = []

    for rxn in model.reactions:
        if "biomass" in rxn.id:
            _set_bounds(rxn, lb=0.0, ub=None, changes=changes)

    members = community_members(model)
    for member in members:
        dm_prefix = f"{member}_DM_"
        sink_prefix = f"{member}_sink_"
        for rxn in model.reactions:
            if rxn.id.startswith(dm_prefix):
                _set_bounds(rxn, lb=0.0, ub=None, changes=changes)
            elif rxn.id.startswith(sink_prefix):
                _set_bounds(rxn, lb=-1.0, ub=None, changes=changes)

    model.objective = COMMUNITY_OBJECTIVE
    model.objective_direction = "max"

    renamed: dict[str, str] = {}
    for rxn in [r for r in model.reactions if DIET_TAG in r.id and "EX_" in r.id and not r.id.startswith("Diet_EX_")]:
        new_id = rxn.id.replace("EX_", "Diet_EX_")
        renamed[rxn.id] = new_id
        rxn.id = new_id
    if renamed:
        logger.debug("Renamed %d diet exchanges in %s", len(renamed), model.id)

    biomass = model.reactions.get_by_id(COMMUNITY_BIOMASS)
    _set_bounds(biomass, lb=lower_biomass_bound, ub=upper_biomass_bound, changes=changes)

    for rxn in model.reactions:
        if rxn.id.startswith(OPEN_UPPER_PREFIXES):
            _set_bounds(rxn, lb=None, ub=OPEN_UPPER_BOUND, changes=changes)

    logger.info(
        "Adapted community model %s: members=%d, renamed=%d, bound_changes=%d",
        model.id,
        len(members),
        len(renamed),
        len(changes),
    )
    return AdaptResult(members=members, renamed=renamed, changed_bounds=changes)


def exchange_ids(model) -> list[str]:
    """
    Unique fecal exchange IDs of the model's ``EX_`` reactions (diet IDs mapped
    to their ``[fe]`` counterpart), without ``EX_biomass[fe]``.
    """
    ids = [r.id.replace(DIET_TAG, FECAL_TAG) for r in model.reactions if r.id.startswith("EX")]
    return [i for i in dict.fromkeys(ids) if i != BIOMASS_EXCHANGE]


def fecal_reactions(model) -> list[str]:
    return [r.id for r in model.reactions if FECAL_TAG in r.id and r.id != COMMUNITY_OBJECTIVE]


def diet_reactions(model) -> list[str]:
    return [r.id for r in model.reactions if DIET_TAG in r.id]


def fecal_id_for_diet(diet_rxn_id: str) -> str:
    """``Diet_EX_ac[d]`` -> ``EX_ac[fe]``."""
    rid = diet_rxn_id
    if rid.startswith("Diet_"):
        rid = rid[len("Diet_"):]
    return rid.replace(DIET_TAG, FECAL_TAG)
