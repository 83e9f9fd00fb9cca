from __future__ import annotations

import csv
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import pandas as pd

from mgsim.diet import DIET_PREFIX, diet_to_model_ids

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditRow:
    requested_id: str
    model_id: str
    status: str  # "present" | "missing"
    suggestion_1: str
    suggestion_2: str
    suggestion_3: str


def _normalize_text(s: str) -> str:
    return re.sub(r"\s+", " ", (s or "").lower()).strip()


def _keywords_from_requested_id(requested_id: str) -> list[str]:
    """
    Heuristic keyword extraction from a diet exchange id like 'EX_glc_D(e)'.
    """
    rid = _normalize_text(requested_id)
    for junk in ("diet_ex_", "ex_", "(e)", "[e]", "[d]", "[u]", "[fe]"):
        rid = rid.replace(junk, " ")

    tokens = re.split(r"[^a-z0-9]+", rid)
    # keep the full metabolite id first, then its parts
    full = "_".join(t for t in tokens if t)
    kws = [full] if full else []
    kws.extend(t for t in tokens if t and len(t) >= 2)
    return list(dict.fromkeys(kws))


def _reaction_search_text(rxn) -> str:
    parts: list[str] = [str(getattr(rxn, "id", "")), str(getattr(rxn, "name", ""))]
    for met in getattr(rxn, "metabolites", {}).keys():
        parts.append(str(getattr(met, "id", "")))
        parts.append(str(getattr(met, "name", "")))
    return _normalize_text(" ".join(parts))


def suggest_diet_replacements(model, requested_id: str, top_k: int = 3) -> list[str]:
    """
    Suggest diet exchanges of the model by keyword matching against:
    - reaction.id / reaction.name
    - metabolite id/name participating in the exchange

    Returns up to top_k reaction IDs, ranked by simple match score.
    """
    keywords = _keywords_from_requested_id(requested_id)
    if not keywords:
        return []

    candidates = [rxn for rxn in model.reactions if str(rxn.id).startswith(DIET_PREFIX)]

    scored: list[tuple[int, str]] = []
    for rxn in candidates:
        text = _reaction_search_text(rxn)
        score = 0
        for i, kw in enumerate(keywords):
            if kw in text:
                # the full metabolite id outweighs single tokens
                score += 3 if i == 0 else 1
        if score > 0:
            scored.append((score, str(rxn.id)))

    scored.sort(key=lambda x: (-x[0], x[1]))
    return [rid for _, rid in scored[:top_k]]


def audit_diet_ids(model, diet: pd.DataFrame) -> list[AuditRow]:
    """Check every diet exchange against the model's ``Diet_EX_`` reactions."""
    requested = [str(r) for r in diet["reaction_id"].tolist()]
    mapped = diet_to_model_ids(requested)
    present_ids = set(str(r.id) for r in model.reactions)

    rows: list[AuditRow] = []
    for rid, mid in zip(requested, mapped):
        status = "present" if mid in present_ids else "missing"
        suggestions = suggest_diet_replacements(model, rid, top_k=3) if status == "missing" else []
        s = suggestions + [""] * (3 - len(suggestions))
        rows.append(
            AuditRow(
                requested_id=rid,
                model_id=mid,
                status=status,
                suggestion_1=s[0],
                suggestion_2=s[1],
                suggestion_3=s[2],
            )
        )
    return rows


def write_audit_csv(rows: Iterable[AuditRow], out_path: str | Path) -> Path:
    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fieldnames = ["requested_id", "model_id", "status", "suggestion_1", "suggestion_2", "suggestion_3"]
    with p.open("w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames)
        w.writeheader()
        for r in rows:
            w.writerow({k: getattr(r, k) for k in fieldnames})
    return p
