from __future__ import annotations

import argparse
import logging
import sys

from mgsim.audit import audit_diet_ids, write_audit_csv
from mgsim.community import adapt_community_model
from mgsim.diet import load_diet_table
from mgsim.io import load_model


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Audit diet exchange IDs against a community model.")
    p.add_argument("--model", required=True, help="Community model path (e.g., models/microbiota_model_samp_S1.json)")
    p.add_argument("--diet", required=True, help="Tab-delimited diet file (e.g., data/example_diet.txt)")
    p.add_argument(
        "--out",
        default="results/audit_diet_ids.csv",
        help="Output CSV path (default: results/audit_diet_ids.csv)",
    )
    p.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )

    try:
        model = load_model(args.model)
        diet = load_diet_table(args.diet)
        # diet exchanges only carry their Diet_EX_ names after adaptation
        adapt_community_model(model)
    except Exception as e:  # noqa: BLE001
        print(f"[ERROR] Failed to load inputs: {e}", file=sys.stderr)
        return 2

    rows = audit_diet_ids(model, diet)
    present = sum(1 for r in rows if r.status == "present")
    missing = [r for r in rows if r.status == "missing"]

    print(f"[REPORT] Diet exchanges: {len(rows)}")
    print(f"[REPORT] Present: {present}")
    print(f"[REPORT] Missing: {len(missing)}")
    if missing:
        print("[REPORT] Missing IDs:")
        for r in missing:
            sug = ", ".join([x for x in [r.suggestion_1, r.suggestion_2, r.suggestion_3] if x])
            print(f"  - {r.requested_id} ({r.model_id})  | suggestions: {sug if sug else '(none)'}")

    out_path = write_audit_csv(rows, args.out)
    print(f"[OK] Wrote audit CSV: {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
