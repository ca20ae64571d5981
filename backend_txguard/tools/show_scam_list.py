"""
Print the most-reported scam addresses.

Usage:
    python -m backend_txguard.tools.show_scam_list --limit 50
    python -m backend_txguard.tools.show_scam_list --json
"""

from __future__ import annotations

import argparse
import json

from backend_txguard.config.settings import SCAM_LIST_CAP
from backend_txguard.database.connection import get_engine, make_engine
from backend_txguard.evaluator.models import Classification
from backend_txguard.reputation.store import ReputationStore


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Show top scam addresses by report count")
    parser.add_argument("--limit", type=int, default=20, help=f"Rows to show (max {SCAM_LIST_CAP})")
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of a table")
    parser.add_argument("--db-url", default=None, help="SQLAlchemy URL (default: from environment)")
    args = parser.parse_args(argv)

    if args.limit < 1:
        parser.error("--limit must be >= 1")
    store = ReputationStore(make_engine(args.db_url) if args.db_url else get_engine())
    store.ensure_schema()
    records = store.list_top(min(args.limit, SCAM_LIST_CAP), Classification.SCAM)

    if args.json:
        print(json.dumps([r.to_dict() for r in records], indent=2))
        return 0
    if not records:
        print("No scam addresses recorded.")
        return 0
    print(f"{'address':<64} {'chain':<8} {'severity':<9} {'reports':>7}")
    for r in records:
        print(f"{r.address.value:<64} {r.address.chain.value:<8} {r.severity.value:<9} {r.report_count:>7}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
