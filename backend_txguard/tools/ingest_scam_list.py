"""
Import a scam address list into the reputation store.

CSV columns: address, severity, description[, chain]. Rows go through the
report ingestor, so addresses are canonicalized and a re-import by the same
reporter inside the dedupe window does not inflate report counts.

Usage:
    python -m backend_txguard.tools.ingest_scam_list scam_addresses.csv --reporter feed:chainabuse
"""

from __future__ import annotations

import argparse
import asyncio
import csv
import sys
from pathlib import Path

from backend_txguard.core.exceptions import ClassificationError, InputMalformed
from backend_txguard.database.connection import get_engine, make_engine
from backend_txguard.reputation.ingestor import ReportIngestor
from backend_txguard.reputation.store import ReputationStore
from backend_txguard.txguard_logging import get_logger

logger = get_logger(__name__)

REQUIRED_COLUMNS = ("address",)


def read_rows(path: Path) -> list[dict[str, str]]:
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = [c for c in REQUIRED_COLUMNS if c not in (reader.fieldnames or [])]
        if missing:
            raise ValueError(f"{path}: missing column(s) {', '.join(missing)}")
        return [{k: (v or "").strip() for k, v in row.items() if k} for row in reader]


async def ingest(ingestor: ReportIngestor, rows: list[dict[str, str]], reporter: str) -> dict[str, int]:
    stats = {"counted": 0, "deduplicated": 0, "invalid": 0}
    for line_no, row in enumerate(rows, start=2):
        address = row.get("address", "")
        if not address:
            stats["invalid"] += 1
            continue
        try:
            receipt = await ingestor.report_scam(
                address,
                reporter,
                row.get("severity") or "medium",
                row.get("description") or None,
                chain=row.get("chain") or None,
            )
        except (ClassificationError, InputMalformed, ValueError) as e:
            logger.warning("scam_import_row_invalid", line=line_no, address=address, error=str(e))
            stats["invalid"] += 1
            continue
        stats["counted" if receipt.counted else "deduplicated"] += 1
    return stats


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Import scam addresses from CSV into the reputation store")
    parser.add_argument("csv_path", type=Path, help="CSV with address,severity,description[,chain]")
    parser.add_argument("--reporter", default=None, help="Reporter identity (default: import:<file name>)")
    parser.add_argument("--db-url", default=None, help="SQLAlchemy URL (default: from environment)")
    args = parser.parse_args(argv)

    if not args.csv_path.is_file():
        print(f"CSV not found: {args.csv_path}", file=sys.stderr)
        return 1
    try:
        rows = read_rows(args.csv_path)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 1

    store = ReputationStore(make_engine(args.db_url) if args.db_url else get_engine())
    store.ensure_schema()
    reporter = args.reporter or f"import:{args.csv_path.name}"
    stats = asyncio.run(ingest(ReportIngestor(store), rows, reporter))

    logger.info("scam_import_done", path=str(args.csv_path), reporter=reporter, **stats)
    print(
        f"Imported {len(rows)} row(s): {stats['counted']} counted, "
        f"{stats['deduplicated']} deduplicated, {stats['invalid']} invalid"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
