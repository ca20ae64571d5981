"""
Create the TxGuard tables (reputation records, report receipts, address book,
wallet transactions). Idempotent; safe to run on every deploy.

Usage:
    python -m backend_txguard.tools.init_txguard_db
    python -m backend_txguard.tools.init_txguard_db --db-url postgresql+psycopg2://...
"""

from __future__ import annotations

import argparse

from backend_txguard.config.env import get_database_url, mask_url
from backend_txguard.database.connection import get_engine, init_db, make_engine
from backend_txguard.txguard_logging import get_logger

logger = get_logger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Initialize TxGuard database tables")
    parser.add_argument("--db-url", default=None, help="SQLAlchemy URL (default: from environment)")
    args = parser.parse_args(argv)

    engine = make_engine(args.db_url) if args.db_url else get_engine()
    init_db(engine)
    print("TxGuard DB ready at", mask_url(args.db_url or get_database_url()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
