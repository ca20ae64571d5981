"""
Validate a proposed transfer from the command line and print the verdict as JSON.

Usage:
    python -m backend_txguard.tools.check_transfer --wallet-id W1 \
        --from 0x... --to 0x... --amount 0.1 --asset ETH --chain evm

Exit status: 0 when the verdict is valid, 2 when it is not (including malformed input).
"""

from __future__ import annotations

import argparse
import json

from backend_txguard.database.connection import make_engine
from backend_txguard.evaluator.factory import build_evaluator

EXIT_INVALID = 2

DEFAULT_DECIMALS = {"evm": 18, "bitcoin": 8}


def build_payload(args: argparse.Namespace) -> dict:
    decimals = args.decimals if args.decimals is not None else DEFAULT_DECIMALS.get(args.chain, 18)
    asset = {"symbol": args.asset, "chain": args.chain, "decimals": decimals}
    if args.contract:
        asset["contract"] = args.contract
    return {
        "wallet_id": args.wallet_id,
        "from": args.from_address,
        "to": args.to,
        "amount": args.amount,
        "asset": asset,
        "network": args.network,
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the pre-signing risk checks for one transfer")
    parser.add_argument("--wallet-id", required=True)
    parser.add_argument("--from", dest="from_address", required=True)
    parser.add_argument("--to", required=True)
    parser.add_argument("--amount", required=True)
    parser.add_argument("--asset", default="ETH", help="Asset symbol (default: ETH)")
    parser.add_argument("--chain", choices=sorted(DEFAULT_DECIMALS), default="evm")
    parser.add_argument("--decimals", type=int, default=None)
    parser.add_argument("--contract", default=None, help="Token contract address (EVM tokens)")
    parser.add_argument("--network", default="mainnet")
    parser.add_argument("--no-evidence", action="store_true", help="Omit per-check evidence")
    parser.add_argument("--db-url", default=None, help="SQLAlchemy URL (default: from environment)")
    args = parser.parse_args(argv)

    evaluator = build_evaluator(engine=make_engine(args.db_url) if args.db_url else None)
    verdict = evaluator.validate_payload_sync(build_payload(args))
    print(json.dumps(verdict.to_dict(include_evidence=not args.no_evidence), indent=2, default=str))
    return 0 if verdict.valid else EXIT_INVALID


if __name__ == "__main__":
    raise SystemExit(main())
