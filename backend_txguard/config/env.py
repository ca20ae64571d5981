"""
Environment variable loading for TxGuard.

- TXGUARD_DB_URL / DATABASE_URL: SQLAlchemy URL (PostgreSQL in production)
- TXGUARD_DB_PATH: SQLite file used when no URL is set (default: txguard.db)
- EVM_RPC_URL_<NETWORK> / EVM_RPC_URL: JSON-RPC endpoint per EVM network
- BTC_ESPLORA_URL_<NETWORK>: Esplora REST base URL per Bitcoin network
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

# Project root: config is backend_txguard/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_SQLITE_PATH = "txguard.db"

DEFAULT_EVM_RPC_URLS = {
    "mainnet": "https://ethereum-rpc.publicnode.com",
    "sepolia": "https://ethereum-sepolia-rpc.publicnode.com",
}
DEFAULT_ESPLORA_URLS = {
    "mainnet": "https://blockstream.info/api",
    "testnet": "https://blockstream.info/testnet/api",
}


def load_txguard_env() -> None:
    """Load .env from project root. Safe to call multiple times."""
    from dotenv import load_dotenv

    load_dotenv(_ENV_PATH)


def _env_key(network: str) -> str:
    return network.strip().upper().replace("-", "_")


def get_database_url() -> str:
    """Return TXGUARD_DB_URL or DATABASE_URL if set; else a SQLite URL from TXGUARD_DB_PATH."""
    load_txguard_env()
    url = (os.getenv("TXGUARD_DB_URL") or os.getenv("DATABASE_URL") or "").strip()
    if url:
        return url
    path = (os.getenv("TXGUARD_DB_PATH") or "").strip() or DEFAULT_SQLITE_PATH
    return f"sqlite:///{path}"


def get_evm_rpc_url(network: str) -> str | None:
    """
    Resolve the JSON-RPC endpoint for an EVM network.
    Order: EVM_RPC_URL_<NETWORK> > EVM_RPC_URL (mainnet only) > public default.
    """
    load_txguard_env()
    url = (os.getenv(f"EVM_RPC_URL_{_env_key(network)}") or "").strip()
    if url:
        return url
    if network == "mainnet":
        url = (os.getenv("EVM_RPC_URL") or "").strip()
        if url:
            return url
    return DEFAULT_EVM_RPC_URLS.get(network)


def get_esplora_url(network: str) -> str | None:
    """Resolve the Esplora base URL for a Bitcoin network."""
    load_txguard_env()
    url = (os.getenv(f"BTC_ESPLORA_URL_{_env_key(network)}") or "").strip()
    if url:
        return url.rstrip("/")
    return DEFAULT_ESPLORA_URLS.get(network)


def mask_url(url: str) -> str:
    """Hide credentials and query strings (API keys) in a URL for logging."""
    base = url.split("?")[0]
    if "@" in base:
        scheme, _, rest = base.partition("://")
        base = f"{scheme}://***@{rest.split('@', 1)[1]}"
    return base
