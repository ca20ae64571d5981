"""
Persistence layer: SQLAlchemy engine/session helpers and the TxGuard tables.

SQLite by default; PostgreSQL via TXGUARD_DB_URL / DATABASE_URL.
"""

from backend_txguard.database.connection import (
    get_engine,
    get_session_factory,
    init_db,
    reset_engine_for_test,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_db",
    "reset_engine_for_test",
    "session_scope",
]
