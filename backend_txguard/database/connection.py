"""
SQLAlchemy engine and session handling.

Uses TXGUARD_DB_URL / DATABASE_URL for PostgreSQL when set; otherwise falls
back to SQLite (TXGUARD_DB_PATH or txguard.db). The engine is created lazily
and cached; tests reset it with reset_engine_for_test().
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from backend_txguard.config.env import get_database_url, mask_url
from backend_txguard.txguard_logging import get_logger

logger = get_logger(__name__)

# SQLite waits this long for a competing writer before raising "database is locked"
SQLITE_BUSY_TIMEOUT_SEC = 15.0

_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def make_engine(url: str) -> Engine:
    """Create an engine; SQLite gets cross-thread access and a busy timeout."""
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = SQLITE_BUSY_TIMEOUT_SEC
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


def get_engine() -> Engine:
    """Create or return the cached engine."""
    global _engine
    if _engine is None:
        url = get_database_url()
        _engine = make_engine(url)
        logger.info("txguard_engine_created", url=mask_url(url))
    return _engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker:
    """Return a session factory; the cached one when no engine is given."""
    global _SessionLocal
    if engine is not None:
        return sessionmaker(autocommit=False, autoflush=False, bind=engine)
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


@contextmanager
def session_scope(factory: sessionmaker | None = None) -> Iterator[Session]:
    """Context manager for a single session. Commits on success, rolls back on error."""
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine | None = None) -> None:
    """
    Create all TxGuard tables if they do not exist.
    Safe to call on every startup.
    """
    from backend_txguard.database.models import Base

    target = engine or get_engine()
    try:
        Base.metadata.create_all(bind=target)
        logger.info("txguard_init_db", url=mask_url(str(target.url)))
    except Exception as e:
        logger.exception("txguard_init_db_failed", error=str(e))
        raise


def reset_engine_for_test() -> None:
    """Clear cached engine and session factory. For tests only."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
