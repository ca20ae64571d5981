"""
Pytest fixtures for TxGuard tests. Uses a temporary SQLite DB for the
reputation store and the in-memory fakes from fakes.py for everything else.
"""

from __future__ import annotations

import pytest

from fakes import Harness


@pytest.fixture
def txguard_db(tmp_path, monkeypatch):
    """
    Point TxGuard at a temporary SQLite DB and init tables.
    Resets engine cache so each test gets a fresh DB. Unset DB URLs so we use SQLite.
    """
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("TXGUARD_DB_URL", raising=False)
    monkeypatch.setenv("TXGUARD_DB_PATH", str(tmp_path / "txguard.db"))

    from backend_txguard.database import connection

    connection.reset_engine_for_test()
    engine = connection.get_engine()
    connection.init_db(engine)
    yield engine
    connection.reset_engine_for_test()


@pytest.fixture
def store(txguard_db):
    from backend_txguard.reputation.store import ReputationStore

    return ReputationStore(txguard_db)


@pytest.fixture
def harness(store):
    return Harness(store)
