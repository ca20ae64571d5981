"""
Reputation store: persistent scam/suspicious judgements per canonical address.

Every write is a single INSERT ... ON CONFLICT DO UPDATE against
UNIQUE(chain_kind, address), so concurrent reports on one address serialize
in the storage engine and report_count never loses an increment. There is no
in-process cache; every lookup reads the table.

Methods are synchronous (SQLAlchemy sessions); async callers use asyncio.to_thread.
"""

from __future__ import annotations

import time
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from backend_txguard.core.exceptions import ReputationUnavailable
from backend_txguard.database.connection import get_engine, get_session_factory, init_db, session_scope
from backend_txguard.database.models import ReportReceiptRow, ReputationRow
from backend_txguard.evaluator.models import (
    CanonicalAddress,
    ChainKind,
    Classification,
    ReputationRecord,
    Severity,
)
from backend_txguard.txguard_logging import get_logger

logger = get_logger(__name__)

LIST_TOP_CAP = 1000


def _insert_for(engine: Engine) -> Any:
    """Dialect-specific insert() supporting on_conflict_do_update."""
    name = engine.dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise ReputationUnavailable(f"unsupported database dialect for upserts: {name}")
    return insert


def _to_record(row: ReputationRow) -> ReputationRecord:
    return ReputationRecord(
        address=CanonicalAddress(ChainKind(row.chain_kind), row.address, network=row.network),
        classification=Classification(row.classification),
        severity=Severity(row.severity),
        description=row.description,
        report_count=row.report_count,
        first_reported_at=row.first_reported_at,
        last_reported_at=row.last_reported_at,
    )


class ReputationStore:
    """
    Mapping canonical address -> ReputationRecord, backed by reputation_records.

    Read-only except for the report operations. Storage failures surface as
    ReputationUnavailable.
    """

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine or get_engine()
        self._factory = get_session_factory(self._engine)
        self._insert = _insert_for(self._engine)

    def ensure_schema(self) -> None:
        init_db(self._engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def lookup(self, addr: CanonicalAddress) -> ReputationRecord | None:
        """Return the record for addr, or None when the address is clean."""
        try:
            with session_scope(self._factory) as session:
                row = session.execute(
                    select(ReputationRow).where(
                        ReputationRow.chain_kind == addr.chain.value,
                        ReputationRow.address == addr.value,
                    )
                ).scalar_one_or_none()
                return _to_record(row) if row is not None else None
        except SQLAlchemyError as e:
            logger.exception("reputation_lookup_failed", address=addr.value, error=str(e))
            raise ReputationUnavailable(str(e)) from e

    def list_top(self, n: int = LIST_TOP_CAP, classification: Classification | None = None) -> list[ReputationRecord]:
        """Records ordered by report_count desc (then most recent, then address). n is capped at 1000."""
        if n < 1:
            raise ValueError("n must be >= 1")
        limit = min(n, LIST_TOP_CAP)
        try:
            with session_scope(self._factory) as session:
                q = select(ReputationRow)
                if classification is not None:
                    q = q.where(ReputationRow.classification == classification.value)
                q = q.order_by(
                    ReputationRow.report_count.desc(),
                    ReputationRow.last_reported_at.desc(),
                    ReputationRow.address.asc(),
                ).limit(limit)
                return [_to_record(r) for r in session.execute(q).scalars().all()]
        except SQLAlchemyError as e:
            logger.exception("reputation_list_failed", error=str(e))
            raise ReputationUnavailable(str(e)) from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def report_scam(
        self,
        addr: CanonicalAddress,
        severity: Severity = Severity.MEDIUM,
        description: str | None = None,
        now: int | None = None,
    ) -> ReputationRecord:
        """Insert with report_count=1 or increment; severity keeps the max; scam is never downgraded."""
        _, record = self.record_report(addr, Classification.SCAM, severity, description, now=now)
        return record

    def report_suspicious(
        self,
        addr: CanonicalAddress,
        reason: str | None = None,
        severity: Severity = Severity.MEDIUM,
        now: int | None = None,
    ) -> ReputationRecord:
        """Like report_scam with classification=suspicious; an existing scam record stays scam."""
        _, record = self.record_report(addr, Classification.SUSPICIOUS, severity, reason, now=now)
        return record

    def record_report(
        self,
        addr: CanonicalAddress,
        classification: Classification,
        severity: Severity,
        description: str | None = None,
        *,
        reporter: str | None = None,
        dedupe_window_sec: int = 0,
        now: int | None = None,
    ) -> tuple[bool, ReputationRecord]:
        """
        Apply one report. With a reporter, a repeat report of the same
        classification inside dedupe_window_sec is acknowledged without
        incrementing. Returns (counted, record). Durable on return.
        """
        if classification is Classification.CLEAN:
            raise ValueError("clean is the absence of a record and cannot be reported")
        if severity is Severity.NONE:
            raise ValueError("report severity must be at least low")
        ts = int(now if now is not None else time.time())
        desc = (description or "").strip() or None
        try:
            with session_scope(self._factory) as session:
                counted = True
                if reporter is not None:
                    counted = self._claim_receipt(session, addr, reporter, classification, ts, dedupe_window_sec)
                row = None
                if not counted:
                    row = self._select(session, addr)
                if row is None:
                    session.execute(self._upsert_statement(addr, classification, severity, desc, ts))
                    row = self._select(session, addr)
                    counted = True
                record = _to_record(row)
        except SQLAlchemyError as e:
            logger.exception(
                "reputation_report_failed",
                address=addr.value,
                classification=classification.value,
                error=str(e),
            )
            raise ReputationUnavailable(str(e)) from e
        logger.info(
            "reputation_report_recorded",
            address=addr.value,
            classification=record.classification.value,
            severity=record.severity.value,
            report_count=record.report_count,
            counted=counted,
        )
        return counted, record

    def _select(self, session: Any, addr: CanonicalAddress) -> ReputationRow | None:
        return session.execute(
            select(ReputationRow)
            .where(ReputationRow.chain_kind == addr.chain.value, ReputationRow.address == addr.value)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _claim_receipt(
        self,
        session: Any,
        addr: CanonicalAddress,
        reporter: str,
        classification: Classification,
        ts: int,
        window_sec: int,
    ) -> bool:
        """True if this reporter's report counts (no counted report inside the window)."""
        reporter_key = f"{classification.value}:{reporter}"
        stmt = self._insert(ReportReceiptRow).values(
            chain_kind=addr.chain.value,
            address=addr.value,
            reporter=reporter_key,
            last_counted_at=ts,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["chain_kind", "address", "reporter"],
            set_={"last_counted_at": stmt.excluded.last_counted_at},
            where=ReportReceiptRow.last_counted_at <= ts - window_sec,
        )
        result = session.execute(stmt)
        return result.rowcount == 1

    def _upsert_statement(
        self,
        addr: CanonicalAddress,
        classification: Classification,
        severity: Severity,
        description: str | None,
        ts: int,
    ) -> Any:
        stmt = self._insert(ReputationRow).values(
            chain_kind=addr.chain.value,
            address=addr.value,
            network=addr.network,
            classification=classification.value,
            severity=severity.value,
            severity_rank=severity.rank,
            description=description,
            report_count=1,
            first_reported_at=ts,
            last_reported_at=ts,
        )
        excluded = stmt.excluded
        escalates = excluded.severity_rank > ReputationRow.severity_rank
        return stmt.on_conflict_do_update(
            index_elements=["chain_kind", "address"],
            set_={
                "report_count": ReputationRow.report_count + 1,
                "severity": case((escalates, excluded.severity), else_=ReputationRow.severity),
                "severity_rank": case((escalates, excluded.severity_rank), else_=ReputationRow.severity_rank),
                "classification": case(
                    (ReputationRow.classification == Classification.SCAM.value, ReputationRow.classification),
                    else_=excluded.classification,
                ),
                "description": func.coalesce(ReputationRow.description, excluded.description),
                "network": func.coalesce(ReputationRow.network, excluded.network),
                "last_reported_at": case(
                    (excluded.last_reported_at > ReputationRow.last_reported_at, excluded.last_reported_at),
                    else_=ReputationRow.last_reported_at,
                ),
            },
        )
