"""
SQL-backed collaborator readers over the wallet backend's tables.

SqlAddressBookReader: address_book_entries (active rows, wallet-scoped).
SqlTransactionHistoryReader: wallet_transactions (outgoing sends, counterparties).
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.engine import Engine

from backend_txguard.database.connection import get_engine, get_session_factory, session_scope
from backend_txguard.database.models import AddressBookRow, WalletTransactionRow
from backend_txguard.evaluator.address_book import AddressBookReader
from backend_txguard.evaluator.history import STATUS_CONFIRMED, TransactionHistoryReader
from backend_txguard.evaluator.models import AddressBookMatch, CanonicalAddress, OutgoingSend
from backend_txguard.txguard_logging import get_logger

logger = get_logger(__name__)

DIRECTION_SENT = "sent"


class SqlAddressBookReader(AddressBookReader):
    def __init__(self, engine: Engine | None = None) -> None:
        self._factory = get_session_factory(engine or get_engine())

    def find(self, wallet_id: str, address: CanonicalAddress) -> AddressBookMatch | None:
        with session_scope(self._factory) as session:
            row = session.execute(
                select(AddressBookRow).where(
                    AddressBookRow.wallet_id == wallet_id,
                    AddressBookRow.chain_kind == address.chain.value,
                    AddressBookRow.address == address.value,
                    AddressBookRow.is_active.is_(True),
                )
            ).scalar_one_or_none()
            if row is None:
                return None
            return AddressBookMatch(label=row.label, trusted=bool(row.trusted))


class SqlTransactionHistoryReader(TransactionHistoryReader):
    def __init__(self, engine: Engine | None = None) -> None:
        self._factory = get_session_factory(engine or get_engine())

    def outgoing_sends(self, wallet_id: str, asset_symbol: str, limit: int) -> Iterable[OutgoingSend]:
        with session_scope(self._factory) as session:
            rows = session.execute(
                select(WalletTransactionRow)
                .where(
                    WalletTransactionRow.wallet_id == wallet_id,
                    WalletTransactionRow.direction == DIRECTION_SENT,
                    WalletTransactionRow.asset_symbol == asset_symbol,
                    WalletTransactionRow.status == STATUS_CONFIRMED,
                )
                .order_by(WalletTransactionRow.timestamp.desc(), WalletTransactionRow.id.desc())
                .limit(limit)
            ).scalars().all()
            sends: list[OutgoingSend] = []
            for r in rows:
                try:
                    amount = Decimal(r.amount)
                except InvalidOperation:
                    logger.debug("history_amount_unparseable", wallet_id=wallet_id, tx_id=r.id)
                    continue
                sends.append(OutgoingSend(to=r.counterparty, amount=amount, timestamp=r.timestamp, status=r.status))
            return sends

    def counterparties(self, wallet_id: str, since: int) -> Iterable[str]:
        with session_scope(self._factory) as session:
            rows = session.execute(
                select(WalletTransactionRow.counterparty)
                .where(
                    WalletTransactionRow.wallet_id == wallet_id,
                    WalletTransactionRow.timestamp >= since,
                )
                .distinct()
            ).all()
            return {r[0] for r in rows if r[0]}
