"""
SQLAlchemy models for TxGuard tables.

reputation_records and reputation_report_receipts are owned by the
reputation store. address_book_entries and wallet_transactions belong to the
wallet backend; TxGuard only reads them (the models exist so local and test
databases can be created with the same schema).
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ReputationRow(Base):
    """
    One row per canonical address (chain_kind + address). Append-only through
    report upserts; report_count only ever grows.
    """

    __tablename__ = "reputation_records"
    __table_args__ = (
        UniqueConstraint("chain_kind", "address", name="uq_reputation_address"),
        Index("ix_reputation_report_count", "report_count"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    chain_kind = Column(String(16), nullable=False)
    address = Column(String(128), nullable=False)
    network = Column(String(16), nullable=True)
    classification = Column(String(16), nullable=False)
    severity = Column(String(16), nullable=False)
    severity_rank = Column(Integer, nullable=False)  # Severity.rank; lets SQL keep max(severity)
    description = Column(Text, nullable=True)
    report_count = Column(Integer, nullable=False, default=1)
    first_reported_at = Column(Integer, nullable=False)  # Unix
    last_reported_at = Column(Integer, nullable=False)  # Unix


class ReportReceiptRow(Base):
    """
    Last counted report per (address, classification, reporter). A report only increments the
    counter when last_counted_at is older than the dedupe window.
    """

    __tablename__ = "reputation_report_receipts"
    __table_args__ = (
        UniqueConstraint("chain_kind", "address", "reporter", name="uq_report_receipt"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    chain_kind = Column(String(16), nullable=False)
    address = Column(String(128), nullable=False)
    reporter = Column(String(192), nullable=False)  # "<classification>:<principal>"
    last_counted_at = Column(Integer, nullable=False)  # Unix


class AddressBookRow(Base):
    """Trusted/labelled address in a wallet's address book. Read-only for TxGuard."""

    __tablename__ = "address_book_entries"
    __table_args__ = (
        UniqueConstraint("wallet_id", "chain_kind", "address", name="uq_address_book_entry"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_id = Column(String(64), nullable=False, index=True)
    chain_kind = Column(String(16), nullable=False)
    address = Column(String(128), nullable=False)
    label = Column(String(256), nullable=False)
    trusted = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Integer, nullable=False)  # Unix


class WalletTransactionRow(Base):
    """Wallet transaction history (sent and received). Read-only for TxGuard."""

    __tablename__ = "wallet_transactions"
    __table_args__ = (
        Index("ix_wallet_transactions_wallet_ts", "wallet_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_id = Column(String(64), nullable=False, index=True)
    direction = Column(String(8), nullable=False)  # sent | received
    asset_symbol = Column(String(32), nullable=False)
    counterparty = Column(String(128), nullable=False)
    amount = Column(String(80), nullable=False)  # decimal string; avoids float precision loss
    status = Column(String(16), nullable=False)  # pending | confirmed | failed
    timestamp = Column(Integer, nullable=False)  # Unix
