"""
SQLAlchemy database models for the settlement ledger.

Monetary columns hold integer minor units of the row's currency (kobo for
NGN, micro-units for USDT) so that ``balance = balance + :delta`` is exact on
every backend, SQLite included.
"""

from datetime import datetime, timezone
from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    JSON,
    Index,
    Enum as SQLEnum,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from remit_core.models import LedgerEntryKind, LedgerEntryStatus


Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; the columns are stored without timezone."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ============ Ledger Entry Model ============

class LedgerEntryDB(Base):
    """One settlement per transaction id; only the status ever changes."""

    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(100), nullable=False)

    operator_account_id = Column(String(100), nullable=False)
    currency = Column(String(10), nullable=False)
    amount_minor = Column(BigInteger, nullable=False)

    kind = Column(
        SQLEnum(LedgerEntryKind, name="ledger_entry_kind", values_callable=_enum_values),
        nullable=False,
        default=LedgerEntryKind.FEE_EARNED,
    )
    status = Column(
        SQLEnum(LedgerEntryStatus, name="ledger_entry_status", values_callable=_enum_values),
        nullable=False,
        default=LedgerEntryStatus.PENDING,
    )
    description = Column(Text, nullable=False, default="")
    failure_reason = Column(Text)
    entry_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    processed_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_ledger_entries_transaction_id"),
        Index("ix_ledger_entries_operator_currency", "operator_account_id", "currency"),
        Index("ix_ledger_entries_status_created", "status", "created_at"),
    )


# ============ Operator Wallet Model ============

class OperatorWalletDB(Base):
    """Earnings aggregate per operator account and currency."""

    __tablename__ = "operator_wallets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    operator_account_id = Column(String(100), nullable=False)
    currency = Column(String(10), nullable=False)

    balance_minor = Column(BigInteger, nullable=False, default=0)
    total_earnings_minor = Column(BigInteger, nullable=False, default=0)
    total_fees_collected_minor = Column(BigInteger, nullable=False, default=0)
    transaction_count = Column(Integer, nullable=False, default=0)

    last_transaction_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("operator_account_id", "currency", name="uq_operator_wallets_account_currency"),
    )
