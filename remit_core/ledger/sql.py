"""SQLAlchemy-backed settlement store (SQLite or PostgreSQL)."""

from datetime import datetime, timezone
from typing import Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from remit_core.database.models import LedgerEntryDB, OperatorWalletDB, utcnow
from remit_core.database.session import get_session_factory
from remit_core.exceptions import LedgerIntegrityError, SettlementStateError
from remit_core.models import (
    LedgerEntry,
    LedgerEntryStatus,
    OperatorWallet,
    WalletDelta,
)
from remit_core.money import currency_info
from .base import SettlementStore

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _entry_from_row(row: LedgerEntryDB) -> LedgerEntry:
    info = currency_info(row.currency)
    return LedgerEntry(
        transaction_id=row.transaction_id,
        operator_account_id=row.operator_account_id,
        currency=row.currency,
        amount=info.from_minor_units(row.amount_minor),
        kind=row.kind,
        status=row.status,
        description=row.description or "",
        failure_reason=row.failure_reason,
        metadata=dict(row.entry_metadata or {}),
        created_at=_aware(row.created_at),
        processed_at=_aware(row.processed_at),
    )


def _wallet_from_row(row: OperatorWalletDB) -> OperatorWallet:
    info = currency_info(row.currency)
    return OperatorWallet(
        operator_account_id=row.operator_account_id,
        currency=row.currency,
        balance=info.from_minor_units(row.balance_minor),
        total_earnings=info.from_minor_units(row.total_earnings_minor),
        total_fees_collected=info.from_minor_units(row.total_fees_collected_minor),
        transaction_count=row.transaction_count,
        last_transaction_at=_aware(row.last_transaction_at),
        created_at=_aware(row.created_at),
    )


class SqlSettlementStore(SettlementStore):
    """
    Settlement store on a relational database through SQLAlchemy.

    Uniqueness is enforced by the ``uq_ledger_entries_transaction_id`` and
    ``uq_operator_wallets_account_currency`` constraints. Wallet deltas are
    applied as ``column = column + :delta`` statements, never as a
    read-modify-write of a loaded row, so concurrent settlements of different
    transactions against one wallet cannot lose updates.
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._session_factory: async_sessionmaker[AsyncSession] = get_session_factory(engine)
        self._dialect = engine.dialect.name

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def reserve(self, entry: LedgerEntry) -> Optional[LedgerEntry]:
        """Insert a pending entry; a unique violation means it already exists."""
        info = currency_info(entry.currency)
        row = LedgerEntryDB(
            transaction_id=entry.transaction_id,
            operator_account_id=entry.operator_account_id,
            currency=entry.currency,
            amount_minor=info.to_minor_units(entry.amount),
            kind=entry.kind,
            status=LedgerEntryStatus.PENDING,
            description=entry.description,
            entry_metadata=entry.metadata,
            created_at=_naive_utc(entry.created_at),
        )
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                existing = await self.get_entry(entry.transaction_id)
                if existing is None:
                    raise LedgerIntegrityError(
                        f"Could not reserve ledger entry: {e.orig}",
                        transaction_id=entry.transaction_id,
                    ) from e
                return existing
        return None

    async def commit_settlement(self, transaction_id: str, delta: WalletDelta) -> tuple[LedgerEntry, OperatorWallet]:
        """Complete the entry and increment the wallet in one database transaction."""
        info = currency_info(delta.currency)
        earnings = info.to_minor_units(delta.earnings)
        fees_collected = info.to_minor_units(delta.fees_collected)
        now = utcnow()

        async with self._session_factory() as session:
            try:
                async with session.begin():
                    completed = await session.execute(
                        update(LedgerEntryDB)
                        .where(
                            LedgerEntryDB.transaction_id == transaction_id,
                            LedgerEntryDB.status == LedgerEntryStatus.PENDING,
                        )
                        .values(status=LedgerEntryStatus.COMPLETED, processed_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    if completed.rowcount != 1:
                        current = await session.scalar(
                            select(LedgerEntryDB.status).where(LedgerEntryDB.transaction_id == transaction_id)
                        )
                        raise SettlementStateError(
                            transaction_id,
                            current.value if current is not None else "absent",
                            LedgerEntryStatus.COMPLETED.value,
                        )

                    await self._ensure_wallet(session, delta.operator_account_id, delta.currency, now)
                    credited = await session.execute(
                        update(OperatorWalletDB)
                        .where(
                            OperatorWalletDB.operator_account_id == delta.operator_account_id,
                            OperatorWalletDB.currency == delta.currency,
                        )
                        .values(
                            balance_minor=OperatorWalletDB.balance_minor + earnings,
                            total_earnings_minor=OperatorWalletDB.total_earnings_minor + earnings,
                            total_fees_collected_minor=OperatorWalletDB.total_fees_collected_minor + fees_collected,
                            transaction_count=OperatorWalletDB.transaction_count + delta.transactions,
                            last_transaction_at=now,
                            updated_at=now,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if credited.rowcount != 1:
                        raise LedgerIntegrityError(
                            f"Expected one wallet for ({delta.operator_account_id}, {delta.currency}), "
                            f"updated {credited.rowcount}",
                            transaction_id=transaction_id,
                        )

                    entry_row = await session.scalar(
                        select(LedgerEntryDB).where(LedgerEntryDB.transaction_id == transaction_id)
                    )
                    wallet_row = await session.scalar(
                        select(OperatorWalletDB).where(
                            OperatorWalletDB.operator_account_id == delta.operator_account_id,
                            OperatorWalletDB.currency == delta.currency,
                        )
                    )
                    entry, wallet = _entry_from_row(entry_row), _wallet_from_row(wallet_row)
            except IntegrityError as e:
                raise LedgerIntegrityError(
                    f"Constraint violated while settling: {e.orig}",
                    transaction_id=transaction_id,
                ) from e

        return entry, wallet

    async def _ensure_wallet(self, session: AsyncSession, operator_account_id: str, currency: str, now: datetime) -> None:
        """Create the wallet row if absent, tolerating a concurrent creator."""
        values = dict(
            operator_account_id=operator_account_id,
            currency=currency,
            balance_minor=0,
            total_earnings_minor=0,
            total_fees_collected_minor=0,
            transaction_count=0,
            created_at=now,
            updated_at=now,
        )
        if self._dialect in ("sqlite", "postgresql"):
            if self._dialect == "sqlite":
                from sqlalchemy.dialects.sqlite import insert
            else:
                from sqlalchemy.dialects.postgresql import insert
            await session.execute(
                insert(OperatorWalletDB)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["operator_account_id", "currency"])
            )
            return

        exists = await session.scalar(
            select(OperatorWalletDB.id).where(
                OperatorWalletDB.operator_account_id == operator_account_id,
                OperatorWalletDB.currency == currency,
            )
        )
        if exists is None:
            try:
                async with session.begin_nested():
                    session.add(OperatorWalletDB(**values))
            except IntegrityError:
                logger.debug("Wallet (%s, %s) created concurrently", operator_account_id, currency)

    async def mark_failed(self, transaction_id: str, reason: str) -> Optional[LedgerEntry]:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(LedgerEntryDB)
                    .where(
                        LedgerEntryDB.transaction_id == transaction_id,
                        LedgerEntryDB.status == LedgerEntryStatus.PENDING,
                    )
                    .values(status=LedgerEntryStatus.FAILED, failure_reason=reason, processed_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
        return await self.get_entry(transaction_id)

    async def get_entry(self, transaction_id: str) -> Optional[LedgerEntry]:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(LedgerEntryDB).where(LedgerEntryDB.transaction_id == transaction_id)
            )
            return _entry_from_row(row) if row is not None else None

    async def get_wallet(self, operator_account_id: str, currency: str) -> Optional[OperatorWallet]:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(OperatorWalletDB).where(
                    OperatorWalletDB.operator_account_id == operator_account_id,
                    OperatorWalletDB.currency == currency,
                )
            )
            return _wallet_from_row(row) if row is not None else None

    async def list_entries(
        self,
        operator_account_id: Optional[str] = None,
        currency: Optional[str] = None,
        status: Optional[LedgerEntryStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[LedgerEntry]:
        stmt = select(LedgerEntryDB)
        if operator_account_id is not None:
            stmt = stmt.where(LedgerEntryDB.operator_account_id == operator_account_id)
        if currency is not None:
            stmt = stmt.where(LedgerEntryDB.currency == currency)
        if status is not None:
            stmt = stmt.where(LedgerEntryDB.status == status)
        stmt = stmt.order_by(LedgerEntryDB.created_at.desc(), LedgerEntryDB.id.desc()).offset(offset)
        if limit:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            rows = (await session.scalars(stmt)).all()
            return [_entry_from_row(row) for row in rows]

    async def list_wallets(self) -> list[OperatorWallet]:
        async with self._session_factory() as session:
            rows = (await session.scalars(
                select(OperatorWalletDB).order_by(OperatorWalletDB.operator_account_id, OperatorWalletDB.currency)
            )).all()
            return [_wallet_from_row(row) for row in rows]

    async def expire_pending(self, created_before: datetime, reason: str) -> list[LedgerEntry]:
        cutoff = _naive_utc(created_before)
        async with self._session_factory() as session:
            async with session.begin():
                tx_ids = (await session.scalars(
                    select(LedgerEntryDB.transaction_id).where(
                        LedgerEntryDB.status == LedgerEntryStatus.PENDING,
                        LedgerEntryDB.created_at < cutoff,
                    )
                )).all()
                if tx_ids:
                    await session.execute(
                        update(LedgerEntryDB)
                        .where(
                            LedgerEntryDB.transaction_id.in_(tx_ids),
                            LedgerEntryDB.status == LedgerEntryStatus.PENDING,
                        )
                        .values(status=LedgerEntryStatus.FAILED, failure_reason=reason, processed_at=utcnow())
                        .execution_options(synchronize_session=False)
                    )

        expired = []
        for tx_id in tx_ids:
            entry = await self.get_entry(tx_id)
            if entry is not None and entry.status is LedgerEntryStatus.FAILED and entry.failure_reason == reason:
                expired.append(entry)
        return expired
