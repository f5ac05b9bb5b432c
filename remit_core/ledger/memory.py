"""In-memory settlement store."""

from datetime import datetime, timezone
from typing import Optional
import asyncio

from remit_core.exceptions import SettlementStateError
from remit_core.models import (
    LedgerEntry,
    LedgerEntryStatus,
    OperatorWallet,
    WalletDelta,
)
from .base import SettlementStore


def _detached(entry: Optional[LedgerEntry]) -> Optional[LedgerEntry]:
    """Copy an entry so callers cannot reach the stored metadata dict."""
    return entry.model_copy(deep=True) if entry is not None else None


class InMemorySettlementStore(SettlementStore):
    """
    In-memory implementation of the settlement store.

    Entries are keyed by transaction id and wallets by
    ``(operator_account_id, currency)``, so both uniqueness constraints hold
    by construction. Every mutation happens under one asyncio lock with no
    await in between, which makes the wallet delta and the entry transition
    a single atomic step. Data is lost on restart.
    """

    def __init__(self):
        self._entries: dict[str, LedgerEntry] = {}
        self._wallets: dict[tuple[str, str], OperatorWallet] = {}
        self._lock = asyncio.Lock()

    async def reserve(self, entry: LedgerEntry) -> Optional[LedgerEntry]:
        """Insert a pending entry unless the transaction id is taken."""
        async with self._lock:
            existing = self._entries.get(entry.transaction_id)
            if existing is not None:
                return _detached(existing)
            self._entries[entry.transaction_id] = entry.model_copy(
                deep=True,
                update={"status": LedgerEntryStatus.PENDING},
            )
            return None

    async def commit_settlement(self, transaction_id: str, delta: WalletDelta) -> tuple[LedgerEntry, OperatorWallet]:
        """Apply the wallet delta and complete the entry in one step."""
        async with self._lock:
            entry = self._entries.get(transaction_id)
            if entry is None or entry.status is not LedgerEntryStatus.PENDING:
                current = entry.status.value if entry else "absent"
                raise SettlementStateError(transaction_id, current, LedgerEntryStatus.COMPLETED.value)

            now = datetime.now(timezone.utc)
            key = (delta.operator_account_id, delta.currency)
            wallet = self._wallets.get(key) or OperatorWallet(
                operator_account_id=delta.operator_account_id,
                currency=delta.currency,
                created_at=now,
            )
            updated_wallet = self._apply_delta(wallet, delta, now)
            completed = entry.model_copy(
                update={"status": LedgerEntryStatus.COMPLETED, "processed_at": now}
            )

            self._wallets[key] = updated_wallet
            self._entries[transaction_id] = completed
            return _detached(completed), updated_wallet

    def _apply_delta(self, wallet: OperatorWallet, delta: WalletDelta, now: datetime) -> OperatorWallet:
        return wallet.model_copy(update={
            "balance": wallet.balance + delta.earnings,
            "total_earnings": wallet.total_earnings + delta.earnings,
            "total_fees_collected": wallet.total_fees_collected + delta.fees_collected,
            "transaction_count": wallet.transaction_count + delta.transactions,
            "last_transaction_at": now,
        })

    async def mark_failed(self, transaction_id: str, reason: str) -> Optional[LedgerEntry]:
        async with self._lock:
            entry = self._entries.get(transaction_id)
            if entry is None or entry.status is not LedgerEntryStatus.PENDING:
                return _detached(entry)
            failed = entry.model_copy(update={
                "status": LedgerEntryStatus.FAILED,
                "failure_reason": reason,
                "processed_at": datetime.now(timezone.utc),
            })
            self._entries[transaction_id] = failed
            return _detached(failed)

    async def get_entry(self, transaction_id: str) -> Optional[LedgerEntry]:
        async with self._lock:
            return _detached(self._entries.get(transaction_id))

    async def get_wallet(self, operator_account_id: str, currency: str) -> Optional[OperatorWallet]:
        async with self._lock:
            return self._wallets.get((operator_account_id, currency))

    async def list_entries(
        self,
        operator_account_id: Optional[str] = None,
        currency: Optional[str] = None,
        status: Optional[LedgerEntryStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[LedgerEntry]:
        async with self._lock:
            entries = [
                e for e in self._entries.values()
                if (operator_account_id is None or e.operator_account_id == operator_account_id)
                and (currency is None or e.currency == currency)
                and (status is None or e.status is status)
            ]

        entries = [_detached(e) for e in entries]
        # Newest first; ties keep reverse insertion order
        entries.reverse()
        entries.sort(key=lambda e: e.created_at, reverse=True)
        if limit:
            return entries[offset:offset + limit]
        return entries[offset:]

    async def list_wallets(self) -> list[OperatorWallet]:
        async with self._lock:
            return list(self._wallets.values())

    async def expire_pending(self, created_before: datetime, reason: str) -> list[LedgerEntry]:
        expired = []
        async with self._lock:
            now = datetime.now(timezone.utc)
            for tx_id, entry in list(self._entries.items()):
                if entry.status is LedgerEntryStatus.PENDING and entry.created_at < created_before:
                    failed = entry.model_copy(update={
                        "status": LedgerEntryStatus.FAILED,
                        "failure_reason": reason,
                        "processed_at": now,
                    })
                    self._entries[tx_id] = failed
                    expired.append(_detached(failed))
        return expired
