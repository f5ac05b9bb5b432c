"""Abstract base class for settlement store implementations."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from remit_core.models import (
    LedgerEntry,
    LedgerEntryStatus,
    OperatorWallet,
    WalletDelta,
)


class SettlementStore(ABC):
    """
    Persistence backend for the settlement ledger writer.

    This interface allows swapping between different backends:
    - InMemorySettlementStore for tests and single-process use
    - SqlSettlementStore for SQLite/PostgreSQL through SQLAlchemy

    Implementations must enforce uniqueness of ``transaction_id`` on ledger
    entries and of ``(operator_account_id, currency)`` on wallets, and must
    apply a wallet delta and the matching entry transition as one atomic unit.
    """

    @abstractmethod
    async def reserve(self, entry: LedgerEntry) -> Optional[LedgerEntry]:
        """
        Insert a pending ledger entry unless one exists for its transaction id.

        Args:
            entry: The pending entry to insert

        Returns:
            None if this call inserted the entry, otherwise the existing entry
        """

    @abstractmethod
    async def commit_settlement(self, transaction_id: str, delta: WalletDelta) -> tuple[LedgerEntry, OperatorWallet]:
        """
        Atomically apply a wallet delta and complete the pending entry.

        Creates the wallet if absent. The entry only completes if it is still
        pending; otherwise nothing is applied.

        Returns:
            The completed entry and the wallet after the delta

        Raises:
            SettlementStateError: If the entry is no longer pending
            LedgerIntegrityError: If a uniqueness constraint is violated
        """

    @abstractmethod
    async def mark_failed(self, transaction_id: str, reason: str) -> Optional[LedgerEntry]:
        """
        Move a pending entry to failed.

        Returns:
            The entry after the call (unchanged if it was already terminal),
            or None if no entry exists
        """

    @abstractmethod
    async def get_entry(self, transaction_id: str) -> Optional[LedgerEntry]:
        """Retrieve a ledger entry by transaction id."""

    @abstractmethod
    async def get_wallet(self, operator_account_id: str, currency: str) -> Optional[OperatorWallet]:
        """Retrieve an operator wallet."""

    @abstractmethod
    async def list_entries(
        self,
        operator_account_id: Optional[str] = None,
        currency: Optional[str] = None,
        status: Optional[LedgerEntryStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[LedgerEntry]:
        """
        List ledger entries, newest first.

        Args:
            operator_account_id: Optional operator filter
            currency: Optional currency filter
            status: Optional status filter
            limit: Maximum number to return (0 for no limit)
            offset: Number to skip for pagination
        """

    @abstractmethod
    async def list_wallets(self) -> list[OperatorWallet]:
        """List every operator wallet."""

    @abstractmethod
    async def expire_pending(self, created_before: datetime, reason: str) -> list[LedgerEntry]:
        """
        Fail every entry still pending that was created before a cutoff.

        Returns:
            The entries that were moved to failed
        """
