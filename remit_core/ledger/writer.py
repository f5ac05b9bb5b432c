"""
Settlement ledger writer: exactly-once crediting of platform earnings.

Each transaction id moves through ``absent -> pending -> completed`` or
``pending -> failed``:

- The first caller reserves a pending entry (unique on transaction id) and
  owns the settlement.
- The owner applies the wallet delta and completes the entry in one atomic
  unit. If that unit fails it is rolled back and the entry is marked failed.
- Any other caller finds the existing entry and reports it: completed entries
  return ``AlreadyCompleted``, failed ones return the original failure, and
  pending ones are polled for the caller-supplied wait before ``InFlight``.

The writer never retries. Retry policy belongs to the caller; idempotency on
the transaction id is what makes retrying safe.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from remit_core.exceptions import (
    IdempotencyConflictError,
    LedgerIntegrityError,
    SettlementStateError,
)
from remit_core.logging_config import settlement_context
from remit_core.models import (
    AlreadyCompleted,
    Completed,
    EarningsSummary,
    Failed,
    InFlight,
    LedgerEntry,
    LedgerEntryStatus,
    OperatorWallet,
    SettlementResult,
    TransferChargeBreakdown,
    WalletDelta,
)
from .base import SettlementStore

logger = logging.getLogger(__name__)

STALE_PENDING_REASON = "Settlement abandoned while pending"


class SettlementLedgerWriter:
    """Records platform earnings for settled transfers, once per transaction id."""

    def __init__(self, store: SettlementStore, poll_interval: float = 0.05) -> None:
        self._store = store
        self._poll_interval = poll_interval

    @property
    def store(self) -> SettlementStore:
        return self._store

    async def settle(
        self,
        breakdown: TransferChargeBreakdown,
        transaction_id: str,
        *,
        wait_for_inflight: float = 0.0,
    ) -> SettlementResult:
        """
        Credit the operator wallet for a transfer exactly once.

        Args:
            breakdown: The breakdown the transfer was quoted and executed with
            transaction_id: Idempotency key of the transfer
            wait_for_inflight: Seconds to poll a concurrent in-flight attempt
                before answering ``InFlight``

        Returns:
            Completed, AlreadyCompleted, Failed or InFlight

        Raises:
            IdempotencyConflictError: The id was settled with another breakdown
            LedgerIntegrityError: A ledger uniqueness constraint was violated
        """
        if not transaction_id or not transaction_id.strip():
            raise ValueError("transaction_id is required")

        with settlement_context(transaction_id, breakdown.operator_account_id):
            pending = LedgerEntry.pending_for(breakdown, transaction_id)
            try:
                existing = await self._store.reserve(pending)
            except LedgerIntegrityError:
                raise
            except Exception as e:
                logger.error("Could not reserve ledger entry: %s", e)
                return Failed(transaction_id=transaction_id, reason=f"reserve failed: {e}")

            if existing is not None:
                return await self._resolve_existing(existing, breakdown, wait_for_inflight)

            return await self._apply(breakdown, transaction_id)

    async def _apply(self, breakdown: TransferChargeBreakdown, transaction_id: str) -> SettlementResult:
        delta = WalletDelta.from_breakdown(breakdown)
        try:
            # Once started, the unit runs to completion even if the caller is cancelled.
            entry, wallet = await asyncio.shield(self._store.commit_settlement(transaction_id, delta))
        except SettlementStateError:
            # Expired by a stale-pending sweep before this unit ran; nothing was applied.
            current = await self._store.get_entry(transaction_id)
            reason = (current.failure_reason if current else None) or "entry no longer pending"
            logger.warning("Settlement lost its pending entry: %s", reason)
            return Failed(transaction_id=transaction_id, reason=reason, entry=current)
        except LedgerIntegrityError:
            logger.critical("Ledger integrity violated while settling %s", transaction_id)
            raise
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            logger.error("Settlement rolled back: %s", reason)
            try:
                failed = await self._store.mark_failed(transaction_id, reason)
            except Exception as mark_error:
                # The entry stays pending until expire_stale_pending fails it.
                logger.error("Could not mark settlement failed: %s", mark_error)
                return Failed(
                    transaction_id=transaction_id,
                    reason=f"{reason}; could not mark failed: {mark_error}",
                )
            return Failed(transaction_id=transaction_id, reason=reason, entry=failed)

        logger.info(
            "Credited %s %s to operator %s (wallet balance %s, %d transactions)",
            entry.amount,
            entry.currency,
            entry.operator_account_id,
            wallet.balance,
            wallet.transaction_count,
        )
        return Completed(transaction_id=transaction_id, entry=entry, wallet=wallet)

    async def _resolve_existing(
        self,
        entry: LedgerEntry,
        breakdown: TransferChargeBreakdown,
        wait_for_inflight: float,
    ) -> SettlementResult:
        if not entry.matches(breakdown):
            raise IdempotencyConflictError(
                entry.transaction_id,
                recorded=entry.metadata.get("breakdown", {}),
                supplied=breakdown.to_ledger_metadata(),
            )

        if entry.status is LedgerEntryStatus.PENDING and wait_for_inflight > 0:
            entry = await self._wait_for_resolution(entry, wait_for_inflight)

        if entry.status is LedgerEntryStatus.COMPLETED:
            logger.info("Transaction already settled; no credit applied")
            return AlreadyCompleted(transaction_id=entry.transaction_id, entry=entry)
        if entry.status is LedgerEntryStatus.FAILED:
            logger.info("Transaction previously failed: %s", entry.failure_reason)
            return Failed(
                transaction_id=entry.transaction_id,
                reason=entry.failure_reason or "previous settlement attempt failed",
                entry=entry,
            )
        logger.info("Settlement already in flight")
        return InFlight(transaction_id=entry.transaction_id, entry=entry)

    async def _wait_for_resolution(self, entry: LedgerEntry, wait_for_inflight: float) -> LedgerEntry:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_for_inflight
        while entry.status is LedgerEntryStatus.PENDING:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self._poll_interval, remaining))
            current = await self._store.get_entry(entry.transaction_id)
            if current is None:
                raise LedgerIntegrityError(
                    "Pending ledger entry disappeared", transaction_id=entry.transaction_id
                )
            entry = current
        return entry

    async def expire_stale_pending(self, older_than: timedelta, now: Optional[datetime] = None) -> list[LedgerEntry]:
        """
        Fail entries left pending longer than ``older_than`` (e.g. a crashed worker).

        A late owner of an expired entry cannot credit it: completion is
        conditional on the entry still being pending.
        """
        now = now or datetime.now(timezone.utc)
        expired = await self._store.expire_pending(now - older_than, STALE_PENDING_REASON)
        for entry in expired:
            logger.warning(
                "Expired stale pending settlement %s (created %s)",
                entry.transaction_id,
                entry.created_at.isoformat(),
            )
        return expired

    async def get_entry(self, transaction_id: str) -> Optional[LedgerEntry]:
        return await self._store.get_entry(transaction_id)

    async def get_wallet(self, operator_account_id: str, currency: str) -> Optional[OperatorWallet]:
        return await self._store.get_wallet(operator_account_id, currency)

    async def earnings_summary(self, operator_account_id: str, currency: str, recent: int = 10) -> EarningsSummary:
        """Wallet aggregate and most recent entries for an operator account."""
        wallet = await self._store.get_wallet(operator_account_id, currency)
        if wallet is None:
            wallet = OperatorWallet(operator_account_id=operator_account_id, currency=currency)
        entries = await self._store.list_entries(
            operator_account_id=operator_account_id,
            currency=currency,
            limit=recent,
        )
        return EarningsSummary(wallet=wallet, recent_entries=entries)
