"""Failure handling of the settlement writer, using the in-memory store."""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from remit_core.auditor import audit_ledger
from remit_core.exceptions import LedgerIntegrityError
from remit_core.ledger import InMemorySettlementStore, SettlementLedgerWriter
from remit_core.models import Completed, Failed, InFlight, LedgerEntry, LedgerEntryStatus

OPERATOR = "platform-operator-001"


class ExplodingStore(InMemorySettlementStore):
    """Fails while applying the wallet delta, before anything is written."""

    def _apply_delta(self, wallet, delta, now):
        raise RuntimeError("wallet row unavailable")


class SweptStore(InMemorySettlementStore):
    """A stale-pending sweep expires the entry just before the owner commits."""

    async def commit_settlement(self, transaction_id, delta):
        await self.expire_pending(datetime.now(timezone.utc) + timedelta(seconds=1), "swept")
        return await super().commit_settlement(transaction_id, delta)


class UnreachableStore(InMemorySettlementStore):
    """The ledger goes away mid-settlement and cannot record the failure either."""

    def _apply_delta(self, wallet, delta, now):
        raise ConnectionError("ledger connection lost")

    async def mark_failed(self, transaction_id, reason):
        raise ConnectionError("ledger still unreachable")


class SlowCommitStore(InMemorySettlementStore):
    """Holds the settlement unit open until released."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.finished = asyncio.Event()

    async def commit_settlement(self, transaction_id, delta):
        self.started.set()
        await self.release.wait()
        try:
            return await super().commit_settlement(transaction_id, delta)
        finally:
            self.finished.set()


class TestFailedSettlement:
    """A failure inside the settlement unit leaves no wallet delta."""

    async def test_failure_marks_entry_failed(self, quote):
        store = ExplodingStore()
        writer = SettlementLedgerWriter(store)

        result = await writer.settle(quote(5000), "tx-001")

        assert isinstance(result, Failed)
        assert not result.is_success
        assert "wallet row unavailable" in result.reason
        assert result.entry.status is LedgerEntryStatus.FAILED
        assert await store.get_wallet(OPERATOR, "USDT") is None

    async def test_retry_returns_prior_failure(self, quote):
        store = ExplodingStore()
        writer = SettlementLedgerWriter(store)
        first = await writer.settle(quote(5000), "tx-001")

        second = await writer.settle(quote(5000), "tx-001")

        assert isinstance(second, Failed)
        assert second.reason == first.reason
        assert await store.get_wallet(OPERATOR, "USDT") is None

    async def test_failed_entry_not_in_audit(self, quote):
        store = ExplodingStore()
        await SettlementLedgerWriter(store).settle(quote(5000), "tx-bad")

        report = await audit_ledger(store)

        assert report.passed
        assert report.entries_checked == 0

    async def test_entry_expired_before_commit(self, quote):
        store = SweptStore()
        writer = SettlementLedgerWriter(store)

        result = await writer.settle(quote(5000), "tx-001")

        assert isinstance(result, Failed)
        assert result.reason == "swept"
        assert await store.get_wallet(OPERATOR, "USDT") is None

    async def test_reserve_failure(self, quote):
        store = InMemorySettlementStore()
        store.reserve = AsyncMock(side_effect=ConnectionError("ledger unreachable"))
        writer = SettlementLedgerWriter(store)

        result = await writer.settle(quote(5000), "tx-001")

        assert isinstance(result, Failed)
        assert result.entry is None
        assert "ledger unreachable" in result.reason

    async def test_integrity_errors_propagate(self, quote):
        store = InMemorySettlementStore()
        store.commit_settlement = AsyncMock(
            side_effect=LedgerIntegrityError("duplicate wallet", transaction_id="tx-001")
        )
        writer = SettlementLedgerWriter(store)

        with pytest.raises(LedgerIntegrityError):
            await writer.settle(quote(5000), "tx-001")


class TestLedgerAudit:
    async def test_detects_tampered_wallet(self, quote):
        store = InMemorySettlementStore()
        writer = SettlementLedgerWriter(store)
        await writer.settle(quote(5000), "tx-001")
        key = (OPERATOR, "USDT")
        store._wallets[key] = store._wallets[key].model_copy(update={"balance": Decimal("6")})

        report = await audit_ledger(store)

        assert not report.passed
        assert [d.check for d in report.discrepancies] == ["wallet_balance"]
        assert report.discrepancies[0].difference == Decimal("1")

    async def test_detects_missing_wallet(self, quote):
        store = InMemorySettlementStore()
        await SettlementLedgerWriter(store).settle(quote(5000), "tx-001")
        store._wallets.clear()

        report = await audit_ledger(store)

        assert not report.passed
        assert "wallet_transaction_count" in {d.check for d in report.discrepancies}


class TestUnrecordableFailure:
    """Failure handling when the failure itself cannot be written."""

    async def test_returns_failed_instead_of_raising(self, quote):
        store = UnreachableStore()
        writer = SettlementLedgerWriter(store)

        result = await writer.settle(quote(5000), "tx-001")

        assert isinstance(result, Failed)
        assert result.entry is None
        assert "ledger connection lost" in result.reason
        assert "could not mark failed: ledger still unreachable" in result.reason
        assert await store.get_wallet(OPERATOR, "USDT") is None

    async def test_entry_left_pending_until_swept(self, quote):
        store = UnreachableStore()
        writer = SettlementLedgerWriter(store)
        await writer.settle(quote(5000), "tx-001")

        retry = await writer.settle(quote(5000), "tx-001")
        assert isinstance(retry, InFlight)

        expired = await writer.expire_stale_pending(timedelta(0), now=datetime.now(timezone.utc) + timedelta(seconds=1))
        assert [e.transaction_id for e in expired] == ["tx-001"]
        assert isinstance(await writer.settle(quote(5000), "tx-001"), Failed)


class TestCancellation:
    async def test_started_unit_completes_after_caller_cancelled(self, quote):
        store = SlowCommitStore()
        writer = SettlementLedgerWriter(store)
        task = asyncio.create_task(writer.settle(quote(5000), "tx-001"))
        await store.started.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        store.release.set()
        await asyncio.wait_for(store.finished.wait(), timeout=1)

        entry = await store.get_entry("tx-001")
        wallet = await store.get_wallet(OPERATOR, "USDT")
        assert entry.status is LedgerEntryStatus.COMPLETED
        assert wallet.balance == Decimal("5")
        assert wallet.transaction_count == 1


class TestStoredEntriesAreIsolated:
    async def test_mutating_returned_entry_keeps_fingerprint(self, quote):
        store = InMemorySettlementStore()
        writer = SettlementLedgerWriter(store)
        result = await writer.settle(quote(5000), "tx-001")
        assert isinstance(result, Completed)

        result.entry.metadata["breakdown"]["platform_charge"] = "999"
        fetched = await store.get_entry("tx-001")
        fetched.metadata["breakdown"]["network_fee"] = "0"

        stored = await store.get_entry("tx-001")
        assert stored.metadata["breakdown"]["platform_charge"] == "5.000000"
        assert stored.metadata["breakdown"]["network_fee"] == "25.000000"
        assert (await writer.settle(quote(5000), "tx-001")).is_success

    async def test_caller_entry_is_not_stored_by_reference(self, quote):
        store = InMemorySettlementStore()
        pending = LedgerEntry.pending_for(quote(5000), "tx-002")
        assert await store.reserve(pending) is None

        pending.metadata["breakdown"]["total_fees"] = "1"

        stored = await store.get_entry("tx-002")
        assert stored.metadata["breakdown"]["total_fees"] == "30.000000"
