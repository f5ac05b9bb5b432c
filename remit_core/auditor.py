"""
Conservation auditor.

Read-only verification that money is neither created nor lost:

- per breakdown and per currency batch, ``total_payable`` equals
  ``original_amount + total_fees`` and ``total_fees`` equals
  ``network_fee + platform_charge``;
- per operator wallet, the aggregate matches the sum of its completed
  ledger entries.

Discrepancies are reported and logged, never corrected.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from .ledger.base import SettlementStore
from .models import LedgerEntry, LedgerEntryStatus, OperatorWallet, TransferChargeBreakdown
from .money import minor_unit

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


@dataclass(frozen=True)
class Discrepancy:
    """One violated equality: ``expected`` should equal ``actual``."""

    check: str
    currency: str
    expected: Decimal
    actual: Decimal
    subject: Optional[str] = None

    @property
    def difference(self) -> Decimal:
        return self.actual - self.expected

    def to_dict(self) -> dict:
        return {
            "check": self.check,
            "currency": self.currency,
            "subject": self.subject,
            "expected": str(self.expected),
            "actual": str(self.actual),
            "difference": str(self.difference),
        }


@dataclass
class CurrencyTotals:
    """Column sums of a batch of breakdowns in one currency."""

    count: int = 0
    original_amount: Decimal = _ZERO
    network_fee: Decimal = _ZERO
    platform_charge: Decimal = _ZERO
    total_fees: Decimal = _ZERO
    total_payable: Decimal = _ZERO

    def add(self, breakdown: TransferChargeBreakdown) -> None:
        self.count += 1
        self.original_amount += breakdown.original_amount
        self.network_fee += breakdown.network_fee
        self.platform_charge += breakdown.platform_charge
        self.total_fees += breakdown.total_fees
        self.total_payable += breakdown.total_payable


@dataclass
class AuditReport:
    """Result of auditing a batch of breakdowns."""

    totals: dict[str, CurrencyTotals] = field(default_factory=dict)
    discrepancies: list[Discrepancy] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.discrepancies

    @property
    def breakdown_count(self) -> int:
        return sum(t.count for t in self.totals.values())


@dataclass
class LedgerAuditReport:
    """Result of reconciling operator wallets against the ledger."""

    wallets_checked: int = 0
    entries_checked: int = 0
    discrepancies: list[Discrepancy] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.discrepancies


def _check(
    discrepancies: list[Discrepancy],
    check: str,
    currency: str,
    expected: Decimal,
    actual: Decimal,
    tolerance: Decimal,
    subject: Optional[str] = None,
) -> None:
    if abs(actual - expected) > tolerance:
        discrepancies.append(Discrepancy(check, currency, expected, actual, subject))


class ConservationAuditor:
    """Checks the conservation equalities over batches of breakdowns."""

    def audit(self, breakdowns: Iterable[TransferChargeBreakdown]) -> AuditReport:
        """
        Audit a batch of breakdowns, grouped by currency.

        Each breakdown is checked on its own, then the column sums of each
        currency are checked against the same two equalities. Tolerance is one
        minor unit of the currency.
        """
        report = AuditReport()
        for index, breakdown in enumerate(breakdowns):
            currency = breakdown.currency
            tolerance = minor_unit(currency)
            subject = f"breakdown[{index}]"
            _check(
                report.discrepancies, "total_fees", currency,
                breakdown.network_fee + breakdown.platform_charge, breakdown.total_fees,
                tolerance, subject,
            )
            _check(
                report.discrepancies, "total_payable", currency,
                breakdown.original_amount + breakdown.total_fees, breakdown.total_payable,
                tolerance, subject,
            )
            report.totals.setdefault(currency, CurrencyTotals()).add(breakdown)

        for currency, totals in report.totals.items():
            tolerance = minor_unit(currency)
            _check(
                report.discrepancies, "batch_total_fees", currency,
                totals.network_fee + totals.platform_charge, totals.total_fees, tolerance,
            )
            _check(
                report.discrepancies, "batch_total_payable", currency,
                totals.original_amount + totals.total_fees, totals.total_payable, tolerance,
            )

        for d in report.discrepancies:
            logger.warning(
                "Conservation check %s failed for %s %s: expected %s, got %s",
                d.check, d.subject or "batch", d.currency, d.expected, d.actual,
            )
        return report


async def audit_ledger(store: SettlementStore) -> LedgerAuditReport:
    """
    Reconcile every operator wallet with the completed entries credited to it.

    The wallet's balance, total earnings, total fees collected and transaction
    count must equal the sums over its completed ledger entries exactly.
    """
    report = LedgerAuditReport()
    entries = await store.list_entries(status=LedgerEntryStatus.COMPLETED, limit=0)
    report.entries_checked = len(entries)

    by_wallet: dict[tuple[str, str], list[LedgerEntry]] = defaultdict(list)
    for entry in entries:
        by_wallet[(entry.operator_account_id, entry.currency)].append(entry)

    wallets: dict[tuple[str, str], OperatorWallet] = {
        (w.operator_account_id, w.currency): w for w in await store.list_wallets()
    }
    report.wallets_checked = len(wallets)

    for key in sorted(set(wallets) | set(by_wallet)):
        operator_account_id, currency = key
        wallet = wallets.get(key) or OperatorWallet(operator_account_id=operator_account_id, currency=currency)
        credited = by_wallet.get(key, [])
        earnings = sum((e.amount for e in credited), _ZERO)
        fees = sum((e.total_fees for e in credited), _ZERO)
        subject = f"{operator_account_id}/{currency}"

        _check(report.discrepancies, "wallet_balance", currency, earnings, wallet.balance, _ZERO, subject)
        _check(report.discrepancies, "wallet_total_earnings", currency, earnings, wallet.total_earnings, _ZERO, subject)
        _check(
            report.discrepancies, "wallet_total_fees_collected", currency,
            fees, wallet.total_fees_collected, _ZERO, subject,
        )
        _check(
            report.discrepancies, "wallet_transaction_count", currency,
            Decimal(len(credited)), Decimal(wallet.transaction_count), _ZERO, subject,
        )

    for d in report.discrepancies:
        logger.warning(
            "Ledger audit %s failed for %s: wallet has %s, ledger sums to %s",
            d.check, d.subject, d.actual, d.expected,
        )
    if report.passed:
        logger.info(
            "Ledger audit passed: %d wallets, %d completed entries",
            report.wallets_checked, report.entries_checked,
        )
    return report
