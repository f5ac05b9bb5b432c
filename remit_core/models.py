"""Domain models: fee breakdowns, ledger entries, operator wallets, results."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .money import currency_info, minor_unit

MONETARY_FIELDS = frozenset({
    "original_amount",
    "network_fee",
    "platform_charge",
    "total_fees",
    "total_payable",
})


class TransferChargeBreakdown(BaseModel):
    """
    Fee decomposition for one prospective transfer.

    Immutable and closed: unknown fields are rejected. Construction enforces
    ``total_fees == network_fee + platform_charge`` and
    ``total_payable == original_amount + total_fees`` to within one minor
    unit of the currency, so a tampered or hand-built breakdown cannot reach
    settlement.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    original_amount: Decimal
    currency: str
    network_id: str
    network_fee: Decimal
    platform_charge: Decimal
    total_fees: Decimal
    total_payable: Decimal
    operator_account_id: str

    @field_validator("currency")
    @classmethod
    def known_currency(cls, v: str) -> str:
        return currency_info(v).code

    @model_validator(mode="after")
    def check_conservation(self) -> "TransferChargeBreakdown":
        if self.original_amount <= 0:
            raise ValueError("original_amount must be positive")
        if self.network_fee < 0 or self.platform_charge < 0:
            raise ValueError("fees cannot be negative")
        tolerance = minor_unit(self.currency)
        if abs(self.total_fees - (self.network_fee + self.platform_charge)) > tolerance:
            raise ValueError("total_fees must equal network_fee + platform_charge")
        if abs(self.total_payable - (self.original_amount + self.total_fees)) > tolerance:
            raise ValueError("total_payable must equal original_amount + total_fees")
        return self

    def to_ledger_metadata(self) -> dict[str, str]:
        """Snapshot stored with the ledger entry and used as the idempotency fingerprint."""
        return {
            "original_amount": str(self.original_amount),
            "currency": self.currency,
            "network_id": self.network_id,
            "network_fee": str(self.network_fee),
            "platform_charge": str(self.platform_charge),
            "total_fees": str(self.total_fees),
            "total_payable": str(self.total_payable),
            "operator_account_id": self.operator_account_id,
        }


class LedgerEntryStatus(str, Enum):
    """Status of a settlement ledger entry."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not LedgerEntryStatus.PENDING


class LedgerEntryKind(str, Enum):
    """Kind of earnings recorded against the operator wallet."""
    FEE_EARNED = "fee_earned"


class LedgerEntry(BaseModel):
    """
    One settled (or settling) transaction on the operator earnings ledger.

    ``transaction_id`` is the idempotency key. Entries are never deleted and
    only ever move from pending to a terminal status.
    """

    model_config = ConfigDict(frozen=True)

    transaction_id: str
    operator_account_id: str
    currency: str
    amount: Decimal
    kind: LedgerEntryKind = LedgerEntryKind.FEE_EARNED
    status: LedgerEntryStatus = LedgerEntryStatus.PENDING
    description: str = ""
    failure_reason: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    processed_at: Optional[datetime] = None

    @classmethod
    def pending_for(cls, breakdown: TransferChargeBreakdown, transaction_id: str) -> "LedgerEntry":
        """Build the pending entry a settlement attempt reserves."""
        return cls(
            transaction_id=transaction_id,
            operator_account_id=breakdown.operator_account_id,
            currency=breakdown.currency,
            amount=breakdown.platform_charge,
            description=(
                f"Platform charge for transfer of {breakdown.original_amount} "
                f"{breakdown.currency} via {breakdown.network_id}"
            ),
            metadata={"breakdown": breakdown.to_ledger_metadata()},
        )

    @property
    def total_fees(self) -> Decimal:
        """Total fees recorded with the entry's breakdown."""
        recorded = self.metadata.get("breakdown", {})
        return Decimal(recorded.get("total_fees", "0"))

    def matches(self, breakdown: TransferChargeBreakdown) -> bool:
        """Whether the recorded breakdown is value-equal to ``breakdown``."""
        recorded = self.metadata.get("breakdown")
        supplied = breakdown.to_ledger_metadata()
        if not isinstance(recorded, dict) or recorded.keys() != supplied.keys():
            return False
        for key, value in supplied.items():
            if key not in MONETARY_FIELDS:
                if recorded[key] != value:
                    return False
                continue
            try:
                if Decimal(recorded[key]) != Decimal(value):
                    return False
            except (InvalidOperation, TypeError):
                return False
        return True


class OperatorWallet(BaseModel):
    """Aggregate earnings of one operator account in one currency."""

    model_config = ConfigDict(frozen=True)

    operator_account_id: str
    currency: str
    balance: Decimal = Decimal("0")
    total_earnings: Decimal = Decimal("0")
    total_fees_collected: Decimal = Decimal("0")
    transaction_count: int = 0
    last_transaction_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class WalletDelta:
    """Increments applied to an operator wallet by one settlement."""

    operator_account_id: str
    currency: str
    earnings: Decimal
    fees_collected: Decimal
    transactions: int = 1

    @classmethod
    def from_breakdown(cls, breakdown: TransferChargeBreakdown) -> "WalletDelta":
        return cls(
            operator_account_id=breakdown.operator_account_id,
            currency=breakdown.currency,
            earnings=breakdown.platform_charge,
            fees_collected=breakdown.total_fees,
        )


# =============================================================================
# Settlement results
# =============================================================================

class SettlementOutcome(str, Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    FAILED = "failed"
    IN_FLIGHT = "in_flight"


@dataclass(frozen=True)
class SettlementResult:
    """Base of the four possible answers from ``settle``."""

    transaction_id: str
    outcome: ClassVar[SettlementOutcome]

    @property
    def is_success(self) -> bool:
        return self.outcome in (SettlementOutcome.COMPLETED, SettlementOutcome.ALREADY_COMPLETED)


@dataclass(frozen=True)
class Completed(SettlementResult):
    """This call owned the entry and credited the wallet."""

    entry: LedgerEntry
    wallet: OperatorWallet
    outcome: ClassVar[SettlementOutcome] = SettlementOutcome.COMPLETED


@dataclass(frozen=True)
class AlreadyCompleted(SettlementResult):
    """An earlier call already settled this transaction; nothing was credited."""

    entry: LedgerEntry
    outcome: ClassVar[SettlementOutcome] = SettlementOutcome.ALREADY_COMPLETED


@dataclass(frozen=True)
class Failed(SettlementResult):
    """Settlement failed and left no wallet delta."""

    reason: str
    entry: Optional[LedgerEntry] = None
    outcome: ClassVar[SettlementOutcome] = SettlementOutcome.FAILED


@dataclass(frozen=True)
class InFlight(SettlementResult):
    """Another worker holds the pending entry and has not resolved it yet."""

    entry: LedgerEntry
    outcome: ClassVar[SettlementOutcome] = SettlementOutcome.IN_FLIGHT


# =============================================================================
# Read-side helpers
# =============================================================================

@dataclass(frozen=True)
class BalanceCheck:
    """Whether a sender balance covers a breakdown's total payable."""

    is_valid: bool
    shortfall: Decimal = Decimal("0")


@dataclass(frozen=True)
class EarningsSummary:
    """Operator wallet together with its most recent ledger entries."""

    wallet: OperatorWallet
    recent_entries: list[LedgerEntry]
