"""
Remittance transfer charges core.

Computes fee breakdowns for cross-border transfers routed over stablecoin
settlement networks and records platform earnings exactly once per
settled transaction.
"""

from .auditor import AuditReport, ConservationAuditor, LedgerAuditReport, audit_ledger
from .calculator import FeeCalculator
from .config import RemitSettings, load_settings
from .exceptions import (
    ConfigurationError,
    IdempotencyConflictError,
    InvalidAmountError,
    InvalidFeeScheduleError,
    InvalidRateError,
    LedgerIntegrityError,
    RemitException,
    SettlementStateError,
    StaleRateError,
    UnknownNetworkError,
)
from .ledger import InMemorySettlementStore, SettlementLedgerWriter, SettlementStore, SqlSettlementStore
from .models import (
    AlreadyCompleted,
    BalanceCheck,
    Completed,
    EarningsSummary,
    Failed,
    InFlight,
    LedgerEntry,
    LedgerEntryStatus,
    OperatorWallet,
    SettlementOutcome,
    SettlementResult,
    TransferChargeBreakdown,
)
from .rates import ExchangeRateTable, RateSnapshot
from .schedules import FeeSchedule, FeeScheduleRegistry, PlatformChargePolicy
from .service import TransferChargesService, build_service

__version__ = "0.1.0"

__all__ = [
    # Service
    "TransferChargesService",
    "build_service",
    # Calculation
    "FeeCalculator",
    "FeeSchedule",
    "FeeScheduleRegistry",
    "PlatformChargePolicy",
    "ExchangeRateTable",
    "RateSnapshot",
    "TransferChargeBreakdown",
    # Settlement
    "SettlementLedgerWriter",
    "SettlementStore",
    "InMemorySettlementStore",
    "SqlSettlementStore",
    "LedgerEntry",
    "LedgerEntryStatus",
    "OperatorWallet",
    "SettlementOutcome",
    "SettlementResult",
    "Completed",
    "AlreadyCompleted",
    "Failed",
    "InFlight",
    "BalanceCheck",
    "EarningsSummary",
    # Audit
    "ConservationAuditor",
    "AuditReport",
    "LedgerAuditReport",
    "audit_ledger",
    # Config
    "RemitSettings",
    "load_settings",
    # Errors
    "RemitException",
    "InvalidAmountError",
    "InvalidRateError",
    "StaleRateError",
    "UnknownNetworkError",
    "ConfigurationError",
    "InvalidFeeScheduleError",
    "LedgerIntegrityError",
    "IdempotencyConflictError",
    "SettlementStateError",
]
