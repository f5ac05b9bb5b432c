"""Settlement ledger: stores and the exactly-once writer."""

from .base import SettlementStore
from .memory import InMemorySettlementStore
from .sql import SqlSettlementStore
from .writer import STALE_PENDING_REASON, SettlementLedgerWriter

__all__ = [
    "SettlementStore",
    "InMemorySettlementStore",
    "SqlSettlementStore",
    "SettlementLedgerWriter",
    "STALE_PENDING_REASON",
]
