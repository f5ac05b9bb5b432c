"""
Transfer charges service.

The two call shapes the surrounding application uses:

    service = await build_service()
    breakdown = service.quote(Decimal("50000"), "NGN", "tron")
    # ... caller executes the transfer on the chosen rail ...
    result = await service.settle(breakdown, transaction_id)

plus read-side helpers for operator reporting.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Mapping, Optional

from .auditor import LedgerAuditReport, audit_ledger
from .calculator import FeeCalculator
from .config import RemitSettings, load_settings
from .database.session import create_engine_for, init_db
from .logging_config import configure_logging
from .ledger.base import SettlementStore
from .ledger.sql import SqlSettlementStore
from .ledger.writer import SettlementLedgerWriter
from .models import (
    BalanceCheck,
    EarningsSummary,
    LedgerEntry,
    SettlementResult,
    TransferChargeBreakdown,
)
from .money import to_decimal
from .rates import ExchangeRateTable, RateSnapshot
from .schedules import FeeSchedule, FeeScheduleRegistry

logger = logging.getLogger(__name__)


class TransferChargesService:
    """Quotes transfer charges and records platform earnings for settled transfers."""

    def __init__(
        self,
        calculator: FeeCalculator,
        writer: SettlementLedgerWriter,
        rate_table: ExchangeRateTable,
        settings: RemitSettings,
    ) -> None:
        self._calculator = calculator
        self._writer = writer
        self._rate_table = rate_table
        self._settings = settings

    @property
    def rate_table(self) -> ExchangeRateTable:
        return self._rate_table

    @property
    def writer(self) -> SettlementLedgerWriter:
        return self._writer

    def quote(
        self,
        amount: Any,
        currency: str,
        network_id: str,
        operator_account_id: Optional[str] = None,
    ) -> TransferChargeBreakdown:
        """Compute the breakdown for a transfer; defaults to the configured operator."""
        return self._calculator.compute_breakdown(
            amount,
            currency,
            network_id,
            operator_account_id or self._settings.operator_account_id,
        )

    async def settle(
        self,
        breakdown: TransferChargeBreakdown,
        transaction_id: str,
        wait_for_inflight: Optional[float] = None,
    ) -> SettlementResult:
        """Record platform earnings for a completed transfer exactly once."""
        if wait_for_inflight is None:
            wait_for_inflight = self._settings.inflight_wait_seconds
        return await self._writer.settle(breakdown, transaction_id, wait_for_inflight=wait_for_inflight)

    def available_networks(self) -> list[FeeSchedule]:
        """Settlement networks a sender can choose from."""
        return self._calculator.registry.networks()

    def check_sufficient_balance(self, balance: Any, breakdown: TransferChargeBreakdown) -> BalanceCheck:
        """Whether a sender balance (in the breakdown's currency) covers the total payable."""
        available = to_decimal(balance)
        if available >= breakdown.total_payable:
            return BalanceCheck(is_valid=True)
        return BalanceCheck(is_valid=False, shortfall=breakdown.total_payable - available)

    async def earnings_summary(
        self,
        currency: str,
        operator_account_id: Optional[str] = None,
        recent: int = 10,
    ) -> EarningsSummary:
        return await self._writer.earnings_summary(
            operator_account_id or self._settings.operator_account_id,
            currency,
            recent=recent,
        )

    async def expire_stale_pending(self, older_than: Optional[timedelta] = None) -> list[LedgerEntry]:
        if older_than is None:
            older_than = timedelta(seconds=self._settings.stale_pending_seconds)
        return await self._writer.expire_stale_pending(older_than)

    async def audit_ledger(self) -> LedgerAuditReport:
        return await audit_ledger(self._writer.store)

    def update_rates(self, rates: Mapping[str, Any], source: str = "feed") -> RateSnapshot:
        """Replace the exchange rate snapshot (called by the rate feed)."""
        return self._rate_table.update_rates(rates, source=source)


async def build_service(
    settings: Optional[RemitSettings] = None,
    store: Optional[SettlementStore] = None,
) -> TransferChargesService:
    """
    Wire a service from configuration and configure logging from it.

    Without an explicit store, a SQL store is created on the configured
    database and its schema initialised.

    Raises:
        InvalidFeeScheduleError: If a configured schedule is inconsistent
        InvalidRateError: If a configured exchange rate is not positive
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level, json_format=settings.log_json)
    registry = FeeScheduleRegistry.from_settings(settings)
    rate_table = ExchangeRateTable(
        RateSnapshot.from_mapping(
            {pair: Decimal(rate) for pair, rate in settings.exchange_rates.items()},
            source="config",
        )
    )

    if store is None:
        engine = create_engine_for(settings.database_url, echo=settings.sql_echo)
        await init_db(engine)
        store = SqlSettlementStore(engine)

    calculator = FeeCalculator(registry, rate_table, settings.rate_max_age_seconds)
    writer = SettlementLedgerWriter(store)
    logger.info(
        "Transfer charges service ready (%s): networks=%s operator=%s store=%s",
        settings.environment,
        ",".join(s.network_id for s in registry.networks()),
        settings.operator_account_id,
        type(store).__name__,
    )
    return TransferChargesService(calculator, writer, rate_table, settings)
