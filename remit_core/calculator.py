"""Transfer fee calculator.

Pure computation of a ``TransferChargeBreakdown`` from an amount, its
currency and the chosen settlement network:

1. Convert the amount into the network's settlement asset if needed.
2. Network fee = clamp(amount * fee rate, minimum fee, maximum fee) in the
   asset, converted back into the transfer currency.
3. Platform charge = 0 below the chargeable threshold, otherwise
   min(amount * charge rate, maximum charge) on the full amount.
4. Totals are sums of the rounded components.

Intermediate values are never rounded; each output is rounded once with
ROUND_HALF_UP at the transfer currency's precision.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from .exceptions import InvalidAmountError, InvalidFeeScheduleError
from .models import TransferChargeBreakdown
from .money import currency_info, fractional_digits, quantize_money, to_decimal
from .rates import ExchangeRateTable, RateSnapshot, convert, to_fiat, to_settlement_asset
from .schedules import FeeSchedule, FeeScheduleRegistry, PlatformChargePolicy

logger = logging.getLogger(__name__)


def validate_transfer_amount(amount: Any, currency: str) -> Decimal:
    """
    Normalise and validate a transfer amount before any computation.

    Raises:
        InvalidAmountError: If the amount is not a positive value representable
            in the currency's precision
    """
    info = currency_info(currency)
    value = to_decimal(amount)
    if value <= 0:
        raise InvalidAmountError(
            f"Transfer amount must be positive, got {value}",
            amount=value,
            currency=info.code,
        )
    if fractional_digits(value) > info.decimals:
        raise InvalidAmountError(
            f"{info.code} amounts allow at most {info.decimals} decimal places, got {value}",
            amount=value,
            currency=info.code,
        )
    if value > info.max_amount:
        raise InvalidAmountError(
            f"{info.code} amount {value} exceeds the maximum of {info.max_amount}",
            amount=value,
            currency=info.code,
        )
    return value


def clamp_network_fee(fee: Decimal, schedule: FeeSchedule) -> Decimal:
    """
    Apply the schedule's floor, then its cap (both inclusive).

    Raises:
        InvalidFeeScheduleError: If the floor is above the cap
    """
    if schedule.minimum_fee > schedule.maximum_fee:
        raise InvalidFeeScheduleError(
            f"Network '{schedule.network_id}' minimum fee {schedule.minimum_fee} "
            f"exceeds maximum fee {schedule.maximum_fee}",
            schedule=schedule.network_id,
        )
    fee = max(fee, schedule.minimum_fee)
    return min(fee, schedule.maximum_fee)


def platform_charge_for(amount: Decimal, policy: PlatformChargePolicy) -> Decimal:
    """
    Platform charge for an amount already expressed in the policy currency.

    The threshold is inclusive and a step: at or above it the rate applies to
    the whole amount, not only to the excess.
    """
    if amount < policy.minimum_chargeable_amount:
        return Decimal("0")
    return min(amount * policy.charge_rate, policy.maximum_charge)


class FeeCalculator:
    """
    Stateless fee calculator.

    Holds only the immutable schedule registry and a reference to the rate
    table; every quote reads one rate snapshot and uses it throughout.
    """

    def __init__(
        self,
        registry: FeeScheduleRegistry,
        rate_table: ExchangeRateTable,
        rate_max_age_seconds: Optional[float] = None,
    ) -> None:
        self._registry = registry
        self._rate_table = rate_table
        self._rate_max_age_seconds = rate_max_age_seconds

    @property
    def registry(self) -> FeeScheduleRegistry:
        return self._registry

    def compute_breakdown(
        self,
        amount: Any,
        currency: str,
        network_id: str,
        operator_account_id: str,
        snapshot: Optional[RateSnapshot] = None,
    ) -> TransferChargeBreakdown:
        """
        Compute the full fee breakdown for a prospective transfer.

        Args:
            amount: Transfer amount in ``currency``
            currency: Transfer currency code (e.g. "NGN", "USDT")
            network_id: Settlement network (e.g. "tron")
            operator_account_id: Operator account credited with the platform charge
            snapshot: Rate snapshot to use; defaults to the table's current one

        Returns:
            TransferChargeBreakdown

        Raises:
            InvalidAmountError: Non-positive or malformed amount
            UnknownNetworkError: No schedule for ``network_id``
            InvalidRateError: A needed rate is missing, zero, or negative
            InvalidFeeScheduleError: Schedule floor above cap
        """
        currency = currency_info(currency).code
        value = validate_transfer_amount(amount, currency)
        schedule = self._registry.lookup(network_id)
        policy = self._registry.platform_policy()

        if snapshot is None and self._needs_rates(currency, schedule, policy):
            snapshot = self._rate_table.current(self._rate_max_age_seconds)

        network_fee = self._network_fee(value, currency, schedule, snapshot)
        platform_charge = self._platform_charge(value, currency, policy, snapshot)

        network_fee = quantize_money(network_fee, currency)
        platform_charge = quantize_money(platform_charge, currency)
        original_amount = quantize_money(value, currency)
        total_fees = network_fee + platform_charge
        total_payable = original_amount + total_fees

        breakdown = TransferChargeBreakdown(
            original_amount=original_amount,
            currency=currency,
            network_id=schedule.network_id,
            network_fee=network_fee,
            platform_charge=platform_charge,
            total_fees=total_fees,
            total_payable=total_payable,
            operator_account_id=operator_account_id,
        )
        logger.debug(
            "Quoted %s %s via %s: network_fee=%s platform_charge=%s total_payable=%s",
            original_amount, currency, schedule.network_id,
            network_fee, platform_charge, total_payable,
        )
        return breakdown

    @staticmethod
    def _needs_rates(currency: str, schedule: FeeSchedule, policy: PlatformChargePolicy) -> bool:
        return currency != schedule.settlement_currency or currency != policy.currency

    @staticmethod
    def _network_fee(
        amount: Decimal,
        currency: str,
        schedule: FeeSchedule,
        snapshot: Optional[RateSnapshot],
    ) -> Decimal:
        asset = schedule.settlement_currency
        if currency == asset:
            return clamp_network_fee(amount * schedule.fee_rate, schedule)
        amount_in_asset = to_settlement_asset(amount, currency, asset, snapshot)
        fee_in_asset = clamp_network_fee(amount_in_asset * schedule.fee_rate, schedule)
        return to_fiat(fee_in_asset, asset, currency, snapshot)

    @staticmethod
    def _platform_charge(
        amount: Decimal,
        currency: str,
        policy: PlatformChargePolicy,
        snapshot: Optional[RateSnapshot],
    ) -> Decimal:
        if currency == policy.currency:
            return platform_charge_for(amount, policy)
        amount_in_policy = convert(amount, currency, policy.currency, snapshot)
        charge = platform_charge_for(amount_in_policy, policy)
        if charge == 0:
            return charge
        return convert(charge, policy.currency, currency, snapshot)
