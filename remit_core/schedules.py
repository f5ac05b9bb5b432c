"""Fee schedule registry: per-network fee policy and the platform charge policy.

Schedules are immutable and validated once, when the registry is built, so a
misconfigured deployment fails at startup rather than on the first quote.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, Mapping

from .config import RemitSettings
from .exceptions import InvalidFeeScheduleError, UnknownNetworkError
from .money import currency_info

logger = logging.getLogger(__name__)

_HUNDRED = Decimal(100)


@dataclass(frozen=True)
class FeeSchedule:
    """Immutable fee policy of one settlement network."""

    network_id: str
    name: str
    fee_percentage: Decimal  # percent, 0.5 == 0.5%
    minimum_fee: Decimal
    maximum_fee: Decimal
    settlement_currency: str
    description: str = ""

    @property
    def fee_rate(self) -> Decimal:
        """Fee as a fraction of the amount (0.5% -> 0.005)."""
        return self.fee_percentage / _HUNDRED

    def validate(self) -> None:
        """
        Check the schedule is internally consistent.

        Raises:
            InvalidFeeScheduleError: If bounds or percentage are unusable
        """
        if self.minimum_fee > self.maximum_fee:
            raise InvalidFeeScheduleError(
                f"Network '{self.network_id}' minimum fee {self.minimum_fee} "
                f"exceeds maximum fee {self.maximum_fee}",
                schedule=self.network_id,
                details={"minimum_fee": str(self.minimum_fee), "maximum_fee": str(self.maximum_fee)},
            )
        if self.minimum_fee < 0:
            raise InvalidFeeScheduleError(
                f"Network '{self.network_id}' minimum fee cannot be negative",
                schedule=self.network_id,
            )
        if self.fee_percentage < 0 or self.fee_percentage >= _HUNDRED:
            raise InvalidFeeScheduleError(
                f"Network '{self.network_id}' fee percentage must be in [0, 100)",
                schedule=self.network_id,
                details={"fee_percentage": str(self.fee_percentage)},
            )
        currency_info(self.settlement_currency)

    def to_dict(self) -> dict:
        return {
            "network_id": self.network_id,
            "name": self.name,
            "fee_percentage": str(self.fee_percentage),
            "minimum_fee": str(self.minimum_fee),
            "maximum_fee": str(self.maximum_fee),
            "settlement_currency": self.settlement_currency,
            "description": self.description,
        }


@dataclass(frozen=True)
class PlatformChargePolicy:
    """
    Platform operator charge policy.

    The threshold is a step, not a marginal rate: once the amount reaches
    ``minimum_chargeable_amount`` the percentage applies to the full amount.
    """

    charge_percentage: Decimal  # percent, 0.1 == 0.1%
    minimum_chargeable_amount: Decimal
    maximum_charge: Decimal
    currency: str

    @property
    def charge_rate(self) -> Decimal:
        return self.charge_percentage / _HUNDRED

    def validate(self) -> None:
        if self.charge_percentage < 0 or self.charge_percentage >= _HUNDRED:
            raise InvalidFeeScheduleError(
                "Platform charge percentage must be in [0, 100)",
                schedule="platform",
                details={"charge_percentage": str(self.charge_percentage)},
            )
        if self.maximum_charge < 0 or self.minimum_chargeable_amount < 0:
            raise InvalidFeeScheduleError(
                "Platform charge cap and threshold cannot be negative",
                schedule="platform",
            )
        currency_info(self.currency)


class FeeScheduleRegistry:
    """Lookup of fee schedules by network id plus the global platform policy."""

    def __init__(self, schedules: Iterable[FeeSchedule], platform_policy: PlatformChargePolicy) -> None:
        by_id: dict[str, FeeSchedule] = {}
        for schedule in schedules:
            key = schedule.network_id.lower()
            if key in by_id:
                raise InvalidFeeScheduleError(
                    f"Duplicate fee schedule for network '{schedule.network_id}'",
                    schedule=schedule.network_id,
                )
            schedule.validate()
            by_id[key] = schedule
        platform_policy.validate()

        self._schedules: Mapping[str, FeeSchedule] = MappingProxyType(by_id)
        self._platform_policy = platform_policy
        logger.debug("Fee schedule registry loaded: %s", ", ".join(sorted(by_id)))

    @classmethod
    def from_settings(cls, settings: RemitSettings) -> "FeeScheduleRegistry":
        """Build and validate the registry from configuration."""
        schedules = [
            FeeSchedule(
                network_id=network_id,
                name=cfg.name,
                fee_percentage=cfg.fee_percentage,
                minimum_fee=cfg.minimum_fee,
                maximum_fee=cfg.maximum_fee,
                settlement_currency=cfg.settlement_currency,
                description=cfg.description,
            )
            for network_id, cfg in settings.networks.items()
        ]
        pc = settings.platform_charge
        policy = PlatformChargePolicy(
            charge_percentage=pc.charge_percentage,
            minimum_chargeable_amount=pc.minimum_chargeable_amount,
            maximum_charge=pc.maximum_charge,
            currency=pc.currency,
        )
        return cls(schedules, policy)

    def lookup(self, network_id: str) -> FeeSchedule:
        """
        Get the fee schedule for a settlement network.

        Raises:
            UnknownNetworkError: If no schedule is registered for the id
        """
        schedule = self._schedules.get(str(network_id).lower())
        if schedule is None:
            raise UnknownNetworkError(str(network_id), known=sorted(self._schedules))
        return schedule

    def platform_policy(self) -> PlatformChargePolicy:
        return self._platform_policy

    def networks(self) -> list[FeeSchedule]:
        """All registered schedules, ordered by network id."""
        return [self._schedules[k] for k in sorted(self._schedules)]

    def __contains__(self, network_id: object) -> bool:
        return isinstance(network_id, str) and network_id.lower() in self._schedules
