"""Tests for the fee schedule registry."""
from dataclasses import replace
from decimal import Decimal

import pytest

from remit_core.exceptions import InvalidFeeScheduleError, UnknownNetworkError
from remit_core.schedules import FeeSchedule, FeeScheduleRegistry, PlatformChargePolicy


def _schedule(**overrides):
    base = FeeSchedule(
        network_id="tron",
        name="Tron USDT",
        fee_percentage=Decimal("0.5"),
        minimum_fee=Decimal("1"),
        maximum_fee=Decimal("50"),
        settlement_currency="USDT",
    )
    return replace(base, **overrides)


def _policy(**overrides):
    base = PlatformChargePolicy(Decimal("0.1"), Decimal("1000"), Decimal("2000"), "NGN")
    return replace(base, **overrides)


class TestFeeSchedule:
    def test_fee_rate_is_fraction(self):
        assert _schedule().fee_rate == Decimal("0.005")

    def test_floor_above_cap(self):
        with pytest.raises(InvalidFeeScheduleError) as exc:
            _schedule(minimum_fee=Decimal("60")).validate()
        assert exc.value.details["schedule"] == "tron"

    def test_negative_floor(self):
        with pytest.raises(InvalidFeeScheduleError):
            _schedule(minimum_fee=Decimal("-1")).validate()

    @pytest.mark.parametrize("pct", ["-0.1", "100"])
    def test_percentage_out_of_range(self, pct):
        with pytest.raises(InvalidFeeScheduleError):
            _schedule(fee_percentage=Decimal(pct)).validate()

    def test_equal_floor_and_cap_is_allowed(self):
        _schedule(minimum_fee=Decimal("5"), maximum_fee=Decimal("5")).validate()


class TestPlatformChargePolicy:
    def test_charge_rate(self):
        assert _policy().charge_rate == Decimal("0.001")

    def test_negative_cap(self):
        with pytest.raises(InvalidFeeScheduleError):
            _policy(maximum_charge=Decimal("-1")).validate()


class TestFeeScheduleRegistry:
    """Tests for lookup and startup validation."""

    def test_lookup_is_case_insensitive(self):
        registry = FeeScheduleRegistry([_schedule()], _policy())
        assert registry.lookup("TRON").network_id == "tron"
        assert "Tron" in registry

    def test_unknown_network(self):
        registry = FeeScheduleRegistry([_schedule()], _policy())
        with pytest.raises(UnknownNetworkError) as exc:
            registry.lookup("solana")
        assert exc.value.details["known_networks"] == ["tron"]
        assert exc.value.http_status == 404

    def test_invalid_schedule_fails_at_construction(self):
        with pytest.raises(InvalidFeeScheduleError):
            FeeScheduleRegistry([_schedule(minimum_fee=Decimal("100"))], _policy())

    def test_invalid_policy_fails_at_construction(self):
        with pytest.raises(InvalidFeeScheduleError):
            FeeScheduleRegistry([_schedule()], _policy(charge_percentage=Decimal("150")))

    def test_duplicate_network(self):
        with pytest.raises(InvalidFeeScheduleError):
            FeeScheduleRegistry([_schedule(), _schedule(network_id="TRON")], _policy())

    def test_from_settings_defaults(self, default_registry):
        assert [s.network_id for s in default_registry.networks()] == ["ethereum", "polygon", "tron"]
        polygon = default_registry.lookup("polygon")
        assert polygon.fee_percentage == Decimal("0.3")
        assert polygon.minimum_fee == Decimal("0.5")
        assert polygon.maximum_fee == Decimal("30")
        assert polygon.settlement_currency == "USDT"

        policy = default_registry.platform_policy()
        assert policy.currency == "NGN"
        assert policy.minimum_chargeable_amount == Decimal("1000")
        assert policy.maximum_charge == Decimal("2000")
