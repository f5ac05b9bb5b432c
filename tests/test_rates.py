"""Tests for exchange rate snapshots, the rate table and conversion."""
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from remit_core.exceptions import InvalidRateError, StaleRateError
from remit_core.rates import (
    ExchangeRateTable,
    RateSnapshot,
    convert,
    parse_pair,
    to_fiat,
    to_settlement_asset,
)


class TestParsePair:
    def test_slash_and_to_forms(self):
        assert parse_pair("NGN/USDT") == ("NGN", "USDT")
        assert parse_pair("ngn_to_usdt") == ("NGN", "USDT")

    @pytest.mark.parametrize("key", ["NGNUSDT", "NGN/", "NGN/NGN"])
    def test_malformed(self, key):
        with pytest.raises(ValueError):
            parse_pair(key)


class TestRateSnapshot:
    """Tests for the immutable snapshot value."""

    def test_directional_lookup(self):
        snapshot = RateSnapshot.from_mapping({"NGN/USDT": "0.00065", "USDT/NGN": "1538.46"})
        assert snapshot.rate("NGN", "USDT") == Decimal("0.00065")
        assert snapshot.rate("usdt", "ngn") == Decimal("1538.46")

    def test_missing_rate(self):
        snapshot = RateSnapshot.from_mapping({"NGN/USDT": "0.00065"})
        with pytest.raises(InvalidRateError) as exc:
            snapshot.rate("USDT", "NGN")
        assert exc.value.details["base"] == "USDT"

    @pytest.mark.parametrize("rate", ["0", "-1.5"])
    def test_non_positive_rate(self, rate):
        snapshot = RateSnapshot.from_mapping({"NGN/USDT": rate})
        with pytest.raises(InvalidRateError):
            snapshot.rate("NGN", "USDT")

    def test_rates_are_read_only(self):
        snapshot = RateSnapshot.from_mapping({"NGN/USDT": "0.00065"})
        with pytest.raises(TypeError):
            snapshot.rates[("NGN", "USDT")] = Decimal("1")

    def test_to_dict(self):
        snapshot = RateSnapshot.from_mapping({"NGN/USDT": "0.00065"}, source="feed", version=3)
        data = snapshot.to_dict()
        assert data["version"] == 3
        assert data["rates"] == {"NGN/USDT": "0.00065"}


class TestConversion:
    """Conversion functions are pure and never round."""

    @pytest.fixture
    def snapshot(self):
        return RateSnapshot.from_mapping({"NGN/USDT": "0.00065", "USDT/NGN": "1538.46"})

    def test_to_settlement_asset(self, snapshot):
        assert to_settlement_asset(Decimal("100000"), "NGN", "USDT", snapshot) == Decimal("65.00000")

    def test_to_fiat(self, snapshot):
        assert to_fiat(Decimal("1"), "USDT", "NGN", snapshot) == Decimal("1538.46")

    def test_no_rounding(self, snapshot):
        result = to_settlement_asset(Decimal("1.23"), "NGN", "USDT", snapshot)
        assert result == Decimal("0.0007995")

    def test_same_currency_is_identity(self, snapshot):
        amount = Decimal("12.345")
        assert convert(amount, "NGN", "ngn", snapshot) is amount

    def test_missing_pair_never_defaults(self, snapshot):
        with pytest.raises(InvalidRateError):
            convert(Decimal("10"), "KES", "USDT", snapshot)


class TestExchangeRateTable:
    """Tests for atomic snapshot replacement."""

    def test_publish_bumps_version(self):
        table = ExchangeRateTable(RateSnapshot.from_mapping({"NGN/USDT": "0.00065"}))
        first = table.current()
        second = table.update_rates({"NGN/USDT": "0.00070"})

        assert second.version == first.version + 1
        assert table.current() is second
        # Earlier readers keep their consistent snapshot
        assert first.rate("NGN", "USDT") == Decimal("0.00065")

    def test_publish_rejects_non_positive(self):
        table = ExchangeRateTable(RateSnapshot.from_mapping({"NGN/USDT": "0.00065"}))
        before = table.current()
        with pytest.raises(InvalidRateError):
            table.update_rates({"NGN/USDT": "0"})
        assert table.current() is before

    @pytest.mark.parametrize("rate", ["abc", "NaN", "Infinity", None])
    def test_feed_rejects_non_numeric_rate(self, rate):
        table = ExchangeRateTable(RateSnapshot.from_mapping({"NGN/USDT": "0.00065"}))
        before = table.current()

        with pytest.raises(InvalidRateError) as exc_info:
            table.update_rates({"NGN/USDT": rate})

        assert exc_info.value.error_code == "INVALID_RATE"
        assert exc_info.value.details == {"base": "NGN", "quote": "USDT"}
        assert table.current() is before

    def test_snapshot_rejects_non_numeric_rate(self):
        with pytest.raises(InvalidRateError):
            RateSnapshot(rates={("usdt", "ngn"): "1538.46x"})

    def test_stale_snapshot_rejected(self):
        old = RateSnapshot.from_mapping(
            {"NGN/USDT": "0.00065"},
            as_of=datetime.now(timezone.utc) - timedelta(hours=1),
        )
        table = ExchangeRateTable(old)
        with pytest.raises(StaleRateError):
            table.current(max_age_seconds=60)
        assert table.current(max_age_seconds=7200).rate("NGN", "USDT") == Decimal("0.00065")

    def test_stale_is_an_invalid_rate(self):
        assert issubclass(StaleRateError, InvalidRateError)

    def test_concurrent_publishers_get_distinct_versions(self):
        table = ExchangeRateTable()
        versions = []
        lock = threading.Lock()

        def feed(i):
            snapshot = table.update_rates({"NGN/USDT": Decimal("0.0006") + Decimal(i) / 10**6})
            with lock:
                versions.append(snapshot.version)

        threads = [threading.Thread(target=feed, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(versions) == list(range(1, 21))
        assert table.current().version == 20
