"""Exchange rate snapshots and fiat/settlement-asset conversion.

Rates are held as immutable ``RateSnapshot`` values behind an
``ExchangeRateTable``. Quote requests borrow the current snapshot once and
use it for every conversion in that request; a rate feed publishes a whole
new snapshot, which replaces the reference in a single assignment. Readers
never take a lock and never observe a half-updated table.

Conversion functions are pure. They never round (callers round final
outputs) and never fall back to a default rate.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from .exceptions import InvalidAmountError, InvalidRateError, StaleRateError
from .money import to_decimal

logger = logging.getLogger(__name__)

CurrencyPair = Tuple[str, str]


def parse_rate(base: str, quote: str, value: object) -> Decimal:
    """
    Parse one rate from a feed.

    Raises:
        InvalidRateError: If the value is not a finite number
    """
    try:
        return to_decimal(value)
    except InvalidAmountError as e:
        raise InvalidRateError(
            f"Exchange rate for {base}/{quote} is not a finite number: {value!r}",
            base=base,
            quote=quote,
        ) from e


def parse_pair(key: str) -> CurrencyPair:
    """Parse "NGN/USDT" (or "NGN_TO_USDT") into ("NGN", "USDT")."""
    if "/" in key:
        base, _, quote = key.partition("/")
    elif "_TO_" in key.upper():
        upper = key.upper()
        idx = upper.index("_TO_")
        base, quote = key[:idx], key[idx + 4:]
    else:
        raise ValueError(f"Malformed currency pair: {key!r}")
    base, quote = base.strip().upper(), quote.strip().upper()
    if not base or not quote or base == quote:
        raise ValueError(f"Malformed currency pair: {key!r}")
    return base, quote


@dataclass(frozen=True)
class RateSnapshot:
    """
    Immutable set of directional exchange rates.

    ``rates[("NGN", "USDT")]`` is the number of USDT one NGN buys.
    The two directions of a pair are independent quotes and are not
    assumed to be reciprocals.
    """

    rates: Mapping[CurrencyPair, Decimal] = field(default_factory=dict)
    source: str = "static"
    version: int = 0
    as_of: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        frozen = {
            (base.upper(), quote.upper()): parse_rate(base.upper(), quote.upper(), rate)
            for (base, quote), rate in dict(self.rates).items()
        }
        object.__setattr__(self, "rates", MappingProxyType(frozen))

    @classmethod
    def from_mapping(
        cls,
        rates: Mapping[str, object],
        source: str = "static",
        version: int = 0,
        as_of: Optional[datetime] = None,
    ) -> "RateSnapshot":
        """Build a snapshot from "BASE/QUOTE" keyed rates."""
        parsed = {}
        for key, value in rates.items():
            base, quote = parse_pair(key)
            parsed[(base, quote)] = parse_rate(base, quote, value)
        return cls(
            rates=parsed,
            source=source,
            version=version,
            as_of=as_of or datetime.now(timezone.utc),
        )

    def rate(self, base: str, quote: str) -> Decimal:
        """
        Get the directional rate for base -> quote.

        Raises:
            InvalidRateError: If the rate is missing, zero, or negative
        """
        base, quote = base.upper(), quote.upper()
        rate = self.rates.get((base, quote))
        if rate is None:
            raise InvalidRateError(
                f"No exchange rate for {base}/{quote}", base=base, quote=quote
            )
        if rate <= 0:
            raise InvalidRateError(
                f"Exchange rate for {base}/{quote} must be positive, got {rate}",
                base=base,
                quote=quote,
                rate=rate,
            )
        return rate

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.as_of).total_seconds()

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "source": self.source,
            "as_of": self.as_of.isoformat(),
            "rates": {f"{b}/{q}": str(r) for (b, q), r in sorted(self.rates.items())},
        }


def convert(amount: Decimal, from_currency: str, to_currency: str, snapshot: RateSnapshot) -> Decimal:
    """Convert between two currencies using the snapshot's direct rate."""
    if from_currency.upper() == to_currency.upper():
        return amount
    return amount * snapshot.rate(from_currency, to_currency)


def to_settlement_asset(
    fiat_amount: Decimal,
    fiat_currency: str,
    asset_currency: str,
    snapshot: RateSnapshot,
) -> Decimal:
    """Convert a fiat amount into the settlement asset (e.g. NGN -> USDT)."""
    return convert(fiat_amount, fiat_currency, asset_currency, snapshot)


def to_fiat(
    asset_amount: Decimal,
    asset_currency: str,
    fiat_currency: str,
    snapshot: RateSnapshot,
) -> Decimal:
    """Convert a settlement asset amount back into fiat (e.g. USDT -> NGN)."""
    return convert(asset_amount, asset_currency, fiat_currency, snapshot)


class ExchangeRateTable:
    """
    Process-wide holder of the current rate snapshot.

    ``current()`` is lock-free: it reads one reference. ``publish()`` validates
    the incoming snapshot, stamps the next version and swaps the reference
    under a publish lock so concurrent feeds cannot interleave versions.
    """

    def __init__(self, initial: Optional[RateSnapshot] = None) -> None:
        self._publish_lock = threading.Lock()
        self._snapshot = RateSnapshot()
        if initial is not None:
            self.publish(initial)

    def current(self, max_age_seconds: Optional[float] = None) -> RateSnapshot:
        """
        Return the current snapshot.

        Args:
            max_age_seconds: Reject the snapshot if it is older than this

        Raises:
            StaleRateError: If max_age_seconds is given and exceeded
        """
        snapshot = self._snapshot
        if max_age_seconds is not None:
            age = snapshot.age_seconds()
            if age > max_age_seconds:
                raise StaleRateError(age, max_age_seconds, snapshot.version)
        return snapshot

    def publish(self, snapshot: RateSnapshot) -> RateSnapshot:
        """
        Atomically replace the current snapshot.

        Raises:
            InvalidRateError: If any rate in the snapshot is zero or negative
        """
        for (base, quote), rate in snapshot.rates.items():
            if rate <= 0:
                raise InvalidRateError(
                    f"Refusing to publish non-positive rate for {base}/{quote}",
                    base=base,
                    quote=quote,
                    rate=rate,
                )

        with self._publish_lock:
            version = max(snapshot.version, self._snapshot.version + 1)
            published = RateSnapshot(
                rates=dict(snapshot.rates),
                source=snapshot.source,
                version=version,
                as_of=snapshot.as_of,
            )
            self._snapshot = published

        logger.info(
            "Published exchange rate snapshot v%d from %s (%d pairs)",
            published.version,
            published.source,
            len(published.rates),
        )
        return published

    def update_rates(self, rates: Mapping[str, object], source: str = "feed") -> RateSnapshot:
        """Publish a new snapshot built from "BASE/QUOTE" keyed rates."""
        return self.publish(RateSnapshot.from_mapping(rates, source=source))
