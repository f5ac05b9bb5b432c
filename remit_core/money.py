"""Currency precision registry and fixed-point money helpers.

Every monetary quantity in the core is a ``Decimal``. Fiat currencies carry
two fractional digits, settlement assets (stablecoins) carry six. Outputs are
rounded exactly once, ROUND_HALF_UP, at the currency's canonical precision.
Persistence uses integer minor units so that database-side increments stay
exact on every backend.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .exceptions import InvalidAmountError

# Largest value a signed 64-bit minor-unit ledger column can hold.
MAX_MINOR_UNITS = 2**63 - 1


@dataclass(frozen=True)
class CurrencyInfo:
    """Precision metadata for a supported currency or settlement asset."""

    code: str
    name: str
    decimals: int
    is_asset: bool = False

    @property
    def quantum(self) -> Decimal:
        """Smallest representable unit, e.g. Decimal("0.01")."""
        return Decimal(1).scaleb(-self.decimals)

    @property
    def max_amount(self) -> Decimal:
        """Largest amount representable in minor units, e.g. 92233720368547758.07 NGN."""
        return Decimal(MAX_MINOR_UNITS).scaleb(-self.decimals)

    def to_minor_units(self, amount: Decimal) -> int:
        """
        Convert a Decimal amount to integer minor units.

        Example: Decimal("12.34") (2 decimals) -> 1234
        """
        scaled = amount.scaleb(self.decimals)
        if scaled != scaled.to_integral_value():
            raise InvalidAmountError(
                f"{amount} has more than {self.decimals} fractional digits",
                amount=amount,
                currency=self.code,
            )
        return int(scaled)

    def from_minor_units(self, raw_amount: int) -> Decimal:
        """
        Convert integer minor units to a quantized Decimal.

        Example: 1234 (2 decimals) -> Decimal("12.34")
        """
        return Decimal(raw_amount).scaleb(-self.decimals).quantize(self.quantum)


CURRENCIES: dict[str, CurrencyInfo] = {
    "NGN": CurrencyInfo(code="NGN", name="Nigerian Naira", decimals=2),
    "USD": CurrencyInfo(code="USD", name="US Dollar", decimals=2),
    "EUR": CurrencyInfo(code="EUR", name="Euro", decimals=2),
    "GBP": CurrencyInfo(code="GBP", name="Pound Sterling", decimals=2),
    "KES": CurrencyInfo(code="KES", name="Kenyan Shilling", decimals=2),
    "GHS": CurrencyInfo(code="GHS", name="Ghanaian Cedi", decimals=2),
    "USDT": CurrencyInfo(code="USDT", name="Tether USD", decimals=6, is_asset=True),
    "USDC": CurrencyInfo(code="USDC", name="USD Coin", decimals=6, is_asset=True),
}


def currency_info(code: str) -> CurrencyInfo:
    """Look up precision metadata for a currency code (case-insensitive)."""
    info = CURRENCIES.get(code.upper()) if isinstance(code, str) else None
    if info is None:
        raise InvalidAmountError(f"Unsupported currency: {code}", currency=str(code))
    return info


def to_decimal(value: Any) -> Decimal:
    """
    Convert a numeric input to Decimal without binary float artefacts.

    Floats go through their shortest string form, so ``0.1`` becomes
    ``Decimal("0.1")``. Booleans and non-numeric types are rejected.

    Raises:
        InvalidAmountError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise InvalidAmountError(f"Cannot use {value!r} as an amount", amount=value)
    try:
        if isinstance(value, Decimal):
            d = value
        elif isinstance(value, float):
            d = Decimal(str(value))
        elif isinstance(value, (int, str)):
            d = Decimal(value)
        else:
            raise InvalidAmountError(
                f"Cannot convert {type(value).__name__} to Decimal", amount=value
            )
    except InvalidOperation as e:
        raise InvalidAmountError(f"Invalid decimal value: {value}", amount=value) from e

    if not d.is_finite():
        raise InvalidAmountError(f"Amount must be finite: {value}", amount=value)
    return d


def quantize_money(amount: Decimal, currency: str) -> Decimal:
    """Round to the currency's canonical precision using ROUND_HALF_UP."""
    return amount.quantize(currency_info(currency).quantum, rounding=ROUND_HALF_UP)


def minor_unit(currency: str) -> Decimal:
    """One minor unit of the currency, used as the conservation tolerance."""
    return currency_info(currency).quantum


def fractional_digits(amount: Decimal) -> int:
    """Number of significant fractional digits, ignoring trailing zeros."""
    exponent = amount.normalize().as_tuple().exponent
    return max(0, -exponent) if isinstance(exponent, int) else 0
