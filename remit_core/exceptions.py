"""Exception hierarchy for the transfer fee and settlement core.

All errors raised by ``remit_core`` inherit from RemitException, which gives
every error:
- error_code: Machine-readable error code (e.g., "INVALID_AMOUNT")
- http_status: Status code a surrounding API layer should map it to
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to API response format

Settlement outcomes such as "already completed" or "in flight" are results,
not exceptions; see ``remit_core.models``.

Usage:
    from remit_core.exceptions import InvalidAmountError, UnknownNetworkError

    try:
        breakdown = service.quote(amount, "NGN", "tron")
    except (InvalidAmountError, UnknownNetworkError) as e:
        return e.to_dict(), e.http_status
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional


class RemitException(Exception):
    """Base exception for all remit_core errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional additional context
    """

    error_code: str = "REMIT_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Input Errors (caller-correctable, never retried by the core)
# =============================================================================

class InvalidAmountError(RemitException):
    """Transfer amount is zero, negative, or not a valid monetary value."""

    error_code = "INVALID_AMOUNT"
    http_status = 400

    def __init__(
        self,
        message: str,
        amount: Any = None,
        currency: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if amount is not None:
            details["amount"] = str(amount)
        if currency:
            details["currency"] = currency
        super().__init__(message, details=details)


class InvalidRateError(RemitException):
    """Exchange rate is missing, zero, or negative for a currency pair."""

    error_code = "INVALID_RATE"
    http_status = 422

    def __init__(
        self,
        message: str,
        base: Optional[str] = None,
        quote: Optional[str] = None,
        rate: Optional[Decimal] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if base:
            details["base"] = base
        if quote:
            details["quote"] = quote
        if rate is not None:
            details["rate"] = str(rate)
        super().__init__(message, details=details)


class StaleRateError(InvalidRateError):
    """The current rate snapshot is older than the accepted age."""

    error_code = "STALE_RATE"

    def __init__(self, age_seconds: float, max_age_seconds: float, version: int) -> None:
        super().__init__(
            f"Rate snapshot v{version} is {age_seconds:.0f}s old (max {max_age_seconds:.0f}s)",
            details={
                "age_seconds": age_seconds,
                "max_age_seconds": max_age_seconds,
                "version": version,
            },
        )


class UnknownNetworkError(RemitException):
    """No fee schedule is registered for the settlement network."""

    error_code = "UNKNOWN_NETWORK"
    http_status = 404

    def __init__(self, network_id: str, known: Optional[list[str]] = None) -> None:
        details: dict[str, Any] = {"network_id": network_id}
        if known:
            details["known_networks"] = known
        super().__init__(f"Unknown settlement network '{network_id}'", details=details)


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(RemitException):
    """Service configuration error."""

    error_code = "CONFIGURATION_ERROR"
    http_status = 500


class InvalidFeeScheduleError(ConfigurationError):
    """A fee schedule or platform policy is internally inconsistent."""

    error_code = "INVALID_FEE_SCHEDULE"

    def __init__(
        self,
        message: str,
        schedule: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if schedule:
            details["schedule"] = schedule
        super().__init__(message, details=details)


# =============================================================================
# Ledger Errors (programming errors, not business failures)
# =============================================================================

class LedgerIntegrityError(RemitException):
    """A ledger uniqueness or consistency constraint was violated."""

    error_code = "LEDGER_INTEGRITY_VIOLATION"
    http_status = 500

    def __init__(
        self,
        message: str,
        transaction_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if transaction_id:
            details["transaction_id"] = transaction_id
        super().__init__(message, details=details)


class IdempotencyConflictError(LedgerIntegrityError):
    """A transaction id was reused with a different breakdown."""

    error_code = "IDEMPOTENCY_CONFLICT"
    http_status = 409

    def __init__(self, transaction_id: str, recorded: dict[str, Any], supplied: dict[str, Any]) -> None:
        super().__init__(
            f"Transaction '{transaction_id}' was already settled with a different breakdown",
            transaction_id=transaction_id,
            details={"recorded": recorded, "supplied": supplied},
        )


class SettlementStateError(LedgerIntegrityError):
    """A ledger entry was asked to make an illegal status transition."""

    error_code = "SETTLEMENT_STATE_ERROR"

    def __init__(self, transaction_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Ledger entry '{transaction_id}' cannot move from {current} to {target}",
            transaction_id=transaction_id,
            details={"current": current, "target": target},
        )


__all__ = [
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
