"""Canonical configuration surface for the fee and settlement core."""
from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .rates import parse_pair


class NetworkFeeConfig(BaseModel):
    """Fee policy of one settlement network (crypto processor)."""
    name: str
    fee_percentage: Decimal  # percent, 0.5 == 0.5%
    minimum_fee: Decimal
    maximum_fee: Decimal
    settlement_currency: str = "USDT"
    description: str = ""

    @field_validator("settlement_currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.strip().upper()


class PlatformChargeConfig(BaseModel):
    """Platform operator charge policy."""
    charge_percentage: Decimal = Decimal("0.1")  # percent, 0.1 == 0.1%
    minimum_chargeable_amount: Decimal = Decimal("1000")
    maximum_charge: Decimal = Decimal("2000")
    currency: str = "NGN"

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.strip().upper()


def _default_networks() -> Dict[str, NetworkFeeConfig]:
    return {
        "tron": NetworkFeeConfig(
            name="Tron USDT",
            fee_percentage=Decimal("0.5"),
            minimum_fee=Decimal("1"),
            maximum_fee=Decimal("50"),
            description="Fast and low-cost transfers",
        ),
        "polygon": NetworkFeeConfig(
            name="Polygon USDT",
            fee_percentage=Decimal("0.3"),
            minimum_fee=Decimal("0.5"),
            maximum_fee=Decimal("30"),
            description="Ultra-low fees, instant transfers",
        ),
        "ethereum": NetworkFeeConfig(
            name="Ethereum USDT",
            fee_percentage=Decimal("1.0"),
            minimum_fee=Decimal("5"),
            maximum_fee=Decimal("100"),
            description="Most secure, higher fees",
        ),
    }


class RemitSettings(BaseSettings):
    """Main settings for quoting and settlement."""

    model_config = SettingsConfigDict(
        env_prefix="REMIT_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    # Environment
    environment: Literal["dev", "sandbox", "prod"] = "dev"

    # Database - SQLite (aiosqlite) for development, PostgreSQL (asyncpg) in production
    database_url: str = "sqlite+aiosqlite:///./data/remit_ledger.db"
    sql_echo: bool = False

    # Operator account credited with platform charges
    operator_account_id: str = "platform-operator-001"

    # Fee schedules
    networks: Dict[str, NetworkFeeConfig] = Field(default_factory=_default_networks)
    platform_charge: PlatformChargeConfig = Field(default_factory=PlatformChargeConfig)

    # Initial exchange rates, keyed "BASE/QUOTE"; a rate feed replaces them at runtime
    exchange_rates: Dict[str, Decimal] = Field(default_factory=lambda: {
        "NGN/USDT": Decimal("0.00065"),
        "USDT/NGN": Decimal("1538.46"),
    })
    # Reject quotes against a snapshot older than this (None disables the check)
    rate_max_age_seconds: Optional[float] = None

    # Settlement
    inflight_wait_seconds: float = 0.0
    stale_pending_seconds: float = 300.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    @field_validator("networks", mode="before")
    @classmethod
    def lower_network_ids(cls, v):
        """Network ids are matched case-insensitively."""
        if isinstance(v, dict):
            return {str(k).strip().lower(): cfg for k, cfg in v.items()}
        return v

    @field_validator("exchange_rates")
    @classmethod
    def validate_rate_keys(cls, v: Dict[str, Decimal]) -> Dict[str, Decimal]:
        normalised = {}
        for key, rate in v.items():
            base, quote = parse_pair(key)
            normalised[f"{base}/{quote}"] = rate
        return normalised

    @field_validator("operator_account_id")
    @classmethod
    def require_operator(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("operator_account_id must not be empty")
        return v.strip()

    @field_validator("database_url", mode="before")
    @classmethod
    def normalise_database_url(cls, v: str) -> str:
        """Map plain postgres URLs onto the async driver."""
        if isinstance(v, str):
            if v.startswith("postgres://"):
                v = v.replace("postgres://", "postgresql+asyncpg://", 1)
            elif v.startswith("postgresql://"):
                v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v


@lru_cache
def load_settings(env_file: str | None = None) -> RemitSettings:
    """Load RemitSettings once per process to keep services consistent."""
    env_path = Path(env_file) if env_file else None
    return RemitSettings(_env_file=env_path)
