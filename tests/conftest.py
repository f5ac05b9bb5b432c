from decimal import Decimal

import pytest
import pytest_asyncio

from remit_core.calculator import FeeCalculator
from remit_core.config import RemitSettings
from remit_core.database import create_engine_for, init_db
from remit_core.ledger import InMemorySettlementStore, SettlementLedgerWriter, SqlSettlementStore
from remit_core.rates import ExchangeRateTable, RateSnapshot
from remit_core.schedules import FeeSchedule, FeeScheduleRegistry, PlatformChargePolicy

OPERATOR = "platform-operator-001"


def _network_schedules(settlement_currency="USDT"):
    return [
        FeeSchedule("tron", "Tron USDT", Decimal("0.5"), Decimal("1"), Decimal("50"), settlement_currency),
        FeeSchedule("polygon", "Polygon USDT", Decimal("0.3"), Decimal("0.5"), Decimal("30"), settlement_currency),
        FeeSchedule("ethereum", "Ethereum USDT", Decimal("1.0"), Decimal("5"), Decimal("100"), settlement_currency),
    ]


@pytest.fixture
def usdt_registry():
    """Registry where transfers, networks and the platform policy all use USDT."""
    policy = PlatformChargePolicy(
        charge_percentage=Decimal("0.1"),
        minimum_chargeable_amount=Decimal("1000"),
        maximum_charge=Decimal("2000"),
        currency="USDT",
    )
    return FeeScheduleRegistry(_network_schedules(), policy)


@pytest.fixture
def settings(tmp_path):
    return RemitSettings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'service.db'}",
    )


@pytest.fixture
def default_registry(settings):
    """Registry built from the default configuration (NGN platform policy)."""
    return FeeScheduleRegistry.from_settings(settings)


@pytest.fixture
def rate_table():
    return ExchangeRateTable(
        RateSnapshot.from_mapping({"NGN/USDT": "0.00065", "USDT/NGN": "1538.46"}, source="test")
    )


@pytest.fixture
def usdt_calculator(usdt_registry, rate_table):
    return FeeCalculator(usdt_registry, rate_table)


@pytest.fixture
def default_calculator(default_registry, rate_table):
    return FeeCalculator(default_registry, rate_table)


@pytest.fixture
def memory_store():
    return InMemorySettlementStore()


@pytest_asyncio.fixture
async def sql_engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sql_store(sql_engine):
    return SqlSettlementStore(sql_engine)


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request, tmp_path):
    """Run a test against both settlement store backends."""
    if request.param == "memory":
        yield InMemorySettlementStore()
        return
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_db(engine)
    yield SqlSettlementStore(engine)
    await engine.dispose()


@pytest.fixture
def writer(store):
    return SettlementLedgerWriter(store, poll_interval=0.01)


@pytest.fixture
def quote(usdt_calculator):
    """Shortcut for quoting USDT transfers on tron for the default operator."""

    def _quote(amount, network_id="tron", operator_account_id=OPERATOR):
        return usdt_calculator.compute_breakdown(amount, "USDT", network_id, operator_account_id)

    return _quote
