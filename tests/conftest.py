"""Pytest fixtures and utilities for the position engine test suite."""
import pytest
import pytest_asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from itertools import cycle
from typing import Iterable

from src.core.config import CopyTradeConfig, RevaluationConfig, TradingConfig
from src.core.models import (
    ExpertTrader, OutcomeControl, OutcomeSettings, Position, PositionStatus,
    Symbol, TemplateTrade, TradeDirection, User
)
from src.positions.settings import SettingsReader
from src.storage.database import Database


NOW = datetime(2026, 3, 2, 12, 0, 0)
USER_EMAIL = "trader@example.com"


# =============================================================================
# Helpers
# =============================================================================

class FixedRandom:
    """Random source returning a fixed sequence of draws, repeated."""

    def __init__(self, values: Iterable[float] = (0.0,)):
        self._values = cycle(list(values))
        self.calls = []

    def uniform(self, low: float, high: float) -> float:
        self.calls.append((low, high))
        return next(self._values)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float):
        self.now = self.now + timedelta(minutes=minutes)


def make_position(
    symbol: Symbol,
    user_email: str = USER_EMAIL,
    investment: str = "1000",
    leverage: str = "5x",
    direction: TradeDirection = TradeDirection.BUY,
    opened_minutes_ago: int = 120,
    status: PositionStatus = PositionStatus.OPEN,
    profit_loss_amount: str = "0",
) -> Position:
    """Helper to create a position opened some minutes before NOW."""
    return Position(
        user_email=user_email,
        symbol_id=symbol.id,
        symbol_code=symbol.symbol,
        direction=direction,
        investment_amount=Decimal(investment),
        leverage=leverage,
        entry_price=symbol.current_price or Decimal("100"),
        current_price=symbol.current_price,
        status=status,
        profit_loss_amount=Decimal(profit_loss_amount),
        opened_at=NOW - timedelta(minutes=opened_minutes_ago),
    )


# =============================================================================
# Configuration Fixtures
# =============================================================================

@pytest.fixture
def revaluation_config():
    """Revaluation config with the production rates."""
    return RevaluationConfig(
        interval_seconds=0.01,
        forced_rate_per_minute=0.05,
        enforced_loss_rate_per_minute=0.02,
        default_force_loss_pct=3.0,
        default_force_profit_pct=5.0,
        natural_move_range=0.005,
    )


@pytest.fixture
def trading_config():
    return TradingConfig(default_min_trade_amount=10.0, stop_loss_pct=5.0, take_profit_pct=10.0)


@pytest.fixture
def copy_trade_config():
    return CopyTradeConfig(leverage="5x", default_enabled=True, default_min_amount=50.0)


# =============================================================================
# Model Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def fixed_random():
    return FixedRandom()


@pytest.fixture
def random_factory():
    """Build a FixedRandom from a sequence of draws."""
    return FixedRandom


@pytest.fixture
def position_factory():
    return make_position


@pytest.fixture
def sample_user():
    """User with 1000 in the trading wallet and nothing locked."""
    return User(
        email=USER_EMAIL,
        full_name="Test Trader",
        deposit_wallet=Decimal("0"),
        profit_wallet=Decimal("0"),
        trading_wallet=Decimal("1000"),
        total_balance=Decimal("1000"),
    )


@pytest.fixture
def force_loss_symbol():
    return Symbol(
        symbol="BTCUSD",
        current_price=Decimal("45000"),
        admin_controlled_outcome=OutcomeControl.FORCE_LOSS,
        loss_percentage=Decimal("3"),
    )


@pytest.fixture
def force_profit_symbol():
    return Symbol(
        symbol="XAUUSD",
        current_price=Decimal("2000"),
        admin_controlled_outcome=OutcomeControl.FORCE_PROFIT,
        profit_percentage=Decimal("5"),
    )


@pytest.fixture
def natural_symbol():
    return Symbol(symbol="ETHUSD", current_price=Decimal("2500"))


@pytest.fixture
def natural_settings():
    """Settings with global loss control switched off."""
    return OutcomeSettings(global_loss_control=False, enforce_user_loss_percentage=False)


@pytest.fixture
def expert_trader():
    return ExpertTrader(
        name="Alex Morgan",
        win_rate=Decimal("87"),
        trades=[
            TemplateTrade(symbol="BTCUSD", action="buy", profit_loss="+12.5%"),
            TemplateTrade(symbol="EURUSD", action="SELL", profit_loss="+3.1%"),
        ],
    )


# =============================================================================
# Component Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def test_database():
    """Create an in-memory test database."""
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.initialize()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def file_database(tmp_path, sample_user, force_loss_symbol):
    """File-backed database, so concurrent sessions get their own connections."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'positions.db'}")
    await db.initialize()
    await db.save_user(sample_user)
    await db.save_symbol(force_loss_symbol)
    yield db
    await db.close()


@pytest_asyncio.fixture
async def seeded_database(test_database, sample_user, force_loss_symbol, natural_symbol):
    """Database holding the sample user and two active symbols."""
    await test_database.save_user(sample_user)
    await test_database.save_symbol(force_loss_symbol)
    await test_database.save_symbol(natural_symbol)
    return test_database


@pytest.fixture
def settings_reader(test_database, trading_config, copy_trade_config):
    return SettingsReader(
        test_database, trading_config=trading_config, copy_trade_config=copy_trade_config
    )


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


def pytest_collection_modifyitems(config, items):
    """Add the unit marker to tests that have no other."""
    for item in items:
        if not any(marker.name in ["unit", "integration"] for marker in item.own_markers):
            item.add_marker(pytest.mark.unit)
