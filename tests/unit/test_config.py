"""Unit tests for configuration classes of the position engine."""
import pytest

from src.core.config import (
    CopyTradeConfig,
    DatabaseConfig,
    LoggingConfig,
    PositionEngineConfig,
    RevaluationConfig,
    SystemConfig,
    TradingConfig,
)


# =============================================================================
# SystemConfig Tests
# =============================================================================

class TestSystemConfig:
    """Test SystemConfig configuration."""

    def test_system_config_defaults(self):
        config = SystemConfig()

        assert config.environment == "development"
        assert config.app_name == "Position Engine"

    def test_system_config_environment_validation(self):
        assert SystemConfig(environment="production").environment == "production"

        with pytest.raises(ValueError):
            SystemConfig(environment="invalid")


# =============================================================================
# RevaluationConfig Tests
# =============================================================================

class TestRevaluationConfig:
    """Test RevaluationConfig configuration."""

    def test_revaluation_config_defaults(self):
        config = RevaluationConfig()

        assert config.interval_seconds == 15.0
        assert config.forced_rate_per_minute == 0.05
        assert config.enforced_loss_rate_per_minute == 0.02
        assert config.default_force_loss_pct == 3.0
        assert config.default_force_profit_pct == 5.0
        assert config.natural_move_range == 0.005

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            RevaluationConfig(interval_seconds=0)

    def test_rates_must_not_be_negative(self):
        with pytest.raises(ValueError):
            RevaluationConfig(forced_rate_per_minute=-0.1)

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("REVALUATION_INTERVAL_SECONDS", "30")

        assert RevaluationConfig().interval_seconds == 30.0


# =============================================================================
# TradingConfig Tests
# =============================================================================

class TestTradingConfig:
    """Test TradingConfig configuration."""

    def test_trading_config_defaults(self):
        config = TradingConfig()

        assert config.default_min_trade_amount == 10.0
        assert config.stop_loss_pct == 5.0
        assert config.take_profit_pct == 10.0
        assert config.fallback_entry_price == 45230.0
        assert "5x" in config.allowed_leverages

    def test_allowed_leverages_parsing(self):
        config = TradingConfig(allowed_leverages_str="1x, 3x ,,10x")

        assert config.allowed_leverages == ["1x", "3x", "10x"]

    def test_percentage_bounds(self):
        with pytest.raises(ValueError):
            TradingConfig(stop_loss_pct=150)


class TestCopyTradeConfig:
    """Test CopyTradeConfig configuration."""

    def test_copy_trade_config_defaults(self):
        config = CopyTradeConfig()

        assert config.leverage == "5x"
        assert config.stop_loss_pct == 5.0
        assert config.take_profit_pct == 10.0
        assert config.fallback_entry_price == 100.0
        assert config.default_enabled is True
        assert config.default_min_amount == 50.0


class TestDatabaseAndLoggingConfig:
    """Test DatabaseConfig and LoggingConfig."""

    def test_database_config_defaults(self):
        config = DatabaseConfig()

        assert config.database_url == "sqlite:///./data/positions.db"
        assert config.echo is False

    def test_logging_config_defaults(self):
        config = LoggingConfig()

        assert config.log_level == "INFO"
        assert config.log_file == "logs/position_engine.log"


# =============================================================================
# PositionEngineConfig Tests
# =============================================================================

class TestPositionEngineConfig:
    """Test the configuration container."""

    def test_default_configuration_is_valid(self):
        config = PositionEngineConfig()

        result = config.validate_configuration()

        assert result["valid"] is True
        assert result["issues"] == []
        assert config.is_production is False

    def test_copy_leverage_must_be_allowed(self):
        config = PositionEngineConfig()
        config.copy_trade = CopyTradeConfig(leverage="7x")

        result = config.validate_configuration()

        assert result["valid"] is False
        assert any("7x" in issue for issue in result["issues"])

    def test_natural_range_sanity(self):
        config = PositionEngineConfig()
        config.revaluation = RevaluationConfig(natural_move_range=0.5)

        result = config.validate_configuration()

        assert result["valid"] is False
