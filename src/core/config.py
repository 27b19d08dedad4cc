"""Configuration management for the position settlement engine."""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# System Configuration
# =============================================================================


class SystemConfig(BaseSettings):
    """System-level configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development", validation_alias="ENVIRONMENT"
    )
    app_name: str = Field(default="Position Engine", validation_alias="APP_NAME")
    app_version: str = Field(default="1.0.0", validation_alias="APP_VERSION")


# =============================================================================
# Revaluation Configuration
# =============================================================================


class RevaluationConfig(BaseSettings):
    """Revaluation loop and outcome-control arithmetic."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Seconds between two ticks of the revaluation loop
    interval_seconds: float = Field(
        default=15.0, validation_alias="REVALUATION_INTERVAL_SECONDS"
    )

    # Gradual accrual rates (% per minute)
    forced_rate_per_minute: float = Field(
        default=0.05, validation_alias="FORCED_OUTCOME_RATE_PER_MINUTE"
    )
    enforced_loss_rate_per_minute: float = Field(
        default=0.02, validation_alias="ENFORCED_LOSS_RATE_PER_MINUTE"
    )

    # Caps used when a symbol has no magnitude configured (%)
    default_force_loss_pct: float = Field(
        default=3.0, validation_alias="DEFAULT_FORCE_LOSS_PCT"
    )
    default_force_profit_pct: float = Field(
        default=5.0, validation_alias="DEFAULT_FORCE_PROFIT_PCT"
    )

    # Natural simulation: total width of the uniform move (0.005 = +/-0.25%)
    natural_move_range: float = Field(
        default=0.005, validation_alias="NATURAL_MOVE_RANGE"
    )

    @field_validator("interval_seconds")
    @classmethod
    def validate_interval(cls, v):
        """Validate that the tick interval is positive."""
        if v <= 0:
            raise ValueError("Revaluation interval must be positive")
        return v

    @field_validator(
        "forced_rate_per_minute",
        "enforced_loss_rate_per_minute",
        "default_force_loss_pct",
        "default_force_profit_pct",
        "natural_move_range",
    )
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("Rates and percentages must not be negative")
        return v


# =============================================================================
# Trading Configuration
# =============================================================================


class TradingConfig(BaseSettings):
    """Defaults for manually opened positions."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Used when min_regular_trade_amount is missing from admin settings
    default_min_trade_amount: float = Field(
        default=10.0, validation_alias="DEFAULT_MIN_TRADE_AMOUNT"
    )

    # Stop Loss / Take Profit (% from entry)
    stop_loss_pct: float = Field(default=5.0, validation_alias="STOP_LOSS_PCT")
    take_profit_pct: float = Field(default=10.0, validation_alias="TAKE_PROFIT_PCT")

    # Entry price used when a symbol carries no price
    fallback_entry_price: float = Field(
        default=45230.0, validation_alias="FALLBACK_ENTRY_PRICE"
    )

    allowed_leverages_str: str = Field(
        default="1x,2x,5x,10x,20x,50x,100x", validation_alias="ALLOWED_LEVERAGES"
    )

    @property
    def allowed_leverages(self) -> list[str]:
        """Parse allowed leverage string into list."""
        return [s.strip() for s in self.allowed_leverages_str.split(",") if s.strip()]

    @field_validator("stop_loss_pct", "take_profit_pct")
    @classmethod
    def validate_percentages(cls, v):
        if v < 0 or v > 100:
            raise ValueError("Percentage values must be between 0 and 100")
        return v


# =============================================================================
# Copy-Trade Configuration
# =============================================================================


class CopyTradeConfig(BaseSettings):
    """Copy-trade replication parameters."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    leverage: str = Field(default="5x", validation_alias="COPY_TRADE_LEVERAGE")
    stop_loss_pct: float = Field(default=5.0, validation_alias="COPY_TRADE_STOP_LOSS_PCT")
    take_profit_pct: float = Field(
        default=10.0, validation_alias="COPY_TRADE_TAKE_PROFIT_PCT"
    )
    fallback_entry_price: float = Field(
        default=100.0, validation_alias="COPY_TRADE_FALLBACK_ENTRY_PRICE"
    )

    # Used when the admin settings rows are missing
    default_enabled: bool = Field(default=True, validation_alias="COPY_TRADE_ENABLED")
    default_min_amount: float = Field(
        default=50.0, validation_alias="COPY_TRADE_MIN_AMOUNT"
    )


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    database_url: str = Field(
        default="sqlite:///./data/positions.db", validation_alias="DATABASE_URL"
    )
    echo: bool = Field(default=False, validation_alias="DATABASE_ECHO")


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_file: str = Field(default="logs/position_engine.log", validation_alias="LOG_FILE")
    log_to_file: bool = Field(default=True, validation_alias="LOG_TO_FILE")


# =============================================================================
# Global Configuration Container
# =============================================================================


class PositionEngineConfig:
    """
    Container for all engine configurations.

    Usage:
        from src.core.config import engine_config

        interval = engine_config.revaluation.interval_seconds
        leverage = engine_config.copy_trade.leverage
    """

    def __init__(self):
        self.system = SystemConfig()
        self.revaluation = RevaluationConfig()
        self.trading = TradingConfig()
        self.copy_trade = CopyTradeConfig()
        self.database = DatabaseConfig()
        self.logging = LoggingConfig()

    @property
    def is_production(self) -> bool:
        return self.system.environment == "production"

    def validate_configuration(self) -> dict:
        """
        Validate the complete configuration and return any issues.

        Returns:
            Dictionary with 'valid' boolean and 'issues' list
        """
        issues = []

        if self.copy_trade.leverage not in self.trading.allowed_leverages:
            issues.append(
                f"Copy-trade leverage {self.copy_trade.leverage} is not an allowed leverage"
            )

        if self.copy_trade.default_min_amount <= 0:
            issues.append("Copy-trade minimum amount must be positive")

        if self.trading.default_min_trade_amount <= 0:
            issues.append("Minimum trade amount must be positive")

        if self.revaluation.natural_move_range > 0.1:
            issues.append("Natural move range above 10% per tick is unrealistic")

        return {"valid": len(issues) == 0, "issues": issues}


# =============================================================================
# Global Configuration Instances
# =============================================================================

database_config = DatabaseConfig()
logging_config = LoggingConfig()

engine_config = PositionEngineConfig()


__all__ = [
    "PositionEngineConfig",
    "engine_config",
    "database_config",
    "logging_config",
    "SystemConfig",
    "RevaluationConfig",
    "TradingConfig",
    "CopyTradeConfig",
    "DatabaseConfig",
    "LoggingConfig",
]
