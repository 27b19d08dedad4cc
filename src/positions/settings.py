"""Settings reader for outcome control, copy trading and trade minimums.

Loaders never raise. A failed read or a missing key yields the default.
"""
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

import structlog

from src.core.config import CopyTradeConfig, TradingConfig, engine_config
from src.core.models import CopyTradeSettings, OutcomeSettings
from src.storage.database import Database

logger = structlog.get_logger(__name__)

GLOBAL_LOSS_CONTROL = "global_loss_control"
ENFORCE_USER_LOSS = "enforce_user_loss_percentage"
USER_LOSS_PERCENTAGE = "user_loss_percentage"
COPY_TRADE_ENABLED = "copy_trade_enabled"
MIN_COPY_TRADE_AMOUNT = "min_copy_trade_amount"
MIN_REGULAR_TRADE_AMOUNT = "min_regular_trade_amount"

OUTCOME_KEYS = (GLOBAL_LOSS_CONTROL, ENFORCE_USER_LOSS, USER_LOSS_PERCENTAGE)
COPY_TRADE_KEYS = (COPY_TRADE_ENABLED, MIN_COPY_TRADE_AMOUNT)

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def parse_bool(raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    value = str(raw).strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    logger.warning("settings.unparseable_bool", value=raw, default=default)
    return default


def parse_positive_decimal(raw: Optional[str], default: Decimal) -> Decimal:
    """Parse a positive number; zero, negatives and garbage give the default."""
    if raw is None:
        return default
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        logger.warning("settings.unparseable_number", value=raw, default=str(default))
        return default
    if not value.is_finite() or value <= 0:
        logger.warning("settings.non_positive_number", value=raw, default=str(default))
        return default
    return value


class SettingsReader:
    """Reads admin settings rows and turns them into typed settings."""

    def __init__(
        self,
        database: Database,
        trading_config: Optional[TradingConfig] = None,
        copy_trade_config: Optional[CopyTradeConfig] = None,
    ):
        self.database = database
        self.trading_config = trading_config or engine_config.trading
        self.copy_trade_config = copy_trade_config or engine_config.copy_trade

    async def _read(self, keys) -> Optional[Dict[str, Optional[str]]]:
        try:
            return await self.database.get_settings(keys)
        except Exception as e:
            logger.warning("settings.read_failed", keys=list(keys), error=str(e))
            return None

    async def load_outcome_settings(self) -> OutcomeSettings:
        """Load outcome-control settings, defaulting any missing key."""
        rows = await self._read(OUTCOME_KEYS)
        if rows is None:
            return OutcomeSettings()

        defaults = OutcomeSettings()
        return OutcomeSettings(
            global_loss_control=parse_bool(
                rows.get(GLOBAL_LOSS_CONTROL), defaults.global_loss_control
            ),
            enforce_user_loss_percentage=parse_bool(
                rows.get(ENFORCE_USER_LOSS), defaults.enforce_user_loss_percentage
            ),
            user_loss_percentage=parse_positive_decimal(
                rows.get(USER_LOSS_PERCENTAGE), defaults.user_loss_percentage
            ),
        )

    async def load_copy_trade_settings(self) -> CopyTradeSettings:
        default_min = Decimal(str(self.copy_trade_config.default_min_amount))
        default_enabled = self.copy_trade_config.default_enabled

        rows = await self._read(COPY_TRADE_KEYS)
        if rows is None:
            return CopyTradeSettings(
                copy_trade_enabled=default_enabled, min_copy_trade_amount=default_min
            )

        return CopyTradeSettings(
            copy_trade_enabled=parse_bool(rows.get(COPY_TRADE_ENABLED), default_enabled),
            min_copy_trade_amount=parse_positive_decimal(
                rows.get(MIN_COPY_TRADE_AMOUNT), default_min
            ),
        )

    async def load_min_trade_amount(self) -> Decimal:
        """Minimum principal for a manually opened position."""
        default = Decimal(str(self.trading_config.default_min_trade_amount))
        rows = await self._read((MIN_REGULAR_TRADE_AMOUNT,))
        if rows is None:
            return default
        return parse_positive_decimal(rows.get(MIN_REGULAR_TRADE_AMOUNT), default)

    async def save_outcome_settings(self, settings: OutcomeSettings):
        """Persist outcome-control settings; picked up by the next tick."""
        await self.database.save_settings({
            GLOBAL_LOSS_CONTROL: str(settings.global_loss_control).lower(),
            ENFORCE_USER_LOSS: str(settings.enforce_user_loss_percentage).lower(),
            USER_LOSS_PERCENTAGE: str(settings.user_loss_percentage),
        })
        logger.info(
            "settings.outcome_saved",
            global_loss_control=settings.global_loss_control,
            enforce_user_loss_percentage=settings.enforce_user_loss_percentage,
            user_loss_percentage=str(settings.user_loss_percentage),
        )

    async def save_copy_trade_settings(self, settings: CopyTradeSettings):
        await self.database.save_settings({
            COPY_TRADE_ENABLED: str(settings.copy_trade_enabled).lower(),
            MIN_COPY_TRADE_AMOUNT: str(settings.min_copy_trade_amount),
        })
        logger.info(
            "settings.copy_trade_saved",
            copy_trade_enabled=settings.copy_trade_enabled,
            min_copy_trade_amount=str(settings.min_copy_trade_amount),
        )
