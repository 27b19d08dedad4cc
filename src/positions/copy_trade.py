"""Copy-trade replication of expert trader templates."""
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

import structlog

from src.core.config import CopyTradeConfig, engine_config
from src.core.models import (
    ExpertTrader, Position, Symbol, TemplateTrade, TradeCheck, utc_now
)
from src.positions.settings import SettingsReader
from src.positions.trading import check_funds, open_with_debit, protective_prices, raise_if_rejected
from src.positions.valuation import RandomSource, default_random_source
from src.storage.database import Database

logger = structlog.get_logger(__name__)


def pick_symbol(symbols: List[Symbol], rng: RandomSource) -> Symbol:
    """Uniformly pick one symbol."""
    index = int(rng.uniform(0, len(symbols)))
    return symbols[min(index, len(symbols) - 1)]


class CopyTradeService:
    """
    Replicates a trade from an expert trader's card into a new position.

    The template only supplies the direction. The symbol is drawn at random
    from the active symbols and the leverage is fixed by configuration.
    """

    def __init__(
        self,
        database: Database,
        settings_reader: SettingsReader,
        rng: Optional[RandomSource] = None,
        config: Optional[CopyTradeConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.database = database
        self.settings_reader = settings_reader
        self.rng = rng or default_random_source()
        self.config = config or engine_config.copy_trade
        self.clock = clock

    async def check_copy(self, amount: Decimal, user_email: str) -> TradeCheck:
        """Validate a copy request without writing anything."""
        settings = await self.settings_reader.load_copy_trade_settings()
        checks = ["enabled"]
        if not settings.copy_trade_enabled:
            return TradeCheck.rejected(
                "Copy trading is currently disabled.", checks_performed=checks
            )

        user = await self.database.get_user_by_email(user_email)
        rejection = check_funds(user, amount, settings.min_copy_trade_amount, checks)
        if rejection:
            return rejection

        checks.append("symbol")
        symbols = await self.database.get_symbols(active_only=True)
        if not symbols:
            return TradeCheck.rejected("No symbols available for trading.", checks_performed=checks)

        return TradeCheck.approved(checks_performed=checks, metadata={"symbols": symbols})

    async def copy_trade(
        self,
        trader: ExpertTrader,
        selected_trade: TemplateTrade,
        amount: Decimal,
        user_email: str,
    ) -> Position:
        """Open a position mirroring selected_trade for user_email.

        Raises:
            PreconditionError: disabled, below minimum, insufficient balance
                or no active symbol; nothing is written
            SettlementError: the store rejected the unit of work
        """
        amount = Decimal(str(amount))
        check = await self.check_copy(amount, user_email)
        if check.is_rejected:
            logger.info(
                "copy_trade.rejected",
                user_email=user_email,
                trader=trader.name,
                reason=check.reason,
            )
        raise_if_rejected(check)

        symbol = pick_symbol(check.metadata["symbols"], self.rng)
        entry_price = symbol.current_price
        if not entry_price or entry_price <= 0:
            entry_price = Decimal(str(self.config.fallback_entry_price))

        stop_loss, take_profit = protective_prices(
            entry_price, self.config.stop_loss_pct, self.config.take_profit_pct
        )

        position = Position(
            user_email=user_email,
            symbol_id=symbol.id,
            symbol_code=symbol.symbol,
            direction=selected_trade.action,
            investment_amount=amount,
            leverage=self.config.leverage,
            entry_price=entry_price,
            current_price=entry_price,
            stop_loss_price=stop_loss,
            take_profit_price=take_profit,
            copied_from=trader.name,
            opened_at=self.clock(),
        )

        logger.debug(
            "copy_trade.replicating",
            trader=trader.name,
            template_symbol=selected_trade.symbol,
            symbol=symbol.symbol,
        )
        return await open_with_debit(self.database, position)
