"""Position engine - wires the store, settings and position services together."""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Optional

import structlog

from src.core.config import PositionEngineConfig, engine_config
from src.core.models import (
    ExpertTrader, LossSummary, Position, SettlementResult, TemplateTrade,
    TickReport, utc_now
)
from src.positions.copy_trade import CopyTradeService
from src.positions.reports import loss_summary
from src.positions.revaluation import RevaluationLoop
from src.positions.settings import SettingsReader
from src.positions.settlement import SettlementService
from src.positions.trading import TradingService
from src.positions.valuation import RandomSource, default_random_source
from src.storage.database import Database

logger = structlog.get_logger(__name__)


class PositionEngine:
    """
    Entry point used by the dashboard backend.

    Responsibilities:
    - Owns the revaluation loop lifecycle
    - Routes user actions to settlement, trading and copy-trade services
    - Reports engine status

    Callers pass the authenticated user's email with every action.
    """

    def __init__(
        self,
        database: Database,
        rng: Optional[RandomSource] = None,
        config: Optional[PositionEngineConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.database = database
        self.config = config or engine_config
        self.clock = clock
        rng = rng or default_random_source()

        self.settings = SettingsReader(
            database,
            trading_config=self.config.trading,
            copy_trade_config=self.config.copy_trade,
        )
        self.revaluation = RevaluationLoop(
            database, self.settings, rng=rng, config=self.config.revaluation, clock=clock
        )
        self.settlement = SettlementService(database, clock=clock)
        self.trading = TradingService(
            database, self.settings, config=self.config.trading, clock=clock
        )
        self.copy_trading = CopyTradeService(
            database, self.settings, rng=rng, config=self.config.copy_trade, clock=clock
        )

    async def start(self):
        """Start background revaluation."""
        logger.info("engine.starting")
        await self.revaluation.start()
        logger.info("engine.started")

    async def stop(self):
        """Stop background revaluation."""
        logger.info("engine.stopping")
        await self.revaluation.stop()
        logger.info("engine.stopped")

    async def tick(self) -> TickReport:
        """Run a single revaluation pass outside the background loop."""
        return await self.revaluation.tick()

    async def close_position(self, position_id: str, user_email: str) -> SettlementResult:
        return await self.settlement.close_position(position_id, user_email)

    async def open_position(
        self,
        user_email: str,
        symbol_id: str,
        direction: str,
        amount: Decimal,
        leverage: str = "1x",
        stop_loss_pct: Optional[Decimal] = None,
        take_profit_pct: Optional[Decimal] = None,
    ) -> Position:
        return await self.trading.open_position(
            user_email, symbol_id, direction, amount, leverage,
            stop_loss_pct=stop_loss_pct, take_profit_pct=take_profit_pct,
        )

    async def toggle_pause(self, position_id: str, user_email: str) -> Position:
        return await self.trading.toggle_pause(position_id, user_email)

    async def modify_position(
        self,
        position_id: str,
        user_email: str,
        stop_loss_pct: Decimal,
        take_profit_pct: Decimal,
    ) -> Position:
        return await self.trading.modify_position(
            position_id, user_email, stop_loss_pct, take_profit_pct
        )

    async def copy_trade(
        self,
        trader: ExpertTrader,
        selected_trade: TemplateTrade,
        amount: Decimal,
        user_email: str,
    ) -> Position:
        return await self.copy_trading.copy_trade(trader, selected_trade, amount, user_email)

    async def loss_summary(self, user_email: str, days: int = 30) -> LossSummary:
        """Loss summary for positions opened in the last `days` days."""
        end = self.clock()
        return await loss_summary(self.database, user_email, end - timedelta(days=days), end)

    async def get_status(self) -> Dict:
        """Get engine status."""
        settings = await self.settings.load_outcome_settings()
        positions = await self.database.get_active_positions()
        report = self.revaluation.last_report

        return {
            "running": self.revaluation.is_running,
            "ticks": self.revaluation.tick_count,
            "interval_seconds": self.config.revaluation.interval_seconds,
            "active_positions": len(positions),
            "global_loss_control": settings.global_loss_control,
            "enforce_user_loss_percentage": settings.enforce_user_loss_percentage,
            "user_loss_percentage": str(settings.user_loss_percentage),
            "last_tick": report.model_dump(mode="json") if report else None,
        }
