"""Periodic revaluation of open positions."""
import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog

from src.core.config import RevaluationConfig, engine_config
from src.core.models import Position, PositionStatus, Symbol, TickReport, utc_now
from src.positions.settings import SettingsReader
from src.positions.valuation import RandomSource, default_random_source, valuate
from src.storage.database import Database

logger = structlog.get_logger(__name__)


class RevaluationLoop:
    """
    Recomputes unrealized P&L of open positions on a fixed interval.

    Each tick:
    - Loads outcome-control settings fresh from the store
    - Snapshots open/paused positions and active symbols
    - Values every open position; paused ones keep their last figures
    - Persists the new figures while the position is still open
    - Replaces the in-memory position cache

    A failure on one position is logged and that position is skipped;
    a failing tick never stops the loop.
    """

    def __init__(
        self,
        database: Database,
        settings_reader: SettingsReader,
        rng: Optional[RandomSource] = None,
        config: Optional[RevaluationConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.database = database
        self.settings_reader = settings_reader
        self.rng = rng or default_random_source()
        self.config = config or engine_config.revaluation
        self.clock = clock

        # Cache of the last tick, keyed by ID
        self.positions: Dict[str, Position] = {}
        self.symbols: Dict[str, Symbol] = {}

        self.tick_count = 0
        self.last_report: Optional[TickReport] = None

        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Start ticking in the background."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("revaluation.started", interval_seconds=self.config.interval_seconds)

    async def stop(self):
        """Stop the background task and wait for it to finish."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("revaluation.stopped", ticks=self.tick_count)

    async def _run(self):
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error("revaluation.tick_failed", error=str(e))
            await asyncio.sleep(self.config.interval_seconds)

    async def _snapshot(self, report: TickReport) -> List[Position]:
        try:
            positions = await self.database.get_active_positions()
            symbols = await self.database.get_symbols(active_only=False)
        except Exception as e:
            logger.error("revaluation.snapshot_failed", error=str(e))
            report.used_cache = True
            return list(self.positions.values())

        self.symbols = {s.id: s for s in symbols}
        return positions

    async def tick(self) -> TickReport:
        """Run one revaluation pass."""
        report = TickReport(started_at=self.clock())
        settings = await self.settings_reader.load_outcome_settings()
        positions = await self._snapshot(report)
        now = self.clock()

        valued: List[Position] = []
        cache: Dict[str, Position] = {}

        for position in positions:
            cache[position.id] = position

            if position.status == PositionStatus.PAUSED:
                report.paused += 1
                continue

            symbol = self.symbols.get(position.symbol_id)
            if symbol is None:
                report.errors += 1
                logger.warning(
                    "revaluation.symbol_missing",
                    position_id=position.id,
                    symbol_id=position.symbol_id,
                )
                continue

            try:
                valuation = valuate(
                    position,
                    symbol,
                    position.elapsed_minutes(now),
                    settings,
                    rng=self.rng,
                    config=self.config,
                )
            except Exception as e:
                report.errors += 1
                logger.error("revaluation.valuation_failed", position_id=position.id, error=str(e))
                continue

            updated = position.model_copy(update={
                "profit_loss_amount": valuation.amount,
                "profit_loss_percentage": valuation.percentage,
                "current_price": symbol.current_price,
            })
            cache[position.id] = updated
            valued.append(updated)
            report.valued += 1

        for position in valued:
            try:
                written = await self.database.update_position_pnl(
                    position.id, position.profit_loss_amount, position.profit_loss_percentage
                )
            except Exception as e:
                report.errors += 1
                logger.error("revaluation.persist_failed", position_id=position.id, error=str(e))
                continue

            if written:
                report.persisted += 1
            else:
                # Paused or closed since the snapshot; the store copy wins
                cache.pop(position.id, None)
                logger.debug("revaluation.position_moved_on", position_id=position.id)

        self.positions = cache
        self.tick_count += 1
        self.last_report = report

        logger.info(
            "revaluation.tick",
            tick=self.tick_count,
            valued=report.valued,
            persisted=report.persisted,
            paused=report.paused,
            errors=report.errors,
            used_cache=report.used_cache,
        )
        return report
