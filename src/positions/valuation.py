"""Position valuation: maps a position snapshot to its unrealized P&L.

Branch priority, first match wins:
1. Symbol forced loss   - loss grows linearly with elapsed time up to the symbol cap
2. Symbol forced profit - profit grows the same way up to the symbol cap
3. Global enforced loss - slower loss accrual up to the admin loss percentage
4. Natural simulation   - small uniform random move of the underlying

Forced and enforced figures are scaled by leverage. The natural move is
scaled by leverage and inverted for SELL positions.
"""
from decimal import Decimal
from typing import Optional, Protocol

import numpy as np
import structlog

from src.core.config import RevaluationConfig, engine_config
from src.core.models import (
    OutcomeControl, OutcomeSettings, Position, Symbol, TradeDirection,
    Valuation, ValuationMode, parse_leverage
)

logger = structlog.get_logger(__name__)

HUNDRED = Decimal("100")


class RandomSource(Protocol):
    """Anything that can draw a uniform float; numpy Generators qualify."""

    def uniform(self, low: float, high: float) -> float:
        ...


def default_random_source() -> RandomSource:
    """Random source used in production."""
    return np.random.default_rng()


def leverage_multiplier(position: Position) -> Decimal:
    """Parse a position's leverage, falling back to 1x on bad input."""
    try:
        return parse_leverage(position.leverage)
    except ValueError:
        logger.warning(
            "valuation.invalid_leverage",
            position_id=position.id,
            leverage=position.leverage,
            fallback="1x",
        )
        return Decimal("1")


def _accrued_pct(elapsed_minutes: Decimal, rate: Decimal, cap: Decimal) -> Decimal:
    return min(cap, elapsed_minutes * rate)


def valuate(
    position: Position,
    symbol: Optional[Symbol],
    elapsed_minutes: float,
    settings: OutcomeSettings,
    rng: Optional[RandomSource] = None,
    config: Optional[RevaluationConfig] = None,
) -> Valuation:
    """Compute the profit/loss of a position.

    Args:
        position: Position snapshot
        symbol: Symbol the position trades, carrying outcome-control fields
        elapsed_minutes: Minutes since the position opened
        settings: Outcome-control settings loaded for this tick
        rng: Random source for the natural branch
        config: Accrual rates and default caps

    Returns:
        Valuation with amount, percentage and the branch used
    """
    config = config or engine_config.revaluation
    leverage = leverage_multiplier(position)
    principal = position.investment_amount
    elapsed = max(Decimal(str(elapsed_minutes)), Decimal("0"))

    outcome = symbol.admin_controlled_outcome if symbol else OutcomeControl.NONE

    if outcome == OutcomeControl.FORCE_LOSS:
        cap = symbol.loss_percentage
        if not cap:
            cap = Decimal(str(config.default_force_loss_pct))
        pct = _accrued_pct(elapsed, Decimal(str(config.forced_rate_per_minute)), cap)
        return Valuation(
            amount=-(principal * pct / HUNDRED * leverage),
            percentage=-(pct * leverage),
            mode=ValuationMode.FORCE_LOSS,
            leverage=leverage,
        )

    if outcome == OutcomeControl.FORCE_PROFIT:
        cap = symbol.profit_percentage
        if not cap:
            cap = Decimal(str(config.default_force_profit_pct))
        pct = _accrued_pct(elapsed, Decimal(str(config.forced_rate_per_minute)), cap)
        return Valuation(
            amount=principal * pct / HUNDRED * leverage,
            percentage=pct * leverage,
            mode=ValuationMode.FORCE_PROFIT,
            leverage=leverage,
        )

    if settings.enforced_loss_active:
        pct = _accrued_pct(
            elapsed,
            Decimal(str(config.enforced_loss_rate_per_minute)),
            settings.user_loss_percentage,
        )
        return Valuation(
            amount=-(principal * pct / HUNDRED * leverage),
            percentage=-(pct * leverage),
            mode=ValuationMode.ENFORCED_LOSS,
            leverage=leverage,
        )

    rng = rng or default_random_source()
    half_range = config.natural_move_range / 2
    move = Decimal(str(float(rng.uniform(-half_range, half_range))))
    scaled = move * leverage
    if position.direction == TradeDirection.SELL:
        # A falling price profits a short position
        scaled = -scaled

    return Valuation(
        amount=principal * scaled,
        percentage=scaled * HUNDRED,
        mode=ValuationMode.NATURAL,
        leverage=leverage,
    )
