"""Manual trade lifecycle: open, pause/resume and modify positions."""
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Optional, Type

import structlog

from src.core.config import TradingConfig, engine_config
from src.core.exceptions import (
    AmountBelowMinimumError, CopyTradingDisabledError, InsufficientBalanceError,
    InvalidDirectionError, InvalidLeverageError, PositionNotFoundError, PositionOwnershipError,
    PositionStateError, PreconditionError, SettlementError, SymbolUnavailableError,
    UserNotFoundError
)
from src.core.models import (
    Position, PositionStatus, Symbol, TradeCheck, TradeDirection, User,
    parse_leverage, utc_now
)
from src.positions.settings import SettingsReader
from src.storage.database import Database

logger = structlog.get_logger(__name__)

HUNDRED = Decimal("100")

# Check name -> error raised when that check rejects
CHECK_ERRORS: Dict[str, Type[PreconditionError]] = {
    "enabled": CopyTradingDisabledError,
    "user": UserNotFoundError,
    "min_amount": AmountBelowMinimumError,
    "balance": InsufficientBalanceError,
    "symbol": SymbolUnavailableError,
    "direction": InvalidDirectionError,
    "leverage": InvalidLeverageError,
}


def raise_if_rejected(check: TradeCheck):
    """Raise the PreconditionError matching a rejected check."""
    if check.passed:
        return
    failed = check.checks_performed[-1] if check.checks_performed else None
    error_cls = CHECK_ERRORS.get(failed, PreconditionError)
    raise error_cls(check.reason)


def check_funds(
    user: Optional[User],
    amount: Decimal,
    minimum: Decimal,
    checks: list,
) -> Optional[TradeCheck]:
    """Shared amount checks; returns a rejection or None."""
    checks.append("user")
    if user is None:
        return TradeCheck.rejected("User account not found.", checks_performed=checks)

    checks.append("min_amount")
    if amount < minimum:
        return TradeCheck.rejected(
            f"Minimum trade amount is ${minimum}.",
            checks_performed=checks,
            metadata={"minimum": str(minimum)},
        )

    checks.append("balance")
    if amount > user.trading_wallet:
        return TradeCheck.rejected(
            "Insufficient trading balance.",
            checks_performed=checks,
            metadata={"available": str(user.trading_wallet)},
        )

    return None


def protective_prices(
    entry_price: Decimal,
    stop_loss_pct: Decimal,
    take_profit_pct: Decimal,
):
    """Stop-loss and take-profit prices at the given distances from entry."""
    stop_loss = entry_price * (1 - Decimal(str(stop_loss_pct)) / HUNDRED)
    take_profit = entry_price * (1 + Decimal(str(take_profit_pct)) / HUNDRED)
    return stop_loss, take_profit


async def open_with_debit(database: Database, position: Position) -> Position:
    """Insert a position and debit its principal from the trading wallet.

    Both writes share one transaction. The balance is checked again against
    the freshly read wallet, so a concurrent open cannot overdraw it.
    """
    amount = position.investment_amount

    def build(user: User):
        if amount > user.trading_wallet:
            raise InsufficientBalanceError("Insufficient trading balance.")
        debited = user.model_copy()
        debited.debit_trading(amount)
        return position, debited

    try:
        opened, user = await database.open_position_atomically(position.user_email, build)
    except PreconditionError:
        raise
    except Exception as e:
        logger.error(
            "trading.open_failed",
            user_email=position.user_email,
            symbol=position.symbol_code,
            error=str(e),
        )
        raise SettlementError("Failed to open position.") from e

    logger.info(
        "trading.position_opened",
        position_id=opened.id,
        user_email=opened.user_email,
        symbol=opened.symbol_code,
        direction=opened.direction.value,
        amount=str(amount),
        leverage=opened.leverage,
        copied_from=opened.copied_from,
        trading_wallet=str(user.trading_wallet),
    )
    return opened


class TradingService:
    """Opens, pauses, resumes and modifies a user's own positions."""

    def __init__(
        self,
        database: Database,
        settings_reader: SettingsReader,
        config: Optional[TradingConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.database = database
        self.settings_reader = settings_reader
        self.config = config or engine_config.trading
        self.clock = clock

    async def check_open(
        self,
        user_email: str,
        symbol_id: str,
        direction: str,
        amount: Decimal,
        leverage: str,
    ) -> TradeCheck:
        """Validate a manual open without writing anything."""
        checks = []
        minimum = await self.settings_reader.load_min_trade_amount()
        user = await self.database.get_user_by_email(user_email)

        rejection = check_funds(user, amount, minimum, checks)
        if rejection:
            return rejection

        checks.append("symbol")
        symbol = await self.database.get_symbol(symbol_id)
        if symbol is None or not symbol.is_active:
            return TradeCheck.rejected("Symbol is not available for trading.", checks_performed=checks)

        checks.append("direction")
        side = direction.upper() if isinstance(direction, str) else None
        if side not in (TradeDirection.BUY.value, TradeDirection.SELL.value):
            return TradeCheck.rejected(f"Unsupported direction: {direction}.", checks_performed=checks)

        checks.append("leverage")
        if leverage not in self.config.allowed_leverages:
            return TradeCheck.rejected(f"Unsupported leverage: {leverage}.", checks_performed=checks)
        try:
            parse_leverage(leverage)
        except ValueError as e:
            return TradeCheck.rejected(str(e), checks_performed=checks)

        return TradeCheck.approved(
            checks_performed=checks,
            metadata={"symbol": symbol, "direction": TradeDirection(side)},
        )

    def _entry_price(self, symbol: Symbol) -> Decimal:
        if symbol.current_price and symbol.current_price > 0:
            return symbol.current_price
        return Decimal(str(self.config.fallback_entry_price))

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
        """Open a position on a symbol chosen by the user.

        Raises:
            PreconditionError: amount, balance, symbol, direction or leverage rejected
            SettlementError: the store rejected the unit of work
        """
        amount = Decimal(str(amount))
        check = await self.check_open(user_email, symbol_id, direction, amount, leverage)
        if check.is_rejected:
            logger.info("trading.open_rejected", user_email=user_email, reason=check.reason)
        raise_if_rejected(check)

        symbol: Symbol = check.metadata["symbol"]
        entry_price = self._entry_price(symbol)
        stop_loss, take_profit = protective_prices(
            entry_price,
            stop_loss_pct if stop_loss_pct is not None else self.config.stop_loss_pct,
            take_profit_pct if take_profit_pct is not None else self.config.take_profit_pct,
        )

        position = Position(
            user_email=user_email,
            symbol_id=symbol.id,
            symbol_code=symbol.symbol,
            direction=check.metadata["direction"],
            investment_amount=amount,
            leverage=leverage,
            entry_price=entry_price,
            current_price=entry_price,
            stop_loss_price=stop_loss,
            take_profit_price=take_profit,
            opened_at=self.clock(),
        )
        return await open_with_debit(self.database, position)

    async def _owned_position(self, position_id: str, user_email: str) -> Position:
        position = await self.database.get_position(position_id)
        if position is None:
            raise PositionNotFoundError("Position not found.")
        if position.user_email != user_email:
            raise PositionOwnershipError("You can only manage your own positions.")
        return position

    async def toggle_pause(self, position_id: str, user_email: str) -> Position:
        """Pause an open position or resume a paused one."""
        position = await self._owned_position(position_id, user_email)

        if position.status == PositionStatus.OPEN:
            target = PositionStatus.PAUSED
        elif position.status == PositionStatus.PAUSED:
            target = PositionStatus.OPEN
        else:
            raise PositionStateError("Closed positions cannot be paused or resumed.")

        updated = await self.database.update_position_status(
            position_id, user_email, position.status, target
        )
        if updated is None:
            # Closed or toggled by someone else in the meantime
            raise PositionStateError("Position changed, please retry.")

        logger.info(
            "trading.position_toggled",
            position_id=position_id,
            user_email=user_email,
            status=updated.status.value,
        )
        return updated

    async def modify_position(
        self,
        position_id: str,
        user_email: str,
        stop_loss_pct: Decimal,
        take_profit_pct: Decimal,
    ) -> Position:
        """Recompute stop-loss and take-profit prices from the entry price."""
        position = await self._owned_position(position_id, user_email)
        if not position.is_active:
            raise PositionStateError("Closed positions cannot be modified.")

        stop_loss, take_profit = protective_prices(
            position.entry_price, stop_loss_pct, take_profit_pct
        )
        updated = await self.database.update_position_protection(
            position_id, user_email, stop_loss, take_profit
        )
        if updated is None:
            raise PositionStateError("Closed positions cannot be modified.")

        logger.info(
            "trading.position_modified",
            position_id=position_id,
            stop_loss=str(stop_loss),
            take_profit=str(take_profit),
        )
        return updated
