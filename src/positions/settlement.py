"""Settlement: closes a position and credits its owner."""
from datetime import datetime
from decimal import Decimal
from typing import Callable, Tuple

import structlog

from src.core.exceptions import (
    PositionOwnershipError, PositionStateError, PreconditionError, SettlementError
)
from src.core.models import (
    Position, SettlementResult, Transaction, TransactionStatus, TransactionType,
    User, utc_now
)
from src.storage.database import Database

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


def settlement_returns(position: Position) -> Tuple[Decimal, Decimal]:
    """Return (total_return, final_return) for closing a position.

    total_return may be negative when the loss exceeds the principal;
    final_return, the amount actually credited, never is.
    """
    total_return = position.investment_amount + position.profit_loss_amount
    return total_return, max(ZERO, total_return)


def settlement_entry(position: Position, created_at: datetime) -> Transaction:
    """Ledger entry recording the realized result of a closed position."""
    pnl = position.profit_loss_amount
    is_profit = pnl >= 0
    return Transaction(
        user_email=position.user_email,
        type=TransactionType.PROFIT if is_profit else TransactionType.LOSS,
        amount=abs(pnl),
        status=TransactionStatus.COMPLETED,
        description=(
            f"{'Profit' if is_profit else 'Loss'} from closing "
            f"{position.symbol_code} trade ({position.leverage} leverage)"
        ),
        created_at=created_at,
    )


class SettlementService:
    """
    Closes positions.

    The position update, the wallet credit and the ledger entry are written
    in one database transaction. If any of them fails, none is kept.
    """

    def __init__(self, database: Database, clock: Callable[[], datetime] = utc_now):
        self.database = database
        self.clock = clock

    def _settle(self, user_email: str):
        now = self.clock()

        def settle(position: Position, user: User) -> Tuple[Position, User, Transaction]:
            if position.user_email != user_email:
                raise PositionOwnershipError("You can only close your own positions.")
            if not position.is_active:
                raise PositionStateError("Position is already closed.")

            _, final_return = settlement_returns(position)

            closed = position.model_copy()
            closed.close(now)

            credited = user.model_copy()
            credited.credit_settlement(final_return, position.investment_amount)

            return closed, credited, settlement_entry(closed, now)

        return settle

    async def close_position(self, position_id: str, user_email: str) -> SettlementResult:
        """Close an open or paused position owned by user_email.

        Raises:
            PreconditionError: position missing, not owned or already closed
            SettlementError: the store rejected the unit of work
        """
        try:
            position, user, entry = await self.database.close_position_atomically(
                position_id, self._settle(user_email)
            )
        except PreconditionError as e:
            logger.info(
                "settlement.rejected",
                position_id=position_id,
                user_email=user_email,
                reason=str(e),
            )
            raise
        except Exception as e:
            logger.error(
                "settlement.failed",
                position_id=position_id,
                user_email=user_email,
                error=str(e),
            )
            raise SettlementError("Failed to close position.") from e

        total_return, final_return = settlement_returns(position)

        logger.info(
            "settlement.completed",
            position_id=position.id,
            user_email=user.email,
            symbol=position.symbol_code,
            profit_loss=str(position.profit_loss_amount),
            total_return=str(total_return),
            final_return=str(final_return),
            trading_wallet=str(user.trading_wallet),
        )

        return SettlementResult(
            position=position,
            user=user,
            transaction=entry,
            total_return=total_return,
            final_return=final_return,
        )
