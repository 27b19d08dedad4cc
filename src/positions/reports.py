"""Trading loss reports."""
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

import pandas as pd
import structlog

from src.core.models import LossSummary
from src.storage.database import Database

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def _cents(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


async def loss_summary(
    database: Database,
    user_email: str,
    start: datetime,
    end: datetime,
) -> LossSummary:
    """Summarize a user's trading losses for positions opened in [start, end].

    Losses are the negative P&L of each position, open or closed. The
    average loss percentage is taken against all principal invested in the
    window. A store error yields an empty summary.
    """
    try:
        positions = await database.get_positions(
            user_email=user_email, opened_from=start, opened_to=end
        )
    except Exception as e:
        logger.error("reports.loss_summary_failed", user_email=user_email, error=str(e))
        return LossSummary()

    if not positions:
        return LossSummary()

    df = pd.DataFrame([
        {
            "investment": float(p.investment_amount),
            "pnl": float(p.profit_loss_amount),
        }
        for p in positions
    ])
    df["loss"] = (-df["pnl"]).clip(lower=0)

    total_loss = df["loss"].sum()
    total_investment = df["investment"].sum()
    losing = int((df["loss"] > 0).sum())

    average = 0.0
    if losing and total_investment > 0:
        average = total_loss / total_investment * 100

    summary = LossSummary(
        total_loss=_cents(total_loss),
        total_investment=_cents(total_investment),
        average_loss_percentage=_cents(average),
        position_count=losing,
    )

    logger.debug(
        "reports.loss_summary",
        user_email=user_email,
        positions=len(df),
        losing=losing,
        total_loss=str(summary.total_loss),
    )
    return summary
