"""Data models for the position settlement engine.

This module defines the data structures shared by the revaluation loop,
the settlement operation and copy-trade replication:
- User wallets (deposit, profit, trading balances and their total)
- Leveraged positions and the symbols they reference
- Outcome-control settings read from the admin settings table
- Ledger transactions written when a position is settled

All monetary values use Decimal for precision.
All timestamps are naive UTC datetime objects.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the store keeps naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_leverage(value: Any) -> Decimal:
    """Parse a leverage label such as "5x" into its multiplier.

    Raises:
        ValueError: if the label is empty, not numeric or not positive
    """
    if value is None:
        raise ValueError("Leverage is missing")
    text = str(value).strip().lower().rstrip("x").strip()
    try:
        multiplier = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Invalid leverage: {value!r}") from None
    if not multiplier.is_finite() or multiplier <= 0:
        raise ValueError(f"Invalid leverage: {value!r}")
    return multiplier


# =============================================================================
# Enums
# =============================================================================

class TradeDirection(str, Enum):
    """Position direction."""
    BUY = "BUY"
    SELL = "SELL"


class PositionStatus(str, Enum):
    """Position lifecycle status."""
    OPEN = "open"
    PAUSED = "paused"             # Excluded from revaluation writes
    CLOSED = "closed"             # Terminal, set only by settlement


class OutcomeControl(str, Enum):
    """Administrator override attached to a symbol."""
    NONE = "none"
    FORCE_LOSS = "force_loss"
    FORCE_PROFIT = "force_profit"


class ValuationMode(str, Enum):
    """Which valuation branch produced a P&L figure."""
    FORCE_LOSS = "force_loss"
    FORCE_PROFIT = "force_profit"
    ENFORCED_LOSS = "enforced_loss"
    NATURAL = "natural"


class TransactionType(str, Enum):
    """Ledger entry type; the sign of the amount is carried here."""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"
    PROFIT = "profit"
    LOSS = "loss"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# Wallet Models
# =============================================================================

class User(BaseModel):
    """User record carrying the three wallet balances and their total.

    Opening a position moves principal out of the trading wallet into the
    position, so the total balance still counts it. Closing returns the
    settled amount to the trading wallet and moves the total by the realized
    result only.

    Attributes:
        email: Identity supplied by the authentication collaborator
        deposit_wallet: Approved deposits
        profit_wallet: Investment plan profits
        trading_wallet: Funds available for opening positions
        total_balance: Wallet total including principal locked in positions
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    email: str = Field(..., description="User email")
    id: str = Field(default_factory=lambda: str(uuid4()), description="User ID")
    full_name: str = Field(default="", description="Display name")

    deposit_wallet: Decimal = Field(default=Decimal("0"), description="Deposit balance")
    profit_wallet: Decimal = Field(default=Decimal("0"), description="Profit balance")
    trading_wallet: Decimal = Field(default=Decimal("0"), description="Trading balance")
    total_balance: Decimal = Field(default=Decimal("0"), description="Wallet total")

    @property
    def wallet_sum(self) -> Decimal:
        """Sum of the three independent balances."""
        return self.deposit_wallet + self.profit_wallet + self.trading_wallet

    def reconciles(self, locked_principal: Decimal = Decimal("0")) -> bool:
        """True if the stored total matches the balances plus locked principal."""
        return self.total_balance == self.wallet_sum + locked_principal

    def debit_trading(self, amount: Decimal) -> None:
        """Move principal out of the trading wallet into a new position."""
        self.trading_wallet -= amount

    def credit_settlement(self, final_return: Decimal, principal: Decimal) -> None:
        """Return a settled position to the trading wallet.

        Args:
            final_return: Amount credited, never negative
            principal: Investment amount that left the trading wallet at open
        """
        self.trading_wallet += final_return
        self.total_balance += final_return - principal


# =============================================================================
# Symbol Models
# =============================================================================

class Symbol(BaseModel):
    """Tradable symbol with its outcome-control fields.

    Attributes:
        symbol: Symbol code (e.g., "BTCUSD")
        current_price: Last simulated price
        admin_controlled_outcome: Forced outcome set by administrators
        loss_percentage: Cap for forced losses (%)
        profit_percentage: Cap for forced profits (%)
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    symbol: str = Field(..., description="Symbol code")
    id: str = Field(default_factory=lambda: str(uuid4()), description="Symbol ID")
    current_price: Optional[Decimal] = Field(default=None, description="Current price")
    is_active: bool = Field(default=True, description="Tradable")

    admin_controlled_outcome: OutcomeControl = Field(
        default=OutcomeControl.NONE, description="Forced outcome"
    )
    loss_percentage: Optional[Decimal] = Field(default=None, ge=0, description="Forced loss cap %")
    profit_percentage: Optional[Decimal] = Field(default=None, ge=0, description="Forced profit cap %")

    @field_validator("admin_controlled_outcome", mode="before")
    @classmethod
    def default_outcome(cls, v):
        """Treat a missing outcome as no control."""
        return OutcomeControl.NONE if v in (None, "") else v


# =============================================================================
# Position Models
# =============================================================================

class Position(BaseModel):
    """Simulated leveraged trade.

    Principal, leverage, direction and entry price are fixed at creation.
    Profit/loss fields are written by the revaluation loop while the
    position is open and by settlement once it closes.
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    # Required fields
    user_email: str = Field(..., frozen=True, description="Owner email")
    symbol_id: str = Field(..., frozen=True, description="Symbol ID")
    symbol_code: str = Field(..., description="Symbol code")
    direction: TradeDirection = Field(..., frozen=True, description="BUY or SELL")
    investment_amount: Decimal = Field(..., gt=0, frozen=True, description="Principal")
    entry_price: Decimal = Field(..., gt=0, frozen=True, description="Entry price")

    # Identification
    id: str = Field(default_factory=lambda: str(uuid4()), frozen=True, description="Position ID")

    # Leverage label as entered ("5x"); parsed at valuation time
    leverage: str = Field(default="1x", frozen=True, description="Leverage label")

    current_price: Optional[Decimal] = Field(default=None, description="Current price")

    # PnL tracking
    profit_loss_amount: Decimal = Field(default=Decimal("0"), description="Unrealized PnL")
    profit_loss_percentage: Decimal = Field(default=Decimal("0"), description="Unrealized PnL %")

    status: PositionStatus = Field(default=PositionStatus.OPEN, description="Lifecycle status")

    # Timestamps
    opened_at: datetime = Field(default_factory=utc_now, frozen=True, description="Open time")
    closed_at: Optional[datetime] = Field(default=None, description="Close time")

    # Risk management
    stop_loss_price: Optional[Decimal] = Field(default=None, description="Stop loss price")
    take_profit_price: Optional[Decimal] = Field(default=None, description="Take profit price")

    # Expert trader this position replicates, if any
    copied_from: Optional[str] = Field(default=None, description="Copied trader")

    @field_validator("direction", mode="before")
    @classmethod
    def normalize_direction(cls, v):
        return v.upper() if isinstance(v, str) else v

    @property
    def is_active(self) -> bool:
        """True while the position can still be settled."""
        return self.status in (PositionStatus.OPEN, PositionStatus.PAUSED)

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def elapsed_minutes(self, now: Optional[datetime] = None) -> int:
        """Whole minutes since the position opened (never negative)."""
        now = now or utc_now()
        return max(int((now - self.opened_at).total_seconds() // 60), 0)

    def close(self, closed_at: Optional[datetime] = None) -> None:
        """Mark the position closed."""
        self.status = PositionStatus.CLOSED
        self.closed_at = closed_at or utc_now()


# =============================================================================
# Ledger Models
# =============================================================================

class Transaction(BaseModel):
    """Append-only ledger entry."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    user_email: str = Field(..., description="Owner email")
    type: TransactionType = Field(..., description="Entry type")
    amount: Decimal = Field(..., ge=0, description="Non-negative amount")

    id: str = Field(default_factory=lambda: str(uuid4()), description="Transaction ID")
    status: TransactionStatus = Field(
        default=TransactionStatus.COMPLETED, description="Entry status"
    )
    description: str = Field(default="", description="Human readable description")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")


# =============================================================================
# Settings Models
# =============================================================================

class OutcomeSettings(BaseModel):
    """Outcome-control configuration, loaded fresh on every tick."""

    global_loss_control: bool = Field(default=True, description="Global loss control")
    enforce_user_loss_percentage: bool = Field(default=True, description="Enforce user loss")
    user_loss_percentage: Decimal = Field(default=Decimal("3"), gt=0, description="Loss cap %")

    @property
    def enforced_loss_active(self) -> bool:
        return self.global_loss_control and self.enforce_user_loss_percentage


class CopyTradeSettings(BaseModel):
    """Copy-trade feature flag and minimum amount."""

    copy_trade_enabled: bool = Field(default=True, description="Feature flag")
    min_copy_trade_amount: Decimal = Field(default=Decimal("50"), ge=0, description="Minimum amount")


# =============================================================================
# Valuation Models
# =============================================================================

class Valuation(BaseModel):
    """Result of valuing one position."""

    amount: Decimal = Field(..., description="Profit/loss amount")
    percentage: Decimal = Field(..., description="Profit/loss percentage")
    mode: ValuationMode = Field(..., description="Branch that produced the result")
    leverage: Decimal = Field(default=Decimal("1"), description="Multiplier applied")


class TickReport(BaseModel):
    """Outcome of one revaluation tick."""

    started_at: datetime = Field(default_factory=utc_now)
    valued: int = Field(default=0, ge=0, description="Positions valued")
    persisted: int = Field(default=0, ge=0, description="Updates written")
    paused: int = Field(default=0, ge=0, description="Paused positions skipped")
    errors: int = Field(default=0, ge=0, description="Positions skipped on error")
    used_cache: bool = Field(default=False, description="Store read failed, cache used")


# =============================================================================
# Validation Models
# =============================================================================

class TradeCheck(BaseModel):
    """Result of validating a user action before any store write.

    Attributes:
        passed: True if all preconditions hold
        reason: User-facing rejection message
        checks_performed: Names of the checks that ran
    """

    passed: bool = Field(..., description="Whether the action may proceed")
    reason: Optional[str] = Field(default=None, description="Rejection reason")
    checks_performed: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_rejected(self) -> bool:
        return not self.passed

    @classmethod
    def approved(cls, **kwargs) -> "TradeCheck":
        return cls(passed=True, **kwargs)

    @classmethod
    def rejected(cls, reason: str, **kwargs) -> "TradeCheck":
        return cls(passed=False, reason=reason, **kwargs)


# =============================================================================
# Settlement Models
# =============================================================================

class SettlementResult(BaseModel):
    """Everything written by one settlement."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    position: Position
    user: User
    transaction: Transaction
    total_return: Decimal = Field(..., description="Principal plus PnL, may be negative")
    final_return: Decimal = Field(..., ge=0, description="Amount credited")


# =============================================================================
# Copy-Trade Models
# =============================================================================

class TemplateTrade(BaseModel):
    """One trade shown on an expert trader's card."""

    symbol: str = Field(..., description="Symbol traded by the expert")
    action: TradeDirection = Field(..., description="BUY or SELL")
    profit_loss: str = Field(default="", description="Displayed result")

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v):
        return v.upper() if isinstance(v, str) else v


class ExpertTrader(BaseModel):
    """Featured trader whose trades can be copied."""

    name: str = Field(..., description="Display name")
    id: str = Field(default_factory=lambda: str(uuid4()))
    win_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    trades: List[TemplateTrade] = Field(default_factory=list)


# =============================================================================
# Reporting Models
# =============================================================================

class LossSummary(BaseModel):
    """Aggregated trading loss for one user over a period."""

    total_loss: Decimal = Field(default=Decimal("0"))
    total_investment: Decimal = Field(default=Decimal("0"))
    average_loss_percentage: Decimal = Field(default=Decimal("0"))
    position_count: int = Field(default=0, ge=0)
