"""Database storage for users, positions, symbols, ledger and admin settings."""
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import (
    Boolean, Column, DateTime, Numeric, String, func, select, update
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from src.core.config import database_config
from src.core.exceptions import (
    InsufficientBalanceError, PositionNotFoundError, PositionStateError, UserNotFoundError
)
from src.core.models import (
    OutcomeControl, Position, PositionStatus, Symbol, TradeDirection,
    Transaction, TransactionStatus, TransactionType, User, utc_now
)

Base = declarative_base()

MONEY = Numeric(36, 18)

WALLET_FIELDS = ("deposit_wallet", "profit_wallet", "trading_wallet", "total_balance")


class UserModel(Base):
    """SQLAlchemy model for users and their wallets."""
    __tablename__ = 'users'

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    full_name = Column(String, default="")
    deposit_wallet = Column(MONEY, default=0)
    profit_wallet = Column(MONEY, default=0)
    trading_wallet = Column(MONEY, default=0)
    total_balance = Column(MONEY, default=0)


class SymbolModel(Base):
    """SQLAlchemy model for trading symbols."""
    __tablename__ = 'symbols'

    id = Column(String, primary_key=True)
    symbol = Column(String, nullable=False)
    current_price = Column(MONEY, nullable=True)
    is_active = Column(Boolean, default=True)
    admin_controlled_outcome = Column(String, nullable=True)
    loss_percentage = Column(MONEY, nullable=True)
    profit_percentage = Column(MONEY, nullable=True)


class PositionModel(Base):
    """SQLAlchemy model for trading positions."""
    __tablename__ = 'positions'

    id = Column(String, primary_key=True)
    user_email = Column(String, nullable=False, index=True)
    symbol_id = Column(String, nullable=False)
    symbol_code = Column(String, nullable=False)
    direction = Column(String, nullable=False)
    investment_amount = Column(MONEY, nullable=False)
    leverage = Column(String, nullable=False, default="1x")
    entry_price = Column(MONEY, nullable=False)
    current_price = Column(MONEY, nullable=True)
    profit_loss_amount = Column(MONEY, default=0)
    profit_loss_percentage = Column(MONEY, default=0)
    status = Column(String, nullable=False, index=True)
    opened_at = Column(DateTime, default=utc_now)
    closed_at = Column(DateTime, nullable=True)
    stop_loss_price = Column(MONEY, nullable=True)
    take_profit_price = Column(MONEY, nullable=True)
    copied_from = Column(String, nullable=True)


class TransactionModel(Base):
    """SQLAlchemy model for ledger entries."""
    __tablename__ = 'transactions'

    id = Column(String, primary_key=True)
    user_email = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    amount = Column(MONEY, nullable=False)
    status = Column(String, nullable=False)
    description = Column(String, default="")
    created_at = Column(DateTime, nullable=False)


class AdminSettingModel(Base):
    """SQLAlchemy model for admin key/value settings."""
    __tablename__ = 'admin_settings'

    setting_key = Column(String, primary_key=True)
    setting_value = Column(String, nullable=True)
    updated_at = Column(DateTime, nullable=True)


SettleFn = Callable[[Position, User], Tuple[Position, User, Transaction]]
OpenFn = Callable[[User], Tuple[Position, User]]


class Database:
    """Async database interface."""

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None):
        # Convert SQLite URL to async version if needed
        db_url = database_url or database_config.database_url
        if db_url.startswith('sqlite:///') and not db_url.startswith('sqlite+aiosqlite:///'):
            db_url = db_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        engine_kwargs = {"echo": database_config.echo if echo is None else echo}
        if ":memory:" in db_url:
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs["poolclass"] = StaticPool

        self.database_url = db_url
        self.engine: AsyncEngine = create_async_engine(db_url, **engine_kwargs)
        self.session_maker = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def initialize(self):
        """Create tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """Close database connection."""
        await self.engine.dispose()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session whose writes commit together or not at all."""
        async with self.session_maker() as session:
            async with session.begin():
                yield session

    # User operations
    async def save_user(self, user: User) -> User:
        """Save or update a user and its wallet."""
        async with self.transaction() as session:
            db_user = await session.get(UserModel, user.id)
            if db_user is None:
                db_user = UserModel(id=user.id)
                session.add(db_user)
            self._apply_user(db_user, user)
        return user

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self.session_maker() as session:
            db_user = await session.get(UserModel, user_id)
            return self._user_from_model(db_user) if db_user else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self.session_maker() as session:
            result = await session.execute(select(UserModel).where(UserModel.email == email))
            db_user = result.scalar_one_or_none()
            return self._user_from_model(db_user) if db_user else None

    # Symbol operations
    async def save_symbol(self, symbol: Symbol) -> Symbol:
        """Save or update a symbol."""
        async with self.transaction() as session:
            db_symbol = await session.get(SymbolModel, symbol.id)
            if db_symbol is None:
                db_symbol = SymbolModel(id=symbol.id)
                session.add(db_symbol)
            db_symbol.symbol = symbol.symbol
            db_symbol.current_price = symbol.current_price
            db_symbol.is_active = symbol.is_active
            db_symbol.admin_controlled_outcome = symbol.admin_controlled_outcome.value
            db_symbol.loss_percentage = symbol.loss_percentage
            db_symbol.profit_percentage = symbol.profit_percentage
        return symbol

    async def get_symbol(self, symbol_id: str) -> Optional[Symbol]:
        async with self.session_maker() as session:
            db_symbol = await session.get(SymbolModel, symbol_id)
            return self._symbol_from_model(db_symbol) if db_symbol else None

    async def get_symbols(self, active_only: bool = True) -> List[Symbol]:
        """Get symbols, active ones only by default."""
        async with self.session_maker() as session:
            query = select(SymbolModel).order_by(SymbolModel.symbol)
            if active_only:
                query = query.where(SymbolModel.is_active.is_(True))
            result = await session.execute(query)
            return [self._symbol_from_model(s) for s in result.scalars().all()]

    # Position operations
    async def save_position(self, position: Position) -> Position:
        """Insert a position or overwrite its mutable fields."""
        async with self.transaction() as session:
            db_position = await session.get(PositionModel, position.id)
            if db_position is None:
                session.add(self._position_to_model(position))
            else:
                self._apply_position(db_position, position)
        return position

    async def get_position(self, position_id: str) -> Optional[Position]:
        async with self.session_maker() as session:
            db_position = await session.get(PositionModel, position_id)
            return self._position_from_model(db_position) if db_position else None

    async def get_positions(
        self,
        user_email: Optional[str] = None,
        statuses: Optional[Iterable[PositionStatus]] = None,
        opened_from: Optional[datetime] = None,
        opened_to: Optional[datetime] = None,
    ) -> List[Position]:
        """Get positions with optional filters, oldest first."""
        async with self.session_maker() as session:
            query = select(PositionModel).order_by(PositionModel.opened_at)

            if user_email:
                query = query.where(PositionModel.user_email == user_email)
            if statuses:
                query = query.where(PositionModel.status.in_([s.value for s in statuses]))
            if opened_from:
                query = query.where(PositionModel.opened_at >= opened_from)
            if opened_to:
                query = query.where(PositionModel.opened_at <= opened_to)

            result = await session.execute(query)
            return [self._position_from_model(p) for p in result.scalars().all()]

    async def get_active_positions(self) -> List[Position]:
        """Get all open and paused positions."""
        return await self.get_positions(statuses=[PositionStatus.OPEN, PositionStatus.PAUSED])

    async def get_locked_principal(self, user_email: str) -> Decimal:
        """Principal held by a user's open and paused positions."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(func.coalesce(func.sum(PositionModel.investment_amount), 0)).where(
                    PositionModel.user_email == user_email,
                    PositionModel.status.in_(
                        [PositionStatus.OPEN.value, PositionStatus.PAUSED.value]
                    ),
                )
            )
            return Decimal(str(result.scalar_one()))

    async def update_position_pnl(
        self, position_id: str, amount: Decimal, percentage: Decimal
    ) -> bool:
        """Write revaluated PnL only while the position is still open.

        Returns:
            False if the position was paused, closed or removed meanwhile
        """
        async with self.transaction() as session:
            result = await session.execute(
                update(PositionModel)
                .where(
                    PositionModel.id == position_id,
                    PositionModel.status == PositionStatus.OPEN.value,
                )
                .values(profit_loss_amount=amount, profit_loss_percentage=percentage)
            )
            return result.rowcount == 1

    async def update_position_status(
        self,
        position_id: str,
        user_email: str,
        from_status: PositionStatus,
        to_status: PositionStatus,
    ) -> Optional[Position]:
        """Move a position between open and paused if it is still in from_status."""
        async with self.transaction() as session:
            result = await session.execute(
                update(PositionModel)
                .where(
                    PositionModel.id == position_id,
                    PositionModel.user_email == user_email,
                    PositionModel.status == from_status.value,
                )
                .values(status=to_status.value)
            )
            if result.rowcount != 1:
                return None
            db_position = await session.get(PositionModel, position_id)
            return self._position_from_model(db_position)

    async def update_position_protection(
        self,
        position_id: str,
        user_email: str,
        stop_loss_price: Decimal,
        take_profit_price: Decimal,
    ) -> Optional[Position]:
        """Set stop-loss/take-profit prices on an open or paused position."""
        async with self.transaction() as session:
            result = await session.execute(
                update(PositionModel)
                .where(
                    PositionModel.id == position_id,
                    PositionModel.user_email == user_email,
                    PositionModel.status.in_(
                        [PositionStatus.OPEN.value, PositionStatus.PAUSED.value]
                    ),
                )
                .values(stop_loss_price=stop_loss_price, take_profit_price=take_profit_price)
            )
            if result.rowcount != 1:
                return None
            db_position = await session.get(PositionModel, position_id)
            return self._position_from_model(db_position)

    # Units of work
    async def open_position_atomically(self, user_email: str, build: OpenFn) -> Tuple[Position, User]:
        """Insert a new position and debit its owner in one transaction.

        The debit is applied relative to the stored wallet and only while
        the trading wallet still covers it.

        Args:
            user_email: Owner of the new position
            build: Receives the freshly read user and returns the new
                position plus the debited user; raising aborts with no writes
        """
        async with self.transaction() as session:
            before = await self._locked_user(session, user_email)
            if before is None:
                raise UserNotFoundError(f"No account found for {user_email}.")

            position, user = build(before.model_copy())

            if not await self._adjust_wallets(session, before, user):
                raise InsufficientBalanceError("Insufficient trading balance.")
            session.add(self._position_to_model(position))
            await session.flush()

            user = await self._locked_user(session, user_email, refresh=True)

        return position, user

    async def close_position_atomically(
        self, position_id: str, settle: SettleFn
    ) -> Tuple[Position, User, Transaction]:
        """Close a position, credit its owner and append a ledger entry in one transaction.

        The status change only applies while the position is open or paused,
        so a second close of the same position fails instead of settling twice.

        Args:
            position_id: Position to close
            settle: Receives the freshly read position and owner and returns
                the closed position, credited user and ledger entry;
                raising aborts with no writes
        """
        async with self.transaction() as session:
            db_position = await session.get(PositionModel, position_id, with_for_update=True)
            if db_position is None:
                raise PositionNotFoundError("Position not found.")

            before = await self._locked_user(session, db_position.user_email)
            if before is None:
                raise UserNotFoundError(f"No account found for {db_position.user_email}.")

            position, user, entry = settle(
                self._position_from_model(db_position), before.model_copy()
            )

            result = await session.execute(
                update(PositionModel)
                .where(
                    PositionModel.id == position_id,
                    PositionModel.status.in_(
                        [PositionStatus.OPEN.value, PositionStatus.PAUSED.value]
                    ),
                )
                .values(
                    status=position.status.value,
                    closed_at=position.closed_at,
                    current_price=position.current_price,
                    profit_loss_amount=position.profit_loss_amount,
                    profit_loss_percentage=position.profit_loss_percentage,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise PositionStateError("Position is already closed.")

            await self._adjust_wallets(session, before, user)
            session.add(self._transaction_to_model(entry))
            await session.flush()

            user = await self._locked_user(session, position.user_email, refresh=True)

        return position, user, entry

    async def _locked_user(
        self, session: AsyncSession, email: str, refresh: bool = False
    ) -> Optional[User]:
        query = select(UserModel).where(UserModel.email == email).with_for_update()
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await session.execute(query)
        db_user = result.scalar_one_or_none()
        return self._user_from_model(db_user) if db_user else None

    async def _adjust_wallets(self, session: AsyncSession, before: User, after: User) -> bool:
        """Apply the wallet changes between two snapshots as relative updates.

        A debit of the trading wallet only applies while the stored balance
        covers it. Returns False when it does not.
        """
        deltas = {
            name: getattr(after, name) - getattr(before, name)
            for name in WALLET_FIELDS
            if getattr(after, name) != getattr(before, name)
        }
        if not deltas:
            return True

        query = update(UserModel).where(UserModel.email == before.email)
        trading_delta = deltas.get("trading_wallet", Decimal("0"))
        if trading_delta < 0:
            query = query.where(UserModel.trading_wallet >= -trading_delta)

        result = await session.execute(
            query.values(
                **{name: getattr(UserModel, name) + delta for name, delta in deltas.items()}
            ).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # Ledger operations
    async def get_transactions(self, user_email: str, limit: int = 100) -> List[Transaction]:
        """Get a user's ledger entries, newest first."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(TransactionModel)
                .where(TransactionModel.user_email == user_email)
                .order_by(TransactionModel.created_at.desc())
                .limit(limit)
            )
            return [self._transaction_from_model(t) for t in result.scalars().all()]

    # Admin settings
    async def get_settings(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        """Get raw setting values for the given keys; missing keys are absent."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(AdminSettingModel).where(AdminSettingModel.setting_key.in_(list(keys)))
            )
            return {s.setting_key: s.setting_value for s in result.scalars().all()}

    async def save_setting(self, key: str, value: str):
        """Upsert one setting."""
        await self.save_settings({key: value})

    async def save_settings(self, values: Dict[str, str]):
        """Upsert several settings together."""
        async with self.transaction() as session:
            for key, value in values.items():
                db_setting = await session.get(AdminSettingModel, key)
                if db_setting is None:
                    db_setting = AdminSettingModel(setting_key=key)
                    session.add(db_setting)
                db_setting.setting_value = value
                db_setting.updated_at = utc_now()

    # Helpers
    def _apply_user(self, model: UserModel, user: User):
        model.email = user.email
        model.full_name = user.full_name
        model.deposit_wallet = user.deposit_wallet
        model.profit_wallet = user.profit_wallet
        model.trading_wallet = user.trading_wallet
        model.total_balance = user.total_balance

    def _user_from_model(self, model: UserModel) -> User:
        """Convert DB model to User object."""
        return User(
            id=model.id,
            email=model.email,
            full_name=model.full_name or "",
            deposit_wallet=model.deposit_wallet or Decimal("0"),
            profit_wallet=model.profit_wallet or Decimal("0"),
            trading_wallet=model.trading_wallet or Decimal("0"),
            total_balance=model.total_balance or Decimal("0"),
        )

    def _symbol_from_model(self, model: SymbolModel) -> Symbol:
        """Convert DB model to Symbol object."""
        return Symbol(
            id=model.id,
            symbol=model.symbol,
            current_price=model.current_price,
            is_active=bool(model.is_active),
            admin_controlled_outcome=model.admin_controlled_outcome or OutcomeControl.NONE,
            loss_percentage=model.loss_percentage,
            profit_percentage=model.profit_percentage,
        )

    def _position_to_model(self, position: Position) -> PositionModel:
        model = PositionModel(
            id=position.id,
            user_email=position.user_email,
            symbol_id=position.symbol_id,
            direction=position.direction.value,
            investment_amount=position.investment_amount,
            leverage=position.leverage,
            entry_price=position.entry_price,
            opened_at=position.opened_at,
        )
        self._apply_position(model, position)
        return model

    def _apply_position(self, model: PositionModel, position: Position):
        """Copy the mutable position fields onto a DB model."""
        model.symbol_code = position.symbol_code
        model.current_price = position.current_price
        model.profit_loss_amount = position.profit_loss_amount
        model.profit_loss_percentage = position.profit_loss_percentage
        model.status = position.status.value
        model.closed_at = position.closed_at
        model.stop_loss_price = position.stop_loss_price
        model.take_profit_price = position.take_profit_price
        model.copied_from = position.copied_from

    def _position_from_model(self, model: PositionModel) -> Position:
        """Convert DB model to Position object."""
        return Position(
            id=model.id,
            user_email=model.user_email,
            symbol_id=model.symbol_id,
            symbol_code=model.symbol_code,
            direction=TradeDirection(model.direction),
            investment_amount=model.investment_amount,
            leverage=model.leverage,
            entry_price=model.entry_price,
            current_price=model.current_price,
            profit_loss_amount=model.profit_loss_amount or Decimal("0"),
            profit_loss_percentage=model.profit_loss_percentage or Decimal("0"),
            status=PositionStatus(model.status),
            opened_at=model.opened_at,
            closed_at=model.closed_at,
            stop_loss_price=model.stop_loss_price,
            take_profit_price=model.take_profit_price,
            copied_from=model.copied_from,
        )

    def _transaction_to_model(self, entry: Transaction) -> TransactionModel:
        return TransactionModel(
            id=entry.id,
            user_email=entry.user_email,
            type=entry.type.value,
            amount=entry.amount,
            status=entry.status.value,
            description=entry.description,
            created_at=entry.created_at,
        )

    def _transaction_from_model(self, model: TransactionModel) -> Transaction:
        """Convert DB model to Transaction object."""
        return Transaction(
            id=model.id,
            user_email=model.user_email,
            type=TransactionType(model.type),
            amount=model.amount,
            status=TransactionStatus(model.status),
            description=model.description or "",
            created_at=model.created_at,
        )
