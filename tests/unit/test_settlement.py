"""Unit tests for position settlement."""
import asyncio
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from src.core.exceptions import (
    PositionNotFoundError, PositionOwnershipError, PositionStateError,
    PreconditionError, SettlementError
)
from src.core.models import (
    PositionStatus, SettlementResult, TransactionStatus, TransactionType
)
from src.positions.settlement import SettlementService, settlement_entry, settlement_returns
from src.positions.trading import open_with_debit


async def _open_in_store(database, user_email, position):
    """Store a position whose principal already left the trading wallet."""
    user = await database.get_user_by_email(user_email)
    user.debit_trading(position.investment_amount)
    await database.save_user(user)
    await database.save_position(position)


class TestSettlementArithmetic:
    """Test return and ledger computations."""

    def test_returns_with_loss(self, force_loss_symbol, position_factory):
        position = position_factory(force_loss_symbol, profit_loss_amount="-150")

        assert settlement_returns(position) == (Decimal("850"), Decimal("850"))

    def test_loss_beyond_principal_credits_nothing(self, force_loss_symbol, position_factory):
        position = position_factory(force_loss_symbol, profit_loss_amount="-1200")

        total_return, final_return = settlement_returns(position)

        assert total_return == Decimal("-200")
        assert final_return == Decimal("0")

    def test_loss_entry(self, force_loss_symbol, position_factory, clock):
        position = position_factory(force_loss_symbol, profit_loss_amount="-150")

        entry = settlement_entry(position, clock.now)

        assert entry.type == TransactionType.LOSS
        assert entry.amount == Decimal("150")
        assert entry.status == TransactionStatus.COMPLETED
        assert entry.description == "Loss from closing BTCUSD trade (5x leverage)"

    def test_zero_pnl_recorded_as_profit(self, force_loss_symbol, position_factory, clock):
        position = position_factory(force_loss_symbol, profit_loss_amount="0")

        entry = settlement_entry(position, clock.now)

        assert entry.type == TransactionType.PROFIT
        assert entry.amount == Decimal("0")
        assert entry.description.startswith("Profit from closing")


class TestClosePosition:
    """Test SettlementService.close_position against the store."""

    @pytest.mark.asyncio
    async def test_scenario_close_with_loss(self, seeded_database, sample_user, force_loss_symbol, position_factory, clock):
        position = position_factory(force_loss_symbol, profit_loss_amount="-150")
        await _open_in_store(seeded_database, sample_user.email, position)
        service = SettlementService(seeded_database, clock=clock)

        result = await service.close_position(position.id, sample_user.email)

        assert result.total_return == Decimal("850")
        assert result.final_return == Decimal("850")
        assert result.position.status == PositionStatus.CLOSED
        assert result.position.closed_at == clock.now

        user = await seeded_database.get_user_by_email(sample_user.email)
        # Trading wallet went 1000 -> 0 at open and gets 850 back
        assert user.trading_wallet == Decimal("850")
        assert user.total_balance == Decimal("850")
        assert user.reconciles()

        entries = await seeded_database.get_transactions(sample_user.email)
        assert len(entries) == 1
        assert entries[0].type == TransactionType.LOSS
        assert entries[0].amount == Decimal("150")

        stored = await seeded_database.get_position(position.id)
        assert stored.status == PositionStatus.CLOSED

    @pytest.mark.asyncio
    async def test_close_with_profit(self, seeded_database, sample_user, force_loss_symbol, position_factory, clock):
        position = position_factory(force_loss_symbol, investment="500", profit_loss_amount="125")
        await _open_in_store(seeded_database, sample_user.email, position)
        service = SettlementService(seeded_database, clock=clock)

        result = await service.close_position(position.id, sample_user.email)

        assert result.final_return == Decimal("625")
        assert result.transaction.type == TransactionType.PROFIT
        user = await seeded_database.get_user_by_email(sample_user.email)
        assert user.trading_wallet == Decimal("1125")
        assert user.total_balance == Decimal("1125")
        assert user.reconciles()

    @pytest.mark.asyncio
    async def test_loss_beyond_principal(self, seeded_database, sample_user, force_loss_symbol, position_factory, clock):
        position = position_factory(force_loss_symbol, profit_loss_amount="-1200")
        await _open_in_store(seeded_database, sample_user.email, position)
        service = SettlementService(seeded_database, clock=clock)

        result = await service.close_position(position.id, sample_user.email)

        assert result.final_return == Decimal("0")
        assert result.total_return == Decimal("-200")
        user = await seeded_database.get_user_by_email(sample_user.email)
        assert user.trading_wallet == Decimal("0")
        assert user.total_balance == Decimal("0")
        assert user.reconciles()

    @pytest.mark.asyncio
    async def test_close_paused_position(self, seeded_database, sample_user, force_loss_symbol, position_factory, clock):
        position = position_factory(force_loss_symbol, status=PositionStatus.PAUSED)
        await _open_in_store(seeded_database, sample_user.email, position)
        service = SettlementService(seeded_database, clock=clock)

        result = await service.close_position(position.id, sample_user.email)

        assert result.position.status == PositionStatus.CLOSED

    @pytest.mark.asyncio
    async def test_invariant_with_other_open_positions(self, seeded_database, sample_user, force_loss_symbol, position_factory, clock):
        first = position_factory(force_loss_symbol, investment="300", profit_loss_amount="-30")
        second = position_factory(force_loss_symbol, investment="200")
        await _open_in_store(seeded_database, sample_user.email, first)
        await _open_in_store(seeded_database, sample_user.email, second)
        service = SettlementService(seeded_database, clock=clock)

        await service.close_position(first.id, sample_user.email)

        user = await seeded_database.get_user_by_email(sample_user.email)
        locked = await seeded_database.get_locked_principal(sample_user.email)
        assert locked == Decimal("200")
        assert user.reconciles(locked_principal=locked)


class TestClosePreconditions:
    """Preconditions are checked before anything is written."""

    @pytest.mark.asyncio
    async def test_already_closed(self, seeded_database, sample_user, force_loss_symbol, position_factory, clock):
        position = position_factory(force_loss_symbol, profit_loss_amount="-150")
        await _open_in_store(seeded_database, sample_user.email, position)
        service = SettlementService(seeded_database, clock=clock)
        await service.close_position(position.id, sample_user.email)

        with pytest.raises(PositionStateError):
            await service.close_position(position.id, sample_user.email)

        user = await seeded_database.get_user_by_email(sample_user.email)
        assert user.trading_wallet == Decimal("850")
        assert len(await seeded_database.get_transactions(sample_user.email)) == 1

    @pytest.mark.asyncio
    async def test_not_owner(self, seeded_database, sample_user, force_loss_symbol, position_factory, clock):
        position = position_factory(force_loss_symbol)
        await _open_in_store(seeded_database, sample_user.email, position)
        service = SettlementService(seeded_database, clock=clock)

        with pytest.raises(PositionOwnershipError):
            await service.close_position(position.id, "intruder@example.com")

        assert (await seeded_database.get_position(position.id)).status == PositionStatus.OPEN

    @pytest.mark.asyncio
    async def test_missing_position(self, seeded_database, sample_user, clock):
        service = SettlementService(seeded_database, clock=clock)

        with pytest.raises(PositionNotFoundError):
            await service.close_position("missing", sample_user.email)


class TestCloseFailures:
    """Store failures surface as SettlementError."""

    @pytest.mark.asyncio
    async def test_store_error_is_wrapped(self):
        database = MagicMock()
        database.close_position_atomically = AsyncMock(side_effect=RuntimeError("disk full"))
        service = SettlementService(database)

        with pytest.raises(SettlementError) as exc_info:
            await service.close_position("pos-1", "a@example.com")

        assert str(exc_info.value) == "Failed to close position."
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert not isinstance(exc_info.value, PreconditionError)


class TestConcurrentSettlement:
    """Overlapping writes against a file-backed store."""

    @pytest.mark.asyncio
    async def test_concurrent_closes_settle_once(self, file_database, sample_user, force_loss_symbol, position_factory, clock):
        position = position_factory(force_loss_symbol, profit_loss_amount="-150")
        await _open_in_store(file_database, sample_user.email, position)
        service = SettlementService(file_database, clock=clock)

        results = await asyncio.gather(
            service.close_position(position.id, sample_user.email),
            service.close_position(position.id, sample_user.email),
            return_exceptions=True,
        )

        settled = [r for r in results if isinstance(r, SettlementResult)]
        rejected = [r for r in results if isinstance(r, PositionStateError)]
        assert len(settled) == 1
        assert len(rejected) == 1

        user = await file_database.get_user_by_email(sample_user.email)
        assert user.trading_wallet == Decimal("850")
        assert user.total_balance == Decimal("850")
        entries = await file_database.get_transactions(sample_user.email)
        assert [(e.type, e.amount) for e in entries] == [(TransactionType.LOSS, Decimal("150"))]

    @pytest.mark.asyncio
    async def test_close_alongside_open_keeps_both_wallet_changes(self, file_database, sample_user, force_loss_symbol, position_factory, clock):
        closing = position_factory(force_loss_symbol, investment="500", profit_loss_amount="-150")
        await _open_in_store(file_database, sample_user.email, closing)
        opening = position_factory(force_loss_symbol, investment="500")
        service = SettlementService(file_database, clock=clock)

        await asyncio.gather(
            service.close_position(closing.id, sample_user.email),
            open_with_debit(file_database, opening),
        )

        user = await file_database.get_user_by_email(sample_user.email)
        locked = await file_database.get_locked_principal(sample_user.email)
        # 1000 - 500 (first open) + 350 (settlement) - 500 (second open)
        assert user.trading_wallet == Decimal("350")
        assert user.total_balance == Decimal("850")
        assert locked == Decimal("500")
        assert user.reconciles(locked_principal=locked)
