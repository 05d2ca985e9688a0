"""Unit tests for position state transitions and lifecycle writes."""
from __future__ import annotations

from dataclasses import replace
from typing import Callable
from unittest.mock import AsyncMock

import pytest

from orbit_yield.errors import Conflict, ContractCallReverted, InvalidArgument
from orbit_yield.models import CallReceipt, Opportunity, PositionState, RawPosition
from orbit_yield.services.lifecycle import PositionLifecycleManager, transition


@pytest.fixture()
def executor() -> AsyncMock:
    ex = AsyncMock()
    ex.execute = AsyncMock(return_value=CallReceipt(tx_hash="0xfeed", success=True, block_number=7))
    return ex


@pytest.fixture()
def manager(executor: AsyncMock) -> PositionLifecycleManager:
    return PositionLifecycleManager(executor)


class TestTransition:
    @pytest.mark.parametrize(
        "start, target",
        [
            (PositionState.PENDING, PositionState.ACTIVE),
            (PositionState.ACTIVE, PositionState.WITHDRAWING),
            (PositionState.ACTIVE, PositionState.CLAIMING),
            (PositionState.WITHDRAWING, PositionState.CLOSED),
            (PositionState.WITHDRAWING, PositionState.ACTIVE),
            (PositionState.CLAIMING, PositionState.ACTIVE),
        ],
    )
    def test_allowed(
        self, active_position: RawPosition, start: PositionState, target: PositionState
    ) -> None:
        moved = transition(replace(active_position, state=start), target)
        assert moved.state is target

    @pytest.mark.parametrize(
        "start, target",
        [
            (PositionState.CLOSED, PositionState.ACTIVE),
            (PositionState.CLOSED, PositionState.WITHDRAWING),
            (PositionState.PENDING, PositionState.WITHDRAWING),
            (PositionState.CLAIMING, PositionState.WITHDRAWING),
        ],
    )
    def test_rejected(
        self, active_position: RawPosition, start: PositionState, target: PositionState
    ) -> None:
        with pytest.raises(Conflict):
            transition(replace(active_position, state=start), target)


class TestOpen:
    @pytest.mark.asyncio
    async def test_deposit_becomes_active(
        self,
        manager: PositionLifecycleManager,
        executor: AsyncMock,
        make_opportunity: Callable[..., Opportunity],
    ) -> None:
        opportunity = make_opportunity()
        owner = "0x" + "AB" * 20
        position = await manager.open(opportunity, owner, "5000000", now=1_700_000_000)

        assert position.state is PositionState.ACTIVE
        assert position.amount == "5000000"
        assert position.owner == owner.lower()
        assert position.rewards == "0"
        call = executor.execute.await_args.args[0]
        assert call.function == "deposit"
        assert call.args == (owner.lower(), opportunity.strategy_address, opportunity.asset_address, 5000000)

    @pytest.mark.asyncio
    async def test_below_minimum(
        self,
        manager: PositionLifecycleManager,
        executor: AsyncMock,
        make_opportunity: Callable[..., Opportunity],
    ) -> None:
        with pytest.raises(InvalidArgument):
            await manager.open(make_opportunity(), "0x" + "ab" * 20, "999999")
        executor.execute.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-5", "abc"])
    async def test_bad_amount(
        self,
        manager: PositionLifecycleManager,
        make_opportunity: Callable[..., Opportunity],
        amount: str,
    ) -> None:
        with pytest.raises(InvalidArgument):
            await manager.open(make_opportunity(min_deposit="0"), "0x" + "ab" * 20, amount)


class TestWithdraw:
    @pytest.mark.asyncio
    async def test_full_withdraw_via_bridge(
        self, manager: PositionLifecycleManager, executor: AsyncMock, active_position: RawPosition
    ) -> None:
        closed = await manager.withdraw(active_position, bridge="x", now=1_800_000_000)

        call = executor.execute.await_args.args[0]
        assert call.function == "withdraw"
        assert call.bridge == "x"
        assert call.args[-1] == 250000000
        assert closed.state is PositionState.CLOSED
        assert closed.amount == "0"
        assert closed.last_update_timestamp == 1_800_000_000

    @pytest.mark.asyncio
    async def test_no_bridge_uses_plain_withdraw(
        self, manager: PositionLifecycleManager, executor: AsyncMock, active_position: RawPosition
    ) -> None:
        await manager.withdraw(active_position, bridge="")
        assert executor.execute.await_args.args[0].bridge is None

    @pytest.mark.asyncio
    async def test_partial_withdraw_stays_active(
        self, manager: PositionLifecycleManager, active_position: RawPosition
    ) -> None:
        result = await manager.withdraw(active_position, amount="50000000")
        assert result.state is PositionState.ACTIVE
        assert result.amount == "200000000"

    @pytest.mark.asyncio
    async def test_timestamp_never_moves_backwards(
        self, manager: PositionLifecycleManager, active_position: RawPosition
    ) -> None:
        result = await manager.withdraw(active_position, amount="1", now=1)
        assert result.last_update_timestamp == active_position.last_update_timestamp

    @pytest.mark.asyncio
    async def test_more_than_held(
        self, manager: PositionLifecycleManager, executor: AsyncMock, active_position: RawPosition
    ) -> None:
        with pytest.raises(InvalidArgument):
            await manager.withdraw(active_position, amount="250000001")
        executor.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_closed_position_conflict(
        self, manager: PositionLifecycleManager, executor: AsyncMock, active_position: RawPosition
    ) -> None:
        closed = replace(active_position, state=PositionState.CLOSED, amount="0")
        with pytest.raises(Conflict):
            await manager.withdraw(closed)
        executor.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_executor_failure_propagates(
        self, manager: PositionLifecycleManager, executor: AsyncMock, active_position: RawPosition
    ) -> None:
        executor.execute.side_effect = ContractCallReverted("reverted")
        with pytest.raises(ContractCallReverted):
            await manager.withdraw(active_position)
        assert active_position.state is PositionState.ACTIVE
        assert active_position.amount == "250000000"


class TestClaim:
    @pytest.mark.asyncio
    async def test_claim_resets_rewards(
        self, manager: PositionLifecycleManager, executor: AsyncMock, active_position: RawPosition
    ) -> None:
        result = await manager.claim(active_position, now=1_800_000_000)
        call = executor.execute.await_args.args[0]
        assert call.function == "claimRewards"
        assert call.args == (active_position.owner, active_position.strategy_address)
        assert result.state is PositionState.ACTIVE
        assert result.rewards == "0"
        assert result.amount == active_position.amount

    @pytest.mark.asyncio
    async def test_claim_on_closed_conflict(
        self, manager: PositionLifecycleManager, active_position: RawPosition
    ) -> None:
        with pytest.raises(Conflict):
            await manager.claim(replace(active_position, state=PositionState.CLOSED))
