"""Position lifecycle: deposit, withdraw and claim through a ContractExecutor."""
from __future__ import annotations

import logging
import time
from dataclasses import replace

from ..errors import Conflict, InvalidArgument
from ..interfaces.executor import ContractExecutor
from ..models import ContractCall, Opportunity, PositionState, RawPosition

logger = logging.getLogger(__name__)

TRANSITIONS: dict[PositionState, frozenset[PositionState]] = {
    PositionState.PENDING: frozenset({PositionState.ACTIVE}),
    PositionState.ACTIVE: frozenset({PositionState.WITHDRAWING, PositionState.CLAIMING}),
    PositionState.WITHDRAWING: frozenset({PositionState.ACTIVE, PositionState.CLOSED}),
    PositionState.CLAIMING: frozenset({PositionState.ACTIVE}),
    PositionState.CLOSED: frozenset(),
}


def transition(position: RawPosition, target: PositionState) -> RawPosition:
    """Return ``position`` in state ``target``; Conflict if the move is not allowed."""
    if target not in TRANSITIONS[position.state]:
        raise Conflict(
            f"Position cannot move from {position.state.value} to {target.value}",
            details={"strategy": position.strategy_address, "state": position.state.value},
        )
    return replace(position, state=target)


def _parse_amount(amount: str | int) -> int:
    try:
        value = int(amount)
    except (TypeError, ValueError):
        raise InvalidArgument(f"Amount must be an integer, got {amount!r}") from None
    if value <= 0:
        raise InvalidArgument(f"Amount must be positive, got {value}")
    return value


class PositionLifecycleManager:
    """Drives positions through their states.

    Every write returns only after the executor confirms. On failure the error
    propagates and the caller still holds the original, unchanged position.
    """

    def __init__(self, executor: ContractExecutor) -> None:
        self._executor = executor

    async def open(
        self,
        opportunity: Opportunity,
        owner: str,
        amount: str | int,
        now: int | None = None,
    ) -> RawPosition:
        value = _parse_amount(amount)
        if value < int(opportunity.min_deposit):
            raise InvalidArgument(
                f"Deposit {value} is below the minimum of {opportunity.min_deposit}",
                details={"opportunity": opportunity.id},
            )
        now = int(time.time()) if now is None else now

        pending = RawPosition(
            strategy_address=opportunity.strategy_address,
            asset_address=opportunity.asset_address,
            owner=owner.lower(),
            amount=str(value),
            entry_timestamp=now,
            last_update_timestamp=now,
            rewards="0",
            chain=opportunity.chain,
            state=PositionState.PENDING,
        )
        receipt = await self._executor.execute(
            ContractCall(
                chain=opportunity.chain,
                function="deposit",
                args=(pending.owner, pending.strategy_address, pending.asset_address, value),
            )
        )
        logger.info("Deposit of %s into %s confirmed (%s)", value, opportunity.id, receipt.tx_hash)
        return transition(pending, PositionState.ACTIVE)

    async def withdraw(
        self,
        position: RawPosition,
        amount: str | int | None = None,
        bridge: str | None = None,
        now: int | None = None,
    ) -> RawPosition:
        """Withdraw ``amount`` (default: everything), via ``bridge`` when given."""
        in_flight = transition(position, PositionState.WITHDRAWING)
        held = int(position.amount)
        value = held if amount is None else _parse_amount(amount)
        if value <= 0 or value > held:
            raise InvalidArgument(
                f"Withdraw amount must be within 1..{held}, got {value}"
            )

        receipt = await self._executor.execute(
            ContractCall(
                chain=position.chain,
                function="withdraw",
                args=(position.owner, position.strategy_address, position.asset_address, value),
                bridge=bridge or None,
            )
        )
        logger.info(
            "Withdraw of %s from %s confirmed (%s)",
            value,
            position.strategy_address,
            receipt.tx_hash,
        )

        remaining = held - value
        done = transition(
            in_flight, PositionState.CLOSED if remaining == 0 else PositionState.ACTIVE
        )
        now = int(time.time()) if now is None else now
        return replace(
            done,
            amount=str(remaining),
            last_update_timestamp=max(now, position.last_update_timestamp),
        )

    async def claim(self, position: RawPosition, now: int | None = None) -> RawPosition:
        in_flight = transition(position, PositionState.CLAIMING)
        receipt = await self._executor.execute(
            ContractCall(
                chain=position.chain,
                function="claimRewards",
                args=(position.owner, position.strategy_address),
            )
        )
        logger.info("Claim on %s confirmed (%s)", position.strategy_address, receipt.tx_hash)

        now = int(time.time()) if now is None else now
        return replace(
            transition(in_flight, PositionState.ACTIVE),
            rewards="0",
            last_update_timestamp=max(now, position.last_update_timestamp),
        )
