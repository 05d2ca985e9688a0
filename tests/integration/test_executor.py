"""Integration tests for the RPC contract executor: signing, send and confirmation."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from eth_account import Account

from orbit_yield.config import ExecutorConfig
from orbit_yield.errors import (
    ContractCallReverted,
    InvalidArgument,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from orbit_yield.models import ContractCall
from orbit_yield.protocols.strategy import RpcContractExecutor, abi

OPERATOR_KEY = "0x" + "33" * 32
AGGREGATOR = "0x" + "99" * 20
OWNER = "0x" + "ab" * 20
STRATEGY = "0x" + "a1" * 20
USDC = "0x" + "0c" * 20

WITHDRAW = ContractCall(
    chain="c1", function="withdraw", args=(OWNER, STRATEGY, USDC, 100), bridge="x"
)


def _client(receipts: list | None = None) -> AsyncMock:
    client = AsyncMock()
    client.chain_id = "c1"
    client.get_transaction_count = AsyncMock(return_value=7)
    client.gas_price = AsyncMock(return_value=1_000_000_000)
    client.send_raw_transaction = AsyncMock(return_value="0x")
    client.get_transaction_receipt = AsyncMock(
        side_effect=receipts if receipts is not None else [{"status": "0x1", "blockNumber": "0x10"}]
    )
    return client


def _executor(client: AsyncMock, **config) -> RpcContractExecutor:
    settings = {"operator_key": OPERATOR_KEY, "poll_interval": 0.0, "confirmation_timeout": 5.0}
    settings.update(config)
    return RpcContractExecutor(
        clients={"c1": client},
        aggregators={"c1": AGGREGATOR},
        chain_ids={"c1": 1},
        config=ExecutorConfig(**settings),
    )


class TestExecute:
    @pytest.mark.asyncio
    async def test_signs_sends_and_confirms(self) -> None:
        client = _client()
        receipt = await _executor(client).execute(WITHDRAW)

        assert receipt.success
        assert receipt.block_number == 16
        assert receipt.tx_hash.startswith("0x") and len(receipt.tx_hash) == 66

        operator = Account.from_key(OPERATOR_KEY).address
        client.get_transaction_count.assert_awaited_once_with(operator)
        raw = client.send_raw_transaction.await_args.args[0]
        tx = Account.recover_transaction(raw)
        assert tx == operator
        client.get_transaction_receipt.assert_awaited_with(receipt.tx_hash)

    @pytest.mark.asyncio
    async def test_calldata_routes_through_bridge(self) -> None:
        client = _client()
        await _executor(client).execute(WITHDRAW)
        raw = bytes(client.send_raw_transaction.await_args.args[0])
        assert abi.encode_contract_call(WITHDRAW) in raw

    @pytest.mark.asyncio
    async def test_polls_until_mined(self) -> None:
        client = _client([None, None, {"status": "0x1", "blockNumber": "0x2"}])
        receipt = await _executor(client).execute(WITHDRAW)
        assert receipt.block_number == 2
        assert client.get_transaction_receipt.await_count == 3

    @pytest.mark.asyncio
    async def test_reverted_receipt(self) -> None:
        client = _client([{"status": "0x0", "blockNumber": "0x5"}])
        with pytest.raises(ContractCallReverted) as exc:
            await _executor(client).execute(WITHDRAW)
        assert exc.value.details["block"] == 5

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self) -> None:
        client = _client()
        client.get_transaction_receipt = AsyncMock(return_value=None)
        with pytest.raises(UpstreamTimeout):
            await _executor(client, confirmation_timeout=0.0).execute(WITHDRAW)

    @pytest.mark.asyncio
    async def test_send_failure_with_mined_tx(self) -> None:
        client = _client(
            [{"status": "0x1", "blockNumber": "0x9"}, {"status": "0x1", "blockNumber": "0x9"}]
        )
        client.send_raw_transaction = AsyncMock(side_effect=UpstreamUnavailable("dropped"))
        receipt = await _executor(client).execute(WITHDRAW)
        assert receipt.block_number == 9

    @pytest.mark.asyncio
    async def test_send_failure_propagates(self) -> None:
        client = _client([None])
        client.send_raw_transaction = AsyncMock(side_effect=UpstreamUnavailable("dropped"))
        with pytest.raises(UpstreamUnavailable):
            await _executor(client).execute(WITHDRAW)


class _RecordingAccount:
    """Signs with the real operator key and remembers each nonce used."""

    def __init__(self) -> None:
        self._account = Account.from_key(OPERATOR_KEY)
        self.address = self._account.address
        self.nonces: list[int] = []

    def sign_transaction(self, tx: dict):
        self.nonces.append(tx["nonce"])
        return self._account.sign_transaction(tx)


class TestNonceAllocation:
    @pytest.mark.asyncio
    async def test_concurrent_sends_use_distinct_nonces(self) -> None:
        mined = {"status": "0x1", "blockNumber": "0x10"}
        client = _client([mined, mined])
        executor = _executor(client)
        recorder = _RecordingAccount()

        with patch(
            "orbit_yield.protocols.strategy.executor.Account.from_key", return_value=recorder
        ):
            first, second = await asyncio.gather(
                executor.execute(WITHDRAW), executor.execute(WITHDRAW)
            )

        assert sorted(recorder.nonces) == [7, 8]
        assert first.tx_hash != second.tx_hash
        assert client.send_raw_transaction.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_send_does_not_consume_nonce(self) -> None:
        mined = {"status": "0x1", "blockNumber": "0x10"}
        client = _client([None, mined])
        client.send_raw_transaction = AsyncMock(
            side_effect=[UpstreamUnavailable("dropped"), "0x"]
        )
        executor = _executor(client)
        recorder = _RecordingAccount()

        with patch(
            "orbit_yield.protocols.strategy.executor.Account.from_key", return_value=recorder
        ):
            with pytest.raises(UpstreamUnavailable):
                await executor.execute(WITHDRAW)
            await executor.execute(WITHDRAW)

        assert recorder.nonces == [7, 7]

    @pytest.mark.asyncio
    async def test_node_nonce_ahead_of_local_wins(self) -> None:
        mined = {"status": "0x1", "blockNumber": "0x10"}
        client = _client([mined, mined])
        client.get_transaction_count = AsyncMock(side_effect=[7, 12])
        executor = _executor(client)
        recorder = _RecordingAccount()

        with patch(
            "orbit_yield.protocols.strategy.executor.Account.from_key", return_value=recorder
        ):
            await executor.execute(WITHDRAW)
            await executor.execute(WITHDRAW)

        assert recorder.nonces == [7, 12]


class TestConfiguration:
    @pytest.mark.asyncio
    async def test_missing_operator_key(self) -> None:
        client = _client()
        with pytest.raises(InvalidArgument):
            await _executor(client, operator_key="").execute(WITHDRAW)
        client.send_raw_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_unconfigured_chain(self) -> None:
        with pytest.raises(InvalidArgument):
            await _executor(_client()).execute(
                ContractCall(chain="c2", function="claimRewards", args=(OWNER, STRATEGY))
            )
