"""Submits aggregator transactions and waits for their receipts."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from eth_account import Account
from eth_utils import to_checksum_address

from ...chains.evm import EvmClient
from ...config import ExecutorConfig
from ...errors import (
    ContractCallReverted,
    InvalidArgument,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from ...models import CallReceipt, ContractCall
from .abi import encode_contract_call

logger = logging.getLogger(__name__)


class RpcContractExecutor:
    """ContractExecutor that signs with an operator key and sends over JSON-RPC.

    ``execute`` returns only after the transaction is mined; a mined revert
    raises ContractCallReverted, and no receipt within
    ``confirmation_timeout`` raises UpstreamTimeout.
    """

    def __init__(
        self,
        clients: Mapping[str, EvmClient],
        aggregators: Mapping[str, str],
        chain_ids: Mapping[str, int | None],
        config: ExecutorConfig,
    ) -> None:
        self._clients = dict(clients)
        self._aggregators = dict(aggregators)
        self._chain_ids = dict(chain_ids)
        self._config = config
        self._send_locks: dict[str, asyncio.Lock] = {}
        self._next_nonce: dict[str, int] = {}

    def _target(self, chain: str) -> tuple[EvmClient, str, int]:
        client = self._clients.get(chain)
        aggregator = self._aggregators.get(chain)
        evm_chain_id = self._chain_ids.get(chain)
        if client is None or not aggregator or evm_chain_id is None:
            raise InvalidArgument(
                f"Chain '{chain}' is not configured for transactions "
                "(needs rpc_endpoints, aggregator_address and evm_chain_id)"
            )
        return client, aggregator, evm_chain_id

    async def execute(self, call: ContractCall) -> CallReceipt:
        if not self._config.operator_key:
            raise InvalidArgument("executor.operator_key is not configured")
        client, aggregator, evm_chain_id = self._target(call.chain)

        account = Account.from_key(self._config.operator_key)
        lock = self._send_locks.setdefault(call.chain, asyncio.Lock())
        # One operator nonce per send: allocate, sign and send under the chain lock.
        async with lock:
            pending, gas_price = await asyncio.gather(
                client.get_transaction_count(account.address),
                client.gas_price(),
            )
            nonce = max(pending, self._next_nonce.get(call.chain, 0))
            tx = {
                "to": to_checksum_address(aggregator),
                "data": "0x" + encode_contract_call(call).hex(),
                "value": 0,
                "gas": self._config.gas_limit,
                "gasPrice": gas_price,
                "nonce": nonce,
                "chainId": evm_chain_id,
            }
            signed = account.sign_transaction(tx)
            tx_hash = "0x" + bytes(signed.hash).hex()

            logger.info(
                "Sending %s on %s (tx %s, nonce %d)", call.function, call.chain, tx_hash, nonce
            )
            try:
                await client.send_raw_transaction(bytes(signed.raw_transaction))
            except (UpstreamUnavailable, UpstreamTimeout):
                # A retried send may already have reached the mempool.
                if await client.get_transaction_receipt(tx_hash) is None:
                    raise
                logger.warning("Send of %s failed but the transaction was mined", tx_hash)
            self._next_nonce[call.chain] = nonce + 1

        receipt = await self._wait_for_receipt(client, tx_hash)
        block_number = int(receipt.get("blockNumber") or "0x0", 16)
        if int(receipt.get("status") or "0x0", 16) != 1:
            raise ContractCallReverted(
                f"{call.function} reverted on {call.chain}",
                details={"chain": call.chain, "tx_hash": tx_hash, "block": block_number},
            )

        logger.info("Confirmed %s in block %d", tx_hash, block_number)
        return CallReceipt(tx_hash=tx_hash, success=True, block_number=block_number)

    async def _wait_for_receipt(self, client: EvmClient, tx_hash: str) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.confirmation_timeout
        while True:
            receipt = await client.get_transaction_receipt(tx_hash)
            if receipt is not None:
                return receipt
            if loop.time() >= deadline:
                raise UpstreamTimeout(
                    f"Transaction {tx_hash} not confirmed within "
                    f"{self._config.confirmation_timeout:g}s",
                    details={"tx_hash": tx_hash},
                )
            await asyncio.sleep(self._config.poll_interval)
