"""EVM JSON-RPC client with fallback support."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...config import NetworkConfig
from ...errors import (
    ContractCallReverted,
    UpstreamTimeout,
    UpstreamUnavailable,
    with_retry,
)
from ...models import ChainInfo

logger = logging.getLogger(__name__)

# JSON-RPC error code used by geth-compatible nodes for reverted calls
_EXECUTION_REVERTED = 3


def _is_revert(error: dict[str, Any]) -> bool:
    if error.get("code") == _EXECUTION_REVERTED:
        return True
    return "revert" in str(error.get("message", "")).lower()


def _hex_to_bytes(value: str) -> bytes:
    if value.startswith("0x"):
        value = value[2:]
    return bytes.fromhex(value)


class EvmClient:
    """EVM blockchain RPC client with automatic endpoint fallback."""

    def __init__(self, chain: ChainInfo, network: NetworkConfig) -> None:
        self.chain_id = chain.id
        self.endpoints = list(chain.rpc_endpoints)
        self.network = network
        self.current_rpc_index = 0

    async def _rpc_once(self, method: str, params: list[Any]) -> Any:
        """One pass over all endpoints, starting at the last healthy one."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        timeouts = 0
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.network.call_timeout),
                    ) as response:
                        result = await response.json(content_type=None)
            except asyncio.TimeoutError as e:
                timeouts += 1
                last_error = e
                logger.warning("RPC endpoint %s timed out (%s)", rpc_url, method)
                continue
            except (aiohttp.ClientError, ValueError) as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                continue

            if not isinstance(result, dict):
                last_error = RuntimeError(f"Malformed RPC response: {result!r}")
                logger.warning("RPC endpoint %s returned a non-object body", rpc_url)
                continue

            error = result.get("error")
            if error:
                if not isinstance(error, dict):
                    error = {"message": str(error)}
                if _is_revert(error):
                    raise ContractCallReverted(
                        f"{method} reverted on {self.chain_id}: {error.get('message', '')}",
                        details={"chain": self.chain_id, "rpc_error": error},
                    )
                last_error = RuntimeError(f"RPC Error: {error}")
                logger.warning("RPC endpoint %s returned error: %s", rpc_url, error)
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            return result.get("result")

        if self.endpoints and timeouts == len(self.endpoints):
            raise UpstreamTimeout(
                f"All RPC endpoints for {self.chain_id} timed out on {method}",
                details={"chain": self.chain_id},
            )
        raise UpstreamUnavailable(
            f"All RPC endpoints for {self.chain_id} failed. Last error: {last_error}",
            details={"chain": self.chain_id},
        )

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make an RPC call with endpoint fallback, timeout and bounded retry."""
        return await with_retry(
            lambda: self._rpc_once(method, params),
            timeout=self.network.call_timeout * max(1, len(self.endpoints)),
            max_retries=self.network.max_retries,
            backoff_base=self.network.backoff_base,
            label=f"{self.chain_id} {method}",
        )

    async def call(self, to: str, data: bytes) -> bytes:
        """Execute a read-only contract call (``eth_call``) at the latest block."""
        result = await self.rpc_call(
            "eth_call", [{"to": to, "data": "0x" + data.hex()}, "latest"]
        )
        return _hex_to_bytes(result or "0x")

    async def get_transaction_count(self, address: str) -> int:
        return int(await self.rpc_call("eth_getTransactionCount", [address, "pending"]), 16)

    async def gas_price(self) -> int:
        return int(await self.rpc_call("eth_gasPrice", []), 16)

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        return await self.rpc_call("eth_sendRawTransaction", ["0x" + raw_tx.hex()])

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return await self.rpc_call("eth_getTransactionReceipt", [tx_hash])
