"""Chain client protocol: blockchain RPC abstraction."""
from typing import Any, Protocol


class ChainClient(Protocol):
    """Abstract interface for blockchain RPC interactions."""

    chain_id: str

    async def rpc_call(self, method: str, params: list[Any]) -> Any: ...

    async def call(self, to: str, data: bytes) -> bytes: ...
