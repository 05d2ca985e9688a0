"""Static directory of supported chains, built once from configuration."""
from __future__ import annotations

from types import MappingProxyType
from typing import Iterator, Mapping

from ..config import ChainConfig
from ..errors import NotFound
from ..models import ChainInfo


class ChainRegistry:
    """Read-only lookup of ChainInfo by chain id. Safe to share across tasks."""

    def __init__(self, chains: Mapping[str, ChainInfo]) -> None:
        self._chains = MappingProxyType(dict(chains))

    @classmethod
    def from_config(cls, chains: Mapping[str, ChainConfig]) -> ChainRegistry:
        return cls(
            {
                chain_id: ChainInfo(
                    id=chain_id,
                    name=cfg.name or chain_id,
                    native_symbol=cfg.native_symbol,
                    native_decimals=cfg.native_decimals,
                    rpc_endpoints=tuple(cfg.rpc_endpoints),
                    explorer_url=cfg.explorer_url,
                    is_testnet=cfg.is_testnet,
                    evm_chain_id=cfg.evm_chain_id,
                )
                for chain_id, cfg in chains.items()
            }
        )

    def get(self, chain_id: str) -> ChainInfo:
        try:
            return self._chains[chain_id]
        except KeyError:
            raise NotFound(f"Chain '{chain_id}' is not supported") from None

    def __contains__(self, chain_id: object) -> bool:
        return chain_id in self._chains

    def __iter__(self) -> Iterator[ChainInfo]:
        return iter(self._chains.values())

    def __len__(self) -> int:
        return len(self._chains)

    def ids(self) -> tuple[str, ...]:
        return tuple(self._chains)
