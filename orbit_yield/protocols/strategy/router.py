"""Routes strategy reads to the adapter of the position's chain."""
from __future__ import annotations

import asyncio
from typing import Mapping

from ...errors import NotFound
from ...models import RawPosition, StrategyDetails, TokenMetadata
from .adapter import StrategyContractAdapter


class StrategyRouter:
    """Multi-chain PositionSource and StrategyReader over per-chain adapters."""

    def __init__(self, adapters: Mapping[str, StrategyContractAdapter]) -> None:
        self._adapters = dict(adapters)

    def adapter(self, chain: str) -> StrategyContractAdapter:
        try:
            return self._adapters[chain]
        except KeyError:
            raise NotFound(f"No strategy adapter for chain '{chain}'") from None

    @property
    def adapters(self) -> list[StrategyContractAdapter]:
        return list(self._adapters.values())

    async def get_strategy_details(
        self, chain: str, strategy_address: str, asset_address: str
    ) -> StrategyDetails:
        return await self.adapter(chain).get_strategy_details(strategy_address, asset_address)

    async def get_token_metadata(self, chain: str, asset_address: str) -> TokenMetadata:
        return await self.adapter(chain).get_token_metadata(asset_address)

    async def fetch_positions(self, wallet_address: str) -> list[RawPosition]:
        """Positions from every chain, concatenated in configured chain order."""
        per_chain = await asyncio.gather(
            *(a.fetch_positions(wallet_address) for a in self._adapters.values())
        )
        return [position for positions in per_chain for position in positions]
