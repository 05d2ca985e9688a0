"""Opportunity, position and strategy-metadata sources."""
from typing import Protocol

from ..models import Opportunity, RawPosition, StrategyDetails, TokenMetadata


class OpportunitySource(Protocol):
    """Produces the opportunities of one discovery cycle."""

    async def fetch_opportunities(self) -> list[Opportunity]: ...


class PositionSource(Protocol):
    """Reports the raw on-chain positions held by a wallet."""

    async def fetch_positions(self, wallet_address: str) -> list[RawPosition]: ...


class StrategyReader(Protocol):
    """Read access to strategy and token contracts."""

    async def get_strategy_details(
        self, chain: str, strategy_address: str, asset_address: str
    ) -> StrategyDetails: ...

    async def get_token_metadata(self, chain: str, asset_address: str) -> TokenMetadata: ...
