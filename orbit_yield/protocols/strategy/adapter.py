"""Strategy contract adapter: reads strategy, token and position state on one chain."""
from __future__ import annotations

import asyncio
import logging

from ...config import ChainConfig, StrategyConfig
from ...errors import InvalidArgument
from ...interfaces.chain import ChainClient
from ...models import Opportunity, RawPosition, StrategyDetails, StrategyKind, TokenMetadata
from . import abi

logger = logging.getLogger(__name__)


def opportunity_id(chain: str, strategy_address: str, asset_address: str) -> str:
    return f"{chain}:{strategy_address.lower()}:{asset_address.lower()}"


def _strategy_kind(raw: str) -> StrategyKind:
    normalized = raw.strip().lower().replace("_", "-").replace(" ", "-")
    try:
        return StrategyKind(normalized)
    except ValueError:
        raise InvalidArgument(f"Unknown strategy type '{raw}'") from None


class StrategyContractAdapter:
    """Contract reads for the strategies and yield aggregator of one EVM chain."""

    def __init__(self, chain_client: ChainClient, config: ChainConfig) -> None:
        self._client = chain_client
        self._config = config
        # ERC-20 symbol/decimals never change; cache per asset.
        self._token_cache: dict[str, TokenMetadata] = {}

    @property
    def chain(self) -> str:
        return self._client.chain_id

    async def _read(self, to: str, signature: str, *args) -> bytes:
        return await self._client.call(to, abi.encode_call(signature, *args))

    async def get_strategy_details(
        self, strategy_address: str, asset_address: str
    ) -> StrategyDetails:
        type_raw, protocol_raw, apy_raw, risk_raw = await asyncio.gather(
            self._read(strategy_address, abi.STRATEGY_TYPE),
            self._read(strategy_address, abi.PROTOCOL_NAME),
            self._read(strategy_address, abi.APY, asset_address),
            self._read(strategy_address, abi.RISK_LEVEL),
        )
        return StrategyDetails(
            strategy_type=abi.decode_single("string", type_raw),
            protocol=abi.decode_single("string", protocol_raw),
            apy=abi.decode_single("uint256", apy_raw),
            risk=abi.decode_single("uint256", risk_raw),
        )

    async def get_token_metadata(self, asset_address: str) -> TokenMetadata:
        key = asset_address.lower()
        if key in self._token_cache:
            return self._token_cache[key]

        symbol_raw, decimals_raw = await asyncio.gather(
            self._read(asset_address, abi.ERC20_SYMBOL),
            self._read(asset_address, abi.ERC20_DECIMALS),
        )
        token = TokenMetadata(
            address=key,
            symbol=abi.decode_token_symbol(symbol_raw),
            decimals=abi.decode_single("uint8", decimals_raw),
        )
        self._token_cache[key] = token
        return token

    async def fetch_positions(self, wallet_address: str) -> list[RawPosition]:
        """All positions the chain's aggregator reports for ``wallet_address``."""
        if not self._config.aggregator_address:
            return []
        data = await self._read(
            self._config.aggregator_address, abi.USER_POSITIONS, wallet_address.lower()
        )
        positions = abi.decode_positions(data, wallet_address, self.chain)
        logger.info(
            "Found %d position(s) for %s on %s", len(positions), wallet_address, self.chain
        )
        return positions

    async def _read_opportunity(self, strategy: StrategyConfig) -> Opportunity:
        details, token, tvl_raw, min_raw, lockup_raw = await asyncio.gather(
            self.get_strategy_details(strategy.address, strategy.asset),
            self.get_token_metadata(strategy.asset),
            self._read(strategy.address, abi.TVL, strategy.asset),
            self._read(strategy.address, abi.MIN_DEPOSIT, strategy.asset),
            self._read(strategy.address, abi.LOCKUP_PERIOD),
        )
        return Opportunity(
            id=opportunity_id(self.chain, strategy.address, strategy.asset),
            strategy_address=strategy.address.lower(),
            asset_address=strategy.asset.lower(),
            asset_symbol=token.symbol,
            protocol_name=details.protocol,
            strategy_type=_strategy_kind(details.strategy_type),
            apy=details.apy,
            risk=details.risk,
            tvl=str(abi.decode_single("uint256", tvl_raw)),
            asset_decimals=token.decimals,
            min_deposit=str(abi.decode_single("uint256", min_raw)),
            lockup_period=abi.decode_single("uint256", lockup_raw),
            chain=self.chain,
            name=strategy.name,
            sponsored_gas=strategy.sponsored_gas,
            oracle=strategy.oracle,
            bridge=strategy.bridge,
        )

    async def fetch_opportunities(self) -> list[Opportunity]:
        """Read every configured strategy. Any failed read fails the whole chain."""
        opportunities = await asyncio.gather(
            *(self._read_opportunity(s) for s in self._config.strategies)
        )
        logger.info("Discovered %d opportunities on %s", len(opportunities), self.chain)
        return list(opportunities)
