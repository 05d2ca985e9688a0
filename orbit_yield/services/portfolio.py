"""Portfolio aggregation: positions enriched with metadata, prices and totals."""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Sequence

from .. import rate_math
from ..errors import OrbitYieldError
from ..interfaces.sources import PositionSource, StrategyReader
from ..models import (
    BPS_DENOMINATOR,
    PARTIAL_ENRICHMENT_FAILURE,
    AllocationSlice,
    EnrichedPosition,
    Portfolio,
    RawPosition,
    StrategyDetails,
    TokenMetadata,
    ValuationWarning,
)
from .lifecycle import PositionLifecycleManager
from .normalizer import ValuationNormalizer
from .opportunity_registry import OpportunityRegistry

logger = logging.getLogger(__name__)


def _failed(position: RawPosition, error: BaseException) -> EnrichedPosition:
    return EnrichedPosition(
        position=position,
        error=ValuationWarning(
            kind=PARTIAL_ENRICHMENT_FAILURE,
            message=str(error) or type(error).__name__,
            subject=f"{position.chain}:{position.strategy_address}",
        ),
    )


def summarize(wallet_address: str, positions: Sequence[EnrichedPosition]) -> Portfolio:
    """Totals and allocation over the complete positions. Pure."""
    total_value = Decimal(0)
    total_yield = Decimal(0)
    by_symbol: dict[str, Decimal] = {}
    warnings: list[ValuationWarning] = []
    omitted = 0

    for item in positions:
        if not item.is_complete:
            omitted += 1
            if item.error is not None:
                warnings.append(item.error)
            continue
        value = item.value.reference_value
        total_value += value
        total_yield += value * Decimal(item.details.apy) / BPS_DENOMINATOR
        symbol = item.token.symbol if item.token else ""
        by_symbol[symbol] = by_symbol.get(symbol, Decimal(0)) + value
        for warning in item.warnings:
            if warning not in warnings:
                warnings.append(warning)

    allocation = {
        symbol: AllocationSlice(
            value=value,
            percentage=value / total_value * 100 if total_value else Decimal(0),
        )
        for symbol, value in by_symbol.items()
    }
    return Portfolio(
        wallet_address=wallet_address,
        positions=tuple(positions),
        total_value=total_value,
        total_annual_yield=total_yield,
        allocation=allocation,
        omitted=omitted,
        warnings=tuple(warnings),
    )


class PortfolioAggregator:
    """Builds a wallet's Portfolio and routes withdraw/claim through the lifecycle."""

    def __init__(
        self,
        positions: PositionSource,
        reader: StrategyReader,
        registry: OpportunityRegistry,
        normalizer: ValuationNormalizer,
        lifecycle: PositionLifecycleManager,
    ) -> None:
        self._positions = positions
        self._reader = reader
        self._registry = registry
        self._normalizer = normalizer
        self._lifecycle = lifecycle

    async def _read_metadata(self, position: RawPosition) -> tuple[StrategyDetails, TokenMetadata]:
        details, token = await asyncio.gather(
            self._reader.get_strategy_details(
                position.chain, position.strategy_address, position.asset_address
            ),
            self._reader.get_token_metadata(position.chain, position.asset_address),
        )
        return details, token

    async def _load_opportunities(self) -> None:
        try:
            await self._registry.refresh()
        except OrbitYieldError as e:
            logger.warning("Opportunity discovery failed, using last snapshot for bridge flags: %s", e)

    def _bridge_for(self, position: RawPosition) -> str:
        opportunity = self._registry.find_by_strategy(
            position.chain, position.strategy_address, position.asset_address
        )
        return opportunity.bridge if opportunity else ""

    async def load_portfolio(self, wallet_address: str) -> Portfolio:
        wallet = wallet_address.lower()
        raw_positions = await self._positions.fetch_positions(wallet)
        if not raw_positions:
            return summarize(wallet, [])

        metadata, _ = await asyncio.gather(
            asyncio.gather(
                *(self._read_metadata(p) for p in raw_positions), return_exceptions=True
            ),
            self._load_opportunities(),
        )

        symbols = [meta[1].symbol for meta in metadata if not isinstance(meta, BaseException)]
        prices = await self._normalizer.fetch_prices(symbols)

        enriched: list[EnrichedPosition] = []
        for position, meta in zip(raw_positions, metadata):
            if isinstance(meta, asyncio.CancelledError):
                raise meta
            if isinstance(meta, BaseException):
                logger.warning(
                    "Could not enrich position %s on %s: %s",
                    position.strategy_address,
                    position.chain,
                    meta,
                )
                enriched.append(_failed(position, meta))
                continue

            details, token = meta
            try:
                value = self._normalizer.value(
                    prices, position.amount, token.decimals, token.symbol
                )
            except OrbitYieldError as e:
                logger.warning("Could not value position %s: %s", position.strategy_address, e)
                enriched.append(_failed(position, e))
                continue

            enriched.append(
                EnrichedPosition(
                    position=position,
                    details=details,
                    token=token,
                    value=value,
                    bridge=self._bridge_for(position),
                    warnings=value.warnings,
                )
            )

        portfolio = summarize(wallet, enriched)
        if portfolio.omitted:
            logger.warning(
                "Portfolio for %s is partial: %d of %d positions omitted",
                wallet,
                portfolio.omitted,
                len(enriched),
            )
        return portfolio

    async def withdraw(
        self, position: EnrichedPosition, amount: str | int | None = None
    ) -> Portfolio:
        """Withdraw through the position's bridge (if any), then reload."""
        raw = position.position
        bridge = position.bridge or self._bridge_for(raw)
        await self._lifecycle.withdraw(raw, amount, bridge=bridge or None)
        return await self.load_portfolio(raw.owner)

    async def claim_rewards(self, position: EnrichedPosition) -> Portfolio:
        await self._lifecycle.claim(position.position)
        return await self.load_portfolio(position.position.owner)

    def estimate_earnings(self, portfolio: Portfolio, duration_days: float) -> Decimal:
        """Projected earnings of the complete positions over ``duration_days``."""
        total = Decimal(0)
        for item in portfolio.positions:
            if not item.is_complete:
                continue
            factor = rate_math.earnings_factor(
                rate_math.bps_to_percent(item.details.apy), duration_days
            )
            total += item.value.reference_value * factor
        return total
