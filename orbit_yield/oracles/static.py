"""Fixed price table, for stablecoin-only deployments, testnets and tests."""
from __future__ import annotations

from decimal import Decimal
from typing import Mapping


class StaticPriceOracle:
    def __init__(self, prices: Mapping[str, Decimal]) -> None:
        self._prices = {symbol.upper(): Decimal(price) for symbol, price in prices.items()}

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, Decimal]:
        if symbols is None:
            return dict(self._prices)
        wanted = {s.upper() for s in symbols}
        return {s: p for s, p in self._prices.items() if s in wanted}
