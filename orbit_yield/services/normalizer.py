"""Decimal-aware valuation of raw on-chain amounts."""
from __future__ import annotations

import logging
from decimal import Context, Decimal
from typing import Iterable, Mapping, Sequence

from ..chains import ChainRegistry
from ..errors import InvalidArgument
from ..interfaces.price_oracle import PriceOracle
from ..models import PRICE_UNAVAILABLE, NormalizedValue, ValuationWarning

logger = logging.getLogger(__name__)

# Wide enough that an 18-decimal uint256 times a price never rounds.
_MONEY = Context(prec=100)

FALLBACK_PRICE = Decimal(1)


def to_decimal(raw_amount: str, decimals: int) -> Decimal:
    """Exact ``raw_amount / 10**decimals``.

    >>> to_decimal("1000000", 6)
    Decimal('1.000000')
    """
    if decimals < 0:
        raise InvalidArgument(f"decimals must be non-negative, got {decimals}")
    if not isinstance(raw_amount, str) or not (raw_amount.isascii() and raw_amount.isdigit()):
        raise InvalidArgument(
            f"raw amount must be a non-negative integer string, got {raw_amount!r}"
        )
    # String construction is exact regardless of context precision.
    return Decimal(f"{int(raw_amount)}E-{decimals}")


class ValuationNormalizer:
    """Turns (raw amount, decimals, symbol) into a quantity and a reference value.

    Prices come from the injected oracle on every call. A symbol without a
    price is valued at :data:`FALLBACK_PRICE` and carries a
    ``PriceUnavailable`` warning.
    """

    def __init__(
        self,
        oracle: PriceOracle,
        chains: ChainRegistry,
        aliases: Mapping[str, str] | None = None,
    ) -> None:
        self._oracle = oracle
        self._chains = chains
        self._aliases = {k.upper(): v.upper() for k, v in (aliases or {}).items()}

    def _lookup_symbols(self, symbols: Iterable[str]) -> list[str]:
        wanted: set[str] = set()
        for symbol in symbols:
            upper = symbol.upper()
            wanted.add(upper)
            if upper in self._aliases:
                wanted.add(self._aliases[upper])
        return sorted(wanted)

    async def fetch_prices(self, symbols: Iterable[str]) -> dict[str, Decimal]:
        """Prices for ``symbols`` (and their aliases); empty on oracle failure."""
        wanted = self._lookup_symbols(symbols)
        if not wanted:
            return {}
        try:
            prices = await self._oracle.fetch_prices(wanted)
        except Exception as e:
            logger.warning("Price lookup failed for %s: %s", ", ".join(wanted), e)
            return {}
        return {symbol.upper(): Decimal(price) for symbol, price in prices.items()}

    def resolve_price(self, prices: Mapping[str, Decimal], symbol: str) -> Decimal | None:
        upper = symbol.upper()
        price = prices.get(upper)
        if price is None and upper in self._aliases:
            price = prices.get(self._aliases[upper])
        return price

    def value(
        self,
        prices: Mapping[str, Decimal],
        raw_amount: str,
        decimals: int,
        symbol: str,
    ) -> NormalizedValue:
        """Normalize against an already-fetched price table. No I/O."""
        formatted = to_decimal(raw_amount, decimals)
        price = self.resolve_price(prices, symbol)
        warnings: tuple[ValuationWarning, ...] = ()
        if price is None:
            price = FALLBACK_PRICE
            warnings = (
                ValuationWarning(
                    kind=PRICE_UNAVAILABLE,
                    message=f"No price for {symbol}; valued at {FALLBACK_PRICE}",
                    subject=symbol,
                ),
            )
        return NormalizedValue(
            formatted_amount=formatted,
            reference_value=_MONEY.multiply(formatted, price),
            price=price,
            warnings=warnings,
        )

    async def normalize(self, raw_amount: str, decimals: int, symbol: str) -> NormalizedValue:
        prices = await self.fetch_prices([symbol])
        result = self.value(prices, raw_amount, decimals, symbol)
        if result.warnings:
            logger.warning("Price unavailable for %s, using fallback", symbol)
        return result

    async def normalize_batch(
        self, items: Sequence[tuple[str, int, str]]
    ) -> list[NormalizedValue]:
        """Normalize many (raw_amount, decimals, symbol) items with one price fetch."""
        prices = await self.fetch_prices(symbol for _, _, symbol in items)
        results = [self.value(prices, raw, decimals, symbol) for raw, decimals, symbol in items]
        missing = sorted({w.subject for r in results for w in r.warnings})
        if missing:
            logger.warning("Prices unavailable for %s, using fallback", ", ".join(missing))
        return results

    async def native_value(self, chain_id: str, raw_amount: str) -> NormalizedValue:
        """Value an amount of a chain's native currency."""
        chain = self._chains.get(chain_id)
        return await self.normalize(raw_amount, chain.native_decimals, chain.native_symbol)
