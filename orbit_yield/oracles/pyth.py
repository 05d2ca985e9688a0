"""Pyth Network price oracle service."""
import asyncio
import logging
import ssl
from decimal import Decimal
from typing import Any

import aiohttp
import certifi

from ..config import NetworkConfig, PythConfig
from ..errors import UpstreamTimeout, UpstreamUnavailable, with_retry

logger = logging.getLogger(__name__)


def _feed_key(feed_id: str) -> str:
    return str(feed_id).lower().removeprefix("0x")


def parse_price(item: dict) -> Decimal:
    """``price * 10**expo`` from one Hermes ``parsed`` entry, exactly."""
    price_data = item.get("price", {})
    return Decimal(int(price_data.get("price", 0))).scaleb(int(price_data.get("expo", 0)))


class PythOracle:
    """Fetch prices from the Pyth Hermes API.

    Symbols are matched case-insensitively against the configured feeds.
    Several symbols may share one feed id (e.g. ETH and WETH).
    """

    def __init__(self, config: PythConfig, network: NetworkConfig | None = None) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = {symbol.upper(): _feed_key(feed) for symbol, feed in config.feeds.items()}
        self.network = network or NetworkConfig(max_retries=0)

    def _feeds_for(self, symbols: list[str] | None) -> dict[str, list[str]]:
        """feed id -> symbols it prices, restricted to ``symbols`` when given."""
        wanted = None if symbols is None else {s.upper() for s in symbols}
        by_feed: dict[str, list[str]] = {}
        for symbol, feed in self.price_feeds.items():
            if wanted is None or symbol in wanted:
                by_feed.setdefault(feed, []).append(symbol)
        return by_feed

    async def _request(self, params: list[tuple[str, str]]) -> dict[str, Any]:
        timeout = self.network.call_timeout
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    self.hermes_url,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=timeout),
                ) as response:
                    if response.status != 200:
                        raise UpstreamUnavailable(
                            f"Pyth Hermes returned HTTP {response.status}",
                            details={"status": response.status},
                        )
                    return await response.json()
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout(f"Pyth Hermes timed out after {timeout:g}s") from e
        except aiohttp.ClientError as e:
            raise UpstreamUnavailable(f"Pyth Hermes request failed: {e}") from e

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, Decimal]:
        """Fetch current prices, one Hermes request for all requested feeds.

        Symbols without a configured feed, or missing from the response, are
        simply absent. Raises UpstreamUnavailable / UpstreamTimeout when
        Hermes cannot be reached or answers with an error after retries.
        """
        by_feed = self._feeds_for(symbols)
        if not by_feed:
            return {}

        params = [("ids[]", feed) for feed in sorted(by_feed)]
        data = await with_retry(
            lambda: self._request(params),
            timeout=self.network.call_timeout,
            max_retries=self.network.max_retries,
            backoff_base=self.network.backoff_base,
            label="Pyth price lookup",
        )

        prices: dict[str, Decimal] = {}
        for item in data.get("parsed", []):
            for symbol in by_feed.get(_feed_key(item.get("id", "")), []):
                prices[symbol] = parse_price(item)

        logger.info("Fetched %d prices from Pyth Network", len(prices))
        for symbol, price in sorted(prices.items()):
            logger.debug("  %s: $%s", symbol, price)
        return prices
