"""
In-memory TTL cache for the market list and per-market snapshot data.

- Markets list: 10 minute TTL, used for an instant catalog on start
- Market data (orderbook + trades): 30 second TTL, per market slug
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from .types import Market, MarketData
from .util import now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Entry:
    value: object
    stored_ms: int


class TerminalCache:
    """TTL cache shared by the catalog loader and the snapshot poller."""

    def __init__(
        self,
        markets_ttl_ms: int = 10 * 60 * 1000,
        data_ttl_ms: int = 30 * 1000,
        clock: Callable[[], int] = now_ms,
    ):
        self._markets_ttl_ms = markets_ttl_ms
        self._data_ttl_ms = data_ttl_ms
        self._clock = clock

        self._markets: Optional[_Entry] = None
        self._data: dict[str, _Entry] = {}

    # === Markets list ===

    def get_markets(self) -> Optional[list[Market]]:
        """Cached market list, or None if missing or expired."""
        if self._markets is None:
            return None

        age = self._clock() - self._markets.stored_ms
        if age > self._markets_ttl_ms:
            logger.debug("Markets cache expired")
            self._markets = None
            return None

        return list(self._markets.value)

    def set_markets(self, markets: Sequence[Market]) -> None:
        self._markets = _Entry(value=tuple(markets), stored_ms=self._clock())
        logger.debug(f"Cached {len(markets)} markets")

    # === Per-market data ===

    def get_market_data(self, slug: str) -> Optional[MarketData]:
        """Cached snapshot data for a market slug, or None if missing or expired."""
        entry = self._data.get(slug)
        if entry is None:
            return None

        age = self._clock() - entry.stored_ms
        if age > self._data_ttl_ms:
            logger.debug(f"Data cache expired for {slug}")
            del self._data[slug]
            return None

        return entry.value

    def set_market_data(self, slug: str, data: MarketData) -> None:
        self._data[slug] = _Entry(value=data, stored_ms=self._clock())

    # === Prefetch ===

    async def prefetch(
        self,
        markets: Sequence[Market],
        fetch: Callable[[Market], Awaitable[Optional[MarketData]]],
    ) -> int:
        """
        Fetch and cache data for several markets concurrently.

        Markets with a fresh cache entry are skipped.

        Args:
            markets: Markets to prefetch
            fetch: Coroutine returning MarketData or None on failure

        Returns:
            Number of markets successfully prefetched
        """
        async def _one(market: Market) -> bool:
            if self.get_market_data(market.slug) is not None:
                return False
            data = await fetch(market)
            if data is None:
                return False
            self.set_market_data(market.slug, data)
            return True

        results = await asyncio.gather(*(_one(m) for m in markets), return_exceptions=True)

        prefetched = 0
        for market, result in zip(markets, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to prefetch {market.slug}: {result}")
            elif result:
                prefetched += 1

        logger.info(f"Prefetched {prefetched}/{len(markets)} markets")
        return prefetched

    def clear(self) -> None:
        self._markets = None
        self._data.clear()
