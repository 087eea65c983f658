"""Orderbook + recent trades snapshot poller with stale-response suppression."""

import asyncio
import logging
from time import time_ns
from typing import Callable, Optional

from .backend_client import BackendClient
from .cache import TerminalCache
from .errors import BackendError, MalformedResponseError
from .ledger import TradeLedger
from .orderbook import build_orderbook, parse_snapshot_trades
from .types import Market, MarketData, Orderbook
from .util import now_ms

logger = logging.getLogger(__name__)


class SnapshotPoller:
    """
    Polls the snapshot backend for the selected market.

    Every request captures a value of a monotonically increasing request
    counter. A response whose captured value is no longer current (a newer
    request was issued, or the market was switched) is dropped without
    touching state.
    """

    def __init__(
        self,
        backend: BackendClient,
        ledger: TradeLedger,
        market_provider: Callable[[], Optional[Market]],
        cache: Optional[TerminalCache] = None,
        interval_ms: int = 2000,
        live_connected: Optional[Callable[[], bool]] = None,
        whale_threshold_usd: Optional[float] = None,
    ):
        """
        Initialize the poller.

        Args:
            backend: Backend client
            ledger: Ledger seeded from snapshot trades
            market_provider: Returns the currently selected market
            cache: Optional per-market data cache
            interval_ms: Poll interval
            live_connected: Returns True while the live stream is connected;
                while it is not, later snapshots merge their unseen trades
            whale_threshold_usd: When set, snapshot trades below this
                notional never enter the ledger
        """
        self._backend = backend
        self._ledger = ledger
        self._market_provider = market_provider
        self._cache = cache
        self.interval_ms = interval_ms
        self._live_connected = live_connected or (lambda: False)
        self._whale_threshold_usd = whale_threshold_usd

        self._request_id = 0
        self._last_seeded_slug: Optional[str] = None
        self._first_fetch = True

        self._orderbook: Optional[Orderbook] = None
        self._last_update_ms: Optional[int] = None
        self._fetch_error: Optional[str] = None
        self._loading = False

        self._running = False
        self._paused = False

    @property
    def request_id(self) -> int:
        return self._request_id

    @property
    def orderbook(self) -> Optional[Orderbook]:
        return self._orderbook

    @property
    def last_update_ms(self) -> Optional[int]:
        return self._last_update_ms

    @property
    def fetch_error(self) -> Optional[str]:
        return self._fetch_error

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def last_seeded_slug(self) -> Optional[str]:
        return self._last_seeded_slug

    @property
    def paused(self) -> bool:
        return self._paused

    def set_paused(self, paused: bool) -> None:
        """Suspend or resume the poll loop without stopping it."""
        self._paused = paused

    def clear_error(self) -> None:
        self._fetch_error = None

    def invalidate(self) -> int:
        """
        Advance the request counter without issuing a request.

        Any response still in flight becomes stale.
        """
        self._request_id += 1
        return self._request_id

    def reset_for_market(self) -> None:
        """Market switch: drop the orderbook, invalidate in-flight requests, re-arm seeding."""
        self.invalidate()
        self._orderbook = None
        self._fetch_error = None
        self._last_seeded_slug = None
        self._first_fetch = True
        # Only a market with a snapshot URL will ever be fetched
        market = self._market_provider()
        self._loading = market is not None and bool(market.market_url)

    async def fetch_market_data(self, market: Market) -> Optional[MarketData]:
        """
        Fetch and normalize a snapshot for any market (no state changes).

        Returns:
            MarketData, or None on failure
        """
        if not market.market_url:
            return None

        try:
            return await self._request(market)
        except BackendError as e:
            logger.warning(f"Failed to fetch data for {market.slug}: {e}")
            return None

    async def _request(self, market: Market) -> MarketData:
        data = await self._backend.get_market_snapshot(
            market.market_url,
            yes_token_id=market.yes_token_id,
            no_token_id=market.no_token_id,
        )
        return MarketData(
            orderbook=build_orderbook(data.get("orderbook"), market.yes_price),
            trades=tuple(parse_snapshot_trades(data.get("recentTrades"), market)),
        )

    def _apply_cached(self, market: Market) -> bool:
        if self._cache is None:
            return False
        cached = self._cache.get_market_data(market.slug)
        if cached is None:
            return False
        logger.info(f"Using cached data for instant load: {market.slug}")
        self._orderbook = cached.orderbook
        self._seed(market, cached.trades)
        self._loading = False
        return True

    def _admit(self, trades) -> list:
        if self._whale_threshold_usd is None:
            return list(trades)
        return [t for t in trades if t.is_whale(self._whale_threshold_usd)]

    def _seed(self, market: Market, trades) -> None:
        if self._last_seeded_slug == market.slug:
            return
        inserted = self._ledger.merge(self._admit(trades), seed=True)
        self._last_seeded_slug = market.slug
        logger.info(f"Seeded {inserted} trades for {market.slug}")

    async def fetch_once(self) -> bool:
        """
        Fetch one snapshot for the selected market.

        Returns:
            True if the response was applied, False if there was nothing to
            do, the request failed, or the response was stale
        """
        market = self._market_provider()
        if market is None or not market.market_url:
            return False

        self._request_id += 1
        current_request_id = self._request_id

        if self._first_fetch:
            self._first_fetch = False
            if not self._apply_cached(market):
                self._loading = True

        try:
            result = await self._request(market)
        except MalformedResponseError as e:
            if current_request_id == self._request_id:
                logger.warning(f"Malformed snapshot for {market.slug}: {e}")
                self._orderbook = None
                self._loading = False
            return False
        except BackendError as e:
            if current_request_id == self._request_id:
                logger.warning(f"Failed to fetch market data for {market.slug}: {e}")
                self._fetch_error = "Failed to load market data"
                self._loading = False
            return False

        if current_request_id != self._request_id:
            logger.debug(f"Discarding stale response for {market.slug}")
            return False

        self._orderbook = result.orderbook
        self._fetch_error = None
        self._loading = False
        self._last_update_ms = now_ms()

        if self._last_seeded_slug != market.slug:
            self._seed(market, result.trades)
        elif not self._live_connected():
            merged = self._merge_fallback(result.trades)
            if merged:
                logger.debug(f"Merged {merged} snapshot trades while stream is down")

        if self._cache:
            self._cache.set_market_data(market.slug, result)

        return True

    def _merge_fallback(self, trades) -> int:
        """Merge unseen snapshot trades newer than the ledger head."""
        head = self._ledger.trades[:1]
        newest_ts = head[0].timestamp if head else 0
        fresh = [t for t in self._admit(trades) if t.timestamp >= newest_ts and t.id not in self._ledger]
        return self._ledger.merge(fresh)

    async def run(self, shutdown_event: Optional[asyncio.Event] = None) -> None:
        """
        Main polling loop.

        Fetches at the configured interval while a market is selected and
        polling is not paused.
        """
        self._running = True
        interval_seconds = self.interval_ms / 1000.0

        logger.info(f"Snapshot poller started every {self.interval_ms}ms")

        while self._running:
            if shutdown_event and shutdown_event.is_set():
                break

            loop_start = time_ns()

            if not self._paused and self._market_provider() is not None:
                try:
                    await self.fetch_once()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Poller error: {e}")

            # Sleep to maintain rate
            elapsed_seconds = (time_ns() - loop_start) / 1_000_000_000
            sleep_seconds = max(0, interval_seconds - elapsed_seconds)

            if sleep_seconds > 0:
                await asyncio.sleep(sleep_seconds)

        logger.info("Snapshot poller stopped")

    def stop(self) -> None:
        """Stop the poller."""
        self._running = False
