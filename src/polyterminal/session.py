"""Client session: owns every component and the background tasks."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .backend_client import BackendClient
from .cache import TerminalCache
from .catalog import MarketCatalog
from .config import TerminalConfig
from .errors import BackendError, StreamError
from .ledger import TradeLedger
from .poller import SnapshotPoller
from .reconnect import ReconnectController
from .stream import Connector, TradeStreamClient, connect_websocket
from .subscription import SubscriptionManager
from .types import (
    ConnectionStatus, HealthState, Market, Orderbook, Side, Trade, TradeStats,
)
from .util import now_ms

logger = logging.getLogger(__name__)


class TerminalSession:
    """
    Live feed synchronization for one terminal view.

    Component graph:
    MarketCatalog -> (selected market) -+-> SubscriptionManager -> TradeStreamClient
                                        +-> SnapshotPoller (2s)
    TradeStreamClient pushes ---+
    SnapshotPoller seed --------+-> TradeLedger -> stats

    All state lives on this object; `start()`/`stop()` (or `async with`)
    bound the lifetime of the channel, the poll loop and the HTTP session.
    """

    def __init__(
        self,
        config: TerminalConfig,
        backend: Optional[BackendClient] = None,
        connector: Connector = connect_websocket,
        cache: Optional[TerminalCache] = None,
        on_trade: Optional[Callable[[Trade], Awaitable[None]]] = None,
    ):
        """
        Initialize the session.

        Args:
            config: Client configuration
            backend: Backend client (built from config when omitted)
            connector: Coroutine opening the stream channel
            cache: TTL cache (built from config when omitted)
            on_trade: Callback for each live trade accepted into the ledger
        """
        self.config = config

        self.backend = backend or BackendClient(
            functions_url=config.functions_url,
            api_key=config.backend_api_key,
            events_function=config.events_function,
            snapshot_function=config.snapshot_function,
            ws_url_function=config.ws_url_function,
            timeout_seconds=config.request_timeout_seconds,
        )
        self.cache = cache or TerminalCache(
            markets_ttl_ms=config.markets_cache_ttl_ms,
            data_ttl_ms=config.data_cache_ttl_ms,
        )
        self.ledger = TradeLedger(capacity=config.effective_ledger_capacity)

        self.catalog = MarketCatalog(
            backend=self.backend,
            cache=self.cache,
            batch_size=config.catalog_batch_size,
            order=config.catalog_order,
            ascending=config.catalog_ascending,
        )
        self.controller = ReconnectController(
            base_delay_ms=config.reconnect_base_delay_ms,
            max_delay_ms=config.reconnect_max_delay_ms,
            max_attempts=config.max_reconnect_attempts,
        )
        whale_threshold_usd = config.whale_threshold_usd if config.whale_only else None

        self.subscriptions = SubscriptionManager(
            ledger=self.ledger,
            platform=config.stream_platform,
            version=config.stream_version,
            whale_threshold_usd=whale_threshold_usd,
            on_trade=on_trade,
        )
        self.stream = TradeStreamClient(
            controller=self.controller,
            subscriptions=self.subscriptions,
            url_resolver=self._resolve_stream_url,
            connector=connector,
        )
        self.poller = SnapshotPoller(
            backend=self.backend,
            ledger=self.ledger,
            market_provider=lambda: self._selected,
            cache=self.cache,
            interval_ms=config.poll_interval_ms,
            live_connected=lambda: self.stream.connected,
            whale_threshold_usd=whale_threshold_usd,
        )

        self._selected: Optional[Market] = None
        self._stream_url: Optional[str] = config.stream_url or None
        self._enabled = True
        self._started = False

        self._shutdown_event = asyncio.Event()
        self._poll_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    # ============== Lifecycle ==============

    async def __aenter__(self) -> "TerminalSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def started(self) -> bool:
        return self._started

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def start(self) -> None:
        """Load the catalog, select a market and start the live feeds."""
        if self._started:
            logger.warning("Session already started")
            return

        logger.info("Starting terminal session...")
        self._started = True
        self._shutdown_event.clear()

        markets = await self.catalog.load_initial()

        if self._selected is None and markets:
            await self.select_market(markets[0])
        elif self._selected is not None:
            await self.select_market(self._selected, force=True)

        self._schedule_prefetch(markets)

        if self._enabled:
            self._start_live()

        logger.info("Terminal session started")

    async def stop(self) -> None:
        """Release the channel, the retry timer, the poll loop and the HTTP session."""
        if not self._started:
            return

        logger.info("Stopping terminal session...")
        self._shutdown_event.set()
        await self._stop_live()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        await self.backend.close()
        self._started = False
        logger.info("Terminal session stopped")

    async def set_enabled(self, enabled: bool) -> None:
        """Enable or disable live feeds; disabling closes the channel."""
        if enabled == self._enabled:
            return
        self._enabled = enabled
        if not self._started:
            return
        if enabled:
            self._start_live()
        else:
            await self._stop_live()

    def _start_live(self) -> None:
        self.stream.connect()
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(
                self.poller.run(self._shutdown_event),
                name="snapshot_poller",
            )

    async def _stop_live(self) -> None:
        self.poller.stop()
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            await asyncio.gather(self._poll_task, return_exceptions=True)
        self._poll_task = None
        await self.stream.close()

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task {task.get_name()} failed: {task.exception()}")

    def _schedule_prefetch(self, markets: list[Market]) -> None:
        to_prefetch = markets[1:self.config.prefetch_count]
        if not to_prefetch:
            return
        logger.info(f"Prefetching data for {len(to_prefetch)} markets")
        self._spawn(
            self.cache.prefetch(to_prefetch, self.poller.fetch_market_data),
            name="prefetch",
        )

    async def _resolve_stream_url(self) -> str:
        if self._stream_url is None:
            try:
                self._stream_url = await self.backend.get_stream_url()
            except BackendError as e:
                raise StreamError(f"Could not resolve stream URL: {e}") from e
            logger.info("Resolved trade stream URL")
        return self._stream_url

    # ============== Operations ==============

    async def select_market(self, market: Optional[Market], force: bool = False) -> None:
        """
        Switch the selected market.

        The ledger is cleared and in-flight snapshots invalidated before the
        new subscription filter is sent and the new snapshot requested, so no
        trade of the previous market can appear after the switch.

        Args:
            market: Market to select (None follows all trades)
            force: Reset even if the slug did not change
        """
        previous = self._selected
        self._selected = market

        same_slug = (
            previous is not None and market is not None and previous.slug == market.slug
        )
        if same_slug and not force:
            return

        logger.info(f"Selected market: {market.slug if market else '<all>'}")

        self.ledger.clear()
        self.subscriptions.drop_queued()
        self.subscriptions.set_market(market)
        self.poller.reset_for_market()

        await self.stream.update_market(market)

        # Without a running poll loop, its first pass on start or enable fetches
        if market is not None and self._poll_task is not None and not self._poll_task.done():
            self._spawn(self.poller.fetch_once(), name="snapshot_fetch")

    async def select_market_by_slug(self, slug: str) -> bool:
        """Select a catalog market by outcome slug."""
        market = self.catalog.find_by_slug(slug)
        if market is None:
            logger.warning(f"Market not in catalog: {slug}")
            return False
        await self.select_market(market)
        return True

    async def load_more_markets(self) -> list[Market]:
        """Append the next catalog page."""
        return await self.catalog.load_more()

    async def reconnect(self) -> bool:
        """Manual reconnect: reset backoff, reopen the channel, refresh the snapshot."""
        started = await self.stream.reconnect()
        if self._selected is not None:
            self._spawn(self.poller.fetch_once(), name="snapshot_fetch")
        return started

    async def retry_fetch(self) -> bool:
        """Clear the fetch error and fetch the snapshot now."""
        self.poller.clear_error()
        if self._selected is None:
            return False
        return await self.poller.fetch_once()

    def pause_live(self) -> None:
        """Queue pushed trades instead of showing them."""
        self.subscriptions.pause()

    def resume_live(self) -> int:
        """Merge queued trades and resume."""
        return self.subscriptions.resume()

    def set_polling_paused(self, paused: bool) -> None:
        """Suspend polling (e.g. view hidden) without closing the stream."""
        self.poller.set_paused(paused)

    # ============== State ==============

    @property
    def markets(self) -> list[Market]:
        return self.catalog.markets

    @property
    def selected_market(self) -> Optional[Market]:
        return self._selected

    @property
    def trades(self) -> list[Trade]:
        return self.ledger.trades

    @property
    def orderbook(self) -> Optional[Orderbook]:
        return self.poller.orderbook

    @property
    def stats(self) -> TradeStats:
        return self.ledger.stats()

    @property
    def status(self) -> ConnectionStatus:
        return self.controller.status

    @property
    def connected(self) -> bool:
        return self.controller.status == ConnectionStatus.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        return self.controller.attempts

    @property
    def error(self) -> Optional[str]:
        """Catalog or connection error, whichever is set."""
        return self.catalog.error or self.controller.error

    @property
    def fetch_error(self) -> Optional[str]:
        return self.poller.fetch_error

    @property
    def loading(self) -> bool:
        return self.catalog.loading

    @property
    def loading_market_data(self) -> bool:
        return self.poller.loading

    @property
    def loading_more(self) -> bool:
        return self.catalog.loading_more

    @property
    def has_more(self) -> bool:
        return self.catalog.has_more

    @property
    def last_message_ms(self) -> Optional[int]:
        return self.subscriptions.last_message_ms

    @property
    def last_update_ms(self) -> Optional[int]:
        return self.poller.last_update_ms

    @property
    def queued_count(self) -> int:
        return self.subscriptions.queued_count

    def filtered_trades(self, side: Optional[Side] = None) -> list[Trade]:
        """Ledger trades, optionally restricted to one side."""
        trades = self.ledger.trades
        if side is None:
            return trades
        return [t for t in trades if t.side == side]

    def whale_trades(self) -> list[Trade]:
        threshold = self.config.whale_threshold_usd
        return [t for t in self.ledger.trades if t.is_whale(threshold)]

    def health(self) -> HealthState:
        """Connection health snapshot for status display."""
        last_ms = self.last_message_ms
        seconds_since = (now_ms() - last_ms) / 1000.0 if last_ms is not None else None
        return HealthState(
            status=self.controller.status,
            reconnect_attempts=self.controller.attempts,
            last_message_ms=last_ms,
            seconds_since_message=seconds_since,
            stale=seconds_since is not None and seconds_since > self.config.stale_after_seconds,
            error=self.controller.error or self.subscriptions.last_error,
            subscription_id=self.subscriptions.subscription_id,
        )
