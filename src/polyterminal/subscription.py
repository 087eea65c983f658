"""Trade stream subscription management."""

import logging
from collections import deque
from typing import Awaitable, Callable, Optional, Protocol

from .ledger import TradeLedger
from .messages import (
    AckMessage,
    ErrorMessage,
    TradeEventMessage,
    build_subscribe,
    build_update,
    parse_message,
)
from .types import Market, SubscriptionFilter, Trade
from .util import now_ms

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """The part of a WebSocket connection the manager needs."""

    async def send(self, message: str) -> None: ...


class SubscriptionManager:
    """
    Keeps the server-side trade filter in line with the selected market.

    - First sync on a channel sends `subscribe`; once acked, later syncs send
      `update` with the stored subscription id.
    - Pushed trades are filtered locally against the current market, since a
      stale subscription can still deliver old-market events, then merged
      into the ledger.
    """

    def __init__(
        self,
        ledger: TradeLedger,
        platform: str = "polymarket",
        version: int = 1,
        whale_threshold_usd: Optional[float] = None,
        on_trade: Optional[Callable[[Trade], Awaitable[None]]] = None,
    ):
        """
        Initialize the manager.

        Args:
            ledger: Ledger pushed trades are merged into
            platform: Stream platform field
            version: Stream protocol version
            whale_threshold_usd: When set, drop pushes below this notional
            on_trade: Callback for every trade accepted into the ledger
        """
        self._ledger = ledger
        self._platform = platform
        self._version = version
        self._whale_threshold_usd = whale_threshold_usd
        self._on_trade = on_trade

        self._market: Optional[Market] = None
        self._subscription_id: Optional[str] = None
        self._filter: Optional[SubscriptionFilter] = None
        self._last_message_ms: Optional[int] = None
        self._last_error: Optional[str] = None

        self._paused = False
        # Newest first, bounded like the ledger it drains into
        self._paused_trades: deque[Trade] = deque(maxlen=ledger.capacity)
        self._queued_ids: set[str] = set()

    @property
    def subscription_id(self) -> Optional[str]:
        return self._subscription_id

    @property
    def current_filter(self) -> Optional[SubscriptionFilter]:
        """Filter most recently sent to the server."""
        return self._filter

    @property
    def market(self) -> Optional[Market]:
        return self._market

    @property
    def last_message_ms(self) -> Optional[int]:
        return self._last_message_ms

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def queued_count(self) -> int:
        """Trades held back while paused."""
        return len(self._paused_trades)

    def set_market(self, market: Optional[Market]) -> None:
        """Change the market used by the local filter."""
        self._market = market

    def reset(self) -> None:
        """Forget the subscription id (channel closed; ids are per-connection)."""
        self._subscription_id = None
        self._filter = None

    async def sync(self, channel: Optional[Channel], market: Optional[Market]) -> bool:
        """
        Subscribe or update the filter for a market.

        Args:
            channel: Open channel, or None when not connected
            market: Market to follow (None = all trades)

        Returns:
            True if a message was sent
        """
        self._market = market
        stream_filter = SubscriptionFilter.for_market(market)

        if channel is None:
            return False

        if self._subscription_id:
            message = build_update(self._subscription_id, stream_filter, self._platform, self._version)
            action = "update"
        else:
            message = build_subscribe(stream_filter, self._platform, self._version)
            action = "subscribe"

        await channel.send(message)
        self._filter = stream_filter
        logger.info(f"Sent {action} filters={stream_filter.to_dict()}")
        return True

    def matches_market(self, trade: Trade) -> bool:
        """Local filter: trade belongs to the current market (or no market selected)."""
        market = self._market
        if market is None:
            return True
        if market.slug and trade.market_slug == market.slug:
            return True
        if market.condition_id and trade.condition_id == market.condition_id:
            return True
        return False

    async def handle_raw(self, raw) -> Optional[Trade]:
        """
        Process one raw frame from the channel.

        Args:
            raw: Text or binary frame

        Returns:
            The trade inserted into the ledger, if any
        """
        self._last_message_ms = now_ms()

        message = parse_message(raw)
        if message is None:
            return None

        if isinstance(message, AckMessage):
            self._subscription_id = message.subscription_id
            logger.info(f"Subscription confirmed: {message.subscription_id}")
            return None

        if isinstance(message, ErrorMessage):
            self._last_error = message.message
            logger.warning(f"Stream error: {message.message}")
            return None

        if isinstance(message, TradeEventMessage):
            return await self._accept_trade(message.trade)

        return None

    async def _accept_trade(self, trade: Trade) -> Optional[Trade]:
        if not self.matches_market(trade):
            logger.debug(f"Dropping trade for {trade.market_slug} (not current market)")
            return None

        if self._whale_threshold_usd is not None and not trade.is_whale(self._whale_threshold_usd):
            return None

        if self._paused:
            self._queue(trade)
            return None

        if not self._ledger.add(trade):
            return None

        if self._on_trade:
            try:
                await self._on_trade(trade)
            except Exception as e:
                logger.warning(f"Error in trade callback: {e}")

        return trade

    def _queue(self, trade: Trade) -> None:
        if trade.id in self._ledger or trade.id in self._queued_ids:
            return
        if len(self._paused_trades) == self._paused_trades.maxlen:
            self._queued_ids.discard(self._paused_trades[-1].id)
        self._paused_trades.appendleft(trade)
        self._queued_ids.add(trade.id)

    def pause(self) -> None:
        """Hold pushed trades back instead of merging them."""
        self._paused = True

    def resume(self) -> int:
        """
        Merge trades queued while paused and resume live merging.

        Returns:
            Number of queued trades inserted
        """
        self._paused = False
        queued = [t for t in self._paused_trades if self.matches_market(t)]
        self.drop_queued()
        return self._ledger.merge(queued)

    def drop_queued(self) -> None:
        """Discard trades queued while paused (market switch)."""
        self._paused_trades.clear()
        self._queued_ids.clear()
