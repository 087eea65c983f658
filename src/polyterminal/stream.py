"""Trade stream WebSocket client with bounded reconnection."""

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol

import websockets
from websockets.exceptions import ConnectionClosed

from .reconnect import ABNORMAL_CLOSURE, NORMAL_CLOSURE, ReconnectController
from .subscription import SubscriptionManager
from .types import ConnectionStatus, Market

logger = logging.getLogger(__name__)


class StreamConnection(Protocol):
    """Duplex channel as used by the client (a websockets connection)."""

    close_code: Optional[int]

    async def send(self, message: str) -> None: ...

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None: ...

    def __aiter__(self) -> AsyncIterator[Any]: ...


Connector = Callable[[str], Awaitable[StreamConnection]]


async def connect_websocket(url: str) -> StreamConnection:
    """Open a WebSocket to the trade stream."""
    return await websockets.connect(
        url,
        ping_interval=20,
        ping_timeout=60,
        max_size=2**20,
    )


class TradeStreamClient:
    """
    Owns the single trade stream channel.

    Connection lifecycle decisions are delegated to a ReconnectController;
    this class performs the I/O and owns the pending retry task. At most one
    channel exists at a time and `close()` always releases both the channel
    (close code 1000) and any scheduled retry.
    """

    def __init__(
        self,
        controller: ReconnectController,
        subscriptions: SubscriptionManager,
        url_resolver: Callable[[], Awaitable[str]],
        connector: Connector = connect_websocket,
    ):
        """
        Initialize the client.

        Args:
            controller: Reconnection state machine
            subscriptions: Subscription manager fed with every frame
            url_resolver: Coroutine returning the stream URL
            connector: Coroutine opening a channel for a URL
        """
        self._controller = controller
        self._subscriptions = subscriptions
        self._url_resolver = url_resolver
        self._connector = connector

        self._ws: Optional[StreamConnection] = None
        self._listen_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def controller(self) -> ReconnectController:
        return self._controller

    @property
    def status(self) -> ConnectionStatus:
        return self._controller.status

    @property
    def connected(self) -> bool:
        return self._controller.status == ConnectionStatus.CONNECTED

    @property
    def retry_pending(self) -> bool:
        """Whether a reconnect is scheduled."""
        return self._retry_task is not None and not self._retry_task.done()

    def connect(self) -> bool:
        """
        Start connecting unless a channel is open, connecting or retries ran out.

        Returns:
            True if a connection attempt was started
        """
        if not self._controller.begin_connect():
            logger.debug(f"Connect suppressed (status={self._controller.status.name})")
            return False

        self._closing = False
        self._listen_task = asyncio.create_task(self._run(), name="trade_stream")
        return True

    async def reconnect(self) -> bool:
        """
        Manual reconnect: reset attempts and connect now, ignoring backoff.

        Returns:
            True if a connection attempt was started
        """
        logger.info("Manual reconnect requested")
        await self._release()
        self._controller.reset()
        return self.connect()

    async def close(self) -> None:
        """Close the channel (code 1000) and cancel any pending retry."""
        await self._release()
        logger.info("Trade stream closed")

    async def update_market(self, market: Optional[Market]) -> None:
        """Re-issue the subscription filter for a new market."""
        channel = self._ws if self.connected else None
        try:
            await self._subscriptions.sync(channel, market)
        except ConnectionClosed as e:
            logger.warning(f"Subscription update failed, channel closed: {e}")

    async def _release(self) -> None:
        self._closing = True

        if self._retry_task and not self._retry_task.done():
            self._retry_task.cancel()
            await asyncio.gather(self._retry_task, return_exceptions=True)
        self._retry_task = None

        ws = self._ws
        if ws is not None:
            try:
                await ws.close(code=NORMAL_CLOSURE)
            except Exception as e:
                logger.debug(f"Error closing stream: {e}")

        task = self._listen_task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._listen_task = None

        self._ws = None
        self._subscriptions.reset()
        self._controller.mark_disconnected()

    async def _run(self) -> None:
        """Open one channel and pump frames until it closes."""
        try:
            url = await self._url_resolver()
            ws = await self._connector(url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Stream connect failed: {e}")
            self._controller.on_error(f"Stream connect failed: {e}")
            self._after_close(ABNORMAL_CLOSURE)
            return

        if self._closing:
            await ws.close(code=NORMAL_CLOSURE)
            return

        self._ws = ws
        self._subscriptions.reset()
        self._controller.on_open()
        logger.info("Trade stream connected")

        try:
            await self._subscriptions.sync(ws, self._subscriptions.market)
            async for raw in ws:
                await self._subscriptions.handle_raw(raw)
        except ConnectionClosed as e:
            logger.info(f"Trade stream connection closed: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Trade stream error: {e}")
            self._controller.on_error(f"Trade stream error: {e}")
        finally:
            code = ws.close_code
            self._ws = None
            self._subscriptions.reset()

        if self._closing:
            return

        logger.info(f"Trade stream disconnected (code={code})")
        self._after_close(code)

    def _after_close(self, code: Optional[int]) -> None:
        delay = self._controller.on_close(code)
        if delay is None:
            return
        self._retry_task = asyncio.create_task(self._retry_after(delay), name="trade_stream_retry")

    async def _retry_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._closing or not self._controller.begin_connect(retry=True):
            return
        self._listen_task = asyncio.create_task(self._run(), name="trade_stream")
