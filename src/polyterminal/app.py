"""Command-line runner: follows one market's live trades and logs them."""

import argparse
import asyncio
import logging
import signal
from typing import Optional

from .config import TerminalConfig
from .errors import ConfigurationError
from .session import TerminalSession
from .types import Trade
from .util import setup_logging

logger = logging.getLogger(__name__)


class TerminalApp:
    """
    Runs a TerminalSession until shutdown.

    Live trades are logged as they arrive (whales flagged); stats and
    connection health are logged every `status_interval_seconds`.
    """

    def __init__(
        self,
        config: TerminalConfig,
        market_slug: Optional[str] = None,
        status_interval_seconds: float = 10.0,
    ):
        """
        Initialize the application.

        Args:
            config: Client configuration
            market_slug: Market to follow (defaults to the first catalog entry)
            status_interval_seconds: Period of the stats log line
        """
        errors = config.validate()
        if errors:
            raise ConfigurationError("; ".join(errors))

        self.config = config
        self.market_slug = market_slug
        self.status_interval_seconds = status_interval_seconds
        self.session = TerminalSession(config, on_trade=self._on_trade)
        self._shutdown_event = asyncio.Event()

    async def _on_trade(self, trade: Trade) -> None:
        tag = "WHALE " if trade.is_whale(self.config.whale_threshold_usd) else ""
        logger.info(
            f"{tag}{trade.side.value} {trade.shares_normalized or trade.shares:.2f} "
            f"{trade.token_label} @ {trade.price:.3f} (${trade.notional:,.2f}) "
            f"{trade.market_slug}"
        )

    def _log_status(self) -> None:
        stats = self.session.stats
        health = self.session.health()
        book = self.session.orderbook
        mid = f"{book.mid_price:.1f}c" if book else "n/a"
        logger.info(
            f"status={health.status.name} trades={stats.trade_count} "
            f"buy=${stats.buy_volume:,.0f} sell=${stats.sell_volume:,.0f} "
            f"net=${stats.net_flow:,.0f} mid={mid} "
            f"stale={health.stale} retries={health.reconnect_attempts}"
        )
        if self.session.error:
            logger.warning(f"Session error: {self.session.error}")
        if self.session.fetch_error:
            logger.warning(f"Snapshot error: {self.session.fetch_error}")

    async def _status_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.status_interval_seconds,
                )
            except asyncio.TimeoutError:
                self._log_status()

    async def run(self) -> None:
        """
        Run the application until shutdown signal.
        """
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._handle_signal)

        try:
            await self.session.start()

            if self.market_slug and not await self.session.select_market_by_slug(self.market_slug):
                logger.warning(f"Market {self.market_slug} not found, following {self._selected_label()}")

            logger.info(f"Following {self._selected_label()}")
            await self._status_loop()
        finally:
            await self.session.stop()

    def _selected_label(self) -> str:
        market = self.session.selected_market
        return market.slug if market else "all trades"

    def _handle_signal(self) -> None:
        """Handle shutdown signal."""
        logger.info("Received shutdown signal")
        self._shutdown_event.set()


def main() -> None:
    """Entry point for the `polyterminal` command."""
    parser = argparse.ArgumentParser(description="Follow live prediction-market trades")
    parser.add_argument("--market", "-m", default=None, help="Outcome market slug to follow")
    parser.add_argument("--env-file", default=".env", help="Path to .env file")
    parser.add_argument("--whale-only", action="store_true", help="Only keep trades >= whale threshold")
    parser.add_argument("--status-interval", type=float, default=10.0, help="Seconds between status lines")
    args = parser.parse_args()

    config = TerminalConfig.from_env_file(args.env_file)
    if args.whale_only:
        config.whale_only = True

    setup_logging("polyterminal", level=config.log_level)

    logger.info(
        f"Starting with config: functions_url={config.functions_url} "
        f"poll_interval_ms={config.poll_interval_ms} whale_only={config.whale_only}"
    )

    app = TerminalApp(config, market_slug=args.market, status_interval_seconds=args.status_interval)
    asyncio.run(app.run())


if __name__ == "__main__":
    main()
