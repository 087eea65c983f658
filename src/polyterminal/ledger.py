"""
Trade ledger and derived stats.

The ledger is the single consumer for both trade producers (snapshot seed and
live push). Every insertion goes through `merge()`, which enforces:
- newest-first order (live trades go to the head)
- no duplicate ids
- at most `capacity` entries (oldest dropped)
"""

import logging
from typing import Iterable, Optional

from .types import Side, Trade, TradeStats

logger = logging.getLogger(__name__)


def compute_stats(trades: Iterable[Trade]) -> TradeStats:
    """
    Recompute buy/sell aggregates from scratch.

    Args:
        trades: Trades to aggregate

    Returns:
        TradeStats with counts, volumes and net flow
    """
    trade_count = buy_count = sell_count = 0
    buy_volume = sell_volume = 0.0

    for trade in trades:
        trade_count += 1
        if trade.side == Side.BUY:
            buy_count += 1
            buy_volume += trade.notional
        else:
            sell_count += 1
            sell_volume += trade.notional

    return TradeStats(
        trade_count=trade_count,
        buy_count=buy_count,
        sell_count=sell_count,
        buy_volume=buy_volume,
        sell_volume=sell_volume,
        net_flow=buy_volume - sell_volume,
    )


class TradeLedger:
    """
    Capped, deduplicated, newest-first list of trades.

    Single writer (the session's event loop). `version` increments on every
    change so derived views can be cached.
    """

    def __init__(self, capacity: int = 100):
        """
        Initialize the ledger.

        Args:
            capacity: Maximum number of trades retained
        """
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._trades: list[Trade] = []
        self._ids: set[str] = set()
        self._version = 0
        self._stats_cache: Optional[tuple[int, TradeStats]] = None

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def version(self) -> int:
        """Change counter, bumped on merge/clear when content changed."""
        return self._version

    @property
    def trades(self) -> list[Trade]:
        """Copy of the ledger, newest first."""
        return list(self._trades)

    def __len__(self) -> int:
        return len(self._trades)

    def __contains__(self, trade_id: str) -> bool:
        return trade_id in self._ids

    def __iter__(self):
        return iter(list(self._trades))

    def merge(self, trades: Iterable[Trade], seed: bool = False) -> int:
        """
        Insert trades, skipping ids already present.

        Live trades (seed=False) go to the head as one block, keeping their
        given order. Seed trades are history and are appended behind whatever
        is already held.

        Args:
            trades: Trades ordered newest-first
            seed: Append behind existing entries instead of at the head

        Returns:
            Number of trades actually inserted
        """
        incoming = list(trades)
        if not incoming:
            return 0

        added: list[Trade] = []
        for trade in incoming:
            if trade.id in self._ids:
                continue
            self._ids.add(trade.id)
            added.append(trade)

        if not added:
            return 0

        if seed:
            self._trades.extend(added)
        else:
            self._trades[:0] = added

        self._evict()
        self._version += 1
        return len(added)

    def add(self, trade: Trade) -> bool:
        """Insert one live trade at the head. Returns False on duplicate id."""
        return self.merge((trade,)) == 1

    def clear(self) -> None:
        """Drop all trades."""
        if not self._trades:
            return
        self._trades.clear()
        self._ids.clear()
        self._version += 1

    def stats(self) -> TradeStats:
        """Derived stats, recomputed whenever the ledger changed."""
        if self._stats_cache is None or self._stats_cache[0] != self._version:
            self._stats_cache = (self._version, compute_stats(self._trades))
        return self._stats_cache[1]

    def _evict(self) -> None:
        overflow = len(self._trades) - self._capacity
        if overflow <= 0:
            return
        dropped = self._trades[-overflow:]
        del self._trades[-overflow:]
        for trade in dropped:
            self._ids.discard(trade.id)
        logger.debug(f"Ledger evicted {overflow} trades (capacity={self._capacity})")
