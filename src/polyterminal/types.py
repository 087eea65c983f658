"""Type definitions for the terminal feed client."""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional


__all__ = [
    "Side", "ConnectionStatus", "FilterKind",
    "Market", "Trade", "OrderbookLevel", "Orderbook",
    "SubscriptionFilter", "TradeStats", "HealthState", "MarketData",
]


# ============== Enums ==============

class Side(Enum):
    """Order side of an executed trade."""
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def parse(cls, value) -> "Side":
        """Anything that is not SELL (case-insensitive) is a BUY."""
        return cls.SELL if str(value or "BUY").upper() == "SELL" else cls.BUY


class ConnectionStatus(Enum):
    """Trade stream connection status.

    DISCONNECTED: No channel open; a connect may be attempted.
    CONNECTING: A channel is being opened or a retry is scheduled.
    CONNECTED: Channel open and subscription (re)issued.
    """
    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()


class FilterKind(Enum):
    """Key used in the stream subscription `filters` object."""
    MARKET_SLUGS = "market_slugs"
    CONDITION_IDS = "condition_ids"
    USERS = "users"


# ============== Market Types ==============

@dataclass(frozen=True, slots=True)
class Market:
    """
    One tradeable YES/NO outcome, flattened out of an event.

    Prices are integer cents and complementary: yes_price + no_price == 100.
    """
    id: str
    condition_id: str
    slug: str  # Outcome-level slug
    event_slug: str  # Event-level slug
    title: str
    yes_price: int
    no_price: int
    market_url: str = ""
    question: str = ""
    description: Optional[str] = None
    image: Optional[str] = None
    volume: float = 0.0
    volume_24h: float = 0.0
    liquidity: float = 0.0
    end_date: Optional[str] = None
    yes_token_id: Optional[str] = None
    no_token_id: Optional[str] = None
    outcomes: tuple[str, ...] = ("Yes", "No")


@dataclass(frozen=True, slots=True)
class Trade:
    """One executed order event, from a snapshot seed or a live push."""
    id: str
    side: Side
    price: float  # Probability in [0, 1]
    shares: float
    shares_normalized: float
    market_slug: str
    condition_id: str
    timestamp: int  # Unix seconds
    user: str = ""
    taker: str = ""
    token_id: str = ""
    token_label: str = "Yes"
    tx_hash: str = ""
    order_hash: str = ""
    title: str = ""
    image: Optional[str] = None

    @property
    def notional(self) -> float:
        """USD value of the trade (price x shares)."""
        return self.price * (self.shares_normalized or self.shares)

    def is_whale(self, threshold_usd: float) -> bool:
        """Whether notional meets the whale threshold."""
        return self.notional >= threshold_usd


# ============== Orderbook Types ==============

@dataclass(frozen=True, slots=True)
class OrderbookLevel:
    """A price level in cents with resting size."""
    price: float
    size: float


@dataclass(frozen=True, slots=True)
class Orderbook:
    """
    Bid/ask depth for a market, replaced wholesale on every snapshot.

    The NO side is derived from the YES side by price inversion.
    """
    yes_bids: tuple[OrderbookLevel, ...]
    yes_asks: tuple[OrderbookLevel, ...]
    no_bids: tuple[OrderbookLevel, ...]
    no_asks: tuple[OrderbookLevel, ...]
    spread: float
    mid_price: float

    @property
    def best_yes_bid(self) -> Optional[float]:
        return self.yes_bids[0].price if self.yes_bids else None

    @property
    def best_yes_ask(self) -> Optional[float]:
        return self.yes_asks[0].price if self.yes_asks else None


@dataclass(frozen=True, slots=True)
class MarketData:
    """Orderbook and recent trades for one market, as returned by a snapshot."""
    orderbook: Optional[Orderbook]
    trades: tuple[Trade, ...] = ()


# ============== Subscription / State Types ==============

@dataclass(frozen=True, slots=True)
class SubscriptionFilter:
    """Server-side filter describing which trades get pushed."""
    kind: FilterKind
    values: tuple[str, ...]

    @classmethod
    def for_market(cls, market: Optional[Market]) -> "SubscriptionFilter":
        """Market slug > condition id > wildcard."""
        if market is not None and market.slug:
            return cls(FilterKind.MARKET_SLUGS, (market.slug,))
        if market is not None and market.condition_id:
            return cls(FilterKind.CONDITION_IDS, (market.condition_id,))
        return cls(FilterKind.USERS, ("*",))

    @property
    def is_wildcard(self) -> bool:
        return self.kind == FilterKind.USERS and self.values == ("*",)

    def to_dict(self) -> dict:
        """Serialize for the stream `filters` field."""
        return {self.kind.value: list(self.values)}


@dataclass(frozen=True, slots=True)
class TradeStats:
    """Aggregates recomputed from the trade ledger."""
    trade_count: int = 0
    buy_count: int = 0
    sell_count: int = 0
    buy_volume: float = 0.0
    sell_volume: float = 0.0
    net_flow: float = 0.0


@dataclass(slots=True)
class HealthState:
    """Connection health for status display."""
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    reconnect_attempts: int = 0
    last_message_ms: Optional[int] = None
    seconds_since_message: Optional[float] = None
    stale: bool = False
    error: Optional[str] = None
    subscription_id: Optional[str] = None
    extra: dict = field(default_factory=dict)

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED
