"""Snapshot normalization: orderbook depth and recent trades."""

import math
from datetime import datetime
from typing import Any, Optional

from .types import Market, Orderbook, OrderbookLevel, Side, Trade
from .util import clamp, now_ms, to_float


def _parse_levels(raw_levels: Any) -> list[OrderbookLevel]:
    if not isinstance(raw_levels, list):
        return []
    levels = []
    for level in raw_levels:
        if not isinstance(level, dict):
            continue
        size = to_float(level.get("size"))
        if size <= 0:
            continue
        levels.append(OrderbookLevel(price=to_float(level.get("price")), size=size))
    return levels


def invert_levels(levels: list[OrderbookLevel]) -> list[OrderbookLevel]:
    """Map YES-side levels to the NO side: price_no = 100 - price_yes."""
    return [
        OrderbookLevel(price=clamp(100 - level.price, 0, 100), size=level.size)
        for level in levels
        if level.size > 0
    ]


def build_orderbook(raw: Any, fallback_price: float) -> Optional[Orderbook]:
    """
    Build an Orderbook from a snapshot `orderbook` object.

    Prices are in cents. YES bids sort descending and YES asks ascending, so
    the best level is first on each side. NO bids come from inverted YES asks
    and NO asks from inverted YES bids.

    Args:
        raw: `{bids: [{price, size}], asks: [...]}` or None
        fallback_price: Mid price to report when either YES side is empty

    Returns:
        Orderbook, or None when the snapshot carried no orderbook
    """
    if not isinstance(raw, dict):
        return None

    yes_bids = sorted(_parse_levels(raw.get("bids")), key=lambda l: l.price, reverse=True)
    yes_asks = sorted(_parse_levels(raw.get("asks")), key=lambda l: l.price)

    no_bids = sorted(invert_levels(yes_asks), key=lambda l: l.price, reverse=True)
    no_asks = sorted(invert_levels(yes_bids), key=lambda l: l.price)

    if yes_bids and yes_asks:
        best_bid = yes_bids[0].price
        best_ask = yes_asks[0].price
        spread = best_ask - best_bid
        mid_price = (best_bid + best_ask) / 2
    else:
        spread = 0.0
        mid_price = float(fallback_price)

    return Orderbook(
        yes_bids=tuple(yes_bids),
        yes_asks=tuple(yes_asks),
        no_bids=tuple(no_bids),
        no_asks=tuple(no_asks),
        spread=spread,
        mid_price=mid_price,
    )


def parse_timestamp_ms(value: Any) -> Optional[int]:
    """
    Parse a snapshot timestamp into epoch milliseconds.

    Accepts ISO-8601 strings, epoch seconds and epoch milliseconds.
    """
    if value is None or value == "":
        return None

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
    else:
        text = str(value).strip()
        try:
            number = float(text)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            return int(parsed.timestamp() * 1000)

    # Anything below 1e12 is seconds (1e12 ms is September 2001)
    return int(number if number >= 1e12 else number * 1000)


def parse_snapshot_trades(recent: Any, market: Market) -> list[Trade]:
    """
    Convert snapshot `recentTrades` entries into Trades for a market.

    Price comes from `rawPrice` (probability) when numeric, else `price`
    in cents divided by 100. Entries without an id get one derived from
    their own fields (`<slug>-<ts_ms>-<wallet>-<side>-<price>-<shares>`),
    so the same fill keeps its id when newer trades push it down the list.
    Identical fills within one snapshot get a `-<n>` suffix.

    Args:
        recent: Raw recentTrades list
        market: Market the snapshot belongs to

    Returns:
        Trades in the order given (newest first)
    """
    if not isinstance(recent, list):
        return []

    trades = []
    generated: dict[str, int] = {}
    for raw in recent:
        if not isinstance(raw, dict):
            continue

        ts_ms = parse_timestamp_ms(raw.get("timestamp"))
        if ts_ms is None:
            ts_ms = now_ms()

        price = to_float(raw.get("rawPrice"), default=math.nan)
        if math.isnan(price):
            price = to_float(raw.get("price")) / 100

        shares = to_float(raw.get("shares"))
        side = Side.parse(raw.get("side"))
        wallet = str(raw.get("wallet") or "")

        trade_id = raw.get("id")
        if trade_id is None:
            key = f"{market.slug}-{ts_ms}-{wallet}-{side.value}-{price:g}-{shares:g}"
            seen = generated.get(key, 0)
            generated[key] = seen + 1
            trade_id = f"{key}-{seen}" if seen else key

        trades.append(Trade(
            id=str(trade_id),
            side=side,
            price=price,
            shares=shares,
            shares_normalized=shares,
            market_slug=market.slug,
            condition_id=market.condition_id,
            timestamp=ts_ms // 1000,
            user=wallet,
            token_label="No" if str(raw.get("outcome") or "YES") == "NO" else "Yes",
            title=market.title,
            image=market.image,
        ))

    return trades
