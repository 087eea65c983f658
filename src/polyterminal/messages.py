"""
Trade stream message codec.

Server messages are decoded into one of three variants at the boundary:
- AckMessage: subscription acknowledged, carries the server subscription id
- TradeEventMessage: one pushed order, already converted to a `Trade`
- ErrorMessage: server-side error text

Client messages (subscribe/update) are built here as well.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

import orjson

from .types import Side, SubscriptionFilter, Trade
from .util import to_float

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AckMessage:
    subscription_id: str


@dataclass(frozen=True, slots=True)
class TradeEventMessage:
    trade: Trade
    subscription_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ErrorMessage:
    message: str


StreamMessage = Union[AckMessage, TradeEventMessage, ErrorMessage]


def trade_from_push(data: dict) -> Optional[Trade]:
    """
    Build a Trade from a pushed order payload.

    The id is the order hash when present, else `<tx_hash>-<timestamp>`.

    Args:
        data: Raw `data` object of an `event` message

    Returns:
        Trade, or None if the payload carries no usable identity
    """
    timestamp = int(to_float(data.get("timestamp")))
    order_hash = str(data.get("order_hash") or "")
    tx_hash = str(data.get("tx_hash") or "")

    if order_hash:
        trade_id = order_hash
    elif tx_hash:
        trade_id = f"{tx_hash}-{timestamp}"
    else:
        return None

    shares = to_float(data.get("shares"))
    shares_normalized = to_float(data.get("shares_normalized"), shares)

    return Trade(
        id=trade_id,
        side=Side.parse(data.get("side")),
        price=to_float(data.get("price")),
        shares=shares,
        shares_normalized=shares_normalized,
        market_slug=str(data.get("market_slug") or ""),
        condition_id=str(data.get("condition_id") or ""),
        timestamp=timestamp,
        user=str(data.get("user") or ""),
        taker=str(data.get("taker") or ""),
        token_id=str(data.get("token_id") or ""),
        token_label=str(data.get("token_label") or "Yes"),
        tx_hash=tx_hash,
        order_hash=order_hash,
        title=str(data.get("title") or ""),
        image=data.get("image") or data.get("market_image") or data.get("icon") or None,
    )


def parse_message(raw: Union[str, bytes]) -> Optional[StreamMessage]:
    """
    Decode one raw stream frame.

    Args:
        raw: Text or binary frame

    Returns:
        A message variant, or None for undecodable/unknown/unusable frames
    """
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        logger.warning(f"Failed to parse stream message: {e}")
        return None

    if not isinstance(data, dict):
        logger.debug(f"Ignoring non-object stream message: {type(data).__name__}")
        return None

    msg_type = data.get("type")

    if msg_type == "ack":
        subscription_id = data.get("subscription_id")
        if not subscription_id:
            logger.warning("Ack without subscription_id")
            return None
        return AckMessage(subscription_id=str(subscription_id))

    if msg_type == "event":
        payload = data.get("data")
        if not isinstance(payload, dict):
            logger.warning("Event message without data object")
            return None
        trade = trade_from_push(payload)
        if trade is None:
            logger.debug("Dropping event without order_hash/tx_hash")
            return None
        subscription_id = data.get("subscription_id")
        return TradeEventMessage(
            trade=trade,
            subscription_id=str(subscription_id) if subscription_id else None,
        )

    if msg_type == "error":
        return ErrorMessage(message=str(data.get("message") or "Unknown stream error"))

    logger.debug(f"Ignoring stream message type={msg_type!r}")
    return None


def build_subscribe(
    stream_filter: SubscriptionFilter,
    platform: str = "polymarket",
    version: int = 1,
) -> str:
    """Encode a new subscription request as a text frame."""
    return orjson.dumps({
        "action": "subscribe",
        "platform": platform,
        "version": version,
        "type": "orders",
        "filters": stream_filter.to_dict(),
    }).decode()


def build_update(
    subscription_id: str,
    stream_filter: SubscriptionFilter,
    platform: str = "polymarket",
    version: int = 1,
) -> str:
    """Encode a filter update for an acknowledged subscription."""
    return orjson.dumps({
        "action": "update",
        "subscription_id": subscription_id,
        "platform": platform,
        "version": version,
        "type": "orders",
        "filters": stream_filter.to_dict(),
    }).decode()
