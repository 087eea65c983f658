"""Market catalog: event loading, flattening and pagination."""

import logging
from typing import Any, Optional

from .backend_client import BackendClient
from .cache import TerminalCache
from .errors import BackendError, MalformedResponseError
from .types import Market
from .util import clamp, round_half_up, to_float

logger = logging.getLogger(__name__)

POLYMARKET_EVENT_URL = "https://polymarket.com/event"


def to_cents(value: Any) -> int:
    """
    Convert a probability to integer cents.

    Values above 1 are treated as already being percentages.
    """
    number = to_float(value)
    prob = number / 100 if number > 1 else number
    return round_half_up(clamp(prob, 0.0, 1.0) * 100)


def build_market_url(
    event_slug: str,
    market_slug: str = "",
    yes_token_id: Optional[str] = None,
) -> str:
    """
    Canonical Polymarket URL for an event or one of its outcomes.

    Example: https://polymarket.com/event/us-election/trump-wins?tid=123
    """
    if event_slug and market_slug:
        url = f"{POLYMARKET_EVENT_URL}/{event_slug}/{market_slug}"
        if yes_token_id:
            url += f"?tid={yes_token_id}"
        return url
    if event_slug:
        return f"{POLYMARKET_EVENT_URL}/{event_slug}"
    return ""


def _fallback_market(event: dict) -> Market:
    """Single 50/50 pseudo-market for an event without outcomes."""
    event_slug = str(event.get("slug") or "")
    title = str(event.get("title") or "")
    return Market(
        id=str(event.get("id") or event_slug),
        condition_id="",
        slug=event_slug,
        event_slug=event_slug,
        market_url=build_market_url(event_slug),
        title=title,
        question=title,
        description=event.get("description"),
        image=event.get("image"),
        volume=to_float(event.get("volume")),
        volume_24h=to_float(event.get("volume24hr", event.get("volume24h"))),
        liquidity=to_float(event.get("liquidity")),
        end_date=event.get("endDate"),
        yes_price=50,
        no_price=50,
    )


def _outcome_market(event: dict, outcome: dict) -> Market:
    event_slug = str(event.get("slug") or "")
    market_slug = str(outcome.get("slug") or "")
    condition_id = str(outcome.get("conditionId") or "")
    yes_token_id = outcome.get("yesTokenId") or None
    yes_cents = to_cents(outcome.get("yesPrice"))
    title = str(outcome.get("question") or event.get("title") or "")

    outcomes = outcome.get("outcomes")
    if not isinstance(outcomes, list):
        outcomes = ["Yes", "No"]

    return Market(
        id=condition_id or f"{event.get('id')}-{market_slug}",
        condition_id=condition_id,
        slug=market_slug,
        event_slug=event_slug,
        market_url=build_market_url(event_slug, market_slug, yes_token_id),
        title=title,
        question=title,
        description=event.get("description"),
        image=outcome.get("image") or event.get("image"),
        volume=to_float(outcome.get("volume") or event.get("volume")),
        volume_24h=to_float(outcome.get("volume24hr", outcome.get("volume24h"))),
        liquidity=to_float(outcome.get("liquidity") or event.get("liquidity")),
        end_date=outcome.get("endDate") or event.get("endDate"),
        yes_price=yes_cents,
        no_price=100 - yes_cents,
        yes_token_id=str(yes_token_id) if yes_token_id else None,
        no_token_id=str(outcome["noTokenId"]) if outcome.get("noTokenId") else None,
        outcomes=tuple(str(o) for o in outcomes),
    )


def is_valid_market(market: Market) -> bool:
    """Tradeable entries need a title, both slugs and an in-range price."""
    return (
        bool(market.title)
        and bool(market.event_slug)
        and bool(market.slug)
        and 0 <= market.yes_price <= 100
    )


def transform_events(events: list[dict]) -> list[Market]:
    """
    Flatten events into one Market per outcome.

    Args:
        events: Raw events, each with an `outcomes` list

    Returns:
        Valid markets in event order
    """
    markets: list[Market] = []

    for event in events:
        outcomes = event.get("outcomes")
        outcomes = [o for o in outcomes if isinstance(o, dict)] if isinstance(outcomes, list) else []

        if not outcomes:
            markets.append(_fallback_market(event))
            continue

        for outcome in outcomes:
            markets.append(_outcome_market(event, outcome))

    return [m for m in markets if is_valid_market(m)]


class MarketCatalog:
    """
    Paginated market catalog.

    `load_initial()` replaces the list, `load_more()` appends unseen markets.
    A failed load sets `error` and leaves the list as it was.
    """

    def __init__(
        self,
        backend: BackendClient,
        cache: Optional[TerminalCache] = None,
        batch_size: int = 50,
        order: str = "volume",
        ascending: bool = False,
    ):
        """
        Initialize the catalog.

        Args:
            backend: Backend client
            cache: Optional TTL cache for an instant first load
            batch_size: Events per page
            order: Sort field passed to the backend
            ascending: Sort direction
        """
        self._backend = backend
        self._cache = cache
        self._batch_size = batch_size
        self._order = order
        self._ascending = ascending

        self._markets: list[Market] = []
        self._offset = 0
        self._has_more = True
        self._loading = False
        self._loading_more = False
        self._error: Optional[str] = None

    @property
    def markets(self) -> list[Market]:
        return list(self._markets)

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def loading_more(self) -> bool:
        return self._loading_more

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def offset(self) -> int:
        """Offset of the next page."""
        return self._offset

    def get(self, market_id: str) -> Optional[Market]:
        for market in self._markets:
            if market.id == market_id:
                return market
        return None

    def find_by_slug(self, slug: str) -> Optional[Market]:
        for market in self._markets:
            if market.slug == slug:
                return market
        return None

    async def _fetch_page(self, offset: int) -> list[dict]:
        return await self._backend.get_events(
            limit=self._batch_size,
            offset=offset,
            order=self._order,
            ascending=self._ascending,
        )

    async def load_initial(self) -> list[Market]:
        """
        Load the first page.

        Cached markets, when fresh, are exposed immediately and then
        replaced by the fetched page.

        Returns:
            The catalog after the load
        """
        self._error = None

        cached = self._cache.get_markets() if self._cache else None
        if cached:
            logger.info(f"Using {len(cached)} cached markets for instant load")
            self._markets = cached
        else:
            self._loading = True

        try:
            events = await self._fetch_page(0)
        except BackendError as e:
            logger.error(f"Failed to fetch markets: {e}")
            if not cached:
                self._error = "Failed to load markets"
            return self.markets
        finally:
            self._loading = False

        if not events:
            logger.info("No events returned")
            if not cached:
                self._error = "No markets available"
            return self.markets

        markets = transform_events(events)
        logger.info(f"Fetched {len(events)} events -> {len(markets)} markets")

        self._markets = markets
        self._offset = self._batch_size
        self._has_more = len(events) >= self._batch_size

        if self._cache:
            self._cache.set_markets(markets)

        return self.markets

    async def load_more(self) -> list[Market]:
        """
        Load the next page and append markets not already present.

        Returns:
            Newly appended markets
        """
        if self._loading_more or not self._has_more:
            return []

        self._loading_more = True
        try:
            events = await self._fetch_page(self._offset)
        except MalformedResponseError as e:
            logger.warning(f"Stopping pagination: {e}")
            self._has_more = False
            return []
        except BackendError as e:
            logger.warning(f"Failed to load more markets: {e}")
            return []
        finally:
            self._loading_more = False

        if not events:
            self._has_more = False
            return []

        existing = {m.id for m in self._markets}
        new_markets = [m for m in transform_events(events) if m.id not in existing]
        self._markets.extend(new_markets)
        logger.info(f"Loaded {len(events)} more events ({len(new_markets)} new markets)")

        self._offset += self._batch_size
        self._has_more = len(events) >= self._batch_size

        if self._cache:
            self._cache.set_markets(self._markets)

        return new_markets
