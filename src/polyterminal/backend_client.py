"""HTTP client for the market aggregation / snapshot backend functions."""

import asyncio
import logging
from typing import Any, Optional

import aiohttp
import orjson

from .errors import BackendError, MalformedResponseError

logger = logging.getLogger(__name__)


class BackendClient:
    """
    Client for the serverless backend that fronts the market APIs.

    Each operation is a JSON POST to `{functions_url}/{function_name}`.
    Failures raise BackendError; callers decide how to surface them.
    """

    def __init__(
        self,
        functions_url: str,
        api_key: str = "",
        events_function: str = "polymarket-data",
        snapshot_function: str = "market-dashboard",
        ws_url_function: str = "dome-ws-url",
        timeout_seconds: float = 10.0,
    ):
        """
        Initialize the client.

        Args:
            functions_url: Base URL of the functions endpoint
            api_key: Bearer / apikey header value (may be empty)
            events_function: Function returning the paginated event list
            snapshot_function: Function returning orderbook + recent trades
            ws_url_function: Function returning the trade stream URL
            timeout_seconds: Request timeout
        """
        self.functions_url = functions_url.rstrip("/")
        self.api_key = api_key
        self.events_function = events_function
        self.snapshot_function = snapshot_function
        self.ws_url_function = ws_url_function
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return headers

    async def invoke(self, function_name: str, body: Optional[dict] = None) -> Any:
        """
        Invoke a backend function and decode its JSON response.

        Args:
            function_name: Function path segment
            body: JSON body

        Returns:
            Decoded JSON value

        Raises:
            BackendError: Network failure, timeout or non-2xx status
            MalformedResponseError: Body is not valid JSON
        """
        url = f"{self.functions_url}/{function_name}"
        try:
            session = await self._get_session()
            async with session.post(
                url,
                data=orjson.dumps(body or {}),
                headers=self._headers(),
            ) as resp:
                payload = await resp.read()
                if resp.status >= 400:
                    raise BackendError(f"{function_name} returned {resp.status}")
        except asyncio.TimeoutError as e:
            raise BackendError(f"{function_name} timed out") from e
        except aiohttp.ClientError as e:
            raise BackendError(f"{function_name} request failed: {e}") from e

        try:
            return orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise MalformedResponseError(f"{function_name} returned invalid JSON") from e

    async def get_events(
        self,
        limit: int,
        offset: int = 0,
        order: str = "volume",
        ascending: bool = False,
    ) -> list[dict]:
        """
        Fetch one page of events (each with nested outcomes).

        Returns:
            Raw event objects

        Raises:
            MalformedResponseError: `success` is false or `events` is missing
        """
        data = await self.invoke(self.events_function, {
            "action": "getEvents",
            "limit": limit,
            "offset": offset,
            "order": order,
            "ascending": ascending,
        })

        if not isinstance(data, dict) or not data.get("success") or not isinstance(data.get("events"), list):
            raise MalformedResponseError("Invalid markets response")

        return [e for e in data["events"] if isinstance(e, dict)]

    async def get_market_snapshot(
        self,
        market_url: str,
        yes_token_id: Optional[str] = None,
        no_token_id: Optional[str] = None,
    ) -> dict:
        """
        Fetch orderbook + recent trades for a market.

        Returns:
            Raw `{orderbook, recentTrades}` object (either key may be absent)
        """
        body: dict[str, Any] = {"marketUrl": market_url}
        if yes_token_id:
            body["yesTokenId"] = yes_token_id
        if no_token_id:
            body["noTokenId"] = no_token_id

        data = await self.invoke(self.snapshot_function, body)
        if not isinstance(data, dict):
            raise MalformedResponseError("Invalid snapshot response")
        return data

    async def get_stream_url(self) -> str:
        """Resolve the trade stream WebSocket URL."""
        data = await self.invoke(self.ws_url_function)
        ws_url = data.get("wsUrl") if isinstance(data, dict) else None
        if not ws_url:
            raise MalformedResponseError("Stream URL response missing wsUrl")
        return str(ws_url)

    async def healthcheck(self) -> bool:
        """
        Check if the backend is reachable.

        Returns:
            True if healthy
        """
        try:
            await self.get_events(limit=1)
            return True
        except BackendError as e:
            logger.warning(f"Backend healthcheck failed: {e}")
            return False
