"""Tests for the trade stream client and its reconnection behaviour."""

import asyncio

import pytest

from polyterminal.ledger import TradeLedger
from polyterminal.reconnect import ReconnectController
from polyterminal.stream import TradeStreamClient
from polyterminal.subscription import SubscriptionManager
from polyterminal.types import ConnectionStatus

from fakes import FakeConnector, ack_frame, event_frame, make_market, wait_for


async def resolve_url() -> str:
    return "ws://stream.test"


def make_client(connector, base_delay_ms=10, max_delay_ms=40, max_attempts=5, market=None):
    ledger = TradeLedger(capacity=10)
    subscriptions = SubscriptionManager(ledger)
    subscriptions.set_market(market)
    controller = ReconnectController(base_delay_ms, max_delay_ms, max_attempts)
    client = TradeStreamClient(controller, subscriptions, resolve_url, connector=connector)
    return client, ledger, subscriptions


class TestTradeStreamClient:
    """Tests for TradeStreamClient."""

    @pytest.mark.asyncio
    async def test_connect_subscribes(self):
        """Test opening the channel sends the market subscription."""
        connector = FakeConnector()
        client, _, _ = make_client(connector, market=make_market("m1"))

        assert client.connect() is True
        await wait_for(lambda: client.connected)

        assert connector.urls == ["ws://stream.test"]
        assert connector.latest.sent_messages()[0]["filters"] == {"market_slugs": ["m1"]}
        await client.close()

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self):
        """Test a second connect while open does not open another channel."""
        connector = FakeConnector()
        client, _, _ = make_client(connector)
        client.connect()
        await wait_for(lambda: client.connected)

        assert client.connect() is False
        await asyncio.sleep(0.01)
        assert len(connector.sockets) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_frames_reach_ledger(self):
        """Test pushed trades are merged into the ledger."""
        connector = FakeConnector()
        client, ledger, subscriptions = make_client(connector, market=make_market("m1"))
        client.connect()
        await wait_for(lambda: client.connected)

        connector.latest.push(ack_frame("sub-1"))
        connector.latest.push(event_frame("0xa", "m1"))
        await wait_for(lambda: len(ledger) == 1)

        assert subscriptions.subscription_id == "sub-1"
        await client.close()

    @pytest.mark.asyncio
    async def test_normal_close_no_retry(self):
        """Test a server close with code 1000 schedules no reconnect."""
        connector = FakeConnector()
        client, _, _ = make_client(connector)
        client.connect()
        await wait_for(lambda: client.connected)

        connector.latest.drop(1000)
        await wait_for(lambda: client.status == ConnectionStatus.DISCONNECTED)
        await asyncio.sleep(0.05)

        assert client.retry_pending is False
        assert len(connector.sockets) == 1
        assert client.controller.attempts == 0

    @pytest.mark.asyncio
    async def test_abnormal_close_reconnects(self):
        """Test a 1006 close reconnects after backoff and resubscribes."""
        connector = FakeConnector()
        client, _, subscriptions = make_client(connector, base_delay_ms=100, max_delay_ms=100, market=make_market("m1"))
        client.connect()
        await wait_for(lambda: client.connected)
        connector.latest.push(ack_frame("sub-1"))
        await wait_for(lambda: subscriptions.subscription_id == "sub-1")

        connector.latest.drop(1006)
        await wait_for(lambda: client.controller.attempts == 1)
        assert subscriptions.subscription_id is None

        await wait_for(lambda: len(connector.sockets) == 2 and client.connected)
        assert client.controller.attempts == 0
        assert connector.latest.sent_messages()[0]["action"] == "subscribe"
        await client.close()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        """Test failed connects retry with backoff, then stop with an error."""
        connector = FakeConnector(error=OSError("refused"))
        client, _, _ = make_client(connector, base_delay_ms=1, max_delay_ms=4, max_attempts=2)

        client.connect()
        await wait_for(lambda: client.controller.exhausted and not client.retry_pending
                       and client.status == ConnectionStatus.DISCONNECTED)

        assert len(connector.urls) == 3
        assert "reconnect attempts" in client.controller.error
        assert client.connect() is False

    @pytest.mark.asyncio
    async def test_manual_reconnect_resets_attempts(self):
        """Test reconnect() resets the budget and opens a channel now."""
        connector = FakeConnector(error=OSError("refused"))
        client, _, _ = make_client(connector, base_delay_ms=1, max_delay_ms=4, max_attempts=1)
        client.connect()
        await wait_for(lambda: client.controller.exhausted and client.status == ConnectionStatus.DISCONNECTED)

        connector.error = None
        assert await client.reconnect() is True
        await wait_for(lambda: client.connected)
        assert client.controller.error is None
        await client.close()

    @pytest.mark.asyncio
    async def test_close_uses_normal_code(self):
        """Test close() shuts the channel with code 1000."""
        connector = FakeConnector()
        client, _, _ = make_client(connector)
        client.connect()
        await wait_for(lambda: client.connected)
        ws = connector.latest

        await client.close()

        assert ws.closed_with == 1000
        assert client.status == ConnectionStatus.DISCONNECTED
        await asyncio.sleep(0.05)
        assert len(connector.sockets) == 1

    @pytest.mark.asyncio
    async def test_close_cancels_pending_retry(self):
        """Test close() cancels a scheduled reconnect."""
        connector = FakeConnector()
        client, _, _ = make_client(connector, base_delay_ms=200, max_delay_ms=200)
        client.connect()
        await wait_for(lambda: client.connected)

        connector.latest.drop(1006)
        await wait_for(lambda: client.retry_pending)

        await client.close()
        assert client.retry_pending is False
        await asyncio.sleep(0.3)
        assert len(connector.sockets) == 1
        assert client.status == ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_update_market_after_ack(self):
        """Test a market change on an acked channel sends an update."""
        connector = FakeConnector()
        client, _, subscriptions = make_client(connector, market=make_market("m1"))
        client.connect()
        await wait_for(lambda: client.connected)
        connector.latest.push(ack_frame("sub-7"))
        await wait_for(lambda: subscriptions.subscription_id == "sub-7")

        await client.update_market(make_market("m2"))

        message = connector.latest.sent_messages()[-1]
        assert message["action"] == "update"
        assert message["subscription_id"] == "sub-7"
        assert message["filters"] == {"market_slugs": ["m2"]}
        await client.close()

    @pytest.mark.asyncio
    async def test_update_market_while_disconnected(self):
        """Test a market change while disconnected is applied on the next open."""
        connector = FakeConnector()
        client, _, subscriptions = make_client(connector, market=make_market("m1"))

        await client.update_market(make_market("m2"))
        assert subscriptions.market.slug == "m2"

        client.connect()
        await wait_for(lambda: client.connected)
        assert connector.latest.sent_messages()[0]["filters"] == {"market_slugs": ["m2"]}
        await client.close()
