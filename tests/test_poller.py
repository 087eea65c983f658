"""Tests for the snapshot poller."""

import asyncio

import pytest

from polyterminal.cache import TerminalCache
from polyterminal.errors import BackendError, MalformedResponseError
from polyterminal.ledger import TradeLedger
from polyterminal.poller import SnapshotPoller

from fakes import FakeBackend, GatedBackend, make_market, make_trade, snapshot


class Selection:
    """Mutable selected-market holder used as market_provider."""

    def __init__(self, market=None):
        self.market = market

    def __call__(self):
        return self.market


class TestSnapshotPoller:
    """Tests for SnapshotPoller fetches."""

    @pytest.mark.asyncio
    async def test_first_fetch_seeds_ledger(self):
        """Test the first snapshot sets the orderbook and seeds trades."""
        backend = FakeBackend(snapshots={"m1": snapshot("m1", count=3, mid=60)})
        ledger = TradeLedger(capacity=10)
        poller = SnapshotPoller(backend, ledger, Selection(make_market("m1")))

        assert await poller.fetch_once() is True

        assert poller.orderbook.mid_price == 60
        assert poller.last_update_ms is not None
        assert poller.loading is False
        assert poller.last_seeded_slug == "m1"
        assert [t.id for t in ledger.trades] == ["m1-snap-0", "m1-snap-1", "m1-snap-2"]

    @pytest.mark.asyncio
    async def test_seed_once_per_market(self):
        """Test later snapshots do not reseed while the stream is live."""
        backend = FakeBackend(snapshots={"m1": snapshot("m1", count=2)})
        ledger = TradeLedger(capacity=10)
        poller = SnapshotPoller(backend, ledger, Selection(make_market("m1")), live_connected=lambda: True)

        await poller.fetch_once()
        ledger.clear()
        await poller.fetch_once()

        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_fallback_merge_while_stream_down(self):
        """Test new snapshot trades merge at the head when the stream is down."""
        backend = FakeBackend(snapshots={"m1": snapshot("m1", count=1, start_ts=100)})
        ledger = TradeLedger(capacity=10)
        poller = SnapshotPoller(backend, ledger, Selection(make_market("m1")), live_connected=lambda: False)
        await poller.fetch_once()

        backend.snapshots["m1"]["recentTrades"].insert(0, {
            "id": "m1-newer", "side": "BUY", "rawPrice": 0.5, "shares": 1, "timestamp": 200,
        })
        await poller.fetch_once()

        assert [t.id for t in ledger.trades] == ["m1-newer", "m1-snap-0"]

    @pytest.mark.asyncio
    async def test_fallback_merge_without_trade_ids(self):
        """Test id-less snapshot trades are not counted twice as the list shifts."""
        def entry(ts):
            return {"side": "BUY", "rawPrice": 0.5, "shares": 10, "timestamp": ts, "wallet": "0xw"}

        backend = FakeBackend(snapshots={"m1": {
            "orderbook": {"bids": [], "asks": []}, "recentTrades": [entry(100), entry(90)],
        }})
        ledger = TradeLedger(capacity=10)
        poller = SnapshotPoller(backend, ledger, Selection(make_market("m1")), live_connected=lambda: False)
        await poller.fetch_once()

        backend.snapshots["m1"]["recentTrades"].insert(0, entry(110))
        await poller.fetch_once()

        assert [t.timestamp for t in ledger.trades] == [110, 100, 90]
        assert ledger.stats().buy_volume == pytest.approx(15.0)

    @pytest.mark.asyncio
    async def test_stale_response_discarded(self):
        """Test a response that completes after a newer request is dropped."""
        backend = GatedBackend()
        ledger = TradeLedger(capacity=10)
        poller = SnapshotPoller(backend, ledger, Selection(make_market("m1")))

        older = asyncio.create_task(poller.fetch_once())
        await asyncio.sleep(0)
        newer = asyncio.create_task(poller.fetch_once())
        await asyncio.sleep(0)
        assert len(backend.pending) == 2

        backend.pending[1].set_result(snapshot("m1", count=1, mid=70))
        assert await newer is True
        backend.pending[0].set_result(snapshot("m1", count=1, mid=30))
        assert await older is False

        assert poller.orderbook.mid_price == 70

    @pytest.mark.asyncio
    async def test_market_switch_discards_in_flight(self):
        """Test an in-flight snapshot for the old market never lands."""
        backend = GatedBackend()
        ledger = TradeLedger(capacity=10)
        selection = Selection(make_market("m1"))
        poller = SnapshotPoller(backend, ledger, selection)

        in_flight = asyncio.create_task(poller.fetch_once())
        await asyncio.sleep(0)

        selection.market = make_market("m2")
        ledger.clear()
        poller.reset_for_market()

        backend.pending[0].set_result(snapshot("m1", count=2))
        assert await in_flight is False
        assert len(ledger) == 0
        assert poller.orderbook is None

        fresh = asyncio.create_task(poller.fetch_once())
        await asyncio.sleep(0)
        backend.pending[1].set_result(snapshot("m2", count=2))
        assert await fresh is True
        assert {t.market_slug for t in ledger.trades} == {"m2"}

    @pytest.mark.asyncio
    async def test_backend_error_keeps_state(self):
        """Test a failed fetch sets fetch_error and keeps the last orderbook."""
        backend = FakeBackend(snapshots={"m1": snapshot("m1", mid=55)})
        poller = SnapshotPoller(backend, TradeLedger(), Selection(make_market("m1")))
        await poller.fetch_once()

        async def failing(*args, **kwargs):
            raise BackendError("503")

        backend.get_market_snapshot = failing
        assert await poller.fetch_once() is False
        assert poller.fetch_error == "Failed to load market data"
        assert poller.orderbook.mid_price == 55

        poller.clear_error()
        assert poller.fetch_error is None

    @pytest.mark.asyncio
    async def test_malformed_snapshot_clears_orderbook(self):
        """Test an invalid snapshot leaves no orderbook."""
        backend = FakeBackend(snapshots={"m1": snapshot("m1")})
        poller = SnapshotPoller(backend, TradeLedger(), Selection(make_market("m1")))
        await poller.fetch_once()

        async def malformed(*args, **kwargs):
            raise MalformedResponseError("Invalid snapshot response")

        backend.get_market_snapshot = malformed
        assert await poller.fetch_once() is False
        assert poller.orderbook is None
        assert poller.fetch_error is None

    @pytest.mark.asyncio
    async def test_no_market_no_request(self):
        """Test nothing is requested without a selected market or URL."""
        backend = FakeBackend()
        poller = SnapshotPoller(backend, TradeLedger(), Selection(None))
        assert await poller.fetch_once() is False

        poller = SnapshotPoller(backend, TradeLedger(), Selection(make_market("m1", market_url="")))
        assert await poller.fetch_once() is False
        assert backend.snapshot_calls == []

    @pytest.mark.asyncio
    async def test_cached_data_applied_first(self):
        """Test cached data for the market is shown before the request returns."""
        market = make_market("m1")
        cache = TerminalCache()
        ledger = TradeLedger(capacity=10)
        backend = GatedBackend()
        poller = SnapshotPoller(backend, ledger, Selection(market), cache=cache)

        cached = await SnapshotPoller(
            FakeBackend(snapshots={"m1": snapshot("m1", count=1, mid=42)}), TradeLedger(), Selection(market),
        ).fetch_market_data(market)
        cache.set_market_data("m1", cached)

        task = asyncio.create_task(poller.fetch_once())
        await asyncio.sleep(0)
        assert poller.orderbook.mid_price == 42
        assert len(ledger) == 1

        backend.pending[0].set_result(snapshot("m1", count=1, mid=48))
        assert await task is True
        assert poller.orderbook.mid_price == 48
        assert cache.get_market_data("m1").orderbook.mid_price == 48

    @pytest.mark.asyncio
    async def test_run_polls_until_stopped(self):
        """Test the loop fetches repeatedly and honours pause and stop."""
        backend = FakeBackend(snapshots={"m1": snapshot("m1")})
        poller = SnapshotPoller(backend, TradeLedger(), Selection(make_market("m1")), interval_ms=10)
        shutdown = asyncio.Event()

        task = asyncio.create_task(poller.run(shutdown))
        await asyncio.sleep(0.05)
        assert len(backend.snapshot_calls) >= 2

        poller.set_paused(True)
        await asyncio.sleep(0.02)
        calls = len(backend.snapshot_calls)
        await asyncio.sleep(0.05)
        assert len(backend.snapshot_calls) == calls

        shutdown.set()
        await asyncio.wait_for(task, timeout=1.0)

    def test_reset_for_market(self):
        """Test reset invalidates requests and re-arms loading."""
        selection = Selection(make_market("m1"))
        poller = SnapshotPoller(FakeBackend(), TradeLedger(), selection)
        request_id = poller.request_id
        poller.reset_for_market()
        assert poller.request_id == request_id + 1
        assert poller.loading is True
        assert poller.last_seeded_slug is None

        selection.market = None
        poller.reset_for_market()
        assert poller.loading is False

    @pytest.mark.asyncio
    async def test_whale_threshold_applies_to_snapshots(self):
        """Test seeded and fallback-merged trades below the whale threshold are skipped."""
        def entry(trade_id, ts, shares):
            return {"id": trade_id, "side": "BUY", "rawPrice": 0.5, "shares": shares, "timestamp": ts}

        backend = FakeBackend(snapshots={"m1": {
            "orderbook": {"bids": [], "asks": []},
            "recentTrades": [entry("big", 100, 5000), entry("small", 90, 10)],
        }})
        ledger = TradeLedger(capacity=10)
        poller = SnapshotPoller(
            backend, ledger, Selection(make_market("m1")),
            live_connected=lambda: False, whale_threshold_usd=1000,
        )
        await poller.fetch_once()
        assert [t.id for t in ledger.trades] == ["big"]

        backend.snapshots["m1"]["recentTrades"][:0] = [entry("small-new", 120, 10), entry("big-new", 110, 4000)]
        await poller.fetch_once()
        assert [t.id for t in ledger.trades] == ["big-new", "big"]


class TestLedgerInteraction:
    """Tests for how seeds and live trades combine."""

    @pytest.mark.asyncio
    async def test_seed_behind_live_trades(self):
        """Test a seed arriving after live trades goes behind them."""
        backend = FakeBackend(snapshots={"m1": snapshot("m1", count=2)})
        ledger = TradeLedger(capacity=10)
        ledger.add(make_trade("live", slug="m1"))
        poller = SnapshotPoller(backend, ledger, Selection(make_market("m1")))

        await poller.fetch_once()

        assert [t.id for t in ledger.trades] == ["live", "m1-snap-0", "m1-snap-1"]
