"""
Failure mode tests: collaborator outages and storage faults.

1. Candle feed down → cycle skipped, previous snapshot stays published
2. Oracle down → price to beat and settlement fall back to spot
3. Venue prices down → public quotes; no prices at all → HOLD, no trade
4. Every collaborator down → loop keeps running
5. Paper state unreadable at startup → fresh state
6. Paper state write fails → in-memory change stands
7. Live order rejected → structured refusal, no crash
8. Trading client missing → live trader not ready
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from unittest.mock import MagicMock, patch

import job
import notifications
from conftest import T0, FakeClock, make_market, make_snapshot
from errors import DataUnavailable, PersistenceFailure
from pipeline_types import FetchResult
from polymarket_client import OrderClient
from publisher import PriceToBeatLatch, SnapshotPublisher
from strategy import executor as ex
from strategy import paper_trader as pt
from strategy.executor import LiveTrader
from strategy.paper_trader import PaperTrader

NOW_MS = int(T0 * 1000) + 8 * 60_000


def _results(candles, /, **overrides):
    results = {
        "candles": FetchResult.success(candles),
        "spot": FetchResult.success(61000.0),
        "oracle": FetchResult.success({"price": 61010.0, "updated_at": NOW_MS, "source": "chainlink"}),
        "market": FetchResult.success(make_market()),
        "up_buy": FetchResult.success(0.55),
        "down_buy": FetchResult.success(0.47),
        "up_book": FetchResult.failure("timeout"),
        "down_book": FetchResult.failure("timeout"),
    }
    results.update(overrides)
    return results


@pytest.fixture(autouse=True)
def quiet():
    with patch("db.models.log_signal", return_value=1), \
         patch.object(notifications, "_send_message", return_value=False):
        yield


class TestCandleFeedDown:
    """Test 1: no candles → nothing computed, last snapshot kept."""

    def test_previous_snapshot_survives(self, uptrend_candles):
        publisher = SnapshotPublisher()
        latch = PriceToBeatLatch()
        good = job.run_cycle(publisher, latch, fetch=lambda: _results(uptrend_candles), now_ms=NOW_MS)
        skipped = job.run_cycle(
            publisher, latch,
            fetch=lambda: _results(uptrend_candles, candles=FetchResult.failure("binance 503")),
            now_ms=NOW_MS + 1000,
        )
        assert skipped is None
        assert publisher.latest() is good


class TestOracleDown:
    """Test 2: spot stands in as the reference price."""

    def test_latch_uses_spot(self, uptrend_candles):
        snap = job.build_snapshot(
            _results(uptrend_candles, oracle=FetchResult.failure("all RPCs failed")), PriceToBeatLatch(), NOW_MS
        )
        assert snap.price_to_beat == 61000.0
        assert snap.reference_price == 61000.0
        assert snap.price_sources["oracle"] is None

    def test_settlement_on_spot(self, db_path):
        clock = FakeClock()
        trader = PaperTrader(db_path=db_path, clock=clock)
        trader.enable()
        trader.evaluate_and_trade(make_snapshot(oracle_price=None, spot_price=60100.0))
        clock.advance(900)
        outcome = trader.evaluate_and_trade(make_snapshot(slug="next-market", action="HOLD", side=None, strength=None))
        assert outcome.settled[0]["outcome"] == "UP"
        assert outcome.settled[0]["final_price"] == 60100.0


class TestVenuePricesDown:
    """Test 3: public quotes, then HOLD."""

    def test_public_quotes(self, uptrend_candles):
        results = _results(uptrend_candles, up_buy=FetchResult.failure("503"), down_buy=FetchResult.failure("503"))
        snap = job.build_snapshot(results, PriceToBeatLatch(), NOW_MS)
        assert (snap.up_price, snap.down_price) == (0.5, 0.5)

    def test_no_prices_no_trade(self, uptrend_candles, db_path):
        market = make_market(up_quote=None, down_quote=None)
        results = _results(
            uptrend_candles,
            market=FetchResult.success(market),
            up_buy=FetchResult.failure("503"),
            down_buy=FetchResult.failure("503"),
        )
        snap = job.build_snapshot(results, PriceToBeatLatch(), NOW_MS)
        assert snap.decision.action == "HOLD"
        assert snap.edge.edge_up is None

        trader = PaperTrader(db_path=db_path, clock=FakeClock())
        trader.enable()
        assert trader.evaluate_and_trade(snap).code == pt.NOT_ACTIONABLE


class TestEverythingDown:
    """Test 4: the loop keeps cycling while every collaborator fails."""

    def test_loop_continues(self):
        price, oracle, venue = MagicMock(), MagicMock(), MagicMock()
        for fn in (price.fetch_candles, price.fetch_spot_price, oracle.fetch_oracle_price, venue.resolve_active_market):
            fn.side_effect = DataUnavailable("offline")
        fetch = lambda: job._fetch_all_data(price, oracle, venue)
        sleep = MagicMock()

        published = job.run_loop(SnapshotPublisher(), PriceToBeatLatch(), iterations=3, fetch=fetch, sleep=sleep)
        assert published == 0
        assert sleep.call_count == 3
        assert price.fetch_candles.call_count == 3


class TestPaperStorage:
    """Tests 5 and 6."""

    def test_unreadable_store_starts_fresh(self, tmp_path):
        # A directory cannot be opened as a database
        trader = PaperTrader(db_path=tmp_path, clock=FakeClock())
        assert trader.balance == 1000.0
        assert trader.enabled is False

    def test_corrupt_document_starts_fresh(self, db_path):
        from db.models import get_db, init_tables
        init_tables(db_path=db_path)
        with get_db(db_path=db_path) as conn:
            conn.execute("INSERT INTO paper_state (id, state, updated_at) VALUES (1, '{\"balance\": \"lots\"}', 'x')")
        trader = PaperTrader(db_path=db_path, clock=FakeClock())
        assert trader.balance == 1000.0

    def test_failed_save_keeps_trade(self, db_path):
        trader = PaperTrader(db_path=db_path, clock=FakeClock())
        trader.enable()
        with patch.object(pt, "save_paper_state", side_effect=PersistenceFailure("disk full")):
            outcome = trader.evaluate_and_trade(make_snapshot())
            assert trader.save() is False
        assert outcome.traded is True
        assert trader.balance == pytest.approx(950.0)
        assert len(trader.open_positions) == 1


class TestLiveOrderFailures:
    """Tests 7 and 8."""

    def test_rejected_order(self):
        client = MagicMock()
        client.is_trader_ready.return_value = True
        client.submit_buy_order.return_value = {"success": False, "error": "insufficient allowance"}
        trader = LiveTrader(client, clock=FakeClock())
        trader.enable()
        outcome = trader.evaluate_and_trade(make_snapshot())
        assert outcome.traded is False
        assert outcome.code == ex.ORDER_FAILED
        assert "insufficient allowance" in outcome.reason

    def test_missing_credentials(self):
        client = OrderClient(private_key="", funder="")
        client.init()
        trader = LiveTrader(client, clock=FakeClock())
        trader.enable()
        assert trader.evaluate_and_trade(make_snapshot()).code == ex.NOT_READY
