"""
Shared fixtures for up/down assistant tests.

Provides candle generators, a controllable clock, snapshot builders and
temporary sqlite paths.
"""

import sqlite3
from pathlib import Path

import numpy as np
import pytest

# Ensure project root is importable
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from db.models import init_tables
from pipeline_types import (
    Candle,
    EdgeResult,
    IndicatorSnapshot,
    MarketDescriptor,
    MarketSnapshot,
    ProbabilityEstimate,
    TradeDecision,
)

# 2025-06-02 14:00:00 UTC
T0 = 1748872800.0


def make_candles(closes, volumes=None, start_ms: int = int(T0 * 1000), spread: float = 5.0) -> list[Candle]:
    """Candles whose open is the previous close; high/low straddle the bar by `spread`."""
    if volumes is None:
        volumes = [10.0] * len(closes)
    candles = []
    prev = closes[0]
    for i, (close, vol) in enumerate(zip(closes, volumes)):
        candles.append(Candle(
            open_time=start_ms + i * 60_000,
            open=float(prev),
            high=float(max(prev, close) + spread),
            low=float(min(prev, close) - spread),
            close=float(close),
            volume=float(vol),
        ))
        prev = close
    return candles


class FakeClock:
    """Callable clock returning epoch seconds; advance() moves it forward."""

    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_market(slug: str = "btc-updown-15m-1748872800", **overrides) -> MarketDescriptor:
    fields = {
        "slug": slug,
        "question": "Bitcoin Up or Down?",
        "up_token_id": "tok-up",
        "down_token_id": "tok-down",
        "end_time_ms": int(T0 * 1000) + 15 * 60_000,
        "start_time_ms": int(T0 * 1000),
        "liquidity": 25000.0,
        "up_quote": 0.5,
        "down_quote": 0.5,
    }
    fields.update(overrides)
    return MarketDescriptor(**fields)


def make_indicators(**overrides) -> IndicatorSnapshot:
    fields = {
        "price": 60000.0,
        "vwap_value": 59950.0,
        "vwap_slope": 1.0,
        "vwap_distance": 0.0008,
        "rsi_value": 58.0,
        "rsi_slope": 0.5,
        "macd": None,
        "heiken_color": "green",
        "heiken_streak": 3,
        "recent_volume": 200.0,
        "average_volume": 200.0,
        "vwap_cross_count": 0,
    }
    fields.update(overrides)
    return IndicatorSnapshot(**fields)


def make_snapshot(
    action: str = "ENTER",
    side: str | None = "UP",
    strength: str | None = "STRONG",
    phase: str = "MID",
    edge: float | None = 0.25,
    up_price: float | None = 0.40,
    down_price: float | None = 0.60,
    slug: str = "btc-updown-15m-1748872800",
    price_to_beat: float | None = 60000.0,
    oracle_price: float | None = 60050.0,
    spot_price: float | None = 60040.0,
    market: MarketDescriptor | None = None,
    time_left_min: float = 7.0,
) -> MarketSnapshot:
    if market is None and slug:
        market = make_market(slug)
    return MarketSnapshot(
        timestamp="2025-06-02T10:07:00-04:00",
        market=market,
        time_left_min=time_left_min,
        spot_price=spot_price,
        oracle_price=oracle_price,
        price_to_beat=price_to_beat,
        up_price=up_price,
        down_price=down_price,
        indicators=make_indicators(),
        regime="TREND_UP",
        model=ProbabilityEstimate(raw_up=0.7, adjusted_up=0.65, time_decay=0.5),
        edge=EdgeResult(0.4, 0.6, 0.25, -0.25),
        decision=TradeDecision(action, side, strength, phase, edge=edge, reason="edge_ok" if action == "ENTER" else "no edge"),
    )


@pytest.fixture
def db_conn():
    """In-memory SQLite database with all tables created."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    init_tables(conn)
    yield conn
    conn.close()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "updown.db"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def uptrend_candles():
    """240 one-minute candles drifting up with noise."""
    np.random.seed(42)
    closes = [60000.0]
    for _ in range(239):
        closes.append(closes[-1] + np.random.normal(8, 10))
    volumes = list(np.random.uniform(5, 15, size=240))
    return make_candles(closes, volumes)


@pytest.fixture
def downtrend_candles():
    """240 one-minute candles drifting down with noise."""
    np.random.seed(7)
    closes = [60000.0]
    for _ in range(239):
        closes.append(closes[-1] + np.random.normal(-8, 10))
    volumes = list(np.random.uniform(5, 15, size=240))
    return make_candles(closes, volumes)


@pytest.fixture
def choppy_candles():
    """Closes alternating around a flat level."""
    closes = [60000.0 + (20 if i % 2 else -20) for i in range(240)]
    return make_candles(closes, [10.0] * 240, spread=1.0)
