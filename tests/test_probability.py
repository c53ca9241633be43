"""Tests for strategy/probability.py."""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import numpy as np
import pytest

from conftest import make_indicators
from pipeline_types import MacdReading
from strategy.probability import apply_time_awareness, score_direction, time_decay, window_timing


class TestScoreDirection:
    def test_neutral_inputs_score_half(self):
        ind = make_indicators(
            price=None, vwap_value=None, vwap_slope=None, rsi_value=None, rsi_slope=None,
            macd=None, heiken_color=None, heiken_streak=0,
        )
        assert score_direction(ind) == 0.5

    def test_bullish_stack_above_half(self):
        ind = make_indicators(macd=MacdReading(5.0, 3.0, 2.0, 0.5))
        # vwap position + slope + rsi momentum + macd expanding + macd level + heiken
        assert score_direction(ind) == pytest.approx(0.5 + 0.08 * 4 + 0.04 * 2)

    def test_bearish_stack_below_half(self):
        ind = make_indicators(
            price=59900.0, vwap_slope=-1.0, rsi_value=40.0, rsi_slope=-0.5,
            macd=MacdReading(-5.0, -3.0, -2.0, -0.5), heiken_color="red", failed_vwap_reclaim=True,
        )
        assert score_direction(ind) < 0.5

    def test_short_heiken_streak_ignored(self):
        a = make_indicators(heiken_streak=1)
        b = make_indicators(heiken_color=None, heiken_streak=0)
        assert score_direction(a) == score_direction(b)

    def test_clamped(self):
        cfg = {
            "score_weights": {k: 0.5 for k in (
                "vwap_position", "vwap_slope", "rsi_momentum", "macd_expanding",
                "macd_level", "heiken_streak", "failed_vwap_reclaim",
            )},
            "rsi_bull_level": 55, "rsi_bear_level": 45, "heiken_min_streak": 2,
        }
        assert score_direction(make_indicators(), cfg) == 1.0


class TestTimeAwareness:
    def test_full_window_keeps_raw(self):
        est = apply_time_awareness(0.7, 15, 15)
        assert est.adjusted_up == pytest.approx(0.7)
        assert est.time_decay == pytest.approx(1.0)

    def test_expired_window_is_half(self):
        est = apply_time_awareness(0.8, 0, 15)
        assert est.adjusted_up == pytest.approx(0.5)

    def test_halfway(self):
        assert apply_time_awareness(0.7, 7.5, 15).adjusted_up == pytest.approx(0.6)

    def test_down_complement(self):
        est = apply_time_awareness(0.3, 10, 15)
        assert est.adjusted_down == pytest.approx(1 - est.adjusted_up)

    def test_never_flips_side(self):
        np.random.seed(5)
        for raw in np.random.uniform(0, 1, size=50):
            for remaining in (0.1, 3, 7, 12, 15, 20):
                adj = apply_time_awareness(float(raw), remaining, 15).adjusted_up
                assert (adj - 0.5) * (raw - 0.5) >= 0
                assert abs(adj - 0.5) <= abs(raw - 0.5) + 1e-12

    def test_decay_monotonic_in_elapsed(self):
        values = [time_decay(r, 15, 2.0) for r in (15, 12, 9, 6, 3, 0)]
        assert values == sorted(values, reverse=True)

    def test_remaining_beyond_window_clamped(self):
        assert time_decay(30, 15) == 1.0
        assert time_decay(-1, 15) == 0.0


class TestWindowTiming:
    def test_aligned_to_window(self):
        start = 1748872800000  # multiple of 15 minutes
        t = window_timing(15, start + 4 * 60_000)
        assert t["start_ms"] == start
        assert t["end_ms"] == start + 15 * 60_000
        assert t["elapsed_minutes"] == pytest.approx(4)
        assert t["remaining_minutes"] == pytest.approx(11)
