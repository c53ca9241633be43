"""Tests for strategy/edge.py."""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from strategy.edge import compute_edge, decide, get_phase


class TestComputeEdge:
    def test_normalizes_market_prices(self):
        edge = compute_edge(0.6, 0.4, 0.48, 0.54)
        assert edge.market_up == pytest.approx(0.48 / 1.02)
        assert edge.market_up + edge.market_down == pytest.approx(1.0)
        assert edge.edge_up == pytest.approx(0.6 - 0.48 / 1.02)

    def test_missing_price_gives_no_edges(self):
        for up, down in [(None, 0.5), (0.5, None), (None, None)]:
            edge = compute_edge(0.6, 0.4, up, down)
            assert edge.edge_up is None and edge.edge_down is None

    def test_zero_prices(self):
        assert compute_edge(0.6, 0.4, 0.0, 0.0).edge_up is None


class TestPhase:
    @pytest.mark.parametrize("remaining,phase", [
        (14, "EARLY"), (10.01, "EARLY"), (10, "MID"), (5.5, "MID"), (5, "LATE"), (0, "LATE"),
    ])
    def test_boundaries(self, remaining, phase):
        assert get_phase(remaining) == phase


class TestDecide:
    def test_enter_strong_up(self):
        d = decide(12, 0.25, -0.25, 0.7, 0.3)
        assert (d.action, d.side, d.strength, d.phase) == ("ENTER", "UP", "STRONG", "EARLY")
        assert d.edge == pytest.approx(0.25)

    def test_enter_good_down(self):
        d = decide(7, -0.12, 0.12, 0.38, 0.62)
        assert (d.action, d.side, d.strength, d.phase) == ("ENTER", "DOWN", "GOOD", "MID")

    def test_mid_threshold_blocks_small_edge(self):
        assert decide(7, 0.08, -0.08, 0.7, 0.3).action == "HOLD"

    def test_late_needs_stricter_edge(self):
        assert decide(3, 0.15, -0.15, 0.7, 0.3).action == "HOLD"
        assert decide(3, 0.22, -0.22, 0.7, 0.3).action == "ENTER"

    def test_low_model_probability_holds(self):
        d = decide(12, 0.10, -0.10, 0.52, 0.48)
        assert d.action == "HOLD"
        assert d.reason.startswith("prob_below")

    def test_tie_holds(self):
        assert decide(12, 0.1, 0.1, 0.6, 0.6).action == "HOLD"

    def test_both_negative_holds(self):
        assert decide(12, -0.05, -0.02, 0.5, 0.5).action == "HOLD"

    def test_missing_edge_holds(self):
        d = decide(12, None, None, 0.6, 0.4)
        assert d.action == "HOLD"
        assert d.side is None and d.strength is None
        assert d.phase == "EARLY"

    def test_pure(self):
        args = (8.3, 0.17, -0.17, 0.66, 0.34)
        assert decide(*args) == decide(*args)
