"""Tests for strategy/regime.py."""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from strategy.regime import REGIMES, detect_regime


class TestDetectRegime:
    def test_trend_up(self):
        assert detect_regime(60100, 60000, 2.0, 0, 100, 100) == "TREND_UP"

    def test_trend_down(self):
        assert detect_regime(59900, 60000, -2.0, 0, 100, 100) == "TREND_DOWN"

    def test_above_vwap_but_falling_is_range(self):
        assert detect_regime(60100, 60000, -2.0, 1, 100, 100) == "RANGE"

    def test_many_crosses_is_chop(self):
        assert detect_regime(60100, 60000, -2.0, 4, 100, 100) == "CHOP"

    def test_thin_flat_tape_is_chop(self):
        # 0.05% from VWAP on half the usual volume
        assert detect_regime(60030, 60000, 2.0, 0, 50, 100) == "CHOP"

    def test_thin_but_extended_is_not_chop(self):
        assert detect_regime(60600, 60000, 2.0, 0, 50, 100) == "TREND_UP"

    @pytest.mark.parametrize("price,vwap,slope", [
        (None, 60000, 1.0),
        (60000, None, 1.0),
        (60000, 60000, None),
        (None, None, None),
    ])
    def test_missing_inputs_unknown(self, price, vwap, slope):
        assert detect_regime(price, vwap, slope) == "UNKNOWN"

    def test_missing_volume_and_crosses_still_classifies(self):
        assert detect_regime(60100, 60000, 2.0) == "TREND_UP"
        assert detect_regime(60100, 60000, 0.0) == "RANGE"

    def test_always_one_of_the_labels(self):
        for args in [
            (1, 1, 0, 0, 1, 1), (2, 1, 1, 5, 0, 1), (0.5, 1, -1, None, None, None), (1, 1, 0, 10, 10, 1),
        ]:
            assert detect_regime(*args) in REGIMES

    def test_custom_thresholds(self):
        cfg = {"regime_low_volume_ratio": 0.6, "regime_flat_distance": 0.001, "regime_chop_crosses": 1}
        assert detect_regime(60100, 60000, -2.0, 1, 100, 100, config=cfg) == "CHOP"
