"""
Directional probability from indicator readings, with time awareness.

score_direction() starts at 0.5 and lets each indicator push a bounded step
toward UP or DOWN; the total is clamped to [0, 1]. apply_time_awareness()
then pulls that estimate back toward 0.5 as the window runs out, since a
late reading says little about the few minutes that remain.
"""

import time

from config import STRATEGY_CONFIG
from pipeline_types import IndicatorSnapshot, ProbabilityEstimate


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def score_direction(ind: IndicatorSnapshot, config: dict | None = None) -> float:
    """Return raw P(up) in [0, 1] from the weighted indicator rule set."""
    cfg = config or STRATEGY_CONFIG
    w = cfg["score_weights"]
    score = 0.5

    if ind.price is not None and ind.vwap_value is not None:
        if ind.price > ind.vwap_value:
            score += w["vwap_position"]
        elif ind.price < ind.vwap_value:
            score -= w["vwap_position"]

    if ind.vwap_slope is not None:
        if ind.vwap_slope > 0:
            score += w["vwap_slope"]
        elif ind.vwap_slope < 0:
            score -= w["vwap_slope"]

    if ind.rsi_value is not None and ind.rsi_slope is not None:
        if ind.rsi_value > cfg["rsi_bull_level"] and ind.rsi_slope > 0:
            score += w["rsi_momentum"]
        elif ind.rsi_value < cfg["rsi_bear_level"] and ind.rsi_slope < 0:
            score -= w["rsi_momentum"]

    macd = ind.macd
    if macd is not None:
        if macd.hist_delta is not None:
            if macd.hist > 0 and macd.hist_delta > 0:
                score += w["macd_expanding"]
            elif macd.hist < 0 and macd.hist_delta < 0:
                score -= w["macd_expanding"]
        if macd.value > 0:
            score += w["macd_level"]
        elif macd.value < 0:
            score -= w["macd_level"]

    if ind.heiken_color and ind.heiken_streak >= cfg["heiken_min_streak"]:
        score += w["heiken_streak"] if ind.heiken_color == "green" else -w["heiken_streak"]

    if ind.failed_vwap_reclaim:
        score -= w["failed_vwap_reclaim"]

    return _clamp(score, 0.0, 1.0)


def time_decay(remaining_minutes: float, window_minutes: float, exponent: float = 1.0) -> float:
    """
    Share of the directional lean that survives: 1.0 with the full window
    left, 0.0 at settlement. Monotonic in elapsed time for any exponent > 0.
    """
    if window_minutes <= 0:
        return 0.0
    fraction_left = _clamp(remaining_minutes / window_minutes, 0.0, 1.0)
    return fraction_left ** exponent


def apply_time_awareness(
    raw_up: float,
    remaining_minutes: float,
    window_minutes: float | None = None,
    exponent: float | None = None,
) -> ProbabilityEstimate:
    """Shrink raw_up toward 0.5 by the elapsed share of the window. Never flips side."""
    if window_minutes is None:
        window_minutes = STRATEGY_CONFIG["window_minutes"]
    if exponent is None:
        exponent = STRATEGY_CONFIG["time_decay_exponent"]

    decay = time_decay(remaining_minutes, window_minutes, exponent)
    adjusted = _clamp(0.5 + (raw_up - 0.5) * decay, 0.0, 1.0)
    return ProbabilityEstimate(raw_up=raw_up, adjusted_up=adjusted, time_decay=decay)


def window_timing(window_minutes: int | None = None, now_ms: int | None = None) -> dict:
    """Position inside the current wall-clock window (windows start on multiples of window_minutes)."""
    if window_minutes is None:
        window_minutes = STRATEGY_CONFIG["window_minutes"]
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    window_ms = window_minutes * 60_000
    start_ms = (now_ms // window_ms) * window_ms
    end_ms = start_ms + window_ms
    return {
        "start_ms": start_ms,
        "end_ms": end_ms,
        "elapsed_minutes": (now_ms - start_ms) / 60_000,
        "remaining_minutes": (end_ms - now_ms) / 60_000,
    }
