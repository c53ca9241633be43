"""
Indicator calculations over an ordered window of 1-minute candles.

Every function is pure: same candles in, same numbers out. Insufficient data
yields None (or an empty result) rather than an exception, so a short or
gappy window degrades the signal instead of stopping the cycle.
"""

import numpy as np

from config import STRATEGY_CONFIG
from pipeline_types import Candle, IndicatorSnapshot, MacdReading


def _typical_prices_and_volumes(candles: list[Candle]) -> tuple[np.ndarray, np.ndarray]:
    highs = np.array([c.high for c in candles], dtype=float)
    lows = np.array([c.low for c in candles], dtype=float)
    closes = np.array([c.close for c in candles], dtype=float)
    volumes = np.array([c.volume for c in candles], dtype=float)
    return (highs + lows + closes) / 3.0, volumes


def compute_session_vwap(candles: list[Candle]) -> float | None:
    """Cumulative typical-price x volume over cumulative volume for the whole window."""
    if not candles:
        return None
    typical, volumes = _typical_prices_and_volumes(candles)
    total_volume = float(volumes.sum())
    if total_volume == 0:
        return None
    return float((typical * volumes).sum() / total_volume)


def compute_vwap_series(candles: list[Candle]) -> list[float | None]:
    """Running VWAP at every index, one pass. Indices with no volume yet are None."""
    if not candles:
        return []
    typical, volumes = _typical_prices_and_volumes(candles)
    cum_pv = np.cumsum(typical * volumes)
    cum_v = np.cumsum(volumes)
    return [float(pv / v) if v > 0 else None for pv, v in zip(cum_pv, cum_v)]


def slope_last(values: list[float], points: int) -> float | None:
    """Average per-step change over the last `points` values."""
    if points < 2 or len(values) < points:
        return None
    window = values[-points:]
    return (window[-1] - window[0]) / (points - 1)


def calculate_rsi(closes: list[float], period: int | None = None) -> float | None:
    """
    Calculate RSI from closing prices using simple average gain/loss.

    Returns None with fewer than period + 1 closes. Always within [0, 100]:
    100 when there are gains but no losses, 50 when price did not move.
    """
    if period is None:
        period = STRATEGY_CONFIG["rsi_period"]
    if period <= 0 or len(closes) < period + 1:
        return None

    deltas = np.diff(np.asarray(closes[-(period + 1):], dtype=float))
    avg_gain = float(np.mean(np.where(deltas > 0, deltas, 0.0)))
    avg_loss = float(np.mean(np.where(deltas < 0, -deltas, 0.0)))

    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    rsi = 100.0 - (100.0 / (1.0 + rs))
    return max(0.0, min(100.0, rsi))


def calculate_rsi_series(closes: list[float], period: int | None = None) -> list[float]:
    """RSI evaluated at every index that has enough history."""
    if period is None:
        period = STRATEGY_CONFIG["rsi_period"]
    series = []
    for i in range(period, len(closes)):
        value = calculate_rsi(closes[: i + 1], period)
        if value is not None:
            series.append(value)
    return series


def ema_series(values: list[float], period: int) -> list[float]:
    """Exponential average seeded at the first value, evaluated at every index."""
    if not values:
        return []
    k = 2.0 / (period + 1)
    out = [float(values[0])]
    for v in values[1:]:
        out.append(float(v) * k + out[-1] * (1 - k))
    return out


def calculate_macd(
    closes: list[float],
    fast: int | None = None,
    slow: int | None = None,
    signal: int | None = None,
) -> MacdReading | None:
    """
    MACD line, signal line, histogram and histogram delta.

    Needs slow + signal closes so the slow average and the signal line have
    both had time to settle; returns None before that.
    """
    fast = fast or STRATEGY_CONFIG["macd_fast"]
    slow = slow or STRATEGY_CONFIG["macd_slow"]
    signal = signal or STRATEGY_CONFIG["macd_signal"]

    if len(closes) < slow + signal:
        return None

    fast_ema = ema_series(closes, fast)
    slow_ema = ema_series(closes, slow)
    # MACD only counts once the slow average has a full period behind it
    macd_line = [f - s for f, s in zip(fast_ema[slow - 1:], slow_ema[slow - 1:])]
    signal_line = ema_series(macd_line, signal)

    hist = macd_line[-1] - signal_line[-1]
    hist_delta = None
    if len(macd_line) >= signal + 1:
        prev_hist = macd_line[-2] - signal_line[-2]
        hist_delta = hist - prev_hist

    return MacdReading(
        value=macd_line[-1],
        signal=signal_line[-1],
        hist=hist,
        hist_delta=hist_delta,
    )


def compute_heiken_ashi(candles: list[Candle]) -> list[dict]:
    """Recolor candles with the Heiken-Ashi smoothing transform."""
    out = []
    for c in candles:
        ha_close = (c.open + c.high + c.low + c.close) / 4
        if out:
            prev = out[-1]
            ha_open = (prev["open"] + prev["close"]) / 2
        else:
            ha_open = (c.open + c.close) / 2
        out.append({
            "open": ha_open,
            "high": max(c.high, ha_open, ha_close),
            "low": min(c.low, ha_open, ha_close),
            "close": ha_close,
            "green": ha_close >= ha_open,
        })
    return out


def count_consecutive(ha_candles: list[dict]) -> tuple[str | None, int]:
    """Color of the last Heiken-Ashi candle and how many in a row share it."""
    if not ha_candles:
        return None, 0
    last_green = ha_candles[-1]["green"]
    count = 0
    for c in reversed(ha_candles):
        if c["green"] != last_green:
            break
        count += 1
    return ("green" if last_green else "red"), count


def count_vwap_crosses(
    closes: list[float], vwap_series: list[float | None], lookback: int | None = None
) -> int | None:
    """
    Count sign changes of (close - vwap) across the last `lookback` bars.

    Bars exactly on the VWAP are skipped: they neither count as a cross nor
    replace the last known side.
    """
    if lookback is None:
        lookback = STRATEGY_CONFIG["vwap_cross_lookback"]
    if len(closes) < lookback or len(vwap_series) < lookback:
        return None

    crosses = 0
    last_sign = 0
    for close, vwap in zip(closes[-lookback:], vwap_series[-lookback:]):
        if vwap is None:
            continue
        diff = close - vwap
        if diff == 0:
            continue
        sign = 1 if diff > 0 else -1
        if last_sign and sign != last_sign:
            crosses += 1
        last_sign = sign
    return crosses


def detect_failed_vwap_reclaim(closes: list[float], vwap_series: list[float | None]) -> bool:
    """Last close fell back under VWAP after the previous close held above it."""
    if len(closes) < 3 or len(vwap_series) < 3:
        return False
    vwap_now, vwap_prev = vwap_series[-1], vwap_series[-2]
    if vwap_now is None or vwap_prev is None:
        return False
    return closes[-1] < vwap_now and closes[-2] > vwap_prev


def build_indicator_snapshot(
    candles: list[Candle],
    price: float | None = None,
    config: dict | None = None,
) -> IndicatorSnapshot:
    """Run the full indicator set over one window of candles."""
    cfg = config or STRATEGY_CONFIG
    closes = [c.close for c in candles]
    if price is None and closes:
        price = closes[-1]

    vwap_series = compute_vwap_series(candles)
    vwap_now = vwap_series[-1] if vwap_series else None

    lookback = cfg["vwap_slope_lookback"]
    vwap_slope = None
    if len(vwap_series) >= lookback and vwap_now is not None and vwap_series[-lookback] is not None:
        vwap_slope = (vwap_now - vwap_series[-lookback]) / lookback

    vwap_distance = None
    if vwap_now and price is not None:
        vwap_distance = (price - vwap_now) / vwap_now

    rsi_now = calculate_rsi(closes, cfg["rsi_period"])
    rsi_slope = slope_last(calculate_rsi_series(closes, cfg["rsi_period"]), cfg["rsi_slope_points"])

    macd = calculate_macd(closes, cfg["macd_fast"], cfg["macd_slow"], cfg["macd_signal"])
    color, streak = count_consecutive(compute_heiken_ashi(candles))

    recent_bars = cfg["volume_recent_bars"]
    average_bars = cfg["volume_average_bars"]
    recent_volume = None
    average_volume = None
    if candles:
        recent_volume = float(sum(c.volume for c in candles[-recent_bars:]))
        # Average volume per `recent_bars` block over the longer window
        average_volume = float(sum(c.volume for c in candles[-average_bars:])) / (average_bars / recent_bars)

    delta_1m = closes[-1] - closes[-2] if len(closes) >= 2 else None
    delta_3m = closes[-1] - closes[-4] if len(closes) >= 4 else None

    return IndicatorSnapshot(
        price=price,
        vwap_value=vwap_now,
        vwap_slope=vwap_slope,
        vwap_distance=vwap_distance,
        rsi_value=rsi_now,
        rsi_slope=rsi_slope,
        macd=macd,
        heiken_color=color,
        heiken_streak=streak,
        recent_volume=recent_volume,
        average_volume=average_volume,
        vwap_cross_count=count_vwap_crosses(closes, vwap_series, cfg["vwap_cross_lookback"]),
        failed_vwap_reclaim=detect_failed_vwap_reclaim(closes, vwap_series),
        delta_1m=delta_1m,
        delta_3m=delta_3m,
    )
