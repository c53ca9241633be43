"""
Market regime classification for the current candle window.

Five labels, exactly one per snapshot:
- TREND_UP: price above VWAP and VWAP rising
- TREND_DOWN: price below VWAP and VWAP falling
- CHOP: thin volume hugging VWAP, or price whipsawing across VWAP
- RANGE: none of the above
- UNKNOWN: price, VWAP or VWAP slope missing

No memory between cycles; the label depends only on the current readings.
"""

from config import STRATEGY_CONFIG


REGIMES = ("TREND_UP", "TREND_DOWN", "RANGE", "CHOP", "UNKNOWN")


def detect_regime(
    price: float | None,
    vwap: float | None,
    vwap_slope: float | None,
    vwap_cross_count: int | None = None,
    volume_recent: float | None = None,
    volume_avg: float | None = None,
    config: dict | None = None,
) -> str:
    """
    Determine the regime from price vs VWAP, VWAP slope, crosses and volume.

    Args:
        price: Latest spot price
        vwap: Current session VWAP
        vwap_slope: VWAP change per bar over the slope lookback
        vwap_cross_count: Sign changes of (close - vwap) in the cross lookback
        volume_recent: Volume summed over the recent block
        volume_avg: Average volume per block over the longer window

    Returns:
        One of REGIMES
    """
    cfg = config or STRATEGY_CONFIG

    if price is None or vwap is None or vwap_slope is None or vwap == 0:
        return "UNKNOWN"

    low_volume = (
        volume_recent is not None
        and volume_avg is not None
        and volume_recent < cfg["regime_low_volume_ratio"] * volume_avg
    )
    if low_volume and abs((price - vwap) / vwap) < cfg["regime_flat_distance"]:
        return "CHOP"

    above = price > vwap
    if above and vwap_slope > 0:
        return "TREND_UP"
    if not above and vwap_slope < 0:
        return "TREND_DOWN"

    if vwap_cross_count is not None and vwap_cross_count >= cfg["regime_chop_crosses"]:
        return "CHOP"

    return "RANGE"
