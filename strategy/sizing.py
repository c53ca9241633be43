"""
Position sizing for paper and live entries.

Both sizers scale with edge (half-Kelly style) and are capped so a single
trade can never exceed the configured per-trade maximum.
"""

import math

from config import STRATEGY_CONFIG


def paper_position_size(
    balance: float,
    edge: float,
    price: float,
    max_position_pct: float | None = None,
) -> dict:
    """
    Size a paper entry against the current virtual balance.

    kelly = min(edge / 2, max_pct); dollars = min(balance * kelly, balance * max_pct);
    shares = floor(dollars / price); cost = shares * price.

    Args:
        balance: Current paper balance
        edge: Edge fraction of the chosen side (0.25 = 25%)
        price: Venue buy price of the chosen side, strictly inside (0, 1)
        max_position_pct: Max fraction of balance per trade

    Returns:
        {
            "kelly_fraction": float,
            "size": float,     # dollar size before rounding to whole shares
            "shares": int,
            "cost": float,
        }
    """
    if max_position_pct is None:
        max_position_pct = STRATEGY_CONFIG["paper_max_position_pct"]

    kelly = min(edge * 0.5, max_position_pct)
    size = min(balance * kelly, balance * max_position_pct)
    shares = math.floor(size / price) if price > 0 else 0
    return {
        "kelly_fraction": kelly,
        "size": size,
        "shares": shares,
        "cost": shares * price,
    }


def live_position_size(edge: float, max_position_size: float | None = None) -> int:
    """
    Whole shares for a live order: the edge fraction (capped at 10%) scaled
    by ten times the max size, never above max size.
    """
    if max_position_size is None:
        max_position_size = STRATEGY_CONFIG["live_max_position_size"]
    fraction = min(edge / 2, 0.1)
    shares = math.floor(max_position_size * fraction * 10)
    return int(max(0, min(shares, max_position_size)))
