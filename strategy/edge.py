"""
Edge against the market and the entry decision.

compute_edge() turns the two venue buy prices into implied probabilities and
subtracts them from the model. decide() is a pure function of remaining
time, edges and model probabilities: same inputs, same decision.
"""

from config import STRATEGY_CONFIG
from pipeline_types import EdgeResult, TradeDecision


def compute_edge(
    model_up: float,
    model_down: float,
    market_up_price: float | None,
    market_down_price: float | None,
) -> EdgeResult:
    """Model probability minus market-implied probability, per side. All-or-nothing."""
    if market_up_price is None or market_down_price is None:
        return EdgeResult(None, None, None, None)

    total = market_up_price + market_down_price
    if total <= 0:
        return EdgeResult(None, None, None, None)

    market_up = market_up_price / total
    market_down = market_down_price / total
    return EdgeResult(
        market_up=market_up,
        market_down=market_down,
        edge_up=model_up - market_up,
        edge_down=model_down - market_down,
    )


def get_phase(remaining_minutes: float, config: dict | None = None) -> str:
    cfg = config or STRATEGY_CONFIG
    if remaining_minutes > cfg["phase_early_minutes"]:
        return "EARLY"
    if remaining_minutes > cfg["phase_mid_minutes"]:
        return "MID"
    return "LATE"


def decide(
    remaining_minutes: float,
    edge_up: float | None,
    edge_down: float | None,
    model_up: float | None = None,
    model_down: float | None = None,
    config: dict | None = None,
) -> TradeDecision:
    """
    Map (time left, edges, model probabilities) to HOLD or ENTER.

    Thresholds tighten as the window closes: EARLY 5%, MID 10%, LATE 20% edge
    by default, with a matching minimum model probability per phase.
    """
    cfg = config or STRATEGY_CONFIG
    phase = get_phase(remaining_minutes, cfg)
    threshold = cfg[f"edge_threshold_{phase.lower()}"]
    min_prob = cfg[f"min_prob_{phase.lower()}"]

    if edge_up is None or edge_down is None:
        return TradeDecision("HOLD", None, None, phase, reason="missing_market_data")

    if edge_up == edge_down:
        return TradeDecision("HOLD", None, None, phase, reason="edges_tied")

    side = "UP" if edge_up > edge_down else "DOWN"
    best_edge = edge_up if side == "UP" else edge_down
    best_model = model_up if side == "UP" else model_down

    if best_edge <= 0:
        return TradeDecision("HOLD", None, None, phase, reason="no_positive_edge")

    if best_edge < threshold:
        return TradeDecision("HOLD", None, None, phase, reason=f"edge_below_{threshold}")

    if best_model is not None and best_model < min_prob:
        return TradeDecision("HOLD", None, None, phase, reason=f"prob_below_{min_prob}")

    strength = "STRONG" if best_edge >= cfg["strong_edge"] else "GOOD"
    return TradeDecision("ENTER", side, strength, phase, edge=best_edge, reason="edge_ok")
