"""
Live order execution with risk gates.

Gate order (first failure wins): DISABLED, NOT_READY, DAILY_LOSS_LIMIT,
COOLDOWN, NOT_ACTIONABLE, EDGE_TOO_LOW, NOT_STRONG, MISSING_TOKEN,
INVALID_PRICE. Only STRONG signals reach the venue. A refusal is returned
as a TradeOutcome, never raised.

Positions are settled against the latched price to beat when the market
rolls over, and the realized PnL feeds the daily loss limit. A position
whose outcome cannot be determined is booked as a full loss.
"""

import logging
import time
from datetime import datetime

import pytz

from config import STRATEGY_CONFIG
from errors import ConfigInvalid
from pipeline_types import MarketSnapshot, TradeOutcome
from strategy.paper_trader import PaperTrader, validate_fields
from strategy.sizing import live_position_size

logger = logging.getLogger(__name__)

ET = pytz.timezone("America/New_York")

TRADED = "TRADED"
DISABLED = "DISABLED"
NOT_READY = "NOT_READY"
DAILY_LOSS_LIMIT = "DAILY_LOSS_LIMIT"
COOLDOWN = "COOLDOWN"
NOT_ACTIONABLE = "NOT_ACTIONABLE"
EDGE_TOO_LOW = "EDGE_TOO_LOW"
NOT_STRONG = "NOT_STRONG"
MISSING_TOKEN = "MISSING_TOKEN"
INVALID_PRICE = "INVALID_PRICE"
SIZE_TOO_SMALL = "SIZE_TOO_SMALL"
ORDER_FAILED = "ORDER_FAILED"

TUNABLE_FIELDS = {
    "max_position_size": ("live_max_position_size", False),
    "min_edge": ("live_min_edge", True),
    "max_daily_loss": ("live_max_daily_loss", False),
    "cooldown_seconds": ("live_cooldown_seconds", False),
}


class LiveTrader:
    """Gates and submits real orders through an order client.

    The order client is anything exposing is_trader_ready(),
    submit_buy_order(token_id, price, size), cancel_all_orders() and
    list_open_orders(); in production that is the polymarket_client module.
    """

    def __init__(self, order_client, config: dict | None = None, clock=time.time):
        cfg = config or STRATEGY_CONFIG
        self.order_client = order_client
        self.clock = clock
        self.enabled = False
        self.max_position_size = cfg["live_max_position_size"]
        self.min_edge = cfg["live_min_edge"]
        self.max_daily_loss = cfg["live_max_daily_loss"]
        self.cooldown_seconds = cfg["live_cooldown_seconds"]

        self.last_trade_time: float | None = None
        self.positions: dict[str, dict] = {}
        self.tracked_slug: str | None = None
        self.last_settlement: dict = {"price_to_beat": None, "final_price": None}
        self.daily_pnl = 0.0
        self.pnl_day = self._today()

    def _today(self) -> str:
        return datetime.fromtimestamp(self.clock(), ET).date().isoformat()

    def _roll_day(self) -> None:
        """Daily PnL restarts at the ET calendar boundary."""
        today = self._today()
        if today != self.pnl_day:
            logger.info(f"New trading day {today}, daily PnL reset from ${self.daily_pnl:.2f}")
            self.pnl_day = today
            self.daily_pnl = 0.0

    # ── Controls ──

    def enable(self) -> None:
        self.enabled = True
        logger.info("Live auto-trading enabled")

    def disable(self) -> None:
        self.enabled = False
        logger.info("Live auto-trading disabled")

    def reconfigure(self, **fields) -> dict:
        """Apply numeric limit changes atomically. Raises ConfigInvalid."""
        parsed = validate_fields(fields, TUNABLE_FIELDS)
        if "max_position_size" in parsed and parsed["max_position_size"] < 1:
            raise ConfigInvalid("max_position_size must be at least 1 share")
        for name, value in parsed.items():
            setattr(self, name, value)
        logger.info(f"Live trader reconfigured: {parsed}")
        return self.settings()

    def settings(self) -> dict:
        return {name: getattr(self, name) for name in TUNABLE_FIELDS}

    def record_pnl(self, amount: float) -> float:
        """Book realized PnL against today's loss limit. Returns today's running total."""
        self._roll_day()
        self.daily_pnl += amount
        logger.info(f"Live PnL {amount:+.2f}, today ${self.daily_pnl:+.2f}")
        return self.daily_pnl

    def _is_ready(self) -> bool:
        try:
            return bool(self.order_client.is_trader_ready())
        except Exception as e:
            logger.warning(f"Order client readiness check failed: {e}")
            return False

    # ── Gates ──

    def can_trade(self) -> tuple[bool, str, str]:
        """Account-level gates. Returns (allowed, code, reason)."""
        if not self.enabled:
            return False, DISABLED, "Live trading disabled"

        if not self._is_ready():
            return False, NOT_READY, "Order client not initialized"

        self._roll_day()
        if self.daily_pnl <= -self.max_daily_loss:
            return False, DAILY_LOSS_LIMIT, (
                f"Daily loss ${-self.daily_pnl:.2f} reached limit ${self.max_daily_loss:.2f}"
            )

        if self.last_trade_time is not None:
            elapsed = self.clock() - self.last_trade_time
            if elapsed < self.cooldown_seconds:
                return False, COOLDOWN, f"Cooldown: {self.cooldown_seconds - elapsed:.0f}s remaining"

        return True, TRADED, "ok"

    def evaluate_and_trade(self, snapshot: MarketSnapshot) -> TradeOutcome:
        """Settle a finished market, then run the gates and maybe submit."""
        settled = self._track_market(snapshot)
        outcome = self._evaluate(snapshot)
        outcome.settled = settled
        return outcome

    def _evaluate(self, snapshot: MarketSnapshot) -> TradeOutcome:
        allowed, code, reason = self.can_trade()
        if not allowed:
            return TradeOutcome(False, code, reason)

        decision = snapshot.decision
        if decision.action != "ENTER" or decision.side is None:
            return TradeOutcome(False, NOT_ACTIONABLE, decision.reason or "No entry signal")

        edge = decision.edge or 0.0
        if edge < self.min_edge:
            return TradeOutcome(False, EDGE_TOO_LOW, f"Edge {edge:.1%} below minimum {self.min_edge:.1%}")

        if decision.strength != "STRONG":
            return TradeOutcome(False, NOT_STRONG, f"Strength {decision.strength}, live needs STRONG")

        return self._submit(snapshot, decision.side, live_position_size(edge, self.max_position_size), edge)

    def buy(self, snapshot: MarketSnapshot, side: str, size: int) -> TradeOutcome:
        """Manual order on one side of the current market, bypassing signal gates."""
        side = str(side).upper()
        if side not in ("UP", "DOWN"):
            raise ConfigInvalid(f"Side must be UP or DOWN, got {side!r}")
        if isinstance(size, bool) or not isinstance(size, (int, float)) or size < 1:
            raise ConfigInvalid(f"Size must be at least 1 share, got {size!r}")
        if not self._is_ready():
            return TradeOutcome(False, NOT_READY, "Order client not initialized")
        return self._submit(snapshot, side, int(min(size, self.max_position_size)), snapshot.decision.edge)

    def _submit(self, snapshot: MarketSnapshot, side: str, shares: int, edge: float | None) -> TradeOutcome:
        token_id = snapshot.token_for(side)
        if not token_id:
            return TradeOutcome(False, MISSING_TOKEN, f"No token id for {side}")

        price = snapshot.price_for(side)
        if price is None or not 0 < price < 1:
            return TradeOutcome(False, INVALID_PRICE, f"Invalid {side} price: {price}")

        if shares < 1:
            return TradeOutcome(False, SIZE_TOO_SMALL, "Computed size under one share")

        try:
            result = self.order_client.submit_buy_order(token_id, price, shares)
        except Exception as e:
            logger.error(f"Order submission failed: {e}")
            return TradeOutcome(False, ORDER_FAILED, f"Order rejected: {e}")

        if not result.get("success"):
            logger.error(f"Order rejected by venue: {result.get('error')}")
            return TradeOutcome(False, ORDER_FAILED, f"Order rejected: {result.get('error')}")

        self.last_trade_time = self.clock()
        order = {
            "order_id": result.get("order_id"),
            "market_slug": snapshot.slug,
            "token_id": token_id,
            "side": side,
            "shares": shares,
            "price": price,
            "cost": shares * price,
            "edge": edge,
            "timestamp": datetime.fromtimestamp(self.last_trade_time, ET).isoformat(),
        }
        held = self.positions.get(token_id)
        if held is None:
            self.positions[token_id] = dict(order)
        else:
            held.update(
                order_id=order["order_id"],
                shares=held["shares"] + shares,
                cost=held["cost"] + order["cost"],
            )
        logger.info(f"LIVE BUY {shares} {side} @ {price:.3f} on {snapshot.slug} (order {order['order_id']})")
        return TradeOutcome(True, TRADED, f"Bought {shares} {side} @ {price:.3f}", trade=order)

    # ── Settlement ──

    def _track_market(self, snapshot: MarketSnapshot) -> list[dict]:
        """Follow the active slug; settle the old slug's positions when it changes."""
        slug = snapshot.slug
        if not slug:
            return []

        settled = []
        if self.tracked_slug and slug != self.tracked_slug:
            settled = self.settle_positions(
                self.tracked_slug,
                self.last_settlement["price_to_beat"],
                self.last_settlement["final_price"],
            )
            self.last_settlement = {"price_to_beat": None, "final_price": None}
        self.tracked_slug = slug

        if snapshot.price_to_beat is not None:
            self.last_settlement["price_to_beat"] = snapshot.price_to_beat
        if snapshot.reference_price is not None:
            self.last_settlement["final_price"] = snapshot.reference_price
        return settled

    def settle_positions(self, slug: str, price_to_beat: float | None, final_price: float | None) -> list[dict]:
        """Book PnL for every position on `slug` and drop it."""
        pending = {token: p for token, p in self.positions.items() if p["market_slug"] == slug}
        if not pending:
            return []

        outcome = PaperTrader.determine_outcome(price_to_beat, final_price)
        if outcome is None:
            logger.warning(
                f"Cannot resolve {slug} (price to beat {price_to_beat}, final {final_price}); "
                f"booking {len(pending)} live position(s) as full losses"
            )

        results = []
        for token_id, pos in pending.items():
            payout = float(pos["shares"]) if outcome is not None and pos["side"] == outcome else 0.0
            pnl = payout - pos["cost"]
            self.record_pnl(pnl)
            results.append({**pos, "outcome": outcome, "payout": payout, "pnl": pnl, "final_price": final_price})
            del self.positions[token_id]
            logger.info(f"LIVE SETTLED {pos['shares']} {pos['side']} on {slug}: {outcome}, pnl ${pnl:+.2f}")
        return results

    # ── Venue passthroughs ──

    def cancel_all(self) -> dict:
        try:
            result = self.order_client.cancel_all_orders()
        except Exception as e:
            logger.error(f"Cancel-all failed: {e}")
            return {"success": False, "error": str(e)}
        logger.info("Cancelled all open orders")
        return result

    def open_orders(self) -> list[dict]:
        return self.order_client.list_open_orders()

    def status(self) -> dict:
        allowed, code, reason = self.can_trade()
        return {
            "enabled": self.enabled,
            "ready": self._is_ready(),
            "can_trade": allowed,
            "blocked_by": None if allowed else code,
            "reason": reason,
            "daily_pnl": self.daily_pnl,
            "pnl_day": self.pnl_day,
            "last_trade_time": self.last_trade_time,
            "positions": dict(self.positions),
            "tracked_slug": self.tracked_slug,
            "settings": self.settings(),
        }
