"""
Paper trading engine: the live decision flow against a virtual bankroll.

Entry gates, in order (first failure wins):
- DISABLED: engine switched off
- RESET_PENDING: balance under the auto-reset threshold with nothing open;
  the session is closed and a fresh one started on this call
- BALANCE_TOO_LOW: balance under the threshold while positions are still open
- COOLDOWN: last entry too recent
- NOT_ACTIONABLE: decision is not ENTER
- EDGE_TOO_LOW: edge under the paper minimum
- WEAK_SIGNAL: strength not GOOD or STRONG
- LATE_PHASE: no entries in the last minutes of a window
- INVALID_PRICE: side price outside (0, 1)
- SIZE_TOO_SMALL: under one share or one dollar
- INSUFFICIENT_BALANCE: cost exceeds balance

Open positions settle when the tracked market slug changes, against the last
price-to-beat and reference price seen for the old slug. The full engine
state is written to sqlite after every change and reloaded on construction.
"""

import logging
import time
from datetime import datetime

import pytz

from config import STRATEGY_CONFIG
from db.models import init_tables, load_paper_state, save_paper_state
from errors import ConfigInvalid, InvariantViolation, PersistenceFailure
from pipeline_types import MarketSnapshot, TradeOutcome
from strategy.sizing import paper_position_size
from strategy.stats import (
    LifetimeStats,
    SessionStats,
    build_session_record,
    derived_stats,
    fold_session,
    record_entry,
    record_settlement,
)

logger = logging.getLogger(__name__)

ET = pytz.timezone("America/New_York")

TRADED = "TRADED"
DISABLED = "DISABLED"
RESET_PENDING = "RESET_PENDING"
BALANCE_TOO_LOW = "BALANCE_TOO_LOW"
COOLDOWN = "COOLDOWN"
NOT_ACTIONABLE = "NOT_ACTIONABLE"
EDGE_TOO_LOW = "EDGE_TOO_LOW"
WEAK_SIGNAL = "WEAK_SIGNAL"
LATE_PHASE = "LATE_PHASE"
INVALID_PRICE = "INVALID_PRICE"
SIZE_TOO_SMALL = "SIZE_TOO_SMALL"
INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"

# reconfigure() field -> (STRATEGY_CONFIG key, is a fraction in (0, 1])
TUNABLE_FIELDS = {
    "min_edge": ("paper_min_edge", True),
    "max_position_pct": ("paper_max_position_pct", True),
    "cooldown_seconds": ("paper_cooldown_seconds", False),
    "auto_reset_threshold": ("paper_auto_reset_threshold", False),
}


def validate_fields(fields: dict, allowed: dict) -> dict:
    """Check a reconfiguration request; returns the parsed floats or raises ConfigInvalid."""
    if not fields:
        raise ConfigInvalid("No fields given")
    parsed = {}
    for name, value in fields.items():
        if name not in allowed:
            raise ConfigInvalid(f"Unknown field: {name}")
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ConfigInvalid(f"{name} must be numeric, got {value!r}")
        try:
            number = float(value)
        except ValueError:
            raise ConfigInvalid(f"{name} must be numeric, got {value!r}")
        if number != number or number < 0:
            raise ConfigInvalid(f"{name} must be a non-negative number, got {value!r}")
        _, is_fraction = allowed[name]
        if is_fraction and not 0 < number <= 1:
            raise ConfigInvalid(f"{name} must be within (0, 1], got {value!r}")
        parsed[name] = number
    return parsed


class PaperTrader:
    """Persistent paper simulation of the entry/settlement flow."""

    def __init__(self, config: dict | None = None, db_path=None, clock=time.time):
        cfg = config or STRATEGY_CONFIG
        self.db_path = db_path
        self.clock = clock
        self.min_edge = cfg["paper_min_edge"]
        self.max_position_pct = cfg["paper_max_position_pct"]
        self.cooldown_seconds = cfg["paper_cooldown_seconds"]
        self.auto_reset_threshold = cfg["paper_auto_reset_threshold"]
        self.default_balance = cfg["paper_starting_balance"]

        self._fresh_state(self.default_balance)
        self.enabled = False
        self.lifetime = LifetimeStats()
        self.session_history: list[dict] = []
        self.load()

    # ── State ──

    def _now_iso(self) -> str:
        return datetime.fromtimestamp(self.clock(), ET).isoformat()

    def _fresh_state(self, starting_balance: float) -> None:
        """Start a new session; history, lifetime stats and the enabled flag are untouched."""
        self.balance = float(starting_balance)
        self.starting_balance = float(starting_balance)
        self.session_id = f"S-{int(self.clock() * 1000)}"
        self.session_started_at = self._now_iso()
        self.trades: list[dict] = []
        self.open_positions: list[dict] = []
        self.stats = SessionStats()
        self.last_trade_time: float | None = None
        self.tracked_slug: str | None = None
        self.last_settlement: dict = {"price_to_beat": None, "final_price": None}

    def to_state(self) -> dict:
        return {
            "enabled": self.enabled,
            "balance": self.balance,
            "starting_balance": self.starting_balance,
            "session_id": self.session_id,
            "session_started_at": self.session_started_at,
            "trades": self.trades,
            "open_positions": self.open_positions,
            "stats": self.stats.to_dict(),
            "session_history": self.session_history,
            "lifetime": self.lifetime.to_dict(),
            "last_trade_time": self.last_trade_time,
            "tracked_slug": self.tracked_slug,
            "last_settlement": self.last_settlement,
        }

    def from_state(self, state: dict) -> None:
        self.enabled = bool(state.get("enabled", False))
        self.balance = float(state["balance"])
        self.starting_balance = float(state.get("starting_balance", self.balance))
        self.session_id = state.get("session_id", self.session_id)
        self.session_started_at = state.get("session_started_at", self.session_started_at)
        self.trades = list(state.get("trades", []))
        self.open_positions = list(state.get("open_positions", []))
        self.stats = SessionStats.from_dict(state.get("stats"))
        self.session_history = list(state.get("session_history", []))
        self.lifetime = LifetimeStats.from_dict(state.get("lifetime"))
        self.last_trade_time = state.get("last_trade_time")
        self.tracked_slug = state.get("tracked_slug")
        self.last_settlement = dict(
            state.get("last_settlement") or {"price_to_beat": None, "final_price": None}
        )

    def load(self) -> None:
        """Reload persisted state. A missing or unreadable store means a fresh start."""
        try:
            init_tables(db_path=self.db_path)
            state = load_paper_state(db_path=self.db_path)
        except PersistenceFailure as e:
            logger.error(f"Paper state unreadable, starting fresh: {e}")
            return
        if state is None:
            logger.info(f"No saved paper state, starting with ${self.balance:.2f}")
            return
        try:
            self.from_state(state)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Paper state malformed, starting fresh: {e}")
            self._fresh_state(self.default_balance)
            self.enabled = False
            self.lifetime = LifetimeStats()
            self.session_history = []
            return
        logger.info(
            f"Loaded paper state: balance ${self.balance:.2f}, "
            f"{len(self.open_positions)} open, {len(self.session_history)} past sessions"
        )

    def save(self) -> bool:
        """Write the full state. A failed write is logged; in-memory state stands."""
        try:
            save_paper_state(self.to_state(), db_path=self.db_path)
            return True
        except PersistenceFailure as e:
            logger.error(f"Paper state save failed: {e}")
            return False

    # ── Controls ──

    def enable(self) -> None:
        self.enabled = True
        logger.info("Paper trading enabled")
        self.save()

    def disable(self) -> None:
        self.enabled = False
        logger.info("Paper trading disabled")
        self.save()

    def reconfigure(self, **fields) -> dict:
        """Apply numeric threshold changes atomically. Raises ConfigInvalid."""
        parsed = validate_fields(fields, TUNABLE_FIELDS)
        for name, value in parsed.items():
            setattr(self, name, value)
        logger.info(f"Paper trader reconfigured: {parsed}")
        return self.settings()

    def settings(self) -> dict:
        return {name: getattr(self, name) for name in TUNABLE_FIELDS}

    # ── Gates ──

    def check_auto_reset(self) -> bool:
        """Close the session if the bankroll is spent and nothing is open."""
        if self.balance < self.auto_reset_threshold and not self.open_positions:
            logger.warning(
                f"Paper balance ${self.balance:.2f} below ${self.auto_reset_threshold:.2f}, auto-resetting session"
            )
            self.reset(self.starting_balance)
            return True
        return False

    def can_trade(self) -> tuple[bool, str, str]:
        """Account-level gates. Returns (allowed, code, reason)."""
        if not self.enabled:
            return False, DISABLED, "Paper trading disabled"

        if self.check_auto_reset():
            return False, RESET_PENDING, "Balance below threshold, session reset; trading resumes next cycle"

        if self.balance < self.auto_reset_threshold:
            return False, BALANCE_TOO_LOW, (
                f"Balance ${self.balance:.2f} below ${self.auto_reset_threshold:.2f}, "
                f"waiting on {len(self.open_positions)} open position(s)"
            )

        if self.last_trade_time is not None:
            elapsed = self.clock() - self.last_trade_time
            if elapsed < self.cooldown_seconds:
                return False, COOLDOWN, f"Cooldown: {self.cooldown_seconds - elapsed:.0f}s remaining"

        return True, TRADED, "ok"

    # ── Cycle entry point ──

    def evaluate_and_trade(self, snapshot: MarketSnapshot) -> TradeOutcome:
        """Track the market, settle on a switch, then run the entry gates."""
        settled = self._track_market(snapshot)

        allowed, code, reason = self.can_trade()
        if not allowed:
            return TradeOutcome(False, code, reason, settled=settled)

        decision = snapshot.decision
        if decision.action != "ENTER" or decision.side is None:
            return TradeOutcome(False, NOT_ACTIONABLE, decision.reason or "No entry signal", settled=settled)

        edge = decision.edge or 0.0
        if edge < self.min_edge:
            return TradeOutcome(
                False, EDGE_TOO_LOW, f"Edge {edge:.1%} below minimum {self.min_edge:.1%}", settled=settled
            )

        if decision.strength not in ("GOOD", "STRONG"):
            return TradeOutcome(False, WEAK_SIGNAL, f"Strength {decision.strength}", settled=settled)

        if decision.phase == "LATE":
            return TradeOutcome(False, LATE_PHASE, "No entries in LATE phase", settled=settled)

        price = snapshot.price_for(decision.side)
        if price is None or not 0 < price < 1:
            return TradeOutcome(False, INVALID_PRICE, f"Invalid {decision.side} price: {price}", settled=settled)

        sizing = paper_position_size(self.balance, edge, price, self.max_position_pct)
        if sizing["shares"] < 1 or sizing["size"] < 1:
            return TradeOutcome(
                False, SIZE_TOO_SMALL, f"Size ${sizing['size']:.2f} / {sizing['shares']} shares too small",
                settled=settled,
            )

        if sizing["cost"] > self.balance:
            return TradeOutcome(
                False, INSUFFICIENT_BALANCE,
                f"Cost ${sizing['cost']:.2f} exceeds balance ${self.balance:.2f}", settled=settled,
            )

        trade = self._open_position(snapshot, decision.side, price, sizing["shares"], edge)
        return TradeOutcome(True, TRADED, f"Bought {trade['shares']} {trade['side']} @ {price:.3f}",
                            trade=trade, settled=settled)

    # ── Entry ──

    def _next_trade_id(self) -> str:
        base = f"PT-{int(self.clock() * 1000)}"
        existing = {t["id"] for t in self.trades}
        trade_id, n = base, 1
        while trade_id in existing:
            n += 1
            trade_id = f"{base}-{n}"
        return trade_id

    def _open_position(self, snapshot: MarketSnapshot, side: str, price: float, shares: int, edge: float) -> dict:
        cost = shares * price
        if shares <= 0 or cost > self.balance:
            raise InvariantViolation(f"Entry of {shares} shares costing {cost} with balance {self.balance}")

        trade = {
            "id": self._next_trade_id(),
            "timestamp": self._now_iso(),
            "market_slug": snapshot.slug,
            "side": side,
            "shares": shares,
            "entry_price": price,
            "cost": cost,
            "price_to_beat": snapshot.price_to_beat,
            "current_price": snapshot.reference_price,
            "edge": edge,
            "strength": snapshot.decision.strength,
            "phase": snapshot.decision.phase,
            "time_left_min": snapshot.time_left_min,
            "status": "OPEN",
            "pnl": None,
            "payout": None,
            "exit_price": None,
            "outcome": None,
            "final_price": None,
            "settled_at": None,
        }
        self.balance -= cost
        self.trades.append(trade)
        self.open_positions.append(dict(trade))
        self.stats = record_entry(self.stats)
        self.last_trade_time = self.clock()

        logger.info(
            f"PAPER BUY {shares} {side} @ {price:.3f} (${cost:.2f}) on {snapshot.slug}, "
            f"edge {edge:.1%}, balance ${self.balance:.2f}"
        )
        self.save()
        return dict(trade)

    # ── Settlement ──

    def _track_market(self, snapshot: MarketSnapshot) -> list[dict]:
        """Follow the active slug; settle the old slug's positions when it changes."""
        slug = snapshot.slug
        if not slug:
            return []

        settled = []
        changed = False
        if self.tracked_slug and slug != self.tracked_slug:
            old = self.tracked_slug
            logger.info(f"Market switched {old} -> {slug}")
            settled = self.settle_positions(
                old, self.last_settlement.get("price_to_beat"), self.last_settlement.get("final_price")
            )
            self.last_settlement = {"price_to_beat": None, "final_price": None}
            changed = True

        if slug != self.tracked_slug:
            self.tracked_slug = slug
            changed = True

        latest = {
            "price_to_beat": snapshot.price_to_beat if snapshot.price_to_beat is not None
            else self.last_settlement.get("price_to_beat"),
            "final_price": snapshot.reference_price if snapshot.reference_price is not None
            else self.last_settlement.get("final_price"),
        }
        if latest != self.last_settlement:
            self.last_settlement = latest
            changed = True

        if changed:
            self.save()
        return settled

    @staticmethod
    def determine_outcome(price_to_beat: float | None, final_price: float | None) -> str | None:
        """UP if the final price is strictly above the price to beat, else DOWN. None if unknown."""
        if price_to_beat is None or final_price is None:
            return None
        return "UP" if final_price > price_to_beat else "DOWN"

    def settle_positions(self, slug: str, price_to_beat: float | None, final_price: float | None) -> list[dict]:
        """Settle every OPEN position on `slug`. Deferred (nothing settled) if the outcome is unknown."""
        pending = [p for p in self.open_positions if p["market_slug"] == slug]
        if not pending:
            return []

        outcome = self.determine_outcome(price_to_beat, final_price)
        if outcome is None:
            logger.warning(
                f"Cannot resolve {slug} (price to beat {price_to_beat}, final {final_price}); "
                f"{len(pending)} position(s) stay open until force-settled"
            )
            return []

        logger.info(f"Settling {len(pending)} position(s) on {slug}: {outcome} ({final_price} vs {price_to_beat})")
        return self._settle(pending, outcome, final_price, "SETTLED")

    def force_settle(self, outcome: str) -> list[dict]:
        """Settle every open position with an explicit outcome."""
        outcome = str(outcome).upper()
        if outcome not in ("UP", "DOWN"):
            raise ConfigInvalid(f"Outcome must be UP or DOWN, got {outcome!r}")
        if not self.open_positions:
            return []
        logger.info(f"Force-settling {len(self.open_positions)} position(s) as {outcome}")
        return self._settle(list(self.open_positions), outcome, None, "FORCE_SETTLED")

    def _settle(self, positions: list[dict], outcome: str, final_price: float | None, status: str) -> list[dict]:
        settled_at = self._now_iso()
        results = []
        for pos in positions:
            won = pos["side"] == outcome
            payout = float(pos["shares"]) if won else 0.0
            pnl = payout - pos["cost"]
            self.balance += payout
            if self.balance < 0:
                raise InvariantViolation(f"Balance went negative settling {pos['id']}")
            self.stats = record_settlement(self.stats, pnl)

            fields = {
                "status": status,
                "outcome": outcome,
                "payout": payout,
                "pnl": pnl,
                "exit_price": 1.0 if won else 0.0,
                "final_price": final_price,
                "settled_at": settled_at,
            }
            for trade in self.trades:
                if trade["id"] == pos["id"]:
                    trade.update(fields)
                    results.append(dict(trade))
                    break
            else:
                results.append({**pos, **fields})

            logger.info(
                f"PAPER {'WIN' if won else 'LOSS'} {pos['id']}: {pos['shares']} {pos['side']} -> "
                f"payout ${payout:.2f}, pnl ${pnl:+.2f}"
            )

        settled_ids = {p["id"] for p in positions}
        self.open_positions = [p for p in self.open_positions if p["id"] not in settled_ids]
        self.save()
        return results

    # ── Sessions ──

    def reset(self, starting_balance: float | None = None, record_session: bool = True) -> dict | None:
        """Close the current session into history (if it traded) and start a fresh one."""
        if starting_balance is None:
            starting_balance = self.default_balance
        if isinstance(starting_balance, bool) or not isinstance(starting_balance, (int, float)) \
                or starting_balance <= 0:
            raise ConfigInvalid(f"Starting balance must be a positive number, got {starting_balance!r}")

        closed = None
        if record_session and self.stats.total_trades > 0:
            closed = build_session_record(
                self.session_id,
                self.session_started_at,
                self._now_iso(),
                self.starting_balance,
                self.balance,
                self.stats,
                self.auto_reset_threshold,
            )
            self.session_history.append(closed)
            self.lifetime = fold_session(self.lifetime, closed, self.stats)
            logger.info(
                f"Session {closed['id']} closed: ${closed['starting_balance']:.2f} -> "
                f"${closed['ending_balance']:.2f} ({closed['pnl_pct']:+.1f}%), "
                f"{closed['trades']} trades{' [WIPED]' if closed['wiped'] else ''}"
            )

        if self.open_positions:
            logger.warning(f"Reset discards {len(self.open_positions)} open position(s)")

        tracked, last = self.tracked_slug, self.last_settlement
        self._fresh_state(starting_balance)
        # The market being followed has not changed
        self.tracked_slug, self.last_settlement = tracked, last
        logger.info(f"New paper session {self.session_id} with ${self.balance:.2f}")
        self.save()
        return closed

    def full_reset(self, starting_balance: float | None = None) -> None:
        """Wipe everything, history and lifetime stats included."""
        self.reset(starting_balance, record_session=False)
        self.session_history = []
        self.lifetime = LifetimeStats()
        logger.info("Paper history and lifetime stats wiped")
        self.save()

    # ── Reporting ──

    def status(self) -> dict:
        self.check_auto_reset()
        open_cost = sum(p["cost"] for p in self.open_positions)
        lifetime = self.lifetime.to_dict()
        lifetime["net_pnl"] = self.lifetime.net_pnl
        return {
            "enabled": self.enabled,
            "session_id": self.session_id,
            "session_started_at": self.session_started_at,
            "balance": self.balance,
            "starting_balance": self.starting_balance,
            "pnl": self.balance + open_cost - self.starting_balance,
            "total_value": self.balance + open_cost,
            "open_positions": [dict(p) for p in self.open_positions],
            "recent_trades": [dict(t) for t in reversed(self.trades[-20:])],
            "stats": {**self.stats.to_dict(), **derived_stats(self.stats)},
            "sessions": list(reversed(self.session_history[-10:])),
            "lifetime": lifetime,
            "tracked_slug": self.tracked_slug,
            "settings": self.settings(),
        }
