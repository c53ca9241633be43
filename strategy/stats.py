"""
Session and lifetime counters for the paper engine.

Every change is a pure transition: old stats + event -> new stats. The paper
engine swaps in the returned value, so these functions never touch a clock,
a database or the engine itself.
"""

from dataclasses import dataclass, asdict, fields, replace


@dataclass(frozen=True)
class SessionStats:
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    total_won: float = 0.0
    total_lost: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    current_streak: int = 0  # >0 consecutive wins, <0 consecutive losses
    best_streak: int = 0
    worst_streak: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> "SessionStats":
        return _from_dict(cls, data)


@dataclass(frozen=True)
class LifetimeStats:
    total_sessions: int = 0
    total_trades: int = 0
    total_wins: int = 0
    total_losses: int = 0
    total_won: float = 0.0
    total_lost: float = 0.0
    sessions_won: int = 0
    sessions_lost: int = 0

    @property
    def net_pnl(self) -> float:
        return self.total_won - self.total_lost

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> "LifetimeStats":
        return _from_dict(cls, data)


def _from_dict(cls, data: dict | None):
    if not data:
        return cls()
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


def record_entry(stats: SessionStats) -> SessionStats:
    return replace(stats, total_trades=stats.total_trades + 1)


def record_settlement(stats: SessionStats, pnl: float) -> SessionStats:
    """Fold one settled position into the session counters and streaks."""
    if pnl > 0:
        streak = stats.current_streak + 1 if stats.current_streak > 0 else 1
        return replace(
            stats,
            wins=stats.wins + 1,
            total_won=stats.total_won + pnl,
            largest_win=max(stats.largest_win, pnl),
            current_streak=streak,
            best_streak=max(stats.best_streak, streak),
        )

    loss = -pnl
    streak = stats.current_streak - 1 if stats.current_streak < 0 else -1
    return replace(
        stats,
        losses=stats.losses + 1,
        total_lost=stats.total_lost + loss,
        largest_loss=max(stats.largest_loss, loss),
        current_streak=streak,
        worst_streak=min(stats.worst_streak, streak),
    )


def build_session_record(
    session_id: str,
    started_at: str,
    ended_at: str,
    starting_balance: float,
    ending_balance: float,
    stats: SessionStats,
    wipe_threshold: float,
) -> dict:
    """Immutable history entry for a closed session."""
    pnl = ending_balance - starting_balance
    settled = stats.wins + stats.losses
    return {
        "id": session_id,
        "started_at": started_at,
        "ended_at": ended_at,
        "starting_balance": starting_balance,
        "ending_balance": ending_balance,
        "pnl": pnl,
        "pnl_pct": (pnl / starting_balance * 100) if starting_balance else 0.0,
        "trades": stats.total_trades,
        "wins": stats.wins,
        "losses": stats.losses,
        "win_rate": (stats.wins / settled * 100) if settled else 0.0,
        "wiped": ending_balance < wipe_threshold,
    }


def fold_session(lifetime: LifetimeStats, session: dict, stats: SessionStats) -> LifetimeStats:
    """Add one closed session into the lifetime totals, exactly once."""
    won = session["pnl"] > 0
    return replace(
        lifetime,
        total_sessions=lifetime.total_sessions + 1,
        total_trades=lifetime.total_trades + stats.total_trades,
        total_wins=lifetime.total_wins + stats.wins,
        total_losses=lifetime.total_losses + stats.losses,
        total_won=lifetime.total_won + stats.total_won,
        total_lost=lifetime.total_lost + stats.total_lost,
        sessions_won=lifetime.sessions_won + (1 if won else 0),
        sessions_lost=lifetime.sessions_lost + (0 if won else 1),
    )


def derived_stats(stats: SessionStats) -> dict:
    """Win rate (percent), average win/loss and profit factor for display."""
    settled = stats.wins + stats.losses
    return {
        "win_rate": (stats.wins / settled * 100) if settled else 0.0,
        "avg_win": (stats.total_won / stats.wins) if stats.wins else 0.0,
        "avg_loss": (stats.total_lost / stats.losses) if stats.losses else 0.0,
        "profit_factor": (stats.total_won / stats.total_lost) if stats.total_lost > 0 else None,
    }
