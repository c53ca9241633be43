#!/usr/bin/env python3
"""
CLI entry point for the 15-minute up/down market assistant.

Usage:
    python job.py run [--live] [--paper]   # Run the cycle loop (optionally enable traders)
    python job.py status                   # One cycle, print the snapshot, no trading
    python job.py signals [n]              # Last n logged signals (default 20)
    python job.py paper-status             # Paper bankroll, stats, sessions
    python job.py paper-enable             # Turn paper trading on
    python job.py paper-disable            # Turn paper trading off
    python job.py paper-reset [balance]    # Close the session, start a new one
    python job.py paper-settle UP|DOWN     # Force-settle all open paper positions
    python job.py paper-wipe [balance]     # Erase paper history and lifetime stats
    python job.py orders                   # List open live orders
    python job.py cancel-all               # Cancel all open live orders
"""

import sys
import logging
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytz

from config import STRATEGY_CONFIG, LOG_DIR
from errors import ConfigInvalid, DataUnavailable, InvariantViolation, NotReadyError, PersistenceFailure
from pipeline_types import FetchResult, MarketSnapshot, OrderBookSummary
from publisher import PriceToBeatLatch, SnapshotPublisher

ET = pytz.timezone("America/New_York")

LOG_DIR.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[
        logging.FileHandler(LOG_DIR / "updown.log"),
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger(__name__)

# Per-field fallback precedence: first source with a value wins
FALLBACK_ORDER = {
    "spot_price": ("spot_ticker", "last_candle_close"),
    "up_price": ("up_clob_buy", "up_gamma_quote"),
    "down_price": ("down_clob_buy", "down_gamma_quote"),
}


def _timestamp() -> str:
    return datetime.now(ET).strftime("%Y-%m-%d %H:%M:%S %Z")


def _call(fn, *args) -> FetchResult:
    """Run one collaborator call, folding any failure into the result."""
    try:
        return FetchResult.success(fn(*args))
    except Exception as e:
        logger.warning(f"{getattr(fn, '__name__', 'fetch')} failed: {e}")
        return FetchResult.failure(e)


def _fetch_all_data(price_client=None, oracle_client=None, market_client=None) -> dict[str, FetchResult]:
    """
    Fan out one cycle's collaborator calls.

    Candles, spot, oracle and market resolution run concurrently; the venue
    prices and books need the market's token ids, so they go in a second
    concurrent round. Every entry is a FetchResult; nothing here raises.
    """
    if price_client is None:
        import binance_client as price_client
    if oracle_client is None:
        import chainlink_client as oracle_client
    if market_client is None:
        import polymarket_client as market_client

    cfg = STRATEGY_CONFIG
    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = {
            "candles": pool.submit(_call, price_client.fetch_candles, cfg["candle_interval"], cfg["candle_limit"]),
            "spot": pool.submit(_call, price_client.fetch_spot_price),
            "oracle": pool.submit(_call, oracle_client.fetch_oracle_price),
            "market": pool.submit(_call, market_client.resolve_active_market),
        }
        results = {name: f.result() for name, f in futures.items()}

    market = results["market"].value if results["market"].ok else None
    if market is None:
        for name in ("up_buy", "down_buy", "up_book", "down_book"):
            results[name] = FetchResult.failure("no active market")
        return results

    with ThreadPoolExecutor(max_workers=4) as pool:
        futures = {
            "up_buy": pool.submit(_call, market_client.fetch_venue_buy_price, market.up_token_id),
            "down_buy": pool.submit(_call, market_client.fetch_venue_buy_price, market.down_token_id),
            "up_book": pool.submit(_call, market_client.fetch_order_book, market.up_token_id),
            "down_book": pool.submit(_call, market_client.fetch_order_book, market.down_token_id),
        }
        results.update({name: f.result() for name, f in futures.items()})
    return results


def _source_values(results: dict[str, FetchResult]) -> dict:
    """Every candidate value by source name; missing sources map to None."""
    def value(name):
        r = results.get(name)
        return r.value if r is not None and r.ok else None

    candles = value("candles") or []
    market = value("market")
    return {
        "spot_ticker": value("spot"),
        "last_candle_close": candles[-1].close if candles else None,
        "up_clob_buy": value("up_buy"),
        "up_gamma_quote": market.up_quote if market else None,
        "down_clob_buy": value("down_buy"),
        "down_gamma_quote": market.down_quote if market else None,
    }


def resolve_field(field: str, sources: dict) -> tuple:
    """(value, source) from the first source in FALLBACK_ORDER that has one, else (None, None)."""
    for source in FALLBACK_ORDER[field]:
        v = sources.get(source)
        if v is not None:
            return v, source
    return None, None


def build_snapshot(
    results: dict[str, FetchResult],
    latch: PriceToBeatLatch,
    now_ms: int | None = None,
    config: dict | None = None,
) -> MarketSnapshot | None:
    """
    Compute one cycle's snapshot from fetched data.

    Returns None when candles are unavailable: without them no indicator can
    be computed, so the cycle is skipped.
    """
    from strategy.edge import compute_edge, decide
    from strategy.indicators import build_indicator_snapshot
    from strategy.probability import apply_time_awareness, score_direction, window_timing
    from strategy.regime import detect_regime

    cfg = config or STRATEGY_CONFIG
    if now_ms is None:
        now_ms = int(time.time() * 1000)

    candles_result = results.get("candles")
    if candles_result is None or not candles_result.ok or not candles_result.value:
        return None
    candles = candles_result.value

    market = results["market"].value if results.get("market") and results["market"].ok else None
    oracle = results["oracle"].value if results.get("oracle") and results["oracle"].ok else None
    oracle_price = oracle.get("price") if oracle else None

    if market is not None and market.end_time_ms is not None:
        time_left = max(0.0, (market.end_time_ms - now_ms) / 60_000)
    else:
        time_left = window_timing(cfg["window_minutes"], now_ms)["remaining_minutes"]

    sources = _source_values(results)
    spot, spot_src = resolve_field("spot_price", sources)
    up_price, up_src = resolve_field("up_price", sources)
    down_price, down_src = resolve_field("down_price", sources)

    reference = oracle_price if oracle_price is not None else spot
    price_to_beat = latch.update(
        market.slug if market else None,
        reference,
        market.start_time_ms if market else None,
        now_ms,
    )

    indicators = build_indicator_snapshot(candles, price=spot, config=cfg)
    regime = detect_regime(
        spot,
        indicators.vwap_value,
        indicators.vwap_slope,
        indicators.vwap_cross_count,
        indicators.recent_volume,
        indicators.average_volume,
        config=cfg,
    )
    model = apply_time_awareness(
        score_direction(indicators, cfg), time_left, cfg["window_minutes"], cfg["time_decay_exponent"]
    )
    edge = compute_edge(model.adjusted_up, model.adjusted_down, up_price, down_price)
    decision = decide(time_left, edge.edge_up, edge.edge_down, model.adjusted_up, model.adjusted_down, cfg)

    up_book = results["up_book"].value if results.get("up_book") and results["up_book"].ok else OrderBookSummary()
    down_book = results["down_book"].value if results.get("down_book") and results["down_book"].ok else OrderBookSummary()

    return MarketSnapshot(
        timestamp=datetime.fromtimestamp(now_ms / 1000, ET).isoformat(),
        market=market,
        time_left_min=time_left,
        spot_price=spot,
        oracle_price=oracle_price,
        price_to_beat=price_to_beat,
        up_price=up_price,
        down_price=down_price,
        indicators=indicators,
        regime=regime,
        model=model,
        edge=edge,
        decision=decision,
        up_book=up_book,
        down_book=down_book,
        price_sources={
            "spot": spot_src,
            "up": up_src,
            "down": down_src,
            "oracle": oracle.get("source") if oracle else None,
        },
    )


def signal_row(snapshot: MarketSnapshot) -> dict:
    """Flatten a snapshot into one signals-table row."""
    return {
        "timestamp": snapshot.timestamp,
        "market_slug": snapshot.slug or None,
        "time_left_min": snapshot.time_left_min,
        "phase": snapshot.phase,
        "regime": snapshot.regime,
        "model_up": snapshot.model.adjusted_up,
        "model_down": snapshot.model.adjusted_down,
        "market_up": snapshot.edge.market_up,
        "market_down": snapshot.edge.market_down,
        "edge_up": snapshot.edge.edge_up,
        "edge_down": snapshot.edge.edge_down,
        "action": snapshot.decision.action,
        "side": snapshot.decision.side,
        "strength": snapshot.decision.strength,
        "price_to_beat": snapshot.price_to_beat,
        "oracle_price": snapshot.oracle_price,
        "spot_price": snapshot.spot_price,
    }


def run_cycle(
    publisher: SnapshotPublisher,
    latch: PriceToBeatLatch,
    paper=None,
    live=None,
    fetch=_fetch_all_data,
    now_ms: int | None = None,
) -> MarketSnapshot | None:
    """Fetch, compute, publish, then let each trader act on the fresh snapshot."""
    import notifications
    from db.models import log_signal, prune_signals

    snapshot = build_snapshot(fetch(), latch, now_ms)
    if snapshot is None:
        logger.warning("Candles unavailable, cycle skipped; previous snapshot stays published")
        return None

    publisher.publish(snapshot)

    try:
        row_id = log_signal(signal_row(snapshot))
        if row_id and row_id % STRATEGY_CONFIG["signal_prune_every"] == 0:
            pruned = prune_signals(STRATEGY_CONFIG["signal_log_max_rows"])
            logger.info(f"Pruned {pruned} old signal rows")
    except (sqlite3.Error, OSError) as e:
        logger.error(f"Signal log write failed: {e}")

    if paper is not None:
        sessions_before = len(paper.session_history)
        outcome = paper.evaluate_and_trade(snapshot)
        if outcome.settled:
            notifications.send_settlement(outcome.settled, paper.balance)
        if len(paper.session_history) > sessions_before:
            notifications.send_session_closed(paper.session_history[-1])
        if outcome.traded:
            notifications.send_paper_trade(outcome.trade, paper.balance)

    if live is not None:
        outcome = live.evaluate_and_trade(snapshot)
        if outcome.settled:
            notifications.send_live_settlement(outcome.settled, live.daily_pnl)
        if outcome.traded:
            notifications.send_live_order(outcome.trade)

    return snapshot


def run_loop(
    publisher: SnapshotPublisher,
    latch: PriceToBeatLatch,
    paper=None,
    live=None,
    iterations: int | None = None,
    fetch=_fetch_all_data,
    sleep=time.sleep,
) -> int:
    """
    Run cycles sequentially at the configured poll interval.

    A failing cycle is logged and the loop carries on, except for an
    InvariantViolation, which stops the loop. Returns the number of cycles
    that published a snapshot.
    """
    import notifications

    interval = STRATEGY_CONFIG["poll_interval_seconds"]
    published = 0
    failing = False
    n = 0
    while iterations is None or n < iterations:
        n += 1
        started = time.monotonic()
        try:
            if run_cycle(publisher, latch, paper, live, fetch) is not None:
                published += 1
            failing = False
        except InvariantViolation as e:
            logger.critical(f"Cycle {n} hit a bookkeeping defect, stopping: {e}")
            notifications.send_error("FATAL: INVARIANT VIOLATED", str(e))
            raise
        except Exception as e:
            logger.exception(f"Cycle {n} failed: {e}")
            if not failing:
                notifications.send_error("CYCLE FAILED", f"{type(e).__name__}: {e}")
            failing = True
        sleep(max(0.0, interval - (time.monotonic() - started)))
    return published


def _print_snapshot(snapshot: MarketSnapshot) -> None:
    ind = snapshot.indicators
    print(f"\n{'='*50}")
    print(f"  Up/Down Assistant - STATUS")
    print(f"  {_timestamp()}")
    print(f"{'='*50}\n")

    print(f"Market: {snapshot.slug or 'none'}")
    if snapshot.market:
        print(f"  {snapshot.market.question}")
        if snapshot.market.liquidity is not None:
            print(f"  Liquidity: ${snapshot.market.liquidity:,.0f}")
    print(f"  Time left: {snapshot.time_left_min:.1f} min ({snapshot.phase})")

    def fmt(v, spec=",.2f"):
        return "n/a" if v is None else format(v, spec)

    print(f"\nSpot: {fmt(snapshot.spot_price)} ({snapshot.price_sources.get('spot')})")
    print(f"Oracle: {fmt(snapshot.oracle_price)}")
    print(f"Price to beat: {fmt(snapshot.price_to_beat)}")

    print(f"\nRegime: {snapshot.regime}")
    print(f"  VWAP: {fmt(ind.vwap_value)} (slope {fmt(ind.vwap_slope, '+.3f')}, "
          f"dist {fmt(ind.vwap_distance, '+.4%')})")
    print(f"  RSI: {fmt(ind.rsi_value, '.1f')} (slope {fmt(ind.rsi_slope, '+.2f')})")
    print(f"  MACD: {ind.macd.label if ind.macd else 'n/a'}")
    print(f"  Heiken-Ashi: {ind.heiken_color} x{ind.heiken_streak}")

    print(f"\nModel: UP {snapshot.model.adjusted_up:.1%} / DOWN {snapshot.model.adjusted_down:.1%} "
          f"(raw {snapshot.model.raw_up:.1%}, decay {snapshot.model.time_decay:.2f})")
    print(f"Market: UP {fmt(snapshot.up_price, '.3f')} / DOWN {fmt(snapshot.down_price, '.3f')}")
    print(f"Edge: UP {fmt(snapshot.edge.edge_up, '+.1%')} / DOWN {fmt(snapshot.edge.edge_down, '+.1%')}")

    d = snapshot.decision
    print(f"\nDecision: {d.action} {d.side or ''} {d.strength or ''} ({d.reason})")


def cmd_run(live: bool = False, paper: bool = False):
    """Run the cycle loop until interrupted."""
    from db.models import init_tables
    from polymarket_client import OrderClient
    from strategy.executor import LiveTrader
    from strategy.paper_trader import PaperTrader

    init_tables()
    publisher = SnapshotPublisher()
    latch = PriceToBeatLatch()

    paper_trader = PaperTrader()
    if paper:
        paper_trader.enable()

    live_trader = None
    if live:
        order_client = OrderClient()
        order_client.init()
        live_trader = LiveTrader(order_client)
        live_trader.enable()

    logger.info(
        f"Starting loop: paper {'on' if paper_trader.enabled else 'off'}, "
        f"live {'on' if live_trader else 'off'}"
    )
    try:
        run_loop(publisher, latch, paper_trader, live_trader)
    except KeyboardInterrupt:
        logger.info(f"Stopped by user after {publisher.published_count} published snapshots")


def cmd_status():
    """One cycle, no trading."""
    from db.models import init_tables

    init_tables()
    publisher = SnapshotPublisher()
    run_cycle(publisher, PriceToBeatLatch())
    try:
        _print_snapshot(publisher.latest())
    except NotReadyError:
        print("No snapshot: candle data unavailable")
        sys.exit(1)


def cmd_signals(limit: int = 20):
    """Most recent signal rows, newest first."""
    from db.models import get_recent_signals, init_tables

    init_tables()
    rows = get_recent_signals(limit)
    if not rows:
        print("No signals logged yet")
        return

    def pct(v):
        return "   n/a" if v is None else f"{v:+.1%}"

    for r in rows:
        print(f"  {r['timestamp']}  {r['market_slug'] or '-':<28} {r['phase'] or '-':<5} "
              f"{r['regime'] or '-':<10} edge UP {pct(r['edge_up'])} DOWN {pct(r['edge_down'])}  "
              f"{r['action']} {r['side'] or ''} {r['strength'] or ''}")


def cmd_paper_status():
    from strategy.paper_trader import PaperTrader

    status = PaperTrader().status()
    stats = status["stats"]
    life = status["lifetime"]

    print(f"\n{'='*50}")
    print(f"  Paper Trading - {'ENABLED' if status['enabled'] else 'DISABLED'}")
    print(f"  {_timestamp()}")
    print(f"{'='*50}\n")
    print(f"Session {status['session_id']} (since {status['session_started_at']})")
    print(f"  Balance: ${status['balance']:.2f} (start ${status['starting_balance']:.2f})")
    print(f"  Total value: ${status['total_value']:.2f}, PnL ${status['pnl']:+.2f}")
    print(f"  Trades: {stats['total_trades']} ({stats['wins']}W / {stats['losses']}L, {stats['win_rate']:.0f}%)")
    pf = stats["profit_factor"]
    print(f"  Avg win ${stats['avg_win']:.2f}, avg loss ${stats['avg_loss']:.2f}, "
          f"profit factor {'n/a' if pf is None else f'{pf:.2f}'}")
    print(f"  Streak {stats['current_streak']:+d} (best {stats['best_streak']}, worst {stats['worst_streak']})")

    if status["open_positions"]:
        print("\nOpen positions:")
        for p in status["open_positions"]:
            print(f"  {p['id']} {p['shares']} {p['side']} @ {p['entry_price']:.3f} on {p['market_slug']}")

    print(f"\nLifetime: {life['total_sessions']} sessions ({life['sessions_won']} won), "
          f"{life['total_trades']} trades, net ${life['net_pnl']:+.2f}")
    for s in status["sessions"]:
        print(f"  {s['id']}: ${s['starting_balance']:.2f} -> ${s['ending_balance']:.2f} "
              f"({s['pnl_pct']:+.1f}%){' WIPED' if s['wiped'] else ''}")


def cmd_paper_toggle(enabled: bool):
    from strategy.paper_trader import PaperTrader

    trader = PaperTrader()
    if enabled:
        trader.enable()
    else:
        trader.disable()
    print(f"Paper trading {'enabled' if enabled else 'disabled'}")


def _parse_balance(args: list[str]) -> float | None:
    if not args:
        return None
    try:
        return float(args[0])
    except ValueError:
        print(f"Invalid balance: {args[0]}")
        sys.exit(1)


def _parse_limit(args: list[str]) -> int:
    if not args:
        return 20
    try:
        return max(1, int(args[0]))
    except ValueError:
        print(f"Invalid count: {args[0]}")
        sys.exit(1)


def cmd_paper_reset(balance: float | None = None, wipe: bool = False):
    import notifications
    from strategy.paper_trader import PaperTrader

    trader = PaperTrader()
    try:
        if wipe:
            trader.full_reset(balance)
            print(f"Paper history wiped, balance ${trader.balance:.2f}")
            return
        closed = trader.reset(balance)
    except ConfigInvalid as e:
        print(f"Rejected: {e}")
        sys.exit(1)
    if closed:
        notifications.send_session_closed(closed)
    print(f"New paper session with ${trader.balance:.2f}")


def cmd_paper_settle(outcome: str):
    import notifications
    from strategy.paper_trader import PaperTrader

    trader = PaperTrader()
    try:
        settled = trader.force_settle(outcome)
    except ConfigInvalid as e:
        print(f"Rejected: {e}")
        sys.exit(1)
    if not settled:
        print("No open positions")
        return
    notifications.send_settlement(settled, trader.balance)
    for p in settled:
        print(f"  {p['id']}: {p['shares']} {p['side']} -> pnl ${p['pnl']:+.2f}")
    print(f"Balance: ${trader.balance:.2f}")


def cmd_orders():
    from polymarket_client import OrderClient

    client = OrderClient()
    if not client.init():
        print("Trading client unavailable")
        sys.exit(1)
    try:
        orders = client.list_open_orders()
    except DataUnavailable as e:
        print(f"Could not list orders: {e}")
        sys.exit(1)
    if not orders:
        print("No open orders")
    for o in orders:
        print(f"  {o.get('id')} {o.get('side')} {o.get('original_size')} @ {o.get('price')} ({o.get('status')})")


def cmd_cancel_all():
    from polymarket_client import OrderClient

    client = OrderClient()
    if not client.init():
        print("Trading client unavailable")
        sys.exit(1)
    result = client.cancel_all_orders()
    print("Cancelled all open orders" if result.get("success") else f"Cancel failed: {result.get('error')}")


def main():
    if len(sys.argv) < 2:
        print("Usage: python job.py {run|status|signals|paper-status|paper-enable|paper-disable|"
              "paper-reset|paper-settle|paper-wipe|orders|cancel-all}")
        print("  run [--live] [--paper]  Run the cycle loop")
        print("  status                  One cycle, print snapshot (no trading)")
        print("  signals [n]             Last n logged signals")
        print("  paper-status            Paper bankroll and stats")
        print("  paper-enable            Enable paper trading")
        print("  paper-disable           Disable paper trading")
        print("  paper-reset [balance]   Close session, start fresh")
        print("  paper-settle UP|DOWN    Force-settle open paper positions")
        print("  paper-wipe [balance]    Erase paper history")
        print("  orders                  List open live orders")
        print("  cancel-all              Cancel all open live orders")
        sys.exit(1)

    command = sys.argv[1]
    args = sys.argv[2:]

    try:
        if command == "run":
            cmd_run(live="--live" in args, paper="--paper" in args)
        elif command == "status":
            cmd_status()
        elif command == "signals":
            cmd_signals(_parse_limit(args))
        elif command == "paper-status":
            cmd_paper_status()
        elif command == "paper-enable":
            cmd_paper_toggle(True)
        elif command == "paper-disable":
            cmd_paper_toggle(False)
        elif command == "paper-reset":
            cmd_paper_reset(_parse_balance(args))
        elif command == "paper-settle":
            if not args:
                print("Usage: python job.py paper-settle UP|DOWN")
                sys.exit(1)
            cmd_paper_settle(args[0])
        elif command == "paper-wipe":
            cmd_paper_reset(_parse_balance(args), wipe=True)
        elif command == "orders":
            cmd_orders()
        elif command == "cancel-all":
            cmd_cancel_all()
        else:
            print(f"Unknown command: {command}")
            sys.exit(1)
    except PersistenceFailure as e:
        logger.error(f"Storage unavailable: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
