"""
Telegram alerts for paper entries, settlements, session closes, live orders
and loop errors. Uses httpx against the Bot API; prints to stdout when no
bot is configured.
"""

import logging

import httpx

from config import TELEGRAM_BOT_TOKEN, TELEGRAM_ADMIN_ID

logger = logging.getLogger(__name__)

TELEGRAM_API = f"https://api.telegram.org/bot{TELEGRAM_BOT_TOKEN}"
TIMEOUT = 15
RULE = "━" * 23


def _send_message(text: str, parse_mode: str = "") -> bool:
    """Send a message via Telegram Bot API."""
    if not TELEGRAM_BOT_TOKEN or not TELEGRAM_ADMIN_ID:
        logger.debug("Telegram not configured, printing notification")
        print(text)
        return False

    try:
        with httpx.Client(timeout=TIMEOUT) as client:
            resp = client.post(
                f"{TELEGRAM_API}/sendMessage",
                json={
                    "chat_id": TELEGRAM_ADMIN_ID,
                    "text": text,
                    "parse_mode": parse_mode,
                },
            )
            resp.raise_for_status()
            return True
    except httpx.HTTPError as e:
        logger.error(f"Telegram send failed: {e}")
        print(f"[Telegram failed] {text}")
        return False


def send_paper_trade(trade: dict, balance: float) -> bool:
    """Alert for a new paper entry."""
    emoji = "\U0001f7e2" if trade.get("side") == "UP" else "\U0001f534"
    ptb = trade.get("price_to_beat")
    text = (
        f"{emoji} PAPER BUY {trade.get('side')}\n"
        f"{RULE}\n"
        f"Market: {trade.get('market_slug')}\n"
        f"Shares: {trade.get('shares')} @ {trade.get('entry_price', 0):.3f}\n"
        f"Cost: ${trade.get('cost', 0):.2f}\n"
        f"Edge: {trade.get('edge', 0):.1%} ({trade.get('strength')}, {trade.get('phase')})\n"
        f"Price to beat: {f'${ptb:,.2f}' if ptb is not None else 'n/a'}\n"
        f"Time left: {trade.get('time_left_min', 0):.1f} min\n\n"
        f"Balance: ${balance:.2f}"
    )
    return _send_message(text)


def send_settlement(settled: list[dict], balance: float) -> bool:
    """One alert summarizing positions settled on a market switch or force-settle."""
    if not settled:
        return False
    total = sum(p.get("pnl") or 0 for p in settled)
    lines = []
    for p in settled:
        mark = "✅" if (p.get("pnl") or 0) > 0 else "❌"
        lines.append(f"{mark} {p.get('shares')} {p.get('side')} -> ${p.get('pnl', 0):+.2f}")
    text = (
        f"\U0001f3c1 SETTLED {settled[0].get('market_slug')}: {settled[0].get('outcome')}\n"
        f"{RULE}\n"
        + "\n".join(lines)
        + f"\n\nNet: ${total:+.2f}\nBalance: ${balance:.2f}"
    )
    return _send_message(text)


def send_session_closed(session: dict) -> bool:
    wiped = " [WIPED]" if session.get("wiped") else ""
    text = (
        f"\U0001f4ca PAPER SESSION CLOSED{wiped}\n"
        f"{RULE}\n"
        f"${session.get('starting_balance', 0):.2f} → ${session.get('ending_balance', 0):.2f} "
        f"({session.get('pnl_pct', 0):+.1f}%)\n"
        f"Trades: {session.get('trades', 0)} ({session.get('wins', 0)}W / {session.get('losses', 0)}L, "
        f"{session.get('win_rate', 0):.0f}%)"
    )
    return _send_message(text)


def send_live_order(order: dict) -> bool:
    text = (
        f"\U0001f4b8 LIVE ORDER\n"
        f"{RULE}\n"
        f"BUY {order.get('shares')} {order.get('side')} @ {order.get('price', 0):.3f}\n"
        f"Market: {order.get('market_slug')}\n"
        f"Order ID: {order.get('order_id')}"
    )
    return _send_message(text)


def send_live_settlement(settled: list[dict], daily_pnl: float) -> bool:
    if not settled:
        return False
    lines = []
    for p in settled:
        outcome = p.get("outcome") or "UNRESOLVED"
        lines.append(f"{p.get('shares')} {p.get('side')} ({outcome}) -> ${p.get('pnl', 0):+.2f}")
    text = (
        f"\U0001f3c1 LIVE SETTLED {settled[0].get('market_slug')}\n"
        f"{RULE}\n"
        + "\n".join(lines)
        + f"\n\nToday: ${daily_pnl:+.2f}"
    )
    return _send_message(text)


def send_error(title: str, detail: str) -> bool:
    """Send error notification."""
    text = f"⚠️ {title}\n\n{detail}"
    return _send_message(text)
