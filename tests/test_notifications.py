"""Tests for notification formatting and edge cases."""

import sys
from pathlib import Path
from unittest.mock import patch, MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx
import pytest
import notifications


@pytest.fixture(autouse=True)
def mock_telegram():
    """Disable actual Telegram sends for all tests."""
    with patch.object(notifications, "TELEGRAM_BOT_TOKEN", "fake-token"), \
         patch.object(notifications, "TELEGRAM_ADMIN_ID", "12345"), \
         patch("notifications.httpx.Client") as mock_client:
        mock_resp = MagicMock()
        mock_resp.raise_for_status = MagicMock()
        mock_client.return_value.__enter__ = MagicMock(return_value=MagicMock(post=MagicMock(return_value=mock_resp)))
        mock_client.return_value.__exit__ = MagicMock(return_value=False)
        yield mock_client


def _sent_text(mock_client) -> str:
    post = mock_client.return_value.__enter__.return_value.post
    return post.call_args[1]["json"]["text"]


class TestSendPaperTrade:
    def _trade(self, **overrides):
        trade = {
            "id": "PT-1748873220000",
            "market_slug": "btc-updown-15m-1748872800",
            "side": "UP",
            "shares": 125,
            "entry_price": 0.40,
            "cost": 50.0,
            "edge": 0.25,
            "strength": "STRONG",
            "phase": "MID",
            "price_to_beat": 60000.0,
            "time_left_min": 7.0,
        }
        trade.update(overrides)
        return trade

    def test_sends(self, mock_telegram):
        assert notifications.send_paper_trade(self._trade(), 950.0) is True
        text = _sent_text(mock_telegram)
        assert "PAPER BUY UP" in text
        assert "125 @ 0.400" in text
        assert "$60,000.00" in text
        assert "Balance: $950.00" in text

    def test_missing_price_to_beat(self, mock_telegram):
        notifications.send_paper_trade(self._trade(price_to_beat=None, side="DOWN"), 950.0)
        text = _sent_text(mock_telegram)
        assert "PAPER BUY DOWN" in text
        assert "Price to beat: n/a" in text


class TestSendSettlement:
    def test_summary(self, mock_telegram):
        settled = [
            {"market_slug": "m1", "outcome": "UP", "shares": 125, "side": "UP", "pnl": 75.0},
            {"market_slug": "m1", "outcome": "UP", "shares": 10, "side": "DOWN", "pnl": -6.0},
        ]
        assert notifications.send_settlement(settled, 1069.0) is True
        text = _sent_text(mock_telegram)
        assert "SETTLED m1: UP" in text
        assert "Net: $+69.00" in text

    def test_nothing_settled(self, mock_telegram):
        assert notifications.send_settlement([], 1000.0) is False
        mock_telegram.assert_not_called()


class TestOtherAlerts:
    def test_session_closed(self, mock_telegram):
        session = {"starting_balance": 1000.0, "ending_balance": 4.0, "pnl_pct": -99.6,
                   "trades": 12, "wins": 3, "losses": 9, "win_rate": 25.0, "wiped": True}
        assert notifications.send_session_closed(session) is True
        text = _sent_text(mock_telegram)
        assert "[WIPED]" in text
        assert "(-99.6%)" in text

    def test_live_order(self, mock_telegram):
        order = {"shares": 10, "side": "UP", "price": 0.4, "market_slug": "m1", "order_id": "0xabc"}
        assert notifications.send_live_order(order) is True
        assert "Order ID: 0xabc" in _sent_text(mock_telegram)

    def test_live_settlement(self, mock_telegram):
        settled = [{"market_slug": "m1", "shares": 10, "side": "UP", "outcome": None, "pnl": -4.0}]
        assert notifications.send_live_settlement(settled, -4.0) is True
        text = _sent_text(mock_telegram)
        assert "(UNRESOLVED) -> $-4.00" in text
        assert "Today: $-4.00" in text
        assert notifications.send_live_settlement([], 0.0) is False

    def test_error(self, mock_telegram):
        assert notifications.send_error("CYCLE FAILED", "RuntimeError: boom") is True
        assert "CYCLE FAILED" in _sent_text(mock_telegram)


class TestDelivery:
    def test_unconfigured_prints(self, capsys):
        with patch.object(notifications, "TELEGRAM_BOT_TOKEN", ""):
            assert notifications.send_error("X", "detail") is False
        assert "detail" in capsys.readouterr().out

    def test_http_failure_returns_false(self, mock_telegram, capsys):
        mock_telegram.return_value.__enter__.return_value.post.side_effect = httpx.ConnectError("down")
        assert notifications.send_error("X", "detail") is False
        assert "[Telegram failed]" in capsys.readouterr().out
