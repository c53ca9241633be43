"""
Binance spot REST wrapper for candles and the latest traded price.

Retries transient failures, then raises DataUnavailable. Payloads are
normalized to Candle / float here so nothing downstream sees raw arrays.
"""

import time
import logging

import httpx

from config import STRATEGY_CONFIG
from errors import DataUnavailable
from pipeline_types import Candle

logger = logging.getLogger(__name__)

MAX_RETRIES = 2
RETRY_DELAY = 0.5
TIMEOUT = 10  # seconds


def _retry(fn, description: str = "API call"):
    """Retry a function up to MAX_RETRIES times, then raise DataUnavailable."""
    last_error = None
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            return fn()
        except (httpx.HTTPError, ValueError, KeyError, TypeError, IndexError) as e:
            last_error = e
            logger.warning(f"{description} attempt {attempt}/{MAX_RETRIES} failed: {e}")
            if attempt < MAX_RETRIES:
                time.sleep(RETRY_DELAY)
    raise DataUnavailable(f"{description} failed: {last_error}") from last_error


def _get(path: str, params: dict) -> object:
    with httpx.Client(timeout=TIMEOUT) as client:
        resp = client.get(f"{STRATEGY_CONFIG['binance_base_url']}{path}", params=params)
        resp.raise_for_status()
        return resp.json()


def parse_kline(row: list) -> Candle:
    """Binance kline array -> Candle. Prices and volume arrive as strings."""
    return Candle(
        open_time=int(row[0]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
    )


def fetch_candles(interval: str | None = None, limit: int | None = None, symbol: str | None = None) -> list[Candle]:
    """Most recent klines, oldest first."""
    interval = interval or STRATEGY_CONFIG["candle_interval"]
    limit = limit or STRATEGY_CONFIG["candle_limit"]
    symbol = symbol or STRATEGY_CONFIG["symbol"]

    def _call():
        rows = _get("/api/v3/klines", {"symbol": symbol, "interval": interval, "limit": limit})
        if not isinstance(rows, list) or not rows:
            raise ValueError("empty kline response")
        return [parse_kline(r) for r in rows]

    return _retry(_call, f"fetch_candles({symbol} {interval})")


def fetch_spot_price(symbol: str | None = None) -> float:
    symbol = symbol or STRATEGY_CONFIG["symbol"]

    def _call():
        data = _get("/api/v3/ticker/price", {"symbol": symbol})
        price = float(data["price"])
        if price <= 0:
            raise ValueError(f"non-positive price {price}")
        return price

    return _retry(_call, f"fetch_spot_price({symbol})")
