"""
Polymarket wrappers: market discovery (Gamma), prices and books (CLOB REST),
and authenticated order flow (py-clob-client).

Gamma returns several list fields either as JSON-encoded strings or as real
lists. parse_market() settles that once, so the pipeline only ever sees a
strict MarketDescriptor.
"""

import json
import logging
import time
from datetime import datetime

import httpx

from config import POLYMARKET_FUNDER_ADDRESS, POLYMARKET_PRIVATE_KEY, STRATEGY_CONFIG
from errors import DataUnavailable
from pipeline_types import MarketDescriptor, OrderBookSummary

logger = logging.getLogger(__name__)

TIMEOUT = 10  # seconds

_market_cache = {"market": None, "fetched_at": 0.0}


def _get_json(url: str, params: dict | None = None):
    try:
        with httpx.Client(timeout=TIMEOUT) as client:
            resp = client.get(url, params=params)
            resp.raise_for_status()
            return resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise DataUnavailable(f"GET {url} failed: {e}") from e


# ── Market discovery ──


def _as_list(value) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value.strip():
        parsed = json.loads(value)
        if isinstance(parsed, list):
            return parsed
        raise ValueError(f"expected a JSON list, got {type(parsed).__name__}")
    return []


def _to_ms(value) -> int | None:
    if not value:
        return None
    dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return int(dt.timestamp() * 1000)


def _to_float(value) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def parse_market(raw: dict, up_label: str | None = None, down_label: str | None = None) -> MarketDescriptor:
    """Normalize one Gamma market payload. Raises ValueError if it cannot be traded."""
    up_label = (up_label or STRATEGY_CONFIG["up_outcome_label"]).lower()
    down_label = (down_label or STRATEGY_CONFIG["down_outcome_label"]).lower()

    outcomes = [str(o).lower() for o in _as_list(raw.get("outcomes"))]
    token_ids = [str(t) for t in _as_list(raw.get("clobTokenIds"))]
    prices = _as_list(raw.get("outcomePrices"))

    if up_label not in outcomes or down_label not in outcomes:
        raise ValueError(f"market {raw.get('slug')} lacks {up_label}/{down_label} outcomes: {outcomes}")
    up_idx, down_idx = outcomes.index(up_label), outcomes.index(down_label)
    if len(token_ids) <= max(up_idx, down_idx):
        raise ValueError(f"market {raw.get('slug')} is missing token ids")

    liquidity = _to_float(raw.get("liquidityNum")) or _to_float(raw.get("liquidity"))
    return MarketDescriptor(
        slug=str(raw.get("slug") or ""),
        question=str(raw.get("question") or ""),
        up_token_id=token_ids[up_idx],
        down_token_id=token_ids[down_idx],
        end_time_ms=_to_ms(raw.get("endDate")),
        start_time_ms=_to_ms(raw.get("eventStartTime") or raw.get("startTime")),
        liquidity=liquidity,
        up_quote=_to_float(prices[up_idx]) if len(prices) > up_idx else None,
        down_quote=_to_float(prices[down_idx]) if len(prices) > down_idx else None,
    )


def pick_live_market(markets: list[MarketDescriptor], now_ms: int | None = None) -> MarketDescriptor | None:
    """The market whose window contains now, else the soonest one to start."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)

    live = [
        m for m in markets
        if m.end_time_ms is not None and m.end_time_ms > now_ms
        and (m.start_time_ms is None or m.start_time_ms <= now_ms)
    ]
    if live:
        return min(live, key=lambda m: m.end_time_ms)

    upcoming = [m for m in markets if m.start_time_ms is not None and m.start_time_ms > now_ms]
    if upcoming:
        return min(upcoming, key=lambda m: m.start_time_ms)
    return None


def fetch_market_by_slug(slug: str) -> MarketDescriptor | None:
    data = _get_json(f"{STRATEGY_CONFIG['gamma_base_url']}/markets", {"slug": slug})
    rows = data if isinstance(data, list) else [data]
    for raw in rows:
        if isinstance(raw, dict) and raw.get("slug") == slug:
            try:
                return parse_market(raw)
            except ValueError as e:
                raise DataUnavailable(f"Market {slug} unusable: {e}") from e
    return None


def fetch_series_markets(series_id: str | None = None, limit: int = 25) -> list[MarketDescriptor]:
    """Open markets of the configured series. Unparseable entries are skipped."""
    series_id = series_id or STRATEGY_CONFIG["series_id"]
    events = _get_json(
        f"{STRATEGY_CONFIG['gamma_base_url']}/events",
        {"series_id": series_id, "active": "true", "closed": "false", "limit": limit},
    )
    markets = []
    for event in events or []:
        for raw in event.get("markets") or []:
            try:
                markets.append(parse_market(raw))
            except (ValueError, TypeError) as e:
                logger.debug(f"Skipping market {raw.get('slug')}: {e}")
    return markets


def resolve_active_market(now: float | None = None) -> MarketDescriptor | None:
    """Pinned market if configured, else the live series market (cached one poll interval)."""
    pinned = STRATEGY_CONFIG["market_slug"]
    if pinned:
        return fetch_market_by_slug(pinned)

    now = time.time() if now is None else now
    if _market_cache["market"] and now - _market_cache["fetched_at"] < STRATEGY_CONFIG["poll_interval_seconds"]:
        return _market_cache["market"]

    picked = pick_live_market(fetch_series_markets(), int(now * 1000))
    _market_cache["market"] = picked
    _market_cache["fetched_at"] = now
    return picked


# ── Prices and books ──


def fetch_venue_buy_price(token_id: str) -> float | None:
    data = _get_json(f"{STRATEGY_CONFIG['clob_base_url']}/price", {"token_id": token_id, "side": "buy"})
    try:
        return _to_float(data.get("price"))
    except (AttributeError, ValueError) as e:
        raise DataUnavailable(f"Bad price payload for {token_id}: {e}") from e


def summarize_order_book(book: dict | None, depth: int | None = None) -> OrderBookSummary:
    """Best bid/ask, spread, and size summed over the top `depth` levels per side."""
    if not book:
        return OrderBookSummary()
    depth = depth or STRATEGY_CONFIG["orderbook_depth_levels"]

    bids = sorted(
        ((float(b["price"]), float(b["size"])) for b in book.get("bids") or []),
        key=lambda x: x[0], reverse=True,
    )
    asks = sorted(
        ((float(a["price"]), float(a["size"])) for a in book.get("asks") or []),
        key=lambda x: x[0],
    )
    best_bid = bids[0][0] if bids else None
    best_ask = asks[0][0] if asks else None
    return OrderBookSummary(
        best_bid=best_bid,
        best_ask=best_ask,
        spread=(best_ask - best_bid) if best_bid is not None and best_ask is not None else None,
        bid_liquidity=sum(size for _, size in bids[:depth]) if bids else None,
        ask_liquidity=sum(size for _, size in asks[:depth]) if asks else None,
    )


def fetch_order_book(token_id: str) -> OrderBookSummary:
    book = _get_json(f"{STRATEGY_CONFIG['clob_base_url']}/book", {"token_id": token_id})
    try:
        return summarize_order_book(book)
    except (KeyError, TypeError, ValueError) as e:
        raise DataUnavailable(f"Bad order book for {token_id}: {e}") from e


# ── Authenticated order flow ──


class OrderClient:
    """Signed order submission through py-clob-client. Inert until init() succeeds."""

    def __init__(self, private_key: str | None = None, funder: str | None = None):
        self.private_key = POLYMARKET_PRIVATE_KEY if private_key is None else private_key
        self.funder = POLYMARKET_FUNDER_ADDRESS if funder is None else funder
        self._client = None

    def init(self) -> bool:
        if not self.private_key:
            logger.warning("No POLYMARKET_PRIVATE_KEY configured, live trading unavailable")
            return False
        try:
            from py_clob_client.client import ClobClient

            host = STRATEGY_CONFIG["clob_base_url"]
            chain_id = STRATEGY_CONFIG["clob_chain_id"]
            client = ClobClient(host, key=self.private_key, chain_id=chain_id)
            creds = client.create_or_derive_api_creds()
            kwargs = {"key": self.private_key, "chain_id": chain_id, "creds": creds}
            if self.funder:
                kwargs.update(signature_type=1, funder=self.funder)
            self._client = ClobClient(host, **kwargs)
        except Exception as e:
            logger.error(f"Failed to initialize trading client: {e}")
            self._client = None
            return False
        logger.info("Polymarket trading client initialized")
        return True

    def is_trader_ready(self) -> bool:
        return self._client is not None

    def submit_buy_order(self, token_id: str, price: float, size: float) -> dict:
        """Limit buy, good till cancelled. Returns {success, order_id} or {success, error}."""
        if self._client is None:
            return {"success": False, "error": "trading client not initialized"}
        from py_clob_client.clob_types import OrderArgs, OrderType
        from py_clob_client.order_builder.constants import BUY

        try:
            signed = self._client.create_order(
                OrderArgs(token_id=token_id, price=round(price, 2), size=float(size), side=BUY)
            )
            response = self._client.post_order(signed, OrderType.GTC)
        except Exception as e:
            logger.error(f"Order failed: {e}")
            return {"success": False, "error": str(e)}

        if not response.get("success", True) or response.get("errorMsg"):
            return {"success": False, "error": response.get("errorMsg") or "order not accepted"}
        order_id = response.get("orderID")
        logger.info(f"LIVE ORDER: BUY {size} @ {price:.2f} | ID: {order_id} | Status: {response.get('status')}")
        return {"success": True, "order_id": order_id}

    def cancel_all_orders(self) -> dict:
        if self._client is None:
            return {"success": False, "error": "trading client not initialized"}
        try:
            self._client.cancel_all()
        except Exception as e:
            logger.error(f"Cancel-all failed: {e}")
            return {"success": False, "error": str(e)}
        return {"success": True}

    def list_open_orders(self) -> list[dict]:
        if self._client is None:
            return []
        from py_clob_client.clob_types import OpenOrderParams

        try:
            return list(self._client.get_orders(OpenOrderParams()))
        except Exception as e:
            raise DataUnavailable(f"Could not list open orders: {e}") from e
