"""
Chainlink BTC/USD oracle read over Polygon JSON-RPC.

Calls latestRoundData() on the aggregator with a raw eth_call, trying each
configured RPC URL in turn. No web3 dependency: the ABI return is five
32-byte words and only two of them are needed.
"""

import logging
import time

import httpx

from config import POLYGON_RPC_URLS, STRATEGY_CONFIG
from errors import DataUnavailable

logger = logging.getLogger(__name__)

TIMEOUT = 8  # seconds
LATEST_ROUND_DATA = "0xfeaf968c"


def decode_latest_round(result_hex: str, decimals: int) -> dict:
    """
    Decode (roundId, answer, startedAt, updatedAt, answeredInRound).

    Returns {"price": float, "updated_at": int (epoch ms)}.
    """
    data = result_hex[2:] if result_hex.startswith("0x") else result_hex
    if len(data) < 64 * 5:
        raise ValueError(f"short latestRoundData result ({len(data)} hex chars)")
    words = [data[i:i + 64] for i in range(0, 64 * 5, 64)]

    answer = int(words[1], 16)
    if answer >= 2 ** 255:  # int256
        answer -= 2 ** 256
    updated_at = int(words[3], 16)

    if answer <= 0:
        raise ValueError(f"non-positive oracle answer {answer}")
    return {"price": answer / 10 ** decimals, "updated_at": updated_at * 1000}


def _eth_call(rpc_url: str, to: str, data: str) -> str:
    payload = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "eth_call",
        "params": [{"to": to, "data": data}, "latest"],
    }
    with httpx.Client(timeout=TIMEOUT) as client:
        resp = client.post(rpc_url, json=payload)
        resp.raise_for_status()
        body = resp.json()
    if body.get("error"):
        raise ValueError(f"rpc error: {body['error']}")
    return body["result"]


def fetch_oracle_price(rpc_urls: list[str] | None = None) -> dict:
    """
    Latest oracle answer.

    Returns:
        {"price": float, "updated_at": int (epoch ms), "source": str}
    """
    urls = rpc_urls or POLYGON_RPC_URLS
    aggregator = STRATEGY_CONFIG["chainlink_aggregator"]
    decimals = STRATEGY_CONFIG["chainlink_decimals"]

    errors = []
    for url in urls:
        try:
            started = time.monotonic()
            decoded = decode_latest_round(_eth_call(url, aggregator, LATEST_ROUND_DATA), decimals)
            logger.debug(f"Oracle read via {url} in {time.monotonic() - started:.2f}s")
            return {**decoded, "source": "chainlink"}
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Oracle read via {url} failed: {e}")
            errors.append(f"{url}: {e}")

    raise DataUnavailable(f"All oracle RPCs failed: {'; '.join(errors) or 'no RPC configured'}")
