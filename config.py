"""
Configuration for the 15-minute up/down market assistant.

All thresholds, indicator periods, trader limits, and venue settings live here.
Loads secrets from a .env file in the project root.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

# Secrets
POLYMARKET_PRIVATE_KEY = os.getenv("POLYMARKET_PRIVATE_KEY", "")
POLYMARKET_FUNDER_ADDRESS = os.getenv("POLYMARKET_FUNDER_ADDRESS", "")

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_ADMIN_ID = os.getenv("TELEGRAM_ADMIN_ID", "")

POLYGON_RPC_URLS = [
    u.strip()
    for u in os.getenv(
        "POLYGON_RPC_URLS",
        "https://polygon-rpc.com,https://polygon-bor-rpc.publicnode.com",
    ).split(",")
    if u.strip()
]

# Paths
BASE_DIR = Path(__file__).parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
LOG_DIR = BASE_DIR / "logs"
DB_PATH = DATA_DIR / "updown.db"

STRATEGY_CONFIG = {
    # Instrument
    "symbol": "BTCUSDT",
    "candle_interval": "1m",
    "candle_limit": 240,
    "window_minutes": 15,
    "poll_interval_seconds": 1.0,

    # Indicators
    "rsi_period": 14,
    "rsi_slope_points": 3,
    "macd_fast": 12,
    "macd_slow": 26,
    "macd_signal": 9,
    "vwap_slope_lookback": 5,
    "vwap_cross_lookback": 20,
    "volume_recent_bars": 20,
    "volume_average_bars": 120,

    # Regime
    "regime_low_volume_ratio": 0.6,     # recent volume below 60% of average = thin tape
    "regime_flat_distance": 0.001,      # |price - vwap| / vwap under 0.1% = flat
    "regime_chop_crosses": 3,

    # Probability scoring: each weight is a bounded step away from 0.5
    "score_weights": {
        "vwap_position": 0.08,
        "vwap_slope": 0.08,
        "rsi_momentum": 0.08,
        "macd_expanding": 0.08,
        "macd_level": 0.04,
        "heiken_streak": 0.04,
        "failed_vwap_reclaim": 0.12,
    },
    "heiken_min_streak": 2,
    "rsi_bull_level": 55,
    "rsi_bear_level": 45,
    "time_decay_exponent": 1.0,         # 1.0 = linear pull toward 0.5

    # Decision engine
    "phase_early_minutes": 10,          # > 10 min left = EARLY
    "phase_mid_minutes": 5,             # > 5 min left = MID, else LATE
    "edge_threshold_early": 0.05,
    "edge_threshold_mid": 0.10,
    "edge_threshold_late": 0.20,
    "min_prob_early": 0.55,
    "min_prob_mid": 0.60,
    "min_prob_late": 0.65,
    "strong_edge": 0.20,

    # Paper trading
    "paper_starting_balance": 1000.0,
    "paper_min_edge": 0.10,
    "paper_max_position_pct": 0.05,     # Max 5% of balance per trade
    "paper_cooldown_seconds": 30,
    "paper_auto_reset_threshold": 10.0,

    # Live trading
    "live_max_position_size": 10,       # Max shares per order
    "live_min_edge": 0.10,
    "live_max_daily_loss": 50.0,        # USDC
    "live_cooldown_seconds": 60,

    # Signal log
    "signal_log_max_rows": 50_000,     # newest rows kept in the signals table
    "signal_prune_every": 1_000,       # prune after every N inserts

    # Venues
    "binance_base_url": "https://api.binance.com",
    "gamma_base_url": "https://gamma-api.polymarket.com",
    "clob_base_url": "https://clob.polymarket.com",
    "clob_chain_id": 137,
    "series_id": "10192",
    "market_slug": os.getenv("POLYMARKET_MARKET_SLUG", ""),
    "up_outcome_label": "Up",
    "down_outcome_label": "Down",
    "orderbook_depth_levels": 5,
    "chainlink_aggregator": "0xc907E116054Ad103354f2D350FD2514433D57F6f",  # BTC/USD on Polygon
    "chainlink_decimals": 8,
}
