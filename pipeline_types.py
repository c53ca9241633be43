"""Typed dataclasses for the signal pipeline.

Raw collaborator payloads are normalized into these at the client boundary,
so everything downstream of _fetch_all_data() sees one strict shape.
"""

from dataclasses import dataclass, field, asdict
from typing import Any


@dataclass(frozen=True)
class Candle:
    open_time: int  # epoch ms
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class MacdReading:
    value: float
    signal: float
    hist: float
    hist_delta: float | None

    @property
    def label(self) -> str:
        if self.hist > 0:
            return "bullish (expanding)" if (self.hist_delta or 0) > 0 else "bullish"
        return "bearish (expanding)" if (self.hist_delta or 0) < 0 else "bearish"


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator readings derived from one cycle's candles."""
    price: float | None
    vwap_value: float | None
    vwap_slope: float | None
    vwap_distance: float | None
    rsi_value: float | None
    rsi_slope: float | None
    macd: MacdReading | None
    heiken_color: str | None
    heiken_streak: int
    recent_volume: float | None
    average_volume: float | None
    vwap_cross_count: int | None
    failed_vwap_reclaim: bool = False
    delta_1m: float | None = None
    delta_3m: float | None = None


@dataclass(frozen=True)
class ProbabilityEstimate:
    raw_up: float
    adjusted_up: float
    time_decay: float

    @property
    def adjusted_down(self) -> float:
        return 1.0 - self.adjusted_up


@dataclass(frozen=True)
class EdgeResult:
    market_up: float | None
    market_down: float | None
    edge_up: float | None
    edge_down: float | None


@dataclass(frozen=True)
class TradeDecision:
    action: str  # HOLD or ENTER
    side: str | None  # UP, DOWN
    strength: str | None  # GOOD, STRONG
    phase: str  # EARLY, MID, LATE
    edge: float | None = None
    reason: str = ""


@dataclass(frozen=True)
class OrderBookSummary:
    best_bid: float | None = None
    best_ask: float | None = None
    spread: float | None = None
    bid_liquidity: float | None = None
    ask_liquidity: float | None = None


@dataclass(frozen=True)
class MarketDescriptor:
    """A prediction market normalized from the venue's loosely-typed payload."""
    slug: str
    question: str
    up_token_id: str
    down_token_id: str
    end_time_ms: int | None
    start_time_ms: int | None
    liquidity: float | None
    up_quote: float | None = None  # public (Gamma) outcome prices
    down_quote: float | None = None


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one collaborator call within a cycle's fan-out."""
    ok: bool
    value: Any = None
    error: str | None = None

    @classmethod
    def success(cls, value: Any) -> "FetchResult":
        return cls(ok=value is not None, value=value, error=None if value is not None else "empty")

    @classmethod
    def failure(cls, error: Exception | str) -> "FetchResult":
        return cls(ok=False, value=None, error=str(error))


@dataclass(frozen=True)
class MarketSnapshot:
    """Everything one cycle produced. Published as a whole, never mutated."""
    timestamp: str
    market: MarketDescriptor | None
    time_left_min: float
    spot_price: float | None
    oracle_price: float | None
    price_to_beat: float | None
    up_price: float | None
    down_price: float | None
    indicators: IndicatorSnapshot
    regime: str
    model: ProbabilityEstimate
    edge: EdgeResult
    decision: TradeDecision
    up_book: OrderBookSummary = field(default_factory=OrderBookSummary)
    down_book: OrderBookSummary = field(default_factory=OrderBookSummary)
    price_sources: dict = field(default_factory=dict)

    @property
    def slug(self) -> str:
        return self.market.slug if self.market else ""

    @property
    def phase(self) -> str:
        return self.decision.phase

    @property
    def reference_price(self) -> float | None:
        """Price settlement is judged on: the oracle, else spot."""
        return self.oracle_price if self.oracle_price is not None else self.spot_price

    def price_for(self, side: str | None) -> float | None:
        if side == "UP":
            return self.up_price
        if side == "DOWN":
            return self.down_price
        return None

    def token_for(self, side: str | None) -> str | None:
        if self.market is None:
            return None
        if side == "UP":
            return self.market.up_token_id or None
        if side == "DOWN":
            return self.market.down_token_id or None
        return None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["model"]["adjusted_down"] = self.model.adjusted_down
        data["price_delta"] = (
            self.oracle_price - self.price_to_beat
            if self.oracle_price is not None and self.price_to_beat is not None
            else None
        )
        return data


@dataclass
class TradeOutcome:
    """Result of one trader evaluation. A gate refusal is a normal outcome, not an error."""
    traded: bool
    code: str
    reason: str = ""
    trade: dict | None = None
    settled: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)
