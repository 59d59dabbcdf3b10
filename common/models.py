"""Core Pydantic models for the trading assistant."""
import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire; both accepted on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignalStrength(str, Enum):
    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"


class TradeDirection(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class TradeStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class CloseReason(str, Enum):
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    MANUAL = "MANUAL"


class Outcome(str, Enum):
    WIN = "WIN"
    LOSS = "LOSS"
    BREAK_EVEN = "BREAK_EVEN"


SIGNAL_DIRECTIONS = {
    SignalStrength.STRONG_BUY:  TradeDirection.LONG,
    SignalStrength.BUY:         TradeDirection.LONG,
    SignalStrength.HOLD:        None,
    SignalStrength.SELL:        TradeDirection.SHORT,
    SignalStrength.STRONG_SELL: TradeDirection.SHORT,
}


# ── AI analyses ───────────────────────────────────────────────────────────────

class AIAnalysis(CamelModel):
    model_config = ConfigDict(frozen=True)

    provider: str = Field(min_length=1)
    sentiment: float = Field(ge=0, le=100, allow_inf_nan=False)    # 0 bearish .. 100 bullish
    confidence: float = Field(ge=0, le=1, allow_inf_nan=False)
    reasoning: str
    tokens_used: Optional[int] = Field(default=None, ge=0)
    response_time_ms: Optional[float] = Field(default=None, ge=0)
    placeholder: bool = False

    @field_validator("reasoning")
    @classmethod
    def _reasoning_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("reasoning must be a non-empty string")
        return v


class ProviderStatus(str, Enum):
    OK = "OK"
    UNCONFIGURED = "UNCONFIGURED"
    PARSE_ERROR = "PARSE_ERROR"
    RANGE_ERROR = "RANGE_ERROR"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"


class ProviderResult(CamelModel):
    """Tagged outcome of one adapter call."""
    provider: str
    status: ProviderStatus
    analysis: Optional[AIAnalysis] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.analysis is not None


class TradingSignal(CamelModel):
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(min_length=1)
    strength: SignalStrength
    direction: Optional[TradeDirection] = None
    sentiment: float = Field(ge=0, le=100)
    confidence: float = Field(ge=0, le=1)
    consensus: float = Field(ge=0, le=1)
    entry_price: float = Field(gt=0, allow_inf_nan=False)
    stop_loss: float = 0.0
    take_profit: float = 0.0
    reasoning: str = ""
    analyses: list[AIAnalysis] = []
    timestamp: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_levels(self) -> "TradingSignal":
        if SIGNAL_DIRECTIONS[self.strength] != self.direction:
            raise ValueError(f"{self.strength.value} cannot have direction {self.direction}")
        if self.direction == TradeDirection.LONG:
            ok = 0 < self.stop_loss < self.entry_price < self.take_profit
        elif self.direction == TradeDirection.SHORT:
            ok = 0 < self.take_profit < self.entry_price < self.stop_loss
        else:
            ok = self.stop_loss == 0 and self.take_profit == 0
        if not ok:
            raise ValueError(
                f"Invalid stopLoss/takeProfit for {self.direction}: "
                f"SL={self.stop_loss}, TP={self.take_profit}, Price={self.entry_price}"
            )
        return self


# ── Positions ─────────────────────────────────────────────────────────────────

class TradeDetails(CamelModel):
    symbol: str = Field(min_length=1)
    direction: TradeDirection
    entry_price: float = Field(gt=0, allow_inf_nan=False)
    stop_loss: float
    take_profit: float
    quantity: float = Field(ge=0)
    position_value: float = Field(ge=0)
    fees: float = 0.0
    entry_time: datetime = Field(default_factory=utcnow)
    user_id: str = "user-1"
    ai_confidence: Optional[float] = None
    signal_strength: Optional[SignalStrength] = None


class Position(TradeDetails):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: TradeStatus = TradeStatus.OPEN
    pnl: float = 0.0
    pnl_percent: float = 0.0
    exit_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    close_reason: Optional[CloseReason] = None
    session_id: Optional[str] = None   # lookup only, the session is not owned


class PositionUpdate(CamelModel):
    id: str
    should_close: bool
    close_reason: Optional[CloseReason] = None
    current_price: float
    pnl: float
    pnl_percent: float


# ── Market context ────────────────────────────────────────────────────────────

class MacdValues(CamelModel):
    value: float
    signal: float
    histogram: float


class EmaValues(CamelModel):
    ema50: float
    ema200: float


class BollingerBands(CamelModel):
    upper: float
    middle: float
    lower: float


class TechnicalIndicators(CamelModel):
    rsi: float
    macd: MacdValues
    ema: EmaValues
    bollinger_bands: BollingerBands


class InterestRates(CamelModel):
    us: float
    eu: float
    jp: float


class MacroData(CamelModel):
    interest_rates: InterestRates
    dxy: float
    vix: float
    global_liquidity: str   # EXPANDING | CONTRACTING | NEUTRAL


class NewsSentiment(CamelModel):
    score: float            # -100 .. 100
    summary: str
    key_topics: list[str] = []
    sources: int = 0


class MarketContext(CamelModel):
    technicals: TechnicalIndicators
    macro: MacroData
    news: NewsSentiment
    degraded: list[str] = []   # sub-sources that fell back to simulated values


# ── Learning ──────────────────────────────────────────────────────────────────

class AnalysisSession(CamelModel):
    id: str
    user_id: str
    symbol: str
    timestamp: datetime
    price: float
    technical_data: dict = {}
    macro_data: dict = {}
    news_data: dict = {}
    market_report: str = ""
    ai_analyses: list[dict] = []
    signal_strength: Optional[str] = None
    signal_direction: Optional[str] = None
    consensus_sentiment: float
    consensus_confidence: float
    was_executed: bool = False
    trade_id: Optional[str] = None
    actual_outcome: Optional[Outcome] = None
    actual_pnl: Optional[float] = None
    actual_pnl_percent: Optional[float] = None
    outcome_recorded_at: Optional[datetime] = None


def is_positive_finite(value) -> bool:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and math.isfinite(value) and value > 0)
