"""
╔══════════════════════════════════════════════════════════════════════╗
║                CLEANEDGE AUTO-TRADER — DATA MODELS                   ║
║        Pydantic schemas shared by analyzers, gate and bridge         ║
╚══════════════════════════════════════════════════════════════════════╝
"""

from __future__ import annotations
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


# ─────────────────────────────────────────────────────────────────────
#  ENUMS
# ─────────────────────────────────────────────────────────────────────

class TrendDirection(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    RANGING = "ranging"


class TradeSide(str, Enum):
    LONG = "long"
    SHORT = "short"


class SignalType(str, Enum):
    BREAK_RETEST = "break_retest"
    LIQUIDITY_SWEEP = "liquidity_sweep"
    ENGULFING = "engulfing"
    NONE = "none"


class Recommendation(str, Enum):
    STRONG_BUY = "strong_buy"
    BUY = "buy"
    STRONG_SELL = "strong_sell"
    SELL = "sell"
    WAIT = "wait"


class TradeResult(str, Enum):
    WIN = "win"
    LOSS = "loss"
    BREAKEVEN = "breakeven"


class PairPhase(str, Enum):
    """Per-pair position in the analysis → execution state machine."""
    IDLE = "idle"
    ANALYZING = "analyzing"
    BLOCKED = "blocked"
    ELIGIBLE = "eligible"
    EXECUTING = "executing"


# ─────────────────────────────────────────────────────────────────────
#  CANDLE DATA
# ─────────────────────────────────────────────────────────────────────

class Candle(BaseModel):
    """Single OHLCV candle. Sequences are ordered oldest-first."""
    model_config = ConfigDict(frozen=True)

    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def body_size(self) -> float:
        return abs(self.close - self.open)

    @property
    def range_size(self) -> float:
        return self.high - self.low

    @property
    def wick_size(self) -> float:
        return self.range_size - self.body_size

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open


# ─────────────────────────────────────────────────────────────────────
#  ANALYZER OUTPUTS
# ─────────────────────────────────────────────────────────────────────

class TrendBias(BaseModel):
    bias: TrendDirection = TrendDirection.RANGING
    ema200: Optional[float] = None
    price_above_ema: Optional[bool] = None
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    score: float = 0.0                  # Raw composite in [-100, 100]


class KeyZones(BaseModel):
    """Swing-based levels, descending, at most five per side."""
    support: List[float] = Field(default_factory=list)
    resistance: List[float] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.support and not self.resistance


class EntrySignal(BaseModel):
    type: SignalType = SignalType.NONE
    direction: Optional[TradeSide] = None
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    price: Optional[float] = None


class PriceStructure(BaseModel):
    overlap_score: float = 0.0
    wick_noise_score: float = 0.0
    swing_clarity_score: float = 0.0
    atr_compression_score: float = 0.0
    structure_score: float = 0.0


class MultiTimeframeAnalysis(BaseModel):
    """One pair, one cycle. Consumed by the trade gate and then discarded."""
    pair: str
    timestamp: datetime
    current_price: float
    trend_30m: TrendBias
    zones_15m: KeyZones
    signal_1m: EntrySignal
    price_in_zone: bool
    setup_quality_score: float = Field(ge=0.0, le=100.0)
    price_structure: PriceStructure
    recommendation: Recommendation = Recommendation.WAIT

    @property
    def direction(self) -> Optional[TradeSide]:
        if self.recommendation in (Recommendation.STRONG_BUY, Recommendation.BUY):
            return TradeSide.LONG
        if self.recommendation in (Recommendation.STRONG_SELL, Recommendation.SELL):
            return TradeSide.SHORT
        return None


# ─────────────────────────────────────────────────────────────────────
#  SESSION STATE (the only state the gate mutates)
# ─────────────────────────────────────────────────────────────────────

def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class SessionState(BaseModel):
    """
    Counters that must survive restarts. Maps are keyed by broker
    instrument (EUR_USD).
    """
    trades_executed_today: int = 0
    consecutive_losses_per_pair: Dict[str, int] = Field(default_factory=dict)
    pair_blocked_until: Dict[str, datetime] = Field(default_factory=dict)
    last_trade_time_per_pair: Dict[str, datetime] = Field(default_factory=dict)
    auto_trading_stopped: bool = False
    session_date: date = Field(default_factory=_utc_today)

    def roll_day(self, now: datetime) -> bool:
        """Reset daily counters once when the UTC calendar date changes."""
        if now.date() == self.session_date:
            return False
        self.reset(now)
        return True

    def reset(self, now: datetime):
        # The emergency stop flag is not a counter and survives the reset.
        # A 3-strike block runs to its expiry even across days.
        self.trades_executed_today = 0
        self.consecutive_losses_per_pair = {}
        self.pair_blocked_until = {
            pair: until for pair, until in self.pair_blocked_until.items() if until > now
        }
        self.last_trade_time_per_pair = {}
        self.session_date = now.date()

    def blocked_until(self, instrument: str, now: datetime) -> Optional[datetime]:
        until = self.pair_blocked_until.get(instrument)
        if until is not None and until > now:
            return until
        return None


# ─────────────────────────────────────────────────────────────────────
#  BROKER PAYLOADS
# ─────────────────────────────────────────────────────────────────────

class PriceQuote(BaseModel):
    pair: str
    bid: float
    ask: float
    time: Optional[datetime] = None

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2

    @property
    def spread(self) -> float:
        return self.ask - self.bid


class AccountState(BaseModel):
    account_id: str = ""
    currency: str = "USD"
    balance: float = 0.0
    unrealized_pl: float = 0.0
    margin_available: float = 0.0
    margin_used: float = 0.0
    margin_rate: float = 0.05


class Position(BaseModel):
    id: str
    pair: str
    side: TradeSide
    units: float
    entry_price: float
    unrealized_pl: float = 0.0
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None


class Trade(BaseModel):
    """A filled market order."""
    id: str
    pair: str
    units: float
    price: float
    time: Optional[datetime] = None
    stop_loss_pips: Optional[float] = None
    take_profit_pips: Optional[float] = None


class ClosedTrade(BaseModel):
    id: str
    pair: str
    realized_pl: float = 0.0
    close_time: Optional[datetime] = None

    @property
    def result(self) -> TradeResult:
        if self.realized_pl > 0:
            return TradeResult.WIN
        if self.realized_pl < 0:
            return TradeResult.LOSS
        return TradeResult.BREAKEVEN


# ─────────────────────────────────────────────────────────────────────
#  SIZING
# ─────────────────────────────────────────────────────────────────────

class PositionSize(BaseModel):
    pair: str
    units: int = 0
    lots: float = 0.0
    risk_amount: float = 0.0
    risk_percent: float = 0.0
    stop_loss_pips: float = 0.0
    pip_value_per_lot: float = 0.0
    margin_required: float = 0.0
    margin_clamped: bool = False
    used_fallback_rate: bool = False
    warnings: List[str] = Field(default_factory=list)


class StopTarget(BaseModel):
    stop_loss_pips: float
    take_profit_pips: float
    risk_reward: float


# ─────────────────────────────────────────────────────────────────────
#  GATE / SCHEDULER OUTPUTS
# ─────────────────────────────────────────────────────────────────────

class GateDecision(BaseModel):
    """
    Result of evaluating one pair. `checks` keeps every named check in
    evaluation order for the UI overlay; `reasons` lists the failures.
    """
    pair: str
    allow: bool
    reasons: List[str] = Field(default_factory=list)
    checks: Dict[str, bool] = Field(default_factory=dict)
    score: float = 0.0
    score_label: str = ""
    a_plus: bool = False


class SessionInfo(BaseModel):
    name: str
    active: bool
    start_time: str = ""
    end_time: str = ""
    next_session_start: str = ""


class PairStatus(BaseModel):
    pair: str
    phase: PairPhase = PairPhase.IDLE
    last_analyzed_at: Optional[datetime] = None
    last_analysis: Optional[MultiTimeframeAnalysis] = None
    last_decision: Optional[GateDecision] = None
    last_error: Optional[str] = None
    last_order_id: Optional[str] = None


class SchedulerSnapshot(BaseModel):
    running: bool
    auto_trading_enabled: bool
    emergency_stopped: bool
    refresh_interval_seconds: int
    session: SessionInfo
    state: SessionState
    pairs: List[PairStatus] = Field(default_factory=list)
    executing: List[str] = Field(default_factory=list)
    open_pairs: List[str] = Field(default_factory=list)
    last_cycle_at: Optional[datetime] = None


class TradeCloseRequest(BaseModel):
    """Body of POST /api/trades/close."""
    pair: str
    pnl: float
