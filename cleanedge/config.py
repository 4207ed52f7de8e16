"""
╔══════════════════════════════════════════════════════════════════════╗
║                 CLEANEDGE AUTO-TRADER — CONFIG                       ║
║        Tuning constants for analysis, sizing and trade gating        ║
╚══════════════════════════════════════════════════════════════════════╝

Static configuration. User-tunable values (risk %, pairs, refresh rate,
credentials) live in settings.py and are persisted; everything here is
empirical tuning that ships with the code.

The scoring weights (trend ±40/±30/±20/±10, setup 0.3/20/0.5) have no
derivation beyond backtesting the 1-minute scalping model. They are kept
here so they can be tuned without touching the analyzers.
"""

import os
from dataclasses import dataclass, field
from typing import List


# ─────────────────────────────────────────────────────────────────────
#  30-MINUTE TREND
# ─────────────────────────────────────────────────────────────────────
@dataclass
class TrendConfig:
    """Composite trend score in [-100, 100] built from four contributions."""
    min_candles: int = 80
    ema_slow_period: int = 200
    ema_fast_period: int = 20
    structure_lookback: int = 10          # Candles used for HH/HL/LL/LH counts
    strong_structure_dominant: int = 5    # HH (or LL) needed for strong structure
    strong_structure_complement: int = 4  # HL (or LH) needed alongside it
    weak_structure_dominant: int = 4      # HH (or LL) alone for weak structure
    ema_weight: float = 40.0
    structure_weight: float = 30.0
    weak_structure_weight: float = 15.0
    slope_weight: float = 20.0
    slope_lookback: int = 10              # EMA20 values spanned by the slope
    slope_threshold_pct: float = 0.1
    atr_weight: float = 10.0
    atr_period: int = 14
    atr_threshold_pct: float = 0.05
    bias_threshold: float = 50.0          # |score| >= 50 is a tradeable trend


# ─────────────────────────────────────────────────────────────────────
#  15-MINUTE ZONES
# ─────────────────────────────────────────────────────────────────────
@dataclass
class ZoneConfig:
    min_candles: int = 20
    lookback: int = 50
    swing_wing: int = 2                   # Candles each side of a swing point
    max_levels: int = 5
    proximity_pips: float = 15.0


# ─────────────────────────────────────────────────────────────────────
#  1-MINUTE ENTRY SIGNALS
# ─────────────────────────────────────────────────────────────────────
@dataclass
class SignalConfig:
    """Trigger confidences. Base, then +bonuses, then capped."""
    min_candles: int = 10
    ranging_min_confidence: float = 40.0
    atr_period: int = 14
    buffer_atr_multiplier: float = 0.5
    ema_period: int = 20
    break_retest_base: float = 75.0
    break_retest_cap: float = 90.0
    sweep_base: float = 70.0
    sweep_cap: float = 85.0
    engulfing_base: float = 65.0
    engulfing_cap: float = 80.0
    ema_aligned_bonus: float = 5.0
    strong_trend_bonus: float = 5.0
    strong_trend_confidence: float = 65.0
    engulfing_body_multiplier: float = 1.5
    engulfing_body_period: int = 10
    sweep_lookback: int = 5
    sweep_long_close_position: float = 0.7   # Close in top 30% of the range
    sweep_short_close_position: float = 0.3  # Close in bottom 30% of the range


# ─────────────────────────────────────────────────────────────────────
#  1-MINUTE PRICE STRUCTURE
# ─────────────────────────────────────────────────────────────────────
@dataclass
class StructureConfig:
    window: int = 20
    recent_atr_period: int = 14
    overlap_weight: float = 0.30
    wick_noise_weight: float = 0.30
    swing_clarity_weight: float = 0.25
    atr_compression_weight: float = 0.15
    max_wick_ratio: float = 2.0           # Doji counts as this much noise
    healthy_atr_low: float = 0.7
    healthy_atr_high: float = 1.3


# ─────────────────────────────────────────────────────────────────────
#  SETUP QUALITY SCORE
# ─────────────────────────────────────────────────────────────────────
@dataclass
class ScoringConfig:
    trend_weight: float = 0.3
    zone_bonus: float = 20.0
    signal_weight: float = 0.5
    strong_recommendation_score: float = 70.0
    # Pre-trade checklist thresholds
    checklist_trend_confidence: float = 50.0
    checklist_structure_score: float = 45.0
    checklist_trigger_confidence: float = 55.0


# ─────────────────────────────────────────────────────────────────────
#  RISK / POSITION SIZING
# ─────────────────────────────────────────────────────────────────────
@dataclass
class RiskConfig:
    """
    Position sizing clamps and pip-value conversion.

    fallback_usd_jpy_rate is only used when the live USD/JPY price could
    not be fetched. Sizing results carry a flag when it was applied.
    """
    min_stop_loss_pips: float = 5.0
    max_risk_percent: float = 2.0
    units_per_lot: int = 100_000
    usd_quoted_pip_value: float = 10.0    # $ per pip per standard lot
    fallback_usd_jpy_rate: float = 150.0
    default_margin_rate: float = 0.05     # 20:1
    margin_safety_factor: float = 0.9
    # ATR-driven stop / target model
    sl_atr_period: int = 14
    sl_atr_multiplier: float = 1.3
    base_stop_pips: float = 7.0
    base_stop_pips_jpy: float = 10.0
    max_stop_pips: float = 12.0
    max_stop_pips_jpy: float = 15.0


# ─────────────────────────────────────────────────────────────────────
#  TRADE GATE
# ─────────────────────────────────────────────────────────────────────
@dataclass
class GateConfig:
    min_tradable_score: float = 60.0
    a_plus_score: float = 70.0            # Only selects the larger reward ratio
    cooldown_seconds: int = 120
    three_strike_limit: int = 3
    block_minutes: int = 60
    anti_thrash_seconds: float = 5.0


# ─────────────────────────────────────────────────────────────────────
#  TRADING SESSIONS (local time of the configured timezone)
# ─────────────────────────────────────────────────────────────────────
@dataclass
class SessionConfig:
    timezone: str = "Asia/Singapore"
    london_start: str = "15:00"
    london_end: str = "18:00"
    newyork_start: str = "20:00"
    newyork_end: str = "23:00"
    weekend_closed: bool = True


# ─────────────────────────────────────────────────────────────────────
#  SCHEDULER
# ─────────────────────────────────────────────────────────────────────
@dataclass
class SchedulerConfig:
    batch_size: int = 2
    batch_delay_seconds: float = 1.5
    min_refresh_seconds: int = 15
    max_refresh_seconds: int = 60
    candles_30m: int = 250                # EMA200 + buffer
    candles_15m: int = 100
    candles_1m: int = 100
    closed_trades_count: int = 50


# ─────────────────────────────────────────────────────────────────────
#  BROKER (OANDA v20 REST)
# ─────────────────────────────────────────────────────────────────────
@dataclass
class BrokerConfig:
    practice_url: str = "https://api-fxpractice.oanda.com"
    live_url: str = "https://api-fxtrade.oanda.com"
    request_timeout: float = 10.0
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_cap_seconds: float = 5.0


# ─────────────────────────────────────────────────────────────────────
#  FASTAPI
# ─────────────────────────────────────────────────────────────────────
@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    api_key: str = os.getenv("CLEANEDGE_API_KEY", "")
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = os.getenv("CLEANEDGE_LOG_LEVEL", "INFO")


# ─────────────────────────────────────────────────────────────────────
#  MASTER CONFIG AGGREGATOR
# ─────────────────────────────────────────────────────────────────────
@dataclass
class CleanEdgeConfig:
    trend: TrendConfig = field(default_factory=TrendConfig)
    zones: ZoneConfig = field(default_factory=ZoneConfig)
    signals: SignalConfig = field(default_factory=SignalConfig)
    structure: StructureConfig = field(default_factory=StructureConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    gate: GateConfig = field(default_factory=GateConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


# Singleton instance, import this everywhere
CONFIG = CleanEdgeConfig()
