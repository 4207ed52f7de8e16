"""
╔══════════════════════════════════════════════════════════════════════╗
║           CLEANEDGE — INDICATOR LIBRARY                              ║
║   Pure numeric functions over candle sequences (oldest-first)        ║
║   EMA, ATR, swing points, candle patterns, pip arithmetic            ║
╚══════════════════════════════════════════════════════════════════════╝

Nothing in here holds state or performs I/O. Every function degrades to
a neutral value (empty list, 0.0, False, None) when the candle window is
too short, so the analyzers above never need to guard against raising.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from cleanedge.models.schemas import Candle, TradeSide

logger = logging.getLogger("cleanedge.indicators")


# ─────────────────────────────────────────────────────────────────────
#  MOVING AVERAGES / VOLATILITY
# ─────────────────────────────────────────────────────────────────────

def ema(candles: Sequence[Candle], period: int) -> List[float]:
    """
    Exponential moving average of closes.

    Seeded with the SMA of the first `period` closes, then the standard
    recurrence with multiplier 2/(period+1). Output length is
    len(candles) - period + 1, or empty when there is not enough data.
    """
    if period < 1 or len(candles) < period:
        return []

    multiplier = 2 / (period + 1)
    values = [sum(c.close for c in candles[:period]) / period]
    for candle in candles[period:]:
        prev = values[-1]
        values.append((candle.close - prev) * multiplier + prev)
    return values


def true_ranges(candles: Sequence[Candle]) -> List[float]:
    """True range for each adjacent pair of candles."""
    trs = []
    for i in range(1, len(candles)):
        high = candles[i].high
        low = candles[i].low
        prev_close = candles[i - 1].close
        trs.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))
    return trs


def atr(candles: Sequence[Candle], period: int = 14) -> float:
    """Simple mean of the last `period` true ranges. 0.0 when data is short."""
    if period < 1 or len(candles) < period + 1:
        return 0.0
    recent = true_ranges(candles)[-period:]
    return sum(recent) / period


def average_body(candles: Sequence[Candle], period: int = 10) -> float:
    recent = candles[-period:] if period > 0 else []
    if not recent:
        return 0.0
    return sum(c.body_size for c in recent) / len(recent)


# ─────────────────────────────────────────────────────────────────────
#  SWING POINTS
# ─────────────────────────────────────────────────────────────────────

def is_swing_high(candles: Sequence[Candle], i: int, wing: int = 2) -> bool:
    """High at i strictly exceeds `wing` neighbours on each side."""
    if i - wing < 0 or i + wing >= len(candles):
        return False
    high = candles[i].high
    return all(
        high > candles[i - j].high and high > candles[i + j].high
        for j in range(1, wing + 1)
    )


def is_swing_low(candles: Sequence[Candle], i: int, wing: int = 2) -> bool:
    if i - wing < 0 or i + wing >= len(candles):
        return False
    low = candles[i].low
    return all(
        low < candles[i - j].low and low < candles[i + j].low
        for j in range(1, wing + 1)
    )


def swing_highs(candles: Sequence[Candle], wing: int = 2) -> List[float]:
    return [
        candles[i].high
        for i in range(wing, len(candles) - wing)
        if is_swing_high(candles, i, wing)
    ]


def swing_lows(candles: Sequence[Candle], wing: int = 2) -> List[float]:
    return [
        candles[i].low
        for i in range(wing, len(candles) - wing)
        if is_swing_low(candles, i, wing)
    ]


@dataclass
class StructureCounts:
    """Adjacent-candle structure counts over a window."""
    higher_highs: int = 0
    higher_lows: int = 0
    lower_lows: int = 0
    lower_highs: int = 0
    comparisons: int = 0

    @property
    def bullish(self) -> int:
        return self.higher_highs + self.higher_lows

    @property
    def bearish(self) -> int:
        return self.lower_lows + self.lower_highs


def count_structure(candles: Sequence[Candle]) -> StructureCounts:
    counts = StructureCounts(comparisons=max(len(candles) - 1, 0))
    for i in range(1, len(candles)):
        cur, prev = candles[i], candles[i - 1]
        if cur.high > prev.high:
            counts.higher_highs += 1
        if cur.high < prev.high:
            counts.lower_highs += 1
        if cur.low > prev.low:
            counts.higher_lows += 1
        if cur.low < prev.low:
            counts.lower_lows += 1
    return counts


# ─────────────────────────────────────────────────────────────────────
#  CANDLE PATTERNS (trailing window, c0 = current, c1 = previous)
# ─────────────────────────────────────────────────────────────────────

def detect_break_and_retest(
    candles: Sequence[Candle],
    zone_high: float,
    zone_low: float,
    direction: TradeSide,
) -> bool:
    """
    Long: previous candle closed above the zone and the current candle
    closes bullish (the retest held). Short is the mirror image.
    """
    if len(candles) < 3:
        return False

    c0, c1 = candles[-1], candles[-2]
    if direction == TradeSide.LONG:
        return c1.close > zone_high and c0.is_bullish
    return c1.close < zone_low and c0.is_bearish


def detect_liquidity_sweep(
    candles: Sequence[Candle],
    direction: TradeSide,
    zone_high: float,
    zone_low: float,
    lookback: int = 5,
    long_close_position: float = 0.7,
    short_close_position: float = 0.3,
) -> bool:
    """
    Stop hunt through the last `lookback` extremes followed by a strong
    rejection close.

    Long: current low undercuts the lowest low of the previous 5 candles,
    the close sits in the top 30% of the candle's range, the body is larger
    than the previous body, and the candle's range touches the zone.
    Short: mirror image against the highest high, close in the bottom 30%.
    """
    if len(candles) < lookback + 1:
        return False

    c0, c1 = candles[-1], candles[-2]
    window = candles[-(lookback + 1):-1]

    candle_range = c0.range_size
    close_position = (c0.close - c0.low) / candle_range if candle_range > 0 else 0.0
    larger_body = c0.body_size > c1.body_size
    near_zone = c0.low <= zone_high and c0.high >= zone_low

    if direction == TradeSide.LONG:
        swept = c0.low < min(c.low for c in window)
        strong_close = close_position > long_close_position
    else:
        swept = c0.high > max(c.high for c in window)
        strong_close = close_position < short_close_position

    return near_zone and swept and strong_close and larger_body


def detect_engulfing(
    candles: Sequence[Candle],
    body_multiplier: float = 1.5,
    body_period: int = 10,
) -> Optional[str]:
    """
    Strong engulfing candle: body at least 1.5x the average body of the
    last 10 candles, closing beyond the previous candle's extreme and
    opening on the far side of its close. Returns "bullish", "bearish"
    or None.
    """
    if len(candles) < 2:
        return None

    c0, c1 = candles[-1], candles[-2]
    if c0.body_size < average_body(candles, body_period) * body_multiplier:
        return None

    if c0.close > c1.high and c0.open < c1.close and c0.is_bullish:
        return "bullish"
    if c0.close < c1.low and c0.open > c1.close and c0.is_bearish:
        return "bearish"
    return None


# ─────────────────────────────────────────────────────────────────────
#  PAIR / PIP HELPERS
# ─────────────────────────────────────────────────────────────────────

def to_instrument(pair: str) -> str:
    """EUR/USD, EUR_USD, EURUSD → EUR_USD"""
    p = pair.strip().upper().replace("/", "_").replace("-", "_")
    if "_" not in p and len(p) == 6:
        p = f"{p[:3]}_{p[3:]}"
    return p


def to_pair(instrument: str) -> str:
    """EUR_USD → EUR/USD"""
    return to_instrument(instrument).replace("_", "/")


def base_currency(pair: str) -> str:
    return to_instrument(pair).split("_")[0]


def quote_currency(pair: str) -> str:
    return to_instrument(pair).split("_")[-1]


def is_jpy_pair(pair: str) -> bool:
    return "JPY" in pair.upper()


def pip_size(pair: str) -> float:
    return 0.01 if is_jpy_pair(pair) else 0.0001


def price_to_pips(distance: float, pair: str) -> float:
    return distance / pip_size(pair)


def pips_to_price(pips: float, pair: str) -> float:
    return pips * pip_size(pair)
