"""
╔══════════════════════════════════════════════════════════════════════╗
║           CLEANEDGE — 1M ENTRY SIGNAL ANALYZER                       ║
║   Break & Retest → Liquidity Sweep → Strong Engulfing                ║
╚══════════════════════════════════════════════════════════════════════╝

RULE ZERO: no zone, no trigger. If price is not inside a 15m kill zone
nothing below is evaluated.

Direction is never chosen by the 1m chart. It is inherited from the 30m
bias (bullish → long, bearish → short), so a counter-trend trigger can
not exist. A ranging bias has no direction and yields no signal.

Triggers are scored, not voted:

  Break & Retest    base 75, cap 90
  Liquidity Sweep   base 70, cap 85   (only if nothing ≥ 70 found yet)
  Strong Engulfing  base 65, cap 80   (only if nothing ≥ 65 found yet)

Each base gets +5 when the close is on the trend side of the 1m EMA20
and +5 more when 30m trend confidence is ≥ 65.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from cleanedge.config import CONFIG, SignalConfig
from cleanedge.engines.indicators import (
    atr,
    detect_break_and_retest,
    detect_engulfing,
    detect_liquidity_sweep,
    ema,
)
from cleanedge.models.schemas import (
    Candle,
    EntrySignal,
    KeyZones,
    SignalType,
    TradeSide,
    TrendBias,
    TrendDirection,
)

logger = logging.getLogger("cleanedge.signals")


def _nearest(levels: List[float], price: float) -> float:
    # First level wins on equal distance
    best = levels[0]
    for level in levels[1:]:
        if abs(level - price) < abs(best - price):
            best = level
    return best


class SignalAnalyzer:

    def __init__(self, config: Optional[SignalConfig] = None):
        self.config = config or CONFIG.signals

    def analyze(
        self,
        candles: Sequence[Candle],
        zones: KeyZones,
        trend: TrendBias,
        price_in_zone: bool,
    ) -> EntrySignal:
        cfg = self.config
        if len(candles) < cfg.min_candles:
            return EntrySignal()

        if not price_in_zone:
            return EntrySignal()

        if trend.bias == TrendDirection.RANGING and trend.confidence < cfg.ranging_min_confidence:
            return EntrySignal()

        direction = self._direction(trend.bias)
        if direction is None:
            return EntrySignal()

        current_price = candles[-1].close
        band = self.zone_band(candles, zones, current_price)
        if band is None:
            return EntrySignal()
        zone_low, zone_high = band

        ema20 = ema(candles, cfg.ema_period)
        ema_aligned = bool(ema20) and (
            (direction == TradeSide.LONG and current_price > ema20[-1])
            or (direction == TradeSide.SHORT and current_price < ema20[-1])
        )
        strong_trend = trend.confidence >= cfg.strong_trend_confidence

        def scored(base: float, cap: float) -> float:
            confidence = base
            if ema_aligned:
                confidence += cfg.ema_aligned_bonus
            if strong_trend:
                confidence += cfg.strong_trend_bonus
            return min(confidence, cap)

        best = EntrySignal()

        if detect_break_and_retest(candles, zone_high, zone_low, direction):
            best = EntrySignal(
                type=SignalType.BREAK_RETEST,
                direction=direction,
                confidence=scored(cfg.break_retest_base, cfg.break_retest_cap),
                price=current_price,
            )

        swept = detect_liquidity_sweep(
            candles, direction, zone_high, zone_low,
            lookback=cfg.sweep_lookback,
            long_close_position=cfg.sweep_long_close_position,
            short_close_position=cfg.sweep_short_close_position,
        )
        if swept and best.confidence < cfg.sweep_base:
            best = EntrySignal(
                type=SignalType.LIQUIDITY_SWEEP,
                direction=direction,
                confidence=scored(cfg.sweep_base, cfg.sweep_cap),
                price=current_price,
            )

        engulfing = detect_engulfing(
            candles, cfg.engulfing_body_multiplier, cfg.engulfing_body_period
        )
        engulf_side = {"bullish": TradeSide.LONG, "bearish": TradeSide.SHORT}.get(engulfing)
        if engulf_side == direction and best.confidence < cfg.engulfing_base:
            best = EntrySignal(
                type=SignalType.ENGULFING,
                direction=direction,
                confidence=scored(cfg.engulfing_base, cfg.engulfing_cap),
                price=current_price,
            )

        if best.type != SignalType.NONE:
            logger.debug(
                f"1m trigger {best.type.value} {direction.value} @ {current_price} "
                f"(conf {best.confidence:.0f}, band {zone_low:.5f}-{zone_high:.5f})"
            )
        return best

    def zone_band(
        self, candles: Sequence[Candle], zones: KeyZones, price: float
    ) -> Optional[Tuple[float, float]]:
        """
        (low, high) band of ±0.5 ATR around the nearest level. The nearest
        support and nearest resistance are found first; resistance wins a
        tie between them. None when there are no levels at all.
        """
        if zones.is_empty:
            return None

        buffer = atr(candles, self.config.atr_period) * self.config.buffer_atr_multiplier

        if zones.support and zones.resistance:
            support = _nearest(zones.support, price)
            resistance = _nearest(zones.resistance, price)
            level = support if abs(support - price) < abs(resistance - price) else resistance
        elif zones.support:
            level = _nearest(zones.support, price)
        else:
            level = _nearest(zones.resistance, price)

        return level - buffer, level + buffer

    @staticmethod
    def _direction(bias: TrendDirection) -> Optional[TradeSide]:
        if bias == TrendDirection.BULLISH:
            return TradeSide.LONG
        if bias == TrendDirection.BEARISH:
            return TradeSide.SHORT
        return None
