"""
╔══════════════════════════════════════════════════════════════════════╗
║           CLEANEDGE — 30M TREND ANALYZER                             ║
║   Hybrid composite score: EMA200 + structure + EMA20 slope + ATR     ║
╚══════════════════════════════════════════════════════════════════════╝

The composite lives in [-100, 100]:

  EMA200 filter        ±40   price above / below the slow EMA
  Structure            ±30   strong HH+HL (or LL+LH), scaled; weak = ±15
  EMA20 slope          ±20   % change over its last 10 values, ±0.1% gate
  Volatility confirm   ±10   same sign as running score, ATR/price > 0.05%

≥ +50 is bullish, ≤ -50 bearish, everything between is ranging.
Confidence is (|score| + 100) / 2 in every class: it measures how loud
the underlying signal is, not whether it is tradeable. A market
with no lean at all (score 0) reads "ranging, 50%".
"""

import logging
from typing import Optional, Sequence

from cleanedge.config import CONFIG, TrendConfig
from cleanedge.engines.indicators import atr, count_structure, ema
from cleanedge.models.schemas import Candle, TrendBias, TrendDirection

logger = logging.getLogger("cleanedge.trend")


class TrendAnalyzer:
    """Classifies directional bias on 30-minute candles."""

    def __init__(self, config: Optional[TrendConfig] = None):
        self.config = config or CONFIG.trend

    def analyze(self, candles: Sequence[Candle]) -> TrendBias:
        cfg = self.config
        if len(candles) < cfg.min_candles:
            return TrendBias()

        ema_slow = ema(candles, cfg.ema_slow_period)
        ema_fast = ema(candles, cfg.ema_fast_period)
        if not ema_slow or not ema_fast:
            logger.debug(
                f"{len(candles)} candles — not enough for EMA{cfg.ema_slow_period}, neutral bias"
            )
            return TrendBias()

        current_ema200 = ema_slow[-1]
        current_price = candles[-1].close
        price_above_ema = current_price > current_ema200

        score = cfg.ema_weight if price_above_ema else -cfg.ema_weight

        recent = candles[-cfg.structure_lookback:]
        score += self._structure_contribution(recent)
        score += self._slope_contribution(ema_fast)

        # Volatility only confirms an existing lean; it never creates one
        period = min(cfg.atr_period, len(recent) - 1)
        volatility = atr(recent, period)
        atr_percent = (volatility / current_price) * 100 if current_price else 0.0
        if atr_percent > cfg.atr_threshold_pct:
            if score > 0:
                score += cfg.atr_weight
            elif score < 0:
                score -= cfg.atr_weight

        if score >= cfg.bias_threshold:
            bias = TrendDirection.BULLISH
        elif score <= -cfg.bias_threshold:
            bias = TrendDirection.BEARISH
        else:
            bias = TrendDirection.RANGING

        confidence = min(100.0, max(0.0, (abs(score) + 100) / 2))

        return TrendBias(
            bias=bias,
            ema200=current_ema200,
            price_above_ema=price_above_ema,
            confidence=confidence,
            score=score,
        )

    def _structure_contribution(self, recent: Sequence[Candle]) -> float:
        cfg = self.config
        counts = count_structure(recent)
        if counts.comparisons == 0:
            return 0.0

        scale = cfg.structure_weight / (counts.comparisons * 2)
        if (counts.higher_highs >= cfg.strong_structure_dominant
                and counts.higher_lows >= cfg.strong_structure_complement):
            return counts.bullish * scale
        if (counts.lower_lows >= cfg.strong_structure_dominant
                and counts.lower_highs >= cfg.strong_structure_complement):
            return -counts.bearish * scale
        if counts.higher_highs >= cfg.weak_structure_dominant:
            return cfg.weak_structure_weight
        if counts.lower_lows >= cfg.weak_structure_dominant:
            return -cfg.weak_structure_weight
        return 0.0

    def _slope_contribution(self, ema_fast: Sequence[float]) -> float:
        cfg = self.config
        if len(ema_fast) < cfg.slope_lookback:
            return 0.0

        current, past = ema_fast[-1], ema_fast[-cfg.slope_lookback]
        if past == 0:
            return 0.0
        slope = (current - past) / past * 100
        if slope > cfg.slope_threshold_pct:
            return cfg.slope_weight
        if slope < -cfg.slope_threshold_pct:
            return -cfg.slope_weight
        return 0.0
