"""
CLEANEDGE — 1M PRICE STRUCTURE SCORER

Rates how "clean" the last 20 one-minute candles are. Four components,
each 0-100:

  overlap          adjacent ranges that intersect are chop
  wick noise       average wick/body ratio, doji = 2 (max noise)
  swing clarity    dominant HH+HL vs LL+LH share of all comparisons
  atr compression  recent-14 ATR vs full-window ATR, healthy in 0.7-1.3
"""

import logging
from typing import Optional, Sequence

from cleanedge.config import CONFIG, StructureConfig
from cleanedge.engines.indicators import atr, count_structure
from cleanedge.models.schemas import Candle, PriceStructure

logger = logging.getLogger("cleanedge.structure")


def _r1(value: float) -> float:
    return round(value, 1)


class StructureScorer:

    def __init__(self, config: Optional[StructureConfig] = None):
        self.config = config or CONFIG.structure

    def score(self, candles: Sequence[Candle]) -> PriceStructure:
        cfg = self.config
        if len(candles) < cfg.window:
            return PriceStructure()

        window = candles[-cfg.window:]
        comparisons = len(window) - 1

        overlaps = sum(
            1 for i in range(1, len(window))
            if window[i].low < window[i - 1].high and window[i].high > window[i - 1].low
        )
        overlap = (1 - overlaps / comparisons) * 100

        wick_total = 0.0
        for c in window:
            wick_total += c.wick_size / c.body_size if c.body_size > 0 else cfg.max_wick_ratio
        avg_wick = wick_total / len(window)
        wick_noise = max(0.0, (1 - min(avg_wick, cfg.max_wick_ratio) / cfg.max_wick_ratio) * 100)

        counts = count_structure(window)
        swing_clarity = max(counts.bullish, counts.bearish) / (comparisons * 2) * 100

        full_atr = atr(window, comparisons)
        if full_atr == 0:
            # Dead market: nothing moved, nothing to trade
            return PriceStructure(
                overlap_score=_r1(overlap),
                wick_noise_score=_r1(wick_noise),
                swing_clarity_score=_r1(swing_clarity),
            )

        recent_atr = atr(window, cfg.recent_atr_period)
        ratio = recent_atr / full_atr
        if ratio < cfg.healthy_atr_low:
            compression = ratio / cfg.healthy_atr_low * 50
        elif ratio > cfg.healthy_atr_high:
            compression = max(0.0, 100 - (ratio - cfg.healthy_atr_high) * 100)
        else:
            compression = 100.0

        total = (
            overlap * cfg.overlap_weight
            + wick_noise * cfg.wick_noise_weight
            + swing_clarity * cfg.swing_clarity_weight
            + compression * cfg.atr_compression_weight
        )

        return PriceStructure(
            overlap_score=_r1(overlap),
            wick_noise_score=_r1(wick_noise),
            swing_clarity_score=_r1(swing_clarity),
            atr_compression_score=_r1(compression),
            structure_score=_r1(total),
        )
