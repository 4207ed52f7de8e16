"""
╔══════════════════════════════════════════════════════════════════════╗
║           CLEANEDGE — MULTI-TIMEFRAME MARKET ANALYZER                ║
║   30m trend + 15m zones + 1m trigger + 1m structure → one verdict    ║
╚══════════════════════════════════════════════════════════════════════╝

Setup quality score (0-100):

  0.3 × trend confidence   (only when the 30m bias is directional)
  + 20                     (price inside a 15m kill zone)
  + 0.5 × signal confidence

A recommendation needs signal direction, trend bias and zone proximity to
agree; a score of 70 or more upgrades it to strong_buy / strong_sell.

Pure composition: the same candles and timestamp always produce the same
MultiTimeframeAnalysis.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence

from cleanedge.config import CONFIG, CleanEdgeConfig
from cleanedge.engines.signals import SignalAnalyzer
from cleanedge.engines.structure import StructureScorer
from cleanedge.engines.trend import TrendAnalyzer
from cleanedge.engines.zones import ZoneIdentifier
from cleanedge.models.schemas import (
    Candle,
    MultiTimeframeAnalysis,
    Recommendation,
    SignalType,
    TradeSide,
    TrendDirection,
)

logger = logging.getLogger("cleanedge.market_analysis")


class MarketAnalyzer:
    """Composes the four analyzers for one pair."""

    def __init__(self, config: Optional[CleanEdgeConfig] = None):
        self.config = config or CONFIG
        self.trend = TrendAnalyzer(self.config.trend)
        self.zones = ZoneIdentifier(self.config.zones)
        self.signals = SignalAnalyzer(self.config.signals)
        self.structure = StructureScorer(self.config.structure)

    def analyze(
        self,
        pair: str,
        candles_30m: Sequence[Candle],
        candles_15m: Sequence[Candle],
        candles_1m: Sequence[Candle],
        timestamp: Optional[datetime] = None,
    ) -> MultiTimeframeAnalysis:
        scoring = self.config.scoring

        trend = self.trend.analyze(candles_30m)
        zones = self.zones.identify(candles_15m)
        current_price = candles_1m[-1].close if candles_1m else 0.0
        in_zone = self.zones.is_price_in_kill_zone(current_price, zones, pair)
        signal = self.signals.analyze(candles_1m, zones, trend, in_zone)
        structure = self.structure.score(candles_1m)

        score = 0.0
        if trend.bias != TrendDirection.RANGING:
            score += trend.confidence * scoring.trend_weight
        if in_zone:
            score += scoring.zone_bonus
        score += signal.confidence * scoring.signal_weight
        score = min(100.0, max(0.0, score))

        recommendation = Recommendation.WAIT
        strong = score >= scoring.strong_recommendation_score
        if in_zone and signal.direction == TradeSide.LONG and trend.bias == TrendDirection.BULLISH:
            recommendation = Recommendation.STRONG_BUY if strong else Recommendation.BUY
        elif in_zone and signal.direction == TradeSide.SHORT and trend.bias == TrendDirection.BEARISH:
            recommendation = Recommendation.STRONG_SELL if strong else Recommendation.SELL

        if timestamp is None:
            timestamp = candles_1m[-1].time if candles_1m else datetime.now(timezone.utc)

        analysis = MultiTimeframeAnalysis(
            pair=pair,
            timestamp=timestamp,
            current_price=current_price,
            trend_30m=trend,
            zones_15m=zones,
            signal_1m=signal,
            price_in_zone=in_zone,
            setup_quality_score=score,
            price_structure=structure,
            recommendation=recommendation,
        )

        logger.debug(
            f"{pair}: {trend.bias.value} ({trend.confidence:.0f}%) | "
            f"zone={'Y' if in_zone else 'N'} | {signal.type.value} | "
            f"score {score:.1f} → {recommendation.value}"
        )
        return analysis

    def evaluate_checklist(self, analysis: MultiTimeframeAnalysis) -> Dict[str, bool]:
        """Named pre-trade checklist items satisfied by an analysis."""
        scoring = self.config.scoring
        trend = analysis.trend_30m

        if trend.bias == TrendDirection.BULLISH:
            ema_ok = trend.price_above_ema is True
        elif trend.bias == TrendDirection.BEARISH:
            ema_ok = trend.price_above_ema is False
        else:
            ema_ok = False

        return {
            "trend_30m": (
                trend.bias != TrendDirection.RANGING
                and trend.confidence >= scoring.checklist_trend_confidence
            ),
            "zone_15m": analysis.price_in_zone,
            "ema200": ema_ok,
            "structure": (
                analysis.price_structure.structure_score >= scoring.checklist_structure_score
            ),
            "trigger_1m": (
                analysis.signal_1m.type != SignalType.NONE
                and analysis.signal_1m.confidence >= scoring.checklist_trigger_confidence
            ),
            "clear_direction": analysis.recommendation != Recommendation.WAIT,
        }


def score_label(score: float, config=None) -> str:
    gate = (config or CONFIG).gate
    if score >= gate.a_plus_score:
        return "A+ Grade"
    if score >= gate.min_tradable_score:
        return "Tradable"
    return "Below minimum"
