"""
CLEANEDGE — 15M ZONE IDENTIFIER

Swing-based support / resistance from the most recent 15-minute candles,
plus the kill-zone proximity test used by Rule Zero.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from cleanedge.config import CONFIG, ZoneConfig
from cleanedge.engines.indicators import pip_size, swing_highs, swing_lows
from cleanedge.models.schemas import Candle, KeyZones

logger = logging.getLogger("cleanedge.zones")


def _levels(values: Iterable[float], limit: int) -> List[float]:
    return sorted(set(values), reverse=True)[:limit]


class ZoneIdentifier:

    def __init__(self, config: Optional[ZoneConfig] = None):
        self.config = config or CONFIG.zones

    def identify(self, candles: Sequence[Candle]) -> KeyZones:
        """
        Scan the last ≤50 candles for 5-candle swing highs (resistance)
        and swing lows (support). Each side is deduplicated, sorted
        descending and capped at five levels.
        """
        cfg = self.config
        if len(candles) < cfg.min_candles:
            return KeyZones()

        recent = candles[-cfg.lookback:]
        return KeyZones(
            support=_levels(swing_lows(recent, cfg.swing_wing), cfg.max_levels),
            resistance=_levels(swing_highs(recent, cfg.swing_wing), cfg.max_levels),
        )

    def is_price_in_kill_zone(self, price: float, zones: KeyZones, pair: str) -> bool:
        """
        True when price is within 15 pips of any level. Distances are
        compared in pips rounded to 6 places, so the boundary is inclusive
        with a sub-micro-pip tolerance: up to 5e-7 pip beyond 15 still
        counts as inside, which absorbs float representation error.
        """
        pip = pip_size(pair)
        threshold = self.config.proximity_pips
        for level in (*zones.support, *zones.resistance):
            if round(abs(price - level) / pip, 6) <= threshold:
                return True
        return False
