"""
CLEANEDGE — Analysis Engines
============================

Pure computation over candle data, plus the trade gate.

Modules:
  - indicators:       EMA, ATR, swings, candle patterns, pip helpers
  - trend:            30m composite trend bias
  - zones:            15m swing support / resistance
  - signals:          1m entry triggers (Rule Zero gated)
  - structure:        1m price-structure cleanliness score
  - market_analysis:  Multi-timeframe composition + setup quality score
  - position_sizer:   Risk-based units with margin clamping
  - sessions:         London / New York trading windows
  - trade_gate:       Safety + quality gate, 3-strike breaker
"""
