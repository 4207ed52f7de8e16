"""CleanEdge auto-trader: multi-timeframe analysis and trade gating."""

__version__ = "1.0.0"
