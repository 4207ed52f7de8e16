"""
Time source used by the gate and scheduler.

Cooldowns, 3-strike blocks, anti-thrash windows and the daily rollover are
all plain timestamp comparisons against an injected clock, so tests can
fast-forward time instead of sleeping.
"""

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Timezone-aware UTC wall-clock time."""
        ...

    def monotonic(self) -> float:
        ...


class SystemClock:
    """Real wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()
