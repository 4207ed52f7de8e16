"""
CLEANEDGE — TRADING SESSION WINDOWS

Two execution windows, defined in local time of SessionConfig.timezone
(Singapore by default):

  London    15:00 - 18:00
  New York  20:00 - 23:00

Start inclusive, end exclusive. Saturday and Sunday are closed.
"""

import logging
from datetime import datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from cleanedge.config import CONFIG, SessionConfig
from cleanedge.models.schemas import SessionInfo

logger = logging.getLogger("cleanedge.sessions")


class TradingSessionClock:

    def __init__(self, config: Optional[SessionConfig] = None):
        self.config = config or CONFIG.sessions
        self.tz = ZoneInfo(self.config.timezone)

    def local_time(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self.tz)

    def current_session(self, now: datetime) -> SessionInfo:
        cfg = self.config
        local = self.local_time(now)
        current = local.time()
        tz_label = local.tzname() or cfg.timezone

        london = (self._parse_time(cfg.london_start), self._parse_time(cfg.london_end))
        newyork = (self._parse_time(cfg.newyork_start), self._parse_time(cfg.newyork_end))

        if cfg.weekend_closed and local.weekday() >= 5:  # Saturday=5, Sunday=6
            return SessionInfo(
                name="Closed",
                active=False,
                next_session_start=f"London opens Monday at {cfg.london_start} {tz_label}",
            )

        if london[0] <= current < london[1]:
            return SessionInfo(
                name="London", active=True,
                start_time=cfg.london_start, end_time=cfg.london_end,
            )

        if newyork[0] <= current < newyork[1]:
            return SessionInfo(
                name="NY", active=True,
                start_time=cfg.newyork_start, end_time=cfg.newyork_end,
            )

        if current < london[0]:
            hint = f"London opens at {cfg.london_start} {tz_label}"
        elif current < newyork[0]:
            hint = f"NY opens at {cfg.newyork_start} {tz_label}"
        elif local.weekday() == 4 and cfg.weekend_closed:
            hint = f"London opens Monday at {cfg.london_start} {tz_label}"
        else:
            hint = f"London opens tomorrow at {cfg.london_start} {tz_label}"

        return SessionInfo(name="Closed", active=False, next_session_start=hint)

    def is_active(self, now: datetime) -> bool:
        return self.current_session(now).active

    @staticmethod
    def _parse_time(time_str: str) -> time:
        """Parse 'HH:MM' string to time object."""
        parts = time_str.split(":")
        return time(int(parts[0]), int(parts[1]))
