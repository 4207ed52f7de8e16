"""
╔══════════════════════════════════════════════════════════════════════╗
║           CLEANEDGE AUTO-TRADER — SETTINGS MANAGER                   ║
║    Persistent user settings for broker, risk and agent behaviour     ║
╚══════════════════════════════════════════════════════════════════════╝

Settings are stored in a JSON file (CLEANEDGE_SETTINGS_FILE, default
settings.json at the project root) and can be changed through
PUT /api/settings. Changes take effect on the next cycle tick.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from cleanedge.config import CONFIG

logger = logging.getLogger("cleanedge.settings")

SETTINGS_FILE = Path(
    os.getenv("CLEANEDGE_SETTINGS_FILE", str(Path(__file__).parent.parent / "settings.json"))
)


class BrokerSettings(BaseModel):
    """OANDA v20 connection settings."""
    api_key: str = Field(default="", description="OANDA personal access token")
    account_id: str = Field(default="", description="OANDA account id (e.g. 101-003-1234567-001)")
    environment: str = Field(default="practice", description="practice or live")

    @field_validator("environment")
    @classmethod
    def _environment(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("practice", "live"):
            raise ValueError("environment must be 'practice' or 'live'")
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.account_id)


class RiskSettings(BaseModel):
    """Per-trade risk and session limits."""
    risk_percentage: float = Field(default=0.5, description="Balance % risked per trade")
    max_trades_per_session: int = Field(default=5, description="Max auto trades per day, all pairs")
    min_risk_reward: float = Field(default=1.5, description="Reward ratio for tradable setups")
    max_risk_reward: float = Field(default=2.0, description="Reward ratio for A+ setups")
    enable_three_strike_rule: bool = Field(
        default=True, description="Block a pair for 60 min after 3 consecutive losses"
    )


class AgentSettings(BaseModel):
    """Auto-trading loop behaviour."""
    auto_trading_enabled: bool = Field(default=False, description="Submit orders automatically")
    preferred_pairs: List[str] = Field(
        default=["EUR/USD", "GBP/USD", "USD/JPY", "AUD/USD", "EUR/JPY"],
        description="Pairs scanned each cycle, in order",
    )
    refresh_interval_seconds: int = Field(default=30, description="Cycle interval (15-60 s)")

    @field_validator("refresh_interval_seconds")
    @classmethod
    def _clamp_refresh(cls, v: int) -> int:
        sched = CONFIG.scheduler
        return max(sched.min_refresh_seconds, min(sched.max_refresh_seconds, int(v)))


class CleanEdgeSettings(BaseModel):
    """Master settings container."""
    broker: BrokerSettings = Field(default_factory=BrokerSettings)
    risk: RiskSettings = Field(default_factory=RiskSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    last_modified: str = Field(default="")

    def save(self, path: Optional[Path] = None):
        """Persist settings to disk."""
        path = Path(path or SETTINGS_FILE)
        self.last_modified = datetime.now(timezone.utc).isoformat()
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        logger.info(f"Settings saved to {path}")

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "CleanEdgeSettings":
        """Load settings from disk, or return defaults."""
        path = Path(path or SETTINGS_FILE)
        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                settings = cls(**data)
                logger.info(f"Settings loaded from {path}")
                return settings
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load settings, using defaults: {e}")
        return cls()

    def to_safe_dict(self) -> Dict[str, Any]:
        """Return settings with the API key masked for display."""
        data = self.model_dump()
        if data["broker"]["api_key"]:
            data["broker"]["api_key"] = "••••••••"
        return data


# Global settings instance
SETTINGS = CleanEdgeSettings.load()
