"""
Session state persistence.

One JSON document holding a SessionState per account id. Writes go to a
temp file first and are swapped in with os.replace so a crash mid-write
never leaves a truncated file behind.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

from cleanedge.models.schemas import SessionState

logger = logging.getLogger("cleanedge.state_store")

STATE_FILE = Path(
    os.getenv("CLEANEDGE_STATE_FILE", str(Path(__file__).parent.parent / ".session_state.json"))
)


class SessionStore:

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or STATE_FILE)

    def _read_all(self) -> Dict[str, dict]:
        try:
            if self.path.exists():
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
                logger.warning(f"Ignoring malformed session file {self.path}")
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read session state: {e}")
        return {}

    def load(self, account_id: str) -> SessionState:
        """Stored state for the account, or a fresh one."""
        raw = self._read_all().get(account_id)
        if raw is None:
            return SessionState()
        try:
            state = SessionState.model_validate(raw)
        except ValueError as e:
            logger.warning(f"Discarding unreadable session state for {account_id}: {e}")
            return SessionState()
        logger.info(
            f"Loaded session state for {account_id}: "
            f"{state.trades_executed_today} trades on {state.session_date}"
        )
        return state

    def save(self, account_id: str, state: SessionState):
        data = self._read_all()
        data[account_id] = state.model_dump(mode="json")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_file, self.path)
