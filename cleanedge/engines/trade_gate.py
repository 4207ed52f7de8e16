"""
╔══════════════════════════════════════════════════════════════════════╗
║           CLEANEDGE — TRADE GATE                                     ║
║   Safety predicates + quality threshold + 3-strike circuit breaker   ║
╚══════════════════════════════════════════════════════════════════════╝

Every check must pass for a pair to become eligible:

  SAFETY
    auto_trading_enabled   settings flag on and no emergency stop
    active_session         inside the London or New York window
    max_trades_ok          trades today < max_trades_per_session (all pairs)
    no_duplicate_pair      no open position and no order in flight
    cooldown_ok            ≥ 120 s since this pair's last trade
    three_strike_ok        pair not inside its 60-minute loss block
  QUALITY
    setup_quality          setup score ≥ 60 (≥ 70 is A+, sizing only)
    clear_direction        recommendation is not wait

The gate owns no lock. Callers that act on a decision (the scheduler)
must hold their own mutex across evaluate → record_execution.
"""

import logging
from datetime import datetime, timedelta
from typing import Collection, Dict, List, Optional

from cleanedge.clock import Clock
from cleanedge.config import CONFIG, GateConfig
from cleanedge.engines.indicators import to_instrument
from cleanedge.engines.market_analysis import score_label
from cleanedge.engines.sessions import TradingSessionClock
from cleanedge.models.schemas import (
    GateDecision,
    MultiTimeframeAnalysis,
    Recommendation,
    SessionState,
    TradeResult,
)

logger = logging.getLogger("cleanedge.trade_gate")


class TradeGate:

    def __init__(
        self,
        state: SessionState,
        settings,
        clock: Clock,
        session_clock: Optional[TradingSessionClock] = None,
        config: Optional[GateConfig] = None,
    ):
        self.state = state
        self.settings = settings
        self.clock = clock
        self.session_clock = session_clock or TradingSessionClock()
        self.config = config or CONFIG.gate

    # ─────────────────────────────────────────────────────────────────
    #  EVALUATION
    # ─────────────────────────────────────────────────────────────────

    def evaluate(
        self,
        pair: str,
        analysis: Optional[MultiTimeframeAnalysis],
        open_pairs: Collection[str] = (),
        executing: Collection[str] = (),
    ) -> GateDecision:
        cfg = self.config
        risk = self.settings.risk
        instrument = to_instrument(pair)
        now = self.clock.now()
        self.roll_day()

        checks: Dict[str, bool] = {}
        reasons: List[str] = []

        def check(name: str, ok: bool, reason: str):
            checks[name] = ok
            if not ok:
                reasons.append(reason)

        # ── SAFETY ──
        if self.state.auto_trading_stopped:
            check("auto_trading_enabled", False, "emergency stop active")
        else:
            check("auto_trading_enabled", self.settings.agent.auto_trading_enabled,
                  "auto-trading disabled")

        session = self.session_clock.current_session(now)
        check("active_session", session.active,
              f"outside trading session ({session.next_session_start or 'closed'})")

        # Orders still in flight hold a slot until they resolve
        committed = self.state.trades_executed_today + len(set(executing) - {instrument})
        check("max_trades_ok", committed < risk.max_trades_per_session,
              f"max trades reached ({committed}/{risk.max_trades_per_session})")

        if instrument in executing:
            check("no_duplicate_pair", False, "order already in flight")
        else:
            check("no_duplicate_pair", instrument not in open_pairs, "position already open")

        last_trade = self.state.last_trade_time_per_pair.get(instrument)
        elapsed = (now - last_trade).total_seconds() if last_trade else None
        check("cooldown_ok", elapsed is None or elapsed >= cfg.cooldown_seconds,
              f"cooldown active ({cfg.cooldown_seconds - (elapsed or 0):.0f}s left)")

        blocked = self.state.blocked_until(instrument, now)
        check("three_strike_ok", not (risk.enable_three_strike_rule and blocked),
              f"blocked until {blocked:%H:%M} UTC after {cfg.three_strike_limit} consecutive losses"
              if blocked else "")

        # ── QUALITY ──
        score = analysis.setup_quality_score if analysis else 0.0
        check("setup_quality", score >= cfg.min_tradable_score,
              f"setup score {score:.1f} below {cfg.min_tradable_score:.0f}")
        check("clear_direction",
              analysis is not None and analysis.recommendation != Recommendation.WAIT,
              "no clear direction")

        decision = GateDecision(
            pair=instrument,
            allow=not reasons,
            reasons=reasons,
            checks=checks,
            score=score,
            score_label=score_label(score),
            a_plus=score >= cfg.a_plus_score,
        )

        if decision.allow:
            logger.info(f"GATE OPEN — {instrument} score {score:.1f} ({decision.score_label})")
        else:
            logger.debug(f"Gate blocked {instrument}: {'; '.join(reasons)}")
        return decision

    # ─────────────────────────────────────────────────────────────────
    #  STATE TRANSITIONS
    # ─────────────────────────────────────────────────────────────────

    def record_execution(self, pair: str):
        instrument = to_instrument(pair)
        self.state.trades_executed_today += 1
        self.state.last_trade_time_per_pair[instrument] = self.clock.now()

    def record_close(self, pair: str, result: TradeResult) -> Optional[datetime]:
        """
        Feed a closed trade into the 3-strike counter. Returns the new
        block expiry when this close trips the breaker.
        """
        instrument = to_instrument(pair)
        losses = self.state.consecutive_losses_per_pair

        if result == TradeResult.WIN:
            losses[instrument] = 0
            if self.state.pair_blocked_until.pop(instrument, None):
                logger.info(f"{instrument} block cleared by a winning close")
            return None

        if result == TradeResult.BREAKEVEN:
            return None

        losses[instrument] = losses.get(instrument, 0) + 1
        if losses[instrument] < self.config.three_strike_limit:
            logger.info(f"{instrument} loss streak: {losses[instrument]}")
            return None

        until = self.clock.now() + timedelta(minutes=self.config.block_minutes)
        self.state.pair_blocked_until[instrument] = until
        logger.warning(
            f"══╡ 3-STRIKE — {instrument} BLOCKED ╞══\n"
            f"    Consecutive losses: {losses[instrument]}\n"
            f"    Blocked until: {until:%Y-%m-%d %H:%M} UTC"
        )
        return until

    def roll_day(self) -> bool:
        rolled = self.state.roll_day(self.clock.now())
        if rolled:
            logger.info(f"New trading day {self.state.session_date} — session counters reset")
        return rolled
