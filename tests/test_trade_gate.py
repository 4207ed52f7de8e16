"""
Trade gate — safety predicates, quality threshold, 3-strike breaker, rollover.
"""

from datetime import date, timedelta

import pytest

from cleanedge.engines.trade_gate import TradeGate
from cleanedge.models.schemas import Recommendation, SessionState, TradeResult

from conftest import T0, FakeClock, make_analysis, make_settings

CHECK_ORDER = [
    "auto_trading_enabled",
    "active_session",
    "max_trades_ok",
    "no_duplicate_pair",
    "cooldown_ok",
    "three_strike_ok",
    "setup_quality",
    "clear_direction",
]


def make_gate(clock=None, **settings_kw):
    state = SessionState(session_date=T0.date())
    clock = clock or FakeClock()
    return TradeGate(state, make_settings(**settings_kw), clock), state, clock


def test_everything_passes():
    gate, _, _ = make_gate()
    decision = gate.evaluate("EUR/USD", make_analysis())
    assert decision.allow, decision.reasons
    assert decision.pair == "EUR_USD"
    assert list(decision.checks) == CHECK_ORDER
    assert all(decision.checks.values())
    assert decision.a_plus
    assert decision.score_label == "A+ Grade"


def test_auto_trading_disabled():
    gate, _, _ = make_gate(auto_trading=False)
    decision = gate.evaluate("EUR_USD", make_analysis())
    assert not decision.allow
    assert decision.reasons == ["auto-trading disabled"]


def test_emergency_stop_blocks():
    gate, state, _ = make_gate()
    state.auto_trading_stopped = True
    decision = gate.evaluate("EUR_USD", make_analysis())
    assert decision.reasons == ["emergency stop active"]


@pytest.mark.parametrize("hours", [3, 9])     # 19:00 and 01:00 local
def test_outside_session(hours):
    clock = FakeClock(T0 + timedelta(hours=hours))
    gate, _, _ = make_gate(clock)
    decision = gate.evaluate("EUR_USD", make_analysis())
    assert not decision.checks["active_session"]
    assert decision.reasons[0].startswith("outside trading session")


def test_max_trades_counts_all_pairs():
    gate, state, _ = make_gate(max_trades=2)
    state.trades_executed_today = 2
    decision = gate.evaluate("AUD_USD", make_analysis("AUD_USD"))
    assert not decision.checks["max_trades_ok"]
    assert decision.reasons == ["max trades reached (2/2)"]


def test_max_trades_counts_orders_in_flight():
    gate, state, _ = make_gate(max_trades=2)
    state.trades_executed_today = 1
    decision = gate.evaluate("AUD_USD", make_analysis("AUD_USD"), executing={"EUR_USD"})
    assert decision.reasons == ["max trades reached (2/2)"]

    assert gate.evaluate("AUD_USD", make_analysis("AUD_USD")).allow


def test_duplicate_pair_open_or_in_flight():
    gate, _, _ = make_gate()
    open_decision = gate.evaluate("EUR_USD", make_analysis(), open_pairs={"EUR_USD"})
    assert open_decision.reasons == ["position already open"]

    flight_decision = gate.evaluate("EUR_USD", make_analysis(), executing={"EUR_USD"})
    assert flight_decision.reasons == ["order already in flight"]

    other = gate.evaluate("GBP_USD", make_analysis("GBP_USD"), open_pairs={"EUR_USD"})
    assert other.allow


def test_cooldown_after_execution():
    gate, state, clock = make_gate()
    gate.record_execution("EUR_USD")
    assert state.trades_executed_today == 1

    clock.advance(60)
    decision = gate.evaluate("EUR_USD", make_analysis())
    assert not decision.checks["cooldown_ok"]
    assert decision.reasons == ["cooldown active (60s left)"]

    clock.advance(60)
    assert gate.evaluate("EUR_USD", make_analysis()).allow


def test_low_score_and_no_direction():
    gate, _, _ = make_gate()
    decision = gate.evaluate("EUR_USD", make_analysis(score=55.0))
    assert decision.reasons == ["setup score 55.0 below 60"]
    assert decision.score_label == "Below minimum"

    decision = gate.evaluate("EUR_USD", make_analysis(score=65.0, recommendation=Recommendation.WAIT))
    assert decision.reasons == ["no clear direction"]
    assert not decision.a_plus


def test_missing_analysis_fails_quality():
    gate, _, _ = make_gate()
    decision = gate.evaluate("EUR_USD", None)
    assert not decision.checks["setup_quality"]
    assert not decision.checks["clear_direction"]


# ─────────────────────────────────────────────────────────────────────
#  3-STRIKE
# ─────────────────────────────────────────────────────────────────────

def test_three_losses_block_the_pair_for_an_hour():
    gate, state, clock = make_gate()
    assert gate.record_close("EUR_USD", TradeResult.LOSS) is None
    assert gate.record_close("EUR_USD", TradeResult.LOSS) is None
    until = gate.record_close("EUR_USD", TradeResult.LOSS)
    assert until == T0 + timedelta(minutes=60)

    decision = gate.evaluate("EUR_USD", make_analysis())
    assert not decision.checks["three_strike_ok"]
    assert gate.evaluate("GBP_USD", make_analysis("GBP_USD")).allow, "other pairs unaffected"

    clock.advance(60 * 60)
    assert gate.evaluate("EUR_USD", make_analysis()).checks["three_strike_ok"]


def test_win_resets_streak_and_clears_block():
    gate, state, _ = make_gate()
    gate.record_close("EUR_USD", TradeResult.LOSS)
    gate.record_close("EUR_USD", TradeResult.LOSS)
    gate.record_close("EUR_USD", TradeResult.WIN)
    assert state.consecutive_losses_per_pair["EUR_USD"] == 0

    for _ in range(3):
        gate.record_close("EUR_USD", TradeResult.LOSS)
    assert "EUR_USD" in state.pair_blocked_until
    gate.record_close("EUR_USD", TradeResult.WIN)
    assert "EUR_USD" not in state.pair_blocked_until
    assert gate.evaluate("EUR_USD", make_analysis()).allow


def test_breakeven_changes_nothing():
    gate, state, _ = make_gate()
    gate.record_close("EUR_USD", TradeResult.LOSS)
    gate.record_close("EUR_USD", TradeResult.BREAKEVEN)
    assert state.consecutive_losses_per_pair["EUR_USD"] == 1


def test_disabled_rule_does_not_block():
    gate, state, _ = make_gate(three_strike=False)
    for _ in range(3):
        gate.record_close("EUR_USD", TradeResult.LOSS)
    decision = gate.evaluate("EUR_USD", make_analysis())
    assert decision.checks["three_strike_ok"]
    assert decision.allow


# ─────────────────────────────────────────────────────────────────────
#  DAY ROLLOVER
# ─────────────────────────────────────────────────────────────────────

def test_new_day_resets_counters_but_keeps_emergency_stop():
    gate, state, _ = make_gate()
    state.session_date = date(2026, 10, 13)
    state.trades_executed_today = 5
    state.consecutive_losses_per_pair["EUR_USD"] = 3
    state.pair_blocked_until["EUR_USD"] = T0 + timedelta(minutes=30)
    state.pair_blocked_until["GBP_USD"] = T0 - timedelta(minutes=1)
    state.last_trade_time_per_pair["EUR_USD"] = T0
    state.auto_trading_stopped = True

    decision = gate.evaluate("EUR_USD", make_analysis())

    assert state.session_date == T0.date()
    assert state.trades_executed_today == 0
    assert not state.consecutive_losses_per_pair
    assert state.pair_blocked_until == {"EUR_USD": T0 + timedelta(minutes=30)}
    assert not state.last_trade_time_per_pair
    assert state.auto_trading_stopped
    assert decision.reasons[0] == "emergency stop active"
    assert not decision.checks["three_strike_ok"], "a live block runs to its expiry"


def test_roll_day_is_idempotent():
    gate, _, _ = make_gate()
    assert not gate.roll_day()
