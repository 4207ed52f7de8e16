"""
Session state persistence — per-account round trip, atomic writes, bad files.
"""

from datetime import date, timedelta

from cleanedge.models.schemas import SessionState
from cleanedge.state_store import SessionStore

from conftest import T0


def populated_state():
    return SessionState(
        trades_executed_today=2,
        consecutive_losses_per_pair={"EUR_USD": 2},
        pair_blocked_until={"GBP_USD": T0 + timedelta(minutes=45)},
        last_trade_time_per_pair={"EUR_USD": T0},
        auto_trading_stopped=True,
        session_date=date(2026, 10, 14),
    )


def test_round_trip_preserves_everything(tmp_path):
    store = SessionStore(tmp_path / "state.json")
    store.save("acc", populated_state())

    loaded = store.load("acc")
    assert loaded == populated_state()
    assert loaded.last_trade_time_per_pair["EUR_USD"].tzinfo is not None


def test_accounts_are_kept_apart(tmp_path):
    store = SessionStore(tmp_path / "state.json")
    store.save("acc-1", populated_state())
    store.save("acc-2", SessionState(trades_executed_today=4))

    assert store.load("acc-1").trades_executed_today == 2
    assert store.load("acc-2").trades_executed_today == 4
    assert store.load("unknown").trades_executed_today == 0


def test_missing_file_gives_fresh_state(tmp_path):
    state = SessionStore(tmp_path / "nope.json").load("acc")
    assert state.trades_executed_today == 0
    assert not state.auto_trading_stopped


def test_corrupt_file_gives_fresh_state(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")
    assert SessionStore(path).load("acc").trades_executed_today == 0

    path.write_text('{"acc": {"trades_executed_today": "many"}}', encoding="utf-8")
    assert SessionStore(path).load("acc").trades_executed_today == 0


def test_write_leaves_no_temp_file(tmp_path):
    path = tmp_path / "nested" / "state.json"
    SessionStore(path).save("acc", populated_state())
    assert path.exists()
    assert [p.name for p in path.parent.iterdir()] == ["state.json"]
