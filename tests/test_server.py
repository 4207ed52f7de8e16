"""
REST API — exercised with FastAPI's TestClient against an in-memory broker.
The lifespan is not entered; the module-level scheduler is swapped in.
"""

import pytest
from fastapi.testclient import TestClient

from cleanedge import server
from cleanedge.config import CONFIG
from cleanedge.scheduler import ExecutionScheduler
from cleanedge.state_store import SessionStore

from conftest import CannedAnalyzer, FakeBroker, FakeClock, make_settings, no_sleep


@pytest.fixture
def sched(tmp_path, monkeypatch):
    scheduler = ExecutionScheduler(
        FakeBroker(),
        make_settings(),
        SessionStore(tmp_path / "state.json"),
        clock=FakeClock(),
        sleep=no_sleep,
    )
    monkeypatch.setattr(server, "scheduler", scheduler)
    monkeypatch.setattr(server, "SETTINGS_PATH", tmp_path / "settings.json")
    monkeypatch.setattr(CONFIG.server, "api_key", "")
    return scheduler


@pytest.fixture
def client(sched):
    return TestClient(server.app)


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "OPERATIONAL"
    assert body["broker_configured"] is True
    assert body["session"] == "London"


def test_no_scheduler_is_503(monkeypatch):
    monkeypatch.setattr(server, "scheduler", None)
    assert TestClient(server.app).get("/api/state").status_code == 503


def test_analyze_returns_full_analysis(client):
    resp = client.get("/api/analyze/EUR/USD")
    assert resp.status_code == 200
    body = resp.json()
    assert body["pair"] == "EUR_USD"
    assert body["recommendation"] == "wait"
    assert set(body) >= {"trend_30m", "zones_15m", "signal_1m", "price_structure", "setup_quality_score"}


def test_analyze_broker_failure_is_502(client, sched):
    sched.broker.fail_candles_for = {"EUR_USD"}
    assert client.get("/api/analyze/EUR/USD").status_code == 502


def test_gate_includes_decision_and_checklist(client, sched):
    sched.analyzer = CannedAnalyzer()
    body = client.get("/api/gate/GBP/USD").json()
    assert body["decision"]["allow"] is True
    assert body["decision"]["pair"] == "GBP_USD"
    assert body["checklist"]["clear_direction"] is True
    assert not sched.broker.orders, "the gate endpoint never trades"


def test_refresh_runs_one_cycle(client, sched):
    sched.analyzer = CannedAnalyzer()
    body = client.post("/api/bot/refresh").json()
    assert body["status"] == "OK"
    assert len(body["decisions"]) == 3
    assert len(sched.broker.orders) == 3

    state = client.get("/api/state").json()
    assert state["state"]["trades_executed_today"] == 3
    assert state["open_pairs"] == ["EUR_USD", "GBP_USD", "USD_JPY"]


def test_emergency_stop_and_resume(client, sched):
    client.post("/api/bot/emergency-stop")
    assert client.get("/api/state").json()["emergency_stopped"] is True
    assert client.post("/api/bot/refresh").json()["decisions"] == []

    client.post("/api/bot/resume")
    assert client.get("/api/state").json()["emergency_stopped"] is False


def test_trade_close_feeds_three_strike(client):
    for _ in range(2):
        body = client.post("/api/trades/close", json={"pair": "EUR/USD", "pnl": -10}).json()
        assert body["blocked_until"] is None
    body = client.post("/api/trades/close", json={"pair": "EUR/USD", "pnl": -10}).json()
    assert body["pair"] == "EUR_USD"
    assert body["consecutive_losses"] == 3
    assert body["blocked_until"] is not None

    body = client.post("/api/trades/close", json={"pair": "EUR_USD", "pnl": 25}).json()
    assert body["consecutive_losses"] == 0


def test_session_reset(client, sched):
    sched.state.trades_executed_today = 4
    client.post("/api/session/reset")
    assert sched.state.trades_executed_today == 0


# ─────────────────────────────────────────────────────────────────────
#  SETTINGS
# ─────────────────────────────────────────────────────────────────────

def test_settings_are_masked(client):
    assert client.get("/api/settings").json()["broker"]["api_key"] == "••••••••"


def test_settings_update_keeps_masked_key(client, sched, tmp_path):
    resp = client.put("/api/settings", json={
        "broker": {"api_key": "••••••••", "environment": "live"},
        "risk": {"risk_percentage": 1.0},
        "agent": {"refresh_interval_seconds": 5},
    })
    assert resp.status_code == 200
    assert sched.settings.broker.api_key == "token"
    assert sched.settings.broker.environment == "live"
    assert sched.settings.risk.risk_percentage == 1.0
    assert sched.refresh_interval == 15
    assert (tmp_path / "settings.json").exists()


def test_invalid_settings_are_rejected(client, sched, tmp_path):
    resp = client.put("/api/settings", json={"broker": {"environment": "demo"}})
    assert resp.status_code == 422
    assert sched.settings.broker.environment == "practice"
    assert not (tmp_path / "settings.json").exists()


@pytest.mark.parametrize("body", [{"risk": 5}, {"agent": [1, 2]}, {"broker": "live"}])
def test_malformed_settings_sections_are_rejected(client, sched, body):
    assert client.put("/api/settings", json=body).status_code == 422
    assert sched.settings.risk.risk_percentage == 0.5


# ─────────────────────────────────────────────────────────────────────
#  AUTH
# ─────────────────────────────────────────────────────────────────────

def test_api_key_guards_mutating_endpoints(client, monkeypatch):
    monkeypatch.setattr(CONFIG.server, "api_key", "s3cret")
    assert client.post("/api/bot/emergency-stop").status_code == 401
    assert client.post("/api/bot/emergency-stop", headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.post("/api/bot/emergency-stop", headers={"X-API-Key": "s3cret"}).status_code == 200
    assert client.get("/api/state").status_code == 200, "reads stay open"
