"""
╔══════════════════════════════════════════════════════════════════════╗
║           CLEANEDGE AUTO-TRADER — FASTAPI SERVER                     ║
║   REST API over the analysis engine and the execution scheduler      ║
╚══════════════════════════════════════════════════════════════════════╝

  GET  /health
  GET  /api/analyze/{base}/{quote}     multi-timeframe analysis
  GET  /api/gate/{base}/{quote}        analysis + gate decision + checklist
  GET  /api/state                      scheduler snapshot
  POST /api/bot/refresh                run one cycle now
  POST /api/bot/emergency-stop
  POST /api/bot/resume
  POST /api/session/reset
  POST /api/trades/close               {pair, pnl} → 3-strike counters
  GET  /api/settings
  PUT  /api/settings

Mutating endpoints require the X-API-Key header when CLEANEDGE_API_KEY
is set. Run with:  uvicorn cleanedge.server:app
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from cleanedge import __version__
from cleanedge.bridges.errors import BrokerConfigError, BrokerError, BrokerTerminalError
from cleanedge.bridges.oanda_bridge import OandaBridge
from cleanedge.config import CONFIG
from cleanedge.engines.indicators import to_instrument
from cleanedge.scheduler import ExecutionScheduler
from cleanedge.settings import (
    SETTINGS,
    SETTINGS_FILE,
    AgentSettings,
    BrokerSettings,
    CleanEdgeSettings,
    RiskSettings,
)
from cleanedge.models.schemas import TradeCloseRequest
from cleanedge.state_store import SessionStore

logger = logging.getLogger("cleanedge.server")

MASK = "••••••••"
SETTINGS_PATH = SETTINGS_FILE

# ─────────────────────────────────────────────────────────────────────
#  GLOBAL SCHEDULER INSTANCE (built in lifespan unless already set)
# ─────────────────────────────────────────────────────────────────────
scheduler: Optional[ExecutionScheduler] = None


def build_scheduler(settings: CleanEdgeSettings) -> ExecutionScheduler:
    broker = OandaBridge()
    broker.configure(
        settings.broker.api_key,
        settings.broker.account_id,
        settings.broker.environment,
    )
    return ExecutionScheduler(broker, settings, SessionStore())


def get_scheduler() -> ExecutionScheduler:
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialised")
    return scheduler


# ─────────────────────────────────────────────────────────────────────
#  APPLICATION LIFECYCLE
# ─────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start and stop the scheduler with the server."""
    global scheduler
    logging.basicConfig(
        level=getattr(logging, CONFIG.server.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Starting CleanEdge auto-trader server...")

    if scheduler is None:
        scheduler = build_scheduler(SETTINGS)

    if hasattr(scheduler.broker, "connect"):
        try:
            await scheduler.broker.connect()
        except BrokerError as e:
            logger.error(f"Broker connection failed: {e} — server will start in degraded mode")

    await scheduler.start()
    yield

    logger.info("Shutting down CleanEdge auto-trader...")
    await scheduler.stop()
    if hasattr(scheduler.broker, "disconnect"):
        await scheduler.broker.disconnect()


# ─────────────────────────────────────────────────────────────────────
#  FASTAPI APP
# ─────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="CleanEdge Auto-Trader",
    description="Multi-timeframe scalping analysis with a duplicate-safe trade gate",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CONFIG.server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─────────────────────────────────────────────────────────────────────
#  AUTHENTICATION
# ─────────────────────────────────────────────────────────────────────

def require_api_key(x_api_key: Optional[str] = Header(default=None)):
    """Only enforced when an API key is configured."""
    expected = CONFIG.server.api_key
    if expected and x_api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid or missing X-API-Key")


def _broker_http_error(e: BrokerError) -> HTTPException:
    if isinstance(e, BrokerConfigError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, BrokerTerminalError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


# ─────────────────────────────────────────────────────────────────────
#  HEALTH CHECK
# ─────────────────────────────────────────────────────────────────────

@app.get("/health")
async def health_check():
    sched = get_scheduler()
    session = sched.session_clock.current_session(sched.clock.now())
    return {
        "status": "OPERATIONAL",
        "agent": f"CleanEdge Auto-Trader v{__version__}",
        "broker_configured": sched.broker.is_configured,
        "scheduler_running": sched.is_running,
        "emergency_stopped": sched.state.auto_trading_stopped,
        "session": session.name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ═══════════════════════════════════════════════════════════════════════
#  ANALYSIS
# ═══════════════════════════════════════════════════════════════════════

@app.get("/api/analyze/{base}/{quote}")
async def analyze_pair(base: str, quote: str):
    sched = get_scheduler()
    try:
        analysis = await sched.analyze(f"{base}_{quote}")
    except BrokerError as e:
        raise _broker_http_error(e)
    return analysis.model_dump(mode="json")


@app.get("/api/gate/{base}/{quote}")
async def gate_pair(base: str, quote: str):
    sched = get_scheduler()
    pair = to_instrument(f"{base}_{quote}")
    try:
        analysis = await sched.analyze(pair)
    except BrokerError as e:
        raise _broker_http_error(e)
    decision = await sched.evaluate_gate(pair, analysis)
    return {
        "analysis": analysis.model_dump(mode="json"),
        "decision": decision.model_dump(mode="json"),
        "checklist": sched.analyzer.evaluate_checklist(analysis),
    }


@app.get("/api/state")
async def get_state():
    return get_scheduler().snapshot().model_dump(mode="json")


# ═══════════════════════════════════════════════════════════════════════
#  BOT CONTROLS
# ═══════════════════════════════════════════════════════════════════════

@app.post("/api/bot/refresh", dependencies=[Depends(require_api_key)])
async def refresh_now():
    sched = get_scheduler()
    decisions = await sched.on_cycle_tick(manual=True)
    return {
        "status": "OK",
        "decisions": [d.model_dump(mode="json") for d in decisions],
    }


@app.post("/api/bot/emergency-stop", dependencies=[Depends(require_api_key)])
async def emergency_stop():
    get_scheduler().emergency_stop()
    return {"status": "OK", "message": "Emergency stop ACTIVE — no new trades"}


@app.post("/api/bot/resume", dependencies=[Depends(require_api_key)])
async def resume():
    get_scheduler().resume()
    return {"status": "OK", "message": "Auto-trading resumed"}


@app.post("/api/session/reset", dependencies=[Depends(require_api_key)])
async def reset_session():
    await get_scheduler().reset_session()
    return {"status": "OK", "message": "Session counters reset"}


@app.post("/api/trades/close", dependencies=[Depends(require_api_key)])
async def record_trade_close(payload: TradeCloseRequest):
    sched = get_scheduler()
    blocked_until = await sched.record_close(payload.pair, payload.pnl)
    instrument = to_instrument(payload.pair)
    return {
        "status": "OK",
        "pair": instrument,
        "consecutive_losses": sched.state.consecutive_losses_per_pair.get(instrument, 0),
        "blocked_until": blocked_until.isoformat() if blocked_until else None,
    }


# ═══════════════════════════════════════════════════════════════════════
#  SETTINGS API
# ═══════════════════════════════════════════════════════════════════════

@app.get("/api/settings")
async def get_settings():
    """Current settings (API key masked)."""
    return get_scheduler().settings.to_safe_dict()


@app.put("/api/settings", dependencies=[Depends(require_api_key)])
async def update_settings(request: Request):
    """
    Partial update. Persisted to disk and applied from the next tick.
    """
    sched = get_scheduler()
    body = await request.json()
    current = sched.settings.model_copy(deep=True)

    try:
        if "broker" in body:
            broker_data = dict(body["broker"])
            # Don't overwrite the key with the masked value
            if broker_data.get("api_key") in (MASK, None):
                broker_data["api_key"] = current.broker.api_key
            current.broker = BrokerSettings(**{**current.broker.model_dump(), **broker_data})
        if "risk" in body:
            current.risk = RiskSettings(**{**current.risk.model_dump(), **body["risk"]})
        if "agent" in body:
            current.agent = AgentSettings(**{**current.agent.model_dump(), **body["agent"]})
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    current.save(SETTINGS_PATH)
    sched.apply_settings(current)
    if hasattr(sched.broker, "configure"):
        sched.broker.configure(
            current.broker.api_key, current.broker.account_id, current.broker.environment
        )

    logger.info("Settings updated and applied")
    return {"status": "OK", "message": "Settings saved", "settings": current.to_safe_dict()}


def main():
    uvicorn.run(
        "cleanedge.server:app",
        host=CONFIG.server.host,
        port=CONFIG.server.port,
        log_level=CONFIG.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()
