"""
╔══════════════════════════════════════════════════════════════════════╗
║           CLEANEDGE — EXECUTION SCHEDULER                            ║
║   Periodic multi-pair analysis with duplicate-safe order execution   ║
╚══════════════════════════════════════════════════════════════════════╝

One cycle tick:
  1. No-op if emergency stopped or misconfigured (no credentials/pairs)
  2. Roll the trading day if the UTC date changed
  3. Refresh open positions from the broker
  4. Process pairs in configured order, two at a time, with a short
     pause between batches (upstream rate limits)
  5. Sync closed trades into the 3-strike counters
  6. Persist session state

Per pair:  idle → analyzing → blocked | eligible → executing → idle

The duplicate-order invariant (a pair is never both in flight and open,
never in flight twice) rests on one asyncio.Lock guarding the executing
set, the open-pair set and the SessionState:

    async with lock:  re-validate gate, claim the pair
    (unlocked)        account / price / size / submit
    finally, lock:    release the pair; on success count it, mark it open

A failed submission releases the pair and leaves every counter as it was.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from cleanedge.bridges.errors import BrokerError
from cleanedge.clock import Clock, SystemClock
from cleanedge.config import CONFIG, CleanEdgeConfig
from cleanedge.engines.indicators import to_instrument
from cleanedge.engines.market_analysis import MarketAnalyzer
from cleanedge.engines.position_sizer import (
    PositionSizer,
    select_risk_reward,
    usd_conversion_instrument,
)
from cleanedge.engines.sessions import TradingSessionClock
from cleanedge.engines.trade_gate import TradeGate
from cleanedge.models.schemas import (
    Candle,
    GateDecision,
    MultiTimeframeAnalysis,
    PairPhase,
    PairStatus,
    SchedulerSnapshot,
    Trade,
    TradeResult,
    TradeSide,
)
from cleanedge.state_store import SessionStore

logger = logging.getLogger("cleanedge.scheduler")

LOCK_CONTENTION = "lock contention"


class ExecutionScheduler:

    def __init__(
        self,
        broker,
        settings,
        store: SessionStore,
        clock: Optional[Clock] = None,
        account_id: Optional[str] = None,
        config: Optional[CleanEdgeConfig] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.broker = broker
        self.settings = settings
        self.store = store
        self.clock = clock or SystemClock()
        self.config = config or CONFIG
        self.account_id = account_id or settings.broker.account_id or "default"
        self._sleep = sleep or asyncio.sleep

        self.state = store.load(self.account_id)
        self.session_clock = TradingSessionClock(self.config.sessions)
        self.gate = TradeGate(self.state, settings, self.clock, self.session_clock, self.config.gate)
        self.analyzer = MarketAnalyzer(self.config)
        self.sizer = PositionSizer(self.config.risk)

        # Guards _executing, _open_pairs and self.state
        self._lock = asyncio.Lock()
        self._executing: Set[str] = set()
        self._open_pairs: Set[str] = set()

        self._analyzing: Set[str] = set()
        self._last_analyzed: Dict[str, float] = {}
        self._status: Dict[str, PairStatus] = {}
        self._seen_closed_ids: Optional[Set[str]] = None

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._last_cycle_at: Optional[datetime] = None

    # ─────────────────────────────────────────────────────────────────
    #  CONFIGURATION
    # ─────────────────────────────────────────────────────────────────

    def apply_settings(self, settings):
        """Swap in new user settings; the next tick picks them up."""
        self.settings = settings
        self.gate.settings = settings

    @property
    def pairs(self) -> List[str]:
        return [to_instrument(p) for p in self.settings.agent.preferred_pairs]

    @property
    def refresh_interval(self) -> int:
        sched = self.config.scheduler
        return max(sched.min_refresh_seconds,
                   min(sched.max_refresh_seconds, self.settings.agent.refresh_interval_seconds))

    @property
    def is_running(self) -> bool:
        return self._running

    # ─────────────────────────────────────────────────────────────────
    #  ANALYSIS
    # ─────────────────────────────────────────────────────────────────

    async def _fetch_candles(
        self, instrument: str
    ) -> Tuple[List[Candle], List[Candle], List[Candle]]:
        sched = self.config.scheduler
        c30, c15, c1 = await asyncio.gather(
            self.broker.get_candles(instrument, "M30", sched.candles_30m),
            self.broker.get_candles(instrument, "M15", sched.candles_15m),
            self.broker.get_candles(instrument, "M1", sched.candles_1m),
        )
        return c30, c15, c1

    async def analyze(self, pair: str) -> MultiTimeframeAnalysis:
        """Fetch the three timeframes and run the multi-timeframe analysis."""
        instrument = to_instrument(pair)
        c30, c15, c1 = await self._fetch_candles(instrument)
        return self.analyzer.analyze(instrument, c30, c15, c1, timestamp=self.clock.now())

    async def evaluate_gate(self, pair: str, analysis: MultiTimeframeAnalysis) -> GateDecision:
        async with self._lock:
            return self.gate.evaluate(pair, analysis, self._open_pairs, self._executing)

    # ─────────────────────────────────────────────────────────────────
    #  CYCLE
    # ─────────────────────────────────────────────────────────────────

    async def on_cycle_tick(self, manual: bool = False) -> List[GateDecision]:
        trigger = "manual" if manual else "scheduled"

        if self.state.auto_trading_stopped:
            logger.debug(f"Cycle ({trigger}) skipped — emergency stop active")
            return []
        if not self.broker.is_configured:
            logger.warning(f"Cycle ({trigger}) skipped — broker credentials not configured")
            return []
        pairs = self.pairs
        if not pairs:
            logger.warning(f"Cycle ({trigger}) skipped — no preferred pairs configured")
            return []

        async with self._lock:
            if self.gate.roll_day():
                self._persist()

        await self.refresh_open_positions()

        decisions: List[GateDecision] = []
        batch_size = max(1, self.config.scheduler.batch_size)
        for start in range(0, len(pairs), batch_size):
            if self.state.auto_trading_stopped:
                logger.warning("Emergency stop observed mid-cycle — remaining pairs skipped")
                break

            batch = pairs[start:start + batch_size]
            results = await asyncio.gather(
                *(self._process_pair(p) for p in batch), return_exceptions=True
            )
            for pair, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.error(f"{pair}: cycle error — {result}")
                    self._status_for(pair).last_error = str(result)
                    self._status_for(pair).phase = PairPhase.IDLE
                elif result is not None:
                    decisions.append(result)

            if start + batch_size < len(pairs):
                await self._sleep(self.config.scheduler.batch_delay_seconds)

        await self.sync_closed_trades()

        async with self._lock:
            self._persist()
        self._last_cycle_at = self.clock.now()

        allowed = sum(1 for d in decisions if d.allow)
        logger.info(
            f"Cycle ({trigger}) complete — {len(decisions)} evaluated, {allowed} eligible, "
            f"{self.state.trades_executed_today} trades today"
        )
        return decisions

    async def _process_pair(self, pair: str) -> Optional[GateDecision]:
        instrument = to_instrument(pair)
        status = self._status_for(instrument)

        if self.state.auto_trading_stopped:
            return None

        # Anti-thrash: check and claim with no await in between
        now_mono = self.clock.monotonic()
        last = self._last_analyzed.get(instrument)
        if instrument in self._analyzing or (
            last is not None and now_mono - last < self.config.gate.anti_thrash_seconds
        ):
            logger.debug(f"{instrument}: analyzed {now_mono - (last or now_mono):.1f}s ago — skipped")
            return None
        self._analyzing.add(instrument)
        self._last_analyzed[instrument] = now_mono
        status.phase = PairPhase.ANALYZING

        try:
            c30, c15, c1 = await self._fetch_candles(instrument)
        except BrokerError as e:
            logger.error(f"{instrument}: candle fetch failed — {e}")
            status.last_error = str(e)
            status.phase = PairPhase.IDLE
            return None
        finally:
            self._analyzing.discard(instrument)

        analysis = self.analyzer.analyze(instrument, c30, c15, c1, timestamp=self.clock.now())
        status.last_analysis = analysis
        status.last_analyzed_at = self.clock.now()
        status.last_error = None

        return await self._gate_and_execute(instrument, analysis, c1)

    # ─────────────────────────────────────────────────────────────────
    #  EXECUTION
    # ─────────────────────────────────────────────────────────────────

    async def _gate_and_execute(
        self,
        instrument: str,
        analysis: MultiTimeframeAnalysis,
        candles_1m: Sequence[Candle],
    ) -> GateDecision:
        status = self._status_for(instrument)

        async with self._lock:
            if instrument in self._executing:
                decision = GateDecision(
                    pair=instrument, allow=False, reasons=[LOCK_CONTENTION],
                    checks={"execution_lock": False},
                    score=analysis.setup_quality_score,
                )
            else:
                decision = self.gate.evaluate(
                    instrument, analysis, self._open_pairs, self._executing
                )
                if decision.allow:
                    self._executing.add(instrument)

        status.last_decision = decision
        if not decision.allow:
            status.phase = PairPhase.BLOCKED
            return decision

        status.phase = PairPhase.EXECUTING
        trade: Optional[Trade] = None
        try:
            trade = await self._submit(instrument, analysis, decision, candles_1m)
        except BrokerError as e:
            logger.error(f"{instrument}: order submission failed — {e}")
            status.last_error = str(e)
        finally:
            async with self._lock:
                self._executing.discard(instrument)
                if trade is not None:
                    self.gate.record_execution(instrument)
                    self._open_pairs.add(instrument)
                    self._persist()
            status.phase = PairPhase.IDLE

        if trade is not None:
            status.last_order_id = trade.id
        return decision

    async def _submit(
        self,
        instrument: str,
        analysis: MultiTimeframeAnalysis,
        decision: GateDecision,
        candles_1m: Sequence[Candle],
    ) -> Optional[Trade]:
        side = analysis.direction
        if side is None:
            return None

        account = await self.broker.get_account()
        usd_quote_price = await self._usd_quote_price(instrument)

        risk = self.settings.risk
        rr = select_risk_reward(decision.score, risk, self.config)
        stops = self.sizer.calculate_sl_tp(instrument, candles_1m, rr)
        size = self.sizer.size(
            account.balance,
            risk.risk_percentage,
            stops.stop_loss_pips,
            instrument,
            usd_quote_price=usd_quote_price,
            margin_available=account.margin_available,
            margin_rate=account.margin_rate,
        )
        if size.units <= 0:
            logger.warning(f"{instrument}: position size is zero — order not sent")
            return None

        units = size.units if side == TradeSide.LONG else -size.units
        trade = await self.broker.create_market_order(
            instrument, units, stops.stop_loss_pips, stops.take_profit_pips
        )

        logger.info(
            f"══╡ AUTO TRADE EXECUTED — {instrument} {side.value.upper()} ╞══\n"
            f"    Order: {trade.id} @ {trade.price}\n"
            f"    Units: {units}{' (fallback rate)' if size.used_fallback_rate else ''}\n"
            f"    SL: {stops.stop_loss_pips} pips | TP: {stops.take_profit_pips} pips "
            f"(1:{stops.risk_reward})\n"
            f"    Score: {decision.score:.1f} ({decision.score_label})"
        )
        return trade

    async def _usd_quote_price(self, instrument: str) -> Optional[float]:
        """USD→quote rate for pip value conversion, None when unavailable."""
        conversion = usd_conversion_instrument(instrument)
        if conversion is None:
            return None
        conv_instrument, invert = conversion
        try:
            quote = await self.broker.get_current_price(conv_instrument)
        except BrokerError as e:
            logger.warning(f"{conv_instrument} price unavailable ({e}) — sizer will use its fallback")
            return None
        if quote.mid <= 0:
            return None
        return 1 / quote.mid if invert else quote.mid

    # ─────────────────────────────────────────────────────────────────
    #  BROKER SYNC
    # ─────────────────────────────────────────────────────────────────

    async def refresh_open_positions(self):
        """
        Replace the open-pair set with the broker's view. Pairs filled
        after the fetch started stay marked open even when the snapshot
        predates them.
        """
        started = self.clock.now()
        try:
            positions = await self.broker.get_open_positions()
        except BrokerError as e:
            logger.error(f"Open position refresh failed — keeping previous view: {e}")
            return

        async with self._lock:
            fresh = {to_instrument(p.pair) for p in positions}
            recent = {
                pair for pair, at in self.state.last_trade_time_per_pair.items()
                if at >= started and pair in self._open_pairs
            }
            self._open_pairs = fresh | recent

    async def sync_closed_trades(self) -> int:
        """
        Feed newly closed broker trades into the 3-strike counters. The
        first sync only records ids so history is not replayed on startup.
        """
        try:
            trades = await self.broker.get_closed_trades(self.config.scheduler.closed_trades_count)
        except BrokerError as e:
            logger.error(f"Closed trade sync failed: {e}")
            return 0

        if self._seen_closed_ids is None:
            self._seen_closed_ids = {t.id for t in trades}
            logger.info(f"Closed trade baseline: {len(self._seen_closed_ids)} trades")
            return 0

        new = [t for t in trades if t.id not in self._seen_closed_ids]
        if not new:
            return 0
        new.sort(key=lambda t: t.close_time or datetime.min.replace(tzinfo=self.clock.now().tzinfo))

        async with self._lock:
            for trade in new:
                self._seen_closed_ids.add(trade.id)
                self.gate.record_close(trade.pair, trade.result)
                logger.info(f"Closed trade {trade.id} {trade.pair}: {trade.realized_pl:+.2f} ({trade.result.value})")
            self._persist()
        return len(new)

    # ─────────────────────────────────────────────────────────────────
    #  OPERATOR CONTROLS
    # ─────────────────────────────────────────────────────────────────

    async def record_close(self, pair: str, pnl: float) -> Optional[datetime]:
        if pnl > 0:
            result = TradeResult.WIN
        elif pnl < 0:
            result = TradeResult.LOSS
        else:
            result = TradeResult.BREAKEVEN
        async with self._lock:
            until = self.gate.record_close(pair, result)
            self._persist()
        return until

    def emergency_stop(self):
        """
        Takes effect immediately: no pair enters analysis after this call.
        An order already submitted is left to complete.
        """
        self.state.auto_trading_stopped = True
        self._persist()
        logger.warning(
            "══╡ EMERGENCY STOP ╞══\n"
            f"    In-flight orders: {sorted(self._executing) or 'none'}\n"
            "    No new analysis until resumed."
        )

    def resume(self):
        self.state.auto_trading_stopped = False
        self._persist()
        logger.info("Auto-trading resumed")

    async def reset_session(self):
        async with self._lock:
            self.state.reset(self.clock.now())
            self._persist()
        logger.info("Session counters reset")

    # ─────────────────────────────────────────────────────────────────
    #  LOOP LIFECYCLE
    # ─────────────────────────────────────────────────────────────────

    async def start(self):
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "╔══════════════════════════════════════════════════════════╗\n"
            "║       CLEANEDGE AUTO-TRADER — SCHEDULER STARTED          ║\n"
            "╚══════════════════════════════════════════════════════════╝\n"
            f"    Pairs: {', '.join(self.pairs) or 'none'}\n"
            f"    Interval: {self.refresh_interval}s"
        )

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Scheduler stopped")

    async def _run_loop(self):
        while self._running:
            try:
                await self.on_cycle_tick()
                await self._sleep(self.refresh_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Scheduler loop error: {e}")
                await self._sleep(self.refresh_interval)

        logger.info("Scheduler loop: Stopped")

    # ─────────────────────────────────────────────────────────────────
    #  STATE
    # ─────────────────────────────────────────────────────────────────

    def _status_for(self, pair: str) -> PairStatus:
        instrument = to_instrument(pair)
        if instrument not in self._status:
            self._status[instrument] = PairStatus(pair=instrument)
        return self._status[instrument]

    def _persist(self):
        try:
            self.store.save(self.account_id, self.state)
        except OSError as e:
            logger.error(f"Could not persist session state: {e}")

    def snapshot(self) -> SchedulerSnapshot:
        return SchedulerSnapshot(
            running=self._running,
            auto_trading_enabled=self.settings.agent.auto_trading_enabled,
            emergency_stopped=self.state.auto_trading_stopped,
            refresh_interval_seconds=self.refresh_interval,
            session=self.session_clock.current_session(self.clock.now()),
            state=self.state.model_copy(deep=True),
            pairs=[self._status_for(p).model_copy() for p in self.pairs],
            executing=sorted(self._executing),
            open_pairs=sorted(self._open_pairs),
            last_cycle_at=self._last_cycle_at,
        )
