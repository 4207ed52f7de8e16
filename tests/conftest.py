"""
Shared fixtures: candle factories, a controllable clock, an in-memory
broker and a canned analyzer for driving the scheduler.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

import pytest

from cleanedge.bridges.errors import BrokerTransientError, OrderRejectedError
from cleanedge.engines.indicators import to_instrument
from cleanedge.engines.market_analysis import MarketAnalyzer
from cleanedge.models.schemas import (
    AccountState,
    Candle,
    ClosedTrade,
    EntrySignal,
    KeyZones,
    MultiTimeframeAnalysis,
    Position,
    PriceQuote,
    PriceStructure,
    Recommendation,
    SignalType,
    Trade,
    TradeSide,
    TrendBias,
    TrendDirection,
)
from cleanedge.settings import AgentSettings, BrokerSettings, CleanEdgeSettings, RiskSettings

# Wednesday 08:00 UTC = 16:00 Singapore, inside the London window
T0 = datetime(2026, 10, 14, 8, 0, tzinfo=timezone.utc)


# ─────────────────────────────────────────────────────────────────────
#  CANDLES
# ─────────────────────────────────────────────────────────────────────

def candle(o, h, l, c, i=0, start=T0, step=timedelta(minutes=1)) -> Candle:
    return Candle(time=start + step * i, open=o, high=h, low=l, close=c)


def flat_candles(n: int, price: float = 1.1, start=T0) -> List[Candle]:
    return [candle(price, price, price, price, i, start) for i in range(n)]


def trending_candles(n: int, start_price: float = 1.1, step: float = 0.0005) -> List[Candle]:
    """Steady staircase: every candle makes a higher high and higher low (lower for step < 0)."""
    out = []
    for i in range(n):
        close = start_price + i * step
        open_ = close - step * 0.6
        high = max(open_, close) + 0.0005
        low = min(open_, close) - 0.0005
        out.append(candle(open_, high, low, close, i, step=timedelta(minutes=30)))
    return out


def make_analysis(
    pair: str = "EUR_USD",
    score: float = 80.0,
    recommendation: Recommendation = Recommendation.STRONG_BUY,
    timestamp: datetime = T0,
) -> MultiTimeframeAnalysis:
    side = {
        Recommendation.STRONG_BUY: TradeSide.LONG,
        Recommendation.BUY: TradeSide.LONG,
        Recommendation.STRONG_SELL: TradeSide.SHORT,
        Recommendation.SELL: TradeSide.SHORT,
    }.get(recommendation)
    bias = {
        TradeSide.LONG: TrendDirection.BULLISH,
        TradeSide.SHORT: TrendDirection.BEARISH,
    }.get(side, TrendDirection.RANGING)
    return MultiTimeframeAnalysis(
        pair=to_instrument(pair),
        timestamp=timestamp,
        current_price=1.1,
        trend_30m=TrendBias(bias=bias, ema200=1.09, price_above_ema=side != TradeSide.SHORT,
                            confidence=90.0, score=80.0),
        zones_15m=KeyZones(support=[1.0995], resistance=[1.1050]),
        signal_1m=EntrySignal(
            type=SignalType.BREAK_RETEST if side else SignalType.NONE,
            direction=side,
            confidence=85.0 if side else 0.0,
            price=1.1 if side else None,
        ),
        price_in_zone=True,
        setup_quality_score=score,
        price_structure=PriceStructure(structure_score=70.0),
        recommendation=recommendation,
    )


# ─────────────────────────────────────────────────────────────────────
#  CLOCK
# ─────────────────────────────────────────────────────────────────────

class FakeClock:

    def __init__(self, now: datetime = T0):
        self._now = now
        self._mono = 1000.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float):
        self._now += timedelta(seconds=seconds)
        self._mono += seconds

    def set(self, now: datetime):
        self._now = now


async def no_sleep(_seconds: float):
    await asyncio.sleep(0)


# ─────────────────────────────────────────────────────────────────────
#  BROKER
# ─────────────────────────────────────────────────────────────────────

class FakeBroker:
    """
    In-memory broker. Counts a violation whenever an order arrives for a
    pair that already has an open position or another order in flight.
    """

    def __init__(self, rng=None, yields=0):
        self.rng = rng
        self.yields = yields
        self.is_configured = True
        self.candles: Dict[tuple, List[Candle]] = {}
        self.positions: Dict[str, Position] = {}
        self.closed: List[ClosedTrade] = []
        self.orders: List[Trade] = []
        self.in_flight: Set[str] = set()
        self.violations = 0
        self.fail_candles_for: Set[str] = set()
        self.fail_orders_for: Set[str] = set()
        self.on_order = None
        self.account = AccountState(
            account_id="acc", balance=100_000, margin_available=100_000, margin_rate=0.02
        )
        self.calls: List[str] = []

    async def pause(self):
        steps = self.rng.randint(0, 3) if self.rng else self.yields
        for _ in range(steps):
            await asyncio.sleep(0)

    def configure(self, api_key: str, account_id: str, environment: str = "practice"):
        self.is_configured = bool(api_key and account_id)

    async def get_candles(self, pair: str, granularity: str, count: int = 100) -> List[Candle]:
        self.calls.append(f"candles:{pair}:{granularity}")
        await self.pause()
        if pair in self.fail_candles_for:
            raise BrokerTransientError(f"candles unavailable for {pair}", status_code=503)
        return self.candles.get((pair, granularity)) or flat_candles(30)

    async def get_current_price(self, pair: str) -> PriceQuote:
        await self.pause()
        return PriceQuote(pair=pair, bid=149.99, ask=150.01)

    async def get_account(self) -> AccountState:
        await self.pause()
        return self.account

    async def create_market_order(
        self,
        pair: str,
        units: int,
        stop_loss_pips: Optional[float] = None,
        take_profit_pips: Optional[float] = None,
    ) -> Trade:
        if pair in self.in_flight or pair in self.positions:
            self.violations += 1
        self.in_flight.add(pair)
        try:
            if self.on_order:
                self.on_order(pair)
            await self.pause()
            if pair in self.fail_orders_for:
                raise OrderRejectedError("Order rejected: INSUFFICIENT_MARGIN",
                                         reason="INSUFFICIENT_MARGIN")
            trade = Trade(
                id=str(len(self.orders) + 1), pair=pair, units=units, price=1.1,
                stop_loss_pips=stop_loss_pips, take_profit_pips=take_profit_pips,
            )
            self.orders.append(trade)
            self.positions[pair] = Position(
                id=trade.id, pair=pair,
                side=TradeSide.LONG if units > 0 else TradeSide.SHORT,
                units=abs(units), entry_price=1.1,
            )
            return trade
        finally:
            self.in_flight.discard(pair)

    async def get_open_positions(self) -> List[Position]:
        await self.pause()
        snapshot = list(self.positions.values())
        await self.pause()
        return snapshot

    async def get_closed_trades(self, count: int = 50) -> List[ClosedTrade]:
        await self.pause()
        return list(self.closed)


class CannedAnalyzer(MarketAnalyzer):
    """Real checklist, fixed verdict."""

    def __init__(self, score: float = 80.0, recommendation=Recommendation.STRONG_BUY):
        super().__init__()
        self.score = score
        self.recommendation = recommendation

    def analyze(self, pair, candles_30m, candles_15m, candles_1m, timestamp=None):
        return make_analysis(pair, self.score, self.recommendation, timestamp or T0)


def make_settings(
    pairs=("EUR/USD", "GBP/USD", "USD/JPY"),
    auto_trading: bool = True,
    max_trades: int = 5,
    three_strike: bool = True,
) -> CleanEdgeSettings:
    return CleanEdgeSettings(
        broker=BrokerSettings(api_key="token", account_id="acc"),
        risk=RiskSettings(max_trades_per_session=max_trades, enable_three_strike_rule=three_strike),
        agent=AgentSettings(auto_trading_enabled=auto_trading, preferred_pairs=list(pairs)),
    )


# ─────────────────────────────────────────────────────────────────────
#  FIXTURES
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def settings():
    return make_settings()
