"""
╔══════════════════════════════════════════════════════════════════════╗
║           CLEANEDGE — OANDA v20 REST BRIDGE                          ║
║   Candles, pricing, account, market orders, positions, trades        ║
╚══════════════════════════════════════════════════════════════════════╝

Thin async client over the OANDA v20 REST API.

Every request carries a 10 s deadline. Network errors, timeouts and 5xx
responses are retried with min(1s × 2^attempt, 5s) backoff, up to three
retries, then surface as BrokerTransientError. 4xx responses are never
retried: they raise BrokerTerminalError on the first attempt.

Instruments go over the wire as EUR_USD; callers may pass EUR/USD.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from cleanedge.bridges.errors import (
    BrokerConfigError,
    BrokerTerminalError,
    BrokerTransientError,
    OrderRejectedError,
)
from cleanedge.config import CONFIG, BrokerConfig
from cleanedge.engines.indicators import is_jpy_pair, pips_to_price, to_instrument
from cleanedge.models.schemas import (
    AccountState,
    Candle,
    ClosedTrade,
    Position,
    PriceQuote,
    Trade,
    TradeSide,
)

logger = logging.getLogger("cleanedge.oanda_bridge")


def parse_oanda_time(value: Optional[str]) -> Optional[datetime]:
    """RFC3339 with nanoseconds (2024-01-02T03:04:05.123456789Z) → aware datetime."""
    if not value:
        return None
    text = value.rstrip("Z")
    if "." in text:
        head, frac = text.split(".", 1)
        text = f"{head}.{frac[:6]}"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _f(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class OandaBridge:
    """Async REST client for one OANDA account."""

    def __init__(
        self,
        config: Optional[BrokerConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.config = config or CONFIG.broker
        self._api_key: str = ""
        self._account_id: str = ""
        self._base_url: str = self.config.practice_url
        self._client: Optional[httpx.AsyncClient] = None
        self._transport = transport
        self._sleep = sleep or asyncio.sleep

    # ─────────────────────────────────────────────────────────────────
    #  CONFIGURATION
    # ─────────────────────────────────────────────────────────────────

    def configure(self, api_key: str, account_id: str, environment: str = "practice"):
        """Set credentials. Takes effect on the next request."""
        self._api_key = api_key
        self._account_id = account_id
        self._base_url = self.config.live_url if environment == "live" else self.config.practice_url
        logger.info(f"OANDA configured — {environment} account {account_id or '(none)'}")

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key and self._account_id)

    @property
    def account_id(self) -> str:
        return self._account_id

    # ─────────────────────────────────────────────────────────────────
    #  CONNECTION LIFECYCLE
    # ─────────────────────────────────────────────────────────────────

    async def connect(self) -> bool:
        """Open the HTTP client and verify credentials against the account endpoint."""
        if not self.is_configured:
            logger.warning("OANDA bridge: API key or account id not configured")
            return False

        self._ensure_client()
        account = await self.get_account()
        logger.info(
            f"═══ OANDA BRIDGE CONNECTED ═══\n"
            f"    Account: {account.account_id}\n"
            f"    Balance: {account.balance:.2f} {account.currency}\n"
            f"    Margin available: {account.margin_available:.2f}"
        )
        return True

    async def disconnect(self):
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("OANDA bridge disconnected")

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.request_timeout,
                transport=self._transport,
            )
        return self._client

    # ─────────────────────────────────────────────────────────────────
    #  HTTP HELPERS
    # ─────────────────────────────────────────────────────────────────

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if not self.is_configured:
            raise BrokerConfigError("OANDA credentials not configured", endpoint=path)

        client = self._ensure_client()
        url = f"{self._base_url}{path}"
        retries = self.config.max_retries

        for attempt in range(retries + 1):
            try:
                resp = await client.request(
                    method, url,
                    params=params, json=json,
                    headers=self._headers(),
                    timeout=self.config.request_timeout,
                )
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt < retries:
                    await self._backoff(path, attempt, f"network error: {e}")
                    continue
                raise BrokerTransientError(
                    f"OANDA {method} {path} failed after {retries} retries: {e}",
                    endpoint=path,
                ) from e

            if resp.is_success:
                return resp.json()

            message = self._error_message(resp)
            if 400 <= resp.status_code < 500:
                logger.error(f"OANDA {method} {path} — HTTP {resp.status_code}: {message}")
                raise BrokerTerminalError(
                    f"OANDA API error ({path}): {message}",
                    status_code=resp.status_code, endpoint=path,
                )

            if attempt < retries:
                await self._backoff(path, attempt, f"HTTP {resp.status_code}")
                continue
            raise BrokerTransientError(
                f"OANDA API error ({path}): {message}",
                status_code=resp.status_code, endpoint=path,
            )

        # Unreachable: the final attempt either returns or raises
        raise BrokerTransientError(f"OANDA {method} {path} exhausted retries", endpoint=path)

    async def _backoff(self, path: str, attempt: int, why: str):
        cfg = self.config
        delay = min(cfg.backoff_base_seconds * (2 ** attempt), cfg.backoff_cap_seconds)
        logger.warning(
            f"Retrying {path} after {delay:.1f}s ({why}, attempt {attempt + 1}/{cfg.max_retries})"
        )
        await self._sleep(delay)

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("errorMessage"):
            return str(body["errorMessage"])
        return f"HTTP {resp.status_code}: {resp.reason_phrase}"

    # ─────────────────────────────────────────────────────────────────
    #  MARKET DATA
    # ─────────────────────────────────────────────────────────────────

    async def get_candles(self, pair: str, granularity: str, count: int = 100) -> List[Candle]:
        instrument = to_instrument(pair)
        data = await self._request(
            "GET", f"/v3/instruments/{instrument}/candles",
            params={"granularity": granularity, "count": count, "price": "M"},
        )
        candles = []
        for raw in data.get("candles", []):
            mid = raw.get("mid") or {}
            candles.append(Candle(
                time=parse_oanda_time(raw.get("time")),
                open=_f(mid.get("o")),
                high=_f(mid.get("h")),
                low=_f(mid.get("l")),
                close=_f(mid.get("c")),
                volume=_f(raw.get("volume")),
            ))
        return candles

    async def get_current_price(self, pair: str) -> PriceQuote:
        instrument = to_instrument(pair)
        data = await self._request(
            "GET", f"/v3/accounts/{self._account_id}/pricing",
            params={"instruments": instrument},
        )
        prices = data.get("prices") or []
        if not prices or not prices[0].get("bids") or not prices[0].get("asks"):
            raise BrokerTerminalError(f"No price returned for {instrument}", endpoint="pricing")
        price = prices[0]
        return PriceQuote(
            pair=instrument,
            bid=_f(price["bids"][0].get("price")),
            ask=_f(price["asks"][0].get("price")),
            time=parse_oanda_time(price.get("time")),
        )

    # ─────────────────────────────────────────────────────────────────
    #  ACCOUNT
    # ─────────────────────────────────────────────────────────────────

    async def get_account(self) -> AccountState:
        data = await self._request("GET", f"/v3/accounts/{self._account_id}")
        account = data.get("account", {})
        return AccountState(
            account_id=str(account.get("id", self._account_id)),
            currency=account.get("currency", "USD"),
            balance=_f(account.get("balance")),
            unrealized_pl=_f(account.get("unrealizedPL")),
            margin_available=_f(account.get("marginAvailable")),
            margin_used=_f(account.get("marginUsed")),
            margin_rate=_f(account.get("marginRate"), CONFIG.risk.default_margin_rate),
        )

    # ─────────────────────────────────────────────────────────────────
    #  ORDERS
    # ─────────────────────────────────────────────────────────────────

    async def create_market_order(
        self,
        pair: str,
        units: int,
        stop_loss_pips: Optional[float] = None,
        take_profit_pips: Optional[float] = None,
    ) -> Trade:
        """Market order. Positive units buy, negative units sell."""
        instrument = to_instrument(pair)
        decimals = 3 if is_jpy_pair(instrument) else 5

        order: Dict[str, Any] = {
            "type": "MARKET",
            "instrument": instrument,
            "units": str(int(units)),
            "timeInForce": "FOK",
            "positionFill": "DEFAULT",
        }
        if stop_loss_pips is not None:
            order["stopLossOnFill"] = {
                "distance": f"{pips_to_price(stop_loss_pips, instrument):.{decimals}f}"
            }
        if take_profit_pips is not None:
            order["takeProfitOnFill"] = {
                "distance": f"{pips_to_price(take_profit_pips, instrument):.{decimals}f}"
            }

        path = f"/v3/accounts/{self._account_id}/orders"
        data = await self._request("POST", path, json={"order": order})

        if data.get("orderCancelTransaction"):
            reason = data["orderCancelTransaction"].get("reason") or "Unknown reason"
            logger.warning(f"Order cancelled for {instrument}: {reason}")
            raise OrderRejectedError(f"Order cancelled: {reason}", reason=reason, endpoint=path)

        if data.get("orderRejectTransaction"):
            reason = data["orderRejectTransaction"].get("rejectReason") or "Unknown reason"
            logger.warning(f"Order rejected for {instrument}: {reason}")
            raise OrderRejectedError(f"Order rejected: {reason}", reason=reason, endpoint=path)

        fill = data.get("orderFillTransaction")
        if not fill:
            raise OrderRejectedError("Order not filled: no fill transaction in response", endpoint=path)

        return Trade(
            id=str(fill.get("id")),
            pair=instrument,
            units=_f(fill.get("units"), float(units)),
            price=_f(fill.get("price")),
            time=parse_oanda_time(fill.get("time")),
            stop_loss_pips=stop_loss_pips,
            take_profit_pips=take_profit_pips,
        )

    # ─────────────────────────────────────────────────────────────────
    #  POSITIONS / TRADES
    # ─────────────────────────────────────────────────────────────────

    async def get_open_positions(self) -> List[Position]:
        data = await self._request("GET", f"/v3/accounts/{self._account_id}/openPositions")
        trades = await self._request("GET", f"/v3/accounts/{self._account_id}/openTrades")
        details = {str(t.get("id")): t for t in trades.get("trades", [])}

        positions = []
        for pos in data.get("positions", []):
            instrument = pos.get("instrument", "")
            for side in (TradeSide.LONG, TradeSide.SHORT):
                leg = pos.get(side.value) or {}
                units = _f(leg.get("units"))
                if units == 0:
                    continue
                trade_ids = leg.get("tradeIDs") or [""]
                detail = details.get(str(trade_ids[0]), {})
                sl = (detail.get("stopLossOrder") or {}).get("price")
                tp = (detail.get("takeProfitOrder") or {}).get("price")
                positions.append(Position(
                    id=str(trade_ids[0]),
                    pair=instrument,
                    side=side,
                    units=abs(units),
                    entry_price=_f(leg.get("averagePrice")),
                    unrealized_pl=_f(leg.get("unrealizedPL")),
                    stop_loss=_f(sl) if sl is not None else None,
                    take_profit=_f(tp) if tp is not None else None,
                ))
        return positions

    async def get_closed_trades(self, count: int = 50) -> List[ClosedTrade]:
        data = await self._request(
            "GET", f"/v3/accounts/{self._account_id}/trades",
            params={"state": "CLOSED", "count": count},
        )
        return [
            ClosedTrade(
                id=str(t.get("id")),
                pair=str(t.get("instrument", "")),
                realized_pl=_f(t.get("realizedPL")),
                close_time=parse_oanda_time(t.get("closeTime")),
            )
            for t in data.get("trades", [])
        ]
