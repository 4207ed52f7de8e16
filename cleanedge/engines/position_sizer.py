"""
╔══════════════════════════════════════════════════════════════════════╗
║           CLEANEDGE — POSITION SIZER                                 ║
║   Risk-based units with pip-value conversion and margin clamping     ║
╚══════════════════════════════════════════════════════════════════════╝

  risk_amount = balance × risk% / 100
  units       = floor(risk_amount / (stop_pips × pip_value_per_lot) × 100 000)

Pip value per standard lot (in USD):
  - quote currency USD (EUR/USD, GBP/USD)     → $10
  - any other quote, USD→quote rate supplied  → pip_size × 100 000 / rate
  - JPY quote, no rate                        → assumes USD/JPY = 150
  - other crosses, no rate                    → $10

The two no-rate branches are approximations. They are flagged on the
result (used_fallback_rate) and logged, never applied silently.

Pure aside from logging: no I/O, no shared state.
"""

import logging
import math
from typing import Optional, Sequence, Tuple

from cleanedge.config import CONFIG, RiskConfig
from cleanedge.engines.indicators import (
    atr,
    is_jpy_pair,
    pip_size,
    price_to_pips,
    quote_currency,
    to_instrument,
)
from cleanedge.models.schemas import Candle, PositionSize, StopTarget

logger = logging.getLogger("cleanedge.position_sizer")

# Majors where USD is the base currency; the rest are quoted against USD
_USD_BASED = {"JPY", "CHF", "CAD", "SEK", "NOK", "SGD", "HKD", "MXN", "ZAR"}


def usd_conversion_instrument(pair: str) -> Optional[Tuple[str, bool]]:
    """
    Instrument whose price converts the pair's quote currency into USD,
    and whether that price must be inverted to get USD→quote.

    USD_JPY → ("USD_JPY", False), EUR_GBP → ("GBP_USD", True),
    EUR_USD → None (already USD).
    """
    quote = quote_currency(pair)
    if quote == "USD":
        return None
    if quote in _USD_BASED:
        return f"USD_{quote}", False
    return f"{quote}_USD", True


class PositionSizer:

    def __init__(self, config: Optional[RiskConfig] = None):
        self.config = config or CONFIG.risk

    # ─────────────────────────────────────────────────────────────────
    #  PIP VALUE
    # ─────────────────────────────────────────────────────────────────

    def pip_value_per_lot(
        self, pair: str, usd_quote_price: Optional[float] = None
    ) -> Tuple[float, bool]:
        """Returns (USD per pip per standard lot, used_fallback_rate)."""
        cfg = self.config
        if quote_currency(pair) == "USD":
            return cfg.usd_quoted_pip_value, False

        lot_pip = pip_size(pair) * cfg.units_per_lot
        if usd_quote_price and usd_quote_price > 0:
            return lot_pip / usd_quote_price, False

        if is_jpy_pair(pair):
            logger.warning(
                f"USD/JPY rate unavailable for {pair} — assuming "
                f"{cfg.fallback_usd_jpy_rate:.2f}; position size is approximate"
            )
            return lot_pip / cfg.fallback_usd_jpy_rate, True

        logger.warning(f"No USD conversion rate for cross {pair} — using ${cfg.usd_quoted_pip_value}/pip")
        return cfg.usd_quoted_pip_value, True

    # ─────────────────────────────────────────────────────────────────
    #  UNITS
    # ─────────────────────────────────────────────────────────────────

    def size(
        self,
        balance: float,
        risk_percent: float,
        stop_loss_pips: float,
        pair: str,
        usd_quote_price: Optional[float] = None,
        margin_available: Optional[float] = None,
        margin_rate: Optional[float] = None,
    ) -> PositionSize:
        cfg = self.config
        warnings = []

        if stop_loss_pips < cfg.min_stop_loss_pips:
            msg = f"Stop loss {stop_loss_pips} pips below minimum — using {cfg.min_stop_loss_pips}"
            logger.warning(msg)
            warnings.append(msg)
            stop_loss_pips = cfg.min_stop_loss_pips

        if risk_percent > cfg.max_risk_percent:
            msg = f"Risk {risk_percent}% above maximum — capping at {cfg.max_risk_percent}%"
            logger.warning(msg)
            warnings.append(msg)
            risk_percent = cfg.max_risk_percent

        pip_value, used_fallback = self.pip_value_per_lot(pair, usd_quote_price)
        if used_fallback:
            warnings.append(f"Fallback conversion rate used for {to_instrument(pair)}")

        if balance <= 0 or risk_percent <= 0:
            logger.error(f"Balance ${balance:.2f} / risk {risk_percent}% — cannot size a position")
            return PositionSize(
                pair=pair,
                risk_percent=risk_percent,
                stop_loss_pips=stop_loss_pips,
                pip_value_per_lot=pip_value,
                used_fallback_rate=used_fallback,
                warnings=warnings,
            )

        risk_amount = balance * (risk_percent / 100)
        # Multiply before dividing; lots × 100000 loses the last unit on 1000/150
        units = math.floor(risk_amount * cfg.units_per_lot / (stop_loss_pips * pip_value))

        rate = margin_rate or cfg.default_margin_rate
        margin_required = units * rate
        margin_clamped = False

        if margin_available and margin_available > 0:
            envelope = margin_available * cfg.margin_safety_factor
            if margin_required > envelope:
                max_units = math.floor(envelope / rate)
                msg = (
                    f"Insufficient margin: need ${margin_required:.2f}, "
                    f"90% of available is ${envelope:.2f} — "
                    f"reducing {units} → {max_units} units"
                )
                logger.warning(msg)
                warnings.append(msg)
                units = max_units
                margin_required = units * rate
                margin_clamped = True

        logger.info(
            f"══╡ POSITION SIZE — {pair} {units} units ╞══\n"
            f"    Balance: ${balance:,.2f}\n"
            f"    Risk: {risk_percent}% = ${risk_amount:.2f}\n"
            f"    Stop loss: {stop_loss_pips} pips @ ${pip_value:.2f}/pip/lot"
            f"{' (fallback rate)' if used_fallback else ''}\n"
            f"    Margin: ${margin_required:.2f} @ {rate} ({round(1 / rate)}:1)"
            f"{' — CLAMPED' if margin_clamped else ''}"
        )

        return PositionSize(
            pair=pair,
            units=units,
            lots=units / cfg.units_per_lot,
            risk_amount=risk_amount,
            risk_percent=risk_percent,
            stop_loss_pips=stop_loss_pips,
            pip_value_per_lot=pip_value,
            margin_required=margin_required,
            margin_clamped=margin_clamped,
            used_fallback_rate=used_fallback,
            warnings=warnings,
        )

    # ─────────────────────────────────────────────────────────────────
    #  STOP LOSS / TAKE PROFIT
    # ─────────────────────────────────────────────────────────────────

    def calculate_sl_tp(
        self, pair: str, candles_1m: Sequence[Candle], risk_reward: float
    ) -> StopTarget:
        """
        ATR-adjusted stop: max(base, ATR14 × 1.3) capped at the pair's
        maximum. JPY pairs get wider bounds (10-15 vs 7-12 pips).
        """
        cfg = self.config
        jpy = is_jpy_pair(pair)
        base = cfg.base_stop_pips_jpy if jpy else cfg.base_stop_pips
        cap = cfg.max_stop_pips_jpy if jpy else cfg.max_stop_pips

        atr_pips = price_to_pips(atr(candles_1m, cfg.sl_atr_period), pair)
        stop = min(max(base, atr_pips * cfg.sl_atr_multiplier), cap)

        return StopTarget(
            stop_loss_pips=round(stop, 1),
            take_profit_pips=round(stop * risk_reward, 1),
            risk_reward=risk_reward,
        )


def calculate_position_size(
    balance: float,
    risk_percent: float,
    stop_loss_pips: float,
    pair: str,
    usd_quote_price: Optional[float] = None,
    margin_available: Optional[float] = None,
    margin_rate: Optional[float] = None,
) -> int:
    """Units only. See PositionSizer.size for the full breakdown."""
    return PositionSizer().size(
        balance, risk_percent, stop_loss_pips, pair,
        usd_quote_price, margin_available, margin_rate,
    ).units


def select_risk_reward(score: float, risk_settings, config=None) -> float:
    """A+ setups (score ≥ 70) take the larger reward ratio."""
    gate = (config or CONFIG).gate
    if score >= gate.a_plus_score:
        return risk_settings.max_risk_reward
    return risk_settings.min_risk_reward
