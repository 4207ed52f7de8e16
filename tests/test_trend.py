"""
30m trend analyzer — composite score and classification.
"""

import pytest

from cleanedge.engines.trend import TrendAnalyzer
from cleanedge.models.schemas import TrendDirection

from conftest import flat_candles, trending_candles


def test_too_few_candles_is_neutral():
    bias = TrendAnalyzer().analyze(trending_candles(79))
    assert bias.bias == TrendDirection.RANGING
    assert bias.confidence == 0.0
    assert bias.ema200 is None


def test_no_ema200_is_neutral():
    """Between 80 and 199 candles there is no slow EMA to anchor the bias."""
    bias = TrendAnalyzer().analyze(trending_candles(150))
    assert bias.bias == TrendDirection.RANGING
    assert bias.ema200 is None


def test_clean_uptrend_is_bullish():
    bias = TrendAnalyzer().analyze(trending_candles(250))
    assert bias.bias == TrendDirection.BULLISH
    assert bias.price_above_ema is True
    assert bias.score == pytest.approx(100.0)
    assert bias.confidence >= 70, f"Clean uptrend should be confident, got {bias.confidence}"


def test_clean_downtrend_is_bearish():
    bias = TrendAnalyzer().analyze(trending_candles(250, start_price=1.3, step=-0.0005))
    assert bias.bias == TrendDirection.BEARISH
    assert bias.price_above_ema is False
    assert bias.score == pytest.approx(-100.0)
    assert bias.confidence == pytest.approx(100.0)


def test_flat_market_is_ranging():
    bias = TrendAnalyzer().analyze(flat_candles(250, price=1.5))
    assert bias.bias == TrendDirection.RANGING
    # Only the EMA filter contributes: price is not above its own average
    assert bias.score == pytest.approx(-40.0)
    assert bias.confidence == pytest.approx(70.0)


def test_confidence_stays_in_bounds():
    for candles in (trending_candles(250), trending_candles(220, step=-0.001), flat_candles(200)):
        bias = TrendAnalyzer().analyze(candles)
        assert 0.0 <= bias.confidence <= 100.0
        assert -100.0 <= bias.score <= 100.0
