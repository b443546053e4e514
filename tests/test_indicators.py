"""Tests for strategylab.strategy.indicators — pure indicator math."""

import math
from datetime import datetime, timedelta, timezone

from strategylab.strategy.indicators import (
    adx,
    atr,
    bearish_divergence,
    bollinger_bands,
    bullish_divergence,
    crossed_above,
    crossed_below,
    ema,
    highest,
    lowest,
    macd,
    obv,
    resample_candles,
    rolling_std,
    rsi,
    session_vwap,
    sma,
    supertrend,
    true_range,
)
from strategylab.strategy.models import CandleData


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_candle(time, o, h, l, c, vol=1000):
    return CandleData(time=time, open=o, high=h, low=l, close=c, volume=vol)


def _minute_candles(closes, start=datetime(2025, 1, 6, 3, 45, tzinfo=timezone.utc)):
    out = []
    prev = closes[0]
    for i, c in enumerate(closes):
        t = (start + timedelta(minutes=i)).isoformat()
        out.append(_make_candle(t, prev, max(prev, c) + 0.5, min(prev, c) - 0.5, c, 100 + i))
        prev = c
    return out


def _all_finite(values):
    return all(math.isfinite(v) for v in values)


# ── Moving averages ──────────────────────────────────────────────────────


class TestMovingAverages:
    def test_ema_constant_series_is_constant(self):
        values = [42.5] * 50
        assert ema(values, 9) == values

    def test_ema_seeded_with_first_value(self):
        out = ema([10.0, 20.0], 3)
        # k = 0.5
        assert out == [10.0, 15.0]

    def test_ema_empty(self):
        assert ema([], 9) == []

    def test_sma_shrinking_start_window(self):
        out = sma([2.0, 4.0, 6.0, 8.0], 3)
        assert out == [2.0, 3.0, 4.0, 6.0]

    def test_rolling_std_flat_is_zero(self):
        assert rolling_std([5.0] * 10, 4) == [0.0] * 10


# ── Oscillators ──────────────────────────────────────────────────────────


class TestRSI:
    def test_short_series_neutral(self):
        assert rsi([1.0, 2.0, 3.0], 14) == [50.0, 50.0, 50.0]

    def test_rising_series_reads_100(self):
        out = rsi([float(i) for i in range(1, 40)], 14)
        assert out[-1] == 100.0

    def test_falling_series_converges_to_zero(self):
        out = rsi([float(100 - i) for i in range(40)], 14)
        assert out[-1] < 1.0

    def test_backfill_uses_first_computed_value(self):
        closes = [100 + math.sin(i) for i in range(30)]
        out = rsi(closes, 14)
        assert out[:14] == [out[14]] * 14

    def test_flat_series_reads_100_not_nan(self):
        out = rsi([10.0] * 20, 14)
        assert out == [100.0] * 20


class TestMACD:
    def test_lengths_and_histogram(self):
        closes = [100 + i * 0.5 for i in range(60)]
        m = macd(closes)
        assert len(m.line) == len(m.signal) == len(m.histogram) == 60
        for h, l, s in zip(m.histogram, m.line, m.signal):
            assert h == l - s

    def test_uptrend_line_positive(self):
        m = macd([100 + i for i in range(60)])
        assert m.line[-1] > 0


# ── Volatility / trend strength ──────────────────────────────────────────


class TestVolatility:
    def test_true_range_uses_previous_close(self):
        candles = [
            _make_candle("2025-01-06T03:45:00Z", 10, 11, 9, 10),
            _make_candle("2025-01-06T03:46:00Z", 14, 15, 13.5, 14),
        ]
        # gap up: |15 - 10| beats 15 - 13.5
        assert true_range(candles) == [2, 5]

    def test_atr_constant_range(self):
        candles = [
            _make_candle(f"2025-01-06T04:{i:02d}:00Z", 100, 101, 99, 100)
            for i in range(30)
        ]
        assert all(abs(v - 2.0) < 1e-9 for v in atr(candles, 14))

    def test_adx_short_input_zero(self):
        assert adx([_make_candle("2025-01-06T03:45:00Z", 1, 2, 0.5, 1)]) == [0.0]

    def test_adx_flat_market_zero(self):
        candles = [
            _make_candle(f"2025-01-06T04:{i:02d}:00Z", 100, 100, 100, 100)
            for i in range(30)
        ]
        assert adx(candles) == [0.0] * 30

    def test_adx_strong_trend_high(self):
        candles = _minute_candles([100 + i * 2 for i in range(80)])
        assert adx(candles)[-1] > 40

    def test_bollinger_bandwidth_flat_is_zero(self):
        bands = bollinger_bands([100.0] * 30)
        assert bands.bandwidth_pct == [0.0] * 30
        assert bands.upper == bands.lower == bands.middle

    def test_bollinger_zero_price_stays_finite(self):
        bands = bollinger_bands([0.0, 1.0, 0.0, 1.0] * 5)
        assert _all_finite(bands.bandwidth_pct)


# ── Volume ───────────────────────────────────────────────────────────────


class TestVolume:
    def test_obv_signs_by_close_direction(self):
        candles = [
            _make_candle("2025-01-06T03:45:00Z", 10, 10, 10, 10, 100),
            _make_candle("2025-01-06T03:46:00Z", 10, 11, 10, 11, 200),
            _make_candle("2025-01-06T03:47:00Z", 11, 11, 9, 9, 50),
            _make_candle("2025-01-06T03:48:00Z", 9, 9, 9, 9, 70),
        ]
        assert obv(candles) == [0.0, 200.0, 150.0, 150.0]

    def test_vwap_resets_each_session(self):
        candles = [
            _make_candle("2025-01-06T09:59:00Z", 100, 103, 97, 100, 10),
            _make_candle("2025-01-07T03:45:00Z", 200, 203, 197, 200, 10),
        ]
        assert session_vwap(candles) == [100.0, 200.0]

    def test_vwap_zero_volume_falls_back_to_close(self):
        candles = [_make_candle("2025-01-06T03:45:00Z", 100, 102, 98, 101, 0)]
        assert session_vwap(candles) == [101]


# ── Supertrend ───────────────────────────────────────────────────────────


class TestSupertrend:
    def test_uptrend_then_crash_flips_bearish(self):
        closes = [100 + i for i in range(40)] + [140 - i * 6 for i in range(1, 15)]
        st = supertrend(_minute_candles(closes), 10, 3)
        assert len(st.line) == len(st.trend) == len(closes)
        assert st.trend[39] == 1
        assert st.trend[-1] == -1

    def test_line_below_close_in_uptrend(self):
        closes = [100 + i for i in range(40)]
        candles = _minute_candles(closes)
        st = supertrend(candles, 10, 3)
        assert st.line[-1] < candles[-1].close


# ── Resampling ───────────────────────────────────────────────────────────


class TestResample:
    def test_volume_preserved(self):
        candles = _minute_candles([100 + math.sin(i / 3) for i in range(47)])
        buckets = resample_candles(candles, 5)
        assert sum(c.volume for c in buckets) == sum(c.volume for c in candles)

    def test_bucket_ohlc(self):
        candles = [
            _make_candle("2025-01-06T03:45:00Z", 10, 12, 9, 11, 1),
            _make_candle("2025-01-06T03:46:00Z", 11, 15, 10, 14, 2),
            _make_candle("2025-01-06T03:47:00Z", 14, 14, 8, 9, 3),
        ]
        (bucket,) = resample_candles(candles, 5)
        assert bucket.time == "2025-01-06T03:45:00.000Z"
        assert (bucket.open, bucket.high, bucket.low, bucket.close, bucket.volume) == (
            10, 15, 8, 9, 6,
        )

    def test_one_minute_is_identity(self):
        candles = _minute_candles([1.0, 2.0, 3.0])
        assert resample_candles(candles, 1) is candles

    def test_unparseable_time_skipped(self):
        candles = [
            _make_candle("garbage", 1, 1, 1, 1),
            _make_candle("2025-01-06T03:45:00Z", 2, 2, 2, 2),
        ]
        out = resample_candles(candles, 5)
        assert len(out) == 1
        assert out[0].open == 2


# ── Crossovers, extremes, divergence ─────────────────────────────────────


class TestCrossAndExtremes:
    def test_crossed_above_and_below(self):
        a = [1.0, 3.0, 1.0]
        b = [2.0, 2.0, 2.0]
        assert crossed_above(a, b, 1)
        assert not crossed_above(a, b, 2)
        assert crossed_below(a, b, 2)
        assert not crossed_below(a, b, 0)

    def test_highest_lowest_window(self):
        values = [5.0, 1.0, 7.0, 3.0, 2.0]
        assert highest(values, 4, 3) == 7.0
        assert lowest(values, 4, 2) == 2.0
        # shrinking window at series start
        assert highest(values, 1, 10) == 5.0

    def test_highest_empty_window(self):
        assert highest([1.0, 2.0], -1, 5) == -math.inf
        assert lowest([1.0, 2.0], -1, 5) == math.inf


class TestDivergence:
    def test_bullish_divergence(self):
        prices = [10, 8, 10, 11, 7, 9, 10, 10]
        osc = [50, 30, 50, 55, 40, 50, 55, 55]
        assert bullish_divergence(prices, osc, 7, 10)

    def test_no_bullish_divergence_when_oscillator_confirms(self):
        prices = [10, 8, 10, 11, 7, 9, 10, 10]
        osc = [50, 30, 50, 55, 20, 50, 55, 55]
        assert not bullish_divergence(prices, osc, 7, 10)

    def test_bearish_divergence(self):
        prices = [10, 12, 10, 9, 13, 11, 10, 10]
        osc = [50, 70, 50, 45, 60, 50, 45, 45]
        assert bearish_divergence(prices, osc, 7, 10)

    def test_needs_two_pivots(self):
        assert not bullish_divergence([10, 8, 10, 10], [50, 30, 50, 50], 3, 10)
