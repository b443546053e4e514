"""Technical indicators — EMA, RSI, MACD, ATR, ADX, Bollinger, OBV, Supertrend, VWAP.

Pure functions, no I/O.  Every series function returns a list the same
length as its input.  Warm-up bars carry seeded values instead of NaN so
downstream comparisons never see a non-finite number.
"""

import math
from dataclasses import dataclass
from typing import Callable

from strategylab.strategy.models import (
    CandleData,
    from_epoch_ms,
    parse_time,
    session_key,
    to_epoch_ms,
)


def _safe(value: float, fallback: float) -> float:
    if value is None or not math.isfinite(value):
        return fallback
    return value


# ── Resampling ───────────────────────────────────────────────────────────


def resample_candles(candles: list[CandleData], interval_min: int) -> list[CandleData]:
    """Group 1-minute candles into fixed *interval_min* buckets.

    Bucket start = ``floor(epoch_ms / interval_ms) * interval_ms``.  Each
    bucket yields open=first, close=last, high=max, low=min, volume=sum,
    ordered by bucket start.  Candles with an unparseable timestamp are
    skipped.  ``interval_min <= 1`` returns the input unchanged.
    """
    if interval_min <= 1 or not candles:
        return candles

    interval_ms = interval_min * 60 * 1000
    buckets: dict[int, list[CandleData]] = {}
    for candle in candles:
        if parse_time(candle.time) is None:
            continue
        start = (to_epoch_ms(candle.time) // interval_ms) * interval_ms
        buckets.setdefault(start, []).append(candle)

    out: list[CandleData] = []
    for start in sorted(buckets):
        chunk = buckets[start]
        out.append(
            CandleData(
                time=from_epoch_ms(start),
                open=chunk[0].open,
                high=max(c.high for c in chunk),
                low=min(c.low for c in chunk),
                close=chunk[-1].close,
                volume=sum(_safe(c.volume, 0.0) for c in chunk),
            )
        )
    return out


# ── Moving averages ──────────────────────────────────────────────────────


def ema(values: list[float], period: int) -> list[float]:
    """Exponential Moving Average seeded with the first value.

    ``EMA_i = value_i × k + EMA_{i-1} × (1 − k)`` with ``k = 2 / (period + 1)``.
    """
    if not values:
        return []
    k = 2.0 / (period + 1)
    out = [values[0]]
    for i in range(1, len(values)):
        out.append(values[i] * k + out[i - 1] * (1 - k))
    return out


def sma(values: list[float], period: int) -> list[float]:
    """Rolling mean; the window shrinks at the start of the series."""
    out: list[float] = []
    rolling = 0.0
    for i, value in enumerate(values):
        rolling += value
        if i >= period:
            rolling -= values[i - period]
        out.append(rolling / min(i + 1, period))
    return out


def rolling_std(values: list[float], period: int) -> list[float]:
    """Rolling population standard deviation with a shrinking start window."""
    out: list[float] = []
    for i in range(len(values)):
        window = values[max(0, i - period + 1): i + 1]
        mean = sum(window) / len(window)
        variance = sum((v - mean) ** 2 for v in window) / len(window)
        out.append(math.sqrt(variance))
    return out


# ── RSI ──────────────────────────────────────────────────────────────────


def _rsi_from_avgs(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    return 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)


def rsi(closes: list[float], period: int = 14) -> list[float]:
    """Wilder's Relative Strength Index.

    Fewer than ``period + 1`` closes yields a neutral 50 everywhere.  The
    first *period* entries are backfilled with the first computed value.
    A window without losses reads 100.
    """
    if not closes:
        return []
    if len(closes) < period + 1:
        return [50.0] * len(closes)

    out = [50.0] * len(closes)
    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        diff = closes[i] - closes[i - 1]
        if diff >= 0:
            gains += diff
        else:
            losses -= diff

    avg_gain = gains / period
    avg_loss = losses / period
    out[period] = _rsi_from_avgs(avg_gain, avg_loss)

    for i in range(period + 1, len(closes)):
        diff = closes[i] - closes[i - 1]
        gain = diff if diff > 0 else 0.0
        loss = -diff if diff < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        out[i] = _rsi_from_avgs(avg_gain, avg_loss)

    for i in range(period):
        out[i] = out[period]
    return out


# ── MACD ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MACDSeries:
    line: list[float]
    signal: list[float]
    histogram: list[float]


def macd(
    closes: list[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MACDSeries:
    """MACD line (fast EMA − slow EMA), its signal EMA and the histogram."""
    fast = ema(closes, fast_period)
    slow = ema(closes, slow_period)
    line = [f - s for f, s in zip(fast, slow)]
    signal = ema(line, signal_period)
    histogram = [v - s for v, s in zip(line, signal)]
    return MACDSeries(line=line, signal=signal, histogram=histogram)


# ── Volatility / trend strength ──────────────────────────────────────────


def true_range(candles: list[CandleData]) -> list[float]:
    """``max(high − low, |high − prev_close|, |low − prev_close|)`` per bar.

    The first bar has no previous close and uses ``high − low``.
    """
    if not candles:
        return []
    tr = [candles[0].high - candles[0].low]
    for i in range(1, len(candles)):
        high = candles[i].high
        low = candles[i].low
        prev_close = candles[i - 1].close
        tr.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))
    return tr


def atr(candles: list[CandleData], period: int = 14) -> list[float]:
    """Average True Range as the EMA of the true-range series."""
    return ema(true_range(candles), period)


def adx(candles: list[CandleData], period: int = 14) -> list[float]:
    """Average Directional Index.

    +DM/−DM are EMA-smoothed and normalised by ATR into +DI/−DI, combined
    into DX and EMA-smoothed again.  A zero ATR falls back to a divisor of
    1 and a zero DI sum yields DX = 0.
    """
    if len(candles) < 2:
        return [0.0] * len(candles)

    plus_dm = [0.0]
    minus_dm = [0.0]
    for i in range(1, len(candles)):
        up_move = candles[i].high - candles[i - 1].high
        down_move = candles[i - 1].low - candles[i].low
        plus_dm.append(up_move if up_move > down_move and up_move > 0 else 0.0)
        minus_dm.append(down_move if down_move > up_move and down_move > 0 else 0.0)

    atr_series = atr(candles, period)
    plus_di = [
        100.0 * v / (atr_series[i] or 1.0) for i, v in enumerate(ema(plus_dm, period))
    ]
    minus_di = [
        100.0 * v / (atr_series[i] or 1.0) for i, v in enumerate(ema(minus_dm, period))
    ]

    dx: list[float] = []
    for p, m in zip(plus_di, minus_di):
        denom = p + m
        dx.append(0.0 if denom <= 0 else 100.0 * abs(p - m) / denom)

    return ema(dx, period)


# ── Bollinger Bands ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class BollingerBands:
    middle: list[float]
    upper: list[float]
    lower: list[float]
    bandwidth_pct: list[float]


def bollinger_bands(
    closes: list[float],
    period: int = 20,
    mult: float = 2.0,
) -> BollingerBands:
    """SMA middle band ± *mult* × rolling σ.

    Bandwidth = ``(upper − lower) / middle``; the middle band is floored at
    ``1e-5`` so a zero price cannot blow up the ratio.
    """
    middle = sma(closes, period)
    std = rolling_std(closes, period)
    upper = [m + mult * s for m, s in zip(middle, std)]
    lower = [m - mult * s for m, s in zip(middle, std)]
    bandwidth = [(u - l) / max(0.00001, m) for u, l, m in zip(upper, lower, middle)]
    return BollingerBands(middle=middle, upper=upper, lower=lower, bandwidth_pct=bandwidth)


# ── Volume ───────────────────────────────────────────────────────────────


def obv(candles: list[CandleData]) -> list[float]:
    """On-Balance Volume — cumulative volume signed by close-to-close direction."""
    if not candles:
        return []
    out = [0.0]
    for i in range(1, len(candles)):
        volume = _safe(candles[i].volume, 0.0)
        if candles[i].close > candles[i - 1].close:
            out.append(out[i - 1] + volume)
        elif candles[i].close < candles[i - 1].close:
            out.append(out[i - 1] - volume)
        else:
            out.append(out[i - 1])
    return out


def session_vwap(candles: list[CandleData]) -> list[float]:
    """Session VWAP of the typical price, reset on every calendar-date change.

    Falls back to the close while the session has seen no volume.
    """
    out: list[float] = []
    cumulative_tpv = 0.0
    cumulative_volume = 0.0
    current_session = ""

    for candle in candles:
        session = session_key(candle.time)
        if session != current_session:
            current_session = session
            cumulative_tpv = 0.0
            cumulative_volume = 0.0
        volume = _safe(candle.volume, 0.0)
        typical = (candle.high + candle.low + candle.close) / 3
        cumulative_tpv += typical * volume
        cumulative_volume += volume
        out.append(
            cumulative_tpv / cumulative_volume if cumulative_volume > 0 else candle.close
        )
    return out


# ── Supertrend ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SupertrendSeries:
    line: list[float]
    trend: list[int]  # 1 = bullish, -1 = bearish


def supertrend(
    candles: list[CandleData],
    period: int = 10,
    factor: float = 3.0,
) -> SupertrendSeries:
    """ATR-banded stop-and-reverse line.

    The final bands only tighten unless the previous close broke through
    them.  Trend flips bullish when the close exceeds the final upper band
    and bearish when it drops below the final lower band.  The line is the
    lower band in an uptrend and the upper band in a downtrend.
    """
    if not candles:
        return SupertrendSeries(line=[], trend=[])

    atr_series = atr(candles, period)
    mids = [(c.high + c.low) / 2 for c in candles]
    upper_basic = [m + factor * _safe(a, 0.0) for m, a in zip(mids, atr_series)]
    lower_basic = [m - factor * _safe(a, 0.0) for m, a in zip(mids, atr_series)]

    final_upper = [upper_basic[0]]
    final_lower = [lower_basic[0]]
    trend = [1]
    line = [lower_basic[0]]

    for i in range(1, len(candles)):
        prev_close = candles[i - 1].close
        if upper_basic[i] < final_upper[i - 1] or prev_close > final_upper[i - 1]:
            final_upper.append(upper_basic[i])
        else:
            final_upper.append(final_upper[i - 1])
        if lower_basic[i] > final_lower[i - 1] or prev_close < final_lower[i - 1]:
            final_lower.append(lower_basic[i])
        else:
            final_lower.append(final_lower[i - 1])

        close = candles[i].close
        if trend[i - 1] == -1 and close > final_upper[i]:
            trend.append(1)
        elif trend[i - 1] == 1 and close < final_lower[i]:
            trend.append(-1)
        else:
            trend.append(trend[i - 1])

        line.append(final_lower[i] if trend[i] == 1 else final_upper[i])

    return SupertrendSeries(line=line, trend=trend)


# ── Crossovers and extremes ──────────────────────────────────────────────


def crossed_above(a: list[float], b: list[float], i: int) -> bool:
    """True when *a* moved from ≤ *b* at ``i − 1`` to > *b* at *i*."""
    if i < 1 or i >= len(a) or i >= len(b):
        return False
    return a[i - 1] <= b[i - 1] and a[i] > b[i]


def crossed_below(a: list[float], b: list[float], i: int) -> bool:
    """True when *a* moved from ≥ *b* at ``i − 1`` to < *b* at *i*."""
    if i < 1 or i >= len(a) or i >= len(b):
        return False
    return a[i - 1] >= b[i - 1] and a[i] < b[i]


def highest(values: list[float], index: int, length: int) -> float:
    """Maximum of the *length* values ending at *index* (inclusive)."""
    start = max(0, index - length + 1)
    window = values[start: index + 1]
    return max(window) if window else -math.inf


def lowest(values: list[float], index: int, length: int) -> float:
    """Minimum of the *length* values ending at *index* (inclusive)."""
    start = max(0, index - length + 1)
    window = values[start: index + 1]
    return min(window) if window else math.inf


# ── Divergence ───────────────────────────────────────────────────────────


def _is_pivot_low(values: list[float], i: int) -> bool:
    if i < 1 or i >= len(values) - 1:
        return False
    return values[i] <= values[i - 1] and values[i] <= values[i + 1]


def _is_pivot_high(values: list[float], i: int) -> bool:
    if i < 1 or i >= len(values) - 1:
        return False
    return values[i] >= values[i - 1] and values[i] >= values[i + 1]


def _recent_pivots(
    values: list[float],
    start: int,
    end: int,
    is_pivot: Callable[[list[float], int], bool],
) -> list[int]:
    return [
        i
        for i in range(max(1, start), min(len(values) - 2, end) + 1)
        if is_pivot(values, i)
    ]


def bullish_divergence(
    prices: list[float],
    oscillator: list[float],
    index: int,
    lookback: int = 20,
) -> bool:
    """Price prints a lower pivot low while the oscillator prints a higher one.

    Only the two most recent pivot lows before *index* within *lookback*
    bars are compared.
    """
    pivots = _recent_pivots(prices, max(1, index - lookback), index - 1, _is_pivot_low)
    if len(pivots) < 2:
        return False
    a, b = pivots[-2], pivots[-1]
    return prices[b] < prices[a] and oscillator[b] > oscillator[a]


def bearish_divergence(
    prices: list[float],
    oscillator: list[float],
    index: int,
    lookback: int = 20,
) -> bool:
    """Price prints a higher pivot high while the oscillator prints a lower one."""
    pivots = _recent_pivots(prices, max(1, index - lookback), index - 1, _is_pivot_high)
    if len(pivots) < 2:
        return False
    a, b = pivots[-2], pivots[-1]
    return prices[b] > prices[a] and oscillator[b] < oscillator[a]
