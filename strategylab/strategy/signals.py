"""Entry signal detection — pure functions, no I/O.

Each strategy is a checklist of boolean conditions evaluated at one bar of a
``PreparedSeries``.  A direction fires when its mandatory checks hold and
enough of the remaining ones agree:

  - ``strict``   — every check must hold; thresholds come from the rule.
  - ``balanced`` — mandatory checks plus a per-strategy minimum count, with
    relaxed thresholds.

Confidence grows with the fraction of the checklist that is true.
"""

import math
from dataclasses import dataclass
from typing import Callable, Optional, Union

from strategylab.risk.sl_tp import initial_stop
from strategylab.strategy.indicators import (
    bearish_divergence,
    bullish_divergence,
    crossed_above,
    crossed_below,
    highest,
    lowest,
)
from strategylab.strategy.models import Direction, ExecutionProfile, TrailingMode
from strategylab.strategy.rules import StrategyRuleSpec
from strategylab.strategy.series import PreparedSeries

MIN_CONFIDENCE = 40
MAX_CONFIDENCE = 95
MIN_ATR = 0.01


@dataclass(frozen=True)
class SignalCandidate:
    """Proposed entry emitted by a strategy checklist."""

    direction: Direction
    confidence: int
    reason: str
    stop_loss: float
    trailing_mode: TrailingMode
    validate_within_bars: Optional[int] = None
    post_entry_adx_min: Optional[float] = None


@dataclass(frozen=True)
class SignalRejection:
    """No entry at this bar; *reason* is a short machine-readable tag."""

    reason: str


SignalResult = Union[SignalCandidate, SignalRejection]
Checklist = Callable[
    [PreparedSeries, StrategyRuleSpec, int, ExecutionProfile], SignalResult
]


# ── Checklist helpers ────────────────────────────────────────────────────


def adjusted(profile: ExecutionProfile, strict_value: float, balanced_value: float) -> float:
    """Pick the threshold for *profile*."""
    return strict_value if profile == "strict" else balanced_value


def passes_checks(
    profile: ExecutionProfile,
    checks: list[bool],
    mandatory: tuple[int, ...],
    balanced_min: int,
) -> bool:
    """``True`` when the mandatory checks hold and enough checks agree.

    Strict requires every check; balanced requires *balanced_min*.
    """
    if not all(checks[idx] for idx in mandatory):
        return False
    needed = len(checks) if profile == "strict" else balanced_min
    return sum(checks) >= needed


def confidence_from_checks(base: float, checks: list[bool]) -> int:
    """``clamp(round(base + ok/total × 30), 40, 95)``."""
    total = max(1, len(checks))
    raw = base + sum(checks) / total * 30
    return min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, math.floor(raw + 0.5)))


def higher_timeframe_agreement(
    series: PreparedSeries,
    rule: StrategyRuleSpec,
    i: int,
    profile: ExecutionProfile,
) -> tuple[bool, bool]:
    """Return ``(bullish, bearish)`` agreement of the higher timeframes.

    A timeframe is bullish when ``ema9 > ema21`` and ``close >= ema21``
    (mirrored for bearish).  Strict needs every declared timeframe to agree;
    balanced needs ``max(1, ceil(60 %))`` of them.
    """
    intervals = rule.engine.higher_intervals_min
    bull = 0
    bear = 0
    for interval in intervals:
        h = series.higher.get(interval)
        if h is None:
            continue
        if h.ema9[i] > h.ema21[i] and h.close[i] >= h.ema21[i]:
            bull += 1
        if h.ema9[i] < h.ema21[i] and h.close[i] <= h.ema21[i]:
            bear += 1
    if profile == "strict":
        required = len(intervals)
    else:
        required = max(1, math.ceil(len(intervals) * 0.6))
    return bull >= required, bear >= required


# ── Strategy checklists ──────────────────────────────────────────────────


def _ema_macd_trend_acceleration(
    series: PreparedSeries,
    rule: StrategyRuleSpec,
    i: int,
    profile: ExecutionProfile,
) -> SignalResult:
    engine = rule.engine
    min_adx = adjusted(profile, engine.param("minAdx", 25), 20)
    invalidation_adx = adjusted(profile, engine.param("invalidationAdx", 20), 16)
    min_slope = adjusted(profile, engine.param("minMacdHistSlope", 0.02), 0)

    close = series.close[i]
    ema9, ema21 = series.ema9[i], series.ema21[i]
    atr_now = max(MIN_ATR, series.atr[i])
    adx_now = series.adx14[i]
    hist, hist_prev = series.macd_hist[i], series.macd_hist[i - 1]
    line, signal = series.macd_line, series.macd_signal

    if adx_now < invalidation_adx:
        return SignalRejection("adx_too_low")

    higher_bull, higher_bear = higher_timeframe_agreement(series, rule, i, profile)

    long_checks = [
        higher_bull,
        close > ema9 > ema21,
        adx_now >= min_adx,
        hist > 0 and hist > hist_prev + min_slope,
        crossed_above(line, signal, i) or line[i] > signal[i],
    ]
    if passes_checks(profile, long_checks, (0, 1), 4):
        return SignalCandidate(
            direction="LONG",
            confidence=confidence_from_checks(62, long_checks),
            reason="EMA stack + MACD acceleration + ADX expansion",
            stop_loss=initial_stop(
                "LONG", close, lowest(series.low, i, 6), atr_now, engine.stop_atr_mult,
            ),
            trailing_mode="EMA9",
        )

    short_checks = [
        higher_bear,
        close < ema9 < ema21,
        adx_now >= min_adx,
        hist < 0 and hist < hist_prev - min_slope,
        crossed_below(line, signal, i) or line[i] < signal[i],
    ]
    if passes_checks(profile, short_checks, (0, 1), 4):
        return SignalCandidate(
            direction="SHORT",
            confidence=confidence_from_checks(62, short_checks),
            reason="EMA stack + MACD downside acceleration + ADX expansion",
            stop_loss=initial_stop(
                "SHORT", close, highest(series.high, i, 6), atr_now, engine.stop_atr_mult,
            ),
            trailing_mode="EMA9",
        )

    return SignalRejection("trend_acceleration_confluence_missing")


def _supertrend_adx_continuation(
    series: PreparedSeries,
    rule: StrategyRuleSpec,
    i: int,
    profile: ExecutionProfile,
) -> SignalResult:
    engine = rule.engine
    min_adx = adjusted(profile, engine.param("minAdx", 24), 20)
    higher_tf_adx = adjusted(profile, engine.param("higherTfAdx", 30), 24)

    close = series.close[i]
    atr_now = max(MIN_ATR, series.atr[i])
    adx_now, adx_prev = series.adx14[i], series.adx14[i - 1]
    trend = series.supertrend_trend
    st_line = series.supertrend_line[i]

    # Without a 60m series the filter is waived
    h60 = series.higher.get(60)
    h60_bull = h60 is None or (h60.ema9[i] > h60.ema21[i] and h60.adx[i] >= higher_tf_adx)
    h60_bear = h60 is None or (h60.ema9[i] < h60.ema21[i] and h60.adx[i] >= higher_tf_adx)
    adx_rising = adx_now >= min_adx and adx_now > adx_prev

    long_checks = [
        h60_bull,
        trend[i] == 1 and trend[i - 1] == -1,
        adx_rising,
        close > series.ema21[i],
        close > series.high[i - 1],
    ]
    if passes_checks(profile, long_checks, (1, 3), 4):
        return SignalCandidate(
            direction="LONG",
            confidence=confidence_from_checks(60, long_checks),
            reason="Supertrend bullish flip with rising ADX",
            stop_loss=initial_stop("LONG", close, st_line, atr_now, engine.stop_atr_mult),
            trailing_mode="SUPERTREND",
        )

    short_checks = [
        h60_bear,
        trend[i] == -1 and trend[i - 1] == 1,
        adx_rising,
        close < series.ema21[i],
        close < series.low[i - 1],
    ]
    if passes_checks(profile, short_checks, (1, 3), 4):
        return SignalCandidate(
            direction="SHORT",
            confidence=confidence_from_checks(60, short_checks),
            reason="Supertrend bearish flip with rising ADX",
            stop_loss=initial_stop("SHORT", close, st_line, atr_now, engine.stop_atr_mult),
            trailing_mode="SUPERTREND",
        )

    return SignalRejection("supertrend_confluence_missing")


def _vwap_delta_reversion(
    series: PreparedSeries,
    rule: StrategyRuleSpec,
    i: int,
    profile: ExecutionProfile,
) -> SignalResult:
    engine = rule.engine
    stretch = adjusted(profile, engine.param("vwapStretchAtr", 1), 0.8)
    div_lookback = round(engine.param("rsiDivergenceLookback", 18))
    pcr_upper = adjusted(profile, engine.param("pcrUpperExtreme", 1.3), 1.2)
    pcr_lower = adjusted(profile, engine.param("pcrLowerExtreme", 0.75), 0.8)

    atr_now = max(MIN_ATR, series.atr[i])
    hist, hist_prev = series.macd_hist[i], series.macd_hist[i - 1]
    snapshot = series.snapshots[i]
    pcr = snapshot.pcr if snapshot is not None else None
    buy_qty = (snapshot.buy_qty or 0.0) if snapshot is not None else 0.0
    sell_qty = (snapshot.sell_qty or 0.0) if snapshot is not None else 0.0

    # Liquidity sweep: any of the last five bars pierced VWAP by the stretch
    stretched_down = False
    stretched_up = False
    for j in range(max(1, i - 5), i):
        band = series.atr[j] * stretch
        if series.low[j] < series.vwap[j] - band:
            stretched_down = True
        if series.high[j] > series.vwap[j] + band:
            stretched_up = True

    flow_bearish = sell_qty > buy_qty or (pcr is not None and pcr >= pcr_upper)
    flow_bullish = buy_qty > sell_qty or (pcr is not None and pcr <= pcr_lower)

    long_checks = [
        stretched_down,
        crossed_above(series.close, series.vwap, i),
        bullish_divergence(series.low, series.rsi14, i, div_lookback),
        flow_bearish,
        hist > hist_prev,
    ]
    if passes_checks(profile, long_checks, (0, 1), 3):
        return SignalCandidate(
            direction="LONG",
            confidence=confidence_from_checks(58, long_checks),
            reason="VWAP reclaim after oversold liquidity sweep",
            stop_loss=lowest(series.low, i, 5) - atr_now * 0.4,
            trailing_mode="EMA9",
        )

    short_checks = [
        stretched_up,
        crossed_below(series.close, series.vwap, i),
        bearish_divergence(series.high, series.rsi14, i, div_lookback),
        flow_bullish,
        hist < hist_prev,
    ]
    if passes_checks(profile, short_checks, (0, 1), 3):
        return SignalCandidate(
            direction="SHORT",
            confidence=confidence_from_checks(58, short_checks),
            reason="VWAP rejection after overbought liquidity sweep",
            stop_loss=highest(series.high, i, 5) + atr_now * 0.4,
            trailing_mode="EMA9",
        )

    return SignalRejection("vwap_reversion_confluence_missing")


def _gamma_expansion_breakout(
    series: PreparedSeries,
    rule: StrategyRuleSpec,
    i: int,
    profile: ExecutionProfile,
) -> SignalResult:
    engine = rule.engine
    squeeze_width = adjusted(profile, engine.param("squeezeBandwidthPct", 0.015), 0.02)
    adx_pre_max = engine.param("preBreakAdxMax", 20)
    adx_post_min = adjusted(profile, engine.param("postBreakAdxMin", 25), 20)
    vol_mult = adjusted(profile, engine.param("breakoutVolumeMult", 1.5), 1.1)

    close = series.close[i]
    atr_now = max(MIN_ATR, series.atr[i])
    adx_now, adx_prev = series.adx14[i], series.adx14[i - 1]
    ema9, ema21 = series.ema9, series.ema21

    is_squeeze = series.bollinger_width_pct[i] <= squeeze_width
    adx_hooking = adx_prev <= adx_pre_max and adx_now > adx_prev
    volume_confirmed = series.volume[i] > series.volume_sma20[i] * vol_mult
    h15 = series.higher.get(15)
    h15_bull = h15 is None or h15.ema9[i] > h15.ema21[i]
    h15_bear = h15 is None or h15.ema9[i] < h15.ema21[i]

    long_checks = [
        is_squeeze,
        adx_hooking,
        series.obv[i] > highest(series.obv, i - 1, 12),
        close > series.bollinger_upper[i],
        crossed_above(ema9, ema21, i) or ema9[i] > ema21[i],
        close > highest(series.high, i - 1, 8),
        volume_confirmed,
        h15_bull,
    ]
    if passes_checks(profile, long_checks, (0, 3), 5):
        return SignalCandidate(
            direction="LONG",
            confidence=confidence_from_checks(64, long_checks),
            reason="Squeeze breakout with OBV and ADX expansion",
            stop_loss=min(
                ema21[i] - atr_now * engine.stop_atr_mult,
                series.low[i] - atr_now * 0.2,
            ),
            trailing_mode="EMA9",
            validate_within_bars=3,
            post_entry_adx_min=adx_post_min,
        )

    short_checks = [
        is_squeeze,
        adx_hooking,
        series.obv[i] < lowest(series.obv, i - 1, 12),
        close < series.bollinger_lower[i],
        crossed_below(ema9, ema21, i) or ema9[i] < ema21[i],
        close < lowest(series.low, i - 1, 8),
        volume_confirmed,
        h15_bear,
    ]
    if passes_checks(profile, short_checks, (0, 3), 5):
        return SignalCandidate(
            direction="SHORT",
            confidence=confidence_from_checks(64, short_checks),
            reason="Squeeze breakdown with OBV and ADX expansion",
            stop_loss=max(
                ema21[i] + atr_now * engine.stop_atr_mult,
                series.high[i] + atr_now * 0.2,
            ),
            trailing_mode="EMA9",
            validate_within_bars=3,
            post_entry_adx_min=adx_post_min,
        )

    return SignalRejection("gamma_breakout_confluence_missing")


def _pcr_oi_sentiment_reversal(
    series: PreparedSeries,
    rule: StrategyRuleSpec,
    i: int,
    profile: ExecutionProfile,
) -> SignalResult:
    engine = rule.engine
    pcr_upper = adjusted(profile, engine.param("pcrUpperExtreme", 1.35), 1.2)
    pcr_lower = adjusted(profile, engine.param("pcrLowerExtreme", 0.72), 0.82)
    min_rsi_long = adjusted(profile, engine.param("minRsiForLongRecovery", 32), 30)
    max_rsi_short = adjusted(profile, engine.param("maxRsiForShortFade", 68), 70)

    snapshot = series.snapshots[i]
    if snapshot is None or not snapshot.pcr:
        return SignalRejection("missing_pcr_data")
    pcr = snapshot.pcr

    close = series.close[i]
    ema9, ema21 = series.ema9[i], series.ema21[i]
    atr_now = max(MIN_ATR, series.atr[i])
    hist, hist_prev = series.macd_hist[i], series.macd_hist[i - 1]
    rsi_now, rsi_prev = series.rsi14[i], series.rsi14[i - 1]

    # OI buildup decides pressure; order-flow quantities stand in without it
    oi = series.oi_points[i]
    buy_qty = snapshot.buy_qty or 0.0
    sell_qty = snapshot.sell_qty or 0.0
    if oi is not None:
        short_pressure = oi.short_oi_change >= oi.long_oi_change
        long_pressure = oi.long_oi_change >= oi.short_oi_change
    else:
        short_pressure = sell_qty >= buy_qty
        long_pressure = buy_qty >= sell_qty

    long_checks = [
        pcr >= pcr_upper,
        short_pressure,
        rsi_now > min_rsi_long and rsi_prev <= min_rsi_long,
        hist > hist_prev,
        close > ema9 > ema21,
    ]
    if passes_checks(profile, long_checks, (0,), 4):
        return SignalCandidate(
            direction="LONG",
            confidence=confidence_from_checks(56, long_checks),
            reason="PCR extreme unwind with momentum recovery",
            stop_loss=lowest(series.low, i, 8) - atr_now * engine.stop_atr_mult,
            trailing_mode="EMA21",
        )

    short_checks = [
        pcr <= pcr_lower,
        long_pressure,
        rsi_now < max_rsi_short and rsi_prev >= max_rsi_short,
        hist < hist_prev,
        close < ema9 < ema21,
    ]
    if passes_checks(profile, short_checks, (0,), 4):
        return SignalCandidate(
            direction="SHORT",
            confidence=confidence_from_checks(56, short_checks),
            reason="PCR extreme fade with momentum rollover",
            stop_loss=highest(series.high, i, 8) + atr_now * engine.stop_atr_mult,
            trailing_mode="EMA21",
        )

    return SignalRejection("pcr_reversal_confluence_missing")


CHECKLISTS: dict[str, Checklist] = {
    "ema_macd_trend_acceleration": _ema_macd_trend_acceleration,
    "supertrend_adx_continuation": _supertrend_adx_continuation,
    "vwap_delta_reversion": _vwap_delta_reversion,
    "gamma_expansion_breakout": _gamma_expansion_breakout,
    "pcr_oi_sentiment_reversal": _pcr_oi_sentiment_reversal,
}


def detect_signal(
    strategy_id: str,
    series: PreparedSeries,
    rule: StrategyRuleSpec,
    i: int,
    profile: ExecutionProfile = "strict",
) -> SignalResult:
    """Evaluate *strategy_id*'s checklist at bar *i*.

    Returns a ``SignalCandidate`` when a direction fires, otherwise a
    ``SignalRejection`` naming why.  Bars before index 3 and unknown
    strategy ids are rejected rather than raised.
    """
    if i < 3:
        return SignalRejection("insufficient_bars")
    checklist = CHECKLISTS.get(strategy_id)
    if checklist is None:
        return SignalRejection("unsupported_strategy")
    return checklist(series, rule, i, profile)
