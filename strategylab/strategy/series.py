"""Series preparation — resample, compute indicators, align higher timeframes.

Builds the per-strategy ``PreparedSeries`` bundle the signal detector and
simulator read by bar index.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, TypeVar

from strategylab.strategy.indicators import (
    adx,
    atr,
    bollinger_bands,
    ema,
    macd,
    obv,
    resample_candles,
    rsi,
    session_vwap,
    sma,
    supertrend,
)
from strategylab.strategy.models import (
    CandleData,
    OIBuildupPoint,
    SnapshotPoint,
    to_epoch_ms,
)
from strategylab.strategy.rules import StrategyRuleSpec

logger = logging.getLogger("strategylab.series")

MIN_PREPARED_BARS = 60

T = TypeVar("T", SnapshotPoint, OIBuildupPoint)


@dataclass(frozen=True)
class HigherAlignedSeries:
    """Higher-timeframe trend filter values, one per execution bar."""

    ema9: list[float]
    ema21: list[float]
    adx: list[float]
    close: list[float]


@dataclass(frozen=True)
class PreparedSeries:
    """Aligned indicator arrays for one strategy on one segment."""

    candles: list[CandleData]
    time_ms: list[int]
    open: list[float]
    high: list[float]
    low: list[float]
    close: list[float]
    volume: list[float]
    ema9: list[float]
    ema21: list[float]
    rsi14: list[float]
    atr: list[float]
    adx14: list[float]
    macd_line: list[float]
    macd_signal: list[float]
    macd_hist: list[float]
    bollinger_upper: list[float]
    bollinger_lower: list[float]
    bollinger_width_pct: list[float]
    obv: list[float]
    supertrend_line: list[float]
    supertrend_trend: list[int]
    vwap: list[float]
    volume_sma20: list[float]
    snapshots: list[Optional[SnapshotPoint]]
    oi_points: list[Optional[OIBuildupPoint]]
    higher: dict[int, HigherAlignedSeries]

    def __post_init__(self) -> None:
        n = len(self.candles)
        for name, value in vars(self).items():
            if isinstance(value, list) and len(value) != n:
                raise ValueError(f"{name} has {len(value)} values, expected {n}")
        for interval, h in self.higher.items():
            for name, value in vars(h).items():
                if len(value) != n:
                    raise ValueError(
                        f"higher[{interval}].{name} has {len(value)} values, expected {n}"
                    )

    def __len__(self) -> int:
        return len(self.candles)


def align_by_time(target_ms: Sequence[int], rows: Sequence[T]) -> list[Optional[T]]:
    """Last-known-value alignment of *rows* onto *target_ms*.

    *rows* must be sorted ascending by time.  A single pointer advances
    monotonically, so the whole alignment is O(n + m).  Targets before the
    first row map to ``None``.
    """
    if not rows:
        return [None] * len(target_ms)

    rows_ms = [to_epoch_ms(row.time) for row in rows]
    out: list[Optional[T]] = []
    pointer = -1
    for t in target_ms:
        while pointer + 1 < len(rows_ms) and rows_ms[pointer + 1] <= t:
            pointer += 1
        out.append(rows[pointer] if pointer >= 0 else None)
    return out


def align_higher_series(
    candles_1m: list[CandleData],
    execution_ms: Sequence[int],
    interval_min: int,
) -> HigherAlignedSeries:
    """Resample to *interval_min* and project EMA9/EMA21/ADX/close onto *execution_ms*.

    Each execution bar takes the last higher bar starting at or before it;
    execution bars before the first higher bar repeat the first value.
    """
    higher = resample_candles(candles_1m, interval_min)
    if not higher:
        blank = [0.0] * len(execution_ms)
        return HigherAlignedSeries(ema9=blank, ema21=list(blank), adx=list(blank), close=list(blank))

    closes = [c.close for c in higher]
    higher_ema9 = ema(closes, 9)
    higher_ema21 = ema(closes, 21)
    higher_adx = adx(higher, 14)
    higher_ms = [to_epoch_ms(c.time) for c in higher]

    aligned_ema9: list[float] = []
    aligned_ema21: list[float] = []
    aligned_adx: list[float] = []
    aligned_close: list[float] = []
    j = 0
    for ms in execution_ms:
        while j + 1 < len(higher_ms) and higher_ms[j + 1] <= ms:
            j += 1
        aligned_ema9.append(higher_ema9[j])
        aligned_ema21.append(higher_ema21[j])
        aligned_adx.append(higher_adx[j])
        aligned_close.append(closes[j])

    return HigherAlignedSeries(
        ema9=aligned_ema9,
        ema21=aligned_ema21,
        adx=aligned_adx,
        close=aligned_close,
    )


def prepare_series(
    candles_1m: list[CandleData],
    snapshots: list[SnapshotPoint],
    oi_points: list[OIBuildupPoint],
    rule: StrategyRuleSpec,
) -> Optional[PreparedSeries]:
    """Build the full indicator bundle for *rule*.

    Returns ``None`` when fewer than ``MIN_PREPARED_BARS`` execution bars
    are available.
    """
    engine = rule.engine
    candles = resample_candles(candles_1m, engine.execution_interval_min)
    if len(candles) < MIN_PREPARED_BARS:
        logger.debug(
            "%s: only %d bars at %dm, need %d",
            rule.id, len(candles), engine.execution_interval_min, MIN_PREPARED_BARS,
        )
        return None

    time_ms = [to_epoch_ms(c.time) for c in candles]
    close = [c.close for c in candles]
    volume = [c.volume for c in candles]
    macd_series = macd(close, 12, 26, 9)
    bands = bollinger_bands(close, 20, 2.0)
    st = supertrend(
        candles,
        max(7, round(engine.param("supertrendAtrPeriod", 10))),
        max(1.5, engine.param("supertrendFactor", 3)),
    )

    higher = {
        interval: align_higher_series(candles_1m, time_ms, interval)
        for interval in engine.higher_intervals_min
    }

    return PreparedSeries(
        candles=candles,
        time_ms=time_ms,
        open=[c.open for c in candles],
        high=[c.high for c in candles],
        low=[c.low for c in candles],
        close=close,
        volume=volume,
        ema9=ema(close, 9),
        ema21=ema(close, 21),
        rsi14=rsi(close, 14),
        atr=atr(candles, engine.atr_period),
        adx14=adx(candles, 14),
        macd_line=macd_series.line,
        macd_signal=macd_series.signal,
        macd_hist=macd_series.histogram,
        bollinger_upper=bands.upper,
        bollinger_lower=bands.lower,
        bollinger_width_pct=bands.bandwidth_pct,
        obv=obv(candles),
        supertrend_line=st.line,
        supertrend_trend=st.trend,
        vwap=session_vwap(candles),
        volume_sma20=sma(volume, 20),
        snapshots=align_by_time(time_ms, snapshots),
        oi_points=align_by_time(time_ms, oi_points),
        higher=higher,
    )
