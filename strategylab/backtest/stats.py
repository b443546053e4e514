"""Backtest statistics — pure functions for R-multiple trade-series analysis."""

import math
import statistics
from dataclasses import dataclass

from strategylab.backtest.engine import SimulatedTrade
from strategylab.strategy.models import from_epoch_ms, round2, to_epoch_ms
from strategylab.strategy.rules import QualityRating

NO_LOSS_PROFIT_FACTOR = 9.99
DAY_MS = 24 * 60 * 60 * 1000
WINDOW_MS = 7 * DAY_MS


@dataclass(frozen=True)
class StrategyKpis:
    """Summary of a trade list; all ratios rounded to 2 decimals."""

    trades: int
    wins: int
    losses: int
    scratches: int
    win_rate: float
    net_points: float
    net_r: float
    avg_r: float
    expectancy_r: float
    profit_factor: float
    max_drawdown_r: float
    sharpe_like: float


@dataclass(frozen=True)
class RollingWindow:
    start: str
    end: str
    kpis: StrategyKpis
    score: float


@dataclass(frozen=True)
class ConsistencyMetrics:
    windows: int
    positive_windows: int
    positive_window_rate: float
    median_net_r: float
    net_r_std_dev: float
    consistency_score: float


def compute_kpis(
    trades: list[SimulatedTrade],
    no_loss_profit_factor: float = NO_LOSS_PROFIT_FACTOR,
) -> StrategyKpis:
    """Compute win rate, net/average R, profit factor, drawdown, Sharpe-like.

    When there are no losing trades, the profit factor is
    *no_loss_profit_factor* if anything was won and 0 otherwise, so the
    value is always finite.
    """
    r_values = [t.pnl_r for t in trades]
    wins = [t for t in trades if t.outcome == "WIN"]
    losses = [t for t in trades if t.outcome == "LOSS"]
    scratches = len(trades) - len(wins) - len(losses)
    total = len(trades)

    net_r = sum(r_values)
    gross_win_r = sum(t.pnl_r for t in wins)
    gross_loss_r = sum(abs(t.pnl_r) for t in losses)
    if gross_loss_r > 0:
        profit_factor = gross_win_r / gross_loss_r
    elif gross_win_r > 0:
        profit_factor = no_loss_profit_factor
    else:
        profit_factor = 0.0

    win_rate = len(wins) / total * 100 if total else 0.0
    avg_r = net_r / total if total else 0.0

    return StrategyKpis(
        trades=total,
        wins=len(wins),
        losses=len(losses),
        scratches=scratches,
        win_rate=round2(win_rate),
        net_points=round2(sum(t.pnl_points for t in trades)),
        net_r=round2(net_r),
        avg_r=round2(avg_r),
        expectancy_r=round2(avg_r),
        profit_factor=round2(profit_factor),
        max_drawdown_r=round2(_max_drawdown(r_values)),
        sharpe_like=round2(_sharpe_like(r_values)),
    )


def compute_score(kpis: StrategyKpis, quality: QualityRating) -> float:
    """Composite ranking score.

    ``netR×6 + winRate/100×16 + min(4, PF)×5 + expectancy×10
    + clamp(sharpe, −3, 3)×4 − maxDD×6 + quality bonus``, minus 5 below
    three trades and plus 2 above twenty-five.
    """
    score = (
        kpis.net_r * 6
        + kpis.win_rate / 100 * 16
        + min(4.0, kpis.profit_factor) * 5
        + kpis.expectancy_r * 10
        + _clamp(kpis.sharpe_like, -3.0, 3.0) * 4
        - kpis.max_drawdown_r * 6
        + _quality_bonus(quality)
    )
    if kpis.trades < 3:
        score -= 5
    elif kpis.trades > 25:
        score += 2
    return round2(score)


def rolling_windows(
    trades: list[SimulatedTrade],
    from_iso: str,
    to_iso: str,
    quality: QualityRating,
    no_loss_profit_factor: float = NO_LOSS_PROFIT_FACTOR,
) -> list[RollingWindow]:
    """Split ``[from_iso, to_iso)`` into 7-day windows and score each.

    A trade belongs to the window containing its entry time.  Returns an
    empty list when the range is empty or unparseable.
    """
    start_ms = to_epoch_ms(from_iso)
    end_ms = to_epoch_ms(to_iso)
    if start_ms <= 0 or end_ms <= start_ms:
        return []

    entry_ms = [(to_epoch_ms(t.entry_time), t) for t in trades]
    windows: list[RollingWindow] = []
    current = start_ms
    while current < end_ms:
        upper = min(end_ms, current + WINDOW_MS)
        window_trades = [t for ms, t in entry_ms if current <= ms < upper]
        kpis = compute_kpis(window_trades, no_loss_profit_factor)
        windows.append(
            RollingWindow(
                start=from_epoch_ms(current),
                end=from_epoch_ms(upper),
                kpis=kpis,
                score=compute_score(kpis, quality),
            )
        )
        current += WINDOW_MS
    return windows


def consistency(windows: list[RollingWindow]) -> ConsistencyMetrics:
    """How evenly the result is spread across rolling windows.

    ``positive_window_rate`` is a percentage.  The consistency score rewards
    positive and active windows and a high median, and penalises dispersion
    of window net R.
    """
    if not windows:
        return ConsistencyMetrics(0, 0, 0.0, 0.0, 0.0, 0.0)

    net_rs = [w.kpis.net_r for w in windows]
    positive = sum(1 for r in net_rs if r > 0)
    positive_rate = positive / len(windows)
    activity_rate = sum(1 for w in windows if w.kpis.trades > 0) / len(windows)
    median_net_r = statistics.median(net_rs)
    std_dev = statistics.stdev(net_rs) if len(net_rs) >= 2 else 0.0
    score = positive_rate * 40 + activity_rate * 20 + median_net_r * 10 - std_dev * 8

    return ConsistencyMetrics(
        windows=len(windows),
        positive_windows=positive,
        positive_window_rate=round2(positive_rate * 100),
        median_net_r=round2(median_net_r),
        net_r_std_dev=round2(std_dev),
        consistency_score=round2(score),
    )


def range_days(from_iso: str, to_iso: str) -> float:
    """Length of ``[from_iso, to_iso)`` in days, never below 1."""
    span_ms = to_epoch_ms(to_iso) - to_epoch_ms(from_iso)
    if span_ms <= 0:
        return 1.0
    return max(1.0, span_ms / DAY_MS)


def reliability_score(
    kpis: StrategyKpis,
    windows: list[RollingWindow],
    from_iso: str,
    to_iso: str,
) -> float:
    """0–100 confidence that the headline score is not a small-sample fluke.

    Blends trade density (trades per day, best around 3–6), window
    coverage, raw sample size and a drawdown guard.  The blend is halved
    below three trades and cut by a quarter below six.
    """
    trades_per_day = kpis.trades / range_days(from_iso, to_iso)
    if trades_per_day <= 0.5:
        density = trades_per_day / 0.5 * 25
    elif trades_per_day <= 3:
        density = 25 + (trades_per_day - 0.5) / 2.5 * 55
    elif trades_per_day <= 6:
        density = 80 + (trades_per_day - 3) / 3 * 15
    elif trades_per_day <= 10:
        density = 95 - (trades_per_day - 6) / 4 * 25
    else:
        density = max(35.0, 70 - (trades_per_day - 10) * 3)
    density = _clamp(density, 0.0, 100.0)

    if windows:
        coverage = sum(1 for w in windows if w.kpis.trades > 0) / len(windows) * 100
    else:
        coverage = 100.0 if kpis.trades > 0 else 0.0
    sample = _clamp(kpis.trades * 4, 0.0, 100.0)
    drawdown_guard = _clamp(100 - kpis.max_drawdown_r * 12, 0.0, 100.0)

    score = density * 0.35 + coverage * 0.3 + sample * 0.2 + drawdown_guard * 0.15
    if kpis.trades < 3:
        score *= 0.5
    elif kpis.trades < 6:
        score *= 0.75
    return round2(_clamp(score, 0.0, 100.0))


# ── Helpers ──────────────────────────────────────────────────────────────


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def _quality_bonus(quality: QualityRating) -> float:
    if quality == "A+":
        return 2.0
    if quality == "A":
        return 1.3
    return 0.8


def _sharpe_like(values: list[float]) -> float:
    """``mean / stdev × √n`` over per-trade R.

    Uses sample standard deviation (n − 1).  With fewer than two trades the
    single R (or 0) is returned; zero variance maps to 3 for a positive mean
    and 0 otherwise.
    """
    n = len(values)
    if n < 2:
        return values[0] if n == 1 else 0.0
    mean = sum(values) / n
    variance = sum((v - mean) ** 2 for v in values) / (n - 1)
    std = math.sqrt(variance)
    if std == 0:
        return 3.0 if mean > 0 else 0.0
    return (mean / std) * math.sqrt(n)


def _max_drawdown(values: list[float]) -> float:
    """Largest peak-to-trough drop of the cumulative R curve (≥ 0)."""
    cumulative = 0.0
    peak = 0.0
    max_dd = 0.0
    for v in values:
        cumulative += v
        if cumulative > peak:
            peak = cumulative
        dd = peak - cumulative
        if dd > max_dd:
            max_dd = dd
    return max_dd
