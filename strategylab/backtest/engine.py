"""Backtest engine — walks prepared bars through one strategy's lifecycle.

Each run is a Flat → Open → Flat state machine over the execution-interval
bars of one segment.  At most one position is open at a time; entries are
gated by a post-exit cooldown and a per-day risk budget.  No real orders are
placed and no state survives between runs.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from strategylab.risk.daily_risk import DailyRiskBudget
from strategylab.risk.sl_tp import calculate_take_profit, min_risk_points, resolve_stop
from strategylab.risk.trailing_stop import TrailingStop
from strategylab.strategy.models import (
    CandleData,
    Direction,
    ExecutionProfile,
    OIBuildupPoint,
    Outcome,
    SnapshotPoint,
    TrailingMode,
    round2,
    session_key,
)
from strategylab.strategy.rules import StrategyRuleSpec
from strategylab.strategy.series import PreparedSeries, prepare_series
from strategylab.strategy.signals import Checklist, SignalRejection, detect_signal

logger = logging.getLogger("strategylab.backtest")

WARMUP_BARS = 35
WIN_THRESHOLD_R = 0.15
BALANCED_RISK_PER_TRADE_FACTOR = 0.85
BALANCED_DAILY_CAP_FACTOR = 1.25

EXIT_ADX_EXPANSION_FAILED = "ADX expansion failed"
EXIT_VWAP_HOLD_FAILED = "VWAP reclaim/rejection failed"
EXIT_STOP_LOSS = "Stop loss hit"
EXIT_TARGET = "Target hit"
EXIT_TIME_STOP = "Time stop"
EXIT_SESSION_CLOSE = "Session close"
EXIT_RANGE_END = "Range end"

# Strategies whose thesis dies when price gives VWAP back after entry
VWAP_HOLD_STRATEGIES = frozenset({"vwap_delta_reversion"})


@dataclass(frozen=True)
class SimulatedTrade:
    """A closed simulated trade; prices and R values rounded to 2 decimals."""

    strategy_id: str
    segment: str
    direction: Direction
    entry_time: str
    exit_time: str
    bars_held: int
    entry_price: float
    exit_price: float
    stop_loss: float
    take_profit: float
    risk_points: float
    pnl_points: float
    pnl_r: float
    outcome: Outcome
    reason: str


@dataclass
class ActiveTrade:
    """Mutable state of the single open position."""

    strategy_id: str
    segment: str
    direction: Direction
    entry_index: int
    entry_time: str
    entry_price: float
    take_profit: float
    risk_points: float
    max_bars_in_trade: int
    signal_reason: str
    trailing: TrailingStop
    validation_deadline_index: Optional[int] = None
    required_adx_after_entry: Optional[float] = None

    @property
    def stop_loss(self) -> float:
        return self.trailing.current_sl

    @property
    def trailing_mode(self) -> TrailingMode:
        return self.trailing.mode


@dataclass
class ActivityDiagnostics:
    """Counters explaining why a strategy did or did not trade."""

    bars_evaluated: int = 0
    signal_candidates: int = 0
    entries_taken: int = 0
    blocked_by_daily_risk: int = 0
    blocked_by_spacing: int = 0
    blocked_by_risk_filter: int = 0
    rejection_reasons: dict[str, int] = field(default_factory=dict)

    def reject(self, reason: str) -> None:
        self.rejection_reasons[reason] = self.rejection_reasons.get(reason, 0) + 1


@dataclass(frozen=True)
class SimulationResult:
    trades: list[SimulatedTrade]
    activity: ActivityDiagnostics
    prepared_bars: int = 0


def classify_outcome(pnl_r: float) -> Outcome:
    """WIN above +0.15R, LOSS below −0.15R, SCRATCH in between."""
    if pnl_r > WIN_THRESHOLD_R:
        return "WIN"
    if pnl_r < -WIN_THRESHOLD_R:
        return "LOSS"
    return "SCRATCH"


class BacktestEngine:
    """Simulates one strategy on one segment's historical data.

    Args:
        rule: Catalog entry whose engine parameters drive the simulation.
        detector: Checklist called at each eligible flat bar.  Defaults to
            the catalog checklist for ``rule.id``.
        profile: Execution profile.  Passed to the detector and used to
            loosen the risk budget and cooldown under ``balanced``.
    """

    def __init__(
        self,
        rule: StrategyRuleSpec,
        detector: Optional[Checklist] = None,
        profile: ExecutionProfile = "strict",
    ) -> None:
        self._rule = rule
        self._detector = detector
        self._profile = profile

    # ── Public API ───────────────────────────────────────────────────────

    def run(
        self,
        segment: str,
        candles_1m: list[CandleData],
        snapshots: Optional[list[SnapshotPoint]] = None,
        oi_points: Optional[list[OIBuildupPoint]] = None,
    ) -> SimulationResult:
        """Prepare the series and execute a full simulation.

        Returns an empty result (no trades, zeroed diagnostics) when there
        are too few bars to prepare the series.
        """
        series = prepare_series(candles_1m, snapshots or [], oi_points or [], self._rule)
        if series is None:
            return SimulationResult(trades=[], activity=ActivityDiagnostics())
        return self.simulate(segment, series)

    def simulate(self, segment: str, series: PreparedSeries) -> SimulationResult:
        """Walk *series* bar by bar from ``WARMUP_BARS``."""
        engine = self._rule.engine
        risk_per_trade, daily_cap, min_gap = self._entry_limits()
        budget = DailyRiskBudget(risk_per_trade, daily_cap)
        activity = ActivityDiagnostics()
        trades: list[SimulatedTrade] = []
        active: Optional[ActiveTrade] = None
        last_exit_index = -1000
        n = len(series)

        for i in range(WARMUP_BARS, n):
            candle = series.candles[i]
            day = session_key(candle.time)

            # 1 — Manage the open position; at most one exit per bar
            if active is not None:
                exit_ = self._check_exit(active, i, series, day)
                if exit_ is not None:
                    exit_price, reason = exit_
                    trades.append(self._finalize(active, i, exit_price, reason, series))
                    active = None
                    last_exit_index = i
                continue

            # 2 — Flat: spacing and daily budget gates
            activity.bars_evaluated += 1
            if i - last_exit_index < min_gap:
                activity.blocked_by_spacing += 1
                continue
            if not budget.can_enter(day):
                activity.blocked_by_daily_risk += 1
                continue

            # 3 — Signal
            detection = self._detect(series, i)
            if isinstance(detection, SignalRejection):
                activity.reject(detection.reason)
                continue
            activity.signal_candidates += 1

            # 4 — Risk resolution
            entry = series.close[i]
            stop = resolve_stop(detection.direction, entry, detection.stop_loss)
            risk = abs(entry - stop)
            if not math.isfinite(risk) or risk <= min_risk_points(entry):
                activity.blocked_by_risk_filter += 1
                continue

            active = ActiveTrade(
                strategy_id=self._rule.id,
                segment=segment,
                direction=detection.direction,
                entry_index=i,
                entry_time=candle.time,
                entry_price=entry,
                take_profit=calculate_take_profit(
                    detection.direction, entry, risk, engine.target_r,
                ),
                risk_points=risk,
                max_bars_in_trade=engine.max_bars_in_trade,
                signal_reason=detection.reason,
                trailing=TrailingStop(
                    entry, stop, detection.direction, detection.trailing_mode,
                ),
                validation_deadline_index=(
                    i + detection.validate_within_bars
                    if detection.validate_within_bars is not None
                    else None
                ),
                required_adx_after_entry=detection.post_entry_adx_min,
            )
            budget.book(day)
            activity.entries_taken += 1

        # Never end with an unresolved position
        if active is not None:
            last = n - 1
            trades.append(
                self._finalize(active, last, series.close[last], EXIT_RANGE_END, series)
            )

        logger.debug(
            "%s/%s [%s]: %d bars, %d trades, %d candidates",
            self._rule.id, segment, self._profile, n, len(trades),
            activity.signal_candidates,
        )
        return SimulationResult(trades=trades, activity=activity, prepared_bars=n)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _entry_limits(self) -> tuple[float, float, int]:
        """Per-trade risk, daily cap and cooldown bars for the active profile.

        ``balanced`` books 15 % less risk per entry, allows 25 % more per
        day and shortens the cooldown by one bar (never below one).
        """
        engine = self._rule.engine
        if self._profile == "balanced":
            return (
                engine.risk_per_trade_pct * BALANCED_RISK_PER_TRADE_FACTOR,
                engine.daily_risk_cap_pct * BALANCED_DAILY_CAP_FACTOR,
                max(1, engine.min_bars_between_trades - 1),
            )
        return (
            engine.risk_per_trade_pct,
            engine.daily_risk_cap_pct,
            engine.min_bars_between_trades,
        )

    def _detect(self, series: PreparedSeries, i: int):
        if self._detector is not None:
            return self._detector(series, self._rule, i, self._profile)
        return detect_signal(self._rule.id, series, self._rule, i, self._profile)

    @staticmethod
    def _trail_value(trade: ActiveTrade, series: PreparedSeries, i: int) -> Optional[float]:
        mode = trade.trailing_mode
        if mode == "EMA9":
            return series.ema9[i]
        if mode == "EMA21":
            return series.ema21[i]
        if mode == "SUPERTREND":
            return series.supertrend_line[i]
        return None

    def _check_exit(
        self,
        trade: ActiveTrade,
        i: int,
        series: PreparedSeries,
        day: str,
    ) -> Optional[tuple[float, str]]:
        """Return ``(exit_price, reason)`` if bar *i* closes *trade*.

        Order: trailing update, invalidation, stop, target, time stop,
        session boundary.  When stop and target are both touched in the
        same bar, the stop is assumed first.
        """
        candle = series.candles[i]
        trade.trailing.update(candle.close, self._trail_value(trade, series, i))

        if (
            trade.required_adx_after_entry
            and trade.validation_deadline_index is not None
            and i >= trade.validation_deadline_index
            and series.adx14[i] < trade.required_adx_after_entry
        ):
            return candle.close, EXIT_ADX_EXPANSION_FAILED

        if trade.strategy_id in VWAP_HOLD_STRATEGIES and i > trade.entry_index + 1:
            if trade.direction == "LONG":
                failed = candle.close < series.vwap[i]
            else:
                failed = candle.close > series.vwap[i]
            if failed:
                return candle.close, EXIT_VWAP_HOLD_FAILED

        if trade.direction == "LONG":
            stop_hit = candle.low <= trade.stop_loss
            target_hit = candle.high >= trade.take_profit
        else:
            stop_hit = candle.high >= trade.stop_loss
            target_hit = candle.low <= trade.take_profit

        if stop_hit:
            return trade.stop_loss, EXIT_STOP_LOSS
        if target_hit:
            return trade.take_profit, EXIT_TARGET

        if i - trade.entry_index + 1 >= trade.max_bars_in_trade:
            return candle.close, EXIT_TIME_STOP

        if i + 1 < len(series) and session_key(series.candles[i + 1].time) != day:
            return candle.close, EXIT_SESSION_CLOSE

        return None

    @staticmethod
    def _finalize(
        trade: ActiveTrade,
        exit_index: int,
        exit_price: float,
        reason: str,
        series: PreparedSeries,
    ) -> SimulatedTrade:
        if trade.direction == "LONG":
            pnl_points = exit_price - trade.entry_price
        else:
            pnl_points = trade.entry_price - exit_price
        pnl_r = pnl_points / trade.risk_points if trade.risk_points > 0 else 0.0
        return SimulatedTrade(
            strategy_id=trade.strategy_id,
            segment=trade.segment,
            direction=trade.direction,
            entry_time=trade.entry_time,
            exit_time=series.candles[exit_index].time,
            bars_held=max(1, exit_index - trade.entry_index + 1),
            entry_price=round2(trade.entry_price),
            exit_price=round2(exit_price),
            stop_loss=round2(trade.stop_loss),
            take_profit=round2(trade.take_profit),
            risk_points=round2(trade.risk_points),
            pnl_points=round2(pnl_points),
            pnl_r=round2(pnl_r),
            outcome=classify_outcome(pnl_r),
            reason=reason,
        )
