"""Evaluation service — scores strategies per segment and ranks them.

``evaluate_strategy_for_segment`` runs one (strategy, segment) simulation
and scores it.  ``LabRunner`` fans the strategy × segment matrix out as
concurrent ``asyncio`` tasks on an executor, discards evaluations that miss
their deadline, and assembles the ranked ``LabReport``.  Data problems are
reported as warnings, never raised.
"""

import asyncio
import functools
import logging
import math
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

from strategylab.backtest.duplicates import DuplicateAnalysis, analyse_duplicates
from strategylab.backtest.engine import (
    ActivityDiagnostics,
    BacktestEngine,
    SimulatedTrade,
)
from strategylab.backtest.stats import (
    NO_LOSS_PROFIT_FACTOR,
    ConsistencyMetrics,
    RollingWindow,
    StrategyKpis,
    compute_kpis,
    compute_score,
    consistency,
    reliability_score,
    rolling_windows,
)
from strategylab.config import Config
from strategylab.strategy.models import (
    SEGMENTS,
    CandleData,
    ExecutionProfile,
    OIBuildupPoint,
    SnapshotPoint,
)
from strategylab.strategy.registry import STRATEGY_REGISTRY, get_strategy
from strategylab.strategy.rules import QualityRating

logger = logging.getLogger("strategylab.evaluator")


@dataclass(frozen=True)
class SegmentData:
    """Ascending 1-minute candles plus optional sentiment/OI series."""

    candles: list[CandleData]
    snapshots: list[SnapshotPoint] = field(default_factory=list)
    oi_points: list[OIBuildupPoint] = field(default_factory=list)


@dataclass(frozen=True)
class StrategyEvaluation:
    """One strategy evaluated on one segment."""

    strategy_id: str
    strategy_name: str
    segment: str
    quality_rating: QualityRating
    profile: ExecutionProfile
    kpis: StrategyKpis
    score: float
    activity: ActivityDiagnostics
    rolling_windows: list[RollingWindow]
    consistency: ConsistencyMetrics
    trades: list[SimulatedTrade]
    prepared_bars: int = 0
    reliability_score: float = 0.0


@dataclass(frozen=True)
class SegmentDiagnostics:
    candle_rows: int
    snapshot_rows: int
    oi_points: int


@dataclass(frozen=True)
class SegmentSummary:
    segment: str
    evaluations: list[StrategyEvaluation]
    best_strategy: Optional[StrategyEvaluation]
    diagnostics: SegmentDiagnostics
    warnings: list[str]
    duplicates: DuplicateAnalysis


@dataclass(frozen=True)
class LabReport:
    profile: ExecutionProfile
    generated_at: str
    from_iso: Optional[str]
    to_iso: Optional[str]
    segments: list[SegmentSummary]
    overall_ranking: list[StrategyEvaluation]
    warnings: list[str]


def _rank_key(evaluation: StrategyEvaluation) -> tuple:
    # Descending score; ids break ties so the order is reproducible
    return (-evaluation.score, evaluation.segment, evaluation.strategy_id)


# ── Single evaluation ────────────────────────────────────────────────────


def evaluate_strategy_for_segment(
    strategy_id: str,
    segment: str,
    candles_1m: list[CandleData],
    snapshots: Optional[list[SnapshotPoint]] = None,
    oi_points: Optional[list[OIBuildupPoint]] = None,
    profile: ExecutionProfile = "strict",
    from_iso: Optional[str] = None,
    to_iso: Optional[str] = None,
    no_loss_profit_factor: float = NO_LOSS_PROFIT_FACTOR,
) -> StrategyEvaluation:
    """Simulate *strategy_id* on *segment* and score the trades.

    Rolling windows span ``[from_iso, to_iso)``, defaulting to the first
    and last candle times.

    Raises ``KeyError`` for an unknown strategy id.
    """
    entry = get_strategy(strategy_id)
    rule = entry.rule
    engine = BacktestEngine(rule, detector=entry.detector, profile=profile)
    result = engine.run(segment, candles_1m, snapshots, oi_points)

    kpis = compute_kpis(result.trades, no_loss_profit_factor)
    window_from = from_iso or (candles_1m[0].time if candles_1m else "")
    window_to = to_iso or (candles_1m[-1].time if candles_1m else "")
    windows = rolling_windows(
        result.trades, window_from, window_to, rule.quality_rating,
        no_loss_profit_factor,
    )

    return StrategyEvaluation(
        strategy_id=rule.id,
        strategy_name=rule.name,
        segment=segment,
        quality_rating=rule.quality_rating,
        profile=profile,
        kpis=kpis,
        score=compute_score(kpis, rule.quality_rating),
        activity=result.activity,
        rolling_windows=windows,
        consistency=consistency(windows),
        trades=result.trades,
        prepared_bars=result.prepared_bars,
        reliability_score=reliability_score(kpis, windows, window_from, window_to),
    )


# ── Segment aggregation ──────────────────────────────────────────────────


def validate_evaluations(segment: str, evaluations: list[StrategyEvaluation]) -> list[str]:
    """Check KPI invariants; every violation becomes a warning string."""
    warnings: list[str] = []
    for item in evaluations:
        k = item.kpis
        tag = f"{segment}/{item.strategy_id}"
        outcomes = k.wins + k.losses + k.scratches
        if k.trades != outcomes:
            warnings.append(f"{tag}: KPI mismatch (trades={k.trades}, outcomes={outcomes}).")
        if not 0 <= k.win_rate <= 100:
            warnings.append(f"{tag}: Win rate out of range ({k.win_rate}).")
        if not math.isfinite(k.profit_factor) or not math.isfinite(k.net_r):
            warnings.append(f"{tag}: Non-finite KPI detected.")
        if k.max_drawdown_r < 0:
            warnings.append(f"{tag}: Negative max drawdown detected.")
    return warnings


def _data_warnings(segment: str, data: SegmentData, min_candle_rows: int) -> list[str]:
    if len(data.candles) < min_candle_rows:
        return [
            f"{segment}: limited one-minute candle data "
            f"({len(data.candles)} rows) in selected range."
        ]
    return []


def build_segment_summary(
    segment: str,
    data: SegmentData,
    evaluations: list[StrategyEvaluation],
    warnings: list[str],
) -> SegmentSummary:
    """Sort *evaluations* by score and attach diagnostics and warnings.

    Near-duplicate strategies are reported in ``duplicates`` and as a
    warning; the ranking itself stays on the composite score.
    """
    ranked = sorted(evaluations, key=_rank_key)
    all_warnings = list(warnings)
    duplicates = analyse_duplicates(
        segment, {item.strategy_id: item.trades for item in ranked},
    )
    if duplicates.near_duplicate_pairs:
        all_warnings.append(
            f"{segment}: {duplicates.near_duplicate_pairs} near-duplicate strategy "
            f"pairs detected (similarity >= {duplicates.threshold:g})."
        )
    for item in ranked:
        if item.prepared_bars == 0:
            all_warnings.append(
                f"{segment}/{item.strategy_id}: insufficient data to prepare series."
            )
    all_warnings.extend(validate_evaluations(segment, ranked))
    return SegmentSummary(
        segment=segment,
        evaluations=ranked,
        best_strategy=ranked[0] if ranked else None,
        diagnostics=SegmentDiagnostics(
            candle_rows=len(data.candles),
            snapshot_rows=len(data.snapshots),
            oi_points=len(data.oi_points),
        ),
        warnings=all_warnings,
        duplicates=duplicates,
    )


def evaluate_segment(
    segment: str,
    data: SegmentData,
    strategy_ids: Optional[list[str]] = None,
    profile: ExecutionProfile = "strict",
    from_iso: Optional[str] = None,
    to_iso: Optional[str] = None,
    no_loss_profit_factor: float = NO_LOSS_PROFIT_FACTOR,
    min_candle_rows: int = 0,
) -> SegmentSummary:
    """Evaluate every selected strategy on one segment, sequentially."""
    ids = strategy_ids or list(STRATEGY_REGISTRY)
    evaluations = [
        evaluate_strategy_for_segment(
            strategy_id, segment, data.candles, data.snapshots, data.oi_points,
            profile=profile, from_iso=from_iso, to_iso=to_iso,
            no_loss_profit_factor=no_loss_profit_factor,
        )
        for strategy_id in ids
    ]
    return build_segment_summary(
        segment, data, evaluations, _data_warnings(segment, data, min_candle_rows),
    )


# ── Runner ───────────────────────────────────────────────────────────────


class LabRunner:
    """Runs the strategy × segment matrix concurrently.

    Args:
        config: Global ``Config`` (profile, worker count, timeout, PF sentinel).
        executor: Executor the simulations run on.  When omitted, one sized
            by ``config.max_workers`` is created per run: a
            ``ThreadPoolExecutor`` by default, or a ``ProcessPoolExecutor``
            when ``config.executor == "process"``.  Simulations are pure
            Python and hold the GIL, so threads give concurrency and
            deadlines but not parallel speed-up; processes do.  Each
            evaluation is shipped as a picklable ``functools.partial`` of
            a module-level function, so either kind works.
    """

    def __init__(self, config: Config, executor: Optional[Executor] = None) -> None:
        self._config = config
        self._executor = executor

    # ── Public API ───────────────────────────────────────────────────────

    async def run(
        self,
        datasets: dict[str, SegmentData],
        strategy_ids: Optional[list[str]] = None,
        profile: Optional[ExecutionProfile] = None,
        from_iso: Optional[str] = None,
        to_iso: Optional[str] = None,
    ) -> LabReport:
        """Evaluate every selected strategy on every segment in *datasets*.

        Raises ``KeyError`` for unknown segments or strategy ids.  Failed or
        timed-out evaluations are dropped and reported as warnings.
        """
        profile = profile or self._config.profile
        ids = list(strategy_ids) if strategy_ids else list(STRATEGY_REGISTRY)
        for strategy_id in ids:
            get_strategy(strategy_id)
        for segment in datasets:
            if segment not in SEGMENTS:
                raise KeyError(
                    f"Unknown segment '{segment}'. "
                    f"Available: {', '.join(SEGMENTS.keys())}"
                )

        owned = self._executor is None
        executor = self._executor or self._make_executor()
        try:
            tasks = {
                (segment, strategy_id): asyncio.create_task(
                    self._evaluate(
                        executor, strategy_id, segment, data, profile, from_iso, to_iso,
                    )
                )
                for segment, data in datasets.items()
                for strategy_id in ids
            }
            await asyncio.gather(*tasks.values())
        finally:
            if owned:
                executor.shutdown(wait=False, cancel_futures=True)

        summaries: list[SegmentSummary] = []
        for segment, data in datasets.items():
            evaluations: list[StrategyEvaluation] = []
            warnings = _data_warnings(segment, data, self._config.min_candle_rows)
            for strategy_id in ids:
                evaluation, warning = tasks[(segment, strategy_id)].result()
                if evaluation is not None:
                    evaluations.append(evaluation)
                if warning is not None:
                    warnings.append(warning)
            summaries.append(build_segment_summary(segment, data, evaluations, warnings))

        ranking = sorted(
            (e for s in summaries for e in s.evaluations), key=_rank_key,
        )
        report = LabReport(
            profile=profile,
            generated_at=datetime.now(timezone.utc).isoformat(),
            from_iso=from_iso,
            to_iso=to_iso,
            segments=summaries,
            overall_ranking=ranking,
            warnings=[w for s in summaries for w in s.warnings],
        )
        logger.info(
            "Lab run complete: %d segment(s), %d evaluation(s), %d warning(s).",
            len(summaries), len(ranking), len(report.warnings),
        )
        return report

    # ── Helpers ──────────────────────────────────────────────────────────

    def _make_executor(self) -> Executor:
        if self._config.executor == "process":
            return ProcessPoolExecutor(max_workers=self._config.max_workers)
        return ThreadPoolExecutor(
            max_workers=self._config.max_workers,
            thread_name_prefix="strategylab",
        )

    async def _evaluate(
        self,
        executor: Executor,
        strategy_id: str,
        segment: str,
        data: SegmentData,
        profile: ExecutionProfile,
        from_iso: Optional[str],
        to_iso: Optional[str],
    ) -> tuple[Optional[StrategyEvaluation], Optional[str]]:
        loop = asyncio.get_running_loop()
        call = functools.partial(
            evaluate_strategy_for_segment,
            strategy_id,
            segment,
            data.candles,
            data.snapshots,
            data.oi_points,
            profile=profile,
            from_iso=from_iso,
            to_iso=to_iso,
            no_loss_profit_factor=self._config.no_loss_profit_factor,
        )
        timeout = self._config.eval_timeout_seconds
        try:
            evaluation = await asyncio.wait_for(
                loop.run_in_executor(executor, call), timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("%s/%s exceeded %.1fs; result discarded.", segment, strategy_id, timeout)
            return None, f"{segment}/{strategy_id}: evaluation exceeded {timeout:g}s deadline."
        except Exception as exc:
            logger.error("%s/%s evaluation failed: %s", segment, strategy_id, exc)
            return None, f"{segment}/{strategy_id}: evaluation failed ({exc})."
        return evaluation, None


# ── Serialisation ────────────────────────────────────────────────────────


def report_to_dict(report: LabReport, include_trades: bool = True) -> dict:
    """Plain-dict form of *report* for JSON output."""
    data = asdict(report)
    if not include_trades:
        for summary in data["segments"]:
            for item in summary["evaluations"]:
                item.pop("trades", None)
            if summary["best_strategy"] is not None:
                summary["best_strategy"].pop("trades", None)
        for item in data["overall_ranking"]:
            item.pop("trades", None)
    return data
