"""Tests for strategylab.backtest.evaluator — scoring, ranking, concurrent runs."""

import asyncio
import time
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from strategylab.backtest import evaluator
from strategylab.backtest.engine import ActivityDiagnostics, SimulatedTrade
from strategylab.backtest.evaluator import (
    LabRunner,
    SegmentData,
    StrategyEvaluation,
    build_segment_summary,
    evaluate_segment,
    evaluate_strategy_for_segment,
    report_to_dict,
    validate_evaluations,
)
from strategylab.backtest.stats import ConsistencyMetrics, StrategyKpis
from strategylab.config import Config
from strategylab.strategy.models import CandleData

START = datetime(2025, 1, 6, 3, 45, tzinfo=timezone.utc)


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_config(**overrides):
    values = dict(
        profile="strict",
        max_workers=2,
        eval_timeout_seconds=30.0,
        min_candle_rows=200,
        no_loss_profit_factor=9.99,
        data_dir="data",
        log_level="INFO",
        api_port=8080,
    )
    values.update(overrides)
    return Config(**values)


def _candles(n):
    return [
        CandleData(
            time=(START + timedelta(minutes=i)).isoformat(),
            open=100.0, high=100.5, low=99.5, close=100.0 + (i % 5) * 0.1, volume=1000,
        )
        for i in range(n)
    ]


def _kpis(**overrides):
    values = dict(
        trades=0, wins=0, losses=0, scratches=0, win_rate=0.0, net_points=0.0,
        net_r=0.0, avg_r=0.0, expectancy_r=0.0, profit_factor=0.0,
        max_drawdown_r=0.0, sharpe_like=0.0,
    )
    values.update(overrides)
    return StrategyKpis(**values)


def _make_trade(entry_time, direction="LONG", pnl_r=1.0):
    return SimulatedTrade(
        strategy_id="stub",
        segment="NIFTY",
        direction=direction,
        entry_time=entry_time,
        exit_time=entry_time,
        bars_held=2,
        entry_price=100.0,
        exit_price=100.0 + pnl_r,
        stop_loss=99.0,
        take_profit=102.0,
        risk_points=1.0,
        pnl_points=pnl_r,
        pnl_r=pnl_r,
        outcome="WIN" if pnl_r > 0.15 else "LOSS",
        reason="Target hit",
    )


def _evaluation(strategy_id, score, segment="NIFTY", prepared_bars=100, trades=None, **kpis):
    return StrategyEvaluation(
        strategy_id=strategy_id,
        strategy_name=strategy_id,
        segment=segment,
        quality_rating="A",
        profile="strict",
        kpis=_kpis(**kpis),
        score=score,
        activity=ActivityDiagnostics(),
        rolling_windows=[],
        consistency=ConsistencyMetrics(0, 0, 0.0, 0.0, 0.0, 0.0),
        trades=trades or [],
        prepared_bars=prepared_bars,
    )


# ── Single evaluation ────────────────────────────────────────────────────


class TestEvaluateStrategyForSegment:
    def test_insufficient_data_scores_baseline(self):
        result = evaluate_strategy_for_segment(
            "ema_macd_trend_acceleration", "NIFTY", _candles(100),
        )
        assert result.prepared_bars == 0
        assert result.kpis.trades == 0
        # 0 KPIs + A+ bonus 2 − 5 for fewer than three trades
        assert result.score == -3.0
        assert result.strategy_name == "EMA-MACD Trend Acceleration"
        # one idle window: only the drawdown guard counts, halved
        assert result.reliability_score == 7.5

    def test_rolling_windows_default_to_candle_range(self):
        result = evaluate_strategy_for_segment(
            "vwap_delta_reversion", "BANKNIFTY", _candles(400), profile="balanced",
        )
        assert result.profile == "balanced"
        assert result.prepared_bars > 0
        assert len(result.rolling_windows) == 1
        assert result.consistency.windows == 1

    def test_unknown_strategy_raises(self):
        with pytest.raises(KeyError):
            evaluate_strategy_for_segment("bogus", "NIFTY", _candles(10))


# ── Segment aggregation ──────────────────────────────────────────────────


class TestSegmentSummary:
    def test_sorted_by_score_then_id(self):
        evaluations = [
            _evaluation("b", 1.0),
            _evaluation("c", 5.0),
            _evaluation("a", 1.0),
        ]
        summary = build_segment_summary("NIFTY", SegmentData(candles=[]), evaluations, [])
        assert [e.strategy_id for e in summary.evaluations] == ["c", "a", "b"]
        assert summary.best_strategy.strategy_id == "c"

    def test_insufficient_data_warning(self):
        summary = build_segment_summary(
            "NIFTY", SegmentData(candles=[]), [_evaluation("a", 0.0, prepared_bars=0)], [],
        )
        assert "NIFTY/a: insufficient data to prepare series." in summary.warnings

    def test_empty_segment(self):
        summary = build_segment_summary("NIFTY", SegmentData(candles=[]), [], [])
        assert summary.best_strategy is None
        assert summary.diagnostics.candle_rows == 0

    def test_near_duplicates_reported_not_penalised(self):
        book = [
            _make_trade("2025-01-06T04:00:00Z", pnl_r=2.0),
            _make_trade("2025-01-07T04:00:00Z", pnl_r=-1.0),
        ]
        other = [
            _make_trade("2025-01-06T06:00:00Z", "SHORT", -1.0),
            _make_trade("2025-01-07T06:00:00Z", "SHORT", 2.0),
        ]
        evaluations = [
            _evaluation("a", 1.0, trades=book),
            _evaluation("b", 5.0, trades=list(book)),
            _evaluation("c", 3.0, trades=other),
        ]
        summary = build_segment_summary("NIFTY", SegmentData(candles=[]), evaluations, [])
        assert [e.strategy_id for e in summary.evaluations] == ["b", "c", "a"]
        assert [e.score for e in summary.evaluations] == [5.0, 3.0, 1.0]
        assert "NIFTY: 1 near-duplicate strategy pairs detected (similarity >= 72)." in (
            summary.warnings
        )
        top = summary.duplicates.pairs[0]
        assert {top.strategy_a, top.strategy_b} == {"a", "b"}
        assert top.similarity == 100.0
        penalties = {s.strategy_id: s.duplicate_penalty for s in summary.duplicates.summaries}
        assert penalties["c"] == 0.0
        assert penalties["a"] == penalties["b"] > 0

    def test_distinct_strategies_no_duplicate_warning(self):
        summary = build_segment_summary(
            "NIFTY", SegmentData(candles=[]), [_evaluation("a", 1.0), _evaluation("b", 2.0)], [],
        )
        assert summary.duplicates.near_duplicate_pairs == 0
        assert not any("near-duplicate" in w for w in summary.warnings)

    def test_limited_data_warning(self):
        summary = evaluate_segment(
            "SENSEX",
            SegmentData(candles=_candles(50)),
            strategy_ids=["gamma_expansion_breakout"],
            min_candle_rows=200,
        )
        assert summary.warnings[0] == (
            "SENSEX: limited one-minute candle data (50 rows) in selected range."
        )
        assert len(summary.evaluations) == 1


class TestValidateEvaluations:
    def test_clean(self):
        item = _evaluation("a", 1.0, trades=2, wins=1, losses=1, win_rate=50.0)
        assert validate_evaluations("NIFTY", [item]) == []

    def test_violations_reported(self):
        item = _evaluation(
            "a", 1.0, trades=3, wins=1, win_rate=120.0,
            profit_factor=float("inf"), max_drawdown_r=-1.0,
        )
        warnings = validate_evaluations("NIFTY", [item])
        assert len(warnings) == 4
        assert warnings[0].startswith("NIFTY/a: KPI mismatch")


# ── LabRunner ────────────────────────────────────────────────────────────


class TestLabRunner:
    def test_full_matrix_ranked(self):
        runner = LabRunner(_make_config(min_candle_rows=0))
        datasets = {
            "NIFTY": SegmentData(candles=_candles(400)),
            "BANKNIFTY": SegmentData(candles=_candles(400)),
        }
        report = asyncio.run(runner.run(datasets))
        assert report.profile == "strict"
        assert [s.segment for s in report.segments] == ["NIFTY", "BANKNIFTY"]
        assert len(report.overall_ranking) == 10
        scores = [e.score for e in report.overall_ranking]
        assert scores == sorted(scores, reverse=True)

    def test_profile_override(self):
        runner = LabRunner(_make_config(min_candle_rows=0))
        report = asyncio.run(
            runner.run(
                {"NIFTY": SegmentData(candles=_candles(100))},
                strategy_ids=["pcr_oi_sentiment_reversal"],
                profile="balanced",
            )
        )
        assert report.profile == "balanced"
        assert report.overall_ranking[0].profile == "balanced"

    def test_unknown_segment(self):
        runner = LabRunner(_make_config())
        with pytest.raises(KeyError, match="Unknown segment 'FOO'"):
            asyncio.run(runner.run({"FOO": SegmentData(candles=[])}))

    def test_unknown_strategy(self):
        runner = LabRunner(_make_config())
        with pytest.raises(KeyError, match="Unknown strategy"):
            asyncio.run(
                runner.run({"NIFTY": SegmentData(candles=[])}, strategy_ids=["bogus"])
            )

    def test_process_pool_matches_threads(self):
        datasets = {"NIFTY": SegmentData(candles=_candles(400))}
        ids = ["vwap_delta_reversion", "gamma_expansion_breakout"]
        config = _make_config(min_candle_rows=0)
        with ThreadPoolExecutor(max_workers=2) as pool:
            threaded = asyncio.run(LabRunner(config, pool).run(datasets, strategy_ids=ids))
        with ProcessPoolExecutor(max_workers=2) as pool:
            forked = asyncio.run(LabRunner(config, pool).run(datasets, strategy_ids=ids))
        assert forked.warnings == threaded.warnings
        assert [(e.strategy_id, e.score, e.prepared_bars) for e in forked.overall_ranking] == [
            (e.strategy_id, e.score, e.prepared_bars) for e in threaded.overall_ranking
        ]

    def test_executor_kind_from_config(self):
        runner = LabRunner(_make_config(executor="process"))
        executor = runner._make_executor()
        try:
            assert isinstance(executor, ProcessPoolExecutor)
        finally:
            executor.shutdown()
        executor = LabRunner(_make_config())._make_executor()
        try:
            assert isinstance(executor, ThreadPoolExecutor)
        finally:
            executor.shutdown()

    def test_timeout_discards_result(self, monkeypatch):
        real = evaluator.evaluate_strategy_for_segment

        def slow(strategy_id, *args, **kwargs):
            if strategy_id == "supertrend_adx_continuation":
                time.sleep(0.5)
            return real(strategy_id, *args, **kwargs)

        monkeypatch.setattr(evaluator, "evaluate_strategy_for_segment", slow)
        runner = LabRunner(_make_config(eval_timeout_seconds=0.05, min_candle_rows=0))
        report = asyncio.run(
            runner.run(
                {"NIFTY": SegmentData(candles=_candles(30))},
                strategy_ids=["ema_macd_trend_acceleration", "supertrend_adx_continuation"],
            )
        )
        ids = [e.strategy_id for e in report.overall_ranking]
        assert ids == ["ema_macd_trend_acceleration"]
        assert "NIFTY/supertrend_adx_continuation: evaluation exceeded 0.05s deadline." in (
            report.warnings
        )

    def test_failure_becomes_warning(self, monkeypatch):
        def boom(strategy_id, *args, **kwargs):
            raise RuntimeError("bad data")

        monkeypatch.setattr(evaluator, "evaluate_strategy_for_segment", boom)
        runner = LabRunner(_make_config(min_candle_rows=0))
        report = asyncio.run(
            runner.run(
                {"NIFTY": SegmentData(candles=[])},
                strategy_ids=["vwap_delta_reversion"],
            )
        )
        assert report.overall_ranking == []
        assert report.segments[0].best_strategy is None
        assert report.warnings == ["NIFTY/vwap_delta_reversion: evaluation failed (bad data)."]


# ── Serialisation ────────────────────────────────────────────────────────


class TestReportToDict:
    def test_trades_can_be_dropped(self):
        runner = LabRunner(_make_config(min_candle_rows=0))
        report = asyncio.run(
            runner.run(
                {"NIFTY": SegmentData(candles=_candles(100))},
                strategy_ids=["ema_macd_trend_acceleration"],
            )
        )
        full = report_to_dict(report)
        assert "trades" in full["overall_ranking"][0]
        slim = report_to_dict(report, include_trades=False)
        assert "trades" not in slim["overall_ranking"][0]
        assert "trades" not in slim["segments"][0]["evaluations"][0]
        assert "trades" not in slim["segments"][0]["best_strategy"]
        assert slim["segments"][0]["diagnostics"]["candle_rows"] == 100
