"""Tests for the strategy rule catalog and the strategy registry."""

import pytest

from strategylab.strategy.registry import STRATEGY_REGISTRY, get_strategy
from strategylab.strategy.rules import STRATEGY_RULES, STRATEGY_RULES_BY_ID, get_rule
from strategylab.strategy.signals import detect_signal


class TestCatalog:
    def test_five_strategies_with_unique_ids(self):
        ids = [r.id for r in STRATEGY_RULES]
        assert len(ids) == 5
        assert len(set(ids)) == 5
        assert set(ids) == set(STRATEGY_RULES_BY_ID)

    def test_engine_parameters_sane(self):
        for rule in STRATEGY_RULES:
            e = rule.engine
            assert e.execution_interval_min in (3, 5)
            assert e.target_r > 1
            assert 0 < e.risk_per_trade_pct <= e.daily_risk_cap_pct
            assert e.max_bars_in_trade > 0
            assert e.min_bars_between_trades > 0
            assert all(h > e.execution_interval_min for h in e.higher_intervals_min)

    def test_gamma_breakout_parameters(self):
        e = get_rule("gamma_expansion_breakout").engine
        assert e.stop_atr_mult == 1.5
        assert e.target_r == 2.4
        assert e.higher_intervals_min == (15,)
        assert e.param("squeezeBandwidthPct", 0) == 0.015

    def test_param_default_when_missing(self):
        e = get_rule("ema_macd_trend_acceleration").engine
        assert e.param("doesNotExist", 7.5) == 7.5

    def test_get_rule_unknown_raises(self):
        with pytest.raises(KeyError, match="Available"):
            get_rule("nope")


class TestRegistry:
    def test_every_rule_registered(self):
        assert set(STRATEGY_REGISTRY) == set(STRATEGY_RULES_BY_ID)
        for strategy_id, entry in STRATEGY_REGISTRY.items():
            assert entry.rule.id == strategy_id
            assert callable(entry.detector)

    def test_get_strategy(self):
        entry = get_strategy("vwap_delta_reversion")
        assert entry.rule.engine.execution_interval_min == 3

    def test_get_strategy_unknown_raises(self):
        with pytest.raises(KeyError, match="Unknown strategy 'bogus'"):
            get_strategy("bogus")

    def test_unknown_id_rejected_by_detector(self):
        rule = get_rule("ema_macd_trend_acceleration")
        result = detect_signal("bogus", None, rule, 10, "strict")
        assert result.reason == "unsupported_strategy"
