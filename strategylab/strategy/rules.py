"""Strategy rule catalog — declarative entries loaded once at import time.

Each entry pairs human-readable rules (informational only) with the
engine parameters the simulator consumes.
"""

from dataclasses import dataclass, field
from typing import Literal

QualityRating = Literal["A+", "A", "B+"]


@dataclass(frozen=True)
class StrategyEngineConfig:
    """Machine-readable parameters for one strategy."""

    execution_interval_min: int
    higher_intervals_min: tuple[int, ...]
    atr_period: int
    stop_atr_mult: float
    target_r: float
    max_bars_in_trade: int
    min_bars_between_trades: int
    risk_per_trade_pct: float
    daily_risk_cap_pct: float
    params: dict[str, float] = field(default_factory=dict)

    def param(self, name: str, default: float) -> float:
        """Return ``params[name]`` or *default* when it is not configured."""
        return self.params.get(name, default)


@dataclass(frozen=True)
class StrategyRuleSpec:
    """One catalog entry."""

    id: str
    name: str
    quality_rating: QualityRating
    market_environment: str
    indicators: tuple[str, ...]
    multi_timeframe_alignment: str
    long_entry_rules: tuple[str, ...]
    short_entry_rules: tuple[str, ...]
    risk_model: tuple[str, ...]
    trade_management: tuple[str, ...]
    invalidation_rules: tuple[str, ...]
    engine: StrategyEngineConfig


STRATEGY_RULES: tuple[StrategyRuleSpec, ...] = (
    StrategyRuleSpec(
        id="ema_macd_trend_acceleration",
        name="EMA-MACD Trend Acceleration",
        quality_rating="A+",
        market_environment="Trending expansion",
        indicators=("EMA (9/21)", "MACD", "ADX", "ATR"),
        multi_timeframe_alignment=(
            "15m and 60m EMA stack must align with execution direction before 5m trigger."
        ),
        long_entry_rules=(
            "Price closes above 9 EMA and 21 EMA on 5m.",
            "MACD histogram is above zero and expanding vs prior bar.",
            "MACD line is above or crossing above the signal line.",
            "ADX is above 25 on execution timeframe.",
        ),
        short_entry_rules=(
            "Price closes below 9 EMA and 21 EMA on 5m.",
            "MACD histogram is below zero and expanding downward.",
            "MACD line is below or crossing below the signal line.",
            "ADX is above 25 on execution timeframe.",
        ),
        risk_model=(
            "Stop at recent swing extreme or ATR buffer, whichever is wider.",
            "Per-trade risk budget 0.5% with 2.0% daily cap.",
        ),
        trade_management=(
            "Trail with 9 EMA once trade reaches +1R.",
            "Force exit at end of session.",
        ),
        invalidation_rules=(
            "ADX below 20 blocks any entry.",
            "Higher timeframe EMA stack loses directional alignment.",
        ),
        engine=StrategyEngineConfig(
            execution_interval_min=5,
            higher_intervals_min=(15, 60),
            atr_period=14,
            stop_atr_mult=1.0,
            target_r=2.2,
            max_bars_in_trade=30,
            min_bars_between_trades=3,
            risk_per_trade_pct=0.5,
            daily_risk_cap_pct=2.0,
            params={"minAdx": 25, "invalidationAdx": 20, "minMacdHistSlope": 0.02},
        ),
    ),
    StrategyRuleSpec(
        id="supertrend_adx_continuation",
        name="Supertrend-ADX Continuation",
        quality_rating="A+",
        market_environment="Directional continuation after pullback",
        indicators=("Supertrend", "ADX", "EMA (21)", "ATR"),
        multi_timeframe_alignment=(
            "60m trend filter with ADX > 30 before 5m Supertrend trigger."
        ),
        long_entry_rules=(
            "Supertrend flips bullish on 5m.",
            "Price closes above 21 EMA and above prior candle high.",
            "ADX is rising and above threshold.",
        ),
        short_entry_rules=(
            "Supertrend flips bearish on 5m.",
            "Price closes below 21 EMA and below prior candle low.",
            "ADX is rising and above threshold.",
        ),
        risk_model=(
            "Initial stop uses Supertrend line and ATR buffer.",
            "Per-trade risk budget 0.6% with daily 2.0% cap.",
        ),
        trade_management=(
            "Trail with Supertrend line every bar once +1R is reached.",
        ),
        invalidation_rules=(
            "ADX turns down before trigger close.",
            "Price fails to hold beyond 21 EMA after flip.",
        ),
        engine=StrategyEngineConfig(
            execution_interval_min=5,
            higher_intervals_min=(60,),
            atr_period=14,
            stop_atr_mult=1.0,
            target_r=2.0,
            max_bars_in_trade=36,
            min_bars_between_trades=4,
            risk_per_trade_pct=0.6,
            daily_risk_cap_pct=2.0,
            params={
                "supertrendFactor": 3,
                "supertrendAtrPeriod": 10,
                "minAdx": 24,
                "higherTfAdx": 30,
            },
        ),
    ),
    StrategyRuleSpec(
        id="vwap_delta_reversion",
        name="VWAP Delta Reversion",
        quality_rating="A",
        market_environment="Liquidity sweep reversal / opening drive exhaustion",
        indicators=("VWAP", "RSI", "MACD", "ATR", "PCR", "Buy/Sell flow proxy"),
        multi_timeframe_alignment=(
            "60m context identifies overextension from value; 3m trigger confirms reclaim."
        ),
        long_entry_rules=(
            "Price stretches below session VWAP by at least 1 ATR then reclaims VWAP.",
            "RSI shows bullish divergence near sweep low.",
            "PCR is elevated or order-flow skew shows panic selling.",
            "MACD histogram is rising on the trigger candle.",
        ),
        short_entry_rules=(
            "Price stretches above session VWAP by at least 1 ATR then loses VWAP.",
            "RSI shows bearish divergence near sweep high.",
            "PCR is depressed or order-flow skew shows euphoric buying.",
            "MACD histogram is falling on the trigger candle.",
        ),
        risk_model=(
            "Stop at sweep extreme with ATR padding.",
            "Per-trade risk budget 0.35% with 1.5% daily cap.",
        ),
        trade_management=(
            "Trail with fast EMA(9) after +1R.",
            "Immediate exit on failed VWAP hold after reclaim/rejection.",
        ),
        invalidation_rules=(
            "VWAP reclaim/rejection fails after the entry bar.",
        ),
        engine=StrategyEngineConfig(
            execution_interval_min=3,
            higher_intervals_min=(60,),
            atr_period=14,
            stop_atr_mult=0.8,
            target_r=1.8,
            max_bars_in_trade=22,
            min_bars_between_trades=5,
            risk_per_trade_pct=0.35,
            daily_risk_cap_pct=1.5,
            params={
                "vwapStretchAtr": 1,
                "rsiDivergenceLookback": 18,
                "pcrUpperExtreme": 1.3,
                "pcrLowerExtreme": 0.75,
            },
        ),
    ),
    StrategyRuleSpec(
        id="gamma_expansion_breakout",
        name="Gamma Expansion Breakout",
        quality_rating="A+",
        market_environment="Compression to volatility expansion",
        indicators=("Bollinger Bands", "ADX", "OBV", "EMA (9/21)", "ATR"),
        multi_timeframe_alignment=(
            "15m structure must be in consolidation before 5m breakout trigger."
        ),
        long_entry_rules=(
            "Bollinger bandwidth is in compression state.",
            "ADX is below 20 and hooks higher pre-breakout.",
            "OBV breaks local resistance.",
            "5m candle closes above upper Bollinger band with EMA9 above EMA21.",
        ),
        short_entry_rules=(
            "Bollinger bandwidth is in compression state.",
            "ADX is below 20 and hooks higher pre-breakdown.",
            "OBV breaks local support.",
            "5m candle closes below lower Bollinger band with EMA9 below EMA21.",
        ),
        risk_model=(
            "Stop 1.5 ATR beyond 21 EMA.",
            "Per-trade risk 1.0%, capped by 2.0% daily risk.",
        ),
        trade_management=(
            "Trail with EMA9 after +1R.",
            "Exit if ADX fails to expand within three bars.",
        ),
        invalidation_rules=(
            "ADX does not clear 25 within three bars after trigger.",
        ),
        engine=StrategyEngineConfig(
            execution_interval_min=5,
            higher_intervals_min=(15,),
            atr_period=14,
            stop_atr_mult=1.5,
            target_r=2.4,
            max_bars_in_trade=24,
            min_bars_between_trades=6,
            risk_per_trade_pct=1.0,
            daily_risk_cap_pct=2.0,
            params={
                "squeezeBandwidthPct": 0.015,
                "preBreakAdxMax": 20,
                "postBreakAdxMin": 25,
                "breakoutVolumeMult": 1.5,
            },
        ),
    ),
    StrategyRuleSpec(
        id="pcr_oi_sentiment_reversal",
        name="PCR-OI Sentiment Reversal",
        quality_rating="A",
        market_environment="Sentiment extremes with momentum reversal",
        indicators=("PCR", "OI buildup", "RSI", "MACD", "EMA (9/21)", "ATR"),
        multi_timeframe_alignment=(
            "60m bias tracks sentiment extremes; 5m trigger requires momentum confirmation."
        ),
        long_entry_rules=(
            "PCR is at bullish-reversal extreme (crowded bearish side).",
            "Short buildup pressure dominates in recent OI window.",
            "RSI recovers from oversold and MACD histogram turns up.",
            "Price reclaims EMA9 above EMA21 on trigger bar.",
        ),
        short_entry_rules=(
            "PCR is at bearish-reversal extreme (crowded bullish side).",
            "Long buildup pressure dominates in recent OI window.",
            "RSI rolls from overbought and MACD histogram turns down.",
            "Price loses EMA9 below EMA21 on trigger bar.",
        ),
        risk_model=(
            "Stop beyond reversal pivot with ATR buffer.",
            "Per-trade risk 0.4% with daily 1.5% cap.",
        ),
        trade_management=(
            "Trail with EMA21 after +1R.",
        ),
        invalidation_rules=(
            "Missing PCR data blocks the setup.",
            "OI pressure does not align with reversal thesis.",
        ),
        engine=StrategyEngineConfig(
            execution_interval_min=5,
            higher_intervals_min=(60,),
            atr_period=14,
            stop_atr_mult=1.0,
            target_r=2.0,
            max_bars_in_trade=30,
            min_bars_between_trades=8,
            risk_per_trade_pct=0.4,
            daily_risk_cap_pct=1.5,
            params={
                "pcrUpperExtreme": 1.35,
                "pcrLowerExtreme": 0.72,
                "minRsiForLongRecovery": 32,
                "maxRsiForShortFade": 68,
            },
        ),
    ),
)


STRATEGY_RULES_BY_ID: dict[str, StrategyRuleSpec] = {
    rule.id: rule for rule in STRATEGY_RULES
}


def get_rule(strategy_id: str) -> StrategyRuleSpec:
    """Look up a catalog entry by id.

    Raises ``KeyError`` if the id is not in the catalog.
    """
    if strategy_id not in STRATEGY_RULES_BY_ID:
        raise KeyError(
            f"Unknown strategy '{strategy_id}'. "
            f"Available: {', '.join(STRATEGY_RULES_BY_ID.keys())}"
        )
    return STRATEGY_RULES_BY_ID[strategy_id]
