"""Near-duplicate detection — how much two strategies trade the same moves.

Strategies on one segment are compared pairwise on entry-time overlap,
direction mix, trade count and daily net-R correlation.  The result is
reported next to the ranking; it never changes a strategy's score.
"""

import math
from dataclasses import dataclass

from strategylab.backtest.engine import SimulatedTrade
from strategylab.strategy.models import round2

DUPLICATE_SIMILARITY_THRESHOLD = 72.0
MAX_DUPLICATE_PENALTY = 12.0


@dataclass(frozen=True)
class DuplicatePair:
    """Similarity breakdown for two strategies on one segment (0–100 each)."""

    segment: str
    strategy_a: str
    strategy_b: str
    similarity: float
    entry_overlap_pct: float
    direction_agreement_pct: float
    trade_count_similarity_pct: float
    net_r_correlation_pct: float
    reasons: list[str]


@dataclass(frozen=True)
class DuplicateSummary:
    """Worst and average similarity of one strategy against its peers."""

    segment: str
    strategy_id: str
    max_similarity: float
    average_similarity: float
    near_duplicate_count: int
    duplicate_penalty: float


@dataclass(frozen=True)
class DuplicateAnalysis:
    threshold: float
    pairs: list[DuplicatePair]
    summaries: list[DuplicateSummary]

    @property
    def near_duplicate_pairs(self) -> int:
        return sum(1 for p in self.pairs if p.similarity >= self.threshold)


# ── Pairwise measures ────────────────────────────────────────────────────


def entry_overlap_pct(a: list[SimulatedTrade], b: list[SimulatedTrade]) -> float:
    """Share of entries (same minute, same direction) the smaller side has in common."""
    if not a or not b:
        return 0.0
    keys_a = {_entry_key(t) for t in a}
    keys_b = {_entry_key(t) for t in b}
    shared = len(keys_a & keys_b)
    return round2(shared / max(1, min(len(keys_a), len(keys_b))) * 100)


def direction_agreement_pct(a: list[SimulatedTrade], b: list[SimulatedTrade]) -> float:
    """100 when both sides have the same long/short mix."""
    if not a or not b:
        return 0.0
    long_a = sum(1 for t in a if t.direction == "LONG") / len(a)
    long_b = sum(1 for t in b if t.direction == "LONG") / len(b)
    return round2(_clamp((1 - abs(long_a - long_b)) * 100, 0.0, 100.0))


def trade_count_similarity_pct(count_a: int, count_b: int) -> float:
    if count_a == 0 and count_b == 0:
        return 0.0
    gap = abs(count_a - count_b) / max(1, count_a, count_b)
    return round2(_clamp((1 - gap) * 100, 0.0, 100.0))


def net_r_correlation_pct(a: list[SimulatedTrade], b: list[SimulatedTrade]) -> float:
    """Pearson correlation of daily net R, mapped from [−1, 1] onto 0–100.

    Days where only one side traded count as 0R for the other.  Fewer than
    two trading days give the neutral 50.
    """
    if not a or not b:
        return 0.0
    daily_a = _daily_net_r(a)
    daily_b = _daily_net_r(b)
    days = sorted(set(daily_a) | set(daily_b))
    if len(days) < 2:
        return 50.0
    corr = _pearson(
        [daily_a.get(d, 0.0) for d in days],
        [daily_b.get(d, 0.0) for d in days],
    )
    return round2((corr + 1) / 2 * 100)


def similarity_reasons(
    overlap: float,
    direction: float,
    trade_count: float,
    correlation: float,
) -> list[str]:
    reasons: list[str] = []
    if overlap >= 70:
        reasons.append("entry_time_overlap")
    if direction >= 85:
        reasons.append("directional_alignment")
    if trade_count >= 85:
        reasons.append("trade_frequency_match")
    if correlation >= 75:
        reasons.append("daily_netr_correlation")
    return reasons or ["multi_factor_overlap"]


def duplicate_penalty(
    max_similarity: float,
    near_duplicate_count: int,
    threshold: float = DUPLICATE_SIMILARITY_THRESHOLD,
) -> float:
    """Diagnostic penalty: 0 below *threshold*, capped at ``MAX_DUPLICATE_PENALTY``."""
    if max_similarity < threshold:
        return 0.0
    raw = (max_similarity - threshold) * 0.32 + near_duplicate_count * 0.9
    return round2(_clamp(raw, 0.0, MAX_DUPLICATE_PENALTY))


# ── Segment analysis ─────────────────────────────────────────────────────


def compare_trades(
    segment: str,
    strategy_a: str,
    trades_a: list[SimulatedTrade],
    strategy_b: str,
    trades_b: list[SimulatedTrade],
) -> DuplicatePair:
    overlap = entry_overlap_pct(trades_a, trades_b)
    direction = direction_agreement_pct(trades_a, trades_b)
    trade_count = trade_count_similarity_pct(len(trades_a), len(trades_b))
    correlation = net_r_correlation_pct(trades_a, trades_b)
    similarity = round2(
        overlap * 0.45 + direction * 0.2 + trade_count * 0.2 + correlation * 0.15
    )
    return DuplicatePair(
        segment=segment,
        strategy_a=strategy_a,
        strategy_b=strategy_b,
        similarity=similarity,
        entry_overlap_pct=overlap,
        direction_agreement_pct=direction,
        trade_count_similarity_pct=trade_count,
        net_r_correlation_pct=correlation,
        reasons=similarity_reasons(overlap, direction, trade_count, correlation),
    )


def analyse_duplicates(
    segment: str,
    trades_by_strategy: dict[str, list[SimulatedTrade]],
    threshold: float = DUPLICATE_SIMILARITY_THRESHOLD,
) -> DuplicateAnalysis:
    """Compare every pair of strategies in *trades_by_strategy*.

    Pairs come back most-similar first; summaries are ordered by each
    strategy's worst (highest) similarity.
    """
    ids = list(trades_by_strategy)
    pairs: list[DuplicatePair] = []
    for i, strategy_a in enumerate(ids):
        for strategy_b in ids[i + 1:]:
            pairs.append(
                compare_trades(
                    segment,
                    strategy_a, trades_by_strategy[strategy_a],
                    strategy_b, trades_by_strategy[strategy_b],
                )
            )
    pairs.sort(key=lambda p: -p.similarity)

    summaries: list[DuplicateSummary] = []
    for strategy_id in ids:
        similarities = [
            p.similarity for p in pairs if strategy_id in (p.strategy_a, p.strategy_b)
        ]
        highest = max(similarities, default=0.0)
        average = sum(similarities) / len(similarities) if similarities else 0.0
        near = sum(1 for s in similarities if s >= threshold)
        summaries.append(
            DuplicateSummary(
                segment=segment,
                strategy_id=strategy_id,
                max_similarity=round2(highest),
                average_similarity=round2(average),
                near_duplicate_count=near,
                duplicate_penalty=duplicate_penalty(highest, near, threshold),
            )
        )
    summaries.sort(key=lambda s: -s.max_similarity)

    return DuplicateAnalysis(threshold=threshold, pairs=pairs, summaries=summaries)


# ── Helpers ──────────────────────────────────────────────────────────────


def _entry_key(trade: SimulatedTrade) -> str:
    return f"{trade.entry_time[:16]}|{trade.direction}"


def _daily_net_r(trades: list[SimulatedTrade]) -> dict[str, float]:
    daily: dict[str, float] = {}
    for t in trades:
        day = t.entry_time[:10]
        daily[day] = daily.get(day, 0.0) + t.pnl_r
    return daily


def _pearson(xs: list[float], ys: list[float]) -> float:
    """Correlation coefficient; 0 when either side has no variance."""
    n = len(xs)
    if n < 2:
        return 0.0
    mean_x = sum(xs) / n
    mean_y = sum(ys) / n
    cov = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys))
    var_x = sum((x - mean_x) ** 2 for x in xs)
    var_y = sum((y - mean_y) ** 2 for y in ys)
    if var_x <= 0 or var_y <= 0:
        return 0.0
    corr = cov / math.sqrt(var_x * var_y)
    return _clamp(corr, -1.0, 1.0) if math.isfinite(corr) else 0.0


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))
