"""Strategy registry — maps strategy ids to their rule and checklist.

Used by the evaluator and the API to resolve a strategy id into the catalog
entry the simulator consumes and the checklist that detects its entries.
"""

from dataclasses import dataclass

from strategylab.strategy.rules import STRATEGY_RULES, StrategyRuleSpec
from strategylab.strategy.signals import CHECKLISTS, Checklist


@dataclass(frozen=True)
class StrategyEntry:
    """Catalog rule paired with its checklist function."""

    rule: StrategyRuleSpec
    detector: Checklist


STRATEGY_REGISTRY: dict[str, StrategyEntry] = {
    rule.id: StrategyEntry(rule=rule, detector=CHECKLISTS[rule.id])
    for rule in STRATEGY_RULES
}


def get_strategy(strategy_id: str) -> StrategyEntry:
    """Look up a strategy by registry key.

    Raises ``KeyError`` if the strategy id is not registered.
    """
    if strategy_id not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{strategy_id}'. "
            f"Available: {', '.join(STRATEGY_REGISTRY.keys())}"
        )
    return STRATEGY_REGISTRY[strategy_id]
