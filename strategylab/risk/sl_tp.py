"""Stop-loss and take-profit calculation — pure math, no I/O.

The signal layer proposes a stop; the simulator resolves it against the
entry price before sizing the trade in R units.
"""

import math

from strategylab.strategy.models import Direction

FALLBACK_STOP_PCT = 0.005
MIN_RISK_POINTS = 0.05
MIN_RISK_PCT_OF_ENTRY = 0.0002


def initial_stop(
    direction: Direction,
    close: float,
    swing_extreme: float,
    atr: float,
    atr_mult: float,
) -> float:
    """Wider of the swing extreme and an ATR buffer from *close*.

    A long stop sits at ``min(swing_low, close − atr × mult)``; a short stop
    at ``max(swing_high, close + atr × mult)``, so the stop is never tighter
    than the ATR floor.
    """
    if direction == "LONG":
        return min(swing_extreme, close - atr * atr_mult)
    return max(swing_extreme, close + atr * atr_mult)


def resolve_stop(direction: Direction, entry_price: float, stop_loss: float) -> float:
    """Return *stop_loss* if it is finite and on the losing side of entry.

    Otherwise substitute a fixed ``FALLBACK_STOP_PCT`` offset from entry.
    """
    if direction == "LONG":
        if not math.isfinite(stop_loss) or stop_loss >= entry_price:
            return entry_price * (1 - FALLBACK_STOP_PCT)
        return stop_loss
    if not math.isfinite(stop_loss) or stop_loss <= entry_price:
        return entry_price * (1 + FALLBACK_STOP_PCT)
    return stop_loss


def min_risk_points(entry_price: float) -> float:
    """Noise floor below which a per-unit risk is not tradable."""
    return max(MIN_RISK_POINTS, entry_price * MIN_RISK_PCT_OF_ENTRY)


def calculate_take_profit(
    direction: Direction,
    entry_price: float,
    risk_points: float,
    target_r: float,
) -> float:
    """Fixed target ``entry ± risk × target_r``."""
    if direction == "LONG":
        return entry_price + risk_points * target_r
    return entry_price - risk_points * target_r
