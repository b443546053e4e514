"""Daily risk budget — per-calendar-day cap on cumulative entry risk.

Each entry books its per-trade risk percentage against the day it opened
on.  A new entry is allowed only while the booked risk plus the next
trade's risk stays within the daily cap.  The comparison carries a small
epsilon so float accumulation (0.1 + 0.1 + 0.1) does not close a cap the
bookings land on exactly.
"""

CAP_EPSILON = 1e-9


class DailyRiskBudget:
    """Tracks risk usage per session day.

    Args:
        risk_per_trade_pct: Risk booked by each entry (e.g. 0.5 for 0.5 %).
        daily_cap_pct: Maximum cumulative risk per day (e.g. 2.0).
    """

    def __init__(self, risk_per_trade_pct: float, daily_cap_pct: float) -> None:
        if risk_per_trade_pct <= 0:
            raise ValueError(
                f"risk_per_trade_pct must be positive, got {risk_per_trade_pct}"
            )
        self._risk_per_trade = risk_per_trade_pct
        self._daily_cap = daily_cap_pct
        self._used: dict[str, float] = {}

    # ── Mutation ─────────────────────────────────────────────────────────

    def book(self, day: str) -> None:
        """Record one entry's risk against *day*."""
        self._used[day] = self._used.get(day, 0.0) + self._risk_per_trade

    # ── Queries ──────────────────────────────────────────────────────────

    def used(self, day: str) -> float:
        """Risk percentage already booked on *day*."""
        return self._used.get(day, 0.0)

    def can_enter(self, day: str) -> bool:
        """``True`` when one more entry on *day* would stay within the cap."""
        return self.used(day) + self._risk_per_trade <= self._daily_cap + CAP_EPSILON
