"""Trailing stop — progressive SL management for an open position.

Rules:
  - Nothing moves until the close has travelled at least 1×R in favour.
  - From then on the stop follows the trailing line, ratcheting only in
    the trade's favour.
"""

from strategylab.strategy.models import Direction, TrailingMode


class TrailingStop:
    """Tracks and updates the stop for a single position.

    Args:
        entry_price: Original entry price.
        initial_sl: Resolved stop-loss at entry.
        direction: ``"LONG"`` or ``"SHORT"``.
        mode: Which indicator line the stop follows once armed.
    """

    def __init__(
        self,
        entry_price: float,
        initial_sl: float,
        direction: Direction,
        mode: TrailingMode = "NONE",
    ) -> None:
        self.entry_price = entry_price
        self.initial_sl = initial_sl
        self.direction = direction
        self.mode = mode
        self.current_sl = initial_sl
        self.reached_one_r = False
        self._risk = abs(entry_price - initial_sl)

    def update(self, close: float, trail_value: float | None) -> float | None:
        """Evaluate the bar close and return the new SL if it moved.

        Args:
            close: Close of the current bar.
            trail_value: Current value of the trailing line, or ``None`` when
                the mode has no line.

        Returns:
            New SL price if the stop was tightened, ``None`` if unchanged.
        """
        if self.direction == "LONG":
            favourable = close - self.entry_price
        else:
            favourable = self.entry_price - close

        if not self.reached_one_r and favourable >= self._risk:
            self.reached_one_r = True

        if not self.reached_one_r or self.mode == "NONE" or trail_value is None:
            return None

        if self.direction == "LONG" and trail_value > self.current_sl:
            self.current_sl = trail_value
            return trail_value
        if self.direction == "SHORT" and trail_value < self.current_sl:
            self.current_sl = trail_value
            return trail_value
        return None
