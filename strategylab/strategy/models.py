"""Strategy data models — typed representations of market inputs."""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional

Direction = Literal["LONG", "SHORT"]
Outcome = Literal["WIN", "LOSS", "SCRATCH"]
TrailingMode = Literal["NONE", "EMA9", "EMA21", "SUPERTREND"]
ExecutionProfile = Literal["strict", "balanced"]

EXECUTION_PROFILES: tuple[str, ...] = ("strict", "balanced")


@dataclass(frozen=True)
class CandleData:
    """A single candlestick bar for strategy consumption."""

    time: str
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class SnapshotPoint:
    """Point-in-time option-chain sentiment snapshot for a segment."""

    time: str
    pcr: Optional[float] = None
    buy_qty: Optional[float] = None
    sell_qty: Optional[float] = None
    trade_volume: Optional[float] = None
    max_pain: Optional[float] = None
    ltp: Optional[float] = None


@dataclass(frozen=True)
class OIBuildupPoint:
    """Aggregated open-interest change at one timestamp."""

    time: str
    long_oi_change: float
    short_oi_change: float


# ── Segment metadata ─────────────────────────────────────────────────────

SEGMENTS: dict[str, str] = {
    "NIFTY": "NIFTY 50",
    "BANKNIFTY": "BANK NIFTY",
    "SENSEX": "SENSEX",
    "MIDCPNIFTY": "NIFTY MIDCAP SELECT",
}


# ── Time helpers ─────────────────────────────────────────────────────────


def parse_time(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are treated as UTC.

    Returns ``None`` when *value* cannot be parsed.
    """
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_epoch_ms(value: str) -> int:
    """Milliseconds since the epoch for *value*, or 0 if unparseable."""
    parsed = parse_time(value)
    if parsed is None:
        return 0
    return int(parsed.timestamp() * 1000)


def from_epoch_ms(ms: int) -> str:
    """ISO-8601 UTC string (``Z`` suffix) for an epoch-millisecond value."""
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def session_key(value: str) -> str:
    """Calendar date (``YYYY-MM-DD``) of a timestamp in its own offset."""
    parsed = parse_time(value)
    if parsed is None:
        return value[:10]
    return parsed.date().isoformat()


# ── Numeric helpers ──────────────────────────────────────────────────────


def round2(value: float) -> float:
    """Round to 2 decimals with halves going up; non-finite values become 0.

    ``round()`` rounds half to even (``round(0.125, 2) == 0.12``), which
    would shift reported prices and R values by a cent on exact halves.
    """
    if not math.isfinite(value):
        return 0.0
    return math.floor(value * 100 + 0.5) / 100
