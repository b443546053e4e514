"""Internal API routers — /strategies and /strategy-lab/evaluate endpoints.

No business logic. Validates request bodies, converts them into the core
data model, and delegates to ``LabRunner``.
"""

import logging
from dataclasses import asdict
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from strategylab.backtest.evaluator import LabRunner, SegmentData, report_to_dict
from strategylab.config import Config, load_config
from strategylab.strategy.models import (
    SEGMENTS,
    CandleData,
    OIBuildupPoint,
    SnapshotPoint,
)
from strategylab.strategy.registry import STRATEGY_REGISTRY

logger = logging.getLogger("strategylab")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_config: Optional[Config] = None  # Set via configure_routers()


def configure_routers(config: Optional[Config] = None) -> None:
    """Inject the configuration used to build the lab runner.

    Args:
        config: Global ``Config``; when ``None`` it is loaded from the
            environment on first use.
    """
    global _config  # noqa: PLW0603
    _config = config


def _get_config() -> Config:
    global _config  # noqa: PLW0603
    if _config is None:
        _config = load_config()
    return _config


# ── Request bodies ───────────────────────────────────────────────────────


class CandleIn(BaseModel):
    time: str
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class SnapshotIn(BaseModel):
    time: str
    pcr: Optional[float] = None
    buy_qty: Optional[float] = None
    sell_qty: Optional[float] = None
    trade_volume: Optional[float] = None
    max_pain: Optional[float] = None
    ltp: Optional[float] = None


class OIPointIn(BaseModel):
    time: str
    long_oi_change: float = 0.0
    short_oi_change: float = 0.0


class SegmentPayload(BaseModel):
    candles: list[CandleIn]
    snapshots: list[SnapshotIn] = Field(default_factory=list)
    oi_points: list[OIPointIn] = Field(default_factory=list)

    def to_segment_data(self) -> SegmentData:
        return SegmentData(
            candles=[CandleData(**c.model_dump()) for c in self.candles],
            snapshots=[SnapshotPoint(**s.model_dump()) for s in self.snapshots],
            oi_points=[OIBuildupPoint(**p.model_dump()) for p in self.oi_points],
        )


class EvaluateRequest(BaseModel):
    segments: dict[str, SegmentPayload]
    strategy_ids: Optional[list[str]] = None
    profile: Optional[Literal["strict", "balanced"]] = None
    from_iso: Optional[str] = None
    to_iso: Optional[str] = None
    include_trades: bool = False


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/strategies")
async def get_strategies():
    """Return the strategy catalog with engine parameters."""
    return {
        "strategies": [asdict(entry.rule) for entry in STRATEGY_REGISTRY.values()]
    }


@router.post("/strategy-lab/evaluate")
async def evaluate(body: EvaluateRequest):
    """Evaluate the selected strategies on the posted segment data.

    Returns the ranked report.  Unknown segments or strategy ids are
    rejected with HTTP 400 before any simulation runs.
    """
    if not body.segments:
        raise HTTPException(status_code=400, detail="At least one segment is required")

    unknown_segments = [s for s in body.segments if s not in SEGMENTS]
    if unknown_segments:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown segment(s): {', '.join(unknown_segments)}",
        )
    unknown_strategies = [
        s for s in body.strategy_ids or [] if s not in STRATEGY_REGISTRY
    ]
    if unknown_strategies:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown strategy id(s): {', '.join(unknown_strategies)}",
        )

    datasets = {
        segment: payload.to_segment_data() for segment, payload in body.segments.items()
    }
    runner = LabRunner(_get_config())
    report = await runner.run(
        datasets,
        strategy_ids=body.strategy_ids,
        profile=body.profile,
        from_iso=body.from_iso,
        to_iso=body.to_iso,
    )
    logger.info(
        "Evaluated %d segment(s); best overall: %s",
        len(report.segments),
        report.overall_ranking[0].strategy_id if report.overall_ranking else None,
    )
    return report_to_dict(report, include_trades=body.include_trades)
