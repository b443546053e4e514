"""CSV ingestion for candles, sentiment snapshots, and OI buildup.

Reads the per-segment exports the CLI backtest consumes:

    <data_dir>/<SEGMENT>_candles.csv    time, open, high, low, close, volume
    <data_dir>/<SEGMENT>_snapshots.csv  time, pcr, buy_qty, sell_qty, trade_volume, max_pain, ltp
    <data_dir>/<SEGMENT>_oi.csv         time, bucket (LONG/SHORT), oi_change

``candle_time`` / ``snapshot_at`` are accepted as aliases for ``time``.
Rows with unparseable timestamps or missing prices are dropped; every
series comes back sorted ascending by time.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Optional

import pandas as pd

from strategylab.backtest.evaluator import SegmentData
from strategylab.strategy.models import CandleData, OIBuildupPoint, SnapshotPoint

logger = logging.getLogger("strategylab.data")

_TIME_ALIASES = ("candle_time", "snapshot_at")
_SNAPSHOT_FIELDS = ("pcr", "buy_qty", "sell_qty", "trade_volume", "max_pain", "ltp")


# ── Frame normalisation ──────────────────────────────────────────────────


def _normalise(df: pd.DataFrame) -> pd.DataFrame:
    """Lower-case columns, resolve the time alias, sort by parsed time."""
    df = df.copy()
    df.columns = [str(c).strip().lower() for c in df.columns]
    if "time" not in df.columns:
        for alias in _TIME_ALIASES:
            if alias in df.columns:
                df = df.rename(columns={alias: "time"})
                break
    if "time" not in df.columns:
        raise ValueError("CSV is missing a 'time' column")

    df["time"] = df["time"].astype(str).str.strip()
    df["_ts"] = pd.to_datetime(df["time"], utc=True, errors="coerce", format="ISO8601")
    dropped = int(df["_ts"].isna().sum())
    if dropped:
        logger.warning("Dropped %d row(s) with unparseable timestamps.", dropped)
    df = df.dropna(subset=["_ts"])
    return df.sort_values("_ts", kind="stable").reset_index(drop=True)


def _optional(value) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def candles_from_frame(df: pd.DataFrame) -> list[CandleData]:
    """Convert a candle frame into ``CandleData``; volume defaults to 0."""
    if df.empty:
        return []
    df = _normalise(df)
    for col in ("open", "high", "low", "close", "volume"):
        if col not in df.columns:
            df[col] = 0.0 if col == "volume" else float("nan")
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df["volume"] = df["volume"].fillna(0.0)
    df = df.dropna(subset=["open", "high", "low", "close"])
    return [
        CandleData(
            time=row.time,
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df.itertuples(index=False)
    ]


def snapshots_from_frame(df: pd.DataFrame) -> list[SnapshotPoint]:
    """Convert a snapshot frame; missing numeric fields become ``None``."""
    if df.empty:
        return []
    df = _normalise(df)
    out: list[SnapshotPoint] = []
    for record in df.to_dict(orient="records"):
        out.append(
            SnapshotPoint(
                time=record["time"],
                **{name: _optional(record.get(name)) for name in _SNAPSHOT_FIELDS},
            )
        )
    return out


def oi_points_from_frame(df: pd.DataFrame) -> list[OIBuildupPoint]:
    """Aggregate bucketed OI rows into one point per timestamp.

    ``LONG`` rows sum into ``long_oi_change`` and ``SHORT`` rows into
    ``short_oi_change``; other buckets are ignored but still create the
    timestamp.
    """
    if df.empty:
        return []
    df = _normalise(df)
    if "bucket" not in df.columns:
        df["bucket"] = ""
    df["bucket"] = df["bucket"].fillna("").astype(str).str.strip().str.upper()
    if "oi_change" not in df.columns:
        df["oi_change"] = 0.0
    df["oi_change"] = pd.to_numeric(df["oi_change"], errors="coerce").fillna(0.0)
    df["long"] = df["oi_change"].where(df["bucket"] == "LONG", 0.0)
    df["short"] = df["oi_change"].where(df["bucket"] == "SHORT", 0.0)

    grouped = (
        df.groupby("time", sort=False)
        .agg(_ts=("_ts", "first"), long=("long", "sum"), short=("short", "sum"))
        .sort_values("_ts", kind="stable")
    )
    return [
        OIBuildupPoint(
            time=str(time),
            long_oi_change=float(row["long"]),
            short_oi_change=float(row["short"]),
        )
        for time, row in grouped.iterrows()
    ]


# ── File loaders ─────────────────────────────────────────────────────────


def _read(path: Path) -> pd.DataFrame:
    if not path.exists():
        logger.info("%s not found; treating as empty.", path)
        return pd.DataFrame()
    return pd.read_csv(path)


def load_segment(data_dir: str | Path, segment: str) -> SegmentData:
    """Load ``<data_dir>/<segment>_{candles,snapshots,oi}.csv``.

    Missing files yield empty series; the evaluator turns short data into
    warnings.
    """
    base = Path(data_dir)
    candles = candles_from_frame(_read(base / f"{segment}_candles.csv"))
    snapshots = snapshots_from_frame(_read(base / f"{segment}_snapshots.csv"))
    oi_points = oi_points_from_frame(_read(base / f"{segment}_oi.csv"))
    logger.info(
        "%s: loaded %d candle(s), %d snapshot(s), %d OI point(s).",
        segment, len(candles), len(snapshots), len(oi_points),
    )
    return SegmentData(candles=candles, snapshots=snapshots, oi_points=oi_points)
