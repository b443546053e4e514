"""StrategyLab — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for the
serve and backtest modes.
"""

import logging

from fastapi import FastAPI

from strategylab.api.routers import router

app = FastAPI(title="StrategyLab Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("strategylab")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse

    from strategylab.config import load_config
    from strategylab.strategy.models import EXECUTION_PROFILES, SEGMENTS

    parser = argparse.ArgumentParser(description="StrategyLab strategy evaluator")
    parser.add_argument(
        "--mode",
        choices=["serve", "backtest"],
        default="serve",
        help="Run the API server or a one-off backtest (default: serve)",
    )
    parser.add_argument(
        "--segments",
        nargs="+",
        choices=list(SEGMENTS),
        default=list(SEGMENTS),
        help="Segments to evaluate in backtest mode",
    )
    parser.add_argument(
        "--strategies",
        nargs="+",
        help="Strategy ids to evaluate (default: all)",
    )
    parser.add_argument("--profile", choices=list(EXECUTION_PROFILES))
    parser.add_argument("--data-dir", help="Directory holding <SEGMENT>_*.csv exports")
    parser.add_argument("--from", dest="from_iso", help="Window start (ISO-8601)")
    parser.add_argument("--to", dest="to_iso", help="Window end (ISO-8601)")
    parser.add_argument("--output", help="Write the JSON report to this path")
    args = parser.parse_args(argv)

    config = load_config()

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.mode == "backtest":
        _run_backtest(config, args)
    else:
        _serve(config)


def _serve(config) -> None:
    """Start the API server."""
    import uvicorn

    from strategylab.api.routers import configure_routers

    configure_routers(config)
    logger.info("Starting StrategyLab API on port %d (profile=%s).",
                config.api_port, config.profile)
    uvicorn.run(app, host="0.0.0.0", port=config.api_port, log_level="info")


def _run_backtest(config, args) -> None:
    """Load CSV exports, run the lab, and log the ranking."""
    import asyncio
    import json
    from pathlib import Path

    from strategylab.backtest.evaluator import LabRunner, report_to_dict
    from strategylab.data.loader import load_segment

    data_dir = args.data_dir or config.data_dir
    datasets = {segment: load_segment(data_dir, segment) for segment in args.segments}

    runner = LabRunner(config)
    report = asyncio.run(
        runner.run(
            datasets,
            strategy_ids=args.strategies,
            profile=args.profile,
            from_iso=args.from_iso,
            to_iso=args.to_iso,
        )
    )

    for warning in report.warnings:
        logger.warning(warning)
    for rank, item in enumerate(report.overall_ranking, start=1):
        logger.info(
            "#%d %s on %s: score %.2f (reliability %.0f), %d trades, net %.2fR, win rate %.1f%%",
            rank,
            item.strategy_id,
            item.segment,
            item.score,
            item.reliability_score,
            item.kpis.trades,
            item.kpis.net_r,
            item.kpis.win_rate,
        )

    if args.output:
        Path(args.output).write_text(
            json.dumps(report_to_dict(report), indent=2), encoding="utf-8",
        )
        logger.info("Report written to %s", args.output)


if __name__ == "__main__":
    _run_cli()
