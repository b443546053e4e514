"""StrategyLab — application configuration.

Loads .env variables into a typed config object.
Validates values on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from strategylab.strategy.models import EXECUTION_PROFILES

EXECUTOR_KINDS = ("thread", "process")


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    profile: str  # "strict" or "balanced"
    max_workers: int
    eval_timeout_seconds: float
    min_candle_rows: int
    no_loss_profit_factor: float
    data_dir: str
    log_level: str
    api_port: int
    executor: str = "thread"  # "thread" or "process"


def _env_int(name: str, default: str, minimum: int) -> int:
    raw = os.environ.get(name, default)
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{raw}'") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the offending variable when
    a value is malformed or out of range.
    """
    load_dotenv(dotenv_path=env_path)

    profile = os.environ.get("LAB_PROFILE", "strict").strip().lower()
    if profile not in EXECUTION_PROFILES:
        raise ValueError(
            f"LAB_PROFILE must be one of {', '.join(EXECUTION_PROFILES)}, "
            f"got '{profile}'"
        )

    executor = os.environ.get("LAB_EXECUTOR", "thread").strip().lower()
    if executor not in EXECUTOR_KINDS:
        raise ValueError(
            f"LAB_EXECUTOR must be one of {', '.join(EXECUTOR_KINDS)}, "
            f"got '{executor}'"
        )

    return Config(
        profile=profile,
        max_workers=_env_int("LAB_MAX_WORKERS", "4", 1),
        eval_timeout_seconds=_env_float("LAB_EVAL_TIMEOUT_SECONDS", "60"),
        min_candle_rows=_env_int("LAB_MIN_CANDLE_ROWS", "200", 0),
        no_loss_profit_factor=_env_float("NO_LOSS_PROFIT_FACTOR", "9.99"),
        data_dir=os.environ.get("DATA_DIR", "data"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_env_int("API_PORT", "8080", 1),
        executor=executor,
    )
