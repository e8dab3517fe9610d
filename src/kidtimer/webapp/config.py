"""Configuration constants for the KidTimer web frontend."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "on", "yes"}


SESSION_SECRET = os.environ.get("SESSION_SECRET", "change-this-session-secret")
SQLITE_FILE_NAME = os.environ.get("KIDTIMER_SQLITE", "kidtimer.db")
ACCESS_PIN = os.environ.get("KIDTIMER_ACCESS_PIN", "1234")
TICK_SECONDS = _env_float("KIDTIMER_TICK_SECONDS", 1.0)
# Number of ticks between remaining-time checkpoints; 0 disables them.
CHECKPOINT_TICKS = _env_int("KIDTIMER_CHECKPOINT_TICKS", 30)
PERSIST_REMAINING_ON_PAUSE = _env_flag("KIDTIMER_PERSIST_REMAINING_ON_PAUSE", True)
LOGIN_MAX_ATTEMPTS = _env_int("KIDTIMER_LOGIN_MAX_ATTEMPTS", 5)
LOGIN_LOCKOUT_MINUTES = _env_int("KIDTIMER_LOGIN_LOCKOUT_MINUTES", 15)
SEED_CURATED_ACTIVITIES = _env_flag("KIDTIMER_SEED_CURATED", True)

_log_path_raw = os.environ.get("KIDTIMER_LOG_PATH", "").strip()
LOG_PATH: Optional[Path] = Path(_log_path_raw) if _log_path_raw else None

__all__ = [
    "SESSION_SECRET",
    "SQLITE_FILE_NAME",
    "ACCESS_PIN",
    "TICK_SECONDS",
    "CHECKPOINT_TICKS",
    "PERSIST_REMAINING_ON_PAUSE",
    "LOGIN_MAX_ATTEMPTS",
    "LOGIN_LOCKOUT_MINUTES",
    "SEED_CURATED_ACTIVITIES",
    "LOG_PATH",
]
