"""Paths and default settings."""

import os
from pathlib import Path

from platformdirs import user_data_dir

APP_NAME = "live-check"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


DATA_DIR = Path(os.getenv("LIVE_CHECK_DATA_DIR") or user_data_dir(APP_NAME))
DB_PATH = DATA_DIR / "reviews.db"
LOG_DIR = DATA_DIR / "logs"
LOG_FILE = LOG_DIR / "server.log"
LOG_RETENTION_DAYS = max(1, _env_int("LIVE_CHECK_LOG_RETENTION_DAYS", 14))

# Inspector budget (seconds)
NAVIGATION_TIMEOUT_SECONDS = max(1.0, _env_float("LIVE_CHECK_NAVIGATION_TIMEOUT", 30.0))
SETTLE_DELAY_SECONDS = max(0.0, _env_float("LIVE_CHECK_SETTLE_DELAY", 3.0))
MARKER_WAIT_SECONDS = max(0.0, _env_float("LIVE_CHECK_MARKER_WAIT", 5.0))
# Headroom for browser launch + teardown inside the per-call hard timeout.
LAUNCH_BUDGET_SECONDS = 15.0
HEADLESS = _env_bool("LIVE_CHECK_HEADLESS", True)

# A review is live when its like/share action button has rendered.
PRESENCE_MARKER = "button.gllhef[data-review-id]"
NOT_FOUND_TEXTS = [
    "Google Maps can't find this link",
    "Review not found",
    "Place not found",
    "doesn't exist",
]

# Run defaults
DEFAULT_CONCURRENCY = 3
MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 10
MAX_RETRIES = 2

# Advisory edit locks (seconds)
LOCK_TTL_SECONDS = 5 * 60
LOCK_SWEEP_SECONDS = 60

# Server
HOST = "127.0.0.1"
PORT = _env_int("LIVE_CHECK_PORT", 8000)


def ensure_dirs() -> None:
    """Create required directories on first run."""
    for d in (DATA_DIR, LOG_DIR):
        d.mkdir(parents=True, exist_ok=True)


def clamp_concurrency(value: int) -> int:
    return max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, int(value)))
