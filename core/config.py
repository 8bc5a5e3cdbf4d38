# core/config.py
from __future__ import annotations

import logging
import os
from functools import lru_cache

from pydantic import BaseModel, Field, field_validator

DEFAULT_BACKEND_URL = "https://stockbot-backend-39ec.onrender.com"


class DashboardSettings(BaseModel):
    backend_url: str = DEFAULT_BACKEND_URL
    request_timeout: float = Field(default=15.0, gt=0)
    poll_interval: float = Field(default=3.0, gt=0)
    # None polls until a terminal status arrives
    max_polls: int | None = Field(default=None, ge=1)
    symbols_file: str = "nifty100.csv"
    history_path: str = "/backtests"
    health_path: str = "/health"
    started_refresh_delay: float = Field(default=4.0, ge=0)
    default_strategy: str = "swing"

    @field_validator("backend_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("backend_url must not be empty")
        return value.rstrip("/")


def _env(name: str, legacy_name: str | None = None) -> str | None:
    val = os.getenv(name)
    if val is not None:
        return val
    if legacy_name:
        return os.getenv(legacy_name)
    return None


def load_settings() -> DashboardSettings:
    payload: dict[str, object] = {}
    backend = _env("BACKTEST_DASHBOARD_BACKEND_URL", "VITE_BACKEND_URL")
    if backend:
        payload["backend_url"] = backend
    overrides = {
        "poll_interval": "BACKTEST_DASHBOARD_POLL_INTERVAL",
        "max_polls": "BACKTEST_DASHBOARD_MAX_POLLS",
        "request_timeout": "BACKTEST_DASHBOARD_REQUEST_TIMEOUT",
        "symbols_file": "BACKTEST_DASHBOARD_SYMBOLS_FILE",
        "history_path": "BACKTEST_DASHBOARD_HISTORY_PATH",
        "health_path": "BACKTEST_DASHBOARD_HEALTH_PATH",
        "started_refresh_delay": "BACKTEST_DASHBOARD_STARTED_REFRESH_DELAY",
        "default_strategy": "BACKTEST_DASHBOARD_DEFAULT_STRATEGY",
    }
    for field, env_name in overrides.items():
        raw = _env(env_name)
        if raw:
            payload[field] = raw
    return DashboardSettings(**payload)


@lru_cache(maxsize=1)
def get_settings() -> DashboardSettings:
    """Settings resolved once per process from the environment."""
    return load_settings()


def configure_logging(level: str | int = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
