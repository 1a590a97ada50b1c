from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv


@dataclass(slots=True)
class Settings:
    supabase_url: str | None
    supabase_key: str | None
    timezone: str = "Europe/Warsaw"
    run_hour: int | None = None
    run_minute: int = 0
    window_days: int = 30
    trend_lookback_days: int = 30
    retention_days: int = 30
    aggregate_workers: int = 4
    ingest_batch_size: int = 500
    storage_timeout_seconds: float = 20.0
    storage_max_attempts: int = 3
    listings_max_limit: int = 500
    force_run: bool = False

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "Settings":
        load_dotenv(env_file or ".env")
        run_hour = _env_int("RUN_HOUR", -1)
        return cls(
            supabase_url=os.environ.get("SUPABASE_URL"),
            supabase_key=os.environ.get("SUPABASE_SERVICE_ROLE_KEY"),
            timezone=os.environ.get("RUN_TIMEZONE", "").strip() or "Europe/Warsaw",
            run_hour=run_hour if 0 <= run_hour <= 23 else None,
            run_minute=max(0, min(59, _env_int("RUN_MINUTE", 0))),
            window_days=max(1, _env_int("WINDOW_DAYS", 30)),
            trend_lookback_days=max(1, _env_int("TREND_LOOKBACK_DAYS", 30)),
            retention_days=max(1, _env_int("RETENTION_DAYS", 30)),
            aggregate_workers=max(1, _env_int("AGGREGATE_WORKERS", 4)),
            ingest_batch_size=max(1, _env_int("INGEST_BATCH_SIZE", 500)),
            storage_timeout_seconds=_env_float("STORAGE_TIMEOUT_SECONDS", 20.0),
            storage_max_attempts=max(1, _env_int("STORAGE_MAX_ATTEMPTS", 3)),
            listings_max_limit=max(1, _env_int("LISTINGS_MAX_LIMIT", 500)),
            force_run=os.environ.get("FORCE_RUN", "").lower() in {"1", "true", "yes"},
        )

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except (TypeError, ValueError):
        return default
