from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def should_run_local_time(
    target_hour: int | None,
    target_minute: int = 0,
    tz_name: str = "Europe/Warsaw",
    now_utc: datetime | None = None,
) -> bool:
    """
    True if local time in `tz_name` equals target hour/minute.

    No target hour means the job is not time-gated and always runs.
    """
    if target_hour is None:
        return True
    resolved_hour = max(0, min(23, target_hour))
    resolved_minute = max(0, min(59, target_minute))

    current_utc = now_utc or datetime.now(timezone.utc)
    local = current_utc.astimezone(ZoneInfo(tz_name))
    return local.hour == resolved_hour and local.minute == resolved_minute


def local_today(tz_name: str = "Europe/Warsaw", now_utc: datetime | None = None) -> date:
    current_utc = now_utc or datetime.now(timezone.utc)
    return current_utc.astimezone(ZoneInfo(tz_name)).date()
