from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from datetime import date
from typing import Any

from pricemap.core.aggregate import AggregationSummary, Aggregator
from pricemap.core.config import Settings
from pricemap.core.supabase_repo import SupabaseRepo
from pricemap.core.timezone_guard import local_today, should_run_local_time


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
LOGGER = logging.getLogger(__name__)


def run_daily(
    as_of: date | None = None,
    force_run: bool = False,
    workers: int | None = None,
    cities: list[str] | None = None,
    settings: Settings | None = None,
    repo: SupabaseRepo | None = None,
    cancel_event: threading.Event | None = None,
) -> AggregationSummary | None:
    """
    Aggregate district statistics for `as_of` (local today when omitted).

    Returns None when the run-time guard skipped the invocation.
    """
    settings = settings or Settings.from_env()
    backfill = as_of is not None
    force_run = force_run or settings.force_run or backfill
    if not force_run and not should_run_local_time(settings.run_hour, settings.run_minute, settings.timezone):
        LOGGER.info(
            "Timezone guard skipped run (not %02d:%02d %s).",
            settings.run_hour or 0,
            settings.run_minute,
            settings.timezone,
        )
        return None

    today = local_today(settings.timezone)
    target = as_of or today
    if target > today:
        raise ValueError(f"Cannot aggregate a future date: {target.isoformat()}")

    aggregator = Aggregator(
        repo or SupabaseRepo.from_settings(settings),
        tz=settings.tz,
        window_days=settings.window_days,
        workers=settings.aggregate_workers,
    )
    summary = aggregator.run(target, workers=workers, cancel_event=cancel_event, cities=cities)
    LOGGER.info(
        "Daily run completed as_of=%s backfill=%s aggregated=%s skipped=%s failed=%s cancelled=%s",
        target.isoformat(),
        backfill,
        summary.aggregated,
        summary.skipped,
        summary.failed,
        summary.cancelled,
    )
    return summary


def _install_cancel_handlers(cancel_event: threading.Event) -> None:
    def _handler(signum: int, _frame: Any) -> None:
        LOGGER.warning("Signal %s received, finishing in-flight districts and stopping.", signum)
        cancel_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Aggregate daily per-district price statistics.")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="Backfill a specific day (YYYY-MM-DD).")
    parser.add_argument("--workers", type=int, default=None, help="Parallel district workers (1 = sequential).")
    parser.add_argument("--city", action="append", dest="cities", help="Limit to a city slug; repeatable.")
    parser.add_argument("--force", action="store_true", help="Bypass the configured run-time guard.")
    args = parser.parse_args()

    event = threading.Event()
    _install_cancel_handlers(event)
    result = run_daily(as_of=args.date, force_run=args.force, workers=args.workers, cities=args.cities, cancel_event=event)
    if result is not None and (result.failed or result.cancelled):
        sys.exit(1)
