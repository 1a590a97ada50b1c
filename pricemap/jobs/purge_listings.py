from __future__ import annotations

import argparse
import logging
from datetime import datetime, timedelta, timezone

from pricemap.core.config import Settings
from pricemap.core.supabase_repo import SupabaseRepo


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
LOGGER = logging.getLogger(__name__)


def run_purge(
    days: int | None = None,
    settings: Settings | None = None,
    repo: SupabaseRepo | None = None,
    now_utc: datetime | None = None,
) -> int:
    """
    Delete listings not scraped within the retention window. Snapshots are never touched.
    """
    settings = settings or Settings.from_env()
    retention_days = days if days is not None else settings.retention_days
    if retention_days < 1:
        raise ValueError("Retention must be at least one day.")
    cutoff = (now_utc or datetime.now(timezone.utc)) - timedelta(days=retention_days)
    deleted = (repo or SupabaseRepo.from_settings(settings)).purge_listings_older_than(cutoff)
    LOGGER.info("Purged listings older_than=%s deleted=%s", cutoff.isoformat(), deleted)
    return deleted


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Delete listings older than the retention window.")
    parser.add_argument("--days", type=int, default=None, help="Retention in days (default RETENTION_DAYS or 30).")
    args = parser.parse_args()
    run_purge(days=args.days)
