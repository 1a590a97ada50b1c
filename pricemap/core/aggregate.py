from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import date, tzinfo
from zoneinfo import ZoneInfo

from pricemap.core.models import OFFER_TYPES, DistrictStatSnapshot, Listing
from pricemap.core.normalize import city_key
from pricemap.core.stats import build_snapshot, window_bounds
from pricemap.core.supabase_repo import SupabaseRepo


LOGGER = logging.getLogger(__name__)

AGGREGATED = "aggregated"
SKIPPED = "skipped"
FAILED = "failed"
CANCELLED = "cancelled"


@dataclass(slots=True)
class AggregationSummary:
    as_of: date
    aggregated: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: int = 0

    def record(self, outcome: str) -> None:
        if outcome == AGGREGATED:
            self.aggregated += 1
        elif outcome == SKIPPED:
            self.skipped += 1
        elif outcome == CANCELLED:
            self.cancelled += 1
        else:
            self.failed += 1


class Aggregator:
    def __init__(
        self,
        repo: SupabaseRepo,
        tz: tzinfo | None = None,
        window_days: int = 30,
        workers: int = 4,
    ) -> None:
        self.repo = repo
        self.tz = tz or ZoneInfo("Europe/Warsaw")
        self.window_days = window_days
        self.workers = max(1, workers)

    def compute(self, city: str, district: str, offer_type: str, as_of: date) -> DistrictStatSnapshot | None:
        start, end = window_bounds(as_of, self.tz, self.window_days)
        rows = self.repo.get_window_listings(city, district, offer_type, start, end)
        listings = [Listing.from_row(row) for row in rows]
        return build_snapshot(city, district, offer_type, as_of, listings, self.tz)

    def aggregate(self, city: str, district: str, offer_type: str, as_of: date) -> DistrictStatSnapshot | None:
        """
        Compute and upsert one snapshot. None means an empty window and nothing written.
        """
        snapshot = self.compute(city, district, offer_type, as_of)
        if snapshot is None:
            return None
        self.repo.upsert_district_stats(snapshot.to_record())
        return snapshot

    def run(
        self,
        as_of: date,
        workers: int | None = None,
        cancel_event: threading.Event | None = None,
        cities: list[str] | None = None,
    ) -> AggregationSummary:
        # A storage failure here is systemic and aborts the run.
        districts = self.repo.get_districts()
        if cities:
            wanted = {city_key(city) for city in cities}
            districts = [row for row in districts if row["city"] in wanted]
        tasks = [
            (row["city"], row["district"], offer_type)
            for row in districts
            if row["district"] != row["city"]
            for offer_type in OFFER_TYPES
        ]
        cancel_event = cancel_event or threading.Event()
        pool_size = max(1, workers or self.workers)
        summary = AggregationSummary(as_of=as_of)
        LOGGER.info("Aggregating as_of=%s tasks=%s workers=%s", as_of.isoformat(), len(tasks), pool_size)

        if pool_size == 1:
            for task in tasks:
                summary.record(self._run_task(*task, as_of=as_of, cancel_event=cancel_event))
        else:
            with ThreadPoolExecutor(max_workers=pool_size) as executor:
                futures = [
                    executor.submit(self._run_task, *task, as_of=as_of, cancel_event=cancel_event) for task in tasks
                ]
                for future in as_completed(futures):
                    summary.record(future.result())

        LOGGER.info(
            "Aggregation completed as_of=%s aggregated=%s skipped=%s failed=%s cancelled=%s",
            as_of.isoformat(),
            summary.aggregated,
            summary.skipped,
            summary.failed,
            summary.cancelled,
        )
        return summary

    def _run_task(
        self,
        city: str,
        district: str,
        offer_type: str,
        as_of: date,
        cancel_event: threading.Event,
    ) -> str:
        if cancel_event.is_set():
            return CANCELLED
        try:
            snapshot = self.aggregate(city, district, offer_type, as_of)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Aggregation failed city=%s district=%s offer_type=%s: %s", city, district, offer_type, exc)
            return FAILED
        if snapshot is None:
            LOGGER.debug("No listings in window city=%s district=%s offer_type=%s", city, district, offer_type)
            return SKIPPED
        LOGGER.info(
            "Aggregated city=%s district=%s offer_type=%s listings=%s avg_price_m2=%s",
            city,
            district,
            offer_type,
            snapshot.listing_count,
            snapshot.avg_price_per_area,
        )
        return AGGREGATED
