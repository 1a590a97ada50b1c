from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from pricemap.core.dedupe import collapse_by_external_id
from pricemap.core.models import OFFER_TYPES, ScrapedListing
from pricemap.core.normalize import build_candidate_map, city_key, listing_to_record, resolve_district
from pricemap.core.supabase_repo import SupabaseRepo


LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestResult:
    received: int = 0
    inserted: int = 0
    dropped_invalid: int = 0
    dropped_unmatched: int = 0
    duplicates_in_batch: int = 0
    failed_batches: int = 0


class Ingestor:
    """
    Validates scraped listings, resolves their district and upserts them by external_id.

    One instance per run: district candidate maps are loaded once per city and reused.
    """

    def __init__(self, repo: SupabaseRepo, batch_size: int = 500) -> None:
        self.repo = repo
        self.batch_size = max(1, batch_size)
        self._candidates_by_city: dict[str, dict[str, str]] = {}

    def candidates_for(self, city: str) -> dict[str, str]:
        key = city_key(city)
        if key not in self._candidates_by_city:
            self._candidates_by_city[key] = build_candidate_map(self.repo.get_district_names(key))
            LOGGER.info("Loaded %s district keys for city=%s", len(self._candidates_by_city[key]), key)
        return self._candidates_by_city[key]

    def ingest(self, listings: Iterable[ScrapedListing]) -> IngestResult:
        result = IngestResult()
        rows: list[dict[str, Any]] = []
        for listing in listings:
            result.received += 1
            if not _is_valid(listing):
                result.dropped_invalid += 1
                continue
            district, address = resolve_district(listing.district, self.candidates_for(listing.city))
            if district is None:
                result.dropped_unmatched += 1
                LOGGER.debug("Unmatched location city=%s raw=%r", listing.city, listing.district)
                continue
            rows.append(listing_to_record(listing, district=district, address=address))

        unique_rows = collapse_by_external_id(rows)
        result.duplicates_in_batch = len(rows) - len(unique_rows)

        for start in range(0, len(unique_rows), self.batch_size):
            batch = unique_rows[start : start + self.batch_size]
            try:
                result.inserted += self.repo.upsert_listings(batch)
            except Exception as exc:  # noqa: BLE001
                result.failed_batches += 1
                LOGGER.exception("Listing upsert failed batch_start=%s size=%s: %s", start, len(batch), exc)

        LOGGER.info(
            "Ingest received=%s inserted=%s dropped_invalid=%s dropped_unmatched=%s duplicates=%s failed_batches=%s",
            result.received,
            result.inserted,
            result.dropped_invalid,
            result.dropped_unmatched,
            result.duplicates_in_batch,
            result.failed_batches,
        )
        return result


def _is_valid(listing: ScrapedListing) -> bool:
    try:
        price = float(listing.price)
        size_m2 = float(listing.size_m2)
    except (TypeError, ValueError):
        return False
    return (
        price > 0
        and size_m2 > 0
        and listing.offer_type in OFFER_TYPES
        and bool(listing.external_id)
        and bool(listing.city)
    )
