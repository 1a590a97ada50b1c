from __future__ import annotations

import os
from datetime import date, datetime
from typing import Any, Callable

from supabase import Client, ClientOptions, create_client

from pricemap.core.config import Settings
from pricemap.core.models import BoundingBox, ListingFilters
from pricemap.core.retry import call_with_retry


PAGE_SIZE = 1000
LISTING_COLUMNS = (
    "external_id, source, city, district, address, lat, lng, price, size_m2, price_per_m2, "
    "rooms, offer_type, url, title, thumbnail_url, scraped_at"
)
WINDOW_COLUMNS = "external_id, city, district, price, size_m2, rooms, offer_type, scraped_at"
DISTRICT_COLUMNS = "city, district, geojson, center_lat, center_lng, population, area_km2"


class SupabaseRepo:
    def __init__(
        self,
        url: str | None = None,
        service_role_key: str | None = None,
        timeout_seconds: float = 20.0,
        max_attempts: int = 3,
        client: Client | None = None,
    ) -> None:
        self.max_attempts = max_attempts
        if client is not None:
            self.client = client
            return
        supabase_url = url or os.environ.get("SUPABASE_URL")
        supabase_key = service_role_key or os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required.")
        self.client = create_client(
            supabase_url,
            supabase_key,
            options=ClientOptions(postgrest_client_timeout=timeout_seconds),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseRepo":
        return cls(
            url=settings.supabase_url,
            service_role_key=settings.supabase_key,
            timeout_seconds=settings.storage_timeout_seconds,
            max_attempts=settings.storage_max_attempts,
        )

    # districts

    def get_districts(self, city: str | None = None) -> list[dict[str, Any]]:
        def build() -> Any:
            query = self.client.table("districts").select(DISTRICT_COLUMNS)
            if city:
                query = query.eq("city", city)
            return query.order("city").order("district")

        return self._fetch_all(build, label="get_districts")

    def get_district_names(self, city: str) -> list[str]:
        rows = self._fetch_all(
            lambda: self.client.table("districts").select("district").eq("city", city).order("district"),
            label="get_district_names",
        )
        return [row["district"] for row in rows if row.get("district")]

    def get_districts_for_cities(self, cities: list[str]) -> list[dict[str, Any]]:
        if not cities:
            return []
        return self._fetch_all(
            lambda: self.client.table("districts")
            .select(DISTRICT_COLUMNS)
            .in_("city", cities)
            .not_.is_("geojson", "null")
            .order("city")
            .order("district"),
            label="get_districts_for_cities",
        )

    def get_districts_in_bbox(self, bbox: BoundingBox) -> list[dict[str, Any]]:
        params = {"sw_lng": bbox.sw_lng, "sw_lat": bbox.sw_lat, "ne_lng": bbox.ne_lng, "ne_lat": bbox.ne_lat}
        response = self._execute(lambda: self.client.rpc("get_districts_in_bbox", params), "get_districts_in_bbox")
        return response.data or []

    def upsert_districts(self, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        response = self._execute(
            lambda: self.client.table("districts").upsert(rows, on_conflict="city,district"),
            "upsert_districts",
        )
        return len(response.data or [])

    # listings

    def upsert_listings(self, rows: list[dict[str, Any]]) -> int:
        """
        Insert or update by external_id. Returns the number of rows written.
        """
        if not rows:
            return 0
        response = self._execute(
            lambda: self.client.table("listings").upsert(rows, on_conflict="external_id", ignore_duplicates=False),
            "upsert_listings",
        )
        return len(response.data or [])

    def get_window_listings(
        self,
        city: str,
        district: str,
        offer_type: str,
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        return self._fetch_all(
            lambda: self.client.table("listings")
            .select(WINDOW_COLUMNS)
            .eq("city", city)
            .eq("district", district)
            .eq("offer_type", offer_type)
            .gte("scraped_at", start.isoformat())
            .lt("scraped_at", end.isoformat())
            .order("external_id"),
            label="get_window_listings",
        )

    def search_listings(self, filters: ListingFilters) -> list[dict[str, Any]]:
        query = self.client.table("listings").select(LISTING_COLUMNS).eq("city", filters.city)
        if filters.district:
            query = query.eq("district", filters.district)
        if filters.offer_type:
            query = query.eq("offer_type", filters.offer_type)
        if filters.price_min is not None:
            query = query.gte("price", filters.price_min)
        if filters.price_max is not None:
            query = query.lte("price", filters.price_max)
        if filters.size_min is not None:
            query = query.gte("size_m2", filters.size_min)
        if filters.size_max is not None:
            query = query.lte("size_m2", filters.size_max)
        if filters.rooms:
            exact = sorted({room for room in filters.rooms if room < 4})
            clauses = [f"rooms.in.({','.join(str(room) for room in exact)})"] if exact else []
            if any(room >= 4 for room in filters.rooms):
                clauses.append("rooms.gte.4")
            query = query.or_(",".join(clauses))
        query = query.order("scraped_at", desc=True).limit(filters.limit)
        response = self._execute(lambda: query, "search_listings")
        return response.data or []

    def purge_listings_older_than(self, cutoff: datetime) -> int:
        response = self._execute(
            lambda: self.client.table("listings").delete().lt("scraped_at", cutoff.isoformat()),
            "purge_listings",
        )
        return len(response.data or [])

    # district_stats

    def upsert_district_stats(self, row: dict[str, Any]) -> None:
        self._execute(
            lambda: self.client.table("district_stats").upsert(row, on_conflict="city,district,date,offer_type"),
            "upsert_district_stats",
        )

    def get_latest_snapshot(
        self,
        city: str,
        district: str,
        offer_type: str,
        on_or_before: date,
    ) -> dict[str, Any] | None:
        response = self._execute(
            lambda: self.client.table("district_stats")
            .select("*")
            .eq("city", city)
            .eq("district", district)
            .eq("offer_type", offer_type)
            .lte("date", on_or_before.isoformat())
            .order("date", desc=True)
            .limit(1),
            "get_latest_snapshot",
        )
        rows = response.data or []
        return rows[0] if rows else None

    def get_latest_snapshots(self, cities: list[str], offer_type: str, on_or_before: date) -> list[dict[str, Any]]:
        """
        One row per district from the latest_district_stats view.
        """
        if not cities:
            return []
        return self._fetch_all(
            lambda: self.client.table("latest_district_stats")
            .select("*")
            .in_("city", cities)
            .eq("offer_type", offer_type)
            .lte("date", on_or_before.isoformat())
            .order("city")
            .order("district"),
            label="get_latest_snapshots",
        )

    def get_snapshot_history(
        self,
        city: str,
        district: str,
        offer_type: str,
        start: date,
        end: date,
    ) -> list[dict[str, Any]]:
        return self._fetch_all(
            lambda: self.client.table("district_stats")
            .select("*")
            .eq("city", city)
            .eq("district", district)
            .eq("offer_type", offer_type)
            .gte("date", start.isoformat())
            .lte("date", end.isoformat())
            .order("date"),
            label="get_snapshot_history",
        )

    # helpers

    def _execute(self, build_query: Callable[[], Any], label: str) -> Any:
        return call_with_retry(lambda: build_query().execute(), label=label, max_attempts=self.max_attempts)

    def _fetch_all(self, build_query: Callable[[], Any], label: str) -> list[dict[str, Any]]:
        # PostgREST caps responses, so page with explicit ranges.
        offset = 0
        out: list[dict[str, Any]] = []
        while True:
            start = offset
            response = self._execute(lambda: build_query().range(start, start + PAGE_SIZE - 1), label)
            rows = response.data or []
            out.extend(rows)
            offset += len(rows)
            if len(rows) < PAGE_SIZE:
                break
        return out
