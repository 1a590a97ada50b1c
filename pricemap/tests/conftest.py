from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Callable

import pytest

from pricemap.core.geo import feature_geometry, iter_points
from pricemap.core.models import BoundingBox, ListingFilters, ScrapedListing, parse_date, parse_timestamp


def geometry_bounds(geometry: dict[str, Any] | None) -> BoundingBox | None:
    points = iter_points(geometry)
    if not points:
        return None
    lngs = [point[0] for point in points]
    lats = [point[1] for point in points]
    return BoundingBox(sw_lng=min(lngs), sw_lat=min(lats), ne_lng=max(lngs), ne_lat=max(lats))


def boxes_intersect(a: BoundingBox, b: BoundingBox) -> bool:
    return not (a.ne_lng < b.sw_lng or b.ne_lng < a.sw_lng or a.ne_lat < b.sw_lat or b.ne_lat < a.sw_lat)


class InMemoryRepo:
    """Same surface as SupabaseRepo, backed by dicts keyed like the table constraints."""

    def __init__(self) -> None:
        self.districts: dict[tuple[str, str], dict[str, Any]] = {}
        self.listings: dict[str, dict[str, Any]] = {}
        self.stats: dict[tuple[str, str, str, str], dict[str, Any]] = {}
        self.upsert_calls = 0
        self.failing_upsert_batches: set[int] = set()
        self.failing_windows: set[tuple[str, str]] = set()

    # districts

    def add_district(
        self,
        city: str,
        district: str,
        geojson: dict[str, Any] | None = None,
        center: tuple[float, float] | None = (52.2, 21.0),
    ) -> None:
        self.districts[(city, district)] = {
            "city": city,
            "district": district,
            "geojson": geojson,
            "center_lat": center[0] if center else None,
            "center_lng": center[1] if center else None,
            "population": None,
            "area_km2": None,
        }

    def get_districts(self, city: str | None = None) -> list[dict[str, Any]]:
        return [dict(row) for key, row in sorted(self.districts.items()) if city is None or key[0] == city]

    def get_district_names(self, city: str) -> list[str]:
        return [row["district"] for row in self.get_districts(city)]

    def get_districts_for_cities(self, cities: list[str]) -> list[dict[str, Any]]:
        return [row for row in self.get_districts() if row["city"] in cities and row.get("geojson") is not None]

    def get_districts_in_bbox(self, bbox: BoundingBox) -> list[dict[str, Any]]:
        out = []
        for row in self.get_districts():
            bounds = geometry_bounds(feature_geometry(row.get("geojson")))
            if bounds is not None and boxes_intersect(bounds, bbox):
                out.append(row)
        return out

    def upsert_districts(self, rows: list[dict[str, Any]]) -> int:
        for row in rows:
            self.districts[(row["city"], row["district"])] = dict(row)
        return len(rows)

    # listings

    def upsert_listings(self, rows: list[dict[str, Any]]) -> int:
        call_index = self.upsert_calls
        self.upsert_calls += 1
        if call_index in self.failing_upsert_batches:
            raise RuntimeError("storage unavailable")
        for row in rows:
            assert "price_per_m2" not in row
            stored = dict(row)
            stored["price_per_m2"] = float(row["price"]) / float(row["size_m2"])
            existing = self.listings.get(row["external_id"])
            stored["created_at"] = existing["created_at"] if existing else row["scraped_at"]
            self.listings[row["external_id"]] = stored
        return len(rows)

    def get_window_listings(
        self,
        city: str,
        district: str,
        offer_type: str,
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        if (city, district) in self.failing_windows:
            raise RuntimeError(f"fetch failed for {city}/{district}")
        return [
            dict(row)
            for row in self.listings.values()
            if row["city"] == city
            and row["district"] == district
            and row["offer_type"] == offer_type
            and start <= parse_timestamp(row["scraped_at"]) < end
        ]

    def search_listings(self, filters: ListingFilters) -> list[dict[str, Any]]:
        rows = [row for row in self.listings.values() if row["city"] == filters.city]
        if filters.district:
            rows = [row for row in rows if row["district"] == filters.district]
        if filters.offer_type:
            rows = [row for row in rows if row["offer_type"] == filters.offer_type]
        if filters.price_min is not None:
            rows = [row for row in rows if row["price"] >= filters.price_min]
        if filters.price_max is not None:
            rows = [row for row in rows if row["price"] <= filters.price_max]
        if filters.size_min is not None:
            rows = [row for row in rows if row["size_m2"] >= filters.size_min]
        if filters.size_max is not None:
            rows = [row for row in rows if row["size_m2"] <= filters.size_max]
        if filters.rooms:
            wanted = set(filters.rooms)
            rows = [
                row
                for row in rows
                if row.get("rooms") is not None
                and (row["rooms"] in wanted or (row["rooms"] >= 4 and any(room >= 4 for room in wanted)))
            ]
        rows.sort(key=lambda row: row["scraped_at"], reverse=True)
        return [dict(row) for row in rows[: filters.limit]]

    def purge_listings_older_than(self, cutoff: datetime) -> int:
        stale = [key for key, row in self.listings.items() if parse_timestamp(row["scraped_at"]) < cutoff]
        for key in stale:
            del self.listings[key]
        return len(stale)

    # district_stats

    def upsert_district_stats(self, row: dict[str, Any]) -> None:
        key = (row["city"], row["district"], row["date"], row["offer_type"])
        self.stats[key] = dict(row)

    def add_snapshot(
        self,
        city: str,
        district: str,
        offer_type: str,
        day: date,
        avg_price_m2: float | None,
        **extra: Any,
    ) -> None:
        row = {
            "city": city,
            "district": district,
            "offer_type": offer_type,
            "date": day.isoformat(),
            "avg_price_m2": avg_price_m2,
            "median_price_m2": avg_price_m2,
            "min_price_m2": avg_price_m2,
            "max_price_m2": avg_price_m2,
            "p10_price_m2": avg_price_m2,
            "p90_price_m2": avg_price_m2,
            "stddev_price_m2": 0,
            "listing_count": 10,
            "new_listings": 1,
            "avg_size_m2": 50.0,
            "avg_price": avg_price_m2 * 50 if avg_price_m2 is not None else None,
            "count_1room": 0,
            "count_2room": 0,
            "count_3room": 0,
            "count_4plus": 0,
        }
        row.update(extra)
        self.upsert_district_stats(row)

    def _stats_rows(self, offer_type: str, on_or_before: date) -> list[dict[str, Any]]:
        return [
            dict(row)
            for row in self.stats.values()
            if row["offer_type"] == offer_type and parse_date(row["date"]) <= on_or_before
        ]

    def get_latest_snapshot(
        self,
        city: str,
        district: str,
        offer_type: str,
        on_or_before: date,
    ) -> dict[str, Any] | None:
        rows = [
            row
            for row in self._stats_rows(offer_type, on_or_before)
            if row["city"] == city and row["district"] == district
        ]
        rows.sort(key=lambda row: row["date"], reverse=True)
        return rows[0] if rows else None

    def get_latest_snapshots(self, cities: list[str], offer_type: str, on_or_before: date) -> list[dict[str, Any]]:
        latest: dict[tuple[str, str], dict[str, Any]] = {}
        for row in self._stats_rows(offer_type, on_or_before):
            if row["city"] not in cities:
                continue
            key = (row["city"], row["district"])
            if key not in latest or row["date"] > latest[key]["date"]:
                latest[key] = row
        return [latest[key] for key in sorted(latest)]

    def get_snapshot_history(
        self,
        city: str,
        district: str,
        offer_type: str,
        start: date,
        end: date,
    ) -> list[dict[str, Any]]:
        rows = [
            row
            for row in self._stats_rows(offer_type, end)
            if row["city"] == city and row["district"] == district and parse_date(row["date"]) >= start
        ]
        return sorted(rows, key=lambda row: row["date"])


def square(lng: float, lat: float, size: float = 0.1) -> dict[str, Any]:
    return {
        "type": "Feature",
        "properties": {},
        "geometry": {
            "type": "Polygon",
            "coordinates": [
                [[lng, lat], [lng + size, lat], [lng + size, lat + size], [lng, lat + size], [lng, lat]]
            ],
        },
    }


@pytest.fixture
def repo() -> InMemoryRepo:
    return InMemoryRepo()


@pytest.fixture
def make_scraped() -> Callable[..., ScrapedListing]:
    def _make(external_id: str, **overrides: Any) -> ScrapedListing:
        values: dict[str, Any] = {
            "external_id": external_id,
            "source": "morizon",
            "city": "warszawa",
            "district": "Mokotów",
            "price": 800000.0,
            "size_m2": 50.0,
            "offer_type": "sale",
            "url": f"https://example.test/{external_id}",
            "scraped_at": datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc),
            "rooms": 2,
        }
        values.update(overrides)
        return ScrapedListing(**values)

    return _make


@pytest.fixture
def square_feature() -> Callable[..., dict[str, Any]]:
    return square
