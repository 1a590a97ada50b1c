from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any


OFFER_TYPES = ("sale", "rent")
ROOM_BUCKETS = ("1", "2", "3", "4+")


@dataclass(slots=True)
class ScrapedListing:
    external_id: str
    source: str
    city: str
    district: str  # raw location text, resolved by the normalizer
    price: float
    size_m2: float
    offer_type: str  # sale | rent
    url: str
    scraped_at: datetime
    address: str | None = None
    lat: float | None = None
    lng: float | None = None
    rooms: int | None = None
    title: str | None = None
    thumbnail_url: str | None = None


@dataclass(slots=True, frozen=True)
class Listing:
    external_id: str
    city: str
    district: str
    price: float
    size_m2: float
    offer_type: str
    scraped_at: datetime
    source: str | None = None
    rooms: int | None = None
    address: str | None = None
    lat: float | None = None
    lng: float | None = None
    url: str | None = None
    title: str | None = None
    thumbnail_url: str | None = None

    @property
    def price_per_area(self) -> float:
        return self.price / self.size_m2

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Listing":
        # price_per_m2 from storage is ignored, it is always derived here.
        return cls(
            external_id=str(row.get("external_id") or ""),
            city=row.get("city") or "",
            district=row.get("district") or "",
            price=float(row["price"]),
            size_m2=float(row["size_m2"]),
            offer_type=row.get("offer_type") or "sale",
            scraped_at=parse_timestamp(row["scraped_at"]),
            source=row.get("source"),
            rooms=_optional_int(row.get("rooms")),
            address=row.get("address"),
            lat=_optional_float(row.get("lat")),
            lng=_optional_float(row.get("lng")),
            url=row.get("url"),
            title=row.get("title"),
            thumbnail_url=row.get("thumbnail_url"),
        )


@dataclass(slots=True)
class District:
    city: str
    district: str
    geojson: dict[str, Any] | None
    center_lat: float | None
    center_lng: float | None
    population: int | None = None
    area_km2: float | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "District":
        return cls(
            city=row["city"],
            district=row["district"],
            geojson=row.get("geojson"),
            center_lat=_optional_float(row.get("center_lat")),
            center_lng=_optional_float(row.get("center_lng")),
            population=_optional_int(row.get("population")),
            area_km2=_optional_float(row.get("area_km2")),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "city": self.city,
            "district": self.district,
            "geojson": self.geojson,
            "center_lat": self.center_lat,
            "center_lng": self.center_lng,
            "population": self.population,
            "area_km2": self.area_km2,
        }


@dataclass(slots=True)
class DistrictStatSnapshot:
    city: str
    district: str
    offer_type: str
    date: date
    avg_price_per_area: float | None
    median_price_per_area: float | None
    min_price_per_area: float | None
    max_price_per_area: float | None
    p10_price_per_area: float | None
    p90_price_per_area: float | None
    stddev_price_per_area: float | None
    listing_count: int
    new_listings: int
    avg_size_m2: float | None
    avg_total_price: float | None
    room_counts: dict[str, int] = field(default_factory=lambda: {bucket: 0 for bucket in ROOM_BUCKETS})

    def to_record(self) -> dict[str, Any]:
        """Row for the district_stats table."""
        return {
            "city": self.city,
            "district": self.district,
            "offer_type": self.offer_type,
            "date": self.date.isoformat(),
            "avg_price": self.avg_total_price,
            "avg_price_m2": self.avg_price_per_area,
            "median_price_m2": self.median_price_per_area,
            "min_price_m2": self.min_price_per_area,
            "max_price_m2": self.max_price_per_area,
            "p10_price_m2": self.p10_price_per_area,
            "p90_price_m2": self.p90_price_per_area,
            "stddev_price_m2": self.stddev_price_per_area,
            "listing_count": self.listing_count,
            "new_listings": self.new_listings,
            "avg_size_m2": self.avg_size_m2,
            "count_1room": self.room_counts.get("1", 0),
            "count_2room": self.room_counts.get("2", 0),
            "count_3room": self.room_counts.get("3", 0),
            "count_4plus": self.room_counts.get("4+", 0),
        }

    @classmethod
    def from_record(cls, row: dict[str, Any]) -> "DistrictStatSnapshot":
        return cls(
            city=row["city"],
            district=row["district"],
            offer_type=row.get("offer_type") or "sale",
            date=parse_date(row["date"]),
            avg_price_per_area=_optional_float(row.get("avg_price_m2")),
            median_price_per_area=_optional_float(row.get("median_price_m2")),
            min_price_per_area=_optional_float(row.get("min_price_m2")),
            max_price_per_area=_optional_float(row.get("max_price_m2")),
            p10_price_per_area=_optional_float(row.get("p10_price_m2")),
            p90_price_per_area=_optional_float(row.get("p90_price_m2")),
            stddev_price_per_area=_optional_float(row.get("stddev_price_m2")),
            listing_count=int(row.get("listing_count") or 0),
            new_listings=int(row.get("new_listings") or 0),
            avg_size_m2=_optional_float(row.get("avg_size_m2")),
            avg_total_price=_optional_float(row.get("avg_price")),
            room_counts={
                "1": int(row.get("count_1room") or 0),
                "2": int(row.get("count_2room") or 0),
                "3": int(row.get("count_3room") or 0),
                "4+": int(row.get("count_4plus") or 0),
            },
        )


@dataclass(slots=True)
class TrendDelta:
    change_percent: float
    change_absolute: float
    current_date: date
    current_price: float
    previous_date: date
    previous_price: float


@dataclass(slots=True)
class HistorySummary:
    start_price: float | None
    end_price: float | None
    change_percent: float | None
    change_absolute: float | None
    data_points: int


@dataclass(slots=True)
class BoundingBox:
    sw_lng: float
    sw_lat: float
    ne_lng: float
    ne_lat: float

    @classmethod
    def parse(cls, raw: str) -> "BoundingBox":
        """
        Parse "sw_lng,sw_lat,ne_lng,ne_lat".
        """
        parts = [part.strip() for part in (raw or "").split(",")]
        if len(parts) != 4:
            raise ValueError("Invalid bbox format. Expected: sw_lng,sw_lat,ne_lng,ne_lat")
        try:
            sw_lng, sw_lat, ne_lng, ne_lat = (float(part) for part in parts)
        except ValueError as exc:
            raise ValueError("Invalid bbox format. Expected: sw_lng,sw_lat,ne_lng,ne_lat") from exc
        if sw_lng > ne_lng or sw_lat > ne_lat:
            raise ValueError("Invalid bbox: south-west corner must not exceed north-east corner")
        return cls(sw_lng=sw_lng, sw_lat=sw_lat, ne_lng=ne_lng, ne_lat=ne_lat)


@dataclass(slots=True)
class ListingFilters:
    city: str
    district: str | None = None
    offer_type: str | None = None
    price_min: float | None = None
    price_max: float | None = None
    size_min: float | None = None
    size_max: float | None = None
    rooms: list[int] | None = None
    limit: int = 50


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise ValueError(f"Unsupported date value: {value!r}")


def _optional_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _optional_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
