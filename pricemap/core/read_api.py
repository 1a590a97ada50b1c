from __future__ import annotations

import calendar
from datetime import date
from statistics import median
from typing import Any, Callable

from pricemap.core.geo import feature_geometry
from pricemap.core.models import (
    OFFER_TYPES,
    BoundingBox,
    District,
    DistrictStatSnapshot,
    Listing,
    ListingFilters,
    TrendDelta,
)
from pricemap.core.normalize import city_key, normalize_key
from pricemap.core.supabase_repo import SupabaseRepo
from pricemap.core.timezone_guard import local_today
from pricemap.core.trend import TrendEngine, rental_yield, summarize_history


DEFAULT_LISTINGS_LIMIT = 50
MAX_HISTORY_MONTHS = 120


class ReadService:
    """
    Read-side queries for the map UI. Holds no per-request state.

    `today` is resolved once per call so every district in one response is
    compared against the same "current" date.
    """

    def __init__(
        self,
        repo: SupabaseRepo,
        trend_engine: TrendEngine | None = None,
        today: Callable[[], date] = local_today,
        max_listings_limit: int = 500,
    ) -> None:
        self.repo = repo
        self.trends = trend_engine or TrendEngine(repo)
        self.today = today
        self.max_listings_limit = max_listings_limit

    def get_district_stats(self, city: str, offer_type: str = "sale") -> dict[str, Any]:
        city = city_key(city)
        _check_offer_type(offer_type)
        today = self.today()

        districts = [
            District.from_row(row) for row in self.repo.get_districts(city) if row.get("district") != row.get("city")
        ]
        snapshots = self._latest_by_district([city], offer_type, today)

        entries: list[dict[str, Any]] = []
        seen: set[str] = set()
        for district in districts:
            seen.add(district.district)
            snapshot = snapshots.get((city, district.district))
            entries.append(self._district_entry(district.district, district, snapshot))
        for (_, name), snapshot in sorted(snapshots.items()):
            if name not in seen:
                entries.append(self._district_entry(name, None, snapshot))

        dates = [snapshot.date for snapshot in snapshots.values()]
        return {
            "city": city,
            "offerType": offer_type,
            "districts": entries,
            "updatedAt": max(dates).isoformat() if dates else None,
        }

    def get_district_history(
        self,
        city: str,
        district: str,
        offer_type: str = "sale",
        months_back: int = 12,
    ) -> dict[str, Any]:
        city = city_key(city)
        district = normalize_key(district)
        _check_offer_type(offer_type)
        if not 1 <= months_back <= MAX_HISTORY_MONTHS:
            raise ValueError(f"months must be between 1 and {MAX_HISTORY_MONTHS}")
        end = self.today()
        start = months_ago(end, months_back)

        rows = self.repo.get_snapshot_history(city, district, offer_type, start, end)
        snapshots = sorted((DistrictStatSnapshot.from_record(row) for row in rows), key=lambda item: item.date)
        summary = summarize_history(snapshots)
        return {
            "city": city,
            "district": district,
            "offerType": offer_type,
            "months": months_back,
            "history": [
                {
                    "date": snapshot.date.isoformat(),
                    "avgPriceM2": snapshot.avg_price_per_area,
                    "medianPriceM2": snapshot.median_price_per_area,
                    "listingCount": snapshot.listing_count,
                    "newListings": snapshot.new_listings,
                }
                for snapshot in snapshots
            ],
            "summary": {
                "startPrice": summary.start_price,
                "endPrice": summary.end_price,
                "changePercent": summary.change_percent,
                "changeAbsolute": summary.change_absolute,
                "dataPoints": summary.data_points,
            },
        }

    def get_listings(self, filters: ListingFilters) -> dict[str, Any]:
        if not filters.city or not filters.city.strip():
            raise ValueError("City is required")
        if filters.offer_type is not None:
            _check_offer_type(filters.offer_type)
        filters.city = city_key(filters.city)
        filters.district = normalize_key(filters.district) if filters.district else None
        filters.limit = max(1, min(filters.limit or DEFAULT_LISTINGS_LIMIT, self.max_listings_limit))

        listings = [Listing.from_row(row) for row in self.repo.search_listings(filters)]
        return {
            "city": filters.city,
            "district": filters.district,
            "listings": [_listing_payload(listing) for listing in listings],
            "count": len(listings),
        }

    def get_districts_in_viewport(self, bbox: BoundingBox, offer_type: str = "sale") -> dict[str, Any]:
        _check_offer_type(offer_type)
        today = self.today()
        touched = self.repo.get_districts_in_bbox(bbox)
        cities = sorted({row["city"] for row in touched if row.get("district") != row.get("city")})
        if not cities:
            return _empty_feature_collection()

        # Every district of a touched city, not only those inside the box.
        districts = [
            District.from_row(row)
            for row in self.repo.get_districts_for_cities(cities)
            if row.get("district") != row.get("city")
        ]
        other_type = "rent" if offer_type == "sale" else "sale"
        snapshots = self._latest_by_district(cities, offer_type, today)
        other_snapshots = self._latest_by_district(cities, other_type, today)

        features: list[dict[str, Any]] = []
        district_stats: dict[str, dict[str, Any]] = {}
        centers: list[dict[str, Any]] = []
        for district in districts:
            key = (district.city, district.district)
            snapshot = snapshots.get(key)
            if snapshot is not None:
                trend = self.trends.trend_from_current(snapshot)
                entry = {
                    "district": district.district,
                    "city": district.city,
                    "offerType": offer_type,
                    **_snapshot_payload(snapshot),
                    "change30d": trend.change_percent if trend else None,
                    "rentalYield": _yield_for(snapshot, other_snapshots.get(key)),
                }
                district_stats[f"{district.city}:{district.district}"] = entry
                if _has_price(snapshot) and district.center_lat is not None:
                    centers.append(
                        {
                            "name": district.district,
                            "city": district.city,
                            "displayName": display_name(district.district),
                            "lat": district.center_lat,
                            "lng": district.center_lng,
                        }
                    )

            geometry = feature_geometry(district.geojson)
            if geometry is None:
                continue
            features.append(
                {
                    "type": "Feature",
                    "id": len(features),
                    "geometry": geometry,
                    "properties": {"name": district.district, "city": district.city, "hasData": snapshot is not None},
                }
            )

        dates = [snapshot.date for snapshot in snapshots.values()]
        return {
            "type": "FeatureCollection",
            "features": features,
            "districtStats": district_stats,
            "districtCenters": centers,
            "cities": cities,
            "updatedAt": max(dates).isoformat() if dates else None,
        }

    def get_city_summary(self, city: str, offer_type: str = "sale") -> dict[str, Any] | None:
        city = city_key(city)
        _check_offer_type(offer_type)
        snapshots = list(self._latest_by_district([city], offer_type, self.today()).values())
        if not snapshots:
            return None

        priced = [snapshot for snapshot in snapshots if _has_price(snapshot)]
        prices = sorted(snapshot.avg_price_per_area for snapshot in priced)
        changes: list[float] = []
        for snapshot in snapshots:
            trend = self.trends.trend_from_current(snapshot)
            if trend is not None:
                changes.append(trend.change_percent)
        by_price = sorted(priced, key=lambda item: (-item.avg_price_per_area, item.district))

        return {
            "city": city,
            "offerType": offer_type,
            "districtCount": len(snapshots),
            "totalListings": sum(snapshot.listing_count for snapshot in snapshots),
            "totalNewListings": sum(snapshot.new_listings for snapshot in snapshots),
            "avgPriceM2": round(sum(prices) / len(prices)) if prices else None,
            "medianPriceM2": round(median(prices)) if prices else None,
            "minPriceM2": round(prices[0]) if prices else None,
            "maxPriceM2": round(prices[-1]) if prices else None,
            "change30d": round(sum(changes) / len(changes), 2) if changes else None,
            "mostExpensive": _price_entry(by_price[0]) if by_price else None,
            "cheapest": _price_entry(by_price[-1]) if by_price else None,
            "updatedAt": max(snapshot.date for snapshot in snapshots).isoformat(),
        }

    def list_cities(self) -> list[dict[str, Any]]:
        cities = sorted({row["city"] for row in self.repo.get_districts()})
        snapshots = self._latest_by_district(cities, "sale", self.today())
        out: list[dict[str, Any]] = []
        for city in cities:
            city_snapshots = [snapshot for (snapshot_city, _), snapshot in snapshots.items() if snapshot_city == city]
            prices = [snapshot.avg_price_per_area for snapshot in city_snapshots if _has_price(snapshot)]
            out.append(
                {
                    "slug": city,
                    "name": display_name(city),
                    "districtCount": len(city_snapshots),
                    "totalListings": sum(snapshot.listing_count for snapshot in city_snapshots),
                    "avgPriceM2": round(sum(prices) / len(prices)) if prices else None,
                }
            )
        return out

    def _latest_by_district(
        self,
        cities: list[str],
        offer_type: str,
        today: date,
    ) -> dict[tuple[str, str], DistrictStatSnapshot]:
        latest: dict[tuple[str, str], DistrictStatSnapshot] = {}
        for row in self.repo.get_latest_snapshots(cities, offer_type, on_or_before=today):
            snapshot = DistrictStatSnapshot.from_record(row)
            key = (snapshot.city, snapshot.district)
            if key not in latest or snapshot.date > latest[key].date:
                latest[key] = snapshot
        return latest

    def _district_entry(
        self,
        name: str,
        district: District | None,
        snapshot: DistrictStatSnapshot | None,
    ) -> dict[str, Any]:
        trend: TrendDelta | None = self.trends.trend_from_current(snapshot) if snapshot is not None else None
        center = None
        if district is not None and district.center_lat is not None and district.center_lng is not None:
            center = {"lat": district.center_lat, "lng": district.center_lng}
        payload: dict[str, Any] = {
            "district": name,
            "displayName": display_name(name),
            "hasData": snapshot is not None,
            "center": center,
            "geometry": feature_geometry(district.geojson) if district is not None else None,
        }
        if snapshot is None:
            payload.update({key: None for key in _snapshot_payload_keys()})
        else:
            payload.update(_snapshot_payload(snapshot))
        payload["change30d"] = trend.change_percent if trend else None
        payload["changeAbsolute30d"] = trend.change_absolute if trend else None
        return payload


def months_ago(day: date, months: int) -> date:
    year, month = divmod(day.year * 12 + (day.month - 1) - months, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def display_name(slug: str) -> str:
    return " ".join(word.capitalize() for word in slug.replace("-", " ").split())


def _check_offer_type(offer_type: str) -> None:
    if offer_type not in OFFER_TYPES:
        raise ValueError("Invalid offerType")


def _has_price(snapshot: DistrictStatSnapshot) -> bool:
    return snapshot.avg_price_per_area is not None and snapshot.avg_price_per_area > 0


def _price_entry(snapshot: DistrictStatSnapshot) -> dict[str, Any]:
    return {"district": snapshot.district, "avgPriceM2": snapshot.avg_price_per_area}


def _snapshot_payload(snapshot: DistrictStatSnapshot) -> dict[str, Any]:
    return {
        "date": snapshot.date.isoformat(),
        "avgPrice": snapshot.avg_total_price,
        "avgPriceM2": snapshot.avg_price_per_area,
        "medianPriceM2": snapshot.median_price_per_area,
        "minPriceM2": snapshot.min_price_per_area,
        "maxPriceM2": snapshot.max_price_per_area,
        "p10PriceM2": snapshot.p10_price_per_area,
        "p90PriceM2": snapshot.p90_price_per_area,
        "stddevPriceM2": snapshot.stddev_price_per_area,
        "listingCount": snapshot.listing_count,
        "newListings": snapshot.new_listings,
        "avgSizeM2": snapshot.avg_size_m2,
        "rooms": dict(snapshot.room_counts),
    }


def _snapshot_payload_keys() -> tuple[str, ...]:
    return (
        "date",
        "avgPrice",
        "avgPriceM2",
        "medianPriceM2",
        "minPriceM2",
        "maxPriceM2",
        "p10PriceM2",
        "p90PriceM2",
        "stddevPriceM2",
        "listingCount",
        "newListings",
        "avgSizeM2",
        "rooms",
    )


def _yield_for(snapshot: DistrictStatSnapshot, other: DistrictStatSnapshot | None) -> float | None:
    if other is None:
        return None
    sale, rent = (snapshot, other) if snapshot.offer_type == "sale" else (other, snapshot)
    return rental_yield(sale.avg_price_per_area, rent.avg_total_price, rent.avg_size_m2)


def _listing_payload(listing: Listing) -> dict[str, Any]:
    return {
        "externalId": listing.external_id,
        "source": listing.source,
        "city": listing.city,
        "district": listing.district,
        "address": listing.address,
        "lat": listing.lat,
        "lng": listing.lng,
        "price": listing.price,
        "sizeM2": listing.size_m2,
        "pricePerM2": round(listing.price_per_area, 2),
        "rooms": listing.rooms,
        "offerType": listing.offer_type,
        "url": listing.url,
        "title": listing.title,
        "thumbnailUrl": listing.thumbnail_url,
        "scrapedAt": listing.scraped_at.isoformat(),
    }


def _empty_feature_collection() -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [],
        "districtStats": {},
        "districtCenters": [],
        "cities": [],
        "updatedAt": None,
    }
