from __future__ import annotations

import math
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable

from pricemap.core.models import ROOM_BUCKETS, DistrictStatSnapshot, Listing


def percentile(sorted_values: list[float], p: float) -> float | None:
    """
    Linear interpolation between closest ranks, p in [0, 100].

    index = p/100 * (n-1); result = arr[lower]*(1-w) + arr[upper]*w.
    """
    if not sorted_values:
        return None
    n = len(sorted_values)
    index = (p / 100) * (n - 1)
    lower = math.floor(index)
    upper = math.ceil(index)
    weight = index - lower
    if upper >= n:
        return sorted_values[n - 1]
    return sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight


def mean(values: list[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


def population_stddev(values: list[float], center: float | None = None) -> float:
    if len(values) < 2:
        return 0.0
    mu = center if center is not None else sum(values) / len(values)
    return math.sqrt(sum((value - mu) ** 2 for value in values) / len(values))


def room_histogram(rooms: Iterable[int | None]) -> dict[str, int]:
    counts = {bucket: 0 for bucket in ROOM_BUCKETS}
    for value in rooms:
        if value is None:
            continue
        if value == 1:
            counts["1"] += 1
        elif value == 2:
            counts["2"] += 1
        elif value == 3:
            counts["3"] += 1
        elif value >= 4:
            counts["4+"] += 1
    return counts


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Local midnight to next local midnight for `day`."""
    start = datetime(day.year, day.month, day.day, tzinfo=tz)
    next_day = day + timedelta(days=1)
    end = datetime(next_day.year, next_day.month, next_day.day, tzinfo=tz)
    return start, end


def window_bounds(as_of: date, tz: tzinfo, window_days: int = 30) -> tuple[datetime, datetime]:
    _, end = day_bounds(as_of, tz)
    return end - timedelta(days=window_days), end


def build_snapshot(
    city: str,
    district: str,
    offer_type: str,
    as_of: date,
    listings: list[Listing],
    tz: tzinfo,
) -> DistrictStatSnapshot | None:
    """
    Statistics for one (city, district, offer_type) over an already selected window.

    Values are rounded once at the end: currency to whole units, size to 0.1 m2.
    """
    if not listings:
        return None

    prices_per_area = sorted(listing.price_per_area for listing in listings)
    avg_ppa = sum(prices_per_area) / len(prices_per_area)
    avg_total = mean([listing.price for listing in listings])
    avg_size = mean([listing.size_m2 for listing in listings]) or 0.0

    day_start, day_end = day_bounds(as_of, tz)
    new_listings = sum(1 for listing in listings if day_start <= listing.scraped_at < day_end)

    return DistrictStatSnapshot(
        city=city,
        district=district,
        offer_type=offer_type,
        date=as_of,
        avg_price_per_area=_whole(avg_ppa),
        median_price_per_area=_whole(percentile(prices_per_area, 50)),
        min_price_per_area=_whole(prices_per_area[0]),
        max_price_per_area=_whole(prices_per_area[-1]),
        p10_price_per_area=_whole(percentile(prices_per_area, 10)),
        p90_price_per_area=_whole(percentile(prices_per_area, 90)),
        stddev_price_per_area=_whole(population_stddev(prices_per_area, avg_ppa)),
        listing_count=len(listings),
        new_listings=new_listings,
        avg_size_m2=round_half_up(avg_size, 1),
        avg_total_price=_whole(avg_total) if avg_total is not None else None,
        room_counts=room_histogram(listing.rooms for listing in listings),
    )


def round_half_up(value: float, digits: int = 0) -> float:
    """Round .5 upwards. Built-in round() rounds half to even."""
    scale = 10**digits
    return math.floor(value * scale + 0.5) / scale


def _whole(value: float | None) -> float:
    return round_half_up(value or 0.0)
