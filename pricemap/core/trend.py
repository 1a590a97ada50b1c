from __future__ import annotations

from datetime import date, timedelta

from pricemap.core.models import DistrictStatSnapshot, HistorySummary, TrendDelta
from pricemap.core.supabase_repo import SupabaseRepo
from pricemap.core.timezone_guard import local_today


def compute_change(current: float | None, previous: float | None) -> tuple[float, float] | None:
    """
    (percent, absolute) change rounded to 2 places.

    None when either side is missing or the baseline is not positive; that is
    "unknown", not "no change".
    """
    if current is None or previous is None or previous <= 0:
        return None
    absolute = current - previous
    return round(absolute / previous * 100, 2), round(absolute, 2)


def rental_yield(
    sale_price_per_area: float | None,
    rent_avg_price: float | None,
    rent_avg_size: float | None,
) -> float | None:
    """Gross yearly yield in percent: (monthly rent per m2 * 12) / sale price per m2."""
    if not sale_price_per_area or not rent_avg_price or not rent_avg_size:
        return None
    if sale_price_per_area <= 0 or rent_avg_price <= 0 or rent_avg_size <= 0:
        return None
    rent_per_area = rent_avg_price / rent_avg_size
    return round(rent_per_area * 12 / sale_price_per_area * 100, 2)


def summarize_history(snapshots: list[DistrictStatSnapshot]) -> HistorySummary:
    # First vs last point of the requested window, not the fixed 30-day lookback.
    if not snapshots:
        return HistorySummary(start_price=None, end_price=None, change_percent=None, change_absolute=None, data_points=0)
    start_price = snapshots[0].avg_price_per_area
    end_price = snapshots[-1].avg_price_per_area
    change = compute_change(end_price, start_price)
    return HistorySummary(
        start_price=start_price,
        end_price=end_price,
        change_percent=change[0] if change else None,
        change_absolute=change[1] if change else None,
        data_points=len(snapshots),
    )


class TrendEngine:
    def __init__(self, repo: SupabaseRepo, lookback_days: int = 30, tz_name: str = "Europe/Warsaw") -> None:
        self.repo = repo
        self.lookback_days = lookback_days
        self.tz_name = tz_name

    def trend_for(self, city: str, district: str, offer_type: str, today: date | None = None) -> TrendDelta | None:
        row = self.repo.get_latest_snapshot(city, district, offer_type, on_or_before=today or local_today(self.tz_name))
        if row is None:
            return None
        return self.trend_from_current(DistrictStatSnapshot.from_record(row))

    def trend_from_current(self, current: DistrictStatSnapshot) -> TrendDelta | None:
        cutoff = current.date - timedelta(days=self.lookback_days)
        row = self.repo.get_latest_snapshot(current.city, current.district, current.offer_type, on_or_before=cutoff)
        if row is None:
            return None
        previous = DistrictStatSnapshot.from_record(row)
        change = compute_change(current.avg_price_per_area, previous.avg_price_per_area)
        if change is None:
            return None
        return TrendDelta(
            change_percent=change[0],
            change_absolute=change[1],
            current_date=current.date,
            current_price=current.avg_price_per_area,
            previous_date=previous.date,
            previous_price=previous.avg_price_per_area,
        )
