import json
import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from pricemap.collectors.feed.collector import FeedCollector
from pricemap.core.config import Settings
from pricemap.core.models import ListingFilters
from pricemap.core.normalize import city_key
from pricemap.core.read_api import ReadService
from pricemap.jobs import daily_run
from pricemap.jobs.daily_run import run_daily
from pricemap.jobs.ingest_run import run_ingest
from pricemap.jobs.purge_listings import run_purge
from pricemap.jobs.seed_districts import run_seed


SETTINGS = Settings(supabase_url=None, supabase_key=None, aggregate_workers=2)


def test_backfill_aggregates_requested_day(repo, make_scraped):
    repo.add_district("warszawa", "mokotow")
    run_ingest(_ListCollector([make_scraped("a"), make_scraped("b", price=900000.0)]), settings=SETTINGS, repo=repo)

    summary = run_daily(as_of=date(2026, 3, 10), settings=SETTINGS, repo=repo)

    assert summary.aggregated == 1
    assert repo.stats[("warszawa", "mokotow", "2026-03-10", "sale")]["listing_count"] == 2


def test_future_backfill_is_rejected(repo):
    with pytest.raises(ValueError, match="future"):
        run_daily(as_of=date.today() + timedelta(days=5), settings=SETTINGS, repo=repo)


def test_guard_skips_outside_configured_time(repo, monkeypatch):
    monkeypatch.setattr(daily_run, "should_run_local_time", lambda *args, **kwargs: False)
    gated = Settings(supabase_url=None, supabase_key=None, run_hour=3)
    assert run_daily(settings=gated, repo=repo) is None
    assert run_daily(settings=gated, repo=repo, force_run=True) is not None


def test_cancel_event_is_forwarded(repo):
    repo.add_district("warszawa", "mokotow")
    cancel = threading.Event()
    cancel.set()
    summary = run_daily(as_of=date(2026, 3, 10), settings=SETTINGS, repo=repo, cancel_event=cancel)
    assert summary.cancelled == 2


def test_purge_deletes_only_stale_listings(repo, make_scraped):
    repo.add_district("warszawa", "mokotow")
    now = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
    run_ingest(
        _ListCollector(
            [
                make_scraped("fresh", scraped_at=now - timedelta(days=2)),
                make_scraped("stale", scraped_at=now - timedelta(days=45)),
            ]
        ),
        settings=SETTINGS,
        repo=repo,
    )
    repo.add_snapshot("warszawa", "mokotow", "sale", date(2025, 12, 1), 15000)

    assert run_purge(settings=SETTINGS, repo=repo, now_utc=now) == 1
    assert list(repo.listings) == ["fresh"]
    assert len(repo.stats) == 1


def test_purge_rejects_zero_retention(repo):
    with pytest.raises(ValueError):
        run_purge(days=0, settings=SETTINGS, repo=repo)


def test_ingest_feed_file(repo, tmp_path):
    repo.add_district("warszawa", "wola")
    feed = tmp_path / "feed.json"
    feed.write_text(
        json.dumps(
            [
                {
                    "externalId": "f-1",
                    "city": "warszawa",
                    "district": "Wola, Warszawa",
                    "price": 640000,
                    "sizeM2": 40,
                    "offerType": "sale",
                    "scrapedAt": "2026-03-10T08:00:00Z",
                }
            ]
        ),
        encoding="utf-8",
    )
    result = run_ingest(FeedCollector(str(feed)), settings=SETTINGS, repo=repo)
    assert result.inserted == 1
    assert repo.listings["f-1"]["district"] == "wola"


class _ListCollector:
    source_name = "fixture"

    def __init__(self, listings):
        self.listings = listings

    def collect(self):
        return list(self.listings)


def test_city_with_diacritics_is_one_key_everywhere(repo, make_scraped, square_feature, tmp_path):
    feature = square_feature(19.95, 50.03)
    feature["properties"] = {"name": "Podgórze"}
    path = tmp_path / "krakow.geojson"
    path.write_text(json.dumps({"type": "FeatureCollection", "features": [feature]}), encoding="utf-8")
    run_seed("Kraków", path, repo=repo)

    result = run_ingest(
        _ListCollector([make_scraped("k-1", city="Kraków", district="Podgórze, Kraków")]),
        settings=SETTINGS,
        repo=repo,
    )
    assert result.inserted == 1
    assert result.dropped_unmatched == 0
    assert repo.listings["k-1"]["city"] == "krakow"

    summary = run_daily(as_of=date(2026, 3, 10), cities=["Kraków"], settings=SETTINGS, repo=repo)
    assert summary.aggregated == 1

    service = ReadService(repo, today=lambda: date(2026, 3, 10))
    for name in ("Kraków", " KRAKÓW ", "krakow"):
        stats = service.get_district_stats(name)
        assert [entry["district"] for entry in stats["districts"]] == ["podgorze"]
        assert stats["districts"][0]["hasData"] is True
    assert service.get_listings(ListingFilters(city="Kraków", district="Podgórze"))["count"] == 1
    assert service.get_district_history("Kraków", "Podgórze")["summary"]["dataPoints"] == 1


def test_multi_word_city_key():
    assert city_key(" Zielona  Góra ") == "zielona-gora"
