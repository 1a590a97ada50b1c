from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from pricemap.core.config import Settings
from pricemap.core.geo import centroid, district_slug, feature_name
from pricemap.core.normalize import city_key
from pricemap.core.supabase_repo import SupabaseRepo


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
LOGGER = logging.getLogger(__name__)


def districts_from_geojson(city: str, collection: dict[str, Any]) -> list[dict[str, Any]]:
    """
    District rows from a boundary FeatureCollection.

    Duplicate slugs keep the first feature. Features without a name or
    polygon geometry are skipped.
    """
    city_slug = city_key(city)
    seen: set[str] = set()
    rows: list[dict[str, Any]] = []
    for feature in collection.get("features") or []:
        name = feature_name(feature)
        center = centroid(feature.get("geometry"))
        if not name or center is None:
            LOGGER.warning("Skipping feature without name or polygon city=%s name=%r", city_slug, name)
            continue
        slug = district_slug(name)
        if slug in seen:
            continue
        seen.add(slug)
        rows.append(
            {
                "city": city_slug,
                "district": slug,
                "geojson": feature,
                "center_lat": center[0],
                "center_lng": center[1],
            }
        )
    return rows


def run_seed(
    city: str,
    path: str | Path,
    settings: Settings | None = None,
    repo: SupabaseRepo | None = None,
) -> int:
    with open(path, "r", encoding="utf-8") as handle:
        collection = json.load(handle)
    rows = districts_from_geojson(city, collection)
    if not rows:
        LOGGER.warning("No districts found in %s", path)
        return 0
    target = repo or SupabaseRepo.from_settings(settings or Settings.from_env())
    written = target.upsert_districts(rows)
    LOGGER.info("Seeded city=%s districts=%s written=%s", rows[0]["city"], len(rows), written)
    return written


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the district taxonomy from a GeoJSON boundary file.")
    parser.add_argument("--city", required=True, help="City slug, e.g. warszawa.")
    parser.add_argument("path", help="GeoJSON FeatureCollection with district polygons.")
    args = parser.parse_args()
    run_seed(args.city, args.path)
