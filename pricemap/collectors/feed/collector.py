from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import httpx

from pricemap.collectors.base import Collector
from pricemap.core.models import ScrapedListing, parse_timestamp
from pricemap.core.normalize import parse_price, parse_rooms, parse_size


LOGGER = logging.getLogger(__name__)


class FeedCollector(Collector):
    """
    Reads the scraper's export: a JSON array or JSON lines, from a file path or an http(s) URL.

    Keys may be camelCase (externalId, sizeM2, ...) or snake_case.
    """

    source_name = "feed"

    def __init__(self, location: str, timeout_seconds: float = 20.0) -> None:
        self.location = location
        self.timeout_seconds = timeout_seconds

    def fetch(self) -> list[dict[str, Any]]:
        if self.location.startswith(("http://", "https://")):
            with httpx.Client(timeout=self.timeout_seconds, follow_redirects=True) as client:
                response = client.get(self.location, headers={"Accept": "application/json"})
                response.raise_for_status()
                text = response.text
        else:
            text = Path(self.location).read_text(encoding="utf-8")
        return parse_feed_text(text)

    def to_scraped(self, raw_item: dict[str, Any]) -> ScrapedListing | None:
        external_id = _pick(raw_item, "externalId", "external_id")
        scraped_at_raw = _pick(raw_item, "scrapedAt", "scraped_at")
        price = parse_price(_pick(raw_item, "price"))
        size_m2 = parse_size(_pick(raw_item, "sizeM2", "size_m2"))
        if not external_id or price is None or size_m2 is None:
            LOGGER.debug("Skipping feed item without id/price/size: %s", raw_item.get("url"))
            return None
        try:
            scraped_at = parse_timestamp(scraped_at_raw) if scraped_at_raw else self.fetch_timestamp()
        except ValueError:
            LOGGER.debug("Skipping feed item with bad scrapedAt=%r", scraped_at_raw)
            return None

        return ScrapedListing(
            external_id=str(external_id),
            source=str(_pick(raw_item, "source") or self.source_name),
            city=str(_pick(raw_item, "city") or "").strip(),
            district=str(_pick(raw_item, "district", "location") or ""),
            price=float(price),
            size_m2=size_m2,
            offer_type=str(_pick(raw_item, "offerType", "offer_type") or "sale").lower(),
            url=str(_pick(raw_item, "url") or ""),
            scraped_at=scraped_at,
            address=_pick(raw_item, "address"),
            lat=_optional_float(_pick(raw_item, "lat")),
            lng=_optional_float(_pick(raw_item, "lng", "lon")),
            rooms=parse_rooms(_pick(raw_item, "rooms")),
            title=_pick(raw_item, "title"),
            thumbnail_url=_pick(raw_item, "thumbnailUrl", "thumbnail_url"),
        )


def parse_feed_text(text: str) -> list[dict[str, Any]]:
    stripped = text.strip()
    if not stripped:
        return []
    if stripped.startswith("["):
        payload = json.loads(stripped)
        return [item for item in payload if isinstance(item, dict)]
    items: list[dict[str, Any]] = []
    for line_no, line in enumerate(stripped.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            item = json.loads(line)
        except json.JSONDecodeError:
            LOGGER.warning("Skipping malformed feed line=%s", line_no)
            continue
        if isinstance(item, dict):
            items.append(item)
    return items


def _pick(item: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value is not None and value != "":
            return value
    return None


def _optional_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None
