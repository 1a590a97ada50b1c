from __future__ import annotations

import re
import unicodedata
from datetime import timezone
from typing import Any, Iterable

from pricemap.core.models import ScrapedListing


# Letters without an NFD decomposition.
_EXTRA_FOLDS = str.maketrans({"ł": "l", "đ": "d", "ø": "o", "ß": "ss"})
_LOCATION_SPLIT_RE = re.compile(r"[,\-/]")


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.translate(_EXTRA_FOLDS)


def normalize_key(value: str) -> str:
    """
    Lowercase, trim, whitespace runs to dashes, diacritics removed.
    """
    lowered = value.lower().strip()
    dashed = "-".join(lowered.split())
    return strip_diacritics(dashed)


def city_key(city: str) -> str:
    """Stored form of a city name: "Zielona Góra" -> "zielona-gora"."""
    return normalize_key(city)


def build_candidate_map(canonical_names: Iterable[str]) -> dict[str, str]:
    candidates: dict[str, str] = {}
    for name in canonical_names:
        if not name:
            continue
        lowered = name.lower().strip()
        folded = strip_diacritics(lowered)
        for variant in (lowered, folded):
            for key in (variant, "-".join(variant.split()), variant.replace("-", " ")):
                if key:
                    candidates.setdefault(key, name)
    return candidates


def normalize_district(raw_fragment: str | None, candidates: dict[str, str]) -> str | None:
    if not raw_fragment or not candidates:
        return None
    cleaned = normalize_key(raw_fragment)
    if not cleaned:
        return None

    if cleaned in candidates:
        return candidates[cleaned]
    with_spaces = cleaned.replace("-", " ")
    if with_spaces in candidates:
        return candidates[with_spaces]

    # Longest key first, then lexical.
    for key, canonical in sorted(candidates.items(), key=lambda item: (-len(item[0]), item[0])):
        loose_key = key.replace("-", " ").strip()
        if not loose_key:
            continue
        if loose_key in with_spaces or with_spaces in loose_key:
            return canonical
    return None


def resolve_district(location: str | None, candidates: dict[str, str]) -> tuple[str | None, str | None]:
    """
    Resolve a scraped location line such as "Mokotów, Warszawa, mazowieckie".

    Returns (district, address hint). The address hint is the leading comma part
    when the district was found further along the line.
    """
    if not location:
        return None, None
    parts = [part.strip() for part in location.split(",") if part.strip()]
    fine_parts = [part.strip() for part in _LOCATION_SPLIT_RE.split(location) if part.strip()]
    for part in [*parts, *fine_parts]:
        district = normalize_district(part, candidates)
        if district:
            address = parts[0] if parts and parts[0] != part else None
            return district, address
    return None, None


def parse_price(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(round(value))
    cleaned = re.sub(r"[^\d,.]", "", str(value)).replace(",", ".")
    try:
        return int(round(float(cleaned)))
    except ValueError:
        return None


def parse_size(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = re.search(r"(\d+[,.]?\d*)", str(value))
    if not match:
        return None
    return float(match.group(1).replace(",", "."))


def parse_rooms(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    match = re.search(r"(\d+)", str(value))
    return int(match.group(1)) if match else None


def listing_to_record(listing: ScrapedListing, district: str, address: str | None = None) -> dict[str, Any]:
    """
    Row for the listings table. price_per_m2 is generated by storage and never sent.
    """
    lat = listing.lat if listing.lat is not None and -90 <= float(listing.lat) <= 90 else None
    lng = listing.lng if listing.lng is not None and -180 <= float(listing.lng) <= 180 else None
    scraped_at = listing.scraped_at
    if scraped_at.tzinfo is None:
        scraped_at = scraped_at.replace(tzinfo=timezone.utc)
    return {
        "external_id": listing.external_id,
        "source": listing.source,
        "city": city_key(listing.city),
        "district": district,
        "address": listing.address or address,
        "lat": lat,
        "lng": lng,
        "price": listing.price,
        "size_m2": listing.size_m2,
        "rooms": listing.rooms,
        "offer_type": listing.offer_type,
        "url": listing.url,
        "title": listing.title,
        "thumbnail_url": listing.thumbnail_url,
        "scraped_at": scraped_at.astimezone(timezone.utc).isoformat(),
    }
