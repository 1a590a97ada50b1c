from datetime import datetime

from pricemap.core.models import ScrapedListing
from pricemap.core.normalize import (
    build_candidate_map,
    listing_to_record,
    normalize_district,
    normalize_key,
    parse_price,
    parse_rooms,
    parse_size,
    resolve_district,
)


def test_normalize_strips_diacritics():
    assert normalize_district("Śródmieście", {"srodmiescie": "srodmiescie"}) == "srodmiescie"


def test_normalize_dash_and_space_are_equivalent():
    assert normalize_district("stare-miasto", {"stare miasto": "Stare Miasto"}) == "Stare Miasto"
    assert normalize_district("  Stare   Miasto ", {"stare-miasto": "stare-miasto"}) == "stare-miasto"


def test_normalize_unmatched_returns_none():
    candidates = build_candidate_map(["srodmiescie", "stare-miasto", "mokotow"])
    assert normalize_district("Atlantis", candidates) is None
    assert normalize_district("", candidates) is None
    assert normalize_district(None, candidates) is None


def test_normalize_folds_polish_l():
    candidates = build_candidate_map(["bialoleka"])
    assert normalize_district("Białołęka", candidates) == "bialoleka"


def test_substring_fallback_prefers_longest_candidate():
    candidates = build_candidate_map(["wola", "wola-justowska"])
    assert normalize_district("Osiedle Wola Justowska Park", candidates) == "wola-justowska"
    assert normalize_district("Wola Park", candidates) == "wola"


def test_substring_fallback_is_order_independent():
    names = ["praga-polnoc", "praga-poludnie", "praga"]
    forward = build_candidate_map(names)
    backward = build_candidate_map(list(reversed(names)))
    for raw in ("Praga", "Praga Południe Gocław", "okolice praga-pol"):
        assert normalize_district(raw, forward) == normalize_district(raw, backward)


def test_candidate_map_registers_variants():
    candidates = build_candidate_map(["Stare Miasto"])
    assert candidates["stare miasto"] == "Stare Miasto"
    assert candidates["stare-miasto"] == "Stare Miasto"


def test_normalize_key():
    assert normalize_key("  Praga   Południe ") == "praga-poludnie"


def test_resolve_district_walks_location_parts():
    candidates = build_candidate_map(["mokotow", "wola"])
    assert resolve_district("Mokotów, Warszawa, mazowieckie", candidates) == ("mokotow", None)
    assert resolve_district("ul. Puławska 10, Mokotów, Warszawa", candidates) == ("mokotow", "ul. Puławska 10")
    assert resolve_district("Warszawa, mazowieckie", candidates) == (None, None)


def test_parsers_handle_noise():
    assert parse_price("1 250 000 zł") == 1250000
    assert parse_price("zapytaj o cenę") is None
    assert parse_size("48,5 m²") == 48.5
    assert parse_size("brak") is None
    assert parse_rooms("3 pokoje") == 3
    assert parse_rooms(None) is None


def test_listing_to_record_never_sends_price_per_area():
    listing = ScrapedListing(
        external_id="otodom-1",
        source="otodom",
        city=" Warszawa ",
        district="Mokotów",
        price=900000,
        size_m2=60,
        offer_type="sale",
        url="https://example.test/1",
        scraped_at=datetime(2026, 3, 10, 12, 0),
        lat=123.0,
    )
    record = listing_to_record(listing, district="mokotow")
    assert "price_per_m2" not in record
    assert record["city"] == "warszawa"
    assert record["lat"] is None
    assert record["scraped_at"] == "2026-03-10T12:00:00+00:00"
