from pricemap.core.dedupe import collapse_by_external_id


def test_collapse_keeps_latest_scrape_per_external_id():
    rows = [
        {"external_id": "a", "price": 100, "scraped_at": "2026-03-09T10:00:00+00:00"},
        {"external_id": "b", "price": 200, "scraped_at": "2026-03-09T10:00:00+00:00"},
        {"external_id": "a", "price": 90, "scraped_at": "2026-03-10T10:00:00+00:00"},
        {"external_id": "a", "price": 120, "scraped_at": "2026-03-08T10:00:00+00:00"},
    ]
    collapsed = collapse_by_external_id(rows)
    assert [row["external_id"] for row in collapsed] == ["a", "b"]
    assert collapsed[0]["price"] == 90


def test_collapse_drops_rows_without_external_id():
    assert collapse_by_external_id([{"external_id": None, "price": 1}, {"price": 2}]) == []
