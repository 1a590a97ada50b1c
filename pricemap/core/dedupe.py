from __future__ import annotations

from typing import Any


def collapse_by_external_id(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Keep one row per external_id, preferring the latest scraped_at.

    One upsert statement may not touch the same conflict key twice.
    First-seen order of keys is preserved.
    """
    chosen: dict[str, dict[str, Any]] = {}
    for row in rows:
        external_id = row.get("external_id")
        if not external_id:
            continue
        existing = chosen.get(external_id)
        if existing is None or str(row.get("scraped_at") or "") >= str(existing.get("scraped_at") or ""):
            chosen[external_id] = row
    return list(chosen.values())
