from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from pricemap.core.models import ScrapedListing


class Collector(ABC):
    source_name: str

    @abstractmethod
    def fetch(self) -> list[dict[str, Any]]:
        """Fetch raw scraped items."""

    @abstractmethod
    def to_scraped(self, raw_item: dict[str, Any]) -> ScrapedListing | None:
        """Map a raw item onto the ingest record, None if it is unusable."""

    def collect(self) -> list[ScrapedListing]:
        out: list[ScrapedListing] = []
        for item in self.fetch():
            listing = self.to_scraped(item)
            if listing is not None:
                out.append(listing)
        return out

    def fetch_timestamp(self) -> datetime:
        return datetime.now(timezone.utc)
