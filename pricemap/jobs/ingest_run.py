from __future__ import annotations

import argparse
import logging
import sys

from pricemap.collectors.base import Collector
from pricemap.collectors.feed.collector import FeedCollector
from pricemap.core.config import Settings
from pricemap.core.ingest import IngestResult, Ingestor
from pricemap.core.retry import call_with_retry
from pricemap.core.supabase_repo import SupabaseRepo


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
LOGGER = logging.getLogger(__name__)


def run_ingest(
    collector: Collector,
    settings: Settings | None = None,
    repo: SupabaseRepo | None = None,
) -> IngestResult:
    settings = settings or Settings.from_env()
    ingestor = Ingestor(repo or SupabaseRepo.from_settings(settings), batch_size=settings.ingest_batch_size)

    scraped = call_with_retry(
        collector.collect,
        label=f"fetch:{collector.source_name}",
        max_attempts=settings.storage_max_attempts,
    )
    LOGGER.info("Source=%s fetched=%s", collector.source_name, len(scraped))
    return ingestor.ingest(scraped)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ingest a scraped listings feed.")
    parser.add_argument("--feed", required=True, help="Path or http(s) URL of a JSON / JSON-lines feed.")
    args = parser.parse_args()

    result = run_ingest(FeedCollector(args.feed))
    if result.failed_batches:
        sys.exit(1)
