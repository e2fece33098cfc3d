"""
Keep a synced view of one collection and log every change event for it.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from marketdesk.config import get_settings
from marketdesk.dependencies import get_change_feed, get_storage_client, get_store
from marketdesk.fetcher import FetcherStatus, SyncedCollectionFetcher
from marketdesk.realtime import ChangeEvent
from marketdesk.records import COLLECTIONS, coerce_filters

logger = logging.getLogger(__name__)


async def watch(collection: str, interval: float, filters: dict) -> None:
    fetcher = SyncedCollectionFetcher(
        get_store(),
        get_storage_client(),
        get_change_feed(),
        collection,
        filters=filters,
        order_by="created_at",
        descending=True,
    )

    def log_event(event: ChangeEvent) -> None:
        logger.info("%s %s id=%s", event.kind.value, collection, event.record_id)

    subscription = get_change_feed().subscribe(collection, log_event)
    async with fetcher:
        if fetcher.status == FetcherStatus.ERRORED:
            logger.error("Initial load failed: %s", fetcher.error)
        logger.info("Watching %s (%d item(s))", collection, len(fetcher.items))
        try:
            await fetcher.poll(interval)
        finally:
            subscription.close()


def _parse_filter(value: str) -> tuple[str, str]:
    key, sep, raw = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected field=value, got {value!r}")
    return key, raw


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Watch a collection's change feed")
    parser.add_argument("collection", choices=sorted(COLLECTIONS))
    parser.add_argument(
        "--filter",
        type=_parse_filter,
        action="append",
        default=[],
        help="Equality filter as field=value (repeatable)",
    )
    parser.add_argument(
        "--interval-seconds",
        type=float,
        default=None,
        help="Seconds between full refreshes",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    interval = args.interval_seconds or get_settings().refresh_interval_seconds
    try:
        filters = coerce_filters(args.collection, dict(args.filter))
        asyncio.run(watch(args.collection, interval, filters))
    except KeyboardInterrupt:
        logger.info("Stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
