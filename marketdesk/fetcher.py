"""
Synced collection fetcher: a live, in-memory view of one named collection.

The fetcher loads a snapshot from the table store, resolves image paths to
URLs, and keeps the snapshot current by applying change-feed events with
`apply`. Store and storage calls are blocking, so they run in worker
threads while the fetcher itself lives on one event loop.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Mapping, Optional

from marketdesk.db import CollectionStore
from marketdesk.errors import MarketDeskError, RecordValidationError
from marketdesk.realtime import ChangeEvent, ChangeFeed, EventType, Subscription
from marketdesk.records import ImageRecord, Record, parse_record, record_type
from marketdesk.storage import StorageClient

logger = logging.getLogger(__name__)


class FetcherStatus(str, Enum):
    IDLE = "IDLE"
    LOADING = "LOADING"
    READY = "READY"
    ERRORED = "ERRORED"


def apply(items: list[Record], event: ChangeEvent) -> list[Record]:
    """
    Return a new item list with `event` applied.

    Delete removes by id, Insert prepends (dropping any item with the same
    id), Update replaces in place. Updates and deletes for ids not present
    leave the list unchanged.
    """
    if event.kind == EventType.DELETE:
        return [item for item in items if item.id != event.record_id]

    record = parse_record(event.collection, event.record or {})
    if event.kind == EventType.INSERT:
        return [record] + [item for item in items if item.id != record.id]

    if not any(item.id == record.id for item in items):
        logger.debug(
            "Ignoring update for %s id=%s not in view", event.collection, record.id
        )
        return items
    updated: list[Record] = []
    for item in items:
        if item.id != record.id:
            updated.append(item)
            continue
        if (
            isinstance(record, ImageRecord)
            and isinstance(item, ImageRecord)
            and record.images == item.images
        ):
            record = record.model_copy(update={"image_urls": item.image_urls})
        updated.append(record)
    return updated


async def resolve_images(storage: StorageClient, item: Record) -> Record:
    """
    Return `item` with `image_urls` resolved from its storage paths.

    Never raises: if any path of the item fails to resolve, the item's URL
    list is empty.
    """
    paths = getattr(item, "images", None) or []
    if not paths:
        return item

    def _resolve() -> list[str]:
        return [storage.resolve_url(path) for path in paths]

    try:
        urls = await asyncio.to_thread(_resolve)
    except Exception as exc:
        logger.warning("Error fetching image URLs for id=%s: %s", item.id, exc)
        urls = []
    return item.model_copy(update={"image_urls": urls})


def _matches(record: Optional[dict], filters: Mapping[str, Any]) -> bool:
    if record is None:
        return True
    return all(record.get(key) == value for key, value in filters.items())


class SyncedCollectionFetcher:
    """
    Reactive view of a remote collection.

    `load()`/`refresh()` replace the whole view; `subscribe()` keeps it
    current between loads; `close()` releases the feed subscription and
    makes any in-flight load result be dropped.
    """

    def __init__(
        self,
        store: CollectionStore,
        storage: StorageClient,
        feed: ChangeFeed,
        collection: str,
        select: str = "*",
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        search: Optional[Mapping[str, str]] = None,
        with_images: bool = True,
    ):
        record_type(collection)
        self.store = store
        self.storage = storage
        self.feed = feed
        self.collection = collection
        self.select = select
        self.filters = {k: v for k, v in (filters or {}).items() if v is not None}
        self.order_by = order_by
        self.descending = descending
        self.limit = limit
        self.search = dict(search or {})
        self.with_images = with_images

        self.items: list[Record] = []
        self.status = FetcherStatus.IDLE
        self.error: Optional[str] = None
        self._subscription: Optional[Subscription] = None
        self._generation = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None

    async def load(self) -> list[Record]:
        if self._closed:
            return self.items
        self._generation += 1
        generation = self._generation
        self.status = FetcherStatus.LOADING
        self.error = None

        try:
            records = await asyncio.to_thread(
                self.store.select,
                self.collection,
                self.filters,
                order_by=self.order_by,
                descending=self.descending,
                limit=self.limit,
                search=self.search or None,
            )
        except MarketDeskError as exc:
            if generation != self._generation:
                return self.items
            logger.error("Error fetching %s: %s", self.collection, exc)
            self.status = FetcherStatus.ERRORED
            self.error = str(exc)
            return self.items

        if self.with_images and any(getattr(r, "images", None) for r in records):
            records = list(
                await asyncio.gather(
                    *(resolve_images(self.storage, record) for record in records)
                )
            )

        if generation != self._generation or self._closed:
            logger.debug("Dropping stale %s load (generation %d)", self.collection, generation)
            return self.items
        self.items = records
        self.status = FetcherStatus.READY
        return self.items

    async def refresh(self) -> list[Record]:
        """Reload from scratch, replacing the whole collection."""
        return await self.load()

    def subscribe(self) -> None:
        if self._closed or self._subscription is not None:
            return
        self._subscription = self.feed.subscribe(self.collection, self._on_event)

    def _on_event(self, event: ChangeEvent) -> None:
        if self._closed or event.collection != self.collection:
            return
        if self.filters and not _matches(event.record, self.filters):
            if event.kind == EventType.UPDATE:
                # Row moved out of the filtered view.
                event = ChangeEvent.delete(event.collection, event.record_id)
            else:
                return
        try:
            self.items = apply(self.items, event)
        except RecordValidationError as exc:
            logger.warning("Dropping %s event on %s: %s", event.kind.value, self.collection, exc)

    async def start(self) -> list[Record]:
        self.subscribe()
        return await self.load()

    async def poll(self, interval: float) -> None:
        """Refresh every `interval` seconds until closed or cancelled."""
        while not self._closed:
            await asyncio.sleep(interval)
            if self._closed:
                break
            await self.refresh()

    def close(self) -> None:
        self._closed = True
        self._generation += 1
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    async def __aenter__(self) -> "SyncedCollectionFetcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def rows(self) -> list[dict]:
        """Current items as JSON-ready dicts limited to the selected fields."""
        fields = None
        if self.select.strip() != "*":
            fields = {f.strip() for f in self.select.split(",") if f.strip()}
            fields |= {"id", "image_urls"}
        rows = []
        for item in self.items:
            data = item.model_dump()
            if fields is not None:
                data = {k: v for k, v in data.items() if k in fields}
            rows.append(data)
        return rows
