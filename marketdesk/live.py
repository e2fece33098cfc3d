"""
Process-wide live views: one synced fetcher per collection, newest first.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from marketdesk.db import CollectionStore
from marketdesk.fetcher import FetcherStatus, SyncedCollectionFetcher
from marketdesk.realtime import ChangeFeed
from marketdesk.storage import StorageClient

logger = logging.getLogger(__name__)


class LiveViews:
    def __init__(
        self,
        store: CollectionStore,
        storage: StorageClient,
        feed: ChangeFeed,
    ):
        self.store = store
        self.storage = storage
        self.feed = feed
        self._fetchers: dict[str, SyncedCollectionFetcher] = {}

    async def get(self, collection: str) -> SyncedCollectionFetcher:
        """
        Return the started fetcher for `collection`, creating it on first use.
        A fetcher left in ERRORED state is retried.
        """
        fetcher = self._fetchers.get(collection)
        if fetcher is None:
            created = SyncedCollectionFetcher(
                self.store,
                self.storage,
                self.feed,
                collection,
                order_by="created_at",
                descending=True,
            )
            await created.start()
            fetcher = self._fetchers.setdefault(collection, created)
            if fetcher is not created:
                created.close()
        elif fetcher.status == FetcherStatus.ERRORED:
            await fetcher.refresh()
        return fetcher

    async def refresh_all(self) -> None:
        for fetcher in list(self._fetchers.values()):
            await fetcher.refresh()

    async def poll(self, interval: float, collections: Optional[list[str]] = None) -> None:
        """Start `collections` and refresh every view every `interval` seconds."""
        for collection in collections or []:
            await self.get(collection)
        while True:
            await asyncio.sleep(interval)
            logger.info("Refreshing %d live view(s)", len(self._fetchers))
            await self.refresh_all()

    def close(self) -> None:
        for fetcher in self._fetchers.values():
            fetcher.close()
        self._fetchers.clear()
