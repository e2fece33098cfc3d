"""
Content operations behind the public pages and the admin panel.

Each service is a thin layer over the table store that performs the
client-side required-field checks before a write.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from marketdesk.auth import AuthSession
from marketdesk.db import CollectionStore
from marketdesk.errors import RecordValidationError
from marketdesk.records import Insight, MarketDataEntry, MarketDataFile, Post, Record

logger = logging.getLogger(__name__)

LATEST_INSIGHTS_LIMIT = 4


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise RecordValidationError(message)


def fallback_market_data() -> MarketDataEntry:
    """Placeholder row shown on the dashboard when no market data exists."""
    now = time.time()
    return MarketDataEntry(
        id="fallback",
        category="summary",
        created_at=now,
        updated_at=now,
        data_quality="raw",
        metrics={
            "Market Cap": "$1.2T",
            "24h Volume": "$45.6B",
            "BTC Dominance": "42.5%",
            "Active Markets": "45,678",
        },
        notes="This is sample market data. Real-time data will be displayed when available.",
        source="Market Data API",
    )


def search_rows(rows: list[dict], query: str) -> list[dict]:
    """Keep rows where any field's text contains `query`, ignoring case."""
    needle = (query or "").lower()
    if not needle:
        return rows
    return [
        row
        for row in rows
        if any(needle in str(value if value is not None else "").lower() for value in row.values())
    ]


@dataclass
class MarketDataService:
    store: CollectionStore
    collection: str = "market_data"

    def list_entries(self) -> list[Record]:
        return self.store.select(self.collection, order_by="created_at", descending=True)

    def list_for_export(self) -> list[Record]:
        return self.store.select(self.collection, order_by="date")

    def insert(
        self,
        *,
        category: Optional[str],
        value: Optional[float],
        images: Optional[list[str]] = None,
        session: Optional[AuthSession] = None,
        **extra: Any,
    ) -> Record:
        _require(bool(category) and value is not None, "Category and value are required")
        row = {"category": category, "value": value, "images": images or [], **extra}
        if session is not None:
            row["user_id"] = session.user.id
            row["user_email"] = session.user.email
        return self.store.insert(self.collection, row)

    def update(self, record_id: Optional[str], **changes: Any) -> Optional[Record]:
        _require(bool(record_id), "ID is required for update")
        updates = {k: v for k, v in changes.items() if v is not None}
        return self.store.update(self.collection, record_id, updates)

    def delete(self, record_id: Optional[str]) -> bool:
        _require(bool(record_id), "ID is required for delete")
        return self.store.delete(self.collection, record_id)


@dataclass
class PostService:
    store: CollectionStore
    collection: str = "posts"

    def get_post(self, post_id: str) -> Optional[Record]:
        return self.store.get(self.collection, post_id)

    def create_post(
        self,
        session: AuthSession,
        *,
        title: str,
        body: str,
        category: str,
        images: Optional[list[str]] = None,
        post_type: str = "blog",
    ) -> Post:
        _require(bool(title and title.strip()), "Title is required")
        return self.store.insert(
            self.collection,
            {
                "title": title,
                "body": body,
                "category": category,
                "images": images or [],
                "author_id": session.user.id,
                "post_type": post_type,
            },
        )


@dataclass
class InsightService:
    store: CollectionStore
    collection: str = "insights"

    def list_insights(self, limit: Optional[int] = None) -> list[Record]:
        return self.store.select(
            self.collection, order_by="created_at", descending=True, limit=limit
        )

    def featured(self) -> Optional[Record]:
        rows = self.store.select(
            self.collection,
            {"is_featured": True},
            order_by="created_at",
            descending=True,
            limit=1,
        )
        return rows[0] if rows else None

    def save(
        self,
        *,
        title: str,
        content: str,
        author: str,
        category: Optional[str] = None,
        is_featured: bool = False,
        images: Optional[list[str]] = None,
        insight_id: Optional[str] = None,
    ) -> Optional[Insight]:
        """Create an insight, or update the one with `insight_id`."""
        _require(
            bool(title.strip() and content.strip() and author.strip()),
            "Title, content, and author are required",
        )
        data = {
            "title": title.strip(),
            "content": content,
            "category": category or "general",
            "is_featured": bool(is_featured),
            "images": images or [],
            "author": author.strip(),
        }
        if insight_id:
            return self.store.update(self.collection, insight_id, data)
        return self.store.insert(self.collection, data)

    def delete(self, insight_id: str) -> bool:
        return self.store.delete(self.collection, insight_id)


@dataclass
class MarketDataFileService:
    store: CollectionStore
    collection: str = "market_data_files"

    def list_files(self) -> list[Record]:
        return self.store.select(self.collection, order_by="created_at", descending=True)

    def add(self, *, title: str, google_sheets_url: str, data_type: str = "clean") -> MarketDataFile:
        _require(bool(title and google_sheets_url), "Please fill in all required fields")
        return self.store.insert(
            self.collection,
            {
                "filename": title,
                "data_type": data_type,
                "google_sheets_url": google_sheets_url,
                "item_count": 0,
            },
        )

    def delete(self, file_id: str) -> bool:
        return self.store.delete(self.collection, file_id)


def dashboard_summary(store: CollectionStore) -> dict:
    insights = InsightService(store)
    latest_market = store.select(
        "market_data", order_by="created_at", descending=True, limit=1
    )
    return {
        "featured_insight": insights.featured(),
        "latest_insights": insights.list_insights(limit=LATEST_INSIGHTS_LIMIT),
        "market_data": latest_market[0] if latest_market else fallback_market_data(),
        "last_updated": time.time(),
    }


def admin_stats(store: CollectionStore) -> dict[str, int]:
    return {
        "insights": store.count("insights"),
        "market_data": store.count("market_data"),
        "users": store.count("profiles"),
    }
