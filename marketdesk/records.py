"""
Per-collection record types validated at the store boundary.
"""

from __future__ import annotations

import time
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from marketdesk.errors import RecordValidationError, StoreError


class Record(BaseModel):
    """Common shape of every stored row."""

    model_config = ConfigDict(extra="allow")

    id: str
    created_at: float = Field(default_factory=lambda: time.time())
    updated_at: Optional[float] = None

    def as_row(self) -> dict:
        """Return the persisted form (derived fields dropped)."""
        return self.model_dump(exclude={"image_urls"})


class ImageRecord(Record):
    """Record carrying storage paths plus their resolved URLs."""

    images: list[str] = Field(default_factory=list)
    # Resolved from `images` by the fetcher; never persisted.
    image_urls: list[str] = Field(default_factory=list)


class Post(ImageRecord):
    title: str
    body: str = ""
    category: str = "uncategorized"
    author_id: Optional[str] = None
    post_type: Literal["blog", "insight"] = "blog"


class Insight(ImageRecord):
    title: str
    content: str
    category: str = "general"
    is_featured: bool = False
    author: Optional[str] = None


class MarketDataEntry(ImageRecord):
    category: str
    value: Optional[float] = None
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    date: Optional[str] = None
    item: Optional[str] = None
    city: Optional[str] = None
    price: Optional[float] = None


class MarketDataFile(Record):
    filename: str
    data_type: Literal["clean", "raw"] = "clean"
    google_sheets_url: Optional[str] = None
    item_count: int = 0


class Profile(Record):
    email: Optional[str] = None
    role: Optional[str] = None


COLLECTIONS: dict[str, type[Record]] = {
    "posts": Post,
    "insights": Insight,
    "market_data": MarketDataEntry,
    "market_data_files": MarketDataFile,
    "profiles": Profile,
}


def record_type(collection: str) -> type[Record]:
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise StoreError(f"Unknown collection: {collection}") from None


def parse_record(collection: str, row: dict) -> Record:
    """Validate a raw row against the collection's record type."""
    model = record_type(collection)
    try:
        return model.model_validate(row)
    except ValidationError as exc:
        raise RecordValidationError(
            f"Invalid {collection} record: {exc.errors()[0]['msg']}"
        ) from exc


def record_fields(collection: str) -> set[str]:
    return set(record_type(collection).model_fields) - {"image_urls"}


def coerce_filters(collection: str, filters: dict[str, Any]) -> dict[str, Any]:
    """
    Convert filter values (usually query-string text) to each field's type so
    equality matches stored values. Unknown fields are passed through.
    """
    fields = record_type(collection).model_fields
    coerced: dict[str, Any] = {}
    for key, value in filters.items():
        info = fields.get(key)
        if info is None or value is None:
            coerced[key] = value
            continue
        try:
            coerced[key] = TypeAdapter(info.annotation).validate_python(value)
        except ValidationError as exc:
            raise RecordValidationError(
                f"Invalid filter value for {collection}.{key}"
            ) from exc
    return coerced
