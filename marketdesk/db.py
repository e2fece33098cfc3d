"""
Table store abstraction for the hosted Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Dict, Mapping, Optional, Protocol

from sqlalchemy import JSON, Boolean, Column, Float, Integer, String, create_engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from marketdesk.errors import StoreError
from marketdesk.realtime import ChangeEvent, ChangeFeed
from marketdesk.records import Record, parse_record, record_fields, record_type


class CollectionStore(Protocol):
    """Interface for row access on named collections."""

    def select(
        self,
        collection: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        search: Optional[Mapping[str, str]] = None,
    ) -> list[Record]:
        ...

    def get(self, collection: str, record_id: str) -> Optional[Record]:
        ...

    def insert(self, collection: str, row: dict) -> Record:
        ...

    def update(self, collection: str, record_id: str, changes: dict) -> Optional[Record]:
        ...

    def delete(self, collection: str, record_id: str) -> bool:
        ...

    def count(self, collection: str) -> int:
        ...


def _active_filters(filters: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    return {k: v for k, v in (filters or {}).items() if v is not None}


def _new_row(row: dict) -> dict:
    payload = dict(row)
    payload.setdefault("id", uuid.uuid4().hex)
    payload.setdefault("created_at", time.time())
    return payload


def _store_error(exc: SQLAlchemyError) -> StoreError:
    # Surface the driver message (e.g. "relation ... does not exist").
    return StoreError(str(getattr(exc, "orig", None) or exc))


def _check_fields(collection: str, names) -> None:
    known = record_fields(collection)
    unknown = sorted(set(names) - known)
    if unknown:
        raise StoreError(
            f"column {collection}.{unknown[0]} does not exist"
        )


class InMemoryCollectionStore:
    """Simple in-memory table store for development and tests."""

    def __init__(self, feed: Optional[ChangeFeed] = None):
        self.feed = feed
        self.tables: Dict[str, Dict[str, dict]] = {}

    def _table(self, collection: str) -> Dict[str, dict]:
        record_type(collection)
        return self.tables.setdefault(collection, {})

    def _publish(self, event: ChangeEvent) -> None:
        if self.feed is not None:
            self.feed.publish(event)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.tables.clear()

    def select(
        self,
        collection: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        search: Optional[Mapping[str, str]] = None,
    ) -> list[Record]:
        table = self._table(collection)
        active = _active_filters(filters)
        _check_fields(collection, list(active) + list(search or {}))
        if order_by:
            _check_fields(collection, [order_by])

        rows = [
            row
            for row in table.values()
            if all(row.get(key) == value for key, value in active.items())
            and all(
                text.lower() in str(row.get(key) or "").lower()
                for key, text in (search or {}).items()
            )
        ]
        if order_by:
            rows.sort(
                key=lambda row: (row.get(order_by) is not None, row.get(order_by)),
                reverse=descending,
            )
        if limit is not None:
            rows = rows[:limit]
        return [parse_record(collection, row) for row in rows]

    def get(self, collection: str, record_id: str) -> Optional[Record]:
        row = self._table(collection).get(record_id)
        return parse_record(collection, row) if row else None

    def insert(self, collection: str, row: dict) -> Record:
        table = self._table(collection)
        record = parse_record(collection, _new_row(row))
        if record.id in table:
            raise StoreError(
                f'duplicate key value violates unique constraint "{collection}_pkey"'
            )
        table[record.id] = record.as_row()
        self._publish(ChangeEvent.insert(collection, record.as_row()))
        return record

    def update(self, collection: str, record_id: str, changes: dict) -> Optional[Record]:
        table = self._table(collection)
        existing = table.get(record_id)
        if existing is None:
            return None
        merged = {**existing, **changes, "id": record_id, "updated_at": time.time()}
        record = parse_record(collection, merged)
        table[record_id] = record.as_row()
        self._publish(ChangeEvent.update(collection, record.as_row()))
        return record

    def delete(self, collection: str, record_id: str) -> bool:
        removed = self._table(collection).pop(record_id, None)
        if removed is None:
            return False
        self._publish(ChangeEvent.delete(collection, record_id))
        return True

    def count(self, collection: str) -> int:
        return len(self._table(collection))


class PostgresCollectionStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str, feed: Optional[ChangeFeed] = None):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresCollectionStore")
        self.feed = feed
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _row_class(self, collection: str):
        record_type(collection)
        return ROW_CLASSES[collection]

    def _column(self, row_class, collection: str, name: str):
        if name not in row_class.__table__.columns:
            raise StoreError(f"column {collection}.{name} does not exist")
        return getattr(row_class, name)

    def _to_record(self, collection: str, row) -> Record:
        data = {c.key: getattr(row, c.key) for c in row.__table__.columns}
        return parse_record(collection, data)

    def _column_values(self, row_class, record: Record) -> dict:
        data = record.as_row()
        return {k: v for k, v in data.items() if k in row_class.__table__.columns}

    def _publish(self, event: ChangeEvent) -> None:
        if self.feed is not None:
            self.feed.publish(event)

    def select(
        self,
        collection: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        search: Optional[Mapping[str, str]] = None,
    ) -> list[Record]:
        row_class = self._row_class(collection)
        stmt = select(row_class)
        for key, value in _active_filters(filters).items():
            stmt = stmt.where(self._column(row_class, collection, key) == value)
        for key, text in (search or {}).items():
            stmt = stmt.where(
                self._column(row_class, collection, key).ilike(f"%{text}%")
            )
        if order_by:
            column = self._column(row_class, collection, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            with self.Session() as session:
                rows = session.execute(stmt).scalars().all()
                return [self._to_record(collection, row) for row in rows]
        except SQLAlchemyError as exc:
            raise _store_error(exc) from exc

    def get(self, collection: str, record_id: str) -> Optional[Record]:
        row_class = self._row_class(collection)
        try:
            with self.Session() as session:
                row = session.get(row_class, record_id)
                if not row:
                    return None
                return self._to_record(collection, row)
        except SQLAlchemyError as exc:
            raise _store_error(exc) from exc

    def insert(self, collection: str, row: dict) -> Record:
        row_class = self._row_class(collection)
        record = parse_record(collection, _new_row(row))
        try:
            with self.Session() as session:
                session.add(row_class(**self._column_values(row_class, record)))
                session.commit()
        except SQLAlchemyError as exc:
            raise _store_error(exc) from exc
        self._publish(ChangeEvent.insert(collection, record.as_row()))
        return record

    def update(self, collection: str, record_id: str, changes: dict) -> Optional[Record]:
        row_class = self._row_class(collection)
        try:
            with self.Session() as session:
                row = session.get(row_class, record_id)
                if not row:
                    return None
                current = self._to_record(collection, row).as_row()
                merged = {**current, **changes, "id": record_id, "updated_at": time.time()}
                record = parse_record(collection, merged)
                for key, value in self._column_values(row_class, record).items():
                    setattr(row, key, value)
                session.commit()
        except SQLAlchemyError as exc:
            raise _store_error(exc) from exc
        self._publish(ChangeEvent.update(collection, record.as_row()))
        return record

    def delete(self, collection: str, record_id: str) -> bool:
        row_class = self._row_class(collection)
        try:
            with self.Session() as session:
                row = session.get(row_class, record_id)
                if not row:
                    return False
                session.delete(row)
                session.commit()
        except SQLAlchemyError as exc:
            raise _store_error(exc) from exc
        self._publish(ChangeEvent.delete(collection, record_id))
        return True

    def count(self, collection: str) -> int:
        row_class = self._row_class(collection)
        try:
            with self.Session() as session:
                return session.execute(
                    select(func.count()).select_from(row_class)
                ).scalar_one()
        except SQLAlchemyError as exc:
            raise _store_error(exc) from exc


Base = declarative_base()


class PostRow(Base):
    __tablename__ = "posts"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    body = Column(String, nullable=False, default="")
    category = Column(String, nullable=False, default="uncategorized")
    images = Column(JSON, nullable=False, default=list)
    author_id = Column(String, nullable=True, index=True)
    post_type = Column(String, nullable=False, default="blog", index=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)


class InsightRow(Base):
    __tablename__ = "insights"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    content = Column(String, nullable=False)
    category = Column(String, nullable=False, default="general")
    is_featured = Column(Boolean, nullable=False, default=False, index=True)
    images = Column(JSON, nullable=False, default=list)
    author = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)


class MarketDataRow(Base):
    __tablename__ = "market_data"

    id = Column(String, primary_key=True)
    category = Column(String, nullable=False, index=True)
    value = Column(Float, nullable=True)
    images = Column(JSON, nullable=False, default=list)
    user_id = Column(String, nullable=True)
    user_email = Column(String, nullable=True)
    date = Column(String, nullable=True)
    item = Column(String, nullable=True)
    city = Column(String, nullable=True)
    price = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)


class MarketDataFileRow(Base):
    __tablename__ = "market_data_files"

    id = Column(String, primary_key=True)
    filename = Column(String, nullable=False)
    data_type = Column(String, nullable=False, default="clean")
    google_sheets_url = Column(String, nullable=True)
    item_count = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)


class ProfileRow(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=True)
    role = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)


ROW_CLASSES = {
    "posts": PostRow,
    "insights": InsightRow,
    "market_data": MarketDataRow,
    "market_data_files": MarketDataFileRow,
    "profiles": ProfileRow,
}
