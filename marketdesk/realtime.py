"""
Change feed abstraction for row-level insert/update/delete notifications.

Supports an in-memory feed for tests/local runs and a Redis pub/sub feed
for production, with one channel per collection.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Protocol

import redis

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """
    A single row change. Insert/Update carry the full row in `record`;
    Delete carries only `record_id`.
    """

    kind: EventType
    collection: str
    record: Optional[dict] = None
    record_id: Optional[str] = None

    def __post_init__(self):
        if self.record_id is None and self.record is not None:
            object.__setattr__(self, "record_id", self.record.get("id"))

    @classmethod
    def insert(cls, collection: str, record: dict) -> "ChangeEvent":
        return cls(EventType.INSERT, collection, record=record)

    @classmethod
    def update(cls, collection: str, record: dict) -> "ChangeEvent":
        return cls(EventType.UPDATE, collection, record=record)

    @classmethod
    def delete(cls, collection: str, record_id: str) -> "ChangeEvent":
        return cls(EventType.DELETE, collection, record_id=record_id)

    def to_json(self) -> str:
        return json.dumps(
            {
                "kind": self.kind.value,
                "collection": self.collection,
                "record": self.record,
                "record_id": self.record_id,
            },
            default=str,
        )

    @classmethod
    def from_json(cls, payload: str | bytes) -> "ChangeEvent":
        data = json.loads(payload)
        return cls(
            kind=EventType(data["kind"]),
            collection=data["collection"],
            record=data.get("record"),
            record_id=data.get("record_id"),
        )


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription(Protocol):
    def close(self) -> None:
        ...


class ChangeFeed(Protocol):
    """Minimal pub/sub interface keyed by collection name."""

    def publish(self, event: ChangeEvent) -> None:
        ...

    def subscribe(self, collection: str, callback: ChangeCallback) -> Subscription:
        ...


def _deliver(callback: ChangeCallback, event: ChangeEvent) -> None:
    try:
        callback(event)
    except Exception:
        logger.exception(
            "Change callback failed for %s event on %s",
            event.kind.value,
            event.collection,
        )


@dataclass
class InMemorySubscription:
    feed: "InMemoryChangeFeed"
    collection: str
    callback: ChangeCallback
    closed: bool = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        listeners = self.feed.listeners.get(self.collection, [])
        if self in listeners:
            listeners.remove(self)


@dataclass
class InMemoryChangeFeed:
    """Synchronous fan-out feed for testing/dev. Keeps the last `history` events."""

    listeners: dict[str, list[InMemorySubscription]] = field(default_factory=dict)
    history: int = 256

    def __post_init__(self):
        self.published: deque[ChangeEvent] = deque(maxlen=self.history)

    def publish(self, event: ChangeEvent) -> None:
        self.published.append(event)
        for subscription in list(self.listeners.get(event.collection, [])):
            _deliver(subscription.callback, event)

    def subscribe(
        self, collection: str, callback: ChangeCallback
    ) -> InMemorySubscription:
        subscription = InMemorySubscription(self, collection, callback)
        self.listeners.setdefault(collection, []).append(subscription)
        return subscription

    def subscriber_count(self, collection: str) -> int:
        return len(self.listeners.get(collection, []))


@dataclass
class RedisSubscription:
    pubsub: "redis.client.PubSub"
    thread: "redis.client.PubSubWorkerThread"

    def close(self) -> None:
        self.thread.stop()
        self.pubsub.close()


@dataclass
class RedisChangeFeed:
    """Redis pub/sub feed; events are JSON messages on `<prefix>:<collection>`."""

    url: str
    channel_prefix: str = "marketdesk:changes"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def channel(self, collection: str) -> str:
        return f"{self.channel_prefix}:{collection}"

    def publish(self, event: ChangeEvent) -> None:
        self.client.publish(self.channel(event.collection), event.to_json())

    def subscribe(
        self, collection: str, callback: ChangeCallback
    ) -> RedisSubscription:
        def handler(message: dict) -> None:
            try:
                event = ChangeEvent.from_json(message["data"])
            except (ValueError, KeyError):
                logger.warning("Dropping malformed change message on %s", collection)
                return
            _deliver(callback, event)

        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(**{self.channel(collection): handler})
        thread = pubsub.run_in_thread(sleep_time=0.5, daemon=True)
        logger.info("Subscribed to %s", self.channel(collection))
        return RedisSubscription(pubsub=pubsub, thread=thread)
