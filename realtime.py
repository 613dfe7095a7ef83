"""
In-process change feed.

The database helpers publish one ChangeEvent per insert, update and delete;
views subscribe per collection with an optional equality filter and must
close their subscription when they go away.
"""
import itertools
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

EventType = Literal["INSERT", "UPDATE", "DELETE"]


class ChangeEvent(BaseModel):
    collection: str
    event_type: EventType
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None
    commit_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def record(self) -> Dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})

    @property
    def record_id(self) -> Optional[str]:
        return self.record.get("id")

    def matches(self, filter_dict: Optional[Dict[str, Any]]) -> bool:
        """True when the record matched the filter before or after the change."""
        if not filter_dict:
            return True
        return any(
            all(record.get(key) == value for key, value in filter_dict.items())
            for record in (self.new, self.old) if record
        )


Callback = Callable[[ChangeEvent], None]


class Subscription:
    def __init__(self, feed: "ChangeFeed", sub_id: int, collection: str, callback: Callback, filter_dict: Optional[dict]):
        self.id = sub_id
        self.collection = collection
        self.callback = callback
        self.filter = dict(filter_dict or {})
        self._feed = feed
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self._feed._remove(self)
            self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class ChangeFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._subscriptions: Dict[str, Dict[int, Subscription]] = {}

    def subscribe(self, collection: str, callback: Callback, filter_dict: Optional[dict] = None) -> Subscription:
        with self._lock:
            sub = Subscription(self, next(self._ids), collection, callback, filter_dict)
            self._subscriptions.setdefault(collection, {})[sub.id] = sub
        logger.debug("subscription %s opened on %s filter=%s", sub.id, collection, sub.filter)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            self._subscriptions.get(sub.collection, {}).pop(sub.id, None)
        logger.debug("subscription %s closed on %s", sub.id, sub.collection)

    def subscribers(self, collection: str) -> List[Subscription]:
        with self._lock:
            return list(self._subscriptions.get(collection, {}).values())

    def publish(self, event: ChangeEvent) -> int:
        """Deliver to matching subscribers; returns how many received it."""
        delivered = 0
        for sub in self.subscribers(event.collection):
            if not event.matches(sub.filter):
                continue
            try:
                sub.callback(event)
            except Exception:
                # One broken view must not starve the others.
                logger.exception("subscriber %s failed on %s %s", sub.id, event.collection, event.event_type)
                continue
            delivered += 1
        return delivered


feed = ChangeFeed()


def order_notice(event: ChangeEvent) -> Optional[str]:
    """Message a voyager sees when staff move their order or booking forward."""
    if event.event_type != "UPDATE" or not event.new:
        return None
    status = event.new.get("status")
    if event.collection == "order" and status == "approved":
        return "Order Approved! Wait for 15 minutes and collect it near the store."
    if event.collection == "booking" and status == "confirmed":
        return "Booking Confirmed! Please arrive in 15 minutes."
    return None
