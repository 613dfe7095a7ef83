"""
Local list state kept current by change events.

LiveCollection is what a list view holds: a snapshot of a scoped collection
plus the events received since. StatusBoard layers the staff workflow on top
of it: optimistic status changes, merge of the stored record on success and a
full reload on failure.
"""
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, NamedTuple, Optional

from realtime import ChangeEvent
from workflow import RecordKind, available_actions, partition

logger = logging.getLogger(__name__)


class LiveCollection:
    def __init__(self, records: Iterable[dict] = (), predicate: Optional[Callable[[dict], bool]] = None, newest_first: bool = False):
        self.predicate = predicate
        self.newest_first = newest_first
        self._records: Dict[str, dict] = {}
        self.load(records)

    def load(self, records: Iterable[dict]) -> None:
        self._records = {}
        for record in records:
            if self._qualifies(record):
                self._records[record["id"]] = record

    @property
    def records(self) -> List[dict]:
        return list(self._records.values())

    def ids(self) -> List[str]:
        return list(self._records)

    def get(self, record_id: str) -> Optional[dict]:
        return self._records.get(record_id)

    def __len__(self):
        return len(self._records)

    def __contains__(self, record_id):
        return record_id in self._records

    def _qualifies(self, record: dict) -> bool:
        return self.predicate is None or self.predicate(record)

    def _is_stale(self, record: dict) -> bool:
        local = self._records.get(record["id"])
        if local is None:
            return False
        return record.get("version", 0) < local.get("version", 0)

    def apply(self, event: ChangeEvent) -> bool:
        """Fold one change event in; returns True when the list changed."""
        record = event.record
        record_id = record.get("id")
        if record_id is None:
            return False
        if event.event_type == "DELETE":
            return self.remove(record_id)
        if event.event_type == "INSERT" and record_id in self._records:
            return False
        return self.merge(record)

    def merge(self, record: dict) -> bool:
        record_id = record["id"]
        if not self._qualifies(record):
            return self.remove(record_id)
        if self._is_stale(record):
            logger.debug("dropping stale version of %s", record_id)
            return False
        if self._records.get(record_id) == record:
            return False
        if record_id not in self._records and self.newest_first:
            self._records = {record_id: record, **self._records}
        else:
            self._records[record_id] = record
        return True

    def remove(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    def patch(self, record_id: str, changes: Dict[str, Any]) -> bool:
        local = self._records.get(record_id)
        if local is None:
            return False
        self._records[record_id] = {**local, **changes}
        return True


def scoped(filter_dict: Optional[dict], predicate: Optional[Callable[[dict], bool]] = None) -> Callable[[dict], bool]:
    """Membership test for a list bound to an equality filter."""
    conditions = dict(filter_dict or {})

    def qualifies(record: dict) -> bool:
        if any(record.get(key) != value for key, value in conditions.items()):
            return False
        return predicate is None or predicate(record)

    return qualifies


MAX_NOTICES = 20


class Notice(NamedTuple):
    level: str
    message: str


def _success_message(kind: RecordKind, status: str) -> str:
    if kind == RecordKind.ORDER:
        return f"Order marked as {status}"
    return f"Booking {status} successfully"


class StatusBoard:
    """Staff view over orders or bookings.

    `fetch` returns the full scoped collection; `update` performs the remote
    status write and returns the stored record or raises.
    """

    def __init__(self, kind: RecordKind, fetch: Callable[[], List[dict]], update: Callable[[str, str], dict]):
        self.kind = RecordKind(kind)
        self._fetch = fetch
        self._update = update
        self.items = LiveCollection(newest_first=True)
        self.notices: Deque[Notice] = deque(maxlen=MAX_NOTICES)

    def reload(self) -> None:
        try:
            self.items.load(self._fetch())
        except Exception as exc:
            self._notify("error", f"Error fetching {self.kind.value}s: {exc}")

    @property
    def active(self) -> List[dict]:
        return partition(self.items.records)[0]

    @property
    def completed(self) -> List[dict]:
        return partition(self.items.records)[1]

    def actions_for(self, record_id: str) -> List[str]:
        record = self.items.get(record_id)
        if record is None:
            return []
        return available_actions(self.kind, record.get("status", ""))

    def on_event(self, event: ChangeEvent) -> bool:
        return self.items.apply(event)

    def transition(self, record_id: str, status: str) -> Notice:
        if status not in self.actions_for(record_id):
            return self._notify("error", f"Error updating {self.kind.value}: cannot mark as {status}")
        self.items.patch(record_id, {"status": status})
        try:
            stored = self._update(record_id, status)
        except Exception as exc:
            logger.warning("%s %s status write failed, reloading: %s", self.kind.value, record_id, exc)
            self.reload()
            return self._notify("error", f"Error updating {self.kind.value}: {exc}")
        if stored:
            self.items.merge(stored)
        return self._notify("success", _success_message(self.kind, status))

    def _notify(self, level: str, message: str) -> Notice:
        notice = Notice(level, message)
        self.notices.append(notice)
        return notice
