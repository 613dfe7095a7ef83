"""
Catalog enums and the order/booking status workflow.

Every status change goes through `assert_transition`; the transition tables
below are the only source of truth for what a staff view may offer.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple


class Role(str, Enum):
    VOYAGER = "voyager"
    ADMIN = "admin"
    MANAGER = "manager"
    HEAD_COOK = "head_cook"
    SUPERVISOR = "supervisor"


class Category(str, Enum):
    CATERING = "catering"
    STATIONERY = "stationery"
    MOVIE = "movie"
    SALON = "salon"
    FITNESS = "fitness"
    PARTY_HALL = "party_hall"


# Goods are ordered with a quantity, services are booked for a date.
ORDER_CATEGORIES = {Category.CATERING, Category.STATIONERY}
BOOKING_CATEGORIES = {Category.MOVIE, Category.SALON, Category.FITNESS, Category.PARTY_HALL}


class RecordKind(str, Enum):
    ORDER = "order"
    BOOKING = "booking"


class OrderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ORDER_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.APPROVED, OrderStatus.CANCELLED},
    OrderStatus.APPROVED: {OrderStatus.COMPLETED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}

BOOKING_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

_STATUS_ENUMS = {RecordKind.ORDER: OrderStatus, RecordKind.BOOKING: BookingStatus}
_TRANSITIONS = {RecordKind.ORDER: ORDER_TRANSITIONS, RecordKind.BOOKING: BOOKING_TRANSITIONS}

for _kind, _table in _TRANSITIONS.items():
    _missing = set(_STATUS_ENUMS[_kind]) - set(_table)
    if _missing:
        raise RuntimeError(f"{_kind.value} transition table is missing {sorted(s.value for s in _missing)}")

# "preparing" and "delivered" are written by older clients; they are bucketed
# and counted but never offered as a transition target.
ACTIVE_STATUSES = {"pending", "approved", "confirmed", "preparing"}
COMPLETED_STATUSES = {"completed", "delivered"}

ORDER_REVENUE_STATUSES = {"approved", "preparing", "delivered", "completed"}
BOOKING_REVENUE_STATUSES = {"confirmed", "completed"}
ACTIVE_BOOKING_STATUSES = {"pending", "confirmed"}

# Server timestamp stamped alongside each target status.
TIMESTAMP_FIELDS = {
    "approved": "approved_at",
    "confirmed": "approved_at",
    "completed": "completed_at",
}

# Which order types each role works on; None means every type.
ORDER_STAFF_SCOPE: Dict[Role, Optional[Category]] = {
    Role.ADMIN: None,
    Role.MANAGER: None,
    Role.HEAD_COOK: Category.CATERING,
    Role.SUPERVISOR: Category.STATIONERY,
}
BOOKING_STAFF = {Role.ADMIN, Role.MANAGER}
STAFF_ROLES = {Role.ADMIN, Role.MANAGER, Role.HEAD_COOK, Role.SUPERVISOR}


class InvalidTransition(ValueError):
    """Raised when a status change is not in the transition table."""

    def __init__(self, kind: RecordKind, current: str, target: str):
        self.kind = RecordKind(kind)
        self.current = current
        self.target = target
        super().__init__(f"Invalid {self.kind.value} transition: {current} → {target}")


def assert_transition(kind: RecordKind, current: str, target: str):
    """Return the parsed target status or raise InvalidTransition."""
    kind = RecordKind(kind)
    try:
        current_status = _STATUS_ENUMS[kind](current)
        target_status = _STATUS_ENUMS[kind](target)
    except ValueError:
        raise InvalidTransition(kind, current, target) from None
    if target_status not in _TRANSITIONS[kind][current_status]:
        raise InvalidTransition(kind, current, target)
    return target_status


def available_actions(kind: RecordKind, status: str) -> List[str]:
    kind = RecordKind(kind)
    try:
        current = _STATUS_ENUMS[kind](status)
    except ValueError:
        return []
    # Declaration order keeps "approve" before "cancel" in every view.
    return [s.value for s in _STATUS_ENUMS[kind] if s in _TRANSITIONS[kind][current]]


def transition_update(kind: RecordKind, current: str, target: str, now: datetime) -> dict:
    """Build the `$set` payload for a validated status change."""
    target_status = assert_transition(kind, current, target)
    update = {"status": target_status.value}
    stamp = TIMESTAMP_FIELDS.get(target_status.value)
    if stamp:
        update[stamp] = now
    return update


def partition(records: Iterable[dict]) -> Tuple[List[dict], List[dict]]:
    active: List[dict] = []
    completed: List[dict] = []
    for record in records:
        status = record.get("status")
        if status in ACTIVE_STATUSES:
            active.append(record)
        elif status in COMPLETED_STATUSES:
            completed.append(record)
    return active, completed


def revenue(orders: Iterable[dict], bookings: Iterable[dict]) -> float:
    total = 0.0
    for order in orders:
        if order.get("status") in ORDER_REVENUE_STATUSES:
            total += float(order.get("total_amount") or 0)
    for booking in bookings:
        if booking.get("status") in BOOKING_REVENUE_STATUSES:
            total += float(booking.get("total_amount") or 0)
    return total


def order_scope_for(role: Role) -> Optional[Category]:
    """Order type a staff role is limited to, or None for all types."""
    return ORDER_STAFF_SCOPE.get(role)


def can_manage_orders(role: Role, order_type: Optional[str] = None) -> bool:
    if role not in ORDER_STAFF_SCOPE:
        return False
    scope = ORDER_STAFF_SCOPE[role]
    return scope is None or order_type is None or scope.value == order_type
