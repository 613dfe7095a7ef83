"""
Dashboard composition: which view each role gets.
"""
from typing import Iterable, List, Optional

from pydantic import BaseModel

from workflow import ACTIVE_BOOKING_STATUSES, Category, Role, revenue


class Panel(BaseModel):
    key: str
    title: str
    resource: str  # items | orders | bookings | overview | activity
    scope: Optional[Category] = None


class NavItem(BaseModel):
    label: str
    href: str


class ServiceCard(BaseModel):
    title: str
    description: str
    href: str
    category: Category
    mode: str  # order | booking


class Dashboard(BaseModel):
    role: Role
    role_label: str
    title: str
    description: str
    panels: List[Panel]
    nav: List[NavItem]
    services: List[ServiceCard] = []


ROLE_INFO = {
    Role.VOYAGER: ("Voyager", "Passenger - Order services and book amenities"),
    Role.ADMIN: ("Admin", "Manage items, menus, and voyager registrations"),
    Role.MANAGER: ("Manager", "View all bookings and reservations"),
    Role.HEAD_COOK: ("Head Cook", "View and manage catering orders"),
    Role.SUPERVISOR: ("Supervisor", "View and manage stationery orders"),
}

ROLE_LABELS = {
    Role.VOYAGER: "Voyager",
    Role.ADMIN: "Administrator",
    Role.MANAGER: "Manager",
    Role.HEAD_COOK: "Head Cook",
    Role.SUPERVISOR: "Supervisor",
}

VOYAGER_SERVICES = [
    ServiceCard(title="Catering Services", description="Order delicious meals, snacks, and beverages",
                href="/dashboard/catering", category=Category.CATERING, mode="order"),
    ServiceCard(title="Stationery Shop", description="Browse gifts, chocolates, and souvenirs",
                href="/dashboard/stationery", category=Category.STATIONERY, mode="order"),
    ServiceCard(title="Resort Movies", description="Book tickets for exclusive screenings",
                href="/dashboard/movies", category=Category.MOVIE, mode="booking"),
    ServiceCard(title="Beauty Salon", description="Premium spa and beauty treatments",
                href="/dashboard/salon", category=Category.SALON, mode="booking"),
    ServiceCard(title="Fitness Center", description="State-of-the-art equipment and training",
                href="/dashboard/fitness", category=Category.FITNESS, mode="booking"),
    ServiceCard(title="Party Hall", description="Celebrate special occasions at sea",
                href="/dashboard/party-hall", category=Category.PARTY_HALL, mode="booking"),
]

# Route segment under /dashboard -> category a voyager browses there.
VOYAGER_ROUTES = {card.href.rsplit("/", 1)[-1]: card.category for card in VOYAGER_SERVICES}

_HOME = NavItem(label="Dashboard", href="/dashboard")

DASHBOARDS = {
    Role.ADMIN: Dashboard(
        role=Role.ADMIN,
        role_label=ROLE_LABELS[Role.ADMIN],
        title="Admin Dashboard",
        description="Manage cruise services, items, and bookings.",
        panels=[
            Panel(key="services", title="Services & Items", resource="items"),
            Panel(key="orders", title="Orders", resource="orders"),
            Panel(key="bookings", title="Bookings", resource="bookings"),
            Panel(key="overview", title="Overview", resource="overview"),
        ],
        nav=[_HOME, NavItem(label="Manage Items", href="/admin/items")],
    ),
    Role.MANAGER: Dashboard(
        role=Role.MANAGER,
        role_label=ROLE_LABELS[Role.MANAGER],
        title="Manager Dashboard",
        description="Manage services, items, orders, and bookings.",
        panels=[
            Panel(key="orders", title="Orders", resource="orders"),
            Panel(key="bookings", title="Bookings", resource="bookings"),
            Panel(key="services", title="Services", resource="items"),
            Panel(key="overview", title="Overview", resource="overview"),
        ],
        nav=[_HOME, NavItem(label="All Bookings", href="/bookings")],
    ),
    Role.HEAD_COOK: Dashboard(
        role=Role.HEAD_COOK,
        role_label=ROLE_LABELS[Role.HEAD_COOK],
        title="Head Cook Dashboard",
        description="Manage catering orders and menu items",
        panels=[
            Panel(key="orders", title="Active Orders", resource="orders", scope=Category.CATERING),
            Panel(key="menu", title="Manage Menu", resource="items", scope=Category.CATERING),
        ],
        nav=[_HOME, NavItem(label="Catering Orders", href="/orders?type=catering")],
    ),
    Role.SUPERVISOR: Dashboard(
        role=Role.SUPERVISOR,
        role_label=ROLE_LABELS[Role.SUPERVISOR],
        title="Supervisor Dashboard",
        description="Manage stationery orders and inventory",
        panels=[
            Panel(key="orders", title="Active Orders", resource="orders", scope=Category.STATIONERY),
            Panel(key="inventory", title="Manage Inventory", resource="items"),
        ],
        nav=[_HOME, NavItem(label="Stationery Orders", href="/orders?type=stationery")],
    ),
    Role.VOYAGER: Dashboard(
        role=Role.VOYAGER,
        role_label=ROLE_LABELS[Role.VOYAGER],
        title="Welcome Aboard",
        description="Order services and book amenities for your voyage",
        panels=[Panel(key="home", title="Recent Activity", resource="activity")],
        nav=[_HOME] + [NavItem(label=label, href=card.href) for label, card in zip(
            ["Catering", "Stationery", "Movies", "Salon", "Fitness", "Party Hall"], VOYAGER_SERVICES)],
        services=VOYAGER_SERVICES,
    ),
}


def compose_dashboard(role: Optional[str]) -> Dashboard:
    try:
        key = Role(role)
    except ValueError:
        key = Role.VOYAGER
    return DASHBOARDS[key]


def recent_activity(orders: Iterable[dict], bookings: Iterable[dict], limit: int = 10) -> List[dict]:
    combined = [{**order, "kind": "order"} for order in orders]
    combined += [{**booking, "kind": "booking"} for booking in bookings]
    combined.sort(key=lambda record: str(record.get("created_at") or ""), reverse=True)
    return combined[:limit]


def overview_stats(role: Role, users: int, orders: List[dict], bookings: List[dict]) -> dict:
    stats = {"users": users, "revenue": revenue(orders, bookings)}
    if role == Role.MANAGER:
        stats["active_bookings"] = sum(1 for b in bookings if b.get("status") in ACTIVE_BOOKING_STATUSES)
    else:
        stats["orders"] = len(orders)
    return stats
