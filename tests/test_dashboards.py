import unittest

from dashboards import VOYAGER_ROUTES, compose_dashboard, overview_stats, recent_activity
from workflow import Category, Role


class ComposeDashboardTestCase(unittest.TestCase):
    def test_each_role_gets_its_own_title(self):
        titles = {role: compose_dashboard(role).title for role in Role}
        self.assertEqual(titles[Role.ADMIN], "Admin Dashboard")
        self.assertEqual(titles[Role.MANAGER], "Manager Dashboard")
        self.assertEqual(titles[Role.HEAD_COOK], "Head Cook Dashboard")
        self.assertEqual(titles[Role.SUPERVISOR], "Supervisor Dashboard")
        self.assertEqual(titles[Role.VOYAGER], "Welcome Aboard")

    def test_missing_or_unknown_role_falls_back_to_voyager(self):
        self.assertEqual(compose_dashboard(None).role, Role.VOYAGER)
        self.assertEqual(compose_dashboard("captain").role, Role.VOYAGER)

    def test_head_cook_panels_are_catering_scoped(self):
        panels = compose_dashboard("head_cook").panels
        self.assertTrue(all(panel.scope == Category.CATERING for panel in panels))

    def test_voyager_services(self):
        board = compose_dashboard(Role.VOYAGER)
        self.assertEqual(len(board.services), 6)
        self.assertEqual(VOYAGER_ROUTES["party-hall"], Category.PARTY_HALL)
        self.assertEqual(VOYAGER_ROUTES["movies"], Category.MOVIE)


class ActivityTestCase(unittest.TestCase):
    def test_recent_activity_is_merged_newest_first(self):
        orders = [{"id": "o1", "created_at": "2025-06-01T10:00:00"}, {"id": "o2", "created_at": "2025-06-03T10:00:00"}]
        bookings = [{"id": "b1", "created_at": "2025-06-02T10:00:00"}]
        merged = recent_activity(orders, bookings)
        self.assertEqual([(r["id"], r["kind"]) for r in merged], [("o2", "order"), ("b1", "booking"), ("o1", "order")])

    def test_overview_for_manager_counts_active_bookings(self):
        bookings = [{"status": "pending", "total_amount": 40}, {"status": "confirmed", "total_amount": 60},
                    {"status": "completed", "total_amount": 10}]
        stats = overview_stats(Role.MANAGER, 3, [], bookings)
        self.assertEqual(stats, {"users": 3, "revenue": 70.0, "active_bookings": 2})

    def test_overview_for_admin_counts_orders(self):
        orders = [{"status": "approved", "total_amount": 84}, {"status": "pending", "total_amount": 5}]
        stats = overview_stats(Role.ADMIN, 1, orders, [])
        self.assertEqual(stats, {"users": 1, "revenue": 84.0, "orders": 2})


if __name__ == "__main__":
    unittest.main()
