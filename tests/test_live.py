import unittest

from live import MAX_NOTICES, LiveCollection, Notice, StatusBoard, scoped
from realtime import ChangeEvent
from workflow import RecordKind


def event(event_type, new=None, old=None, collection="order"):
    return ChangeEvent(collection=collection, event_type=event_type, new=new, old=old)


class LiveCollectionTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.view = LiveCollection([{"id": "a", "status": "pending", "version": 0}], newest_first=True)

    def test_insert_is_prepended(self):
        self.assertTrue(self.view.apply(event("INSERT", new={"id": "b", "status": "pending"})))
        self.assertEqual(self.view.ids(), ["b", "a"])

    def test_duplicate_insert_is_ignored(self):
        self.assertFalse(self.view.apply(event("INSERT", new={"id": "a", "status": "pending", "version": 0})))
        self.assertEqual(len(self.view), 1)

    def test_update_replaces_in_place(self):
        self.view.apply(event("INSERT", new={"id": "b", "status": "pending"}))
        self.assertTrue(self.view.apply(event("UPDATE", new={"id": "a", "status": "approved", "version": 1})))
        self.assertEqual(self.view.ids(), ["b", "a"])
        self.assertEqual(self.view.get("a")["status"], "approved")

    def test_repeated_update_is_a_no_op(self):
        update = event("UPDATE", new={"id": "a", "status": "approved", "version": 1})
        self.assertTrue(self.view.apply(update))
        self.assertFalse(self.view.apply(update))

    def test_stale_update_is_dropped(self):
        self.view.apply(event("UPDATE", new={"id": "a", "status": "approved", "version": 1}))
        self.assertFalse(self.view.apply(event("UPDATE", new={"id": "a", "status": "pending", "version": 0})))
        self.assertEqual(self.view.get("a")["status"], "approved")

    def test_delete_removes(self):
        self.assertTrue(self.view.apply(event("DELETE", old={"id": "a"})))
        self.assertNotIn("a", self.view)
        self.assertFalse(self.view.apply(event("DELETE", old={"id": "a"})))

    def test_scoped_view_drops_record_moved_elsewhere(self):
        salon = LiveCollection(
            [{"id": "f", "category": "salon", "available": True}, {"id": "m", "category": "fitness"}],
            predicate=scoped({"category": "salon"}, lambda record: record.get("available", True)),
        )
        self.assertEqual(salon.ids(), ["f"])
        moved = event("UPDATE", new={"id": "f", "category": "fitness", "available": True},
                      old={"id": "f", "category": "salon", "available": True}, collection="item")
        self.assertTrue(salon.apply(moved))
        self.assertNotIn("f", salon)
        self.assertFalse(salon.apply(moved))

    def test_predicate_filters_snapshot_and_updates(self):
        items = LiveCollection(
            [{"id": "x", "available": True}, {"id": "y", "available": False}],
            predicate=lambda record: record.get("available", True),
        )
        self.assertEqual(items.ids(), ["x"])
        self.assertTrue(items.apply(event("UPDATE", new={"id": "x", "available": False}, collection="item")))
        self.assertEqual(items.ids(), [])
        self.assertTrue(items.apply(event("UPDATE", new={"id": "y", "available": True}, collection="item")))
        self.assertEqual(items.ids(), ["y"])


class StatusBoardTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = {
            "o1": {"id": "o1", "status": "pending", "version": 0},
            "o2": {"id": "o2", "status": "completed", "version": 2},
            "o3": {"id": "o3", "status": "cancelled", "version": 1},
        }
        self.fail_with = None
        self.board = StatusBoard(RecordKind.ORDER, self.fetch, self.update)
        self.board.reload()

    def fetch(self):
        return [dict(record) for record in self.store.values()]

    def update(self, record_id, status):
        if self.fail_with:
            raise self.fail_with
        record = self.store[record_id]
        record.update(status=status, version=record["version"] + 1)
        return dict(record)

    def test_buckets(self):
        self.assertEqual([r["id"] for r in self.board.active], ["o1"])
        self.assertEqual([r["id"] for r in self.board.completed], ["o2"])

    def test_successful_transition(self):
        notice = self.board.transition("o1", "approved")
        self.assertEqual(notice, Notice("success", "Order marked as approved"))
        self.assertEqual(self.board.items.get("o1")["version"], 1)
        self.assertEqual(self.board.actions_for("o1"), ["completed"])

    def test_action_not_offered_is_refused(self):
        notice = self.board.transition("o1", "completed")
        self.assertEqual(notice.level, "error")
        self.assertEqual(self.store["o1"]["status"], "pending")

    def test_failed_write_reloads_from_store(self):
        self.fail_with = RuntimeError("network down")
        with self.assertLogs("live", level="WARNING"):
            notice = self.board.transition("o1", "approved")
        self.assertEqual(notice, Notice("error", "Error updating order: network down"))
        self.assertEqual(self.board.items.get("o1")["status"], "pending")

    def test_fetch_error_becomes_notice(self):
        def broken():
            raise RuntimeError("timeout")

        board = StatusBoard(RecordKind.BOOKING, broken, self.update)
        board.reload()
        self.assertEqual(list(board.notices), [Notice("error", "Error fetching bookings: timeout")])

    def test_notices_are_bounded(self):
        for _ in range(MAX_NOTICES + 5):
            self.board.transition("o2", "approved")
        self.assertEqual(len(self.board.notices), MAX_NOTICES)

    def test_booking_success_message(self):
        board = StatusBoard(RecordKind.BOOKING, lambda: [{"id": "b1", "status": "pending", "version": 0}],
                            lambda record_id, status: {"id": record_id, "status": status, "version": 1})
        board.reload()
        self.assertEqual(board.transition("b1", "confirmed"), Notice("success", "Booking confirmed successfully"))


if __name__ == "__main__":
    unittest.main()
