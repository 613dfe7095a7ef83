import unittest

from realtime import ChangeEvent, ChangeFeed, order_notice


class ChangeFeedTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.feed = ChangeFeed()
        self.received = []

    def test_delivers_to_matching_subscribers_only(self):
        self.feed.subscribe("order", self.received.append, {"type": "catering"})
        catering = ChangeEvent(collection="order", event_type="INSERT", new={"id": "1", "type": "catering"})
        stationery = ChangeEvent(collection="order", event_type="INSERT", new={"id": "2", "type": "stationery"})
        self.assertEqual(self.feed.publish(catering), 1)
        self.assertEqual(self.feed.publish(stationery), 0)
        self.assertEqual([e.record_id for e in self.received], ["1"])

    def test_collections_are_isolated(self):
        self.feed.subscribe("booking", self.received.append)
        self.feed.publish(ChangeEvent(collection="order", event_type="INSERT", new={"id": "1"}))
        self.assertEqual(self.received, [])

    def test_delete_matches_on_old_record(self):
        self.feed.subscribe("order", self.received.append, {"user_id": "u1"})
        self.feed.publish(ChangeEvent(collection="order", event_type="DELETE", old={"id": "1", "user_id": "u1"}))
        self.assertEqual(len(self.received), 1)
        self.assertEqual(self.received[0].record_id, "1")

    def test_update_leaving_the_filter_is_still_delivered(self):
        self.feed.subscribe("item", self.received.append, {"category": "salon"})
        moved = ChangeEvent(collection="item", event_type="UPDATE",
                            new={"id": "1", "category": "fitness"}, old={"id": "1", "category": "salon"})
        arrived = ChangeEvent(collection="item", event_type="UPDATE",
                              new={"id": "2", "category": "salon"}, old={"id": "2", "category": "movie"})
        unrelated = ChangeEvent(collection="item", event_type="UPDATE",
                                new={"id": "3", "category": "movie"}, old={"id": "3", "category": "fitness"})
        for change in (moved, arrived, unrelated):
            self.feed.publish(change)
        self.assertEqual([e.record_id for e in self.received], ["1", "2"])

    def test_closed_subscription_stops_receiving(self):
        with self.feed.subscribe("item", self.received.append) as sub:
            self.feed.publish(ChangeEvent(collection="item", event_type="INSERT", new={"id": "1"}))
        self.assertTrue(sub.closed)
        self.feed.publish(ChangeEvent(collection="item", event_type="INSERT", new={"id": "2"}))
        self.assertEqual(len(self.received), 1)
        self.assertEqual(self.feed.subscribers("item"), [])

    def test_failing_callback_does_not_block_others(self):
        def broken(event):
            raise RuntimeError("view gone")

        self.feed.subscribe("item", broken)
        self.feed.subscribe("item", self.received.append)
        with self.assertLogs("realtime", level="ERROR"):
            delivered = self.feed.publish(ChangeEvent(collection="item", event_type="INSERT", new={"id": "1"}))
        self.assertEqual(delivered, 1)
        self.assertEqual(len(self.received), 1)


class OrderNoticeTestCase(unittest.TestCase):
    def test_approved_order(self):
        event = ChangeEvent(collection="order", event_type="UPDATE", new={"id": "1", "status": "approved"})
        self.assertEqual(order_notice(event), "Order Approved! Wait for 15 minutes and collect it near the store.")

    def test_confirmed_booking(self):
        event = ChangeEvent(collection="booking", event_type="UPDATE", new={"id": "1", "status": "confirmed"})
        self.assertEqual(order_notice(event), "Booking Confirmed! Please arrive in 15 minutes.")

    def test_other_changes_are_silent(self):
        self.assertIsNone(order_notice(ChangeEvent(collection="order", event_type="INSERT", new={"status": "approved"})))
        self.assertIsNone(order_notice(ChangeEvent(collection="order", event_type="UPDATE", new={"status": "completed"})))


if __name__ == "__main__":
    unittest.main()
