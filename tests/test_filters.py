"""
Unit tests for list view filters.
"""
import unittest
from datetime import datetime, timedelta, timezone

from filters import filter_status, filter_time_frame, search_records, sort_recent
from schemas import EmergencyRequest

NOW = datetime(2024, 5, 20, 12, tzinfo=timezone.utc)


class TestFilters(unittest.TestCase):

    def setUp(self):
        self.trips = [
            EmergencyRequest(id="t1", user_name="Alice", driver_name="Bob", status="accepted", created_at=NOW - timedelta(hours=2)),
            EmergencyRequest(id="t2", user_name="Carol", status="completed", created_at=NOW - timedelta(days=3)),
            EmergencyRequest(id="t3", user_name="Dave", status="cancelled", created_at=NOW - timedelta(days=20)),
            EmergencyRequest(id="t4", user_name="Erin", status="pending"),
        ]

    def test_search_is_case_insensitive(self):
        found = search_records(self.trips, "bOB", ("user_name", "driver_name"))

        self.assertEqual([t.id for t in found], ["t1"])

    def test_empty_search_keeps_everything(self):
        self.assertEqual(len(search_records(self.trips, "", ("user_name",))), 4)

    def test_status_filter(self):
        self.assertEqual([t.id for t in filter_status(self.trips, "completed")], ["t2"])
        self.assertEqual([t.id for t in filter_status(self.trips, "in_progress")], ["t1"])
        self.assertEqual(len(filter_status(self.trips, "all")), 4)

    def test_time_frames(self):
        def ids(frame):
            return [t.id for t in filter_time_frame(self.trips, frame, now=NOW)]

        self.assertEqual(ids("today"), ["t1", "t4"])
        self.assertEqual(ids("week"), ["t1", "t2", "t4"])
        self.assertEqual(ids("month"), ["t1", "t2", "t3", "t4"])
        self.assertEqual(ids("all"), ["t1", "t2", "t3", "t4"])

    def test_sort_recent_puts_undated_last(self):
        ordered = sort_recent(list(reversed(self.trips)))

        self.assertEqual([t.id for t in ordered], ["t1", "t2", "t3", "t4"])


if __name__ == "__main__":
    unittest.main()
