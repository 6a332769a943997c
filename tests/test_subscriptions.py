"""
Unit tests for change-stream subscriptions.
"""
import threading
import time
import unittest
from collections import deque
from unittest.mock import MagicMock

from pymongo.errors import OperationFailure

from subscriptions import Subscription


class FakeChangeStream:
    def __init__(self, changes=None, error=None):
        self.changes = deque(changes or [])
        self.error = error
        self.close_calls = 0

    def try_next(self):
        if self.changes:
            return self.changes.popleft()
        if self.error is not None:
            raise self.error
        return None

    def close(self):
        self.close_calls += 1


class SlowChangeStream:
    """A stream whose reads block like a getMore waiting on the server."""

    def __init__(self, delay):
        self.delay = delay
        self.reading = threading.Event()
        self.released = threading.Event()
        self.read_by = None
        self.closed_by = None
        self.close_calls = 0

    def try_next(self):
        self.read_by = threading.current_thread()
        self.reading.set()
        time.sleep(self.delay)
        return None

    def close(self):
        self.close_calls += 1
        self.closed_by = threading.current_thread()
        self.released.set()


def collection_with(stream):
    collection = MagicMock()
    collection.name = "emergency_requests"
    collection.watch.return_value = stream
    return collection


class TestSubscription(unittest.TestCase):

    def test_changes_are_delivered(self):
        stream = FakeChangeStream([{"operationType": "insert", "documentKey": {"_id": "e1"}}])
        received = []
        delivered = threading.Event()

        def on_change(change):
            received.append(change)
            delivered.set()

        subscription = Subscription(collection_with(stream), on_change, poll_interval=0.01).start()
        try:
            self.assertTrue(delivered.wait(2))
        finally:
            subscription.close()

        self.assertEqual(received[0]["documentKey"]["_id"], "e1")

    def test_close_releases_stream_once(self):
        stream = FakeChangeStream()
        subscription = Subscription(collection_with(stream), lambda change: None, poll_interval=0.01).start()

        self.assertTrue(subscription.close())
        self.assertFalse(subscription.close())
        self.assertEqual(stream.close_calls, 1)
        self.assertTrue(subscription.closed)

    def test_close_does_not_wait_for_a_slow_read(self):
        stream = SlowChangeStream(delay=1.0)
        subscription = Subscription(collection_with(stream), lambda change: None, poll_interval=0.05).start()
        self.assertTrue(stream.reading.wait(2))

        started = time.monotonic()
        self.assertTrue(subscription.close())
        elapsed = time.monotonic() - started

        self.assertLess(elapsed, 0.6)
        self.assertEqual(stream.close_calls, 0)
        self.assertTrue(stream.released.wait(3))
        self.assertEqual(stream.close_calls, 1)
        self.assertEqual(stream.closed_by, stream.read_by)

    def test_closed_subscription_cannot_restart(self):
        subscription = Subscription(collection_with(FakeChangeStream()), lambda change: None)
        subscription.close()

        with self.assertRaises(RuntimeError):
            subscription.start()

    def test_stream_error_is_reported(self):
        stream = FakeChangeStream(error=OperationFailure("change streams are not supported"))
        errors = []
        failed = threading.Event()

        def on_error(exc):
            errors.append(exc)
            failed.set()

        with Subscription(collection_with(stream), lambda change: None, on_error=on_error, poll_interval=0.01):
            self.assertTrue(failed.wait(2))

        self.assertIsInstance(errors[0], OperationFailure)
        self.assertEqual(stream.close_calls, 1)

    def test_watch_uses_full_document_lookup(self):
        collection = collection_with(FakeChangeStream())

        with Subscription(collection, lambda change: None, pipeline=[{"$match": {"operationType": "insert"}}]):
            pass

        collection.watch.assert_called_once_with([{"$match": {"operationType": "insert"}}], full_document="updateLookup")


if __name__ == "__main__":
    unittest.main()
