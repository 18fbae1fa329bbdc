"""Tests for the work queue."""

import threading
import unittest

from lbwarden.workqueue import BASE_DELAY, ShutDown, WorkQueue


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


class TestWorkQueue(unittest.TestCase):
    """Test cases for the WorkQueue class."""

    def setUp(self):
        """Set up test fixtures."""
        self.clock = FakeClock()
        self.queue = WorkQueue(clock=self.clock)

    def test_deduplicate(self):
        """Test that a waiting key is only queued once."""
        self.queue.add("default/a")
        self.queue.add("default/a")
        self.queue.add("default/b")

        self.assertEqual(len(self.queue), 2)
        self.assertEqual(self.queue.get(timeout=0), "default/a")
        self.assertEqual(self.queue.get(timeout=0), "default/b")
        self.assertIsNone(self.queue.get(timeout=0))

    def test_single_flight(self):
        """Test that a key added while processing is handed out after done."""
        self.queue.add("default/a")
        key = self.queue.get(timeout=0)

        self.queue.add("default/a")
        self.assertIsNone(self.queue.get(timeout=0))

        self.queue.done(key)
        self.assertEqual(self.queue.get(timeout=0), "default/a")

    def test_done_without_changes(self):
        """Test that a processed key is not queued again on its own."""
        self.queue.add("default/a")
        self.queue.done(self.queue.get(timeout=0))

        self.assertEqual(len(self.queue), 0)

    def test_add_after(self):
        """Test that delayed keys are handed out once their time has come."""
        self.queue.add_after("default/a", 5)

        self.assertIsNone(self.queue.get(timeout=0))
        self.clock.now += 5
        self.assertEqual(self.queue.get(timeout=0), "default/a")

    def test_add_after_order(self):
        """Test that delayed keys come out in order of their deadline."""
        self.queue.add_after("default/late", 10)
        self.queue.add_after("default/early", 1)
        self.clock.now += 10

        self.assertEqual(self.queue.get(timeout=0), "default/early")
        self.assertEqual(self.queue.get(timeout=0), "default/late")

    def test_add_after_once_per_key(self):
        """Test that a key waiting twice is handed out only once."""
        self.queue.add_after("default/a", 300)
        self.clock.now += 10
        self.queue.add_after("default/a", 300)

        self.assertEqual(self.queue.waiting(), 1)
        self.clock.now += 290
        self.assertEqual(self.queue.get(timeout=0), "default/a")
        self.queue.done("default/a")

        self.clock.now += 10
        self.assertIsNone(self.queue.get(timeout=0))
        self.assertEqual(self.queue.waiting(), 0)

    def test_add_after_earlier_deadline_wins(self):
        """Test that a shorter delay moves a waiting key forward."""
        self.queue.add_after("default/a", 300)
        self.queue.add_after("default/a", 1)
        self.clock.now += 1

        self.assertEqual(self.queue.get(timeout=0), "default/a")
        self.queue.done("default/a")

        self.clock.now += 300
        self.assertIsNone(self.queue.get(timeout=0))

    def test_add_after_while_processing(self):
        """Test that a key can wait again once its delay has been handed out."""
        self.queue.add_after("default/a", 5)
        self.clock.now += 5
        key = self.queue.get(timeout=0)

        self.queue.add_after(key, 5)
        self.queue.done(key)

        self.assertEqual(self.queue.waiting(), 1)
        self.clock.now += 5
        self.assertEqual(self.queue.get(timeout=0), "default/a")

    def test_add_after_without_delay(self):
        """Test that a zero delay adds the key right away."""
        self.queue.add_after("default/a", 0)

        self.assertEqual(len(self.queue), 1)

    def test_rate_limited_backoff(self):
        """Test that the backoff doubles with every failure until forgotten."""
        delays = [self.queue.add_rate_limited("default/a") for _ in range(3)]

        self.assertEqual(delays, [BASE_DELAY, BASE_DELAY * 2, BASE_DELAY * 4])
        self.assertEqual(self.queue.failures("default/a"), 3)

        self.queue.forget("default/a")
        self.assertEqual(self.queue.failures("default/a"), 0)
        self.assertEqual(self.queue.add_rate_limited("default/a"), BASE_DELAY)

    def test_rate_limited_cap(self):
        """Test that the backoff never exceeds the maximum delay."""
        queue = WorkQueue(base_delay=1, max_delay=3, clock=self.clock)

        delays = [queue.add_rate_limited("default/a") for _ in range(4)]

        self.assertEqual(delays, [1, 2, 3, 3])

    def test_shutdown(self):
        """Test that a shut down queue refuses work."""
        self.queue.add("default/a")
        self.queue.shutdown()
        self.queue.add("default/b")

        with self.assertRaises(ShutDown):
            self.queue.get(timeout=0)

    def test_blocking_get(self):
        """Test that a waiting worker is woken up by a new key."""
        queue = WorkQueue()
        timer = threading.Timer(0.05, queue.add, args=["default/a"])
        timer.start()
        try:
            self.assertEqual(queue.get(timeout=5), "default/a")
        finally:
            timer.cancel()

    def test_shutdown_wakes_workers(self):
        """Test that shutting down releases a blocked worker."""
        queue = WorkQueue()
        timer = threading.Timer(0.05, queue.shutdown)
        timer.start()
        try:
            with self.assertRaises(ShutDown):
                queue.get(timeout=5)
        finally:
            timer.cancel()


if __name__ == "__main__":
    unittest.main()
