"""Tests for the scheduler module."""

import unittest
from unittest import mock

from fakes import FakeCustomObjectsApi, fake_connection, loadbalancer_body
from kubernetes.client.exceptions import ApiException

from lbwarden.config import LbwardenConfig
from lbwarden.loadbalancer import LoadBalancerController, Result
from lbwarden.models import LOADBALANCER_PLURAL
from lbwarden.scheduler import Scheduler, loadbalancer_keys, owner_keys, split_key
from lbwarden.workqueue import WorkQueue


class TestKeys(unittest.TestCase):
    """Test cases for the key helpers."""

    def test_split_key(self):
        """Test splitting valid keys."""
        self.assertEqual(split_key("default/lb"), ("default", "lb"))

    def test_split_key_invalid(self):
        """Test that malformed keys are rejected."""
        for key in ("lb", "/lb", "default/", "a/b/c", ""):
            with self.assertRaises(ValueError):
                split_key(key)

    def test_loadbalancer_keys(self):
        """Test the key of a LoadBalancer object."""
        self.assertEqual(loadbalancer_keys(loadbalancer_body(namespace="team-a")), ["team-a/lb"])

    def test_owner_keys(self):
        """Test that only the controlling LoadBalancer is enqueued for a set."""
        obj = {
            "metadata": {
                "namespace": "default",
                "ownerReferences": [
                    {"kind": "LoadBalancer", "name": "lb", "controller": True},
                    {"kind": "LoadBalancer", "name": "other"},
                    {"kind": "ConfigMap", "name": "cm", "controller": True},
                ],
            },
        }

        self.assertEqual(owner_keys(obj), ["default/lb"])
        self.assertEqual(owner_keys({"metadata": {"namespace": "default"}}), [])


class TestScheduler(unittest.TestCase):
    """Test cases for the Scheduler class."""

    def setUp(self):
        """Set up test fixtures."""
        self.config = LbwardenConfig(namespace="default", worker_count=1)
        self.api = FakeCustomObjectsApi()
        self.connection = fake_connection(self.api)
        self.controller = mock.Mock(spec=LoadBalancerController)
        self.controller.reconcile.return_value = Result()
        self.queue = WorkQueue()
        self.scheduler = Scheduler(self.config, self.connection, self.controller, queue=self.queue)

    def test_reconcile_once(self):
        """Test a single reconcile pass."""
        self.controller.reconcile.return_value = Result(1.0)

        self.assertEqual(self.scheduler.reconcile_once("default/lb"), Result(1.0))

        self.controller.reconcile.assert_called_once_with("default", "lb")

    def test_handle_requeue(self):
        """Test that a requested requeue is scheduled."""
        self.scheduler.queue = mock.Mock(spec=WorkQueue)
        self.controller.reconcile.return_value = Result(1.0)

        self.scheduler.handle("default/lb")

        self.scheduler.queue.forget.assert_called_once_with("default/lb")
        self.scheduler.queue.add_after.assert_called_once_with("default/lb", 1.0)

    def test_handle_settled(self):
        """Test that a settled LoadBalancer is not requeued."""
        self.scheduler.queue = mock.Mock(spec=WorkQueue)

        self.scheduler.handle("default/lb")

        self.scheduler.queue.forget.assert_called_once_with("default/lb")
        self.scheduler.queue.add_after.assert_not_called()

    def test_handle_error(self):
        """Test that failures are retried with backoff."""
        self.controller.reconcile.side_effect = RuntimeError("boom")

        with self.assertLogs("lbwarden.scheduler", level="ERROR"):
            self.scheduler.handle("default/lb")
            self.scheduler.handle("default/lb")

        self.assertEqual(self.queue.failures("default/lb"), 2)

    def test_handle_error_then_success(self):
        """Test that a successful pass resets the backoff."""
        self.controller.reconcile.side_effect = [RuntimeError("boom"), Result()]

        with self.assertLogs("lbwarden.scheduler", level="ERROR"):
            self.scheduler.handle("default/lb")
        self.scheduler.handle("default/lb")

        self.assertEqual(self.queue.failures("default/lb"), 0)

    def test_handle_invalid_key(self):
        """Test that invalid keys are dropped."""
        with self.assertLogs("lbwarden.scheduler", level="ERROR"):
            self.scheduler.handle("not-a-key")

        self.controller.reconcile.assert_not_called()

    def test_process_next(self):
        """Test that a queued key is reconciled and released."""
        self.queue.add("default/lb")

        self.assertTrue(self.scheduler.process_next(timeout=0))

        self.controller.reconcile.assert_called_once_with("default", "lb")
        self.queue.add("default/lb")
        self.assertEqual(len(self.queue), 1)

    def test_injected_queue_is_used(self):
        """Test that an empty injected queue is kept."""
        self.assertIs(self.scheduler.queue, self.queue)

    def test_single_resync_per_key(self):
        """Test that extra passes between resyncs do not multiply them."""
        now = [0.0]
        queue = WorkQueue(clock=lambda: now[0])
        scheduler = Scheduler(self.config, self.connection, self.controller, queue=queue)
        self.controller.reconcile.return_value = Result(300.0)

        for event_time in (0.0, 10.0, 20.0, 30.0):
            now[0] = event_time
            queue.add("default/lb")
            scheduler.process_next(timeout=0)

        reconciles = []
        for window in range(1, 6):
            now[0] = 30.0 + window * 300
            calls = self.controller.reconcile.call_count
            for _ in range(4):
                scheduler.process_next(timeout=0)
            reconciles.append(self.controller.reconcile.call_count - calls)

        self.assertEqual(reconciles, [1, 1, 1, 1, 1])
        self.assertEqual(queue.waiting(), 1)

    def test_process_next_timeout(self):
        """Test that an empty queue is not an error."""
        self.assertTrue(self.scheduler.process_next(timeout=0))

        self.controller.reconcile.assert_not_called()

    def test_process_next_shutdown(self):
        """Test that workers stop once the queue is shut down."""
        self.queue.shutdown()

        self.assertFalse(self.scheduler.process_next(timeout=0))

    def test_relist(self):
        """Test that listing enqueues every LoadBalancer of the namespace."""
        self.api.add_object(LOADBALANCER_PLURAL, loadbalancer_body(name="a"))
        self.api.add_object(LOADBALANCER_PLURAL, loadbalancer_body(name="b"))
        self.api.add_object(LOADBALANCER_PLURAL, loadbalancer_body(name="c", namespace="other"))

        resource_version = self.scheduler._relist(LOADBALANCER_PLURAL, loadbalancer_keys)

        self.assertIsNotNone(resource_version)
        self.assertEqual(len(self.queue), 2)
        self.assertEqual({self.queue.get(timeout=0), self.queue.get(timeout=0)}, {"default/a", "default/b"})

    def test_list_all_namespaces(self):
        """Test that without namespace the cluster wide list is used."""
        scheduler = Scheduler(LbwardenConfig(), self.connection, self.controller, queue=self.queue)

        self.assertEqual(scheduler._list_func(), self.api.list_cluster_custom_object)
        self.assertNotIn("namespace", scheduler._list_kwargs(LOADBALANCER_PLURAL))

    @mock.patch("lbwarden.scheduler.watch.Watch")
    def test_watch(self, mock_watch):
        """Test that listed and watched objects are enqueued."""
        self.api.add_object(LOADBALANCER_PLURAL, loadbalancer_body(name="a"))

        def stream(*args, **kwargs):
            yield {"type": "ADDED", "object": loadbalancer_body(name="b")}
            self.scheduler.stop_event.set()

        mock_watch.return_value.stream.side_effect = stream

        self.scheduler.watch_loadbalancers()

        self.assertEqual(len(self.queue), 2)
        mock_watch.return_value.stop.assert_called_once()
        self.assertEqual(self.scheduler._watchers, [])

    @mock.patch("lbwarden.scheduler.watch.Watch")
    def test_watch_expired(self, mock_watch):
        """Test that an expired resource version leads to a fresh list."""
        self.api.list_namespaced_custom_object = mock.Mock(
            return_value={"items": [loadbalancer_body(name="a")], "metadata": {"resourceVersion": "5"}}
        )

        def stream(*args, **kwargs):
            if mock_watch.return_value.stream.call_count == 1:
                raise ApiException(status=410)
            self.scheduler.stop_event.set()
            return iter([])

        mock_watch.return_value.stream.side_effect = stream

        with self.assertLogs("lbwarden.scheduler", level="WARNING"):
            self.scheduler.watch_loadbalancers()

        self.assertEqual(self.api.list_namespaced_custom_object.call_count, 2)
        self.assertEqual(mock_watch.return_value.stop.call_count, 2)


if __name__ == "__main__":
    unittest.main()
