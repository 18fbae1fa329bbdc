"""Tests for the LoadBalancer teardown."""

import unittest
from unittest import mock

from fakes import fake_recorder, loadbalancer_body

from lbwarden.kubernetes.loadbalancers import LoadBalancerStore
from lbwarden.kubernetes.loadbalancersets import LoadBalancerSetStore
from lbwarden.loadbalancer.base import DEFAULT_REQUEUE, DELETION_REQUEUE, Result
from lbwarden.loadbalancer.deletion import DeletionController
from lbwarden.loadbalancer.floatingip import FloatingIPReconciler
from lbwarden.loadbalancer.port import PortReconciler
from lbwarden.loadbalancer.secgroup import SecurityGroupReconciler
from lbwarden.models import FINALIZER, LoadBalancer


class TestDeletionController(unittest.TestCase):
    """Test cases for DeletionController."""

    def setUp(self):
        """Set up test fixtures."""
        self.store = mock.Mock(spec=LoadBalancerStore)
        self.sets = mock.Mock(spec=LoadBalancerSetStore)
        self.sets.list_for_loadbalancer.return_value = []
        self.recorder = fake_recorder()
        self.floating_ips = mock.Mock(spec=FloatingIPReconciler)
        self.ports = mock.Mock(spec=PortReconciler)
        self.security_groups = mock.Mock(spec=SecurityGroupReconciler)
        for teardown in (self.floating_ips, self.ports, self.security_groups):
            teardown.delete.return_value = False
        self.controller = DeletionController(
            self.store, self.sets, self.recorder, self.floating_ips, self.ports, self.security_groups
        )
        self.lb = LoadBalancer.model_validate(loadbalancer_body())
        self.os_client = mock.Mock()
        self.get_client = mock.Mock(return_value=self.os_client)

    def test_sets_deleted_first(self):
        """Test that cloud resources are left alone while sets exist."""
        deleting = mock.Mock(is_deleting=True)
        alive = mock.Mock(is_deleting=False)
        self.sets.list_for_loadbalancer.return_value = [deleting, alive]

        result = self.controller.reconcile(self.lb, self.get_client)

        self.assertEqual(result, Result(DELETION_REQUEUE))
        self.sets.delete.assert_called_once_with(alive)
        self.get_client.assert_not_called()
        self.floating_ips.delete.assert_not_called()

    def test_set_deletion_failure(self):
        """Test that a failing set deletion is recorded and raised."""
        self.sets.list_for_loadbalancer.return_value = [mock.Mock(is_deleting=False)]
        self.sets.delete.side_effect = RuntimeError("forbidden")

        with self.assertRaises(RuntimeError):
            self.controller.reconcile(self.lb, self.get_client)

        self.recorder.send_error_as_event.assert_called_once()

    def test_teardown_order(self):
        """Test that each step must finish before the next one runs."""
        self.ports.delete.return_value = True

        result = self.controller.reconcile(self.lb, self.get_client)

        self.assertEqual(result, Result(DEFAULT_REQUEUE))
        self.floating_ips.delete.assert_called_once_with(self.lb, self.os_client)
        self.ports.delete.assert_called_once_with(self.lb, self.os_client)
        self.security_groups.delete.assert_not_called()
        self.store.remove_finalizer.assert_not_called()

    def test_finalizer_removed(self):
        """Test that the finalizer is released once everything is gone."""
        result = self.controller.reconcile(self.lb, self.get_client)

        self.assertEqual(result, Result())
        self.security_groups.delete.assert_called_once_with(self.lb, self.os_client)
        self.store.remove_finalizer.assert_called_once_with(self.lb, FINALIZER)

    def test_client_failure(self):
        """Test that a missing credential secret stops the teardown."""
        self.get_client.side_effect = RuntimeError("secret not found")

        with self.assertRaises(RuntimeError):
            self.controller.reconcile(self.lb, self.get_client)

        self.store.remove_finalizer.assert_not_called()


if __name__ == "__main__":
    unittest.main()
