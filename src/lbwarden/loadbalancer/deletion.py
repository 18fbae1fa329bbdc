"""Teardown of a LoadBalancer that is being deleted."""

import logging
from collections.abc import Callable

from lbwarden.kubernetes.events import EventRecorder
from lbwarden.kubernetes.loadbalancers import LoadBalancerStore
from lbwarden.kubernetes.loadbalancersets import LoadBalancerSetStore
from lbwarden.loadbalancer.base import DEFAULT_REQUEUE, DELETION_REQUEUE, Result
from lbwarden.loadbalancer.floatingip import FloatingIPReconciler
from lbwarden.loadbalancer.port import PortReconciler
from lbwarden.loadbalancer.secgroup import SecurityGroupReconciler
from lbwarden.models import FINALIZER, LoadBalancer
from lbwarden.openstack.base import OpenStackClient

logger = logging.getLogger(__name__)


class DeletionController:
    """Tears down everything a LoadBalancer owns, then releases its finalizer.

    The order is fixed: LoadBalancerSets first, so no machine uses the cloud
    resources anymore, then floating IP, port and security group. Each step
    that still has work left ends the pass with a requeue.
    """

    def __init__(
        self,
        store: LoadBalancerStore,
        sets: LoadBalancerSetStore,
        recorder: EventRecorder,
        floating_ips: FloatingIPReconciler,
        ports: PortReconciler,
        security_groups: SecurityGroupReconciler,
    ):
        self.store = store
        self.sets = sets
        self.recorder = recorder
        self.floating_ips = floating_ips
        self.ports = ports
        self.security_groups = security_groups

    def reconcile(self, lb: LoadBalancer, get_client: Callable[[], OpenStackClient]) -> Result:
        """Run one teardown pass.

        Args:
            lb: The LoadBalancer being deleted.
            get_client: Returns the OpenStack client for the LoadBalancer. Only
                called once the LoadBalancerSets are gone.

        Returns:
            The result of the pass. A result without requeue means the
            finalizer has been removed.
        """
        if self._delete_sets(lb):
            logger.info(f"Waiting for LoadBalancerSets of {lb.key} to be deleted")
            return Result(DELETION_REQUEUE)

        os_client = get_client()
        for teardown in (self.floating_ips, self.ports, self.security_groups):
            if teardown.delete(lb, os_client):
                return Result(DEFAULT_REQUEUE)

        self.store.remove_finalizer(lb, FINALIZER)
        logger.info(f"Teardown of {lb.key} finished")
        return Result()

    def _delete_sets(self, lb: LoadBalancer) -> bool:
        """Delete the LoadBalancerSets of a LoadBalancer.

        Returns:
            True while any LoadBalancerSet still exists.
        """
        sets = self.sets.list_for_loadbalancer(lb)
        for lbs in sets:
            if lbs.is_deleting:
                continue
            try:
                self.sets.delete(lbs)
            except Exception as e:
                self.recorder.send_error_as_event(lb, e)
                raise
        return bool(sets)
