"""The LoadBalancer controller.

A reconcile pass for one LoadBalancer runs in three stages:

1. Deletion: a LoadBalancer with a deletion timestamp is torn down and nothing
   else happens.
2. OpenStack: security group, floating IP and port are converged and the
   floating IP is bound to the port. This stage only runs when the spec changed
   or the reconcile interval elapsed.
3. Rollout: the LoadBalancerSets are driven towards the current template.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from lbwarden.config import LbwardenConfig
from lbwarden.hashing import get_openstack_reconcile_hash, openstack_reconcile_is_needed
from lbwarden.kubernetes.events import EventRecorder
from lbwarden.kubernetes.loadbalancers import LoadBalancerStore
from lbwarden.kubernetes.loadbalancersets import LoadBalancerSetStore
from lbwarden.loadbalancer.base import DEFAULT_REQUEUE, Result
from lbwarden.loadbalancer.deletion import DeletionController
from lbwarden.loadbalancer.floatingip import FloatingIPReconciler
from lbwarden.loadbalancer.port import PortReconciler
from lbwarden.loadbalancer.rollout import RolloutController
from lbwarden.loadbalancer.secgroup import SecurityGroupReconciler
from lbwarden.models import FINALIZER, LoadBalancer
from lbwarden.openstack.auth import OpenStackClientFactory
from lbwarden.openstack.base import OpenStackClient

logger = logging.getLogger(__name__)


class LoadBalancerController:
    """Reconciles LoadBalancer objects against OpenStack and their LoadBalancerSets."""

    def __init__(
        self,
        store: LoadBalancerStore,
        sets: LoadBalancerSetStore,
        recorder: EventRecorder,
        client_factory: OpenStackClientFactory,
        config: LbwardenConfig,
        now: Callable[[], datetime] | None = None,
    ):
        """Initialize the controller.

        Args:
            store: Store for the LoadBalancer objects.
            sets: Store for the LoadBalancerSet objects.
            recorder: Recorder for events on the LoadBalancers.
            client_factory: Resolves the OpenStack client of a LoadBalancer.
            config: Controller configuration.
            now: Clock used for the OpenStack reconcile timestamp.
        """
        self.store = store
        self.sets = sets
        self.recorder = recorder
        self.client_factory = client_factory
        self.config = config
        self.now = now or (lambda: datetime.now(UTC))

        self.security_groups = SecurityGroupReconciler(store, recorder)
        self.floating_ips = FloatingIPReconciler(store, recorder)
        self.ports = PortReconciler(store, recorder)
        self.rollout = RolloutController(store, sets, recorder)
        self.deletion = DeletionController(
            store, sets, recorder, self.floating_ips, self.ports, self.security_groups
        )

    def should_skip(self, namespace: str, name: str) -> bool:
        """Check whether reconciling is disabled for this LoadBalancer."""
        if self.config.skip_reconciles:
            return True
        only = self.config.skip_all_but
        return bool(only) and only != f"{namespace}/{name}"

    def reconcile(self, namespace: str, name: str) -> Result:
        """Run one reconcile pass for a LoadBalancer.

        Args:
            namespace: Namespace of the LoadBalancer.
            name: Name of the LoadBalancer.

        Returns:
            When to reconcile the LoadBalancer again.

        Raises:
            Exception: Any failure of a step. The pass is retried with backoff.
        """
        if self.should_skip(namespace, name):
            logger.debug(f"Skipping reconcile of {namespace}/{name}")
            return Result(DEFAULT_REQUEUE)

        lb = self.store.get(namespace, name)
        if lb is None:
            logger.debug(f"LoadBalancer {namespace}/{name} not found, nothing to do")
            return Result()

        if lb.is_deleting:
            logger.info(f"Reconciling deletion of {lb.key}")
            return self.deletion.reconcile(lb, lambda: self.client_factory.for_loadbalancer(lb))

        self.store.add_finalizer(lb, FINALIZER)

        result = self.reconcile_openstack_if_needed(lb)
        if result.requeue:
            return result

        result = self.rollout.reconcile(lb)
        if result.requeue:
            return result

        return Result(self.config.resync_interval)

    def reconcile_openstack_if_needed(self, lb: LoadBalancer) -> Result:
        if not openstack_reconcile_is_needed(lb, self.config.openstack_reconcile_interval, self.now()):
            return Result()

        logger.info(f"Reconciling OpenStack resources of {lb.key}")
        os_client = self.client_factory.for_loadbalancer(lb)
        if self._reconcile_openstack(lb, os_client):
            return Result(DEFAULT_REQUEUE)

        try:
            self.store.patch_status(lb, last_openstack_reconcile=self.now())
            reconcile_hash = get_openstack_reconcile_hash(lb)
            if lb.status.openstack_reconcile_hash != reconcile_hash:
                self.store.patch_status(lb, openstack_reconcile_hash=reconcile_hash)
        except Exception as e:
            self.recorder.send_error_as_event(lb, e)
            raise

        logger.info(f"OpenStack resources of {lb.key} are in sync")
        return Result()

    def _reconcile_openstack(self, lb: LoadBalancer, os_client: OpenStackClient) -> bool:
        """Run the OpenStack steps in order.

        Returns:
            True if any step asked for another pass.
        """
        requeue = False
        for step in (
            self.security_groups.reconcile,
            self.floating_ips.reconcile,
            self.ports.reconcile,
            self.floating_ips.associate,
        ):
            requeue = step(lb, os_client) or requeue
        return requeue
