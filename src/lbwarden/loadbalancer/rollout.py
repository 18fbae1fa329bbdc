"""Revision based blue/green rollout of LoadBalancerSets.

Every distinct machine template of a LoadBalancer gets its own LoadBalancerSet,
labeled with the template hash and annotated with a revision. The set matching
the current template is scaled to the desired replicas; all other sets are only
scaled to zero once the current one is fully ready, so traffic is always served.
"""

import logging

from lbwarden.errors import InvalidRevisionError, PortNotSetError
from lbwarden.hashing import get_machine_spec, get_machine_spec_hash
from lbwarden.kubernetes.events import EventRecorder
from lbwarden.kubernetes.loadbalancers import LoadBalancerStore
from lbwarden.kubernetes.loadbalancersets import LoadBalancerSetStore
from lbwarden.loadbalancer.base import DEFAULT_REQUEUE, READY_REQUEUE, Result
from lbwarden.models import LoadBalancer, LoadBalancerSet

logger = logging.getLogger(__name__)


def read_revision(obj: LoadBalancer | LoadBalancerSet) -> int:
    try:
        return obj.revision()
    except ValueError as e:
        raise InvalidRevisionError(obj.KIND, obj.key, e) from e


def next_revision(sets: list[LoadBalancerSet]) -> int:
    """The revision for a new set: one above every revision ever handed out."""
    return max((read_revision(s) for s in sets), default=0) + 1


class RolloutController:
    """Drives the LoadBalancerSets of a LoadBalancer towards the current template."""

    def __init__(self, store: LoadBalancerStore, sets: LoadBalancerSetStore, recorder: EventRecorder):
        """Initialize the rollout controller.

        Args:
            store: Store for the LoadBalancer objects.
            sets: Store for the LoadBalancerSet objects.
            recorder: Recorder for events on the LoadBalancer.
        """
        self.store = store
        self.sets = sets
        self.recorder = recorder

    def reconcile(self, lb: LoadBalancer) -> Result:
        current_revision = read_revision(lb)
        if current_revision == 0:
            self.store.patch_revision(lb, 1)
            return Result(DEFAULT_REQUEUE)

        template_hash = get_machine_spec_hash(lb)
        sets = self.sets.list_for_loadbalancer(lb)
        current = next((s for s in sets if s.template_hash == template_hash), None)

        if current is None:
            return self._create_set(lb, sets, template_hash)

        # current is never a set created in this pass, creation returns early

        set_revision = read_revision(current)
        if set_revision != current_revision:
            logger.info(f"Patching revision of {lb.key} to match LoadBalancerSet {current.name}: {set_revision}")
            self.store.patch_revision(lb, set_revision)

        if current.spec.replicas != lb.spec.replicas:
            self.sets.patch_replicas(current, lb.spec.replicas)
            return Result(DEFAULT_REQUEUE)

        if not self._is_ready(lb, current):
            logger.debug(f"LoadBalancerSet {current.key} is not ready yet")
            return Result(READY_REQUEUE)

        logger.info(f"LoadBalancerSet {current.key} is ready")

        others = [s for s in sets if s.name != current.name]
        outdated = [s for s in others if s.spec.replicas != 0]
        if not outdated:
            return Result()

        logger.info(f"Scaling down all LoadBalancerSets of {lb.key} except {current.name}")
        for lbs in outdated:
            self.sets.patch_replicas(lbs, 0)
        self.recorder.normal(
            lb, f"Scaled down LoadBalancerSets {', '.join(s.name for s in outdated)}", reason="ScaledDown"
        )
        return Result(DEFAULT_REQUEUE)

    def _create_set(self, lb: LoadBalancer, sets: list[LoadBalancerSet], template_hash: str) -> Result:
        if lb.status.port_id is None:
            raise PortNotSetError()

        revision = next_revision(sets)
        machine_spec = get_machine_spec(lb, lb.status.port_id)
        lbs = self.sets.create(lb, machine_spec, template_hash, revision)
        self.recorder.normal(lb, f"Created LoadBalancerSet {lbs.name} with revision {revision}", reason="Created")
        self.store.patch_revision(lb, revision)
        return Result(DEFAULT_REQUEUE)

    def _is_ready(self, lb: LoadBalancer, lbs: LoadBalancerSet) -> bool:
        """Mirror the set's replica counts into the LoadBalancer and check readiness."""
        replicas = lbs.status.replicas
        ready = lbs.status.ready_replicas
        if lb.status.replicas != replicas or lb.status.ready_replicas != ready:
            self.store.patch_status(lb, replicas=replicas, ready_replicas=ready)

        if ready is None:
            return False
        return ready >= lbs.spec.replicas
