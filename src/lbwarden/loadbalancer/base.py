"""Building blocks shared by the LoadBalancer reconcilers."""

import logging
from dataclasses import dataclass

from lbwarden.kubernetes.events import EventRecorder
from lbwarden.kubernetes.loadbalancers import LoadBalancerStore
from lbwarden.models import LoadBalancer
from lbwarden.openstack.base import NotFoundError, ResourceClient

logger = logging.getLogger(__name__)

# Requeue delays in seconds
DEFAULT_REQUEUE = 0.01
READY_REQUEUE = 1.0
DELETION_REQUEUE = 10.0
RESYNC_INTERVAL = 300.0


@dataclass(frozen=True)
class Result:
    """Outcome of a reconcile pass that did not fail.

    Attributes:
        requeue_after: Seconds after which the object should be reconciled
            again, or None if nothing is pending.
    """
    requeue_after: float | None = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


class ResourceReconciler:
    """Base class for the reconcilers of a single OpenStack resource kind."""

    def __init__(self, store: LoadBalancerStore, recorder: EventRecorder):
        """Initialize the reconciler.

        Args:
            store: Store used to read and patch the LoadBalancer status.
            recorder: Recorder for events on the LoadBalancer.
        """
        self.store = store
        self.recorder = recorder

    def delete_by_id_and_name(
        self,
        lb: LoadBalancer,
        client: ResourceClient,
        id_field: str,
        name_field: str,
        name_attr: str = "name",
    ) -> bool:
        """Delete the resource recorded in the status, then sweep orphans by name.

        The resource referenced by the id field is deleted first. Independently,
        every resource named after the name field is deleted as well, which
        catches resources created in a pass that crashed before their id was
        stored. Status fields are cleared once OpenStack no longer knows them.

        Args:
            lb: The LoadBalancer being deleted.
            client: The client for the resource kind.
            id_field: Status field holding the resource id.
            name_field: Status field holding the resource name.
            name_attr: Resource attribute the name is stored in.

        Returns:
            True if another pass is needed to finish the cleanup.
        """
        requeue = False

        resource_id = getattr(lb.status, id_field)
        if resource_id is not None:
            try:
                resource = client.get(resource_id)
            except NotFoundError:
                logger.info(f"{client.KIND} {resource_id} of {lb.key} has already been deleted")
                self.store.remove_status_field(lb, id_field)
                return True
            except Exception as e:
                logger.info(f"Unexpected error retrieving {client.KIND} {resource_id} of {lb.key}")
                self.recorder.send_error_as_event(lb, e)
                raise

            self._delete(lb, client, resource.id)
            # the id is removed from the status by the next pass
            requeue = True

        name = getattr(lb.status, name_field)
        if name is not None:
            orphans = [
                r for r in client.list(**{name_attr: name})
                if r.id and getattr(r, name_attr) == name
            ]
            if not orphans:
                logger.info(f"No {client.KIND} named {name} left for {lb.key}")
                self.store.remove_status_field(lb, name_field)
                return requeue

            for orphan in orphans:
                self._delete(lb, client, orphan.id)
            requeue = True

        return requeue

    def _delete(self, lb: LoadBalancer, client: ResourceClient, resource_id: str) -> None:
        logger.info(f"Deleting {client.KIND} {resource_id} of {lb.key}")
        try:
            client.delete(resource_id)
        except NotFoundError:
            logger.debug(f"{client.KIND} {resource_id} vanished before deletion")
        except Exception as e:
            logger.info(f"Unexpected error deleting {client.KIND} {resource_id} of {lb.key}")
            self.recorder.send_error_as_event(lb, e)
            raise
