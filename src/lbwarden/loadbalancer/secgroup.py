"""Security group lifecycle of a LoadBalancer."""

import logging

from lbwarden.errors import SecurityGroupIDEmptyError
from lbwarden.loadbalancer.base import ResourceReconciler
from lbwarden.models import LoadBalancer
from lbwarden.openstack import helpers
from lbwarden.openstack.base import NotFoundError, OpenStackClient
from lbwarden.rules import get_desired_rules

logger = logging.getLogger(__name__)


class SecurityGroupReconciler(ResourceReconciler):
    """Owns the security group of a LoadBalancer and the rules inside it."""

    def reconcile(self, lb: LoadBalancer, os_client: OpenStackClient) -> bool:
        """Adopt or create the security group and converge its rules.

        Returns:
            True if the status changed and another pass is needed.
        """
        logger.info(f"Reconcile security group of {lb.key}")
        groups = os_client.security_groups
        requeue = False

        # the name must be stored before anything is looked up or created with it
        if lb.status.security_group_name is None:
            self.store.patch_status(lb, security_group_name=lb.key)
            requeue = True

        if lb.status.security_group_id is None:
            try:
                group = helpers.get_security_group_by_name(groups, lb.status.security_group_name)
            except Exception as e:
                self.recorder.send_error_as_event(lb, e)
                raise
            if group is not None:
                logger.info(f"Adopting security group {group.id} for {lb.key}")
                self.store.patch_status(lb, security_group_id=group.id)
                requeue = True

        if lb.status.security_group_id is None:
            logger.info(f"Creating security group for {lb.key}")
            try:
                group = groups.create(name=lb.status.security_group_name, description=lb.key)
            except Exception as e:
                self.recorder.send_error_as_event(lb, e)
                raise
            if not group.id:
                raise SecurityGroupIDEmptyError()
            self.store.patch_status(lb, security_group_id=group.id)
            requeue = True

        try:
            group = groups.get(lb.status.security_group_id)
        except NotFoundError:
            logger.info(f"Security group {lb.status.security_group_id} of {lb.key} not found in openstack")
            self.store.remove_status_field(lb, "security_group_id")
            return True
        except Exception as e:
            self.recorder.send_error_as_event(lb, e)
            raise

        logger.debug(f"Reconcile security group rules of {lb.key}")
        desired = get_desired_rules(lb, group.id, warn=lambda message: self.recorder.warning(lb, message))
        try:
            helpers.delete_unused_rules(os_client.rules, group.id, desired)
            helpers.create_missing_rules(os_client.rules, group.id, lb.key, desired)
        except Exception as e:
            self.recorder.send_error_as_event(lb, e)
            raise

        return requeue

    def delete(self, lb: LoadBalancer, os_client: OpenStackClient) -> bool:
        """Detach the security group from every port, then delete it.

        Returns:
            True if another pass is needed to finish the cleanup.
        """
        self._remove_from_ports(lb, os_client)
        return self.delete_by_id_and_name(
            lb, os_client.security_groups, "security_group_id", "security_group_name"
        )

    def _remove_from_ports(self, lb: LoadBalancer, os_client: OpenStackClient) -> None:
        security_group_id = lb.status.security_group_id
        if security_group_id is None:
            return

        # ports may have been attached to the group by someone else
        try:
            ports = os_client.ports.list()
            for port in ports:
                try:
                    helpers.remove_security_group_from_port_if_needed(os_client.ports, port, security_group_id)
                except NotFoundError:
                    logger.debug(f"Port {port.id} vanished while detaching security group of {lb.key}")
        except Exception as e:
            self.recorder.send_error_as_event(lb, e)
            raise
