"""Virtual port lifecycle of a LoadBalancer."""

import logging

from lbwarden.errors import PortIDEmptyError
from lbwarden.loadbalancer.base import ResourceReconciler
from lbwarden.models import LoadBalancer
from lbwarden.openstack import helpers
from lbwarden.openstack.base import NotFoundError, OpenStackClient

logger = logging.getLogger(__name__)


class PortReconciler(ResourceReconciler):
    """Owns the port the LoadBalancer machines share and its security group binding."""

    def reconcile(self, lb: LoadBalancer, os_client: OpenStackClient) -> bool:
        """Adopt or create the port and bind the LoadBalancer's security group to it.

        The port is owned exclusively by this controller: its security groups are
        collapsed to exactly the LoadBalancer's group.

        Returns:
            True if the status or the port changed and another pass is needed.
        """
        logger.info(f"Reconcile port of {lb.key}")
        ports = os_client.ports
        requeue = False

        if lb.status.port_name is None:
            self.store.patch_status(lb, port_name=lb.key)
            requeue = True

        if lb.status.port_id is None:
            try:
                port = helpers.get_port_by_name(ports, lb.status.port_name)
            except Exception as e:
                self.recorder.send_error_as_event(lb, e)
                raise
            if port is not None:
                logger.info(f"Adopting port {port.id} for {lb.key}")
                self.store.patch_status(lb, port_id=port.id)
                requeue = True

        if lb.status.port_id is None:
            logger.info(f"Creating port for {lb.key}")
            try:
                port = ports.create(name=lb.status.port_name, network_id=lb.spec.infrastructure.network_id)
            except Exception as e:
                logger.info(f"Unexpected error creating port for {lb.key}")
                self.recorder.send_error_as_event(lb, e)
                raise
            if not port.id:
                raise PortIDEmptyError()
            logger.info(f"Created port {port.id} for {lb.key}")
            self.store.patch_status(lb, port_id=port.id)
            requeue = True

        try:
            port = ports.get(lb.status.port_id)
        except NotFoundError:
            logger.info(f"Port {lb.status.port_id} of {lb.key} not found in openstack")
            self.store.remove_status_field(lb, "port_id")
            return True
        except Exception as e:
            self.recorder.send_error_as_event(lb, e)
            raise

        security_group_id = lb.status.security_group_id
        if security_group_id is not None and port.security_group_ids != [security_group_id]:
            logger.info(f"Setting security groups of port {port.id} to [{security_group_id}]")
            try:
                port = ports.update(port.id, security_group_ids=[security_group_id])
            except Exception as e:
                logger.error(f"Could not update security groups of port {port.id}: {e}")
                self.recorder.send_error_as_event(lb, e)
                raise
            requeue = True

        try:
            changed = helpers.bind_security_group_to_port_if_needed(ports, security_group_id, port)
        except Exception as e:
            self.recorder.send_error_as_event(lb, e)
            raise
        requeue = requeue or changed

        # internal LoadBalancers are reachable on the port's own address
        if lb.spec.options.internal_lb and port.fixed_ips:
            address = port.fixed_ips[0].ip_address
            if lb.status.external_ip != address:
                logger.info(f"Updating external ip of {lb.key} to {address}")
                self.store.patch_status(lb, external_ip=address)
                requeue = True

        return requeue

    def delete(self, lb: LoadBalancer, os_client: OpenStackClient) -> bool:
        """Delete the port of a LoadBalancer and any orphan carrying its name.

        Returns:
            True if another pass is needed to finish the cleanup.
        """
        return self.delete_by_id_and_name(lb, os_client.ports, "port_id", "port_name")
