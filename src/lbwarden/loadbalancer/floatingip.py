"""Floating IP lifecycle of a LoadBalancer.

A LoadBalancer either gets a floating IP managed by this controller, named after
the LoadBalancer, or uses an existing one given by address in
``spec.existingFloatingIP``. User managed floating IPs are only referenced,
never deleted.
"""

import logging

from lbwarden.errors import FloatingIPIDEmptyError, FloatingIPNotFoundError, MissingFloatingNetworkError
from lbwarden.loadbalancer.base import ResourceReconciler
from lbwarden.models import LoadBalancer
from lbwarden.openstack import helpers
from lbwarden.openstack.base import FloatingIPClient, NotFoundError, OpenStackClient

logger = logging.getLogger(__name__)

USER_MANAGED_SUFFIX = " (user managed)"
ACTIVE = "ACTIVE"


class FloatingIPReconciler(ResourceReconciler):
    """Owns the floating IP of a LoadBalancer and its association with the port."""

    def reconcile(self, lb: LoadBalancer, os_client: OpenStackClient) -> bool:
        """Adopt, create or resolve the floating IP and mirror its address.

        Internal LoadBalancers must not have a floating IP, so for them any
        tracked floating IP is deleted instead.

        Returns:
            True if the status changed and another pass is needed.
        """
        if lb.spec.options.internal_lb:
            return self.delete(lb, os_client)

        logger.info(f"Reconcile floating ip of {lb.key}")
        fips = os_client.floating_ips
        requeue = False

        if lb.status.floating_name is None:
            self.store.patch_status(lb, floating_name=lb.key)
            requeue = True

        if lb.status.floating_id is None:
            self._assign_or_create(lb, fips)
            if lb.status.floating_id is None:
                return True
            requeue = True

        try:
            fip = fips.get(lb.status.floating_id)
        except NotFoundError:
            logger.info(f"Floating ip {lb.status.floating_id} of {lb.key} not found in openstack")
            self.store.remove_status_field(lb, "floating_id")
            return True
        except Exception as e:
            self.recorder.send_error_as_event(lb, e)
            raise

        if lb.status.external_ip != fip.floating_ip_address:
            logger.info(f"Updating external ip of {lb.key} to {fip.floating_ip_address}")
            self.store.patch_status(lb, external_ip=fip.floating_ip_address)
            requeue = True

        # A user managed floating IP carrying our name would be adopted by the
        # name lookup of some other LoadBalancer later on.
        if lb.spec.existing_floating_ip is not None and fip.description == lb.status.floating_name:
            description = fip.description + USER_MANAGED_SUFFIX
            logger.info(f"Renaming user managed floating ip {fip.id} to {description!r}")
            try:
                fips.update(fip.id, description=description)
            except Exception as e:
                self.recorder.send_error_as_event(lb, e)
                raise

        return requeue

    def _assign_or_create(self, lb: LoadBalancer, fips: FloatingIPClient) -> None:
        existing = lb.spec.existing_floating_ip
        if existing is not None:
            logger.info(f"Using existing floating ip {existing} for {lb.key}")
            try:
                fip = helpers.get_fip_by_ip(fips, existing)
            except NotFoundError as e:
                logger.info(f"Configured floating ip {existing} of {lb.key} not found in openstack")
                raise self.recorder.send_error_as_event(lb, FloatingIPNotFoundError(existing)) from e
            except Exception as e:
                self.recorder.send_error_as_event(lb, e)
                raise
            if fip.id:
                self.store.patch_status(lb, floating_id=fip.id)
            return

        try:
            fip = helpers.get_fip_by_name(fips, lb.status.floating_name)
        except Exception as e:
            self.recorder.send_error_as_event(lb, e)
            raise
        if fip is not None:
            logger.info(f"Adopting floating ip {fip.id} for {lb.key}")
            self.store.patch_status(lb, floating_id=fip.id)
            return

        network_id = lb.spec.infrastructure.floating_net_id
        if not network_id:
            raise self.recorder.send_error_as_event(lb, MissingFloatingNetworkError())

        logger.info(f"Creating floating ip for {lb.key}")
        try:
            fip = fips.create(floating_network_id=network_id, description=lb.status.floating_name)
        except Exception as e:
            self.recorder.send_error_as_event(lb, e)
            raise
        if not fip.id:
            raise FloatingIPIDEmptyError()
        self.store.patch_status(lb, floating_id=fip.id)

    def associate(self, lb: LoadBalancer, os_client: OpenStackClient) -> bool:
        """Bind the floating IP to the LoadBalancer's port.

        Returns:
            True if port or floating IP are not known yet.
        """
        if lb.spec.options.internal_lb:
            return False

        logger.info(f"Reconcile floating ip association of {lb.key}")
        if lb.status.port_id is None or lb.status.floating_id is None:
            logger.info(f"Either port or floating ip of {lb.key} is not set yet")
            return True

        fips = os_client.floating_ips
        try:
            fip = fips.get(lb.status.floating_id)
        except Exception as e:
            self.recorder.send_error_as_event(lb, e)
            raise

        if fip.port_id == lb.status.port_id and fip.status == ACTIVE:
            return False

        logger.info(f"Binding floating ip {fip.id} to port {lb.status.port_id} for {lb.key}")
        try:
            helpers.bind_fip_to_port(fips, fip.id, lb.status.port_id)
        except Exception as e:
            logger.info(f"Failed to associate floating ip {fip.id} with port {lb.status.port_id}")
            self.recorder.send_error_as_event(lb, e)
            raise

        return False

    def delete(self, lb: LoadBalancer, os_client: OpenStackClient) -> bool:
        """Release the floating IP of a LoadBalancer.

        User managed floating IPs are only forgotten, everything else is deleted.

        Returns:
            True if another pass is needed to finish the cleanup.
        """
        if lb.spec.existing_floating_ip is not None:
            if lb.status.floating_id is None and lb.status.floating_name is None:
                return False
            logger.info(f"Existing floating ip used by {lb.key}, skipping deletion")
            if lb.status.floating_id is not None:
                self.store.remove_status_field(lb, "floating_id")
            if lb.status.floating_name is not None:
                self.store.remove_status_field(lb, "floating_name")
            return True

        return self.delete_by_id_and_name(
            lb, os_client.floating_ips, "floating_id", "floating_name", name_attr="description"
        )
