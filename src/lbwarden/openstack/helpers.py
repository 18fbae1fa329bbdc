"""Lookup and binding helpers shared by the reconcilers."""

import logging

from lbwarden.openstack.base import (
    FloatingIP,
    FloatingIPClient,
    NotFoundError,
    Port,
    PortClient,
    RuleClient,
    SecurityGroup,
    SecurityGroupClient,
    SecurityGroupRule,
)

logger = logging.getLogger(__name__)


def get_security_group_by_name(client: SecurityGroupClient, name: str) -> SecurityGroup | None:
    for group in client.list(name=name):
        if group.id and group.name == name:
            return group
    return None


def get_port_by_name(client: PortClient, name: str) -> Port | None:
    for port in client.list(name=name):
        if port.id and port.name == name:
            return port
    return None


def get_fip_by_name(client: FloatingIPClient, name: str) -> FloatingIP | None:
    """Find a floating IP by name. Floating IPs carry their name in the description."""
    for fip in client.list(description=name):
        if fip.id and fip.description == name:
            return fip
    return None


def get_fip_by_ip(client: FloatingIPClient, address: str) -> FloatingIP:
    """Find a floating IP by its exact address.

    Raises:
        NotFoundError: If no floating IP has this address.
    """
    for fip in client.list(floating_ip_address=address):
        if fip.id and fip.floating_ip_address == address:
            return fip
    raise NotFoundError(client.KIND, address)


def bind_fip_to_port(client: FloatingIPClient, fip_id: str, port_id: str) -> FloatingIP:
    logger.debug(f"Binding floating ip {fip_id} to port {port_id}")
    return client.update(fip_id, port_id=port_id)


def bind_security_group_to_port_if_needed(
    client: PortClient, security_group_id: str | None, port: Port
) -> bool:
    """Attach a security group to a port unless it is attached already.

    Returns:
        True if the port was updated.
    """
    if not security_group_id or security_group_id in port.security_group_ids:
        return False
    client.update(port.id, security_group_ids=[*port.security_group_ids, security_group_id])
    return True


def remove_security_group_from_port_if_needed(
    client: PortClient, port: Port, security_group_id: str
) -> bool:
    """Detach a security group from a port if it is attached.

    Returns:
        True if the port was updated.
    """
    if security_group_id not in port.security_group_ids:
        return False
    remaining = [sg for sg in port.security_group_ids if sg != security_group_id]
    logger.info(f"Removing security group {security_group_id} from port {port.id}")
    client.update(port.id, security_group_ids=remaining)
    return True


def delete_unused_rules(
    client: RuleClient, security_group_id: str, desired: list[SecurityGroupRule]
) -> int:
    """Delete every rule of the group whose signature is not desired.

    Returns:
        The number of deleted rules.
    """
    wanted = {rule.signature() for rule in desired}
    deleted = 0
    for rule in client.list(security_group_id=security_group_id):
        if rule.signature() in wanted:
            continue
        logger.info(f"Deleting security group rule {rule.id} from {security_group_id}")
        try:
            client.delete(rule.id)
        except NotFoundError:
            logger.debug(f"Security group rule {rule.id} already gone")
        deleted += 1
    return deleted


def create_missing_rules(
    client: RuleClient, security_group_id: str, description: str, desired: list[SecurityGroupRule]
) -> int:
    """Create every desired rule that the group does not have yet.

    Returns:
        The number of created rules.
    """
    existing = {rule.signature() for rule in client.list(security_group_id=security_group_id)}
    created = 0
    for rule in desired:
        if rule.signature() in existing:
            continue
        attrs = rule.model_dump(exclude={"id"}, exclude_none=True)
        attrs["security_group_id"] = security_group_id
        attrs["description"] = description
        logger.info(f"Creating security group rule {rule.signature()} in {security_group_id}")
        client.create(**attrs)
        existing.add(rule.signature())
        created += 1
    return created
