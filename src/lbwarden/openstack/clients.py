"""openstacksdk implementations of the capability clients.

Each adapter wraps the networking proxy of an ``openstack.connection.Connection``
and converts SDK resources into the plain models of :mod:`lbwarden.openstack.base`.
"""

import contextlib
import logging
from typing import Any

from openstack import exceptions as os_exc

from lbwarden.openstack.base import (
    FixedIP,
    FloatingIP,
    FloatingIPClient,
    NotFoundError,
    OpenStackClient,
    Port,
    PortClient,
    RuleClient,
    SecurityGroup,
    SecurityGroupClient,
    SecurityGroupRule,
)

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def translate_not_found(kind: str, ref: str):
    """Turn the SDK's not-found exceptions into :class:`NotFoundError`."""
    try:
        yield
    except os_exc.NotFoundException as e:
        raise NotFoundError(kind, ref) from e


def _security_group(sg: Any) -> SecurityGroup:
    return SecurityGroup(id=sg.id or "", name=sg.name or "", description=sg.description or "")


def _rule(rule: Any) -> SecurityGroupRule:
    return SecurityGroupRule(
        id=rule.id or "",
        security_group_id=rule.security_group_id or "",
        description=rule.description or "",
        direction=rule.direction,
        ethertype=rule.ether_type,
        protocol=rule.protocol,
        port_range_min=rule.port_range_min,
        port_range_max=rule.port_range_max,
        remote_ip_prefix=rule.remote_ip_prefix,
        remote_group_id=rule.remote_group_id,
    )


def _floating_ip(fip: Any) -> FloatingIP:
    return FloatingIP(
        id=fip.id or "",
        floating_ip_address=fip.floating_ip_address or "",
        floating_network_id=fip.floating_network_id or "",
        description=fip.description or "",
        port_id=fip.port_id,
        status=fip.status or "",
    )


def _port(port: Any) -> Port:
    return Port(
        id=port.id or "",
        name=port.name or "",
        network_id=port.network_id or "",
        security_group_ids=list(port.security_group_ids or []),
        fixed_ips=[
            FixedIP(ip_address=ip["ip_address"], subnet_id=ip.get("subnet_id"))
            for ip in port.fixed_ips or []
        ],
    )


class SDKSecurityGroupClient(SecurityGroupClient):
    def __init__(self, network: Any):
        self.network = network

    def get(self, resource_id: str) -> SecurityGroup:
        with translate_not_found(self.KIND, resource_id):
            return _security_group(self.network.get_security_group(resource_id))

    def create(self, **attrs: Any) -> SecurityGroup:
        return _security_group(self.network.create_security_group(**attrs))

    def update(self, resource_id: str, **attrs: Any) -> SecurityGroup:
        with translate_not_found(self.KIND, resource_id):
            return _security_group(self.network.update_security_group(resource_id, **attrs))

    def delete(self, resource_id: str) -> None:
        with translate_not_found(self.KIND, resource_id):
            self.network.delete_security_group(resource_id, ignore_missing=False)

    def list(self, **filters: Any) -> list[SecurityGroup]:
        return [_security_group(sg) for sg in self.network.security_groups(**filters)]


class SDKRuleClient(RuleClient):
    def __init__(self, network: Any):
        self.network = network

    def get(self, resource_id: str) -> SecurityGroupRule:
        with translate_not_found(self.KIND, resource_id):
            return _rule(self.network.get_security_group_rule(resource_id))

    def create(self, **attrs: Any) -> SecurityGroupRule:
        if "ethertype" in attrs:
            attrs["ether_type"] = attrs.pop("ethertype")
        return _rule(self.network.create_security_group_rule(**attrs))

    def delete(self, resource_id: str) -> None:
        with translate_not_found(self.KIND, resource_id):
            self.network.delete_security_group_rule(resource_id, ignore_missing=False)

    def list(self, **filters: Any) -> list[SecurityGroupRule]:
        return [_rule(rule) for rule in self.network.security_group_rules(**filters)]


class SDKFloatingIPClient(FloatingIPClient):
    def __init__(self, network: Any):
        self.network = network

    def get(self, resource_id: str) -> FloatingIP:
        with translate_not_found(self.KIND, resource_id):
            return _floating_ip(self.network.get_ip(resource_id))

    def create(self, **attrs: Any) -> FloatingIP:
        return _floating_ip(self.network.create_ip(**attrs))

    def update(self, resource_id: str, **attrs: Any) -> FloatingIP:
        with translate_not_found(self.KIND, resource_id):
            return _floating_ip(self.network.update_ip(resource_id, **attrs))

    def delete(self, resource_id: str) -> None:
        with translate_not_found(self.KIND, resource_id):
            self.network.delete_ip(resource_id, ignore_missing=False)

    def list(self, **filters: Any) -> list[FloatingIP]:
        return [_floating_ip(fip) for fip in self.network.ips(**filters)]


class SDKPortClient(PortClient):
    def __init__(self, network: Any):
        self.network = network

    def get(self, resource_id: str) -> Port:
        with translate_not_found(self.KIND, resource_id):
            return _port(self.network.get_port(resource_id))

    def create(self, **attrs: Any) -> Port:
        return _port(self.network.create_port(**attrs))

    def update(self, resource_id: str, **attrs: Any) -> Port:
        with translate_not_found(self.KIND, resource_id):
            return _port(self.network.update_port(resource_id, **attrs))

    def delete(self, resource_id: str) -> None:
        with translate_not_found(self.KIND, resource_id):
            self.network.delete_port(resource_id, ignore_missing=False)

    def list(self, **filters: Any) -> list[Port]:
        return [_port(port) for port in self.network.ports(**filters)]


def client_for_connection(connection: Any) -> OpenStackClient:
    """Build the capability clients on top of an openstacksdk connection."""
    network = connection.network
    return OpenStackClient(
        security_groups=SDKSecurityGroupClient(network),
        rules=SDKRuleClient(network),
        floating_ips=SDKFloatingIPClient(network),
        ports=SDKPortClient(network),
    )
