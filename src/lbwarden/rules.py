"""Derivation of the security group rules a LoadBalancer needs."""

import ipaddress
import logging
from collections.abc import Callable

from lbwarden.models import LoadBalancer
from lbwarden.openstack.base import SecurityGroupRule

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_RANGES = ["0.0.0.0/0", "::/0"]
SSH_PORT = 22


def _ethertype(version: int) -> str:
    return "IPv4" if version == 4 else "IPv6"


def _base_rules(security_group_id: str) -> list[SecurityGroupRule]:
    rules = []
    for ethertype in ("IPv4", "IPv6"):
        rules.append(SecurityGroupRule(direction="egress", ethertype=ethertype))
        rules.append(
            SecurityGroupRule(
                direction="ingress",
                ethertype=ethertype,
                protocol="icmp" if ethertype == "IPv4" else "ipv6-icmp",
            )
        )
    # keepalived between the instances of one LoadBalancer
    rules.append(
        SecurityGroupRule(
            direction="ingress",
            ethertype="IPv4",
            protocol="vrrp",
            remote_group_id=security_group_id,
        )
    )
    return rules


def get_desired_rules(
    lb: LoadBalancer,
    security_group_id: str,
    warn: Callable[[str], None] | None = None,
) -> list[SecurityGroupRule]:
    """Compute the rules the security group of a LoadBalancer must contain.

    Args:
        lb: The LoadBalancer.
        security_group_id: Id of the LoadBalancer's security group, used for
            rules that reference the group itself.
        warn: Called with a message for every source range that is skipped
            because it is not a valid network.

    Returns:
        The desired rules, without ids. Duplicates are removed.
    """
    rules = _base_rules(security_group_id)

    source_ranges = lb.spec.options.load_balancer_source_ranges or DEFAULT_SOURCE_RANGES
    networks = []
    for source in source_ranges:
        try:
            networks.append(ipaddress.ip_network(source.strip(), strict=False))
        except ValueError:
            message = f"ignoring invalid loadBalancerSourceRange {source!r}"
            logger.warning(f"{lb.key}: {message}")
            if warn:
                warn(message)

    for port in lb.spec.ports:
        for network in networks:
            rules.append(
                SecurityGroupRule(
                    direction="ingress",
                    ethertype=_ethertype(network.version),
                    protocol=port.protocol.lower(),
                    port_range_min=port.port,
                    port_range_max=port.port,
                    remote_ip_prefix=str(network),
                )
            )

    if lb.spec.debug_settings.enabled:
        for source in DEFAULT_SOURCE_RANGES:
            network = ipaddress.ip_network(source)
            rules.append(
                SecurityGroupRule(
                    direction="ingress",
                    ethertype=_ethertype(network.version),
                    protocol="tcp",
                    port_range_min=SSH_PORT,
                    port_range_max=SSH_PORT,
                    remote_ip_prefix=str(network),
                )
            )

    unique = {}
    for rule in rules:
        unique.setdefault(rule.signature(), rule)
    return list(unique.values())
