"""Content hashes derived from a LoadBalancer.

Two hashes drive the controller: the OpenStack reconcile hash, which resets the
reconcile timer whenever a cloud-relevant spec field changes, and the machine
template hash, which identifies the LoadBalancerSet generation that matches the
current spec.
"""

import base64
import hashlib
import json
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from lbwarden.models import LoadBalancer, LoadBalancerMachineSpec, LoadBalancerRef

logger = logging.getLogger(__name__)


def hash_data(data: Any) -> str:
    """Hash JSON-serializable data into a short, label-safe string.

    Args:
        data: The data to hash. Dict keys are sorted before hashing.

    Returns:
        The first 16 characters of the lowercase base32 sha256 digest.
    """
    raw = json.dumps(data, sort_keys=True, separators=(",", ":")).encode()
    digest = hashlib.sha256(raw).digest()
    return base64.b32encode(digest).decode().lower().rstrip("=")[:16]


def get_openstack_reconcile_hash(lb: LoadBalancer) -> str:
    """Hash every spec field that influences the OpenStack resources of a LoadBalancer."""
    spec = lb.spec
    return hash_data(
        {
            "infrastructure": spec.infrastructure.model_dump(by_alias=True, exclude_none=True, mode="json"),
            "existingFloatingIP": spec.existing_floating_ip,
            "ports": [p.model_dump(by_alias=True, exclude_none=True, mode="json") for p in spec.ports],
            "options": spec.options.model_dump(by_alias=True, mode="json"),
            "debugSettings": spec.debug_settings.model_dump(by_alias=True, mode="json"),
        }
    )


def openstack_reconcile_is_needed(
    lb: LoadBalancer, interval: float, now: datetime | None = None
) -> bool:
    """Decide whether the expensive OpenStack reconcile has to run.

    Args:
        lb: The LoadBalancer to check.
        interval: Seconds after which a reconcile is due even without spec changes.
        now: The current time, for tests.

    Returns:
        True if no reconcile has happened yet, the interval has elapsed or the
        reconcile hash no longer matches the stored one.
    """
    last = lb.status.last_openstack_reconcile
    if last is None:
        return True

    now = now or datetime.now(UTC)
    if last.tzinfo is None:
        last = last.replace(tzinfo=UTC)
    if now - last > timedelta(seconds=interval):
        logger.debug(f"OpenStack reconcile of {lb.key} is due, last one at {last.isoformat()}")
        return True

    if lb.status.openstack_reconcile_hash != get_openstack_reconcile_hash(lb):
        logger.debug(f"OpenStack reconcile hash of {lb.key} changed")
        return True

    return False


def get_machine_spec(lb: LoadBalancer, port_id: str) -> LoadBalancerMachineSpec:
    """Build the machine spec LoadBalancerSets of this LoadBalancer are created with."""
    return LoadBalancerMachineSpec(
        infrastructure=lb.spec.infrastructure,
        port_id=port_id,
        load_balancer_ref=LoadBalancerRef(name=lb.name, namespace=lb.namespace),
    )


def get_machine_spec_hash(lb: LoadBalancer) -> str:
    """Hash the machine template of a LoadBalancer.

    The template consists of the infrastructure, the port the machines attach to
    and the reference to the owning LoadBalancer.
    """
    spec = get_machine_spec(lb, lb.status.port_id or "")
    return hash_data(spec.model_dump(by_alias=True, exclude_none=True, mode="json"))
