"""Capability interfaces for the OpenStack networking resources.

The reconcilers only talk to OpenStack through the four clients defined here.
Implementations must translate every provider specific "not found" error into
:class:`NotFoundError`, so the reconcilers never inspect provider error types.
"""

import abc
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class NotFoundError(Exception):
    """The requested OpenStack resource does not exist."""

    def __init__(self, kind: str, ref: str):
        self.kind = kind
        self.ref = ref
        super().__init__(f"{kind} {ref} not found")


class _Resource(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""


class SecurityGroup(_Resource):
    name: str = ""
    description: str = ""


class SecurityGroupRule(_Resource):
    security_group_id: str = ""
    description: str = ""
    direction: str = "ingress"
    ethertype: str = "IPv4"
    protocol: str | None = None
    port_range_min: int | None = None
    port_range_max: int | None = None
    remote_ip_prefix: str | None = None
    remote_group_id: str | None = None

    def signature(self) -> tuple:
        """Identify a rule by its content, ignoring id and description."""
        return (
            self.direction,
            self.ethertype,
            (self.protocol or "").lower() or None,
            self.port_range_min,
            self.port_range_max,
            self.remote_ip_prefix or None,
            self.remote_group_id or None,
        )


class FloatingIP(_Resource):
    floating_ip_address: str = ""
    floating_network_id: str = ""
    description: str = ""
    port_id: str | None = None
    status: str = ""


class FixedIP(BaseModel):
    ip_address: str
    subnet_id: str | None = None


class Port(_Resource):
    name: str = ""
    network_id: str = ""
    security_group_ids: list[str] = Field(default_factory=list)
    fixed_ips: list[FixedIP] = Field(default_factory=list)


T = TypeVar("T", bound=_Resource)


class ResourceClient(Generic[T], abc.ABC):
    """List/Get/Create/Delete for one kind of OpenStack resource."""

    KIND: str = "resource"

    @abc.abstractmethod
    def list(self, **filters: Any) -> list[T]:
        """List resources matching all given attribute filters."""

    @abc.abstractmethod
    def get(self, resource_id: str) -> T:
        """Get a resource by id.

        Raises:
            NotFoundError: If no resource with this id exists.
        """

    @abc.abstractmethod
    def create(self, **attrs: Any) -> T:
        """Create a resource and return it as reported by OpenStack."""

    @abc.abstractmethod
    def delete(self, resource_id: str) -> None:
        """Delete a resource.

        Raises:
            NotFoundError: If no resource with this id exists.
        """


class MutableResourceClient(ResourceClient[T], abc.ABC):
    """A resource client that can also change existing resources."""

    @abc.abstractmethod
    def update(self, resource_id: str, **attrs: Any) -> T:
        """Update attributes of a resource.

        Raises:
            NotFoundError: If no resource with this id exists.
        """


class SecurityGroupClient(MutableResourceClient[SecurityGroup], abc.ABC):
    KIND = "security group"


class RuleClient(ResourceClient[SecurityGroupRule], abc.ABC):
    """Rules are immutable in Neutron, a changed rule is deleted and recreated."""

    KIND = "security group rule"


class FloatingIPClient(MutableResourceClient[FloatingIP], abc.ABC):
    KIND = "floating ip"


class PortClient(MutableResourceClient[Port], abc.ABC):
    KIND = "port"


class OpenStackClient:
    """Bundle of the four capability clients for one set of credentials."""

    def __init__(
        self,
        security_groups: SecurityGroupClient,
        rules: RuleClient,
        floating_ips: FloatingIPClient,
        ports: PortClient,
    ):
        self.security_groups = security_groups
        self.rules = rules
        self.floating_ips = floating_ips
        self.ports = ports
