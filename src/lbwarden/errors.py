"""Errors raised by the LoadBalancer reconcilers.

Any exception escaping a reconcile pass makes the scheduler retry the object
with exponential backoff. The classes below name the failures the reconcilers
raise themselves; errors from the Kubernetes or OpenStack clients propagate
unchanged.
"""


class LbwardenError(Exception):
    """Base class for all lbwarden errors."""


class IntegrityError(LbwardenError):
    """An OpenStack create call returned a resource without an id."""


class SecurityGroupIDEmptyError(IntegrityError):
    def __init__(self):
        super().__init__("created security group has an empty id")


class FloatingIPIDEmptyError(IntegrityError):
    def __init__(self):
        super().__init__("created floating ip has an empty id")


class PortIDEmptyError(IntegrityError):
    def __init__(self):
        super().__init__("created port has an empty id")


class PortNotSetError(LbwardenError):
    """The LoadBalancerSet needs a port, but the LoadBalancer status has none yet."""

    def __init__(self):
        super().__init__("portID is not set in LoadBalancer status")


class FloatingIPNotFoundError(LbwardenError):
    """The floating IP the user asked for via existingFloatingIP does not exist."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"existing floating ip {address} not found in openstack")


class MissingFloatingNetworkError(LbwardenError):
    def __init__(self):
        super().__init__("infrastructure.floatingNetID is required to create a floating ip")


class InvalidRevisionError(LbwardenError):
    def __init__(self, kind: str, key: str, cause: Exception):
        super().__init__(f"invalid revision annotation on {kind} {key}: {cause}")


class AuthSecretError(LbwardenError):
    """The OpenStack credential secret is missing or unusable."""
