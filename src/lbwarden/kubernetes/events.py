"""Kubernetes events handling module.

This module records events on LoadBalancer objects, most importantly the
warnings that make OpenStack failures visible to the owner of a LoadBalancer.
"""

import logging
from datetime import UTC, datetime

from kubernetes import client

from lbwarden.kubernetes.connection import KubernetesConnection
from lbwarden.models import LoadBalancer

logger = logging.getLogger(__name__)

# Constants for event types
EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

# Constants for event reasons
EVENT_REASON_FAILED = "Failed"
EVENT_REASON_RECONCILED = "Reconciled"

# Constants for event actions
EVENT_ACTION_RECONCILE = "Reconcile"

# Component name for events
EVENT_COMPONENT = "lbwarden"


class EventRecorder:
    """Records Kubernetes events regarding LoadBalancer objects."""

    def __init__(self, connection: KubernetesConnection):
        """Initialize the event recorder.

        Args:
            connection: The Kubernetes connection to use
        """
        self.connection = connection

    def warning(self, lb: LoadBalancer, message: str, reason: str = EVENT_REASON_FAILED) -> None:
        """Record a warning event for a LoadBalancer."""
        self._create_event(lb, EVENT_TYPE_WARNING, reason, message)

    def normal(self, lb: LoadBalancer, message: str, reason: str = EVENT_REASON_RECONCILED) -> None:
        """Record a normal event for a LoadBalancer."""
        self._create_event(lb, EVENT_TYPE_NORMAL, reason, message)

    def send_error_as_event(self, lb: LoadBalancer, error: Exception) -> Exception:
        """Record an error as warning event and hand it back to the caller.

        Meant to be used as ``raise recorder.send_error_as_event(lb, err)``.

        Args:
            lb: The LoadBalancer the error belongs to.
            error: The error to record.

        Returns:
            The error passed in.
        """
        self.warning(lb, str(error))
        return error

    def _create_event(self, lb: LoadBalancer, event_type: str, reason: str, message: str) -> None:
        """Create a Kubernetes event for a LoadBalancer.

        Failures are logged and never raised, an event must not break a reconcile.

        Args:
            lb: The LoadBalancer to create an event for
            event_type: Type of event (Normal or Warning)
            reason: Short reason for the event
            message: Detailed message for the event
        """
        name = lb.name
        namespace = lb.namespace
        try:
            body = client.EventsV1Event(
                metadata=client.V1ObjectMeta(generate_name=f"{name}-", namespace=namespace),
                reason=reason,
                note=message[:1024],
                type=event_type,
                reporting_controller=EVENT_COMPONENT,
                reporting_instance=self.connection.hostname,
                action=EVENT_ACTION_RECONCILE,
                regarding=client.V1ObjectReference(
                    api_version=lb.api_version,
                    kind=LoadBalancer.KIND,
                    name=name,
                    namespace=namespace,
                    uid=lb.metadata.uid,
                ),
                event_time=datetime.now(UTC),
            )

            self.connection.events_v1_api.create_namespaced_event(
                namespace=namespace, body=body, _request_timeout=self.connection.timeout
            )
            logger.debug(f"Created event for LoadBalancer {namespace}/{name}: {reason}")

        except Exception as e:
            logger.warning(f"Failed to create event for LoadBalancer {namespace}/{name}: {e}")
