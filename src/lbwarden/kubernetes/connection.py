"""Kubernetes connection management.

This module handles the connection to the Kubernetes API.
"""
import logging
import socket

from kubernetes import client, config

logger = logging.getLogger(__name__)


class KubernetesConnection:
    """Connection manager for the Kubernetes API.

    Holds the API clients for custom objects, secrets and events together with
    the request timeout every call is made with. One connection is shared by
    the LoadBalancer stores, the event recorder and the scheduler.
    """

    def __init__(self, timeout: float | None = None):
        """Initialize the Kubernetes connection.

        Attempts to connect to the Kubernetes API using in-cluster config first,
        falling back to kubeconfig for local development.

        Args:
            timeout: Request timeout in seconds applied to every API call. None means no timeout.
        """
        self.timeout = timeout
        self._setup_connection()
        # Reported as the instance in events
        self.hostname = socket.gethostname()

    def _setup_connection(self) -> None:
        """Load the cluster configuration and create the API clients."""
        try:
            # in a pod, the service account is used
            config.load_incluster_config()
            logger.info("Using in-cluster configuration")
        except config.ConfigException:
            try:
                config.load_kube_config()
                logger.info("Using kubeconfig configuration")
            except config.ConfigException as e:
                logger.error(
                    "Failed to load Kubernetes configuration. Ensure that the kubeconfig file is available and valid."
                )
                raise RuntimeError(
                    "Kubernetes configuration error: kubeconfig file is missing or invalid.") from e

        self.custom_objects_api = client.CustomObjectsApi()
        # LoadBalancers reference their OpenStack credentials as secrets
        self.core_v1_api = client.CoreV1Api()
        self.events_v1_api = client.EventsV1Api()
