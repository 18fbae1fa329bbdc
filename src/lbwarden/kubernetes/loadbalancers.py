"""Access to LoadBalancer objects.

All writes are JSON merge patches carrying the resourceVersion the controller
last observed, so the API server rejects them with 409 Conflict if someone else
changed the object meanwhile. Conflicts are retried by re-reading the object and
reapplying the change; callers never see them.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import tenacity
from kubernetes.client.exceptions import ApiException

from lbwarden.kubernetes.connection import KubernetesConnection
from lbwarden.models import (
    API_GROUP,
    API_VERSION,
    LOADBALANCER_PLURAL,
    REVISION_ANNOTATION,
    LoadBalancer,
    LoadBalancerStatus,
)

logger = logging.getLogger(__name__)

MERGE_PATCH = "application/merge-patch+json"
CONFLICT_RETRIES = 5


def _is_conflict(e: BaseException) -> bool:
    return isinstance(e, ApiException) and e.status == 409


def format_time(value: datetime) -> str:
    """Format a timestamp the way metav1.Time serializes it."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def status_body(**fields: Any) -> dict[str, Any]:
    """Translate status field names into their JSON names.

    ``status_body(port_id="abc")`` gives ``{"portID": "abc"}``. A value of None
    removes the field when used in a merge patch.

    Raises:
        KeyError: For unknown status fields.
    """
    body = {}
    for field, value in fields.items():
        alias = LoadBalancerStatus.model_fields[field].alias or field
        if isinstance(value, datetime):
            value = format_time(value)
        body[alias] = value
    return body


class LoadBalancerStore:
    """Reads and patches LoadBalancer objects and their status subresource.

    Every patch method updates the passed LoadBalancer in place with the object
    returned by the API server, so later reconcile steps see the new state.
    """

    def __init__(self, connection: KubernetesConnection):
        """Initialize the store.

        Args:
            connection: The Kubernetes connection to use
        """
        self.connection = connection
        self.api = connection.custom_objects_api

    def _kwargs(self) -> dict[str, Any]:
        return {
            "group": API_GROUP,
            "version": API_VERSION,
            "plural": LOADBALANCER_PLURAL,
        }

    def get(self, namespace: str, name: str) -> LoadBalancer | None:
        """Get a LoadBalancer.

        Returns:
            The LoadBalancer, or None if it does not exist.
        """
        try:
            obj = self.api.get_namespaced_custom_object(
                namespace=namespace,
                name=name,
                _request_timeout=self.connection.timeout,
                **self._kwargs(),
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return LoadBalancer.model_validate(obj)

    def patch_status(self, lb: LoadBalancer, **fields: Any) -> None:
        """Merge-patch status fields, e.g. ``patch_status(lb, port_id="abc")``."""
        logger.debug(f"Patching status of LoadBalancer {lb.key}: {fields}")
        self._patch(lb, lambda _: {"status": status_body(**fields)}, status=True)

    def remove_status_field(self, lb: LoadBalancer, field: str) -> None:
        """Remove a single status field, e.g. ``remove_status_field(lb, "port_id")``."""
        logger.debug(f"Removing {field} from status of LoadBalancer {lb.key}")
        self._patch(lb, lambda _: {"status": status_body(**{field: None})}, status=True)

    def patch_revision(self, lb: LoadBalancer, revision: int) -> None:
        """Set the rollout revision annotation of a LoadBalancer."""
        logger.info(f"Setting revision of LoadBalancer {lb.key} to {revision}")
        self._patch(lb, lambda _: {"metadata": {"annotations": {REVISION_ANNOTATION: str(revision)}}})

    def add_finalizer(self, lb: LoadBalancer, finalizer: str) -> None:
        """Add a finalizer unless the LoadBalancer already carries it."""
        if finalizer in lb.metadata.finalizers:
            return

        def body(current: LoadBalancer) -> dict[str, Any]:
            finalizers = list(current.metadata.finalizers)
            if finalizer not in finalizers:
                finalizers.append(finalizer)
            return {"metadata": {"finalizers": finalizers}}

        logger.info(f"Adding finalizer {finalizer} to LoadBalancer {lb.key}")
        self._patch(lb, body)

    def remove_finalizer(self, lb: LoadBalancer, finalizer: str) -> None:
        """Remove a finalizer if the LoadBalancer carries it."""
        if finalizer not in lb.metadata.finalizers:
            return

        def body(current: LoadBalancer) -> dict[str, Any]:
            return {"metadata": {"finalizers": [f for f in current.metadata.finalizers if f != finalizer]}}

        logger.info(f"Removing finalizer {finalizer} from LoadBalancer {lb.key}")
        try:
            self._patch(lb, body)
        except ApiException as e:
            if e.status != 404:
                raise
            logger.debug(f"LoadBalancer {lb.key} is already gone")

    def _patch(
        self,
        lb: LoadBalancer,
        build_body: Callable[[LoadBalancer], dict[str, Any]],
        status: bool = False,
    ) -> None:
        patch = (
            self.api.patch_namespaced_custom_object_status
            if status
            else self.api.patch_namespaced_custom_object
        )
        retrying = tenacity.Retrying(
            retry=tenacity.retry_if_exception(_is_conflict),
            wait=tenacity.wait_exponential(multiplier=0.05, max=1),
            stop=tenacity.stop_after_attempt(CONFLICT_RETRIES),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.debug(f"Conflict patching LoadBalancer {lb.key}, re-reading it")
                    self._reload(lb)
                body = build_body(lb)
                body.setdefault("metadata", {})["resourceVersion"] = lb.metadata.resource_version
                obj = patch(
                    namespace=lb.namespace,
                    name=lb.name,
                    body=body,
                    _content_type=MERGE_PATCH,
                    _request_timeout=self.connection.timeout,
                    **self._kwargs(),
                )
        lb.refresh(obj)

    def _reload(self, lb: LoadBalancer) -> None:
        obj = self.api.get_namespaced_custom_object(
            namespace=lb.namespace,
            name=lb.name,
            _request_timeout=self.connection.timeout,
            **self._kwargs(),
        )
        lb.refresh(obj)
