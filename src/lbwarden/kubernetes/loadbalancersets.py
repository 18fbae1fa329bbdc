"""Access to the LoadBalancerSets owned by a LoadBalancer."""

import logging
from typing import Any

from kubernetes.client.exceptions import ApiException

from lbwarden.kubernetes.connection import KubernetesConnection
from lbwarden.models import (
    API_GROUP,
    API_VERSION,
    HASH_LABEL,
    LOADBALANCERSET_PLURAL,
    REVISION_ANNOTATION,
    LoadBalancer,
    LoadBalancerMachineSpec,
    LoadBalancerSet,
)

logger = logging.getLogger(__name__)


def loadbalancerset_name(lb: LoadBalancer, template_hash: str) -> str:
    return f"{lb.name}-{template_hash}"


def build_loadbalancerset(
    lb: LoadBalancer, machine_spec: LoadBalancerMachineSpec, template_hash: str, revision: int
) -> dict[str, Any]:
    """Build the body of a new LoadBalancerSet for a LoadBalancer.

    The set carries the LoadBalancer's selector labels plus the template hash,
    the revision annotation and a controller owner reference to the LoadBalancer.
    """
    labels = {**lb.spec.selector.match_labels, HASH_LABEL: template_hash}
    owner = {
        "apiVersion": lb.api_version,
        "kind": LoadBalancer.KIND,
        "name": lb.name,
        "uid": lb.metadata.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }
    return {
        "apiVersion": f"{API_GROUP}/{API_VERSION}",
        "kind": LoadBalancerSet.KIND,
        "metadata": {
            "name": loadbalancerset_name(lb, template_hash),
            "namespace": lb.namespace,
            "labels": labels,
            "annotations": {REVISION_ANNOTATION: str(revision)},
            "ownerReferences": [owner],
        },
        "spec": {
            "selector": {"matchLabels": labels},
            "replicas": lb.spec.replicas,
            "template": {
                "labels": labels,
                "spec": machine_spec.model_dump(by_alias=True, exclude_none=True, mode="json"),
            },
        },
    }


class LoadBalancerSetStore:
    """Lists, creates, scales and deletes LoadBalancerSets."""

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
            "plural": LOADBALANCERSET_PLURAL,
            "_request_timeout": self.connection.timeout,
        }

    def list_for_loadbalancer(self, lb: LoadBalancer) -> list[LoadBalancerSet]:
        """List all LoadBalancerSets that belong to a LoadBalancer.

        Sets are selected by the LoadBalancer's selector labels and must
        reference the LoadBalancer in their machine template.
        """
        selector = ",".join(f"{k}={v}" for k, v in sorted(lb.spec.selector.match_labels.items()))
        result = self.api.list_namespaced_custom_object(
            namespace=lb.namespace,
            label_selector=selector,
            **self._kwargs(),
        )
        sets = []
        for item in result.get("items", []):
            lbs = LoadBalancerSet.model_validate(item)
            ref = lbs.spec.template.spec.load_balancer_ref
            if ref.name == lb.name and ref.namespace == lb.namespace:
                sets.append(lbs)
        return sets

    def create(
        self, lb: LoadBalancer, machine_spec: LoadBalancerMachineSpec, template_hash: str, revision: int
    ) -> LoadBalancerSet:
        body = build_loadbalancerset(lb, machine_spec, template_hash, revision)
        logger.info(f"Creating LoadBalancerSet {lb.namespace}/{body['metadata']['name']} with revision {revision}")
        obj = self.api.create_namespaced_custom_object(namespace=lb.namespace, body=body, **self._kwargs())
        return LoadBalancerSet.model_validate(obj)

    def patch_replicas(self, lbs: LoadBalancerSet, replicas: int) -> None:
        logger.info(f"Scaling LoadBalancerSet {lbs.key} from {lbs.spec.replicas} to {replicas} replicas")
        obj = self.api.patch_namespaced_custom_object(
            namespace=lbs.namespace,
            name=lbs.name,
            body={"spec": {"replicas": replicas}},
            _content_type="application/merge-patch+json",
            **self._kwargs(),
        )
        lbs.refresh(obj)

    def delete(self, lbs: LoadBalancerSet) -> None:
        """Delete a LoadBalancerSet. Its machines are removed by garbage collection."""
        logger.info(f"Deleting LoadBalancerSet {lbs.key}")
        try:
            self.api.delete_namespaced_custom_object(
                namespace=lbs.namespace,
                name=lbs.name,
                propagation_policy="Background",
                **self._kwargs(),
            )
        except ApiException as e:
            if e.status != 404:
                raise
            logger.debug(f"LoadBalancerSet {lbs.key} is already gone")
