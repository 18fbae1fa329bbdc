"""Models for the LoadBalancer and LoadBalancerSet custom resources.

The Kubernetes API hands custom objects out as plain dictionaries. These models
parse them into typed objects while keeping the JSON field names of the CRDs as
aliases, so ``model_dump(by_alias=True)`` produces a valid object body again.
"""

from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

API_GROUP = "yawol.stackit.cloud"
API_VERSION = "v1beta1"
LOADBALANCER_PLURAL = "loadbalancers"
LOADBALANCERSET_PLURAL = "loadbalancersets"

# Annotation holding the rollout revision on LoadBalancers and LoadBalancerSets
REVISION_ANNOTATION = "loadbalancer.yawol.stackit.cloud/revision"
# Label holding the machine template hash on LoadBalancerSets
HASH_LABEL = "lbm-template-hash"
FINALIZER = "yawol.stackit.cloud/controller2"


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ObjectMeta(_Model):
    name: str
    namespace: str = "default"
    uid: str | None = None
    resource_version: str | None = Field(default=None, alias="resourceVersion")
    generation: int | None = None
    deletion_timestamp: datetime | None = Field(default=None, alias="deletionTimestamp")
    finalizers: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class LabelSelector(_Model):
    match_labels: dict[str, str] = Field(default_factory=dict, alias="matchLabels")


class SecretReference(_Model):
    name: str
    namespace: str | None = None


class OpenstackFlavorRef(_Model):
    flavor_id: str | None = None
    flavor_name: str | None = None
    flavor_search: str | None = None


class OpenstackImageRef(_Model):
    image_id: str | None = None
    image_name: str | None = None
    image_search: str | None = None


class LoadBalancerInfrastructure(_Model):
    floating_net_id: str | None = Field(default=None, alias="floatingNetID")
    network_id: str = Field(alias="networkID")
    flavor: OpenstackFlavorRef | None = None
    image: OpenstackImageRef | None = None
    availability_zone: str = Field(default="", alias="availabilityZone")
    auth_secret_ref: SecretReference = Field(alias="authSecretRef")


class LoadBalancerOptions(_Model):
    internal_lb: bool = Field(default=False, alias="internalLB")
    load_balancer_source_ranges: list[str] = Field(default_factory=list, alias="loadBalancerSourceRanges")
    tcp_proxy_protocol: bool = Field(default=False, alias="tcpProxyProtocol")
    tcp_proxy_protocol_ports_filter: list[int] = Field(default_factory=list, alias="tcpProxyProtocolPortFilter")


class LoadBalancerDebugSettings(_Model):
    enabled: bool = False
    sshkey_name: str = Field(default="", alias="sshkeyName")


class LoadBalancerEndpoint(_Model):
    name: str
    addresses: list[str] = Field(default_factory=list)


class ServicePort(_Model):
    name: str | None = None
    protocol: str = "TCP"
    port: int
    target_port: int | str | None = Field(default=None, alias="targetPort")
    node_port: int | None = Field(default=None, alias="nodePort")


class LoadBalancerSpec(_Model):
    selector: LabelSelector = Field(default_factory=LabelSelector)
    replicas: int = 1
    existing_floating_ip: str | None = Field(default=None, alias="existingFloatingIP")
    debug_settings: LoadBalancerDebugSettings = Field(
        default_factory=LoadBalancerDebugSettings, alias="debugSettings"
    )
    endpoints: list[LoadBalancerEndpoint] = Field(default_factory=list)
    ports: list[ServicePort] = Field(default_factory=list)
    infrastructure: LoadBalancerInfrastructure
    options: LoadBalancerOptions = Field(default_factory=LoadBalancerOptions)


class LoadBalancerStatus(_Model):
    ready_replicas: int | None = Field(default=None, alias="readyReplicas")
    replicas: int | None = None
    external_ip: str | None = Field(default=None, alias="externalIP")
    floating_id: str | None = Field(default=None, alias="floatingID")
    floating_name: str | None = Field(default=None, alias="floatingName")
    port_id: str | None = Field(default=None, alias="portID")
    port_name: str | None = Field(default=None, alias="portName")
    security_group_id: str | None = Field(default=None, alias="security_group_id")
    security_group_name: str | None = Field(default=None, alias="security_group_name")
    last_openstack_reconcile: datetime | None = Field(default=None, alias="lastOpenstackReconcile")
    openstack_reconcile_hash: str | None = Field(default=None, alias="openstackReconcileHash")


class _Resource(_Model):
    KIND: ClassVar[str]

    api_version: str = Field(default=f"{API_GROUP}/{API_VERSION}", alias="apiVersion")
    kind: str | None = None
    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        """The namespace/name key identifying this object."""
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def revision(self) -> int:
        """Read the rollout revision annotation, 0 when absent.

        Raises:
            ValueError: If the annotation is not a non-negative integer.
        """
        value = self.metadata.annotations.get(REVISION_ANNOTATION)
        if value is None:
            return 0
        revision = int(value)
        if revision < 0:
            raise ValueError(f"negative revision {revision}")
        return revision

    def refresh(self, obj: dict[str, Any]) -> None:
        """Replace this object's state with the one returned by the API server."""
        fresh = type(self).model_validate(obj)
        for field in type(self).model_fields:
            setattr(self, field, getattr(fresh, field))


class LoadBalancer(_Resource):
    KIND: ClassVar[str] = "LoadBalancer"

    spec: LoadBalancerSpec
    status: LoadBalancerStatus = Field(default_factory=LoadBalancerStatus)


class LoadBalancerRef(_Model):
    name: str
    namespace: str


class LoadBalancerMachineSpec(_Model):
    infrastructure: LoadBalancerInfrastructure
    port_id: str = Field(alias="portID")
    load_balancer_ref: LoadBalancerRef = Field(alias="loadBalancerRef")


class LoadBalancerMachineTemplate(_Model):
    labels: dict[str, str] = Field(default_factory=dict)
    spec: LoadBalancerMachineSpec


class LoadBalancerSetSpec(_Model):
    selector: LabelSelector = Field(default_factory=LabelSelector)
    replicas: int = 1
    template: LoadBalancerMachineTemplate


class LoadBalancerSetStatus(_Model):
    replicas: int | None = None
    ready_replicas: int | None = Field(default=None, alias="readyReplicas")


class LoadBalancerSet(_Resource):
    KIND: ClassVar[str] = "LoadBalancerSet"

    spec: LoadBalancerSetSpec
    status: LoadBalancerSetStatus = Field(default_factory=LoadBalancerSetStatus)

    @property
    def template_hash(self) -> str | None:
        return self.metadata.labels.get(HASH_LABEL)
