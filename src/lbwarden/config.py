"""Configuration module for lbwarden.

This module handles the configuration of lbwarden through environment variables.
"""
import os

from pydantic import BaseModel, Field, field_validator


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class LbwardenConfig(BaseModel):
    """Configuration class for lbwarden.

    Attributes:
        namespace: Namespace to watch LoadBalancers in, None for all namespaces.
        worker_count: Number of LoadBalancers reconciled in parallel.
        openstack_timeout: Timeout in seconds for every OpenStack call.
        kubernetes_timeout: Timeout in seconds for every Kubernetes call.
        openstack_reconcile_interval: Seconds after which the OpenStack resources
            are reconciled again even if the spec did not change.
        resync_interval: Seconds after which a settled LoadBalancer is reconciled again.
        skip_reconciles: Pause all reconciles.
        skip_all_but: Only reconcile the LoadBalancer with this namespace/name key.
    """
    namespace: str | None = Field(default=None, env="LBWARDEN_NAMESPACE")
    worker_count: int = Field(default=10, env="LBWARDEN_WORKER_COUNT")
    openstack_timeout: float = Field(default=20, env="LBWARDEN_OPENSTACK_TIMEOUT")
    kubernetes_timeout: float = Field(default=30, env="LBWARDEN_KUBERNETES_TIMEOUT")
    openstack_reconcile_interval: float = Field(default=300, env="LBWARDEN_OPENSTACK_RECONCILE_INTERVAL")
    resync_interval: float = Field(default=300, env="LBWARDEN_RESYNC_INTERVAL")
    skip_reconciles: bool = Field(default=False, env="LBWARDEN_SKIP_RECONCILES")
    skip_all_but: str | None = Field(default=None, env="LBWARDEN_SKIP_ALL_BUT")

    @field_validator(
        "worker_count",
        "openstack_timeout",
        "kubernetes_timeout",
        "openstack_reconcile_interval",
        "resync_interval",
    )
    def validate_positive(cls, v):
        """Validate that counts and durations are positive"""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("skip_all_but")
    def validate_key(cls, v):
        """Validate the key format as namespace/name"""
        if v is None or v == "":
            return None
        parts = v.split("/")
        if len(parts) != 2 or not all(parts):
            raise ValueError("Key must be in format namespace/name")
        return v

    @classmethod
    def from_env(cls):
        """Create a config instance from environment variables."""
        return cls(
            namespace=os.getenv("LBWARDEN_NAMESPACE") or None,
            worker_count=int(os.getenv("LBWARDEN_WORKER_COUNT", "10")),
            openstack_timeout=float(os.getenv("LBWARDEN_OPENSTACK_TIMEOUT", "20")),
            kubernetes_timeout=float(os.getenv("LBWARDEN_KUBERNETES_TIMEOUT", "30")),
            openstack_reconcile_interval=float(os.getenv("LBWARDEN_OPENSTACK_RECONCILE_INTERVAL", "300")),
            resync_interval=float(os.getenv("LBWARDEN_RESYNC_INTERVAL", "300")),
            skip_reconciles=_env_bool("LBWARDEN_SKIP_RECONCILES"),
            skip_all_but=os.getenv("LBWARDEN_SKIP_ALL_BUT"),
        )
