"""OpenStack credentials handling.

Every LoadBalancer references a secret whose ``cloudprovider.conf`` key holds an
ini file in the format of the OpenStack cloud provider::

    [Global]
    auth-url = https://keystone.example.com/v3
    username = lb-user
    password = secret
    domain-name = default
    project-id = 1234

This module turns such a secret into an :class:`OpenStackClient`.
"""

import base64
import configparser
import hashlib
import logging
import threading
from collections.abc import Callable
from typing import Any

import openstack
from kubernetes.client.exceptions import ApiException

from lbwarden.errors import AuthSecretError
from lbwarden.models import LoadBalancer
from lbwarden.openstack.base import OpenStackClient
from lbwarden.openstack.clients import client_for_connection

logger = logging.getLogger(__name__)

CLOUD_CONFIG_KEY = "cloudprovider.conf"


def parse_cloud_config(ini_data: str) -> dict[str, Any]:
    """Parse the [Global] section of a cloud provider ini into openstacksdk arguments.

    Args:
        ini_data: Content of the ini file.

    Returns:
        Keyword arguments for ``openstack.connection.Connection``.

    Raises:
        AuthSecretError: If the ini cannot be parsed or lacks an auth url.
    """
    parser = configparser.ConfigParser(interpolation=None)
    try:
        parser.read_string(ini_data)
    except configparser.Error as e:
        raise AuthSecretError(f"invalid cloud config: {e}") from e

    if not parser.has_section("Global"):
        raise AuthSecretError("cloud config has no [Global] section")
    section = parser["Global"]

    if not section.get("auth-url"):
        raise AuthSecretError("cloud config has no auth-url")

    auth = {"auth_url": section["auth-url"]}
    if section.get("application-credential-id"):
        auth_type = "v3applicationcredential"
        auth["application_credential_id"] = section["application-credential-id"]
        auth["application_credential_secret"] = section.get("application-credential-secret", "")
    else:
        auth_type = "password"
        auth["username"] = section.get("username", "")
        auth["password"] = section.get("password", "")
        project_id = section.get("project-id") or section.get("tenant-id")
        if project_id:
            auth["project_id"] = project_id
        if section.get("project-name"):
            auth["project_name"] = section["project-name"]
        domain_name = section.get("domain-name")
        if domain_name:
            auth["user_domain_name"] = domain_name
            auth["project_domain_name"] = domain_name

    kwargs = {"auth": auth, "auth_type": auth_type}
    if section.get("region"):
        kwargs["region_name"] = section["region"]
    return kwargs


def connect(ini_data: str, timeout: float) -> OpenStackClient:
    """Open an openstacksdk connection for the given ini and wrap it."""
    conn = openstack.connection.Connection(api_timeout=timeout, **parse_cloud_config(ini_data))
    return client_for_connection(conn)


class OpenStackClientFactory:
    """Resolve the OpenStack client for a LoadBalancer from its credential secret.

    One client is cached per secret and reused while the secret content stays
    the same. A rotated secret replaces the cached client with a fresh
    connection.
    """

    def __init__(
        self,
        core_v1_api: Any,
        timeout: float,
        request_timeout: float | None = None,
        connector: Callable[[str, float], OpenStackClient] = connect,
    ):
        """Initialize the factory.

        Args:
            core_v1_api: Kubernetes core API used to read the secrets.
            timeout: Timeout in seconds for every OpenStack call.
            request_timeout: Timeout in seconds for reading a secret.
            connector: Builds a client from the ini content, for tests.
        """
        self.core_v1_api = core_v1_api
        self.timeout = timeout
        self.request_timeout = request_timeout
        self.connector = connector
        self._clients: dict[tuple[str, str], tuple[str, OpenStackClient]] = {}
        self._lock = threading.Lock()

    def for_loadbalancer(self, lb: LoadBalancer) -> OpenStackClient:
        ref = lb.spec.infrastructure.auth_secret_ref
        namespace = ref.namespace or lb.namespace
        try:
            secret = self.core_v1_api.read_namespaced_secret(
                ref.name, namespace, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            raise AuthSecretError(f"cannot read secret {namespace}/{ref.name}: {e.reason}") from e

        data = (secret.data or {}).get(CLOUD_CONFIG_KEY)
        if data is None:
            raise AuthSecretError(f"secret {namespace}/{ref.name} has no {CLOUD_CONFIG_KEY} key")
        ini_data = base64.b64decode(data).decode()

        digest = hashlib.sha256(ini_data.encode()).hexdigest()
        key = (namespace, ref.name)
        with self._lock:
            cached = self._clients.get(key)
            if cached is not None and cached[0] == digest:
                return cached[1]
            if cached is None:
                logger.debug(f"Creating OpenStack client for secret {namespace}/{ref.name}")
            else:
                logger.info(f"Secret {namespace}/{ref.name} changed, replacing its OpenStack client")
            client = self.connector(ini_data, self.timeout)
            self._clients[key] = (digest, client)
        return client
