"""Per-cluster Kubernetes client with Crossplane CRD definitions."""

from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from kubernetes import client, config
from kubernetes.client import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError
from kubernetes.dynamic.resource import Resource
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from xrd_catalog.config import AuthMode, ClusterDescriptor, TLSPolicy
from xrd_catalog.utils.errors import (
    AuthenticationError,
    ClusterError,
    NotFoundError,
    TransientClusterError,
)

logger = logging.getLogger(__name__)

IN_CLUSTER_TOKEN = Path("/var/run/secrets/kubernetes.io/serviceaccount/token")

# Status codes worth retrying.
RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


class CRDDefinition:
    """Definition of a Custom Resource."""

    def __init__(
        self,
        group: str,
        version: str,
        plural: str,
        kind: str,
    ) -> None:
        self.group = group
        self.version = version
        self.plural = plural
        self.kind = kind

    @property
    def api_version(self) -> str:
        """Get the full API version string."""
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version

    def __repr__(self) -> str:
        return f"CRDDefinition({self.api_version}, {self.kind})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CRDDefinition):
            return NotImplemented
        return (self.group, self.version, self.plural, self.kind) == (
            other.group,
            other.version,
            other.plural,
            other.kind,
        )

    def __hash__(self) -> int:
        return hash((self.group, self.version, self.plural, self.kind))


class CRDs:
    """Crossplane Custom Resource Definitions read by the engine."""

    XRD = CRDDefinition(
        group="apiextensions.crossplane.io",
        version="v1",
        plural="compositeresourcedefinitions",
        kind="CompositeResourceDefinition",
    )

    COMPOSITION = CRDDefinition(
        group="apiextensions.crossplane.io",
        version="v1",
        plural="compositions",
        kind="Composition",
    )

    @staticmethod
    def for_xrd(xrd: dict[str, Any]) -> CRDDefinition | None:
        """Build the definition of the composite kind an XRD declares.

        Uses the referenceable version, falling back to the first served one.
        """
        spec = xrd.get("spec") or {}
        names = spec.get("names") or {}
        group = spec.get("group")
        if not group or not names.get("kind") or not names.get("plural"):
            return None
        versions = spec.get("versions") or []
        chosen = next((v for v in versions if v.get("referenceable")), None)
        if chosen is None:
            chosen = next((v for v in versions if v.get("served")), None)
        if chosen is None and versions:
            chosen = versions[0]
        if chosen is None or not chosen.get("name"):
            return None
        return CRDDefinition(
            group=group,
            version=chosen["name"],
            plural=names["plural"],
            kind=names["kind"],
        )


def _run_exec_plugin(command: list[str]) -> str:
    """Run a credential plugin and return the token from its ExecCredential."""
    try:
        completed = subprocess.run(  # noqa: S603
            command,
            capture_output=True,
            check=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.SubprocessError) as e:
        raise AuthenticationError(f"Credential plugin failed: {e}") from e
    try:
        credential = json.loads(completed.stdout)
        return str(credential["status"]["token"])
    except (ValueError, KeyError, TypeError) as e:
        raise AuthenticationError("Credential plugin returned no token") from e


class K8sClient:
    """Read-only Kubernetes client for one cluster.

    Supports the cluster descriptor authentication modes:
    - service-account: mounted token (or tokenFile), in-cluster when no endpoint
    - user-token: explicit API server URL and bearer token
    - exec-plugin: token produced by a credential plugin command
    - kubeconfig: kubeconfig file with optional context
    """

    def __init__(self, cluster: ClusterDescriptor) -> None:
        self._cluster = cluster
        self._api_client: client.ApiClient | None = None
        self._dynamic_client: DynamicClient | None = None
        self._crd_cache: dict[str, Resource] = {}

    @property
    def cluster(self) -> ClusterDescriptor:
        return self._cluster

    @property
    def name(self) -> str:
        return self._cluster.name

    def connect(self) -> None:
        """Establish connection to the cluster API server."""
        try:
            self._api_client = self._create_api_client()
            self._dynamic_client = DynamicClient(self._api_client)
            logger.info(f"Connected to cluster '{self.name}'")
        except AuthenticationError:
            raise
        except ApiException as e:
            raise self._translate(e, "connect") from e
        except Exception as e:
            raise TransientClusterError(self.name, f"Failed to connect: {e}") from e

    def disconnect(self) -> None:
        """Close connection to the cluster API server."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None
            self._dynamic_client = None
            self._crd_cache.clear()
            logger.info(f"Disconnected from cluster '{self.name}'")

    @property
    def is_connected(self) -> bool:
        """Check if client is connected."""
        return self._api_client is not None

    def _configuration(self, host: str | None) -> client.Configuration:
        configuration = client.Configuration()
        if host:
            configuration.host = host
        policy = self._cluster.tls_policy
        configuration.verify_ssl = policy != TLSPolicy.INSECURE
        if policy == TLSPolicy.CA_FILE and self._cluster.ca_file:
            configuration.ssl_ca_cert = str(self._cluster.ca_file)
        return configuration

    def _create_api_client(self) -> client.ApiClient:
        """Create API client based on authentication mode."""
        mode = self._cluster.auth_mode

        if mode == AuthMode.KUBECONFIG:
            path = self._cluster.kubeconfig_path
            if path is None or not path.exists():
                raise AuthenticationError(f"Kubeconfig not found: {path}")
            return config.new_client_from_config(
                config_file=str(path),
                context=self._cluster.kubeconfig_context,
            )

        if mode == AuthMode.SERVICE_ACCOUNT and not self._cluster.endpoint:
            if not IN_CLUSTER_TOKEN.exists():
                raise AuthenticationError("Not running in-cluster and no endpoint configured")
            logger.info(f"Using in-cluster authentication for '{self.name}'")
            configuration = client.Configuration()
            config.load_incluster_config(client_configuration=configuration)
            return client.ApiClient(configuration)

        configuration = self._configuration(self._cluster.endpoint)
        configuration.api_key = {"authorization": f"Bearer {self._resolve_token()}"}
        return client.ApiClient(configuration)

    def _resolve_token(self) -> str:
        mode = self._cluster.auth_mode
        if mode == AuthMode.EXEC_PLUGIN:
            return _run_exec_plugin(self._cluster.exec_command)
        if self._cluster.token:
            return self._cluster.token
        token_file = self._cluster.token_file or IN_CLUSTER_TOKEN
        try:
            return token_file.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise AuthenticationError(f"Cannot read token file {token_file}: {e}") from e

    def refresh_credentials(self) -> None:
        """Reconnect with freshly resolved credentials.

        Used after a 401 for modes whose tokens rotate (exec plugin, mounted
        service-account tokens).
        """
        self.disconnect()
        self.connect()

    @property
    def dynamic(self) -> DynamicClient:
        """Get the dynamic client."""
        if not self._dynamic_client:
            raise ClusterError(self.name, "Client not connected. Call connect() first.")
        return self._dynamic_client

    def _translate(self, e: ApiException, action: str) -> Exception:
        """Map an API exception onto the engine's error taxonomy."""
        status = e.status or 0
        if status in (401, 403):
            return AuthenticationError(f"[{self.name}] {action} rejected ({status}): {e.reason}")
        if status in RETRYABLE_STATUS or status == 0:
            return TransientClusterError(self.name, f"{action} failed ({status}): {e.reason}")
        return ClusterError(self.name, f"{action} failed ({status}): {e.reason}")

    def get_resource(self, crd: CRDDefinition) -> Resource:
        """Get a dynamic resource for a CRD.

        Uses caching to avoid repeated API discovery calls.

        Raises:
            NotFoundError: If the cluster does not serve the kind.
            AuthenticationError: If discovery is rejected (401/403).
            TransientClusterError: On retryable statuses and connection errors.
        """
        cache_key = f"{crd.api_version}/{crd.plural}"
        if cache_key not in self._crd_cache:
            try:
                self._crd_cache[cache_key] = self.dynamic.resources.get(
                    api_version=crd.api_version,
                    kind=crd.kind,
                )
            except ResourceNotFoundError as e:
                raise NotFoundError("CustomResourceDefinition", crd.plural) from e
            except ApiException as e:
                raise self._translate(e, f"discover {crd.kind}") from e
            except Urllib3HTTPError as e:
                raise TransientClusterError(self.name, f"discover {crd.kind} failed: {e}") from e
        return self._crd_cache[cache_key]

    def verify(self) -> None:
        """Validate credentials with a minimal read against the XRD API."""
        self.list_resources(CRDs.XRD, limit=1)

    def list_resources(
        self,
        crd: CRDDefinition,
        label_selector: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """List objects of a kind across all namespaces as plain dicts."""
        resource = self.get_resource(crd)
        kwargs: dict[str, Any] = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if limit:
            kwargs["limit"] = limit
        try:
            result = resource.get(**kwargs)
        except ApiException as e:
            raise self._translate(e, f"list {crd.kind}") from e
        except Urllib3HTTPError as e:
            raise TransientClusterError(self.name, f"list {crd.kind} failed: {e}") from e
        items = result.to_dict().get("items") or []
        return [item for item in items if isinstance(item, dict)]

    def watch(
        self,
        crd: CRDDefinition,
        resource_version: str | None = None,
        timeout_seconds: int = 300,
    ) -> Iterator[tuple[str, dict[str, Any]]]:
        """Stream (event type, object) pairs for a kind.

        The stream ends after ``timeout_seconds``; callers re-open it.
        """
        resource = self.get_resource(crd)
        try:
            for event in self.dynamic.watch(
                resource,
                resource_version=resource_version,
                timeout=timeout_seconds,
            ):
                raw = event.get("raw_object") or {}
                yield str(event.get("type", "")), raw
        except ApiException as e:
            raise self._translate(e, f"watch {crd.kind}") from e
        except Urllib3HTTPError as e:
            raise TransientClusterError(self.name, f"watch {crd.kind} failed: {e}") from e
