"""Configuration management for the XRD catalog engine."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from xrd_catalog.utils.errors import ConfigurationError


class AuthMode(str, Enum):
    """Authentication mode for a cluster API server."""

    SERVICE_ACCOUNT = "service-account"
    USER_TOKEN = "user-token"
    EXEC_PLUGIN = "exec-plugin"
    KUBECONFIG = "kubeconfig"


class TLSPolicy(str, Enum):
    """How the API server certificate is trusted."""

    VERIFY = "verify"
    CA_FILE = "ca-file"
    INSECURE = "insecure"


class TransportMode(str, Enum):
    """MCP transport mode."""

    STDIO = "stdio"
    SSE = "sse"
    STREAMABLE_HTTP = "streamable-http"


class LogLevel(str, Enum):
    """Logging level."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class ClusterDescriptor(BaseModel):
    """One monitored cluster. Immutable after configuration load."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1, description="Unique cluster name")
    endpoint: str | None = Field(None, description="API server URL")
    auth_mode: AuthMode = Field(AuthMode.SERVICE_ACCOUNT, alias="authMode")
    token: str | None = Field(None, description="Bearer token (user-token mode)")
    token_file: Path | None = Field(
        None,
        alias="tokenFile",
        description="File holding the bearer token (service-account mode)",
    )
    kubeconfig_path: Path | None = Field(None, alias="kubeconfig")
    kubeconfig_context: str | None = Field(None, alias="context")
    exec_command: list[str] = Field(
        default_factory=list,
        alias="exec",
        description="Credential plugin command printing an ExecCredential",
    )
    tls_policy: TLSPolicy = Field(TLSPolicy.VERIFY, alias="tls")
    ca_file: Path | None = Field(None, alias="caFile")
    poll_interval_seconds: float | None = Field(None, gt=0, alias="pollInterval")

    def validate_credentials(self) -> None:
        """Check that the descriptor carries what its auth mode needs.

        Raises:
            ConfigurationError: If the descriptor is incomplete.
        """
        mode = self.auth_mode
        if mode in (AuthMode.USER_TOKEN, AuthMode.EXEC_PLUGIN) and not self.endpoint:
            raise ConfigurationError(
                f"Cluster '{self.name}': endpoint is required for {mode.value}"
            )
        if mode == AuthMode.USER_TOKEN and not (self.token or self.token_file):
            raise ConfigurationError(f"Cluster '{self.name}': token or tokenFile is required")
        if mode == AuthMode.EXEC_PLUGIN and not self.exec_command:
            raise ConfigurationError(f"Cluster '{self.name}': exec command is required")
        if mode == AuthMode.KUBECONFIG and self.kubeconfig_path is None:
            raise ConfigurationError(f"Cluster '{self.name}': kubeconfig path is required")
        if self.tls_policy == TLSPolicy.CA_FILE and self.ca_file is None:
            raise ConfigurationError(f"Cluster '{self.name}': caFile is required for tls=ca-file")


class DiscoveryFilter(BaseModel):
    """Which resources the scheduler picks up."""

    model_config = ConfigDict(populate_by_name=True)

    label_selector: str | None = Field(None, alias="labelSelector")
    annotation_selector: str | None = Field(None, alias="annotationSelector")
    include_groups: list[str] = Field(default_factory=list, alias="includeGroups")
    exclude_groups: list[str] = Field(default_factory=list, alias="excludeGroups")
    exclude_namespaces: list[str] = Field(default_factory=list, alias="excludeNamespaces")


class CatalogConfig(BaseSettings):
    """Configuration for the XRD catalog engine.

    Configuration is loaded from environment variables with XRD_CATALOG_ prefix.
    Cluster descriptors and the discovery filter may also come from a YAML file
    referenced by ``clusters_file``.
    """

    model_config = SettingsConfigDict(
        env_prefix="XRD_CATALOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Clusters
    clusters: list[ClusterDescriptor] = Field(
        default_factory=list,
        description="Monitored clusters",
    )
    clusters_file: Path | None = Field(
        default=None,
        description="YAML file with 'clusters' and optional 'discovery' keys",
    )
    discovery: DiscoveryFilter = Field(default_factory=DiscoveryFilter)
    discover_compositions: bool = Field(
        default=True,
        description="Also discover Compositions and link them to their XRD",
    )
    discover_composites: bool = Field(
        default=False,
        description="Also discover composite resources (XRs) of discovered XRDs",
    )

    # Scheduling
    poll_interval_seconds: float = Field(default=60.0, gt=0, le=3600)
    poll_timeout_seconds: float = Field(default=120.0, gt=0, le=3600)
    unreachable_probe_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Probe interval for unreachable clusters (default 5x poll interval)",
    )
    watch_xrds: bool = Field(
        default=False,
        description="Watch XRDs and start a poll cycle as soon as one changes",
    )
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)

    # Cache
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    removal_grace_seconds: float = Field(default=30.0, ge=0)
    max_staleness_seconds: float = Field(
        default=86400.0,
        gt=0,
        description="How long an unreachable cluster's entities stay queryable",
    )
    cache_persist_path: Path | None = Field(default=None)

    # Entity defaults
    default_owner: str = Field(default="group:default/platform-team")
    default_system: str = Field(default="system:default/crossplane")

    # Permissions
    permission_policy_file: Path | None = Field(default=None)
    permission_service_url: str | None = Field(default=None)
    permission_service_timeout: int = Field(default=10, ge=1, le=120)

    # Transport
    transport: TransportMode = Field(default=TransportMode.STDIO)
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=1, le=65535)

    # Logging
    log_level: LogLevel = Field(default=LogLevel.INFO)

    # Responses
    default_list_limit: int | None = Field(default=None, ge=1, le=500)
    max_list_limit: int = Field(default=500, ge=1, le=5000)

    @field_validator("clusters_file", "cache_persist_path", "permission_policy_file", mode="before")
    @classmethod
    def resolve_path(cls, v: str | Path | None) -> Path | None:
        """Expand user home in configured paths."""
        if v is None or v == "":
            return None
        return Path(v).expanduser()

    @property
    def effective_probe_interval(self) -> float:
        """Probe interval used while a cluster is unreachable."""
        if self.unreachable_probe_seconds:
            return self.unreachable_probe_seconds
        return self.poll_interval_seconds * 5

    def poll_interval_for(self, cluster: ClusterDescriptor) -> float:
        """Get the poll interval for a cluster, honouring per-cluster overrides."""
        return cluster.poll_interval_seconds or self.poll_interval_seconds

    def load_clusters_file(self) -> None:
        """Merge clusters and discovery filter from ``clusters_file``.

        Raises:
            ConfigurationError: If the file is missing or malformed.
        """
        if self.clusters_file is None:
            return
        try:
            raw = yaml.safe_load(self.clusters_file.read_text(encoding="utf-8")) or {}
        except OSError as e:
            raise ConfigurationError(f"Cannot read clusters file {self.clusters_file}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Malformed clusters file {self.clusters_file}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Clusters file {self.clusters_file} must be a mapping")

        try:
            clusters = [ClusterDescriptor.model_validate(c) for c in raw.get("clusters") or []]
            discovery = raw.get("discovery")
            if discovery is not None:
                self.discovery = DiscoveryFilter.model_validate(discovery)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid clusters file {self.clusters_file}: {e}") from e
        self.clusters = [*self.clusters, *clusters]

    def validate_startup(self) -> list[str]:
        """Validate configuration before any background task runs.

        Returns:
            Non-fatal warnings.

        Raises:
            ConfigurationError: On any fatal configuration problem.
        """
        # Deferred import: filters depend on this module's models.
        from xrd_catalog.discovery.filters import compile_filter

        self.load_clusters_file()
        warnings: list[str] = []

        if not self.clusters:
            warnings.append("No clusters configured; the catalog will stay empty")

        seen: set[str] = set()
        for cluster in self.clusters:
            if cluster.name in seen:
                raise ConfigurationError(f"Duplicate cluster name: {cluster.name}")
            seen.add(cluster.name)
            cluster.validate_credentials()
            if cluster.tls_policy == TLSPolicy.INSECURE:
                warnings.append(f"TLS verification disabled for cluster '{cluster.name}'")

        compile_filter(self.discovery)

        if self.poll_timeout_seconds < self.poll_interval_seconds:
            warnings.append("poll timeout is shorter than the poll interval")
        if self.permission_policy_file and not self.permission_policy_file.exists():
            raise ConfigurationError(
                f"Permission policy file not found: {self.permission_policy_file}"
            )
        # Clear the file reference so a second call does not append twice.
        self.clusters_file = None
        return warnings


# Global configuration instance
_config: CatalogConfig | None = None


def get_config() -> CatalogConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = CatalogConfig()
    return _config


def configure(**kwargs: Any) -> CatalogConfig:
    """Configure the global settings.

    This should be called before get_config() if you want to override defaults.
    """
    global _config
    _config = CatalogConfig(**kwargs)
    return _config
