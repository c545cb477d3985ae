"""Tests for configuration loading and startup validation."""

from pathlib import Path

import pytest

from xrd_catalog.config import (
    AuthMode,
    CatalogConfig,
    ClusterDescriptor,
    TLSPolicy,
    configure,
    get_config,
)
from xrd_catalog.utils.errors import ConfigurationError

CLUSTERS_YAML = """
clusters:
  - name: prod
    endpoint: https://prod.example:6443
    authMode: user-token
    tokenFile: /var/run/tokens/prod
    pollInterval: 30
  - name: dev
    authMode: kubeconfig
    kubeconfig: ~/.kube/dev
    context: dev-admin
discovery:
  labelSelector: catalog.xrdcatalog.dev/publish=true
  excludeGroups: [internal.platform.io]
"""


class TestClusterDescriptor:
    """Credential completeness per auth mode."""

    def test_service_account_needs_nothing(self) -> None:
        ClusterDescriptor(name="local").validate_credentials()

    @pytest.mark.parametrize(
        "values",
        [
            {"authMode": "user-token", "endpoint": "https://x"},
            {"authMode": "user-token", "token": "t"},
            {"authMode": "exec-plugin", "endpoint": "https://x"},
            {"authMode": "kubeconfig"},
            {"tls": "ca-file"},
        ],
    )
    def test_incomplete(self, values: dict) -> None:
        with pytest.raises(ConfigurationError):
            ClusterDescriptor(name="broken", **values).validate_credentials()

    def test_aliases(self) -> None:
        cluster = ClusterDescriptor.model_validate(
            {"name": "edge", "authMode": "exec-plugin", "exec": ["get-token"], "tls": "insecure"}
        )
        assert cluster.auth_mode == AuthMode.EXEC_PLUGIN
        assert cluster.exec_command == ["get-token"]
        assert cluster.tls_policy == TLSPolicy.INSECURE


class TestCatalogConfig:
    """Tests for CatalogConfig."""

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("XRD_CATALOG_POLL_INTERVAL_SECONDS", "15")
        monkeypatch.setenv("XRD_CATALOG_DISCOVER_COMPOSITES", "true")

        config = CatalogConfig()

        assert config.poll_interval_seconds == 15
        assert config.discover_composites is True

    def test_probe_interval_defaults_to_five_polls(self) -> None:
        assert CatalogConfig(poll_interval_seconds=60).effective_probe_interval == 300
        config = CatalogConfig(poll_interval_seconds=60, unreachable_probe_seconds=90)
        assert config.effective_probe_interval == 90

    def test_per_cluster_interval(self) -> None:
        config = CatalogConfig(poll_interval_seconds=60)
        assert config.poll_interval_for(ClusterDescriptor(name="a")) == 60
        assert config.poll_interval_for(ClusterDescriptor(name="b", pollInterval=10)) == 10

    def test_empty_path_is_none(self) -> None:
        assert CatalogConfig(cache_persist_path="").cache_persist_path is None


class TestStartupValidation:
    """validate_startup."""

    def test_clusters_file_merged(self, tmp_path: Path) -> None:
        path = tmp_path / "clusters.yaml"
        path.write_text(CLUSTERS_YAML)
        config = CatalogConfig(clusters_file=path)

        warnings = config.validate_startup()

        assert [c.name for c in config.clusters] == ["prod", "dev"]
        assert config.clusters[0].poll_interval_seconds == 30
        assert config.clusters[1].kubeconfig_context == "dev-admin"
        assert config.discovery.exclude_groups == ["internal.platform.io"]
        assert warnings == []

    def test_second_call_does_not_duplicate(self, tmp_path: Path) -> None:
        path = tmp_path / "clusters.yaml"
        path.write_text(CLUSTERS_YAML)
        config = CatalogConfig(clusters_file=path)

        config.validate_startup()
        config.validate_startup()

        assert len(config.clusters) == 2

    def test_no_clusters_warns(self) -> None:
        warnings = CatalogConfig().validate_startup()
        assert any("No clusters configured" in w for w in warnings)

    def test_insecure_tls_warns(self) -> None:
        config = CatalogConfig(clusters=[ClusterDescriptor(name="lab", tls="insecure")])
        assert config.validate_startup() == ["TLS verification disabled for cluster 'lab'"]

    def test_duplicate_names(self) -> None:
        config = CatalogConfig(clusters=[ClusterDescriptor(name="a"), ClusterDescriptor(name="a")])
        with pytest.raises(ConfigurationError, match="Duplicate cluster name"):
            config.validate_startup()

    def test_missing_credentials(self) -> None:
        config = CatalogConfig(
            clusters=[ClusterDescriptor(name="prod", authMode="user-token")]
        )
        with pytest.raises(ConfigurationError, match="endpoint is required"):
            config.validate_startup()

    def test_invalid_selector(self) -> None:
        config = CatalogConfig(discovery={"labelSelector": "tier in (a,b"})
        with pytest.raises(ConfigurationError):
            config.validate_startup()

    def test_missing_clusters_file(self, tmp_path: Path) -> None:
        config = CatalogConfig(clusters_file=tmp_path / "absent.yaml")
        with pytest.raises(ConfigurationError, match="Cannot read clusters file"):
            config.validate_startup()

    def test_invalid_cluster_entry(self, tmp_path: Path) -> None:
        path = tmp_path / "clusters.yaml"
        path.write_text("clusters:\n  - endpoint: https://nameless\n")
        with pytest.raises(ConfigurationError, match="Invalid clusters file"):
            CatalogConfig(clusters_file=path).validate_startup()

    def test_missing_policy_file(self, tmp_path: Path) -> None:
        config = CatalogConfig(permission_policy_file=tmp_path / "policy.yaml")
        with pytest.raises(ConfigurationError, match="Permission policy file not found"):
            config.validate_startup()


class TestGlobalConfig:
    """get_config / configure."""

    def test_configure_replaces_global(self) -> None:
        configured = configure(poll_interval_seconds=5)
        assert get_config() is configured
        assert get_config().poll_interval_seconds == 5
