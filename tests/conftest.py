"""Shared fixtures for catalog tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from helpers import FakeK8sClient, make_xrd

from xrd_catalog.config import CatalogConfig, ClusterDescriptor


@pytest.fixture
def fake_clients() -> dict[str, FakeK8sClient]:
    """Fake clients created by ``client_factory``, keyed by cluster name."""
    return {}


@pytest.fixture
def client_factory(
    fake_clients: dict[str, FakeK8sClient],
) -> Callable[[ClusterDescriptor], FakeK8sClient]:
    def factory(cluster: ClusterDescriptor) -> FakeK8sClient:
        client = FakeK8sClient(cluster)
        fake_clients[cluster.name] = client
        return client

    return factory


@pytest.fixture
def make_config() -> Callable[..., CatalogConfig]:
    """Build a CatalogConfig for the given cluster names with fast retries."""

    def _make(*clusters: str, **overrides: Any) -> CatalogConfig:
        values: dict[str, Any] = {
            "clusters": [ClusterDescriptor(name=c) for c in clusters],
            "retry_attempts": 2,
            "retry_base_delay_seconds": 0,
            "poll_interval_seconds": 60,
        }
        values.update(overrides)
        return CatalogConfig(**values)

    return _make


@pytest.fixture
def database_xrd() -> dict[str, Any]:
    return make_xrd()
