"""Tests for the cluster client pool."""

from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest
from helpers import FakeK8sClient, make_xrd

from xrd_catalog.clients.base import CRDs
from xrd_catalog.clients.pool import ClusterClientPool, Reachability
from xrd_catalog.config import CatalogConfig
from xrd_catalog.utils.errors import (
    AuthenticationError,
    ClusterError,
    ClusterUnreachableError,
    NotFoundError,
    TransientClusterError,
)


@pytest.fixture
def pool(
    make_config: Callable[..., CatalogConfig],
    client_factory: Callable[..., Any],
) -> ClusterClientPool:
    return ClusterClientPool(make_config("prod", "dev"), client_factory=client_factory)


class TestStart:
    """Connecting and validating every cluster."""

    @pytest.mark.asyncio
    async def test_all_reachable(self, pool: ClusterClientPool) -> None:
        await pool.start()
        assert [h.status for h in pool.all_health()] == [
            Reachability.REACHABLE,
            Reachability.REACHABLE,
        ]

    @pytest.mark.asyncio
    async def test_bad_credentials_do_not_abort_startup(
        self, pool: ClusterClientPool, fake_clients: dict[str, FakeK8sClient]
    ) -> None:
        fake_clients["dev"].fail_with = AuthenticationError("token rejected")

        await pool.start()

        assert pool.is_reachable("prod")
        assert not pool.is_reachable("dev")
        assert pool.health("dev").last_error == "token rejected"
        assert pool.health("dev").unreachable_since is not None

    @pytest.mark.asyncio
    async def test_cluster_without_crossplane_does_not_abort_startup(
        self, pool: ClusterClientPool, fake_clients: dict[str, FakeK8sClient]
    ) -> None:
        del fake_clients["dev"].objects[CRDs.XRD.kind]

        await pool.start()

        assert pool.is_reachable("prod")
        assert not pool.is_reachable("dev")
        assert "not served" in pool.health("dev").last_error

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_cluster_unreachable(
        self, pool: ClusterClientPool, fake_clients: dict[str, FakeK8sClient]
    ) -> None:
        fake_clients["dev"].verify = MagicMock(  # type: ignore[method-assign]
            side_effect=ValueError("bad kubeconfig")
        )

        await pool.start()

        assert pool.is_reachable("prod")
        assert pool.health("dev").status == Reachability.UNREACHABLE
        assert pool.health("dev").last_error == "ValueError: bad kubeconfig"

    def test_unknown_cluster(self, pool: ClusterClientPool) -> None:
        with pytest.raises(ClusterError, match="Unknown cluster"):
            pool.health("staging")


class TestListResources:
    """Retries, credential refresh and reachability."""

    @pytest.mark.asyncio
    async def test_returns_source_resources(
        self, pool: ClusterClientPool, fake_clients: dict[str, FakeK8sClient]
    ) -> None:
        fake_clients["prod"].set(CRDs.XRD, [make_xrd()])

        resources = await pool.list_resources("prod", CRDs.XRD)

        assert [r.ref.key for r in resources] == [
            "prod/apiextensions.crossplane.io/CompositeResourceDefinition/databases.platform.io"
        ]
        assert resources[0].plural == "compositeresourcedefinitions"

    @pytest.mark.asyncio
    async def test_transient_error_retried(
        self, pool: ClusterClientPool, fake_clients: dict[str, FakeK8sClient]
    ) -> None:
        client = fake_clients["prod"]
        client.list_resources = MagicMock(  # type: ignore[method-assign]
            side_effect=[TransientClusterError("prod", "429 Too Many Requests"), [make_xrd()]]
        )

        resources = await pool.list_resources("prod", CRDs.XRD)

        assert len(resources) == 1
        assert client.list_resources.call_count == 2
        assert pool.is_reachable("prod")

    @pytest.mark.asyncio
    async def test_exhausted_retries_mark_unreachable(
        self, pool: ClusterClientPool, fake_clients: dict[str, FakeK8sClient]
    ) -> None:
        fake_clients["dev"].fail_with = TransientClusterError("dev", "timeout")
        listener = MagicMock()
        pool.add_listener(listener)

        with pytest.raises(ClusterUnreachableError):
            await pool.list_resources("dev", CRDs.XRD)

        assert fake_clients["dev"].list_calls == 2
        health = pool.health("dev")
        assert health.status == Reachability.UNREACHABLE
        assert health.consecutive_failures == 1
        listener.assert_called_once_with(health)

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_once(
        self, pool: ClusterClientPool, fake_clients: dict[str, FakeK8sClient]
    ) -> None:
        client = fake_clients["prod"]
        client.list_resources = MagicMock(  # type: ignore[method-assign]
            side_effect=[AuthenticationError("token expired"), []]
        )

        assert await pool.list_resources("prod", CRDs.XRD) == []
        assert client.refreshes == 1

    @pytest.mark.asyncio
    async def test_rejected_credentials_not_retried_forever(
        self, pool: ClusterClientPool, fake_clients: dict[str, FakeK8sClient]
    ) -> None:
        client = fake_clients["prod"]
        client.list_resources = MagicMock(  # type: ignore[method-assign]
            side_effect=AuthenticationError("forbidden")
        )

        with pytest.raises(ClusterUnreachableError, match="forbidden"):
            await pool.list_resources("prod", CRDs.XRD)
        assert client.refreshes == 1
        assert client.list_resources.call_count == 2

    @pytest.mark.asyncio
    async def test_not_found_passes_through(
        self, pool: ClusterClientPool, fake_clients: dict[str, FakeK8sClient]
    ) -> None:
        """A kind that is not installed is not a reachability problem."""
        with pytest.raises(NotFoundError):
            await pool.list_resources("prod", CRDs.COMPOSITION)
        assert pool.health("prod").status != Reachability.UNREACHABLE

    @pytest.mark.asyncio
    async def test_recovery(
        self, pool: ClusterClientPool, fake_clients: dict[str, FakeK8sClient]
    ) -> None:
        pool.mark_unreachable("prod", "down")
        await pool.list_resources("prod", CRDs.XRD)

        health = pool.health("prod")
        assert health.status == Reachability.REACHABLE
        assert health.unreachable_since is None
        assert health.to_dict()["consecutive_failures"] == 0


class TestWatch:
    """Watch streams handed over from the worker thread."""

    @pytest.mark.asyncio
    async def test_yields_events(
        self, pool: ClusterClientPool, fake_clients: dict[str, FakeK8sClient]
    ) -> None:
        fake_clients["prod"].watch_events = [
            ("ADDED", make_xrd()),
            ("DELETED", make_xrd(name="caches.platform.io", kind="Cache")),
        ]

        events = [e async for e in pool.watch("prod", CRDs.XRD)]

        assert [(e.type, e.resource.name) for e in events] == [
            ("ADDED", "databases.platform.io"),
            ("DELETED", "caches.platform.io"),
        ]
        assert events[0].resource.cluster == "prod"

    @pytest.mark.asyncio
    async def test_stream_error_raised_to_consumer(
        self, pool: ClusterClientPool, fake_clients: dict[str, FakeK8sClient]
    ) -> None:
        fake_clients["prod"].fail_with = TransientClusterError("prod", "watch closed")

        with pytest.raises(TransientClusterError):
            async for _ in pool.watch("prod", CRDs.XRD):
                pass
