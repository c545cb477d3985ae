"""Catalog engine: wires the write path and the read path together."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from xrd_catalog.catalog.builder import EntityBuilder
from xrd_catalog.catalog.persistence import SnapshotFile
from xrd_catalog.catalog.service import CatalogQueryService
from xrd_catalog.catalog.store import CatalogStore
from xrd_catalog.catalog.synchronizer import CatalogSynchronizer
from xrd_catalog.clients.base import K8sClient
from xrd_catalog.clients.pool import ClusterClientPool
from xrd_catalog.config import CatalogConfig, ClusterDescriptor
from xrd_catalog.discovery.filters import compile_filter
from xrd_catalog.discovery.models import ClusterBatch
from xrd_catalog.discovery.scheduler import DiscoveryScheduler
from xrd_catalog.permissions.filter import PermissionFilter
from xrd_catalog.permissions.policy import PolicyRuleResolver, RuleResolver, StaticRuleResolver
from xrd_catalog.permissions.remote import RemoteRuleResolver
from xrd_catalog.permissions.rules import ALLOW

logger = logging.getLogger(__name__)


def build_resolver(config: CatalogConfig) -> RuleResolver:
    """Pick the rule resolver the configuration asks for."""
    if config.permission_service_url:
        return RemoteRuleResolver.from_config(config)
    if config.permission_policy_file:
        return PolicyRuleResolver.from_file(config.permission_policy_file)
    logger.warning("No permission policy configured; every entity is visible to every caller")
    return StaticRuleResolver(ALLOW)


class CatalogEngine:
    """Owns the pool, scheduler, synchronizer, store and query service.

    Discovery runs in background tasks; queries are served straight from the
    store and never wait for a poll cycle.
    """

    def __init__(
        self,
        config: CatalogConfig,
        resolver: RuleResolver | None = None,
        client_factory: Callable[[ClusterDescriptor], K8sClient] = K8sClient,
    ) -> None:
        self.config = config
        self.pool = ClusterClientPool(config, client_factory=client_factory)
        self.store = CatalogStore(
            ttl_seconds=config.cache_ttl_seconds,
            removal_grace_seconds=config.removal_grace_seconds,
        )
        self.builder = EntityBuilder.from_config(config)
        self.queue: asyncio.Queue[ClusterBatch] = asyncio.Queue()
        self.scheduler = DiscoveryScheduler(
            config, self.pool, self.queue, discovery_filter=compile_filter(config.discovery)
        )
        self.snapshot = (
            SnapshotFile(config.cache_persist_path) if config.cache_persist_path else None
        )
        self.synchronizer = CatalogSynchronizer(
            self.store,
            self.builder,
            self.queue,
            snapshot=self.snapshot,
            on_failure=self.scheduler.forget,
        )
        self.resolver = resolver if resolver is not None else build_resolver(config)
        self.permissions = PermissionFilter(self.resolver)
        self.query = CatalogQueryService(
            self.store, self.permissions, max_limit=config.max_list_limit
        )
        self.scheduler.on_cycle_start(self.store.mark_refreshing)
        self.scheduler.on_cycle_failed(self.store.mark_refresh_failed)
        self._maintenance: asyncio.Task[None] | None = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    @property
    def maintenance_interval(self) -> float:
        return max(1.0, min(self.config.cache_ttl_seconds, self.config.poll_interval_seconds) / 2)

    def restore(self) -> int:
        """Load the persisted snapshot and seed each cluster's previous listing."""
        if self.snapshot is None:
            return 0
        loaded = self.snapshot.load(self.store)
        for cluster in self.pool.cluster_names:
            self.scheduler.seed(cluster, self.store.source_refs(cluster))
        return loaded

    async def start(self) -> None:
        """Restore the cache, connect clusters and start background tasks."""
        if self._started:
            return
        self.restore()
        await self.pool.start()
        self.synchronizer.start()
        self.scheduler.start()
        self._maintenance = asyncio.create_task(self._maintain(), name="catalog-maintenance")
        self._started = True
        logger.info(f"Catalog engine started with {len(self.pool.cluster_names)} cluster(s)")

    async def stop(self) -> None:
        """Stop background tasks and release clients."""
        if not self._started:
            return
        if self._maintenance is not None:
            self._maintenance.cancel()
            await asyncio.gather(self._maintenance, return_exceptions=True)
            self._maintenance = None
        await self.scheduler.stop()
        await self.synchronizer.stop()
        await self.pool.stop()
        close = getattr(self.resolver, "close", None)
        if close is not None:
            await close()
        self._started = False
        logger.info("Catalog engine stopped")

    def maintain_once(self) -> set[str]:
        """Expire entries past their TTL and purge removed ones.

        Returns:
            Clusters asked for an early refresh.
        """
        stale = self.store.expire()
        refresh = {c for c in stale if c in self.pool.cluster_names and self.pool.is_reachable(c)}
        for cluster in refresh:
            self.scheduler.request_refresh(cluster)
        self.store.purge()
        return refresh

    async def _maintain(self) -> None:
        while True:
            await asyncio.sleep(self.maintenance_interval)
            try:
                self.maintain_once()
            except Exception:
                logger.exception("Catalog maintenance failed")

    def health(self) -> dict[str, Any]:
        """Reachability and last poll per cluster, entity counts, cache hit ratio."""
        clusters = []
        for health in self.pool.all_health():
            info = health.to_dict()
            info["entities"] = self.store.count(cluster=health.name)
            clusters.append(info)
        stats = self.store.stats()
        return {
            "running": self._started and self.scheduler.running,
            "clusters": clusters,
            "entities": stats,
            "sync": {
                "batches": self.synchronizer.batches,
                "written": self.synchronizer.totals.written,
                "removed": self.synchronizer.totals.removed,
                "failed": self.synchronizer.totals.failed,
            },
        }
