"""Per-cluster discovery loop.

Each cluster runs in its own task: list, filter, diff against the previous
listing, and hand the resulting batch to the consumer queue. A slow or
unreachable cluster only delays its own task.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from xrd_catalog.clients.base import CRDDefinition, CRDs
from xrd_catalog.clients.pool import ClusterClientPool
from xrd_catalog.config import CatalogConfig
from xrd_catalog.discovery.filters import CompiledFilter, compile_filter
from xrd_catalog.discovery.models import (
    ChangeEvent,
    ChangeType,
    ClusterBatch,
    SourceRef,
    SourceResource,
)
from xrd_catalog.utils.errors import ClusterError, NotFoundError

logger = logging.getLogger(__name__)

CycleListener = Callable[[str], None]

# What is remembered per source key between polls. Refs seeded from a
# persisted cache carry no content hash.
Seen = dict[str, "SourceResource | SourceRef"]


def diff_listing(previous: Seen, listing: Iterable[SourceResource]) -> list[ChangeEvent]:
    """Classify every resource against the previous listing.

    Removals come first so dependants rebuilt later in the batch see them.
    """
    current = {r.ref.key: r for r in listing}
    events = [
        ChangeEvent(
            change=ChangeType.REMOVED,
            ref=old.ref if isinstance(old, SourceResource) else old,
            previous=old if isinstance(old, SourceResource) else None,
        )
        for key, old in previous.items()
        if key not in current
    ]
    for key, resource in current.items():
        old = previous.get(key)
        if old is None:
            change = ChangeType.ADDED
        elif isinstance(old, SourceRef):
            change = ChangeType.UPDATED
        elif (
            (old.resource_version and old.resource_version == resource.resource_version)
            or old.content_hash == resource.content_hash
        ):
            change = ChangeType.UNCHANGED
        else:
            change = ChangeType.UPDATED
        events.append(
            ChangeEvent(
                change=change,
                ref=resource.ref,
                resource=resource,
                previous=old if isinstance(old, SourceResource) else None,
            )
        )
    return events


class DiscoveryScheduler:
    """Runs one independent discovery task per configured cluster."""

    def __init__(
        self,
        config: CatalogConfig,
        pool: ClusterClientPool,
        queue: asyncio.Queue[ClusterBatch],
        discovery_filter: CompiledFilter | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._pool = pool
        self._queue = queue
        self._filter = discovery_filter or compile_filter(config.discovery)
        self._clock = clock
        self._previous: dict[str, Seen] = {name: {} for name in pool.cluster_names}
        self._wakeups: dict[str, asyncio.Event] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._watches: dict[str, asyncio.Task[None]] = {}
        self._cycle_started: list[CycleListener] = []
        self._cycle_failed: list[CycleListener] = []
        self.cycles: dict[str, int] = {name: 0 for name in pool.cluster_names}

    def on_cycle_start(self, listener: CycleListener) -> None:
        self._cycle_started.append(listener)

    def on_cycle_failed(self, listener: CycleListener) -> None:
        self._cycle_failed.append(listener)

    def seed(self, cluster: str, refs: Iterable[SourceRef]) -> None:
        """Pre-load the previous listing from persisted source references.

        Anything seeded but missing from the first successful listing is
        reported as removed.
        """
        seen = self._previous.setdefault(cluster, {})
        for ref in refs:
            seen.setdefault(ref.key, ref)

    def forget(self, ref: SourceRef) -> None:
        """Make the next cycle report ``ref`` as updated even if unchanged."""
        seen = self._previous.get(ref.cluster)
        if seen is not None and ref.key in seen:
            seen[ref.key] = ref

    def known_refs(self, cluster: str) -> list[SourceRef]:
        return [
            v.ref if isinstance(v, SourceResource) else v
            for v in self._previous.get(cluster, {}).values()
        ]

    # -- listing ---------------------------------------------------------

    async def _list(self, cluster: str, crd: CRDDefinition) -> list[SourceResource]:
        resources = await self._pool.list_resources(
            cluster, crd, label_selector=self._filter.server_label_selector
        )
        return [r for r in resources if self._filter.matches(r)]

    async def _list_optional(self, cluster: str, crd: CRDDefinition) -> list[SourceResource]:
        """List a kind that may not be installed (yet) in the cluster."""
        try:
            return await self._list(cluster, crd)
        except NotFoundError:
            logger.debug(f"{crd.kind} not served by cluster '{cluster}'")
            return []

    async def list_cluster(self, cluster: str) -> list[SourceResource]:
        """List every candidate resource of a cluster in dependency order.

        Raises:
            ClusterError: If the cluster cannot be listed.
        """
        xrds = await self._list(cluster, CRDs.XRD)
        listing = list(xrds)
        if self._config.discover_compositions:
            listing.extend(await self._list_optional(cluster, CRDs.COMPOSITION))
        if self._config.discover_composites:
            for xrd in xrds:
                crd = CRDs.for_xrd(xrd.body)
                if crd is not None:
                    listing.extend(await self._list_optional(cluster, crd))
        return listing

    # -- cycles ----------------------------------------------------------

    def _notify(self, listeners: list[CycleListener], cluster: str) -> None:
        for listener in listeners:
            try:
                listener(cluster)
            except Exception:
                logger.exception("Discovery cycle listener failed")

    async def poll_cluster(self, cluster: str) -> ClusterBatch | None:
        """Run one bounded poll cycle and enqueue its batch.

        Returns:
            The batch, or None when the cycle failed or timed out. A failed
            cycle never reports removals.
        """
        self._notify(self._cycle_started, cluster)
        started = self._clock()
        try:
            listing = await asyncio.wait_for(
                self.list_cluster(cluster), timeout=self._config.poll_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Poll of cluster '{cluster}' exceeded {self._config.poll_timeout_seconds}s; "
                "cycle abandoned"
            )
            self._notify(self._cycle_failed, cluster)
            return None
        except (ClusterError, NotFoundError) as e:
            logger.warning(f"Poll of cluster '{cluster}' failed: {e}")
            self._notify(self._cycle_failed, cluster)
            return None

        previous = self._previous.get(cluster, {})
        events = diff_listing(previous, listing)
        self._previous[cluster] = {r.ref.key: r for r in listing}
        self.cycles[cluster] = self.cycles.get(cluster, 0) + 1
        completed = datetime.now(timezone.utc)
        self._pool.record_successful_poll(cluster, completed)

        batch = ClusterBatch(
            cluster=cluster,
            events=events,
            seen=[r.ref for r in listing],
            completed_at=completed,
        )
        changes = len(batch.changes)
        logger.debug(
            f"Polled '{cluster}' in {self._clock() - started:.2f}s: "
            f"{len(listing)} resources, {changes} changes"
        )
        await self._queue.put(batch)
        return batch

    async def evict_if_stale(self, cluster: str) -> ClusterBatch | None:
        """Emit removals for a cluster unreachable longer than the staleness window."""
        health = self._pool.health(cluster)
        if health.unreachable_since is None or not self._previous.get(cluster):
            return None
        age = (datetime.now(timezone.utc) - health.unreachable_since).total_seconds()
        if age < self._config.max_staleness_seconds:
            return None
        logger.warning(
            f"Cluster '{cluster}' unreachable for {age:.0f}s; evicting its entities"
        )
        events = diff_listing(self._previous[cluster], [])
        self._previous[cluster] = {}
        batch = ClusterBatch(cluster=cluster, events=events)
        await self._queue.put(batch)
        return batch

    def interval_for(self, cluster: str) -> float:
        """Seconds until the next cycle; unreachable clusters are only probed."""
        if not self._pool.is_reachable(cluster):
            return self._config.effective_probe_interval
        return self._config.poll_interval_for(self._pool.descriptor(cluster))

    async def _run_cluster(self, cluster: str) -> None:
        wakeup = self._wakeups[cluster]
        while True:
            try:
                batch = await self.poll_cluster(cluster)
                if batch is None:
                    await self.evict_if_stale(cluster)
            except asyncio.CancelledError:
                raise
            except Exception:
                # Keep the loop alive; the next cycle starts from the same state.
                logger.exception(f"Unexpected error polling cluster '{cluster}'")
            wakeup.clear()
            try:
                await asyncio.wait_for(wakeup.wait(), timeout=self.interval_for(cluster))
            except asyncio.TimeoutError:
                pass

    async def _watch_cluster(self, cluster: str) -> None:
        """Start an early cycle whenever a matching XRD changes.

        Polling stays authoritative; a lost watch only costs latency.
        """
        while True:
            try:
                if self._pool.is_reachable(cluster):
                    async for event in self._pool.watch(cluster, CRDs.XRD):
                        if self._filter.matches(event.resource):
                            logger.debug(
                                f"Watch on '{cluster}': {event.type} {event.resource.name}"
                            )
                            self.request_refresh(cluster)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.info(f"Watch on cluster '{cluster}' ended: {e}")
            await asyncio.sleep(self.interval_for(cluster))

    def request_refresh(self, cluster: str) -> None:
        """Wake a cluster's task for an early cycle."""
        event = self._wakeups.get(cluster)
        if event is not None:
            event.set()

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    def start(self) -> None:
        """Start one task per cluster."""
        for cluster in self._pool.cluster_names:
            if cluster in self._tasks and not self._tasks[cluster].done():
                continue
            self._wakeups[cluster] = asyncio.Event()
            self._tasks[cluster] = asyncio.create_task(
                self._run_cluster(cluster), name=f"discovery:{cluster}"
            )
            if self._config.watch_xrds:
                self._watches[cluster] = asyncio.create_task(
                    self._watch_cluster(cluster), name=f"watch:{cluster}"
                )
        logger.info(f"Discovery started for {len(self._tasks)} cluster(s)")

    async def stop(self) -> None:
        """Cancel every cluster task and wait for them to finish."""
        tasks = [*self._tasks.values(), *self._watches.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._watches.clear()
        logger.info("Discovery stopped")
