"""Write path: consumes discovery batches and commits entities to the store."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from xrd_catalog.catalog.builder import EntityBuilder, required_definition
from xrd_catalog.catalog.persistence import SnapshotFile
from xrd_catalog.catalog.store import CatalogStore
from xrd_catalog.discovery.models import ChangeType, ClusterBatch, SourceRef, SourceResource

logger = logging.getLogger(__name__)


@dataclass
class SyncStats:
    """Counters of one applied batch (or of all batches so far)."""

    written: int = 0
    unchanged: int = 0
    removed: int = 0
    rejected: int = 0
    failed: int = 0
    skipped: int = 0

    def add(self, other: SyncStats) -> None:
        self.written += other.written
        self.unchanged += other.unchanged
        self.removed += other.removed
        self.rejected += other.rejected
        self.failed += other.failed
        self.skipped += other.skipped


class CatalogSynchronizer:
    """Applies cluster batches in order: transform, build, commit.

    One resource is the unit of atomicity; a failure building one resource
    is logged and the rest of the batch continues.
    """

    def __init__(
        self,
        store: CatalogStore,
        builder: EntityBuilder,
        queue: asyncio.Queue[ClusterBatch],
        snapshot: SnapshotFile | None = None,
        on_failure: Callable[[SourceRef], None] | None = None,
    ) -> None:
        self._store = store
        self._builder = builder
        self._queue = queue
        self._snapshot = snapshot
        self._on_failure = on_failure
        self._task: asyncio.Task[None] | None = None
        self.totals = SyncStats()
        self.batches = 0

    async def apply(self, batch: ClusterBatch) -> SyncStats:
        """Apply one batch to the store."""
        stats = SyncStats()
        definitions = self._store.definitions(batch.cluster)
        for event in batch.events:
            if event.change == ChangeType.UNCHANGED:
                stats.skipped += 1
                continue
            if event.change == ChangeType.REMOVED:
                stats.removed += len(await self._store.remove_source(event.ref))
                continue
            if event.resource is not None:
                await self._sync(event.resource, stats)

        # Compositions and composites link to their XRD only when built, so
        # they are rebuilt whenever a definition appears or goes away.
        changed = definitions ^ self._store.definitions(batch.cluster)
        dependants = [
            event.resource
            for event in batch.events
            if event.resource is not None and required_definition(event.resource) in changed
        ]
        if dependants:
            logger.info(
                f"Rebuilding {len(dependants)} resources of '{batch.cluster}' after "
                f"{len(changed)} XRD definitions changed"
            )
        for resource in dependants:
            await self._sync(resource, stats)

        self._store.confirm_sources(batch.cluster, (ref.key for ref in batch.seen))
        self._store.purge()
        self.batches += 1
        self.totals.add(stats)

        if stats.written or stats.removed:
            logger.info(
                f"Synchronized '{batch.cluster}': {stats.written} written, "
                f"{stats.removed} removed, {stats.unchanged} unchanged"
            )
        await self.persist()
        return stats

    async def _sync(self, resource: SourceResource, stats: SyncStats) -> None:
        try:
            result = self._builder.build(resource, self._store.find_api)
            commit = await self._store.commit(resource.ref, result.entities)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Failed to synchronize {resource.ref.key}")
            stats.failed += 1
            if self._on_failure is not None:
                self._on_failure(resource.ref)
            return
        stats.written += len(commit.written)
        stats.unchanged += len(commit.unchanged)
        stats.rejected += len(commit.rejected)
        stats.removed += len(commit.removed)

    async def persist(self) -> None:
        """Write the snapshot if anything changed since the last save."""
        if self._snapshot is None or not self._store.dirty:
            return
        try:
            await self._snapshot.save_async(self._store)
        except OSError as e:
            logger.warning(f"Could not persist catalog snapshot: {e}")

    async def run(self) -> None:
        """Consume batches until cancelled."""
        while True:
            batch = await self._queue.get()
            try:
                await self.apply(batch)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Failed to apply batch from '{batch.cluster}'")
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="catalog-sync")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await self.persist()
