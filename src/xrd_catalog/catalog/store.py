"""In-memory catalog store with TTL state tracking and secondary indexes."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from xrd_catalog.catalog.builder import assign_generation
from xrd_catalog.catalog.entities import AnyEntity, ApiEntity, EntityKind
from xrd_catalog.discovery.models import SourceRef

logger = logging.getLogger(__name__)


class EntryState(str, Enum):
    """Lifecycle state of a cache entry."""

    FRESH = "Fresh"
    STALE = "Stale"
    REFRESHING = "Refreshing"
    REMOVED = "Removed"


@dataclass
class CacheEntry:
    """A stored entity with its freshness bookkeeping."""

    entity: AnyEntity
    state: EntryState = EntryState.FRESH
    expires_at: float = 0.0
    dirty: bool = True
    last_seen: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    removed_at: float | None = None

    @property
    def identifier(self) -> str:
        return self.entity.identifier

    @property
    def generation(self) -> int:
        return self.entity.generation

    @property
    def visible(self) -> bool:
        return self.state != EntryState.REMOVED


@dataclass
class CommitResult:
    """Outcome of committing the entities of one source resource."""

    written: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    dropped_edges: int = 0


class CatalogStore:
    """Authoritative set of generated entities.

    Every mutation goes through ``upsert``/``commit``/``remove_source`` and is
    guarded by per-identifier locks; reads never take a lock and serve stale
    entries immediately.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        removal_grace_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._grace = removal_grace_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}

        # Secondary indexes over visible entries only.
        self._by_kind: dict[EntityKind, set[str]] = defaultdict(set)
        self._by_label: dict[tuple[str, str], set[str]] = defaultdict(set)
        self._by_cluster: dict[str, set[str]] = defaultdict(set)
        self._by_source: dict[str, set[str]] = defaultdict(set)
        self._by_definition: dict[tuple[str, str, str], str] = {}
        # relation target -> identifiers of the entities holding an edge to it
        self._by_target: dict[str, set[str]] = defaultdict(set)
        self._unsaved = False

        self.writes = 0
        self.hits = 0
        self.misses = 0

    # -- locking ---------------------------------------------------------

    def _lock(self, identifier: str) -> asyncio.Lock:
        lock = self._locks.get(identifier)
        if lock is None:
            lock = self._locks[identifier] = asyncio.Lock()
        return lock

    async def _acquire(self, stack: AsyncExitStack, identifiers: Iterable[str]) -> None:
        # Sorted acquisition keeps concurrent multi-entity commits deadlock free.
        for identifier in sorted(set(identifiers)):
            await stack.enter_async_context(self._lock(identifier))

    # -- indexes ---------------------------------------------------------

    def _index(self, entity: AnyEntity) -> None:
        identifier = entity.identifier
        self._by_kind[entity.kind].add(identifier)
        for item in entity.labels.items():
            self._by_label[item].add(identifier)
        self._by_cluster[entity.cluster].add(identifier)
        self._by_source[entity.source.key].add(identifier)
        if isinstance(entity, ApiEntity) and entity.xr_kind:
            self._by_definition[(entity.cluster, entity.group, entity.xr_kind)] = identifier
        for relation in entity.relations:
            self._by_target[relation.target].add(identifier)

    def _unindex(self, entity: AnyEntity) -> None:
        identifier = entity.identifier
        self._by_kind[entity.kind].discard(identifier)
        for item in entity.labels.items():
            ids = self._by_label.get(item)
            if ids is not None:
                ids.discard(identifier)
                if not ids:
                    del self._by_label[item]
        self._by_cluster[entity.cluster].discard(identifier)
        ids = self._by_source.get(entity.source.key)
        if ids is not None:
            ids.discard(identifier)
            if not ids:
                del self._by_source[entity.source.key]
        if isinstance(entity, ApiEntity):
            key = (entity.cluster, entity.group, entity.xr_kind)
            if self._by_definition.get(key) == identifier:
                del self._by_definition[key]
        for relation in entity.relations:
            holders = self._by_target.get(relation.target)
            if holders is not None:
                holders.discard(identifier)
                if not holders:
                    del self._by_target[relation.target]

    # -- writes ----------------------------------------------------------

    def _write(self, entity: AnyEntity) -> None:
        current = self._entries.get(entity.identifier)
        if current is not None and current.visible:
            self._unindex(current.entity)
        self._entries[entity.identifier] = CacheEntry(
            entity=entity,
            state=EntryState.FRESH,
            expires_at=self._clock() + self._ttl,
        )
        self._index(entity)
        self.writes += 1

    def _accepts(self, entity: AnyEntity) -> bool:
        current = self._entries.get(entity.identifier)
        if current is None:
            return True
        if entity.generation > current.generation:
            return True
        if entity.generation < current.generation:
            logger.debug(
                f"Rejected write of {entity.identifier} at generation {entity.generation} "
                f"(stored {current.generation})"
            )
        return False

    async def upsert(self, entity: AnyEntity) -> bool:
        """Write an entity unless the stored one has the same or a newer generation.

        Returns:
            True if the entity was written.
        """
        async with self._lock(entity.identifier):
            if not self._accepts(entity):
                return False
            self._write(entity)
            return True

    def _remove(self, identifier: str, removing: set[str] | None = None) -> int | None:
        """Mark an entry removed and strip inbound edges from the entities left.

        Args:
            identifier: Entry to remove.
            removing: Identifiers removed alongside it; their edges are not rewritten.

        Returns:
            Number of inbound edges dropped, or None if nothing was visible.
        """
        entry = self._entries.get(identifier)
        if entry is None or not entry.visible:
            return None
        self._unindex(entry.entity)
        entry.state = EntryState.REMOVED
        entry.removed_at = self._clock()
        entry.dirty = True
        self._unsaved = True
        return self._drop_inbound(identifier, removing or set())

    def _drop_inbound(self, target: str, removing: set[str]) -> int:
        dropped = 0
        for holder in sorted(self._by_target.get(target, set()) - removing):
            entry = self._entries[holder]
            entity = entry.entity
            kept = [r for r in entity.relations if r.target != target]
            logger.warning(f"Dropped dangling edge {holder} -> {target} (target removed)")
            pruned = entity.model_copy(update={"relations": kept})
            self._unindex(entity)
            entry.entity = pruned.model_copy(
                update={"generation": entity.generation + 1, "content_hash": pruned.compute_hash()}
            )
            entry.dirty = True
            self._index(entry.entity)
            self.writes += 1
            dropped += len(entity.relations) - len(kept)
        return dropped

    def _prune_relations(
        self, entity: AnyEntity, pending: set[str], gone: set[str]
    ) -> tuple[AnyEntity, int]:
        kept = [
            r
            for r in entity.relations
            if r.target in pending or (r.target not in gone and self.contains(r.target))
        ]
        dropped = len(entity.relations) - len(kept)
        if not dropped:
            return entity, 0
        for relation in entity.relations:
            if relation not in kept:
                logger.warning(
                    f"Dropped dangling {relation.type.value} edge {entity.identifier} -> "
                    f"{relation.target}"
                )
        return entity.model_copy(update={"relations": kept}), dropped

    async def commit(self, source: SourceRef, entities: list[AnyEntity]) -> CommitResult:
        """Replace everything produced from one source resource.

        Dangling edges are dropped, each entity is stamped with its next
        generation, unchanged entities are skipped, and entities this source
        no longer produces are removed along with the edges pointing at them.
        The writes are applied together once every lock is held, so a
        cancelled commit leaves nothing half written.
        """
        result = CommitResult()
        incoming = {e.identifier for e in entities}
        previous = set(self._by_source.get(source.key, ()))
        gone = previous - incoming

        async with AsyncExitStack() as stack:
            await self._acquire(stack, incoming | previous)

            staged: list[AnyEntity] = []
            for entity in entities:
                entity, dropped = self._prune_relations(entity, incoming, gone)
                result.dropped_edges += dropped
                current = self._entries.get(entity.identifier)
                if current is not None and not current.visible:
                    # Re-added after removal: continue the generation sequence.
                    stamped = entity.model_copy(
                        update={
                            "generation": current.generation + 1,
                            "content_hash": entity.compute_hash(),
                        }
                    )
                else:
                    stamped = assign_generation(entity, current.entity if current else None)
                if stamped is None:
                    result.unchanged.append(entity.identifier)
                    continue
                if not self._accepts(stamped):
                    result.rejected.append(entity.identifier)
                    continue
                staged.append(stamped)

            for stamped in staged:
                self._write(stamped)
                result.written.append(stamped.identifier)
            for identifier in result.unchanged:
                self._refresh(self._entries[identifier])
            for identifier in sorted(gone):
                dropped = self._remove(identifier, gone)
                if dropped is not None:
                    result.removed.append(identifier)
                    result.dropped_edges += dropped
        return result

    async def remove_source(self, source: SourceRef) -> list[str]:
        """Mark every entity produced from a source as removed."""
        identifiers = set(self._by_source.get(source.key, ()))
        removed: list[str] = []
        async with AsyncExitStack() as stack:
            await self._acquire(stack, identifiers)
            for identifier in sorted(identifiers):
                if self._remove(identifier, identifiers) is not None:
                    removed.append(identifier)
        if removed:
            logger.info(f"Removed {len(removed)} entities of {source.key}")
        return removed

    async def evict_cluster(self, cluster: str) -> list[str]:
        """Remove every entity of a cluster."""
        identifiers = set(self._by_cluster.get(cluster, ()))
        async with AsyncExitStack() as stack:
            await self._acquire(stack, identifiers)
            removed = [i for i in sorted(identifiers) if self._remove(i, identifiers) is not None]
        if removed:
            logger.warning(f"Evicted {len(removed)} stale entities of cluster '{cluster}'")
        return removed

    def purge(self) -> int:
        """Drop removed entries whose grace period elapsed."""
        now = self._clock()
        expired = [
            identifier
            for identifier, entry in self._entries.items()
            if entry.state == EntryState.REMOVED
            and entry.removed_at is not None
            and now - entry.removed_at >= self._grace
        ]
        purged = 0
        for identifier in expired:
            lock = self._locks.get(identifier)
            if lock is not None and lock.locked():
                continue
            del self._entries[identifier]
            self._locks.pop(identifier, None)
            purged += 1
        return purged

    # -- freshness -------------------------------------------------------

    def _refresh(self, entry: CacheEntry) -> None:
        entry.state = EntryState.FRESH
        entry.expires_at = self._clock() + self._ttl
        entry.last_seen = datetime.now(timezone.utc)

    def expire(self) -> set[str]:
        """Move entries past their TTL to Stale.

        Returns:
            Clusters that now hold stale entries and need a refresh.
        """
        now = self._clock()
        clusters: set[str] = set()
        for entry in self._entries.values():
            if entry.state == EntryState.FRESH and entry.expires_at <= now:
                entry.state = EntryState.STALE
                clusters.add(entry.entity.cluster)
        return clusters

    def confirm_sources(self, cluster: str, source_keys: Iterable[str]) -> int:
        """Mark entries whose sources were seen in a successful listing as fresh."""
        count = 0
        for key in source_keys:
            for identifier in self._by_source.get(key, ()):
                entry = self._entries[identifier]
                if entry.entity.cluster == cluster:
                    self._refresh(entry)
                    count += 1
        return count

    def mark_refreshing(self, cluster: str) -> None:
        for identifier in self._by_cluster.get(cluster, ()):
            entry = self._entries[identifier]
            if entry.state == EntryState.STALE:
                entry.state = EntryState.REFRESHING

    def mark_refresh_failed(self, cluster: str) -> None:
        for identifier in self._by_cluster.get(cluster, ()):
            entry = self._entries[identifier]
            if entry.state == EntryState.REFRESHING:
                entry.state = EntryState.STALE

    # -- reads -----------------------------------------------------------

    def contains(self, identifier: str) -> bool:
        entry = self._entries.get(identifier)
        return entry is not None and entry.visible

    def peek(self, identifier: str) -> CacheEntry | None:
        """Get an entry in any state without touching hit counters."""
        return self._entries.get(identifier)

    def get(self, identifier: str) -> AnyEntity | None:
        """Get a visible entity by identifier; stale entries are served."""
        entry = self._entries.get(identifier)
        if entry is None or not entry.visible:
            self.misses += 1
            return None
        self.hits += 1
        return entry.entity

    def state_of(self, identifier: str) -> EntryState | None:
        entry = self._entries.get(identifier)
        return entry.state if entry else None

    def query(
        self,
        kind: EntityKind | None = None,
        labels: dict[str, str] | None = None,
        cluster: str | None = None,
    ) -> list[AnyEntity]:
        """Visible entities matching every given criterion, ordered by identifier."""
        candidates: set[str] | None = None

        def narrow(ids: set[str]) -> None:
            nonlocal candidates
            candidates = set(ids) if candidates is None else candidates & ids

        if kind is not None:
            narrow(self._by_kind.get(kind, set()))
        for item in (labels or {}).items():
            narrow(self._by_label.get(item, set()))
        if cluster is not None:
            narrow(self._by_cluster.get(cluster, set()))
        if candidates is None:
            candidates = {i for i, e in self._entries.items() if e.visible}

        found = [self._entries[i].entity for i in sorted(candidates)]
        if found:
            self.hits += 1
        else:
            self.misses += 1
        return found

    def count(self, cluster: str | None = None) -> int:
        """Number of visible entities, optionally of one cluster."""
        if cluster is not None:
            return len(self._by_cluster.get(cluster, ()))
        return sum(1 for e in self._entries.values() if e.visible)

    def find_api(self, cluster: str, group: str, kind: str) -> str | None:
        """Identifier of the API entity defining ``group``/``kind`` in a cluster."""
        return self._by_definition.get((cluster, group, kind))

    def definitions(self, cluster: str) -> set[tuple[str, str]]:
        """(group, kind) pairs with a visible API entity in a cluster."""
        return {(g, k) for c, g, k in self._by_definition if c == cluster}

    def source_refs(self, cluster: str) -> list[SourceRef]:
        """Distinct source references of a cluster's visible entities."""
        refs: dict[str, SourceRef] = {}
        for identifier in self._by_cluster.get(cluster, ()):
            source = self._entries[identifier].entity.source
            refs[source.key] = source
        return [refs[k] for k in sorted(refs)]

    def entries(self) -> list[CacheEntry]:
        return list(self._entries.values())

    @property
    def dirty(self) -> bool:
        return self._unsaved or any(e.dirty for e in self._entries.values())

    def clear_dirty(self) -> None:
        self._unsaved = False
        for entry in self._entries.values():
            entry.dirty = False

    def mark_unsaved(self) -> None:
        """Flag the store dirty again after a snapshot write failed."""
        self._unsaved = True

    def load(self, entries: Iterable[tuple[AnyEntity, datetime]]) -> int:
        """Seed the store from a persisted snapshot; every entry starts Stale."""
        count = 0
        for entity, last_seen in entries:
            self._entries[entity.identifier] = CacheEntry(
                entity=entity,
                state=EntryState.STALE,
                expires_at=self._clock(),
                dirty=False,
                last_seen=last_seen,
            )
            self._index(entity)
            count += 1
        return count

    def stats(self) -> dict[str, Any]:
        """Counts by kind and completeness plus cache hit ratio."""
        by_kind: dict[str, int] = {k.value: 0 for k in EntityKind}
        by_state: dict[str, int] = {s.value: 0 for s in EntryState}
        degraded = 0
        for entry in self._entries.values():
            by_state[entry.state.value] += 1
            if not entry.visible:
                continue
            by_kind[entry.entity.kind.value] += 1
            if entry.entity.degraded:
                degraded += 1
        visible = sum(by_kind.values())
        lookups = self.hits + self.misses
        return {
            "entities": visible,
            "by_kind": by_kind,
            "by_state": by_state,
            "degraded": degraded,
            "complete": visible - degraded,
            "writes": self.writes,
            "hits": self.hits,
            "misses": self.misses,
            "hit_ratio": round(self.hits / lookups, 4) if lookups else None,
        }
