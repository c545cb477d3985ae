"""JSON snapshot of the catalog store.

Layout::

    {
      "version": 1,
      "saved_at": "...",
      "entries": [
        {"identifier": ..., "generation": ..., "source_ref": {...},
         "last_seen": ..., "entity": {...}}
      ]
    }

Removed entries are not written. The file is replaced atomically.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError

from xrd_catalog.catalog.entities import AnyEntity, CatalogEntity
from xrd_catalog.catalog.store import CatalogStore

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

_entity_adapter: TypeAdapter[Any] = TypeAdapter(CatalogEntity)


def dump_snapshot(store: CatalogStore) -> dict[str, Any]:
    """Serialize every visible entry of the store."""
    entries = []
    for entry in sorted(store.entries(), key=lambda e: e.identifier):
        if not entry.visible:
            continue
        entries.append(
            {
                "identifier": entry.identifier,
                "generation": entry.generation,
                "source_ref": entry.entity.source.model_dump(mode="json"),
                "last_seen": entry.last_seen.isoformat(),
                "entity": entry.entity.model_dump(mode="json"),
            }
        )
    return {
        "version": SNAPSHOT_VERSION,
        "saved_at": datetime.now(timezone.utc).isoformat(),
        "entries": entries,
    }


def parse_snapshot(data: dict[str, Any]) -> list[tuple[AnyEntity, datetime]]:
    """Decode snapshot entries, skipping the ones that no longer validate."""
    if data.get("version") != SNAPSHOT_VERSION:
        logger.warning(f"Ignoring cache snapshot with version {data.get('version')!r}")
        return []
    parsed: list[tuple[AnyEntity, datetime]] = []
    for raw in data.get("entries") or []:
        try:
            entity = _entity_adapter.validate_python(raw["entity"])
            last_seen = datetime.fromisoformat(raw["last_seen"])
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(f"Skipping unreadable snapshot entry: {e}")
            continue
        parsed.append((entity, last_seen))
    return parsed


class SnapshotFile:
    """Reads and atomically writes the store snapshot file."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, snapshot: dict[str, Any]) -> int:
        """Atomically replace the file with an already built snapshot.

        Touches no store state, so it may run in a worker thread.

        Returns:
            Number of entries written.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".catalog-", suffix=".json", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, separators=(",", ":"))
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.debug(f"Saved {len(snapshot['entries'])} entries to {self._path}")
        return len(snapshot["entries"])

    def save(self, store: CatalogStore) -> int:
        """Write the snapshot and clear the store's dirty flags.

        Returns:
            Number of entries written.
        """
        count = self.write(dump_snapshot(store))
        store.clear_dirty()
        return count

    async def save_async(self, store: CatalogStore) -> int:
        """Snapshot the store on the event loop and write it from a thread.

        Dirty flags are cleared before the write, so changes made while it
        runs stay dirty for the next save. A failed write flags the store
        dirty again and re-raises.
        """
        snapshot = dump_snapshot(store)
        store.clear_dirty()
        try:
            return await asyncio.to_thread(self.write, snapshot)
        except BaseException:
            store.mark_unsaved()
            raise

    def load(self, store: CatalogStore) -> int:
        """Seed the store from the snapshot if one exists.

        Returns:
            Number of entries loaded (0 when there is no usable snapshot).
        """
        if not self._path.exists():
            return 0
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Cannot read cache snapshot {self._path}: {e}")
            return 0
        if not isinstance(data, dict):
            logger.warning(f"Cache snapshot {self._path} is not an object")
            return 0
        count = store.load(parse_snapshot(data))
        logger.info(f"Loaded {count} cached entities from {self._path} (all stale)")
        return count
