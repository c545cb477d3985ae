"""Pool of per-cluster clients with retry and reachability tracking."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from xrd_catalog.clients.base import CRDDefinition, K8sClient
from xrd_catalog.config import CatalogConfig, ClusterDescriptor
from xrd_catalog.discovery.models import SourceResource
from xrd_catalog.utils.errors import (
    AuthenticationError,
    ClusterError,
    ClusterUnreachableError,
    NotFoundError,
    TransientClusterError,
)

logger = logging.getLogger(__name__)


class Reachability(str, Enum):
    """Reachability of a cluster as seen by the pool."""

    UNKNOWN = "unknown"
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


@dataclass
class ClusterHealth:
    """Observable health of one cluster."""

    name: str
    status: Reachability = Reachability.UNKNOWN
    last_error: str | None = None
    unreachable_since: datetime | None = None
    last_successful_poll: datetime | None = None
    consecutive_failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "last_error": self.last_error,
            "unreachable_since": (
                self.unreachable_since.isoformat() if self.unreachable_since else None
            ),
            "last_successful_poll": (
                self.last_successful_poll.isoformat() if self.last_successful_poll else None
            ),
            "consecutive_failures": self.consecutive_failures,
        }


HealthListener = Callable[[ClusterHealth], None]


@dataclass
class WatchEvent:
    """One change observed on a watch stream."""

    type: str
    resource: SourceResource


@dataclass
class _Entry:
    client: K8sClient
    health: ClusterHealth


class ClusterClientPool:
    """Holds one authenticated client per configured cluster.

    Clients are read-only and shared by concurrent callers; blocking
    Kubernetes calls run in worker threads so clusters never block each other.
    """

    def __init__(
        self,
        config: CatalogConfig,
        client_factory: Callable[[ClusterDescriptor], K8sClient] = K8sClient,
    ) -> None:
        self._config = config
        self._entries: dict[str, _Entry] = {
            c.name: _Entry(client=client_factory(c), health=ClusterHealth(name=c.name))
            for c in config.clusters
        }
        self._listeners: list[HealthListener] = []

    @property
    def cluster_names(self) -> list[str]:
        return list(self._entries)

    def descriptor(self, cluster: str) -> ClusterDescriptor:
        return self._entry(cluster).client.cluster

    def _entry(self, cluster: str) -> _Entry:
        try:
            return self._entries[cluster]
        except KeyError:
            raise ClusterError(cluster, "Unknown cluster") from None

    def add_listener(self, listener: HealthListener) -> None:
        """Subscribe to reachability changes."""
        self._listeners.append(listener)

    def health(self, cluster: str) -> ClusterHealth:
        return self._entry(cluster).health

    def all_health(self) -> list[ClusterHealth]:
        return [e.health for e in self._entries.values()]

    def is_reachable(self, cluster: str) -> bool:
        return self._entry(cluster).health.status != Reachability.UNREACHABLE

    async def start(self) -> None:
        """Connect every cluster and validate its credentials.

        A cluster that fails is marked unreachable instead of aborting startup.
        """
        await asyncio.gather(*(self._connect(name) for name in self._entries))

    async def _connect(self, cluster: str) -> None:
        entry = self._entry(cluster)
        try:
            await asyncio.to_thread(entry.client.connect)
            await asyncio.to_thread(entry.client.verify)
        except (AuthenticationError, ClusterError) as e:
            self.mark_unreachable(cluster, str(e))
            return
        except NotFoundError as e:
            self.mark_unreachable(cluster, f"Crossplane XRDs are not served: {e}")
            return
        except Exception as e:
            # Startup carries on with the other clusters.
            logger.exception(f"Unexpected error connecting to cluster '{cluster}'")
            self.mark_unreachable(cluster, f"{type(e).__name__}: {e}")
            return
        self.mark_reachable(cluster)

    async def stop(self) -> None:
        for entry in self._entries.values():
            await asyncio.to_thread(entry.client.disconnect)

    def mark_unreachable(self, cluster: str, reason: str) -> None:
        health = self._entry(cluster).health
        health.last_error = reason
        health.consecutive_failures += 1
        if health.status != Reachability.UNREACHABLE:
            health.status = Reachability.UNREACHABLE
            health.unreachable_since = datetime.now(timezone.utc)
            logger.warning(f"Cluster '{cluster}' marked unreachable: {reason}")
            self._notify(health)

    def mark_reachable(self, cluster: str) -> None:
        health = self._entry(cluster).health
        health.consecutive_failures = 0
        health.last_error = None
        if health.status != Reachability.REACHABLE:
            was_unreachable = health.status == Reachability.UNREACHABLE
            health.status = Reachability.REACHABLE
            health.unreachable_since = None
            if was_unreachable:
                logger.info(f"Cluster '{cluster}' recovered")
            self._notify(health)

    def record_successful_poll(self, cluster: str, at: datetime | None = None) -> None:
        self._entry(cluster).health.last_successful_poll = at or datetime.now(timezone.utc)

    def _notify(self, health: ClusterHealth) -> None:
        for listener in self._listeners:
            try:
                listener(health)
            except Exception:
                logger.exception("Cluster health listener failed")

    async def _call(self, cluster: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking client call with bounded exponential backoff."""
        entry = self._entry(cluster)
        attempts = self._config.retry_attempts
        base_delay = self._config.retry_base_delay_seconds
        refreshed = False
        last_error: Exception | None = None

        for attempt in range(attempts):
            try:
                if not entry.client.is_connected:
                    await asyncio.to_thread(entry.client.connect)
                result = await asyncio.to_thread(func, *args, **kwargs)
                self.mark_reachable(cluster)
                return result
            except AuthenticationError as e:
                last_error = e
                # One credential refresh covers momentary token expiry.
                if not refreshed:
                    refreshed = True
                    try:
                        await asyncio.to_thread(entry.client.refresh_credentials)
                    except (AuthenticationError, ClusterError) as refresh_error:
                        last_error = refresh_error
                        break
                    continue
                break
            except TransientClusterError as e:
                last_error = e
            if attempt < attempts - 1:
                delay = base_delay * (2**attempt)
                logger.warning(
                    f"Request to '{cluster}' failed (attempt {attempt + 1}), "
                    f"retrying in {delay}s: {last_error}"
                )
                await asyncio.sleep(delay)

        reason = str(last_error) if last_error else "unknown error"
        self.mark_unreachable(cluster, reason)
        raise ClusterUnreachableError(cluster, reason) from last_error

    async def list_resources(
        self,
        cluster: str,
        crd: CRDDefinition,
        label_selector: str | None = None,
    ) -> list[SourceResource]:
        """List objects of a kind in one cluster as source snapshots.

        Raises:
            ClusterUnreachableError: After retries are exhausted.
            NotFoundError: If the kind is not installed in the cluster.
        """
        client = self._entry(cluster).client
        items: list[dict[str, Any]] = await self._call(
            cluster, client.list_resources, crd, label_selector
        )
        return [SourceResource.from_object(cluster, item, plural=crd.plural) for item in items]

    async def watch(
        self,
        cluster: str,
        crd: CRDDefinition,
        resource_version: str | None = None,
    ) -> AsyncIterator[WatchEvent]:
        """Yield change events for a kind until the server closes the stream.

        The blocking watch runs in a worker thread and hands events over
        through a queue, so the event loop is never blocked.
        """
        client = self._entry(cluster).client
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[WatchEvent | BaseException | None] = asyncio.Queue()
        stop = threading.Event()

        def pump() -> None:
            try:
                for event_type, obj in client.watch(crd, resource_version=resource_version):
                    if stop.is_set():
                        break
                    resource = SourceResource.from_object(cluster, obj, plural=crd.plural)
                    loop.call_soon_threadsafe(queue.put_nowait, WatchEvent(event_type, resource))
            except BaseException as e:  # handed to the consumer below
                loop.call_soon_threadsafe(queue.put_nowait, e)
            finally:
                loop.call_soon_threadsafe(queue.put_nowait, None)

        loop.run_in_executor(None, pump)
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            # The worker exits on its next event or when the server closes the stream.
            stop.set()
