"""MCP Tools for engine and cluster health."""

from typing import TYPE_CHECKING, Any

from mcp.server.fastmcp import FastMCP

from xrd_catalog.utils.errors import ClusterError

if TYPE_CHECKING:
    from xrd_catalog.server import CatalogServer


def register_tools(mcp: FastMCP, server: "CatalogServer") -> None:
    """Register health tools with the MCP server."""

    @mcp.tool()
    def catalog_health() -> dict[str, Any]:
        """Get discovery and cache health.

        Returns reachability and last successful poll per cluster, entity
        counts per cluster, state and kind, the cache hit ratio and
        synchronization totals.
        """
        return server.engine.health()

    @mcp.tool()
    def cluster_status(cluster: str) -> dict[str, Any]:
        """Get the health of one monitored cluster.

        Args:
            cluster: Cluster name as configured.

        Returns:
            Reachability, last error, last successful poll and entity count.
        """
        engine = server.engine
        try:
            health = engine.pool.health(cluster)
        except ClusterError as e:
            return {"error": str(e)}
        info = health.to_dict()
        info["entities"] = engine.store.count(cluster=cluster)
        info["poll_cycles"] = engine.scheduler.cycles.get(cluster, 0)
        return info

    @mcp.tool()
    def refresh_cluster(cluster: str) -> dict[str, Any]:
        """Start a discovery cycle for a cluster now instead of at its next interval.

        Args:
            cluster: Cluster name as configured.

        Returns:
            Whether the refresh was requested.
        """
        engine = server.engine
        if cluster not in engine.pool.cluster_names:
            return {"error": f"Unknown cluster: {cluster}"}
        engine.scheduler.request_refresh(cluster)
        return {"cluster": cluster, "refresh_requested": True}
