"""MCP Resources for engine health."""

from typing import TYPE_CHECKING

from mcp.server.fastmcp import FastMCP

if TYPE_CHECKING:
    from xrd_catalog.server import CatalogServer


def register_resources(mcp: FastMCP, server: "CatalogServer") -> None:
    """Register health resources with the MCP server."""

    @mcp.resource("xrdcatalog://health")
    def engine_health() -> dict:
        """Discovery and cache health, the same data as the catalog_health tool."""
        return server.engine.health()

    @mcp.resource("xrdcatalog://clusters")
    def clusters() -> list[dict]:
        """Reachability of every monitored cluster."""
        return [h.to_dict() for h in server.engine.pool.all_health()]
