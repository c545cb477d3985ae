"""MCP Resources for catalog overviews."""

from collections import Counter
from typing import TYPE_CHECKING

from mcp.server.fastmcp import FastMCP

from xrd_catalog.permissions.context import CallerContext

if TYPE_CHECKING:
    from xrd_catalog.server import CatalogServer


def register_resources(mcp: FastMCP, server: "CatalogServer") -> None:
    """Register catalog resources with the MCP server."""

    @mcp.resource("xrdcatalog://catalog/summary")
    async def catalog_summary() -> dict:
        """Counts of catalog entities visible to an anonymous caller.

        Broken down by kind and by source cluster.
        """
        entities = await server.engine.query.list_entities(CallerContext())
        return {
            "total": len(entities),
            "by_kind": dict(Counter(e.kind.value for e in entities)),
            "by_cluster": dict(Counter(e.cluster for e in entities)),
            "degraded": sum(1 for e in entities if e.degraded),
        }

    @mcp.resource("xrdcatalog://catalog/templates")
    async def catalog_templates() -> list[dict]:
        """Templates visible to an anonymous caller, one line each."""
        entities = await server.engine.query.list_entities(CallerContext(), kind="Template")
        return [
            {
                "identifier": e.identifier,
                "title": e.title,
                "cluster": e.cluster,
                "degraded": e.degraded,
            }
            for e in entities
        ]
