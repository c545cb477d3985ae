"""MCP Tools for previewing the catalog output of XRD documents."""

from typing import TYPE_CHECKING, Any

from mcp.server.fastmcp import FastMCP

from xrd_catalog.catalog.builder import EntityBuilder
from xrd_catalog.offline import DEFAULT_CLUSTER, load_documents, transform_documents
from xrd_catalog.utils.response import ResponseBuilder, Verbosity

if TYPE_CHECKING:
    from xrd_catalog.server import CatalogServer


def register_tools(mcp: FastMCP, server: "CatalogServer") -> None:
    """Register transform tools with the MCP server."""

    @mcp.tool()
    def preview_xrd_entities(
        manifest: str,
        cluster: str = DEFAULT_CLUSTER,
        verbosity: str = "full",
    ) -> dict[str, Any]:
        """Show the catalog entities an XRD would produce, without a cluster.

        Useful for checking a new XRD before applying it: malformed schema
        fields show up as diagnostics on the generated entities.

        Args:
            manifest: One or more XRD or Composition documents (YAML or JSON).
            cluster: Cluster name recorded on the generated entities.
            verbosity: "minimal", "standard" or "full".

        Returns:
            Generated entities, skipped documents and a degraded flag.
        """
        try:
            documents = load_documents(manifest)
        except ValueError as e:
            return {"error": str(e)}
        report = transform_documents(
            documents, cluster=cluster, builder=EntityBuilder.from_config(server.config)
        )
        level = Verbosity.from_str(verbosity)
        return {
            "entities": [ResponseBuilder.entity_detail(e, level) for e in report.entities()],
            "skipped": report.skipped,
            "degraded": report.degraded,
        }
