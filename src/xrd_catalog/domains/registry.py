"""Domain registry for core catalog plugins.

This module provides a plugin class for each core domain and a registry
function to instantiate them. All plugins use pluggy hooks for integration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from xrd_catalog import __version__
from xrd_catalog.hooks import hookimpl
from xrd_catalog.plugin import BasePlugin, PluginMetadata

if TYPE_CHECKING:
    from mcp.server.fastmcp import FastMCP

    from xrd_catalog.server import CatalogServer

MAINTAINER = "platform-team@xrdcatalog.dev"


class CatalogPlugin(BasePlugin):
    """Plugin for permission-filtered catalog queries."""

    def __init__(self) -> None:
        super().__init__(
            PluginMetadata(
                name="catalog",
                version=__version__,
                description="Catalog entity queries filtered per caller",
                maintainer=MAINTAINER,
            )
        )

    @hookimpl
    def xrd_register_tools(self, mcp: FastMCP, server: CatalogServer) -> None:
        from xrd_catalog.domains.catalog.tools import register_tools

        register_tools(mcp, server)

    @hookimpl
    def xrd_register_resources(self, mcp: FastMCP, server: CatalogServer) -> None:
        from xrd_catalog.domains.catalog.resources import register_resources

        register_resources(mcp, server)


class HealthPlugin(BasePlugin):
    """Plugin for cluster reachability and cache statistics."""

    def __init__(self) -> None:
        super().__init__(
            PluginMetadata(
                name="health",
                version=__version__,
                description="Cluster reachability, poll status and cache statistics",
                maintainer=MAINTAINER,
            )
        )

    @hookimpl
    def xrd_register_tools(self, mcp: FastMCP, server: CatalogServer) -> None:
        from xrd_catalog.domains.health.tools import register_tools

        register_tools(mcp, server)

    @hookimpl
    def xrd_register_resources(self, mcp: FastMCP, server: CatalogServer) -> None:
        from xrd_catalog.domains.health.resources import register_resources

        register_resources(mcp, server)

    @hookimpl
    def xrd_health_check(self, server: CatalogServer) -> tuple[bool, str]:
        if not server.engine.started:
            return False, "Catalog engine not started"
        total = len(server.engine.pool.cluster_names)
        pool = server.engine.pool
        reachable = sum(1 for c in pool.cluster_names if pool.is_reachable(c))
        return True, f"{reachable}/{total} clusters reachable"


class TransformPlugin(BasePlugin):
    """Plugin for offline XRD transform previews."""

    def __init__(self) -> None:
        super().__init__(
            PluginMetadata(
                name="transform",
                version=__version__,
                description="Preview the catalog entities of XRD documents",
                maintainer=MAINTAINER,
                requires_engine=False,
            )
        )

    @hookimpl
    def xrd_register_tools(self, mcp: FastMCP, server: CatalogServer) -> None:
        from xrd_catalog.domains.transform.tools import register_tools

        register_tools(mcp, server)


def get_core_plugins() -> list[BasePlugin]:
    """Instantiate the core domain plugins in registration order."""
    return [
        CatalogPlugin(),
        HealthPlugin(),
        TransformPlugin(),
    ]
