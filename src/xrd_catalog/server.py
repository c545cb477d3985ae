"""FastMCP server definition for the XRD catalog with pluggy-based plugins."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from xrd_catalog.config import CatalogConfig, get_config
from xrd_catalog.engine import CatalogEngine
from xrd_catalog.plugin_manager import PluginManager

logger = logging.getLogger(__name__)


class CatalogServer:
    """XRD catalog MCP server; the engine runs inside the server lifespan."""

    def __init__(
        self,
        config: CatalogConfig | None = None,
        engine: CatalogEngine | None = None,
    ) -> None:
        self._config = config or get_config()
        self._engine = engine
        self._mcp: FastMCP | None = None
        self._plugin_manager: PluginManager | None = None

    @property
    def config(self) -> CatalogConfig:
        """Get server configuration."""
        return self._config

    @property
    def engine(self) -> CatalogEngine:
        """Get the catalog engine, creating it on first use."""
        if self._engine is None:
            self._engine = CatalogEngine(self._config)
        return self._engine

    @property
    def mcp(self) -> FastMCP:
        """Get the MCP server instance.

        Raises:
            RuntimeError: If server is not initialized.
        """
        if self._mcp is None:
            raise RuntimeError("Server not initialized.")
        return self._mcp

    @property
    def plugin_manager(self) -> PluginManager:
        """Get the plugin manager.

        Raises:
            RuntimeError: If server is not initialized.
        """
        if self._plugin_manager is None:
            raise RuntimeError("Server not initialized.")
        return self._plugin_manager

    @property
    def plugins(self) -> dict[str, Any]:
        """Get all registered plugins."""
        if self._plugin_manager is None:
            return {}
        return self._plugin_manager.registered_plugins

    @property
    def healthy_plugins(self) -> dict[str, Any]:
        """Get plugins that passed health checks."""
        if self._plugin_manager is None:
            return {}
        return self._plugin_manager.healthy_plugins

    def _create_lifespan(self) -> Callable[[Any], AbstractAsyncContextManager[None]]:
        """Create the lifespan context manager for the MCP server."""
        server_self = self

        @asynccontextmanager
        async def lifespan(_app: Any) -> AsyncIterator[None]:
            """Start the engine on startup, stop it on shutdown."""
            logger.info("Starting XRD catalog server...")
            engine = server_self.engine
            try:
                await engine.start()

                if server_self._plugin_manager:
                    server_self._plugin_manager.run_health_checks(server_self)

                pm = server_self._plugin_manager
                total = len(pm.registered_plugins) if pm else 0
                healthy = len(pm.healthy_plugins) if pm else 0

                logger.info(f"XRD catalog server started with {healthy}/{total} plugins active")
                yield
            finally:
                logger.info("Shutting down XRD catalog server...")
                await engine.stop()
                logger.info("XRD catalog server shut down")

        return lifespan

    def create_mcp(self) -> FastMCP:
        """Create and configure the FastMCP server."""
        self._plugin_manager = PluginManager()

        core_count = self._plugin_manager.load_core_plugins()
        logger.info(f"Loaded {core_count} core domain plugins")

        external_count = self._plugin_manager.load_entrypoint_plugins()
        logger.info(f"Discovered {external_count} external plugins")

        mcp = FastMCP(
            name="xrd-catalog",
            instructions="Catalog of self-service infrastructure APIs discovered from "
            "Crossplane XRDs across Kubernetes clusters: provisioning templates, "
            "API descriptions and resource relationships, filtered per caller.",
            lifespan=self._create_lifespan(),
            host=self._config.host,
            port=self._config.port,
        )
        self._mcp = mcp

        self._plugin_manager.register_all_tools(mcp, self)
        self._plugin_manager.register_all_resources(mcp, self)
        self._register_core_resources(mcp)

        return mcp

    def _register_core_resources(self, mcp: FastMCP) -> None:
        """Register core MCP resources describing the server itself."""

        @mcp.resource("xrdcatalog://server/plugins")
        def server_plugins() -> dict:
            """Get information about loaded plugins and their health."""
            pm = self._plugin_manager
            if not pm:
                return {"plugins": {}}

            plugin_info = {}
            for name, plugin in pm.registered_plugins.items():
                meta = None
                if hasattr(plugin, "xrd_get_plugin_metadata"):
                    meta = plugin.xrd_get_plugin_metadata()

                plugin_info[name] = {
                    "version": meta.version if meta else "unknown",
                    "description": meta.description if meta else "No description",
                    "maintainer": meta.maintainer if meta else "unknown",
                    "healthy": name in pm.healthy_plugins,
                }

            return {
                "total": len(pm.registered_plugins),
                "active": len(pm.healthy_plugins),
                "plugins": plugin_info,
            }

        @mcp.resource("xrdcatalog://server/config")
        def server_config() -> dict:
            """Effective discovery and cache settings (no credentials)."""
            config = self._config
            return {
                "clusters": [c.name for c in config.clusters],
                "poll_interval_seconds": config.poll_interval_seconds,
                "poll_timeout_seconds": config.poll_timeout_seconds,
                "unreachable_probe_seconds": config.effective_probe_interval,
                "cache_ttl_seconds": config.cache_ttl_seconds,
                "max_staleness_seconds": config.max_staleness_seconds,
                "discover_compositions": config.discover_compositions,
                "discover_composites": config.discover_composites,
                "watch_xrds": config.watch_xrds,
                "persisted": config.cache_persist_path is not None,
            }

        logger.info("Registered core MCP resources")


# Global server instance
_server: CatalogServer | None = None


def create_server(config: CatalogConfig | None = None) -> FastMCP:
    """Create and return the MCP server instance."""
    global _server
    _server = CatalogServer(config)
    return _server.create_mcp()
