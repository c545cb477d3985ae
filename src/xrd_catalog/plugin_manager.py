"""Plugin manager wrapping pluggy for catalog plugins."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import pluggy

from xrd_catalog.hooks import PROJECT_NAME, XRDCatalogHookSpec

if TYPE_CHECKING:
    from mcp.server.fastmcp import FastMCP

    from xrd_catalog.plugin import PluginMetadata
    from xrd_catalog.server import CatalogServer

logger = logging.getLogger(__name__)

# Entry point group scanned for external plugins
ENTRYPOINT_GROUP = "xrd_catalog.plugins"


class PluginManager:
    """Registers plugins and fans hook calls out to them.

    Plugins are keyed by name. The name comes from the ``name`` argument or,
    failing that, from the plugin's metadata hook.
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(XRDCatalogHookSpec)
        self._plugins: dict[str, Any] = {}
        self._healthy: dict[str, Any] = {}

    @property
    def hook(self) -> Any:
        """The pluggy hook relay."""
        return self._pm.hook

    @property
    def registered_plugins(self) -> dict[str, Any]:
        return dict(self._plugins)

    @property
    def healthy_plugins(self) -> dict[str, Any]:
        return dict(self._healthy)

    def register_plugin(self, plugin: Any, name: str | None = None) -> str:
        """Register a plugin.

        Args:
            plugin: Plugin instance with ``@hookimpl`` methods.
            name: Registration name; defaults to the metadata name.

        Returns:
            The name the plugin was registered under.
        """
        if name is None:
            get_metadata = getattr(plugin, "xrd_get_plugin_metadata", None)
            if get_metadata is not None:
                name = get_metadata().name
            else:
                name = type(plugin).__name__
        self._pm.register(plugin, name=name)
        self._plugins[name] = plugin
        logger.debug(f"Registered plugin: {name}")
        return name

    def unregister_plugin(self, name: str) -> None:
        plugin = self._plugins.pop(name, None)
        self._healthy.pop(name, None)
        if plugin is not None:
            self._pm.unregister(plugin)
            logger.debug(f"Unregistered plugin: {name}")

    def get_all_metadata(self) -> list[PluginMetadata]:
        return list(self._pm.hook.xrd_get_plugin_metadata())

    def register_all_tools(self, mcp: FastMCP, server: CatalogServer) -> None:
        self._pm.hook.xrd_register_tools(mcp=mcp, server=server)

    def register_all_resources(self, mcp: FastMCP, server: CatalogServer) -> None:
        self._pm.hook.xrd_register_resources(mcp=mcp, server=server)

    def run_health_checks(self, server: CatalogServer) -> dict[str, tuple[bool, str]]:
        """Run each plugin's health check.

        Plugins without a health check are assumed healthy. A check that
        raises marks its plugin unhealthy.

        Returns:
            Mapping of plugin name to (healthy, message).
        """
        results: dict[str, tuple[bool, str]] = {}
        self._healthy = {}
        for name, plugin in self._plugins.items():
            check = getattr(plugin, "xrd_health_check", None)
            if check is None:
                results[name] = (True, "No health check defined")
            else:
                try:
                    results[name] = check(server)
                except Exception as e:
                    logger.warning(f"Health check for plugin {name} raised: {e}")
                    results[name] = (False, f"Health check error: {e}")

            healthy, message = results[name]
            if healthy:
                self._healthy[name] = plugin
            else:
                logger.warning(f"Plugin {name} unhealthy: {message}")
        return results

    def load_core_plugins(self) -> int:
        """Register the built-in domain plugins.

        Returns:
            Number of plugins registered.
        """
        from xrd_catalog.domains.registry import get_core_plugins

        count = 0
        for plugin in get_core_plugins():
            self.register_plugin(plugin)
            count += 1
        return count

    def load_entrypoint_plugins(self) -> int:
        """Register plugins advertised under the ``xrd_catalog.plugins`` entry point.

        Returns:
            Number of plugins loaded.
        """
        before = len(self._pm.get_plugins())
        self._pm.load_setuptools_entrypoints(ENTRYPOINT_GROUP)
        for plugin in self._pm.get_plugins():
            if plugin not in self._plugins.values():
                name = self._pm.get_name(plugin) or type(plugin).__name__
                self._plugins[name] = plugin
        loaded = len(self._pm.get_plugins()) - before
        if loaded:
            logger.info(f"Loaded {loaded} plugin(s) from entry points")
        return loaded
