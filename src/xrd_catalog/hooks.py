"""Pluggy hook specifications for XRD catalog plugins.

This module defines the hook interface that plugins implement to expose
catalog tools and resources through the MCP server.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from mcp.server.fastmcp import FastMCP

    from xrd_catalog.plugin import PluginMetadata
    from xrd_catalog.server import CatalogServer

# Project name used for pluggy hook registration
PROJECT_NAME = "xrd_catalog"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)

# Exported for plugins to use
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class XRDCatalogHookSpec:
    """Hook specifications for XRD catalog plugins.

    Hooks are called in plugin registration order.
    """

    @hookspec
    def xrd_get_plugin_metadata(self) -> PluginMetadata:
        """Return plugin metadata.

        Returns:
            PluginMetadata instance for this plugin.
        """
        raise NotImplementedError

    @hookspec
    def xrd_register_tools(self, mcp: FastMCP, server: CatalogServer) -> None:
        """Register MCP tools provided by this plugin.

        Args:
            mcp: The FastMCP server instance to register tools with.
            server: The catalog server, giving access to the engine and config.
        """

    @hookspec
    def xrd_register_resources(self, mcp: FastMCP, server: CatalogServer) -> None:
        """Register MCP resources provided by this plugin.

        Args:
            mcp: The FastMCP server instance to register resources with.
            server: The catalog server, giving access to the engine and config.
        """

    @hookspec
    def xrd_health_check(self, server: CatalogServer) -> tuple[bool, str]:
        """Check if this plugin can operate correctly.

        Plugins that fail health checks stay registered but are reported
        as inactive.

        Args:
            server: The catalog server instance.

        Returns:
            Tuple of (healthy, message).
        """
        raise NotImplementedError
