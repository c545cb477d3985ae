"""Base class and metadata for catalog plugins."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from xrd_catalog.hooks import hookimpl

if TYPE_CHECKING:
    from xrd_catalog.server import CatalogServer


@dataclass
class PluginMetadata:
    """Describes a plugin to the plugin manager and the plugins resource."""

    name: str
    version: str
    description: str
    maintainer: str
    requires_engine: bool = True
    tags: list[str] = field(default_factory=list)


class BasePlugin:
    """Convenience base for plugins.

    Subclasses pass their metadata to ``__init__`` and add ``@hookimpl``
    methods for the tools and resources they provide.
    """

    def __init__(self, metadata: PluginMetadata) -> None:
        self._metadata = metadata

    @property
    def metadata(self) -> PluginMetadata:
        return self._metadata

    @hookimpl
    def xrd_get_plugin_metadata(self) -> PluginMetadata:
        return self._metadata

    @hookimpl
    def xrd_health_check(self, server: CatalogServer) -> tuple[bool, str]:
        """Healthy when the plugin needs no engine or the engine is running."""
        if not self._metadata.requires_engine:
            return True, "No engine required"
        if server.engine.started:
            return True, "Catalog engine running"
        return False, "Catalog engine not started"
