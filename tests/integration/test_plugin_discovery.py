"""Integration tests for pluggy-based plugin discovery."""

from unittest.mock import MagicMock, patch


def test_plugin_manager_loads_core_plugins():
    """Verify PluginManager loads all core domain plugins."""
    from xrd_catalog.plugin_manager import PluginManager

    pm = PluginManager()
    count = pm.load_core_plugins()

    assert count == 3
    assert set(pm.registered_plugins.keys()) == {"catalog", "health", "transform"}


def test_core_plugins_have_valid_metadata():
    """Verify all core plugins provide valid metadata."""
    from xrd_catalog.plugin_manager import PluginManager

    pm = PluginManager()
    pm.load_core_plugins()

    metadata_list = pm.get_all_metadata()
    assert len(metadata_list) == 3

    for meta in metadata_list:
        assert meta.name
        assert meta.version
        assert meta.description
        assert meta.maintainer


def test_plugins_can_register_resources():
    """Verify plugins can register resources without error."""
    from xrd_catalog.plugin_manager import PluginManager

    pm = PluginManager()
    pm.load_core_plugins()
    mcp = MagicMock()
    uris: list[str] = []

    def capture_resource(uri):
        def decorator(func):
            uris.append(uri)
            return func

        return decorator

    mcp.resource = capture_resource
    pm.register_all_resources(mcp, MagicMock())

    assert sorted(uris) == [
        "xrdcatalog://catalog/summary",
        "xrdcatalog://catalog/templates",
        "xrdcatalog://clusters",
        "xrdcatalog://health",
    ]


def test_entrypoint_plugins_registered_by_name():
    """Verify plugins loaded from entry points are tracked alongside core plugins."""
    from xrd_catalog.hooks import hookimpl
    from xrd_catalog.plugin_manager import PluginManager

    class ExternalPlugin:
        @hookimpl
        def xrd_register_tools(self, mcp, server):
            pass

    pm = PluginManager()
    pm.load_core_plugins()
    external = ExternalPlugin()

    def fake_load(group):
        assert group == "xrd_catalog.plugins"
        pm._pm.register(external, name="external")
        return 1

    with patch.object(pm._pm, "load_setuptools_entrypoints", side_effect=fake_load):
        loaded = pm.load_entrypoint_plugins()

    assert loaded == 1
    assert pm.registered_plugins["external"] is external
    assert len(pm.registered_plugins) == 4
