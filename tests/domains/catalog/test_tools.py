"""Tests for catalog MCP tools and resources."""

from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest
from helpers import build_xrd

from xrd_catalog.config import CatalogConfig
from xrd_catalog.domains.catalog.resources import register_resources
from xrd_catalog.domains.catalog.tools import caller_context, register_tools
from xrd_catalog.engine import CatalogEngine
from xrd_catalog.permissions.policy import PolicyRuleResolver

ConfigFactory = Callable[..., CatalogConfig]

XRD_PREFIX = "apiextensions.crossplane.io/CompositeResourceDefinition/databases.platform.io"

POLICY = {
    "default": {"rule": "IS_ENTITY_KIND", "params": {"kinds": ["API"]}},
    "groups": {"group:default/platform-team": "allow"},
}


def capture(register: Callable[[Any, Any], None], server: Any, attr: str) -> dict[str, Any]:
    """Run a register function against a mock MCP and collect the decorated functions."""
    mcp = MagicMock()
    registered: dict[str, Any] = {}

    def decorator_factory(*args: Any, **kwargs: Any) -> Any:
        def decorator(func: Any) -> Any:
            registered[func.__name__] = func
            return func

        return decorator

    setattr(mcp, attr, decorator_factory)
    register(mcp, server)
    return registered


async def populated_server(make_config: ConfigFactory) -> MagicMock:
    """Server mock around a real engine holding one XRD per cluster."""
    config = make_config("prod", "dev")
    engine = CatalogEngine(config, resolver=PolicyRuleResolver.from_dict(POLICY))
    for cluster in ("prod", "dev"):
        result = build_xrd(cluster)
        await engine.store.commit(result.source, result.entities)
    server = MagicMock()
    server.config = config
    server.engine = engine
    return server


class TestCallerContext:
    """Caller context from tool arguments."""

    def test_user_owns_itself(self) -> None:
        caller = caller_context("user:default/jane", ["group:default/data"])
        assert caller.ownership_entity_refs == ["user:default/jane", "group:default/data"]

    def test_anonymous(self) -> None:
        caller = caller_context(None, None)
        assert caller.anonymous


class TestCatalogTools:
    """Query tools."""

    @pytest.mark.asyncio
    async def test_list_filtered_per_caller(self, make_config: ConfigFactory) -> None:
        tools = capture(register_tools, await populated_server(make_config), "tool")
        anonymous = await tools["list_catalog_entities"]()
        platform = await tools["list_catalog_entities"](
            user="user:default/jane", groups=["group:default/platform-team"]
        )

        assert anonymous["total"] == 2
        assert {i["kind"] for i in anonymous["items"]} == {"API"}
        assert platform["total"] == 4

    @pytest.mark.asyncio
    async def test_list_by_kind_and_cluster(self, make_config: ConfigFactory) -> None:
        tools = capture(register_tools, await populated_server(make_config), "tool")
        result = await tools["list_catalog_entities"](
            kind="template",
            cluster="prod",
            groups=["group:default/platform-team"],
            verbosity="minimal",
        )

        assert result["total"] == 1
        assert result["items"][0]["identifier"] == f"template:prod/{XRD_PREFIX}"

    @pytest.mark.asyncio
    async def test_list_unknown_kind(self, make_config: ConfigFactory) -> None:
        tools = capture(register_tools, await populated_server(make_config), "tool")
        result = await tools["list_catalog_entities"](kind="gadget")
        assert "Unknown entity kind" in result["error"]

    @pytest.mark.asyncio
    async def test_get_hidden_entity(self, make_config: ConfigFactory) -> None:
        tools = capture(register_tools, await populated_server(make_config), "tool")
        result = await tools["get_catalog_entity"](f"template:prod/{XRD_PREFIX}")
        assert result == {"error": f"Entity not found: template:prod/{XRD_PREFIX}"}

    @pytest.mark.asyncio
    async def test_get_visible_entity(self, make_config: ConfigFactory) -> None:
        tools = capture(register_tools, await populated_server(make_config), "tool")
        result = await tools["get_catalog_entity"](f"api:dev/{XRD_PREFIX}")
        assert result["kind"] == "API"
        assert result["document"]["spec"]["group"] == "platform.io"

    @pytest.mark.asyncio
    async def test_template_form(self, make_config: ConfigFactory) -> None:
        tools = capture(register_tools, await populated_server(make_config), "tool")
        result = await tools["get_template_form"](
            f"template:prod/{XRD_PREFIX}", groups=["group:default/platform-team"]
        )

        assert result["step_profile"] == "default"
        assert result["fields"] == [
            {"path": "spec.size", "type": "enum", "required": True},
            {"path": "spec.version", "type": "string", "required": False},
        ]
        assert result["degraded"] is False

    @pytest.mark.asyncio
    async def test_template_form_of_api(self, make_config: ConfigFactory) -> None:
        tools = capture(register_tools, await populated_server(make_config), "tool")
        result = await tools["get_template_form"](f"api:prod/{XRD_PREFIX}")
        assert "is not a Template" in result["error"]


class TestCatalogResources:
    """Summary resources."""

    @pytest.mark.asyncio
    async def test_summary(self, make_config: ConfigFactory) -> None:
        mock_server = await populated_server(make_config)
        resources = capture(register_resources, mock_server, "resource")
        summary = await resources["catalog_summary"]()

        assert summary == {
            "total": 2,
            "by_kind": {"API": 2},
            "by_cluster": {"dev": 1, "prod": 1},
            "degraded": 0,
        }

    @pytest.mark.asyncio
    async def test_templates_hidden_from_anonymous(self, make_config: ConfigFactory) -> None:
        mock_server = await populated_server(make_config)
        resources = capture(register_resources, mock_server, "resource")
        assert await resources["catalog_templates"]() == []
