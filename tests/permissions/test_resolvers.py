"""Tests for rule resolvers and the permission filter."""

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from xrd_catalog.catalog.entities import ApiEntity
from xrd_catalog.discovery.models import SourceRef
from xrd_catalog.permissions.context import CallerContext, DecisionResult
from xrd_catalog.permissions.filter import PermissionFilter
from xrd_catalog.permissions.policy import PolicyRuleResolver
from xrd_catalog.permissions.remote import PERMISSION_NAME, RemoteRuleResolver
from xrd_catalog.permissions.rules import DENY, AnyOf, HasLabel, IsEntityOwner
from xrd_catalog.utils.errors import ConfigurationError, PermissionResolutionError

POLICY = {
    "default": "deny",
    "groups": {
        "group:default/platform-team": "allow",
        "group:default/developers": {"rule": "HAS_LABEL", "params": {"label": "public"}},
    },
    "users": {
        "user:default/auditor": {"rule": "IS_ENTITY_KIND", "params": {"kinds": ["API"]}},
    },
}


def entity(name: str, owner: str = "group:default/data", public: bool = False) -> ApiEntity:
    ref = SourceRef(cluster="prod", group="apiextensions.crossplane.io", kind="XRD", name=name)
    return ApiEntity(
        identifier=f"api:{ref.key}",
        name=name,
        source=ref,
        owner=owner,
        labels={"public": "true"} if public else {},
        group="platform.io",
        xr_kind=name.title(),
    )


class TestPolicyRuleResolver:
    """Rules per user and group."""

    def test_group_rule(self) -> None:
        resolver = PolicyRuleResolver.from_dict(POLICY)
        caller = CallerContext.for_user("user:default/jane", ["group:default/developers"])
        assert resolver.rule_for(caller) == HasLabel(label="public")

    def test_default_when_nothing_matches(self) -> None:
        resolver = PolicyRuleResolver.from_dict(POLICY)
        assert resolver.rule_for(CallerContext.for_user("user:default/bob")) == DENY

    def test_several_matches_are_ored(self) -> None:
        resolver = PolicyRuleResolver.from_dict(POLICY)
        caller = CallerContext.for_user("user:default/auditor", ["group:default/developers"])
        rule = resolver.rule_for(caller)
        assert isinstance(rule, AnyOf)
        assert len(rule.rules) == 2

    @pytest.mark.asyncio
    async def test_resolve_is_conditional(self) -> None:
        resolver = PolicyRuleResolver.from_dict(POLICY)
        decision = await resolver.resolve(CallerContext())
        assert decision.result == DecisionResult.CONDITIONAL
        assert decision.to_rule() == DENY

    def test_malformed_policy(self) -> None:
        with pytest.raises(ConfigurationError, match="Invalid permission policy"):
            PolicyRuleResolver.from_dict({"groups": {"g": {"rule": "NOPE"}}})

    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.yaml"
        path.write_text(
            "default: deny\n"
            "groups:\n"
            "  group:default/data:\n"
            "    rule: IS_ENTITY_OWNER\n"
            "    params: {}\n",
            encoding="utf-8",
        )
        resolver = PolicyRuleResolver.from_file(path)
        caller = CallerContext.for_user("user:default/jane", ["group:default/data"])
        assert resolver.rule_for(caller) == IsEntityOwner()

    def test_unparseable_file(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.yaml"
        path.write_text("groups: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            PolicyRuleResolver.from_file(path)


class TestRemoteRuleResolver:
    """Decision service over HTTP."""

    @pytest.mark.asyncio
    async def test_conditional_decision(self) -> None:
        requests: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "result": "CONDITIONAL",
                    "conditions": {"rule": "IS_ENTITY_OWNER", "params": {}},
                },
            )

        resolver = RemoteRuleResolver(
            "http://authz.test/decide", transport=httpx.MockTransport(handler)
        )
        caller = CallerContext.for_user("user:default/jane", ["group:default/data"])
        decision = await resolver.resolve(caller)
        await resolver.close()

        assert decision.to_rule() == IsEntityOwner()
        assert requests[0]["permission"]["name"] == PERMISSION_NAME
        assert requests[0]["ownershipEntityRefs"] == ["user:default/jane", "group:default/data"]

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        resolver = RemoteRuleResolver(
            "http://authz.test/decide",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        with pytest.raises(PermissionResolutionError, match="rejected"):
            await resolver.resolve(CallerContext())

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        resolver = RemoteRuleResolver(
            "http://authz.test/decide", transport=httpx.MockTransport(handler)
        )
        with pytest.raises(PermissionResolutionError, match="Failed to connect"):
            await resolver.resolve(CallerContext())

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            httpx.ReadError("connection reset"),
            httpx.RemoteProtocolError("server disconnected"),
            httpx.TooManyRedirects("redirect loop"),
        ],
    )
    async def test_other_transport_errors(self, error: httpx.HTTPError) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise error

        resolver = RemoteRuleResolver(
            "http://authz.test/decide", transport=httpx.MockTransport(handler)
        )
        with pytest.raises(PermissionResolutionError, match="Error talking"):
            await resolver.resolve(CallerContext())

        permissions = PermissionFilter(resolver)
        assert await permissions.rule_for(CallerContext()) == DENY
        assert await permissions.filter([entity("a", public=True)], CallerContext()) == []

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        resolver = RemoteRuleResolver(
            "http://authz.test/decide",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html>")),
        )
        with pytest.raises(PermissionResolutionError, match="invalid JSON"):
            await resolver.resolve(CallerContext())

    @pytest.mark.asyncio
    async def test_malformed_conditions(self) -> None:
        resolver = RemoteRuleResolver(
            "http://authz.test/decide",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(
                    200, json={"result": "CONDITIONAL", "conditions": {"rule": "IS_FRIDAY"}}
                )
            ),
        )
        with pytest.raises(PermissionResolutionError):
            await resolver.resolve(CallerContext())


class TestPermissionFilter:
    """The single filtering point."""

    @pytest.mark.asyncio
    async def test_filters_preserving_order(self) -> None:
        resolver = PolicyRuleResolver.from_dict(POLICY)
        permissions = PermissionFilter(resolver)
        caller = CallerContext.for_user("user:default/jane", ["group:default/developers"])
        entities = [entity("a", public=True), entity("b"), entity("c", public=True)]

        visible = await permissions.filter(entities, caller)

        assert [e.name for e in visible] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_fails_closed(self) -> None:
        """No decision means nothing is visible."""
        resolver = AsyncMock()
        resolver.resolve.side_effect = PermissionResolutionError("service down")
        permissions = PermissionFilter(resolver)

        assert await permissions.filter([entity("a"), entity("b")], CallerContext()) == []
        assert not await permissions.allows(entity("a"), CallerContext())
