"""Tests for the catalog query service."""

import random

import pytest
from helpers import build_xrd, random_rule

from xrd_catalog.catalog.entities import OWNER_ANNOTATION, SOURCE_ANNOTATION_PREFIX, EntityKind
from xrd_catalog.catalog.service import CatalogQueryService, parse_kind
from xrd_catalog.catalog.store import CatalogStore
from xrd_catalog.permissions.context import CallerContext
from xrd_catalog.permissions.filter import PermissionFilter
from xrd_catalog.permissions.policy import StaticRuleResolver
from xrd_catalog.permissions.rules import ALLOW, HasLabel, Rule, evaluate
from xrd_catalog.utils.errors import EntityNotFoundError
from xrd_catalog.utils.response import Verbosity

XRD_PREFIX = "apiextensions.crossplane.io/CompositeResourceDefinition/databases.platform.io"


async def populated_store() -> CatalogStore:
    store = CatalogStore()
    for cluster, team in (("prod", "data"), ("dev", "web"), ("qa", "web")):
        result = build_xrd(cluster, labels={"team": team})
        await store.commit(result.source, result.entities)
    return store


def service(store: CatalogStore, rule: Rule = ALLOW, max_limit: int = 500) -> CatalogQueryService:
    return CatalogQueryService(
        store, PermissionFilter(StaticRuleResolver(rule)), max_limit=max_limit
    )


class TestParseKind:
    """Entity kind parsing."""

    def test_case_insensitive(self) -> None:
        assert parse_kind("template") == EntityKind.TEMPLATE
        assert parse_kind("api") == EntityKind.API
        assert parse_kind(None) is None

    def test_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown entity kind"):
            parse_kind("gadget")


class TestQueries:
    """Filtered reads."""

    @pytest.mark.asyncio
    async def test_list_filters_by_permission(self) -> None:
        store = await populated_store()
        svc = service(store, HasLabel(label="team", value="web"))

        entities = await svc.list_entities(CallerContext(), kind="Template")

        assert [e.cluster for e in entities] == ["dev", "qa"]

    @pytest.mark.asyncio
    async def test_hidden_and_missing_look_the_same(self) -> None:
        """A hidden entity raises exactly like a missing one."""
        store = await populated_store()
        svc = service(store, HasLabel(label="team", value="web"))
        caller = CallerContext()

        with pytest.raises(EntityNotFoundError) as hidden:
            await svc.get_entity(f"api:prod/{XRD_PREFIX}", caller)
        with pytest.raises(EntityNotFoundError) as missing:
            await svc.get_entity(f"api:nowhere/{XRD_PREFIX}", caller)

        assert str(hidden.value).replace("prod", "X") == str(missing.value).replace("nowhere", "X")

    @pytest.mark.asyncio
    async def test_get_visible(self) -> None:
        store = await populated_store()
        entity = await service(store).get_entity(f"api:dev/{XRD_PREFIX}", CallerContext())
        assert entity.cluster == "dev"

    @pytest.mark.asyncio
    async def test_page_counts_only_visible(self) -> None:
        """Totals are computed after filtering so hidden entities are not revealed."""
        store = await populated_store()
        svc = service(store, HasLabel(label="team", value="web"))

        page = await svc.list_page(CallerContext(), limit=3, verbosity=Verbosity.MINIMAL)

        assert page["total"] == 4
        assert len(page["items"]) == 3
        assert page["has_more"] is True
        assert set(page["items"][0]) == {"identifier", "kind", "name", "degraded"}

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self) -> None:
        store = await populated_store()
        page = await service(store, max_limit=2).list_page(CallerContext(), limit=100)

        assert page["limit"] == 2
        assert len(page["items"]) == 2
        assert page["total"] == 6

    @pytest.mark.asyncio
    async def test_offset(self) -> None:
        store = await populated_store()
        page = await service(store).list_page(CallerContext(), offset=5)
        assert len(page["items"]) == 1
        assert page["has_more"] is False

    @pytest.mark.asyncio
    async def test_full_verbosity_includes_document(self) -> None:
        store = await populated_store()
        page = await service(store).list_page(
            CallerContext(), kind="template", cluster="prod", verbosity=Verbosity.FULL
        )
        item = page["items"][0]
        assert item["document"]["kind"] == "Template"
        assert item["relations"][0]["type"] == "dependsOn"


OWNERS = ["group:default/data", "group:default/web", "user:default/jane"]
ANNOTATION_KEYS = [f"{SOURCE_ANNOTATION_PREFIX}a", f"{SOURCE_ANNOTATION_PREFIX}b"]


async def random_store(rng: random.Random) -> CatalogStore:
    """Store of XRDs with random owners, labels, annotations and composition refs."""
    store = CatalogStore()
    for index in range(rng.randrange(3, 8)):
        annotations = {k: "1" for k in rng.sample(["a", "b"], rng.randrange(3))}
        annotations[OWNER_ANNOTATION] = rng.choice(OWNERS)
        result = build_xrd(
            rng.choice(["prod", "dev"]),
            name=f"kind{index}.platform.io",
            kind=f"Kind{index}",
            plural=f"kind{index}s",
            labels={
                k: rng.choice(["data", "web"])
                for k in rng.sample(["team", "tier"], rng.randrange(3))
            },
            annotations=annotations,
            composition=rng.choice([None, f"kind{index}-default"]),
        )
        await store.commit(result.source, result.entities)
    return store


class TestPermissionCompleteness:
    """Listing returns exactly the entities the caller's rule allows."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(30))
    async def test_listing_matches_rule(self, seed: int) -> None:
        rng = random.Random(seed)
        store = await random_store(rng)
        rule = random_rule(rng, annotation_keys=ANNOTATION_KEYS)
        caller = CallerContext.for_user(
            "user:default/jane", rng.sample(["group:default/data", "group:default/web"], 1)
        )
        catalog = service(store, rule)
        everything = store.query()

        listed = [e.identifier for e in await catalog.list_entities(caller)]
        allowed = [e.identifier for e in everything if evaluate(rule, e, caller)]
        assert listed == allowed

        for kind in EntityKind:
            by_kind = await catalog.list_entities(caller, kind=kind)
            assert [e.identifier for e in by_kind] == [
                e.identifier
                for e in everything
                if e.kind == kind and evaluate(rule, e, caller)
            ]

        for entity in everything:
            if entity.identifier in allowed:
                assert await catalog.get_entity(entity.identifier, caller) == entity
            else:
                with pytest.raises(EntityNotFoundError):
                    await catalog.get_entity(entity.identifier, caller)
