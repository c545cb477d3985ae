"""Sample Crossplane objects and a fake cluster client for tests."""

from __future__ import annotations

import copy
import random
from collections.abc import Iterator, Sequence
from typing import Any

from xrd_catalog.catalog.builder import BuildResult, EntityBuilder
from xrd_catalog.clients.base import CRDDefinition, CRDs
from xrd_catalog.config import ClusterDescriptor
from xrd_catalog.discovery.models import SourceResource
from xrd_catalog.permissions.rules import (
    ALLOW,
    DENY,
    AllOf,
    AnyOf,
    HasAnnotation,
    HasLabel,
    IsEntityKind,
    IsEntityOwner,
    MetadataMatch,
    Not,
    Rule,
)
from xrd_catalog.utils.errors import AuthenticationError, NotFoundError


def database_schema(version_pattern: str = r"^[0-9]+\.[0-9]+$") -> dict[str, Any]:
    """openAPIV3Schema of the databases.platform.io XRD."""
    return {
        "type": "object",
        "properties": {
            "spec": {
                "type": "object",
                "properties": {
                    "size": {
                        "type": "string",
                        "enum": ["small", "medium", "large"],
                        "default": "small",
                    },
                    "version": {"type": "string", "pattern": version_pattern},
                },
                "required": ["size"],
            },
            "status": {"type": "object"},
        },
    }


def make_xrd(
    name: str = "databases.platform.io",
    group: str = "platform.io",
    kind: str = "Database",
    plural: str = "databases",
    schema: dict[str, Any] | None = None,
    claim_kind: str | None = None,
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
    resource_version: str = "1",
    composition: str | None = None,
) -> dict[str, Any]:
    """Build a CompositeResourceDefinition object dict."""
    spec: dict[str, Any] = {
        "group": group,
        "names": {"kind": kind, "plural": plural},
        "versions": [
            {
                "name": "v1alpha1",
                "served": True,
                "referenceable": True,
                "schema": {"openAPIV3Schema": schema or database_schema()},
            }
        ],
    }
    if claim_kind:
        spec["claimNames"] = {"kind": claim_kind, "plural": f"{claim_kind.lower()}s"}
    if composition:
        spec["defaultCompositionRef"] = {"name": composition}
    return {
        "apiVersion": "apiextensions.crossplane.io/v1",
        "kind": "CompositeResourceDefinition",
        "metadata": {
            "name": name,
            "resourceVersion": resource_version,
            "labels": labels or {},
            "annotations": annotations or {},
        },
        "spec": spec,
    }


def make_composition(
    name: str = "databases-aws",
    xr_api_version: str = "platform.io/v1alpha1",
    xr_kind: str = "Database",
    resource_version: str = "1",
) -> dict[str, Any]:
    """Build a Composition object dict."""
    return {
        "apiVersion": "apiextensions.crossplane.io/v1",
        "kind": "Composition",
        "metadata": {"name": name, "resourceVersion": resource_version},
        "spec": {
            "compositeTypeRef": {"apiVersion": xr_api_version, "kind": xr_kind},
            "resources": [],
        },
    }


class FakeK8sClient:
    """In-memory stand-in for K8sClient serving canned listings."""

    def __init__(self, cluster: ClusterDescriptor) -> None:
        self.cluster = cluster
        # Crossplane installed with no XRDs; delete the XRD entry to uninstall it.
        self.objects: dict[str, list[dict[str, Any]]] = {CRDs.XRD.kind: []}
        self.fail_with: Exception | None = None
        self.list_calls = 0
        self.refreshes = 0
        self.watch_events: list[tuple[str, dict[str, Any]]] = []
        self._connected = False

    @property
    def name(self) -> str:
        return self.cluster.name

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        if isinstance(self.fail_with, AuthenticationError):
            raise self.fail_with
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False

    def verify(self) -> None:
        self.list_resources(CRDs.XRD)

    def refresh_credentials(self) -> None:
        self.refreshes += 1

    def set(self, crd: CRDDefinition, items: list[dict[str, Any]]) -> None:
        self.objects[crd.kind] = [copy.deepcopy(i) for i in items]

    def list_resources(
        self,
        crd: CRDDefinition,
        label_selector: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self.list_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        if crd.kind not in self.objects:
            raise NotFoundError("CustomResourceDefinition", crd.plural)
        return copy.deepcopy(self.objects[crd.kind])

    def watch(
        self, crd: CRDDefinition, resource_version: str | None = None
    ) -> Iterator[tuple[str, dict[str, Any]]]:
        if self.fail_with is not None:
            raise self.fail_with
        return iter([(t, copy.deepcopy(o)) for t, o in self.watch_events])


def xrd_resource(cluster: str = "prod", **kwargs: Any) -> SourceResource:
    """SourceResource of an XRD built by ``make_xrd``."""
    return SourceResource.from_object(cluster, make_xrd(**kwargs))


def build_xrd(cluster: str = "prod", **kwargs: Any) -> BuildResult:
    """BuildResult of an XRD built by ``make_xrd``."""
    return EntityBuilder("group:default/platform-team").build(xrd_resource(cluster, **kwargs))


def random_rule(
    rng: random.Random, depth: int = 0, annotation_keys: Sequence[str] = ("a", "b")
) -> Rule:
    """Random rule tree, at most four levels deep."""
    choice = rng.randrange(10 if depth < 3 else 7)
    if choice == 0:
        return HasLabel(label=rng.choice(["team", "tier"]), value=rng.choice([None, "data", "web"]))
    if choice == 1:
        return HasAnnotation(
            annotation=rng.choice(list(annotation_keys)), value=rng.choice([None, "1"])
        )
    if choice == 2:
        key = rng.choice(["name", "tags", "system"])
        return MetadataMatch(key=key, value=rng.choice(["xrd", None]))
    if choice == 3:
        return IsEntityOwner(claims=rng.choice([None, ["group:default/web"]]))
    if choice == 4:
        return IsEntityKind(kinds=rng.sample(["API", "Template", "Resource"], 2))
    if choice == 5:
        return ALLOW
    if choice == 6:
        return DENY

    def subtree() -> Rule:
        return random_rule(rng, depth + 1, annotation_keys)

    if choice == 7:
        return AllOf(rules=[subtree() for _ in range(rng.randrange(3))])
    if choice == 8:
        return AnyOf(rules=[subtree() for _ in range(rng.randrange(3))])
    return Not(inner=subtree())
