"""Entity builder: source resources to catalog entities and edges."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from xrd_catalog.catalog.entities import (
    OWNER_ANNOTATION,
    SYSTEM_ANNOTATION,
    TEMPLATE_STEPS_ANNOTATION,
    AnyEntity,
    ApiEntity,
    EntityKind,
    Relation,
    RelationType,
    ResourceEntity,
    TemplateEntity,
    entity_identifier,
    origin_annotations,
    propagate_annotations,
)
from xrd_catalog.catalog.steps import (
    DEFAULT_PROFILE,
    PROFILES,
    build_output,
    build_steps,
    gitops_parameters,
    render_manifest,
)
from xrd_catalog.clients.base import CRDs
from xrd_catalog.config import CatalogConfig
from xrd_catalog.discovery.models import SourceRef, SourceResource
from xrd_catalog.schema.descriptors import FormDescriptor
from xrd_catalog.schema.forms import render_parameters, spec_paths
from xrd_catalog.schema.transformer import openapi_schema, transform_xrd
from xrd_catalog.utils.diagnostics import Diagnostic, error, warning
from xrd_catalog.utils.errors import SchemaTransformError

logger = logging.getLogger(__name__)

# (cluster, group, kind) -> identifier of the API entity defining that kind
ApiResolver = Callable[[str, str, str], "str | None"]


def _no_resolver(cluster: str, group: str, kind: str) -> str | None:
    return None


@dataclass
class BuildResult:
    """Entities produced from one source resource."""

    source: SourceRef
    entities: list[AnyEntity] = field(default_factory=list)
    descriptor: FormDescriptor | None = None

    @property
    def identifiers(self) -> list[str]:
        return [e.identifier for e in self.entities]

    @property
    def degraded(self) -> bool:
        return any(e.degraded for e in self.entities)


def assign_generation(entity: AnyEntity, current: AnyEntity | None) -> AnyEntity | None:
    """Stamp hash and generation on a freshly built entity.

    Returns:
        The stamped entity, or None when its content equals ``current``.
    """
    digest = entity.compute_hash()
    if current is not None and current.content_hash == digest:
        return None
    generation = current.generation + 1 if current is not None else 1
    return entity.model_copy(update={"generation": generation, "content_hash": digest})


def _split_api_version(api_version: str) -> tuple[str, str]:
    if "/" in api_version:
        group, version = api_version.split("/", 1)
        return group, version
    return "", api_version


def required_definition(resource: SourceResource) -> tuple[str, str] | None:
    """(group, kind) of the XRD a composition or composite resource links to.

    None for XRDs themselves.
    """
    if resource.group == CRDs.XRD.group and resource.kind == CRDs.XRD.kind:
        return None
    if resource.group == CRDs.COMPOSITION.group and resource.kind == CRDs.COMPOSITION.kind:
        type_ref = resource.spec.get("compositeTypeRef") or {}
        group, _ = _split_api_version(str(type_ref.get("apiVersion") or ""))
        return group, str(type_ref.get("kind") or "")
    return resource.group, resource.kind


def composition_ref(cluster: str, name: str) -> SourceRef:
    """Source reference of a Composition by name."""
    return SourceRef(
        cluster=cluster,
        group=CRDs.COMPOSITION.group,
        kind=CRDs.COMPOSITION.kind,
        name=name,
    )


class EntityBuilder:
    """Builds catalog entities from discovered Crossplane objects.

    - XRD: one API entity, one Template entity (unless the schema could not
      be transformed) and a Resource entity when it names a composition.
    - Composition: a Resource entity implementing the API of its XRD.
    - Composite resource: a Resource entity depending on its composition.
    """

    def __init__(self, default_owner: str, default_system: str | None = None) -> None:
        self._default_owner = default_owner
        self._default_system = default_system

    @classmethod
    def from_config(cls, config: CatalogConfig) -> EntityBuilder:
        return cls(config.default_owner, config.default_system)

    def build(
        self,
        resource: SourceResource,
        resolve_api: ApiResolver | None = None,
    ) -> BuildResult:
        """Build every entity a source resource yields.

        Never raises for content problems; they become diagnostics.

        Args:
            resource: The discovered object.
            resolve_api: Lookup of API identifiers by (cluster, group, kind),
                used to link compositions and composites to their XRD.
        """
        resolve = resolve_api or _no_resolver
        if resource.group == CRDs.XRD.group and resource.kind == CRDs.XRD.kind:
            result = self._build_xrd(resource)
        elif resource.group == CRDs.COMPOSITION.group and resource.kind == CRDs.COMPOSITION.kind:
            result = self._build_composition(resource, resolve)
        else:
            result = self._build_composite(resource, resolve)

        for entity in result.entities:
            if entity.degraded:
                logger.warning(f"Degraded entity {entity.identifier}: {entity.degraded_reason}")
        return result

    def _common(self, resource: SourceResource) -> dict[str, Any]:
        annotations = {
            **propagate_annotations(resource.annotations),
            **origin_annotations(resource.ref),
        }
        return {
            "source": resource.ref,
            "owner": resource.annotations.get(OWNER_ANNOTATION) or self._default_owner,
            "system": resource.annotations.get(SYSTEM_ANNOTATION) or self._default_system,
            "labels": dict(resource.labels),
            "annotations": annotations,
        }

    def _build_xrd(self, resource: SourceResource) -> BuildResult:
        ref = resource.ref
        spec = resource.spec
        names = spec.get("names") or {}
        claim_names = spec.get("claimNames") or {}
        group = str(spec.get("group") or "")
        xr_kind = str(names.get("kind") or "")
        scope = str(spec.get("scope") or "Cluster")
        common = self._common(resource)
        result = BuildResult(source=ref)
        api_id = entity_identifier(EntityKind.API, ref)

        api_diagnostics: list[Diagnostic] = list(resource.diagnostics)
        if not group or not xr_kind:
            api_diagnostics.append(error("incomplete-xrd", "XRD lacks spec.group or names.kind"))

        descriptor: FormDescriptor | None = None
        definition: dict[str, Any] | None = None
        version: str | None = None
        try:
            version, definition = openapi_schema(resource.body)
            descriptor = transform_xrd(resource.body)
        except SchemaTransformError as e:
            api_diagnostics.append(error("schema-transform-failed", str(e)))
            logger.warning(f"Schema transform failed for {ref.key}: {e}")
        except Exception as e:
            # The API entity is still published, without a form.
            logger.exception(f"Unexpected error transforming the schema of {ref.key}")
            api_diagnostics.append(
                error("schema-transform-failed", f"Unexpected {type(e).__name__}: {e}")
            )
            version, definition, descriptor = None, None, None
        result.descriptor = descriptor

        versions = spec.get("versions") or []
        served = [
            str(v.get("name"))
            for v in versions
            if isinstance(v, dict) and v.get("served") and v.get("name")
        ]
        title = str(claim_names.get("kind") or xr_kind or resource.name)
        description = (descriptor.description if descriptor else None) or (
            f"{xr_kind} ({group})" if xr_kind else None
        )

        result.entities.append(
            ApiEntity(
                identifier=api_id,
                name=resource.name,
                title=title,
                description=description,
                tags=["crossplane", "xrd"],
                diagnostics=api_diagnostics,
                group=group,
                xr_kind=xr_kind,
                plural=str(names.get("plural") or ""),
                version=version,
                served_versions=served,
                scope=scope,
                claim_kind=claim_names.get("kind"),
                claim_plural=claim_names.get("plural"),
                definition=definition,
                **common,
            )
        )

        if descriptor is not None and group and xr_kind:
            result.entities.append(
                self._template(resource, descriptor, api_id, title, description, common)
            )

        composition = (spec.get("defaultCompositionRef") or {}).get("name") or (
            spec.get("enforcedCompositionRef") or {}
        ).get("name")
        if composition:
            result.entities.append(
                ResourceEntity(
                    identifier=entity_identifier(EntityKind.RESOURCE, ref),
                    name=resource.name,
                    title=f"{title} composition",
                    description=f"Default composition of {xr_kind}",
                    tags=["crossplane", "composition"],
                    resource_type="default-composition",
                    details={
                        "composition": composition,
                        "enforced": bool(spec.get("enforcedCompositionRef")),
                    },
                    relations=[Relation(type=RelationType.DEPENDS_ON, target=api_id)],
                    **common,
                )
            )
        return result

    def _template(
        self,
        resource: SourceResource,
        descriptor: FormDescriptor,
        api_id: str,
        title: str,
        description: str | None,
        common: dict[str, Any],
    ) -> TemplateEntity:
        spec = resource.spec
        claim_kind = (spec.get("claimNames") or {}).get("kind")
        namespaced = bool(claim_kind) or spec.get("scope") == "Namespaced"
        kind = claim_kind or (spec.get("names") or {}).get("kind")
        diagnostics = list(descriptor.diagnostics)

        profile = resource.annotations.get(TEMPLATE_STEPS_ANNOTATION) or DEFAULT_PROFILE
        if profile not in PROFILES:
            diagnostics.append(
                warning(
                    "unknown-step-profile",
                    f"Unknown template step profile '{profile}', using '{DEFAULT_PROFILE}'",
                )
            )
            profile = DEFAULT_PROFILE

        parameters = render_parameters(descriptor, namespaced=namespaced)
        if profile == "gitops":
            parameters.append(gitops_parameters())
        manifest = render_manifest(
            f"{spec.get('group')}/{descriptor.version}",
            str(kind),
            spec_paths(descriptor),
            namespaced,
        )
        return TemplateEntity(
            identifier=entity_identifier(EntityKind.TEMPLATE, resource.ref),
            name=resource.name,
            title=f"Create {title}",
            description=description,
            tags=["crossplane", "template"],
            diagnostics=diagnostics,
            relations=[Relation(type=RelationType.DEPENDS_ON, target=api_id)],
            form=descriptor,
            parameters=parameters,
            steps=build_steps(profile, manifest, resource.cluster),
            step_profile=profile,
            output=build_output(profile, resource.cluster),
            **common,
        )

    def _build_composition(self, resource: SourceResource, resolve: ApiResolver) -> BuildResult:
        spec = resource.spec
        type_ref = spec.get("compositeTypeRef") or {}
        group, version = _split_api_version(str(type_ref.get("apiVersion") or ""))
        xr_kind = str(type_ref.get("kind") or "")
        diagnostics = list(resource.diagnostics)
        relations: list[Relation] = []

        api_id = resolve(resource.cluster, group, xr_kind) if xr_kind else None
        if api_id is not None:
            relations.append(Relation(type=RelationType.IMPLEMENTS, target=api_id))
        else:
            diagnostics.append(
                warning(
                    "unresolved-xrd",
                    f"No discovered XRD defines {group}/{xr_kind}",
                    "spec.compositeTypeRef",
                )
            )

        pipeline = spec.get("pipeline") or []
        details: dict[str, Any] = {
            "compositeTypeRef": {"apiVersion": type_ref.get("apiVersion"), "kind": xr_kind},
            "mode": spec.get("mode") or ("Pipeline" if pipeline else "Resources"),
        }
        if pipeline:
            details["functions"] = [
                (s.get("functionRef") or {}).get("name") for s in pipeline if isinstance(s, dict)
            ]
        else:
            details["resourceCount"] = len(spec.get("resources") or [])

        entity = ResourceEntity(
            identifier=entity_identifier(EntityKind.RESOURCE, resource.ref),
            name=resource.name,
            title=resource.name,
            description=f"Composition for {xr_kind}" if xr_kind else None,
            tags=["crossplane", "composition"],
            diagnostics=diagnostics,
            relations=relations,
            resource_type="composition",
            details=details,
            **self._common(resource),
        )
        return BuildResult(source=resource.ref, entities=[entity])

    def _build_composite(self, resource: SourceResource, resolve: ApiResolver) -> BuildResult:
        spec = resource.spec
        cluster = resource.cluster
        relations: list[Relation] = []

        api_id = resolve(cluster, resource.group, resource.kind)
        if api_id is not None:
            relations.append(Relation(type=RelationType.DEPENDS_ON, target=api_id))

        composition = (spec.get("compositionRef") or {}).get("name") or (
            (spec.get("crossplane") or {}).get("compositionRef") or {}
        ).get("name")
        if composition:
            target = entity_identifier(EntityKind.RESOURCE, composition_ref(cluster, composition))
            relations.append(Relation(type=RelationType.DEPENDS_ON, target=target))

        metadata = resource.body.get("metadata") or {}
        for owner in metadata.get("ownerReferences") or []:
            if not isinstance(owner, dict) or not owner.get("name"):
                continue
            owner_group, _ = _split_api_version(str(owner.get("apiVersion") or ""))
            owner_ref = SourceRef(
                cluster=cluster,
                group=owner_group,
                kind=str(owner.get("kind") or ""),
                name=str(owner["name"]),
                namespace=resource.ref.namespace,
            )
            relations.append(
                Relation(
                    type=RelationType.OWNED_BY,
                    target=entity_identifier(EntityKind.RESOURCE, owner_ref),
                )
            )

        entity = ResourceEntity(
            identifier=entity_identifier(EntityKind.RESOURCE, resource.ref),
            name=resource.name,
            title=f"{resource.kind} {resource.name}",
            tags=["crossplane", "composite"],
            diagnostics=list(resource.diagnostics),
            relations=relations,
            resource_type="composite",
            details={
                "compositeKind": resource.kind,
                "apiVersion": f"{resource.group}/{resource.version}",
            },
            **self._common(resource),
        )
        return BuildResult(source=resource.ref, entities=[entity])
