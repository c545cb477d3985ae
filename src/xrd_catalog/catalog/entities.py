"""Catalog entity models.

Three variants share one base: templates carry a provisioning form, APIs a
machine-readable definition, resources only relationships. The ``kind`` tag
discriminates them when entities are loaded back from a snapshot.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from xrd_catalog.discovery.models import SourceRef
from xrd_catalog.schema.descriptors import FormDescriptor
from xrd_catalog.utils.diagnostics import Diagnostic

# Annotation keys written on every generated entity.
SOURCE_CLUSTER_ANNOTATION = "xrdcatalog.dev/source-cluster"
SOURCE_REF_ANNOTATION = "xrdcatalog.dev/source-ref"
SOURCE_KIND_ANNOTATION = "xrdcatalog.dev/source-kind"

# Source annotations are copied under this prefix.
SOURCE_ANNOTATION_PREFIX = "source.xrdcatalog.dev/"

# Annotations read from the source object.
OWNER_ANNOTATION = "xrdcatalog.dev/owner"
SYSTEM_ANNOTATION = "xrdcatalog.dev/system"
TEMPLATE_STEPS_ANNOTATION = "xrdcatalog.dev/template-steps"


class EntityKind(str, Enum):
    """Catalog entity kinds."""

    TEMPLATE = "Template"
    API = "API"
    RESOURCE = "Resource"


class RelationType(str, Enum):
    """Relationship edge types."""

    IMPLEMENTS = "implements"
    DEPENDS_ON = "dependsOn"
    OWNED_BY = "ownedBy"


class Relation(BaseModel):
    """A directed edge to another entity identifier."""

    model_config = ConfigDict(frozen=True)

    type: RelationType
    target: str


def entity_identifier(kind: EntityKind, ref: SourceRef) -> str:
    """Stable identifier of the entity of ``kind`` generated from ``ref``.

    A pure function of the source coordinates, so re-discovery of the same
    object always lands on the same entity.
    """
    return f"{kind.value.lower()}:{ref.key}"


class _EntityBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str = Field(..., description="Stable identifier derived from the source")
    name: str
    title: str | None = None
    description: str | None = None
    source: SourceRef
    generation: int = Field(0, ge=0, description="Incremented on every content change")
    content_hash: str = ""
    owner: str
    system: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    relations: list[Relation] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    built_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def cluster(self) -> str:
        return self.source.cluster

    @property
    def degraded(self) -> bool:
        return bool(self.diagnostics)

    @property
    def degraded_reason(self) -> str | None:
        if not self.diagnostics:
            return None
        return "; ".join(str(d) for d in self.diagnostics)

    def targets(self, relation: RelationType) -> list[str]:
        return [r.target for r in self.relations if r.type == relation]

    def metadata_field(self, path: str) -> Any:
        """Resolve a dotted metadata path such as ``metadata.name``.

        Returns None for unknown paths.
        """
        path = path.removeprefix("metadata.")
        if path.startswith("annotations."):
            return self.annotations.get(path[len("annotations.") :])
        if path.startswith("labels."):
            return self.labels.get(path[len("labels.") :])
        values = {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "namespace": self.cluster,
            "uid": self.identifier,
            "tags": self.tags,
            "owner": self.owner,
            "system": self.system,
            "kind": self.kind.value,  # type: ignore[attr-defined]
        }
        return values.get(path)

    def hashable_payload(self) -> str:
        """Serialized content that identifies a change; excludes bookkeeping."""
        return self.model_dump_json(exclude={"generation", "content_hash", "built_at"})

    def compute_hash(self) -> str:
        return hashlib.sha256(self.hashable_payload().encode("utf-8")).hexdigest()

    def _spec(self) -> dict[str, Any]:
        return {}

    def to_catalog_dict(self) -> dict[str, Any]:
        """Render as a catalog descriptor document."""
        metadata: dict[str, Any] = {
            "name": self.name,
            "namespace": self.cluster,
            "uid": self.identifier,
            "generation": self.generation,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
        }
        if self.title:
            metadata["title"] = self.title
        if self.description:
            metadata["description"] = self.description
        if self.tags:
            metadata["tags"] = list(self.tags)
        spec = {"owner": self.owner, **self._spec()}
        if self.system:
            spec["system"] = self.system
        document: dict[str, Any] = {
            "apiVersion": "backstage.io/v1alpha1",
            "kind": self.kind.value,  # type: ignore[attr-defined]
            "metadata": metadata,
            "spec": spec,
            "relations": [{"type": r.type.value, "targetRef": r.target} for r in self.relations],
        }
        if self.degraded:
            document["status"] = {"degraded": True, "reason": self.degraded_reason}
        return document


class TemplateEntity(_EntityBase):
    """Provisioning template with a form and action steps."""

    kind: Literal[EntityKind.TEMPLATE] = EntityKind.TEMPLATE
    form: FormDescriptor
    parameters: list[dict[str, Any]] = Field(default_factory=list)
    steps: list[dict[str, Any]] = Field(default_factory=list)
    step_profile: str = "default"
    output: dict[str, Any] = Field(default_factory=dict)

    def _spec(self) -> dict[str, Any]:
        spec: dict[str, Any] = {
            "type": "crossplane-resource",
            "parameters": self.parameters,
            "steps": self.steps,
        }
        if self.output:
            spec["output"] = self.output
        return spec

    def to_catalog_dict(self) -> dict[str, Any]:
        document = super().to_catalog_dict()
        document["apiVersion"] = "scaffolder.backstage.io/v1beta3"
        return document


class ApiEntity(_EntityBase):
    """API description of the composite resource an XRD declares."""

    kind: Literal[EntityKind.API] = EntityKind.API
    group: str = Field(..., description="API group the XRD defines")
    xr_kind: str = Field(..., description="Composite resource kind")
    plural: str = ""
    version: str | None = Field(None, description="Version whose schema was used")
    served_versions: list[str] = Field(default_factory=list)
    scope: str = Field("Cluster", description="Cluster or Namespaced")
    claim_kind: str | None = None
    claim_plural: str | None = None
    definition: dict[str, Any] | None = Field(
        None, description="OpenAPI schema of the selected version"
    )

    def _spec(self) -> dict[str, Any]:
        spec: dict[str, Any] = {
            "type": "crossplane-xrd",
            "lifecycle": "production",
            "group": self.group,
            "kind": self.xr_kind,
            "scope": self.scope,
            "versions": list(self.served_versions),
        }
        if self.version:
            spec["version"] = self.version
        if self.claim_kind:
            spec["claimNames"] = {"kind": self.claim_kind, "plural": self.claim_plural}
        if self.definition is not None:
            spec["definition"] = self.definition
        return spec


class ResourceEntity(_EntityBase):
    """Composition or composite resource; relationships only."""

    kind: Literal[EntityKind.RESOURCE] = EntityKind.RESOURCE
    resource_type: str = Field(..., description="composition, composite or default-composition")
    details: dict[str, Any] = Field(default_factory=dict)

    def _spec(self) -> dict[str, Any]:
        return {"type": self.resource_type, **self.details}


CatalogEntity = Annotated[
    Union[TemplateEntity, ApiEntity, ResourceEntity],
    Field(discriminator="kind"),
]

AnyEntity = Union[TemplateEntity, ApiEntity, ResourceEntity]


def origin_annotations(ref: SourceRef) -> dict[str, str]:
    """Annotations recording where an entity came from."""
    return {
        SOURCE_CLUSTER_ANNOTATION: ref.cluster,
        SOURCE_REF_ANNOTATION: ref.key,
        SOURCE_KIND_ANNOTATION: f"{ref.group}/{ref.kind}" if ref.group else ref.kind,
    }


def propagate_annotations(source: dict[str, str]) -> dict[str, str]:
    """Copy source annotations under the namespaced prefix."""
    return {f"{SOURCE_ANNOTATION_PREFIX}{k}": v for k, v in source.items()}
