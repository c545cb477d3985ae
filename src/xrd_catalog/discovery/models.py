"""Data models for discovered cluster objects."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from xrd_catalog.utils.diagnostics import Diagnostic


class ChangeType(str, Enum):
    """Outcome of comparing a listing against the previous one."""

    ADDED = "Added"
    UPDATED = "Updated"
    REMOVED = "Removed"
    UNCHANGED = "Unchanged"


class SourceRef(BaseModel):
    """Stable reference to one object in one cluster."""

    model_config = ConfigDict(frozen=True)

    cluster: str
    group: str
    kind: str
    name: str
    namespace: str | None = None

    @property
    def key(self) -> str:
        """Key used to diff listings and to index entities by source."""
        ns = f"{self.namespace}/" if self.namespace else ""
        return f"{self.cluster}/{self.group}/{self.kind}/{ns}{self.name}"

    def __str__(self) -> str:
        return self.key


class SourceResource(BaseModel):
    """Snapshot of one discovered object.

    Superseded, never mutated: every poll that detects a change produces a
    new instance.
    """

    model_config = ConfigDict(frozen=True)

    ref: SourceRef
    version: str = Field("", description="API version of the object, e.g. 'v1'")
    plural: str = ""
    resource_version: str = ""
    generation: int = 0
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    body: dict[str, Any] = Field(default_factory=dict, description="Raw object as listed")
    content_hash: str = ""
    discovered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    diagnostics: list[Diagnostic] = Field(default_factory=list)

    @property
    def cluster(self) -> str:
        return self.ref.cluster

    @property
    def group(self) -> str:
        return self.ref.group

    @property
    def kind(self) -> str:
        return self.ref.kind

    @property
    def name(self) -> str:
        return self.ref.name

    @property
    def spec(self) -> dict[str, Any]:
        spec = self.body.get("spec")
        return spec if isinstance(spec, dict) else {}

    @classmethod
    def from_object(
        cls,
        cluster: str,
        obj: dict[str, Any],
        plural: str = "",
    ) -> SourceResource:
        """Build a snapshot from a raw Kubernetes object dict."""
        metadata = obj.get("metadata") or {}
        api_version = obj.get("apiVersion", "")
        if "/" in api_version:
            group, version = api_version.split("/", 1)
        else:
            group, version = "", api_version
        return cls(
            ref=SourceRef(
                cluster=cluster,
                group=group,
                kind=obj.get("kind", ""),
                name=metadata.get("name", ""),
                namespace=metadata.get("namespace"),
            ),
            version=version,
            plural=plural,
            resource_version=str(metadata.get("resourceVersion") or ""),
            generation=int(metadata.get("generation") or 0),
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            body=obj,
            content_hash=content_hash(obj),
        )


# Metadata fields that change without the object's content changing.
_VOLATILE_METADATA = ("resourceVersion", "managedFields", "generation", "uid", "creationTimestamp")


def content_hash(obj: dict[str, Any]) -> str:
    """Hash the meaningful content of an object.

    Status and volatile metadata are excluded so that controller status
    updates do not look like content changes.
    """
    metadata = {
        k: v for k, v in (obj.get("metadata") or {}).items() if k not in _VOLATILE_METADATA
    }
    annotations = metadata.get("annotations")
    if isinstance(annotations, dict):
        metadata["annotations"] = {
            k: v
            for k, v in annotations.items()
            if k != "kubectl.kubernetes.io/last-applied-configuration"
        }
    payload = {
        "apiVersion": obj.get("apiVersion"),
        "kind": obj.get("kind"),
        "metadata": metadata,
        "spec": obj.get("spec"),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class ChangeEvent(BaseModel):
    """One diff result emitted by the scheduler."""

    model_config = ConfigDict(frozen=True)

    change: ChangeType
    ref: SourceRef
    resource: SourceResource | None = Field(
        None, description="Current snapshot; None for removals"
    )
    previous: SourceResource | None = None


class ClusterBatch(BaseModel):
    """All change events from one poll cycle of one cluster, in order."""

    model_config = ConfigDict(frozen=True)

    cluster: str
    events: list[ChangeEvent] = Field(default_factory=list)
    seen: list[SourceRef] = Field(
        default_factory=list, description="Every ref present in this listing"
    )
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def changes(self) -> list[ChangeEvent]:
        """Events other than Unchanged."""
        return [e for e in self.events if e.change != ChangeType.UNCHANGED]
