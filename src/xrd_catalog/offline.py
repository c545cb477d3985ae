"""Offline transform of XRD documents, without any cluster access."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import yaml

from xrd_catalog.catalog.builder import BuildResult, EntityBuilder, assign_generation
from xrd_catalog.catalog.entities import AnyEntity, ApiEntity, EntityKind
from xrd_catalog.clients.base import CRDs
from xrd_catalog.discovery.models import SourceResource

logger = logging.getLogger(__name__)

DEFAULT_CLUSTER = "local"


def load_documents(text: str) -> list[dict[str, Any]]:
    """Parse multi-document YAML (JSON is accepted too) into object dicts.

    ``List`` documents such as ``kubectl get -o yaml`` output are flattened
    into their items.

    Raises:
        ValueError: If the text is not valid YAML or JSON.
    """
    try:
        raw = list(yaml.safe_load_all(text))
    except yaml.YAMLError as e:
        raise ValueError(f"Could not parse input: {e}") from e

    documents: list[dict[str, Any]] = []
    for doc in raw:
        if not isinstance(doc, dict):
            continue
        if doc.get("kind", "").endswith("List") and isinstance(doc.get("items"), list):
            documents.extend(item for item in doc["items"] if isinstance(item, dict))
        else:
            documents.append(doc)
    return documents


def _is(doc: dict[str, Any], crd: Any) -> bool:
    return doc.get("apiVersion", "").split("/", 1)[0] == crd.group and doc.get("kind") == crd.kind


@dataclass
class TransformReport:
    """Build results for every transformable document, in input order."""

    results: list[BuildResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return any(r.degraded for r in self.results)

    def entities(self, only: Iterable[EntityKind] | None = None) -> list[AnyEntity]:
        kinds = set(only) if only else None
        return [
            e
            for r in self.results
            for e in r.entities
            if kinds is None or e.kind in kinds  # type: ignore[attr-defined]
        ]


def transform_documents(
    documents: Iterable[dict[str, Any]],
    cluster: str = DEFAULT_CLUSTER,
    builder: EntityBuilder | None = None,
) -> TransformReport:
    """Run the entity builder over XRD and Composition documents.

    XRDs are built first so that compositions in the same input link to
    their API entities. Other kinds are skipped.
    """
    builder = builder or EntityBuilder(default_owner="unknown")
    report = TransformReport()
    xrds: list[dict[str, Any]] = []
    compositions: list[dict[str, Any]] = []
    for doc in documents:
        if _is(doc, CRDs.XRD):
            xrds.append(doc)
        elif _is(doc, CRDs.COMPOSITION):
            compositions.append(doc)
        else:
            name = (doc.get("metadata") or {}).get("name", "<unnamed>")
            report.skipped.append(f"{doc.get('kind', '<no kind>')}/{name}")
            logger.info(f"Skipping {doc.get('kind')} {name}: not an XRD or Composition")

    apis: dict[tuple[str, str, str], str] = {}

    def resolve(c: str, group: str, kind: str) -> str | None:
        return apis.get((c, group, kind))

    for doc in [*xrds, *compositions]:
        result = builder.build(SourceResource.from_object(cluster, doc), resolve)
        stamped = []
        for entity in result.entities:
            entity = assign_generation(entity, None) or entity
            if isinstance(entity, ApiEntity):
                apis[(cluster, entity.group, entity.xr_kind)] = entity.identifier
            stamped.append(entity)
        result.entities = stamped
        report.results.append(result)
    return report


def render(entities: list[AnyEntity], fmt: str = "yaml") -> str:
    """Serialize entities as catalog descriptor documents."""
    documents = [e.to_catalog_dict() for e in entities]
    if fmt == "json":
        return json.dumps(documents, indent=2, default=str)
    return yaml.safe_dump_all(documents, sort_keys=False, default_flow_style=False)


def validation_lines(report: TransformReport) -> list[str]:
    """One line per built resource plus one per diagnostic."""
    lines: list[str] = []
    for result in report.results:
        diagnostics = [d for e in result.entities for d in e.diagnostics]
        if result.descriptor is not None:
            diagnostics.extend(d for d in result.descriptor.diagnostics if d not in diagnostics)
        status = "DEGRADED" if result.degraded else "OK"
        lines.append(f"{result.source.kind}/{result.source.name}: {status}")
        lines.extend(f"  {d}" for d in diagnostics)
    for skipped in report.skipped:
        lines.append(f"{skipped}: skipped")
    return lines
