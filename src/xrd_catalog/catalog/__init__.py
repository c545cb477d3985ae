"""Catalog entities, their builder, and the store that serves them.

Exports:
    Entities:
        - TemplateEntity, ApiEntity, ResourceEntity
        - EntityKind, RelationType, entity_identifier

    Build and store:
        - EntityBuilder: Source resources to entities
        - CatalogStore: Versioned, indexed entity cache
        - CatalogSynchronizer: Applies discovery batches to the store
"""

from xrd_catalog.catalog.builder import EntityBuilder
from xrd_catalog.catalog.entities import (
    ApiEntity,
    EntityKind,
    RelationType,
    ResourceEntity,
    TemplateEntity,
    entity_identifier,
)
from xrd_catalog.catalog.store import CatalogStore
from xrd_catalog.catalog.synchronizer import CatalogSynchronizer

__all__ = [
    "ApiEntity",
    "CatalogStore",
    "CatalogSynchronizer",
    "EntityBuilder",
    "EntityKind",
    "RelationType",
    "ResourceEntity",
    "TemplateEntity",
    "entity_identifier",
]
