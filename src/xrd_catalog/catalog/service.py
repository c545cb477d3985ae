"""Read path: catalog queries filtered per caller."""

from __future__ import annotations

import logging
from typing import Any

from xrd_catalog.catalog.entities import AnyEntity, EntityKind
from xrd_catalog.catalog.store import CatalogStore
from xrd_catalog.permissions.context import CallerContext
from xrd_catalog.permissions.filter import PermissionFilter
from xrd_catalog.utils.errors import EntityNotFoundError
from xrd_catalog.utils.response import PaginatedResponse, ResponseBuilder, Verbosity, paginate

logger = logging.getLogger(__name__)


def parse_kind(value: str | EntityKind | None) -> EntityKind | None:
    """Parse an entity kind case-insensitively.

    Raises:
        ValueError: If the kind is unknown.
    """
    if value is None or isinstance(value, EntityKind):
        return value
    for kind in EntityKind:
        if kind.value.lower() == value.strip().lower():
            return kind
    raise ValueError(f"Unknown entity kind '{value}'. Valid kinds: {[k.value for k in EntityKind]}")


class CatalogQueryService:
    """Entity queries; every result passes through the permission filter.

    Hidden and missing entities are indistinguishable to the caller.
    """

    def __init__(
        self,
        store: CatalogStore,
        permissions: PermissionFilter,
        max_limit: int = 500,
    ) -> None:
        self._store = store
        self._permissions = permissions
        self._max_limit = max_limit

    async def list_entities(
        self,
        caller: CallerContext,
        kind: str | EntityKind | None = None,
        label_filter: dict[str, str] | None = None,
        cluster: str | None = None,
    ) -> list[AnyEntity]:
        """Entities visible to the caller, ordered by identifier."""
        candidates = self._store.query(
            kind=parse_kind(kind),
            labels=label_filter,
            cluster=cluster,
        )
        return await self._permissions.filter(candidates, caller)

    async def get_entity(self, identifier: str, caller: CallerContext) -> AnyEntity:
        """Get one entity.

        Raises:
            EntityNotFoundError: If it does not exist or the caller may not see it.
        """
        entity = self._store.get(identifier)
        if entity is None or not await self._permissions.allows(entity, caller):
            raise EntityNotFoundError(identifier)
        return entity

    async def list_page(
        self,
        caller: CallerContext,
        kind: str | EntityKind | None = None,
        label_filter: dict[str, str] | None = None,
        cluster: str | None = None,
        offset: int = 0,
        limit: int | None = None,
        verbosity: Verbosity = Verbosity.STANDARD,
    ) -> dict[str, Any]:
        """Paginated, formatted listing; filtering happens before pagination."""
        if limit is not None:
            limit = min(limit, self._max_limit)
        entities = await self.list_entities(caller, kind, label_filter, cluster)
        page, total = paginate(entities, offset, limit)
        items = [ResponseBuilder.entity_list_item(e, verbosity) for e in page]
        return PaginatedResponse.build(items, total, offset, limit)
