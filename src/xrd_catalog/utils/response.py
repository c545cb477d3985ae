"""Response formatting utilities for context window optimization.

This module provides verbosity levels and response builders to keep catalog
query results small when clients only need identifiers and status.
"""

from enum import Enum
from typing import Any


class Verbosity(str, Enum):
    """Response verbosity levels.

    - MINIMAL: identifier, kind, name and degraded flag
    - STANDARD: key metadata, owner, relations
    - FULL: the complete catalog descriptor document
    """

    MINIMAL = "minimal"
    STANDARD = "standard"
    FULL = "full"

    @classmethod
    def from_str(cls, value: str | None) -> "Verbosity":
        """Parse verbosity from string, defaulting to STANDARD."""
        if value is None:
            return cls.STANDARD
        try:
            return cls(value.lower())
        except ValueError:
            return cls.STANDARD


class PaginatedResponse:
    """Builder for paginated list responses."""

    @staticmethod
    def build(
        items: list[dict[str, Any]],
        total: int,
        offset: int = 0,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """Build a paginated response with metadata.

        Args:
            items: The paginated items to return.
            total: Total count of items before pagination.
            offset: Starting offset used.
            limit: Limit used (None means all items).

        Returns:
            Response dict with items and pagination metadata.
        """
        return {
            "items": items,
            "total": total,
            "offset": offset,
            "limit": limit,
            "has_more": offset + len(items) < total,
        }


def paginate(
    items: list[Any],
    offset: int = 0,
    limit: int | None = None,
) -> tuple[list[Any], int]:
    """Apply pagination to a list of items.

    Args:
        items: Full list of items.
        offset: Starting offset (0-indexed).
        limit: Maximum items to return (None for all).

    Returns:
        Tuple of (paginated items, total count).
    """
    total = len(items)
    result = items[max(offset, 0) :]
    if limit is not None and limit > 0:
        result = result[:limit]
    return result, total


class ResponseBuilder:
    """Formats catalog entities at different verbosity levels."""

    @staticmethod
    def entity_list_item(entity: Any, verbosity: Verbosity = Verbosity.STANDARD) -> dict[str, Any]:
        """Format an entity for list responses.

        Args:
            entity: Catalog entity instance.
            verbosity: Response verbosity level.

        Returns:
            Formatted entity dict.
        """
        if verbosity == Verbosity.MINIMAL:
            return {
                "identifier": entity.identifier,
                "kind": entity.kind.value,
                "name": entity.name,
                "degraded": entity.degraded,
            }

        if verbosity == Verbosity.FULL:
            return ResponseBuilder.entity_detail(entity, Verbosity.FULL)

        result: dict[str, Any] = {
            "identifier": entity.identifier,
            "kind": entity.kind.value,
            "name": entity.name,
            "title": entity.title,
            "cluster": entity.cluster,
            "owner": entity.owner,
            "generation": entity.generation,
            "degraded": entity.degraded,
        }
        if entity.degraded:
            result["degraded_reason"] = entity.degraded_reason
        return result

    @staticmethod
    def entity_detail(entity: Any, verbosity: Verbosity = Verbosity.FULL) -> dict[str, Any]:
        """Format an entity for detail responses.

        Args:
            entity: Catalog entity instance.
            verbosity: Response verbosity level.

        Returns:
            Formatted entity dict.
        """
        if verbosity == Verbosity.MINIMAL:
            return ResponseBuilder.entity_list_item(entity, Verbosity.MINIMAL)

        result = ResponseBuilder.entity_list_item(entity, Verbosity.STANDARD)
        result["description"] = entity.description
        result["system"] = entity.system
        result["source"] = entity.source.key
        result["relations"] = [
            {"type": r.type.value, "target": r.target} for r in entity.relations
        ]

        if verbosity == Verbosity.FULL:
            result["labels"] = dict(entity.labels)
            result["annotations"] = dict(entity.annotations)
            result["diagnostics"] = [d.model_dump(mode="json") for d in entity.diagnostics]
            result["document"] = entity.to_catalog_dict()

        return result
