"""MCP Tools for catalog queries."""

import logging
from typing import TYPE_CHECKING, Any

from mcp.server.fastmcp import FastMCP

from xrd_catalog.catalog.entities import TemplateEntity
from xrd_catalog.permissions.context import CallerContext
from xrd_catalog.utils.errors import EntityNotFoundError
from xrd_catalog.utils.response import ResponseBuilder, Verbosity

if TYPE_CHECKING:
    from xrd_catalog.server import CatalogServer

logger = logging.getLogger(__name__)


def caller_context(user: str | None, groups: list[str] | None) -> CallerContext:
    """Caller context from tool arguments; no user means an anonymous caller."""
    if user:
        return CallerContext.for_user(user, groups)
    return CallerContext(ownership_entity_refs=list(groups or []))


def register_tools(mcp: FastMCP, server: "CatalogServer") -> None:
    """Register catalog query tools with the MCP server."""

    @mcp.tool()
    async def list_catalog_entities(
        kind: str | None = None,
        cluster: str | None = None,
        labels: dict[str, str] | None = None,
        user: str | None = None,
        groups: list[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
        verbosity: str = "standard",
    ) -> dict[str, Any]:
        """List catalog entities generated from discovered Crossplane XRDs.

        Results only contain entities the caller may see. Entities of an
        unreachable cluster are still listed while within the staleness window.

        Args:
            kind: Entity kind filter: Template, API or Resource.
            cluster: Only entities discovered in this cluster.
            labels: Label equality filter, e.g. {"team": "data"}.
            user: Caller entity ref, e.g. "user:default/jane".
            groups: Group entity refs the caller belongs to.
            limit: Maximum number of items to return (None for all).
            offset: Starting offset for pagination (default: 0).
            verbosity: "minimal", "standard" or "full".

        Returns:
            Paginated list of entities with total and has_more.
        """
        caller = caller_context(user, groups)
        if limit is None:
            limit = server.config.default_list_limit
        try:
            return await server.engine.query.list_page(
                caller,
                kind=kind,
                label_filter=labels,
                cluster=cluster,
                offset=offset,
                limit=limit,
                verbosity=Verbosity.from_str(verbosity),
            )
        except ValueError as e:
            return {"error": str(e)}

    @mcp.tool()
    async def get_catalog_entity(
        identifier: str,
        user: str | None = None,
        groups: list[str] | None = None,
        verbosity: str = "full",
    ) -> dict[str, Any]:
        """Get one catalog entity by identifier.

        Args:
            identifier: Entity identifier, "<kind>:<cluster>/<group>/<Kind>/[<ns>/]<name>",
                e.g. "api:prod/apiextensions.crossplane.io/CompositeResourceDefinition/xdb.io".
            user: Caller entity ref.
            groups: Group entity refs the caller belongs to.
            verbosity: "minimal", "standard" or "full".

        Returns:
            Entity details, or an error when it does not exist or is not visible.
        """
        caller = caller_context(user, groups)
        try:
            entity = await server.engine.query.get_entity(identifier, caller)
        except EntityNotFoundError as e:
            return {"error": str(e)}
        return ResponseBuilder.entity_detail(entity, Verbosity.from_str(verbosity))

    @mcp.tool()
    async def get_template_form(
        identifier: str,
        user: str | None = None,
        groups: list[str] | None = None,
    ) -> dict[str, Any]:
        """Get the provisioning form of a Template entity.

        Args:
            identifier: Template entity identifier.
            user: Caller entity ref.
            groups: Group entity refs the caller belongs to.

        Returns:
            Form parameters, action steps and field descriptors.
        """
        caller = caller_context(user, groups)
        try:
            entity = await server.engine.query.get_entity(identifier, caller)
        except EntityNotFoundError as e:
            return {"error": str(e)}
        if not isinstance(entity, TemplateEntity):
            return {"error": f"Entity {identifier} is not a Template"}
        return {
            "identifier": entity.identifier,
            "title": entity.title,
            "step_profile": entity.step_profile,
            "parameters": entity.parameters,
            "steps": entity.steps,
            "fields": [
                {
                    "path": f.path,
                    "type": f.field_type.value,
                    "required": f.required,
                }
                for f in entity.form.iter_fields()
            ],
            "degraded": entity.degraded,
            "diagnostics": [str(d) for d in entity.diagnostics],
        }
