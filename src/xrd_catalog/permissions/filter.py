"""The single point deciding which entities a caller may see."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from xrd_catalog.catalog.entities import AnyEntity
from xrd_catalog.permissions.context import CallerContext
from xrd_catalog.permissions.policy import RuleResolver
from xrd_catalog.permissions.rules import DENY, Rule, evaluate
from xrd_catalog.utils.errors import PermissionResolutionError

logger = logging.getLogger(__name__)


class PermissionFilter:
    """Resolves the caller's rule once per query and applies it per candidate.

    Fails closed: when no decision can be obtained the caller sees nothing.
    """

    def __init__(self, resolver: RuleResolver) -> None:
        self._resolver = resolver

    async def rule_for(self, caller: CallerContext) -> Rule:
        try:
            decision = await self._resolver.resolve(caller)
        except PermissionResolutionError as e:
            logger.warning(f"Permission resolution failed for {caller.user_entity_ref}: {e}")
            return DENY
        return decision.to_rule()

    @staticmethod
    def apply(rule: Rule, entities: Iterable[AnyEntity], caller: CallerContext) -> list[AnyEntity]:
        """Keep the entities the rule allows, preserving order."""
        return [e for e in entities if evaluate(rule, e, caller)]

    async def filter(self, entities: Iterable[AnyEntity], caller: CallerContext) -> list[AnyEntity]:
        rule = await self.rule_for(caller)
        return self.apply(rule, entities, caller)

    async def allows(self, entity: AnyEntity, caller: CallerContext) -> bool:
        rule = await self.rule_for(caller)
        return evaluate(rule, entity, caller)
