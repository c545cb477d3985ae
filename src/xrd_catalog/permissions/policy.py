"""Rule resolvers: map a caller onto the rule tree that applies to it."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

import yaml

from xrd_catalog.permissions.context import CallerContext, DecisionResult
from xrd_catalog.permissions.rules import (
    DENY,
    AnyOf,
    PermissionDecision,
    Rule,
    parse_rule,
)
from xrd_catalog.utils.errors import ConfigurationError, PermissionResolutionError

logger = logging.getLogger(__name__)


class RuleResolver(Protocol):
    """Supplies the permission decision for a caller."""

    async def resolve(self, caller: CallerContext) -> PermissionDecision: ...


class StaticRuleResolver:
    """Same rule for every caller."""

    def __init__(self, rule: Rule) -> None:
        self._rule = rule

    async def resolve(self, caller: CallerContext) -> PermissionDecision:
        return PermissionDecision(result=DecisionResult.CONDITIONAL, conditions=self._rule)


class PolicyRuleResolver:
    """Rules per user and group from a policy document.

    Example policy::

        default: deny
        groups:
          group:default/platform-team: allow
          group:default/developers:
            rule: HAS_ANNOTATION
            params:
              annotation: xrdcatalog.dev/source-cluster
              value: dev
        users:
          user:default/auditor: {rule: IS_ENTITY_KIND, params: {kinds: [API]}}

    Every matching user and group rule applies (OR); callers matching none
    get the default rule.
    """

    def __init__(
        self,
        default: Rule = DENY,
        groups: dict[str, Rule] | None = None,
        users: dict[str, Rule] | None = None,
    ) -> None:
        self._default = default
        self._groups = groups or {}
        self._users = users or {}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PolicyRuleResolver:
        """Build a resolver from a parsed policy document.

        Raises:
            ConfigurationError: If any rule in the policy is malformed.
        """
        try:
            default = parse_rule(data["default"]) if "default" in data else DENY
            groups = {str(k): parse_rule(v) for k, v in (data.get("groups") or {}).items()}
            users = {str(k): parse_rule(v) for k, v in (data.get("users") or {}).items()}
        except PermissionResolutionError as e:
            raise ConfigurationError(f"Invalid permission policy: {e}") from e
        except AttributeError as e:
            raise ConfigurationError("Permission policy 'groups'/'users' must be mappings") from e
        return cls(default=default, groups=groups, users=users)

    @classmethod
    def from_file(cls, path: Path) -> PolicyRuleResolver:
        """Load a YAML policy file.

        Raises:
            ConfigurationError: If the file cannot be read or parsed.
        """
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except OSError as e:
            raise ConfigurationError(f"Cannot read permission policy {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Malformed permission policy {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Permission policy {path} must be a mapping")
        resolver = cls.from_dict(data)
        logger.info(
            f"Loaded permission policy {path}: {len(resolver._groups)} group rule(s), "
            f"{len(resolver._users)} user rule(s)"
        )
        return resolver

    def rule_for(self, caller: CallerContext) -> Rule:
        matched: list[Rule] = []
        if caller.user_entity_ref and caller.user_entity_ref in self._users:
            matched.append(self._users[caller.user_entity_ref])
        for ref in caller.ownership_entity_refs:
            if ref in self._groups:
                matched.append(self._groups[ref])
        if not matched:
            return self._default
        if len(matched) == 1:
            return matched[0]
        return AnyOf(rules=matched)

    async def resolve(self, caller: CallerContext) -> PermissionDecision:
        return PermissionDecision(
            result=DecisionResult.CONDITIONAL, conditions=self.rule_for(caller)
        )
