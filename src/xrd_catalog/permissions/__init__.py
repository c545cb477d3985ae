"""Conditional permission rules and the filter applying them to query results."""

from xrd_catalog.permissions.context import CallerContext, DecisionResult
from xrd_catalog.permissions.filter import PermissionFilter
from xrd_catalog.permissions.rules import PermissionDecision, evaluate, parse_rule

__all__ = [
    "CallerContext",
    "DecisionResult",
    "PermissionDecision",
    "PermissionFilter",
    "evaluate",
    "parse_rule",
]
