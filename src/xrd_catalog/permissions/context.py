"""Caller identity and permission decisions."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CallerContext(BaseModel):
    """Identity of the caller as supplied by the surrounding auth layer."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_entity_ref: str | None = Field(
        None, alias="userEntityRef", description="e.g. 'user:default/jane'"
    )
    ownership_entity_refs: list[str] = Field(
        default_factory=list,
        alias="ownershipEntityRefs",
        description="The user and every group the user belongs to",
    )
    claims: dict[str, Any] = Field(default_factory=dict)

    @property
    def groups(self) -> list[str]:
        return [ref for ref in self.ownership_entity_refs if ref.startswith("group:")]

    @property
    def anonymous(self) -> bool:
        return self.user_entity_ref is None and not self.ownership_entity_refs

    @classmethod
    def for_user(cls, user: str, groups: list[str] | None = None) -> CallerContext:
        """Context of a user and its groups; the user owns itself."""
        return cls(user_entity_ref=user, ownership_entity_refs=[user, *(groups or [])])


class DecisionResult(str, Enum):
    """Outcome of a permission decision."""

    ALLOW = "ALLOW"
    DENY = "DENY"
    CONDITIONAL = "CONDITIONAL"
