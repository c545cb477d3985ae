"""Permission rules as data.

A rule tree is a closed set of frozen models: five predicates, three
combinators and two constants. ``evaluate`` is the only interpreter.

Wire format (conditional-decision style)::

    {"allOf": [...]}   {"anyOf": [...]}   {"not": {...}}
    {"rule": "HAS_ANNOTATION", "params": {"annotation": "...", "value": "..."}}
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from xrd_catalog.catalog.entities import AnyEntity
from xrd_catalog.permissions.context import CallerContext, DecisionResult
from xrd_catalog.utils.errors import PermissionResolutionError

RESOURCE_TYPE = "catalog-entity"


class _Rule(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class HasAnnotation(_Rule):
    """Entity carries an annotation, optionally with a given value."""

    rule: Literal["HAS_ANNOTATION"] = "HAS_ANNOTATION"
    annotation: str
    value: str | None = None


class HasLabel(_Rule):
    """Entity carries a label, optionally with a given value."""

    rule: Literal["HAS_LABEL"] = "HAS_LABEL"
    label: str
    value: str | None = None


class MetadataMatch(_Rule):
    """A metadata field equals (or, for lists, contains) a value."""

    rule: Literal["HAS_METADATA"] = "HAS_METADATA"
    key: str = Field(..., description="Metadata path, e.g. 'name' or 'tags'")
    value: str | None = None


class IsEntityOwner(_Rule):
    """Entity owner is one of the claims (defaults to the caller's ownership refs)."""

    rule: Literal["IS_ENTITY_OWNER"] = "IS_ENTITY_OWNER"
    claims: list[str] | None = None


class IsEntityKind(_Rule):
    """Entity kind is one of the given kinds (case-insensitive)."""

    rule: Literal["IS_ENTITY_KIND"] = "IS_ENTITY_KIND"
    kinds: list[str]


class AllOf(_Rule):
    rule: Literal["ALL_OF"] = "ALL_OF"
    rules: list[Rule] = Field(default_factory=list)


class AnyOf(_Rule):
    rule: Literal["ANY_OF"] = "ANY_OF"
    rules: list[Rule] = Field(default_factory=list)


class Not(_Rule):
    rule: Literal["NOT"] = "NOT"
    inner: Rule


class Allow(_Rule):
    rule: Literal["ALLOW"] = "ALLOW"


class Deny(_Rule):
    rule: Literal["DENY"] = "DENY"


Rule = Annotated[
    Union[
        HasAnnotation,
        HasLabel,
        MetadataMatch,
        IsEntityOwner,
        IsEntityKind,
        AllOf,
        AnyOf,
        Not,
        Allow,
        Deny,
    ],
    Field(discriminator="rule"),
]

AllOf.model_rebuild()
AnyOf.model_rebuild()
Not.model_rebuild()

ALLOW = Allow()
DENY = Deny()


def _matches_value(actual: Any, expected: str | None) -> bool:
    if actual is None:
        return False
    if expected is None:
        return True
    if isinstance(actual, list):
        return expected in actual
    return str(actual) == expected


def evaluate(rule: Rule, entity: AnyEntity, caller: CallerContext) -> bool:
    """Decide whether ``rule`` holds for an entity and caller.

    Pure: uses only data already on the entity and the caller.
    """
    if isinstance(rule, Allow):
        return True
    if isinstance(rule, Deny):
        return False
    if isinstance(rule, HasAnnotation):
        return _matches_value(entity.annotations.get(rule.annotation), rule.value)
    if isinstance(rule, HasLabel):
        return _matches_value(entity.labels.get(rule.label), rule.value)
    if isinstance(rule, MetadataMatch):
        return _matches_value(entity.metadata_field(rule.key), rule.value)
    if isinstance(rule, IsEntityOwner):
        claims = rule.claims if rule.claims is not None else caller.ownership_entity_refs
        return entity.owner in claims
    if isinstance(rule, IsEntityKind):
        return entity.kind.value.lower() in {k.lower() for k in rule.kinds}
    if isinstance(rule, AllOf):
        return all(evaluate(r, entity, caller) for r in rule.rules)
    if isinstance(rule, AnyOf):
        return any(evaluate(r, entity, caller) for r in rule.rules)
    if isinstance(rule, Not):
        return not evaluate(rule.inner, entity, caller)
    raise TypeError(f"Unknown rule type: {type(rule).__name__}")


_PREDICATES: dict[str, type[_Rule]] = {
    "HAS_ANNOTATION": HasAnnotation,
    "HAS_LABEL": HasLabel,
    "HAS_METADATA": MetadataMatch,
    "IS_ENTITY_OWNER": IsEntityOwner,
    "IS_ENTITY_KIND": IsEntityKind,
}


def parse_rule(data: Any) -> Rule:
    """Decode a rule tree from its wire format.

    ``"allow"`` and ``"deny"`` (any case) and booleans are accepted as constants.

    Raises:
        PermissionResolutionError: If the data is not a valid rule tree.
    """
    if isinstance(data, bool):
        return ALLOW if data else DENY
    if isinstance(data, str):
        if data.lower() == "allow":
            return ALLOW
        if data.lower() == "deny":
            return DENY
        raise PermissionResolutionError(f"Unknown rule constant: {data!r}")
    if not isinstance(data, dict):
        raise PermissionResolutionError(f"Rule must be an object, got {type(data).__name__}")

    if "allOf" in data:
        return AllOf(rules=[parse_rule(r) for r in _as_list(data["allOf"], "allOf")])
    if "anyOf" in data:
        return AnyOf(rules=[parse_rule(r) for r in _as_list(data["anyOf"], "anyOf")])
    if "not" in data:
        return Not(inner=parse_rule(data["not"]))

    name = data.get("rule")
    model = _PREDICATES.get(str(name).upper()) if name else None
    if model is None:
        raise PermissionResolutionError(f"Unknown permission rule: {name!r}")
    resource_type = data.get("resourceType")
    if resource_type is not None and resource_type != RESOURCE_TYPE:
        raise PermissionResolutionError(f"Unsupported resource type: {resource_type!r}")
    try:
        return model.model_validate(data.get("params") or {})  # type: ignore[return-value]
    except ValidationError as e:
        raise PermissionResolutionError(f"Invalid params for {name}: {e}") from e


def _as_list(value: Any, key: str) -> list[Any]:
    if not isinstance(value, list):
        raise PermissionResolutionError(f"'{key}' must be a list")
    return value


def to_wire(rule: Rule) -> Any:
    """Encode a rule tree in the wire format accepted by ``parse_rule``."""
    if isinstance(rule, Allow):
        return "allow"
    if isinstance(rule, Deny):
        return "deny"
    if isinstance(rule, AllOf):
        return {"allOf": [to_wire(r) for r in rule.rules]}
    if isinstance(rule, AnyOf):
        return {"anyOf": [to_wire(r) for r in rule.rules]}
    if isinstance(rule, Not):
        return {"not": to_wire(rule.inner)}
    return {
        "rule": rule.rule,
        "resourceType": RESOURCE_TYPE,
        "params": rule.model_dump(exclude={"rule"}, exclude_none=True),
    }


class PermissionDecision(BaseModel):
    """Answer of a rule resolver for one caller."""

    model_config = ConfigDict(frozen=True)

    result: DecisionResult
    conditions: Rule | None = None

    def to_rule(self) -> Rule:
        """Collapse the decision into a single rule tree."""
        if self.result == DecisionResult.ALLOW:
            return ALLOW
        if self.result == DecisionResult.DENY or self.conditions is None:
            return DENY
        return self.conditions

    @classmethod
    def from_wire(cls, data: Any) -> PermissionDecision:
        """Decode ``{"result": ..., "conditions": ...}``.

        Raises:
            PermissionResolutionError: On an unknown result or malformed conditions.
        """
        if not isinstance(data, dict):
            raise PermissionResolutionError("Decision must be an object")
        try:
            result = DecisionResult(str(data.get("result", "")).upper())
        except ValueError as e:
            raise PermissionResolutionError(f"Unknown decision: {data.get('result')!r}") from e
        if result != DecisionResult.CONDITIONAL:
            return cls(result=result)
        if "conditions" not in data:
            raise PermissionResolutionError("Conditional decision without conditions")
        return cls(result=result, conditions=parse_rule(data["conditions"]))
