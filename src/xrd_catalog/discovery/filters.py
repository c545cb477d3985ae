"""Discovery filters: label/annotation selectors, group and namespace rules.

Selectors use the Kubernetes label selector syntax for both labels and
annotations::

    env=prod, tier!=cache, team in (a, b), region notin (eu), managed, !legacy
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from xrd_catalog.config import DiscoveryFilter
from xrd_catalog.discovery.models import SourceResource
from xrd_catalog.utils.errors import ConfigurationError

_KEY = r"[A-Za-z0-9]([A-Za-z0-9._/-]*[A-Za-z0-9])?"
_VALUE = r"[A-Za-z0-9._/:-]*"

_SET_RE = re.compile(rf"^(?P<key>{_KEY})\s+(?P<op>in|notin)\s*\((?P<values>[^()]*)\)$")
_EQ_RE = re.compile(rf"^(?P<key>{_KEY})\s*(?P<op>==|=|!=)\s*(?P<value>{_VALUE})$")
_EXISTS_RE = re.compile(rf"^(?P<neg>!)?\s*(?P<key>{_KEY})$")
_VALUE_RE = re.compile(rf"^{_VALUE}$")


class Operator(str, Enum):
    """Selector requirement operators."""

    EQUALS = "="
    NOT_EQUALS = "!="
    IN = "in"
    NOT_IN = "notin"
    EXISTS = "exists"
    NOT_EXISTS = "!exists"


@dataclass(frozen=True)
class Requirement:
    """One selector requirement."""

    key: str
    operator: Operator
    values: tuple[str, ...] = ()

    def matches(self, data: Mapping[str, str]) -> bool:
        present = self.key in data
        value = data.get(self.key)
        if self.operator == Operator.EXISTS:
            return present
        if self.operator == Operator.NOT_EXISTS:
            return not present
        if self.operator == Operator.EQUALS:
            return present and value == self.values[0]
        if self.operator == Operator.NOT_EQUALS:
            return not present or value != self.values[0]
        if self.operator == Operator.IN:
            return present and value in self.values
        # NOT_IN
        return not present or value not in self.values


@dataclass(frozen=True)
class Selector:
    """Conjunction of requirements."""

    requirements: tuple[Requirement, ...] = ()
    source: str = ""

    def matches(self, data: Mapping[str, str]) -> bool:
        return all(r.matches(data) for r in self.requirements)

    def __bool__(self) -> bool:
        return bool(self.requirements)


def _split_requirements(expression: str) -> list[str]:
    """Split on commas that are not inside parentheses."""
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in expression:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise ConfigurationError(f"Unbalanced ')' in selector: {expression!r}")
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    if depth != 0:
        raise ConfigurationError(f"Unbalanced '(' in selector: {expression!r}")
    parts.append("".join(current).strip())
    return parts


def parse_selector(expression: str | None) -> Selector:
    """Parse a selector expression.

    Raises:
        ConfigurationError: If the expression cannot be parsed.
    """
    if expression is None or not expression.strip():
        return Selector()

    requirements: list[Requirement] = []
    for part in _split_requirements(expression):
        if not part:
            raise ConfigurationError(f"Empty requirement in selector: {expression!r}")

        match = _SET_RE.match(part)
        if match:
            values = tuple(v.strip() for v in match.group("values").split(",") if v.strip())
            if not values or not all(_VALUE_RE.match(v) for v in values):
                raise ConfigurationError(f"Invalid value set in selector: {part!r}")
            op = Operator.IN if match.group("op") == "in" else Operator.NOT_IN
            requirements.append(Requirement(match.group("key"), op, values))
            continue

        match = _EQ_RE.match(part)
        if match:
            op = Operator.NOT_EQUALS if match.group("op") == "!=" else Operator.EQUALS
            requirements.append(Requirement(match.group("key"), op, (match.group("value"),)))
            continue

        match = _EXISTS_RE.match(part)
        if match:
            op = Operator.NOT_EXISTS if match.group("neg") else Operator.EXISTS
            requirements.append(Requirement(match.group("key"), op))
            continue

        raise ConfigurationError(f"Unparseable selector requirement: {part!r}")

    return Selector(requirements=tuple(requirements), source=expression.strip())


def api_group_of(resource: SourceResource) -> str:
    """API group a resource belongs to for group filtering."""
    spec = resource.spec
    defined = spec.get("group")
    if isinstance(defined, str):
        return defined
    type_ref = spec.get("compositeTypeRef")
    if isinstance(type_ref, dict):
        api_version = str(type_ref.get("apiVersion") or "")
        return api_version.split("/", 1)[0] if "/" in api_version else ""
    return resource.group


@dataclass(frozen=True)
class CompiledFilter:
    """A validated discovery filter ready to be applied to listings."""

    labels: Selector = field(default_factory=Selector)
    annotations: Selector = field(default_factory=Selector)
    include_groups: frozenset[str] = frozenset()
    exclude_groups: frozenset[str] = frozenset()
    exclude_namespaces: frozenset[str] = frozenset()

    @property
    def server_label_selector(self) -> str | None:
        """Label selector pushed down to the API server."""
        return self.labels.source or None

    def group_allowed(self, group: str) -> bool:
        if group in self.exclude_groups:
            return False
        return not self.include_groups or group in self.include_groups

    def matches(self, resource: SourceResource) -> bool:
        """Check a listed resource against every filter rule.

        For XRDs the group checked is the API group the XRD defines, and for
        Compositions the group of the composite type they implement, not the
        Crossplane group of the object itself.
        """
        if resource.ref.namespace and resource.ref.namespace in self.exclude_namespaces:
            return False
        if not self.group_allowed(api_group_of(resource)):
            return False
        return self.labels.matches(resource.labels) and self.annotations.matches(
            resource.annotations
        )


def compile_filter(discovery: DiscoveryFilter) -> CompiledFilter:
    """Validate and compile the configured discovery filter.

    Raises:
        ConfigurationError: If a selector is unparseable or groups overlap.
    """
    include = frozenset(discovery.include_groups)
    exclude = frozenset(discovery.exclude_groups)
    overlap = include & exclude
    if overlap:
        raise ConfigurationError(
            f"Groups both included and excluded: {', '.join(sorted(overlap))}"
        )
    return CompiledFilter(
        labels=parse_selector(discovery.label_selector),
        annotations=parse_selector(discovery.annotation_selector),
        include_groups=include,
        exclude_groups=exclude,
        exclude_namespaces=frozenset(discovery.exclude_namespaces),
    )
