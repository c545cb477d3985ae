"""OpenAPI v3 schema to form descriptor transformation.

Pure functions over already-fetched data: no cluster or network access.
Malformed fragments are skipped with a diagnostic instead of failing the
whole transform, so one bad property never blocks an otherwise valid XRD.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from xrd_catalog.schema.descriptors import (
    ArrayField,
    EnumField,
    FieldType,
    FormDescriptor,
    ObjectField,
    ScalarField,
    Validation,
)
from xrd_catalog.utils.diagnostics import Diagnostic, warning
from xrd_catalog.utils.errors import SchemaTransformError

logger = logging.getLogger(__name__)

MAX_DEPTH = 32

_SCALAR_TYPES = {
    "string": FieldType.STRING,
    "number": FieldType.NUMBER,
    "integer": FieldType.NUMBER,
    "boolean": FieldType.BOOLEAN,
}

# schema keyword -> Validation attribute
_VALIDATION_KEYWORDS = {
    "pattern": "pattern",
    "format": "format",
    "minimum": "minimum",
    "maximum": "maximum",
    "exclusiveMinimum": "exclusive_minimum",
    "exclusiveMaximum": "exclusive_maximum",
    "multipleOf": "multiple_of",
    "minLength": "min_length",
    "maxLength": "max_length",
    "minItems": "min_items",
    "maxItems": "max_items",
    "uniqueItems": "unique_items",
}


def schema_hash(schema: Any) -> str:
    """Hash a raw schema; declaration order is significant."""
    encoded = json.dumps(schema, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@dataclass
class _Context:
    root: dict[str, Any]
    diagnostics: list[Diagnostic] = field(default_factory=list)
    ref_stack: list[str] = field(default_factory=list)

    def warn(self, code: str, message: str, path: str) -> None:
        self.diagnostics.append(warning(code, message, path))


def _resolve_ref(ref: str, ctx: _Context, path: str) -> dict[str, Any] | None:
    """Resolve a local JSON pointer; cycles and remote refs are rejected."""
    if ref in ctx.ref_stack:
        ctx.warn("circular-ref", f"Circular $ref {ref} skipped", path)
        return None
    if not ref.startswith("#/"):
        ctx.warn("unsupported-ref", f"Non-local $ref {ref} skipped", path)
        return None
    node: Any = ctx.root
    for token in ref[2:].split("/"):
        token = token.replace("~1", "/").replace("~0", "~")
        if not isinstance(node, dict) or token not in node:
            ctx.warn("unresolved-ref", f"$ref {ref} does not resolve", path)
            return None
        node = node[token]
    if not isinstance(node, dict):
        ctx.warn("unresolved-ref", f"$ref {ref} does not point at a schema", path)
        return None
    return node


def _validation(node: dict[str, Any], ctx: _Context, path: str) -> Validation:
    values: dict[str, Any] = {}
    for keyword, attr in _VALIDATION_KEYWORDS.items():
        if keyword in node:
            values[attr] = node[keyword]
    if node.get("type") == "integer":
        values["integer"] = True
    if "enum" in node and isinstance(node["enum"], list):
        values["enum_values"] = list(node["enum"])
    try:
        return Validation(**values)
    except ValueError as e:
        ctx.warn("invalid-constraint", f"Constraints ignored: {e.__class__.__name__}", path)
        return Validation()


def _value_matches(value: Any, field_type: FieldType) -> bool:
    if field_type == FieldType.STRING:
        return isinstance(value, str)
    if field_type == FieldType.BOOLEAN:
        return isinstance(value, bool)
    if field_type == FieldType.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if field_type == FieldType.ARRAY:
        return isinstance(value, list)
    if field_type == FieldType.OBJECT:
        return isinstance(value, dict)
    return True


def _default(node: dict[str, Any], field_type: FieldType, ctx: _Context, path: str) -> Any:
    if "default" not in node:
        return None
    value = node["default"]
    if not _value_matches(value, field_type):
        ctx.warn(
            "invalid-default", f"Default {value!r} does not match type {field_type.value}", path
        )
        return None
    return value


def _enum_value_type(values: list[Any], declared: str | None) -> FieldType:
    if declared in _SCALAR_TYPES:
        return _SCALAR_TYPES[declared]
    if values and all(isinstance(v, bool) for v in values):
        return FieldType.BOOLEAN
    if values and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
        return FieldType.NUMBER
    return FieldType.STRING


def _decode(
    node: Any,
    name: str,
    path: str,
    required: bool,
    ctx: _Context,
    depth: int,
) -> Any:
    """Decode one schema node into a field variant, or None when skipped."""
    if depth > MAX_DEPTH:
        ctx.warn("max-depth", f"Schema nested deeper than {MAX_DEPTH} levels", path)
        return None
    if not isinstance(node, dict):
        ctx.warn("malformed", "Schema node is not an object", path)
        return None

    ref = node.get("$ref")
    if isinstance(ref, str):
        target = _resolve_ref(ref, ctx, path)
        if target is None:
            return None
        ctx.ref_stack.append(ref)
        try:
            merged = {**target, **{k: v for k, v in node.items() if k != "$ref"}}
            return _decode(merged, name, path, required, ctx, depth + 1)
        finally:
            ctx.ref_stack.pop()

    common: dict[str, Any] = {
        "name": name,
        "path": path,
        "title": node.get("title") if isinstance(node.get("title"), str) else None,
        "description": (
            node.get("description") if isinstance(node.get("description"), str) else None
        ),
        "required": required,
    }
    declared = node.get("type")

    enum = node.get("enum")
    if enum is not None:
        if not isinstance(enum, list) or not enum:
            ctx.warn("malformed-enum", "enum must be a non-empty list", path)
            return None
        value_type = _enum_value_type(enum, declared if isinstance(declared, str) else None)
        default = node.get("default")
        if default is not None and default not in enum:
            ctx.warn("invalid-default", f"Default {default!r} is not an enum value", path)
            default = None
        return EnumField(
            **common,
            default=default,
            values=list(enum),
            value_type=value_type,
            validation=_validation(node, ctx, path),
        )

    if declared is None:
        if node.get("x-kubernetes-int-or-string"):
            return ScalarField(
                **common,
                type=FieldType.STRING,
                default=node.get("default"),
                validation=Validation(format="int-or-string"),
            )
        if node.get("x-kubernetes-preserve-unknown-fields"):
            return ObjectField(**common, open=True)
        ctx.warn("missing-type", f"Property '{name}' has no type and was skipped", path)
        return None

    if not isinstance(declared, str):
        ctx.warn("malformed-type", f"Unsupported type declaration {declared!r}", path)
        return None

    if declared == "object":
        return _decode_object(node, common, ctx, depth)

    if declared == "array":
        items = node.get("items")
        if items is None:
            ctx.warn("missing-items", f"Array '{name}' declares no items and was skipped", path)
            return None
        item = _decode(items, name, f"{path}[]", False, ctx, depth + 1)
        if item is None:
            return None
        return ArrayField(
            **common,
            item=item,
            default=_default(node, FieldType.ARRAY, ctx, path),
            validation=_validation(node, ctx, path),
        )

    scalar = _SCALAR_TYPES.get(declared)
    if scalar is None:
        ctx.warn("unknown-type", f"Unknown type '{declared}' skipped", path)
        return None
    return ScalarField(
        **common,
        type=scalar,
        default=_default(node, scalar, ctx, path),
        validation=_validation(node, ctx, path),
    )


def _decode_object(
    node: dict[str, Any],
    common: dict[str, Any],
    ctx: _Context,
    depth: int,
) -> ObjectField:
    path = common["path"]
    properties = node.get("properties") or {}
    if not isinstance(properties, dict):
        ctx.warn("malformed", "properties is not an object", path)
        properties = {}

    required_names = node.get("required") or []
    if not isinstance(required_names, list):
        ctx.warn("malformed", "required is not a list", path)
        required_names = []
    elif not all(isinstance(r, str) for r in required_names):
        ctx.warn("malformed", "required entries must be property names", path)
        required_names = [r for r in required_names if isinstance(r, str)]
    for missing in (r for r in required_names if r not in properties):
        ctx.warn("unknown-required", f"Required property '{missing}' is not declared", path)

    children = []
    for child_name, child in properties.items():
        decoded = _decode(
            child,
            str(child_name),
            f"{path}.{child_name}",
            child_name in required_names,
            ctx,
            depth + 1,
        )
        if decoded is not None:
            children.append(decoded)

    additional = None
    extra = node.get("additionalProperties")
    if isinstance(extra, dict):
        additional = _decode(extra, "*", f"{path}.*", False, ctx, depth + 1)

    return ObjectField(
        **common,
        children=children,
        additional=additional,
        open=bool(node.get("x-kubernetes-preserve-unknown-fields")) or extra is True,
        default=_default(node, FieldType.OBJECT, ctx, path),
        validation=_validation(node, ctx, path),
    )


def transform_schema(
    schema: dict[str, Any],
    version: str | None = None,
    root: dict[str, Any] | None = None,
) -> FormDescriptor:
    """Transform the ``spec`` subtree of an XRD schema into a form descriptor.

    Args:
        schema: The OpenAPI node for ``spec`` (an object schema).
        version: XRD version name the schema belongs to.
        root: Document used to resolve local ``$ref`` pointers (defaults to schema).

    Raises:
        SchemaTransformError: If the root itself is not an object schema.
    """
    if not isinstance(schema, dict):
        raise SchemaTransformError("spec schema is not an object")
    root_type = schema.get("type", "object")
    if root_type != "object":
        raise SchemaTransformError(f"spec schema must be an object, got {root_type!r}")

    ctx = _Context(root=root if root is not None else schema)
    decoded = _decode_object(
        schema,
        {"name": "spec", "path": "spec", "title": None, "description": None, "required": True},
        ctx,
        0,
    )
    for diagnostic in ctx.diagnostics:
        logger.debug(f"Schema transform: {diagnostic}")
    return FormDescriptor(
        title=schema.get("title") if isinstance(schema.get("title"), str) else None,
        description=(
            schema.get("description") if isinstance(schema.get("description"), str) else None
        ),
        version=version,
        schema_hash=schema_hash(schema),
        fields=decoded.children,
        diagnostics=ctx.diagnostics,
    )


def select_version(xrd: dict[str, Any]) -> dict[str, Any]:
    """Pick the XRD version whose schema drives the form.

    Prefers the referenceable version, then the first served one, then the
    first declared.

    Raises:
        SchemaTransformError: If the XRD declares no versions.
    """
    versions = (xrd.get("spec") or {}).get("versions")
    if not isinstance(versions, list) or not versions:
        raise SchemaTransformError("XRD declares no versions")
    candidates = [v for v in versions if isinstance(v, dict)]
    if not candidates:
        raise SchemaTransformError("XRD versions are malformed")
    for predicate in (lambda v: v.get("referenceable"), lambda v: v.get("served")):
        chosen = next((v for v in candidates if predicate(v)), None)
        if chosen is not None:
            return chosen
    return candidates[0]


def openapi_schema(xrd: dict[str, Any]) -> tuple[str | None, dict[str, Any]]:
    """Return (version name, openAPIV3Schema) for the selected XRD version.

    Raises:
        SchemaTransformError: If the selected version carries no schema.
    """
    version = select_version(xrd)
    schema = (version.get("schema") or {}).get("openAPIV3Schema")
    if not isinstance(schema, dict):
        raise SchemaTransformError(f"Version {version.get('name')!r} has no openAPIV3Schema")
    name = version.get("name")
    return (name if isinstance(name, str) else None), schema


def transform_xrd(xrd: dict[str, Any]) -> FormDescriptor:
    """Transform an XRD object into the form descriptor of its ``spec``.

    Raises:
        SchemaTransformError: When no usable schema exists at all.
    """
    version, schema = openapi_schema(xrd)
    spec_schema = (schema.get("properties") or {}).get("spec")
    if spec_schema is None:
        # No spec properties: an empty but valid form, flagged for review.
        empty = {"type": "object", "properties": {}}
        descriptor = transform_schema(empty, version=version, root=schema)
        return descriptor.model_copy(
            update={
                "schema_hash": schema_hash(schema),
                "diagnostics": [warning("no-spec", "Schema declares no spec properties", "spec")],
            }
        )
    return transform_schema(spec_schema, version=version, root=schema)
