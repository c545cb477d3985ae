"""Render form descriptors as template parameter sections.

Each section is a JSON-schema object the scaffolder renders as one form page:
a metadata page first, then one page for the top-level scalar fields and one
per top-level object.
"""

from __future__ import annotations

from typing import Any

from xrd_catalog.schema.descriptors import (
    ArrayField,
    EnumField,
    FieldType,
    FormDescriptor,
    ObjectField,
    ScalarField,
)

# Validation attribute -> JSON schema keyword
_KEYWORDS = {
    "pattern": "pattern",
    "format": "format",
    "minimum": "minimum",
    "maximum": "maximum",
    "exclusive_minimum": "exclusiveMinimum",
    "exclusive_maximum": "exclusiveMaximum",
    "multiple_of": "multipleOf",
    "min_length": "minLength",
    "max_length": "maxLength",
    "min_items": "minItems",
    "max_items": "maxItems",
    "unique_items": "uniqueItems",
}

NAME_PATTERN = "^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"


def _humanize(name: str) -> str:
    """Turn 'storageGB' or 'storage_gb' into 'Storage GB'."""
    words: list[str] = []
    current = ""
    for i, char in enumerate(name.replace("_", " ").replace("-", " ")):
        if char == " ":
            if current:
                words.append(current)
            current = ""
            continue
        prev = name[i - 1] if i else ""
        if char.isupper() and current and not prev.isupper():
            words.append(current)
            current = char
        else:
            current += char
    if current:
        words.append(current)
    return " ".join(w[:1].upper() + w[1:] for w in words)


def _constraints(node: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    values = node.validation.model_dump(exclude_none=True)
    for attr, keyword in _KEYWORDS.items():
        if attr in values:
            out[keyword] = values[attr]
    return out


def render_field(node: Any) -> dict[str, Any]:
    """Render one descriptor node as a JSON schema property."""
    prop: dict[str, Any] = {"title": node.title or _humanize(node.name)}
    if node.description:
        prop["description"] = node.description

    if isinstance(node, ObjectField):
        prop["type"] = "object"
        properties = {child.name: render_field(child) for child in node.children}
        if properties:
            prop["properties"] = properties
        required = [child.name for child in node.children if child.required]
        if required:
            prop["required"] = required
        if node.additional is not None:
            prop["additionalProperties"] = render_field(node.additional)
        elif node.open:
            prop["additionalProperties"] = True
    elif isinstance(node, ArrayField):
        prop["type"] = "array"
        prop["items"] = render_field(node.item)
    elif isinstance(node, EnumField):
        prop["type"] = node.value_type.value
        prop["enum"] = list(node.values)
    elif isinstance(node, ScalarField):
        if node.validation.integer:
            prop["type"] = "integer"
        elif node.validation.format == "int-or-string":
            prop["type"] = "string"
        else:
            prop["type"] = node.type.value

    prop.update(_constraints(node))
    if prop.get("format") == "int-or-string":
        del prop["format"]
    if node.default is not None:
        prop["default"] = node.default
    return prop


def metadata_section(namespaced: bool) -> dict[str, Any]:
    """First page: name (and namespace for claims) of the resource to create."""
    properties: dict[str, Any] = {
        "name": {
            "title": "Name",
            "type": "string",
            "description": "Name of the resource to create",
            "pattern": NAME_PATTERN,
            "maxLength": 63,
        }
    }
    required = ["name"]
    if namespaced:
        properties["namespace"] = {
            "title": "Namespace",
            "type": "string",
            "description": "Namespace to create the claim in",
            "pattern": NAME_PATTERN,
            "default": "default",
        }
        required.append("namespace")
    return {"title": "Resource Metadata", "required": required, "properties": properties}


def render_parameters(
    descriptor: FormDescriptor,
    namespaced: bool = False,
) -> list[dict[str, Any]]:
    """Render a descriptor as an ordered list of parameter sections.

    Args:
        descriptor: Form descriptor of the XRD spec.
        namespaced: Whether the created resource is a namespaced claim.

    Returns:
        Sections in declaration order; the metadata section always comes first.
    """
    sections = [metadata_section(namespaced)]

    scalars = [f for f in descriptor.fields if f.field_type != FieldType.OBJECT]
    if scalars:
        section: dict[str, Any] = {
            "title": descriptor.title or "Configuration",
            "properties": {f.name: render_field(f) for f in scalars},
        }
        if descriptor.description:
            section["description"] = descriptor.description
        required = [f.name for f in scalars if f.required]
        if required:
            section["required"] = required
        sections.append(section)

    for obj in (f for f in descriptor.fields if isinstance(f, ObjectField)):
        rendered = render_field(obj)
        section = {"title": rendered["title"], "properties": rendered.get("properties", {})}
        if "description" in rendered:
            section["description"] = rendered["description"]
        if "required" in rendered:
            section["required"] = rendered["required"]
        sections.append(section)

    return sections


def spec_paths(descriptor: FormDescriptor) -> list[str]:
    """Parameter names in the order the template maps them into ``spec``."""
    return [f.name for f in descriptor.fields]
