"""Form descriptor tree produced by the schema transformer.

Raw OpenAPI is decoded once into this closed set of node variants; everything
downstream dispatches on the ``kind`` tag instead of probing dict shapes.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from xrd_catalog.utils.diagnostics import Diagnostic


class FieldType(str, Enum):
    """User-facing field types."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    ENUM = "enum"


class Validation(BaseModel):
    """Constraints copied from the schema node.

    Only keys that were present in the schema are set, so serialization with
    ``exclude_none`` stays minimal and stable.
    """

    model_config = ConfigDict(frozen=True)

    pattern: str | None = None
    format: str | None = None
    minimum: float | None = None
    maximum: float | None = None
    exclusive_minimum: bool | None = None
    exclusive_maximum: bool | None = None
    multiple_of: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    min_items: int | None = None
    max_items: int | None = None
    unique_items: bool | None = None
    integer: bool | None = None
    enum_values: list[Any] | None = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class _FieldBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    path: str = Field(..., description="Dotted path from the spec root, e.g. 'spec.size'")
    title: str | None = None
    description: str | None = None
    required: bool = False
    default: Any = None
    validation: Validation = Field(default_factory=Validation)


class ObjectField(_FieldBase):
    """Grouped section of child fields."""

    kind: Literal["object"] = "object"
    children: list[FieldNode] = Field(default_factory=list)
    additional: FieldNode | None = Field(
        None, description="Value schema for free-form maps (additionalProperties)"
    )
    open: bool = Field(False, description="Accepts unknown fields")

    @property
    def field_type(self) -> FieldType:
        return FieldType.OBJECT


class ArrayField(_FieldBase):
    """Repeatable field group."""

    kind: Literal["array"] = "array"
    item: FieldNode

    @property
    def field_type(self) -> FieldType:
        return FieldType.ARRAY


class ScalarField(_FieldBase):
    """Typed leaf field."""

    kind: Literal["scalar"] = "scalar"
    type: Literal[FieldType.STRING, FieldType.NUMBER, FieldType.BOOLEAN]

    @property
    def field_type(self) -> FieldType:
        return self.type


class EnumField(_FieldBase):
    """Choice among declared values; the declared default is pre-selected."""

    kind: Literal["enum"] = "enum"
    values: list[Any]
    value_type: Literal[FieldType.STRING, FieldType.NUMBER, FieldType.BOOLEAN] = FieldType.STRING

    @property
    def field_type(self) -> FieldType:
        return FieldType.ENUM


FieldNode = Annotated[
    Union[ObjectField, ArrayField, ScalarField, EnumField],
    Field(discriminator="kind"),
]

ObjectField.model_rebuild()
ArrayField.model_rebuild()


class FormDescriptor(BaseModel):
    """Normalized, form-ready representation of an XRD's spec schema.

    Pure derived data: recomputed from the current schema hash, never patched.
    """

    model_config = ConfigDict(frozen=True)

    title: str | None = None
    description: str | None = None
    version: str | None = Field(None, description="XRD version the schema came from")
    schema_hash: str
    fields: list[FieldNode] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True when any fragment was skipped."""
        return bool(self.diagnostics)

    def to_canonical_json(self) -> str:
        """Serialize deterministically for hashing and diffing."""
        return self.model_dump_json(exclude_none=True)

    def iter_fields(self) -> list[Any]:
        """Flatten the tree depth-first in declaration order."""
        out: list[Any] = []

        def visit(node: Any) -> None:
            out.append(node)
            if isinstance(node, ObjectField):
                for child in node.children:
                    visit(child)
                if node.additional is not None:
                    visit(node.additional)
            elif isinstance(node, ArrayField):
                visit(node.item)

        for field in self.fields:
            visit(field)
        return out

    def get_field(self, path: str) -> Any:
        """Find a field by its dotted path."""
        for node in self.iter_fields():
            if node.path == path:
                return node
        return None
