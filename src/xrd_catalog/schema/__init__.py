"""OpenAPI schema to form descriptor transformation."""

from xrd_catalog.schema.descriptors import FormDescriptor
from xrd_catalog.schema.transformer import transform_schema, transform_xrd

__all__ = ["FormDescriptor", "transform_schema", "transform_xrd"]
