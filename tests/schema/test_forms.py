"""Tests for rendering form descriptors as template parameters."""

from helpers import make_xrd

from xrd_catalog.schema.forms import _humanize, render_field, render_parameters, spec_paths
from xrd_catalog.schema.transformer import transform_schema, transform_xrd


class TestHumanize:
    """Titles derived from property names."""

    def test_camel_case(self) -> None:
        assert _humanize("storageGB") == "Storage GB"
        assert _humanize("instanceType") == "Instance Type"

    def test_separators(self) -> None:
        assert _humanize("max_connections") == "Max Connections"
        assert _humanize("node-count") == "Node Count"


class TestRenderField:
    """One descriptor node as a JSON schema property."""

    def test_enum_with_default(self) -> None:
        size = transform_xrd(make_xrd()).fields[0]
        prop = render_field(size)
        assert prop == {
            "title": "Size",
            "type": "string",
            "enum": ["small", "medium", "large"],
            "default": "small",
        }

    def test_integer_constraints(self) -> None:
        schema = {
            "type": "object",
            "properties": {"replicas": {"type": "integer", "minimum": 1, "maximum": 5}},
        }
        prop = render_field(transform_schema(schema).fields[0])
        assert prop["type"] == "integer"
        assert prop["minimum"] == 1
        assert prop["maximum"] == 5

    def test_string_length_keywords_are_camel_case(self) -> None:
        schema = {
            "type": "object",
            "properties": {"name": {"type": "string", "minLength": 3, "maxLength": 8}},
        }
        prop = render_field(transform_schema(schema).fields[0])
        assert prop["minLength"] == 3
        assert prop["maxLength"] == 8

    def test_nested_object_required(self) -> None:
        schema = {
            "type": "object",
            "properties": {
                "network": {
                    "type": "object",
                    "properties": {"cidr": {"type": "string"}, "public": {"type": "boolean"}},
                    "required": ["cidr"],
                }
            },
        }
        prop = render_field(transform_schema(schema).fields[0])
        assert prop["type"] == "object"
        assert list(prop["properties"]) == ["cidr", "public"]
        assert prop["required"] == ["cidr"]


class TestRenderParameters:
    """Parameter sections of a template."""

    def test_metadata_section_first(self) -> None:
        sections = render_parameters(transform_xrd(make_xrd()))
        assert sections[0]["title"] == "Resource Metadata"
        assert sections[0]["required"] == ["name"]

    def test_namespaced_adds_namespace(self) -> None:
        sections = render_parameters(transform_xrd(make_xrd()), namespaced=True)
        assert sections[0]["required"] == ["name", "namespace"]

    def test_scalars_grouped_then_one_section_per_object(self) -> None:
        schema = {
            "type": "object",
            "properties": {
                "region": {"type": "string"},
                "network": {"type": "object", "properties": {"cidr": {"type": "string"}}},
                "size": {"type": "string", "enum": ["s", "m"]},
            },
            "required": ["region"],
        }
        sections = render_parameters(transform_schema(schema))

        assert [s["title"] for s in sections] == ["Resource Metadata", "Configuration", "Network"]
        assert list(sections[1]["properties"]) == ["region", "size"]
        assert sections[1]["required"] == ["region"]
        assert list(sections[2]["properties"]) == ["cidr"]

    def test_spec_paths_in_declaration_order(self) -> None:
        assert spec_paths(transform_xrd(make_xrd())) == ["size", "version"]
