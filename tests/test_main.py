"""Tests for the command line entry point."""

import io
import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml
from helpers import make_xrd

from xrd_catalog.__main__ import _has_auth_error, build_parser, main, run_transform
from xrd_catalog.utils.errors import AuthenticationError

BROKEN_SCHEMA = {
    "type": "object",
    "properties": {"spec": {"type": "object", "properties": {"broken": {}}}},
}


def transform(argv: list[str], stdin: str = "") -> tuple[int, str]:
    args = build_parser().parse_args(["transform", *argv])
    out = io.StringIO()
    code = run_transform(args, io.StringIO(stdin), out)
    return code, out.getvalue()


class TestTransformCommand:
    """xrd-catalog transform."""

    def test_reads_stdin(self) -> None:
        code, out = transform([], stdin=yaml.safe_dump(make_xrd()))

        assert code == 0
        assert sorted(d["kind"] for d in yaml.safe_load_all(out)) == ["API", "Template"]

    def test_reads_file(self, tmp_path: Path) -> None:
        path = tmp_path / "xrd.yaml"
        path.write_text(yaml.safe_dump(make_xrd()))

        code, out = transform([str(path), "--format", "json", "--only", "api"])

        assert code == 0
        documents = json.loads(out)
        assert [d["kind"] for d in documents] == ["API"]

    def test_cluster_annotation(self) -> None:
        code, out = transform(["--cluster", "staging"], stdin=yaml.safe_dump(make_xrd()))

        assert code == 0
        assert "staging" in out

    def test_validate_ok(self) -> None:
        code, out = transform(["--validate"], stdin=yaml.safe_dump(make_xrd()))

        assert code == 0
        assert out == "CompositeResourceDefinition/databases.platform.io: OK\n"

    def test_validate_degraded(self) -> None:
        code, out = transform(
            ["--validate"], stdin=yaml.safe_dump(make_xrd(schema=BROKEN_SCHEMA))
        )

        assert code == 1
        assert out.startswith("CompositeResourceDefinition/databases.platform.io: DEGRADED\n")

    def test_degraded_still_transforms_without_validate(self) -> None:
        code, out = transform([], stdin=yaml.safe_dump(make_xrd(schema=BROKEN_SCHEMA)))
        assert code == 0
        assert out

    def test_missing_file(self, tmp_path: Path) -> None:
        code, out = transform([str(tmp_path / "absent.yaml")])
        assert code == 1
        assert out == ""

    def test_unparseable_input(self) -> None:
        code, _ = transform([], stdin="kind: [")
        assert code == 1


class TestParser:
    """Argument parsing."""

    def test_serve_options(self) -> None:
        args = build_parser().parse_args(
            ["serve", "--transport", "sse", "--port", "9000", "--policy-file", "policy.yaml"]
        )
        assert args.command == "serve"
        assert args.transport == "sse"
        assert args.port == 9000
        assert args.policy_file == "policy.yaml"

    def test_only_rejects_unknown_kind(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["transform", "--only", "gadget"])


class TestServeCommand:
    """xrd-catalog serve."""

    def test_configuration_error_exits_1(self) -> None:
        with patch("xrd_catalog.server.create_server") as create_server:
            code = main(["serve", "--policy-file", "/nonexistent/policy.yaml"])

        assert code == 1
        create_server.assert_not_called()

    def test_runs_with_configured_transport(self) -> None:
        mcp = MagicMock()
        with patch("xrd_catalog.server.create_server", return_value=mcp) as create_server:
            code = main(["serve", "--transport", "streamable-http", "--port", "9001"])

        assert code == 0
        config = create_server.call_args.args[0]
        assert config.port == 9001
        mcp.run.assert_called_once_with(transport="streamable-http")

    def test_bare_invocation_serves(self) -> None:
        mcp = MagicMock()
        with patch("xrd_catalog.server.create_server", return_value=mcp):
            assert main([]) == 0
        mcp.run.assert_called_once_with(transport="stdio")

    def test_auth_failure_exits_1(self) -> None:
        mcp = MagicMock()
        mcp.run.side_effect = ExceptionGroup("startup", [AuthenticationError("denied")])
        with patch("xrd_catalog.server.create_server", return_value=mcp):
            assert main(["serve"]) == 1


class TestHasAuthError:
    """_has_auth_error."""

    def test_nested_group(self) -> None:
        inner = ExceptionGroup("inner", [AuthenticationError("expired")])
        assert _has_auth_error(ExceptionGroup("outer", [ValueError("x"), inner]))

    def test_other_errors(self) -> None:
        assert not _has_auth_error(ExceptionGroup("group", [ValueError("x")]))
        assert not _has_auth_error(RuntimeError("boom"))
