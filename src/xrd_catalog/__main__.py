"""Entry point for the XRD catalog server and offline transform."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, TextIO

from xrd_catalog import __version__
from xrd_catalog.catalog.entities import EntityKind
from xrd_catalog.config import CatalogConfig, LogLevel, TransportMode
from xrd_catalog.utils.errors import AuthenticationError, ConfigurationError


def _has_auth_error(exc: BaseException) -> bool:
    """Check if an exception is or contains an AuthenticationError.

    Handles both direct AuthenticationError and ExceptionGroup wrappers
    from anyio task groups.
    """
    if isinstance(exc, AuthenticationError):
        return True
    inner: tuple[BaseException, ...] = getattr(exc, "exceptions", ())
    if inner:
        return any(_has_auth_error(e) for e in inner)
    return False


def setup_logging(level: LogLevel) -> None:
    """Configure logging for the server."""
    logging.basicConfig(
        level=level.value,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="xrd-catalog",
        description="Multi-cluster Crossplane XRD discovery and catalog server",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)",
    )
    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Run discovery and the MCP server (default)")
    serve.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default=None,
        help="Transport mode (default: from config or stdio)",
    )
    serve.add_argument("--host", default=None, help="Host to bind HTTP server to")
    serve.add_argument("--port", type=int, default=None, help="Port to bind HTTP server to")
    serve.add_argument(
        "--clusters-file",
        default=None,
        help="YAML file listing clusters and the discovery filter",
    )
    serve.add_argument(
        "--policy-file",
        default=None,
        help="YAML permission policy mapping users and groups to rules",
    )
    serve.add_argument(
        "--cache-file",
        default=None,
        help="JSON file the catalog cache is persisted to",
    )

    transform = commands.add_parser(
        "transform", help="Transform XRD documents into catalog entities offline"
    )
    transform.add_argument(
        "file",
        nargs="?",
        default="-",
        help="File with XRD documents (YAML or JSON); '-' reads stdin",
    )
    transform.add_argument(
        "--format",
        choices=["yaml", "json"],
        default="yaml",
        help="Output format (default: yaml)",
    )
    transform.add_argument(
        "--only",
        choices=["template", "api", "resource"],
        action="append",
        default=None,
        help="Only print entities of this kind (repeatable)",
    )
    transform.add_argument(
        "--cluster",
        default="local",
        help="Cluster name recorded on the entities (default: local)",
    )
    transform.add_argument(
        "--validate",
        action="store_true",
        help="Only report diagnostics; exit 1 when any XRD is degraded",
    )
    return parser


def run_transform(args: argparse.Namespace, stdin: TextIO, stdout: TextIO) -> int:
    """Run the offline transform subcommand."""
    from xrd_catalog.catalog.builder import EntityBuilder
    from xrd_catalog.offline import load_documents, render, transform_documents, validation_lines

    logger = logging.getLogger(__name__)
    try:
        text = stdin.read() if args.file == "-" else Path(args.file).read_text(encoding="utf-8")
        documents = load_documents(text)
    except (OSError, ValueError) as e:
        logger.error(f"Cannot read {args.file}: {e}")
        return 1

    report = transform_documents(
        documents,
        cluster=args.cluster,
        builder=EntityBuilder.from_config(CatalogConfig()),
    )
    if args.validate:
        for line in validation_lines(report):
            print(line, file=stdout)
        return 1 if report.degraded else 0

    kinds = {EntityKind[k.upper()] for k in args.only} if args.only else None
    stdout.write(render(report.entities(kinds), args.format))
    if args.format == "json":
        stdout.write("\n")
    return 0


def run_serve(args: argparse.Namespace, config_kwargs: dict[str, Any]) -> int:
    """Run discovery and the MCP server until interrupted."""
    if args.transport:
        config_kwargs["transport"] = TransportMode(args.transport)
    if args.host:
        config_kwargs["host"] = args.host
    if args.port:
        config_kwargs["port"] = args.port
    if args.clusters_file:
        config_kwargs["clusters_file"] = args.clusters_file
    if args.policy_file:
        config_kwargs["permission_policy_file"] = args.policy_file
    if args.cache_file:
        config_kwargs["cache_persist_path"] = args.cache_file

    config = CatalogConfig(**config_kwargs)
    setup_logging(config.log_level)

    logger = logging.getLogger(__name__)
    logger.info(f"Starting XRD catalog server v{__version__}")

    try:
        for warning in config.validate_startup():
            logger.warning(warning)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    from xrd_catalog.server import create_server

    mcp = create_server(config)

    transport_name: str = config.transport.value
    if config.transport != TransportMode.STDIO:
        logger.info(f"Running with {transport_name} transport on {config.host}:{config.port}")
    else:
        logger.info(f"Running with {transport_name} transport")

    try:
        mcp.run(transport=transport_name)  # type: ignore[arg-type]
    except BaseException as exc:  # BaseException to catch anyio's BaseExceptionGroup
        if _has_auth_error(exc):
            logger.error("Cluster authentication failed; check the configured credentials")
            return 1
        raise

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config_kwargs: dict[str, Any] = {}
    if args.log_level:
        config_kwargs["log_level"] = LogLevel(args.log_level)

    if args.command == "transform":
        setup_logging(config_kwargs.get("log_level", LogLevel.WARNING))
        return run_transform(args, sys.stdin, sys.stdout)

    if args.command is None:
        # Bare invocation serves with defaults.
        raw = list(argv) if argv is not None else sys.argv[1:]
        args = build_parser().parse_args([*raw, "serve"])
    return run_serve(args, config_kwargs)


if __name__ == "__main__":
    sys.exit(main())
