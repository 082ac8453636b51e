"""Entry point: python -m mcp_factory <command>

  describe "<text>"           generate from a natural-language description
  openapi <spec.json|yaml>    generate from an OpenAPI document
  database <conn>             generate CRUD tools from a SQLite file or PostgreSQL URL

Each command writes server.py, requirements.txt and tools.json to --output.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from .codegen import write_server
from .config import FactorySettings, LLMProvider
from .errors import FactoryError
from .logging_utils import setup_root_logger
from .models import GeneratedServer, ProductionConfig
from .orchestrator import ToolFactory

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-factory",
        description="Generate MCP servers from descriptions, OpenAPI documents or databases",
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        default=Path("generated"),
        help="Output directory (default: generated)",
    )
    parser.add_argument("--name", help="Server name (default depends on the command)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from settings, INFO)",
    )
    parser.add_argument("--log-file", type=Path, help="Also log to this rotating file")
    parser.add_argument("--no-health-check", action="store_true", help="Skip the generic health_check tool")
    parser.add_argument("--production", action="store_true",
                        help="Compile logging, rate limiting and retries into the server")

    subparsers = parser.add_subparsers(dest="command", required=True)

    describe = subparsers.add_parser("describe", help="Generate from a natural-language description")
    describe.add_argument("description", help="What the server should do")
    describe.add_argument("--provider", choices=[p.value for p in LLMProvider], help="Model provider")
    describe.add_argument("--model", help="Model id (default: provider default)")
    describe.add_argument("--web-search", action="store_true", help="Research the description first")
    describe.add_argument("--auth-env", action="append", default=[], metavar="VAR",
                          help="Environment variable the tools need (repeatable)")

    openapi = subparsers.add_parser("openapi", help="Generate from an OpenAPI 3 document")
    openapi.add_argument("spec", type=Path, help="OpenAPI document (.json, .yaml)")
    openapi.add_argument("--base-url", help="Override servers[0].url")

    database = subparsers.add_parser("database", help="Generate CRUD tools from a database")
    database.add_argument("conn", help="SQLite file path or postgresql:// URL")
    database.add_argument("--table", action="append", dest="tables", metavar="NAME",
                          help="Only this table (repeatable)")

    return parser


def load_settings(args: argparse.Namespace) -> FactorySettings:
    """Environment settings with command-line overrides."""
    overrides = {}
    if getattr(args, "provider", None):
        overrides["provider"] = args.provider
    if getattr(args, "model", None):
        overrides["model"] = args.model
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_file:
        overrides["log_file"] = args.log_file
    return FactorySettings(**overrides)


async def run(args: argparse.Namespace, settings: FactorySettings) -> GeneratedServer:
    production_config = ProductionConfig(
        enable_logging=True, enable_rate_limiting=True, enable_retries=True,
    ) if args.production else None

    factory = ToolFactory(settings, require_llm=args.command == "describe")
    try:
        if args.command == "describe":
            return await factory.generate_from_description(
                args.description,
                server_name=args.name or "generated-server",
                web_search=args.web_search,
                auth_env_vars=args.auth_env,
                include_health_check=not args.no_health_check,
                production_config=production_config,
            )
        if args.command == "openapi":
            return await factory.generate_from_openapi(
                args.spec,
                base_url=args.base_url,
                server_name=args.name or args.spec.stem,
                include_health_check=not args.no_health_check,
                production_config=production_config,
            )
        return await factory.generate_from_database(
            args.conn,
            server_name=args.name or "database-server",
            tables=args.tables,
            production_config=production_config,
        )
    finally:
        await factory.aclose()


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args)
    setup_root_logger(settings.log_file, settings.log_level)

    try:
        server = asyncio.run(run(args, settings))
    except FactoryError as e:
        logger.error("%s", e)
        return 1

    for path in write_server(server, args.output):
        print(path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
