"""Render templates and write generated output.

Templates live in mcp_factory/templates. write_server puts a
GeneratedServer on disk:

  <out_dir>/server.py            the MCP server module
  <out_dir>/requirements.txt     fastmcp plus every tool dependency
  <out_dir>/tools.json           tool specs (snake_case keys)
  <out_dir>/execution_log.json   natural-language runs only
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

import jinja2

from .models import GeneratedServer

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

# Always required by the generated server
BASE_REQUIREMENTS = ["fastmcp"]


@lru_cache(maxsize=None)
def get_environment() -> jinja2.Environment:
    """Shared Jinja environment; `pyrepr` renders a value as a Python literal."""
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(TEMPLATE_DIR)),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
        undefined=jinja2.StrictUndefined,
    )
    env.filters["pyrepr"] = repr
    return env


def render_template(name: str, **context: Any) -> str:
    return get_environment().get_template(name).render(**context)


def requirements(server: GeneratedServer) -> list[str]:
    seen: dict[str, None] = {}
    for dep in [*BASE_REQUIREMENTS, *server.dependencies]:
        seen.setdefault(dep, None)
    return list(seen)


def write_server(server: GeneratedServer, out_dir: Path | str) -> list[Path]:
    """Write the server artifacts to out_dir; returns the written paths."""
    output_dir = Path(out_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []

    server_path = output_dir / "server.py"
    server_path.write_text(server.server_code, encoding="utf-8")
    written.append(server_path)

    requirements_path = output_dir / "requirements.txt"
    requirements_path.write_text("\n".join(requirements(server)) + "\n", encoding="utf-8")
    written.append(requirements_path)

    tools_path = output_dir / "tools.json"
    tools_path.write_text(
        json.dumps([spec.to_dict() for spec in server.tool_specs], indent=2) + "\n",
        encoding="utf-8",
    )
    written.append(tools_path)

    if server.execution_log is not None:
        log_path = output_dir / "execution_log.json"
        log_path.write_text(server.execution_log.model_dump_json(indent=2) + "\n", encoding="utf-8")
        written.append(log_path)

    logger.info("Generated %s (%d tools)", server_path, len(server.tool_specs))
    return written
