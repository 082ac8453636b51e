"""Assemble tool specs and handler fragments into one server module.

assemble_server is pure: same inputs, same text. Imports come from four
places, merged in this order:

  1. the template's base imports
  2. imports synthesized from tool dependencies
  3. the leading import lines of each fragment
  4. the leading import lines of each support block (setup, production)

They are deduplicated by imported module, first occurrence wins, and the
names of repeated `from X import ...` statements are unioned into the
first one. `import X` and `from X import y` are keyed apart since each
binds names the other does not: `import numpy as np` and
`from numpy import array` both survive, while a later `import numpy` is
dropped in favour of `import numpy as np`.
"""

from __future__ import annotations

import ast
import logging
import re
import textwrap
from dataclasses import dataclass, field
from typing import Any, Optional

from .codegen import render_template
from .models import JsonSchemaProperty, ProductionConfig, ToolSpec, collect_dependencies
from .naming import function_name, unique_identifiers
from .production import has_features, render_production_code
from .schema_parser import python_type

logger = logging.getLogger(__name__)

BASE_IMPORTS = [
    "import json",
    "import os",
    "from datetime import datetime, timezone",
    "from typing import Any, Optional",
    "from fastmcp import FastMCP",
]

# PyPI name -> import statement, where `import <name with - as _>` is wrong
_DEPENDENCY_IMPORTS: dict[str, str] = {
    "beautifulsoup4": "from bs4 import BeautifulSoup",
    "bs4": "from bs4 import BeautifulSoup",
    "pyyaml": "import yaml",
    "python-dateutil": "from dateutil import parser as date_parser",
    "pillow": "from PIL import Image",
    "pandas": "import pandas as pd",
    "numpy": "import numpy as np",
    "scikit-learn": "import sklearn",
    "python-dotenv": "from dotenv import load_dotenv",
    "opencv-python": "import cv2",
    "psycopg2-binary": "import psycopg2",
    "google-cloud-storage": "from google.cloud import storage",
}

# Provided by the template itself
_SKIPPED_DEPENDENCIES = {"fastmcp", "mcp"}

_IMPORT_START_RE = re.compile(r"^(import|from)\s")

NOT_IMPLEMENTED_BODY = 'return _error("Not implemented")\n'


@dataclass(frozen=True)
class AssembleOptions:
    """Everything besides specs and fragments that shapes the module."""
    server_name: str
    auth_env_vars: list[str] = field(default_factory=list)
    include_health_check: bool = True
    production_config: Optional[ProductionConfig] = None
    setup_code: str = ""
    extra_dependencies: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------

def split_imports(code: str) -> tuple[list[str], str]:
    """(leading import statements, remaining code).

    Only the leading run of import, blank and comment lines is consumed;
    the first substantive line ends it, so imports further down stay put.
    """
    lines = textwrap.dedent(code).strip("\n").splitlines()
    imports: list[str] = []
    i = 0
    while i < len(lines):
        stripped = lines[i].strip()
        if not stripped or stripped.startswith("#"):
            i += 1
            continue
        if not _IMPORT_START_RE.match(stripped):
            break
        statement = stripped
        # parenthesized or backslash-continued imports
        while i + 1 < len(lines) and (
            ("(" in statement and ")" not in statement) or statement.endswith("\\")
        ):
            i += 1
            statement = statement.rstrip("\\").rstrip() + " " + lines[i].strip()
        imports.append(statement)
        i += 1
    return imports, "\n".join(lines[i:]).strip("\n")


def extract_imports(code: str) -> list[str]:
    return split_imports(code)[0]


def import_module_name(statement: str) -> Optional[str]:
    """Module an import statement pulls from; None if it does not parse."""
    node = _parse_import(statement)
    if isinstance(node, ast.Import):
        return node.names[0].name
    if isinstance(node, ast.ImportFrom):
        return "." * node.level + (node.module or "")
    return None


def _parse_import(statement: str) -> Optional[ast.stmt]:
    try:
        body = ast.parse(statement).body
    except SyntaxError:
        return None
    if len(body) == 1 and isinstance(body[0], (ast.Import, ast.ImportFrom)):
        return body[0]
    return None


def _alias_text(alias: ast.alias) -> str:
    return f"{alias.name} as {alias.asname}" if alias.asname else alias.name


def dependency_imports(dependencies: list[str]) -> list[str]:
    """Import statements for package identifiers."""
    statements: list[str] = []
    for dep in dependencies:
        key = dep.strip().lower()
        if not key or key in _SKIPPED_DEPENDENCIES:
            continue
        statements.append(_DEPENDENCY_IMPORTS.get(key) or f"import {key.replace('-', '_')}")
    return statements


def merge_imports(statements: list[str]) -> list[str]:
    """Deduplicate by (statement kind, module); first occurrence wins."""
    merged: dict[tuple[str, str], list[str]] = {}
    plain: dict[tuple[str, str], str] = {}
    order: list[tuple[str, str]] = []

    for statement in statements:
        node = _parse_import(statement)
        if node is None:
            logger.warning("Dropping unparseable import line: %s", statement)
            continue
        if isinstance(node, ast.Import):
            key = ("import", node.names[0].name)
            if key not in plain:
                plain[key] = statement
                order.append(key)
        else:
            key = ("from", "." * node.level + (node.module or ""))
            names = [_alias_text(alias) for alias in node.names]
            if key not in merged:
                merged[key] = []
                order.append(key)
            for name in names:
                if name not in merged[key]:
                    merged[key].append(name)

    result: list[str] = []
    for key in order:
        if key[0] == "import":
            result.append(plain[key])
        else:
            result.append(f"from {key[1]} import {', '.join(merged[key])}")
    return result


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------

def _json_type(prop: JsonSchemaProperty) -> str:
    if isinstance(prop.type, list):
        return next((t for t in prop.type if t != "null"), "string")
    return prop.type if isinstance(prop.type, str) else "string"


def _has_default(prop: JsonSchemaProperty) -> bool:
    return "default" in prop.model_fields_set and prop.default is not None


def build_arguments(spec: ToolSpec) -> list[dict[str, Any]]:
    """Handler arguments, required ones first."""
    names = list(spec.input_schema.properties)
    idents = unique_identifiers(names)
    required = set(spec.required_params)

    arguments = []
    for name, ident in zip(names, idents):
        prop = spec.input_schema.properties[name]
        annotation = python_type(_json_type(prop))
        if _has_default(prop):
            declaration = f"{ident}: {annotation} = {prop.default!r}"
            is_required = False
        elif name in required:
            declaration = f"{ident}: {annotation}"
            is_required = True
        else:
            declaration = f"{ident}: Optional[{annotation}] = None"
            is_required = False
        arguments.append({"name": name, "ident": ident, "declaration": declaration, "required": is_required})

    arguments.sort(key=lambda arg: not arg["required"])
    return arguments


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def _header_text(server_name: str) -> str:
    """Server name made safe for the module docstring."""
    return " ".join(server_name.replace("\\", "/").replace('"', "'").split())


def _tool_context(spec: ToolSpec, body: str) -> dict[str, Any]:
    arguments = build_arguments(spec)
    return {
        "name": spec.name,
        "function": function_name(spec.name),
        "description": spec.description,
        "signature": ", ".join(arg["declaration"] for arg in arguments),
        "call_args": ", ".join([*(f"{arg['ident']}={arg['ident']}" for arg in arguments), "params=params"]),
        "arguments": arguments,
        "body": body,
    }


def assemble_server(
    tool_specs: list[ToolSpec],
    implementations: dict[str, str],
    options: AssembleOptions,
) -> str:
    """Render the complete server module."""
    dependencies = collect_dependencies(tool_specs)
    for dep in options.extra_dependencies:
        if dep not in dependencies:
            dependencies.append(dep)

    fragment_imports: list[str] = []
    tools: list[dict[str, Any]] = []
    for spec in tool_specs:
        fragment = implementations.get(spec.name)
        if fragment is None or not fragment.strip():
            logger.warning("No implementation for tool %s; rendering a stub", spec.name)
            body = NOT_IMPLEMENTED_BODY
        else:
            imports, body = split_imports(fragment)
            fragment_imports.extend(imports)
            if not body.strip():
                body = NOT_IMPLEMENTED_BODY
        tools.append(_tool_context(spec, body))

    support_imports: list[str] = []
    support_blocks: list[str] = []
    production_code = render_production_code(
        options.production_config, http_client="httpx" in dependencies,
    )
    for block in (options.setup_code, production_code):
        if block.strip():
            imports, code = split_imports(block)
            support_imports.extend(imports)
            if code.strip():
                support_blocks.append(code)

    imports = merge_imports([
        *BASE_IMPORTS,
        *dependency_imports(dependencies),
        *fragment_imports,
        *support_imports,
    ])

    production = options.production_config if has_features(options.production_config) else None
    tool_names = [spec.name for spec in tool_specs]

    return render_template(
        "server.py.j2",
        server_name=options.server_name,
        header_name=_header_text(options.server_name),
        tool_count=len(tool_specs),
        imports=imports,
        auth_env_vars=list(options.auth_env_vars),
        support_blocks=support_blocks,
        tools=tools,
        tool_names=tool_names,
        include_health_check=options.include_health_check and "health_check" not in tool_names,
        production=production,
    )


def check_fragment_syntax(fragment: str) -> Optional[str]:
    """Syntax error message for a handler fragment, None when it parses.

    The body is parsed inside an async function, the way the template
    places it, so top-level `return` and `await` are accepted.
    """
    _, body = split_imports(fragment)
    wrapped = "async def _handler():\n" + textwrap.indent(body or "pass", "    ") + "\n"
    try:
        ast.parse(wrapped)
    except SyntaxError as e:
        return f"line {(e.lineno or 1) - 1}: {e.msg}"
    return None
