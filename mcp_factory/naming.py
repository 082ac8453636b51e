"""Name canonicalization for tools, handler arguments and env vars.

Tool names end up as Python function names in the generated server, so
every path funnels its names through here.

Canonical tool names:
  "My Tool-1!"        -> my_tool_1
  "123abc"            -> tool_123abc
  ""                  -> unnamed_tool

OpenAPI names:
  operationId listPets          -> list_pets
  GET /pets/{petId} (no opId)   -> get_pets_pet_id
"""

from __future__ import annotations

import keyword
import re
from typing import Any, Callable

UNNAMED_TOOL = "unnamed_tool"

# Module-level names of the generated server that handler arguments must not shadow
RESERVED_NAMES = frozenset({
    "params", "mcp", "json", "os", "logger", "logging", "quote", "base64", "httpx",
    "sqlite3", "asyncpg", "closing", "datetime", "timezone", "time", "asyncio",
    "random", "deque", "get_auth", "require_auth", "get_connection", "get_pool",
    "rate_limiter", "with_retry", "setup_logging",
})


def canonicalize_tool_name(name: str) -> str:
    """Deterministic, idempotent tool-name normalization."""
    result = name.lower().replace("-", "_").replace(" ", "_")
    result = re.sub(r"[^a-z0-9_]", "", result)
    if result and not re.match(r"[a-z]", result):
        result = "tool_" + result
    return result or UNNAMED_TOOL


def camel_to_snake(name: str) -> str:
    """Convert camelCase or PascalCase to snake_case."""
    s1 = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    return re.sub(r"([a-z\d])([A-Z])", r"\1_\2", s1).lower()


def sanitize_segment(segment: str) -> str:
    """Sanitize a path segment or operationId for use in an identifier."""
    name = camel_to_snake(segment)
    name = re.sub(r"[^a-z0-9_]", "_", name)
    name = re.sub(r"_+", "_", name)
    return name.strip("_")


def operation_tool_name(method: str, path: str, operation_id: str | None = None) -> str:
    """Tool name for an OpenAPI operation.

    operationId wins when present; otherwise method + sanitized path.
    """
    if operation_id:
        base = sanitize_segment(operation_id)
    else:
        parts = [sanitize_segment(p.strip("{}")) for p in path.split("/") if p]
        parts = [p for p in parts if p]
        base = "_".join([method.lower(), *parts]) if parts else f"{method.lower()}_root"
    return canonicalize_tool_name(base)


def safe_table_name(name: str) -> str:
    """Identifier fragment for a table name (get_<this>, list_<this>, ...)."""
    return canonicalize_tool_name(re.sub(r"[^a-zA-Z0-9_]", "_", name))


def to_identifier(name: str) -> str:
    """Python argument name for an arbitrary property name."""
    ident = sanitize_segment(name) or "arg"
    if ident[0].isdigit():
        ident = "arg_" + ident
    if keyword.iskeyword(ident) or ident in RESERVED_NAMES:
        ident += "_"
    return ident


def function_name(tool_name: str) -> str:
    """Python function name for a canonical tool name."""
    if keyword.iskeyword(tool_name) or tool_name in RESERVED_NAMES:
        return f"{tool_name}_tool"
    return tool_name


def env_var_name(scheme_name: str, suffix: str) -> str:
    """Environment variable for a security scheme: petstore_auth -> PETSTORE_AUTH_TOKEN."""
    base = re.sub(r"[^A-Z0-9]", "_", scheme_name.upper()).strip("_") or "API"
    return f"{base}_{suffix}"


def unique_identifiers(names: list[str]) -> list[str]:
    """Map names to identifiers, suffixing counters where two collide."""
    return deduplicate_names(names, to_identifier)


def deduplicate_names(
    items: list[Any],
    get_name: Callable[[Any], str],
    get_qualifier: Callable[[Any], str] | None = None,
) -> list[str]:
    """Return unique names for items, never overwriting an earlier one.

    First pass appends the qualifier (the HTTP method for endpoints) to a
    repeated name; second pass appends a counter to whatever still collides.
    """
    names = [get_name(item) for item in items]

    if get_qualifier is not None:
        counts: dict[str, int] = {}
        for i, name in enumerate(names):
            if name in counts:
                names[i] = f"{name}_{get_qualifier(items[i])}"
            counts[name] = counts.get(name, 0) + 1

    final_seen: dict[str, int] = {}
    for i, name in enumerate(names):
        if name in final_seen:
            final_seen[name] += 1
            candidate = f"{name}_{final_seen[name]}"
            while candidate in final_seen:
                final_seen[name] += 1
                candidate = f"{name}_{final_seen[name]}"
            names[i] = candidate
            final_seen[candidate] = 1
        else:
            final_seen[name] = 1
    return names
