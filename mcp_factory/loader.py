"""Load an OpenAPI document and navigate it.

Accepts JSON or YAML files; only local "#/..." references are resolved.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .errors import OpenAPISpecError

DEFAULT_BASE_URL = "http://localhost:8080"


def load_spec(path: Path | str) -> dict[str, Any]:
    """Load the OpenAPI spec from disk (.json, .yaml or .yml)."""
    spec_file = Path(path)
    try:
        text = spec_file.read_text(encoding="utf-8")
    except OSError as e:
        raise OpenAPISpecError(f"Cannot read OpenAPI spec {spec_file}: {e}") from e
    return parse_spec_text(text, yaml_first=spec_file.suffix.lower() in (".yaml", ".yml"))


def parse_spec_text(text: str, yaml_first: bool = False) -> dict[str, Any]:
    """Parse OpenAPI text. JSON is tried first unless the file is YAML."""
    try:
        spec = yaml.safe_load(text) if yaml_first else json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError):
        try:
            # JSON is a YAML subset, so this also catches misnamed files
            spec = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise OpenAPISpecError(f"OpenAPI spec is neither valid JSON nor YAML: {e}") from e

    if not isinstance(spec, dict):
        raise OpenAPISpecError("OpenAPI spec must be a mapping at the top level")
    return spec


def get_paths(spec: dict[str, Any]) -> dict[str, Any]:
    """Extract paths from the document."""
    return spec.get("paths") or {}


def get_security_schemes(spec: dict[str, Any]) -> dict[str, Any]:
    """Extract component security schemes from the document."""
    return (spec.get("components") or {}).get("securitySchemes") or {}


def detect_base_url(spec: dict[str, Any]) -> str:
    """First server URL, or the local default."""
    servers = spec.get("servers") or []
    if servers and isinstance(servers[0], dict) and servers[0].get("url"):
        return servers[0]["url"]
    return DEFAULT_BASE_URL


def resolve_ref(spec: dict[str, Any], ref: str) -> dict[str, Any]:
    """Resolve a local $ref pointer in the document."""
    if not ref.startswith("#/"):
        raise OpenAPISpecError(f"Only local references are supported: {ref}")
    node: Any = spec
    for part in ref[2:].split("/"):
        part = part.replace("~1", "/").replace("~0", "~")
        if not isinstance(node, dict) or part not in node:
            raise OpenAPISpecError(f"Unresolvable reference: {ref}")
        node = node[part]
    return node


def deref(spec: dict[str, Any], node: dict[str, Any]) -> dict[str, Any]:
    """Follow $ref chains until a concrete node is reached."""
    seen: set[str] = set()
    while isinstance(node, dict) and "$ref" in node:
        ref = node["$ref"]
        if ref in seen:
            raise OpenAPISpecError(f"Circular reference: {ref}")
        seen.add(ref)
        node = resolve_ref(spec, ref)
    return node
