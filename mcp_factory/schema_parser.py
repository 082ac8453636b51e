"""Extract parameters, types and security schemes from an OpenAPI document.

Handles:
- Path, query, header and cookie parameters
- Path-level parameters shared by every operation under the path
- $ref resolution for parameters and schemas
- allOf/oneOf/anyOf composition (first concrete branch wins)
- Enum value extraction into descriptions
- A JSON request body as a single `body` argument
"""

from __future__ import annotations

import re
from typing import Any, Optional

from .loader import deref, get_security_schemes
from .models import AuthConfig, AuthType, ParameterSpec
from .naming import env_var_name, unique_identifiers

PARAM_LOCATIONS = ("path", "query", "header", "cookie")

# JSON Schema type -> Python annotation used in generated handlers
_PYTHON_TYPES: dict[str, str] = {
    "string": "str",
    "integer": "int",
    "number": "float",
    "boolean": "bool",
    "array": "list",
    "object": "dict",
}


def _strip_html(text: str) -> str:
    """Strip HTML tags and collapse whitespace."""
    text = re.sub(r"<[^>]+>", "", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text


def python_type(json_type: str) -> str:
    """Python annotation for a JSON Schema type ("Any" when unknown)."""
    return _PYTHON_TYPES.get(json_type, "Any")


def resolve_json_type(spec: dict[str, Any], schema: Optional[dict[str, Any]]) -> str:
    """Resolve an OpenAPI schema to a JSON Schema primitive type name."""
    if not schema:
        return "string"

    schema = deref(spec, schema)

    if "allOf" in schema:
        for sub in schema["allOf"]:
            sub = deref(spec, sub)
            if sub.get("type") == "object" or "properties" in sub:
                return "object"
            if sub.get("type"):
                return sub["type"]
        return "object"

    for key in ("oneOf", "anyOf"):
        if key in schema:
            for sub in schema[key]:
                sub = deref(spec, sub)
                if sub.get("type") and sub["type"] != "null":
                    return resolve_json_type(spec, sub)
            return "string"

    schema_type = schema.get("type")
    # OpenAPI 3.1 allows ["string", "null"]
    if isinstance(schema_type, list):
        schema_type = next((t for t in schema_type if t != "null"), None)
    if schema_type in _PYTHON_TYPES:
        return schema_type
    if "properties" in schema:
        return "object"
    if "items" in schema:
        return "array"
    return "string"


def _get_enum_values(spec: dict[str, Any], schema: dict[str, Any]) -> Optional[list[Any]]:
    """Extract enum values from a schema, resolving $ref if needed."""
    schema = deref(spec, schema)
    if "enum" in schema:
        return list(schema["enum"])
    if "allOf" in schema:
        for sub in schema["allOf"]:
            vals = _get_enum_values(spec, sub)
            if vals:
                return vals
    return None


def _describe(text: str, enum_values: Optional[list[Any]]) -> str:
    description = _strip_html(text) if text else ""
    if enum_values:
        enum_str = ", ".join(str(v) for v in enum_values)
        if description:
            description = f"{description} (values: {enum_str})"
        else:
            description = f"Values: {enum_str}"
    return description


def merge_parameters(
    spec: dict[str, Any],
    path_level: list[dict[str, Any]],
    operation_level: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Merge path-level and operation-level parameters.

    Both lists are dereferenced first; an operation parameter replaces a
    path-level one with the same (name, in).
    """
    merged: dict[tuple[str, str], dict[str, Any]] = {}
    for param in [*path_level, *operation_level]:
        resolved = deref(spec, param)
        if "name" not in resolved:
            continue
        merged[(resolved["name"], resolved.get("in", "query"))] = resolved
    return list(merged.values())


def _json_body_schema(spec: dict[str, Any], request_body: dict[str, Any]) -> Optional[dict[str, Any]]:
    content = request_body.get("content") or {}
    for content_type, media in content.items():
        if content_type == "application/json" or content_type.endswith("+json"):
            return (media or {}).get("schema") or {}
    return None


def parse_parameters(
    spec: dict[str, Any],
    operation: dict[str, Any],
    path_item: Optional[dict[str, Any]] = None,
) -> list[ParameterSpec]:
    """Parse all parameters for an operation into ParameterSpecs.

    Path parameters are always required. A JSON request body becomes one
    `body` object parameter carrying requestBody.required.
    """
    raw_params = merge_parameters(
        spec,
        (path_item or {}).get("parameters") or [],
        operation.get("parameters") or [],
    )
    raw_params = [p for p in raw_params if p.get("in", "query") in PARAM_LOCATIONS]

    request_body = deref(spec, operation.get("requestBody") or {})
    body_schema = _json_body_schema(spec, request_body) if request_body else None

    wire_names = [p["name"] for p in raw_params]
    if body_schema is not None:
        wire_names.append("body")
    arg_names = unique_identifiers(wire_names)

    params: list[ParameterSpec] = []
    for param, arg_name in zip(raw_params, arg_names):
        schema = param.get("schema") or {}
        location = param.get("in", "query")
        enum_values = _get_enum_values(spec, schema) if schema else None
        params.append(ParameterSpec(
            name=param["name"],
            arg_name=arg_name,
            location=location,
            required=location == "path" or bool(param.get("required", False)),
            type=resolve_json_type(spec, schema),
            description=_describe(param.get("description", ""), enum_values),
            enum=enum_values,
        ))

    if body_schema is not None:
        params.append(ParameterSpec(
            name="body",
            arg_name=arg_names[-1],
            location="body",
            required=bool(request_body.get("required", False)),
            type="object",
            description=_describe(request_body.get("description", "") or "Request body (JSON)", None),
        ))

    return params


def parse_security_schemes(spec: dict[str, Any]) -> list[AuthConfig]:
    """One AuthConfig per understood security scheme, in document order."""
    configs: list[AuthConfig] = []
    for name, scheme in get_security_schemes(spec).items():
        scheme = deref(spec, scheme)
        scheme_type = scheme.get("type")
        http_scheme = str(scheme.get("scheme", "")).lower()

        if scheme_type == "apiKey":
            configs.append(AuthConfig(
                type=AuthType.API_KEY,
                scheme_name=name,
                env_var_name=env_var_name(name, "API_KEY"),
                param_name=scheme.get("name") or "X-API-Key",
                param_location=scheme.get("in") or "header",
            ))
        elif scheme_type == "http" and http_scheme == "bearer":
            configs.append(AuthConfig(
                type=AuthType.BEARER,
                scheme_name=name,
                env_var_name=env_var_name(name, "TOKEN"),
            ))
        elif scheme_type == "http" and http_scheme == "basic":
            configs.append(AuthConfig(
                type=AuthType.BASIC,
                scheme_name=name,
                env_var_name=env_var_name(name, "CREDENTIALS"),
            ))
        elif scheme_type == "oauth2":
            configs.append(AuthConfig(
                type=AuthType.OAUTH2,
                scheme_name=name,
                env_var_name=env_var_name(name, "TOKEN"),
            ))
    return configs
