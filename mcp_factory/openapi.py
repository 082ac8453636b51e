"""Build tool specs and handler fragments from an OpenAPI 3 document.

No model is involved: every (path, method) pair becomes one tool whose
handler issues the HTTP request with httpx. The handler reads exactly the
arguments its ToolSpec declares, under the same names.

Tool naming:
  operationId listPets          -> list_pets
  GET /pets/{petId} (no opId)   -> get_pets_pet_id
  a repeated name               -> <name>_<method>, then <name>_2, _3 ...
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .loader import detect_base_url, get_paths
from .models import (
    AuthConfig,
    AuthType,
    EndpointSpec,
    JsonSchema,
    JsonSchemaProperty,
    ParameterSpec,
    ToolSpec,
)
from .naming import deduplicate_names, operation_tool_name, to_identifier
from .schema_parser import parse_parameters, parse_security_schemes

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "post", "put", "delete", "patch")

HTTP_DEPENDENCIES = ["httpx"]

PATH_PLACEHOLDER = re.compile(r"\{([^{}/]+)\}")


class OpenAPIServer(BaseModel):
    """Everything the OpenAPI path hands to the assembler."""
    model_config = ConfigDict(frozen=True)

    base_url: str
    auth_configs: list[AuthConfig] = Field(default_factory=list)
    endpoints: list[EndpointSpec] = Field(default_factory=list)
    tool_specs: list[ToolSpec] = Field(default_factory=list)
    implementations: dict[str, str] = Field(default_factory=dict)
    setup_code: str = ""
    auth_env_vars: list[str] = Field(default_factory=list)

    @property
    def dependencies(self) -> list[str]:
        return list(HTTP_DEPENDENCIES)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _make_description(method: str, path: str, operation: dict[str, Any]) -> str:
    """Summary, else the first sentence of the description, else METHOD path."""
    summary = (operation.get("summary") or "").strip()
    if summary:
        return summary
    description = (operation.get("description") or "").strip()
    if description:
        return description.split(". ")[0].rstrip(".")
    return f"{method.upper()} {path}"


def _with_undeclared_path_params(path: str, params: list[ParameterSpec]) -> list[ParameterSpec]:
    """Add a required string parameter for each {placeholder} no parameter declares."""
    declared = {p.name for p in params if p.location == "path"}
    missing = [name for name in dict.fromkeys(PATH_PLACEHOLDER.findall(path)) if name not in declared]
    if not missing:
        return params
    logger.warning("Path %s does not declare parameters %s; treating them as required strings", path, missing)
    arg_names = deduplicate_names([p.arg_name for p in params] + [to_identifier(n) for n in missing], lambda n: n)
    return params + [
        ParameterSpec(name=name, arg_name=arg_name, location="path", required=True, description="Path parameter")
        for name, arg_name in zip(missing, arg_names[len(params):])
    ]


def parse_endpoints(spec: dict[str, Any]) -> list[EndpointSpec]:
    """One EndpointSpec per (path, method), names made unique."""
    found: list[tuple[str, str, dict[str, Any], dict[str, Any]]] = []
    for path, path_item in get_paths(spec).items():
        if not isinstance(path_item, dict):
            continue
        for method in HTTP_METHODS:
            operation = path_item.get(method)
            if isinstance(operation, dict):
                found.append((path, method, operation, path_item))

    names = deduplicate_names(
        found,
        lambda item: operation_tool_name(item[1], item[0], item[2].get("operationId")),
        lambda item: item[1],
    )

    endpoints: list[EndpointSpec] = []
    for (path, method, operation, path_item), name in zip(found, names):
        endpoints.append(EndpointSpec(
            name=name,
            description=_make_description(method, path, operation),
            method=method.upper(),
            path=path,
            parameters=_with_undeclared_path_params(path, parse_parameters(spec, operation, path_item)),
        ))
    return endpoints


def endpoint_tool_spec(endpoint: EndpointSpec) -> ToolSpec:
    """ToolSpec whose schema lists exactly the handler's arguments."""
    properties: dict[str, JsonSchemaProperty] = {}
    required: list[str] = []
    for param in endpoint.parameters:
        properties[param.arg_name] = JsonSchemaProperty(
            type=param.type,
            description=param.description or None,
            enum=param.enum,
        )
        if param.required:
            required.append(param.arg_name)
    return ToolSpec(
        name=endpoint.name,
        description=endpoint.description,
        input_schema=JsonSchema(properties=properties, required=required or None),
        dependencies=list(HTTP_DEPENDENCIES),
    )


# ---------------------------------------------------------------------------
# Code generation
# ---------------------------------------------------------------------------

def render_setup_code(base_url: str) -> str:
    """Module-level helpers every OpenAPI handler relies on."""
    return "\n".join([
        "import httpx",
        "",
        f"BASE_URL = {base_url.rstrip('/')!r}",
        "HTTP_TIMEOUT = 30.0",
        "",
        "",
        "def _http_client() -> httpx.AsyncClient:",
        '    """HTTP client for one tool call."""',
        "    return httpx.AsyncClient(timeout=HTTP_TIMEOUT)",
        "",
        "",
        "def _response_payload(response: httpx.Response) -> Any:",
        "    try:",
        "        return response.json()",
        "    except ValueError:",
        "        return response.text",
    ]) + "\n"


def _auth_lines(auth: Optional[AuthConfig]) -> list[str]:
    """Attach at most one auth value, read from the environment per call."""
    if auth is None:
        return []
    lines = [f"_auth_value = get_auth({auth.env_var_name!r})", "if _auth_value:"]
    if auth.type == AuthType.API_KEY:
        target = {"query": "_query", "cookie": "_cookies"}.get(auth.param_location or "", "_headers")
        lines.append(f"    {target}[{auth.param_name!r}] = _auth_value")
    elif auth.type == AuthType.BASIC:
        lines.append("    _encoded = base64.b64encode(_auth_value.encode()).decode()")
        lines.append('    _headers["Authorization"] = f"Basic {_encoded}"')
    else:
        lines.append('    _headers["Authorization"] = f"Bearer {_auth_value}"')
    return lines


def render_endpoint_fragment(endpoint: EndpointSpec, auth: Optional[AuthConfig] = None) -> str:
    """Python handler body for one endpoint (leading imports included)."""
    by_location: dict[str, list[ParameterSpec]] = {}
    for param in endpoint.parameters:
        by_location.setdefault(param.location, []).append(param)

    imports: list[str] = []
    if by_location.get("path"):
        imports.append("from urllib.parse import quote")
    if auth is not None and auth.type == AuthType.BASIC:
        imports.append("import base64")

    lines = [f"_url = BASE_URL + {endpoint.path!r}"]
    for param in by_location.get("path", []):
        placeholder = "{" + param.name + "}"
        lines.append(f"_url = _url.replace({placeholder!r}, quote(str({param.arg_name}), safe=''))")

    sends_cookies = bool(by_location.get("cookie")) or (
        auth is not None and auth.type == AuthType.API_KEY and auth.param_location == "cookie"
    )
    targets = [("_query", "query"), ("_headers", "header")]
    if sends_cookies:
        targets.append(("_cookies", "cookie"))
    for target, location in targets:
        lines.append(f"{target}: dict[str, Any] = {{}}")
        for param in by_location.get(location, []):
            lines.append(f"if {param.arg_name} is not None:")
            lines.append(f"    {target}[{param.name!r}] = {_wire_value(param)}")

    lines.extend(_auth_lines(auth))
    if sends_cookies:
        lines.extend([
            "if _cookies:",
            '    _headers["Cookie"] = "; ".join(f"{k}={v}" for k, v in _cookies.items())',
        ])

    body_params = by_location.get("body", [])
    body_arg = f", json={body_params[0].arg_name}" if body_params else ""
    lines.extend([
        "async with _http_client() as _client:",
        "    _response = await _client.request(",
        f"        {endpoint.method!r}, _url, params=_query, headers=_headers{body_arg},",
        "    )",
        "    _response.raise_for_status()",
        "return _text(_response_payload(_response))",
    ])

    header = "\n".join(imports) + "\n\n" if imports else ""
    return header + "\n".join(lines) + "\n"


def _wire_value(param: ParameterSpec) -> str:
    # headers and cookies must be strings on the wire
    if param.location in ("header", "cookie"):
        return f"str({param.arg_name})"
    return param.arg_name


def build_openapi_server(spec: dict[str, Any], base_url: Optional[str] = None) -> OpenAPIServer:
    """Parse the document and produce specs plus handler fragments. Pure."""
    resolved_base_url = base_url or detect_base_url(spec)
    auth_configs = parse_security_schemes(spec)
    endpoints = parse_endpoints(spec)
    primary_auth = auth_configs[0] if auth_configs else None

    tool_specs = [endpoint_tool_spec(endpoint) for endpoint in endpoints]
    implementations = {
        endpoint.name: render_endpoint_fragment(endpoint, primary_auth)
        for endpoint in endpoints
    }

    logger.info(
        "Parsed OpenAPI document: %d endpoints, %d auth schemes, base URL %s",
        len(endpoints), len(auth_configs), resolved_base_url,
    )
    if len(auth_configs) > 1:
        logger.warning(
            "Only the first security scheme (%s) is wired into handlers",
            auth_configs[0].scheme_name,
        )

    return OpenAPIServer(
        base_url=resolved_base_url,
        auth_configs=auth_configs,
        endpoints=endpoints,
        tool_specs=tool_specs,
        implementations=implementations,
        setup_code=render_setup_code(resolved_base_url),
        auth_env_vars=[config.env_var_name for config in auth_configs],
    )
