"""mcp-factory: generate MCP servers from text, OpenAPI documents or databases."""

from .assembler import AssembleOptions, assemble_server
from .codegen import write_server
from .config import FactorySettings, LLMProvider
from .database import (
    DatabaseServer,
    PostgresIntrospector,
    SchemaIntrospector,
    SqliteIntrospector,
    build_database_server,
    create_introspector,
)
from .errors import (
    ConfigurationError,
    FactoryError,
    ImplementationError,
    IntrospectionError,
    LLMCallError,
    OpenAPISpecError,
    SpecExtractionError,
)
from .models import GeneratedServer, GenerationLog, ProductionConfig, ToolSpec
from .openapi import OpenAPIServer, build_openapi_server
from .orchestrator import ToolFactory
from .providers import LLMResponse, create_provider
from .response_parser import parse_tool_response
from .validation import validate_tool_specs

__version__ = "0.1.0"

__all__ = [
    "AssembleOptions",
    "ConfigurationError",
    "DatabaseServer",
    "FactoryError",
    "FactorySettings",
    "GeneratedServer",
    "GenerationLog",
    "ImplementationError",
    "IntrospectionError",
    "LLMCallError",
    "LLMProvider",
    "LLMResponse",
    "OpenAPIServer",
    "OpenAPISpecError",
    "PostgresIntrospector",
    "ProductionConfig",
    "SchemaIntrospector",
    "SpecExtractionError",
    "SqliteIntrospector",
    "ToolFactory",
    "ToolSpec",
    "assemble_server",
    "build_database_server",
    "build_openapi_server",
    "create_introspector",
    "create_provider",
    "parse_tool_response",
    "validate_tool_specs",
    "write_server",
]
