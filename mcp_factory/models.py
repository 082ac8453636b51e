"""Data models shared by all three generation paths.

ToolSpec is the canonical record the natural-language, OpenAPI and database
paths converge on. The remaining models describe path-specific inputs
(tables, endpoints, auth schemes) and the generation outputs.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# JSON Schema
# ---------------------------------------------------------------------------

class JsonSchemaProperty(BaseModel):
    """One property of a tool's input or output schema."""
    model_config = ConfigDict(extra="allow")

    type: Optional[Any] = None
    description: Optional[str] = None
    default: Optional[Any] = None
    enum: Optional[list[Any]] = None
    items: Optional[JsonSchemaProperty] = None
    properties: Optional[dict[str, JsonSchemaProperty]] = None
    required: Optional[list[str]] = None


class JsonSchema(BaseModel):
    """Top-level schema; `type` and `properties` are always present."""
    model_config = ConfigDict(extra="allow")

    type: str = "object"
    properties: dict[str, JsonSchemaProperty] = Field(default_factory=dict)
    required: Optional[list[str]] = None
    items: Optional[JsonSchemaProperty] = None
    description: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        data.setdefault("properties", {})
        return data


# ---------------------------------------------------------------------------
# ToolSpec
# ---------------------------------------------------------------------------

class ToolSpec(BaseModel):
    """Canonical description of one callable tool. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Canonical snake_case identifier")
    description: str = Field(..., description="What the tool does")
    input_schema: JsonSchema = Field(default_factory=JsonSchema)
    output_schema: Optional[dict[str, Any]] = None
    implementation_hints: Optional[str] = None
    dependencies: list[str] = Field(default_factory=list)

    @property
    def required_params(self) -> list[str]:
        return list(self.input_schema.required or [])

    def to_dict(self) -> dict[str, Any]:
        """Serialize with snake_case keys (the on-disk tools.json shape)."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema.to_dict(),
            "output_schema": self.output_schema,
            "implementation_hints": self.implementation_hints,
            "dependencies": list(self.dependencies),
        }


# ---------------------------------------------------------------------------
# Database path
# ---------------------------------------------------------------------------

class DatabaseDialect(str, Enum):
    """SQL backend flavor."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class ColumnInfo(BaseModel):
    """One reflected column."""
    model_config = ConfigDict(frozen=True)

    name: str
    data_type: str
    is_nullable: bool = True
    is_primary_key: bool = False
    default_value: Optional[Any] = None
    foreign_key: Optional[str] = Field(None, description="'table.column' reference")


class TableInfo(BaseModel):
    """One reflected table."""
    model_config = ConfigDict(frozen=True)

    name: str
    columns: list[ColumnInfo] = Field(default_factory=list)
    schema_name: Optional[str] = None

    @property
    def primary_key(self) -> Optional[ColumnInfo]:
        """The primary key column, only when exactly one column is marked."""
        pks = [c for c in self.columns if c.is_primary_key]
        return pks[0] if len(pks) == 1 else None

    @property
    def non_pk_columns(self) -> list[ColumnInfo]:
        return [c for c in self.columns if not c.is_primary_key]


# ---------------------------------------------------------------------------
# OpenAPI path
# ---------------------------------------------------------------------------

class AuthType(str, Enum):
    """Security scheme kinds the OpenAPI path understands."""
    API_KEY = "api_key"
    BEARER = "bearer"
    BASIC = "basic"
    OAUTH2 = "oauth2"


class AuthConfig(BaseModel):
    """One security scheme and the env var that supplies its secret."""
    model_config = ConfigDict(frozen=True)

    type: AuthType
    scheme_name: str
    env_var_name: str
    param_name: Optional[str] = Field(None, description="Header/query/cookie name for apiKey")
    param_location: Optional[str] = Field(None, description="header, query or cookie")


class ParameterSpec(BaseModel):
    """One endpoint parameter as the handler sees it."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Name on the wire")
    arg_name: str = Field(..., description="Python identifier used by the handler")
    location: str = Field(..., description="path, query, header, cookie or body")
    required: bool = False
    type: str = "string"
    description: str = ""
    enum: Optional[list[Any]] = None


class EndpointSpec(BaseModel):
    """One (path, method) pair."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    method: str
    path: str
    parameters: list[ParameterSpec] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Generation log
# ---------------------------------------------------------------------------

class GenerationStage(str, Enum):
    """States of a natural-language generation run."""
    INIT = "init"
    WEB_SEARCH = "web_search"
    EXTRACT_SPECS = "extract_specs"
    LLM_CALL = "llm_call"
    IMPLEMENT = "implement"
    ASSEMBLE = "assemble"
    DONE = "done"
    FAILED = "failed"


class GenerationStep(BaseModel):
    """One immutable, timestamped entry in the generation log."""
    model_config = ConfigDict(frozen=True)

    stage: GenerationStage
    description: str
    input_data: Optional[str] = None
    output_data: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class WebSearchEntry(BaseModel):
    """One research query and what came back."""
    model_config = ConfigDict(frozen=True)

    query: str
    results: str
    sources: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_utcnow)


class GenerationLog(BaseModel):
    """Append-only trace of a generation run."""
    server_name: str
    created_at: datetime = Field(default_factory=_utcnow)
    provider: str = ""
    model: str = ""
    web_search_enabled: bool = False
    original_description: str = ""
    enhanced_description: str = ""
    web_searches: list[WebSearchEntry] = Field(default_factory=list)
    steps: list[GenerationStep] = Field(default_factory=list)
    tools_generated: list[str] = Field(default_factory=list)
    dependencies_used: list[str] = Field(default_factory=list)

    def add_step(
        self,
        stage: GenerationStage,
        description: str,
        input_data: Optional[str] = None,
        output_data: Optional[str] = None,
    ) -> GenerationStep:
        step = GenerationStep(
            stage=stage,
            description=description,
            input_data=input_data,
            output_data=output_data,
        )
        self.steps.append(step)
        return step

    def add_web_search(self, query: str, results: str, sources: Optional[list[str]] = None) -> None:
        self.web_searches.append(WebSearchEntry(query=query, results=results, sources=sources or []))

    @property
    def stages(self) -> list[GenerationStage]:
        return [step.stage for step in self.steps]


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------

class ProductionConfig(BaseModel):
    """Optional runtime features compiled into the generated server."""
    enable_logging: bool = False
    log_level: str = Field(default="INFO", description="Level for the generated server's logger")
    log_json: bool = False
    enable_rate_limiting: bool = False
    rate_limit_requests: int = Field(default=100, ge=1)
    rate_limit_window_seconds: int = Field(default=60, ge=1)
    enable_retries: bool = False
    max_retries: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0.0, description="Seconds")


class GeneratedServer(BaseModel):
    """Everything a generation run produces.

    (tool_specs, auth_env_vars, production_config) is the contract the
    docs/tests/Dockerfile generators consume.
    """
    name: str
    server_code: str
    tool_specs: list[ToolSpec] = Field(default_factory=list)
    auth_env_vars: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    production_config: Optional[ProductionConfig] = None
    execution_log: Optional[GenerationLog] = None

    @property
    def tool_names(self) -> list[str]:
        return [spec.name for spec in self.tool_specs]


def collect_dependencies(tool_specs: list[ToolSpec]) -> list[str]:
    """Union of all tool dependencies, first occurrence order."""
    seen: dict[str, None] = {}
    for spec in tool_specs:
        for dep in spec.dependencies:
            seen.setdefault(dep, None)
    return list(seen)
