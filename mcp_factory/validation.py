"""Coerce raw model records into canonical ToolSpecs.

Each record is validated on its own. A record that fails gets exactly one
repair pass (default name and description substituted) before it is dropped
with its error kept. The result carries both lists; callers decide whether
the outcome is fatal (see ValidationResult.is_fatal).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationError,
    field_validator,
)

from .models import JsonSchema, ToolSpec
from .naming import canonicalize_tool_name, deduplicate_names

DEFAULT_DESCRIPTION = "No description provided"

# Version specifiers stripped from dependency entries, in order
_VERSION_SEPARATORS = (">=", "==", "<")


def strip_version_specifier(dep: str) -> str:
    """'requests>=2.31' -> 'requests'."""
    for sep in _VERSION_SEPARATORS:
        dep = dep.split(sep)[0]
    return dep.strip()


class RawToolSpec(BaseModel):
    """Shape a model-produced tool record must satisfy."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Annotated[str, StringConstraints(min_length=1, max_length=100)]
    description: Annotated[str, StringConstraints(min_length=1)] = DEFAULT_DESCRIPTION
    input_schema: JsonSchema = Field(
        default_factory=JsonSchema,
        validation_alias=AliasChoices("input_schema", "inputSchema"),
    )
    output_schema: Optional[dict[str, Any]] = Field(
        None, validation_alias=AliasChoices("output_schema", "outputSchema"),
    )
    implementation_hints: Optional[str] = Field(
        None, validation_alias=AliasChoices("implementation_hints", "implementationHints"),
    )
    dependencies: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def canonical_name(cls, v: str) -> str:
        return canonicalize_tool_name(v)

    @field_validator("input_schema", mode="before")
    @classmethod
    def complete_schema(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, dict):
            schema = dict(v)
            if not schema.get("type"):
                schema["type"] = "object"
            if not schema.get("properties"):
                schema["properties"] = {}
            return schema
        return v

    @field_validator("dependencies", mode="before")
    @classmethod
    def default_dependencies(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("dependencies")
    @classmethod
    def clean_dependencies(cls, v: list[str]) -> list[str]:
        cleaned: dict[str, None] = {}
        for dep in v:
            name = strip_version_specifier(dep)
            if name:
                cleaned.setdefault(name, None)
        return list(cleaned)

    def to_tool_spec(self) -> ToolSpec:
        return ToolSpec(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
            output_schema=self.output_schema,
            implementation_hints=self.implementation_hints,
            dependencies=self.dependencies,
        )


@dataclass
class ValidationResult:
    """Valid specs plus one error string per rejected record."""
    valid: list[ToolSpec] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def is_fatal(self) -> bool:
        """Fatal only when something failed and nothing survived."""
        return bool(self.errors) and not self.valid


def _format_error(index: int, error: ValidationError) -> str:
    details = []
    for err in error.errors():
        loc = ".".join(str(part) for part in err["loc"])
        details.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return f"Tool spec {index}: {', '.join(details)}"


def _repaired(record: dict[str, Any], index: int) -> dict[str, Any]:
    base = dict(record)
    base["name"] = base.get("name") or f"tool_{index + 1}"
    base["description"] = base.get("description") or DEFAULT_DESCRIPTION
    return base


def validate_tool_specs(records: list[Any]) -> ValidationResult:
    """Validate every record; repair once; collect errors for the rest."""
    validated: list[RawToolSpec] = []
    errors: list[str] = []

    for i, record in enumerate(records):
        try:
            validated.append(RawToolSpec.model_validate(record))
            continue
        except ValidationError as e:
            error = _format_error(i, e)

        # Only mappings are repairable; a bare string or number is not a record
        if not isinstance(record, dict):
            errors.append(error)
            continue
        try:
            validated.append(RawToolSpec.model_validate(_repaired(record, i)))
        except ValidationError:
            errors.append(error)

    names = deduplicate_names(validated, lambda raw: raw.name)
    valid = [
        raw.to_tool_spec().model_copy(update={"name": name})
        for raw, name in zip(validated, names)
    ]
    return ValidationResult(valid=valid, errors=errors)
