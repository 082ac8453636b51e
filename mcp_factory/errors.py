"""Exception taxonomy for the generation pipeline.

Every fatal condition surfaces as one of these at the pipeline boundary.
Generated servers never raise; they return the JSON error envelope instead.
"""

from __future__ import annotations


class FactoryError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(FactoryError):
    """Settings are incomplete (missing API key, unknown model, ...)."""


class LLMCallError(FactoryError):
    """A model call returned an error instead of text."""


class SpecExtractionError(FactoryError):
    """Model output could not be turned into any usable tool spec."""


class ImplementationError(FactoryError):
    """Generating the implementation of a single tool failed."""

    def __init__(self, tool_name: str, reason: str) -> None:
        super().__init__(f"Implementation of {tool_name!r} failed: {reason}")
        self.tool_name = tool_name
        self.reason = reason


class IntrospectionError(FactoryError):
    """Database schema could not be read."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        if hint:
            message = f"{message} ({hint})"
        super().__init__(message)
        self.hint = hint


class OpenAPISpecError(FactoryError):
    """OpenAPI document is unreadable or structurally invalid."""
