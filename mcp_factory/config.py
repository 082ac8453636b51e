"""Factory settings loaded from the environment / .env file."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMProvider(str, Enum):
    """Supported model providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OLLAMA = "ollama"


CLAUDE_MODELS: dict[str, str] = {
    "claude-sonnet-4-5-20250929": "Claude Sonnet 4.5 - agents and coding (recommended)",
    "claude-opus-4-5-20251101": "Claude Opus 4.5 - most capable",
    "claude-haiku-4-5-20251001": "Claude Haiku 4.5 - fastest",
}

OPENAI_MODELS: dict[str, str] = {
    "gpt-5.2": "GPT-5.2 (recommended)",
    "gpt-5.1": "GPT-5.1",
    "gpt-5": "GPT-5",
    "gpt-5-mini": "GPT-5 Mini - fast, efficient",
}

DEFAULT_MODELS: dict[LLMProvider, str] = {
    LLMProvider.ANTHROPIC: "claude-sonnet-4-5-20250929",
    LLMProvider.OPENAI: "gpt-5.2",
    LLMProvider.OLLAMA: "qwen2.5-coder:7b",
}

API_KEY_ENV_VARS: dict[LLMProvider, Optional[str]] = {
    LLMProvider.ANTHROPIC: "ANTHROPIC_API_KEY",
    LLMProvider.OPENAI: "OPENAI_API_KEY",
    LLMProvider.OLLAMA: None,  # local server, no key
}


class FactorySettings(BaseSettings):
    """Settings for a ToolFactory run."""
    model_config = SettingsConfigDict(
        env_prefix="MCP_FACTORY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    provider: LLMProvider = Field(default=LLMProvider.ANTHROPIC, description="Model provider")
    model: Optional[str] = Field(None, description="Model id; provider default when unset")
    max_tokens: int = Field(default=4096, description="Token budget for spec extraction")
    implementation_max_tokens: int = Field(default=2048, description="Token budget per tool implementation")
    temperature: float = Field(default=0.0, ge=0.0, le=1.0)
    request_timeout_seconds: float = Field(default=120.0, description="HTTP timeout for model calls")

    anthropic_api_key: Optional[str] = Field(
        None, validation_alias=AliasChoices("MCP_FACTORY_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )
    openai_api_key: Optional[str] = Field(
        None, validation_alias=AliasChoices("MCP_FACTORY_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    ollama_host: str = Field(
        default="http://localhost:11434",
        validation_alias=AliasChoices("MCP_FACTORY_OLLAMA_HOST", "OLLAMA_HOST"),
    )

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(None, description="Optional rotating log file")

    @property
    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.provider]

    @property
    def api_key(self) -> Optional[str]:
        if self.provider == LLMProvider.ANTHROPIC:
            return self.anthropic_api_key
        if self.provider == LLMProvider.OPENAI:
            return self.openai_api_key
        return None


def default_settings(**overrides) -> FactorySettings:
    """Settings for whichever provider has credentials in the environment.

    Anthropic is preferred, then OpenAI; falls back to Anthropic so that
    validation reports the missing key.
    """
    if "provider" not in overrides:
        if os.environ.get("ANTHROPIC_API_KEY"):
            overrides["provider"] = LLMProvider.ANTHROPIC
        elif os.environ.get("OPENAI_API_KEY"):
            overrides["provider"] = LLMProvider.OPENAI
    return FactorySettings(**overrides)


def validate_settings(settings: FactorySettings) -> list[str]:
    """Return human-readable configuration problems (empty when usable)."""
    errors: list[str] = []

    env_var = API_KEY_ENV_VARS[settings.provider]
    if env_var and not settings.api_key:
        errors.append(f"API key not set. Set {env_var} or pass api_key explicitly.")

    model = settings.resolved_model
    if settings.provider == LLMProvider.ANTHROPIC and model not in CLAUDE_MODELS:
        errors.append(f"Unknown Claude model: {model}. Available: {', '.join(CLAUDE_MODELS)}")
    if settings.provider == LLMProvider.OPENAI and model not in OPENAI_MODELS:
        errors.append(f"Unknown OpenAI model: {model}. Available: {', '.join(OPENAI_MODELS)}")

    return errors
