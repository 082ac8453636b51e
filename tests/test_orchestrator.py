"""Tests for the ToolFactory generation paths, driven by a scripted provider."""

from __future__ import annotations

import json

import pytest

from conftest import FakeProvider, tools_json
from mcp_factory.config import FactorySettings, LLMProvider
from mcp_factory.errors import (
    ConfigurationError,
    ImplementationError,
    IntrospectionError,
    LLMCallError,
    SpecExtractionError,
)
from mcp_factory.models import GenerationStage, ProductionConfig
from mcp_factory.orchestrator import ToolFactory
from mcp_factory.providers import LLMResponse

WEATHER = {
    "name": "Get Weather",
    "description": "Current weather for a city",
    "inputSchema": {"type": "object", "properties": {"city": {"type": "string"}}, "required": ["city"]},
    "dependencies": ["httpx>=0.27"],
}

FORECAST = {
    "name": "get_forecast",
    "description": "Five day forecast",
    "input_schema": {"type": "object", "properties": {"city": {"type": "string"}, "days": {"type": "integer"}}},
}

WEATHER_CODE = "```python\nreturn _text({'city': city, 'temp': 21})\n```"
FORECAST_CODE = "```python\nreturn _text({'city': city, 'days': days or 5})\n```"


def _factory(*responses) -> ToolFactory:
    return ToolFactory(provider=FakeProvider(list(responses)))


def _non_llm_stages(log) -> list[GenerationStage]:
    return [s for s in log.stages if s != GenerationStage.LLM_CALL]


class TestGenerateFromDescription:

    async def test_happy_path(self):
        factory = _factory(tools_json(WEATHER, FORECAST), WEATHER_CODE, FORECAST_CODE)
        server = await factory.generate_from_description("weather tools", server_name="weather")

        assert server.name == "weather"
        assert server.tool_names == ["get_weather", "get_forecast"]
        assert server.dependencies == ["httpx"]
        assert "async def get_weather(city: str) -> dict:" in server.server_code
        assert "'temp': 21" in server.server_code
        compile(server.server_code, "server.py", "exec")

    async def test_stage_order(self):
        factory = _factory(tools_json(WEATHER, FORECAST), WEATHER_CODE, FORECAST_CODE)
        server = await factory.generate_from_description("weather tools")
        log = server.execution_log

        assert _non_llm_stages(log) == [
            GenerationStage.INIT,
            GenerationStage.EXTRACT_SPECS,
            GenerationStage.IMPLEMENT,
            GenerationStage.IMPLEMENT,
            GenerationStage.ASSEMBLE,
            GenerationStage.DONE,
        ]
        assert log.stages.count(GenerationStage.LLM_CALL) == 3
        assert log.tools_generated == ["get_weather", "get_forecast"]
        assert log.dependencies_used == ["httpx"]
        assert log.original_description == "weather tools"
        assert log.provider == "fake"
        assert log.model == "fake-model"

    async def test_timestamps_monotonic(self):
        factory = _factory(tools_json(WEATHER), WEATHER_CODE)
        log = (await factory.generate_from_description("weather")).execution_log
        stamps = [s.timestamp for s in log.steps]
        assert stamps == sorted(stamps)

    async def test_implementation_prompt_lists_arguments(self):
        provider = FakeProvider([tools_json(FORECAST), FORECAST_CODE])
        await ToolFactory(provider=provider).generate_from_description("forecast")
        prompt = provider.prompts[1]
        assert "city: Optional[str] = None, days: Optional[int] = None" in prompt
        assert "- Name: get_forecast" in prompt

    async def test_partial_extraction(self):
        factory = _factory(tools_json(WEATHER, "garbage", 12), WEATHER_CODE)
        server = await factory.generate_from_description("weather")
        assert server.tool_names == ["get_weather"]

    async def test_all_records_invalid(self):
        factory = _factory(tools_json("garbage", 12))
        with pytest.raises(SpecExtractionError, match="No valid tool specifications"):
            await factory.generate_from_description("weather")
        assert factory.last_log.stages[-1] == GenerationStage.FAILED

    async def test_empty_extraction(self):
        factory = _factory("[]")
        with pytest.raises(SpecExtractionError, match="no tool specifications"):
            await factory.generate_from_description("weather")

    async def test_unparseable_extraction(self):
        factory = _factory("Sorry, I can't help with that.")
        with pytest.raises(SpecExtractionError, match="Failed to parse"):
            await factory.generate_from_description("weather")

    async def test_extraction_call_error(self):
        factory = _factory(LLMResponse(error="anthropic API error 529: overloaded"))
        with pytest.raises(LLMCallError, match="overloaded"):
            await factory.generate_from_description("weather")
        assert _non_llm_stages(factory.last_log) == [
            GenerationStage.INIT, GenerationStage.EXTRACT_SPECS, GenerationStage.FAILED,
        ]

    async def test_implementation_failure_aborts(self):
        factory = _factory(
            tools_json(WEATHER, FORECAST),
            WEATHER_CODE,
            LLMResponse(error="timeout"),
        )
        with pytest.raises(ImplementationError) as excinfo:
            await factory.generate_from_description("weather")
        assert excinfo.value.tool_name == "get_forecast"
        stages = _non_llm_stages(factory.last_log)
        assert GenerationStage.ASSEMBLE not in stages
        assert stages[-1] == GenerationStage.FAILED

    async def test_implementation_syntax_error(self):
        factory = _factory(tools_json(WEATHER), "```python\nreturn _text(\n```")
        with pytest.raises(ImplementationError, match="invalid Python"):
            await factory.generate_from_description("weather")

    async def test_implementation_empty(self):
        factory = _factory(tools_json(WEATHER), "```python\n```")
        with pytest.raises(ImplementationError, match="no code"):
            await factory.generate_from_description("weather")

    async def test_auth_and_production(self):
        factory = _factory(tools_json(WEATHER), WEATHER_CODE)
        server = await factory.generate_from_description(
            "weather",
            auth_env_vars=["WEATHER_API_KEY"],
            production_config=ProductionConfig(enable_rate_limiting=True),
        )
        assert server.auth_env_vars == ["WEATHER_API_KEY"]
        assert "AUTH_ENV_VARS = ['WEATHER_API_KEY']" in server.server_code
        assert "rate_limiter.allow('get_weather')" in server.server_code
        assert server.production_config.enable_rate_limiting


class TestWebSearch:

    async def test_research_enriches_description(self):
        research = "Use Open-Meteo.\nSource: https://open-meteo.com/en/docs"
        provider = FakeProvider([research, tools_json(WEATHER), WEATHER_CODE])
        server = await ToolFactory(provider=provider).generate_from_description("weather", web_search=True)

        log = server.execution_log
        assert log.web_search_enabled
        assert _non_llm_stages(log)[:3] == [
            GenerationStage.INIT, GenerationStage.WEB_SEARCH, GenerationStage.EXTRACT_SPECS,
        ]
        assert log.web_searches[0].sources == ["https://open-meteo.com/en/docs"]
        assert "Use Open-Meteo." in log.enhanced_description
        assert "Use Open-Meteo." in provider.prompts[1]

    async def test_research_failure_is_not_fatal(self):
        provider = FakeProvider([LLMResponse(error="search unavailable"), tools_json(WEATHER), WEATHER_CODE])
        server = await ToolFactory(provider=provider).generate_from_description("weather", web_search=True)

        log = server.execution_log
        assert server.tool_names == ["get_weather"]
        assert log.web_searches == []
        assert log.enhanced_description == "weather"
        assert log.stages[-1] == GenerationStage.DONE


class TestConfiguration:

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("MCP_FACTORY_ANTHROPIC_API_KEY", raising=False)
        settings = FactorySettings(provider=LLMProvider.ANTHROPIC, _env_file=None)
        with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
            ToolFactory(settings)

    def test_no_llm_needed(self):
        settings = FactorySettings(provider=LLMProvider.ANTHROPIC, anthropic_api_key=None, _env_file=None)
        assert ToolFactory(settings, require_llm=False).provider is None

    async def test_description_without_provider(self):
        factory = ToolFactory(FactorySettings(_env_file=None), require_llm=False)
        with pytest.raises(ConfigurationError):
            await factory.generate_from_description("weather")


class TestOtherPaths:

    async def test_openapi_from_dict(self, petstore_spec):
        factory = ToolFactory(FactorySettings(_env_file=None), require_llm=False)
        server = await factory.generate_from_openapi(petstore_spec, server_name="petstore")
        assert server.tool_names == ["list_pets", "create_pet", "get_pets_pet_id", "delete_pet"]
        assert server.auth_env_vars == ["API_KEY_API_KEY"]
        assert server.dependencies == ["httpx"]
        assert server.execution_log is None
        compile(server.server_code, "server.py", "exec")

    async def test_openapi_from_file(self, petstore_spec, tmp_path):
        path = tmp_path / "petstore.json"
        path.write_text(json.dumps(petstore_spec))
        factory = ToolFactory(FactorySettings(_env_file=None), require_llm=False)
        server = await factory.generate_from_openapi(path, base_url="http://localhost:9999")
        assert "BASE_URL = 'http://localhost:9999'" in server.server_code

    async def test_database(self, sqlite_db):
        factory = ToolFactory(FactorySettings(_env_file=None), require_llm=False)
        server = await factory.generate_from_database(str(sqlite_db))
        assert server.tool_names == [
            "health_check",
            "list_audit_log", "create_audit_log",
            "get_users", "list_users", "create_users", "update_users", "delete_users",
        ]
        assert server.auth_env_vars == ["DATABASE_PATH"]
        compile(server.server_code, "server.py", "exec")

    async def test_database_table_filter(self, sqlite_db):
        factory = ToolFactory(FactorySettings(_env_file=None), require_llm=False)
        server = await factory.generate_from_database(str(sqlite_db), tables=["users", "missing"])
        assert "list_audit_log" not in server.tool_names
        assert "list_users" in server.tool_names

    async def test_database_missing(self, tmp_path):
        factory = ToolFactory(FactorySettings(_env_file=None), require_llm=False)
        with pytest.raises(IntrospectionError):
            await factory.generate_from_database(str(tmp_path / "nope.db"))

    async def test_aclose(self):
        provider = FakeProvider()
        await ToolFactory(provider=provider).aclose()
        assert provider.closed
