"""ToolFactory: the three generation paths behind one object.

Natural-language generation is a strictly sequential state machine:

  INIT -> (WEB_SEARCH)? -> EXTRACT_SPECS -> IMPLEMENT* -> ASSEMBLE -> DONE
                                 |               |
                                 +---------------+--> FAILED (raises)

Every transition appends a timestamped step to the GenerationLog; each
model call adds an LLM_CALL step. Extraction is fatal only when parsing
fails or no record survives validation. A failed IMPLEMENT aborts the
whole run; no partial server is produced.

The OpenAPI and database paths need no model and feed the same assembler.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from .assembler import AssembleOptions, assemble_server, build_arguments, check_fragment_syntax
from .config import FactorySettings, default_settings, validate_settings
from .database import SchemaIntrospector, build_database_server, create_introspector
from .errors import (
    ConfigurationError,
    FactoryError,
    ImplementationError,
    LLMCallError,
    SpecExtractionError,
)
from .loader import load_spec
from .models import (
    GeneratedServer,
    GenerationLog,
    GenerationStage,
    ProductionConfig,
    ToolSpec,
    collect_dependencies,
)
from .openapi import build_openapi_server
from .prompts import (
    EXTRACT_TOOLS_PROMPT,
    GENERATE_IMPLEMENTATION_PROMPT,
    SYSTEM_PROMPT,
    format_prompt,
)
from .providers import BaseProvider, LLMResponse, provider_from_settings
from .response_parser import extract_code_from_response, parse_tool_response
from .validation import validate_tool_specs
from .web_search import enhance_description, research

logger = logging.getLogger(__name__)

# Prompt/response text kept in LLM_CALL steps
_LOG_EXCERPT_CHARS = 2000


def _excerpt(text: str) -> str:
    if len(text) <= _LOG_EXCERPT_CHARS:
        return text
    return text[:_LOG_EXCERPT_CHARS] + f"... [{len(text) - _LOG_EXCERPT_CHARS} more chars]"


class ToolFactory:
    """Generates MCP servers from a description, an OpenAPI document or a database."""

    def __init__(self,
                 settings: Optional[FactorySettings] = None,
                 provider: Optional[BaseProvider] = None,
                 require_llm: bool = True):
        self.settings = settings or default_settings()
        if provider is None and require_llm:
            problems = validate_settings(self.settings)
            if problems:
                raise ConfigurationError("; ".join(problems))
            provider = provider_from_settings(self.settings)
        self.provider = provider
        self.last_log: Optional[GenerationLog] = None

    # ------------------------------------------------------------------
    # Natural language
    # ------------------------------------------------------------------

    async def generate_from_description(self,
                                        description: str,
                                        server_name: str = "generated-server",
                                        web_search: bool = False,
                                        auth_env_vars: Sequence[str] = (),
                                        include_health_check: bool = True,
                                        production_config: Optional[ProductionConfig] = None) -> GeneratedServer:
        """Run the natural-language state machine and return the server."""
        if self.provider is None:
            raise ConfigurationError("A model provider is required to generate from a description")

        log = GenerationLog(
            server_name=server_name,
            provider=getattr(self.provider, "name", type(self.provider).__name__),
            model=getattr(self.provider, "model", ""),
            web_search_enabled=web_search,
            original_description=description,
        )
        self.last_log = log
        log.add_step(GenerationStage.INIT, f"Starting generation of {server_name}", input_data=description)

        try:
            enhanced = description
            if web_search:
                enhanced = await self._web_search(description, log)
            log.enhanced_description = enhanced

            tool_specs = await self._extract_specs(enhanced, log)

            implementations: dict[str, str] = {}
            for spec in tool_specs:
                implementations[spec.name] = await self._implement(spec, log)

            log.add_step(GenerationStage.ASSEMBLE, f"Assembling server with {len(tool_specs)} tools")
            server_code = assemble_server(
                tool_specs,
                implementations,
                AssembleOptions(
                    server_name=server_name,
                    auth_env_vars=list(auth_env_vars),
                    include_health_check=include_health_check,
                    production_config=production_config,
                ),
            )
        except FactoryError as e:
            log.add_step(GenerationStage.FAILED, str(e))
            logger.error("Generation of %s failed: %s", server_name, e)
            raise

        dependencies = collect_dependencies(tool_specs)
        log.tools_generated = [spec.name for spec in tool_specs]
        log.dependencies_used = dependencies
        log.add_step(GenerationStage.DONE, f"Generated {len(tool_specs)} tools")
        logger.info("Generated %s with %d tools", server_name, len(tool_specs))

        return GeneratedServer(
            name=server_name,
            server_code=server_code,
            tool_specs=tool_specs,
            auth_env_vars=list(auth_env_vars),
            dependencies=dependencies,
            production_config=production_config,
            execution_log=log,
        )

    async def _call(self, prompt: str, max_tokens: int, log: GenerationLog) -> LLMResponse:
        """One model call, recorded in the log. Raises LLMCallError on error."""
        response = await self.provider.call(SYSTEM_PROMPT, prompt, max_tokens)
        log.add_step(
            GenerationStage.LLM_CALL,
            f"Model call ({response.latency_ms:.0f} ms, {response.tokens_out or 0} tokens out)",
            input_data=_excerpt(prompt),
            output_data=_excerpt(response.error or response.text),
        )
        if response.error:
            raise LLMCallError(response.error)
        return response

    async def _web_search(self, description: str, log: GenerationLog) -> str:
        """Research step; failures leave the description unchanged."""
        log.add_step(GenerationStage.WEB_SEARCH, "Researching description", input_data=description)
        entry = await research(self.provider, description)
        if entry is None:
            return description
        log.add_web_search(entry.query, entry.results, entry.sources)
        return enhance_description(description, entry)

    async def _extract_specs(self, description: str, log: GenerationLog) -> list[ToolSpec]:
        log.add_step(GenerationStage.EXTRACT_SPECS, "Extracting tool specifications", input_data=description)
        prompt = format_prompt(EXTRACT_TOOLS_PROMPT, description=description)
        response = await self._call(prompt, self.settings.max_tokens, log)

        parsed = parse_tool_response(response.text)
        if not parsed.ok:
            raise SpecExtractionError(parsed.error)

        result = validate_tool_specs(parsed.data)
        for error in result.errors:
            logger.warning("Skipping invalid tool spec: %s", error)
        if result.is_fatal:
            raise SpecExtractionError("No valid tool specifications: " + "; ".join(result.errors))
        if not result.valid:
            raise SpecExtractionError("Model returned no tool specifications")

        logger.info("Extracted %d tool specs (%d rejected)", len(result.valid), len(result.errors))
        return result.valid

    async def _implement(self, spec: ToolSpec, log: GenerationLog) -> str:
        log.add_step(GenerationStage.IMPLEMENT, f"Implementing {spec.name}", input_data=spec.name)
        arguments = build_arguments(spec)
        prompt = format_prompt(
            GENERATE_IMPLEMENTATION_PROMPT,
            name=spec.name,
            description=spec.description,
            input_schema=json.dumps(spec.input_schema.to_dict()),
            output_schema=json.dumps(spec.output_schema) if spec.output_schema else "Not specified",
            hints=spec.implementation_hints or "None",
            dependencies=", ".join(spec.dependencies) or "None",
            arguments=", ".join(arg["declaration"] for arg in arguments),
            argument_names=", ".join(arg["ident"] for arg in arguments) or "no arguments",
        )
        try:
            response = await self._call(prompt, self.settings.implementation_max_tokens, log)
        except LLMCallError as e:
            raise ImplementationError(spec.name, str(e)) from e

        code = extract_code_from_response(response.text)
        if not code:
            raise ImplementationError(spec.name, "model returned no code")
        syntax_error = check_fragment_syntax(code)
        if syntax_error:
            raise ImplementationError(spec.name, f"invalid Python ({syntax_error})")
        return code

    # ------------------------------------------------------------------
    # OpenAPI
    # ------------------------------------------------------------------

    async def generate_from_openapi(self,
                                    spec: Union[dict[str, Any], str, Path],
                                    base_url: Optional[str] = None,
                                    server_name: str = "openapi-server",
                                    include_health_check: bool = True,
                                    production_config: Optional[ProductionConfig] = None) -> GeneratedServer:
        """Generate a server with one tool per OpenAPI operation."""
        document = spec if isinstance(spec, dict) else load_spec(spec)
        openapi_server = build_openapi_server(document, base_url=base_url)

        server_code = assemble_server(
            openapi_server.tool_specs,
            openapi_server.implementations,
            AssembleOptions(
                server_name=server_name,
                auth_env_vars=openapi_server.auth_env_vars,
                include_health_check=include_health_check,
                production_config=production_config,
                setup_code=openapi_server.setup_code,
                extra_dependencies=openapi_server.dependencies,
            ),
        )
        logger.info("Generated %s with %d tools from OpenAPI", server_name, len(openapi_server.tool_specs))
        return GeneratedServer(
            name=server_name,
            server_code=server_code,
            tool_specs=openapi_server.tool_specs,
            auth_env_vars=openapi_server.auth_env_vars,
            dependencies=openapi_server.dependencies,
            production_config=production_config,
        )

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    async def generate_from_database(self,
                                     conn: str,
                                     server_name: str = "database-server",
                                     tables: Optional[Sequence[str]] = None,
                                     introspector: Optional[SchemaIntrospector] = None,
                                     production_config: Optional[ProductionConfig] = None) -> GeneratedServer:
        """Generate CRUD tools for the tables reachable through conn."""
        introspector = introspector or create_introspector(conn)
        all_tables = await introspector.get_tables()

        selected = all_tables
        if tables:
            wanted = set(tables)
            selected = [t for t in all_tables if t.name in wanted]
            missing = wanted - {t.name for t in selected}
            if missing:
                logger.warning("Tables not found: %s", ", ".join(sorted(missing)))
        if not selected:
            logger.warning("No tables selected; only health_check will be generated")

        database_server = build_database_server(conn, selected)
        server_code = assemble_server(
            database_server.tool_specs,
            database_server.implementations,
            AssembleOptions(
                server_name=server_name,
                auth_env_vars=database_server.auth_env_vars,
                production_config=production_config,
                setup_code=database_server.setup_code,
                extra_dependencies=database_server.dependencies,
            ),
        )
        logger.info(
            "Generated %s with %d tools from %d %s tables",
            server_name, len(database_server.tool_specs), len(selected), database_server.dialect.value,
        )
        return GeneratedServer(
            name=server_name,
            server_code=server_code,
            tool_specs=database_server.tool_specs,
            auth_env_vars=database_server.auth_env_vars,
            dependencies=database_server.dependencies,
            production_config=production_config,
        )

    async def aclose(self) -> None:
        """Release the provider's HTTP client, if it holds one."""
        if self.provider is not None and hasattr(self.provider, "aclose"):
            await self.provider.aclose()
