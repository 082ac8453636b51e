"""Shared fixtures for mcp-factory tests.

Generated servers are written to tmp_path and imported as real modules so
tests call the tool functions the way an MCP client would reach them.
"""

from __future__ import annotations

import importlib.util
import json
import sqlite3
import sys
import uuid
from pathlib import Path
from types import ModuleType
from typing import Any, Callable

import pytest

from mcp_factory.providers import LLMResponse


# ---------------------------------------------------------------------------
# Scripted model provider
# ---------------------------------------------------------------------------

class FakeProvider:
    """Provider returning queued responses in order; records every prompt."""

    name = "fake"

    def __init__(self, responses: list[LLMResponse | str] | None = None,
                 model: str = "fake-model"):
        self.model = model
        self.responses = [
            r if isinstance(r, LLMResponse) else LLMResponse(text=r, tokens_out=10, latency_ms=1.0)
            for r in (responses or [])
        ]
        self.prompts: list[str] = []
        self.closed = False

    async def call(self, system: str, user: str, max_tokens: int = 4096) -> LLMResponse:
        self.prompts.append(user)
        if not self.responses:
            return LLMResponse(error="no scripted response left")
        return self.responses.pop(0)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_provider() -> Callable[..., FakeProvider]:
    """Factory: fake_provider("text", LLMResponse(error=...), ...)."""
    def _make(*responses: LLMResponse | str) -> FakeProvider:
        return FakeProvider(list(responses))
    return _make


def tools_json(*tools: dict[str, Any]) -> str:
    """Model-style extraction reply wrapping tool records in a fence."""
    return "Here are the tools:\n```json\n" + json.dumps(list(tools), indent=2) + "\n```"


# ---------------------------------------------------------------------------
# Generated server modules
# ---------------------------------------------------------------------------

def load_server(code: str, directory: Path) -> ModuleType:
    """Write server code to directory and import it under a unique name."""
    module_name = f"generated_server_{uuid.uuid4().hex}"
    path = directory / f"{module_name}.py"
    path.write_text(code, encoding="utf-8")
    spec = importlib.util.spec_from_file_location(module_name, path)
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


def get_tool(module: ModuleType, name: str) -> Callable[..., Any]:
    """Raw async callable behind a registered tool."""
    obj = getattr(module, name, None)
    if obj is None:
        pytest.fail(f"Tool {name!r} not found in generated server")
    # @mcp.tool() may wrap functions in FunctionTool; unwrap to get the
    # raw async callable.
    return getattr(obj, "fn", obj)


def payload(result: dict[str, Any]) -> Any:
    """Decode the JSON inside a text content envelope."""
    assert result["content"][0]["type"] == "text"
    return json.loads(result["content"][0]["text"])


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

@pytest.fixture
def petstore_spec() -> dict[str, Any]:
    """Small OpenAPI 3 document covering path, query, header and body params."""
    return {
        "openapi": "3.0.0",
        "info": {"title": "Petstore", "version": "1.0.0"},
        "servers": [{"url": "https://petstore.example.com/v1/"}],
        "components": {
            "securitySchemes": {
                "api_key": {"type": "apiKey", "in": "header", "name": "X-API-Key"},
            },
            "schemas": {
                "Pet": {
                    "type": "object",
                    "properties": {"name": {"type": "string"}, "tag": {"type": "string"}},
                },
                "Status": {"type": "string", "enum": ["available", "pending", "sold"]},
            },
            "parameters": {
                "PetId": {
                    "name": "petId", "in": "path", "required": True,
                    "schema": {"type": "integer"},
                },
            },
        },
        "paths": {
            "/pets": {
                "get": {
                    "operationId": "listPets",
                    "summary": "List all pets",
                    "parameters": [
                        {"name": "limit", "in": "query", "schema": {"type": "integer"}},
                        {"name": "status", "in": "query", "schema": {"$ref": "#/components/schemas/Status"}},
                        {"name": "X-Request-Id", "in": "header", "schema": {"type": "string"}},
                    ],
                },
                "post": {
                    "operationId": "createPet",
                    "description": "Create a pet. The name must be unique.",
                    "requestBody": {
                        "required": True,
                        "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Pet"}}},
                    },
                },
            },
            "/pets/{petId}": {
                "parameters": [{"$ref": "#/components/parameters/PetId"}],
                "get": {"summary": "Info for a specific pet"},
                "delete": {"operationId": "deletePet"},
            },
        },
    }


@pytest.fixture
def sqlite_db(tmp_path) -> Path:
    """SQLite file with a keyed table, a keyless table and two users."""
    path = tmp_path / "app.db"
    with sqlite3.connect(path) as conn:
        conn.executescript("""
            CREATE TABLE users (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT,
                score REAL DEFAULT 0,
                active BOOLEAN DEFAULT 1
            );
            CREATE TABLE audit_log (message TEXT, created_at TEXT);
            INSERT INTO users (name, email) VALUES ('alice', 'alice@example.com');
            INSERT INTO users (name, email) VALUES ('bob', 'bob@example.com');
        """)
    conn.close()
    return path
