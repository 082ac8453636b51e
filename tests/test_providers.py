"""Tests for model providers, using httpx.MockTransport instead of the network."""

from __future__ import annotations

import json

import httpx
import pytest

from mcp_factory.config import FactorySettings, LLMProvider
from mcp_factory.errors import ConfigurationError
from mcp_factory.providers import (
    AnthropicProvider,
    OllamaProvider,
    OpenAIProvider,
    create_provider,
    provider_from_settings,
)


def _recording_transport(reply: dict, status: int = 200):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status, json=reply)

    return httpx.MockTransport(handler), seen


class TestAnthropicProvider:

    async def test_call(self):
        transport, seen = _recording_transport({
            "content": [{"type": "text", "text": "hello"}, {"type": "tool_use", "id": "x"}],
            "usage": {"input_tokens": 12, "output_tokens": 3},
        })
        async with AnthropicProvider("claude-sonnet-4-5-20250929", api_key="sk-test", transport=transport) as provider:
            response = await provider.call("system text", "user text", max_tokens=50)

        assert response.ok
        assert response.text == "hello"
        assert response.tokens_in == 12
        assert response.tokens_out == 3
        assert response.latency_ms >= 0

        request = seen[0]
        assert request.url == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == "sk-test"
        assert request.headers["anthropic-version"] == "2023-06-01"
        body = json.loads(request.content)
        assert body["system"] == "system text"
        assert body["messages"] == [{"role": "user", "content": "user text"}]
        assert body["max_tokens"] == 50

    async def test_http_error(self):
        transport, _ = _recording_transport({"error": {"message": "overloaded"}}, status=529)
        async with AnthropicProvider("m", api_key="k", transport=transport) as provider:
            response = await provider.call("s", "u")
        assert not response.ok
        assert response.text == ""
        assert "529" in response.error
        assert "overloaded" in response.error

    async def test_malformed_reply(self):
        transport, _ = _recording_transport({"unexpected": True})
        async with AnthropicProvider("m", api_key="k", transport=transport) as provider:
            response = await provider.call("s", "u")
        assert not response.ok
        assert response.error.startswith("anthropic call failed")

    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with AnthropicProvider("m", api_key="k", transport=httpx.MockTransport(handler)) as provider:
            response = await provider.call("s", "u")
        assert "connection refused" in response.error


class TestOpenAIProvider:

    async def test_call(self):
        transport, seen = _recording_transport({
            "choices": [{"message": {"content": "hi there"}}],
            "usage": {"prompt_tokens": 7, "completion_tokens": 2},
        })
        async with OpenAIProvider("gpt-5.2", api_key="sk-o", transport=transport) as provider:
            response = await provider.call("sys", "usr", max_tokens=20)

        assert response.text == "hi there"
        assert (response.tokens_in, response.tokens_out) == (7, 2)
        request = seen[0]
        assert request.url == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-o"
        body = json.loads(request.content)
        assert body["messages"][0] == {"role": "system", "content": "sys"}
        assert body["max_completion_tokens"] == 20

    async def test_null_content(self):
        transport, _ = _recording_transport({"choices": [{"message": {"content": None}}]})
        async with OpenAIProvider("gpt-5.2", api_key="k", transport=transport) as provider:
            response = await provider.call("s", "u")
        assert response.ok
        assert response.text == ""


class TestOllamaProvider:

    async def test_call(self):
        transport, seen = _recording_transport({
            "message": {"role": "assistant", "content": "local reply"},
            "prompt_eval_count": 5,
            "eval_count": 4,
        })
        async with OllamaProvider("qwen2.5-coder:7b", transport=transport) as provider:
            response = await provider.call("s", "u", max_tokens=9)

        assert response.text == "local reply"
        assert response.tokens_out == 4
        assert seen[0].url == "http://localhost:11434/api/chat"
        body = json.loads(seen[0].content)
        assert body["stream"] is False
        assert body["options"]["num_predict"] == 9


class TestCreateProvider:

    def test_by_name(self):
        assert isinstance(create_provider("anthropic", "m", api_key="k"), AnthropicProvider)
        assert isinstance(create_provider(LLMProvider.OPENAI, "m", api_key="k"), OpenAIProvider)
        assert isinstance(create_provider("ollama", "m", api_key="ignored"), OllamaProvider)

    def test_unknown(self):
        with pytest.raises(ConfigurationError, match="Unknown provider"):
            create_provider("bard", "m")

    def test_from_settings(self):
        settings = FactorySettings(
            provider=LLMProvider.OLLAMA, ollama_host="http://gpu-box:11434", temperature=0.3, _env_file=None,
        )
        provider = provider_from_settings(settings)
        assert isinstance(provider, OllamaProvider)
        assert provider.base_url == "http://gpu-box:11434"
        assert provider.model == "qwen2.5-coder:7b"
        assert provider.temperature == 0.3
