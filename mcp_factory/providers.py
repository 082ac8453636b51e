"""
Model providers: one async call(system, user, max_tokens) -> LLMResponse.

A provider never raises from call(); transport and payload failures come
back as LLMResponse.error and the orchestrator decides what is fatal.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .config import FactorySettings, LLMProvider
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_API_URL = "https://api.openai.com"


@dataclass(frozen=True)
class LLMResponse:
    """Result of one model call."""
    text: str = ""
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    latency_ms: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BaseProvider:
    """Shared HTTP plumbing; subclasses build the request and read the reply."""

    name = "base"

    def __init__(self,
                 model: str,
                 api_key: Optional[str] = None,
                 base_url: str = "",
                 temperature: float = 0.0,
                 timeout: float = 120.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        async with self._lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.base_url,
                    headers=self._headers(),
                    timeout=self.timeout,
                    transport=self._transport,
                )
            return self._client

    async def aclose(self) -> None:
        async with self._lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    async def __aenter__(self) -> "BaseProvider":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _endpoint(self) -> str:
        raise NotImplementedError

    def _payload(self, system: str, user: str, max_tokens: int) -> dict[str, Any]:
        raise NotImplementedError

    def _parse(self, data: dict[str, Any]) -> tuple[str, Optional[int], Optional[int]]:
        """(text, tokens_in, tokens_out) from the JSON reply."""
        raise NotImplementedError

    async def call(self, system: str, user: str, max_tokens: int = 4096) -> LLMResponse:
        """Send one system+user exchange. Never raises."""
        start = time.perf_counter()
        try:
            client = await self._get_client()
            response = await client.post(self._endpoint(), json=self._payload(system, user, max_tokens))
            response.raise_for_status()
            text, tokens_in, tokens_out = self._parse(response.json())
        except httpx.HTTPStatusError as e:
            latency = (time.perf_counter() - start) * 1000
            logger.warning("%s call failed with HTTP %d", self.name, e.response.status_code)
            return LLMResponse(
                latency_ms=latency,
                error=f"{self.name} API error {e.response.status_code}: {e.response.text[:500]}",
            )
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
            latency = (time.perf_counter() - start) * 1000
            logger.warning("%s call failed: %s", self.name, e)
            return LLMResponse(latency_ms=latency, error=f"{self.name} call failed: {e}")

        latency = (time.perf_counter() - start) * 1000
        logger.debug("%s responded in %.0f ms (%s tokens out)", self.name, latency, tokens_out)
        return LLMResponse(text=text, tokens_in=tokens_in, tokens_out=tokens_out, latency_ms=latency)


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API."""

    name = "anthropic"

    def __init__(self, model: str, api_key: Optional[str] = None, base_url: str = ANTHROPIC_API_URL, **kwargs):
        super().__init__(model, api_key=api_key, base_url=base_url, **kwargs)

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _endpoint(self) -> str:
        return "/v1/messages"

    def _payload(self, system: str, user: str, max_tokens: int) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": self.temperature,
            "system": system,
            "messages": [{"role": "user", "content": user}],
        }

    def _parse(self, data: dict[str, Any]) -> tuple[str, Optional[int], Optional[int]]:
        text = "".join(block.get("text", "") for block in data["content"] if block.get("type") == "text")
        usage = data.get("usage") or {}
        return text, usage.get("input_tokens"), usage.get("output_tokens")


class OpenAIProvider(BaseProvider):
    """OpenAI Chat Completions API."""

    name = "openai"

    def __init__(self, model: str, api_key: Optional[str] = None, base_url: str = OPENAI_API_URL, **kwargs):
        super().__init__(model, api_key=api_key, base_url=base_url, **kwargs)

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key or ''}",
        }

    def _endpoint(self) -> str:
        return "/v1/chat/completions"

    def _payload(self, system: str, user: str, max_tokens: int) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_completion_tokens": max_tokens,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }

    def _parse(self, data: dict[str, Any]) -> tuple[str, Optional[int], Optional[int]]:
        text = data["choices"][0]["message"]["content"] or ""
        usage = data.get("usage") or {}
        return text, usage.get("prompt_tokens"), usage.get("completion_tokens")


class OllamaProvider(BaseProvider):
    """Local Ollama server, /api/chat without streaming."""

    name = "ollama"

    def __init__(self, model: str, base_url: str = "http://localhost:11434", **kwargs):
        kwargs.pop("api_key", None)
        super().__init__(model, base_url=base_url, **kwargs)

    def _endpoint(self) -> str:
        return "/api/chat"

    def _payload(self, system: str, user: str, max_tokens: int) -> dict[str, Any]:
        return {
            "model": self.model,
            "stream": False,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "options": {"temperature": self.temperature, "num_predict": max_tokens},
        }

    def _parse(self, data: dict[str, Any]) -> tuple[str, Optional[int], Optional[int]]:
        return data["message"]["content"], data.get("prompt_eval_count"), data.get("eval_count")


_PROVIDERS: dict[LLMProvider, type[BaseProvider]] = {
    LLMProvider.ANTHROPIC: AnthropicProvider,
    LLMProvider.OPENAI: OpenAIProvider,
    LLMProvider.OLLAMA: OllamaProvider,
}


def create_provider(provider: LLMProvider | str,
                    model: str,
                    api_key: Optional[str] = None,
                    **kwargs) -> BaseProvider:
    """Instantiate a provider by name."""
    try:
        provider = LLMProvider(provider)
    except ValueError as e:
        raise ConfigurationError(
            f"Unknown provider: {provider}. Available: {', '.join(p.value for p in LLMProvider)}"
        ) from e
    return _PROVIDERS[provider](model, api_key=api_key, **kwargs)


def provider_from_settings(settings: FactorySettings, **kwargs) -> BaseProvider:
    """Provider configured from FactorySettings."""
    if settings.provider == LLMProvider.OLLAMA:
        kwargs.setdefault("base_url", settings.ollama_host)
    return create_provider(
        settings.provider,
        settings.resolved_model,
        api_key=settings.api_key,
        temperature=settings.temperature,
        timeout=settings.request_timeout_seconds,
        **kwargs,
    )
