"""
Generation provider abstraction: Ollama, OpenAI and mock backends.

Backends raise UpstreamCallFailed from ``_generate``; the base class replaces
the failure with GENERATION_FALLBACK so pipeline callers always get a usable
string. ``generate_result`` exposes the ``degraded`` flag.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import httpx

from acrag.errors import UpstreamCallFailed
from acrag.providers.http import GENERATE_TIMEOUT, AVAILABILITY_TIMEOUT, request_json

LOG = logging.getLogger("providers.generation")

GENERATION_FALLBACK = "// TODO: AI generation failed, implement manually"

TOKENS_PER_WORD = 1.3


@dataclass(frozen=True)
class GenerationOptions:
    max_tokens: int = 512
    temperature: float = 0.7
    top_p: float = 0.9


@dataclass(frozen=True)
class GenerationResult:
    """Generated text, or GENERATION_FALLBACK when ``degraded`` is set."""

    text: str
    degraded: bool = False
    error: Optional[str] = None


def estimate_tokens(text: str) -> int:
    """Rough estimate: ~1.3 tokens per whitespace-separated word."""
    return math.ceil(len(text.split()) * TOKENS_PER_WORD)


class GenerationProvider(ABC):
    """Abstract base class for prompt → text backends."""

    name: str = "abstract"
    default_options = GenerationOptions()

    def __init__(self, model: str) -> None:
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    @abstractmethod
    async def _generate(self, prompt: str, options: GenerationOptions) -> str:
        """Call the backend. Raise UpstreamCallFailed on failure."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Best-effort health check. Never raises."""

    async def generate(self, prompt: str, options: Optional[GenerationOptions] = None) -> str:
        return (await self.generate_result(prompt, options)).text

    async def generate_result(self, prompt: str, options: Optional[GenerationOptions] = None) -> GenerationResult:
        try:
            text = await self._generate(prompt, options or self.default_options)
        except UpstreamCallFailed as exc:
            LOG.warning("%s generation failed, returning fallback: %s", self.name, exc)
            return GenerationResult(text=GENERATION_FALLBACK, degraded=True, error=str(exc))
        return GenerationResult(text=text)

    async def count_tokens(self, text: str) -> int:
        return estimate_tokens(text)

    async def close(self) -> None:
        """Clean up resources (e.g., HTTP clients). Override if needed."""
        pass


class OllamaGenerationProvider(GenerationProvider):
    """
    Local LLM backend using Ollama's HTTP API (``POST /api/generate``).

    Requires Ollama to be running locally: https://ollama.ai
    """

    name = "Ollama"
    default_options = GenerationOptions(max_tokens=512)

    def __init__(
        self,
        endpoint: str = "http://localhost:11434",
        model: str = "llama2",
        timeout: float = GENERATE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(model)
        self._endpoint = endpoint
        self._client = httpx.AsyncClient(base_url=endpoint, timeout=timeout, transport=transport)

    async def _generate(self, prompt: str, options: GenerationOptions) -> str:
        data = await request_json(
            self._client,
            "POST",
            "/api/generate",
            json={
                "model": self._model,
                "prompt": prompt,
                "stream": False,
                "options": {
                    "num_predict": options.max_tokens,
                    "temperature": options.temperature,
                    "top_p": options.top_p,
                },
            },
        )
        if not isinstance(data, dict):
            raise UpstreamCallFailed("Ollama returned a non-object generation payload")
        response = data.get("response", "")
        if not isinstance(response, str):
            raise UpstreamCallFailed(f"Ollama returned a non-string response: {type(response).__name__}")
        return response

    async def is_available(self) -> bool:
        """Check if Ollama is running and the model is available."""
        try:
            data = await request_json(self._client, "GET", "/api/tags", timeout=AVAILABILITY_TIMEOUT)
            names = [m.get("name", "") for m in data.get("models", [])]
            available = any(self._model in name for name in names)
            if not available:
                LOG.warning(
                    "Ollama running but model '%s' not found. Available: %s. Pull with: ollama pull %s",
                    self._model,
                    names,
                    self._model,
                )
            return available
        except Exception as exc:
            LOG.warning("Ollama not reachable at %s: %s", self._endpoint, exc)
            return False

    async def close(self) -> None:
        await self._client.aclose()


class OpenAIGenerationProvider(GenerationProvider):
    """Cloud LLM backend using the OpenAI chat completions API."""

    name = "OpenAI"
    default_options = GenerationOptions(max_tokens=1024)

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-3.5-turbo",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = GENERATE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(model)
        self._api_key = api_key or ""
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def _generate(self, prompt: str, options: GenerationOptions) -> str:
        if not self._api_key:
            raise UpstreamCallFailed("OPENAI_API_KEY not set")

        body = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "top_p": options.top_p,
        }
        data = await request_json(self._client, "POST", "/chat/completions", headers=self._headers(), json=body)
        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamCallFailed(f"Unexpected OpenAI completion payload: {exc}") from exc
        if not isinstance(content, str):
            raise UpstreamCallFailed(f"OpenAI returned non-string content: {type(content).__name__}")
        return content

    async def is_available(self) -> bool:
        """Verify the API key by listing models."""
        if not self._api_key:
            return False
        try:
            await request_json(self._client, "GET", "/models", headers=self._headers(), timeout=AVAILABILITY_TIMEOUT)
            return True
        except Exception as exc:
            LOG.warning("OpenAI not reachable: %s", exc)
            return False

    async def close(self) -> None:
        await self._client.aclose()


class MockGenerationProvider(GenerationProvider):
    """
    Mock generation provider for testing.

    Returns canned responses in order, cycling when exhausted. Every prompt is
    recorded in ``prompts``. ``fail=True`` simulates an unreachable backend.
    """

    name = "Mock"

    def __init__(
        self,
        responses: Optional[Sequence[str]] = None,
        model: str = "mock",
        fail: bool = False,
        available: bool = True,
    ) -> None:
        super().__init__(model)
        self._responses = list(responses or [])
        self._fail = fail
        self._available = available
        self.prompts: List[str] = []
        self.options: List[GenerationOptions] = []

    async def _generate(self, prompt: str, options: GenerationOptions) -> str:
        self.prompts.append(prompt)
        self.options.append(options)
        if self._fail:
            raise UpstreamCallFailed("mock generation backend unreachable")
        if not self._responses:
            return ""
        return self._responses[(len(self.prompts) - 1) % len(self._responses)]

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    async def is_available(self) -> bool:
        return self._available


def build_generation_provider(provider: str = "ollama", **kwargs: Any) -> GenerationProvider:
    """
    Factory: create a GenerationProvider of the requested type.

    Args:
        provider: "ollama", "openai" or "mock"
        **kwargs: Backend-specific configuration

    Raises:
        ValueError: Unknown provider
    """
    if provider == "ollama":
        return OllamaGenerationProvider(**kwargs)
    elif provider == "openai":
        return OpenAIGenerationProvider(**kwargs)
    elif provider == "mock":
        return MockGenerationProvider(**kwargs)
    else:
        raise ValueError(f"Unknown generation provider: {provider!r}. Supported: 'ollama', 'openai', 'mock'")
