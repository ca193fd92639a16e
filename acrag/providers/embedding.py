"""
Embedding provider abstraction with Ollama, OpenAI, local and mock backends.

Subclasses implement ``_embed`` and raise UpstreamCallFailed on any backend
fault. The base class turns that into the zero-vector sentinel of the declared
dimensionality, so batch indexing never aborts on one bad call. Callers that
need to tell the sentinel apart use ``embed_result``.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from acrag.errors import UpstreamCallFailed
from acrag.providers.http import EMBED_TIMEOUT, AVAILABILITY_TIMEOUT, request_json

LOG = logging.getLogger("providers.embedding")

_WORD_RE = re.compile(r"[a-z0-9_]+")


def zero_vector(dimensionality: int) -> List[float]:
    return [0.0] * dimensionality


@dataclass(frozen=True)
class EmbeddingResult:
    """An embedding, or the zero-vector sentinel when ``degraded`` is set."""

    vector: List[float]
    degraded: bool = False
    error: Optional[str] = None


class EmbeddingProvider(ABC):
    """Abstract interface for text → embedding vector conversion."""

    name: str = "abstract"

    def __init__(self, dimensionality: int) -> None:
        self._dimensionality = dimensionality

    @property
    def dimensionality(self) -> int:
        """Declared vector length. Sentinels always have this length."""
        return self._dimensionality

    @abstractmethod
    async def _embed(self, text: str) -> List[float]:
        """Embed one text. Raise UpstreamCallFailed on backend failure."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Best-effort health check. Never raises."""

    async def embed(self, text: str) -> List[float]:
        return (await self.embed_result(text)).vector

    async def embed_result(self, text: str) -> EmbeddingResult:
        try:
            vector = await self._embed(text)
        except UpstreamCallFailed as exc:
            LOG.warning("%s embedding failed, using zero vector: %s", self.name, exc)
            return self._degraded(str(exc))

        if len(vector) != self._dimensionality:
            LOG.warning(
                "%s returned %d dimensions, declared %d",
                self.name,
                len(vector),
                self._dimensionality,
            )
        return EmbeddingResult(vector=vector)

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed texts, preserving order. Output length always equals input length."""
        return [r.vector for r in await self.embed_batch_results(texts)]

    async def embed_batch_results(self, texts: Sequence[str]) -> List[EmbeddingResult]:
        if not texts:
            return []
        return list(await asyncio.gather(*(self.embed_result(t) for t in texts)))

    async def close(self) -> None:
        """Release resources (e.g. HTTP clients). Override if needed."""
        pass

    def _degraded(self, error: str) -> EmbeddingResult:
        return EmbeddingResult(vector=zero_vector(self._dimensionality), degraded=True, error=error)


class OllamaEmbeddingProvider(EmbeddingProvider):
    """
    Embeddings from a local Ollama server (``POST /api/embeddings``).

    Default model: nomic-embed-text (768 dimensions).
    """

    name = "Ollama"

    def __init__(
        self,
        endpoint: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        dimensionality: int = 768,
        timeout: float = EMBED_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(dimensionality)
        self._endpoint = endpoint
        self._model = model
        self._client = httpx.AsyncClient(base_url=endpoint, timeout=timeout, transport=transport)

    @property
    def model(self) -> str:
        return self._model

    async def _embed(self, text: str) -> List[float]:
        data = await request_json(
            self._client,
            "POST",
            "/api/embeddings",
            json={"model": self._model, "prompt": text},
        )
        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not embedding:
            raise UpstreamCallFailed(f"Ollama returned no embedding for model {self._model!r}")
        if not isinstance(embedding, list):
            raise UpstreamCallFailed(f"Ollama returned a non-list embedding for model {self._model!r}")
        try:
            return [float(x) for x in embedding]
        except (TypeError, ValueError) as exc:
            raise UpstreamCallFailed(f"Ollama returned non-numeric embedding values: {exc}") from exc

    async def is_available(self) -> bool:
        """Check if Ollama is running and the model is pulled."""
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


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    Embeddings from the OpenAI REST API (``POST /embeddings``).

    Default model: text-embedding-3-small (1536 dimensions). Batches go out as
    a single request and are re-ordered by the response's ``index`` field.
    """

    name = "OpenAI"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "text-embedding-3-small",
        dimensionality: int = 1536,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = EMBED_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(dimensionality)
        self._api_key = api_key or ""
        self._model = model
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @property
    def model(self) -> str:
        return self._model

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, payload: Any, timeout: Optional[float] = None) -> List[List[float]]:
        if not self._api_key:
            raise UpstreamCallFailed("OPENAI_API_KEY not set")

        kwargs: Dict[str, Any] = {"headers": self._headers(), "json": {"model": self._model, "input": payload}}
        if timeout is not None:
            kwargs["timeout"] = timeout
        data = await request_json(self._client, "POST", "/embeddings", **kwargs)

        try:
            items = sorted(data["data"], key=lambda item: item["index"])
            return [[float(x) for x in item["embedding"]] for item in items]
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamCallFailed(f"Unexpected OpenAI embeddings payload: {exc}") from exc

    async def _embed(self, text: str) -> List[float]:
        vectors = await self._request(text)
        if not vectors:
            raise UpstreamCallFailed("OpenAI returned no embedding")
        return vectors[0]

    async def embed_batch_results(self, texts: Sequence[str]) -> List[EmbeddingResult]:
        if not texts:
            return []
        try:
            vectors = await self._request(list(texts))
        except UpstreamCallFailed as exc:
            LOG.warning("OpenAI batch embedding failed, using zero vectors: %s", exc)
            return [self._degraded(str(exc)) for _ in texts]

        if len(vectors) != len(texts):
            error = f"OpenAI returned {len(vectors)} embeddings for {len(texts)} inputs"
            LOG.warning(error)
            return [self._degraded(error) for _ in texts]
        return [EmbeddingResult(vector=v) for v in vectors]

    async def is_available(self) -> bool:
        if not self._api_key:
            return False
        try:
            return bool(await self._request("test", timeout=AVAILABILITY_TIMEOUT))
        except Exception as exc:
            LOG.warning("OpenAI embeddings not reachable: %s", exc)
            return False

    async def close(self) -> None:
        await self._client.aclose()


class LocalEmbeddingProvider(EmbeddingProvider):
    """
    Local embedding via sentence-transformers.

    Default model: all-MiniLM-L6-v2 (384 dimensions, fast, no server needed).
    """

    name = "SentenceTransformers"

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", device: Optional[str] = None) -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "sentence-transformers is required for LocalEmbeddingProvider. "
                "Install with: pip install 'acrag[local]'"
            )

        self._model_name = model_name
        LOG.info("Loading embedding model: %s", model_name)
        self._model = SentenceTransformer(model_name, device=device)
        super().__init__(self._model.get_sentence_embedding_dimension())

    @property
    def model(self) -> str:
        return self._model_name

    async def _embed(self, text: str) -> List[float]:
        return self._encode([text])[0]

    async def embed_batch_results(self, texts: Sequence[str]) -> List[EmbeddingResult]:
        if not texts:
            return []
        return [EmbeddingResult(vector=v) for v in self._encode(list(texts))]

    def _encode(self, texts: List[str]) -> List[List[float]]:
        embeddings = self._model.encode(texts, show_progress_bar=False, convert_to_numpy=True)
        return [e.tolist() for e in embeddings]

    async def is_available(self) -> bool:
        return True


class MockEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic offline embeddings for tests and dry runs.

    With a ``vocabulary``, component i counts occurrences of vocabulary[i]
    among the text's lowercase words and other words are ignored. Without
    one, every word is hashed into one of ``dim`` buckets. ``fail=True``
    simulates an unreachable backend.
    """

    name = "Mock"

    def __init__(
        self,
        dim: int = 384,
        vocabulary: Optional[Sequence[str]] = None,
        fail: bool = False,
        available: bool = True,
    ) -> None:
        self._vocabulary = {word.lower(): i for i, word in enumerate(vocabulary or [])}
        super().__init__(len(self._vocabulary) if self._vocabulary else dim)
        self._fail = fail
        self._available = available
        self.calls: List[str] = []

    async def _embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self._fail:
            raise UpstreamCallFailed("mock embedding backend unreachable")

        vector = zero_vector(self.dimensionality)
        for word in _WORD_RE.findall(text.lower()):
            if self._vocabulary:
                idx = self._vocabulary.get(word)
                if idx is None:
                    continue
            else:
                idx = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimensionality
            vector[idx] += 1.0
        return vector

    async def is_available(self) -> bool:
        return self._available


def build_embedding_provider(provider: str = "ollama", **kwargs: Any) -> EmbeddingProvider:
    """
    Factory: create an EmbeddingProvider of the requested type.

    Args:
        provider: "ollama", "openai", "local" or "mock"
        **kwargs: Backend-specific configuration

    Raises:
        ValueError: Unknown provider
    """
    if provider == "ollama":
        return OllamaEmbeddingProvider(**kwargs)
    elif provider == "openai":
        return OpenAIEmbeddingProvider(**kwargs)
    elif provider == "local":
        return LocalEmbeddingProvider(**kwargs)
    elif provider == "mock":
        return MockEmbeddingProvider(**kwargs)
    else:
        raise ValueError(
            f"Unknown embedding provider: {provider!r}. "
            f"Supported: 'ollama', 'openai', 'local', 'mock'"
        )
