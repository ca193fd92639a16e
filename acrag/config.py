"""Plugin configuration.

Loads settings from environment variables with sensible defaults. A
PluginConfig is built once per plugin instance and never mutated; use
``dataclasses.replace`` to derive a variant.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from acrag.similarity import DEFAULT_THRESHOLD, DEFAULT_TOP_K

DEFAULT_OLLAMA_ENDPOINT = "http://localhost:11434"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("false", "0", "no", "off")


@dataclass(frozen=True)
class ProviderConfig:
    """Embedding or generation backend selection."""
    provider: str = "ollama"  # "ollama", "openai", "local", "mock", "custom"
    endpoint: Optional[str] = DEFAULT_OLLAMA_ENDPOINT
    model: Optional[str] = None  # None = backend default
    api_key: Optional[str] = None
    dimensions: Optional[int] = None  # embedding only; None = backend default


@dataclass(frozen=True)
class StoreConfig:
    """Record store backend selection."""
    provider: str = "sqlite"  # "sqlite", "memory", "chromadb", "custom"
    path: str = "rag/data/index.db"
    endpoint: Optional[str] = None  # chroma host[:port]
    collection: str = "acrag_records"


@dataclass(frozen=True)
class SimilarityConfig:
    threshold: float = DEFAULT_THRESHOLD
    top_k: int = DEFAULT_TOP_K

    def __post_init__(self) -> None:
        if not -1.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be in [-1, 1], got {self.threshold}")
        if self.top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {self.top_k}")


@dataclass(frozen=True)
class PathsConfig:
    requirements_dir: str = "rag/requirements"
    prompts_dir: str = "rag/prompts"
    index_dir: str = "rag/data"


@dataclass(frozen=True)
class FeatureFlags:
    test_generation: bool = True
    test_selection: bool = True
    failure_analysis: bool = True
    traceability: bool = True
    knowledge: bool = True


@dataclass(frozen=True)
class PluginConfig:
    """Top-level plugin configuration."""
    mode: str = "embedded"  # "embedded" only; "service" is not supported
    enabled: bool = True
    embedding: ProviderConfig = field(default_factory=ProviderConfig)
    llm: ProviderConfig = field(default_factory=ProviderConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    renderer: str = "simple"  # "simple", "handlebars"
    similarity: SimilarityConfig = field(default_factory=SimilarityConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    features: FeatureFlags = field(default_factory=FeatureFlags)
    index_delay: float = 0.1  # seconds between embed calls while indexing
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "PluginConfig":
        endpoint = os.getenv("OLLAMA_ENDPOINT", DEFAULT_OLLAMA_ENDPOINT)
        api_key = os.getenv("OPENAI_API_KEY") or None
        dims = os.getenv("RAG_EMBEDDING_DIMENSIONS")
        return cls(
            mode=os.getenv("RAG_MODE", "embedded"),
            enabled=_env_bool("RAG_ENABLED", True),
            embedding=ProviderConfig(
                provider=os.getenv("RAG_EMBEDDING_PROVIDER", "ollama"),
                endpoint=endpoint,
                model=os.getenv("RAG_EMBEDDING_MODEL") or None,
                api_key=api_key,
                dimensions=int(dims) if dims else None,
            ),
            llm=ProviderConfig(
                provider=os.getenv("RAG_LLM_PROVIDER", "ollama"),
                endpoint=endpoint,
                model=os.getenv("RAG_LLM_MODEL") or None,
                api_key=api_key,
            ),
            store=StoreConfig(
                provider=os.getenv("RAG_VECTOR_STORE", "sqlite"),
                path=os.getenv("RAG_INDEX_PATH", "rag/data/index.db"),
                endpoint=os.getenv("CHROMA_HOST") or None,
                collection=os.getenv("RAG_COLLECTION", "acrag_records"),
            ),
            renderer=os.getenv("RAG_PROMPT_RENDERER", "simple"),
            similarity=SimilarityConfig(
                threshold=float(os.getenv("RAG_SIMILARITY_THRESHOLD", str(DEFAULT_THRESHOLD))),
                top_k=int(os.getenv("RAG_TOP_K", str(DEFAULT_TOP_K))),
            ),
            paths=PathsConfig(
                requirements_dir=os.getenv("RAG_REQUIREMENTS_DIR", "rag/requirements"),
                prompts_dir=os.getenv("RAG_PROMPTS_DIR", "rag/prompts"),
                index_dir=os.getenv("RAG_INDEX_DIR", "rag/data"),
            ),
            index_delay=float(os.getenv("RAG_INDEX_DELAY", "0.1")),
            log_level=os.getenv("RAG_LOG_LEVEL", "INFO").upper(),
        )
