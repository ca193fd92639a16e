"""
Plugin assembly.

Turns a PluginConfig into concrete providers, a store, a renderer and a
retriever, and wires them into a RAGPlugin. Callers that need a backend the
config cannot describe pass an instance and select ``"custom"``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from acrag.config import PluginConfig, ProviderConfig, StoreConfig
from acrag.plugin import RAGPlugin
from acrag.prompts import PromptLibrary
from acrag.providers.embedding import EmbeddingProvider, build_embedding_provider
from acrag.providers.generation import GenerationProvider, build_generation_provider
from acrag.providers.renderer import build_renderer
from acrag.retriever import SemanticRetriever
from acrag.storage.record_store import RecordStore, build_record_store

LOG = logging.getLogger("acrag.factory")

CUSTOM = "custom"
SUPPORTED_MODES = ("embedded",)


def _split_host(endpoint: str, default_port: int = 8000) -> Tuple[str, int]:
    """``host[:port]`` (scheme tolerated) → (host, port)."""
    host = endpoint.split("://", 1)[-1].rstrip("/")
    if ":" in host:
        host, port = host.rsplit(":", 1)
        return host, int(port)
    return host, default_port


def build_embedding_from_config(cfg: ProviderConfig) -> EmbeddingProvider:
    kwargs: Dict[str, Any] = {}
    if cfg.provider == "ollama":
        if cfg.endpoint:
            kwargs["endpoint"] = cfg.endpoint
        if cfg.model:
            kwargs["model"] = cfg.model
        if cfg.dimensions:
            kwargs["dimensionality"] = cfg.dimensions
    elif cfg.provider == "openai":
        kwargs["api_key"] = cfg.api_key
        if cfg.model:
            kwargs["model"] = cfg.model
        if cfg.dimensions:
            kwargs["dimensionality"] = cfg.dimensions
    elif cfg.provider == "local":
        if cfg.model:
            kwargs["model_name"] = cfg.model
    elif cfg.provider == "mock":
        if cfg.dimensions:
            kwargs["dim"] = cfg.dimensions
    return build_embedding_provider(cfg.provider, **kwargs)


def build_generation_from_config(cfg: ProviderConfig) -> GenerationProvider:
    kwargs: Dict[str, Any] = {}
    if cfg.provider == "ollama":
        if cfg.endpoint:
            kwargs["endpoint"] = cfg.endpoint
        if cfg.model:
            kwargs["model"] = cfg.model
    elif cfg.provider == "openai":
        kwargs["api_key"] = cfg.api_key
        if cfg.model:
            kwargs["model"] = cfg.model
    return build_generation_provider(cfg.provider, **kwargs)


def build_store_from_config(cfg: StoreConfig, index_dir: str) -> RecordStore:
    if cfg.provider == "sqlite":
        return build_record_store("sqlite", db_path=cfg.path)
    if cfg.provider == "memory":
        # Only a .json path is a persistence target for the in-process store.
        path = cfg.path if cfg.path.endswith(".json") else None
        return build_record_store("memory", path=path)
    if cfg.provider in ("chromadb", "chroma"):
        if cfg.endpoint:
            host, port = _split_host(cfg.endpoint)
            return build_record_store(
                cfg.provider, collection_name=cfg.collection, chroma_host=host, chroma_port=port
            )
        return build_record_store(cfg.provider, collection_name=cfg.collection, persist_directory=index_dir)
    return build_record_store(cfg.provider)


def build_plugin(
    config: PluginConfig,
    *,
    embedding_provider: Optional[EmbeddingProvider] = None,
    generation_provider: Optional[GenerationProvider] = None,
    store: Optional[RecordStore] = None,
) -> RAGPlugin:
    """
    Assemble an uninitialized plugin.

    Injected instances win over the config. A ``"custom"`` provider with no
    matching instance raises ValueError.
    """
    if config.mode not in SUPPORTED_MODES:
        raise ValueError(f"Unsupported plugin mode: {config.mode!r}. Supported: 'embedded'")

    if embedding_provider is None:
        if config.embedding.provider == CUSTOM:
            raise ValueError("Embedding provider 'custom' requires an embedding_provider instance")
        embedding_provider = build_embedding_from_config(config.embedding)

    if generation_provider is None:
        if config.llm.provider == CUSTOM:
            raise ValueError("LLM provider 'custom' requires a generation_provider instance")
        generation_provider = build_generation_from_config(config.llm)

    if store is None:
        if config.store.provider == CUSTOM:
            raise ValueError("Vector store 'custom' requires a store instance")
        store = build_store_from_config(config.store, config.paths.index_dir)

    retriever = SemanticRetriever(
        store,
        embedding_provider,
        top_k=config.similarity.top_k,
        threshold=config.similarity.threshold,
    )

    return RAGPlugin(
        config=config,
        embedding_provider=embedding_provider,
        generation_provider=generation_provider,
        store=store,
        renderer=build_renderer(config.renderer),
        retriever=retriever,
        prompts=PromptLibrary(config.paths.prompts_dir),
    )


async def create_plugin(
    config: Optional[PluginConfig] = None,
    *,
    embedding_provider: Optional[EmbeddingProvider] = None,
    generation_provider: Optional[GenerationProvider] = None,
    store: Optional[RecordStore] = None,
    init: bool = True,
) -> Optional[RAGPlugin]:
    """
    Build (and by default initialize) a plugin from config.

    Returns None when the plugin is disabled. ``config`` defaults to
    ``PluginConfig.from_env()``.
    """
    config = config or PluginConfig.from_env()
    if not config.enabled:
        LOG.info("RAG plugin disabled by configuration")
        return None

    plugin = build_plugin(
        config,
        embedding_provider=embedding_provider,
        generation_provider=generation_provider,
        store=store,
    )
    if init:
        await plugin.init()
    return plugin
