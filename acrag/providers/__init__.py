"""
Swappable capability providers: embedding, generation and prompt rendering.

Each category is an ABC with concrete backends and a ``build_*`` factory.
Storage lives in ``acrag.storage``.
"""

from acrag.providers.embedding import (
    EmbeddingProvider,
    EmbeddingResult,
    MockEmbeddingProvider,
    OllamaEmbeddingProvider,
    OpenAIEmbeddingProvider,
    build_embedding_provider,
)
from acrag.providers.generation import (
    GENERATION_FALLBACK,
    GenerationOptions,
    GenerationProvider,
    GenerationResult,
    MockGenerationProvider,
    OllamaGenerationProvider,
    OpenAIGenerationProvider,
    build_generation_provider,
)
from acrag.providers.renderer import (
    EMPTY_MARKER,
    JinjaRenderer,
    PromptRenderer,
    SimpleRenderer,
    ValidationResult,
    build_renderer,
)

__all__ = [
    # Embedding
    "EmbeddingProvider",
    "EmbeddingResult",
    "OllamaEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "MockEmbeddingProvider",
    "build_embedding_provider",
    # Generation
    "GENERATION_FALLBACK",
    "GenerationOptions",
    "GenerationProvider",
    "GenerationResult",
    "OllamaGenerationProvider",
    "OpenAIGenerationProvider",
    "MockGenerationProvider",
    "build_generation_provider",
    # Rendering
    "EMPTY_MARKER",
    "PromptRenderer",
    "SimpleRenderer",
    "JinjaRenderer",
    "ValidationResult",
    "build_renderer",
]
