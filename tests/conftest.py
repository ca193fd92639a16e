"""
Shared test fixtures and pytest configuration.

Markers:
    @pytest.mark.embedding   : Requires sentence-transformers model downloadable

Run:
    pytest                            # everything offline
    pytest -m embedding               # only local embedding model tests
    pytest -m "not embedding"         # skip model downloads (fast CI)
"""

from typing import List, Optional

import pytest

from acrag.config import PathsConfig, PluginConfig, ProviderConfig, StoreConfig
from acrag.models import Record, RecordMetadata, RecordType
from acrag.providers.embedding import MockEmbeddingProvider
from acrag.providers.generation import MockGenerationProvider

# Keyword vocabulary for MockEmbeddingProvider: one dimension per word.
VOCABULARY = ["login", "password", "checkout", "cart", "order", "search", "error", "timeout"]

AUTH_REQUIREMENTS = """\
# Authentication

- User can login with valid credentials
- User can add an item to the cart and checkout
- Search returns
  matching products
"""

LOGIN_AC = "User can login with valid credentials"
CART_AC = "User can add an item to the cart and checkout"
SEARCH_AC = "Search returns matching products"

_EMBEDDING_OK: Optional[bool] = None


def _embedding_model_available() -> bool:
    """Check if all-MiniLM-L6-v2 can be loaded (already cached or downloadable)."""
    try:
        from sentence_transformers import SentenceTransformer

        model = SentenceTransformer("all-MiniLM-L6-v2")
        vec = model.encode(["test"])
        return vec.shape[1] == 384
    except Exception:
        return False


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "embedding: requires sentence-transformers model available")


def pytest_collection_modifyitems(config, items):
    """Auto-skip tests whose infrastructure requirements are not met."""
    global _EMBEDDING_OK

    if not any("embedding" in item.keywords for item in items):
        return
    if _EMBEDDING_OK is None:
        _EMBEDDING_OK = _embedding_model_available()

    skip_embedding = pytest.mark.skip(reason="Embedding model not available (all-MiniLM-L6-v2)")
    for item in items:
        if "embedding" in item.keywords and not _EMBEDDING_OK:
            item.add_marker(skip_embedding)


def make_record(
    record_id: str,
    text: str = "",
    embedding: Optional[List[float]] = None,
    source_file: str = "test.md",
    record_type: RecordType = RecordType.AC,
    author: Optional[str] = None,
) -> Record:
    return Record(
        id=record_id,
        text=text or f"text for {record_id}",
        embedding=embedding if embedding is not None else [1.0, 0.0, 0.0],
        source_file=source_file,
        metadata=RecordMetadata(type=record_type, author=author),
    )


@pytest.fixture
def embedder() -> MockEmbeddingProvider:
    return MockEmbeddingProvider(vocabulary=VOCABULARY)


@pytest.fixture
def llm() -> MockGenerationProvider:
    return MockGenerationProvider(responses=["test('generated', async () => {});"])


@pytest.fixture
def requirements_dir(tmp_path):
    root = tmp_path / "requirements"
    root.mkdir()
    (root / "auth.md").write_text(AUTH_REQUIREMENTS, encoding="utf-8")
    return root


@pytest.fixture
def config(tmp_path, requirements_dir) -> PluginConfig:
    return PluginConfig(
        embedding=ProviderConfig(provider="mock"),
        llm=ProviderConfig(provider="mock"),
        store=StoreConfig(provider="sqlite", path=str(tmp_path / "data" / "index.db")),
        paths=PathsConfig(
            requirements_dir=str(requirements_dir),
            prompts_dir=str(tmp_path / "prompts"),
            index_dir=str(tmp_path / "data"),
        ),
        index_delay=0,
    )
