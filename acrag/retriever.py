"""
Retriever: embedding provider + record store → ranked results.

Vector search first, then an optional keyword rerank that nudges results
whose text literally contains query words.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from acrag.models import SearchResult
from acrag.providers.embedding import EmbeddingProvider
from acrag.similarity import DEFAULT_THRESHOLD, DEFAULT_TOP_K
from acrag.storage.record_store import RecordStore

LOG = logging.getLogger("acrag.retriever")

# Tunable heuristic, added once per query keyword found in the record text.
RERANK_KEYWORD_BOOST = 0.1


class Retriever(ABC):
    """Abstract retrieval interface."""

    name: str = "abstract"

    @abstractmethod
    async def retrieve(
        self, query: str, top_k: Optional[int] = None, threshold: Optional[float] = None
    ) -> List[SearchResult]:
        """Embed ``query`` and return the top-K similar records."""

    @abstractmethod
    async def retrieve_by_vector(
        self,
        query_vector: Sequence[float],
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        """Return the top-K records similar to an already embedded query."""

    @abstractmethod
    async def rerank(self, query: str, results: List[SearchResult]) -> List[SearchResult]:
        """Reorder results with signals beyond vector similarity."""


class SemanticRetriever(Retriever):
    """
    Vector-similarity retriever with keyword reranking.

    Usage::

        retriever = SemanticRetriever(store, embedder, top_k=5, threshold=0.75)
        results = await retriever.retrieve("user can log in")
        results = await retriever.rerank("user can log in", results)
    """

    name = "Semantic"

    def __init__(
        self,
        store: RecordStore,
        embedding_provider: EmbeddingProvider,
        top_k: int = DEFAULT_TOP_K,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> None:
        self._store = store
        self._embed = embedding_provider
        self._top_k = top_k
        self._threshold = threshold

    @property
    def top_k(self) -> int:
        return self._top_k

    @property
    def threshold(self) -> float:
        return self._threshold

    async def retrieve(
        self, query: str, top_k: Optional[int] = None, threshold: Optional[float] = None
    ) -> List[SearchResult]:
        result = await self._embed.embed_result(query)
        if result.degraded:
            LOG.warning("Query embedding degraded, results will be empty: %s", result.error)
        return await self.retrieve_by_vector(result.vector, top_k, threshold)

    async def retrieve_by_vector(
        self,
        query_vector: Sequence[float],
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        k = self._top_k if top_k is None else top_k
        t = self._threshold if threshold is None else threshold
        return await self._store.search(query_vector, top_k=k, threshold=t)

    async def rerank(self, query: str, results: List[SearchResult]) -> List[SearchResult]:
        keywords = query.lower().split()

        boosted: List[SearchResult] = []
        for r in results:
            text = r.record.text.lower()
            hits = sum(1 for kw in keywords if kw in text)
            boosted.append(SearchResult(record=r.record, score=r.score + RERANK_KEYWORD_BOOST * hits))

        boosted.sort(key=lambda r: r.score, reverse=True)
        return boosted
