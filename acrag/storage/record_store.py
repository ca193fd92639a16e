"""
Abstract record store interface.

Defines the RecordStore ABC with three backends:
- SQLiteRecordStore (primary, stdlib sqlite3)
- MemoryRecordStore (in-process, optional JSON file persistence)
- ChromaRecordStore (Chroma collection as the persistence medium)

All backends share the exact brute-force ``search`` implemented here, so
swapping the backend never changes ranking behaviour.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from acrag.errors import NotInitialized
from acrag.models import Record, SearchResult
from acrag.similarity import DEFAULT_THRESHOLD, DEFAULT_TOP_K, rank

LOG = logging.getLogger("storage.record_store")


class RecordStore(ABC):
    """
    Persistent storage for records plus exact vector search.

    Lifecycle: ``init()`` must run before any other method. After
    ``close()`` every method except ``init()`` and ``close()`` raises
    NotInitialized until ``init()`` is called again.
    """

    name: str = "abstract"

    @abstractmethod
    async def init(self) -> None:
        """Open the backing medium and create the schema if absent (idempotent)."""

    @abstractmethod
    async def add_record(self, record: Record) -> None:
        """Insert or replace a record by id."""

    @abstractmethod
    async def get_record(self, record_id: str) -> Optional[Record]:
        """Return the record, or None when absent."""

    @abstractmethod
    async def find_by_text(self, text: str) -> List[Record]:
        """Return every record whose text equals ``text`` ignoring case."""

    @abstractmethod
    async def get_all_records(self) -> List[Record]:
        """Materialize every record in scan order. O(n) memory."""

    @abstractmethod
    async def get_record_count(self) -> int:
        """Return the number of stored records."""

    @abstractmethod
    async def delete_record(self, record_id: str) -> None:
        """Delete a record. No-op when absent."""

    @abstractmethod
    async def clear_all(self) -> None:
        """Remove every record."""

    @abstractmethod
    async def close(self) -> None:
        """Release the backing handle."""

    async def search(
        self,
        query_vector: Sequence[float],
        top_k: int = DEFAULT_TOP_K,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> List[SearchResult]:
        """Score every stored record against ``query_vector`` and rank them."""
        records = await self.get_all_records()
        return rank(query_vector, records, top_k=top_k, threshold=threshold)

    def _not_initialized(self) -> NotInitialized:
        return NotInitialized(f"{self.name} record store is not initialized; call init() first")


def build_record_store(backend: str = "sqlite", **kwargs: Any) -> RecordStore:
    """
    Factory: create a RecordStore of the requested type.

    Args:
        backend: "sqlite", "memory" or "chromadb"
        **kwargs: Backend-specific configuration

    Returns:
        RecordStore instance (not yet initialized)

    Raises:
        ValueError: Unknown backend
    """
    if backend == "sqlite":
        from acrag.storage.sqlite_store import SQLiteRecordStore

        return SQLiteRecordStore(**kwargs)

    elif backend == "memory":
        from acrag.storage.memory_store import MemoryRecordStore

        return MemoryRecordStore(**kwargs)

    elif backend in ("chromadb", "chroma"):
        from acrag.storage.chroma_store import ChromaRecordStore

        return ChromaRecordStore(**kwargs)

    else:
        raise ValueError(f"Unknown record store backend: {backend!r}. Supported: 'sqlite', 'memory', 'chromadb'")
