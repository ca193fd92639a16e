"""
Chroma-backed record store.

Chroma operates in three modes, chosen at init():
- HttpClient when ``chroma_host`` is set (docker compose chroma service)
- PersistentClient when ``persist_directory`` is set
- ephemeral in-memory Client otherwise

Chroma is used as the persistence medium only. The record's real vector is
kept JSON-encoded in metadata and ranking is the shared exact scan, so mixed
or zero-length vectors stay storable. Chroma's own index receives a constant
one-dimensional placeholder and is never queried.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from acrag.errors import StorageUnavailable
from acrag.models import Record, RecordMetadata, RecordType
from acrag.storage.record_store import RecordStore

LOG = logging.getLogger("storage.chroma_store")

_INDEX_PLACEHOLDER = [1.0]
_INCLUDE = ["documents", "metadatas"]


class ChromaRecordStore(RecordStore):
    """Chroma collection holding records; search stays brute-force."""

    name = "ChromaDB"

    def __init__(
        self,
        collection_name: str = "acrag_records",
        persist_directory: Optional[str] = None,
        chroma_host: Optional[str] = None,
        chroma_port: int = 8000,
    ) -> None:
        self._collection_name = collection_name
        self._persist_directory = persist_directory
        self._chroma_host = chroma_host
        self._chroma_port = chroma_port
        self._client: Any = None
        self._collection: Any = None

    async def init(self) -> None:
        if self._collection is not None:
            return

        try:
            import chromadb
        except ImportError as exc:
            raise StorageUnavailable("chromadb is required for ChromaRecordStore. Install with: pip install chromadb") from exc

        try:
            if self._chroma_host:
                self._client = chromadb.HttpClient(host=self._chroma_host, port=self._chroma_port)
                LOG.info("Chroma: connected to %s:%d", self._chroma_host, self._chroma_port)
            elif self._persist_directory:
                Path(self._persist_directory).mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(path=self._persist_directory)
                LOG.info("Chroma: persistent at %s", self._persist_directory)
            else:
                self._client = chromadb.Client()
                LOG.info("Chroma: ephemeral (in-memory)")

            self._collection = self._client.get_or_create_collection(name=self._collection_name)
        except Exception as exc:
            self._client = None
            raise StorageUnavailable(f"Cannot open Chroma collection {self._collection_name!r}: {exc}") from exc

    def _require_collection(self) -> Any:
        if self._collection is None:
            raise self._not_initialized()
        return self._collection

    async def add_record(self, record: Record) -> None:
        collection = self._require_collection()
        collection.upsert(
            ids=[record.id],
            documents=[record.text],
            embeddings=[_INDEX_PLACEHOLDER],
            metadatas=[self._record_to_metadata(record)],
        )

    async def get_record(self, record_id: str) -> Optional[Record]:
        collection = self._require_collection()
        records = self._unpack(collection.get(ids=[record_id], include=_INCLUDE))
        return records[0] if records else None

    async def find_by_text(self, text: str) -> List[Record]:
        needle = text.lower()
        return [r for r in await self.get_all_records() if r.text.lower() == needle]

    async def get_all_records(self) -> List[Record]:
        collection = self._require_collection()
        return self._unpack(collection.get(include=_INCLUDE))

    async def get_record_count(self) -> int:
        return self._require_collection().count()

    async def delete_record(self, record_id: str) -> None:
        collection = self._require_collection()
        if collection.get(ids=[record_id], include=[])["ids"]:
            collection.delete(ids=[record_id])

    async def clear_all(self) -> None:
        collection = self._require_collection()
        ids = collection.get(include=[])["ids"]
        if ids:
            collection.delete(ids=ids)

    async def close(self) -> None:
        self._collection = None
        self._client = None

    @staticmethod
    def _record_to_metadata(record: Record) -> Dict[str, Any]:
        # Chroma metadata values must be scalars and may not be None.
        meta: Dict[str, Any] = {
            "sourceFile": record.source_file,
            "created": record.metadata.created.isoformat(),
            "type": record.metadata.type.value,
            "embedding": json.dumps(list(record.embedding)),
        }
        if record.metadata.author is not None:
            meta["author"] = record.metadata.author
        return meta

    @staticmethod
    def _unpack(result: Dict[str, Any]) -> List[Record]:
        out: List[Record] = []
        ids = result.get("ids") or []
        documents = result.get("documents") or [""] * len(ids)
        metadatas = result.get("metadatas") or [{}] * len(ids)

        for record_id, text, meta in zip(ids, documents, metadatas):
            meta = meta or {}
            try:
                embedding = json.loads(meta.get("embedding", "[]"))
            except json.JSONDecodeError:
                LOG.warning("Record %s has a corrupt embedding, treating as empty", record_id)
                embedding = []
            out.append(
                Record(
                    id=record_id,
                    text=text or "",
                    embedding=embedding,
                    source_file=meta.get("sourceFile", ""),
                    metadata=RecordMetadata(
                        created=datetime.fromisoformat(meta["created"]) if "created" in meta else datetime.now(timezone.utc),
                        author=meta.get("author"),
                        type=RecordType(meta.get("type", RecordType.AC.value)),
                    ),
                )
            )
        return out
