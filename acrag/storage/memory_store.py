"""
In-process record store.

An explicit store instance (injected like any other backend) rather than
process-wide state. When ``path`` is given, the whole index is rewritten as a
JSON document after every write and loaded back on ``init()``. Writes go
through a temp file and a rename; a failed write restores the previous
records and raises StorageUnavailable.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

from acrag.errors import StorageUnavailable
from acrag.models import Record
from acrag.storage.record_store import RecordStore

LOG = logging.getLogger("storage.memory_store")

INDEX_VERSION = "1.0"


class MemoryRecordStore(RecordStore):
    """Dict-backed record store, insertion ordered."""

    name = "Memory"

    def __init__(self, path: Union[str, Path, None] = None) -> None:
        self._path = Path(path) if path else None
        self._records: Optional[Dict[str, Record]] = None

    async def init(self) -> None:
        if self._records is not None:
            return

        records: Dict[str, Record] = {}
        if self._path is not None:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                if self._path.exists():
                    payload = json.loads(self._path.read_text(encoding="utf-8"))
                    for raw in payload.get("records", []):
                        record = Record.model_validate(raw)
                        records[record.id] = record
            except (OSError, ValueError) as exc:
                raise StorageUnavailable(f"Cannot load JSON index at {self._path}: {exc}") from exc

        self._records = records
        LOG.info("Memory record store initialized (%d records)", len(records))

    def _require_records(self) -> Dict[str, Record]:
        if self._records is None:
            raise self._not_initialized()
        return self._records

    def _save(self) -> None:
        if self._path is None or self._records is None:
            return
        payload = {
            "version": INDEX_VERSION,
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
            "records": [r.model_dump(mode="json") for r in self._records.values()],
        }
        tmp_path = self._path.parent / f".{self._path.name}.tmp"
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp_path, self._path)

    def _commit(self, snapshot: Dict[str, Record]) -> None:
        """Persist the current records, restoring ``snapshot`` if the write fails."""
        try:
            self._save()
        except OSError as exc:
            records = self._require_records()
            records.clear()
            records.update(snapshot)
            raise StorageUnavailable(f"Cannot write JSON index at {self._path}: {exc}") from exc

    async def add_record(self, record: Record) -> None:
        records = self._require_records()
        # Reassigning an existing key keeps its insertion position.
        snapshot = dict(records)
        records[record.id] = record
        self._commit(snapshot)

    async def get_record(self, record_id: str) -> Optional[Record]:
        return self._require_records().get(record_id)

    async def find_by_text(self, text: str) -> List[Record]:
        needle = text.lower()
        return [r for r in self._require_records().values() if r.text.lower() == needle]

    async def get_all_records(self) -> List[Record]:
        return list(self._require_records().values())

    async def get_record_count(self) -> int:
        return len(self._require_records())

    async def delete_record(self, record_id: str) -> None:
        records = self._require_records()
        snapshot = dict(records)
        if records.pop(record_id, None) is not None:
            self._commit(snapshot)

    async def clear_all(self) -> None:
        records = self._require_records()
        snapshot = dict(records)
        records.clear()
        self._commit(snapshot)

    async def close(self) -> None:
        self._records = None
