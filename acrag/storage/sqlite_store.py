"""
SQLite-backed record store.

Primary backend, zero external dependencies (stdlib sqlite3). One table, the
embedding JSON-encoded as text. Upserts keep the row's rowid, so a replaced
record keeps its scan position and ranking ties stay deterministic.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from acrag.errors import StorageUnavailable
from acrag.models import Record, RecordMetadata, RecordType
from acrag.storage.record_store import RecordStore

LOG = logging.getLogger("storage.sqlite_store")

MEMORY_PATH = ":memory:"

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS records (
    id TEXT PRIMARY KEY,
    text TEXT NOT NULL,
    embedding TEXT NOT NULL,
    sourceFile TEXT NOT NULL,
    created TEXT NOT NULL,
    author TEXT,
    type TEXT NOT NULL
);
"""

_UPSERT_SQL = (
    "INSERT INTO records (id, text, embedding, sourceFile, created, author, type) "
    "VALUES (?, ?, ?, ?, ?, ?, ?) "
    "ON CONFLICT(id) DO UPDATE SET "
    "text = excluded.text, embedding = excluded.embedding, sourceFile = excluded.sourceFile, "
    "created = excluded.created, author = excluded.author, type = excluded.type"
)


def _parse_created(value: str) -> datetime:
    # Records written by other tools may carry a trailing "Z".
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        LOG.warning("Unparseable created timestamp %r, using now", value)
        return datetime.now(timezone.utc)


class SQLiteRecordStore(RecordStore):
    """SQLite-backed record storage."""

    name = "SQLite"

    def __init__(self, db_path: Union[str, Path] = "rag/data/index.db") -> None:
        self._db_path = str(db_path)
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def db_path(self) -> str:
        return self._db_path

    async def init(self) -> None:
        if self._conn is not None:
            return

        try:
            if self._db_path != MEMORY_PATH:
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self._db_path)
            conn.row_factory = sqlite3.Row
            conn.create_function("PY_LOWER", 1, lambda s: s.lower() if s is not None else None, deterministic=True)
            if self._db_path != MEMORY_PATH:
                conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_SCHEMA_SQL)
            conn.commit()
        except (OSError, sqlite3.Error) as exc:
            raise StorageUnavailable(f"Cannot open SQLite store at {self._db_path}: {exc}") from exc

        self._conn = conn
        LOG.info("SQLite record store initialized at %s", self._db_path)

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise self._not_initialized()
        return self._conn

    async def add_record(self, record: Record) -> None:
        conn = self._require_conn()
        conn.execute(
            _UPSERT_SQL,
            (
                record.id,
                record.text,
                json.dumps(list(record.embedding)),
                record.source_file,
                record.metadata.created.isoformat(),
                record.metadata.author,
                record.metadata.type.value,
            ),
        )
        conn.commit()

    async def get_record(self, record_id: str) -> Optional[Record]:
        conn = self._require_conn()
        row = conn.execute("SELECT * FROM records WHERE id = ?", (record_id,)).fetchone()
        return self._row_to_record(row) if row else None

    async def find_by_text(self, text: str) -> List[Record]:
        conn = self._require_conn()
        rows = conn.execute(
            "SELECT * FROM records WHERE PY_LOWER(text) = ? ORDER BY rowid",
            (text.lower(),),
        ).fetchall()
        return [self._row_to_record(r) for r in rows]

    async def get_all_records(self) -> List[Record]:
        conn = self._require_conn()
        rows = conn.execute("SELECT * FROM records ORDER BY rowid").fetchall()
        return [self._row_to_record(r) for r in rows]

    async def get_record_count(self) -> int:
        conn = self._require_conn()
        row = conn.execute("SELECT COUNT(*) AS count FROM records").fetchone()
        return int(row["count"]) if row else 0

    async def delete_record(self, record_id: str) -> None:
        conn = self._require_conn()
        conn.execute("DELETE FROM records WHERE id = ?", (record_id,))
        conn.commit()

    async def clear_all(self) -> None:
        conn = self._require_conn()
        conn.execute("DELETE FROM records")
        conn.commit()

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            LOG.debug("SQLite record store closed: %s", self._db_path)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Record:
        try:
            embedding = json.loads(row["embedding"])
        except (TypeError, json.JSONDecodeError):
            LOG.warning("Record %s has a corrupt embedding column, treating as empty", row["id"])
            embedding = []

        return Record(
            id=row["id"],
            text=row["text"],
            embedding=embedding,
            source_file=row["sourceFile"],
            metadata=RecordMetadata(
                created=_parse_created(row["created"]),
                author=row["author"],
                type=RecordType(row["type"]),
            ),
        )
