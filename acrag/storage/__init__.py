"""
Record storage for acrag.

Provides:
- RecordStore: abstract store contract with exact vector search
- SQLiteRecordStore, MemoryRecordStore, ChromaRecordStore backends
- build_record_store: backend factory
"""

from acrag.storage.memory_store import MemoryRecordStore
from acrag.storage.record_store import RecordStore, build_record_store
from acrag.storage.sqlite_store import SQLiteRecordStore

__all__ = [
    "RecordStore",
    "SQLiteRecordStore",
    "MemoryRecordStore",
    "build_record_store",
]
