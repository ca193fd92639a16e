"""Tests for record store backends: SQLite, in-process memory/JSON, Chroma."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

import pytest

from acrag.errors import NotInitialized, StorageUnavailable
from acrag.models import Record, RecordMetadata, RecordType
from acrag.storage import MemoryRecordStore, SQLiteRecordStore, build_record_store
from conftest import make_record


@pytest.fixture(params=["sqlite", "memory"])
def store(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteRecordStore(db_path=str(tmp_path / "data" / "index.db"))
    return MemoryRecordStore(path=tmp_path / "index.json")


class TestRecordStoreContract:
    """Behaviour every backend must share."""

    @pytest.mark.asyncio
    async def test_add_and_get(self, store):
        await store.init()
        record = make_record("r1", text="User can login", author="qa")
        await store.add_record(record)

        got = await store.get_record("r1")
        assert got is not None
        assert got.text == "User can login"
        assert got.embedding == [1.0, 0.0, 0.0]
        assert got.source_file == "test.md"
        assert got.metadata.author == "qa"
        assert got.metadata.type == RecordType.AC
        await store.close()

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        await store.init()
        assert await store.get_record("nope") is None
        await store.close()

    @pytest.mark.asyncio
    async def test_upsert_overwrites(self, store):
        await store.init()
        await store.add_record(make_record("r1", text="first"))
        await store.add_record(make_record("r1", text="second", embedding=[0.0, 1.0, 0.0]))

        assert await store.get_record_count() == 1
        got = await store.get_record("r1")
        assert got.text == "second"
        assert got.embedding == [0.0, 1.0, 0.0]
        await store.close()

    @pytest.mark.asyncio
    async def test_upsert_same_record_is_idempotent(self, store):
        await store.init()
        record = Record(
            id="r1",
            text="User can login",
            embedding=[0.25, 0.5, 0.75],
            source_file="auth.md",
            metadata=RecordMetadata(
                created=datetime(2024, 3, 1, 12, 30, 45, 123456, tzinfo=timezone.utc),
                author="qa",
                type=RecordType.AC,
            ),
        )
        await store.add_record(record)
        await store.add_record(record)

        assert await store.get_record_count() == 1
        assert await store.get_record("r1") == record
        await store.close()

        await store.init()
        assert await store.get_record_count() == 1
        assert await store.get_record("r1") == record
        await store.close()

    @pytest.mark.asyncio
    async def test_upsert_keeps_scan_position(self, store):
        await store.init()
        for rid in ("a", "b", "c"):
            await store.add_record(make_record(rid))
        await store.add_record(make_record("a", text="updated"))

        ids = [r.id for r in await store.get_all_records()]
        assert ids == ["a", "b", "c"]
        await store.close()

    @pytest.mark.asyncio
    async def test_find_by_text_case_insensitive(self, store):
        await store.init()
        await store.add_record(make_record("r1", text="User Can Login"))
        await store.add_record(make_record("r2", text="User can logout"))

        matches = await store.find_by_text("user can login")
        assert [r.id for r in matches] == ["r1"]
        assert await store.find_by_text("user can") == []
        await store.close()

    @pytest.mark.asyncio
    async def test_delete_and_delete_missing(self, store):
        await store.init()
        await store.add_record(make_record("r1"))
        await store.delete_record("r1")
        await store.delete_record("r1")
        assert await store.get_record_count() == 0
        await store.close()

    @pytest.mark.asyncio
    async def test_clear_all(self, store):
        await store.init()
        for i in range(3):
            await store.add_record(make_record(f"r{i}"))
        await store.clear_all()
        assert await store.get_all_records() == []
        await store.close()

    @pytest.mark.asyncio
    async def test_search_ranks_by_similarity(self, store):
        await store.init()
        await store.add_record(make_record("x", embedding=[1.0, 0.0, 0.0]))
        await store.add_record(make_record("y", embedding=[0.0, 1.0, 0.0]))
        await store.add_record(make_record("xy", embedding=[0.9, 0.1, 0.0]))

        results = await store.search([1.0, 0.0, 0.0], top_k=5, threshold=0.75)
        assert [r.record.id for r in results] == ["x", "xy"]
        assert results[0].score == pytest.approx(1.0)
        await store.close()

    @pytest.mark.asyncio
    async def test_search_tolerates_degraded_records(self, store):
        await store.init()
        await store.add_record(make_record("zero", embedding=[0.0, 0.0, 0.0]))
        await store.add_record(make_record("short", embedding=[1.0]))
        await store.add_record(make_record("ok", embedding=[1.0, 0.0, 0.0]))

        results = await store.search([1.0, 0.0, 0.0], top_k=5, threshold=0.5)
        assert [r.record.id for r in results] == ["ok"]
        await store.close()

    @pytest.mark.asyncio
    async def test_init_idempotent(self, store):
        await store.init()
        await store.add_record(make_record("r1"))
        await store.init()
        assert await store.get_record_count() == 1
        await store.close()

    @pytest.mark.asyncio
    async def test_use_before_init_raises(self, store):
        with pytest.raises(NotInitialized):
            await store.get_record_count()

    @pytest.mark.asyncio
    async def test_use_after_close_raises(self, store):
        await store.init()
        await store.close()
        await store.close()
        with pytest.raises(NotInitialized):
            await store.add_record(make_record("r1"))

    @pytest.mark.asyncio
    async def test_reopen_after_close_keeps_data(self, store):
        await store.init()
        await store.add_record(make_record("r1", text="persisted"))
        await store.close()

        await store.init()
        got = await store.get_record("r1")
        assert got is not None and got.text == "persisted"
        await store.close()


class TestSQLiteRecordStore:
    @pytest.mark.asyncio
    async def test_creates_parent_directories(self, tmp_path):
        db_path = tmp_path / "nested" / "deeper" / "index.db"
        store = SQLiteRecordStore(db_path=str(db_path))
        await store.init()
        assert db_path.exists()
        await store.close()

    @pytest.mark.asyncio
    async def test_in_memory_database(self):
        store = SQLiteRecordStore(db_path=":memory:")
        await store.init()
        await store.add_record(make_record("r1"))
        assert await store.get_record_count() == 1
        await store.close()

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        db_path = str(tmp_path / "index.db")
        first = SQLiteRecordStore(db_path=db_path)
        await first.init()
        await first.add_record(make_record("r1", text="kept", record_type=RecordType.TEST))
        await first.close()

        second = SQLiteRecordStore(db_path=db_path)
        await second.init()
        got = await second.get_record("r1")
        assert got.text == "kept"
        assert got.metadata.type == RecordType.TEST
        await second.close()

    @pytest.mark.asyncio
    async def test_unicode_case_folding(self):
        store = SQLiteRecordStore(db_path=":memory:")
        await store.init()
        await store.add_record(make_record("r1", text="ÜBER login"))
        assert [r.id for r in await store.find_by_text("über LOGIN")] == ["r1"]
        await store.close()

    @pytest.mark.asyncio
    async def test_corrupt_embedding_reads_as_empty(self, tmp_path):
        db_path = str(tmp_path / "index.db")
        store = SQLiteRecordStore(db_path=db_path)
        await store.init()
        await store.add_record(make_record("r1"))
        store._conn.execute("UPDATE records SET embedding = 'not json' WHERE id = 'r1'")
        store._conn.commit()

        got = await store.get_record("r1")
        assert got.embedding == []
        assert got.is_degraded
        await store.close()

    @pytest.mark.asyncio
    async def test_unopenable_path_raises(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        store = SQLiteRecordStore(db_path=str(blocker / "index.db"))
        with pytest.raises(StorageUnavailable):
            await store.init()


class TestMemoryRecordStore:
    @pytest.mark.asyncio
    async def test_without_path_is_ephemeral(self):
        store = MemoryRecordStore()
        await store.init()
        await store.add_record(make_record("r1"))
        await store.close()

        await store.init()
        assert await store.get_record_count() == 0

    @pytest.mark.asyncio
    async def test_json_index_layout(self, tmp_path):
        path = tmp_path / "index.json"
        store = MemoryRecordStore(path=path)
        await store.init()
        await store.add_record(make_record("r1", text="written"))

        payload = json.loads(path.read_text(encoding="utf-8"))
        assert payload["version"] == "1.0"
        assert "lastUpdated" in payload
        assert [r["id"] for r in payload["records"]] == ["r1"]
        await store.close()

    @pytest.mark.asyncio
    async def test_corrupt_index_raises(self, tmp_path):
        path = tmp_path / "index.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageUnavailable):
            await MemoryRecordStore(path=path).init()

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back(self, tmp_path, monkeypatch):
        path = tmp_path / "index.json"
        store = MemoryRecordStore(path=path)
        await store.init()
        await store.add_record(make_record("a", text="kept"))
        await store.add_record(make_record("b"))

        def fail_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("acrag.storage.memory_store.os.replace", fail_replace)

        with pytest.raises(StorageUnavailable):
            await store.add_record(make_record("c"))
        with pytest.raises(StorageUnavailable):
            await store.add_record(make_record("a", text="changed"))
        with pytest.raises(StorageUnavailable):
            await store.delete_record("a")
        with pytest.raises(StorageUnavailable):
            await store.clear_all()

        assert [r.id for r in await store.get_all_records()] == ["a", "b"]
        assert (await store.get_record("a")).text == "kept"
        assert await store.get_record("c") is None
        payload = json.loads(path.read_text(encoding="utf-8"))
        assert [r["id"] for r in payload["records"]] == ["a", "b"]
        await store.close()


class TestChromaRecordStore:
    @pytest.mark.asyncio
    async def test_roundtrip_and_search(self):
        pytest.importorskip("chromadb")
        from acrag.storage.chroma_store import ChromaRecordStore

        store = ChromaRecordStore(collection_name=f"test_{uuid.uuid4().hex[:8]}")
        await store.init()
        await store.add_record(make_record("x", text="Login works", embedding=[1.0, 0.0, 0.0], author="qa"))
        await store.add_record(make_record("y", embedding=[0.0, 1.0, 0.0]))

        got = await store.get_record("x")
        assert got.text == "Login works"
        assert got.embedding == [1.0, 0.0, 0.0]
        assert got.metadata.author == "qa"

        results = await store.search([1.0, 0.0, 0.0], top_k=5, threshold=0.75)
        assert [r.record.id for r in results] == ["x"]
        assert [r.id for r in await store.find_by_text("LOGIN WORKS")] == ["x"]
        await store.close()

    @pytest.mark.asyncio
    async def test_mixed_dimensions_and_clear(self):
        pytest.importorskip("chromadb")
        from acrag.storage.chroma_store import ChromaRecordStore

        store = ChromaRecordStore(collection_name=f"test_{uuid.uuid4().hex[:8]}")
        await store.init()
        await store.add_record(make_record("a", embedding=[1.0, 0.0]))
        await store.add_record(make_record("b", embedding=[]))
        assert await store.get_record_count() == 2

        await store.delete_record("missing")
        await store.clear_all()
        assert await store.get_record_count() == 0
        await store.close()

    @pytest.mark.asyncio
    async def test_use_before_init_raises(self):
        from acrag.storage.chroma_store import ChromaRecordStore

        with pytest.raises(NotInitialized):
            await ChromaRecordStore().get_all_records()


class TestBuildRecordStore:
    def test_sqlite(self, tmp_path):
        store = build_record_store("sqlite", db_path=str(tmp_path / "x.db"))
        assert isinstance(store, SQLiteRecordStore)
        assert store.name == "SQLite"

    def test_memory(self):
        assert isinstance(build_record_store("memory"), MemoryRecordStore)

    def test_chroma_aliases(self):
        from acrag.storage.chroma_store import ChromaRecordStore

        assert isinstance(build_record_store("chromadb"), ChromaRecordStore)
        assert isinstance(build_record_store("chroma"), ChromaRecordStore)

    def test_factory_unknown_raises(self):
        with pytest.raises(ValueError, match="Unknown record store backend"):
            build_record_store("nonexistent")
