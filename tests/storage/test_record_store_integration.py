from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass

import pytest

from switchyard.errors import NotFoundError
from switchyard.storage import (
    Crud,
    InMemoryRecordStore,
    RecordAlreadyExistsError,
    SQLiteRecordStore,
    create_record_store_from_env,
)


def run_async(coro):
    return asyncio.run(coro)


@pytest.fixture(params=["memory", "sqlite"])
def make_store(request, tmp_path):
    def _make():
        if request.param == "memory":
            return InMemoryRecordStore()
        return SQLiteRecordStore(path=str(tmp_path / "records.sqlite3"))

    return _make


@dataclass(frozen=True)
class Note:
    id: str
    owner: str
    body: str
    pinned: bool = False


def note_crud(store) -> Crud[Note]:
    return Crud(
        store=store,
        table="notes",
        encode=asdict,
        decode=lambda row: Note(**row),
        id_of=lambda note: note.id,
    )


def test_store_requires_setup(make_store):
    store = make_store()
    with pytest.raises(RuntimeError, match="not initialized"):
        run_async(store.get("notes", "n1"))


def test_store_create_get_update_delete(make_store):
    async def scenario():
        async with make_store() as store:
            created = await store.create("notes", "n1", {"owner": "u1", "body": "a"})
            with pytest.raises(RecordAlreadyExistsError):
                await store.create("notes", "n1", {"owner": "u2"})
            merged = await store.update("notes", "n1", {"body": "b", "tags": ["x"]})
            missing_update = await store.update("notes", "nope", {"body": "c"})
            fetched = await store.get("notes", "n1")
            other_table = await store.get("tasks", "n1")
            deleted = await store.delete("notes", "n1")
            deleted_again = await store.delete("notes", "n1")
            return created, merged, missing_update, fetched, other_table, deleted, deleted_again

    created, merged, missing_update, fetched, other_table, deleted, deleted_again = run_async(scenario())
    assert created == {"owner": "u1", "body": "a"}
    assert merged == {"owner": "u1", "body": "b", "tags": ["x"]}
    assert missing_update is None
    assert fetched == merged
    assert other_table is None
    assert deleted is True
    assert deleted_again is False


def test_store_list_filters_orders_and_pages(make_store):
    async def scenario():
        async with make_store() as store:
            for index, owner in enumerate(["u1", "u2", "u1", "u1"]):
                await store.create("notes", f"n{index}", {"owner": owner, "rank": index, "flag": None})
            newest = await store.list("notes", where={"owner": "u1"})
            oldest = await store.list("notes", where={"owner": "u1"}, newest_first=False)
            page = await store.list("notes", where={"owner": "u1"}, limit=1, offset=1)
            nulls = await store.list("notes", where={"flag": None, "owner": "u2"})
            return newest, oldest, page, nulls

    newest, oldest, page, nulls = run_async(scenario())
    assert [row["rank"] for row in newest] == [3, 2, 0]
    assert [row["rank"] for row in oldest] == [0, 2, 3]
    assert [row["rank"] for row in page] == [2]
    assert [row["rank"] for row in nulls] == [1]


def test_store_bulk_update_counts_matched_entries_and_merges(make_store):
    async def scenario():
        async with make_store() as store:
            await store.create("notes", "a", {"status": "pending", "owner": "u1"})
            await store.create("notes", "b", {"status": "pending", "owner": "u2"})
            matched = await store.bulk_update(
                "notes",
                [
                    ("a", {"status": "running"}),
                    ("a", {"attempt": 2}),
                    ("b", {"status": "running"}),
                    ("gone", {"status": "x"}),
                ],
            )
            empty = await store.bulk_update("notes", [])
            return matched, empty, await store.get("notes", "a"), await store.get("notes", "b")

    matched, empty, a, b = run_async(scenario())
    assert matched == 3
    assert empty == 0
    assert a == {"status": "running", "owner": "u1", "attempt": 2}
    assert b == {"status": "running", "owner": "u2"}


def test_sqlite_store_persists_across_connections(tmp_path):
    path = str(tmp_path / "durable.sqlite3")

    async def scenario():
        async with SQLiteRecordStore(path=path) as store:
            await store.create("notes", "n1", {"body": "kept"})
        async with SQLiteRecordStore(path=path) as store:
            return await store.get("notes", "n1")

    assert run_async(scenario()) == {"body": "kept"}


def test_sqlite_store_rejects_unsafe_filter_fields(tmp_path):
    async def scenario():
        async with SQLiteRecordStore(path=str(tmp_path / "f.sqlite3")) as store:
            with pytest.raises(ValueError):
                await store.list("notes", where={"owner') OR 1=1 --": "x"})

    run_async(scenario())


def test_crud_maps_entities_and_raises_not_found(make_store):
    async def scenario():
        async with make_store() as store:
            crud = note_crud(store)
            created = await crud.create(Note(id="n1", owner="u1", body="hello"))
            await crud.create(Note(id="n2", owner="u2", body="other", pinned=True))
            updated = await crud.update("n1", {"pinned": True})
            pinned = await crud.find({"pinned": True}, newest_first=False)
            with pytest.raises(NotFoundError):
                await crud.require("missing")
            return created, updated, pinned

    created, updated, pinned = run_async(scenario())
    assert created == Note(id="n1", owner="u1", body="hello")
    assert updated.pinned is True
    assert [note.id for note in pinned] == ["n1", "n2"]


def test_record_factory_reads_backend_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SWITCHYARD_RECORD_BACKEND", "memory")
    assert isinstance(create_record_store_from_env(), InMemoryRecordStore)

    monkeypatch.setenv("SWITCHYARD_RECORD_BACKEND", "sqlite")
    monkeypatch.setenv("SWITCHYARD_SQLITE_PATH", str(tmp_path / "env.sqlite3"))
    store = create_record_store_from_env()
    assert isinstance(store, SQLiteRecordStore)
    assert store.path.endswith("env.sqlite3")

    monkeypatch.setenv("SWITCHYARD_RECORD_BACKEND", "mongo")
    with pytest.raises(ValueError):
        create_record_store_from_env()
