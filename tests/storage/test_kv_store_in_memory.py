from __future__ import annotations

import asyncio

import pytest

from switchyard.storage import InMemoryKeyValueStore, create_kv_store_from_env


def run_async(coro):
    return asyncio.run(coro)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


def test_kv_store_requires_setup():
    store = InMemoryKeyValueStore()
    with pytest.raises(RuntimeError, match="not initialized"):
        run_async(store.get("k"))


def test_kv_store_roundtrip_and_delete():
    async def scenario():
        async with InMemoryKeyValueStore() as store:
            await store.set("k", {"nested": [1, 2]})
            value = await store.get("k")
            value["nested"].append(3)
            again = await store.get("k")
            deleted = await store.delete("k")
            deleted_twice = await store.delete("k")
            return again, deleted, deleted_twice, await store.get("k")

    again, deleted, deleted_twice, missing = run_async(scenario())
    assert again == {"nested": [1, 2]}
    assert deleted is True
    assert deleted_twice is False
    assert missing is None


def test_kv_store_ttl_expires_lazily():
    clock = FakeClock()

    async def scenario():
        store = InMemoryKeyValueStore(clock=clock)
        await store.setup()
        await store.set("short", "v", ttl_s=5)
        await store.set("forever", "v")
        before = await store.get("short")
        clock.now += 5
        return before, await store.get("short"), await store.get("forever")

    assert run_async(scenario()) == ("v", None, "v")


def test_set_if_absent_honours_expiry():
    clock = FakeClock()

    async def scenario():
        store = InMemoryKeyValueStore(clock=clock)
        await store.setup()
        first = await store.set_if_absent("lock", "a", ttl_s=10)
        second = await store.set_if_absent("lock", "b", ttl_s=10)
        clock.now += 11
        third = await store.set_if_absent("lock", "c", ttl_s=10)
        return first, second, third, await store.get("lock")

    assert run_async(scenario()) == (True, False, True, "c")


def test_compare_and_act_only_touches_matching_live_values():
    clock = FakeClock()

    async def scenario():
        store = InMemoryKeyValueStore(clock=clock)
        await store.setup()
        await store.set("lock", "owner_b", ttl_s=10)
        wrong_delete = await store.delete_if_equals("lock", "owner_a")
        wrong_expire = await store.expire_if_equals("lock", "owner_a", ttl_s=100)
        extended = await store.expire_if_equals("lock", "owner_b", ttl_s=100)
        clock.now += 50
        alive = await store.get("lock")
        deleted = await store.delete_if_equals("lock", "owner_b")
        missing_delete = await store.delete_if_equals("lock", "owner_b")
        missing_expire = await store.expire_if_equals("lock", "owner_b", ttl_s=1)
        return (
            wrong_delete,
            wrong_expire,
            extended,
            alive,
            deleted,
            missing_delete,
            missing_expire,
            await store.get("lock"),
        )

    assert run_async(scenario()) == (False, False, True, "owner_b", True, False, False, None)


def test_kv_factory_reads_backend_from_env(monkeypatch):
    monkeypatch.setenv("SWITCHYARD_KV_BACKEND", "memory")
    assert isinstance(create_kv_store_from_env(), InMemoryKeyValueStore)

    monkeypatch.setenv("SWITCHYARD_KV_BACKEND", "etcd")
    with pytest.raises(ValueError, match="SWITCHYARD_KV_BACKEND"):
        create_kv_store_from_env()
