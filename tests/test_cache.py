import asyncio

from persona_agent.domain.context.memory.cache import (
    CacheManager,
    DbCacheAdapter,
    FsCacheAdapter,
    MemoryCacheAdapter,
)
from persona_agent.domain.models import now_ms
from persona_agent.infrastructure.storage.in_memory import InMemoryDatabaseAdapter


def test_values_without_expiry_round_trip():
    manager = CacheManager(MemoryCacheAdapter())

    async def main():
        await manager.set("profile", {"name": "Ann", "tags": ["sailor"]})
        return await manager.get("profile")

    assert asyncio.run(main()) == {"name": "Ann", "tags": ["sailor"]}


def test_future_expiry_is_still_served():
    manager = CacheManager(MemoryCacheAdapter())

    async def main():
        await manager.set("token", "abc", expires=now_ms() + 60_000)
        return await manager.get("token")

    assert asyncio.run(main()) == "abc"


def test_expired_entry_is_hidden_and_deleted_in_background():
    adapter = MemoryCacheAdapter()
    manager = CacheManager(adapter)

    async def main():
        await manager.set("token", "abc", expires=now_ms() - 1000)
        value = await manager.get("token")
        for _ in range(3):
            await asyncio.sleep(0)
        return value

    assert asyncio.run(main()) is None
    assert "token" not in adapter.data


def test_missing_key_returns_none():
    manager = CacheManager(MemoryCacheAdapter())
    assert asyncio.run(manager.get("nope")) is None


def test_fs_adapter(tmp_path):
    adapter = FsCacheAdapter(str(tmp_path / "cache"))

    async def main():
        missing = await adapter.get("k")
        await adapter.set("k", "v")
        stored = await adapter.get("k")
        await adapter.delete("k")
        await adapter.delete("k")
        return missing, stored, await adapter.get("k")

    assert asyncio.run(main()) == (None, "v", None)


def test_db_adapter_scopes_entries_per_agent():
    db = InMemoryDatabaseAdapter()
    first = CacheManager(DbCacheAdapter(db, "agent-1"))
    second = CacheManager(DbCacheAdapter(db, "agent-2"))

    async def main():
        await first.set("k", 1)
        await second.set("k", 2)
        return await first.get("k"), await second.get("k")

    assert asyncio.run(main()) == (1, 2)
