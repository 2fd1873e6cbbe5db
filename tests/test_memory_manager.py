import asyncio

import pytest
from structlog.testing import capture_logs

from persona_agent.domain.errors import EmptyMemoryContentError
from persona_agent.domain.models import Content, Memory


class FailingEmbedder:
    async def embed(self, text):
        raise RuntimeError("local model unavailable")


def _memory(memory_id, text, room_id="room-1", created_at=1_000, embedding=None):
    return Memory(
        id=memory_id,
        user_id="user-1",
        room_id=room_id,
        agent_id=None,
        content=Content(text=text),
        created_at=created_at,
        embedding=embedding,
    )


def test_add_embedding_uses_configured_width(make_runtime):
    runtime = make_runtime()
    memory = asyncio.run(runtime.message_manager.add_embedding_to_memory(_memory("m1", "hello there")))

    assert len(memory.embedding) == runtime.embedding_config.dimensions == 384


def test_existing_embedding_is_kept(make_runtime):
    runtime = make_runtime()
    memory = _memory("m1", "hello", embedding=[0.5, 0.5])

    assert asyncio.run(runtime.message_manager.add_embedding_to_memory(memory)) is memory
    assert runtime.local_embedder.calls == []


def test_empty_text_is_rejected(make_runtime):
    runtime = make_runtime()
    with pytest.raises(EmptyMemoryContentError):
        asyncio.run(runtime.message_manager.add_embedding_to_memory(_memory("m1", "")))


def test_failed_backend_falls_back_to_zero_vector(make_runtime):
    runtime = make_runtime(embedder=FailingEmbedder())
    memory = asyncio.run(runtime.message_manager.add_embedding_to_memory(_memory("m1", "hello")))

    assert memory.embedding == [0.0] * 384


def test_create_memory_skips_existing_ids(make_runtime):
    runtime = make_runtime()
    manager = runtime.message_manager

    async def main():
        await manager.create_memory(_memory("m1", "original"))
        await manager.create_memory(_memory("m1", "replacement"))
        return await manager.get_memory_by_id("m1"), await manager.count_memories("room-1", unique=False)

    stored, count = asyncio.run(main())
    assert stored.content.text == "original"
    assert count == 1


def test_get_memories_is_newest_first_and_limited(make_runtime):
    runtime = make_runtime()
    manager = runtime.message_manager

    async def main():
        for i in range(5):
            await manager.create_memory(_memory(f"m{i}", f"message {i}", created_at=1_000 + i))
        return await manager.get_memories("room-1", count=3, unique=False)

    memories = asyncio.run(main())
    assert [m.id for m in memories] == ["m4", "m3", "m2"]


def test_remove_all_memories_only_clears_one_room(make_runtime):
    runtime = make_runtime()
    manager = runtime.message_manager

    async def main():
        await manager.create_memory(_memory("a", "one", room_id="room-1"))
        await manager.create_memory(_memory("b", "two", room_id="room-1"))
        await manager.create_memory(_memory("c", "three", room_id="room-2"))
        await manager.remove_all_memories("room-1")
        return (
            await manager.count_memories("room-1", unique=False),
            await manager.count_memories("room-2", unique=False),
        )

    assert asyncio.run(main()) == (0, 1)


def test_search_orders_by_similarity(make_runtime):
    runtime = make_runtime()
    manager = runtime.lore_manager

    async def main():
        await manager.create_memory(_memory("close", "a", embedding=[1.0, 0.1]))
        await manager.create_memory(_memory("far", "b", embedding=[0.2, 1.0]))
        await manager.create_memory(_memory("opposite", "c", embedding=[-1.0, 0.0]))
        return await manager.search_memories_by_embedding([1.0, 0.0], match_threshold=0.1, count=5)

    results = asyncio.run(main())
    assert [m.id for m in results] == ["close", "far"]
    assert results[0].similarity > results[1].similarity


def test_zero_vector_fallback_is_logged(make_runtime):
    runtime = make_runtime(embedder=FailingEmbedder())

    with capture_logs() as logs:
        asyncio.run(runtime.message_manager.add_embedding_to_memory(_memory("m1", "hello")))

    fallbacks = [entry for entry in logs if entry["event"] == "fallback"]
    assert [entry["operation"] for entry in fallbacks][-2:] == ["embed", "add_embedding_to_memory"]
    assert fallbacks[-1]["substitute"] == "zero vector"


def test_add_embedding_returns_a_copy_and_leaves_argument_alone(make_runtime):
    runtime = make_runtime()
    original = _memory("m1", "hello there")

    embedded = asyncio.run(runtime.message_manager.add_embedding_to_memory(original))

    assert original.embedding is None
    assert embedded is not original
    assert len(embedded.embedding) == 384
    assert embedded.id == original.id
