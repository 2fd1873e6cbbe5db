import asyncio

import pytest

from persona_agent.domain.context.memory import knowledge
from persona_agent.domain.context.memory.knowledge import KnowledgeItem, preprocess, split_chunks
from persona_agent.domain.models import Content, Memory, string_to_uuid


DOCUMENT = "The lighthouse keeper collects rare seashells on the northern coast"


def _fragments(runtime):
    return runtime.database_adapter._table("fragments")


def test_preprocess_strips_markup_and_normalizes():
    assert preprocess("Hello   WORLD") == "hello world"
    assert preprocess("before ```x = 1``` after") == "before after"
    assert preprocess("<@123456> hi") == "hi"
    assert preprocess("") == ""


def test_preprocess_is_stable_under_reapplication():
    text = "# Notes\nSee [the docs](https://www.example.com/page) and `inline` code!\n---\n<b>Bold</b> // trailing"
    once = preprocess(text)
    assert preprocess(once) == once


def test_split_chunks_overlaps_by_bleed():
    assert split_chunks("abcdefghij", chunk_size=4, bleed=1) == ["abcd", "defg", "ghij"]
    assert split_chunks("abc", chunk_size=4, bleed=1) == ["abc"]
    assert split_chunks("", chunk_size=4, bleed=1) == []


def test_split_chunks_rejects_bleed_not_smaller_than_chunk():
    with pytest.raises(ValueError):
        split_chunks("abcdef", chunk_size=4, bleed=4)


def test_set_stores_document_and_fragments_once(make_runtime):
    runtime = make_runtime()
    item = KnowledgeItem(id="doc-1", content=Content(text=DOCUMENT))

    async def main():
        await knowledge.set(runtime, item, chunk_size=24, bleed=4)
        first = sorted(m.id for m in _fragments(runtime))
        await knowledge.set(runtime, item, chunk_size=24, bleed=4)
        second = sorted(m.id for m in _fragments(runtime))
        document = await runtime.documents_manager.get_memory_by_id("doc-1")
        return first, second, document

    first, second, document = asyncio.run(main())

    assert len(first) > 1
    assert first == second
    assert document.content.text == DOCUMENT

    expected = sorted(
        string_to_uuid("doc-1" + fragment)
        for fragment in split_chunks(preprocess(DOCUMENT), chunk_size=24, bleed=4)
    )
    assert first == expected
    for fragment in _fragments(runtime):
        assert fragment.content.source == "doc-1"
        assert len(fragment.embedding) == 384


def test_get_returns_matching_documents(make_runtime):
    runtime = make_runtime()
    item = KnowledgeItem(id="doc-1", content=Content(text=DOCUMENT))
    message = Memory(
        id="m1",
        user_id="user-1",
        room_id="room-1",
        content=Content(text="Where are the rare seashells on the coast?"),
    )

    async def main():
        await knowledge.set(runtime, item)
        return await knowledge.get(runtime, message)

    items = asyncio.run(main())

    assert [i.id for i in items] == ["doc-1"]
    assert items[0].content.text == DOCUMENT


def test_get_ignores_messages_without_text(make_runtime):
    runtime = make_runtime()
    message = Memory(id="m1", user_id="user-1", room_id="room-1", content=Content(text="```only code```"))

    assert asyncio.run(knowledge.get(runtime, message)) == []
    assert runtime.local_embedder.calls == []


class FailingEmbedder:
    async def embed(self, text):
        raise RuntimeError("embedding backend offline")


def test_set_survives_embedding_outage_and_later_runs_keep_fragments(make_runtime):
    runtime = make_runtime()
    working = runtime.local_embedder
    runtime.local_embedder = FailingEmbedder()
    item = KnowledgeItem(id="doc-1", content=Content(text=DOCUMENT))

    async def main():
        await knowledge.set(runtime, item, chunk_size=24, bleed=4)
        during_outage = list(_fragments(runtime))
        runtime.local_embedder = working
        await knowledge.set(runtime, item, chunk_size=24, bleed=4)
        return during_outage

    during_outage = asyncio.run(main())

    assert len(during_outage) > 1
    assert all(fragment.embedding == [0.0] * 384 for fragment in during_outage)
    assert len(_fragments(runtime)) == len(during_outage)
    assert len(runtime.database_adapter._table("documents")) == 1
