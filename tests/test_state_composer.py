import asyncio

from persona_agent.domain.context.state_composer import visible_attachments
from persona_agent.domain.models import (
    Action,
    Content,
    Goal,
    Media,
    Memory,
    Objective,
    Provider,
    now_ms,
)

HOUR_MS = 60 * 60 * 1000


class AlwaysAction(Action):
    async def validate(self, runtime, message, state=None):
        return True


class NeverAction(Action):
    async def validate(self, runtime, message, state=None):
        return False


class WeatherProvider(Provider):
    async def get(self, runtime, message, state=None):
        return "The weather is sunny"


async def _seed_conversation(runtime, count):
    await runtime.ensure_connection("user-1", "room-1", user_name="ann", user_screen_name="Ann")
    base = now_ms() - count * 1000
    for i in range(count):
        sender = "user-1" if i % 2 == 0 else runtime.agent_id
        await runtime.message_manager.create_memory(Memory(
            id=f"m{i}",
            user_id=sender,
            room_id="room-1",
            agent_id=runtime.agent_id,
            content=Content(text=f"message number {i}"),
            created_at=base + i * 1000,
            embedding=[0.0] * 384,
        ))


def _incoming(runtime):
    return Memory(
        id="incoming",
        user_id="user-1",
        room_id="room-1",
        agent_id=runtime.agent_id,
        content=Content(text="What did we talk about?"),
    )


def test_recent_messages_are_bounded_by_conversation_length(make_runtime):
    runtime = make_runtime()

    async def main():
        await _seed_conversation(runtime, 40)
        return await runtime.compose_state(_incoming(runtime))

    state = asyncio.run(main())

    assert len(state["recentMessagesData"]) == 32
    lines = [line for line in state["recentMessages"].split("\n") if line.startswith("(")]
    assert len(lines) == 32
    assert lines[-1].endswith("message number 39")
    assert state["goals"] == ""
    assert state["knowledge"] == ""
    assert state["agentName"] == "Eliza"
    assert state["senderName"] == "Ann"
    assert state["recentMessageInteractions"] == ""


def test_goals_and_additional_keys(make_runtime):
    runtime = make_runtime()

    async def main():
        await _seed_conversation(runtime, 2)
        await runtime.database_adapter.create_goal(Goal(
            name="Find the key",
            room_id="room-1",
            user_id="user-1",
            objectives=[Objective(description="Search the attic")],
        ))
        return await runtime.compose_state(_incoming(runtime), {"agentName": "Override", "extra": 1})

    state = asyncio.run(main())

    assert "Goal: Find the key" in state["goals"]
    assert state["agentName"] == "Override"
    assert state["extra"] == 1


def test_components_feed_the_state(make_runtime):
    runtime = make_runtime(
        actions=[AlwaysAction("CONTINUE", "Keep talking"), NeverAction("MUTE_ROOM", "Stop listening")],
        providers=[WeatherProvider()],
    )

    async def main():
        await _seed_conversation(runtime, 2)
        return await runtime.compose_state(_incoming(runtime))

    state = asyncio.run(main())

    assert [action.name for action in state["actionsData"]] == ["CONTINUE"]
    assert state["actionNames"] == "Possible response actions: CONTINUE"
    assert "CONTINUE: Keep talking" in state["actions"]
    assert "The weather is sunny" in state["providers"]


def test_knowledge_is_included_when_relevant(make_runtime):
    runtime = make_runtime(character={"knowledge": ["The lighthouse keeper collects rare seashells"]})
    message = Memory(
        id="incoming",
        user_id="user-1",
        room_id="room-1",
        content=Content(text="Tell me about rare seashells"),
    )

    async def main():
        await runtime.initialize()
        await runtime.ensure_connection("user-1", "room-1")
        return await runtime.compose_state(message)

    state = asyncio.run(main())
    assert state["knowledge"] == "- The lighthouse keeper collects rare seashells"


def test_old_attachments_are_hidden():
    now = now_ms()
    fresh = Memory(
        id="new", user_id="u", room_id="r", created_at=now,
        content=Content(text="look", attachments=[Media(id="a1", text="fresh text")]),
    )
    stale = Memory(
        id="old", user_id="u", room_id="r", created_at=now - 2 * HOUR_MS,
        content=Content(text="earlier", attachments=[Media(id="a0", text="stale text")]),
    )

    attachments = visible_attachments([fresh, stale])

    assert [(media.id, media.text) for media in attachments] == [("a0", "[Hidden]"), ("a1", "fresh text")]
    assert stale.content.attachments[0].text == "stale text"


def test_update_recent_message_state_refreshes_conversation(make_runtime):
    runtime = make_runtime()

    async def main():
        await _seed_conversation(runtime, 2)
        state = await runtime.compose_state(_incoming(runtime))
        await runtime.message_manager.create_memory(Memory(
            id="late",
            user_id="user-1",
            room_id="room-1",
            agent_id=runtime.agent_id,
            content=Content(text="one more thing"),
            embedding=[0.0] * 384,
        ))
        return state, await runtime.update_recent_message_state(state)

    before, after = asyncio.run(main())

    assert "one more thing" not in before["recentMessages"]
    assert "one more thing" in after["recentMessages"]
    assert after["agentName"] == before["agentName"]


def test_interactions_from_other_shared_rooms_are_capped(make_runtime):
    runtime = make_runtime()
    base = now_ms() - 100_000

    async def main():
        await runtime.ensure_connection("user-1", "room-1", user_name="ann", user_screen_name="Ann")
        await runtime.ensure_connection("user-1", "room-2", user_name="ann", user_screen_name="Ann")
        for i in range(25):
            await runtime.message_manager.create_memory(Memory(
                id=f"elsewhere-{i}",
                user_id="user-1" if i % 2 == 0 else runtime.agent_id,
                room_id="room-2",
                agent_id=runtime.agent_id,
                content=Content(text=f"earlier chat {i}"),
                created_at=base + i * 1000,
                embedding=[0.0] * 384,
            ))
        return await runtime.compose_state(_incoming(runtime))

    state = asyncio.run(main())

    interactions = state["recentInteractionsData"]
    assert len(interactions) == 20
    assert interactions[0].id == "elsewhere-24"
    assert all(memory.room_id == "room-2" for memory in interactions)

    lines = state["recentMessageInteractions"].split("\n")
    assert len(lines) == 20
    assert "ann: earlier chat 24" in lines
    assert "Eliza: earlier chat 23" in lines
    assert "ann: earlier chat 4" not in lines
    assert "Conversation: oom-2" in state["recentPostInteractions"]
