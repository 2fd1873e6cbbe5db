import asyncio

import pytest

from persona_agent.domain.errors import ConfigurationError
from persona_agent.domain.models import (
    Action,
    Content,
    Evaluator,
    Memory,
    Plugin,
    Service,
    ServiceType,
    string_to_uuid,
)
from persona_agent.domain.orchestration.core.runtime import AgentRuntime


class RecordingAction(Action):
    def __init__(self, name, similes=None):
        super().__init__(name, f"{name} action", similes=similes)
        self.handled = []

    async def validate(self, runtime, message, state=None):
        return True

    async def handler(self, runtime, message, state=None, options=None, callback=None):
        self.handled.append(message.id)


class NoHandlerAction(Action):
    async def validate(self, runtime, message, state=None):
        return True


class RecordingEvaluator(Evaluator):
    def __init__(self, name, log, always_run=False):
        super().__init__(name, f"{name} evaluator", always_run=always_run)
        self.log = log

    async def validate(self, runtime, message, state=None):
        return True

    async def handler(self, runtime, message, state=None, options=None, callback=None):
        self.log.append(self.name)


class CountingService(Service):
    service_type = ServiceType.BROWSER

    def __init__(self):
        self.initialized = 0

    async def initialize(self, runtime):
        self.initialized += 1


def _message(text="hello", action=None, memory_id="m1"):
    return Memory(id=memory_id, user_id="user-1", room_id="room-1", content=Content(text=text, action=action))


def test_requires_database_adapter():
    with pytest.raises(ConfigurationError):
        AgentRuntime(character={"name": "Eliza"}, database_adapter=None)


def test_agent_id_derivation(make_runtime):
    assert make_runtime().agent_id == string_to_uuid("Eliza")
    assert make_runtime(agent_id="explicit").agent_id == "explicit"
    assert make_runtime(character={"id": "from-character"}, agent_id="explicit").agent_id == "from-character"


def test_invalid_provider_fails_construction(make_runtime):
    with pytest.raises(ConfigurationError):
        make_runtime(character={"model_provider": "nope"})


def test_image_provider_defaults_to_text_provider(make_runtime):
    runtime = make_runtime(character={"model_provider": "anthropic"})
    assert runtime.image_model_provider == runtime.model_provider


def test_get_setting_precedence(make_runtime):
    runtime = make_runtime(
        character={"settings": {"secrets": {"A": "secret"}, "A": "extra", "B": "extra"}},
        secrets={"A": "runtime", "B": "runtime", "C": "runtime"},
    )

    assert runtime.get_setting("A") == "secret"
    assert runtime.get_setting("B") == "extra"
    assert runtime.get_setting("C") == "runtime"
    assert runtime.get_setting("D") is None


def test_plugins_register_components(make_runtime):
    action = RecordingAction("WAVE")
    runtime = make_runtime(plugins=[Plugin(name="greetings", actions=[action])])
    assert runtime.actions == [action]


def test_process_actions_dispatches_first_response(make_runtime):
    follow = RecordingAction("FOLLOW_ROOM", similes=["JOIN_ROOM"])
    runtime = make_runtime(actions=[follow, NoHandlerAction("MUTE", "Mute the room")])
    message = _message()

    async def main():
        await runtime.process_actions(message, [_message(action="follow_room", memory_id="r1")])
        await runtime.process_actions(message, [_message(action="JOIN_ROOM", memory_id="r2")])
        await runtime.process_actions(message, [_message(action="DANCE", memory_id="r3")])
        await runtime.process_actions(message, [_message(memory_id="r4")])
        await runtime.process_actions(message, [_message(action="MUTE", memory_id="r5")])
        await runtime.process_actions(message, [])

    asyncio.run(main())
    assert follow.handled == ["m1", "m1"]


def test_evaluate_runs_handlers_in_model_order(make_runtime):
    log = []
    runtime = make_runtime(
        replies=['```json\n["SECOND", "UNKNOWN", "FIRST"]\n```'],
        evaluators=[RecordingEvaluator("FIRST", log), RecordingEvaluator("SECOND", log)],
    )

    selected = asyncio.run(runtime.evaluate(_message(), {"agentName": "Eliza"}, did_respond=True))

    assert selected == ["SECOND", "UNKNOWN", "FIRST"]
    assert log == ["SECOND", "FIRST"]
    prompt = runtime.text_service.calls[0]["context"]
    assert "'FIRST: FIRST evaluator'" in prompt


def test_evaluate_without_candidates_skips_the_model(make_runtime):
    log = []
    runtime = make_runtime(evaluators=[RecordingEvaluator("FIRST", log)])

    assert asyncio.run(runtime.evaluate(_message(), {}, did_respond=False)) == []
    assert runtime.text_service.calls == []
    assert log == []


def test_always_run_evaluators_run_without_a_response(make_runtime):
    log = []
    runtime = make_runtime(
        replies=['```json\n["AUDIT"]\n```'],
        evaluators=[RecordingEvaluator("AUDIT", log, always_run=True), RecordingEvaluator("FACTS", log)],
    )

    assert asyncio.run(runtime.evaluate(_message(), {}, did_respond=False)) == ["AUDIT"]
    assert log == ["AUDIT"]


def test_initialize_creates_agent_and_loads_knowledge(make_runtime):
    service = CountingService()
    runtime = make_runtime(
        character={"knowledge": ["Tides follow the moon.", "Seashells are calcium carbonate."]},
        services=[service],
    )
    db = runtime.database_adapter

    async def main():
        await runtime.initialize()
        account = await db.get_account_by_id(runtime.agent_id)
        participants = await db.get_participants_for_room(runtime.agent_id)
        return account, participants

    account, participants = asyncio.run(main())

    assert account.name == "Eliza"
    assert participants == [runtime.agent_id]
    assert service.initialized == 1
    assert len(db._table("documents")) == 2
    assert db._table("fragments")


def test_services_registered_late_are_initialized(make_runtime):
    runtime = make_runtime()
    service = CountingService()

    async def main():
        await runtime.initialize()
        await runtime.register_service(service)

    asyncio.run(main())
    assert service.initialized == 1
    assert runtime.get_service(ServiceType.BROWSER) is service


def test_ensure_connection_links_user_and_agent(make_runtime):
    runtime = make_runtime()
    db = runtime.database_adapter

    async def main():
        await runtime.ensure_connection("user-1", "room-1", user_name="ann", user_screen_name="Ann")
        await runtime.ensure_connection("user-1", "room-1", user_name="ann", user_screen_name="Ann")
        return (
            await db.get_account_by_id("user-1"),
            await db.get_participants_for_room("room-1"),
            await db.get_room("room-1"),
        )

    account, participants, room = asyncio.run(main())

    assert (account.name, account.username) == ("Ann", "ann")
    assert sorted(participants) == sorted(["user-1", runtime.agent_id])
    assert room == "room-1"
