from typing import Dict, List, Any, Optional, TYPE_CHECKING
import asyncio
import random

import structlog

from persona_agent.domain.models import Actor, Media, Memory, State
from .formatting import (
    compose_action_examples,
    format_action_names,
    format_actions,
    format_actors,
    format_attachments,
    format_character_message_examples,
    format_evaluator_examples,
    format_evaluator_names,
    format_evaluators,
    format_goals_as_string,
    format_messages,
    format_posts,
    format_topics,
    shuffled,
)
from .memory import knowledge
from .parsing import add_header

if TYPE_CHECKING:
    from persona_agent.domain.orchestration.core.runtime import AgentRuntime

logger = structlog.get_logger(__name__)

ATTACHMENT_WINDOW_MS = 60 * 60 * 1000
RECENT_INTERACTIONS_LIMIT = 20
GOALS_COUNT = 10
LORE_COUNT = 10
POST_EXAMPLES_COUNT = 50
MESSAGE_EXAMPLES_COUNT = 5
BIO_COUNT = 3
TOPICS_COUNT = 5
ACTION_EXAMPLES_COUNT = 10


def _newest_attachment_time(messages: List[Memory]) -> Optional[int]:
    for message in messages:
        if message.content.attachments:
            return message.created_at
    return None


def visible_attachments(messages: List[Memory]) -> List[Media]:
    """Attachments of a newest-first message list in chronological order.

    Attachments on messages older than one hour before the newest
    attachment-bearing message keep their metadata but have their text
    replaced with "[Hidden]". The stored memories are not modified.
    """
    anchor = _newest_attachment_time(messages)
    if anchor is None:
        return []

    cutoff = anchor - ATTACHMENT_WINDOW_MS
    attachments: List[Media] = []
    for message in reversed(messages):
        for media in message.content.attachments:
            if message.created_at >= cutoff:
                attachments.append(media.model_copy())
            else:
                attachments.append(media.model_copy(update={"text": "[Hidden]"}))
    return attachments


class StateComposer:
    """Assembles the template state for one incoming message"""

    def __init__(self, runtime: "AgentRuntime"):
        self.runtime = runtime

    async def get_actor_details(self, room_id: str) -> List[Actor]:
        db = self.runtime.database_adapter
        participant_ids = await db.get_participants_for_room(room_id)
        accounts = await asyncio.gather(*[db.get_account_by_id(user_id) for user_id in participant_ids])
        return [
            Actor(id=account.id, name=account.name, username=account.username, details=account.details)
            for account in accounts
            if account is not None
        ]

    async def get_recent_interactions(self, user_a: str, user_b: str, room_id: str) -> List[Memory]:
        """Newest messages from rooms shared by both users, the current room excluded"""

        rooms = await self.runtime.database_adapter.get_rooms_for_participants([user_a, user_b])
        memories = await self.runtime.message_manager.get_memories_by_room_ids(
            room_ids=[room for room in rooms if room != room_id],
            agent_id=self.runtime.agent_id,
        )
        memories.sort(key=lambda m: m.created_at, reverse=True)
        return memories[:RECENT_INTERACTIONS_LIMIT]

    async def format_message_interactions(self, interactions: List[Memory]) -> str:
        async def _line(message: Memory) -> str:
            if message.user_id == self.runtime.agent_id:
                sender = self.runtime.character.name
            else:
                account = await self.runtime.database_adapter.get_account_by_id(message.user_id)
                sender = account.username if account else "unknown"
            return f"{sender}: {message.content.text}"

        lines = await asyncio.gather(*[_line(message) for message in interactions])
        return "\n".join(lines)

    async def get_knowledge(self, message: Memory) -> str:
        items = await knowledge.get(self.runtime, message)
        return "\n".join(f"- {item.content.text}" for item in items)

    def _character_sections(self) -> Dict[str, Any]:
        character = self.runtime.character

        lore = "\n".join(shuffled(character.lore)[:LORE_COUNT])

        bio = character.bio
        if isinstance(bio, list):
            bio = " ".join(shuffled(bio)[:BIO_COUNT])

        post_examples = "\n".join(shuffled(character.post_examples)[:POST_EXAMPLES_COUNT])
        message_examples = format_character_message_examples(character.message_examples, MESSAGE_EXAMPLES_COUNT)

        message_directions = ""
        if character.style.all or character.style.chat:
            message_directions = add_header(
                f"# Message Directions for {character.name}",
                "\n".join(character.style.all + character.style.chat),
            )
        post_directions = ""
        if character.style.all or character.style.post:
            post_directions = add_header(
                f"# Post Directions for {character.name}",
                "\n".join(character.style.all + character.style.post),
            )

        return {
            "bio": bio or "",
            "lore": lore,
            "adjective": random.choice(character.adjectives) if character.adjectives else "",
            "topic": random.choice(character.topics) if character.topics else "",
            "topics": format_topics(character.name, character.topics, TOPICS_COUNT),
            "characterPostExamples": (
                add_header(f"# Example Posts for {character.name}", post_examples)
                if post_examples.replace("\n", "") else ""
            ),
            "characterMessageExamples": (
                add_header(f"# Example Conversations for {character.name}", message_examples)
                if message_examples.replace("\n", "") else ""
            ),
            "messageDirections": message_directions,
            "postDirections": post_directions,
        }

    async def compose_state(self, message: Memory, additional_keys: Optional[Dict[str, Any]] = None) -> State:
        """Build the full state for a message; additional_keys override computed keys"""

        runtime = self.runtime
        room_id = message.room_id
        user_id = message.user_id

        logger.info("Composing state", room_id=room_id, user_id=user_id)

        actors_data, recent_messages_data, goals_data = await asyncio.gather(
            self.get_actor_details(room_id),
            runtime.message_manager.get_memories(
                room_id=room_id,
                count=runtime.get_conversation_length(),
                unique=False,
                agent_id=runtime.agent_id,
            ),
            runtime.database_adapter.get_goals(room_id=room_id, count=GOALS_COUNT, only_in_progress=False),
        )

        goals = format_goals_as_string(goals_data)
        actors = format_actors(actors_data)
        recent_messages = format_messages(recent_messages_data, actors_data)
        recent_posts = format_posts(recent_messages_data, actors_data, conversation_header=False)

        sender_name = next((actor.name for actor in actors_data if actor.id == user_id), None)
        agent_name = next(
            (actor.name for actor in actors_data if actor.id == runtime.agent_id),
            runtime.character.name,
        )

        attachments = visible_attachments(recent_messages_data)
        if _newest_attachment_time(recent_messages_data) is None:
            attachments = list(message.content.attachments)

        if user_id != runtime.agent_id:
            recent_interactions = await self.get_recent_interactions(user_id, runtime.agent_id, room_id)
        else:
            recent_interactions = []

        formatted_knowledge = await self.get_knowledge(message)

        state: State = {
            "agentId": runtime.agent_id,
            "agentName": agent_name,
            "senderName": sender_name or "",
            "roomId": room_id,
            "knowledge": formatted_knowledge,
            "recentMessageInteractions": await self.format_message_interactions(recent_interactions),
            "recentPostInteractions": format_posts(recent_interactions, actors_data, conversation_header=True),
            "recentInteractionsData": recent_interactions,
            "actors": add_header("# Actors", actors),
            "actorsData": actors_data,
            "goals": add_header(
                "# Goals\n{{agentName}} should prioritize accomplishing the objectives that are in progress.",
                goals,
            ),
            "goalsData": goals_data,
            "recentMessages": add_header("# Conversation Messages", recent_messages),
            "recentPosts": add_header("# Posts in Thread", recent_posts),
            "recentMessagesData": recent_messages_data,
            "attachments": add_header("# Attachments", format_attachments(attachments)),
        }
        state.update(self._character_sections())

        action_state = await self._component_sections(message, {**state, **(additional_keys or {})})
        state.update(action_state)
        if additional_keys:
            state.update(additional_keys)
        return state

    async def _component_sections(self, message: Memory, state: State) -> Dict[str, Any]:
        runtime = self.runtime

        async def _validated(component):
            return component if await component.validate(runtime, message, state) else None

        evaluator_results, action_results, provider_results = await asyncio.gather(
            asyncio.gather(*[_validated(evaluator) for evaluator in runtime.evaluators]),
            asyncio.gather(*[_validated(action) for action in runtime.actions]),
            asyncio.gather(*[provider.get(runtime, message, state) for provider in runtime.providers]),
        )

        evaluators_data = [evaluator for evaluator in evaluator_results if evaluator]
        actions_data = [action for action in action_results if action]
        providers_text = "\n".join(text for text in provider_results if text)

        return {
            "actionNames": "Possible response actions: " + format_action_names(actions_data),
            "actions": add_header("# Available Actions", format_actions(actions_data)) if actions_data else "",
            "actionExamples": (
                add_header("# Action Examples", compose_action_examples(actions_data, ACTION_EXAMPLES_COUNT))
                if actions_data else ""
            ),
            "actionsData": actions_data,
            "evaluatorsData": evaluators_data,
            "evaluators": format_evaluators(evaluators_data),
            "evaluatorNames": format_evaluator_names(evaluators_data),
            "evaluatorExamples": format_evaluator_examples(evaluators_data),
            "providers": add_header(
                f"# Additional Information About {runtime.character.name} and The World",
                providers_text,
            ),
        }

    async def update_recent_message_state(self, state: State) -> State:
        """Refresh the conversation keys of an existing state"""

        runtime = self.runtime
        recent_messages_data = await runtime.message_manager.get_memories(
            room_id=state["roomId"],
            count=runtime.get_conversation_length(),
            unique=False,
            agent_id=runtime.agent_id,
        )
        recent_messages = format_messages(
            [m.model_copy(update={"embedding": None}) for m in recent_messages_data],
            state.get("actorsData") or [],
        )

        anchor = _newest_attachment_time(recent_messages_data)
        attachments: List[Media] = []
        if anchor is not None:
            cutoff = anchor - ATTACHMENT_WINDOW_MS
            for message in recent_messages_data:
                if message.created_at >= cutoff:
                    attachments.extend(message.content.attachments)

        return {
            **state,
            "recentMessages": add_header("# Conversation Messages", recent_messages),
            "recentMessagesData": recent_messages_data,
            "attachments": format_attachments(attachments, trailing="\n    "),
        }
