from typing import Dict, List, Any, Optional, Sequence
import random
import time

from persona_agent.domain.models import (
    Action,
    Actor,
    Evaluator,
    ExampleMessage,
    Goal,
    Memory,
)

PLACEHOLDER_COUNT = 5

# Stand-ins for {{userN}} placeholders in example conversations
EXAMPLE_NAMES = [
    "Abigail", "Ahmed", "Aiko", "Alejandro", "Amara", "Anders", "Anika",
    "Arjun", "Astrid", "Beatrix", "Bruno", "Camille", "Chidi", "Dalia",
    "Dmitri", "Elena", "Emeka", "Esme", "Farah", "Felix", "Gareth", "Greta",
    "Hana", "Hugo", "Ines", "Ivan", "Jasper", "Jun", "Kalani", "Kofi",
    "Lars", "Leila", "Lucia", "Magnus", "Maren", "Mateo", "Mei", "Nadia",
    "Nikhil", "Noor", "Odette", "Omar", "Paloma", "Priya", "Quinn", "Rafael",
    "Rosa", "Sanjay", "Selma", "Soren", "Tamsin", "Tariq", "Uma", "Vera",
    "Wendell", "Ximena", "Yara", "Yusuf", "Zara", "Zoltan",
]


def random_names(count: int = PLACEHOLDER_COUNT, rng: Optional[random.Random] = None) -> List[str]:
    """Draw names used to replace {{user1}}..{{userN}}"""
    rng = rng or random
    return [rng.choice(EXAMPLE_NAMES) for _ in range(count)]


def replace_placeholders(text: str, names: Sequence[str]) -> str:
    for index, name in enumerate(names):
        text = text.replace(f"{{{{user{index + 1}}}}}", name)
    return text


def shuffled(items: Sequence[Any], rng: Optional[random.Random] = None) -> List[Any]:
    """Shuffled copy; the input sequence is left untouched"""
    rng = rng or random
    result = list(items)
    rng.shuffle(result)
    return result


def format_timestamp(created_at: int, now: Optional[int] = None) -> str:
    """Relative age of a millisecond timestamp, e.g. "5 minutes ago" """

    now = now if now is not None else int(time.time() * 1000)
    abs_diff = abs(now - created_at)
    seconds = abs_diff // 1000
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if abs_diff < 60_000:
        return "just now"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    return f"{days} day{'s' if days != 1 else ''} ago"


def format_actors(actors: List[Actor]) -> str:
    lines = []
    for actor in actors:
        line = actor.name
        tagline = actor.details.get("tagline")
        summary = actor.details.get("summary")
        if tagline:
            line += f": {tagline}"
        if summary:
            line += f"\n{summary}"
        lines.append(line)
    return "\n".join(lines)


def _actor_by_id(actors: List[Actor], user_id: str) -> Optional[Actor]:
    for actor in actors:
        if actor.id == user_id:
            return actor
    return None


def format_messages(messages: List[Memory], actors: List[Actor]) -> str:
    """Chronological transcript from a newest-first list of memories"""

    lines = []
    for message in reversed(messages):
        if not message.user_id:
            continue

        actor = _actor_by_id(actors, message.user_id)
        name = actor.name if actor else "Unknown User"
        attachments = message.content.attachments
        attachment_text = ""
        if attachments:
            attachment_text = " (Attachments: " + ", ".join(
                f"[{media.id} - {media.title} ({media.url})]" for media in attachments
            ) + ")"

        action = message.content.action
        action_text = f" ({action})" if action and action != "null" else ""
        short_id = message.user_id[-5:]
        lines.append(
            f"({format_timestamp(message.created_at)}) [{short_id}] "
            f"{name}: {message.content.text}{attachment_text}{action_text}"
        )
    return "\n".join(lines)


def format_posts(messages: List[Memory], actors: List[Actor], conversation_header: bool = True) -> str:
    """Post-style transcript grouped per room, most recently active room first"""

    grouped: Dict[str, List[Memory]] = {}
    for message in messages:
        if message.room_id:
            grouped.setdefault(message.room_id, []).append(message)

    for room_messages in grouped.values():
        room_messages.sort(key=lambda m: m.created_at)

    rooms = sorted(grouped.items(), key=lambda item: item[1][-1].created_at, reverse=True)

    blocks = []
    for room_id, room_messages in rooms:
        posts = []
        for message in room_messages:
            if not message.user_id:
                continue
            actor = _actor_by_id(actors, message.user_id)
            user_name = actor.name if actor else "Unknown User"
            display_name = actor.username if actor else "unknown"
            reply = f"\nIn reply to: {message.content.in_reply_to}" if message.content.in_reply_to else ""
            posts.append(
                f"Name: {user_name} (@{display_name})\n"
                f"ID: {message.id}{reply}\n"
                f"Date: {format_timestamp(message.created_at)}\n"
                f"Text:\n{message.content.text}"
            )
        header = f"Conversation: {room_id[-5:]}\n" if conversation_header else ""
        blocks.append(header + "\n\n".join(posts))
    return "\n\n".join(blocks)


def format_goals_as_string(goals: List[Goal]) -> str:
    blocks = []
    for goal in goals:
        objectives = "\n".join(
            f"- {'[x]' if objective.completed else '[ ]'} {objective.description} "
            f"{' (DONE)' if objective.completed else ' (IN PROGRESS)'}"
            for objective in goal.objectives
        )
        blocks.append(f"Goal: {goal.name}\nid: {goal.id}\nObjectives:\n{objectives}")
    return "\n".join(blocks)


def format_action_names(actions: List[Action]) -> str:
    return ", ".join(action.name for action in shuffled(actions))


def format_actions(actions: List[Action]) -> str:
    return ",\n".join(f"{action.name}: {action.description}" for action in shuffled(actions))


def _format_example_line(message: ExampleMessage, names: Sequence[str], with_action: bool = True) -> str:
    line = replace_placeholders(f"{message.user}: {message.content.text}", names)
    if with_action and message.content.action:
        line += f" ({message.content.action})"
    return line


def compose_action_examples(actions: List[Action], count: int) -> str:
    """Up to count example conversations sampled across the given actions"""

    examples = []
    for action in shuffled(actions):
        examples.extend(shuffled(action.examples)[:5])
    examples = examples[:count]

    formatted = []
    for example in examples:
        names = random_names()
        formatted.append("\n" + "\n".join(_format_example_line(message, names) for message in example))
    return "\n".join(formatted)


def format_evaluator_names(evaluators: List[Evaluator]) -> str:
    return ",\n".join(f"'{evaluator.name}'" for evaluator in evaluators)


def format_evaluators(evaluators: List[Evaluator]) -> str:
    return ",\n".join(f"'{evaluator.name}: {evaluator.description}'" for evaluator in evaluators)


def format_evaluator_examples(evaluators: List[Evaluator]) -> str:
    blocks = []
    for evaluator in evaluators:
        examples = []
        for example in evaluator.examples:
            names = random_names()
            messages = "\n".join(_format_example_line(message, names) for message in example.messages)
            examples.append(
                f"Context:\n{replace_placeholders(example.context, names)}\n\n"
                f"Messages:\n{messages}\n\n"
                f"Outcome:\n{replace_placeholders(example.outcome, names)}"
            )
        blocks.append("\n\n".join(examples))
    return "\n\n".join(blocks)


def format_evaluator_example_descriptions(evaluators: List[Evaluator]) -> str:
    return "\n\n".join(
        "\n".join(
            f"{evaluator.name} Example {index + 1}: {evaluator.description}"
            for index in range(len(evaluator.examples))
        )
        for evaluator in evaluators
    )


def format_character_message_examples(examples: List[List[ExampleMessage]], count: int = 5) -> str:
    conversations = []
    for example in shuffled(examples)[:count]:
        names = random_names()
        conversations.append(
            "\n".join(_format_example_line(message, names, with_action=False) for message in example)
        )
    return "\n\n".join(conversations)


def format_topics(name: str, topics: List[str], count: int = 5) -> str:
    """Sentence listing up to count topics, e.g. "X is interested in a, b and c" """

    if not topics:
        return ""
    selected = shuffled(topics)[:count]
    if len(selected) == 1:
        joined = selected[0]
    else:
        joined = ", ".join(selected[:-1]) + " and " + selected[-1]
    return f"{name} is interested in {joined}"


def format_attachments(attachments: List[Any], trailing: str = "\n  ") -> str:
    return "\n".join(
        f"ID: {attachment.id}\n"
        f"Name: {attachment.title}\n"
        f"URL: {attachment.url}\n"
        f"Type: {attachment.source}\n"
        f"Description: {attachment.description}\n"
        f"Text: {attachment.text}{trailing}"
        for attachment in attachments
    )
