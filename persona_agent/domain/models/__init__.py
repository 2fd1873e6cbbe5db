from .memory import (
    Account,
    Actor,
    CacheEntry,
    Content,
    Goal,
    GoalStatus,
    Media,
    Memory,
    Objective,
    Relationship,
    now_ms,
    string_to_uuid,
)
from .character import Character, CharacterSettings, ExampleMessage, Style
from .components import (
    Action,
    EvaluationExample,
    Evaluator,
    HandlerCallback,
    ImageDescriptionService,
    Plugin,
    Provider,
    Service,
    ServiceType,
    State,
    TextGenerationService,
)

__all__ = [
    "Account",
    "Action",
    "Actor",
    "CacheEntry",
    "Character",
    "CharacterSettings",
    "Content",
    "EvaluationExample",
    "Evaluator",
    "ExampleMessage",
    "Goal",
    "GoalStatus",
    "HandlerCallback",
    "ImageDescriptionService",
    "Media",
    "Memory",
    "Objective",
    "Plugin",
    "Provider",
    "Relationship",
    "Service",
    "ServiceType",
    "State",
    "Style",
    "TextGenerationService",
    "now_ms",
    "string_to_uuid",
]
