from persona_agent.infrastructure.config import AgentSettings
from persona_agent.infrastructure.observability.logging import setup_logging
from persona_agent.domain.models import Character, Content, Memory
from persona_agent.domain.context.memory import knowledge
from persona_agent.domain.generation.embedding import embed
from persona_agent.domain.generation.image import generate_image
from persona_agent.domain.generation.text import generate_object, generate_text
from persona_agent.domain.orchestration.core.runtime import AgentRuntime

__all__ = [
    "AgentRuntime",
    "AgentSettings",
    "Character",
    "Content",
    "Memory",
    "embed",
    "generate_image",
    "generate_object",
    "generate_text",
    "knowledge",
    "setup_logging",
]
