from typing import Any, Dict, List, Optional

import pytest

from persona_agent.domain.generation.retry import RetryPolicy
from persona_agent.domain.models import Character, TextGenerationService
from persona_agent.domain.orchestration.core.runtime import AgentRuntime
from persona_agent.infrastructure.config import AgentSettings, EmbeddingSettings
from persona_agent.infrastructure.storage.in_memory import InMemoryDatabaseAdapter

DIMENSIONS = 384


class FakeEmbedder:
    """Bag-of-words vectors: texts sharing words point the same way"""

    def __init__(self) -> None:
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        vector = [0.0] * DIMENSIONS
        for word in text.lower().split():
            vector[sum(ord(c) for c in word) % DIMENSIONS] += 1.0
        return vector


class ScriptedTextService(TextGenerationService):
    """Text generation service replaying queued replies"""

    def __init__(self, replies: Optional[List[str]] = None) -> None:
        self.replies = list(replies or [])
        self.calls: List[Dict[str, Any]] = []

    async def queue_text_completion(
        self,
        context: str,
        temperature: float,
        stop: List[str],
        frequency_penalty: float,
        presence_penalty: float,
        max_tokens: int,
    ) -> str:
        self.calls.append({"context": context, "stop": list(stop)})
        if not self.replies:
            raise AssertionError(f"No reply queued for context: {context[:80]!r}")
        return self.replies.pop(0)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def make_runtime():
    """Factory for runtimes backed by in-memory storage, a fake embedder and a scripted local model"""

    def _make(
        character: Optional[Dict[str, Any]] = None,
        replies: Optional[List[str]] = None,
        secrets: Optional[Dict[str, Any]] = None,
        max_attempts: Optional[int] = None,
        embedding: Optional[EmbeddingSettings] = None,
        embedder: Any = None,
        **kwargs: Any,
    ) -> AgentRuntime:
        data: Dict[str, Any] = {"name": "Eliza", "model_provider": "llama_local"}
        data.update(character or {})

        service = ScriptedTextService(replies)
        settings = AgentSettings(
            retry=RetryPolicy(sleep=RecordingSleep(), max_attempts=max_attempts),
            embedding=embedding or EmbeddingSettings(),
            secrets=secrets or {},
        )
        runtime = AgentRuntime(
            character=Character.model_validate(data),
            database_adapter=kwargs.pop("database_adapter", None) or InMemoryDatabaseAdapter(),
            settings=settings,
            services=[service] + list(kwargs.pop("services", [])),
            **kwargs,
        )
        runtime.local_embedder = embedder or FakeEmbedder()
        runtime.text_service = service
        return runtime

    return _make
