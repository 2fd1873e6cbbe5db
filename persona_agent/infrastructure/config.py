from typing import Dict, Any, Mapping, Optional
import os

from pydantic import BaseModel, Field

from persona_agent.domain.generation.retry import RetryPolicy


def _as_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


class EmbeddingSettings(BaseModel):
    """Which embedding backend the runtime uses"""
    use_openai_embedding: bool = False
    use_ollama_embedding: bool = False
    ollama_embedding_model: Optional[str] = None
    openai_api_key: Optional[str] = None
    allow_local: bool = Field(default=True, description="Use the local BGE model when no remote backend is selected")


class AgentSettings(BaseModel):
    """Explicit configuration threaded into an AgentRuntime"""

    model_provider: Optional[str] = Field(None, description="Fallback when the character names no provider")
    image_model_provider: Optional[str] = None
    token: Optional[str] = Field(None, description="API key sent to the text provider")
    server_url: Optional[str] = None
    conversation_length: int = 32
    request_timeout: float = 60.0
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    secrets: Dict[str, Any] = Field(default_factory=dict, description="Extra settings consulted by get_setting")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AgentSettings":
        """Build settings from environment variables (os.environ by default)"""

        env = dict(os.environ if environ is None else environ)

        embedding = EmbeddingSettings(
            use_openai_embedding=_as_bool(env.get("USE_OPENAI_EMBEDDING")),
            use_ollama_embedding=_as_bool(env.get("USE_OLLAMA_EMBEDDING")),
            ollama_embedding_model=env.get("OLLAMA_EMBEDDING_MODEL"),
            openai_api_key=env.get("OPENAI_API_KEY"),
            allow_local=not _as_bool(env.get("DISABLE_LOCAL_EMBEDDING")),
        )

        retry = RetryPolicy(
            initial_delay=float(env.get("GENERATION_RETRY_DELAY", "1.0")),
            max_attempts=int(env["GENERATION_RETRY_ATTEMPTS"]) if env.get("GENERATION_RETRY_ATTEMPTS") else None,
        )

        return cls(
            model_provider=env.get("MODEL_PROVIDER"),
            image_model_provider=env.get("IMAGE_MODEL_PROVIDER"),
            token=env.get("MODEL_API_KEY") or env.get("OPENAI_API_KEY"),
            server_url=env.get("OLLAMA_SERVER_URL") or env.get("SERVER_URL"),
            conversation_length=int(env.get("CONVERSATION_LENGTH", "32")),
            request_timeout=float(env.get("REQUEST_TIMEOUT", "60")),
            embedding=embedding,
            retry=retry,
            secrets=env,
        )
