from typing import List, Optional, TYPE_CHECKING
from enum import Enum
import asyncio

import httpx
from pydantic import BaseModel, ConfigDict
import structlog

from persona_agent.domain.errors import EmbeddingError
from persona_agent.infrastructure.observability.logging import agent_logger
from .models import MODELS, ModelClass, ModelProviderName, get_endpoint
from .tokens import trim_tokens

if TYPE_CHECKING:
    from persona_agent.domain.orchestration.core.runtime import AgentRuntime
    from persona_agent.infrastructure.config import EmbeddingSettings

logger = structlog.get_logger(__name__)

OPENAI_EMBEDDING_ENDPOINT = "https://api.openai.com/v1"
BGE_MODEL_NAME = "BAAI/bge-small-en-v1.5"
LOCAL_MAX_TOKENS = 8000


class EmbeddingProvider(str, Enum):
    OPENAI = "OpenAI"
    OLLAMA = "Ollama"
    BGE = "BGE"


class EmbeddingConfig(BaseModel):
    """Width, model and backend of the vectors a runtime produces"""
    model_config = ConfigDict(frozen=True)

    dimensions: int
    model: str
    provider: EmbeddingProvider


def get_embedding_config(settings: Optional["EmbeddingSettings"] = None) -> EmbeddingConfig:
    """Pick the embedding backend from settings; the local BGE model is the default"""

    if settings is not None and settings.use_openai_embedding:
        return EmbeddingConfig(dimensions=1536, model="text-embedding-3-small", provider=EmbeddingProvider.OPENAI)
    if settings is not None and settings.use_ollama_embedding:
        return EmbeddingConfig(
            dimensions=1024,
            model=settings.ollama_embedding_model or "mxbai-embed-large",
            provider=EmbeddingProvider.OLLAMA,
        )
    return EmbeddingConfig(dimensions=384, model=BGE_MODEL_NAME, provider=EmbeddingProvider.BGE)


def get_embedding_zero_vector(config: EmbeddingConfig) -> List[float]:
    """Placeholder vector of the configured width"""
    return [0.0] * config.dimensions


class LocalEmbedder:
    """SentenceTransformer wrapper; the model loads on first use and encodes off the event loop"""

    def __init__(self, model_name: str = BGE_MODEL_NAME):
        self.model_name = model_name
        self._model = None
        self._load_lock = asyncio.Lock()

    def _load(self):
        from sentence_transformers import SentenceTransformer

        logger.info("Loading local embedding model", model=self.model_name)
        return SentenceTransformer(self.model_name, device="cpu")

    def _encode_sync(self, text: str) -> List[float]:
        vector = self._model.encode(
            [text],
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=True,
        )[0]
        return [float(v) for v in vector]

    async def embed(self, text: str) -> List[float]:
        async with self._load_lock:
            if self._model is None:
                self._model = await asyncio.to_thread(self._load)
        return await asyncio.to_thread(self._encode_sync, text)


async def get_remote_embedding(
    client: httpx.AsyncClient,
    text: str,
    model: str,
    endpoint: str,
    api_key: Optional[str] = None,
    dimensions: int = 384,
    is_ollama: bool = False,
) -> List[float]:
    """POST to an OpenAI-compatible /embeddings endpoint and return the first vector"""

    base = endpoint.rstrip("/")
    if is_ollama and not base.endswith("/v1"):
        base = f"{base}/v1"

    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"

    response = await client.post(
        f"{base}/embeddings",
        headers=headers,
        json={"input": text, "model": model, "dimensions": dimensions},
    )
    if response.status_code >= 400:
        logger.error("Embedding API error", status=response.status_code, body=response.text[:500])
        raise EmbeddingError(f"Embedding API Error: {response.status_code}")

    try:
        return response.json()["data"][0]["embedding"]
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise EmbeddingError(f"Unexpected embedding payload: {e}")


async def retrieve_cached_embedding(runtime: "AgentRuntime", text: str) -> Optional[List[float]]:
    matches = await runtime.message_manager.get_cached_embeddings(text)
    for memory in matches:
        if memory.embedding:
            return memory.embedding
    return None


async def _provider_remote_embedding(runtime: "AgentRuntime", text: str, config: EmbeddingConfig) -> List[float]:
    provider = runtime.model_provider
    table_model = MODELS[provider].model.get(ModelClass.EMBEDDING)
    endpoint = runtime.character.model_endpoint_override or get_endpoint(provider)
    if not endpoint:
        raise EmbeddingError(f"Provider {provider.value} has no remote embedding endpoint")

    return await get_remote_embedding(
        runtime.http_client,
        text,
        model=table_model or MODELS[ModelProviderName.OPENAI].model[ModelClass.EMBEDDING],
        endpoint=endpoint,
        api_key=runtime.token,
        dimensions=config.dimensions,
        is_ollama=provider == ModelProviderName.OLLAMA,
    )


async def embed(runtime: "AgentRuntime", text: str) -> List[float]:
    """Embed text with the runtime's configured backend.

    Blank input yields an empty list. A near-identical stored message is reused
    before any backend is called.
    """

    if not text or not text.strip():
        logger.warning("No input to embed")
        return []

    cached = await retrieve_cached_embedding(runtime, text)
    if cached:
        return cached

    config = runtime.embedding_config
    settings = runtime.settings.embedding

    if config.provider == EmbeddingProvider.OPENAI:
        return await get_remote_embedding(
            runtime.http_client,
            text,
            model=config.model,
            endpoint=OPENAI_EMBEDDING_ENDPOINT,
            api_key=settings.openai_api_key or runtime.get_setting("OPENAI_API_KEY"),
            dimensions=config.dimensions,
        )

    if config.provider == EmbeddingProvider.OLLAMA:
        endpoint = (
            runtime.get_setting("OLLAMA_SERVER_URL")
            or runtime.character.model_endpoint_override
            or get_endpoint(ModelProviderName.OLLAMA)
        )
        return await get_remote_embedding(
            runtime.http_client,
            text,
            model=config.model,
            endpoint=endpoint,
            dimensions=config.dimensions,
            is_ollama=True,
        )

    if settings.allow_local:
        try:
            return await runtime.local_embedder.embed(trim_tokens(text, LOCAL_MAX_TOKENS, "gpt-4o-mini"))
        except Exception as e:
            agent_logger.log_fallback(
                operation="embed",
                reason=str(e),
                substitute="remote embedding",
                details={"provider": runtime.model_provider.value},
            )

    return await _provider_remote_embedding(runtime, text, config)
