from typing import Dict, List, Optional, TYPE_CHECKING
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from persona_agent.domain.errors import ConfigurationError, UnsupportedProviderError

if TYPE_CHECKING:
    from persona_agent.domain.orchestration.core.runtime import AgentRuntime


class ModelClass(str, Enum):
    """Capability tiers a provider maps to concrete model ids"""
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    EMBEDDING = "embedding"
    IMAGE = "image"


class ModelProviderName(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GROK = "grok"
    GROQ = "groq"
    LLAMACLOUD = "llama_cloud"
    LLAMALOCAL = "llama_local"
    GOOGLE = "google"
    CLAUDE_VERTEX = "claude_vertex"
    REDPILL = "redpill"
    OPENROUTER = "openrouter"
    OLLAMA = "ollama"
    HEURIST = "heurist"
    FAL = "falai"


class ModelSettings(BaseModel):
    """Sampling and context limits for one provider"""
    model_config = ConfigDict(frozen=True)

    stop: List[str] = Field(default_factory=list)
    max_input_tokens: int
    max_output_tokens: int
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    repetition_penalty: Optional[float] = None
    temperature: float


class ImageSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    steps: int


class ProviderModelConfig(BaseModel):
    """Endpoint, settings and tier -> model id table for one provider"""
    model_config = ConfigDict(frozen=True)

    endpoint: Optional[str] = None
    settings: ModelSettings
    image_settings: Optional[ImageSettings] = None
    model: Dict[ModelClass, str] = Field(default_factory=dict)


def _settings(temperature: float = 0.7, penalty: Optional[float] = 0.4, repetition: Optional[float] = None,
              max_input_tokens: int = 128_000, max_output_tokens: int = 8192,
              stop: Optional[List[str]] = None) -> ModelSettings:
    return ModelSettings(
        stop=stop or [],
        max_input_tokens=max_input_tokens,
        max_output_tokens=max_output_tokens,
        frequency_penalty=penalty,
        presence_penalty=penalty,
        repetition_penalty=repetition,
        temperature=temperature,
    )


_HERMES_GGUF = "NousResearch/Hermes-3-Llama-3.1-8B-GGUF/resolve/main/Hermes-3-Llama-3.1-8B.Q8_0.gguf?download=true"

MODELS: Dict[ModelProviderName, ProviderModelConfig] = {
    ModelProviderName.OPENAI: ProviderModelConfig(
        endpoint="https://api.openai.com/v1",
        settings=_settings(temperature=0.6, penalty=0.0),
        model={
            ModelClass.SMALL: "gpt-4o-mini",
            ModelClass.MEDIUM: "gpt-4o",
            ModelClass.LARGE: "gpt-4o",
            ModelClass.EMBEDDING: "text-embedding-3-small",
            ModelClass.IMAGE: "dall-e-3",
        },
    ),
    ModelProviderName.ANTHROPIC: ProviderModelConfig(
        endpoint="https://api.anthropic.com/v1",
        settings=_settings(max_input_tokens=200_000),
        model={
            ModelClass.SMALL: "claude-3-5-haiku-20241022",
            ModelClass.MEDIUM: "claude-3-5-sonnet-20241022",
            ModelClass.LARGE: "claude-3-5-sonnet-20241022",
        },
    ),
    ModelProviderName.CLAUDE_VERTEX: ProviderModelConfig(
        endpoint="https://api.anthropic.com/v1",
        settings=_settings(max_input_tokens=200_000),
        model={
            ModelClass.SMALL: "claude-3-5-sonnet-20241022",
            ModelClass.MEDIUM: "claude-3-5-sonnet-20241022",
            ModelClass.LARGE: "claude-3-opus-20240229",
        },
    ),
    ModelProviderName.GROK: ProviderModelConfig(
        endpoint="https://api.x.ai/v1",
        settings=_settings(),
        model={
            ModelClass.SMALL: "grok-beta",
            ModelClass.MEDIUM: "grok-beta",
            ModelClass.LARGE: "grok-beta",
            ModelClass.EMBEDDING: "grok-beta",
        },
    ),
    ModelProviderName.GROQ: ProviderModelConfig(
        endpoint="https://api.groq.com/openai/v1",
        settings=_settings(max_output_tokens=8000),
        model={
            ModelClass.SMALL: "llama-3.1-8b-instant",
            ModelClass.MEDIUM: "llama-3.1-70b-versatile",
            ModelClass.LARGE: "llama-3.2-90b-text-preview",
            ModelClass.EMBEDDING: "llama-3.1-8b-instant",
        },
    ),
    ModelProviderName.LLAMACLOUD: ProviderModelConfig(
        endpoint="https://api.together.ai/v1",
        settings=_settings(penalty=None, repetition=0.4),
        image_settings=ImageSettings(steps=4),
        model={
            ModelClass.SMALL: "meta-llama/Llama-3.2-3B-Instruct-Turbo",
            ModelClass.MEDIUM: "meta-llama-3.1-8b-instruct",
            ModelClass.LARGE: "meta-llama/Meta-Llama-3.1-405B-Instruct-Turbo",
            ModelClass.EMBEDDING: "togethercomputer/m2-bert-80M-32k-retrieval",
            ModelClass.IMAGE: "black-forest-labs/FLUX.1-schnell",
        },
    ),
    ModelProviderName.LLAMALOCAL: ProviderModelConfig(
        settings=_settings(penalty=None, repetition=0.4, max_input_tokens=32768,
                           stop=["<|eot_id|>", "<|eom_id|>"]),
        model={
            ModelClass.SMALL: _HERMES_GGUF,
            ModelClass.MEDIUM: _HERMES_GGUF,
            ModelClass.LARGE: _HERMES_GGUF,
            ModelClass.EMBEDDING: "togethercomputer/m2-bert-80M-32k-retrieval",
        },
    ),
    ModelProviderName.GOOGLE: ProviderModelConfig(
        endpoint="https://generativelanguage.googleapis.com/v1beta",
        settings=_settings(),
        model={
            ModelClass.SMALL: "gemini-1.5-flash-latest",
            ModelClass.MEDIUM: "gemini-1.5-flash-latest",
            ModelClass.LARGE: "gemini-1.5-pro-latest",
            ModelClass.EMBEDDING: "text-embedding-004",
        },
    ),
    ModelProviderName.REDPILL: ProviderModelConfig(
        endpoint="https://api.red-pill.ai/v1",
        settings=_settings(temperature=0.6, penalty=0.0),
        model={
            ModelClass.SMALL: "gpt-4o-mini",
            ModelClass.MEDIUM: "gpt-4o",
            ModelClass.LARGE: "gpt-4o",
            ModelClass.EMBEDDING: "text-embedding-3-small",
        },
    ),
    ModelProviderName.OPENROUTER: ProviderModelConfig(
        endpoint="https://openrouter.ai/api/v1",
        settings=_settings(),
        model={
            ModelClass.SMALL: "nousresearch/hermes-3-llama-3.1-405b",
            ModelClass.MEDIUM: "nousresearch/hermes-3-llama-3.1-405b",
            ModelClass.LARGE: "nousresearch/hermes-3-llama-3.1-405b",
            ModelClass.EMBEDDING: "text-embedding-3-small",
        },
    ),
    ModelProviderName.OLLAMA: ProviderModelConfig(
        endpoint="http://localhost:11434",
        settings=_settings(),
        model={
            ModelClass.SMALL: "llama3.2",
            ModelClass.MEDIUM: "hermes3",
            ModelClass.LARGE: "hermes3:70b",
            ModelClass.EMBEDDING: "mxbai-embed-large",
        },
    ),
    ModelProviderName.HEURIST: ProviderModelConfig(
        endpoint="https://llm-gateway.heurist.xyz",
        settings=_settings(penalty=None, repetition=0.4),
        image_settings=ImageSettings(steps=20),
        model={
            ModelClass.SMALL: "meta-llama/llama-3-70b-instruct",
            ModelClass.MEDIUM: "meta-llama/llama-3-70b-instruct",
            ModelClass.LARGE: "meta-llama/llama-3.1-405b-instruct",
            ModelClass.EMBEDDING: "",
            ModelClass.IMAGE: "PepeXL",
        },
    ),
    ModelProviderName.FAL: ProviderModelConfig(
        endpoint="https://api.fal.ai/v1",
        settings=_settings(penalty=None, repetition=0.4),
        image_settings=ImageSettings(steps=28),
        model={
            ModelClass.SMALL: "",
            ModelClass.MEDIUM: "",
            ModelClass.LARGE: "",
            ModelClass.EMBEDDING: "",
            ModelClass.IMAGE: "fal-ai/flux-lora",
        },
    ),
}


def resolve_provider(value) -> ModelProviderName:
    """Parse a provider name into the closed provider enum"""
    try:
        return ModelProviderName(value)
    except ValueError:
        raise ConfigurationError(f"Invalid model provider: {value!r}")


def get_provider_config(provider) -> ProviderModelConfig:
    config = MODELS.get(resolve_provider(provider))
    if config is None:
        raise UnsupportedProviderError(f"No model table entry for provider {provider!r}")
    return config


def get_model(provider, model_class) -> str:
    return get_provider_config(provider).model.get(ModelClass(model_class), "")


def get_endpoint(provider) -> Optional[str]:
    return get_provider_config(provider).endpoint


def resolve_model_id(runtime: "AgentRuntime", provider, model_class) -> str:
    """Model id for a tier: character override, then <TIER>_<PROVIDER>_MODEL setting, then the table"""

    provider = resolve_provider(provider)
    model_class = ModelClass(model_class)

    override = runtime.character.settings.model_overrides.get(model_class.value)
    if override:
        return override

    setting_key = f"{model_class.value}_{provider.value}_MODEL".upper()
    configured = runtime.get_setting(setting_key)
    if configured:
        return configured

    model_id = get_model(provider, model_class)
    if not model_id:
        raise UnsupportedProviderError(
            f"Provider {provider.value} has no model for tier {model_class.value}"
        )
    return model_id
