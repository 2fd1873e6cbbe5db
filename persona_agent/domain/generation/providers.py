from abc import ABC, abstractmethod
from typing import Dict, Any, Callable, List, Optional, TYPE_CHECKING
import json

import httpx
from pydantic import BaseModel, Field
import structlog

from persona_agent.domain.context.parsing import parse_json_object_from_text
from persona_agent.domain.errors import (
    ProviderRequestError,
    ServiceNotFoundError,
    UnsupportedProviderError,
)
from persona_agent.domain.models import ServiceType
from .models import ModelProviderName

if TYPE_CHECKING:
    from persona_agent.domain.orchestration.core.runtime import AgentRuntime

logger = structlog.get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class GenerationRequest(BaseModel):
    """Everything an adapter needs for one completion call"""
    provider: ModelProviderName
    model: str
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    context: str
    system: Optional[str] = None
    stop: List[str] = Field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 8192
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    repetition_penalty: Optional[float] = None
    schema_name: Optional[str] = None
    schema_description: Optional[str] = None


def _raise_for_status(response: httpx.Response, provider: str) -> None:
    if response.status_code >= 400:
        logger.error(
            "Provider request failed",
            provider=provider,
            status=response.status_code,
            body=response.text[:500],
        )
        raise ProviderRequestError(
            f"{provider} request failed with status {response.status_code}",
            status_code=response.status_code,
        )


class ProviderAdapter(ABC):
    """Text and structured-output backend for one provider family"""

    def __init__(self, runtime: "AgentRuntime"):
        self.runtime = runtime

    @property
    def client(self) -> httpx.AsyncClient:
        return self.runtime.http_client

    def _endpoint(self, request: GenerationRequest) -> str:
        if not request.endpoint:
            raise UnsupportedProviderError(f"No endpoint configured for {request.provider.value}")
        return request.endpoint.rstrip("/")

    @abstractmethod
    async def generate_text(self, request: GenerationRequest) -> str:
        pass

    @abstractmethod
    async def generate_object(self, request: GenerationRequest, schema: Dict[str, Any]) -> Dict[str, Any]:
        pass


class OpenAICompatibleAdapter(ProviderAdapter):
    """Chat completions API shared by OpenAI and compatible gateways"""

    def _headers(self, request: GenerationRequest) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if request.api_key:
            headers["Authorization"] = f"Bearer {request.api_key}"
        return headers

    def _payload(self, request: GenerationRequest) -> Dict[str, Any]:
        messages = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.append({"role": "user", "content": request.context})

        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if request.frequency_penalty is not None:
            payload["frequency_penalty"] = request.frequency_penalty
        if request.presence_penalty is not None:
            payload["presence_penalty"] = request.presence_penalty
        if request.stop:
            payload["stop"] = request.stop
        return payload

    async def _complete(self, request: GenerationRequest, payload: Dict[str, Any]) -> str:
        response = await self.client.post(
            f"{self._endpoint(request)}/chat/completions",
            headers=self._headers(request),
            json=payload,
        )
        _raise_for_status(response, request.provider.value)
        return response.json()["choices"][0]["message"]["content"] or ""

    async def generate_text(self, request: GenerationRequest) -> str:
        return await self._complete(request, self._payload(request))

    async def generate_object(self, request: GenerationRequest, schema: Dict[str, Any]) -> Dict[str, Any]:
        payload = self._payload(request)
        payload["response_format"] = {
            "type": "json_schema",
            "json_schema": {
                "name": request.schema_name or "response",
                "description": request.schema_description or "",
                "schema": schema,
            },
        }
        return json.loads(await self._complete(request, payload))


class GroqAdapter(OpenAICompatibleAdapter):
    """Groq speaks the chat completions API but only supports plain JSON mode"""

    async def generate_object(self, request: GenerationRequest, schema: Dict[str, Any]) -> Dict[str, Any]:
        payload = self._payload(request)
        payload["messages"][-1]["content"] = (
            f"{request.context}\n\nRespond with a JSON object matching this schema:\n{json.dumps(schema)}"
        )
        payload["response_format"] = {"type": "json_object"}
        return json.loads(await self._complete(request, payload))


class AnthropicAdapter(ProviderAdapter):
    """Anthropic messages API"""

    def _payload(self, request: GenerationRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": request.context}],
        }
        if request.system:
            payload["system"] = request.system
        stop = [s for s in request.stop if s.strip()]
        if stop:
            payload["stop_sequences"] = stop
        return payload

    async def _post(self, request: GenerationRequest, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.post(
            f"{self._endpoint(request)}/messages",
            headers={
                "x-api-key": request.api_key or "",
                "anthropic-version": ANTHROPIC_VERSION,
                "Content-Type": "application/json",
            },
            json=payload,
        )
        _raise_for_status(response, request.provider.value)
        return response.json()

    async def generate_text(self, request: GenerationRequest) -> str:
        data = await self._post(request, self._payload(request))
        return "".join(block.get("text", "") for block in data.get("content", []) if block.get("type") == "text")

    async def generate_object(self, request: GenerationRequest, schema: Dict[str, Any]) -> Dict[str, Any]:
        tool_name = request.schema_name or "respond"
        payload = self._payload(request)
        payload["tools"] = [{
            "name": tool_name,
            "description": request.schema_description or "Return the structured response",
            "input_schema": schema,
        }]
        payload["tool_choice"] = {"type": "tool", "name": tool_name}

        data = await self._post(request, payload)
        for block in data.get("content", []):
            if block.get("type") == "tool_use":
                return block.get("input", {})
        raise ProviderRequestError(f"{request.provider.value} returned no structured output")


class GoogleAdapter(ProviderAdapter):
    """Gemini generateContent REST API"""

    def _payload(self, request: GenerationRequest) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_tokens,
        }
        if request.stop:
            generation_config["stopSequences"] = request.stop
        if request.frequency_penalty is not None:
            generation_config["frequencyPenalty"] = request.frequency_penalty
        if request.presence_penalty is not None:
            generation_config["presencePenalty"] = request.presence_penalty

        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": request.context}]}],
            "generationConfig": generation_config,
        }
        if request.system:
            payload["systemInstruction"] = {"parts": [{"text": request.system}]}
        return payload

    async def _generate(self, request: GenerationRequest, payload: Dict[str, Any]) -> str:
        response = await self.client.post(
            f"{self._endpoint(request)}/models/{request.model}:generateContent",
            params={"key": request.api_key or ""},
            json=payload,
        )
        _raise_for_status(response, request.provider.value)
        candidates = response.json().get("candidates", [])
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(part.get("text", "") for part in parts)

    async def generate_text(self, request: GenerationRequest) -> str:
        return await self._generate(request, self._payload(request))

    async def generate_object(self, request: GenerationRequest, schema: Dict[str, Any]) -> Dict[str, Any]:
        payload = self._payload(request)
        payload["generationConfig"]["responseMimeType"] = "application/json"
        payload["generationConfig"]["responseSchema"] = schema
        return json.loads(await self._generate(request, payload))


class OllamaAdapter(ProviderAdapter):
    """Ollama /api/generate"""

    def _payload(self, request: GenerationRequest) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "temperature": request.temperature,
            "num_predict": request.max_tokens,
        }
        if request.stop:
            options["stop"] = request.stop
        if request.repetition_penalty is not None:
            options["repeat_penalty"] = request.repetition_penalty

        payload: Dict[str, Any] = {
            "model": request.model,
            "prompt": request.context,
            "stream": False,
            "options": options,
        }
        if request.system:
            payload["system"] = request.system
        return payload

    async def _generate(self, request: GenerationRequest, payload: Dict[str, Any]) -> str:
        response = await self.client.post(f"{self._endpoint(request)}/api/generate", json=payload)
        _raise_for_status(response, request.provider.value)
        return response.json().get("response", "")

    async def generate_text(self, request: GenerationRequest) -> str:
        return await self._generate(request, self._payload(request))

    async def generate_object(self, request: GenerationRequest, schema: Dict[str, Any]) -> Dict[str, Any]:
        payload = self._payload(request)
        payload["format"] = schema
        return json.loads(await self._generate(request, payload))


class LocalAdapter(ProviderAdapter):
    """Delegates to the runtime's registered text generation service"""

    def _service(self):
        service = self.runtime.get_service(ServiceType.TEXT_GENERATION)
        if service is None:
            raise ServiceNotFoundError("Text generation service not found")
        return service

    async def generate_text(self, request: GenerationRequest) -> str:
        return await self._service().queue_text_completion(
            request.context,
            temperature=request.temperature,
            stop=request.stop,
            frequency_penalty=request.frequency_penalty or 0.0,
            presence_penalty=request.presence_penalty or 0.0,
            max_tokens=request.max_tokens,
        )

    async def generate_object(self, request: GenerationRequest, schema: Dict[str, Any]) -> Dict[str, Any]:
        async def attempt() -> Optional[Dict[str, Any]]:
            parsed = parse_json_object_from_text(await self.generate_text(request))
            return parsed if isinstance(parsed, dict) else None

        return await self.runtime.settings.retry.run(attempt, label="local_generate_object")


PROVIDER_ADAPTERS: Dict[ModelProviderName, Callable[["AgentRuntime"], ProviderAdapter]] = {
    ModelProviderName.OPENAI: OpenAICompatibleAdapter,
    ModelProviderName.LLAMACLOUD: OpenAICompatibleAdapter,
    ModelProviderName.GROK: OpenAICompatibleAdapter,
    ModelProviderName.REDPILL: OpenAICompatibleAdapter,
    ModelProviderName.OPENROUTER: OpenAICompatibleAdapter,
    ModelProviderName.HEURIST: OpenAICompatibleAdapter,
    ModelProviderName.ANTHROPIC: AnthropicAdapter,
    ModelProviderName.CLAUDE_VERTEX: AnthropicAdapter,
    ModelProviderName.GOOGLE: GoogleAdapter,
    ModelProviderName.GROQ: GroqAdapter,
    ModelProviderName.OLLAMA: OllamaAdapter,
    ModelProviderName.LLAMALOCAL: LocalAdapter,
}


def get_provider_adapter(runtime: "AgentRuntime", provider: ModelProviderName) -> ProviderAdapter:
    factory = PROVIDER_ADAPTERS.get(provider)
    if factory is None:
        raise UnsupportedProviderError(f"Unsupported provider: {provider.value}")
    return factory(runtime)
