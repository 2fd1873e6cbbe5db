from typing import Dict, Any, List, Optional, Type, Union, TYPE_CHECKING
import time

from pydantic import BaseModel
import structlog

from persona_agent.domain.context.parsing import (
    parse_boolean_from_text,
    parse_json_array_from_text,
    parse_json_object_from_text,
    parse_should_respond_from_text,
)
from persona_agent.domain.models import Content
from persona_agent.infrastructure.observability.logging import agent_logger
from .models import MODELS, ModelClass, resolve_model_id
from .providers import GenerationRequest, get_provider_adapter
from .tokens import trim_tokens

if TYPE_CHECKING:
    from persona_agent.domain.orchestration.core.runtime import AgentRuntime

logger = structlog.get_logger(__name__)


def build_request(
    runtime: "AgentRuntime",
    context: str,
    model_class: ModelClass,
    stop: Optional[List[str]] = None,
) -> GenerationRequest:
    """Resolve model, endpoint and sampling settings for the runtime's provider"""

    provider = runtime.model_provider
    config = MODELS[provider]
    settings = config.settings
    model = resolve_model_id(runtime, provider, model_class)

    return GenerationRequest(
        provider=provider,
        model=model,
        endpoint=runtime.character.model_endpoint_override or config.endpoint,
        api_key=runtime.token,
        context=trim_tokens(context, settings.max_input_tokens, "gpt-4o"),
        system=runtime.character.system,
        stop=list(stop) if stop is not None else list(settings.stop),
        temperature=settings.temperature,
        max_tokens=settings.max_output_tokens,
        frequency_penalty=settings.frequency_penalty,
        presence_penalty=settings.presence_penalty,
        repetition_penalty=settings.repetition_penalty,
    )


async def generate_text(
    runtime: "AgentRuntime",
    context: str,
    model_class: ModelClass = ModelClass.SMALL,
    stop: Optional[List[str]] = None,
) -> str:
    """Single completion from the runtime's provider; provider errors propagate"""

    if not context:
        logger.error("generate_text context is empty")
        return ""

    request = build_request(runtime, context, ModelClass(model_class), stop)
    adapter = get_provider_adapter(runtime, request.provider)

    started = time.perf_counter()
    try:
        response = await adapter.generate_text(request)
    except Exception as e:
        agent_logger.log_generation_attempt(
            provider=request.provider.value,
            model=request.model,
            model_class=ModelClass(model_class).value,
            context_length=len(request.context),
            duration_ms=(time.perf_counter() - started) * 1000,
            success=False,
            error=str(e),
        )
        raise

    agent_logger.log_generation_attempt(
        provider=request.provider.value,
        model=request.model,
        model_class=ModelClass(model_class).value,
        context_length=len(request.context),
        duration_ms=(time.perf_counter() - started) * 1000,
    )
    return response


async def generate_should_respond(
    runtime: "AgentRuntime",
    context: str,
    model_class: ModelClass = ModelClass.SMALL,
) -> str:
    """RESPOND, IGNORE or STOP, retried until the reply parses"""

    async def attempt() -> Optional[str]:
        response = await generate_text(runtime, context, model_class)
        return parse_should_respond_from_text(response.strip())

    return await runtime.settings.retry.run(attempt, label="generate_should_respond")


async def generate_true_or_false(
    runtime: "AgentRuntime",
    context: str = "",
    model_class: ModelClass = ModelClass.SMALL,
) -> bool:
    """YES/NO question answered as a bool, retried until the reply parses"""

    stop = list(MODELS[runtime.model_provider].settings.stop)
    if "\n" not in stop:
        stop.append("\n")

    async def attempt() -> Optional[bool]:
        response = await generate_text(runtime, context, model_class, stop=stop)
        return parse_boolean_from_text(response.strip())

    return await runtime.settings.retry.run(attempt, label="generate_true_or_false")


async def generate_text_array(
    runtime: "AgentRuntime",
    context: str,
    model_class: ModelClass = ModelClass.SMALL,
) -> List[Any]:
    if not context:
        logger.error("generate_text_array context is empty")
        return []

    async def attempt() -> Optional[List[Any]]:
        return parse_json_array_from_text(await generate_text(runtime, context, model_class))

    return await runtime.settings.retry.run(attempt, label="generate_text_array")


async def generate_object(
    runtime: "AgentRuntime",
    context: str,
    model_class: ModelClass = ModelClass.SMALL,
) -> Optional[Union[Dict[str, Any], List[Any]]]:
    if not context:
        logger.error("generate_object context is empty")
        return None

    async def attempt() -> Optional[Union[Dict[str, Any], List[Any]]]:
        return parse_json_object_from_text(await generate_text(runtime, context, model_class))

    return await runtime.settings.retry.run(attempt, label="generate_object")


async def generate_object_array(
    runtime: "AgentRuntime",
    context: str,
    model_class: ModelClass = ModelClass.SMALL,
) -> List[Any]:
    if not context:
        logger.error("generate_object_array context is empty")
        return []

    async def attempt() -> Optional[List[Any]]:
        return parse_json_array_from_text(await generate_text(runtime, context, model_class))

    return await runtime.settings.retry.run(attempt, label="generate_object_array")


async def generate_message_response(
    runtime: "AgentRuntime",
    context: str,
    model_class: ModelClass = ModelClass.SMALL,
) -> Content:
    """Reply content parsed from a JSON block, or the raw reply wrapped as a RESPOND action"""

    async def attempt() -> Optional[Content]:
        response = await generate_text(runtime, context, model_class)
        parsed = parse_json_object_from_text(response)
        if isinstance(parsed, dict) and parsed.get("text"):
            return Content.model_validate(parsed)

        text = response.strip()
        if not text:
            return None
        logger.debug("Message response was not JSON, wrapping raw text")
        return Content(text=text, action="RESPOND", source="model")

    return await runtime.settings.retry.run(attempt, label="generate_message_response")


async def generate_object_v2(
    runtime: "AgentRuntime",
    context: str,
    model_class: ModelClass,
    schema: Union[Type[BaseModel], Dict[str, Any]],
    schema_name: Optional[str] = None,
    schema_description: Optional[str] = None,
    stop: Optional[List[str]] = None,
    mode: str = "json",
) -> Union[BaseModel, Dict[str, Any]]:
    """Structured output through the provider's native schema support.

    A pydantic model class as schema yields a validated instance of it.
    """

    if not context:
        logger.error("generate_object_v2 context is empty")
        raise ValueError("generate_object context is empty")

    model_type = schema if isinstance(schema, type) and issubclass(schema, BaseModel) else None
    json_schema = model_type.model_json_schema() if model_type else schema

    request = build_request(runtime, context, ModelClass(model_class), stop)
    request.schema_name = schema_name or (model_type.__name__ if model_type else None)
    request.schema_description = schema_description

    logger.info(
        "Generating structured object",
        provider=request.provider.value,
        model=request.model,
        schema_name=request.schema_name,
        mode=mode,
    )
    adapter = get_provider_adapter(runtime, request.provider)
    result = await adapter.generate_object(request, json_schema)

    if model_type:
        return model_type.model_validate(result)
    return result
