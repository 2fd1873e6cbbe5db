from typing import Dict, Any, List, Optional, TYPE_CHECKING
import asyncio
import base64
import uuid

from pydantic import BaseModel, Field
import structlog

from persona_agent.domain.errors import ProviderRequestError, ServiceNotFoundError
from persona_agent.domain.models import ServiceType
from .models import MODELS, ModelClass, ModelProviderName, get_model

if TYPE_CHECKING:
    from persona_agent.domain.orchestration.core.runtime import AgentRuntime

logger = structlog.get_logger(__name__)

HEURIST_SUBMIT_URL = "http://sequencer.heurist.xyz/submit_job"
TOGETHER_IMAGES_URL = "https://api.together.xyz/v1/images/generations"
FAL_RUN_URL = "https://fal.run"
OPENAI_IMAGES_URL = "https://api.openai.com/v1/images/generations"
TAVILY_SEARCH_URL = "https://api.tavily.com/search"

OPENAI_IMAGE_SIZES = ("1024x1024", "1792x1024", "1024x1792")


class ImageRequest(BaseModel):
    prompt: str
    width: int = 1024
    height: int = 1024
    count: int = 1
    negative_prompt: Optional[str] = None
    num_iterations: Optional[int] = None
    guidance_scale: Optional[float] = None
    seed: Optional[int] = None
    model_id: Optional[str] = None
    job_id: Optional[str] = None


class ImageGenerationResult(BaseModel):
    """Images as URLs or base64 data URLs; failures carry an error instead"""
    success: bool
    data: List[str] = Field(default_factory=list)
    error: Optional[str] = None


def _image_api_key(runtime: "AgentRuntime") -> Optional[str]:
    if runtime.image_model_provider == runtime.model_provider:
        return runtime.token
    for key in ("HEURIST_API_KEY", "TOGETHER_API_KEY", "FAL_API_KEY", "OPENAI_API_KEY"):
        value = runtime.get_setting(key)
        if value:
            return value
    return None


def _check(response, provider: str) -> None:
    if response.status_code >= 400:
        raise ProviderRequestError(
            f"{provider} image generation failed: {response.status_code}",
            status_code=response.status_code,
        )


async def _heurist(runtime: "AgentRuntime", request: ImageRequest, api_key: Optional[str]) -> List[str]:
    response = await runtime.http_client.post(
        HEURIST_SUBMIT_URL,
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        json={
            "job_id": request.job_id or str(uuid.uuid4()),
            "model_input": {
                "SD": {
                    "prompt": request.prompt,
                    "neg_prompt": request.negative_prompt,
                    "num_iterations": request.num_iterations or 20,
                    "width": request.width or 512,
                    "height": request.height or 512,
                    "guidance_scale": request.guidance_scale or 3,
                    "seed": request.seed if request.seed is not None else -1,
                }
            },
            "model_id": request.model_id or "FLUX.1-dev",
            "deadline": 60,
            "priority": 1,
        },
    )
    _check(response, "heurist")
    payload = response.json()
    if isinstance(payload, dict):
        payload = payload.get("url") or payload.get("image") or payload.get("result")
    if not isinstance(payload, str) or not payload:
        raise ProviderRequestError("heurist returned no image url")
    return [payload]


async def _together(runtime: "AgentRuntime", request: ImageRequest, api_key: Optional[str], model: str) -> List[str]:
    image_settings = MODELS[ModelProviderName.LLAMACLOUD].image_settings
    response = await runtime.http_client.post(
        TOGETHER_IMAGES_URL,
        headers={"Authorization": f"Bearer {api_key}"},
        json={
            "model": model,
            "prompt": request.prompt,
            "width": request.width,
            "height": request.height,
            "steps": image_settings.steps if image_settings else 4,
            "n": request.count,
            "response_format": "b64_json",
        },
    )
    _check(response, "llama_cloud")
    return [f"data:image/jpeg;base64,{image['b64_json']}" for image in response.json().get("data", [])]


async def _fetch_data_url(runtime: "AgentRuntime", url: str, content_type: str) -> str:
    response = await runtime.http_client.get(url)
    _check(response, "falai")
    return f"data:{content_type};base64,{base64.b64encode(response.content).decode('ascii')}"


async def _fal(runtime: "AgentRuntime", request: ImageRequest, api_key: Optional[str], model: str) -> List[str]:
    image_settings = MODELS[ModelProviderName.FAL].image_settings
    payload: Dict[str, Any] = {
        "prompt": request.prompt,
        "image_size": "square",
        "num_inference_steps": image_settings.steps if image_settings else 50,
        "guidance_scale": 3.5,
        "num_images": request.count,
        "enable_safety_checker": True,
        "output_format": "png",
        "seed": request.seed if request.seed is not None else 6252023,
    }
    lora_path = runtime.get_setting("FAL_AI_LORA_PATH")
    if lora_path:
        payload["loras"] = [{"path": lora_path, "scale": 1}]

    response = await runtime.http_client.post(
        f"{FAL_RUN_URL}/{model}",
        headers={"Authorization": f"Key {api_key}"},
        json=payload,
    )
    _check(response, "falai")
    images = response.json().get("images", [])
    return list(await asyncio.gather(*[
        _fetch_data_url(runtime, image["url"], image.get("content_type", "image/png"))
        for image in images
    ]))


async def _openai(runtime: "AgentRuntime", request: ImageRequest, api_key: Optional[str], model: str) -> List[str]:
    size = f"{request.width}x{request.height}"
    if size not in OPENAI_IMAGE_SIZES:
        size = "1024x1024"

    response = await runtime.http_client.post(
        OPENAI_IMAGES_URL,
        headers={"Authorization": f"Bearer {api_key}"},
        json={
            "model": model,
            "prompt": request.prompt,
            "size": size,
            "n": request.count,
            "response_format": "b64_json",
        },
    )
    _check(response, "openai")
    return [f"data:image/png;base64,{image['b64_json']}" for image in response.json().get("data", [])]


async def generate_image(runtime: "AgentRuntime", request: ImageRequest) -> ImageGenerationResult:
    """Generate images with the runtime's image provider; failures are returned, never raised"""

    provider = runtime.image_model_provider
    logger.info("Generating image", provider=provider.value, count=request.count)

    try:
        api_key = _image_api_key(runtime)
        if provider == ModelProviderName.HEURIST:
            data = await _heurist(runtime, request, api_key)
        elif provider == ModelProviderName.LLAMACLOUD:
            data = await _together(runtime, request, api_key, get_model(provider, ModelClass.IMAGE))
        elif provider == ModelProviderName.FAL:
            data = await _fal(runtime, request, api_key, get_model(provider, ModelClass.IMAGE))
        else:
            model = get_model(provider, ModelClass.IMAGE) or get_model(ModelProviderName.OPENAI, ModelClass.IMAGE)
            data = await _openai(runtime, request, api_key, model)
        return ImageGenerationResult(success=True, data=data)
    except Exception as e:
        logger.error("Image generation failed", provider=provider.value, error=str(e))
        return ImageGenerationResult(success=False, error=str(e))


async def generate_caption(runtime: "AgentRuntime", image_url: str) -> Dict[str, str]:
    """Title and description of an image from the registered image description service"""

    service = runtime.get_service(ServiceType.IMAGE_DESCRIPTION)
    if service is None:
        raise ServiceNotFoundError("Image description service not found")

    description = await service.describe_image(image_url)
    return {
        "title": description.get("title", "").strip(),
        "description": description.get("description", "").strip(),
    }


async def generate_web_search(runtime: "AgentRuntime", query: str) -> Dict[str, Any]:
    """Tavily search including a synthesized answer"""

    response = await runtime.http_client.post(
        TAVILY_SEARCH_URL,
        headers={"Content-Type": "application/json"},
        json={
            "api_key": runtime.get_setting("TAVILY_API_KEY"),
            "query": query,
            "include_answer": True,
        },
    )
    if response.status_code >= 400:
        logger.error("Web search failed", status=response.status_code)
        raise ProviderRequestError(f"HTTP error! status: {response.status_code}", status_code=response.status_code)
    return response.json()
