from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional, Callable, Awaitable, TYPE_CHECKING
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum

from .character import ExampleMessage
from .memory import Content, Memory

if TYPE_CHECKING:
    from persona_agent.domain.orchestration.core.runtime import AgentRuntime


State = Dict[str, Any]
HandlerCallback = Callable[[Content], Awaitable[List[Memory]]]


class EvaluationExample(BaseModel):
    """Worked example shown to the model when selecting evaluators"""
    context: str
    messages: List[ExampleMessage] = Field(default_factory=list)
    outcome: str


class Action(ABC):
    """Turn-time capability the model can request by name"""

    def __init__(
        self,
        name: str,
        description: str,
        similes: Optional[List[str]] = None,
        examples: Optional[List[List[ExampleMessage]]] = None,
    ):
        self.name = name
        self.description = description
        self.similes = similes or []
        self.examples = examples or []

    @abstractmethod
    async def validate(self, runtime: "AgentRuntime", message: Memory, state: Optional[State] = None) -> bool:
        """Return True when the action is usable for this message"""
        pass

    async def handler(
        self,
        runtime: "AgentRuntime",
        message: Memory,
        state: Optional[State] = None,
        options: Optional[Dict[str, Any]] = None,
        callback: Optional[HandlerCallback] = None,
    ) -> Any:
        raise NotImplementedError

    @property
    def has_handler(self) -> bool:
        return type(self).handler is not Action.handler


class Evaluator(ABC):
    """Post-turn hook that inspects the conversation and may record side effects"""

    def __init__(
        self,
        name: str,
        description: str,
        similes: Optional[List[str]] = None,
        examples: Optional[List[EvaluationExample]] = None,
        always_run: bool = False,
    ):
        self.name = name
        self.description = description
        self.similes = similes or []
        self.examples = examples or []
        self.always_run = always_run

    @abstractmethod
    async def validate(self, runtime: "AgentRuntime", message: Memory, state: Optional[State] = None) -> bool:
        """Return True when the evaluator applies to this message"""
        pass

    async def handler(
        self,
        runtime: "AgentRuntime",
        message: Memory,
        state: Optional[State] = None,
        options: Optional[Dict[str, Any]] = None,
        callback: Optional[HandlerCallback] = None,
    ) -> Any:
        raise NotImplementedError

    @property
    def has_handler(self) -> bool:
        return type(self).handler is not Evaluator.handler


class Provider(ABC):
    """Contributes a block of text to the composed state"""

    @abstractmethod
    async def get(self, runtime: "AgentRuntime", message: Memory, state: Optional[State] = None) -> str:
        pass


class ServiceType(str, Enum):
    """Service slots a runtime can hold one instance of"""
    IMAGE_DESCRIPTION = "image_description"
    TRANSCRIPTION = "transcription"
    VIDEO = "video"
    TEXT_GENERATION = "text_generation"
    BROWSER = "browser"
    SPEECH_GENERATION = "speech_generation"
    PDF = "pdf"


class Service(ABC):
    """Long-lived helper registered on the runtime by service type"""

    service_type: ServiceType

    async def initialize(self, runtime: "AgentRuntime") -> None:
        pass


class TextGenerationService(Service):
    service_type = ServiceType.TEXT_GENERATION

    @abstractmethod
    async def queue_text_completion(
        self,
        context: str,
        temperature: float,
        stop: List[str],
        frequency_penalty: float,
        presence_penalty: float,
        max_tokens: int,
    ) -> str:
        pass


class ImageDescriptionService(Service):
    service_type = ServiceType.IMAGE_DESCRIPTION

    @abstractmethod
    async def describe_image(self, image_url: str) -> Dict[str, str]:
        """Return a mapping with "title" and "description" keys"""
        pass


class Plugin(BaseModel):
    """Bundle of components registered together"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str = ""
    actions: List[Action] = Field(default_factory=list)
    evaluators: List[Evaluator] = Field(default_factory=list)
    providers: List[Provider] = Field(default_factory=list)
    services: List[Service] = Field(default_factory=list)
