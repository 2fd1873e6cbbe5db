from typing import Dict, Any, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

from .memory import Content


class Style(BaseModel):
    """Writing rules applied to every output, chat replies and posts"""
    model_config = ConfigDict(frozen=True)

    all: List[str] = Field(default_factory=list)
    chat: List[str] = Field(default_factory=list)
    post: List[str] = Field(default_factory=list)


class ExampleMessage(BaseModel):
    """One line of an example conversation; user may be a {{userN}} placeholder"""
    model_config = ConfigDict(frozen=True)

    user: str
    content: Content


class CharacterSettings(BaseModel):
    """Per-character settings; secrets take precedence in setting lookups"""
    model_config = ConfigDict(frozen=True, extra="allow")

    secrets: Dict[str, str] = Field(default_factory=dict)
    voice: Dict[str, Any] = Field(default_factory=dict)
    model: Optional[str] = None
    embedding_model: Optional[str] = None
    model_overrides: Dict[str, str] = Field(
        default_factory=dict,
        description="Capability tier -> model id, overrides the provider table",
    )


class Character(BaseModel):
    """Persona configuration, loaded once per runtime"""
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: str
    username: Optional[str] = None
    system: Optional[str] = Field(None, description="System prompt sent with every generation")
    model_provider: Optional[str] = Field(None, description="Text provider; falls back to runtime settings, then openai")
    image_model_provider: Optional[str] = None
    model_endpoint_override: Optional[str] = None
    bio: Union[str, List[str]] = ""
    lore: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    adjectives: List[str] = Field(default_factory=list)
    knowledge: List[str] = Field(default_factory=list)
    message_examples: List[List[ExampleMessage]] = Field(default_factory=list)
    post_examples: List[str] = Field(default_factory=list)
    style: Style = Field(default_factory=Style)
    settings: CharacterSettings = Field(default_factory=CharacterSettings)
    templates: Dict[str, str] = Field(default_factory=dict)
    plugins: List[Any] = Field(default_factory=list)
