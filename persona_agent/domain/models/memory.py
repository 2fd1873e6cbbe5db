from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
from urllib.parse import quote
import hashlib
import time


def now_ms() -> int:
    """Current time as milliseconds since the epoch"""
    return int(time.time() * 1000)


def string_to_uuid(target: Any) -> str:
    """Derive a stable UUID-shaped id from arbitrary text.

    The text is percent-encoded the way a URI component would be, hashed with
    SHA-1 and the first 16 bytes are laid out as a UUID with the variant bits
    set. Equal inputs always map to the same id.
    """
    if isinstance(target, (int, float)) and not isinstance(target, bool):
        target = str(target)
    if not isinstance(target, str):
        raise TypeError("Value must be string")

    escaped = quote(target, safe="-_.!~*'()")
    digest = bytearray(hashlib.sha1(escaped.encode("ascii")).digest()[:16])
    digest[6] &= 0x0F
    digest[8] = (digest[8] & 0x3F) | 0x80
    hex_digest = digest.hex()
    return "-".join([
        hex_digest[0:8],
        hex_digest[8:12],
        hex_digest[12:16],
        hex_digest[16:20],
        hex_digest[20:32],
    ])


class Media(BaseModel):
    """Attachment carried by a message"""
    id: str
    url: str = ""
    title: str = ""
    source: str = ""
    description: str = ""
    text: str = ""


class Content(BaseModel):
    """Payload of a memory; unknown keys are preserved"""
    model_config = ConfigDict(extra="allow")

    text: str = ""
    action: Optional[str] = None
    source: Optional[str] = None
    in_reply_to: Optional[str] = None
    attachments: List[Media] = Field(default_factory=list)


class Memory(BaseModel):
    """Stored, embedded unit of content scoped to a room"""
    id: str = Field(description="Unique memory identifier")
    user_id: str = Field(description="Author of the memory")
    room_id: str = Field(description="Room the memory belongs to")
    agent_id: Optional[str] = None
    content: Content = Field(default_factory=Content)
    embedding: Optional[List[float]] = None
    created_at: int = Field(default_factory=now_ms, description="Milliseconds since the epoch")
    similarity: Optional[float] = Field(None, description="Set by vector search")
    unique: bool = False


class GoalStatus(str, Enum):
    """Goal lifecycle status"""
    DONE = "DONE"
    FAILED = "FAILED"
    IN_PROGRESS = "IN_PROGRESS"


class Objective(BaseModel):
    id: Optional[str] = None
    description: str
    completed: bool = False


class Goal(BaseModel):
    """Goal tracked for a room and user"""
    id: Optional[str] = None
    name: str
    room_id: str
    user_id: Optional[str] = None
    objectives: List[Objective] = Field(default_factory=list)
    status: GoalStatus = Field(default=GoalStatus.IN_PROGRESS)


class Account(BaseModel):
    """Account record owned by account management"""
    id: str
    name: str
    username: str
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class Actor(BaseModel):
    """Read-only projection of a room participant"""
    id: str
    name: str
    username: str
    details: Dict[str, Any] = Field(default_factory=dict)


class Relationship(BaseModel):
    id: Optional[str] = None
    user_a: str
    user_b: str
    user_id: Optional[str] = None
    room_id: Optional[str] = None
    status: Optional[str] = None
    created_at: int = Field(default_factory=now_ms)


class CacheEntry(BaseModel):
    """Serialized cache record; expires == 0 never expires"""
    value: Any = None
    expires: int = 0
