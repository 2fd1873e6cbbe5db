from typing import List, TYPE_CHECKING
import re

from pydantic import BaseModel
import structlog

from persona_agent.domain.generation.embedding import embed, get_embedding_zero_vector
from persona_agent.domain.models import Content, Memory, string_to_uuid

if TYPE_CHECKING:
    from persona_agent.domain.orchestration.core.runtime import AgentRuntime

logger = structlog.get_logger(__name__)

KNOWLEDGE_MATCH_COUNT = 3
KNOWLEDGE_MATCH_THRESHOLD = 0.1

# Applied in order on every preprocessing pass
_PREPROCESS_RULES = [
    (re.compile(r"```[\s\S]*?```"), ""),
    (re.compile(r"`.*?`"), ""),
    (re.compile(r"#{1,6}\s*(.*)"), r"\1"),
    (re.compile(r"!\[(.*?)\]\(.*?\)"), r"\1"),
    (re.compile(r"\[(.*?)\]\(.*?\)"), r"\1"),
    (re.compile(r"(https?://)?(www\.)?([^\s]+\.[^\s]+)"), r"\3"),
    (re.compile(r"<@[!&]?\d+>"), ""),
    (re.compile(r"<[^>]*>"), ""),
    (re.compile(r"^\s*[-*_]{3,}\s*$", re.MULTILINE), ""),
    (re.compile(r"/\*[\s\S]*?\*/"), ""),
    (re.compile(r"//.*"), ""),
    (re.compile(r"\s+"), " "),
    (re.compile(r"[^a-zA-Z0-9\s\-_./:?=&]"), ""),
]


class KnowledgeItem(BaseModel):
    """Knowledge document returned by a lookup"""
    id: str
    content: Content


def _preprocess_once(text: str) -> str:
    for pattern, replacement in _PREPROCESS_RULES:
        text = pattern.sub(replacement, text)
    return text.strip().lower()


def preprocess(text: str) -> str:
    """Normalize text for embedding: drop markup, code and links, collapse whitespace, lowercase.

    The pass is repeated until the output stops changing, so the result is
    stable under another call.
    """
    if not text or not isinstance(text, str):
        logger.warning("Invalid input for preprocessing")
        return ""

    current = _preprocess_once(text)
    while True:
        following = _preprocess_once(current)
        if following == current:
            return current
        current = following


def split_chunks(text: str, chunk_size: int = 512, bleed: int = 20) -> List[str]:
    """Overlapping character windows of chunk_size, each sharing bleed characters with the previous one"""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if bleed < 0 or bleed >= chunk_size:
        raise ValueError("bleed must be non-negative and smaller than chunk_size")
    if not text:
        return []

    step = chunk_size - bleed
    chunks = []
    start = 0
    while True:
        chunks.append(text[start:start + chunk_size])
        if start + chunk_size >= len(text):
            return chunks
        start += step


async def get(runtime: "AgentRuntime", message: Memory) -> List[KnowledgeItem]:
    """Knowledge documents whose fragments best match the message text"""

    if message is None or not message.content.text:
        logger.warning("Invalid message for knowledge query")
        return []

    processed = preprocess(message.content.text)
    logger.debug("Knowledge query", length=len(processed))
    if not processed.strip():
        logger.warning("Empty processed text for knowledge query")
        return []

    embedding = await embed(runtime, processed)
    if not embedding:
        return []

    fragments = await runtime.knowledge_manager.search_memories_by_embedding(
        embedding,
        match_threshold=KNOWLEDGE_MATCH_THRESHOLD,
        count=KNOWLEDGE_MATCH_COUNT,
        room_id=runtime.agent_id,
    )

    sources: List[str] = []
    for fragment in fragments:
        logger.debug("Matched fragment", source=fragment.content.source, similarity=fragment.similarity)
        if fragment.content.source and fragment.content.source not in sources:
            sources.append(fragment.content.source)

    items = []
    for source in sources:
        document = await runtime.documents_manager.get_memory_by_id(source)
        if document is not None:
            items.append(KnowledgeItem(id=document.id, content=document.content))
    return items


async def set(runtime: "AgentRuntime", item: KnowledgeItem, chunk_size: int = 512, bleed: int = 20) -> None:
    """Store a document and its embedded fragments; a document id that already exists is left alone"""

    if await runtime.documents_manager.get_memory_by_id(item.id) is not None:
        logger.debug("Knowledge document already stored", document_id=item.id)
        return

    fragments = split_chunks(preprocess(item.content.text), chunk_size, bleed)
    logger.info("Storing knowledge fragments", document_id=item.id, fragments=len(fragments))

    for fragment in fragments:
        memory = await runtime.knowledge_manager.add_embedding_to_memory(Memory(
            id=string_to_uuid(item.id + fragment),
            agent_id=runtime.agent_id,
            room_id=runtime.agent_id,
            user_id=runtime.agent_id,
            content=Content(text=fragment, source=item.id),
        ))
        await runtime.knowledge_manager.create_memory(memory)

    # The document goes in last; its presence marks the item as fully stored
    await runtime.documents_manager.create_memory(Memory(
        id=item.id,
        agent_id=runtime.agent_id,
        room_id=runtime.agent_id,
        user_id=runtime.agent_id,
        content=item.content,
        embedding=get_embedding_zero_vector(runtime.embedding_config),
    ))


async def process_character_knowledge(runtime: "AgentRuntime", knowledge: List[str]) -> None:
    """Store each knowledge string under an id derived from its text"""

    for text in knowledge:
        document_id = string_to_uuid(text)
        logger.info("Processing knowledge", document_id=document_id, preview=text[:100])
        await set(runtime, KnowledgeItem(id=document_id, content=Content(text=text)))
