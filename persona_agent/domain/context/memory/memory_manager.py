from typing import List, Optional, TYPE_CHECKING

import structlog

from persona_agent.domain.errors import EmptyMemoryContentError
from persona_agent.domain.generation.embedding import embed, get_embedding_zero_vector
from persona_agent.domain.models import Memory
from persona_agent.infrastructure.observability.logging import agent_logger

if TYPE_CHECKING:
    from persona_agent.domain.orchestration.core.runtime import AgentRuntime

logger = structlog.get_logger(__name__)

CACHED_EMBEDDING_THRESHOLD = 2
CACHED_EMBEDDING_MATCH_COUNT = 10


class MemoryManager:
    """Embedded memories for one table, stored through the runtime's database adapter"""

    def __init__(self, runtime: "AgentRuntime", table_name: str):
        self.runtime = runtime
        self.table_name = table_name

    @property
    def db(self):
        return self.runtime.database_adapter

    async def add_embedding_to_memory(self, memory: Memory) -> Memory:
        """Return a copy of memory carrying an embedding.

        The argument is left untouched; callers must store the returned
        memory. A memory that already has an embedding is returned as is.
        Empty text is an error. If the backend fails or returns nothing the
        copy gets a zero vector of the configured width.
        """
        if memory.embedding:
            return memory

        text = memory.content.text
        if not text:
            raise EmptyMemoryContentError("Cannot generate embedding: Memory content is empty")

        try:
            embedding = await embed(self.runtime, text)
        except Exception as e:
            embedding = None
            reason = str(e)
        else:
            reason = "empty embedding"

        if not embedding:
            agent_logger.log_fallback(
                operation="add_embedding_to_memory",
                reason=reason,
                substitute="zero vector",
                details={"memory_id": memory.id, "table": self.table_name},
            )
            embedding = get_embedding_zero_vector(self.runtime.embedding_config)

        return memory.model_copy(update={"embedding": embedding})

    async def get_memories(
        self,
        room_id: str,
        count: int = 10,
        unique: bool = True,
        agent_id: Optional[str] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> List[Memory]:
        """Newest-first memories for a room"""
        return await self.db.get_memories(
            room_id=room_id,
            table_name=self.table_name,
            count=count,
            unique=unique,
            agent_id=agent_id,
            start=start,
            end=end,
        )

    async def get_cached_embeddings(self, content: str) -> List[Memory]:
        return await self.db.get_cached_embeddings(
            query_table_name=self.table_name,
            query_threshold=CACHED_EMBEDDING_THRESHOLD,
            query_input=content,
            query_field_name="content",
            query_field_sub_name="text",
            query_match_count=CACHED_EMBEDDING_MATCH_COUNT,
        )

    async def search_memories_by_embedding(
        self,
        embedding: List[float],
        match_threshold: float = 0.1,
        count: int = 10,
        room_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        unique: bool = False,
    ) -> List[Memory]:
        return await self.db.search_memories(
            table_name=self.table_name,
            embedding=embedding,
            match_threshold=match_threshold,
            match_count=count,
            unique=unique,
            room_id=room_id,
            agent_id=agent_id,
        )

    async def create_memory(self, memory: Memory, unique: bool = False) -> None:
        """Insert the memory unless its id is already stored"""

        existing = await self.get_memory_by_id(memory.id)
        if existing:
            logger.debug("Memory already exists, skipping", memory_id=memory.id, table=self.table_name)
            return

        logger.debug("Creating memory", memory_id=memory.id, table=self.table_name)
        await self.db.create_memory(memory, table_name=self.table_name, unique=unique)

    async def get_memories_by_room_ids(self, room_ids: List[str], agent_id: Optional[str] = None) -> List[Memory]:
        return await self.db.get_memories_by_room_ids(
            room_ids=room_ids,
            table_name=self.table_name,
            agent_id=agent_id,
        )

    async def get_memory_by_id(self, memory_id: str) -> Optional[Memory]:
        return await self.db.get_memory_by_id(memory_id)

    async def remove_memory(self, memory_id: str) -> None:
        await self.db.remove_memory(memory_id, table_name=self.table_name)

    async def remove_all_memories(self, room_id: str) -> None:
        await self.db.remove_all_memories(room_id, table_name=self.table_name)

    async def count_memories(self, room_id: str, unique: bool = True) -> int:
        return await self.db.count_memories(room_id, unique=unique, table_name=self.table_name)
