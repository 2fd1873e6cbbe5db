from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional

from persona_agent.domain.models import Account, Goal, Memory, Relationship


class DatabaseAdapter(ABC):
    """Storage facade consumed by the runtime and its memory managers.

    Memory queries are scoped by table name (messages, descriptions, lore,
    documents, fragments). Listing queries return memories newest first.
    """

    # Memories

    @abstractmethod
    async def get_memories(
        self,
        room_id: str,
        table_name: str,
        count: Optional[int] = None,
        unique: bool = True,
        agent_id: Optional[str] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> List[Memory]:
        pass

    @abstractmethod
    async def get_memories_by_room_ids(
        self,
        room_ids: List[str],
        table_name: str,
        agent_id: Optional[str] = None,
    ) -> List[Memory]:
        pass

    @abstractmethod
    async def get_memory_by_id(self, memory_id: str) -> Optional[Memory]:
        pass

    @abstractmethod
    async def create_memory(self, memory: Memory, table_name: str, unique: bool = False) -> None:
        pass

    @abstractmethod
    async def remove_memory(self, memory_id: str, table_name: str) -> None:
        pass

    @abstractmethod
    async def remove_all_memories(self, room_id: str, table_name: str) -> None:
        pass

    @abstractmethod
    async def count_memories(self, room_id: str, unique: bool = True, table_name: str = "") -> int:
        pass

    @abstractmethod
    async def search_memories(
        self,
        table_name: str,
        embedding: List[float],
        match_threshold: float,
        match_count: int,
        unique: bool = False,
        room_id: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> List[Memory]:
        """Vector search; results carry similarity and are ordered best first"""
        pass

    @abstractmethod
    async def get_cached_embeddings(
        self,
        query_table_name: str,
        query_threshold: int,
        query_input: str,
        query_field_name: str,
        query_field_sub_name: str,
        query_match_count: int,
    ) -> List[Memory]:
        """Stored memories whose text is within query_threshold edits of query_input"""
        pass

    # Goals

    @abstractmethod
    async def get_goals(
        self,
        room_id: str,
        user_id: Optional[str] = None,
        only_in_progress: bool = True,
        count: int = 5,
    ) -> List[Goal]:
        pass

    @abstractmethod
    async def create_goal(self, goal: Goal) -> None:
        pass

    @abstractmethod
    async def update_goal(self, goal: Goal) -> None:
        pass

    # Accounts, rooms and participants

    @abstractmethod
    async def get_account_by_id(self, user_id: str) -> Optional[Account]:
        pass

    @abstractmethod
    async def create_account(self, account: Account) -> bool:
        pass

    @abstractmethod
    async def get_room(self, room_id: str) -> Optional[str]:
        pass

    @abstractmethod
    async def create_room(self, room_id: Optional[str] = None) -> str:
        pass

    @abstractmethod
    async def get_participants_for_room(self, room_id: str) -> List[str]:
        pass

    @abstractmethod
    async def get_participants_for_account(self, user_id: str) -> List[str]:
        """Room ids the account participates in"""
        pass

    @abstractmethod
    async def add_participant(self, user_id: str, room_id: str) -> bool:
        pass

    @abstractmethod
    async def get_rooms_for_participants(self, user_ids: List[str]) -> List[str]:
        """Rooms in which every given user participates"""
        pass

    # Relationships

    @abstractmethod
    async def create_relationship(self, user_a: str, user_b: str) -> bool:
        pass

    @abstractmethod
    async def get_relationship(self, user_a: str, user_b: str) -> Optional[Relationship]:
        pass

    @abstractmethod
    async def get_relationships(self, user_id: str) -> List[Relationship]:
        pass

    # Cache

    @abstractmethod
    async def get_cache(self, key: str, agent_id: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set_cache(self, key: str, agent_id: str, value: str) -> bool:
        pass

    @abstractmethod
    async def delete_cache(self, key: str, agent_id: str) -> bool:
        pass
