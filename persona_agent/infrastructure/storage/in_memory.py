from typing import Dict, List, Optional, Set, Tuple
import asyncio
import uuid

import numpy as np
import structlog

from persona_agent.domain.models import Account, Goal, GoalStatus, Memory, Relationship
from .database_adapter import DatabaseAdapter

logger = structlog.get_logger(__name__)


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Cosine similarity; zero or mismatched vectors score 0.0"""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


class InMemoryDatabaseAdapter(DatabaseAdapter):
    """Dict-backed storage for tests and local runs"""

    def __init__(self):
        # memory id -> (table name, memory)
        self.memories: Dict[str, Tuple[str, Memory]] = {}
        self.goals: Dict[str, Goal] = {}
        self.accounts: Dict[str, Account] = {}
        self.rooms: Set[str] = set()
        self.participants: Dict[str, Set[str]] = {}
        self.relationships: List[Relationship] = []
        self.cache: Dict[Tuple[str, str], str] = {}
        self._lock = asyncio.Lock()

    def _table(self, table_name: str) -> List[Memory]:
        return [memory for table, memory in self.memories.values() if table == table_name]

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
        async with self._lock:
            rows = [
                m for m in self._table(table_name)
                if m.room_id == room_id
                and (not unique or m.unique)
                and (agent_id is None or m.agent_id == agent_id)
                and (start is None or m.created_at >= start)
                and (end is None or m.created_at <= end)
            ]
        rows.sort(key=lambda m: m.created_at, reverse=True)
        if count is not None:
            rows = rows[:count]
        return [m.model_copy(deep=True) for m in rows]

    async def get_memories_by_room_ids(
        self,
        room_ids: List[str],
        table_name: str,
        agent_id: Optional[str] = None,
    ) -> List[Memory]:
        wanted = set(room_ids)
        async with self._lock:
            rows = [
                m for m in self._table(table_name)
                if m.room_id in wanted and (agent_id is None or m.agent_id == agent_id)
            ]
        rows.sort(key=lambda m: m.created_at, reverse=True)
        return [m.model_copy(deep=True) for m in rows]

    async def get_memory_by_id(self, memory_id: str) -> Optional[Memory]:
        async with self._lock:
            entry = self.memories.get(memory_id)
        return entry[1].model_copy(deep=True) if entry else None

    async def create_memory(self, memory: Memory, table_name: str, unique: bool = False) -> None:
        async with self._lock:
            stored = memory.model_copy(deep=True, update={"unique": unique or memory.unique})
            self.memories[memory.id] = (table_name, stored)

    async def remove_memory(self, memory_id: str, table_name: str) -> None:
        async with self._lock:
            entry = self.memories.get(memory_id)
            if entry and entry[0] == table_name:
                del self.memories[memory_id]

    async def remove_all_memories(self, room_id: str, table_name: str) -> None:
        async with self._lock:
            doomed = [
                memory_id for memory_id, (table, memory) in self.memories.items()
                if table == table_name and memory.room_id == room_id
            ]
            for memory_id in doomed:
                del self.memories[memory_id]

    async def count_memories(self, room_id: str, unique: bool = True, table_name: str = "") -> int:
        async with self._lock:
            return sum(
                1 for m in self._table(table_name)
                if m.room_id == room_id and (not unique or m.unique)
            )

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
        async with self._lock:
            candidates = [
                m for m in self._table(table_name)
                if m.embedding is not None
                and (room_id is None or m.room_id == room_id)
                and (agent_id is None or m.agent_id == agent_id)
                and (not unique or m.unique)
            ]

        scored = []
        for memory in candidates:
            similarity = cosine_similarity(embedding, memory.embedding)
            if similarity >= match_threshold:
                scored.append(memory.model_copy(deep=True, update={"similarity": similarity}))

        scored.sort(key=lambda m: m.similarity, reverse=True)
        return scored[:match_count]

    async def get_cached_embeddings(
        self,
        query_table_name: str,
        query_threshold: int,
        query_input: str,
        query_field_name: str,
        query_field_sub_name: str,
        query_match_count: int,
    ) -> List[Memory]:
        async with self._lock:
            candidates = [
                m for m in self._table(query_table_name)
                if m.embedding and any(v != 0 for v in m.embedding)
            ]

        matches = []
        for memory in candidates:
            text = getattr(memory, query_field_name).model_dump().get(query_field_sub_name) or ""
            if abs(len(text) - len(query_input)) > query_threshold:
                continue
            distance = levenshtein(text, query_input)
            if distance <= query_threshold:
                matches.append((distance, memory))

        matches.sort(key=lambda pair: pair[0])
        return [memory.model_copy(deep=True) for _, memory in matches[:query_match_count]]

    async def get_goals(
        self,
        room_id: str,
        user_id: Optional[str] = None,
        only_in_progress: bool = True,
        count: int = 5,
    ) -> List[Goal]:
        async with self._lock:
            goals = [
                g for g in self.goals.values()
                if g.room_id == room_id
                and (user_id is None or g.user_id == user_id)
                and (not only_in_progress or g.status == GoalStatus.IN_PROGRESS)
            ]
        return [g.model_copy(deep=True) for g in goals[:count]]

    async def create_goal(self, goal: Goal) -> None:
        async with self._lock:
            stored = goal.model_copy(deep=True, update={"id": goal.id or str(uuid.uuid4())})
            self.goals[stored.id] = stored

    async def update_goal(self, goal: Goal) -> None:
        async with self._lock:
            if goal.id in self.goals:
                self.goals[goal.id] = goal.model_copy(deep=True)

    async def get_account_by_id(self, user_id: str) -> Optional[Account]:
        async with self._lock:
            account = self.accounts.get(user_id)
        return account.model_copy(deep=True) if account else None

    async def create_account(self, account: Account) -> bool:
        async with self._lock:
            if account.id in self.accounts:
                return False
            self.accounts[account.id] = account.model_copy(deep=True)
            return True

    async def get_room(self, room_id: str) -> Optional[str]:
        async with self._lock:
            return room_id if room_id in self.rooms else None

    async def create_room(self, room_id: Optional[str] = None) -> str:
        async with self._lock:
            room_id = room_id or str(uuid.uuid4())
            self.rooms.add(room_id)
            return room_id

    async def get_participants_for_room(self, room_id: str) -> List[str]:
        async with self._lock:
            return sorted(self.participants.get(room_id, set()))

    async def get_participants_for_account(self, user_id: str) -> List[str]:
        async with self._lock:
            return sorted(room for room, users in self.participants.items() if user_id in users)

    async def add_participant(self, user_id: str, room_id: str) -> bool:
        async with self._lock:
            users = self.participants.setdefault(room_id, set())
            if user_id in users:
                return False
            users.add(user_id)
            return True

    async def get_rooms_for_participants(self, user_ids: List[str]) -> List[str]:
        wanted = set(user_ids)
        async with self._lock:
            return sorted(room for room, users in self.participants.items() if wanted <= users)

    async def create_relationship(self, user_a: str, user_b: str) -> bool:
        async with self._lock:
            self.relationships.append(Relationship(
                id=str(uuid.uuid4()),
                user_a=user_a,
                user_b=user_b,
                user_id=user_a,
            ))
            return True

    async def get_relationship(self, user_a: str, user_b: str) -> Optional[Relationship]:
        async with self._lock:
            for relationship in self.relationships:
                if {relationship.user_a, relationship.user_b} == {user_a, user_b}:
                    return relationship.model_copy()
        return None

    async def get_relationships(self, user_id: str) -> List[Relationship]:
        async with self._lock:
            return [
                r.model_copy() for r in self.relationships
                if user_id in (r.user_a, r.user_b)
            ]

    async def get_cache(self, key: str, agent_id: str) -> Optional[str]:
        async with self._lock:
            return self.cache.get((agent_id, key))

    async def set_cache(self, key: str, agent_id: str, value: str) -> bool:
        async with self._lock:
            self.cache[(agent_id, key)] = value
            return True

    async def delete_cache(self, key: str, agent_id: str) -> bool:
        async with self._lock:
            return self.cache.pop((agent_id, key), None) is not None
