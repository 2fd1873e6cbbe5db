from typing import Dict, Any, Optional, Set, TYPE_CHECKING
from abc import ABC, abstractmethod
from pathlib import Path
import asyncio
import json

import structlog

from persona_agent.domain.models import CacheEntry, now_ms

if TYPE_CHECKING:
    from persona_agent.infrastructure.storage.database_adapter import DatabaseAdapter

logger = structlog.get_logger(__name__)


class CacheAdapter(ABC):
    """String key/value backend used by CacheManager"""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


class MemoryCacheAdapter(CacheAdapter):
    """Dict-backed adapter"""

    def __init__(self, initial_data: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = initial_data if initial_data is not None else {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self.data[key] = value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self.data.pop(key, None)


class FsCacheAdapter(CacheAdapter):
    """One file per key under data_dir"""

    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir)

    def _path(self, key: str) -> Path:
        return self.data_dir / key

    async def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_text, "utf-8")
        except FileNotFoundError:
            return None

    async def set(self, key: str, value: str) -> None:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(value, "utf-8")

        await asyncio.to_thread(_write)

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            pass


class DbCacheAdapter(CacheAdapter):
    """Stores entries through the storage facade, scoped to one agent"""

    def __init__(self, db: "DatabaseAdapter", agent_id: str):
        self.db = db
        self.agent_id = agent_id

    async def get(self, key: str) -> Optional[str]:
        return await self.db.get_cache(key=key, agent_id=self.agent_id)

    async def set(self, key: str, value: str) -> None:
        await self.db.set_cache(key=key, agent_id=self.agent_id, value=value)

    async def delete(self, key: str) -> None:
        await self.db.delete_cache(key=key, agent_id=self.agent_id)


class CacheManager:
    """JSON cache with millisecond expiry on top of a CacheAdapter"""

    def __init__(self, adapter: CacheAdapter):
        self.adapter = adapter
        self._pending: Set[asyncio.Task] = set()

    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None when missing or expired"""

        raw = await self.adapter.get(key)
        if raw is None:
            return None

        entry = CacheEntry.model_validate_json(raw)
        if entry.expires == 0 or entry.expires > now_ms():
            return entry.value

        logger.debug("Cache entry expired", key=key, expires=entry.expires)
        task = asyncio.create_task(self._delete_expired(key))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return None

    async def _delete_expired(self, key: str) -> None:
        try:
            await self.adapter.delete(key)
        except Exception as e:
            logger.warning("Failed to delete expired cache entry", key=key, error=str(e))

    async def set(self, key: str, value: Any, expires: int = 0) -> None:
        """Store value; expires is a millisecond epoch timestamp, 0 means never"""
        await self.adapter.set(key, json.dumps({"value": value, "expires": expires}))

    async def delete(self, key: str) -> None:
        await self.adapter.delete(key)
