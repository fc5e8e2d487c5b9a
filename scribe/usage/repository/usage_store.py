# scribe/usage/repository/usage_store.py
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from pkg.redis.client import RedisClient


class UsageStore(ABC):
    """Key-value persistence for usage counters, keyed by account id."""

    @abstractmethod
    async def get(self, account_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def set(self, account_id: str, data: Dict[str, Any]) -> None:
        pass

    @asynccontextmanager
    async def lock(self, account_id: str) -> AsyncIterator[None]:
        """Cross-process guard around a read-modify-write. No-op by default."""
        yield


class InMemoryUsageStore(UsageStore):
    """Process-local store. Only safe for a single worker."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    async def get(self, account_id: str) -> Optional[Dict[str, Any]]:
        value = self._data.get(account_id)
        return dict(value) if value is not None else None

    async def set(self, account_id: str, data: Dict[str, Any]) -> None:
        self._data[account_id] = dict(data)


class RedisUsageStore(UsageStore):
    KEY_PREFIX = "usage:account:"

    def __init__(self, redis_client: RedisClient, lock_timeout: int = 10):
        self.redis = redis_client
        self.lock_timeout = lock_timeout

    def _key(self, account_id: str) -> str:
        return f"{self.KEY_PREFIX}{account_id}"

    async def get(self, account_id: str) -> Optional[Dict[str, Any]]:
        value = await self.redis.async_get_value(self._key(account_id))
        return value if isinstance(value, dict) else None

    async def set(self, account_id: str, data: Dict[str, Any]) -> None:
        await self.redis.async_set_value(self._key(account_id), data)

    @asynccontextmanager
    async def lock(self, account_id: str) -> AsyncIterator[None]:
        async with self.redis.lock(self._key(account_id), timeout=self.lock_timeout):
            yield
