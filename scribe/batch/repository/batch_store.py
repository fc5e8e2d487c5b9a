# scribe/batch/repository/batch_store.py
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

from pkg.redis.client import RedisClient
from scribe.batch.entity.batch import BatchRecord


class BatchStore(ABC):
    """Tracker storage for in-flight batches, keyed by batch id."""

    @abstractmethod
    async def get(self, batch_id: str) -> Optional[BatchRecord]:
        pass

    @abstractmethod
    async def set(self, record: BatchRecord) -> None:
        pass

    @abstractmethod
    async def delete(self, batch_id: str) -> None:
        pass


class InMemoryBatchStore(BatchStore):
    """Process-local store; entries vanish with the process or after ``ttl_seconds``."""

    def __init__(self, ttl_seconds: int = 7 * 24 * 60 * 60, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._records: Dict[str, Tuple[float, dict]] = {}

    def _prune(self) -> None:
        now = self._clock()
        for batch_id in [k for k, (expires_at, _) in self._records.items() if expires_at <= now]:
            del self._records[batch_id]

    async def get(self, batch_id: str) -> Optional[BatchRecord]:
        self._prune()
        entry = self._records.get(batch_id)
        return BatchRecord.model_validate(entry[1]) if entry is not None else None

    async def set(self, record: BatchRecord) -> None:
        self._prune()
        self._records[record.batch_id] = (self._clock() + self.ttl_seconds, record.model_dump(mode="json"))

    async def delete(self, batch_id: str) -> None:
        self._records.pop(batch_id, None)


class RedisBatchStore(BatchStore):
    KEY_PREFIX = "batch:"

    def __init__(self, redis_client: RedisClient, ttl_seconds: int = 7 * 24 * 60 * 60):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    def _key(self, batch_id: str) -> str:
        return f"{self.KEY_PREFIX}{batch_id}"

    async def get(self, batch_id: str) -> Optional[BatchRecord]:
        data = await self.redis.async_get_value(self._key(batch_id))
        return BatchRecord.model_validate(data) if isinstance(data, dict) else None

    async def set(self, record: BatchRecord) -> None:
        await self.redis.async_set_value(
            self._key(record.batch_id), record.model_dump(mode="json"), expiry=self.ttl_seconds
        )

    async def delete(self, batch_id: str) -> None:
        await self.redis.async_delete(self._key(batch_id))
